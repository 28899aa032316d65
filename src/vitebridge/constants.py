"""Global constants for vitebridge."""

# Dev server defaults (Vite)

DEFAULT_HOST = "localhost"
DEFAULT_DEV_SERVER_PORT = 5173
DEFAULT_WORKING_DIR = "frontend"
DEFAULT_BUILD_DIR = "dist"
DEFAULT_STARTUP_TIMEOUT_SECONDS = 60

# Substrings Vite (and most bundlers) print once the server accepts connections
DEFAULT_READINESS_PATTERNS = frozenset({"ready in", "Local:", "listening on"})

# Shutdown escalation windows (seconds)
GRACEFUL_SHUTDOWN_SECONDS = 5.0
FORCED_SHUTDOWN_SECONDS = 5.0

# Interval between HTTP readiness probes (seconds)
HTTP_PROBE_INTERVAL_SECONDS = 0.5

# URL/Routing defaults
API_PREFIX = "/api/"
MANAGEMENT_PREFIX = "/__vitebridge__"
DEFAULT_EXCLUDED_PREFIXES = (API_PREFIX, f"{MANAGEMENT_PREFIX}/")

# Headers never copied across the proxy hop (lowercase)
EXCLUDED_HEADERS = frozenset(
    {"host", "connection", "content-length", "transfer-encoding"}
)

# Runtime profiles
PROFILES_ENV_VAR = "VITEBRIDGE_PROFILES_ACTIVE"
DEVELOPMENT_PROFILES = frozenset({"dev", "development"})
PRODUCTION_PROFILES = frozenset({"prod", "production"})

# Environment variable prefix for configuration
ENV_PREFIX = "VITEBRIDGE_"

# In-memory log buffer size
LOG_BUFFER_SIZE = 5000
