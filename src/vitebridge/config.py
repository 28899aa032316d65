"""Build a `DevServerConfig` from the environment.

Values come from (lowest to highest precedence) the model defaults, a `.env`
file, `VITEBRIDGE_*` environment variables and explicit overrides (the CLI).
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from vitebridge.constants import ENV_PREFIX
from vitebridge.models import DevServerConfig

TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _as_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


def _as_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# env suffix -> (field name, converter)
_ENV_FIELDS: dict[str, tuple[str, Any]] = {  # pyright: ignore[reportExplicitAny]
    "HOST": ("host", str),
    "PORT": ("port", str),
    "WORKING_DIR": ("working_dir", str),
    "START_COMMAND": ("start_command", shlex.split),
    "STARTUP_TIMEOUT": ("startup_timeout_seconds", str),
    "READINESS_PATTERNS": ("readiness_patterns", _as_list),
    "ENABLED": ("enabled", _as_bool),
    "AUTO_START": ("auto_start", _as_bool),
    "REQUIRED": ("required", _as_bool),
    "HTTP_PROBE": ("http_probe", _as_bool),
    "BUILD_DIR": ("build_dir", str),
    "EXCLUDED_PREFIXES": ("excluded_prefixes", _as_list),
}

_ENV_OVERRIDES_PREFIX = f"{ENV_PREFIX}ENV_"


def config_from_env(environ: Mapping[str, str]) -> dict[str, Any]:  # pyright: ignore[reportExplicitAny]
    """Collect DevServerConfig fields from `VITEBRIDGE_*` variables.

    `VITEBRIDGE_ENV_<NAME>=value` becomes an environment override `NAME=value`
    for the dev server process.
    """
    values: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
    for suffix, (field, convert) in _ENV_FIELDS.items():
        raw = environ.get(f"{ENV_PREFIX}{suffix}")
        if raw is not None and raw != "":
            values[field] = convert(raw)

    child_env = {
        key.removeprefix(_ENV_OVERRIDES_PREFIX): value
        for key, value in environ.items()
        if key.startswith(_ENV_OVERRIDES_PREFIX) and key != _ENV_OVERRIDES_PREFIX
    }
    if child_env:
        values["env"] = child_env
    return values


def load_config(
    env_file: Path | None = Path(".env"),
    **overrides: Any,  # pyright: ignore[reportExplicitAny]
) -> DevServerConfig:
    """Load `.env` (if present), then build the config.

    Overrides whose value is None are ignored, so CLI options can be passed
    through unconditionally.

    Raises:
        pydantic.ValidationError: if a value violates the config constraints
    """
    if env_file is not None and env_file.exists():
        load_dotenv(env_file, override=False)

    values = config_from_env(os.environ)
    values.update({key: value for key, value in overrides.items() if value is not None})
    return DevServerConfig.model_validate(values)
