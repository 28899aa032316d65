"""Centralized Pydantic models, enums, and type aliases for vitebridge."""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vitebridge.constants import (
    DEFAULT_BUILD_DIR,
    DEFAULT_DEV_SERVER_PORT,
    DEFAULT_EXCLUDED_PREFIXES,
    DEFAULT_HOST,
    DEFAULT_READINESS_PATTERNS,
    DEFAULT_STARTUP_TIMEOUT_SECONDS,
    DEFAULT_WORKING_DIR,
)


# === Enums ===


class SupervisorState(str, Enum):
    """Lifecycle state of the supervised dev server process."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class LogChannel(str, Enum):
    """Logical log channel: our own messages vs. the dev server's output."""

    BRIDGE = "bridge"
    UI = "ui"


# === Configuration ===


def default_start_command(host: str, port: int | str) -> tuple[str, ...]:
    """Build the `npm run dev` invocation for the current platform."""
    npm: tuple[str, ...] = ("cmd.exe", "/c", "npm.cmd") if os.name == "nt" else ("npm",)
    return (*npm, "run", "dev", "--", "--host", str(host), "--port", str(port))


class DevServerConfig(BaseModel):
    """Complete configuration for the supervised dev server.

    This is the single source of truth for dev server configuration; it is
    created once at startup and never mutated afterwards.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_DEV_SERVER_PORT, ge=1, le=65535)
    working_dir: Path = Path(DEFAULT_WORKING_DIR)
    start_command: tuple[str, ...] = ()
    env: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    startup_timeout_seconds: int = Field(default=DEFAULT_STARTUP_TIMEOUT_SECONDS, gt=0)
    readiness_patterns: frozenset[str] = DEFAULT_READINESS_PATTERNS

    # Feature flags
    enabled: bool = True
    auto_start: bool = True
    required: bool = False
    http_probe: bool = False

    build_dir: str = DEFAULT_BUILD_DIR
    excluded_prefixes: tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES

    @model_validator(mode="before")
    @classmethod
    def _fill_start_command(cls, data: Any) -> Any:  # pyright: ignore[reportExplicitAny]
        if isinstance(data, dict) and not data.get("start_command"):
            data = dict(data)
            data["start_command"] = default_start_command(
                data.get("host", DEFAULT_HOST),
                data.get("port", DEFAULT_DEV_SERVER_PORT),
            )
        return data

    @field_validator("env")
    @classmethod
    def _read_only_env(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_validator("readiness_patterns")
    @classmethod
    def _no_empty_patterns(cls, value: frozenset[str]) -> frozenset[str]:
        # An empty pattern would match every line.
        if any(not pattern for pattern in value):
            raise ValueError("readiness patterns must be non-empty strings")
        return value

    @property
    def dev_server_url(self) -> str:
        """Base URL of the dev server (no trailing slash)."""
        return f"http://{self.host}:{self.port}"

    @property
    def build_path(self) -> Path:
        """Directory holding the production build output."""
        return self.working_dir / self.build_dir


# === Process Tracking ===


class TrackedProcess(BaseModel):
    """A process we started and are allowed to manage.

    create_time protects against PID reuse. pgid enables POSIX process-group
    shutdown even if the original PID has already exited (npm -> node handoff).
    """

    pid: int | None = None
    create_time: float | None = None
    pgid: int | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


# === Proxy Decisions ===


class Forward(BaseModel):
    """Forward the request to the dev server."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    kind: Literal["forward"] = "forward"
    target_url: str


class Decline(BaseModel):
    """Answer locally without contacting the dev server."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    kind: Literal["decline"] = "decline"
    status_code: int
    reason: str = ""


class Upgrade(BaseModel):
    """HMR WebSocket upgrade; the client reconnects to the dev server directly."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    kind: Literal["upgrade"] = "upgrade"
    target_url: str


ProxyDecision: TypeAlias = Forward | Decline | Upgrade


# === Management API Models ===


class LogEntry(BaseModel):
    """Strongly typed log entry kept in the in-memory buffer."""

    timestamp: str
    level: str
    channel: LogChannel
    component: str
    content: str


class StatusResponse(BaseModel):
    """Response model for the management status endpoint."""

    state: SupervisorState
    running: bool
    pid: int | None = None
    dev_server_url: str
    working_dir: str
    development: bool
