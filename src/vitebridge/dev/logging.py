"""Centralized logging for the dev bridge (buffering, routing, and console formatting)."""

from __future__ import annotations

import logging
import time
from collections import deque
from enum import Enum
from typing import ClassVar, TypeAlias

from pydantic import BaseModel, ConfigDict
from typing_extensions import override

from vitebridge.constants import LOG_BUFFER_SIZE
from vitebridge.models import LogChannel, LogEntry
from vitebridge.utils import PrefixedLogHandler

LogBuffer: TypeAlias = deque[LogEntry]


class DevLogComponent(str, Enum):
    """Where a log originated (used for fine-grained filtering)."""

    SERVER = "server"
    SUPERVISOR = "supervisor"
    UI = "ui"
    PROXY = "proxy"
    PROCESS_CONTROL = "process_control"


_COMPONENT_DEFAULT_CHANNEL: dict[DevLogComponent, LogChannel] = {
    DevLogComponent.SERVER: LogChannel.BRIDGE,
    DevLogComponent.SUPERVISOR: LogChannel.BRIDGE,
    DevLogComponent.PROXY: LogChannel.BRIDGE,
    DevLogComponent.PROCESS_CONTROL: LogChannel.BRIDGE,
    DevLogComponent.UI: LogChannel.UI,
}

_CHANNEL_STYLE: dict[LogChannel, str] = {
    LogChannel.BRIDGE: "bright_blue",
    LogChannel.UI: "cyan",
}


class _DevLogState(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(arbitrary_types_allowed=True)

    buffer: LogBuffer | None = None
    configured: bool = False


_STATE = _DevLogState()


def _now_timestamp(created: float | None = None) -> str:
    t = time.localtime(created if created is not None else time.time())
    return time.strftime("%Y-%m-%d %H:%M:%S", t)


class _BufferedLogHandler(logging.Handler):
    buffer_component: DevLogComponent
    buffer_channel: LogChannel

    def __init__(self, *, channel: LogChannel, component: DevLogComponent):
        super().__init__()
        self.buffer_channel = channel
        self.buffer_component = component

    @override
    def emit(self, record: logging.LogRecord) -> None:
        if _STATE.buffer is None:
            return
        try:
            _STATE.buffer.append(
                LogEntry(
                    timestamp=_now_timestamp(record.created),
                    level=record.levelname,
                    channel=self.buffer_channel,
                    component=self.buffer_component.value,
                    content=self.format(record),
                )
            )
        except Exception:
            self.handleError(record)


def new_log_buffer(size: int = LOG_BUFFER_SIZE) -> LogBuffer:
    return deque(maxlen=size)


def configure_dev_logging(
    *,
    level: int = logging.INFO,
    buffer: LogBuffer | None = None,
    console_output: bool = True,
) -> None:
    """Configure all dev loggers to write to the console and the shared buffer."""
    _STATE.buffer = buffer

    for component in DevLogComponent:
        channel = _COMPONENT_DEFAULT_CHANNEL.get(component, LogChannel.BRIDGE)
        logger = logging.getLogger(f"vitebridge.dev.{component.value}")
        logger.setLevel(level)
        logger.handlers.clear()

        if buffer is not None:
            buffered = _BufferedLogHandler(channel=channel, component=component)
            buffered.setFormatter(logging.Formatter("%(message)s"))
            logger.addHandler(buffered)

        if console_output:
            printed = PrefixedLogHandler(
                prefix=f"[{channel.value}]", color=_CHANNEL_STYLE[channel]
            )
            printed.setFormatter(logging.Formatter("%(message)s"))
            logger.addHandler(printed)

        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
        logger.propagate = False

    _STATE.configured = True


def get_log_buffer() -> LogBuffer | None:
    """Return the buffer configured by `configure_dev_logging`, if any."""
    return _STATE.buffer


def get_logger(component: DevLogComponent) -> logging.Logger:
    """Get a dev logger for a component (do not call stdlib logging directly)."""
    logger = logging.getLogger(f"vitebridge.dev.{component.value}")
    if not _STATE.configured:
        # Avoid "No handlers could be found" warnings when logging is not configured.
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
    return logger
