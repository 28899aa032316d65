"""Errors raised by the dev server supervisor.

None of these are fatal to the hosting process: the supervisor always settles
into a well-defined state before raising, and the caller decides whether a
failed start should abort its own startup.
"""

from __future__ import annotations


class StartError(RuntimeError):
    """Base class for failures of `ProcessSupervisor.start()`."""


class AlreadyInUse(StartError):
    """Something is already listening on the configured host/port."""

    def __init__(self, host: str, port: int) -> None:
        super().__init__(f"Port {port} on {host} is already in use")
        self.host: str = host
        self.port: int = port


class MissingWorkingDir(StartError):
    """The configured frontend directory does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Frontend directory does not exist: {path}")
        self.path: str = path


class SpawnFailure(StartError):
    """The OS could not create the process, or it exited before becoming ready.

    An early exit is reported as soon as it happens instead of waiting out
    the startup window; it replaces the `StartTimeout` that window would end in.
    """


class StartTimeout(StartError):
    """No readiness signal within the configured startup window."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Dev server did not become ready within {timeout:g} seconds")
        self.timeout: float = timeout


class StartCancelled(StartError):
    """`stop()` was called while the start was still waiting for readiness."""
