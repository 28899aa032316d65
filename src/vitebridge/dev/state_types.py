"""Shared typing-only contracts for the dev bridge.

These live in a dedicated module so `proxy.py` can depend on the supervisor's
surface without importing the supervisor (and test doubles can satisfy it).
"""

from __future__ import annotations

from typing import Protocol


class DevServerHandle(Protocol):
    """Minimal supervisor surface needed by `ReverseProxyRouter`."""

    @property
    def base_url(self) -> str: ...

    def is_running(self) -> bool: ...
