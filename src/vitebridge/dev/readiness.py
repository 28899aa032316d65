"""Readiness detection for the dev server.

Readiness is a best-effort heuristic: the detector scans the child's output
for a banner such as Vite's "ready in 320 ms". Seeing the banner does not
guarantee the port already accepts connections. When HTTP probing is
enabled a second task polls the dev server URL and fires the same latch.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable

import httpx
from tenacity import AsyncRetrying, retry_if_result, wait_fixed

from vitebridge.constants import HTTP_PROBE_INTERVAL_SECONDS
from vitebridge.dev.logging import DevLogComponent, get_logger

ui_logger = get_logger(DevLogComponent.UI)
logger = get_logger(DevLogComponent.SUPERVISOR)

# CSI sequences (colors, cursor movement) and OSC sequences (hyperlinks, titles)
_ANSI_ESCAPE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from a line of terminal output."""
    return _ANSI_ESCAPE.sub("", text)


class ReadinessDetector:
    """Consumes the child's combined output and fires a one-shot readiness latch.

    A new detector is created for every start attempt, so the latch is reset
    by construction.
    """

    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns: tuple[str, ...] = tuple(patterns)
        self._ready: asyncio.Event = asyncio.Event()
        self.matched_line: str | None = None

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def matches(self, line: str) -> bool:
        """Case-sensitive substring match against any configured pattern."""
        return any(pattern in line for pattern in self.patterns)

    def feed(self, raw: bytes | str) -> str:
        """Process one output line; returns the cleaned text."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        line = strip_ansi(raw).rstrip("\r\n")
        if not self._ready.is_set() and self.matches(line):
            self.matched_line = line
            self._ready.set()
        return line

    def mark_ready(self) -> None:
        self._ready.set()

    async def wait(self) -> None:
        await self._ready.wait()

    async def consume(self, stream: asyncio.StreamReader) -> None:
        """Read the stream until EOF, logging every line.

        Runs for the whole lifetime of the child process, long after
        readiness has fired. A line longer than the stream limit is dropped
        (the rest of it may arrive as a line of its own) and reading goes on,
        so the child never blocks on a full pipe.
        """
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                # readline() has already discarded the overrun data
                logger.warning(f"Skipped an oversized dev server output line: {e}")
                continue
            if not raw:
                break
            line = self.feed(raw)
            if line.strip():
                ui_logger.info(line)

    async def probe(self, url: str, interval: float = HTTP_PROBE_INTERVAL_SECONDS) -> None:
        """Poll `url` until it answers 200 or 404, then fire the latch."""

        async def check() -> bool:
            if self._ready.is_set():
                return True
            try:
                response = await client.get(url)
            except httpx.HTTPError:
                return False
            # 404 still means the server is up
            return response.status_code in (200, 404)

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(1.0), follow_redirects=False, trust_env=False
        ) as client:
            async for attempt in AsyncRetrying(
                wait=wait_fixed(interval),
                retry=retry_if_result(lambda ready: not ready),
            ):
                with attempt:
                    ready = await check()
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(ready)

        if not self._ready.is_set():
            logger.debug(f"HTTP probe succeeded for {url}")
            self.mark_ready()
