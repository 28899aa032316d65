"""Lifecycle management for the supervised frontend dev server process.

The supervisor owns exactly one child process at a time:

- `start()` spawns the child in its own process group, scans its output for a
  readiness banner and suspends the caller until the banner shows up or the
  startup window elapses.
- `stop()` sends a graceful signal, waits, then kills the whole process tree.
- `is_running()` is cheap and lock-free so request handlers can call it on
  every request.

State transitions happen under a single asyncio lock; `stop()` may interrupt
a pending `start()` through a cancellation event.
"""

from __future__ import annotations

import asyncio
import atexit
import os
import shlex
import subprocess
import time
from typing import Literal

from vitebridge.constants import FORCED_SHUTDOWN_SECONDS, GRACEFUL_SHUTDOWN_SECONDS
from vitebridge.dev.errors import (
    AlreadyInUse,
    MissingWorkingDir,
    SpawnFailure,
    StartCancelled,
    StartTimeout,
)
from vitebridge.dev.logging import DevLogComponent, get_logger
from vitebridge.dev.process_control import (
    is_alive,
    is_port_listening,
    kill_processes,
    kill_tree,
    list_descendants,
    send_graceful_signal,
    track_process,
)
from vitebridge.dev.readiness import ReadinessDetector
from vitebridge.models import DevServerConfig, SupervisorState, TrackedProcess
from vitebridge.utils import format_elapsed_ms

logger = get_logger(DevLogComponent.SUPERVISOR)

# Large enough for minified stack traces printed on a single line
_STREAM_LIMIT = 1024 * 1024

_WaitOutcome = Literal["ready", "exited", "cancelled", "timeout"]


class ProcessSupervisor:
    """Starts, watches and stops the dev server child process."""

    def __init__(
        self,
        config: DevServerConfig,
        *,
        grace_period: float = GRACEFUL_SHUTDOWN_SECONDS,
        kill_timeout: float = FORCED_SHUTDOWN_SECONDS,
    ) -> None:
        self.config: DevServerConfig = config
        self.grace_period: float = grace_period
        self.kill_timeout: float = kill_timeout

        self._state: SupervisorState = SupervisorState.STOPPED
        self._lock: asyncio.Lock = asyncio.Lock()
        self._cancel_start: asyncio.Event | None = None

        self._process: asyncio.subprocess.Process | None = None
        self._tracked: TrackedProcess | None = None
        self._detector: ReadinessDetector | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._probe_task: asyncio.Task[None] | None = None
        self._atexit_registered: bool = False

    # === Inspection ===

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def base_url(self) -> str:
        return self.config.dev_server_url

    def address(self) -> tuple[str, int]:
        """Configured dev server address; pair with `is_running()` before use."""
        return self.config.host, self.config.port

    def is_running(self) -> bool:
        """True only if we consider the server started AND the process is alive now."""
        if self._state is not SupervisorState.RUNNING:
            return False
        process, tracked = self._process, self._tracked
        if process is None or process.returncode is not None:
            return False
        return tracked is None or is_alive(tracked)

    def _set_state(self, state: SupervisorState) -> None:
        if state is not self._state:
            logger.debug(f"Supervisor state {self._state.value} -> {state.value}")
        self._state = state

    # === Start ===

    async def start(self) -> None:
        """Start the dev server and wait until it reports readiness.

        Raises:
            AlreadyInUse: another process listens on the configured port
            MissingWorkingDir: the frontend directory does not exist
            SpawnFailure: the process could not be created, or exited before
                becoming ready (raised at once, without waiting for the timeout)
            StartTimeout: no readiness signal within the startup window
            StartCancelled: `stop()` was called while waiting
        """
        async with self._lock:
            cancel = asyncio.Event()
            self._cancel_start = cancel
            try:
                await self._start_locked(cancel)
            finally:
                self._cancel_start = None

    async def _start_locked(self, cancel: asyncio.Event) -> None:
        config = self.config

        if self._state is SupervisorState.RUNNING:
            if self.is_running():
                logger.info("Dev server is already running")
                return
            logger.warning("Dev server process died; starting a new one")
            await self._teardown()

        host, port = self.address()
        if await asyncio.to_thread(is_port_listening, host, port):
            logger.warning(
                f"Port {port} is already in use on {host}; not starting the dev server"
            )
            raise AlreadyInUse(host, port)

        if not config.working_dir.is_dir():
            missing = str(config.working_dir.resolve())
            logger.warning(f"Frontend directory does not exist: {missing}")
            raise MissingWorkingDir(missing)

        if cancel.is_set():
            self._set_state(SupervisorState.STOPPED)
            raise StartCancelled("Dev server start was cancelled by stop()")

        self._set_state(SupervisorState.STARTING)
        logger.info(
            f"Starting dev server at {config.host}:{config.port}: "
            f"{shlex.join(config.start_command)}"
        )
        started = time.perf_counter()

        try:
            process = await self._spawn()
        except (OSError, ValueError) as e:
            self._set_state(SupervisorState.FAILED)
            logger.error(f"Failed to spawn dev server: {e}")
            raise SpawnFailure(f"Failed to spawn dev server: {e}") from e

        detector = ReadinessDetector(config.readiness_patterns)
        self._process = process
        self._tracked = track_process(process.pid)
        self._detector = detector
        self._register_atexit()

        assert process.stdout is not None, "stdout must be piped"
        self._reader_task = asyncio.create_task(
            detector.consume(process.stdout), name="vitebridge-log-reader"
        )
        if config.http_probe:
            self._probe_task = asyncio.create_task(
                detector.probe(config.dev_server_url), name="vitebridge-http-probe"
            )

        logger.info("Waiting for dev server to be ready...")
        outcome = await self._wait_for_ready(detector, process, cancel)

        if outcome == "ready":
            self._cancel_probe()
            self._set_state(SupervisorState.RUNNING)
            logger.info(
                f"Dev server ready at {config.dev_server_url} ({format_elapsed_ms(started)})"
            )
            return

        if outcome == "cancelled":
            logger.info("Dev server start cancelled")
            await self._teardown()
            self._set_state(SupervisorState.STOPPED)
            raise StartCancelled("Dev server start was cancelled by stop()")

        if outcome == "exited":
            code = process.returncode
            logger.error(f"Dev server exited with code {code} before becoming ready")
            await self._teardown()
            self._set_state(SupervisorState.FAILED)
            raise SpawnFailure(f"Dev server exited with code {code} before becoming ready")

        logger.error(
            f"Dev server did not become ready within {config.startup_timeout_seconds} seconds"
        )
        await self._teardown()
        self._set_state(SupervisorState.FAILED)
        raise StartTimeout(config.startup_timeout_seconds)

    async def _spawn(self) -> asyncio.subprocess.Process:
        # Own process group/session so the whole tree can be signalled at once.
        creationflags = 0
        start_new_session = False
        if os.name == "nt":
            creationflags = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
        else:
            start_new_session = True

        return await asyncio.create_subprocess_exec(
            *self.config.start_command,
            cwd=self.config.working_dir,
            env={**os.environ, **self.config.env},
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=start_new_session,
            creationflags=creationflags,
            limit=_STREAM_LIMIT,
        )

    async def _wait_for_ready(
        self,
        detector: ReadinessDetector,
        process: asyncio.subprocess.Process,
        cancel: asyncio.Event,
    ) -> _WaitOutcome:
        ready = asyncio.create_task(detector.wait())
        exited = asyncio.create_task(process.wait())
        cancelled = asyncio.create_task(cancel.wait())
        waiters = {ready, exited, cancelled}
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.config.startup_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in waiters:
                task.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if cancelled in done:
            return "cancelled"
        if exited in done:
            if self._reader_task is not None:
                # Let the reader drain and log the remaining output first.
                await asyncio.wait({self._reader_task}, timeout=1.0)
            return "exited"
        if detector.is_ready:
            return "ready"
        return "timeout"

    # === Stop ===

    async def stop(self) -> None:
        """Stop the dev server and its whole process tree.

        Idempotent and safe to call from shutdown handlers; never raises for
        a process that refuses to exit.
        """
        if self._cancel_start is not None:
            # Let the pending start() give up the lock instead of waiting out its timeout.
            self._cancel_start.set()
        elif self._state is SupervisorState.STOPPED and self._process is None:
            return

        async with self._lock:
            if self._state is SupervisorState.STOPPED and self._process is None:
                return
            self._set_state(SupervisorState.STOPPING)
            if self._process is not None:
                logger.info("Stopping dev server")
            await self._teardown()
            self._set_state(SupervisorState.STOPPED)

    async def _teardown(self) -> None:
        """Terminate the current child (if any) and forget its handle."""
        process, tracked = self._process, self._tracked
        self._cancel_probe()

        if process is not None:
            if process.returncode is None:
                await self._terminate(process, tracked)
            elif tracked is not None:
                # Root already gone; sweep whatever is left in its group.
                await asyncio.to_thread(kill_tree, tracked, timeout=self.kill_timeout)
            logger.info(f"Dev server stopped (exit code {process.returncode})")

        if self._reader_task is not None:
            if not self._reader_task.done():
                self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)

        self._process = None
        self._tracked = None
        self._detector = None
        self._reader_task = None
        self._unregister_atexit()

    async def _terminate(
        self, process: asyncio.subprocess.Process, tracked: TrackedProcess | None
    ) -> None:
        # Snapshot descendants while the root is alive; they are re-parented once it exits.
        descendants = list_descendants(tracked) if tracked is not None else []

        if tracked is not None:
            send_graceful_signal(tracked)
        else:
            try:
                process.terminate()
            except ProcessLookupError:
                pass

        if await self._wait_for_exit(process, self.grace_period):
            leftovers = [p for p in descendants if p.is_running()]
            if leftovers:
                await asyncio.to_thread(kill_processes, leftovers, self.kill_timeout)
            return

        logger.warning(
            f"Dev server did not exit within {self.grace_period:g}s; killing process tree"
        )
        if tracked is not None:
            await asyncio.to_thread(
                kill_tree, tracked, known_descendants=descendants, timeout=self.kill_timeout
            )
        else:
            try:
                process.kill()
            except ProcessLookupError:
                pass

        if not await self._wait_for_exit(process, self.kill_timeout):
            logger.error(f"Dev server pid={process.pid} is still running after kill")

    @staticmethod
    async def _wait_for_exit(process: asyncio.subprocess.Process, timeout: float) -> bool:
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _cancel_probe(self) -> None:
        if self._probe_task is not None and not self._probe_task.done():
            self._probe_task.cancel()
        self._probe_task = None

    # === Exit hook ===

    def _register_atexit(self) -> None:
        if not self._atexit_registered:
            atexit.register(self._kill_at_exit)
            self._atexit_registered = True

    def _unregister_atexit(self) -> None:
        if self._atexit_registered:
            atexit.unregister(self._kill_at_exit)
            self._atexit_registered = False

    def _kill_at_exit(self) -> None:
        """Best-effort cleanup when the host exits without calling `stop()`."""
        tracked = self._tracked
        if tracked is None or not is_alive(tracked):
            return
        descendants = list_descendants(tracked)
        send_graceful_signal(tracked)
        kill_tree(tracked, known_descendants=descendants, timeout=1.0)
