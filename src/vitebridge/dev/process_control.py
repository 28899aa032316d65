"""Cross-platform process tracking and process-tree shutdown helpers.

Design goals:
- Only stop processes we started (tracked by pid + create_time).
- Prefer graceful shutdown (SIGTERM / CTRL_BREAK_EVENT), then escalate.
- Kill every descendant before the root so nothing is orphaned.
- Work on POSIX + Windows (best-effort graceful on Windows).
"""

from __future__ import annotations

import os
import signal
import socket

import psutil

from vitebridge.dev.logging import DevLogComponent, get_logger
from vitebridge.models import TrackedProcess

logger = get_logger(DevLogComponent.PROCESS_CONTROL)


def _get_pgid_safe(pid: int) -> int | None:
    # Windows doesn't have pgid.
    if os.name == "nt":
        return None
    try:
        return os.getpgid(pid)
    except OSError:
        return None


def track_process(pid: int) -> TrackedProcess | None:
    """Create a TrackedProcess for a running PID, recording create_time and pgid."""
    try:
        proc = psutil.Process(pid)
        return TrackedProcess(
            pid=pid,
            create_time=float(proc.create_time()),
            pgid=_get_pgid_safe(pid),
        )
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


def validate_tracked(tp: TrackedProcess) -> psutil.Process | None:
    """Return a psutil.Process only if PID matches create_time (prevents PID reuse bugs)."""
    if tp.pid is None or tp.create_time is None:
        return None
    try:
        proc = psutil.Process(tp.pid)
        if abs(float(proc.create_time()) - float(tp.create_time)) > 0.001:
            return None
        return proc
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


def is_alive(tp: TrackedProcess) -> bool:
    """Non-blocking liveness check; zombies count as dead."""
    proc = validate_tracked(tp)
    if proc is None:
        return False
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def list_descendants(tp: TrackedProcess) -> list[psutil.Process]:
    proc = validate_tracked(tp)
    if proc is None:
        return []
    try:
        return proc.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def _owns_group(pgid: int | None) -> bool:
    # Never signal our own process group.
    return pgid is not None and os.name != "nt" and pgid != os.getpgrp()


def send_graceful_signal(tp: TrackedProcess) -> None:
    """Ask the tracked process (and its group on POSIX) to shut down."""
    if os.name == "nt":
        if tp.pid is None or validate_tracked(tp) is None:
            return
        # CTRL_BREAK_EVENT requires the process to run in its own process group.
        try:
            os.kill(tp.pid, signal.CTRL_BREAK_EVENT)  # type: ignore[attr-defined]
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed for pid={tp.pid}: {e}")
            proc = validate_tracked(tp)
            if proc is not None:
                try:
                    proc.terminate()
                except psutil.NoSuchProcess:
                    pass
        return

    if _owns_group(tp.pgid):
        try:
            os.killpg(tp.pgid, signal.SIGTERM)  # type: ignore[arg-type]
            return
        except (ProcessLookupError, PermissionError):
            pass

    proc = validate_tracked(tp)
    if proc is not None:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass


def kill_processes(procs: list[psutil.Process], timeout: float) -> list[psutil.Process]:
    """SIGKILL the given processes; return those still alive after `timeout`."""
    for p in procs:
        try:
            p.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    if not procs:
        return []
    _, alive = psutil.wait_procs(procs, timeout=timeout)
    return alive


def kill_tree(
    tp: TrackedProcess,
    *,
    known_descendants: list[psutil.Process] | None = None,
    timeout: float = 5.0,
) -> bool:
    """Force-kill every descendant, then the root itself.

    `known_descendants` should be captured while the root was still alive:
    once it exits its children are re-parented and can no longer be found
    by walking the tree.

    Returns True when nothing from the tree is left running.
    """
    root = validate_tracked(tp)
    descendants: dict[int, psutil.Process] = {p.pid: p for p in known_descendants or []}
    for p in list_descendants(tp):
        descendants.setdefault(p.pid, p)

    alive = kill_processes(list(descendants.values()), timeout=timeout)

    # Catch anything spawned into the group that we never saw in the tree.
    if _owns_group(tp.pgid):
        try:
            os.killpg(tp.pgid, signal.SIGKILL)  # type: ignore[arg-type]
        except (ProcessLookupError, PermissionError):
            pass

    if root is not None:
        alive += kill_processes([root], timeout=timeout)

    if alive:
        logger.warning(
            f"Process tree of pid={tp.pid} still has live members: {[p.pid for p in alive]}"
        )
    return not alive


def is_port_listening(host: str, port: int, timeout: float = 0.2) -> bool:
    """Return True if a TCP connect to host:port succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
