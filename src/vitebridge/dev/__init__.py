"""Dev server supervision and proxying for vitebridge."""

from vitebridge.dev.errors import (
    AlreadyInUse,
    MissingWorkingDir,
    SpawnFailure,
    StartCancelled,
    StartError,
    StartTimeout,
)
from vitebridge.dev.hmr import HmrUpgradeClassifier, is_websocket_upgrade
from vitebridge.dev.mode import ModeDetector, is_development_mode
from vitebridge.dev.proxy import ReverseProxyRouter
from vitebridge.dev.readiness import ReadinessDetector, strip_ansi
from vitebridge.dev.server import create_app, run_dev_server
from vitebridge.dev.supervisor import ProcessSupervisor

__all__ = [
    "AlreadyInUse",
    "HmrUpgradeClassifier",
    "MissingWorkingDir",
    "ModeDetector",
    "ProcessSupervisor",
    "ReadinessDetector",
    "ReverseProxyRouter",
    "SpawnFailure",
    "StartCancelled",
    "StartError",
    "StartTimeout",
    "create_app",
    "is_development_mode",
    "is_websocket_upgrade",
    "run_dev_server",
    "strip_ansi",
]
