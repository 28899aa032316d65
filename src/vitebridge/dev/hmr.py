"""Detection of HMR WebSocket upgrade requests.

Upgrades are not tunnelled: the proxy only answers with a protocol switch and
the Vite client script reconnects to the dev server port directly.
"""

from __future__ import annotations

from collections.abc import Mapping


def is_websocket_upgrade(headers: Mapping[str, str]) -> bool:
    """True iff `Upgrade` mentions websocket and `Connection` mentions upgrade.

    Both checks are case-insensitive; `headers` must do case-insensitive key
    lookups (starlette and httpx header objects do).
    """
    upgrade = headers.get("upgrade")
    connection = headers.get("connection")
    return (
        upgrade is not None
        and "websocket" in upgrade.lower()
        and connection is not None
        and "upgrade" in connection.lower()
    )


class HmrUpgradeClassifier:
    """Classifier collaborator for the router; swap it out to change detection."""

    def classify(self, headers: Mapping[str, str]) -> bool:
        return is_websocket_upgrade(headers)
