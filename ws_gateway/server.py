"""
Gateway Server.

Owns one Room Router, one Broadcaster and one Event Gateway. Constructed
explicitly (no module-level instance) so tests can run several isolated
servers side by side; the FastAPI app is bound to one by create_app().

Usage:
    server = GatewayServer(store=SqlAlchemyStatusStore.from_url())
    app = create_app(server)
"""

from __future__ import annotations

import asyncio
import time
from functools import partial
from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger
from shared.config.settings import Settings, get_settings
from shared.security.auth import verify_token
from ws_gateway import __version__
from ws_gateway.components.auth.gate import ConnectionGate, Verifier
from ws_gateway.components.connection.connection import Connection
from ws_gateway.components.connection.index import RoomRouter
from ws_gateway.components.core.constants import WSCloseCode
from ws_gateway.components.events.router import EventGateway
from ws_gateway.components.metrics.collector import MetricsCollector
from ws_gateway.core.connection.broadcaster import Broadcaster

if TYPE_CHECKING:
    from fastapi import WebSocket

    from shared.events.schema import BroadcastEvent
    from shared.infrastructure.status_store import StatusStore
    from shared.security.auth import Identity

logger = get_logger(__name__)

SERVICE_NAME = "ws-gateway"


class GatewayServer:
    """
    The persistent-connection server.

    Only register()/unregister() (and a connection being marked dead)
    change room membership.
    """

    def __init__(
        self,
        store: "StatusStore",
        settings: Settings | None = None,
        verifier: Verifier | None = None,
        check_origin: bool = True,
    ) -> None:
        """
        Args:
            store: CRUD collaborator that applies status changes.
            settings: Settings (defaults to the cached application settings).
            verifier: Token verifier (defaults to verify_token bound to settings).
            check_origin: Whether the gate validates the Origin header.
        """
        self.settings = settings or get_settings()

        if verifier is None:
            verifier = partial(
                verify_token,
                secret=self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                leeway=self.settings.jwt_leeway_seconds,
            )

        self.metrics = MetricsCollector()
        self.router = RoomRouter()
        self.broadcaster = Broadcaster(self.router, self.metrics)
        self.events = EventGateway(store, self.broadcaster, self.metrics)
        self.gate = ConnectionGate(
            verifier=verifier,
            timeout=self.settings.ws_auth_timeout,
            settings=self.settings if check_origin else None,
        )

        self._started_at: float | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    @property
    def uptime(self) -> float:
        """Seconds since start(), 0 when stopped."""
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Gateway server already running")
            return
        self._started_at = time.monotonic()
        logger.info("Gateway server started", version=__version__)

    async def stop(self, drain_timeout: float = 1.0) -> None:
        """Close every connection and stop accepting new ones."""
        if not self.is_running:
            return
        self._started_at = None

        connections = self.router.connections()
        for connection in connections:
            connection.mark_dead("server_shutdown", close_code=WSCloseCode.GOING_AWAY)
        if connections:
            await asyncio.gather(
                *(c.drain_and_stop(timeout=drain_timeout) for c in connections),
                return_exceptions=True,
            )

        logger.info("Gateway server stopped", closed=len(connections))

    # =========================================================================
    # Connections
    # =========================================================================

    def register(
        self,
        websocket: "WebSocket",
        identity: "Identity",
        connection_id: str | None = None,
    ) -> Connection:
        """
        Create a connection for an admitted socket and join its rooms.

        Synchronous: the connection becomes visible to broadcasts fully
        joined, in one step.
        """
        connection = Connection(
            websocket,
            identity,
            connection_id=connection_id,
            outbox_size=self.settings.ws_outbox_size,
            on_dead=self._on_dead,
        )
        self.router.join(connection)
        connection.start_writer()
        self.metrics.record_accepted()
        return connection

    async def unregister(self, connection: Connection) -> None:
        """Leave every room, then flush and stop the writer. Idempotent."""
        self.router.leave(connection)
        await connection.drain_and_stop()
        self.metrics.record_closed()

    def _on_dead(self, connection: Connection) -> None:
        self.router.leave(connection)

    # =========================================================================
    # Publishing
    # =========================================================================

    def broadcast(self, room: str, event: "BroadcastEvent") -> int:
        """Deliver an event produced outside the socket (e.g. a REST handler)."""
        return self.broadcaster.deliver(room, event)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": __version__,
            "uptime": round(self.uptime, 3),
            "connections": self.router.connection_count,
            "rooms": self.router.room_count,
        }

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.router.get_stats(),
            "delivery": self.broadcaster.get_stats(),
            "metrics": self.metrics.get_snapshot(),
        }
