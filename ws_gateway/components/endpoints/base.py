"""
WebSocket Endpoint.

Runs one socket through its complete lifecycle:
1. Connection Gate (no application frame is read before it admits)
2. Register: create the Connection and join its rooms
3. Message loop
4. Unregister on disconnect

Rejected sockets are accepted and immediately closed with the gate's close
code and reason, so browsers can read why they were turned away.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from shared.config.logging import get_logger
from shared.infrastructure.correlation import bind_connection_id, new_connection_id, reset_connection_id
from ws_gateway.components.connection.heartbeat import handle_heartbeat
from ws_gateway.components.core.constants import WSCloseCode
from ws_gateway.components.core.context import WebSocketContext, sanitize_log_data
from ws_gateway.components.events.router import MSG_INVALID_FORMAT
from ws_gateway.components.events.types import Ack

if TYPE_CHECKING:
    from ws_gateway.components.connection.connection import Connection
    from ws_gateway.server import GatewayServer

logger = get_logger(__name__)


class GatewayEndpoint:
    """
    Handler for the `/ws` endpoint.

    Usage:
        endpoint = GatewayEndpoint(websocket, server)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        server: "GatewayServer",
        endpoint_name: str = "/ws",
    ) -> None:
        self.websocket = websocket
        self.server = server
        self.endpoint_name = endpoint_name
        self.receive_timeout = server.settings.ws_receive_timeout
        self.max_message_size = server.settings.ws_max_message_size

        self.connection_id = new_connection_id()
        self.context = WebSocketContext.from_websocket(websocket, endpoint_name, self.connection_id)
        self.connection: Connection | None = None

    async def run(self) -> None:
        """Main entry point - run the socket until it closes."""
        token = bind_connection_id(self.connection_id)
        try:
            await self._run()
        finally:
            reset_connection_id(token)

    async def _run(self) -> None:
        # Step 1: Gate
        decision = await self.server.gate.admit(self.websocket)
        await self.websocket.accept()

        if not decision.admitted:
            self.context.audit("AUTH_FAILED", reason=decision.audit_reason)
            self.server.metrics.record_rejected(decision.audit_reason)
            await self.websocket.close(code=decision.close_code, reason=decision.reason)
            return

        if not self.server.is_running:
            await self.websocket.close(code=WSCloseCode.GOING_AWAY, reason="Server shutting down")
            return

        # Step 2: Register
        self.context.bind_identity(decision.identity)
        self.connection = self.server.register(self.websocket, decision.identity, self.connection_id)
        self.context.audit("CONNECT", rooms=list(self.connection.rooms))

        # Step 3: Message loop
        reason = "client_disconnect"
        try:
            reason = await self._message_loop(self.connection)
        except WebSocketDisconnect:
            pass
        except Exception:
            reason = "server_error"
            logger.error("Unexpected error in message loop", exc_info=True)
            await self._close(WSCloseCode.SERVER_ERROR, "Internal error")
        finally:
            # Step 4: Unregister
            await self.server.unregister(self.connection)
            self.context.audit("DISCONNECT", reason=reason)

    async def _message_loop(self, connection: "Connection") -> str:
        """
        Receive and process frames one at a time.

        Returns the reason the loop ended.
        """
        while True:
            data = await self._receive_with_timeout()
            if data is None:
                logger.info(
                    "Connection timed out (no messages)",
                    identifier=self.context.identifier,
                    timeout=self.receive_timeout,
                )
                self.server.metrics.record_idle_timeout()
                await self._close(WSCloseCode.NORMAL, "Connection timeout")
                return "idle_timeout"

            if len(data.encode("utf-8")) > self.max_message_size:
                logger.warning(
                    "Message too large, closing connection",
                    identifier=self.context.identifier,
                    size=len(data),
                    max_size=self.max_message_size,
                )
                self.server.metrics.record_oversized()
                await self._close(WSCloseCode.MESSAGE_TOO_BIG, "Message too large")
                return "message_too_big"

            if not connection.is_alive:
                return connection.dead_reason or "connection_dead"

            await self.handle_message(connection, data)

    async def handle_message(self, connection: "Connection", data: str) -> None:
        """Heartbeats are answered here; everything else goes to the event gateway."""
        if handle_heartbeat(connection, data):
            return

        try:
            frame: Any = json.loads(data)
        except ValueError:
            logger.debug("Non-JSON frame received", message=sanitize_log_data(data))
            connection.enqueue(Ack.fail(MSG_INVALID_FORMAT).to_json(None))
            return

        if handle_heartbeat(connection, data, frame):
            return

        await self.server.events.handle_frame(connection, frame)

    async def _receive_with_timeout(self) -> str | None:
        """
        Receive one frame with timeout.

        Returns:
            Frame text (binary frames are decoded as UTF-8), or None on timeout.

        Raises:
            WebSocketDisconnect: The client went away.
        """
        try:
            message = await asyncio.wait_for(self.websocket.receive(), timeout=self.receive_timeout)
        except asyncio.TimeoutError:
            return None

        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", WSCloseCode.NORMAL))
        if message.get("text") is not None:
            return message["text"]
        return (message.get("bytes") or b"").decode("utf-8", errors="replace")

    async def _close(self, code: int, reason: str) -> None:
        if self.websocket.application_state == WebSocketState.CONNECTED:
            try:
                await self.websocket.close(code=code, reason=reason)
            except RuntimeError:
                # Already closed by the peer or the connection's writer
                logger.debug("Close after peer disconnect", code=code)
