"""
Server-side connection.

One Connection per admitted socket. Frames are never written to the socket
directly by broadcasters or handlers: they are put on the connection's
bounded outbox and a single writer task sends them in enqueue order. That
keeps enqueueing free of suspension points and gives each client a strict
per-connection ordering.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Callable, TYPE_CHECKING

from starlette.websockets import WebSocketState

from shared.config.logging import get_logger
from shared.infrastructure.correlation import bind_connection_id, new_connection_id, reset_connection_id
from ws_gateway.components.core.constants import WSCloseCode, WSConstants

if TYPE_CHECKING:
    from fastapi import WebSocket

    from shared.security.auth import Identity

logger = get_logger(__name__)

# Sentinel that tells the writer to stop after draining
_STOP = None


def is_ws_connected(ws: "WebSocket") -> bool:
    """
    Check if WebSocket is in connected state before sending.

    Starlette exposes no transitional states, so a socket may appear
    connected briefly after a disconnect was initiated.
    """
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"


class Connection:
    """
    One authenticated client socket.

    Attributes:
        id: Unique connection id (also bound into log records).
        identity: Verified identity, fixed for the connection's lifetime.
        state: Liveness state.

    Room membership is owned by the RoomRouter; `rooms` is set by it.
    """

    def __init__(
        self,
        websocket: "WebSocket",
        identity: "Identity",
        connection_id: str | None = None,
        outbox_size: int = WSConstants.OUTBOX_SIZE,
        send_timeout: float = WSConstants.WRITER_SEND_TIMEOUT,
        on_dead: Callable[["Connection"], None] | None = None,
    ) -> None:
        self.id = connection_id or new_connection_id()
        self.identity = identity
        self.websocket = websocket
        self.state = ConnectionState.CONNECTED
        self.rooms: frozenset[str] = frozenset()

        self._outbox: asyncio.Queue[str | None] = asyncio.Queue(maxsize=outbox_size)
        self._send_timeout = send_timeout
        self._on_dead = on_dead
        self._writer: asyncio.Task | None = None
        self._close_task: asyncio.Task | None = None

        self.frames_sent = 0
        self.dead_reason: str | None = None

    def __repr__(self) -> str:
        return f"Connection(id={self.id[:8]}, user={self.identity.id}, state={self.state.value})"

    @property
    def is_alive(self) -> bool:
        return self.state == ConnectionState.CONNECTED and is_ws_connected(self.websocket)

    @property
    def pending(self) -> int:
        """Frames waiting in the outbox."""
        return self._outbox.qsize()

    # =========================================================================
    # Outbound
    # =========================================================================

    def enqueue(self, frame: str) -> bool:
        """
        Hand a serialized frame to the writer. Never awaits, never raises.

        Returns False if the connection is not alive or its outbox is full;
        a full outbox means the client stopped reading and the connection
        is marked dead.
        """
        if not self.is_alive:
            return False
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self.mark_dead("outbox_full", close_code=WSCloseCode.POLICY_VIOLATION)
            return False
        return True

    def start_writer(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._writer_loop(), name=f"ws_writer_{self.id[:8]}")

    async def _writer_loop(self) -> None:
        token = bind_connection_id(self.id)
        try:
            while True:
                frame = await self._outbox.get()
                if frame is _STOP:
                    break
                # Re-check liveness: the socket may have gone away since enqueue
                if self.state == ConnectionState.DISCONNECTED or not is_ws_connected(self.websocket):
                    break
                try:
                    await asyncio.wait_for(self.websocket.send_text(frame), timeout=self._send_timeout)
                    self.frames_sent += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.debug("Send failed, dropping connection", error=type(e).__name__)
                    self.mark_dead("send_failed", close_socket=False)
                    break
        finally:
            reset_connection_id(token)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def mark_dead(
        self,
        reason: str,
        close_code: int = WSCloseCode.GOING_AWAY,
        close_socket: bool = True,
    ) -> None:
        """
        Take the connection out of service. Idempotent.

        Notifies the owner (which removes it from every room) and, unless
        the transport is already broken, closes the socket so the receive
        loop ends as well.
        """
        if self.state == ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        self.dead_reason = reason
        logger.debug("Connection marked dead", connection=self.id[:8], reason=reason)

        if self._on_dead is not None:
            self._on_dead(self)

        if self._writer is not None and self._writer is not asyncio.current_task():
            self._writer.cancel()

        if close_socket and self._close_task is None:
            self._close_task = asyncio.create_task(self._close_socket(close_code, reason))

    async def _close_socket(self, code: int, reason: str) -> None:
        # The peer may already be gone; nothing useful to do about it
        with contextlib.suppress(RuntimeError, ConnectionError, OSError):
            if self.websocket.application_state == WebSocketState.CONNECTED:
                await self.websocket.close(code=code, reason=reason)

    async def drain_and_stop(self, timeout: float = 1.0) -> None:
        """
        Stop the writer after it has sent what is already queued.

        Used on normal disconnect and server shutdown.
        """
        if self.state == ConnectionState.CONNECTED:
            self.state = ConnectionState.DISCONNECTING

        writer = self._writer
        if writer is not None and not writer.done():
            try:
                self._outbox.put_nowait(_STOP)
                await asyncio.wait_for(asyncio.shield(writer), timeout=timeout)
            except (asyncio.QueueFull, asyncio.TimeoutError):
                writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

        if self._close_task is not None:
            await asyncio.gather(self._close_task, return_exceptions=True)

        self.state = ConnectionState.DISCONNECTED
