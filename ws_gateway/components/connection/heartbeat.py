"""
Heartbeat handling for the WebSocket Gateway.

Clients keep their connection alive with either the plain text frame
`ping` or the JSON frame `{"type":"ping"}`. Both are answered in kind and
never reach the event gateway. Idle detection is done by the receive
timeout in the endpoint, so any frame counts as activity.
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

from ws_gateway.components.core.constants import (
    FRAME_PING,
    MSG_PING_JSON,
    MSG_PING_PLAIN,
    MSG_PONG_JSON,
    MSG_PONG_PLAIN,
)

if TYPE_CHECKING:
    from ws_gateway.components.connection.connection import Connection


def pong_for(data: str, parsed: Any = None) -> str | None:
    """
    Return the reply for a heartbeat frame, or None if it is not one.

    Args:
        data: The raw text frame.
        parsed: The frame already decoded as JSON, if the caller has it.
    """
    if data == MSG_PING_PLAIN:
        return MSG_PONG_PLAIN
    if data == MSG_PING_JSON:
        return MSG_PONG_JSON
    if isinstance(parsed, dict) and parsed.get("type") == FRAME_PING:
        return MSG_PONG_JSON
    return None


def handle_heartbeat(connection: "Connection", data: str, parsed: Any = None) -> bool:
    """
    Answer a heartbeat through the connection's outbox.

    Returns:
        True if the frame was a heartbeat and was handled, False otherwise.
    """
    reply = pong_for(data, parsed)
    if reply is None:
        return False
    connection.enqueue(reply)
    return True
