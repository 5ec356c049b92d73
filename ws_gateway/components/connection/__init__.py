"""
Connection management components.

Server-side connection with its writer, the room membership index and
heartbeat replies.
"""

from ws_gateway.components.connection.connection import Connection, ConnectionState, is_ws_connected
from ws_gateway.components.connection.index import (
    RoomRouter,
    branch_room,
    role_room,
    rooms_for,
    user_room,
)
from ws_gateway.components.connection.heartbeat import handle_heartbeat, pong_for

__all__ = [
    "Connection",
    "ConnectionState",
    "is_ws_connected",
    "RoomRouter",
    "branch_room",
    "role_room",
    "rooms_for",
    "user_room",
    "handle_heartbeat",
    "pong_for",
]
