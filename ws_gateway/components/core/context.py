"""
Per-connection audit context.

Holds what the audit trail needs to know about one socket (endpoint,
connection id, origin and, once admitted, the identity) so each audit call
is a one-liner.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from shared.config.logging import audit_ws_connection, mask_user_id

if TYPE_CHECKING:
    from fastapi import WebSocket

    from shared.security.auth import Identity


# C0/C1 controls, zero-width characters, bidi embeddings and isolates, BOM
_UNSAFE_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]")


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Make a client-supplied string safe to put in a log line.

    The value is cut to max_length (marked with "..."), stripped of control
    and direction-override characters, and has quotes and backslashes
    escaped so it cannot forge structured fields.
    """
    clean = _UNSAFE_CHARS.sub("", data[:max_length]).replace("\\", "\\\\").replace('"', '\\"')
    return clean + "..." if len(data) > max_length else clean


@dataclass
class WebSocketContext:
    """
    Usage:
        ctx = WebSocketContext.from_websocket(websocket, "/ws", connection_id)
        ctx.audit("AUTH_FAILED", reason="token_invalid")
        ctx.bind_identity(identity)
        ctx.audit("CONNECT", rooms=[...])
    """

    endpoint: str
    connection_id: str
    origin: str | None = None
    identity: Identity | None = None

    @classmethod
    def from_websocket(cls, websocket: WebSocket, endpoint: str, connection_id: str) -> WebSocketContext:
        return cls(endpoint=endpoint, connection_id=connection_id, origin=websocket.headers.get("origin"))

    def bind_identity(self, identity: Identity) -> None:
        self.identity = identity

    @property
    def identifier(self) -> str:
        """Short label for log lines: the masked user, or the connection."""
        if self.identity is not None:
            return f"user:{mask_user_id(self.identity.id)}"
        return f"conn:{self.connection_id[:8]}"

    def audit(self, event_type: str, **extra: Any) -> None:
        fields: dict[str, Any] = {
            "connection": self.connection_id[:8],
            "origin": sanitize_log_data(self.origin) if self.origin else None,
        }
        if self.identity is not None:
            fields.update(
                user_id=mask_user_id(self.identity.id),
                role=self.identity.role,
                branch_id=self.identity.branch_id,
            )
        fields.update(extra)
        audit_ws_connection(event_type, self.endpoint, **fields)
