"""
WebSocket Gateway Constants.

Close codes, heartbeat frames, room prefixes and the origin allow-list.
"""

from enum import IntEnum
from typing import Any, Final

from shared.config.logging import get_logger

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PONG_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "FRAME_ACK",
    "FRAME_PING",
    "ROOM_BRANCH",
    "ROOM_ROLE",
    "ROOM_USER",
    "DEFAULT_ALLOWED_ORIGINS",
    "allowed_origins_list",
    "validate_websocket_origin",
]

logger = get_logger(__name__)


class WSCloseCode(IntEnum):
    """
    Close codes sent by the gateway.

    1xxx are RFC 6455 codes. 4000 means "no credential, log in" and 4001
    means "credential rejected, refresh it"; clients branch on the two.
    """

    NORMAL = 1000
    GOING_AWAY = 1001  # shutdown
    POLICY_VIOLATION = 1008  # outbox overflow
    MESSAGE_TOO_BIG = 1009
    SERVER_ERROR = 1011

    TOKEN_REQUIRED = 4000
    AUTH_FAILED = 4001  # invalid, expired or verification timed out
    FORBIDDEN = 4003  # origin


class WSConstants:
    """Per-connection limits not exposed as settings."""

    # Frames queued for one client before it is considered stalled and dropped
    OUTBOX_SIZE: Final[int] = 256

    # Bound on a single socket write by the connection's writer task
    WRITER_SEND_TIMEOUT: Final[float] = 5.0


# Heartbeats, answered in the form they arrived
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PONG_PLAIN: Final[str] = "pong"
MSG_PING_JSON: Final[str] = '{"type":"ping"}'
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'

FRAME_ACK: Final[str] = "ack"
FRAME_PING: Final[str] = "ping"

ROOM_BRANCH: Final[str] = "branch"
ROOM_ROLE: Final[str] = "role"
ROOM_USER: Final[str] = "user"

# Dashboard dev server
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)


def allowed_origins_list(settings: Any) -> list[str]:
    """Parse `allowed_origins` (comma-separated) or fall back to the dev defaults."""
    configured = getattr(settings, "allowed_origins", "") or ""
    origins = [o.strip() for o in configured.split(",") if o.strip()]
    return origins or list(DEFAULT_ALLOWED_ORIGINS)


def validate_websocket_origin(origin: str | None, settings: Any) -> bool:
    """
    Check the handshake Origin header.

    A missing header (CLI, tests, native clients) passes everywhere except
    production.
    """
    if not origin:
        if getattr(settings, "environment", "production") == "production":
            logger.warning("Origin header missing in production, rejecting")
            return False
        return True

    allowed = allowed_origins_list(settings)
    if origin in allowed:
        return True

    logger.warning("Origin not in allow-list", origin=origin, allowed_count=len(allowed))
    return False
