"""
Core WebSocket Gateway components: constants and audit context.
"""

from ws_gateway.components.core.constants import WSCloseCode, WSConstants
from ws_gateway.components.core.context import WebSocketContext, sanitize_log_data

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "WebSocketContext",
    "sanitize_log_data",
]
