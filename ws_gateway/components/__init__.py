"""
WebSocket Gateway Components.

Organized into domain-specific modules:
- core/       - Constants and audit context
- auth/       - Connection Gate
- connection/ - Connection, Room Router, heartbeat
- events/     - Inbound operation models and the Event Gateway
- endpoints/  - The `/ws` endpoint lifecycle
- metrics/    - Counters for health and diagnostics
"""

from ws_gateway.components.core.constants import (
    WSCloseCode,
    WSConstants,
    validate_websocket_origin,
)
from ws_gateway.components.core.context import WebSocketContext, sanitize_log_data
from ws_gateway.components.auth.gate import ConnectionGate, GateDecision, extract_token
from ws_gateway.components.connection.connection import Connection, ConnectionState, is_ws_connected
from ws_gateway.components.connection.index import RoomRouter, rooms_for
from ws_gateway.components.connection.heartbeat import handle_heartbeat
from ws_gateway.components.events.types import Ack, INBOUND_MODELS, OrderStatusUpdate, TableStatusUpdate
from ws_gateway.components.events.router import EventGateway
from ws_gateway.components.metrics.collector import MetricsCollector

__all__ = [
    # Core
    "WSCloseCode",
    "WSConstants",
    "validate_websocket_origin",
    "WebSocketContext",
    "sanitize_log_data",
    # Auth
    "ConnectionGate",
    "GateDecision",
    "extract_token",
    # Connection
    "Connection",
    "ConnectionState",
    "is_ws_connected",
    "RoomRouter",
    "rooms_for",
    "handle_heartbeat",
    # Events
    "Ack",
    "INBOUND_MODELS",
    "OrderStatusUpdate",
    "TableStatusUpdate",
    "EventGateway",
    # Metrics
    "MetricsCollector",
]
