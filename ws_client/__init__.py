"""
Realtime client: persistent gateway connection with polling fallback.

- connection_manager.py: socket lifecycle, backoff reconnection, acks
- fallback_poller.py: snapshot diffing while the socket is unavailable
- sources.py: HTTP snapshot source for the poller
- feed.py: merged event stream for UI code
- kitchen_tickets.py: deduplicated kitchen ticket board
- actions.py: status updates over the socket or HTTP
"""

from ws_client.connection_manager import (
    AckResult,
    ConnectionManager,
    ConnectionState,
    Diagnostics,
    ErrorKind,
)
from ws_client.fallback_poller import FallbackPoller, Snapshot
from ws_client.sources import HttpSnapshotSource
from ws_client.kitchen_tickets import KitchenTicket, KitchenTicketBoard
from ws_client.feed import RealtimeFeed, create_realtime_feed
from ws_client.actions import StatusActions

__all__ = [
    "AckResult",
    "ConnectionManager",
    "ConnectionState",
    "Diagnostics",
    "ErrorKind",
    "FallbackPoller",
    "Snapshot",
    "HttpSnapshotSource",
    "KitchenTicket",
    "KitchenTicketBoard",
    "RealtimeFeed",
    "create_realtime_feed",
    "StatusActions",
]
