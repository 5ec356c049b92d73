"""
Shared event shapes.

Used by the gateway (to broadcast), the socket client (to parse) and the
fallback poller (to synthesize), so all three agree on one format.
"""

from shared.events.event_types import EventName, InboundEventName
from shared.events.records import OrderItemRecord, OrderRecord, TableRecord
from shared.events.schema import (
    Actor,
    BroadcastEvent,
    KitchenTicketNew,
    OrderStatusUpdated,
    TableStatusUpdated,
    TicketItem,
    isoformat_utc,
    order_status_events,
    parse_event,
    table_status_events,
)

__all__ = [
    "EventName",
    "InboundEventName",
    "OrderItemRecord",
    "OrderRecord",
    "TableRecord",
    "Actor",
    "BroadcastEvent",
    "KitchenTicketNew",
    "OrderStatusUpdated",
    "TableStatusUpdated",
    "TicketItem",
    "isoformat_utc",
    "order_status_events",
    "parse_event",
    "table_status_events",
]
