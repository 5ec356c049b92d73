"""
Event names used on the wire.

Server-to-client names are past tense (something happened); client-to-server
names are requests (please change something).
"""

from enum import Enum


class EventName(str, Enum):
    """Outbound event names, shared by the socket and the fallback poller."""

    ORDER_STATUS_UPDATED = "order.status.updated"
    TABLE_STATUS_UPDATED = "table.status.updated"
    KITCHEN_TICKET_NEW = "kitchen.ticket.new"


class InboundEventName(str, Enum):
    """Inbound operations accepted by the gateway."""

    ORDER_STATUS_UPDATE = "order.status.update"
    TABLE_STATUS_UPDATE = "table.status.update"


# Set for O(1) lookup
VALID_EVENT_NAMES: frozenset[str] = frozenset(e.value for e in EventName)
VALID_INBOUND_NAMES: frozenset[str] = frozenset(e.value for e in InboundEventName)
