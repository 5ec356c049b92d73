"""
Event Schema.

One set of payload models for every outbound event. The gateway serializes
them, the socket client and the fallback poller both produce BroadcastEvent
instances from them, so consumers never need to know which transport an
event arrived on.

Wire frame layout:
    {"type": "order.status.updated", "data": {...camelCase payload...}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from shared.config.constants import BEGIN_PREPARATION_STATUS, DEFAULT_ACTOR_NAME, TicketStatus
from shared.config.logging import get_logger
from shared.events.event_types import EventName
from shared.events.records import OrderRecord, TableRecord

logger = get_logger(__name__)


def isoformat_utc(value: datetime | None = None) -> str:
    """
    Format a timestamp as ISO-8601 UTC with millisecond precision.

    Naive datetimes (as SQLite hands them back) are taken to be UTC.
    """
    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# Payload models
# =============================================================================


class EventPayload(BaseModel):
    """Base for payloads: camelCase on the wire, snake_case in Python."""

    model_config = {"populate_by_name": True, "frozen": True}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Actor(EventPayload):
    """Who triggered a change."""

    id: str
    name: str = DEFAULT_ACTOR_NAME


class OrderStatusUpdated(EventPayload):
    order_id: str = Field(alias="orderId")
    order_number: str = Field(alias="orderNumber")
    status: str
    updated_at: str = Field(alias="updatedAt")
    # Absent when the change was detected by polling
    updated_by: Actor | None = Field(default=None, alias="updatedBy")


class TableStatusUpdated(EventPayload):
    table_id: str = Field(alias="tableId")
    status: str
    updated_at: str = Field(alias="updatedAt")


class TicketItem(EventPayload):
    id: str
    name: str
    quantity: int = 1
    notes: str | None = None


class KitchenTicketNew(EventPayload):
    order_id: str = Field(alias="orderId")
    order_number: str = Field(alias="orderNumber")
    status: str = TicketStatus.NEW
    items: list[TicketItem] = Field(default_factory=list)
    table_number: int | None = Field(default=None, alias="tableNumber")
    created_at: str = Field(alias="createdAt")


PAYLOAD_MODELS: dict[EventName, type[EventPayload]] = {
    EventName.ORDER_STATUS_UPDATED: OrderStatusUpdated,
    EventName.TABLE_STATUS_UPDATED: TableStatusUpdated,
    EventName.KITCHEN_TICKET_NEW: KitchenTicketNew,
}


# =============================================================================
# Event envelope
# =============================================================================


@dataclass(frozen=True, slots=True)
class BroadcastEvent:
    """
    Immutable, timestamped, typed event plus the originating actor id.

    Events are never stored; they live for the duration of a broadcast
    call or a subscriber dispatch.
    """

    name: EventName
    payload: EventPayload
    actor_id: str | None = None
    occurred_at: str = field(default_factory=isoformat_utc)

    @property
    def entity_id(self) -> str:
        """Id of the order or table the event is about."""
        return getattr(self.payload, "order_id", None) or getattr(self.payload, "table_id")

    def to_frame(self) -> dict[str, Any]:
        return {"type": self.name.value, "data": self.payload.to_wire()}

    def to_json(self) -> str:
        """Serialize to the JSON text frame sent to clients."""
        return json.dumps(self.to_frame(), ensure_ascii=False)


def parse_event(event_type: str, data: Any) -> BroadcastEvent | None:
    """
    Rebuild an event from a received frame.

    Returns None for unknown event names or payloads that do not match the
    model; those are logged and skipped by the caller.
    """
    try:
        name = EventName(event_type)
    except ValueError:
        return None

    try:
        payload = PAYLOAD_MODELS[name].model_validate(data)
    except ValidationError as e:
        logger.warning("Discarding malformed event", event_type=event_type, errors=e.error_count())
        return None

    updated_by = getattr(payload, "updated_by", None)
    return BroadcastEvent(name=name, payload=payload, actor_id=updated_by.id if updated_by else None)


# =============================================================================
# Builders
# =============================================================================


def order_status_events(
    order: OrderRecord,
    actor: Actor | None = None,
) -> list[BroadcastEvent]:
    """
    Events caused by an order reaching its current status.

    Always an order.status.updated; when the status begins preparation a
    kitchen.ticket.new for the same order follows it.
    """
    occurred_at = isoformat_utc(order.updated_at)
    actor_id = actor.id if actor else None

    events = [
        BroadcastEvent(
            name=EventName.ORDER_STATUS_UPDATED,
            payload=OrderStatusUpdated(
                order_id=order.id,
                order_number=order.order_number,
                status=order.status,
                updated_at=occurred_at,
                updated_by=actor,
            ),
            actor_id=actor_id,
            occurred_at=occurred_at,
        )
    ]

    if order.status == BEGIN_PREPARATION_STATUS:
        events.append(
            BroadcastEvent(
                name=EventName.KITCHEN_TICKET_NEW,
                payload=KitchenTicketNew(
                    order_id=order.id,
                    order_number=order.order_number,
                    items=[
                        TicketItem(id=item.id, name=item.name, quantity=item.quantity, notes=item.notes)
                        for item in order.items
                    ],
                    table_number=order.table_number,
                    created_at=occurred_at,
                ),
                actor_id=actor_id,
                occurred_at=occurred_at,
            )
        )

    return events


def table_status_events(
    table: TableRecord,
    actor: Actor | None = None,
) -> list[BroadcastEvent]:
    """Events caused by a table reaching its current status."""
    occurred_at = isoformat_utc(table.updated_at)
    return [
        BroadcastEvent(
            name=EventName.TABLE_STATUS_UPDATED,
            payload=TableStatusUpdated(
                table_id=table.id,
                status=table.status,
                updated_at=occurred_at,
            ),
            actor_id=actor.id if actor else None,
            occurred_at=occurred_at,
        )
    ]
