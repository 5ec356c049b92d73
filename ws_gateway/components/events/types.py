"""
Inbound operations accepted over the socket.

A closed set of pydantic models discriminated on `type`. Each model carries
the client-facing messages for its two failure modes so the gateway's
acknowledgments stay consistent.

Frame layout:
    {"type": "order.status.update", "id": "<ack id>", "data": {"orderId": "o1", "status": "PREPARING"}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, Field, StringConstraints

from shared.events.event_types import InboundEventName
from ws_gateway.components.core.constants import FRAME_ACK

# Non-empty after trimming
Identifier = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

AckId = Union[str, int, None]


class InboundPayload(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class OrderStatusUpdateData(InboundPayload):
    order_id: Identifier = Field(alias="orderId")
    status: Identifier


class TableStatusUpdateData(InboundPayload):
    table_id: Identifier = Field(alias="tableId")
    status: Identifier


class InboundOperation(BaseModel):
    """Base for inbound operations."""

    # The ack id is read from the raw frame by the gateway
    model_config = {"extra": "ignore"}

    event_name: ClassVar[InboundEventName]
    invalid_message: ClassVar[str]
    failure_message: ClassVar[str]


class OrderStatusUpdate(InboundOperation):
    type: Literal["order.status.update"]
    data: OrderStatusUpdateData

    event_name: ClassVar[InboundEventName] = InboundEventName.ORDER_STATUS_UPDATE
    invalid_message: ClassVar[str] = "Invalid data: orderId and status are required"
    failure_message: ClassVar[str] = "Failed to update order status"


class TableStatusUpdate(InboundOperation):
    type: Literal["table.status.update"]
    data: TableStatusUpdateData

    event_name: ClassVar[InboundEventName] = InboundEventName.TABLE_STATUS_UPDATE
    invalid_message: ClassVar[str] = "Invalid data: tableId and status are required"
    failure_message: ClassVar[str] = "Failed to update table status"


# The closed set, keyed by wire name
INBOUND_MODELS: dict[str, type[InboundOperation]] = {
    model.event_name.value: model for model in (OrderStatusUpdate, TableStatusUpdate)
}


# =============================================================================
# Acknowledgments
# =============================================================================


@dataclass(frozen=True, slots=True)
class Ack:
    """Acknowledgment for one inbound frame."""

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "Ack":
        return cls(success=True)

    @classmethod
    def fail(cls, error: str) -> "Ack":
        return cls(success=False, error=error)

    def to_frame(self, ack_id: AckId) -> dict[str, Any]:
        frame: dict[str, Any] = {"type": FRAME_ACK, "id": ack_id, "success": self.success}
        if self.error is not None:
            frame["error"] = self.error
        return frame

    def to_json(self, ack_id: AckId) -> str:
        return json.dumps(self.to_frame(ack_id), ensure_ascii=False)
