"""
Event Gateway - inbound operations to outbound events.

For each inbound operation:
1. Validate the frame against its model; on violation ack an error.
2. Await the CRUD collaborator mutation.
3. On failure ack an error and emit nothing.
4. On success build the outbound events and hand them to the Broadcaster
   for the record's branch room (records without a branch broadcast nothing).
5. Ack success, through the same outbox, after the events were handed over.

The gateway does not deduplicate; consumers key on entity id.

Usage:
    gateway = EventGateway(store, broadcaster)
    ack = await gateway.handle_frame(connection, frame)
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, TYPE_CHECKING

from pydantic import ValidationError

from shared.config.constants import DEFAULT_ACTOR_NAME
from shared.config.logging import get_logger
from shared.events.schema import Actor, BroadcastEvent, order_status_events, table_status_events
from shared.utils.exceptions import InboundValidationError, MutationError
from ws_gateway.components.connection.index import branch_room
from ws_gateway.components.core.context import sanitize_log_data
from ws_gateway.components.events.types import (
    INBOUND_MODELS,
    Ack,
    InboundOperation,
    OrderStatusUpdate,
    TableStatusUpdate,
)

if TYPE_CHECKING:
    from shared.infrastructure.status_store import StatusStore
    from shared.security.auth import Identity
    from ws_gateway.components.connection.connection import Connection
    from ws_gateway.components.metrics.collector import MetricsCollector
    from ws_gateway.core.connection.broadcaster import Broadcaster

logger = get_logger(__name__)

Handler = Callable[[Any, "Identity"], Awaitable[Ack]]

MSG_INVALID_FORMAT = "Invalid message format"


def actor_for(identity: "Identity") -> Actor:
    return Actor(id=identity.id, name=identity.name or DEFAULT_ACTOR_NAME)


class EventGateway:
    """
    Dispatches inbound operations through an exhaustive handler table.

    The table is keyed by the inbound model classes and checked against
    the closed set when the gateway is constructed.
    """

    def __init__(
        self,
        store: "StatusStore",
        broadcaster: "Broadcaster",
        metrics: "MetricsCollector | None" = None,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._metrics = metrics
        self._handlers: dict[type[InboundOperation], Handler] = {
            OrderStatusUpdate: self._handle_order_status,
            TableStatusUpdate: self._handle_table_status,
        }

        missing = [name for name, model in INBOUND_MODELS.items() if model not in self._handlers]
        if missing:
            raise TypeError(f"No handler registered for inbound operations: {', '.join(sorted(missing))}")

    # =========================================================================
    # Entry points
    # =========================================================================

    async def handle_frame(self, connection: "Connection", frame: Any) -> Ack:
        """
        Process one decoded inbound frame and enqueue its acknowledgment.

        Args:
            connection: The connection the frame arrived on.
            frame: The decoded JSON frame.

        Returns:
            The acknowledgment that was sent.
        """
        ack_id = frame.get("id") if isinstance(frame, dict) else None
        if isinstance(ack_id, (dict, list, bool, float)):
            ack_id = None

        operation, ack = self.parse(frame)
        if operation is not None:
            ack = await self.dispatch(operation, connection.identity)
        elif self._metrics is not None:
            self._metrics.record_event(success=False, invalid=True)

        # Enqueued after any broadcast, so the caller sees its own events first
        connection.enqueue(ack.to_json(ack_id))
        return ack

    def parse(self, frame: Any) -> tuple[InboundOperation | None, Ack]:
        """Validate a frame against the closed set of inbound models."""
        try:
            return self._validate(frame), Ack.ok()
        except InboundValidationError as e:
            return None, Ack.fail(e.detail)

    def _validate(self, frame: Any) -> InboundOperation:
        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
            raise InboundValidationError(MSG_INVALID_FORMAT)

        event_type = sanitize_log_data(frame["type"], 50)
        model = INBOUND_MODELS.get(frame["type"])
        if model is None:
            raise InboundValidationError(f"Unknown event type: {event_type}", event_type)

        try:
            return model.model_validate(frame)
        except ValidationError as e:
            raise InboundValidationError(model.invalid_message, event_type, errors=e.error_count()) from e

    async def dispatch(self, operation: InboundOperation, identity: "Identity") -> Ack:
        """Run the handler for a validated operation."""
        handler = self._handlers[type(operation)]
        ack = await handler(operation, identity)
        if self._metrics is not None:
            self._metrics.record_event(success=ack.success)
        return ack

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_order_status(self, operation: OrderStatusUpdate, identity: "Identity") -> Ack:
        order_id = operation.data.order_id
        try:
            order = await self._store.update_order_status(order_id, operation.data.status)
        except MutationError:
            return Ack.fail(operation.failure_message)
        except Exception:
            logger.error("Unexpected error updating order status", order_id=order_id, exc_info=True)
            return Ack.fail(operation.failure_message)

        self._publish(order.branch_id, order_status_events(order, actor_for(identity)), "order", order.id)
        return Ack.ok()

    async def _handle_table_status(self, operation: TableStatusUpdate, identity: "Identity") -> Ack:
        table_id = operation.data.table_id
        try:
            table = await self._store.update_table_status(table_id, operation.data.status)
        except MutationError:
            return Ack.fail(operation.failure_message)
        except Exception:
            logger.error("Unexpected error updating table status", table_id=table_id, exc_info=True)
            return Ack.fail(operation.failure_message)

        self._publish(table.branch_id, table_status_events(table, actor_for(identity)), "table", table.id)
        return Ack.ok()

    def _publish(
        self,
        branch_id: str | None,
        events: list[BroadcastEvent],
        entity: str,
        entity_id: str,
    ) -> None:
        # No await between the mutation result and the last deliver() call
        if not branch_id:
            logger.warning("Updated record has no branch, nothing broadcast", entity=entity, entity_id=entity_id)
            return

        room = branch_room(branch_id)
        for event in events:
            delivered = self._broadcaster.deliver(room, event)
            logger.info(
                "Event broadcast",
                event_type=event.name.value,
                entity_id=entity_id,
                room=room,
                delivered=delivered,
            )
