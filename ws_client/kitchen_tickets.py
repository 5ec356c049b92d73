"""
Kitchen Ticket Board.

Client-side list of kitchen tickets built from `kitchen.ticket.new` events.
A ticket is keyed by its order id, so the same event arriving twice (over the
socket and again from the fallback poller, or after a reconnect) yields one
ticket.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from shared.config.constants import TicketStatus
from shared.events.event_types import EventName
from shared.events.schema import BroadcastEvent, KitchenTicketNew, TicketItem


@dataclass(slots=True)
class KitchenTicket:
    order_id: str
    order_number: str
    created_at: str
    items: list[TicketItem] = field(default_factory=list)
    table_number: int | None = None
    status: str = TicketStatus.NEW

    @classmethod
    def from_payload(cls, payload: KitchenTicketNew) -> "KitchenTicket":
        return cls(
            order_id=payload.order_id,
            order_number=payload.order_number,
            created_at=payload.created_at,
            items=list(payload.items),
            table_number=payload.table_number,
            status=payload.status,
        )


class KitchenTicketBoard:
    """Tickets ordered newest first."""

    def __init__(self) -> None:
        self._tickets: dict[str, KitchenTicket] = {}
        self._order: list[str] = []

    def __len__(self) -> int:
        return len(self._tickets)

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._tickets

    def get(self, order_id: str) -> KitchenTicket | None:
        return self._tickets.get(order_id)

    def add(self, event: BroadcastEvent | KitchenTicketNew) -> bool:
        """
        Insert a ticket for a new kitchen order.

        Returns:
            True if the ticket was added, False if one already exists for
            the order (or the event is not a kitchen ticket).
        """
        if isinstance(event, BroadcastEvent):
            if event.name != EventName.KITCHEN_TICKET_NEW:
                return False
            payload = event.payload
        else:
            payload = event

        if payload.order_id in self._tickets:
            return False

        self._tickets[payload.order_id] = KitchenTicket.from_payload(payload)
        self._order.insert(0, payload.order_id)
        return True

    def start(self, order_id: str) -> bool:
        return self._set_status(order_id, TicketStatus.IN_PROGRESS)

    def complete(self, order_id: str) -> bool:
        return self._set_status(order_id, TicketStatus.COMPLETED)

    def visible(self, show_completed: bool = False) -> list[KitchenTicket]:
        tickets = [self._tickets[order_id] for order_id in self._order]
        if show_completed:
            return tickets
        return [t for t in tickets if t.status != TicketStatus.COMPLETED]

    def _set_status(self, order_id: str, status: str) -> bool:
        ticket = self._tickets.get(order_id)
        if ticket is None:
            return False
        ticket.status = status
        return True
