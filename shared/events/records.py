"""
Entity records as returned by the CRUD collaborator or the read API.

These are the only view the realtime core has of orders and tables: an id,
a status, the branch that owns the row and the fields copied into events.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class OrderItemRecord:
    """One line item of an order."""

    id: str
    name: str
    quantity: int = 1
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class OrderRecord:
    """An order after a committed mutation (or as seen in a snapshot)."""

    id: str
    order_number: str
    status: str
    branch_id: str | None = None
    items: tuple[OrderItemRecord, ...] = ()
    table_number: int | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TableRecord:
    """A table after a committed mutation (or as seen in a snapshot)."""

    id: str
    status: str
    branch_id: str | None = None
    table_number: int | None = None
    updated_at: datetime | None = None
