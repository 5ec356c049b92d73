"""
CRUD collaborator seam.

The realtime core never decides whether a status change is legal; it asks a
StatusStore to apply it and broadcasts whatever record comes back. Two
implementations:

- InMemoryStatusStore: development server and tests.
- SqlAlchemyStatusStore: the relational database, accessed through a sync
  session run in a worker thread so the event loop never blocks.

Usage:
    store = SqlAlchemyStatusStore.from_url("sqlite:///./restaurant_os.db")
    order = await store.update_order_status("o1", "PREPARING")
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from shared.config.logging import get_logger
from shared.events.records import OrderItemRecord, OrderRecord, TableRecord
from shared.infrastructure.db import (
    Order,
    RestaurantTable,
    create_db_engine,
    create_session_factory,
    safe_commit,
    session_scope,
)
from shared.utils.exceptions import MutationError, NotFoundError

logger = get_logger(__name__)

# Mutations running longer than this are logged as slow
DEFAULT_SLOW_MUTATION_SECONDS = 5.0


@runtime_checkable
class StatusStore(Protocol):
    """
    Applies status changes and returns the committed record.

    Raises MutationError (NotFoundError for unknown ids) when the change
    is rejected or cannot be applied; the stored state is then unchanged.
    """

    async def update_order_status(self, order_id: str, status: str) -> OrderRecord: ...

    async def update_table_status(self, table_id: str, status: str) -> TableRecord: ...


# =============================================================================
# In-memory implementation
# =============================================================================


class InMemoryStatusStore:
    """
    Dictionary-backed store.

    Usage:
        store = InMemoryStatusStore(orders=[OrderRecord(id="o1", ...)])
    """

    def __init__(
        self,
        orders: Iterable[OrderRecord] = (),
        tables: Iterable[TableRecord] = (),
    ) -> None:
        self._orders: dict[str, OrderRecord] = {o.id: o for o in orders}
        self._tables: dict[str, TableRecord] = {t.id: t for t in tables}

    def add_order(self, order: OrderRecord) -> None:
        self._orders[order.id] = order

    def add_table(self, table: TableRecord) -> None:
        self._tables[table.id] = table

    def get_order(self, order_id: str) -> OrderRecord | None:
        return self._orders.get(order_id)

    def get_table(self, table_id: str) -> TableRecord | None:
        return self._tables.get(table_id)

    def list_orders(self, statuses: Iterable[str] | None = None) -> list[OrderRecord]:
        wanted = set(statuses) if statuses is not None else None
        return [o for o in self._orders.values() if wanted is None or o.status in wanted]

    def list_tables(self) -> list[TableRecord]:
        return list(self._tables.values())

    async def update_order_status(self, order_id: str, status: str) -> OrderRecord:
        # Mutations are a suspension point like any real backend call
        await asyncio.sleep(0)
        current = self._orders.get(order_id)
        if current is None:
            raise NotFoundError("order", order_id)
        updated = replace(current, status=status, updated_at=datetime.now(timezone.utc))
        self._orders[order_id] = updated
        return updated

    async def update_table_status(self, table_id: str, status: str) -> TableRecord:
        await asyncio.sleep(0)
        current = self._tables.get(table_id)
        if current is None:
            raise NotFoundError("table", table_id)
        updated = replace(current, status=status, updated_at=datetime.now(timezone.utc))
        self._tables[table_id] = updated
        return updated


# =============================================================================
# SQLAlchemy implementation
# =============================================================================


def order_to_record(order: Order) -> OrderRecord:
    return OrderRecord(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        branch_id=order.branch_id,
        items=tuple(
            OrderItemRecord(id=item.id, name=item.name, quantity=item.quantity, notes=item.notes)
            for item in order.items
        ),
        table_number=order.table.table_number if order.table is not None else None,
        updated_at=order.updated_at,
    )


def table_to_record(table: RestaurantTable) -> TableRecord:
    return TableRecord(
        id=table.id,
        status=table.status,
        branch_id=table.branch_id,
        table_number=table.table_number,
        updated_at=table.updated_at,
    )


class SqlAlchemyStatusStore:
    """
    Store backed by the relational database.

    Each mutation runs in its own session on a worker thread and the caller
    always gets its real outcome: a mutation slower than `slow_after` is
    logged and still awaited. Lock and pool waits are bounded by the
    database layer (SQLite busy timeout, pool_timeout). Database errors
    surface as MutationError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        slow_after: float = DEFAULT_SLOW_MUTATION_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._slow_after = slow_after

    @classmethod
    def from_url(cls, database_url: str | None = None, **kwargs) -> "SqlAlchemyStatusStore":
        return cls(create_session_factory(create_db_engine(database_url)), **kwargs)

    async def update_order_status(self, order_id: str, status: str) -> OrderRecord:
        return await self._run("order", order_id, self._update_order_sync, order_id, status)

    async def update_table_status(self, table_id: str, status: str) -> TableRecord:
        return await self._run("table", table_id, self._update_table_sync, table_id, status)

    async def _run(self, entity: str, entity_id: str, fn, *args):
        work = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        try:
            try:
                return await asyncio.wait_for(asyncio.shield(work), timeout=self._slow_after)
            except asyncio.TimeoutError:
                logger.warning(
                    "Slow status mutation, awaiting its outcome",
                    entity=entity,
                    entity_id=entity_id,
                    slow_after=self._slow_after,
                )
                return await work
        except SQLAlchemyError as e:
            raise MutationError(entity, entity_id, "database error", log_level="error", error=str(e))

    def _update_order_sync(self, order_id: str, status: str) -> OrderRecord:
        with session_scope(self._session_factory) as db:
            order = db.scalars(
                select(Order)
                .where(Order.id == order_id)
                .options(selectinload(Order.items), selectinload(Order.table))
            ).one_or_none()
            if order is None:
                raise NotFoundError("order", order_id)
            order.status = status
            order.updated_at = datetime.now(timezone.utc)
            safe_commit(db)
            return order_to_record(order)

    def _update_table_sync(self, table_id: str, status: str) -> TableRecord:
        with session_scope(self._session_factory) as db:
            table = db.get(RestaurantTable, table_id)
            if table is None:
                raise NotFoundError("table", table_id)
            table.status = status
            table.updated_at = datetime.now(timezone.utc)
            safe_commit(db)
            return table_to_record(table)
