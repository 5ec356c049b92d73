"""
Tests for the status store implementations.

Tests verify:
- In-memory updates return the new record and reject unknown ids
- The SQLAlchemy store commits, maps items and table number, and raises
  NotFoundError for unknown ids
- A commit slower than the slow threshold still reports its real outcome
"""

import time

import pytest

from shared.infrastructure.db import (
    Base,
    Order,
    OrderItem,
    RestaurantTable,
    create_db_engine,
    create_session_factory,
    safe_commit,
    session_scope,
)
from shared.infrastructure.status_store import InMemoryStatusStore, SqlAlchemyStatusStore, StatusStore
from shared.utils.exceptions import MutationError, NotFoundError


class TestInMemoryStatusStore:
    @pytest.mark.asyncio
    async def test_update_order_status(self, store):
        before = store.get_order("o1")

        updated = await store.update_order_status("o1", "READY")

        assert updated.status == "READY"
        assert updated.updated_at is not None
        assert updated.items == before.items
        assert store.get_order("o1").status == "READY"

    @pytest.mark.asyncio
    async def test_unknown_order(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await store.update_order_status("missing", "READY")

        assert exc_info.value.entity == "order"
        assert isinstance(exc_info.value, MutationError)

    @pytest.mark.asyncio
    async def test_update_table_status(self, store):
        updated = await store.update_table_status("t1", "OCCUPIED")

        assert updated.status == "OCCUPIED"
        assert updated.branch_id == "b1"

    def test_list_orders_by_status(self, store):
        assert {o.id for o in store.list_orders(["PENDING"])} == {"o1", "o2"}
        assert store.list_orders(["READY"]) == []

    def test_satisfies_protocol(self, store):
        assert isinstance(store, StatusStore)


@pytest.fixture
def sql_factory():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = create_session_factory(engine)

    with session_scope(factory) as db:
        table = RestaurantTable(id="t1", branch_id="b1", table_number=7, status="OCCUPIED")
        order = Order(id="o1", order_number="ORD-000001", branch_id="b1", table=table, status="PENDING")
        order.items = [
            OrderItem(id="i1", name="Lomo saltado", quantity=1),
            OrderItem(id="i2", name="Chicha", quantity=2, notes="sin hielo"),
        ]
        db.add_all([table, order])
        db.commit()

    yield factory

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def sql_store(sql_factory):
    return SqlAlchemyStatusStore(sql_factory)


class TestSqlAlchemyStatusStore:
    @pytest.mark.asyncio
    async def test_update_order_status(self, sql_store):
        record = await sql_store.update_order_status("o1", "PREPARING")

        assert record.status == "PREPARING"
        assert record.branch_id == "b1"
        assert record.table_number == 7
        assert [item.name for item in record.items] == ["Lomo saltado", "Chicha"]
        assert record.items[1].notes == "sin hielo"
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_is_committed(self, sql_store):
        await sql_store.update_order_status("o1", "READY")

        record = await sql_store.update_order_status("o1", "READY")
        assert record.status == "READY"

    @pytest.mark.asyncio
    async def test_update_table_status(self, sql_store):
        record = await sql_store.update_table_status("t1", "CLEANING")

        assert record.status == "CLEANING"
        assert record.table_number == 7

    @pytest.mark.asyncio
    async def test_unknown_ids(self, sql_store):
        with pytest.raises(NotFoundError):
            await sql_store.update_order_status("missing", "READY")
        with pytest.raises(NotFoundError):
            await sql_store.update_table_status("missing", "AVAILABLE")

    @pytest.mark.asyncio
    async def test_slow_commit_reports_its_real_outcome(self, sql_factory, monkeypatch):
        def slow_commit(db):
            time.sleep(0.2)
            safe_commit(db)

        monkeypatch.setattr("shared.infrastructure.status_store.safe_commit", slow_commit)
        store = SqlAlchemyStatusStore(sql_factory, slow_after=0.05)

        record = await store.update_order_status("o1", "PREPARING")

        assert record.status == "PREPARING"
        with session_scope(sql_factory) as db:
            assert db.get(Order, "o1").status == "PREPARING"
