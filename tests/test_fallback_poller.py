"""
Tests for the Fallback Poller.

Tests verify:
- request_timeout must be positive and shorter than interval
- The first snapshot is a baseline; one status change yields one event
- PREPARING also yields a kitchen ticket; polled events carry no updatedBy
- Entities missing from a snapshot keep their last known status
- Entities first seen after the baseline are reported as changes
- Timeouts and errors are counted and never stop the loop
"""

import asyncio

import pytest

from shared.events.event_types import EventName
from shared.events.records import OrderItemRecord, OrderRecord, TableRecord
from shared.events.schema import order_status_events
from ws_client.fallback_poller import FallbackPoller, Snapshot
from ws_client.kitchen_tickets import KitchenTicketBoard

from tests.conftest import wait_until


def order(status: str, order_id: str = "o1") -> OrderRecord:
    return OrderRecord(
        id=order_id,
        order_number=f"ORD-{order_id}",
        status=status,
        branch_id="b1",
        items=(OrderItemRecord(id="i1", name="Pastel de choclo"),),
        table_number=3,
    )


def table(status: str, table_id: str = "t1") -> TableRecord:
    return TableRecord(id=table_id, status=status, branch_id="b1", table_number=3)


class ScriptedSource:
    """Returns queued snapshots; raises queued exceptions; repeats the last one."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0
        self.delay = 0.0

    async def fetch_snapshot(self) -> Snapshot:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def collected():
    return []


class TestConfiguration:
    @pytest.mark.parametrize(
        "interval, request_timeout",
        [(10, 10), (10, 15), (10, 0), (0, 0), (-1, -2)],
    )
    def test_rejects_invalid_timeouts(self, interval, request_timeout):
        with pytest.raises(ValueError):
            FallbackPoller(ScriptedSource(Snapshot()), interval=interval, request_timeout=request_timeout)

    def test_accepts_timeout_below_interval(self):
        poller = FallbackPoller(ScriptedSource(Snapshot()), interval=10, request_timeout=5)

        assert poller.is_active is False


class TestDiff:
    """Tests for snapshot diffing."""

    @pytest.mark.asyncio
    async def test_first_snapshot_is_baseline(self, collected):
        source = ScriptedSource(Snapshot(orders=(order("PENDING"),), tables=(table("AVAILABLE"),)))
        poller = FallbackPoller(source, on_event=collected.append)

        events = await poller.poll_once()

        assert events == []
        assert collected == []
        assert poller.known_status("order", "o1") == "PENDING"
        assert poller.known_status("table", "t1") == "AVAILABLE"

    @pytest.mark.asyncio
    async def test_one_change_one_event(self, collected):
        source = ScriptedSource(
            Snapshot(orders=(order("PENDING"),)),
            Snapshot(orders=(order("READY"),)),
            Snapshot(orders=(order("READY"),)),
        )
        poller = FallbackPoller(source, on_event=collected.append)

        for _ in range(3):
            await poller.poll_once()

        assert len(collected) == 1
        event = collected[0]
        assert event.name == EventName.ORDER_STATUS_UPDATED
        assert event.payload.status == "READY"
        assert event.payload.updated_by is None
        assert "updatedBy" not in event.to_frame()["data"]
        assert poller.stats.events_emitted == 1

    @pytest.mark.asyncio
    async def test_preparing_adds_kitchen_ticket(self, collected):
        source = ScriptedSource(Snapshot(orders=(order("PENDING"),)), Snapshot(orders=(order("PREPARING"),)))
        poller = FallbackPoller(source, on_event=collected.append)

        await poller.poll_once()
        await poller.poll_once()

        assert [e.name for e in collected] == [EventName.ORDER_STATUS_UPDATED, EventName.KITCHEN_TICKET_NEW]
        ticket = collected[1].payload
        assert ticket.table_number == 3
        assert [item.name for item in ticket.items] == ["Pastel de choclo"]

    @pytest.mark.asyncio
    async def test_table_change(self, collected):
        source = ScriptedSource(Snapshot(tables=(table("AVAILABLE"),)), Snapshot(tables=(table("OCCUPIED"),)))
        poller = FallbackPoller(source, on_event=collected.append)

        await poller.poll_once()
        await poller.poll_once()

        assert [(e.name, e.payload.table_id, e.payload.status) for e in collected] == [
            (EventName.TABLE_STATUS_UPDATED, "t1", "OCCUPIED")
        ]

    def test_missing_entity_keeps_status(self):
        poller = FallbackPoller(ScriptedSource(Snapshot()))
        poller.diff(Snapshot(orders=(order("READY"), order("PENDING", "o2"))))

        # o1 left the active set (e.g. COMPLETED) and is not reported
        events = poller.diff(Snapshot(orders=(order("PENDING", "o2"),)))

        assert events == []
        assert poller.known_status("order", "o1") == "READY"

    def test_entity_first_seen_after_baseline_is_reported(self):
        poller = FallbackPoller(ScriptedSource(Snapshot()))
        poller.diff(Snapshot(orders=(order("PENDING"),)))

        events = poller.diff(
            Snapshot(orders=(order("PENDING"), order("PREPARING", "o7")), tables=(table("OCCUPIED", "t9"),))
        )

        assert [(e.name, e.entity_id) for e in events] == [
            (EventName.ORDER_STATUS_UPDATED, "o7"),
            (EventName.KITCHEN_TICKET_NEW, "o7"),
            (EventName.TABLE_STATUS_UPDATED, "t9"),
        ]

    def test_empty_first_snapshot_is_still_the_baseline(self):
        poller = FallbackPoller(ScriptedSource(Snapshot()))
        poller.diff(Snapshot())

        events = poller.diff(Snapshot(orders=(order("PENDING"),)))

        assert [e.payload.status for e in events] == ["PENDING"]

    @pytest.mark.asyncio
    async def test_order_created_during_outage_reaches_the_board(self):
        board = KitchenTicketBoard()
        source = ScriptedSource(
            Snapshot(orders=(order("PENDING"),)),
            Snapshot(orders=(order("PENDING"), order("PREPARING", "o2"))),
        )
        poller = FallbackPoller(source, on_event=board.add)

        await poller.poll_once()
        await poller.poll_once()

        assert "o2" in board
        assert "o1" not in board

    def test_observe_updates_baseline(self):
        poller = FallbackPoller(ScriptedSource(Snapshot()))
        poller.diff(Snapshot(orders=(order("PENDING"),)))

        for event in order_status_events(order("PREPARING")):
            poller.observe(event)
        events = poller.diff(Snapshot(orders=(order("PREPARING"),)))

        assert events == []
        assert poller.known_status("order", "o1") == "PREPARING"


class TestFailures:
    """Errors and timeouts are counted, not raised."""

    @pytest.mark.asyncio
    async def test_timeout_counted(self, collected):
        source = ScriptedSource(Snapshot())
        source.delay = 0.2
        poller = FallbackPoller(source, on_event=collected.append, interval=1.0, request_timeout=0.02)

        events = await poller.poll_once()

        assert events == []
        assert poller.stats.timeouts == 1
        assert poller.stats.polls == 1

    @pytest.mark.asyncio
    async def test_error_counted_and_baseline_kept(self, collected):
        source = ScriptedSource(
            Snapshot(orders=(order("PENDING"),)),
            RuntimeError("HTTP 503"),
            Snapshot(orders=(order("READY"),)),
        )
        poller = FallbackPoller(source, on_event=collected.append)

        await poller.poll_once()
        await poller.poll_once()
        await poller.poll_once()

        assert poller.stats.errors == 1
        assert [e.payload.status for e in collected] == ["READY"]

    @pytest.mark.asyncio
    async def test_consumer_failure_does_not_stop_emission(self):
        seen = []

        def consumer(event):
            seen.append(event)
            raise ValueError("consumer bug")

        source = ScriptedSource(
            Snapshot(orders=(order("PENDING"), order("PENDING", "o2"))),
            Snapshot(orders=(order("READY"), order("READY", "o2"))),
        )
        poller = FallbackPoller(source, on_event=consumer)

        await poller.poll_once()
        await poller.poll_once()

        assert len(seen) == 2


class TestLoop:
    """Tests for start(), cancel() and stop()."""

    @pytest.mark.asyncio
    async def test_polls_immediately_and_repeatedly(self):
        source = ScriptedSource(Snapshot())
        poller = FallbackPoller(source, interval=0.02, request_timeout=0.01)

        poller.start()
        poller.start()
        await wait_until(lambda: source.calls >= 3)

        assert poller.is_active
        await poller.stop()
        assert poller.is_active is False

    @pytest.mark.asyncio
    async def test_cancel_stops_future_polls(self):
        source = ScriptedSource(Snapshot())
        poller = FallbackPoller(source, interval=0.02, request_timeout=0.01)

        poller.start()
        await wait_until(lambda: source.calls >= 1)
        poller.cancel()
        calls = source.calls
        await asyncio.sleep(0.06)

        assert source.calls == calls
        assert poller.is_active is False

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self):
        poller = FallbackPoller(ScriptedSource(Snapshot()))

        await poller.stop()

        assert poller.stats.polls == 0
