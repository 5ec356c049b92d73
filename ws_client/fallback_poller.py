"""
Fallback Poller.

Re-derives the event stream from periodic snapshots while the socket is
unavailable. Each poll diffs the snapshot against the last known status of
every order and table and synthesizes the same events the gateway would
have broadcast (without `updatedBy`, which a snapshot cannot know).

Polls never overlap: the next one is scheduled only after the previous
one finished or hit its request timeout.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from shared.config.logging import get_logger
from shared.events.event_types import EventName
from shared.events.records import OrderRecord, TableRecord
from shared.events.schema import BroadcastEvent, order_status_events, table_status_events

logger = get_logger(__name__)

EventCallback = Callable[[BroadcastEvent], Any]


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Active orders and all tables as read from the API."""

    orders: tuple[OrderRecord, ...] = ()
    tables: tuple[TableRecord, ...] = ()


class SnapshotSource(Protocol):
    async def fetch_snapshot(self) -> Snapshot: ...


@dataclass(slots=True)
class PollerStats:
    polls: int = 0
    errors: int = 0
    timeouts: int = 0
    events_emitted: int = 0
    last_poll_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "polls": self.polls,
            "errors": self.errors,
            "timeouts": self.timeouts,
            "events_emitted": self.events_emitted,
            "last_poll_at": self.last_poll_at,
        }


class FallbackPoller:
    """
    Snapshot diffing event source.

    Usage:
        poller = FallbackPoller(HttpSnapshotSource(base_url), on_event=feed.publish)
        poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        source: SnapshotSource,
        on_event: EventCallback | None = None,
        interval: float = 10.0,
        request_timeout: float = 5.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if request_timeout <= 0 or request_timeout >= interval:
            raise ValueError("request_timeout must be positive and shorter than interval")

        self._source = source
        self.on_event = on_event
        self.interval = interval
        self.request_timeout = request_timeout

        self._order_status: dict[str, str] = {}
        self._table_status: dict[str, str] = {}
        self._baseline_established = False
        self._task: asyncio.Task | None = None
        self.stats = PollerStats()

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def known_status(self, entity: str, entity_id: str) -> str | None:
        """Last known status of an order or table."""
        table = self._order_status if entity == "order" else self._table_status
        return table.get(entity_id)

    # =========================================================================
    # Activation
    # =========================================================================

    def start(self) -> None:
        """Begin polling. The first poll runs immediately."""
        if self.is_active:
            return
        logger.info("Fallback polling started", interval=self.interval)
        self._task = asyncio.create_task(self._loop())

    def cancel(self) -> None:
        """Stop polling without waiting for an in-flight request to unwind."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("Fallback polling stopped", polls=self.stats.polls)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Fallback polling stopped", polls=self.stats.polls)

    async def _loop(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll_once(self) -> list[BroadcastEvent]:
        """
        Fetch one snapshot and emit an event for each status change.

        Fetch errors and timeouts are counted and logged; they never stop
        the loop.
        """
        self.stats.polls += 1
        self.stats.last_poll_at = asyncio.get_running_loop().time()
        try:
            snapshot = await asyncio.wait_for(self._source.fetch_snapshot(), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            self.stats.timeouts += 1
            logger.warning("Snapshot request timed out", timeout=self.request_timeout)
            return []
        except Exception as e:
            self.stats.errors += 1
            logger.warning("Snapshot request failed", error=str(e), error_type=type(e).__name__)
            return []

        events = self.diff(snapshot)
        for event in events:
            self._emit(event)
        return events

    def diff(self, snapshot: Snapshot) -> list[BroadcastEvent]:
        """
        Compare a snapshot with the known state and record it.

        The first snapshot only establishes a baseline for entities not yet
        known. After that an unknown entity counts as changed, so an order
        created while the socket was down still yields its events. Entities
        missing from the snapshot keep their last known status.
        """
        events: list[BroadcastEvent] = []
        report_new = self._baseline_established

        for order in snapshot.orders:
            previous = self._order_status.get(order.id)
            self._order_status[order.id] = order.status
            if self._changed(previous, order.status, report_new):
                events.extend(order_status_events(order))

        for table in snapshot.tables:
            previous = self._table_status.get(table.id)
            self._table_status[table.id] = table.status
            if self._changed(previous, table.status, report_new):
                events.extend(table_status_events(table))

        self._baseline_established = True
        return events

    @staticmethod
    def _changed(previous: str | None, current: str, report_new: bool) -> bool:
        if previous is None:
            return report_new
        return previous != current

    def observe(self, event: BroadcastEvent) -> None:
        """Record a status delivered over the socket so the baseline stays current."""
        if event.name == EventName.ORDER_STATUS_UPDATED:
            self._order_status[event.payload.order_id] = event.payload.status
        elif event.name == EventName.TABLE_STATUS_UPDATED:
            self._table_status[event.payload.table_id] = event.payload.status

    def _emit(self, event: BroadcastEvent) -> None:
        self.stats.events_emitted += 1
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            logger.error("Fallback event consumer failed", event_type=event.name.value, exc_info=True)
