"""
Realtime Feed.

The seam a UI builds on. Merges events from the socket and from the
fallback poller into one stream, so consumers never need to know which
transport delivered an event:

    connected             -> socket events, poller stopped
    not connected > grace -> poller started, its events take over
    connected again       -> poller stopped immediately

Kitchen tickets from either source go to the Kitchen Ticket Board.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx

from shared.config.logging import get_logger
from shared.config.settings import Settings, settings
from shared.events.event_types import EventName
from shared.events.schema import BroadcastEvent
from ws_client.connection_manager import ConnectionManager, ConnectionState, TokenProvider
from ws_client.fallback_poller import FallbackPoller
from ws_client.kitchen_tickets import KitchenTicketBoard
from ws_client.sources import HttpSnapshotSource

logger = get_logger(__name__)

FeedListener = Callable[[BroadcastEvent], Any]


class RealtimeFeed:
    """
    Usage:
        feed = RealtimeFeed(manager, poller, grace_period=3.0)
        feed.add_listener(render)
        await feed.start()
    """

    def __init__(
        self,
        manager: ConnectionManager,
        poller: FallbackPoller,
        grace_period: float = 3.0,
        board: KitchenTicketBoard | None = None,
    ) -> None:
        self.manager = manager
        self.poller = poller
        self.grace_period = grace_period
        self.board = board if board is not None else KitchenTicketBoard()

        self._listeners: list[FeedListener] = []
        self._unsubscribers: list[Callable[[], None]] = []
        self._grace_task: asyncio.Task | None = None
        self._started = False

    @property
    def indicator(self) -> str:
        """Connection label for the UI (connected, reconnecting, ...)."""
        return self.manager.indicator

    @property
    def polling(self) -> bool:
        return self.poller.is_active

    def add_listener(self, listener: FeedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        for name in EventName:
            self._unsubscribers.append(self.manager.subscribe(name, self._on_socket_event))
        self._unsubscribers.append(self.manager.add_state_listener(self._on_state))

        # Poller events reach the feed through publish()
        self.poller.on_event = self.publish

        await self.manager.connect()
        self._on_state(self.manager.state)

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._cancel_grace()
        await self.poller.stop()

    # =========================================================================
    # Events
    # =========================================================================

    def publish(self, event: BroadcastEvent) -> None:
        """Hand one event to the board and every listener."""
        if event.name == EventName.KITCHEN_TICKET_NEW:
            self.board.add(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.error("Feed listener failed", event_type=event.name.value, exc_info=True)

    def _on_socket_event(self, event: BroadcastEvent) -> None:
        self.poller.observe(event)
        self.publish(event)

    # =========================================================================
    # Poller activation
    # =========================================================================

    def _on_state(self, state: ConnectionState) -> None:
        if not self._started:
            return

        if state == ConnectionState.CONNECTED:
            self._cancel_grace()
            self.poller.cancel()
            return

        if state == ConnectionState.CLOSED:
            self._cancel_grace()
            return

        if not self.poller.is_active and self._grace_task is None:
            self._grace_task = asyncio.create_task(self._activate_after_grace())

    async def _activate_after_grace(self) -> None:
        try:
            await asyncio.sleep(self.grace_period)
        finally:
            if self._grace_task is asyncio.current_task():
                self._grace_task = None
        if self._started and not self.manager.is_connected:
            logger.info("Socket unavailable, switching to polling", indicator=self.indicator)
            self.poller.start()

    def _cancel_grace(self) -> None:
        task, self._grace_task = self._grace_task, None
        if task is not None and not task.done():
            task.cancel()


def create_realtime_feed(
    token_provider: TokenProvider,
    client: httpx.AsyncClient,
    config: Settings | None = None,
    **manager_options: Any,
) -> RealtimeFeed:
    """
    Wire a manager, an HTTP-backed poller and a feed from settings.

    Usage:
        async with httpx.AsyncClient(base_url=settings.api_base_url) as client:
            feed = create_realtime_feed(lambda: session.token, client)
            await feed.start()
    """
    config = config or settings
    manager = ConnectionManager.from_settings(token_provider, config, **manager_options)
    poller = FallbackPoller(
        HttpSnapshotSource(client, token_provider=token_provider),
        interval=config.poll_interval,
        request_timeout=config.poll_request_timeout,
    )
    return RealtimeFeed(manager, poller, grace_period=config.poll_grace_period)
