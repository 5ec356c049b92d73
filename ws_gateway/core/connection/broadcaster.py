"""
Broadcaster.

Best-effort fan-out of one event to the current members of one room.

deliver() is synchronous: it takes a snapshot of the room and enqueues the
serialized frame on each member's outbox without awaiting. Two events for
the same entity therefore reach every outbox in the order deliver() was
called, which is the order their mutations committed. Per-member failures
never reach the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shared.config.logging import get_logger

if TYPE_CHECKING:
    from shared.events.schema import BroadcastEvent
    from ws_gateway.components.connection.index import RoomRouter
    from ws_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class Broadcaster:
    """
    Delivers events to room members.

    No retry, no persistence, no backpressure: a member that is not
    connected at delivery time misses the event.

    Usage:
        broadcaster = Broadcaster(router, metrics)
        delivered = broadcaster.deliver("branch:b1", event)
    """

    def __init__(
        self,
        router: "RoomRouter",
        metrics: "MetricsCollector | None" = None,
    ) -> None:
        self._router = router
        self._metrics = metrics
        self.sent = 0
        self.failed = 0

    def deliver(self, room: str, event: "BroadcastEvent") -> int:
        """
        Enqueue an event for every live member of a room.

        Members that are no longer connected are skipped and taken out of
        service; nothing propagates to the caller.

        Returns:
            Number of members the frame was handed to.
        """
        members = self._router.members(room)
        if not members:
            logger.debug("Broadcast to empty room", room=room, event_type=event.name.value)
            return 0

        frame = event.to_json()
        sent = 0
        failed = 0

        for connection in members:
            try:
                if connection.enqueue(frame):
                    sent += 1
                    continue
                failed += 1
                connection.mark_dead("not_connected")
            except Exception as e:
                # A misbehaving member must not abort delivery to the rest
                failed += 1
                logger.debug(
                    "Delivery error",
                    room=room,
                    connection=connection.id[:8],
                    error=type(e).__name__,
                )

        self.sent += sent
        self.failed += failed
        if self._metrics is not None:
            self._metrics.record_broadcast(sent=sent, failed=failed)

        logger.debug(
            "Broadcast delivered",
            room=room,
            event_type=event.name.value,
            sent=sent,
            failed=failed,
        )
        return sent

    def get_stats(self) -> dict[str, int]:
        return {"sent": self.sent, "failed": self.failed}
