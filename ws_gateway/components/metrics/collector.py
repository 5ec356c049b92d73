"""
Metrics Collector for WebSocket Gateway.

Plain counters for the health endpoint and diagnostics. Everything that
touches them runs on the gateway's event loop, so increments need no lock.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class BroadcastMetrics:
    """Metrics for broadcast operations."""
    total: int = 0
    recipients_sent: int = 0
    recipients_failed: int = 0


@dataclass
class ConnectionMetrics:
    """Metrics for connection management."""
    accepted: int = 0
    rejected_auth: int = 0
    rejected_origin: int = 0
    closed: int = 0
    oversized_frames: int = 0
    idle_timeouts: int = 0


@dataclass
class EventMetrics:
    """Metrics for inbound event processing."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    invalid: int = 0


class MetricsCollector:
    """
    Counters for the gateway.

    Usage:
        metrics = MetricsCollector()
        metrics.record_broadcast(sent=3, failed=1)
        stats = metrics.get_snapshot()
    """

    def __init__(self) -> None:
        self.broadcast = BroadcastMetrics()
        self.connection = ConnectionMetrics()
        self.event = EventMetrics()

    # ==========================================================================
    # Broadcast Metrics
    # ==========================================================================

    def record_broadcast(self, sent: int, failed: int) -> None:
        self.broadcast.total += 1
        self.broadcast.recipients_sent += sent
        self.broadcast.recipients_failed += failed

    # ==========================================================================
    # Connection Metrics
    # ==========================================================================

    def record_accepted(self) -> None:
        self.connection.accepted += 1

    def record_rejected(self, audit_reason: str | None) -> None:
        if audit_reason == "invalid_origin":
            self.connection.rejected_origin += 1
        else:
            self.connection.rejected_auth += 1

    def record_closed(self) -> None:
        self.connection.closed += 1

    def record_oversized(self) -> None:
        self.connection.oversized_frames += 1

    def record_idle_timeout(self) -> None:
        self.connection.idle_timeouts += 1

    # ==========================================================================
    # Event Metrics
    # ==========================================================================

    def record_event(self, success: bool, invalid: bool = False) -> None:
        self.event.processed += 1
        if success:
            self.event.succeeded += 1
        else:
            self.event.failed += 1
            if invalid:
                self.event.invalid += 1

    # ==========================================================================
    # Snapshot
    # ==========================================================================

    def get_snapshot(self) -> dict[str, Any]:
        """Return all counters as a nested dict."""
        return {
            "broadcast": asdict(self.broadcast),
            "connection": asdict(self.connection),
            "event": asdict(self.event),
        }
