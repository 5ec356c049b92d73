"""
Centralized exceptions for consistent error handling.

Usage:
    from shared.utils.exceptions import NotFoundError, MutationError

    raise NotFoundError("Order", order_id)
    raise MutationError("order", order_id, "database unavailable")

Authentication failures are not exceptions: the token verifier returns an
AuthResult (see shared.security.auth). Delivery failures are absorbed by the
broadcaster and never raised.
"""

from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)


class RealtimeError(Exception):
    """
    Base exception with automatic logging.

    All custom exceptions inherit from this class to ensure consistent
    logging and a client-safe message in `detail`.
    """

    def __init__(
        self,
        detail: str,
        log_level: str = "warning",
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, error_type=type(self).__name__, **log_context)

        super().__init__(detail)
        self.detail = detail


# =============================================================================
# Mutation errors (raised by the CRUD collaborator)
# =============================================================================


class MutationError(RealtimeError):
    """
    The collaborator rejected or failed to apply a state change.

    The original state is presumed unchanged.
    """

    def __init__(self, entity: str, entity_id: str | None, reason: str, **log_context: Any):
        super().__init__(
            f"Failed to update {entity} {entity_id}: {reason}",
            entity=entity,
            entity_id=entity_id,
            **log_context,
        )
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason


class NotFoundError(MutationError):
    """
    Entity not found.

    Usage:
        raise NotFoundError("order", "o1")
    """

    def __init__(self, entity: str, entity_id: str | None = None, **log_context: Any):
        super().__init__(entity, entity_id, "not found", **log_context)


# =============================================================================
# Inbound frame errors
# =============================================================================


class InboundValidationError(RealtimeError):
    """An inbound frame is malformed or misses required identifiers."""

    def __init__(self, detail: str, event_type: str | None = None, **log_context: Any):
        super().__init__(detail, log_level="info", event_type=event_type, **log_context)
        self.event_type = event_type


# =============================================================================
# Client errors
# =============================================================================


class NotConnectedError(RealtimeError):
    """An operation needed a live connection and there was none."""

    def __init__(self, detail: str = "Not connected", **log_context: Any):
        super().__init__(detail, log_level="debug", **log_context)


class AckTimeoutError(RealtimeError):
    """The server did not acknowledge an emitted frame in time."""

    def __init__(self, event_type: str, timeout: float, **log_context: Any):
        super().__init__(
            f"No acknowledgment for {event_type} within {timeout}s",
            event_type=event_type,
            timeout=timeout,
            **log_context,
        )
        self.event_type = event_type
        self.timeout = timeout


class SnapshotFetchError(RealtimeError):
    """The read API answered a snapshot request with an error envelope or status."""

    def __init__(self, resource: str, detail: str, **log_context: Any):
        super().__init__(f"Failed to fetch {resource}: {detail}", resource=resource, **log_context)
        self.resource = resource
