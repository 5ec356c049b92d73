"""
Centralized constants shared by the gateway and the client.

Usage:
    from shared.config.constants import Roles, OrderStatus, BEGIN_PREPARATION_STATUS

    if status == BEGIN_PREPARATION_STATUS:
        ...

The gateway does not validate statuses against these values; they name the
states the rest of the application uses.
"""

from typing import Final


# =============================================================================
# User Roles
# =============================================================================


class Roles:
    """User role constants."""

    ADMIN: Final[str] = "ADMIN"
    MANAGER: Final[str] = "MANAGER"
    STAFF: Final[str] = "STAFF"
    CHEF: Final[str] = "CHEF"
    CASHIER: Final[str] = "CASHIER"

    ALL: Final[list[str]] = [ADMIN, MANAGER, STAFF, CHEF, CASHIER]


MANAGEMENT_ROLES: Final[frozenset[str]] = frozenset({Roles.ADMIN, Roles.MANAGER})


# =============================================================================
# Entity Status Constants
# =============================================================================


class OrderStatus:
    """Order status constants."""

    PENDING: Final[str] = "PENDING"
    PREPARING: Final[str] = "PREPARING"
    READY: Final[str] = "READY"
    COMPLETED: Final[str] = "COMPLETED"
    CANCELLED: Final[str] = "CANCELLED"

    # Orders the kitchen and floor still care about
    ACTIVE: Final[list[str]] = [PENDING, PREPARING, READY]


class TableStatus:
    """Table status constants."""

    AVAILABLE: Final[str] = "AVAILABLE"
    OCCUPIED: Final[str] = "OCCUPIED"
    RESERVED: Final[str] = "RESERVED"
    CLEANING: Final[str] = "CLEANING"


class TicketStatus:
    """Client-side kitchen ticket status."""

    NEW: Final[str] = "NEW"
    IN_PROGRESS: Final[str] = "IN_PROGRESS"
    COMPLETED: Final[str] = "COMPLETED"


# Moving an order into this status opens a kitchen ticket
BEGIN_PREPARATION_STATUS: Final[str] = OrderStatus.PREPARING

# Name reported in updatedBy when the token carries no display name
DEFAULT_ACTOR_NAME: Final[str] = "Staff"
