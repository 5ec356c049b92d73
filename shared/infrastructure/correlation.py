"""
Connection correlation for logs.

Every log line emitted while a WebSocket connection is being served carries
that connection's id, so a single client's lifecycle can be followed in
aggregated logs.
"""

import uuid
from contextvars import ContextVar, Token

# Context variable for the connection id (task-local)
connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")


def new_connection_id() -> str:
    """Generate a new connection id."""
    return uuid.uuid4().hex


def get_connection_id() -> str:
    """Get the connection id bound to the current task, if any."""
    return connection_id_var.get()


def bind_connection_id(connection_id: str) -> Token:
    """Bind a connection id to the current context. Returns a reset token."""
    return connection_id_var.set(connection_id)


def reset_connection_id(token: Token) -> None:
    """Restore the previous connection id."""
    connection_id_var.reset(token)


class ConnectionIdFilter:
    """
    Logging filter that adds connection_id to log records.

    Usage:
        import logging
        handler = logging.StreamHandler()
        handler.addFilter(ConnectionIdFilter())
    """

    def filter(self, record) -> bool:
        record.connection_id = connection_id_var.get() or "-"
        return True
