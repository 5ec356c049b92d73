"""
Structured logging for the gateway and the client.

Every logger handed out by get_logger() accepts keyword context:

    logger.info("Broadcast delivered", room="branch:b1", recipients=4)

Development output is colored single-line text, production output is one
JSON object per line. Records emitted while a socket is being served carry
its connection id (see shared.infrastructure.correlation).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import Settings, settings

# Attribute on LogRecord holding the keyword context
CONTEXT_ATTR = "context"

NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "websockets": logging.WARNING,
}


def _record_context(record: logging.LogRecord) -> tuple[str | None, dict[str, Any]]:
    connection_id = getattr(record, "connection_id", None)
    if connection_id == "-":
        connection_id = None
    return connection_id, getattr(record, CONTEXT_ATTR, None) or {}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation in production."""

    def __init__(self, include_source: bool = False) -> None:
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        connection_id, context = _record_context(record)
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if connection_id:
            entry["connection_id"] = connection_id
        if context:
            entry["data"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if self.include_source:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        return json.dumps(entry, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Colored, human-readable lines."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        connection_id, context = _record_context(record)
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        parts = [f"{color}{clock} {record.levelname:<8}{self.RESET}"]
        if connection_id:
            parts.append(f"{self.DIM}[{connection_id[:8]}]{self.RESET}")
        parts.append(f"{record.name}: {record.getMessage()}")
        line = " ".join(parts)

        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """
    Logger whose level methods take keyword context.

    Standard keywords (exc_info, extra, stack_info, stacklevel) keep their
    meaning; every other keyword is attached to the record as context.
    """

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **context: Any,
    ) -> None:
        merged = dict(extra) if extra else {}
        merged[CONTEXT_ATTR] = context
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=merged,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


def setup_logging(config: Settings | None = None) -> None:
    """
    Install the application handler on the root logger.

    Call once at startup (create_default_app does). JSON output is used in
    production, colored text elsewhere.
    """
    from shared.infrastructure.correlation import ConnectionIdFilter

    config = config or settings
    level = logging.DEBUG if config.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ConnectionIdFilter())
    if config.environment == "production":
        handler.setFormatter(StructuredFormatter(include_source=config.debug))
    else:
        handler.setFormatter(DevelopmentFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> StructuredLogger:
    """
    Usage:
        logger = get_logger(__name__)
        logger.error("Status store failed", order_id="o1", exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore[return-value]


def mask_user_id(user_id: int | str | None) -> str:
    """Keep the first two characters of a user id for audit lines."""
    if user_id is None:
        return "<anonymous>"
    return f"{str(user_id)[:2]}***"


ws_gateway_logger = get_logger("ws_gateway")
ws_client_logger = get_logger("ws_client")
security_audit_logger = get_logger("security.audit")


def audit_ws_connection(event_type: str, endpoint: str, **fields: Any) -> None:
    """
    Write one socket security event (CONNECT, DISCONNECT, AUTH_FAILED, ...)
    to the audit logger. Fields with a None value are dropped.
    """
    security_audit_logger.info(
        f"WS_AUDIT: {event_type}",
        event_type=event_type,
        endpoint=endpoint,
        **{key: value for key, value in fields.items() if value is not None},
    )
