"""
Database configuration and the minimal ORM mapping the status store needs.

The full relational schema belongs to the CRUD application; only the columns
the realtime core reads or writes are mapped here.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Engine, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.config.settings import settings

# Seconds a SQLite connection waits on a locked database before failing
SQLITE_BUSY_TIMEOUT = 5.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class RestaurantTable(Base):
    """A table on a branch floor plan."""

    __tablename__ = "restaurant_tables"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    branch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    table_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(Text, default="AVAILABLE", nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Order(Base):
    """An order placed at a branch, optionally tied to a table."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), nullable=False)
    branch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    table_id: Mapped[Optional[str]] = mapped_column(ForeignKey("restaurant_tables.id"))
    status: Mapped[str] = mapped_column(Text, default="PENDING", nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    table: Mapped[Optional[RestaurantTable]] = relationship()
    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", order_by="OrderItem.id", cascade="all, delete-orphan"
    )


class OrderItem(Base):
    """A line item; `name` is the menu item name at the time of ordering."""

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    order: Mapped[Order] = relationship(back_populates="items")


# =============================================================================
# Engine and sessions
# =============================================================================


def create_db_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL (defaults to settings.database_url).

    SQLite in-memory databases share one connection so every session sees
    the same data.
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_timeout=30,
        pool_recycle=1800,
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Context manager for database sessions outside of a request.

    Usage:
        with session_scope(factory) as db:
            db.get(Order, "o1")
    """
    db = factory()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session) -> None:
    """
    Commit with automatic rollback on failure.

    Raises the original exception after rolling back.
    """
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
