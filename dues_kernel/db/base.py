"""
Module: dues_kernel.db.base
Responsibility: the declarative base every dues table maps onto, and the
    audit columns shared by obligations, payments and installment plans.
Architecture position: Kernel > DB.  Imported by every orm.py under modules/.
    MUST NOT import from modules/, services/ or engines/.

Invariants enforced:
    - Every row is keyed by a uuid4 stored as text, so SQLite and PostgreSQL
      share one schema.
    - Amounts annotated as Decimal become Numeric(38, 9); nothing maps to float.
    - Every tracked row names the actor that created it.  Sweeps and processor
      callbacks with no user attached record SYSTEM_ACTOR_ID.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, MappedColumn, mapped_column
from sqlalchemy.types import TypeDecorator

SYSTEM_ACTOR_ID = UUID(int=0)


class UUIDString(TypeDecorator):
    """UUID bound as its 36-char string form and read back as a UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


def _actor_column(*, nullable: bool) -> MappedColumn:
    return mapped_column(UUIDString(), nullable=nullable)


def _timestamp_column(*, touch_on_update: bool = False) -> MappedColumn:
    return mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now() if touch_on_update else None,
        nullable=False,
    )


class Base(DeclarativeBase):
    """Declarative base; ``id`` is a client-side uuid4."""

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who/when columns.

    ``created_at`` comes from the database clock on insert; ``updated_at``
    moves on every flush that changes the row.  ``updated_by_id`` stays empty
    until the first change after creation.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = _timestamp_column()
    updated_at: Mapped[datetime] = _timestamp_column(touch_on_update=True)
    created_by_id: Mapped[UUID] = _actor_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = _actor_column(nullable=True)


__all__ = ["Base", "TrackedBase", "UUIDString", "UUID", "SYSTEM_ACTOR_ID"]
