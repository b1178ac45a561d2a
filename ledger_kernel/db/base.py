"""
Module: ledger_kernel.db.base
Responsibility: Declarative base classes for the ledger's SQLAlchemy ORM
    models.  Provides the string primary key convention, the type annotation
    map for consistent column types, and the TrackedBase mixin for audit
    timestamps.
Architecture position: Kernel > DB.  Lowest-level import target within the
    persistence side of the kernel.  ALL model files import from here.  This
    module MUST NOT import from models/, domain/, or outer layers.

Invariants enforced:
    - String primary keys: record ids are opaque host-supplied strings; rows
      created without one receive a uuid4 string.
    - Decimal precision: type_annotation_map maps Python Decimal to
      Numeric(38, 9).  NEVER use float for monetary amounts.
    - Audit timestamps: TrackedBase provides created_at and updated_at.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import uuid4

from sqlalchemy import Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

ID_LENGTH = 64


def new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """
    Declarative base for all ledger SQLAlchemy models.

    Guarantees:
        - id is a String(64) primary key, uuid4 string when not supplied.
        - Decimal maps to Numeric(38, 9) -- financial-grade precision.
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        str: String(255),
    }

    id: Mapped[str] = mapped_column(
        String(ID_LENGTH),
        primary_key=True,
        default=new_id,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamps.

    Guarantees:
        - created_at is set to server NOW() on INSERT and never changes.
        - updated_at auto-updates on every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
