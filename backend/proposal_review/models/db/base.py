"""Re-export Base and provide common mixins and column types for ORM models."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, func
from sqlalchemy.orm import Mapped, mapped_column

from proposal_review.database import Base

__all__ = ["Base", "TimestampMixin", "enum_type"]


def enum_type(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Portable enum column stored as its string value (no native DB enum)."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )


class TimestampMixin:
    """Mixin that adds ``created_at`` and ``updated_at`` columns.

    Both default to ``NOW()`` on the server side.  ``updated_at`` is also
    refreshed on every UPDATE via ``onupdate``.
    """

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
