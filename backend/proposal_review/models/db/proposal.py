"""Proposal ORM models.

``status`` is the single source of truth for which operations are legal on
a proposal; it is only ever written by
:class:`~proposal_review.services.proposal_lifecycle.ProposalLifecycle`,
which also appends a ``proposal_status_history`` row for every change.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from proposal_review.models.db.base import Base, TimestampMixin, enum_type
from proposal_review.models.enums import PriorityLevel, ProjectType, ProposalStatus

__all__ = ["Proposal", "ProposalStatusHistory"]


class Proposal(TimestampMixin, Base):
    __tablename__ = "proposals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Ownership
    principal_investigator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    department_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("departments.id"), nullable=False, index=True
    )

    # Content
    title: Mapped[str] = mapped_column(Text, nullable=False)
    abstract: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    co_investigators: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    project_type: Mapped[ProjectType] = mapped_column(
        enum_type(ProjectType, "proposal_project_type"), nullable=False
    )
    funding_agency: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True
    )
    project_duration_months: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    submission_deadline: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    priority_level: Mapped[PriorityLevel] = mapped_column(
        enum_type(PriorityLevel, "proposal_priority"),
        default=PriorityLevel.MEDIUM,
        nullable=False,
    )

    # Lifecycle
    status: Mapped[ProposalStatus] = mapped_column(
        enum_type(ProposalStatus, "proposal_status"),
        default=ProposalStatus.DRAFT,
        nullable=False,
        index=True,
    )
    submission_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class ProposalStatusHistory(Base):
    __tablename__ = "proposal_status_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    old_status: Mapped[Optional[ProposalStatus]] = mapped_column(
        enum_type(ProposalStatus, "history_old_status"), nullable=True
    )
    new_status: Mapped[ProposalStatus] = mapped_column(
        enum_type(ProposalStatus, "history_new_status"), nullable=False
    )
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
