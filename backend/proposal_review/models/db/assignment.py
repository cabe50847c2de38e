"""ProposalReviewer (reviewer assignment) ORM model.

At most one assignment may exist per (proposal, reviewer) pair; the
``uq_proposal_reviewer`` constraint enforces this in the database so two
concurrent assignment requests cannot both succeed.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from proposal_review.models.db.base import Base, enum_type
from proposal_review.models.enums import AssignmentStatus

__all__ = ["ProposalReviewer"]


class ProposalReviewer(Base):
    __tablename__ = "proposal_reviewers"
    __table_args__ = (
        UniqueConstraint("proposal_id", "reviewer_id", name="uq_proposal_reviewer"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )

    status: Mapped[AssignmentStatus] = mapped_column(
        enum_type(AssignmentStatus, "assignment_status"),
        default=AssignmentStatus.PENDING,
        nullable=False,
    )
    assigned_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
