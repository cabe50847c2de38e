"""Evaluation ORM model.

One evaluation per (proposal, reviewer) pair, enforced by the
``uq_evaluation_proposal_reviewer`` constraint.  Scores are NUMERIC(4, 2).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from proposal_review.models.db.base import Base, TimestampMixin, enum_type
from proposal_review.models.enums import Recommendation

__all__ = ["Evaluation", "SCORE_FIELDS"]

SCORE_FIELDS = (
    "overall_score",
    "technical_score",
    "innovation_score",
    "feasibility_score",
    "budget_score",
    "impact_score",
)


class Evaluation(TimestampMixin, Base):
    __tablename__ = "evaluations"
    __table_args__ = (
        UniqueConstraint(
            "proposal_id", "reviewer_id", name="uq_evaluation_proposal_reviewer"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    proposal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    evaluation_stage: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scores
    overall_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    technical_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    innovation_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    feasibility_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    budget_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    impact_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)

    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recommendation: Mapped[Optional[Recommendation]] = mapped_column(
        enum_type(Recommendation, "evaluation_recommendation"), nullable=True
    )
    evaluation_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    is_final: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )
    conflict_of_interest: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )
