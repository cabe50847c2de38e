"""Project and Milestone ORM models.

Only the columns the review core consults are modelled: a project records
which proposal it was created from (the hard-delete guard) and who its PI
is (the milestone ownership predicates).
"""

import uuid
from datetime import date
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from proposal_review.models.db.base import Base, TimestampMixin

__all__ = ["Project", "Milestone"]


class Project(TimestampMixin, Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    proposal_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("proposals.id"), nullable=True, unique=True
    )
    principal_investigator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class Milestone(TimestampMixin, Base):
    __tablename__ = "milestones"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_completed: Mapped[bool] = mapped_column(
        Boolean, server_default="false", default=False, nullable=False
    )
