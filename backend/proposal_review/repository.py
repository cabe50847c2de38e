"""Entity lookup and persistence helpers shared by the services.

Every loader returns ``None`` when the row does not exist; deciding whether
absence is a ``NotFound`` or something else is the caller's business.
"""

import uuid
from typing import Optional, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.models.db.assignment import ProposalReviewer
from proposal_review.models.db.evaluation import Evaluation
from proposal_review.models.db.proposal import Proposal
from proposal_review.models.db.user import User

T = TypeVar("T")


async def load_user(
    db: AsyncSession,
    *,
    user_id: Optional[uuid.UUID] = None,
    username: Optional[str] = None,
    email: Optional[str] = None,
) -> Optional[User]:
    """Load a user by id, or by username and/or email (either may match)."""
    if user_id is not None:
        return await db.get(User, user_id)
    clauses = []
    if username is not None:
        clauses.append(User.username == username)
    if email is not None:
        clauses.append(User.email == email)
    if not clauses:
        raise ValueError("load_user needs user_id, username or email")
    result = await db.execute(select(User).where(or_(*clauses)).limit(1))
    return result.scalar_one_or_none()


async def load_proposal(
    db: AsyncSession, proposal_id: uuid.UUID, *, for_update: bool = False
) -> Optional[Proposal]:
    """Load a proposal, optionally taking a row lock for a status change."""
    stmt = select(Proposal).where(Proposal.id == proposal_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def load_assignment_by_id(
    db: AsyncSession, assignment_id: uuid.UUID
) -> Optional[ProposalReviewer]:
    return await db.get(ProposalReviewer, assignment_id)


async def load_assignment(
    db: AsyncSession, proposal_id: uuid.UUID, reviewer_id: uuid.UUID
) -> Optional[ProposalReviewer]:
    result = await db.execute(
        select(ProposalReviewer).where(
            ProposalReviewer.proposal_id == proposal_id,
            ProposalReviewer.reviewer_id == reviewer_id,
        )
    )
    return result.scalar_one_or_none()


async def load_evaluation_by_id(
    db: AsyncSession, evaluation_id: uuid.UUID
) -> Optional[Evaluation]:
    return await db.get(Evaluation, evaluation_id)


async def load_evaluation(
    db: AsyncSession, proposal_id: uuid.UUID, reviewer_id: uuid.UUID
) -> Optional[Evaluation]:
    result = await db.execute(
        select(Evaluation).where(
            Evaluation.proposal_id == proposal_id,
            Evaluation.reviewer_id == reviewer_id,
        )
    )
    return result.scalar_one_or_none()


async def save(db: AsyncSession, entity: T) -> T:
    """Add *entity*, flush so constraints fire now, and reload server defaults."""
    db.add(entity)
    await db.flush()
    await db.refresh(entity)
    return entity
