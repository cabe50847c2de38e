"""Evaluation recording.

A reviewer records at most one evaluation per proposal; the
``uq_evaluation_proposal_reviewer`` constraint enforces this in the
database.  After an evaluation is written (or rewritten) the gate publishes
an :class:`EvaluationRecorded` event to the proposal lifecycle, which owns
the approval rule.

Recording an evaluation does not touch the reviewer's assignment status;
reviewers move their assignment to COMPLETED themselves.
"""

import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.errors import DuplicateEvaluation, Forbidden, InvalidState, NotFound
from proposal_review.helpers.clock import Clock, utcnow
from proposal_review.models.db.evaluation import SCORE_FIELDS, Evaluation
from proposal_review.models.enums import NotificationKind, Recommendation, Role
from proposal_review.models.evaluation import EvaluationCreate, EvaluationUpdate
from proposal_review.repository import (
    load_evaluation,
    load_evaluation_by_id,
    load_proposal,
    load_user,
)
from proposal_review.services.notification_service import NotificationOutbox
from proposal_review.services.proposal_lifecycle import (
    EvaluationRecorded,
    ProposalLifecycle,
)

logger = logging.getLogger(__name__)

ON_BEHALF_ROLES = (Role.ADMIN, Role.COMMITTEE_CHAIR)


class EvaluationGate:
    """Record, revise and finalize evaluations."""

    def __init__(
        self,
        db: AsyncSession,
        lifecycle: ProposalLifecycle,
        outbox: NotificationOutbox,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.lifecycle = lifecycle
        self.outbox = outbox
        self.clock = clock

    @staticmethod
    def reviewer_for(principal: Principal, requested: Optional[uuid.UUID]) -> uuid.UUID:
        """Whose evaluation *principal* is recording.

        Reviewers always record as themselves; admins and committee chairs
        may name another reviewer.
        """
        if requested is None or requested == principal.user_id:
            return principal.user_id
        if principal.has_role(*ON_BEHALF_ROLES):
            return requested
        raise Forbidden("Reviewers can only record their own evaluations")

    async def record(
        self,
        proposal_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        scores: Optional[dict[str, Optional[Decimal]]] = None,
        recommendation: Optional[Recommendation] = None,
        is_final: bool = False,
        conflict_of_interest: bool = False,
        comments: Optional[str] = None,
        evaluation_stage: Optional[str] = None,
    ) -> Evaluation:
        """Persist a new evaluation and publish it to the lifecycle.

        Raises:
            NotFound: Proposal or reviewer does not exist.
            DuplicateEvaluation: The reviewer already evaluated this proposal.
        """
        proposal = await load_proposal(self.db, proposal_id)
        if proposal is None:
            raise NotFound("Proposal", proposal_id)
        reviewer = await load_user(self.db, user_id=reviewer_id)
        if reviewer is None:
            raise NotFound("User", reviewer_id)
        if await load_evaluation(self.db, proposal_id, reviewer_id) is not None:
            raise DuplicateEvaluation(
                f"Reviewer {reviewer.username} has already evaluated this proposal"
            )

        evaluation = Evaluation(
            proposal_id=proposal_id,
            reviewer_id=reviewer_id,
            evaluation_stage=evaluation_stage,
            comments=comments,
            recommendation=recommendation,
            is_final=is_final,
            conflict_of_interest=conflict_of_interest,
            evaluation_date=self.clock(),
            **_scores(scores),
        )
        self.db.add(evaluation)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise DuplicateEvaluation(
                "Reviewer has already evaluated this proposal"
            ) from exc
        await self.db.refresh(evaluation)
        logger.info(
            "Evaluation %s recorded for proposal %s by %s (recommendation=%s)",
            evaluation.id,
            proposal_id,
            reviewer.username,
            recommendation.value if recommendation else None,
        )

        self.outbox.notify(
            proposal.principal_investigator_id,
            NotificationKind.EVALUATION_RECEIVED,
            "Evaluation Received",
            f"A new evaluation has been submitted for your proposal '{proposal.title}'",
            related_proposal_id=proposal_id,
            payload={"evaluation_id": evaluation.id},
        )
        await self._publish(evaluation)
        return evaluation

    async def record_from(self, principal: Principal, data: EvaluationCreate) -> Evaluation:
        reviewer_id = self.reviewer_for(principal, data.reviewer_id)
        return await self.record(
            data.proposal_id,
            reviewer_id,
            scores={name: getattr(data, name) for name in SCORE_FIELDS},
            recommendation=data.recommendation,
            is_final=data.is_final,
            conflict_of_interest=data.conflict_of_interest,
            comments=data.comments,
            evaluation_stage=data.evaluation_stage,
        )

    async def update(
        self, evaluation_id: uuid.UUID, principal: Principal, data: EvaluationUpdate
    ) -> Evaluation:
        """Rewrite an evaluation and republish it.

        An update that sets the recommendation to APPROVE approves the
        proposal exactly like a new APPROVE evaluation does.
        """
        evaluation = await self.get(evaluation_id)
        self._require_author(evaluation, principal)
        for name, value in data.model_dump(exclude_unset=True).items():
            setattr(evaluation, name, value)
        await self.db.flush()
        await self.db.refresh(evaluation)
        await self._publish(evaluation)
        return evaluation

    async def finalize(self, evaluation_id: uuid.UUID, principal: Principal) -> Evaluation:
        evaluation = await self.get(evaluation_id)
        self._require_author(evaluation, principal)
        if evaluation.is_final:
            raise InvalidState("Evaluation is already finalized", "FINAL")
        evaluation.is_final = True
        await self.db.flush()
        await self.db.refresh(evaluation)
        logger.info("Evaluation %s finalized", evaluation_id)
        return evaluation

    async def unfinalize(self, evaluation_id: uuid.UUID, principal: Principal) -> Evaluation:
        evaluation = await self.get(evaluation_id)
        self._require_author(evaluation, principal)
        evaluation.is_final = False
        await self.db.flush()
        await self.db.refresh(evaluation)
        return evaluation

    async def delete(self, evaluation_id: uuid.UUID) -> None:
        evaluation = await self.get(evaluation_id)
        await self.db.delete(evaluation)
        await self.db.flush()
        logger.info("Evaluation %s deleted", evaluation_id)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def get(self, evaluation_id: uuid.UUID) -> Evaluation:
        evaluation = await load_evaluation_by_id(self.db, evaluation_id)
        if evaluation is None:
            raise NotFound("Evaluation", evaluation_id)
        return evaluation

    async def get_for_pair(
        self, proposal_id: uuid.UUID, reviewer_id: uuid.UUID
    ) -> Evaluation:
        evaluation = await load_evaluation(self.db, proposal_id, reviewer_id)
        if evaluation is None:
            raise NotFound("Evaluation")
        return evaluation

    async def list_all(self) -> list[Evaluation]:
        result = await self.db.execute(
            select(Evaluation).order_by(Evaluation.evaluation_date.desc())
        )
        return list(result.scalars().all())

    async def for_proposal(self, proposal_id: uuid.UUID) -> list[Evaluation]:
        result = await self.db.execute(
            select(Evaluation)
            .where(Evaluation.proposal_id == proposal_id)
            .order_by(Evaluation.evaluation_date)
        )
        return list(result.scalars().all())

    async def for_reviewer(self, reviewer_id: uuid.UUID) -> list[Evaluation]:
        result = await self.db.execute(
            select(Evaluation)
            .where(Evaluation.reviewer_id == reviewer_id)
            .order_by(Evaluation.evaluation_date.desc())
        )
        return list(result.scalars().all())

    async def pending_for_reviewer(self, reviewer_id: uuid.UUID) -> list[Evaluation]:
        """The reviewer's evaluations that are not final yet."""
        return await self._matching(
            Evaluation.reviewer_id == reviewer_id, Evaluation.is_final.is_(False)
        )

    async def final_evaluations(self) -> list[Evaluation]:
        return await self._matching(Evaluation.is_final.is_(True))

    async def final_for_proposal(self, proposal_id: uuid.UUID) -> list[Evaluation]:
        return await self._matching(
            Evaluation.proposal_id == proposal_id, Evaluation.is_final.is_(True)
        )

    async def conflict_of_interest(self) -> list[Evaluation]:
        return await self._matching(Evaluation.conflict_of_interest.is_(True))

    async def by_recommendation(self, recommendation: Recommendation) -> list[Evaluation]:
        return await self._matching(Evaluation.recommendation == recommendation)

    async def count_for_proposal(
        self, proposal_id: uuid.UUID, *, final_only: bool = False
    ) -> int:
        stmt = select(func.count(Evaluation.id)).where(
            Evaluation.proposal_id == proposal_id
        )
        if final_only:
            stmt = stmt.where(Evaluation.is_final.is_(True))
        result = await self.db.execute(stmt)
        return result.scalar_one()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    async def _matching(self, *criteria) -> list[Evaluation]:
        result = await self.db.execute(
            select(Evaluation)
            .where(*criteria)
            .order_by(Evaluation.evaluation_date.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    def _require_author(evaluation: Evaluation, principal: Principal) -> None:
        if principal.role is Role.REVIEWER and evaluation.reviewer_id != principal.user_id:
            raise Forbidden()

    async def _publish(self, evaluation: Evaluation) -> None:
        await self.lifecycle.on_evaluation_recorded(
            EvaluationRecorded(
                evaluation_id=evaluation.id,
                proposal_id=evaluation.proposal_id,
                reviewer_id=evaluation.reviewer_id,
                recommendation=evaluation.recommendation,
                is_final=evaluation.is_final,
            )
        )


def _scores(scores: Optional[dict[str, Optional[Decimal]]]) -> dict[str, Optional[Decimal]]:
    scores = scores or {}
    unknown = set(scores) - set(SCORE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown score fields: {', '.join(sorted(unknown))}")
    return {name: scores.get(name) for name in SCORE_FIELDS}
