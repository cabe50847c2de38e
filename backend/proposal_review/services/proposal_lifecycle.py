"""Proposal status state machine.

Every status write in the service goes through :class:`ProposalLifecycle`.
Each change appends a ``proposal_status_history`` row and queues a
notification for the principal investigator.

Transitions::

    DRAFT ──> SUBMITTED ──> UNDER_REVIEW ──> APPROVED
      │           │              │      └──> REJECTED
      └───────────┴──────────────┴─────────> WITHDRAWN

APPROVED, REJECTED and WITHDRAWN are terminal.  The one path that ignores
this table is an APPROVE evaluation (:meth:`ProposalLifecycle.on_evaluation_recorded`),
which approves the proposal from whatever status it is in.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.errors import (
    Forbidden,
    InvalidOperation,
    InvalidRole,
    InvalidState,
    NotFound,
)
from proposal_review.helpers.clock import Clock, utcnow
from proposal_review.models.db.assignment import ProposalReviewer
from proposal_review.models.db.evaluation import Evaluation
from proposal_review.models.db.notification import Notification
from proposal_review.models.db.project import Project
from proposal_review.models.db.proposal import Proposal, ProposalStatusHistory
from proposal_review.models.db.user import Department
from proposal_review.models.enums import (
    NotificationKind,
    ProposalStatus,
    Recommendation,
    Role,
)
from proposal_review.models.proposal import ProposalCreate, ProposalUpdate
from proposal_review.repository import load_proposal, load_user, save
from proposal_review.services.notification_service import NotificationOutbox

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Allowed status transitions
# ---------------------------------------------------------------------------
TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.SUBMITTED, ProposalStatus.WITHDRAWN}),
    ProposalStatus.SUBMITTED: frozenset(
        {ProposalStatus.UNDER_REVIEW, ProposalStatus.WITHDRAWN}
    ),
    ProposalStatus.UNDER_REVIEW: frozenset(
        {ProposalStatus.APPROVED, ProposalStatus.REJECTED, ProposalStatus.WITHDRAWN}
    ),
    # Terminal states -- no outgoing transitions
    ProposalStatus.APPROVED: frozenset(),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.WITHDRAWN: frozenset(),
}

FINALIZED = frozenset({ProposalStatus.APPROVED, ProposalStatus.REJECTED})
DECIDERS = (Role.ADMIN, Role.DEPARTMENT_HEAD)


def can_transition(current: ProposalStatus, target: ProposalStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class EvaluationRecorded:
    """Published by the evaluation gate after an evaluation is written."""

    evaluation_id: uuid.UUID
    proposal_id: uuid.UUID
    reviewer_id: uuid.UUID
    recommendation: Optional[Recommendation]
    is_final: bool


class ProposalLifecycle:
    """Service layer for proposal creation, editing and status changes."""

    def __init__(
        self,
        db: AsyncSession,
        outbox: NotificationOutbox,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.outbox = outbox
        self.clock = clock

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    async def get(self, proposal_id: uuid.UUID, *, for_update: bool = False) -> Proposal:
        proposal = await load_proposal(self.db, proposal_id, for_update=for_update)
        if proposal is None:
            raise NotFound("Proposal", proposal_id)
        return proposal

    async def list_visible(
        self, principal: Principal, status: Optional[ProposalStatus] = None
    ) -> list[Proposal]:
        """List proposals visible to *principal*.

        Principal investigators see their own proposals and reviewers see the
        proposals assigned to them; every other role sees all proposals.
        """
        stmt = select(Proposal)
        if principal.role is Role.PRINCIPAL_INVESTIGATOR:
            stmt = stmt.where(Proposal.principal_investigator_id == principal.user_id)
        elif principal.role is Role.REVIEWER:
            stmt = stmt.join(
                ProposalReviewer, ProposalReviewer.proposal_id == Proposal.id
            ).where(ProposalReviewer.reviewer_id == principal.user_id)
        if status is not None:
            stmt = stmt.where(Proposal.status == status)
        result = await self.db.execute(stmt.order_by(Proposal.created_at.desc()))
        return list(result.scalars().all())

    async def history(self, proposal_id: uuid.UUID) -> list[ProposalStatusHistory]:
        await self.get(proposal_id)
        result = await self.db.execute(
            select(ProposalStatusHistory)
            .where(ProposalStatusHistory.proposal_id == proposal_id)
            .order_by(ProposalStatusHistory.changed_at)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # create / update
    # ------------------------------------------------------------------

    async def create(self, principal: Principal, data: ProposalCreate) -> Proposal:
        """Create a proposal in DRAFT.

        The principal investigator defaults to the caller when the caller is
        a PI.  A PI may not create proposals on someone else's behalf.

        Raises:
            InvalidOperation: No PI given and the caller is not a PI.
            Forbidden: A PI named a different PI.
            NotFound: PI or department does not exist.
            InvalidRole: The named PI does not hold the PI role.
        """
        pi_id = data.principal_investigator_id
        if pi_id is None:
            if principal.role is not Role.PRINCIPAL_INVESTIGATOR:
                raise InvalidOperation("principal_investigator_id is required")
            pi_id = principal.user_id
        elif principal.role is Role.PRINCIPAL_INVESTIGATOR and pi_id != principal.user_id:
            raise Forbidden()

        pi = await load_user(self.db, user_id=pi_id)
        if pi is None:
            raise NotFound("User", pi_id)
        if pi.role is not Role.PRINCIPAL_INVESTIGATOR:
            raise InvalidRole(f"User {pi.username} is not a principal investigator")

        if await self.db.get(Department, data.department_id) is None:
            raise NotFound("Department", data.department_id)

        fields = data.model_dump(exclude={"principal_investigator_id"})
        proposal = Proposal(
            **fields,
            principal_investigator_id=pi_id,
            created_by_id=principal.user_id,
            status=ProposalStatus.DRAFT,
        )
        proposal = await save(self.db, proposal)
        self._record_history(proposal.id, None, ProposalStatus.DRAFT, principal.user_id)
        await self.db.flush()

        logger.info("Proposal %s created by %s", proposal.id, principal.username)
        return proposal

    async def update(
        self, proposal_id: uuid.UUID, principal: Principal, data: ProposalUpdate
    ) -> Proposal:
        """Edit proposal content. Only DRAFT proposals are editable."""
        proposal = await self.get(proposal_id, for_update=True)
        self._require_owner(proposal, principal)
        if proposal.status is not ProposalStatus.DRAFT:
            raise InvalidState("Only DRAFT proposals can be edited", proposal.status.value)

        for name, value in data.model_dump(exclude_unset=True).items():
            setattr(proposal, name, value)
        await self.db.flush()
        await self.db.refresh(proposal)
        return proposal

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    async def submit(self, proposal_id: uuid.UUID, principal: Principal) -> Proposal:
        """DRAFT -> SUBMITTED, stamping ``submission_date``."""
        proposal = await self.get(proposal_id, for_update=True)
        self._require_owner(proposal, principal)
        if proposal.status is not ProposalStatus.DRAFT:
            raise InvalidState(
                "Only DRAFT proposals can be submitted", proposal.status.value
            )
        proposal.submission_date = self.clock()
        await self._apply(
            proposal,
            ProposalStatus.SUBMITTED,
            principal.user_id,
            kind=NotificationKind.PROPOSAL_SUBMITTED,
        )
        return proposal

    async def mark_under_review(
        self, proposal: Proposal, actor_id: Optional[uuid.UUID]
    ) -> bool:
        """SUBMITTED -> UNDER_REVIEW; a no-op when already UNDER_REVIEW.

        Returns:
            True if the status changed.
        """
        if proposal.status is ProposalStatus.UNDER_REVIEW:
            return False
        self._guard(proposal, ProposalStatus.UNDER_REVIEW)
        await self._apply(
            proposal, ProposalStatus.UNDER_REVIEW, actor_id, reason="Reviewers assigned"
        )
        return True

    async def withdraw(
        self,
        proposal_id: uuid.UUID,
        principal: Principal,
        reason: Optional[str] = None,
    ) -> Proposal:
        """Withdraw a proposal that has not been decided.

        Withdrawing an already WITHDRAWN proposal succeeds without change.
        """
        proposal = await self.get(proposal_id, for_update=True)
        self._require_owner(proposal, principal)
        if proposal.status is ProposalStatus.WITHDRAWN:
            return proposal
        if proposal.status in FINALIZED:
            raise InvalidState(
                "Cannot withdraw a proposal that has been decided",
                proposal.status.value,
            )
        await self._apply(proposal, ProposalStatus.WITHDRAWN, principal.user_id, reason=reason)
        return proposal

    async def decide(
        self,
        proposal_id: uuid.UUID,
        principal: Principal,
        approve: bool,
        reason: Optional[str] = None,
    ) -> Proposal:
        """UNDER_REVIEW -> APPROVED or REJECTED by a department head or admin."""
        if not principal.has_role(*DECIDERS):
            raise Forbidden()
        proposal = await self.get(proposal_id, for_update=True)
        target = ProposalStatus.APPROVED if approve else ProposalStatus.REJECTED
        if proposal.status is not ProposalStatus.UNDER_REVIEW:
            raise InvalidState(
                f"Only proposals under review can be {target.value.lower()}",
                proposal.status.value,
            )
        await self._apply(proposal, target, principal.user_id, reason=reason)
        return proposal

    async def soft_delete(
        self,
        proposal_id: uuid.UUID,
        principal: Principal,
        reason: Optional[str] = None,
    ) -> Proposal:
        """Retire a proposal by moving it to WITHDRAWN."""
        proposal = await self.get(proposal_id, for_update=True)
        self._require_owner(proposal, principal)
        if proposal.status is ProposalStatus.APPROVED:
            raise InvalidOperation("Cannot delete an approved proposal")
        if proposal.status is ProposalStatus.WITHDRAWN:
            return proposal
        self._guard(proposal, ProposalStatus.WITHDRAWN)
        await self._apply(
            proposal,
            ProposalStatus.WITHDRAWN,
            principal.user_id,
            reason=reason or "Soft deleted",
        )
        return proposal

    async def on_evaluation_recorded(self, event: EvaluationRecorded) -> bool:
        """Apply the evaluation approval rule.

        A single APPROVE recommendation approves the proposal from any
        status, without regard to ``is_final`` or how many reviewers have
        responded.  Other recommendations leave the status alone.

        Returns:
            True if the proposal status changed.
        """
        if event.recommendation is not Recommendation.APPROVE:
            return False
        proposal = await self.get(event.proposal_id, for_update=True)
        if proposal.status is ProposalStatus.APPROVED:
            logger.info(
                "Proposal %s already approved; evaluation %s changes nothing",
                proposal.id,
                event.evaluation_id,
            )
            return False
        if proposal.status not in (ProposalStatus.SUBMITTED, ProposalStatus.UNDER_REVIEW):
            logger.warning(
                "Evaluation %s approves proposal %s from %s",
                event.evaluation_id,
                proposal.id,
                proposal.status.value,
            )
        await self._apply(
            proposal,
            ProposalStatus.APPROVED,
            event.reviewer_id,
            reason=f"Approved by evaluation {event.evaluation_id}",
        )
        return True

    # ------------------------------------------------------------------
    # hard delete
    # ------------------------------------------------------------------

    async def deletion_blocker(self, proposal: Proposal) -> Optional[str]:
        """Why *proposal* cannot be hard-deleted, or ``None`` if it can."""
        if proposal.status is ProposalStatus.UNDER_REVIEW:
            return "Cannot delete proposal that is under review"
        if proposal.status is ProposalStatus.APPROVED:
            result = await self.db.execute(
                select(Project.id).where(Project.proposal_id == proposal.id)
            )
            if result.first() is not None:
                return "Cannot delete approved proposal that has been converted to a project"
        return None

    async def can_delete(self, proposal_id: uuid.UUID) -> tuple[bool, Optional[str]]:
        proposal = await self.get(proposal_id)
        blocker = await self.deletion_blocker(proposal)
        return blocker is None, blocker

    async def delete(self, proposal_id: uuid.UUID, principal: Principal) -> None:
        """Hard-delete a proposal and the rows that hang off it."""
        if not principal.has_role(Role.ADMIN):
            raise Forbidden()
        proposal = await self.get(proposal_id, for_update=True)
        blocker = await self.deletion_blocker(proposal)
        if blocker is not None:
            raise InvalidOperation(blocker)

        for model, column in (
            (ProposalReviewer, ProposalReviewer.proposal_id),
            (Evaluation, Evaluation.proposal_id),
            (ProposalStatusHistory, ProposalStatusHistory.proposal_id),
            (Notification, Notification.related_proposal_id),
        ):
            await self.db.execute(delete(model).where(column == proposal_id))
        await self.db.delete(proposal)
        await self.db.flush()
        logger.info("Proposal %s deleted by %s", proposal_id, principal.username)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_owner(proposal: Proposal, principal: Principal) -> None:
        if principal.role is not Role.PRINCIPAL_INVESTIGATOR:
            return
        if principal.user_id not in (proposal.principal_investigator_id, proposal.created_by_id):
            raise Forbidden()

    @staticmethod
    def _guard(proposal: Proposal, target: ProposalStatus) -> None:
        if not can_transition(proposal.status, target):
            allowed = ", ".join(s.value for s in sorted(TRANSITIONS[proposal.status]))
            raise InvalidState(
                f"Cannot transition to {target.value} "
                f"(allowed: {allowed or 'none, terminal state'})",
                proposal.status.value,
            )

    def _record_history(
        self,
        proposal_id: uuid.UUID,
        old: Optional[ProposalStatus],
        new: ProposalStatus,
        actor_id: Optional[uuid.UUID],
        reason: Optional[str] = None,
    ) -> None:
        self.db.add(
            ProposalStatusHistory(
                proposal_id=proposal_id,
                old_status=old,
                new_status=new,
                changed_by=actor_id,
                reason=reason,
                changed_at=self.clock(),
            )
        )

    async def _apply(
        self,
        proposal: Proposal,
        target: ProposalStatus,
        actor_id: Optional[uuid.UUID],
        *,
        reason: Optional[str] = None,
        kind: NotificationKind = NotificationKind.PROPOSAL_STATUS_CHANGED,
    ) -> None:
        old = proposal.status
        proposal.status = target
        self._record_history(proposal.id, old, target, actor_id, reason)
        await self.db.flush()
        await self.db.refresh(proposal)

        logger.info(
            "Proposal %s status %s -> %s (actor=%s)",
            proposal.id,
            old.value,
            target.value,
            actor_id,
        )
        payload: dict[str, Any] = {
            "proposal_id": proposal.id,
            "old_status": old.value,
            "new_status": target.value,
        }
        if kind is NotificationKind.PROPOSAL_SUBMITTED:
            title = "Proposal Submitted"
            message = f"Your proposal '{proposal.title}' has been submitted for review"
        else:
            title = "Proposal Status Updated"
            message = (
                f"The status of your proposal '{proposal.title}' changed "
                f"from {old.value} to {target.value}"
            )
        self.outbox.notify(
            proposal.principal_investigator_id,
            kind,
            title,
            message,
            related_proposal_id=proposal.id,
            payload=payload,
        )
