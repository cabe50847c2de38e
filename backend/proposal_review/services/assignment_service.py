"""Reviewer assignment management.

An assignment (``proposal_reviewers`` row) links one proposal to one
reviewer.  The pair is unique; the ``uq_proposal_reviewer`` constraint
backs the application-level check so concurrent requests cannot both
create the same pair.

``AssignmentStatus.OVERDUE`` is never written.  Overdue assignments are the
computed view returned by :meth:`ReviewerAssignmentService.overdue`.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.errors import (
    DuplicateAssignment,
    Forbidden,
    InvalidRole,
    InvalidState,
    NotFound,
)
from proposal_review.helpers.clock import Clock, utcnow
from proposal_review.models.db.assignment import ProposalReviewer
from proposal_review.models.db.user import User
from proposal_review.models.enums import (
    AssignmentStatus,
    NotificationKind,
    ProposalStatus,
    Role,
)
from proposal_review.repository import (
    load_assignment,
    load_assignment_by_id,
    load_proposal,
    load_user,
)
from proposal_review.services.notification_service import NotificationOutbox
from proposal_review.services.proposal_lifecycle import ProposalLifecycle

logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = frozenset({ProposalStatus.SUBMITTED, ProposalStatus.UNDER_REVIEW})
ASSIGNER_ROLES = (Role.COMMITTEE_CHAIR, Role.ADMIN)


class ReviewerAssignmentService:
    """Create, query and update reviewer assignments."""

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

    # ------------------------------------------------------------------
    # assign
    # ------------------------------------------------------------------

    async def assign(
        self,
        proposal_id: uuid.UUID,
        reviewer_ids: Sequence[uuid.UUID],
        assigner_id: uuid.UUID,
        due_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> list[ProposalReviewer]:
        """Assign one or more reviewers to a proposal.

        Every reviewer in the batch is validated before any row is written,
        so a failure leaves no partial batch behind.

        Args:
            proposal_id: Proposal to review.
            reviewer_ids: Users to assign; each must hold the REVIEWER role.
            assigner_id: User making the assignment.
            due_date: Optional due date applied to every new assignment.
            notes: Optional notes applied to every new assignment.

        Returns:
            The new assignments, in the order given.

        Raises:
            NotFound: Proposal, assigner or a reviewer does not exist.
            InvalidState: Proposal is not SUBMITTED or UNDER_REVIEW.
            Forbidden: Assigner is not a committee chair or admin.
            InvalidRole: A user in the batch is not a reviewer.
            DuplicateAssignment: A pair already exists or an id repeats.
        """
        proposal = await load_proposal(self.db, proposal_id, for_update=True)
        if proposal is None:
            raise NotFound("Proposal", proposal_id)
        if proposal.status not in ASSIGNABLE_STATUSES:
            raise InvalidState(
                "Reviewers can only be assigned to submitted proposals",
                proposal.status.value,
            )

        assigner = await load_user(self.db, user_id=assigner_id)
        if assigner is None:
            raise NotFound("User", assigner_id)
        if assigner.role not in ASSIGNER_ROLES:
            raise Forbidden("Only committee chairs and admins can assign reviewers")

        reviewers: list[User] = []
        seen: set[uuid.UUID] = set()
        for reviewer_id in reviewer_ids:
            reviewer = await load_user(self.db, user_id=reviewer_id)
            if reviewer is None:
                raise NotFound("User", reviewer_id)
            if reviewer.role is not Role.REVIEWER:
                raise InvalidRole(f"User {reviewer.username} is not a reviewer")
            if reviewer_id in seen or await load_assignment(
                self.db, proposal_id, reviewer_id
            ):
                raise DuplicateAssignment(
                    f"Reviewer {reviewer.username} is already assigned to this proposal"
                )
            seen.add(reviewer_id)
            reviewers.append(reviewer)

        now = self.clock()
        assignments = [
            ProposalReviewer(
                proposal_id=proposal_id,
                reviewer_id=reviewer.id,
                assigned_by_id=assigner.id,
                status=AssignmentStatus.PENDING,
                assigned_date=now,
                due_date=due_date,
                notes=notes,
            )
            for reviewer in reviewers
        ]
        self.db.add_all(assignments)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise DuplicateAssignment(
                "Reviewer is already assigned to this proposal"
            ) from exc
        for assignment in assignments:
            await self.db.refresh(assignment)

        await self.lifecycle.mark_under_review(proposal, assigner.id)

        for reviewer in reviewers:
            message = f"You have been assigned to review the proposal: '{proposal.title}'"
            if due_date is not None:
                message += f". Due date: {due_date.date().isoformat()}"
            self.outbox.notify(
                reviewer.id,
                NotificationKind.EVALUATION_ASSIGNED,
                "New Proposal Assignment",
                message,
                related_proposal_id=proposal.id,
                payload={"proposal_id": proposal.id, "assigned_by": assigner.id},
            )

        logger.info(
            "Assigned %d reviewer(s) to proposal %s (by %s)",
            len(assignments),
            proposal_id,
            assigner.username,
        )
        return assignments

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    async def update_status(
        self, assignment_id: uuid.UUID, new_status: AssignmentStatus
    ) -> ProposalReviewer:
        """Move an assignment to any status; COMPLETED stamps ``completed_date``."""
        assignment = await load_assignment_by_id(self.db, assignment_id)
        if assignment is None:
            raise NotFound("Assignment", assignment_id)
        return await self._set_status(assignment, new_status)

    async def update_status_for(
        self,
        proposal_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        new_status: AssignmentStatus,
    ) -> Optional[ProposalReviewer]:
        assignment = await load_assignment(self.db, proposal_id, reviewer_id)
        if assignment is None:
            return None
        return await self._set_status(assignment, new_status)

    async def _set_status(
        self, assignment: ProposalReviewer, new_status: AssignmentStatus
    ) -> ProposalReviewer:
        old = assignment.status
        assignment.status = new_status
        if new_status is AssignmentStatus.COMPLETED:
            assignment.completed_date = self.clock()
        await self.db.flush()
        logger.info(
            "Assignment %s status %s -> %s", assignment.id, old.value, new_status.value
        )
        return assignment

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def is_assigned(self, proposal_id: uuid.UUID, reviewer_id: uuid.UUID) -> bool:
        return await load_assignment(self.db, proposal_id, reviewer_id) is not None

    async def get(self, assignment_id: uuid.UUID) -> ProposalReviewer:
        assignment = await load_assignment_by_id(self.db, assignment_id)
        if assignment is None:
            raise NotFound("Assignment", assignment_id)
        return assignment

    async def for_reviewer(
        self, reviewer_id: uuid.UUID, status: Optional[AssignmentStatus] = None
    ) -> list[ProposalReviewer]:
        stmt = select(ProposalReviewer).where(ProposalReviewer.reviewer_id == reviewer_id)
        if status is not None:
            stmt = stmt.where(ProposalReviewer.status == status)
        result = await self.db.execute(stmt.order_by(ProposalReviewer.assigned_date.desc()))
        return list(result.scalars().all())

    async def pending_for_reviewer(self, reviewer_id: uuid.UUID) -> list[ProposalReviewer]:
        return await self.for_reviewer(reviewer_id, AssignmentStatus.PENDING)

    async def completed_for_reviewer(self, reviewer_id: uuid.UUID) -> list[ProposalReviewer]:
        return await self.for_reviewer(reviewer_id, AssignmentStatus.COMPLETED)

    async def for_proposal(self, proposal_id: uuid.UUID) -> list[ProposalReviewer]:
        result = await self.db.execute(
            select(ProposalReviewer)
            .where(ProposalReviewer.proposal_id == proposal_id)
            .order_by(ProposalReviewer.assigned_date)
        )
        return list(result.scalars().all())

    async def assigned_proposal_ids(self, reviewer_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(ProposalReviewer.proposal_id).where(
                ProposalReviewer.reviewer_id == reviewer_id
            )
        )
        return list(result.scalars().all())

    async def statistics(self, reviewer_id: uuid.UUID) -> dict[str, int]:
        """Assignment counts for one reviewer, by status."""
        result = await self.db.execute(
            select(ProposalReviewer.status, func.count(ProposalReviewer.id))
            .where(ProposalReviewer.reviewer_id == reviewer_id)
            .group_by(ProposalReviewer.status)
        )
        by_status = {row[0]: row[1] for row in result.all()}
        return {
            "total": sum(by_status.values()),
            "pending": by_status.get(AssignmentStatus.PENDING, 0),
            "in_progress": by_status.get(AssignmentStatus.IN_PROGRESS, 0),
            "completed": by_status.get(AssignmentStatus.COMPLETED, 0),
        }

    async def overdue(self) -> list[ProposalReviewer]:
        """Assignments past their due date and not COMPLETED (read-only view)."""
        result = await self.db.execute(
            select(ProposalReviewer)
            .where(
                ProposalReviewer.due_date.isnot(None),
                ProposalReviewer.due_date < self.clock(),
                ProposalReviewer.status != AssignmentStatus.COMPLETED,
            )
            .order_by(ProposalReviewer.due_date)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # remove
    # ------------------------------------------------------------------

    async def remove(self, assignment_id: uuid.UUID, requester_id: uuid.UUID) -> None:
        requester = await load_user(self.db, user_id=requester_id)
        if requester is None or requester.role not in ASSIGNER_ROLES:
            raise Forbidden("Only committee chairs and admins can remove assignments")
        assignment = await load_assignment_by_id(self.db, assignment_id)
        if assignment is None:
            raise NotFound("Assignment", assignment_id)
        await self.db.delete(assignment)
        await self.db.flush()
        logger.info("Assignment %s removed by %s", assignment_id, requester.username)
