"""Reviewer assignment router (``/api/proposal-reviewers``)."""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.deps import get_assignment_service, get_db, get_principal
from proposal_review.errors import Forbidden
from proposal_review.models.assignment import (
    AssignmentCheckResponse,
    AssignmentResponse,
    AssignmentStatusUpdate,
    AssignReviewersRequest,
    ReviewerStatistics,
)
from proposal_review.models.auth import MessageResponse
from proposal_review.models.enums import Role
from proposal_review.services.access_control import require_assignment_owner
from proposal_review.services.assignment_service import ReviewerAssignmentService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/proposal-reviewers", tags=["proposal-reviewers"])


# ---------------------------------------------------------------------------
# POST /api/proposal-reviewers/assign
# ---------------------------------------------------------------------------


@router.post(
    "/assign", response_model=List[AssignmentResponse], status_code=status.HTTP_201_CREATED
)
async def assign_reviewers(
    body: AssignReviewersRequest,
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    """Assign reviewers to a SUBMITTED or UNDER_REVIEW proposal.

    The whole batch is validated first; nothing is written if any reviewer
    is rejected.
    """
    return await assignments.assign(
        body.proposal_id,
        body.reviewer_ids,
        principal.user_id,
        due_date=body.due_date,
        notes=body.notes,
    )


# ---------------------------------------------------------------------------
# Reviewer self-service
# ---------------------------------------------------------------------------


@router.get("/my-assignments", response_model=List[AssignmentResponse])
async def my_assignments(
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    return await assignments.for_reviewer(principal.user_id)


@router.get("/my-assignments/pending", response_model=List[AssignmentResponse])
async def my_pending_assignments(
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    return await assignments.pending_for_reviewer(principal.user_id)


@router.get("/my-assignments/completed", response_model=List[AssignmentResponse])
async def my_completed_assignments(
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    return await assignments.completed_for_reviewer(principal.user_id)


@router.get("/my-statistics", response_model=ReviewerStatistics)
async def my_statistics(
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    counts = await assignments.statistics(principal.user_id)
    return ReviewerStatistics(reviewer_id=principal.user_id, **counts)


@router.get("/my-proposal-ids", response_model=List[uuid.UUID])
async def my_proposal_ids(
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    return await assignments.assigned_proposal_ids(principal.user_id)


@router.get("/check-assignment/{proposal_id}", response_model=AssignmentCheckResponse)
async def check_assignment(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    assigned = await assignments.is_assigned(proposal_id, principal.user_id)
    return AssignmentCheckResponse(proposal_id=proposal_id, is_assigned=assigned)


# ---------------------------------------------------------------------------
# Committee views
# ---------------------------------------------------------------------------


@router.get("/proposal/{proposal_id}", response_model=List[AssignmentResponse])
async def assignments_for_proposal(
    proposal_id: uuid.UUID,
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    return await assignments.for_proposal(proposal_id)


@router.get("/overdue", response_model=List[AssignmentResponse])
async def overdue_assignments(
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    """Assignments past their due date that are not COMPLETED."""
    return await assignments.overdue()


@router.get("/reviewer/{reviewer_id}/statistics", response_model=ReviewerStatistics)
async def reviewer_statistics(
    reviewer_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    if principal.role is Role.REVIEWER and principal.user_id != reviewer_id:
        raise Forbidden()
    counts = await assignments.statistics(reviewer_id)
    return ReviewerStatistics(reviewer_id=reviewer_id, **counts)


# ---------------------------------------------------------------------------
# /api/proposal-reviewers/{assignment_id}
# ---------------------------------------------------------------------------


@router.put("/{assignment_id}/status", response_model=AssignmentResponse)
async def update_assignment_status(
    assignment_id: uuid.UUID,
    body: AssignmentStatusUpdate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    """Change an assignment's status. Reviewers may only change their own."""
    await require_assignment_owner(db, assignment_id, principal)
    return await assignments.update_status(assignment_id, body.status)


@router.delete("/{assignment_id}", response_model=MessageResponse)
async def remove_assignment(
    assignment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    assignments: ReviewerAssignmentService = Depends(get_assignment_service),
):
    await assignments.remove(assignment_id, principal.user_id)
    return MessageResponse(message="Assignment removed")
