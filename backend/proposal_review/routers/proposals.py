"""Proposals router.

CRUD for research proposals plus the status transition endpoints.  The
generic update never changes status; transitions have their own routes.
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.deps import get_db, get_lifecycle, get_principal
from proposal_review.models.auth import MessageResponse
from proposal_review.models.enums import ProposalStatus
from proposal_review.models.proposal import (
    CanDeleteResponse,
    ProposalCreate,
    ProposalListResponse,
    ProposalResponse,
    ProposalUpdate,
    StatusChangeRequest,
    StatusHistoryResponse,
)
from proposal_review.services.access_control import require_proposal_view
from proposal_review.services.proposal_lifecycle import ProposalLifecycle

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/proposals", tags=["proposals"])


# ---------------------------------------------------------------------------
# GET  /api/proposals
# ---------------------------------------------------------------------------


@router.get("", response_model=ProposalListResponse)
async def list_proposals(
    status_filter: Optional[ProposalStatus] = Query(
        None, alias="status", description="Filter by status"
    ),
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    """List the proposals visible to the caller.

    PIs see their own proposals, reviewers see their assigned proposals and
    every other permitted role sees all of them.
    """
    proposals = await lifecycle.list_visible(principal, status_filter)
    return ProposalListResponse(
        proposals=[ProposalResponse.model_validate(p) for p in proposals],
        total=len(proposals),
    )


@router.post("", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
async def create_proposal(
    body: ProposalCreate,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.create(principal, body)


# ---------------------------------------------------------------------------
# /api/proposals/{proposal_id}
# ---------------------------------------------------------------------------


@router.get("/{proposal_id}", response_model=ProposalResponse)
async def get_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Fetch one proposal. Reviewers may only fetch proposals assigned to them."""
    return await require_proposal_view(db, proposal_id, principal)


@router.put("/{proposal_id}", response_model=ProposalResponse)
async def update_proposal(
    proposal_id: uuid.UUID,
    body: ProposalUpdate,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.update(proposal_id, principal, body)


@router.delete("/{proposal_id}", response_model=MessageResponse)
async def delete_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    await lifecycle.delete(proposal_id, principal)
    return MessageResponse(message="Proposal deleted")


@router.get("/{proposal_id}/can-delete", response_model=CanDeleteResponse)
async def can_delete_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    await require_proposal_view(db, proposal_id, principal)
    allowed, reason = await lifecycle.can_delete(proposal_id)
    return CanDeleteResponse(can_delete=allowed, reason=reason)


@router.get("/{proposal_id}/history", response_model=List[StatusHistoryResponse])
async def get_status_history(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    await require_proposal_view(db, proposal_id, principal)
    return await lifecycle.history(proposal_id)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@router.put("/{proposal_id}/submit", response_model=ProposalResponse)
async def submit_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    """DRAFT -> SUBMITTED."""
    return await lifecycle.submit(proposal_id, principal)


@router.put("/{proposal_id}/withdraw", response_model=ProposalResponse)
async def withdraw_proposal(
    proposal_id: uuid.UUID,
    body: Optional[StatusChangeRequest] = None,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    reason = body.reason if body else None
    return await lifecycle.withdraw(proposal_id, principal, reason)


@router.put("/{proposal_id}/approve", response_model=ProposalResponse)
async def approve_proposal(
    proposal_id: uuid.UUID,
    body: Optional[StatusChangeRequest] = None,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    reason = body.reason if body else None
    return await lifecycle.decide(proposal_id, principal, approve=True, reason=reason)


@router.put("/{proposal_id}/reject", response_model=ProposalResponse)
async def reject_proposal(
    proposal_id: uuid.UUID,
    body: Optional[StatusChangeRequest] = None,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    reason = body.reason if body else None
    return await lifecycle.decide(proposal_id, principal, approve=False, reason=reason)


@router.put("/{proposal_id}/soft-delete", response_model=ProposalResponse)
async def soft_delete_proposal(
    proposal_id: uuid.UUID,
    body: Optional[StatusChangeRequest] = None,
    principal: Principal = Depends(get_principal),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    """Retire a proposal (-> WITHDRAWN). Approved proposals cannot be retired."""
    reason = body.reason if body else None
    return await lifecycle.soft_delete(proposal_id, principal, reason)
