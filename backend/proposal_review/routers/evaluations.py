"""Evaluations router."""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.deps import get_db, get_evaluation_gate, get_principal
from proposal_review.errors import Forbidden
from proposal_review.models.auth import MessageResponse
from proposal_review.models.enums import Recommendation, Role
from proposal_review.models.evaluation import (
    EvaluationCreate,
    EvaluationResponse,
    EvaluationUpdate,
)
from proposal_review.services.access_control import require_proposal_view
from proposal_review.services.evaluation_service import EvaluationGate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/evaluations", tags=["evaluations"])


@router.post("", response_model=EvaluationResponse, status_code=status.HTTP_201_CREATED)
async def record_evaluation(
    body: EvaluationCreate,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    """Record an evaluation.

    An APPROVE recommendation approves the proposal immediately.  The
    reviewer's assignment status is left unchanged.
    """
    return await gate.record_from(principal, body)


@router.get("", response_model=List[EvaluationResponse])
async def list_evaluations(gate: EvaluationGate = Depends(get_evaluation_gate)):
    return await gate.list_all()


def _own_only(principal: Principal, evaluations):
    if principal.role is Role.REVIEWER:
        # Reviewers see only their own evaluations
        return [e for e in evaluations if e.reviewer_id == principal.user_id]
    return evaluations


@router.get("/final", response_model=List[EvaluationResponse])
async def final_evaluations(
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    return _own_only(principal, await gate.final_evaluations())


@router.get("/conflict-of-interest", response_model=List[EvaluationResponse])
async def conflicted_evaluations(
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    """Evaluations whose reviewer declared a conflict of interest."""
    return _own_only(principal, await gate.conflict_of_interest())


@router.get("/recommendation/{recommendation}", response_model=List[EvaluationResponse])
async def evaluations_by_recommendation(
    recommendation: Recommendation,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    return _own_only(principal, await gate.by_recommendation(recommendation))


@router.get("/proposal/{proposal_id}", response_model=List[EvaluationResponse])
async def evaluations_for_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    return _own_only(principal, await gate.for_proposal(proposal_id))


@router.get("/proposal/{proposal_id}/final", response_model=List[EvaluationResponse])
async def final_evaluations_for_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    return _own_only(principal, await gate.final_for_proposal(proposal_id))


@router.get("/proposal/{proposal_id}/count", response_model=int)
async def count_evaluations_for_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    await require_proposal_view(db, proposal_id, principal)
    return await gate.count_for_proposal(proposal_id)


@router.get("/proposal/{proposal_id}/count/final", response_model=int)
async def count_final_evaluations_for_proposal(
    proposal_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    await require_proposal_view(db, proposal_id, principal)
    return await gate.count_for_proposal(proposal_id, final_only=True)


@router.get("/reviewer/{reviewer_id}", response_model=List[EvaluationResponse])
async def evaluations_by_reviewer(
    reviewer_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    if principal.role is Role.REVIEWER and principal.user_id != reviewer_id:
        raise Forbidden()
    return await gate.for_reviewer(reviewer_id)


@router.get("/reviewer/{reviewer_id}/pending", response_model=List[EvaluationResponse])
async def pending_evaluations_by_reviewer(
    reviewer_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    """Evaluations the reviewer has not finalized yet."""
    if principal.role is Role.REVIEWER and principal.user_id != reviewer_id:
        raise Forbidden()
    return await gate.pending_for_reviewer(reviewer_id)


@router.get(
    "/proposal/{proposal_id}/reviewer/{reviewer_id}", response_model=EvaluationResponse
)
async def evaluation_for_pair(
    proposal_id: uuid.UUID,
    reviewer_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    if principal.role is Role.REVIEWER and principal.user_id != reviewer_id:
        raise Forbidden()
    return await gate.get_for_pair(proposal_id, reviewer_id)


# ---------------------------------------------------------------------------
# /api/evaluations/{evaluation_id}
# ---------------------------------------------------------------------------


@router.get("/{evaluation_id}", response_model=EvaluationResponse)
async def get_evaluation(
    evaluation_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    evaluation = await gate.get(evaluation_id)
    if principal.role is Role.REVIEWER and evaluation.reviewer_id != principal.user_id:
        raise Forbidden()
    return evaluation


@router.put("/{evaluation_id}", response_model=EvaluationResponse)
async def update_evaluation(
    evaluation_id: uuid.UUID,
    body: EvaluationUpdate,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    return await gate.update(evaluation_id, principal, body)


@router.put("/{evaluation_id}/finalize", response_model=EvaluationResponse)
async def finalize_evaluation(
    evaluation_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    return await gate.finalize(evaluation_id, principal)


@router.put("/{evaluation_id}/unfinalize", response_model=EvaluationResponse)
async def unfinalize_evaluation(
    evaluation_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    return await gate.unfinalize(evaluation_id, principal)


@router.delete("/{evaluation_id}", response_model=MessageResponse)
async def delete_evaluation(
    evaluation_id: uuid.UUID,
    gate: EvaluationGate = Depends(get_evaluation_gate),
):
    await gate.delete(evaluation_id)
    return MessageResponse(message="Evaluation deleted")
