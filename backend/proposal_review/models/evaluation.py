"""Evaluation models.

Scores are optional, non-negative and carry at most four digits with two
decimals (the NUMERIC(4, 2) column type).
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from proposal_review.models.enums import Recommendation


def _score():
    return Field(None, ge=0, max_digits=4, decimal_places=2)


class EvaluationCreate(BaseModel):
    """Request to record an evaluation.

    ``reviewer_id`` may be omitted by reviewers (they always record as
    themselves); administrators and committee chairs may record on behalf of
    a reviewer.
    """

    proposal_id: uuid.UUID
    reviewer_id: Optional[uuid.UUID] = None
    evaluation_stage: Optional[str] = Field(None, max_length=100)

    overall_score: Optional[Decimal] = _score()
    technical_score: Optional[Decimal] = _score()
    innovation_score: Optional[Decimal] = _score()
    feasibility_score: Optional[Decimal] = _score()
    budget_score: Optional[Decimal] = _score()
    impact_score: Optional[Decimal] = _score()

    comments: Optional[str] = Field(None, max_length=10000)
    recommendation: Optional[Recommendation] = None
    is_final: bool = False
    conflict_of_interest: bool = False


class EvaluationUpdate(BaseModel):
    """Partial update; only fields present in the payload are written."""

    evaluation_stage: Optional[str] = Field(None, max_length=100)

    overall_score: Optional[Decimal] = _score()
    technical_score: Optional[Decimal] = _score()
    innovation_score: Optional[Decimal] = _score()
    feasibility_score: Optional[Decimal] = _score()
    budget_score: Optional[Decimal] = _score()
    impact_score: Optional[Decimal] = _score()

    comments: Optional[str] = Field(None, max_length=10000)
    recommendation: Optional[Recommendation] = None
    is_final: Optional[bool] = None
    conflict_of_interest: Optional[bool] = None

    @field_validator("is_final", "conflict_of_interest")
    @classmethod
    def reject_null_flag(cls, v: Optional[bool], info) -> bool:
        if v is None:
            raise ValueError(f"{info.field_name} may not be null")
        return v

    class Config:
        extra = "forbid"


class EvaluationResponse(BaseModel):
    id: uuid.UUID
    proposal_id: uuid.UUID
    reviewer_id: uuid.UUID
    evaluation_stage: Optional[str] = None

    overall_score: Optional[float] = None
    technical_score: Optional[float] = None
    innovation_score: Optional[float] = None
    feasibility_score: Optional[float] = None
    budget_score: Optional[float] = None
    impact_score: Optional[float] = None

    comments: Optional[str] = None
    recommendation: Optional[Recommendation] = None
    evaluation_date: datetime
    is_final: bool
    conflict_of_interest: bool

    class Config:
        from_attributes = True
