"""Proposal models for the proposal review API."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from proposal_review.models.enums import PriorityLevel, ProjectType, ProposalStatus


class ProposalResponse(BaseModel):
    """A research proposal."""

    id: uuid.UUID
    title: str
    abstract: Optional[str] = None
    principal_investigator_id: uuid.UUID
    created_by_id: uuid.UUID
    department_id: uuid.UUID
    co_investigators: Optional[str] = None
    project_type: ProjectType
    funding_agency: Optional[str] = None
    requested_amount: Optional[float] = None
    project_duration_months: Optional[int] = None
    submission_deadline: Optional[date] = None
    priority_level: PriorityLevel
    status: ProposalStatus
    submission_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProposalCreate(BaseModel):
    """Request to create a new proposal (always starts in DRAFT)."""

    title: str = Field(..., min_length=1, max_length=500)
    abstract: Optional[str] = Field(None, max_length=10000)
    department_id: uuid.UUID
    principal_investigator_id: Optional[uuid.UUID] = Field(
        None, description="Defaults to the caller when the caller is a PI"
    )
    co_investigators: Optional[str] = None
    project_type: ProjectType
    funding_agency: Optional[str] = Field(None, max_length=200)
    requested_amount: Optional[Decimal] = Field(
        None, ge=0, max_digits=15, decimal_places=2
    )
    project_duration_months: Optional[int] = Field(None, ge=1, le=600)
    submission_deadline: Optional[date] = None
    priority_level: PriorityLevel = PriorityLevel.MEDIUM


class ProposalUpdate(BaseModel):
    """Content-only update. Status changes go through the transition endpoints."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    abstract: Optional[str] = Field(None, max_length=10000)
    co_investigators: Optional[str] = None
    project_type: Optional[ProjectType] = None
    funding_agency: Optional[str] = Field(None, max_length=200)
    requested_amount: Optional[Decimal] = Field(
        None, ge=0, max_digits=15, decimal_places=2
    )
    project_duration_months: Optional[int] = Field(None, ge=1, le=600)
    submission_deadline: Optional[date] = None
    priority_level: Optional[PriorityLevel] = None

    @field_validator("title", "project_type", "priority_level")
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} may not be null")
        return v

    class Config:
        extra = "forbid"


class StatusChangeRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class StatusHistoryResponse(BaseModel):
    id: uuid.UUID
    proposal_id: uuid.UUID
    old_status: Optional[ProposalStatus] = None
    new_status: ProposalStatus
    changed_by: Optional[uuid.UUID] = None
    reason: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True


class CanDeleteResponse(BaseModel):
    can_delete: bool
    reason: Optional[str] = None


class ProposalListResponse(BaseModel):
    proposals: List[ProposalResponse]
    total: int
