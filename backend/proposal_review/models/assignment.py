"""Reviewer assignment models."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from proposal_review.models.enums import AssignmentStatus


class AssignReviewersRequest(BaseModel):
    proposal_id: uuid.UUID
    reviewer_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=50)
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)


class AssignmentResponse(BaseModel):
    id: uuid.UUID
    proposal_id: uuid.UUID
    reviewer_id: uuid.UUID
    assigned_by_id: uuid.UUID
    status: AssignmentStatus
    assigned_date: datetime
    due_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class AssignmentStatusUpdate(BaseModel):
    status: AssignmentStatus


class AssignmentCheckResponse(BaseModel):
    proposal_id: uuid.UUID
    is_assigned: bool


class ReviewerStatistics(BaseModel):
    reviewer_id: uuid.UUID
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
