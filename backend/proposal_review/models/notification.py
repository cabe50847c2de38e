"""Notification models for the proposal review API."""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from proposal_review.models.enums import NotificationKind


class NotificationResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    kind: NotificationKind
    title: str
    message: str
    payload: Optional[Dict[str, Any]] = None
    related_proposal_id: Optional[uuid.UUID] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
