"""Notifications router: the caller's own notifications only."""

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.auth import Principal
from proposal_review.deps import get_db, get_principal
from proposal_review.models.auth import MessageResponse
from proposal_review.models.notification import NotificationResponse
from proposal_review.services import notification_service

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await notification_service.list_for_user(db, principal.user_id, unread_only)


@router.put("/read-all", response_model=MessageResponse)
async def mark_all_read(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    count = await notification_service.mark_all_read(db, principal.user_id)
    return MessageResponse(message=f"Marked {count} notification(s) as read")


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await notification_service.mark_read(db, notification_id, principal.user_id)
