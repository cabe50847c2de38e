"""Users router: profile self-service and account administration."""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from proposal_review.auth import Principal
from proposal_review.deps import get_principal, get_user_service
from proposal_review.models.auth import MessageResponse
from proposal_review.models.enums import Role
from proposal_review.models.user import UserCreate, UserResponse, UserUpdate
from proposal_review.services.user_service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[UserResponse])
async def list_users(
    role: Optional[Role] = Query(None, description="Filter by role"),
    active_only: bool = Query(False),
    users: UserService = Depends(get_user_service),
):
    return await users.list_users(role=role, active_only=active_only)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, users: UserService = Depends(get_user_service)):
    """Admin: create a user with any role."""
    return await users.create(body)


# ---------------------------------------------------------------------------
# Profile (any authenticated user)
# ---------------------------------------------------------------------------


@router.get("/profile", response_model=UserResponse)
async def get_profile(
    principal: Principal = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    return await users.get(principal.user_id)


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    body: UserUpdate,
    principal: Principal = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    return await users.update_profile(principal.user_id, principal, body)


# ---------------------------------------------------------------------------
# Single user
# ---------------------------------------------------------------------------


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: uuid.UUID, users: UserService = Depends(get_user_service)):
    return await users.get(user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    principal: Principal = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    """Update a profile. Callers may update themselves; ADMIN and
    DEPARTMENT_HEAD may update anyone."""
    return await users.update_profile(user_id, principal, body)


@router.put("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(user_id: uuid.UUID, users: UserService = Depends(get_user_service)):
    return await users.set_active(user_id, False)


@router.put("/{user_id}/activate", response_model=UserResponse)
async def activate_user(user_id: uuid.UUID, users: UserService = Depends(get_user_service)):
    return await users.set_active(user_id, True)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(user_id: uuid.UUID, users: UserService = Depends(get_user_service)):
    await users.delete(user_id)
    return MessageResponse(message="User deleted")
