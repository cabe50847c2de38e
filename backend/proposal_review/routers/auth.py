"""Authentication router: login, registration, token refresh, logout and
the admin-only role update.
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from proposal_review.auth import Principal
from proposal_review.deps import get_principal, get_user_service
from proposal_review.models.auth import (
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RoleUpdateRequest,
    TokenResponse,
)
from proposal_review.models.user import UserResponse
from proposal_review.security import rate_limit_auth
from proposal_review.services.user_service import TokenPair, UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        user=UserResponse.model_validate(pair.user),
    )


# ---------------------------------------------------------------------------
# POST /api/auth/login
# ---------------------------------------------------------------------------


@router.post("/login", response_model=TokenResponse)
@rate_limit_auth()
async def login(
    request: Request,
    body: LoginRequest,
    users: UserService = Depends(get_user_service),
):
    """Exchange username (or email) and password for a token pair."""
    pair = await users.login(body.username_or_email, body.password)
    return _token_response(pair)


# ---------------------------------------------------------------------------
# POST /api/auth/register
# ---------------------------------------------------------------------------


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@rate_limit_auth()
async def register(
    request: Request,
    body: RegisterRequest,
    users: UserService = Depends(get_user_service),
):
    pair = await users.register(body)
    return _token_response(pair)


# ---------------------------------------------------------------------------
# POST /api/auth/refresh
# ---------------------------------------------------------------------------


@router.post("/refresh", response_model=TokenResponse)
@rate_limit_auth()
async def refresh(
    request: Request,
    body: RefreshRequest,
    users: UserService = Depends(get_user_service),
):
    """Issue a new token pair. Only REFRESH tokens are accepted here."""
    pair = await users.refresh(body.refresh_token)
    return _token_response(pair)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    principal: Principal = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    users.logout(principal)
    return MessageResponse(message="Logged out")


# ---------------------------------------------------------------------------
# POST /api/auth/admin/update-role
# ---------------------------------------------------------------------------


@router.post("/admin/update-role", response_model=UserResponse)
async def update_role(
    body: RoleUpdateRequest,
    principal: Principal = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    return await users.update_role(body.user_id, body.role, principal)
