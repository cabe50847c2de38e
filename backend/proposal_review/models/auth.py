"""Authentication request/response models."""

import uuid
from typing import Optional

from pydantic import BaseModel, Field

from proposal_review.models.enums import Role
from proposal_review.models.user import UserResponse


class LoginRequest(BaseModel):
    username_or_email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class RegisterRequest(BaseModel):
    """Self-service registration.

    ``role`` defaults to PRINCIPAL_INVESTIGATOR; only a small set of roles
    may be requested without an administrator.
    """

    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=128)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: Optional[Role] = None
    department_id: Optional[uuid.UUID] = None


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Access/refresh token pair returned by login, register and refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    user: UserResponse


class RoleUpdateRequest(BaseModel):
    user_id: uuid.UUID
    role: Role


class MessageResponse(BaseModel):
    message: str
