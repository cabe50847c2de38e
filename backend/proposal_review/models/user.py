"""User models for the proposal review API."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from proposal_review.models.enums import Role


class UserResponse(BaseModel):
    """Public representation of a user (never includes the password hash)."""

    id: uuid.UUID
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Role
    is_active: bool
    department_id: Optional[uuid.UUID] = None
    phone_number: Optional[str] = None
    office_location: Optional[str] = None
    expertise_areas: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    """Admin request to create a user with any role."""

    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=128)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: Role
    department_id: Optional[uuid.UUID] = None
    phone_number: Optional[str] = Field(None, max_length=30)
    office_location: Optional[str] = Field(None, max_length=200)
    expertise_areas: Optional[str] = None


class UserUpdate(BaseModel):
    """Profile update.

    Role, username and the active flag are not part of this payload; they
    change only through the admin role-update and (de)activation endpoints.
    """

    email: Optional[str] = Field(None, min_length=3, max_length=254)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    department_id: Optional[uuid.UUID] = None
    phone_number: Optional[str] = Field(None, max_length=30)
    office_location: Optional[str] = Field(None, max_length=200)
    expertise_areas: Optional[str] = None

    @field_validator("email")
    @classmethod
    def reject_null_email(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("email may not be null")
        return v

    class Config:
        extra = "forbid"
