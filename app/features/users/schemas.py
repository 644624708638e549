"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr


class UserBase(BaseModel):
    """Base user schema with common fields."""
    username: str
    email: EmailStr
    name: str


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    is_active: bool
    email_verified: bool
    last_login_at: datetime | None = None
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CurrentUserResponse(UserResponse):
    """The authenticated user plus what they can currently do."""
    roles: list[str] = []
    permissions: list[str] = []


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    username: str
    name: str

    model_config = {"from_attributes": True}
