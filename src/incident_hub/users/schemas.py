"""Pydantic schemas for user endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field

from incident_hub.common.schemas import ApiModel
from incident_hub.users.models import Role


class UserResponse(ApiModel):
    id: str
    name: str
    email: str
    role: str
    is_blocked: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class UserEnvelope(ApiModel):
    success: bool = True
    user: UserResponse


class UserListResponse(ApiModel):
    success: bool = True
    items: list[UserResponse]
    page: int
    limit: int
    total: int
    pages: int


class AdminSummary(ApiModel):
    id: str
    name: str
    email: str
    role: str


class AdminListResponse(ApiModel):
    success: bool = True
    admins: list[AdminSummary]


class UserCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: Role = Role.USER


class UserUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role: Optional[Role] = None
    is_blocked: Optional[bool] = None
