"""Pydantic schemas for authentication endpoints."""

from pydantic import EmailStr, Field

from incident_hub.common.schemas import ApiModel


class RegisterRequest(ApiModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginRequest(ApiModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class AuthUser(ApiModel):
    id: str
    name: str
    email: str
    role: str


class AuthResponse(ApiModel):
    success: bool = True
    user: AuthUser
    access_token: str


class RefreshResponse(ApiModel):
    success: bool = True
    access_token: str
