"""Pydantic schemas for users and auth.

Learn: separate "Create" schemas (input) from "Read" schemas (output).
UserRead never exposes password_hash; from_attributes lets routes return
ORM rows directly.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserRead(BaseModel):
    id: int
    email: str
    name: str
    avatar: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    avatar: Optional[str] = Field(None, max_length=500)


# ─── Auth ───────────────────────────────────────────────

class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8)
    avatar: Optional[str] = Field(None, max_length=500)


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthPayload(BaseModel):
    """Returned by register and login: the user plus a token pair."""
    user: UserRead
    token: TokenResponse
