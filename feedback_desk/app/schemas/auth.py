from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    login: str = Field(min_length=1, description="Username or e-mail")
    password: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str
    name: str


class UserPublic(BaseModel):
    id: str
    username: str
    email: EmailStr
    name: Optional[str] = None
    role: str
    is_active: bool = True
    created_at: Optional[datetime] = None


class LoginResponse(BaseModel):
    token: str
    user: UserPublic
