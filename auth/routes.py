"""
Auth API routes — register, login, refresh, logout, password lifecycle
and the current user's profile.

Route prefix: /api/v1/auth
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from auth.dependencies import get_current_principal, get_session_authority
from auth.models import Principal, User
from auth.password import MAX_PASSWORD_BYTES
from auth.service import SessionAuthority

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

_RESET_SENT = "If an account with that email exists, a password reset link has been sent"


def _within_bcrypt_limit(password: str) -> str:
    # bcrypt caps input by encoded bytes, not characters.
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return password


# ── Request / response schemas ─────────────────────────────────────────


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=128)
    email: str = Field(..., min_length=5, max_length=255)
    password: str = Field(..., min_length=6)
    enterprise_id: str

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, v: str) -> str:
        return _within_bcrypt_limit(v)


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=5, max_length=255)


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6)

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, v: str) -> str:
        return _within_bcrypt_limit(v)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)

    @field_validator("new_password")
    @classmethod
    def fits_bcrypt(cls, v: str) -> str:
        return _within_bcrypt_limit(v)


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=128)
    phone: Optional[str] = Field(None, max_length=32)
    location: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = None


class UserOut(BaseModel):
    user_id: str
    enterprise_id: str
    name: str
    email: str
    role: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    user: UserOut
    access_token: str
    refresh_token: str


class RefreshResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


def _user_out(user: User) -> Dict[str, Any]:
    return {
        "user_id": str(user.user_id),
        "enterprise_id": str(user.enterprise_id),
        "name": user.name,
        "email": user.email,
        "role": user.role.name if user.role is not None else None,
        "phone": user.phone,
        "location": user.location,
        "bio": user.bio,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


# ── Endpoints ──────────────────────────────────────────────────────────


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    req: RegisterRequest,
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    """Register a new user."""
    issued = await authority.register(
        name=req.name,
        email=req.email,
        password=req.password,
        enterprise_id=req.enterprise_id,
    )
    return {
        "user": _user_out(issued.user),
        "access_token": issued.access_token,
        "refresh_token": issued.refresh_token,
    }


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    """Login with email + password."""
    issued = await authority.login(req.email, req.password)
    return {
        "user": _user_out(issued.user),
        "access_token": issued.access_token,
        "refresh_token": issued.refresh_token,
    }


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    req: RefreshRequest,
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    refreshed = await authority.refresh(req.refresh_token)
    return {
        "access_token": refreshed.access_token,
        "refresh_token": refreshed.refresh_token,
    }


@router.post("/logout", response_model=MessageResponse)
async def logout(
    req: LogoutRequest,
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    await authority.logout(req.refresh_token)
    return {"message": "Logout successful"}


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    principal: Principal = Depends(get_current_principal),
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    """Revoke every refresh token of the current user (all devices)."""
    revoked = await authority.logout_all(principal)
    return {"message": f"Logged out of {revoked} session(s)"}


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    req: ForgotPasswordRequest,
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    await authority.forgot_password(req.email)
    return {"message": _RESET_SENT}


@router.post("/reset-password/{token}", response_model=MessageResponse)
async def reset_password(
    token: str,
    req: ResetPasswordRequest,
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    await authority.reset_password(token, req.password)
    return {"message": "Password reset successful"}


@router.put("/change-password", response_model=MessageResponse)
async def change_password(
    req: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    await authority.change_password(principal, req.current_password, req.new_password)
    return {"message": "Password changed successfully"}


@router.get("/me", response_model=UserOut)
async def get_me(
    principal: Principal = Depends(get_current_principal),
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    user = await authority.get_profile(principal)
    return _user_out(user)


@router.put("/me", response_model=UserOut)
async def update_me(
    req: UpdateProfileRequest,
    principal: Principal = Depends(get_current_principal),
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    changes = req.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No valid fields provided for update",
        )
    user = await authority.update_profile(principal, changes)
    return _user_out(user)


@router.delete("/me", response_model=MessageResponse)
async def delete_me(
    principal: Principal = Depends(get_current_principal),
    authority: SessionAuthority = Depends(get_session_authority),
) -> Dict[str, Any]:
    await authority.delete_account(principal)
    return {"message": "Account deleted successfully"}
