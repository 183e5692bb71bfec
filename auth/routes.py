"""
Auth API routes — register, login, current user.

Route prefix: /api/v1/auth
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id
from auth.jwt import create_token
from auth.password import hash_password, verify_password
from database.models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


# ── Request / response schemas ─────────────────────────────────────────


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=2, max_length=64)
    email: str = Field(..., min_length=5, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    user_id: str
    display_name: str
    email: str
    token: str


class ProfileResponse(BaseModel):
    user_id: str
    display_name: str
    email: str
    strava_connected: bool
    strava_athlete_id: int | None = None


def _auth_payload(user: User) -> Dict[str, Any]:
    return {
        "user_id": str(user.user_id),
        "display_name": user.display_name,
        "email": user.email,
        "token": create_token(str(user.user_id)),
    }


# ── Endpoints ──────────────────────────────────────────────────────────


@router.post("/register", response_model=AuthResponse)
async def register(
    req: RegisterRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Register a new user."""
    email = req.email.strip().lower()
    result = await session.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        user_id=uuid.uuid4(),
        email=email,
        display_name=req.username,
        password_hash=hash_password(req.password),
    )
    session.add(user)
    await session.commit()

    logger.info("Registered user %s (%s)", req.username, user.user_id)
    return _auth_payload(user)


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Login with email + password."""
    result = await session.execute(
        select(User).where(User.email == req.email.strip().lower())
    )
    user = result.scalar_one_or_none()

    if user is None or not verify_password(req.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("Login: %s (%s)", user.display_name, user.user_id)
    return _auth_payload(user)


@router.get("/me", response_model=ProfileResponse)
async def me(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Profile of the authenticated user, including the Strava summary flags."""
    user = await session.get(User, uuid.UUID(user_id))
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {
        "user_id": str(user.user_id),
        "display_name": user.display_name,
        "email": user.email,
        "strava_connected": bool(user.strava_connected),
        "strava_athlete_id": user.strava_athlete_id,
    }
