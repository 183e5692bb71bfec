"""
FastAPI dependencies for authentication.

``get_current_user_id`` rejects anonymous callers with 401;
``get_optional_user_id`` lets the route (and the exchange flow) decide.
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.jwt import decode_token, verify_token
from database.session import get_db_session

_bearer_scheme = HTTPBearer()
_optional_bearer_scheme = HTTPBearer(auto_error=False)


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``user_id`` (UUID string).
    """
    return verify_token(credentials.credentials)


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_optional_bearer_scheme),
) -> Optional[str]:
    if credentials is None:
        return None
    return decode_token(credentials.credentials)
