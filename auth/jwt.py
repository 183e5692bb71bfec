"""
Signed session tokens for the local identity collaborator.

A token is ``base64url(json{"user_id", "exp"}) + "." + hmac_sha256``, keyed by
``config.jwt_secret`` (env var: ``JWT_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from fastapi import HTTPException, status

from config.settings import config


def _signature(raw: bytes) -> str:
    return hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, expires_in: Optional[int] = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    ttl = expires_in if expires_in is not None else config.jwt_expiry_seconds
    raw = json.dumps({"user_id": str(user_id), "exp": int(time.time()) + ttl}).encode()
    return urlsafe_b64encode(raw).decode() + "." + _signature(raw)


def decode_token(token: str) -> Optional[str]:
    """Return the ``user_id`` of a valid token, or None."""
    try:
        encoded, sig = token.split(".", 1)
        raw = urlsafe_b64decode(encoded.encode())
        if not hmac.compare_digest(sig.encode(), _signature(raw).encode()):
            return None
        payload = json.loads(raw)
    except ValueError:
        return None
    if payload.get("exp", 0) < time.time():
        return None
    return payload.get("user_id")


def verify_token(token: str) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    user_id = decode_token(token)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return user_id
