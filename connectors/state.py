"""
OAuth ``state`` helpers (CSRF protection).

A state is ``base64(json payload) + "." + hmac``, where the payload carries
the local user id, a random nonce and an expiry. The nonce makes every state
unique, so it doubles as the key of the pending code verifier.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from config.settings import config
from connectors.errors import InvalidState


def _sign(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()[:32]


def create_state(user_id: str, *, secret: Optional[str] = None, ttl: Optional[int] = None) -> str:
    """Create an opaque state string encoding user_id + expiry."""
    secret = secret or config.oauth_state_secret
    ttl = ttl if ttl is not None else config.oauth_state_ttl_seconds
    payload = json.dumps(
        {
            "user_id": str(user_id),
            "nonce": secrets.token_urlsafe(16),
            "exp": int(time.time()) + ttl,
        }
    )
    raw = payload.encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw, secret)


def verify_state(state: str, *, secret: Optional[str] = None) -> str:
    """Verify state token, return user_id. Raises ``InvalidState`` on failure."""
    secret = secret or config.oauth_state_secret
    try:
        encoded, sig = state.split(".", 1)
        raw = urlsafe_b64decode(encoded.encode())
        signed = hmac.compare_digest(sig.encode(), _sign(raw, secret).encode())
    except ValueError as exc:
        raise InvalidState(f"malformed state: {exc}") from exc

    if not signed:
        raise InvalidState("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidState("undecodable payload") from exc
    if payload.get("exp", 0) < time.time():
        raise InvalidState("state expired")
    return payload["user_id"]
