"""
PKCE (Proof Key for Code Exchange, RFC 7636) parameter generation.

The verifier is a high-entropy secret kept by whoever started the
authorization request; only its S256 challenge travels in the redirect.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass

# Unreserved URI characters (RFC 3986 §2.3)
VERIFIER_CHARSET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)
VERIFIER_MIN_LENGTH = 43
VERIFIER_MAX_LENGTH = 128
CODE_CHALLENGE_METHOD = "S256"

_CHARSET_SET = frozenset(VERIFIER_CHARSET)


@dataclass(frozen=True)
class PKCEParams:
    code_verifier: str
    code_challenge: str
    code_challenge_method: str = CODE_CHALLENGE_METHOD


def generate_code_verifier(length: int = VERIFIER_MAX_LENGTH) -> str:
    """Random verifier drawn uniformly from the unreserved charset."""
    if not VERIFIER_MIN_LENGTH <= length <= VERIFIER_MAX_LENGTH:
        raise ValueError(
            f"code_verifier length must be {VERIFIER_MIN_LENGTH}-{VERIFIER_MAX_LENGTH}, got {length}"
        )
    return "".join(secrets.choice(VERIFIER_CHARSET) for _ in range(length))


def sha256_base64url(data: bytes) -> str:
    """SHA-256 digest, base64url-encoded with the ``=`` padding stripped."""
    digest = hashlib.sha256(data).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge for ``code_verifier``."""
    return sha256_base64url(code_verifier.encode("utf-8"))


def generate_pkce_params() -> PKCEParams:
    code_verifier = generate_code_verifier()
    return PKCEParams(
        code_verifier=code_verifier,
        code_challenge=generate_code_challenge(code_verifier),
    )


def is_valid_code_verifier(code_verifier: str) -> bool:
    """Check the RFC 7636 length and charset rules."""
    return (
        VERIFIER_MIN_LENGTH <= len(code_verifier) <= VERIFIER_MAX_LENGTH
        and set(code_verifier) <= _CHARSET_SET
    )


def verify_code_challenge(code_verifier: str, code_challenge: str) -> bool:
    """Constant-time check that ``code_challenge`` was derived from ``code_verifier``."""
    return hmac.compare_digest(generate_code_challenge(code_verifier), code_challenge)
