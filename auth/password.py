"""
Password hashing and verification (bcrypt, auto-salted).
"""

from __future__ import annotations

import bcrypt

_ROUNDS = 12


def hash_password(password: str, rounds: int = _ROUNDS) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check; malformed or empty hashes never match."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except (ValueError, TypeError):
        return False
