"""
Verifier store — keeps a PKCE code verifier between the authorization
redirect and the provider callback.

Entries are keyed by the request's ``state`` value and are single-use:
``retrieve_and_clear`` hands the verifier out once and erases it in the same
statement.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import config
from database.models import PkceVerifier
from database.upsert import insert_for

logger = logging.getLogger(__name__)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class VerifierStore(ABC):
    """Session-scoped, read-once storage for code verifiers."""

    @abstractmethod
    async def store(self, key: str, code_verifier: str) -> None:
        ...

    @abstractmethod
    async def retrieve_and_clear(self, key: str) -> Optional[str]:
        """
        Return the verifier stored under ``key`` and erase it.

        Returns None when nothing (or only an expired entry) was stored,
        including on a second call for an already consumed key.
        """
        ...


class DatabaseVerifierStore(VerifierStore):
    """Verifier store backed by the ``pkce_verifiers`` table."""

    def __init__(self, session: AsyncSession, ttl_seconds: Optional[int] = None):
        self._session = session
        self._ttl = timedelta(
            seconds=ttl_seconds if ttl_seconds is not None else config.pkce_verifier_ttl_seconds
        )

    async def store(self, key: str, code_verifier: str) -> None:
        insert = insert_for(self._session)
        now = datetime.now(timezone.utc)
        stmt = insert(PkceVerifier).values(
            state_key=key, code_verifier=code_verifier, created_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[PkceVerifier.state_key],
            set_={"code_verifier": code_verifier, "created_at": now},
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def retrieve_and_clear(self, key: str) -> Optional[str]:
        if not key:
            return None
        result = await self._session.execute(
            delete(PkceVerifier)
            .where(PkceVerifier.state_key == key)
            .returning(PkceVerifier.code_verifier, PkceVerifier.created_at)
        )
        row = result.first()
        await self._session.flush()
        if row is None:
            return None

        code_verifier, created_at = row
        if _as_aware(created_at) + self._ttl < datetime.now(timezone.utc):
            logger.info("Discarded expired PKCE verifier")
            return None
        return code_verifier

    async def purge_expired(self) -> int:
        """Delete verifiers whose callback never arrived. Returns the row count."""
        cutoff = datetime.now(timezone.utc) - self._ttl
        result = await self._session.execute(
            delete(PkceVerifier).where(PkceVerifier.created_at < cutoff)
        )
        await self._session.flush()
        return result.rowcount or 0
