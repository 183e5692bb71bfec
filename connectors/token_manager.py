"""
Token manager — store / read / refresh / revoke per-user OAuth connections.

One ``user_connections`` row per (user, provider). Reconnecting overwrites
that row in a single upsert statement; disconnecting only deactivates it.
Profile summary flags on ``users`` are a secondary write: they run in a
SAVEPOINT, and a failure there is logged and reported back but never fails
the primary operation.

Functions flush but do not commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.base import BaseConnector, TokenGrant
from connectors.encryption import decrypt_token, encrypt_token
from connectors.errors import (
    ConnectorError,
    PersistenceFailure,
    RevocationFailure,
)
from database.models import User, UserConnection
from database.upsert import insert_for

logger = logging.getLogger(__name__)

_REFRESH_MARGIN = timedelta(seconds=120)


@dataclass
class ConnectionResult:
    connection: UserConnection
    profile_synced: bool


@dataclass
class DisconnectResult:
    was_connected: bool
    revocation_failure: Optional[RevocationFailure] = None
    profile_synced: bool = True

    @property
    def revoked(self) -> bool:
        return self.was_connected and self.revocation_failure is None


def _to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _athlete_id(account_id: Optional[str]) -> Optional[int]:
    if account_id is None:
        return None
    try:
        return int(account_id)
    except ValueError:
        return None


# ── Secondary write: profile summary ────────────────────────────────────


def _profile_statement(user_id: uuid.UUID, *, connected: bool, athlete_id: Optional[int]):
    return (
        update(User)
        .where(User.user_id == user_id)
        .values(
            strava_connected=connected,
            strava_athlete_id=athlete_id,
            updated_at=datetime.now(timezone.utc),
        )
    )


async def _sync_profile(
    session: AsyncSession,
    user_id: uuid.UUID,
    *,
    connected: bool,
    athlete_id: Optional[int],
) -> bool:
    """Best-effort update of the profile summary flags. Returns False on failure."""
    try:
        async with session.begin_nested():
            result = await session.execute(
                _profile_statement(user_id, connected=connected, athlete_id=athlete_id)
            )
    except SQLAlchemyError as exc:
        logger.warning("Profile summary update failed for user %s: %s", user_id, exc)
        return False

    if not result.rowcount:
        logger.warning("No profile row to update for user %s", user_id)
        return False
    return True


# ── Persistence ─────────────────────────────────────────────────────────


async def store_connection(
    user_id: str,
    provider: str,
    grant: TokenGrant,
    *,
    db_session: AsyncSession,
) -> ConnectionResult:
    """
    Upsert the connection for ``user_id`` + ``provider`` and mark it active.

    Raises ``PersistenceFailure`` if the connection row cannot be written.
    """
    uid = _to_uuid(user_id)
    now = datetime.now(timezone.utc)
    values: Dict[str, Any] = {
        "provider_account_id": grant.account_id,
        "access_token": encrypt_token(grant.access_token),
        "refresh_token": encrypt_token(grant.refresh_token) if grant.refresh_token else None,
        "expires_at": grant.expires_at,
        "scope": grant.scope,
        "account_metadata": grant.account_metadata,
        "is_active": True,
        "connected_at": now,
        "updated_at": now,
    }

    try:
        insert = insert_for(db_session)
        stmt = insert(UserConnection).values(
            connection_id=uuid.uuid4(), user_id=uid, provider=provider, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserConnection.user_id, UserConnection.provider],
            set_=values,
        ).returning(UserConnection)
        result = await db_session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        conn = result.scalar_one()
        await db_session.flush()
    except SQLAlchemyError as exc:
        logger.error("store_connection error for user %s/%s: %s", user_id, provider, exc)
        raise PersistenceFailure(f"upsert failed: {exc}") from exc

    logger.info("Stored %s connection for user %s", provider, user_id)
    profile_synced = await _sync_profile(
        db_session, uid, connected=True, athlete_id=_athlete_id(grant.account_id)
    )
    return ConnectionResult(connection=conn, profile_synced=profile_synced)


async def get_active_connection(
    user_id: str,
    provider: str,
    *,
    db_session: AsyncSession,
) -> Optional[UserConnection]:
    result = await db_session.execute(
        select(UserConnection).where(
            UserConnection.user_id == _to_uuid(user_id),
            UserConnection.provider == provider,
            UserConnection.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def get_connection_summary(
    user_id: str,
    provider: str,
    *,
    db_session: AsyncSession,
) -> Dict[str, Any]:
    """Connection status for the UI (no tokens exposed)."""
    conn = await get_active_connection(user_id, provider, db_session=db_session)
    if conn is None:
        return {"provider": provider, "connected": False}
    return {
        "provider": provider,
        "connected": True,
        "connection_id": str(conn.connection_id),
        "provider_account_id": conn.provider_account_id,
        "scope": conn.scope,
        "expires_at": conn.expires_at.isoformat() if conn.expires_at else None,
        "connected_at": conn.connected_at.isoformat() if conn.connected_at else None,
        "account_metadata": conn.account_metadata or {},
    }


async def get_active_token(
    user_id: str,
    connector: BaseConnector,
    *,
    db_session: AsyncSession,
) -> Optional[str]:
    """
    Get a valid access token for the user + provider.

    1. Look up the active connection.
    2. If the token expires within two minutes, refresh it and store the
       rotated pair.
    3. Return the access token, or None if not connected or refresh failed.
    """
    conn = await get_active_connection(user_id, connector.provider_name, db_session=db_session)
    if conn is None:
        return None

    now = datetime.now(timezone.utc)
    if conn.expires_at is None or _as_aware(conn.expires_at) > now + _REFRESH_MARGIN:
        return decrypt_token(conn.access_token)

    if not conn.refresh_token:
        logger.warning("%s token for user %s expired and has no refresh token", connector.provider_name, user_id)
        return None

    try:
        refreshed = await connector.refresh_access_token(decrypt_token(conn.refresh_token))
    except ConnectorError as exc:
        logger.warning("Token refresh failed for %s/%s: %s", connector.provider_name, user_id, exc.reason)
        return None

    conn.access_token = encrypt_token(refreshed.access_token)
    if refreshed.refresh_token:
        conn.refresh_token = encrypt_token(refreshed.refresh_token)
    conn.expires_at = refreshed.expires_at
    conn.last_refreshed = now
    conn.updated_at = now
    try:
        await db_session.flush()
    except SQLAlchemyError as exc:
        logger.error("Could not store refreshed %s token for user %s: %s", connector.provider_name, user_id, exc)
        raise PersistenceFailure(f"refresh write failed: {exc}") from exc

    logger.info("Refreshed %s token for user %s", connector.provider_name, user_id)
    return refreshed.access_token


# ── Revocation ──────────────────────────────────────────────────────────


async def _revoke_best_effort(connector: BaseConnector, access_token: str) -> Optional[RevocationFailure]:
    try:
        await connector.revoke_token(access_token)
    except Exception as exc:  # any failure here must not block local deactivation
        logger.warning(
            "%s token revocation failed, continuing with local disconnect: %r",
            connector.provider_name,
            exc,
        )
        return RevocationFailure(provider=connector.provider_name, reason=repr(exc))
    return None


async def disconnect(
    user_id: str,
    connector: BaseConnector,
    *,
    db_session: AsyncSession,
) -> DisconnectResult:
    """
    Revoke at the provider (best-effort), then deactivate locally.

    Idempotent: with no active connection it succeeds without calling the
    provider. Only a failure to deactivate the local row raises
    (``PersistenceFailure``).
    """
    provider = connector.provider_name
    uid = _to_uuid(user_id)
    try:
        conn = await get_active_connection(user_id, provider, db_session=db_session)
    except SQLAlchemyError as exc:
        logger.error("disconnect lookup error for user %s/%s: %s", user_id, provider, exc)
        raise PersistenceFailure(f"lookup failed: {exc}") from exc

    if conn is None:
        logger.info("Disconnect for user %s: no active %s connection", user_id, provider)
        return DisconnectResult(was_connected=False)

    failure = None
    if conn.access_token:
        failure = await _revoke_best_effort(connector, decrypt_token(conn.access_token))

    try:
        await db_session.execute(
            update(UserConnection)
            .where(UserConnection.user_id == uid, UserConnection.provider == provider)
            .values(is_active=False, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="fetch")
        )
        await db_session.flush()
    except SQLAlchemyError as exc:
        logger.error("Failed to deactivate %s connection for user %s: %s", provider, user_id, exc)
        raise PersistenceFailure(f"deactivate failed: {exc}") from exc

    profile_synced = await _sync_profile(db_session, uid, connected=False, athlete_id=None)
    logger.info("Disconnected %s for user %s", provider, user_id)
    return DisconnectResult(
        was_connected=True,
        revocation_failure=failure,
        profile_synced=profile_synced,
    )
