"""
Tests for connection persistence, token refresh and the disconnect coordinator.
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from connectors.base import TokenGrant
from connectors.errors import PersistenceFailure
from connectors.token_manager import (
    disconnect,
    get_active_connection,
    get_active_token,
    get_connection_summary,
    store_connection,
)
from database.models import User, UserConnection


def _grant(access="access-1", refresh="refresh-1", athlete_id="555", expires_in=6 * 3600):
    return TokenGrant(
        access_token=access,
        refresh_token=refresh,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        scope="read,activity:read_all",
        account_id=athlete_id,
        account_metadata={"id": int(athlete_id), "firstname": "Ada"},
    )


async def _rows(session, user_id):
    result = await session.execute(
        select(UserConnection).where(UserConnection.user_id == uuid.UUID(user_id))
    )
    return result.scalars().all()


class TestStoreConnection:
    @pytest.mark.asyncio
    async def test_creates_active_connection_and_syncs_profile(self, session, user_id):
        result = await store_connection(user_id, "strava", _grant(), db_session=session)

        assert result.profile_synced is True
        conn = result.connection
        assert conn.is_active is True
        assert conn.provider_account_id == "555"
        assert conn.account_metadata["firstname"] == "Ada"

        user = await session.get(User, uuid.UUID(user_id), populate_existing=True)
        assert user.strava_connected is True
        assert user.strava_athlete_id == 555

    @pytest.mark.asyncio
    async def test_reconnect_overwrites_single_row(self, session, user_id):
        await store_connection(user_id, "strava", _grant(access="first"), db_session=session)
        await store_connection(user_id, "strava", _grant(access="second", athlete_id="556"), db_session=session)

        rows = await _rows(session, user_id)
        assert len(rows) == 1
        assert await get_active_token_plain(session, user_id) == "second"
        assert rows[0].provider_account_id == "556"

    @pytest.mark.asyncio
    async def test_reactivates_inactive_record(self, session, user_id, connector):
        first = await store_connection(user_id, "strava", _grant(), db_session=session)
        first_id = first.connection.connection_id
        await disconnect(user_id, connector, db_session=session)
        assert await get_active_connection(user_id, "strava", db_session=session) is None

        again = await store_connection(user_id, "strava", _grant(access="again"), db_session=session)

        assert again.connection.is_active is True
        assert again.connection.connection_id == first_id
        count = await session.scalar(select(func.count()).select_from(UserConnection))
        assert count == 1

    @pytest.mark.asyncio
    async def test_profile_failure_does_not_fail_store(self, session, user_id):
        with patch(
            "connectors.token_manager._profile_statement",
            side_effect=SQLAlchemyError("profiles table locked"),
        ):
            result = await store_connection(user_id, "strava", _grant(), db_session=session)

        assert result.profile_synced is False
        assert result.connection.is_active is True
        assert await get_active_connection(user_id, "strava", db_session=session) is not None

    @pytest.mark.asyncio
    async def test_missing_profile_row_is_reported_not_raised(self, session):
        orphan = str(uuid.uuid4())
        result = await store_connection(orphan, "strava", _grant(), db_session=session)
        assert result.profile_synced is False
        assert result.connection.is_active is True

    @pytest.mark.asyncio
    async def test_upsert_failure_raises_persistence_failure(self, session, user_id):
        with patch.object(session, "execute", AsyncMock(side_effect=SQLAlchemyError("db down"))):
            with pytest.raises(PersistenceFailure):
                await store_connection(user_id, "strava", _grant(), db_session=session)

    @pytest.mark.asyncio
    async def test_summary_hides_tokens(self, session, user_id):
        await store_connection(user_id, "strava", _grant(), db_session=session)
        summary = await get_connection_summary(user_id, "strava", db_session=session)
        assert summary["connected"] is True
        assert summary["provider_account_id"] == "555"
        assert "access_token" not in summary
        assert "refresh_token" not in summary

        other = await get_connection_summary(str(uuid.uuid4()), "strava", db_session=session)
        assert other == {"provider": "strava", "connected": False}


async def get_active_token_plain(session, user_id):
    conn = await get_active_connection(user_id, "strava", db_session=session)
    from connectors.encryption import decrypt_token

    return decrypt_token(conn.access_token)


class TestGetActiveToken:
    @pytest.mark.asyncio
    async def test_valid_token_returned_without_network(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(access="still-good"), db_session=session)
        assert await get_active_token(user_id, connector, db_session=session) == "still-good"
        assert fake_strava.requests == []

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(access="old", expires_in=30), db_session=session)
        fake_strava.handler = lambda r: httpx.Response(
            200, json={"access_token": "fresh", "refresh_token": "rotated", "expires_at": 1893456000}
        )

        assert await get_active_token(user_id, connector, db_session=session) == "fresh"
        assert await get_active_token_plain(session, user_id) == "fresh"
        conn = await get_active_connection(user_id, "strava", db_session=session)
        assert conn.last_refreshed is not None

    @pytest.mark.asyncio
    async def test_refresh_failure_returns_none(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(expires_in=-60), db_session=session)
        fake_strava.handler = lambda r: httpx.Response(400, json={"message": "Bad Request"})
        assert await get_active_token(user_id, connector, db_session=session) is None

    @pytest.mark.asyncio
    async def test_refresh_without_access_token_returns_none(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(expires_in=-60), db_session=session)
        fake_strava.handler = lambda r: httpx.Response(200, json={"errors": []})
        assert await get_active_token(user_id, connector, db_session=session) is None

    @pytest.mark.asyncio
    async def test_not_connected(self, session, user_id, connector):
        assert await get_active_token(user_id, connector, db_session=session) is None


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_no_connection_succeeds_without_revoke(self, session, user_id, connector, fake_strava):
        result = await disconnect(user_id, connector, db_session=session)

        assert result.was_connected is False
        assert result.revoked is False
        assert fake_strava.requests == []

    @pytest.mark.asyncio
    async def test_revokes_then_deactivates(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(access="tok"), db_session=session)
        fake_strava.handler = lambda r: httpx.Response(200, json={"access_token": "tok"})

        result = await disconnect(user_id, connector, db_session=session)

        assert result.was_connected is True
        assert result.revoked is True
        assert result.profile_synced is True
        [request] = fake_strava.calls_to("/oauth/deauthorize")
        assert request.headers["Authorization"] == "Bearer tok"

        rows = await _rows(session, user_id)
        assert len(rows) == 1
        assert rows[0].is_active is False
        user = await session.get(User, uuid.UUID(user_id), populate_existing=True)
        assert user.strava_connected is False
        assert user.strava_athlete_id is None

    @pytest.mark.asyncio
    async def test_revoke_timeout_still_deactivates(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(), db_session=session)

        def _timeout(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        fake_strava.handler = _timeout
        result = await disconnect(user_id, connector, db_session=session)

        assert result.was_connected is True
        assert result.revocation_failure is not None
        assert result.revocation_failure.provider == "strava"
        assert await get_active_connection(user_id, "strava", db_session=session) is None

    @pytest.mark.asyncio
    async def test_revoke_exception_still_deactivates(self, session, user_id, connector):
        await store_connection(user_id, "strava", _grant(), db_session=session)

        with patch.object(connector, "revoke_token", AsyncMock(side_effect=RuntimeError("boom"))):
            result = await disconnect(user_id, connector, db_session=session)

        assert result.revocation_failure is not None
        rows = await _rows(session, user_id)
        assert rows[0].is_active is False

    @pytest.mark.asyncio
    async def test_second_disconnect_is_noop(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(), db_session=session)
        fake_strava.handler = lambda r: httpx.Response(200)
        await disconnect(user_id, connector, db_session=session)

        result = await disconnect(user_id, connector, db_session=session)
        assert result.was_connected is False
        assert len(fake_strava.calls_to("/oauth/deauthorize")) == 1

    @pytest.mark.asyncio
    async def test_local_deactivation_failure_is_surfaced(self, session, user_id, connector, fake_strava):
        await store_connection(user_id, "strava", _grant(), db_session=session)
        fake_strava.handler = lambda r: httpx.Response(200)

        with patch.object(session, "flush", AsyncMock(side_effect=SQLAlchemyError("disk full"))):
            with pytest.raises(PersistenceFailure):
                await disconnect(user_id, connector, db_session=session)
