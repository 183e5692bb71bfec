"""
Shared fixtures: in-memory SQLite database, a seeded user and a Strava
connector whose HTTP calls go to an ``httpx.MockTransport``.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from typing import Callable, List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.settings import Settings
from connectors.strava import StravaConnector
from database.models import Base, User


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs behave under pysqlite.
    @event.listens_for(eng.sync_engine, "connect")
    def _no_implicit_tx(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def user_id(session_factory) -> str:
    uid = uuid.uuid4()
    async with session_factory() as s:
        s.add(User(user_id=uid, email=f"{uid.hex[:8]}@ridehub.test", display_name="Rider"))
        await s.commit()
    return str(uid)


@pytest.fixture
def strava_settings() -> Settings:
    return Settings(
        strava_client_id="4242",
        strava_client_secret="super-secret-value",
        oauth_redirect_base="https://ridehub.test",
    )


class FakeStrava:
    """Records requests and answers them with a configurable handler."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = self.ok_token

    @staticmethod
    def ok_token(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "token_type": "Bearer",
                "access_token": "access-abc",
                "refresh_token": "refresh-abc",
                "expires_at": 1893456000,
                "scope": "read,activity:read_all",
                "athlete": {"id": 987654, "username": "rider", "firstname": "Ada"},
            },
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


@pytest.fixture
def fake_strava() -> FakeStrava:
    return FakeStrava()


@pytest.fixture
def connector(strava_settings, fake_strava) -> StravaConnector:
    return StravaConnector(strava_settings, transport=httpx.MockTransport(fake_strava))
