"""
RideHub connector service — application entry point.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from auth.routes import router as auth_router
from config.settings import config
from connectors.registry import ConnectorRegistry
from connectors.routes import router as connectors_router
from connectors.verifier_store import DatabaseVerifierStore
from database.session import async_session_factory, init_db

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "aiosqlite"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Discovering connectors…")
    ConnectorRegistry().discover()

    await init_db()
    async with async_session_factory() as session:
        purged = await DatabaseVerifierStore(session).purge_expired()
        await session.commit()
    if purged:
        logger.info("Purged %d abandoned PKCE verifiers", purged)

    logger.info("Application ready to accept requests.")
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="RideHub Connectors",
        version="1.0.0",
        description="Strava account linking over OAuth 2.0 with PKCE.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    app.include_router(auth_router, prefix="/api/v1/auth")
    app.include_router(connectors_router, prefix="/api/v1/connectors")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
