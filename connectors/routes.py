"""
Connector API routes — authorize, callback / token exchange, status, disconnect.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import html
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id, get_optional_user_id
from connectors.base import BaseConnector
from connectors.errors import ConnectorError, PersistenceFailure, ProviderNotFound
from connectors.exchange import ExchangeFlow
from connectors.registry import ConnectorRegistry
from connectors.token_manager import disconnect, get_connection_summary
from connectors.verifier_store import DatabaseVerifierStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


class TokenExchangeRequest(BaseModel):
    code: Optional[str] = None
    code_verifier: Optional[str] = None


def get_connector(provider: str) -> BaseConnector:
    connector = ConnectorRegistry().get(provider)
    if connector is None:
        raise ProviderNotFound(f"provider {provider!r} not registered")
    return connector


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        logger.error("Commit failed: %s", exc)
        await session.rollback()
        raise PersistenceFailure(f"commit failed: {exc}") from exc


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers() -> list[dict]:
    """List registered connector providers. No auth required."""
    return ConnectorRegistry().list_providers()


@router.get("/{provider}/auth-url")
async def get_auth_url(
    connector: BaseConnector = Depends(get_connector),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, str]:
    """
    Start the PKCE flow: park a fresh verifier and return the provider URL.

    The frontend sends the browser to ``auth_url``.
    """
    flow = ExchangeFlow(connector)
    request = await flow.begin(user_id, DatabaseVerifierStore(session))
    await _commit(session)
    return {
        "auth_url": request.auth_url,
        "provider": connector.provider_name,
        "state": request.state,
    }


@router.get("/{provider}/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    connector: BaseConnector = Depends(get_connector),
    session: AsyncSession = Depends(db_session),
) -> HTMLResponse:
    """
    Provider redirect target for the server-held verifier path.

    The signed ``state`` identifies the user and the parked verifier.
    """
    store = DatabaseVerifierStore(session)
    provider = connector.provider_name

    if error:
        logger.info("%s authorization denied: %s", provider, error)
        if state:
            await store.retrieve_and_clear(state)
            await _commit(session)
        return HTMLResponse(
            _callback_html(False, "Authorization was cancelled.", connector.display_name),
            status_code=400,
        )

    flow = ExchangeFlow(connector)
    try:
        user_id, code_verifier = await flow.claim(state, store)
        # the verifier is gone for good before its code is spent
        await _commit(session)
        await flow.complete(user_id, code, code_verifier, db_session=session)
        await _commit(session)
    except ConnectorError as exc:
        await session.rollback()
        return HTMLResponse(
            _callback_html(False, exc.public_message, connector.display_name),
            status_code=exc.status_code,
        )

    return HTMLResponse(
        _callback_html(True, f"Connected {connector.display_name}!", connector.display_name),
        status_code=200,
    )


@router.post("/{provider}/token")
async def exchange_token(
    body: TokenExchangeRequest,
    connector: BaseConnector = Depends(get_connector),
    user_id: Optional[str] = Depends(get_optional_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Exchange a code using a verifier the browser kept itself."""
    flow = ExchangeFlow(connector)
    result = await flow.complete(user_id, body.code, body.code_verifier, db_session=session)
    await _commit(session)
    return {
        "success": True,
        "provider": connector.provider_name,
        "athlete": result.connection.account_metadata or {},
    }


@router.get("/{provider}/connection")
async def connection_status(
    connector: BaseConnector = Depends(get_connector),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    return await get_connection_summary(user_id, connector.provider_name, db_session=session)


@router.post("/{provider}/disconnect")
async def disconnect_provider(
    connector: BaseConnector = Depends(get_connector),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Revoke (best-effort) and deactivate the user's connection."""
    result = await disconnect(user_id, connector, db_session=session)
    await _commit(session)
    return {
        "success": True,
        "message": f"{connector.display_name} connection disconnected successfully",
        "was_connected": result.was_connected,
        "revoked": result.revoked,
    }


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(success: bool, message: str, provider: str) -> str:
    """Result page shown after the provider redirect; sends the user back to their profile."""
    status_text = "Connected!" if success else "Failed"
    color = "#16a34a" if success else "#ef4444"
    message = html.escape(message)
    provider = html.escape(provider)

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>{provider} {status_text}</title>
    <meta http-equiv="refresh" content="3;url=/profile">
    <style>
        body {{
            font-family: system-ui, sans-serif;
            display: flex; align-items: center; justify-content: center;
            height: 100vh; margin: 0; background: #f9fafb;
        }}
        .card {{
            text-align: center; padding: 40px; background: #fff;
            border-radius: 12px; max-width: 400px;
        }}
        h2 {{ color: {color}; margin: 16px 0 8px; }}
    </style>
</head>
<body>
    <div class="card">
        <h2>{status_text}</h2>
        <p>{message}</p>
        <p><a href="/profile">Back to profile</a></p>
    </div>
</body>
</html>"""
