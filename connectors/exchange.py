"""
Authorization-code exchange flow.

    idle ──begin()──▶ awaiting_code ──complete()──▶ exchanging ──▶ connected
                                          │                   └──▶ failed
                                          └── bad input / no user ──▶ failed

An ``ExchangeFlow`` lives for one request: ``begin`` runs in the
authorize request, ``complete`` (or ``resume``) in the callback request.
Failures are raised as ``ConnectorError`` subclasses and also recorded on
``flow.error`` so the state is inspectable after the fact.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from connectors.base import BaseConnector
from connectors.errors import (
    ConnectorError,
    MissingParameters,
    Unauthenticated,
)
from connectors.pkce import generate_pkce_params, is_valid_code_verifier
from connectors.state import create_state, verify_state
from connectors.token_manager import ConnectionResult, store_connection
from connectors.verifier_store import VerifierStore

logger = logging.getLogger(__name__)


class ExchangeState(str, Enum):
    IDLE = "idle"
    AWAITING_CODE = "awaiting_code"
    EXCHANGING = "exchanging"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizationRequest:
    auth_url: str
    state: str


class ExchangeFlow:
    """Drives one connector through the PKCE authorization-code handshake."""

    def __init__(self, connector: BaseConnector):
        self.connector = connector
        self.state = ExchangeState.IDLE
        self.error: Optional[ConnectorError] = None

    def _fail(self, error: ConnectorError) -> ConnectorError:
        self.state = ExchangeState.FAILED
        self.error = error
        logger.warning(
            "%s exchange failed [%s]: %s",
            self.connector.provider_name,
            error.kind,
            error.reason,
        )
        return error

    async def begin(self, user_id: Optional[str], verifier_store: VerifierStore) -> AuthorizationRequest:
        """Generate PKCE params, park the verifier and build the provider URL."""
        if not user_id:
            raise self._fail(Unauthenticated("no local session at authorize time"))

        params = generate_pkce_params()
        state = create_state(user_id)
        await verifier_store.store(state, params.code_verifier)
        auth_url = self.connector.get_auth_url(state, params.code_challenge)
        self.state = ExchangeState.AWAITING_CODE
        return AuthorizationRequest(auth_url=auth_url, state=state)

    async def complete(
        self,
        user_id: Optional[str],
        code: Optional[str],
        code_verifier: Optional[str],
        *,
        db_session: AsyncSession,
    ) -> ConnectionResult:
        """
        Exchange ``code`` + ``code_verifier`` and persist the connection.

        Input and caller checks come first, so a missing parameter or an
        anonymous caller never reaches the provider.
        """
        self.state = ExchangeState.AWAITING_CODE
        if not code or not code_verifier:
            raise self._fail(MissingParameters("code or code_verifier missing"))
        if not is_valid_code_verifier(code_verifier):
            raise self._fail(MissingParameters("code_verifier is malformed"))
        if not user_id:
            raise self._fail(Unauthenticated("no local session at exchange time"))

        self.state = ExchangeState.EXCHANGING
        try:
            grant = await self.connector.exchange_code(code, code_verifier)
            result = await store_connection(
                user_id, self.connector.provider_name, grant, db_session=db_session
            )
        except ConnectorError as exc:
            raise self._fail(exc)

        self.state = ExchangeState.CONNECTED
        logger.info(
            "OAuth connected: user=%s provider=%s account=%s",
            user_id,
            self.connector.provider_name,
            grant.account_id,
        )
        return result

    async def resume(
        self,
        code: Optional[str],
        state: Optional[str],
        verifier_store: VerifierStore,
        *,
        db_session: AsyncSession,
    ) -> ConnectionResult:
        """Callback path where the verifier was parked server-side under ``state``."""
        user_id, code_verifier = await self.claim(state, verifier_store)
        return await self.complete(user_id, code, code_verifier, db_session=db_session)

    async def claim(
        self,
        state: Optional[str],
        verifier_store: VerifierStore,
    ) -> Tuple[str, Optional[str]]:
        """Verify ``state`` and take its parked verifier out of the store.

        Returns ``(user_id, code_verifier)``; the verifier is None when it was
        never stored, already consumed or expired.
        """
        if not state:
            raise self._fail(MissingParameters("state missing"))
        try:
            user_id = verify_state(state)
        except ConnectorError as exc:
            raise self._fail(exc)

        return user_id, await verifier_store.retrieve_and_clear(state)
