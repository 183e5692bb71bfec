"""
StravaConnector — OAuth2 (Authorization Code + PKCE) for Strava.

Token exchange, refresh and deauthorize are server-to-server calls; the
client secret never leaves this process.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from config.settings import Settings, config
from connectors.base import BaseConnector, TokenGrant
from connectors.errors import TokenExchangeRejected
from connectors.pkce import CODE_CHALLENGE_METHOD

logger = logging.getLogger(__name__)


def _from_epoch(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class StravaConnector(BaseConnector):
    """OAuth2 connector for Strava."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or config
        # Injected by tests to fake Strava without a network.
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "strava"

    @property
    def display_name(self) -> str:
        return "Strava"

    @property
    def scope(self) -> str:
        return self._settings.strava_scope

    def is_configured(self) -> bool:
        return bool(self._settings.strava_client_id and self._settings.strava_client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.strava_http_timeout,
            transport=self._transport,
        )

    def get_auth_url(self, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self._settings.strava_client_id,
            "redirect_uri": self._settings.strava_redirect_uri(),
            "response_type": "code",
            "scope": self.scope,
            "state": state,
            "approval_prompt": "force",
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
        return str(httpx.URL(self._settings.strava_auth_url, params=params))

    async def _post_token(self, body: Dict[str, Any], what: str) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.post(self._settings.strava_token_url, json=body)
        except httpx.TimeoutException as exc:
            logger.warning("Strava %s timed out: %s", what, exc)
            raise TokenExchangeRejected(f"{what} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Strava %s transport error: %s", what, exc)
            raise TokenExchangeRejected(f"{what} transport error: {exc}") from exc

        if resp.is_error:
            logger.error("Strava %s failed (%s): %s", what, resp.status_code, resp.text)
            raise TokenExchangeRejected(f"{what} rejected with HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            logger.error("Strava %s returned a non-JSON body", what)
            raise TokenExchangeRejected(f"{what} returned malformed JSON") from exc

    @staticmethod
    def _require_access_token(data: Dict[str, Any]) -> str:
        access_token = data.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("response missing access_token")
        return access_token

    async def exchange_code(self, code: str, code_verifier: str) -> TokenGrant:
        """Exchange auth code + verifier for tokens. The athlete profile comes back inline."""
        data = await self._post_token(
            {
                "client_id": self._settings.strava_client_id,
                "client_secret": self._settings.strava_client_secret,
                "code": code,
                "code_verifier": code_verifier,
                "grant_type": "authorization_code",
            },
            "token exchange",
        )
        try:
            athlete = data.get("athlete") or {}
            if not isinstance(athlete, dict):
                raise TypeError(f"athlete is {type(athlete).__name__}, not an object")
            return TokenGrant(
                access_token=self._require_access_token(data),
                refresh_token=data.get("refresh_token"),
                expires_at=_from_epoch(data.get("expires_at")),
                scope=data.get("scope") or self.scope,
                account_id=str(athlete["id"]) if athlete.get("id") is not None else None,
                account_metadata=athlete,
            )
        except (TypeError, ValueError, AttributeError, OverflowError) as exc:
            logger.error("Strava token exchange response was malformed: %s", exc)
            raise TokenExchangeRejected(f"token exchange response malformed: {exc}") from exc

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Strava rotates the refresh token on every refresh."""
        data = await self._post_token(
            {
                "client_id": self._settings.strava_client_id,
                "client_secret": self._settings.strava_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "token refresh",
        )
        try:
            return TokenGrant(
                access_token=self._require_access_token(data),
                refresh_token=data.get("refresh_token") or refresh_token,
                expires_at=_from_epoch(data.get("expires_at")),
            )
        except (TypeError, ValueError, AttributeError, OverflowError) as exc:
            logger.error("Strava token refresh response was malformed: %s", exc)
            raise TokenExchangeRejected(f"token refresh response malformed: {exc}") from exc

    async def revoke_token(self, access_token: str) -> None:
        async with self._client() as client:
            resp = await client.post(
                self._settings.strava_deauthorize_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            resp.raise_for_status()
