"""
BaseConnector — abstract interface for OAuth2 + PKCE connectors.

Strava is the only provider today; a new one subclasses this and implements
the auth-URL, code exchange, refresh and revoke calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class TokenGrant:
    """Credential returned by a successful code exchange or refresh."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    scope: str = ""
    account_id: Optional[str] = None
    account_metadata: Dict[str, Any] = field(default_factory=dict)


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug, e.g. 'strava'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scope(self) -> str:
        """Scope string exactly as the provider expects it in the auth URL."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str, code_challenge: str) -> str:
        """
        Build the provider's authorization URL.

        Parameters
        ----------
        state : str
            Opaque anti-forgery state (encodes user_id + nonce).
        code_challenge : str
            S256 PKCE challenge of the verifier kept for the callback.
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: str) -> TokenGrant:
        """
        Exchange the authorization code plus the original verifier for tokens.

        Raises ``TokenExchangeRejected`` on any non-2xx response, timeout or
        transport error.
        """
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        ...

    @abstractmethod
    async def revoke_token(self, access_token: str) -> None:
        """
        Revoke ``access_token`` at the provider.

        May raise on network or provider errors; callers treat revocation
        as best-effort.
        """
        ...

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """
        Return True if this connector has all required config
        (client id, client secret).
        """
        return True
