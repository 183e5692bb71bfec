"""
Error taxonomy for the connector flow.

Every ``ConnectorError`` carries a stable ``kind`` and a generic
``public_message``; the detailed ``reason`` is for server logs only and is
never put in a response body.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ConnectorError(Exception):
    kind: str = "connector_error"
    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.public_message
        super().__init__(self.reason)


class MissingParameters(ConnectorError):
    """Callback inputs absent; the user has to restart the flow."""

    kind = "missing_parameters"
    status_code = 400
    public_message = "Missing required parameters"


class Unauthenticated(ConnectorError):
    kind = "unauthenticated"
    status_code = 401
    public_message = "User not authenticated"


class InvalidState(ConnectorError):
    """Anti-forgery ``state`` failed signature or expiry checks."""

    kind = "invalid_state"
    status_code = 400
    public_message = "Invalid or expired OAuth state"


class TokenExchangeRejected(ConnectorError):
    """Provider declined the code/verifier pair, or could not be reached."""

    kind = "token_exchange_rejected"
    status_code = 400
    public_message = "Failed to exchange code for token"


class PersistenceFailure(ConnectorError):
    kind = "persistence_failure"
    status_code = 500
    public_message = "Failed to save connection"


class ProviderNotFound(ConnectorError):
    kind = "provider_not_found"
    status_code = 404
    public_message = "Provider not found or not configured"


@dataclass(frozen=True)
class RevocationFailure:
    """Non-fatal outcome of a failed provider revoke call. Logged, never raised."""

    provider: str
    reason: str
