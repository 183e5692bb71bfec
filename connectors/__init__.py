"""
connectors — OAuth2 + PKCE integration with external fitness providers.

Handles:
  • PKCE verifier / S256 challenge generation
  • Auth-URL generation and single-use verifier parking
  • Callback handling (code + verifier → token exchange)
  • Per-user connection upsert, token refresh, Fernet encryption at rest
  • Best-effort revocation followed by local deactivation

Each provider (Strava, …) is a subclass of BaseConnector.
"""
