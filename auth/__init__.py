"""
auth — local identity for the connector routes.

Provides:
  • signed session token creation & verification
  • bcrypt password hashing
  • Register / Login API routes
  • ``get_current_user_id`` / ``get_optional_user_id`` FastAPI dependencies
"""
