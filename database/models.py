"""
SQLAlchemy ORM models for users, Strava connections and pending PKCE verifiers.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    user_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(128))
    password_hash = Column(String(255), nullable=False, default="")
    # Profile summary of the Strava link, kept in sync on a best-effort basis.
    strava_connected = Column(Boolean, nullable=False, default=False)
    strava_athlete_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    connections = relationship("UserConnection", back_populates="user", cascade="all, delete-orphan")


class UserConnection(Base):
    """
    Credential linking a local user to their account at an external provider.

    Rows are never deleted by the connector flow: a disconnect only flips
    ``is_active`` so the history of the link is kept.
    """

    __tablename__ = "user_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_user_connections_user_provider"),
        Index("ix_user_connections_user_active", "user_id", "is_active"),
    )

    connection_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(32), nullable=False)
    provider_account_id = Column(String(64))
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    scope = Column(Text)
    account_metadata = Column(JSON().with_variant(JSONB(), "postgresql"), default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    connected_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
    last_refreshed = Column(DateTime(timezone=True))

    user = relationship("User", back_populates="connections")


class PkceVerifier(Base):
    """A code verifier waiting for its OAuth callback, keyed by the ``state`` value."""

    __tablename__ = "pkce_verifiers"

    state_key = Column(String(512), primary_key=True)
    code_verifier = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
