"""SQLAlchemy models for chooser accounts and state-token bindings."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from database import Base


class AccountModel(Base):
    """One row per email; the email column is the primary key."""

    __tablename__ = "accounts"
    __table_args__ = {"extend_existing": True}

    email = Column(String(320), primary_key=True)
    display_name = Column(String(255), nullable=True)
    photo_url = Column(Text, nullable=True)
    provider_id = Column(String(64), nullable=True)
    password_hash = Column(Text, nullable=True)
    color = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<AccountModel email={self.email!r} provider={self.provider_id!r}>"


class StateBindingModel(Base):
    """Correlation token issued before redirecting to an identity provider."""

    __tablename__ = "state_bindings"
    __table_args__ = {"extend_existing": True}

    token = Column(String(128), primary_key=True)
    email_hint = Column(String(320), nullable=False, default="")
    provider_id = Column(String(64), nullable=False, default="")
    # sha256 of the flow cookie held by the browser that started the login.
    browser_binding = Column(String(64), nullable=False, default="")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
