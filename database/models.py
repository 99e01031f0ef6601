"""
SQLAlchemy ORM models for tenants, users and stored session tokens.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
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
from sqlalchemy.orm import DeclarativeBase, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserStatus(str, Enum):
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


class TokenKind(str, Enum):
    """Closed set of credential kinds.  Only REFRESH and RESET are stored."""

    ACCESS = "access"
    REFRESH = "refresh"
    RESET = "reset"


class Enterprise(Base):
    __tablename__ = "enterprises"

    enterprise_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    roles = relationship("Role", back_populates="enterprise", cascade="all, delete-orphan")


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("enterprise_id", "name", name="uq_roles_enterprise_name"),)

    role_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enterprise_id = Column(
        Uuid(as_uuid=True), ForeignKey("enterprises.enterprise_id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(64), nullable=False)
    description = Column(Text)

    enterprise = relationship("Enterprise", back_populates="roles")


class User(Base):
    __tablename__ = "users"

    user_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enterprise_id = Column(
        Uuid(as_uuid=True), ForeignKey("enterprises.enterprise_id", ondelete="CASCADE"), nullable=False
    )
    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.role_id"), nullable=False)
    name = Column(String(128), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(32))
    location = Column(String(255))
    bio = Column(Text)
    status = Column(String(16), nullable=False, default=UserStatus.ACTIVE.value)
    email_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    role = relationship("Role", lazy="joined")
    tokens = relationship("StoredToken", back_populates="user", cascade="all, delete-orphan")


class StoredToken(Base):
    __tablename__ = "stored_tokens"
    __table_args__ = (
        Index("ix_stored_tokens_owner_kind", "user_id", "kind"),
        Index("ix_stored_tokens_expires_at", "expires_at"),
    )

    token_value = Column(String(1024), primary_key=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    enterprise_id = Column(Uuid(as_uuid=True), nullable=False)
    kind = Column(String(16), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="tokens")
