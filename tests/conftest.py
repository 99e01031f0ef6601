"""
Shared fixtures: an in-memory SQLite database, a seeded enterprise and a
fully wired ``SessionAuthority``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import auth.password
from auth.jwt import TokenCodec
from auth.service import SessionAuthority
from config.settings import Settings
from database.models import Base, Enterprise, Role
from database.token_store import TokenStore
from database.user_directory import UserDirectory
from notifications.email import EmailDispatcher


class RecordingMailer(EmailDispatcher):
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []

    async def send_password_reset_notice(self, email: str, reset_token: str) -> None:
        self.sent.append((email, reset_token))


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def fast_hashing(monkeypatch):
    """Drop the bcrypt work factor so tests stay quick."""
    monkeypatch.setattr(auth.password, "BCRYPT_ROUNDS", 4)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def _seed_enterprise(session_factory) -> str:
    eid = uuid.uuid4()
    async with session_factory() as session:
        session.add(Enterprise(enterprise_id=eid, name="Acme", domain="acme.test"))
        session.add(Role(enterprise_id=eid, name="AE", description="Account executive"))
        session.add(Role(enterprise_id=eid, name="Admin", description="Administrator"))
        await session.commit()
    return str(eid)


@pytest_asyncio.fixture
async def enterprise_id(session_factory) -> str:
    return await _seed_enterprise(session_factory)


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """
    Sessions on a SQLite file, each on its own pooled connection, so two
    sessions really do race through the database locks.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'credentials.db'}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_enterprise_id(file_session_factory) -> str:
    return await _seed_enterprise(file_session_factory)


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(
        access_secret="test-access-secret",
        refresh_secret="test-refresh-secret",
        access_ttl=900,
        refresh_ttl=3600,
    )


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(rotate_refresh_tokens=False, revoke_sessions_on_password_reset=True)


@pytest.fixture
def authority(session, codec, mailer, settings, clock, fast_hashing) -> SessionAuthority:
    return SessionAuthority(
        users=UserDirectory(session),
        tokens=TokenStore(session),
        codec=codec,
        mailer=mailer,
        settings=settings,
        clock=clock,
    )
