"""
Token store — durable mapping from opaque token value to its metadata.

Every lookup is expiry-aware: a row whose ``expires_at`` has passed is
treated as absent even if the sweeper has not removed it yet.  Deletes are
idempotent, and ``take`` is a compare-and-delete so two concurrent
consumers of the same value cannot both win.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import StoredToken, TokenKind

logger = logging.getLogger(__name__)


class TokenNotFound(Exception):
    """No live token with that value and kind (absent, revoked or expired)."""


class TokenConflict(Exception):
    """The value already exists with a different kind."""


class TokenRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_value: str
    user_id: str
    enterprise_id: str
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime


def _to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Rows are read and written as plain columns so no StoredToken entity ever
# sits in the session identity map after a bulk DELETE.
_COLUMNS = (
    StoredToken.token_value,
    StoredToken.user_id,
    StoredToken.enterprise_id,
    StoredToken.kind,
    StoredToken.issued_at,
    StoredToken.expires_at,
)


def _to_record(row) -> TokenRecord:
    return TokenRecord(
        token_value=row.token_value,
        user_id=str(row.user_id),
        enterprise_id=str(row.enterprise_id),
        kind=TokenKind(row.kind),
        issued_at=row.issued_at,
        expires_at=row.expires_at,
    )


class TokenStore:
    """SQLAlchemy-backed store bound to one request's ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def put(self, record: TokenRecord) -> None:
        """
        Insert *record*; a repeat put of the same value and kind is a no-op.

        A concurrent writer can land the same value between the lookup and
        the INSERT, so the INSERT runs in a savepoint and a unique violation
        is resolved by re-reading the stored kind.
        """
        if record.kind is TokenKind.ACCESS:
            raise ValueError("access tokens are stateless and never stored")

        existing_kind = await self._existing_kind(record.token_value)
        if existing_kind is None:
            try:
                async with self._session.begin_nested():
                    await self._session.execute(
                        insert(StoredToken).values(
                            token_value=record.token_value,
                            user_id=_to_uuid(record.user_id),
                            enterprise_id=_to_uuid(record.enterprise_id),
                            kind=record.kind.value,
                            issued_at=record.issued_at,
                            expires_at=record.expires_at,
                        )
                    )
                return
            except IntegrityError:
                existing_kind = await self._existing_kind(record.token_value)
                if existing_kind is None:
                    raise
                logger.debug("Token value inserted concurrently as %r", existing_kind)

        if existing_kind != record.kind.value:
            raise TokenConflict(f"token value already stored as {existing_kind!r}")

    async def _existing_kind(self, token_value: str) -> Optional[str]:
        result = await self._session.execute(
            select(StoredToken.kind).where(StoredToken.token_value == token_value)
        )
        return result.scalar_one_or_none()

    async def get_by_value(
        self,
        token_value: str,
        kind: TokenKind,
        now: Optional[datetime] = None,
    ) -> TokenRecord:
        """Return the live record or raise ``TokenNotFound``."""
        now = now or _utcnow()
        result = await self._session.execute(
            select(*_COLUMNS).where(
                StoredToken.token_value == token_value,
                StoredToken.kind == kind.value,
                StoredToken.expires_at >= now,
            )
        )
        row = result.one_or_none()
        if row is None:
            raise TokenNotFound(token_value)
        return _to_record(row)

    async def take(
        self,
        token_value: str,
        kind: TokenKind,
        now: Optional[datetime] = None,
    ) -> TokenRecord:
        """
        Fetch a live record and delete it in the same unit of work.

        The delete repeats the validity predicate, so when two callers race
        for one value only the caller whose DELETE hits the row gets it back.
        """
        now = now or _utcnow()
        record = await self.get_by_value(token_value, kind, now=now)
        result = await self._session.execute(
            delete(StoredToken)
            .where(
                StoredToken.token_value == token_value,
                StoredToken.kind == kind.value,
                StoredToken.expires_at >= now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TokenNotFound(token_value)
        return record

    async def delete_by_value(self, token_value: str, kind: Optional[TokenKind] = None) -> None:
        """Delete the row holding *token_value*, restricted to *kind* when given."""
        stmt = delete(StoredToken).where(StoredToken.token_value == token_value)
        if kind is not None:
            stmt = stmt.where(StoredToken.kind == kind.value)
        await self._session.execute(stmt.execution_options(synchronize_session=False))

    async def delete_all_for_owner(
        self,
        user_id: str,
        kind: Optional[TokenKind] = None,
    ) -> int:
        """Delete every token owned by *user_id*, optionally of one kind only."""
        stmt = delete(StoredToken).where(StoredToken.user_id == _to_uuid(user_id))
        if kind is not None:
            stmt = stmt.where(StoredToken.kind == kind.value)
        result = await self._session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count_for_owner(self, user_id: str, kind: TokenKind) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(StoredToken)
            .where(
                StoredToken.user_id == _to_uuid(user_id),
                StoredToken.kind == kind.value,
            )
        )
        return result.scalar_one()

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Delete rows whose expiry is strictly before *now*; return the count."""
        now = now or _utcnow()
        result = await self._session.execute(
            delete(StoredToken)
            .where(StoredToken.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Swept %d expired tokens", result.rowcount)
        return result.rowcount
