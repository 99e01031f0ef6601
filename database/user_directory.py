"""
User directory — tenant-scoped user lookups and lifecycle updates.

Every read filters on ``status == active`` explicitly; a deactivated user
is invisible to authentication and profile lookups.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Role, User, UserStatus

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "phone", "location", "bio")


class EmailAlreadyRegistered(Exception):
    pass


def _to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


class UserDirectory:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_email(self, email: str) -> Optional[User]:
        result = await self._session.execute(
            select(User).where(
                User.email == email.strip().lower(),
                User.status == UserStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    async def find_by_id(self, user_id: str) -> Optional[User]:
        try:
            uid = _to_uuid(user_id)
        except ValueError:
            return None
        result = await self._session.execute(
            select(User).where(
                User.user_id == uid,
                User.status == UserStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    async def find_role(self, enterprise_id: str, role_name: str) -> Optional[Role]:
        """Look up a named role inside an enterprise."""
        try:
            eid = _to_uuid(enterprise_id)
        except ValueError:
            return None
        result = await self._session.execute(
            select(Role).where(Role.enterprise_id == eid, Role.name == role_name)
        )
        return result.scalar_one_or_none()

    async def insert(
        self,
        *,
        enterprise_id: str,
        role_id: str | uuid.UUID,
        name: str,
        email: str,
        password_hash: str,
    ) -> User:
        """
        Create an active user.

        Raises ``EmailAlreadyRegistered`` when the unique email constraint
        fires, which covers two registrations racing past the lookup.
        """
        user = User(
            user_id=uuid.uuid4(),
            enterprise_id=_to_uuid(enterprise_id),
            role_id=_to_uuid(role_id),
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            status=UserStatus.ACTIVE.value,
            email_verified=False,
        )
        self._session.add(user)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise EmailAlreadyRegistered(email) from exc
        await self._session.refresh(user, attribute_names=["role"])
        return user

    async def update_password_hash(self, user_id: str, password_hash: str) -> None:
        await self._session.execute(
            update(User)
            .where(User.user_id == _to_uuid(user_id))
            .values(password_hash=password_hash)
            .execution_options(synchronize_session="evaluate")
        )

    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Optional[User]:
        """Apply the allowed profile fields in *changes*; unknown keys are ignored."""
        user = await self.find_by_id(user_id)
        if user is None:
            return None
        for field in PROFILE_FIELDS:
            if field in changes and not (field == "name" and changes[field] is None):
                setattr(user, field, changes[field])
        await self._session.flush()
        return user

    async def deactivate(self, user_id: str) -> None:
        await self._session.execute(
            update(User)
            .where(User.user_id == _to_uuid(user_id))
            .values(status=UserStatus.DEACTIVATED.value)
            .execution_options(synchronize_session="evaluate")
        )
        logger.info("Deactivated user %s", user_id)
