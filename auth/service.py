"""
Session authority — registration, login, refresh, logout and password
lifecycle on top of the credential hasher, token codec, token store and
user directory.

Credential lifecycle: absent → issued → (validated)* → consumed / revoked /
expired.  Access tokens are stateless; refresh and reset tokens are only
honoured while a live row exists in the token store.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from auth.errors import (
    DuplicateUser,
    IncorrectCurrentPassword,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidToken,
    PasswordTooLong,
    UnknownEnterprise,
    UserNotFound,
)
from auth.jwt import TokenCodec, TokenError
from auth.models import Principal, TokenKind, User
from auth.password import hash_password, verify_password
from config.settings import Settings, config
from database.token_store import TokenConflict, TokenNotFound, TokenRecord, TokenStore
from database.user_directory import EmailAlreadyRegistered, UserDirectory
from notifications.email import EmailDispatcher

logger = logging.getLogger(__name__)

_MAX_TOKEN_ATTEMPTS = 3


@dataclass(frozen=True)
class IssuedSession:
    user: User
    principal: Principal
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class RefreshedSession:
    principal: Principal
    access_token: str
    refresh_token: Optional[str] = None  # only set when rotation is enabled


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Verified against when the email is unknown so both login failures cost the same.
    return hash_password(secrets.token_hex(16))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _hash_new_password(password: str) -> str:
    try:
        return await asyncio.to_thread(hash_password, password)
    except ValueError:
        raise PasswordTooLong()


class SessionAuthority:
    def __init__(
        self,
        users: UserDirectory,
        tokens: TokenStore,
        codec: TokenCodec,
        mailer: EmailDispatcher,
        settings: Settings = config,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.codec = codec
        self.mailer = mailer
        self.settings = settings
        self._clock = clock

    # ── Registration / login ─────────────────────────────────────────────

    async def register(
        self,
        *,
        name: str,
        email: str,
        password: str,
        enterprise_id: str,
        role_name: Optional[str] = None,
    ) -> IssuedSession:
        """Create an active user in *enterprise_id* and open a first session."""
        if await self.users.find_by_email(email) is not None:
            raise DuplicateUser()

        role = await self.users.find_role(
            enterprise_id, role_name or self.settings.default_role_name
        )
        if role is None:
            raise UnknownEnterprise()

        password_hash = await _hash_new_password(password)
        try:
            user = await self.users.insert(
                enterprise_id=enterprise_id,
                role_id=role.role_id,
                name=name,
                email=email,
                password_hash=password_hash,
            )
        except EmailAlreadyRegistered:
            raise DuplicateUser()

        issued = await self._open_session(user)
        logger.info("Registered user %s (%s)", user.email, user.user_id)
        return issued

    async def login(self, email: str, password: str) -> IssuedSession:
        """
        Verify credentials and mint a fresh access/refresh pair.

        Login is additive: refresh tokens from other devices stay valid.
        Unknown email and wrong password raise the same error.
        """
        user = await self.users.find_by_email(email)
        if user is not None:
            stored_hash = user.password_hash
        else:
            stored_hash = await asyncio.to_thread(_dummy_hash)
        valid = await asyncio.to_thread(verify_password, password, stored_hash)
        if user is None or not valid:
            logger.info("Failed login attempt")
            raise InvalidCredentials()

        issued = await self._open_session(user)
        logger.info("Login: %s (%s)", user.email, user.user_id)
        return issued

    # ── Refresh / logout ─────────────────────────────────────────────────

    async def refresh(self, refresh_token: str) -> RefreshedSession:
        """
        Exchange a live refresh token for a new access token.

        Without rotation the refresh token stays valid until it expires or is
        logged out.  With ``rotate_refresh_tokens`` the presented value is
        consumed atomically and a replacement is returned.
        """
        try:
            claims = self.codec.verify_refresh(refresh_token)
        except TokenError:
            raise InvalidToken()

        rotate = self.settings.rotate_refresh_tokens
        try:
            if rotate:
                record = await self.tokens.take(refresh_token, TokenKind.REFRESH, now=self._clock())
            else:
                record = await self.tokens.get_by_value(refresh_token, TokenKind.REFRESH, now=self._clock())
        except TokenNotFound:
            raise InvalidToken()

        if record.user_id != claims.user_id:
            raise InvalidToken()

        user = await self.users.find_by_id(claims.user_id)
        if user is None:
            raise InvalidToken()

        principal = Principal.from_user(user)
        access_token = self.codec.sign_access(principal)
        new_refresh = await self._issue_refresh(principal) if rotate else None
        return RefreshedSession(principal=principal, access_token=access_token, refresh_token=new_refresh)

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke one refresh token; absent or unknown tokens are not an error."""
        if refresh_token:
            await self.tokens.delete_by_value(refresh_token, TokenKind.REFRESH)

    async def logout_all(self, principal: Principal) -> int:
        """Revoke every refresh token held by the principal's user."""
        revoked = await self.tokens.delete_all_for_owner(principal.user_id, TokenKind.REFRESH)
        logger.info("Revoked %d refresh tokens for user %s", revoked, principal.user_id)
        return revoked

    # ── Password lifecycle ───────────────────────────────────────────────

    async def forgot_password(self, email: str) -> None:
        """
        Persist a single-use reset token and hand it to the mailer.

        Unknown emails return normally with no side effects.  A mailer
        failure is logged and does not undo the stored token.
        """
        user = await self.users.find_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return

        now = self._clock()
        for attempt in range(_MAX_TOKEN_ATTEMPTS):
            reset_token = secrets.token_hex(32)
            try:
                await self.tokens.put(
                    TokenRecord(
                        token_value=reset_token,
                        user_id=str(user.user_id),
                        enterprise_id=str(user.enterprise_id),
                        kind=TokenKind.RESET,
                        issued_at=now,
                        expires_at=now + timedelta(seconds=self.settings.reset_token_ttl_seconds),
                    )
                )
                break
            except TokenConflict:
                logger.warning("Reset token collision (attempt %d)", attempt + 1)
        else:
            raise RuntimeError("could not allocate a unique reset token")

        try:
            await self.mailer.send_password_reset_notice(user.email, reset_token)
        except Exception:
            logger.exception("Password reset notice failed for user %s", user.user_id)

    async def reset_password(self, reset_token: str, new_password: str) -> None:
        """Consume *reset_token* and set a new password."""
        password_hash = await _hash_new_password(new_password)
        try:
            record = await self.tokens.take(reset_token, TokenKind.RESET, now=self._clock())
        except TokenNotFound:
            raise InvalidOrExpiredToken()

        user = await self.users.find_by_id(record.user_id)
        if user is None:
            raise InvalidOrExpiredToken()

        await self.users.update_password_hash(record.user_id, password_hash)

        if self.settings.revoke_sessions_on_password_reset:
            revoked = await self.tokens.delete_all_for_owner(record.user_id, TokenKind.REFRESH)
            logger.info("Password reset for %s revoked %d refresh tokens", record.user_id, revoked)
        else:
            logger.info("Password reset for %s", record.user_id)

    async def change_password(
        self,
        principal: Principal,
        current_password: str,
        new_password: str,
    ) -> None:
        user = await self.users.find_by_id(principal.user_id)
        if user is None:
            raise UserNotFound()
        if not await asyncio.to_thread(verify_password, current_password, user.password_hash):
            raise IncorrectCurrentPassword()

        password_hash = await _hash_new_password(new_password)
        await self.users.update_password_hash(principal.user_id, password_hash)
        logger.info("Password changed for user %s", principal.user_id)

    # ── Profile / account ────────────────────────────────────────────────

    async def get_profile(self, principal: Principal) -> User:
        user = await self.users.find_by_id(principal.user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def update_profile(self, principal: Principal, changes: Dict[str, Any]) -> User:
        user = await self.users.update_profile(principal.user_id, changes)
        if user is None:
            raise UserNotFound()
        return user

    async def delete_account(self, principal: Principal) -> None:
        """Soft-delete the user and purge every stored token of every kind."""
        await self.users.deactivate(principal.user_id)
        purged = await self.tokens.delete_all_for_owner(principal.user_id)
        logger.info("Deleted account %s (%d stored tokens purged)", principal.user_id, purged)

    # ── Internals ────────────────────────────────────────────────────────

    async def _open_session(self, user: User) -> IssuedSession:
        principal = Principal.from_user(user)
        access_token = self.codec.sign_access(principal)
        refresh_token = await self._issue_refresh(principal)
        return IssuedSession(
            user=user,
            principal=principal,
            access_token=access_token,
            refresh_token=refresh_token,
        )

    async def _issue_refresh(self, principal: Principal) -> str:
        now = self._clock()
        for attempt in range(_MAX_TOKEN_ATTEMPTS):
            token = self.codec.sign_refresh(
                principal.user_id, principal.enterprise_id, now=now.timestamp()
            )
            try:
                await self.tokens.put(
                    TokenRecord(
                        token_value=token,
                        user_id=principal.user_id,
                        enterprise_id=principal.enterprise_id,
                        kind=TokenKind.REFRESH,
                        issued_at=now,
                        expires_at=now + timedelta(seconds=self.codec.refresh_ttl),
                    )
                )
                return token
            except TokenConflict:
                logger.warning("Refresh token collision (attempt %d)", attempt + 1)
        raise RuntimeError("could not allocate a unique refresh token")
