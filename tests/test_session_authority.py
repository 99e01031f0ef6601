"""
Tests for the session authority flows: register, login, refresh, logout,
password reset / change and account deletion.
"""

import asyncio
import uuid

import pytest
from unittest.mock import AsyncMock

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
from auth.service import SessionAuthority
from config.settings import Settings
from database.models import StoredToken, TokenKind
from database.token_store import TokenStore
from database.user_directory import UserDirectory
from sqlalchemy import func, select


async def _register_alice(authority, enterprise_id, password="correct-horse"):
    return await authority.register(
        name="Alice",
        email="alice@x.com",
        password=password,
        enterprise_id=enterprise_id,
    )


async def _stored_count(session, kind=None) -> int:
    stmt = select(func.count()).select_from(StoredToken)
    if kind is not None:
        stmt = stmt.where(StoredToken.kind == kind.value)
    return (await session.execute(stmt)).scalar_one()


def _authority_on(session, codec, mailer, clock) -> SessionAuthority:
    return SessionAuthority(
        users=UserDirectory(session),
        tokens=TokenStore(session),
        codec=codec,
        mailer=mailer,
        settings=Settings(rotate_refresh_tokens=False),
        clock=clock,
    )


# 40 characters, 80 bytes once UTF-8 encoded.
WIDE_PASSWORD = "\u00e9" * 40


class TestRegister:
    @pytest.mark.asyncio
    async def test_issued_access_token_decodes_to_new_principal(self, authority, codec, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)

        principal = codec.verify_access(issued.access_token)
        assert principal.user_id == str(issued.user.user_id)
        assert principal.enterprise_id == enterprise_id
        assert principal.role == "AE"
        assert principal.email == "alice@x.com"

    @pytest.mark.asyncio
    async def test_register_persists_one_refresh_token(self, authority, session, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        assert await _stored_count(session, TokenKind.REFRESH) == 1
        record = await authority.tokens.get_by_value(issued.refresh_token, TokenKind.REFRESH)
        assert record.user_id == str(issued.user.user_id)

    @pytest.mark.asyncio
    async def test_email_is_normalised(self, authority, enterprise_id):
        issued = await authority.register(
            name="Bob", email="  Bob@X.com ", password="pw-123456", enterprise_id=enterprise_id,
        )
        assert issued.user.email == "bob@x.com"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, authority, enterprise_id):
        await _register_alice(authority, enterprise_id)
        with pytest.raises(DuplicateUser):
            await authority.register(
                name="Alice Again", email="ALICE@x.com", password="another-pw", enterprise_id=enterprise_id,
            )

    @pytest.mark.asyncio
    async def test_unknown_enterprise(self, authority):
        with pytest.raises(UnknownEnterprise):
            await _register_alice(authority, str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_explicit_role(self, authority, codec, enterprise_id):
        issued = await authority.register(
            name="Ada", email="ada@x.com", password="pw-123456",
            enterprise_id=enterprise_id, role_name="Admin",
        )
        assert codec.verify_access(issued.access_token).role == "Admin"


class TestLogin:
    @pytest.mark.asyncio
    async def test_register_login_refresh_scenario(self, authority, codec, enterprise_id):
        registered = await _register_alice(authority, enterprise_id)

        logged_in = await authority.login("alice@x.com", "correct-horse")
        assert logged_in.refresh_token != registered.refresh_token

        refreshed = await authority.refresh(logged_in.refresh_token)
        assert codec.verify_access(refreshed.access_token) == logged_in.principal
        assert refreshed.refresh_token is None

    @pytest.mark.asyncio
    async def test_wrong_password_issues_nothing(self, authority, session, enterprise_id):
        await _register_alice(authority, enterprise_id)
        before = await _stored_count(session)

        with pytest.raises(InvalidCredentials) as wrong_pw:
            await authority.login("alice@x.com", "wrong")
        assert await _stored_count(session) == before

        with pytest.raises(InvalidCredentials) as no_user:
            await authority.login("nobody@x.com", "wrong")
        assert wrong_pw.value.detail == no_user.value.detail

    @pytest.mark.asyncio
    async def test_two_logins_give_independent_refresh_tokens(self, authority, enterprise_id):
        await _register_alice(authority, enterprise_id)
        first = await authority.login("alice@x.com", "correct-horse")
        second = await authority.login("alice@x.com", "correct-horse")
        assert first.refresh_token != second.refresh_token

        await authority.logout(first.refresh_token)

        with pytest.raises(InvalidToken):
            await authority.refresh(first.refresh_token)
        assert (await authority.refresh(second.refresh_token)).access_token

    @pytest.mark.asyncio
    async def test_concurrent_logins_on_separate_sessions(
        self, file_session_factory, file_enterprise_id, codec, mailer, clock, fast_hashing
    ):
        async with file_session_factory() as session:
            await _register_alice(_authority_on(session, codec, mailer, clock), file_enterprise_id)
            await session.commit()

        async def login_from_device():
            async with file_session_factory() as session:
                issued = await _authority_on(session, codec, mailer, clock).login("alice@x.com", "correct-horse")
                await session.commit()
                return issued

        first, second = await asyncio.gather(login_from_device(), login_from_device())
        assert first.refresh_token != second.refresh_token

        async with file_session_factory() as session:
            await _authority_on(session, codec, mailer, clock).logout(first.refresh_token)
            await session.commit()

        async with file_session_factory() as session:
            authority = _authority_on(session, codec, mailer, clock)
            with pytest.raises(InvalidToken):
                await authority.refresh(first.refresh_token)
            assert (await authority.refresh(second.refresh_token)).access_token


class TestRefreshAndLogout:
    @pytest.mark.asyncio
    async def test_logged_out_token_never_refreshes(self, authority, codec, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.logout(issued.refresh_token)

        # Signature and expiry are still fine; only the store says no.
        codec.verify_refresh(issued.refresh_token)
        with pytest.raises(InvalidToken):
            await authority.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.logout(issued.refresh_token)
        await authority.logout(issued.refresh_token)
        await authority.logout(None)
        await authority.logout("not-a-token")

    @pytest.mark.asyncio
    async def test_access_token_is_not_a_refresh_token(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        with pytest.raises(InvalidToken):
            await authority.refresh(issued.access_token)

    @pytest.mark.asyncio
    async def test_garbage_refresh(self, authority):
        with pytest.raises(InvalidToken):
            await authority.refresh("garbage")

    @pytest.mark.asyncio
    async def test_stored_row_expiry_wins_over_signature(self, authority, clock, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        clock.advance(hours=2)  # codec refresh TTL in tests is one hour
        with pytest.raises(InvalidToken):
            await authority.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_for_deactivated_user_fails(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.users.deactivate(str(issued.user.user_id))
        with pytest.raises(InvalidToken):
            await authority.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_without_rotation_can_be_replayed(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.refresh(issued.refresh_token)
        await authority.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_with_rotation(self, session, codec, mailer, clock, enterprise_id, fast_hashing):
        authority = SessionAuthority(
            users=UserDirectory(session),
            tokens=TokenStore(session),
            codec=codec,
            mailer=mailer,
            settings=Settings(rotate_refresh_tokens=True),
            clock=clock,
        )
        issued = await _register_alice(authority, enterprise_id)

        rotated = await authority.refresh(issued.refresh_token)
        assert rotated.refresh_token and rotated.refresh_token != issued.refresh_token

        with pytest.raises(InvalidToken):
            await authority.refresh(issued.refresh_token)
        assert (await authority.refresh(rotated.refresh_token)).access_token

    @pytest.mark.asyncio
    async def test_logout_all(self, authority, session, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.login("alice@x.com", "correct-horse")
        await authority.forgot_password("alice@x.com")

        assert await authority.logout_all(issued.principal) == 2
        assert await _stored_count(session, TokenKind.REFRESH) == 0
        assert await _stored_count(session, TokenKind.RESET) == 1


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_unknown_email_has_no_side_effects(self, authority, session, mailer):
        await authority.forgot_password("ghost@x.com")
        assert await _stored_count(session) == 0
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_known_email_stores_one_token_and_dispatches_once(self, authority, session, mailer, enterprise_id):
        await _register_alice(authority, enterprise_id)
        await authority.forgot_password("alice@x.com")

        assert await _stored_count(session, TokenKind.RESET) == 1
        assert len(mailer.sent) == 1
        email, token = mailer.sent[0]
        assert email == "alice@x.com"
        assert len(token) == 64

    @pytest.mark.asyncio
    async def test_mailer_failure_keeps_token(self, authority, session, enterprise_id):
        await _register_alice(authority, enterprise_id)
        authority.mailer = AsyncMock()
        authority.mailer.send_password_reset_notice.side_effect = ConnectionError("smtp down")

        await authority.forgot_password("alice@x.com")
        assert await _stored_count(session, TokenKind.RESET) == 1

    @pytest.mark.asyncio
    async def test_reset_token_is_single_use(self, authority, mailer, enterprise_id):
        await _register_alice(authority, enterprise_id)
        await authority.forgot_password("alice@x.com")
        _, token = mailer.sent[0]

        await authority.reset_password(token, "brand-new-pw")
        with pytest.raises(InvalidOrExpiredToken):
            await authority.reset_password(token, "another-pw")

        await authority.login("alice@x.com", "brand-new-pw")
        with pytest.raises(InvalidCredentials):
            await authority.login("alice@x.com", "correct-horse")

    @pytest.mark.asyncio
    async def test_expired_reset_token(self, authority, clock, mailer, enterprise_id):
        await _register_alice(authority, enterprise_id)
        await authority.forgot_password("alice@x.com")
        _, token = mailer.sent[0]

        clock.advance(hours=1, seconds=1)
        with pytest.raises(InvalidOrExpiredToken):
            await authority.reset_password(token, "brand-new-pw")

    @pytest.mark.asyncio
    async def test_unknown_reset_token(self, authority):
        with pytest.raises(InvalidOrExpiredToken):
            await authority.reset_password("0" * 64, "brand-new-pw")

    @pytest.mark.asyncio
    async def test_logout_with_reset_token_leaves_it_pending(self, authority, mailer, enterprise_id):
        await _register_alice(authority, enterprise_id)
        await authority.forgot_password("alice@x.com")
        _, token = mailer.sent[0]

        await authority.logout(token)

        await authority.reset_password(token, "brand-new-pw")
        await authority.login("alice@x.com", "brand-new-pw")

    @pytest.mark.asyncio
    async def test_reset_revokes_refresh_tokens(self, authority, mailer, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.forgot_password("alice@x.com")
        await authority.reset_password(mailer.sent[0][1], "brand-new-pw")

        with pytest.raises(InvalidToken):
            await authority.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_reset_without_revocation_keeps_sessions(self, session, codec, mailer, clock, enterprise_id, fast_hashing):
        authority = SessionAuthority(
            users=UserDirectory(session),
            tokens=TokenStore(session),
            codec=codec,
            mailer=mailer,
            settings=Settings(revoke_sessions_on_password_reset=False),
            clock=clock,
        )
        issued = await _register_alice(authority, enterprise_id)
        await authority.forgot_password("alice@x.com")
        await authority.reset_password(mailer.sent[0][1], "brand-new-pw")

        # Known gap when the hardening flag is off: old refresh tokens survive.
        assert (await authority.refresh(issued.refresh_token)).access_token

    @pytest.mark.asyncio
    async def test_consuming_one_reset_token_leaves_other_users_tokens(self, authority, session, mailer, enterprise_id):
        await _register_alice(authority, enterprise_id)
        await authority.register(name="Bob", email="bob@x.com", password="bob-pass-1", enterprise_id=enterprise_id)
        await authority.forgot_password("alice@x.com")
        await authority.forgot_password("bob@x.com")

        await authority.reset_password(mailer.sent[0][1], "brand-new-pw")
        assert await _stored_count(session, TokenKind.RESET) == 1


class TestChangePasswordAndAccount:
    @pytest.mark.asyncio
    async def test_change_password(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.change_password(issued.principal, "correct-horse", "battery-staple")
        await authority.login("alice@x.com", "battery-staple")

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        with pytest.raises(IncorrectCurrentPassword):
            await authority.change_password(issued.principal, "nope", "battery-staple")

    @pytest.mark.asyncio
    async def test_delete_account_purges_everything(self, authority, session, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        await authority.login("alice@x.com", "correct-horse")
        await authority.forgot_password("alice@x.com")

        await authority.delete_account(issued.principal)

        assert await _stored_count(session) == 0
        with pytest.raises(InvalidCredentials):
            await authority.login("alice@x.com", "correct-horse")
        with pytest.raises(UserNotFound):
            await authority.get_profile(issued.principal)
        with pytest.raises(InvalidToken):
            await authority.refresh(issued.refresh_token)

    @pytest.mark.asyncio
    async def test_update_profile(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        user = await authority.update_profile(issued.principal, {"bio": "Hello", "email": "evil@x.com"})
        assert user.bio == "Hello"
        assert user.email == "alice@x.com"


class TestOverlongPasswords:
    @pytest.mark.asyncio
    async def test_register_rejects_password_over_72_bytes(self, authority, enterprise_id):
        with pytest.raises(PasswordTooLong):
            await _register_alice(authority, enterprise_id, password=WIDE_PASSWORD)
        assert await authority.users.find_by_email("alice@x.com") is None

    @pytest.mark.asyncio
    async def test_reset_with_overlong_password_keeps_token(self, authority, mailer, enterprise_id):
        await _register_alice(authority, enterprise_id)
        await authority.forgot_password("alice@x.com")
        _, token = mailer.sent[0]

        with pytest.raises(PasswordTooLong):
            await authority.reset_password(token, WIDE_PASSWORD)

        await authority.reset_password(token, "brand-new-pw")
        await authority.login("alice@x.com", "brand-new-pw")

    @pytest.mark.asyncio
    async def test_change_password_rejects_overlong_new_password(self, authority, enterprise_id):
        issued = await _register_alice(authority, enterprise_id)
        with pytest.raises(PasswordTooLong):
            await authority.change_password(issued.principal, "correct-horse", WIDE_PASSWORD)
        await authority.login("alice@x.com", "correct-horse")
