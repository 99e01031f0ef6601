"""
FastAPI dependencies for authentication.

Provides ``db_session``, the ``SessionAuthority`` wiring and
``get_current_principal``, the bearer-token check used by every
protected route.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.errors import InvalidToken, MissingToken
from auth.jwt import TokenCodec, TokenError, get_token_codec
from auth.models import Principal
from auth.service import SessionAuthority
from database.session import get_db_session
from database.token_store import TokenStore
from database.user_directory import UserDirectory
from notifications.email import EmailDispatcher, get_email_dispatcher

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


class RequestAuthenticator:
    """
    Turns a bearer value into a ``Principal``.

    Only the codec is consulted; access tokens are not looked up in the
    token store, so they stay valid until their own expiry.
    """

    def __init__(self, codec: TokenCodec) -> None:
        self.codec = codec

    def authenticate(self, token: Optional[str]) -> Principal:
        if not token:
            raise MissingToken()
        try:
            return self.codec.verify_access(token)
        except TokenError as exc:
            logger.debug("Rejected access token: %s", exc)
            raise InvalidToken()


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_session_authority(
    session: AsyncSession = Depends(db_session),
    codec: TokenCodec = Depends(get_token_codec),
    mailer: EmailDispatcher = Depends(get_email_dispatcher),
) -> SessionAuthority:
    return SessionAuthority(
        users=UserDirectory(session),
        tokens=TokenStore(session),
        codec=codec,
        mailer=mailer,
    )


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    codec: TokenCodec = Depends(get_token_codec),
) -> Principal:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``Principal``.
    """
    token = credentials.credentials if credentials is not None else None
    return RequestAuthenticator(codec).authenticate(token)
