"""
JWT-style token creation and verification.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256.
Access and refresh tokens are signed with different secrets
(``JWT_SECRET`` / ``JWT_REFRESH_SECRET``) and carry a ``typ`` claim, so a
token minted for one scope never verifies in the other.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import secrets
import time
from base64 import b64decode, b64encode
from functools import lru_cache
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from auth.models import AccessClaims, Principal, RefreshClaims
from config.settings import config

_ClaimsT = TypeVar("_ClaimsT", bound=BaseModel)


class TokenError(Exception):
    """Base class for every codec rejection."""


class InvalidSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class MalformedToken(TokenError):
    pass


class TokenCodec:
    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int = 900,
        refresh_ttl: int = 604800,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("token secrets must be non-empty")
        if hmac.compare_digest(access_secret.encode(), refresh_secret.encode()):
            raise ValueError("access and refresh tokens must use different secrets")
        self._access_key = access_secret.encode()
        self._refresh_key = refresh_secret.encode()
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    # ── Signing ──────────────────────────────────────────────────────────

    def sign_access(
        self,
        principal: Principal,
        ttl: Optional[int] = None,
        now: Optional[float] = None,
    ) -> str:
        """Create a signed access token carrying *principal*."""
        issued = int(now if now is not None else time.time())
        claims = AccessClaims(
            jti=secrets.token_hex(8),
            user_id=principal.user_id,
            enterprise_id=principal.enterprise_id,
            role=principal.role,
            email=principal.email,
            iat=issued,
            exp=issued + (ttl if ttl is not None else self.access_ttl),
        )
        return self._sign(claims.model_dump(), self._access_key)

    def sign_refresh(
        self,
        user_id: str,
        enterprise_id: str,
        ttl: Optional[int] = None,
        now: Optional[float] = None,
    ) -> str:
        """Create a signed refresh token for *user_id*."""
        issued = int(now if now is not None else time.time())
        claims = RefreshClaims(
            jti=secrets.token_hex(16),
            user_id=user_id,
            enterprise_id=enterprise_id,
            iat=issued,
            exp=issued + (ttl if ttl is not None else self.refresh_ttl),
        )
        return self._sign(claims.model_dump(), self._refresh_key)

    # ── Verification ─────────────────────────────────────────────────────

    def verify_access(self, token: str, now: Optional[float] = None) -> Principal:
        claims = self._verify(token, self._access_key, AccessClaims, now)
        return claims.principal()

    def verify_refresh(self, token: str, now: Optional[float] = None) -> RefreshClaims:
        return self._verify(token, self._refresh_key, RefreshClaims, now)

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _sign(payload: Dict[str, Any], key: bytes) -> str:
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        sig = hmac.new(key, raw, hashlib.sha256).hexdigest()
        return b64encode(raw).decode() + "." + sig

    @staticmethod
    def _verify(
        token: str,
        key: bytes,
        claims_type: Type[_ClaimsT],
        now: Optional[float],
    ) -> _ClaimsT:
        if not token or not isinstance(token, str):
            raise MalformedToken("empty token")
        parts = token.split(".", 1)
        if len(parts) != 2:
            raise MalformedToken("bad format")
        try:
            raw = b64decode(parts[0], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedToken("bad encoding") from exc

        expected_sig = hmac.new(key, raw, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(parts[1].encode(), expected_sig.encode()):
            raise InvalidSignature("bad signature")

        try:
            claims = claims_type.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise MalformedToken("bad payload") from exc

        current = now if now is not None else time.time()
        if claims.exp < current:
            raise TokenExpired("token expired")
        return claims


@lru_cache(maxsize=1)
def get_token_codec() -> TokenCodec:
    """Process-wide codec built from settings."""
    return TokenCodec(
        access_secret=config.jwt_secret,
        refresh_secret=config.jwt_refresh_secret,
        access_ttl=config.access_token_ttl_seconds,
        refresh_ttl=config.refresh_token_ttl_seconds,
    )
