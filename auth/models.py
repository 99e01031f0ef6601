"""Identity and token-claim models shared by the codec, the session
authority and the request authenticator.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from database.models import TokenKind, User  # noqa: F401


class Principal(BaseModel):
    """Authenticated identity plus tenant/role context.  Immutable."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    enterprise_id: str
    role: Optional[str] = None
    email: str

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            user_id=str(user.user_id),
            enterprise_id=str(user.enterprise_id),
            role=user.role.name if user.role is not None else None,
            email=user.email,
        )


class AccessClaims(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    typ: Literal["access"] = "access"
    jti: str
    user_id: str
    enterprise_id: str
    role: Optional[str] = None
    email: str
    iat: int
    exp: int

    def principal(self) -> Principal:
        return Principal(
            user_id=self.user_id,
            enterprise_id=self.enterprise_id,
            role=self.role,
            email=self.email,
        )


class RefreshClaims(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    typ: Literal["refresh"] = "refresh"
    jti: str
    user_id: str
    enterprise_id: str
    iat: int
    exp: int


__all__ = ["AccessClaims", "Principal", "RefreshClaims", "TokenKind", "User"]
