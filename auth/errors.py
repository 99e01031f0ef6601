"""
Session-authority error taxonomy.

Each error carries the HTTP status and the client-facing ``detail`` it
serializes to.  Token failures are deliberately coarse: signature, expiry,
scope and revocation problems all surface as ``InvalidToken``.
"""

from __future__ import annotations

from fastapi import status


class AuthError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "Authentication error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid email or password"


class DuplicateUser(AuthError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Email already registered"


class InvalidToken(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Invalid or expired token"


class InvalidOrExpiredToken(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid or expired reset token"


class IncorrectCurrentPassword(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Current password is incorrect"


class MissingToken(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Access denied. No token provided."


class UserNotFound(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "User not found"


class UnknownEnterprise(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Default role not found for enterprise"


class StorageUnavailable(AuthError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Storage temporarily unavailable"


class PasswordTooLong(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Password must be at most 72 bytes"
