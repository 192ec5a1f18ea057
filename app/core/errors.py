# app/core/errors.py
"""Error taxonomy of the authentication core.

Every error carries its HTTP status and a stable code for clients.
Handlers in ``app.main`` render ``{"code", "message", **extra}``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AuthError(Exception):
    status_code: int = 400
    code: str = "AUTH_ERROR"
    message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra: Dict[str, Any] = extra

    def to_body(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}

    def headers(self) -> Dict[str, str] | None:
        return None


class InvalidCredentials(AuthError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class InvalidOtp(AuthError):
    status_code = 401
    code = "INVALID_OTP"
    message = "Invalid or expired OTP"


class Locked(AuthError):
    status_code = 429
    code = "LOCKED"
    message = "Too many failed attempts, try again later"

    def __init__(self, retry_after: int, message: Optional[str] = None) -> None:
        self.retry_after = max(int(retry_after), 1)
        super().__init__(message, retry_after=self.retry_after)

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ResendTooSoon(Locked):
    code = "RESEND_TOO_SOON"
    message = "Please wait before requesting another code"


class TokenMissing(AuthError):
    status_code = 401
    code = "TOKEN_MISSING"
    message = "No token provided"


class TokenExpired(AuthError):
    status_code = 401
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class TokenInvalid(AuthError):
    status_code = 401
    code = "TOKEN_INVALID"
    message = "Invalid token"


class TokenReused(TokenInvalid):
    """Reuse of a revoked refresh token. Rendered to clients as TOKEN_INVALID."""


class AccountDisabled(AuthError):
    status_code = 401
    code = "ACCOUNT_DISABLED"
    message = "Account is disabled"


class PermissionDenied(AuthError):
    status_code = 403
    code = "PERMISSION_DENIED"
    message = "Permission denied"

    def __init__(self, missing: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Permission denied: {missing} access required", missing=missing)
        self.missing = missing


class PolicyViolation(AuthError):
    status_code = 403
    code = "POLICY_VIOLATION"
    message = "Action not allowed"


class NotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class Conflict(AuthError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflict"
