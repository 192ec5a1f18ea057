# app/core/tokens.py
from __future__ import annotations

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError, ExpiredSignatureError
from app.core.config import settings
from app.core.errors import TokenExpired, TokenInvalid

ALGO = settings.ALGORITHM

ACCESS = "access"
OTP_PENDING = "otp_pending"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_access_token(*, user_id: int, email: str, role: str, name: str,
                        now: Optional[datetime] = None, expires_delta: Optional[timedelta] = None) -> str:
    """Short-lived signed access token. The role claim is informational only."""
    issued = now or utcnow()
    expire = issued + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload: Dict[str, Any] = {
        "type": ACCESS,
        "sub": str(user_id),
        "email": email,
        "role": role,
        "name": name,
        "jti": uuid.uuid4().hex,
        "iat": int(issued.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def decode_access(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc
    if not isinstance(payload, dict) or payload.get("type") != ACCESS:
        raise TokenInvalid()
    if not payload.get("sub") or "exp" not in payload:
        raise TokenInvalid()
    return payload


def create_otp_pending_token(*, user_id: int, expires_at: datetime) -> str:
    """Opaque handle linking step 1 to step 2. Worthless without the code."""
    payload: Dict[str, Any] = {
        "type": OTP_PENDING,
        "sub": str(user_id),
        "jti": uuid.uuid4().hex,
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.OTP_SECRET_KEY, algorithm=ALGO)


def decode_otp_pending(token: str) -> Optional[int]:
    try:
        payload = jwt.decode(token, settings.OTP_SECRET_KEY, algorithms=[ALGO])
    except JWTError:
        return None
    if not isinstance(payload, dict) or payload.get("type") != OTP_PENDING:
        return None
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None


def new_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def hash_refresh_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
