# app/services/otp.py
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Locked, ResendTooSoon
from app.core.logging import get_logger
from app.core.tokens import as_utc, utcnow
from app.models.otp import OneTimeCode
from app.services.guard import BruteForceGuard, build_otp_guard

logger = get_logger(__name__)


def generate_code(length: int) -> str:
    """Uniform numeric code from the OS CSPRNG, leading zeros allowed."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


@dataclass(frozen=True)
class IssuedCode:
    code: str
    expires_at: datetime


class OtpEngine:
    def __init__(self, guard: Optional[BruteForceGuard] = None, *, length: Optional[int] = None,
                 ttl_minutes: Optional[int] = None, resend_cooldown_seconds: Optional[int] = None) -> None:
        self.guard = guard or build_otp_guard()
        self.length = length or settings.OTP_LENGTH
        self.ttl = timedelta(minutes=ttl_minutes or settings.OTP_EXPIRY_MINUTES)
        cooldown = settings.OTP_RESEND_COOLDOWN_SECONDS if resend_cooldown_seconds is None else resend_cooldown_seconds
        self.cooldown = timedelta(seconds=cooldown)

    def active_code(self, db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[OneTimeCode]:
        stmt = (
            select(OneTimeCode)
            .where(
                OneTimeCode.user_id == user_id,
                OneTimeCode.used.is_(False),
                OneTimeCode.expires_at > (now or utcnow()),
            )
            .order_by(OneTimeCode.id.desc())
            .limit(1)
        )
        return db.execute(stmt).scalars().first()

    def issue(self, db: Session, user_id: int, now: Optional[datetime] = None) -> IssuedCode:
        """Invalidate prior codes, reset attempts and store a new code, atomically."""
        now = now or utcnow()
        code = generate_code(self.length)
        expires_at = now + self.ttl
        try:
            db.execute(
                update(OneTimeCode)
                .where(OneTimeCode.user_id == user_id, OneTimeCode.used.is_(False))
                .values(used=True)
                .execution_options(synchronize_session=False)
            )
            self.guard.clear(db, user_id, commit=False)
            db.add(OneTimeCode(user_id=user_id, code=code, expires_at=expires_at,
                               used=False, last_sent_at=now, created_at=now))
            db.commit()
        except Exception:
            db.rollback()
            raise
        return IssuedCode(code=code, expires_at=expires_at)

    def resend(self, db: Session, user_id: int, now: Optional[datetime] = None) -> Optional[IssuedCode]:
        """Return the active code for retransmission, or None when there is none.

        Raises ResendTooSoon inside the cooldown.
        """
        now = now or utcnow()
        row = self.active_code(db, user_id, now=now)
        if row is None:
            return None
        ready_at = as_utc(row.last_sent_at) + self.cooldown
        if now < ready_at:
            raise ResendTooSoon(retry_after=int((ready_at - now).total_seconds()) + 1)
        row.last_sent_at = now
        db.add(row); db.commit()
        return IssuedCode(code=row.code, expires_at=as_utc(row.expires_at))

    def verify(self, db: Session, user_id: int, submitted: Optional[str], ip_address: Optional[str] = None,
               now: Optional[datetime] = None) -> bool:
        """True only for the active code. Raises Locked once the attempt threshold is hit."""
        now = now or utcnow()
        decision = self.guard.check(db, user_id, now=now)
        if decision.locked:
            raise Locked(retry_after=decision.retry_after)

        value = (submitted or "").strip()
        row = self.active_code(db, user_id, now=now) if value else None
        if row is not None and secrets.compare_digest(row.code.encode(), value.encode()):
            consumed = db.execute(
                update(OneTimeCode)
                .where(OneTimeCode.id == row.id, OneTimeCode.used.is_(False))
                .values(used=True)
                .execution_options(synchronize_session=False)
            ).rowcount == 1
            if consumed:
                self.guard.clear(db, user_id, commit=False)
                db.commit()
                return True
            db.rollback()

        self.guard.record_failure(db, user_id, ip_address, now=now)
        logger.info("otp_verify_failed", user_id=user_id)
        return False
