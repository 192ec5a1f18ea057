# app/services/guard.py
"""Attempt counters with lockout windows.

Two independent instances run in the service: one counts failed OTP
verifications per user, the other counts failed passwords per identity and
per network address. They share no rows.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Type

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tokens import as_utc, utcnow
from app.models.login_attempt import LoginAttempt
from app.models.otp import OtpAttempt


@dataclass(frozen=True)
class GuardDecision:
    locked: bool
    retry_after: int = 0
    failures: int = 0


OPEN = GuardDecision(locked=False)


class BruteForceGuard:
    def __init__(self, model: Type[Any], subject_column: str, *, threshold: int,
                 window: timedelta, ip_threshold: Optional[int] = None) -> None:
        self.model = model
        self.subject_col = getattr(model, subject_column)
        self.subject_attr = subject_column
        self.threshold = threshold
        self.window = window
        self.ip_threshold = ip_threshold

    def _decide(self, db: Session, column, value, threshold: int, now: datetime) -> GuardDecision:
        since = now - self.window
        count, oldest = db.execute(
            select(func.count(self.model.id), func.min(self.model.created_at))
            .where(column == value, self.model.created_at > since)
        ).one()
        if count < threshold:
            return GuardDecision(locked=False, failures=count)
        # the lock lifts once the oldest counted failure leaves the window
        release = as_utc(oldest) + self.window
        return GuardDecision(locked=True, retry_after=max(int((release - now).total_seconds()) + 1, 1), failures=count)

    def check(self, db: Session, subject: Any = None, ip_address: Optional[str] = None,
              now: Optional[datetime] = None) -> GuardDecision:
        now = now or utcnow()
        if subject is not None:
            decision = self._decide(db, self.subject_col, subject, self.threshold, now)
            if decision.locked:
                return decision
        if self.ip_threshold and ip_address:
            decision = self._decide(db, self.model.ip_address, ip_address, self.ip_threshold, now)
            if decision.locked:
                return decision
        return OPEN

    def record_failure(self, db: Session, subject: Any = None, ip_address: Optional[str] = None,
                       now: Optional[datetime] = None, commit: bool = True) -> None:
        db.add(self.model(**{
            self.subject_attr: subject,
            "ip_address": (ip_address or "unknown")[:45],
            "created_at": now or utcnow(),
        }))
        if commit:
            db.commit()

    def clear(self, db: Session, subject: Any, commit: bool = True) -> None:
        db.execute(delete(self.model).where(self.subject_col == subject).execution_options(synchronize_session=False))
        if commit:
            db.commit()


def build_otp_guard() -> BruteForceGuard:
    return BruteForceGuard(
        OtpAttempt, "user_id",
        threshold=settings.OTP_MAX_ATTEMPTS,
        window=timedelta(minutes=settings.OTP_LOCKOUT_MINUTES),
    )


def build_login_guard() -> BruteForceGuard:
    return BruteForceGuard(
        LoginAttempt, "email",
        threshold=settings.LOGIN_MAX_ATTEMPTS,
        window=timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES),
        ip_threshold=settings.LOGIN_MAX_ATTEMPTS_PER_IP,
    )
