# app/crud/refresh_token.py
"""Refresh token ledger.

Tokens are opaque random strings; only their sha-256 is stored. Tokens of
one login session share a ``family``. ``rotate`` revokes the presented
token and issues its successor inside one transaction, and the revocation
is a compare-and-swap on ``revoked = false`` so two concurrent rotations of
the same token cannot both win.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.tokens import hash_refresh_token, new_refresh_token, utcnow
from app.models.refresh_token import RefreshToken


@dataclass(frozen=True)
class IssuedToken:
    token: str
    family: str


@dataclass(frozen=True)
class RotatedToken:
    token: str
    family: str
    user_id: int


class RefreshTokenLedger:
    def __init__(self, ttl_days: Optional[int] = None) -> None:
        self.ttl = timedelta(days=ttl_days if ttl_days is not None else settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def _add(self, db: Session, user_id: int, family: Optional[str], now: datetime) -> IssuedToken:
        token = new_refresh_token()
        family = family or str(uuid.uuid4())
        db.add(RefreshToken(
            user_id=user_id,
            token_hash=hash_refresh_token(token),
            family=family,
            revoked=False,
            expires_at=now + self.ttl,
            created_at=now,
        ))
        return IssuedToken(token=token, family=family)

    def create(self, db: Session, user_id: int, family: Optional[str] = None,
               now: Optional[datetime] = None) -> IssuedToken:
        issued = self._add(db, user_id, family, now or utcnow())
        db.commit()
        return issued

    def find_valid(self, db: Session, token: str, now: Optional[datetime] = None) -> Optional[RefreshToken]:
        if not token:
            return None
        stmt = select(RefreshToken).where(
            RefreshToken.token_hash == hash_refresh_token(token),
            RefreshToken.revoked.is_(False),
            RefreshToken.expires_at > (now or utcnow()),
        )
        return db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()

    def find_any(self, db: Session, token: str) -> Optional[RefreshToken]:
        """Lookup by hash ignoring revocation and expiry, for reuse detection."""
        if not token:
            return None
        stmt = select(RefreshToken).where(RefreshToken.token_hash == hash_refresh_token(token))
        # rows may have been revoked by a bulk UPDATE in this session
        return db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()

    def _claim(self, db: Session, record_id: int) -> bool:
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record_id, RefreshToken.revoked.is_(False))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def rotate(self, db: Session, old_token: str, now: Optional[datetime] = None) -> Optional[RotatedToken]:
        now = now or utcnow()
        record = self.find_valid(db, old_token, now=now)
        if record is None:
            return None
        user_id, family = record.user_id, record.family
        try:
            if not self._claim(db, record.id):
                db.rollback()
                return None
            issued = self._add(db, user_id, family, now)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return RotatedToken(token=issued.token, family=issued.family, user_id=user_id)

    def revoke_family(self, db: Session, family: str) -> int:
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.family == family, RefreshToken.revoked.is_(False))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    def revoke_all_for_user(self, db: Session, user_id: int) -> int:
        result = db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount

    def cleanup(self, db: Session, now: Optional[datetime] = None) -> int:
        result = db.execute(
            delete(RefreshToken)
            .where(or_(RefreshToken.expires_at < (now or utcnow()), RefreshToken.revoked.is_(True)))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount


refresh_ledger = RefreshTokenLedger()
