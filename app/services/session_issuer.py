# app/services/session_issuer.py
"""Login protocol: password -> one-time code -> access + refresh tokens.

The issuer owns no durable state of its own. Everything persistent goes
through the credential store, the OTP engine, the refresh ledger and the
security event log; the only in-process state is the injected revoked
access token store.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    AccountDisabled,
    InvalidCredentials,
    InvalidOtp,
    Locked,
    TokenInvalid,
    TokenMissing,
    TokenReused,
)
from app.core.logging import get_logger
from app.core.rbac import effective_role
from app.core.revocation import RevokedTokenStore
from app.core.security_password import burn_hash_time, verify_and_maybe_upgrade
from app.core.tokens import (
    create_access_token,
    create_otp_pending_token,
    decode_otp_pending,
    utcnow,
)
from app.crud.refresh_token import RefreshTokenLedger, refresh_ledger
from app.crud.security_event import RequestContext, record_event
from app.crud.user import CRUDUser, normalize_email, user_crud
from app.models.security_event import SecurityEventType
from app.models.user import User
from app.services.geo import GeoLocator, LocalGeoLocator
from app.services.guard import BruteForceGuard, build_login_guard
from app.services.mail import Mailer, MailResult, login_alert_message, otp_message, welcome_message
from app.services.otp import IssuedCode, OtpEngine

logger = get_logger(__name__)


@dataclass(frozen=True)
class OtpChallenge:
    otp_token: str
    expires_at: datetime
    delivered: bool

    def expires_in(self, now: Optional[datetime] = None) -> int:
        return max(int((self.expires_at - (now or utcnow())).total_seconds()), 0)


@dataclass(frozen=True)
class IssuedSession:
    user: User
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    family: str


def profile_of(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": effective_role(user).slug,
    }


class SessionIssuer:
    def __init__(
        self,
        *,
        revoked: RevokedTokenStore,
        mailer: Mailer,
        geo: Optional[GeoLocator] = None,
        otp: Optional[OtpEngine] = None,
        login_guard: Optional[BruteForceGuard] = None,
        ledger: Optional[RefreshTokenLedger] = None,
        users: Optional[CRUDUser] = None,
    ) -> None:
        self.revoked = revoked
        self.mailer = mailer
        self.geo = geo or LocalGeoLocator()
        self.otp = otp or OtpEngine()
        self.login_guard = login_guard or build_login_guard()
        self.ledger = ledger or refresh_ledger
        self.users = users or user_crud

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _notify(self, to: str, subject: str, html: str, text: str) -> MailResult:
        try:
            return self.mailer.send(to, subject, html, text)
        except Exception as exc:
            logger.exception("mail_send_raised", subject=subject)
            return MailResult(sent=False, error=str(exc))

    def _send_code(self, user: User, issued: IssuedCode) -> bool:
        subject, html, text = otp_message(user.name, issued.code, int(self.otp.ttl.total_seconds() // 60))
        return self._notify(user.email, subject, html, text).sent

    def _mint_access(self, user: User, now: datetime) -> tuple[str, datetime]:
        ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        token = create_access_token(
            user_id=user.id,
            email=user.email,
            role=effective_role(user).slug,
            name=user.name,
            now=now,
            expires_delta=ttl,
        )
        return token, now + ttl

    # ------------------------------------------------------------------
    # step 1
    # ------------------------------------------------------------------
    def start_login(self, db: Session, email: str, password: str, ctx: RequestContext,
                    now: Optional[datetime] = None) -> OtpChallenge:
        now = now or utcnow()
        email = normalize_email(email)
        if not email or not password:
            raise InvalidCredentials()

        decision = self.login_guard.check(db, email, ctx.ip_address, now=now)
        if decision.locked:
            record_event(db, SecurityEventType.login_locked, ctx, email=email,
                         details={"failures": decision.failures}, now=now)
            raise Locked(retry_after=decision.retry_after)

        user = self.users.find_by_email(db, email)
        if user is None or not user.is_active:
            burn_hash_time(password)
            self.login_guard.record_failure(db, None, ctx.ip_address, now=now)
            raise InvalidCredentials()

        ok, new_hash = verify_and_maybe_upgrade(password, user.password_hash)
        if not ok:
            self.login_guard.record_failure(db, email, ctx.ip_address, now=now)
            record_event(db, SecurityEventType.login_failed, ctx, user_id=user.id, email=email,
                         details={"geo": self.geo.lookup(ctx.ip_address).as_dict()}, now=now)
            raise InvalidCredentials()

        if new_hash:
            self.users.update(db, user.id, {"password_hash": new_hash})
        self.login_guard.clear(db, email)

        issued = self.otp.issue(db, user.id, now=now)
        delivered = self._send_code(user, issued)
        return OtpChallenge(
            otp_token=create_otp_pending_token(user_id=user.id, expires_at=issued.expires_at),
            expires_at=issued.expires_at,
            delivered=delivered,
        )

    def resend_code(self, db: Session, otp_token: str, now: Optional[datetime] = None) -> OtpChallenge:
        now = now or utcnow()
        user_id = decode_otp_pending(otp_token or "")
        user = self.users.find_by_id(db, user_id) if user_id is not None else None
        if user is None or not user.is_active:
            raise InvalidOtp()
        issued = self.otp.resend(db, user.id, now=now)
        if issued is None:
            raise InvalidOtp()
        delivered = self._send_code(user, issued)
        return OtpChallenge(otp_token=otp_token, expires_at=issued.expires_at, delivered=delivered)

    # ------------------------------------------------------------------
    # step 2
    # ------------------------------------------------------------------
    def complete_login(self, db: Session, otp_token: str, code: str, ctx: RequestContext,
                       now: Optional[datetime] = None) -> IssuedSession:
        now = now or utcnow()
        user_id = decode_otp_pending(otp_token or "")
        user = self.users.find_by_id(db, user_id) if user_id is not None else None
        if user is None:
            raise InvalidOtp()
        if not user.is_active:
            raise AccountDisabled()

        try:
            valid = self.otp.verify(db, user.id, code, ctx.ip_address, now=now)
        except Locked:
            record_event(db, SecurityEventType.otp_locked, ctx, user_id=user.id, email=user.email, now=now)
            raise
        if not valid:
            record_event(db, SecurityEventType.otp_failed, ctx, user_id=user.id, email=user.email, now=now)
            raise InvalidOtp()

        access, access_exp = self._mint_access(user, now)
        refresh = self.ledger.create(db, user.id, now=now)

        geo = self.geo.lookup(ctx.ip_address)
        record_event(db, SecurityEventType.login_success, ctx, user_id=user.id, email=user.email,
                     details={"geo": geo.as_dict(), "family": refresh.family}, now=now)
        subject, html, text = login_alert_message(user.name, now, ctx.ip_address, geo.describe(), ctx.user_agent)
        self._notify(user.email, subject, html, text)

        return IssuedSession(user=user, access_token=access, access_expires_at=access_exp,
                             refresh_token=refresh.token, family=refresh.family)

    # ------------------------------------------------------------------
    # refresh
    # ------------------------------------------------------------------
    def refresh(self, db: Session, refresh_token: Optional[str], ctx: RequestContext,
                now: Optional[datetime] = None) -> IssuedSession:
        now = now or utcnow()
        if not refresh_token:
            raise TokenMissing("No refresh token provided")

        rotated = self.ledger.rotate(db, refresh_token, now=now)
        if rotated is None:
            record = self.ledger.find_any(db, refresh_token)
            if record is not None and record.revoked:
                revoked = self.ledger.revoke_family(db, record.family)
                record_event(db, SecurityEventType.refresh_token_reuse, ctx, user_id=record.user_id,
                             details={"family": record.family, "revoked_tokens": revoked}, now=now)
                raise TokenReused()
            raise TokenInvalid()

        user = self.users.find_by_id(db, rotated.user_id)
        if user is None or not user.is_active:
            self.ledger.revoke_family(db, rotated.family)
            raise AccountDisabled()

        access, access_exp = self._mint_access(user, now)
        return IssuedSession(user=user, access_token=access, access_expires_at=access_exp,
                             refresh_token=rotated.token, family=rotated.family)

    # ------------------------------------------------------------------
    # logout
    # ------------------------------------------------------------------
    def logout(self, db: Session, *, access_token: Optional[str], access_claims: Optional[Dict[str, Any]],
               refresh_token: Optional[str], ctx: RequestContext) -> None:
        """Revoke what can be revoked. Never raises."""
        user_id = None
        if access_claims:
            try:
                user_id = int(access_claims["sub"])
            except (KeyError, TypeError, ValueError):
                user_id = None
        try:
            if access_token and access_claims and access_claims.get("exp"):
                self.revoked.revoke(access_token, float(access_claims["exp"]))
            if refresh_token:
                record = self.ledger.find_any(db, refresh_token)
                if record is not None:
                    user_id = user_id or record.user_id
                    self.ledger.revoke_family(db, record.family)
        except Exception:
            db.rollback()
            logger.exception("logout_revocation_failed", user_id=user_id)
        record_event(db, SecurityEventType.logout, ctx, user_id=user_id)

    def revoke_sessions(self, db: Session, user_id: int, ctx: RequestContext,
                        actor_id: Optional[int] = None) -> int:
        count = self.ledger.revoke_all_for_user(db, user_id)
        record_event(db, SecurityEventType.sessions_revoked, ctx, user_id=user_id,
                     details={"actor_id": actor_id, "revoked_tokens": count})
        return count

    def send_welcome(self, user: User) -> bool:
        subject, html, text = welcome_message(user.name, user.email, effective_role(user).slug)
        return self._notify(user.email, subject, html, text).sent
