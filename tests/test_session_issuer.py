from datetime import timedelta

import pytest

from app.core.errors import AccountDisabled, InvalidCredentials, InvalidOtp, Locked, TokenInvalid, TokenMissing, TokenReused
from app.core.rbac import Role
from app.core.tokens import decode_access, utcnow
from app.crud.security_event import list_events
from app.crud.user import user_crud
from app.models.login_attempt import LoginAttempt
from app.services.guard import BruteForceGuard
from app.services.session_issuer import SessionIssuer, profile_of

PASSWORD = "Correct-Horse-42"


def _sign_in(db, issuer, mailer, ctx, email="agent@acme-support.com"):
    challenge = issuer.start_login(db, email, PASSWORD, ctx)
    return issuer.complete_login(db, challenge.otp_token, mailer.last_code(to=email), ctx)


def _events(db, kind):
    return list_events(db, event_type=kind)


def test_full_login_issues_tokens_and_records_success(db, issuer, mailer, ctx, make_user):
    user = make_user()
    session = _sign_in(db, issuer, mailer, ctx)
    claims = decode_access(session.access_token)
    assert claims["sub"] == str(user.id)
    assert claims["role"] == "user"
    assert session.refresh_token
    assert len(_events(db, "login_success")) == 1
    # one code mail and one sign-in alert
    assert len(mailer.sent) == 2


def test_unknown_account_and_wrong_password_look_the_same(db, issuer, ctx, make_user):
    make_user()
    with pytest.raises(InvalidCredentials) as unknown:
        issuer.start_login(db, "nobody@acme-support.com", PASSWORD, ctx)
    with pytest.raises(InvalidCredentials) as wrong:
        issuer.start_login(db, "agent@acme-support.com", "Wrong-password-1", ctx)
    assert unknown.value.to_body() == wrong.value.to_body()
    failed = _events(db, "login_failed")
    assert len(failed) == 1
    assert failed[0].email == "agent@acme-support.com"


def test_inactive_account_is_rejected_at_step_one(db, issuer, ctx, make_user):
    make_user(is_active=False)
    with pytest.raises(InvalidCredentials):
        issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)


def test_login_guard_locks_after_threshold(db, mailer, revoked, ctx, make_user):
    make_user()
    guard = BruteForceGuard(LoginAttempt, "email", threshold=3, window=timedelta(minutes=15), ip_threshold=50)
    issuer = SessionIssuer(revoked=revoked, mailer=mailer, login_guard=guard)
    for _ in range(3):
        with pytest.raises(InvalidCredentials):
            issuer.start_login(db, "agent@acme-support.com", "Wrong-password-1", ctx)
    with pytest.raises(Locked) as exc:
        issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)
    assert exc.value.retry_after > 0
    assert len(_events(db, "login_locked")) == 1


def test_successful_password_clears_login_failures(db, mailer, revoked, ctx, make_user):
    make_user()
    guard = BruteForceGuard(LoginAttempt, "email", threshold=3, window=timedelta(minutes=15))
    issuer = SessionIssuer(revoked=revoked, mailer=mailer, login_guard=guard)
    for _ in range(2):
        with pytest.raises(InvalidCredentials):
            issuer.start_login(db, "agent@acme-support.com", "Wrong-password-1", ctx)
    issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)
    assert not guard.check(db, "agent@acme-support.com").locked
    assert guard.check(db, "agent@acme-support.com").failures == 0


def test_mail_failure_does_not_block_login(db, revoked, failing_mailer, ctx, make_user):
    make_user()
    issuer = SessionIssuer(revoked=revoked, mailer=failing_mailer)
    challenge = issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)
    assert challenge.delivered is False
    session = issuer.complete_login(db, challenge.otp_token, failing_mailer.last_code(), ctx)
    assert session.access_token


class ExplodingMailer:
    def send(self, to, subject, html, text=None):
        raise RuntimeError("relay unreachable")


def test_mailer_exception_is_contained(db, revoked, ctx, make_user):
    make_user()
    issuer = SessionIssuer(revoked=revoked, mailer=ExplodingMailer())
    challenge = issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)
    assert challenge.delivered is False


def test_bad_handle_or_code_is_invalid_otp(db, issuer, ctx, make_user):
    make_user()
    challenge = issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)
    with pytest.raises(InvalidOtp):
        issuer.complete_login(db, "garbage", "123456", ctx)
    with pytest.raises(InvalidOtp):
        issuer.complete_login(db, challenge.otp_token, "not-a-code", ctx)
    assert len(_events(db, "otp_failed")) == 1


def test_otp_lockout_records_event(db, issuer, ctx, make_user):
    make_user()
    challenge = issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)
    for _ in range(5):
        with pytest.raises(InvalidOtp):
            issuer.complete_login(db, challenge.otp_token, "abc", ctx)
    with pytest.raises(Locked):
        issuer.complete_login(db, challenge.otp_token, "abc", ctx)
    assert len(_events(db, "otp_locked")) == 1


def test_account_disabled_between_steps(db, issuer, mailer, ctx, make_user):
    user = make_user()
    challenge = issuer.start_login(db, "agent@acme-support.com", PASSWORD, ctx)
    user_crud.update(db, user.id, {"is_active": False})
    with pytest.raises(AccountDisabled):
        issuer.complete_login(db, challenge.otp_token, mailer.last_code(), ctx)


def test_refresh_rotates(db, issuer, mailer, ctx, make_user):
    make_user()
    first = _sign_in(db, issuer, mailer, ctx)
    second = issuer.refresh(db, first.refresh_token, ctx)
    assert second.refresh_token != first.refresh_token
    assert second.family == first.family
    assert decode_access(second.access_token)["sub"] == str(first.user.id)


def test_refresh_without_token(db, issuer, ctx):
    with pytest.raises(TokenMissing):
        issuer.refresh(db, None, ctx)
    with pytest.raises(TokenInvalid):
        issuer.refresh(db, "never-issued", ctx)


def test_replayed_refresh_token_revokes_family(db, issuer, mailer, ctx, make_user):
    make_user()
    a = _sign_in(db, issuer, mailer, ctx)
    b = issuer.refresh(db, a.refresh_token, ctx)
    with pytest.raises(TokenReused):
        issuer.refresh(db, a.refresh_token, ctx)
    # the legitimate successor dies with its family
    with pytest.raises(TokenInvalid):
        issuer.refresh(db, b.refresh_token, ctx)
    reuse = _events(db, "refresh_token_reuse")
    assert reuse and reuse[-1].details["family"] == a.family


def test_expired_refresh_token_is_invalid_not_reuse(db, issuer, mailer, ctx, make_user):
    make_user()
    a = _sign_in(db, issuer, mailer, ctx)
    with pytest.raises(TokenInvalid) as exc:
        issuer.refresh(db, a.refresh_token, ctx, now=utcnow() + timedelta(days=8))
    assert not isinstance(exc.value, TokenReused)
    assert _events(db, "refresh_token_reuse") == []


def test_refresh_for_disabled_account_revokes_family(db, issuer, mailer, ctx, make_user):
    user = make_user()
    a = _sign_in(db, issuer, mailer, ctx)
    user_crud.update(db, user.id, {"is_active": False})
    with pytest.raises(AccountDisabled):
        issuer.refresh(db, a.refresh_token, ctx)
    assert issuer.ledger.find_valid(db, a.refresh_token) is None
    user_crud.update(db, user.id, {"is_active": True})
    with pytest.raises(TokenInvalid):
        issuer.refresh(db, a.refresh_token, ctx)


def test_logout_revokes_access_and_family(db, issuer, mailer, revoked, ctx, make_user):
    make_user()
    s = _sign_in(db, issuer, mailer, ctx)
    claims = decode_access(s.access_token)
    issuer.logout(db, access_token=s.access_token, access_claims=claims, refresh_token=s.refresh_token, ctx=ctx)
    assert revoked.is_revoked(s.access_token)
    assert issuer.ledger.find_valid(db, s.refresh_token) is None
    # second logout is harmless
    issuer.logout(db, access_token=s.access_token, access_claims=claims, refresh_token=s.refresh_token, ctx=ctx)
    assert len(_events(db, "logout")) == 2


def test_logout_completes_when_revocation_fails(db, mailer, ctx, make_user):
    class BrokenStore:
        def revoke(self, token, expires_at):
            raise RuntimeError("store offline")

    make_user()
    issuer = SessionIssuer(revoked=BrokenStore(), mailer=mailer)
    s = _sign_in(db, issuer, mailer, ctx)
    issuer.logout(db, access_token=s.access_token, access_claims=decode_access(s.access_token),
                  refresh_token=s.refresh_token, ctx=ctx)
    assert len(_events(db, "logout")) == 1


def test_logout_with_nothing(db, issuer, ctx):
    issuer.logout(db, access_token=None, access_claims=None, refresh_token=None, ctx=ctx)
    assert _events(db, "logout")[0].user_id is None


def test_revoke_sessions_kills_every_family(db, issuer, mailer, ctx, make_user):
    user = make_user()
    a = _sign_in(db, issuer, mailer, ctx)
    b = _sign_in(db, issuer, mailer, ctx)
    assert issuer.revoke_sessions(db, user.id, ctx) == 2
    for s in (a, b):
        with pytest.raises(TokenInvalid):
            issuer.refresh(db, s.refresh_token, ctx)


def test_reserved_address_always_profiles_as_super_admin(make_user, super_admin_email):
    user = make_user(email=super_admin_email, role=Role.USER)
    assert profile_of(user)["role"] == "super_admin"


def test_concurrent_refresh_loser_revokes_winner(tmp_path, mailer, revoked, ctx):
    import threading

    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    from app.db.base import Base

    eng = create_engine(f"sqlite:///{tmp_path / 'refresh-race.db'}",
                        connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(eng)
    factory = sessionmaker(bind=eng, expire_on_commit=False)
    issuer = SessionIssuer(revoked=revoked, mailer=mailer)
    with factory() as setup:
        user = user_crud.create(setup, name="Racer", email="racer@acme-support.com", password=PASSWORD)
        issued = issuer.ledger.create(setup, user.id)

    barrier = threading.Barrier(2)
    outcomes = []

    def worker():
        with factory() as s:
            barrier.wait()
            try:
                outcomes.append(issuer.refresh(s, issued.token, ctx))
            except TokenInvalid as exc:
                outcomes.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [o for o in outcomes if not isinstance(o, Exception)]
    losers = [o for o in outcomes if isinstance(o, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], TokenReused)
    with factory() as s:
        assert issuer.ledger.find_valid(s, winners[0].refresh_token) is None
        assert len(list_events(s, event_type="refresh_token_reuse")) == 1
    eng.dispose()


def test_reserved_account_signs_in_as_super_admin(db, issuer, mailer, ctx, make_user, super_admin_email):
    make_user(email=super_admin_email, role=Role.USER, name="Support Root")
    challenge = issuer.start_login(db, super_admin_email.upper(), PASSWORD, ctx)
    session = issuer.complete_login(db, challenge.otp_token, mailer.last_code(to=super_admin_email), ctx)
    assert session.user.role == "user"
    assert profile_of(session.user)["role"] == "super_admin"
    assert decode_access(session.access_token)["role"] == "super_admin"
