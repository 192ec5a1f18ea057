import threading
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from app.core.tokens import hash_refresh_token, utcnow
from app.crud.refresh_token import RefreshTokenLedger
from app.crud.user import user_crud
from app.db.base import Base
from app.models.refresh_token import RefreshToken


@pytest.fixture
def ledger():
    return RefreshTokenLedger(ttl_days=7)


@pytest.fixture
def user(make_user):
    return make_user()


def test_only_the_hash_is_stored(db, ledger, user):
    issued = ledger.create(db, user.id)
    rows = db.scalars(select(RefreshToken)).all()
    assert len(rows) == 1
    assert rows[0].token_hash == hash_refresh_token(issued.token)
    assert issued.token not in rows[0].token_hash


def test_create_mints_new_family_unless_given(db, ledger, user):
    a = ledger.create(db, user.id)
    b = ledger.create(db, user.id)
    c = ledger.create(db, user.id, family=a.family)
    assert a.family != b.family
    assert c.family == a.family


def test_rotate_round_trip(db, ledger, user):
    original = ledger.create(db, user.id)
    rotated = ledger.rotate(db, original.token)
    assert rotated is not None
    assert rotated.family == original.family
    assert rotated.user_id == user.id
    assert ledger.find_valid(db, original.token) is None
    assert ledger.find_valid(db, rotated.token) is not None


def test_rotate_unknown_or_used_token_returns_none(db, ledger, user):
    original = ledger.create(db, user.id)
    assert ledger.rotate(db, "not-a-token") is None
    ledger.rotate(db, original.token)
    assert ledger.rotate(db, original.token) is None
    assert ledger.find_any(db, original.token).revoked is True


def test_expired_token_is_not_valid(db, ledger, user):
    now = utcnow()
    issued = ledger.create(db, user.id, now=now)
    assert ledger.find_valid(db, issued.token, now=now + timedelta(days=7)) is None
    assert ledger.find_valid(db, issued.token, now=now + timedelta(days=6)) is not None


def test_revoke_family_kills_every_member(db, ledger, user):
    a = ledger.create(db, user.id)
    b = ledger.rotate(db, a.token)
    other = ledger.create(db, user.id)
    ledger.revoke_family(db, a.family)
    assert ledger.find_valid(db, b.token) is None
    assert ledger.find_valid(db, other.token) is not None


def test_revoke_all_for_user(db, ledger, make_user):
    alice = make_user(email="alice@acme-support.com")
    bob = make_user(email="bob@acme-support.com")
    a1, a2 = ledger.create(db, alice.id), ledger.create(db, alice.id)
    b1 = ledger.create(db, bob.id)
    assert ledger.revoke_all_for_user(db, alice.id) == 2
    assert ledger.find_valid(db, a1.token) is None
    assert ledger.find_valid(db, a2.token) is None
    assert ledger.find_valid(db, b1.token) is not None


def test_cleanup_removes_expired_and_revoked(db, ledger, user):
    now = utcnow()
    old = ledger.create(db, user.id, now=now - timedelta(days=8))
    live = ledger.create(db, user.id, now=now)
    ledger.rotate(db, live.token, now=now)
    assert ledger.cleanup(db, now=now) == 2
    assert ledger.find_any(db, old.token) is None
    assert ledger.find_any(db, live.token) is None
    assert db.scalar(select(RefreshToken).where(RefreshToken.revoked.is_(False))) is not None


def test_claim_is_compare_and_swap(db, ledger, user):
    issued = ledger.create(db, user.id)
    record = ledger.find_valid(db, issued.token)
    assert ledger._claim(db, record.id) is True
    assert ledger._claim(db, record.id) is False
    db.commit()


def test_concurrent_rotation_has_one_winner(tmp_path, ledger):
    eng = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(eng)
    factory = sessionmaker(bind=eng, expire_on_commit=False)
    with factory() as setup:
        user = user_crud.create(setup, name="Racer", email="racer@acme-support.com", password="Correct-Horse-42")
        issued = ledger.create(setup, user.id)

    barrier = threading.Barrier(2)
    results = []

    def worker():
        with factory() as s:
            barrier.wait()
            results.append(ledger.rotate(s, issued.token))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r in results if r is not None]
    assert len(results) == 2
    assert len(winners) == 1
    with factory() as s:
        live = s.scalars(select(RefreshToken).where(RefreshToken.revoked.is_(False))).all()
        assert len(live) == 1
    eng.dispose()
