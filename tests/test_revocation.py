from app.core.revocation import RevokedTokenStore


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_revoked_until_natural_expiry():
    clock = FakeClock()
    store = RevokedTokenStore(clock=clock)
    store.revoke("tok", expires_at=1_060.0)
    assert store.is_revoked("tok")
    clock.now = 1_059.9
    assert store.is_revoked("tok")
    clock.now = 1_060.0
    assert not store.is_revoked("tok")
    assert len(store) == 0


def test_already_expired_tokens_are_not_stored():
    store = RevokedTokenStore(clock=FakeClock(2_000.0))
    store.revoke("old", expires_at=1_999.0)
    assert len(store) == 0
    assert not store.is_revoked("old")


def test_purge_expired_only_drops_stale_entries():
    clock = FakeClock()
    store = RevokedTokenStore(clock=clock)
    store.revoke("a", expires_at=1_010.0)
    store.revoke("b", expires_at=1_100.0)
    clock.now = 1_050.0
    assert store.purge_expired() == 1
    assert store.is_revoked("b")
    assert not store.is_revoked("a")


def test_independent_instances_share_nothing():
    one, two = RevokedTokenStore(), RevokedTokenStore()
    one.revoke("tok", expires_at=10**12)
    assert one.is_revoked("tok")
    assert not two.is_revoked("tok")
