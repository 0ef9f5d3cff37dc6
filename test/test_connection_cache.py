from sync.connection_cache import ConnectionStatusCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ConnectionStatusCache(ttl_s=30, clock=clock)
    cache.set("u1", "google", True)

    clock.now += 29
    assert cache.get("u1", "google") is True
    clock.now += 1
    assert cache.get("u1", "google") is None


def test_entries_are_scoped_per_user_and_provider():
    cache = ConnectionStatusCache()
    cache.set("u1", "google", True)
    cache.set("u2", "google", False)

    assert cache.get("u1", "google") is True
    assert cache.get("u2", "google") is False
    assert cache.get("u1", "outlook") is None


def test_invalidate():
    cache = ConnectionStatusCache()
    cache.set("u1", "google", True)
    cache.set("u1", "outlook", True)
    cache.set("u2", "google", True)

    cache.invalidate("u1", "google")
    assert cache.get("u1", "google") is None
    assert cache.get("u1", "outlook") is True

    cache.invalidate("u1")
    assert cache.get("u1", "outlook") is None
    assert cache.get("u2", "google") is True
