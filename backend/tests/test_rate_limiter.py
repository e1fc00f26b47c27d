from idp.services.rate_limiter import InMemoryRateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_fixed_window_blocks_then_resets():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    key = limiter.build_key("token", "client-1", "10.0.0.1")

    for _ in range(3):
        assert limiter.allow(key, 3, 60)
    blocked = limiter.check(key, 3, 60)
    assert not blocked.allowed
    assert blocked.remaining == 0
    assert 0 < blocked.retry_after <= 60

    clock.now += 61
    assert limiter.allow(key, 3, 60)


def test_keys_are_independent():
    limiter = InMemoryRateLimiter(clock=FakeClock())
    first = limiter.build_key("token", "client-1", "10.0.0.1")
    second = limiter.build_key("token", "client-2", "10.0.0.1")

    assert limiter.allow(first, 1, 60)
    assert not limiter.allow(first, 1, 60)
    assert limiter.allow(second, 1, 60)


def test_build_key_fills_missing_parts():
    assert InMemoryRateLimiter.build_key("revoke", None, "1.2.3.4") == "rl:revoke:-:1.2.3.4"


def test_expired_buckets_are_evicted():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(cleanup_interval=10, clock=clock)
    for i in range(5):
        limiter.allow(f"k{i}", 10, 5)
    assert limiter.bucket_count() == 5

    clock.now += 11
    limiter.allow("fresh", 10, 5)
    assert limiter.bucket_count() == 1


def test_full_table_rejects_new_keys_until_space_frees():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(max_buckets=2, clock=clock)
    assert limiter.allow("a", 10, 30)
    assert limiter.allow("b", 10, 30)
    assert not limiter.allow("c", 10, 30)
    # existing keys keep working
    assert limiter.allow("a", 10, 30)

    clock.now += 31
    assert limiter.allow("c", 10, 30)


def test_reset_clears_a_key():
    limiter = InMemoryRateLimiter(clock=FakeClock())
    assert limiter.allow("login", 1, 60)
    assert not limiter.allow("login", 1, 60)
    limiter.reset("login")
    assert limiter.allow("login", 1, 60)
