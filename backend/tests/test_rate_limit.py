from discipleship.utils.rate_limit import InMemoryRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_limiter_blocks_after_max_requests_and_recovers():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    assert limiter.allow('k', 2, 60) == (True, 0)
    assert limiter.allow('k', 2, 60) == (True, 0)
    allowed, retry_after = limiter.allow('k', 2, 60)
    assert not allowed
    assert retry_after == 60
    clock.now += 45
    allowed, retry_after = limiter.allow('k', 2, 60)
    assert not allowed and retry_after == 15
    clock.now += 16
    assert limiter.allow('k', 2, 60)[0]


def test_keys_are_independent_and_reset_clears():
    limiter = InMemoryRateLimiter(clock=FakeClock())
    assert limiter.allow('a', 1, 60)[0]
    assert not limiter.allow('a', 1, 60)[0]
    assert limiter.allow('b', 1, 60)[0]
    limiter.reset('a')
    assert limiter.allow('a', 1, 60)[0]


def test_expired_keys_are_forgotten():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    for n in range(50):
        limiter.allow(f'10.0.0.{n}:/auth/token', 5, 60)
    assert len(limiter) == 50
    clock.now += 30
    limiter.allow('recent', 5, 60)
    assert len(limiter) == 51
    clock.now += 31
    limiter.allow('newcomer', 5, 60)
    assert len(limiter) == 2
    allowed, _ = limiter.allow('recent', 1, 60)
    assert not allowed
