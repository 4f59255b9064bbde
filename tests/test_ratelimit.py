import pytest

from ratelimit import DEFAULT_LIMIT, WINDOW_SECONDS, RateLimiter, RateLimitExceeded


class Clock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_quota_is_per_user_and_operation() -> None:
    limiter = RateLimiter({"extraction": 2}, clock=Clock())

    assert limiter.is_allowed("alice", "extraction")
    assert limiter.is_allowed("alice", "extraction")
    assert not limiter.is_allowed("alice", "extraction")
    assert limiter.is_allowed("bob", "extraction")
    assert limiter.is_allowed("alice", "analysis")


def test_window_resets_after_an_hour() -> None:
    clock = Clock()
    limiter = RateLimiter({"extraction": 1}, clock=clock)
    limiter.check("alice", "extraction")

    clock.now += WINDOW_SECONDS
    assert not limiter.is_allowed("alice", "extraction")

    clock.now += 1
    assert limiter.is_allowed("alice", "extraction")


def test_check_raises_with_reset_time() -> None:
    clock = Clock()
    limiter = RateLimiter({"newsletters": 1}, clock=clock)
    limiter.check("alice", "newsletters")

    with pytest.raises(RateLimitExceeded) as excinfo:
        limiter.check("alice", "newsletters")

    assert excinfo.value.operation == "newsletters"
    assert excinfo.value.reset_at.timestamp() == clock.now + WINDOW_SECONDS
    assert "Rate limit exceeded for newsletters" in str(excinfo.value)


def test_remaining_and_unknown_operations() -> None:
    limiter = RateLimiter({"analysis": 3}, clock=Clock())

    assert limiter.remaining("alice", "analysis") == 3
    limiter.check("alice", "analysis")
    assert limiter.remaining("alice", "analysis") == 2
    assert limiter.remaining("alice", "something-else") == DEFAULT_LIMIT


def test_cleanup_drops_expired_windows() -> None:
    clock = Clock()
    limiter = RateLimiter(clock=clock)
    limiter.check("alice", "extraction")
    clock.now += WINDOW_SECONDS / 2
    limiter.check("bob", "extraction")

    clock.now += WINDOW_SECONDS / 2 + 1

    assert limiter.cleanup() == 1
    assert limiter.remaining("bob", "extraction") == limiter.limits["extraction"] - 1
