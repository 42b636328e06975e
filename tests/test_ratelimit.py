"""Unit tests for auth/ratelimit.py -- fixed-window counter.

Covers:
- max_requests pass, the next one raises RateLimitExceeded with retry_after <= window
- identities are counted separately
- a new window opens once the old one has passed
- sweep drops closed windows; works the same on the SQLite backend
"""

import pytest

from auth.ratelimit import FixedWindowRateLimiter
from core.errors import RateLimitExceeded
from kvstore import MemoryStore, SQLiteStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryStore(namespace="ratelimit")
        return
    s = SQLiteStore(tmp_path / "state.db", namespace="ratelimit")
    yield s
    s.close()


@pytest.fixture
def limiter(store, clock):
    return FixedWindowRateLimiter(store, max_requests=5, window_seconds=900, clock=clock)


def test_sixth_request_is_rejected(limiter, clock):
    remaining = [limiter.hit("1.2.3.4") for _ in range(5)]
    assert remaining == [4, 3, 2, 1, 0]
    clock.advance(100)
    with pytest.raises(RateLimitExceeded) as excinfo:
        limiter.hit("1.2.3.4")
    assert excinfo.value.status_code == 429
    assert 0 < excinfo.value.retry_after <= 900
    assert excinfo.value.retry_after == 800


def test_identities_are_independent(limiter):
    for _ in range(5):
        limiter.hit("1.2.3.4")
    assert limiter.hit("5.6.7.8") == 4


def test_window_resets(limiter, clock):
    for _ in range(5):
        limiter.hit("1.2.3.4")
    clock.advance(901)
    assert limiter.hit("1.2.3.4") == 4


def test_rejected_requests_keep_counting_in_same_window(limiter, clock):
    for _ in range(5):
        limiter.hit("1.2.3.4")
    for _ in range(3):
        with pytest.raises(RateLimitExceeded):
            limiter.hit("1.2.3.4")
    clock.advance(899)
    with pytest.raises(RateLimitExceeded) as excinfo:
        limiter.hit("1.2.3.4")
    assert excinfo.value.retry_after == 1


def test_sweep_drops_closed_windows(limiter, store, clock):
    limiter.hit("1.2.3.4")
    clock.advance(450)
    limiter.hit("5.6.7.8")
    clock.advance(451)
    assert limiter.sweep() == 1
    assert len(store) == 1


def test_reset_clears_all(limiter, store):
    limiter.hit("1.2.3.4")
    limiter.reset()
    assert len(store) == 0


@pytest.mark.parametrize(("max_requests", "window"), [(0, 60), (5, 0)])
def test_invalid_configuration(max_requests, window):
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(MemoryStore(), max_requests=max_requests, window_seconds=window)
