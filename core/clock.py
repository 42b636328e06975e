"""
core/clock.py -- Injectable time source.

Every expiry decision in the service (token lifetimes, OTP expiry, rate-limit
windows, reset-token expiry) reads time through a Clock rather than calling
time.time() inline. Production code uses system_clock; tests pass a
FakeClock and advance it explicitly.
"""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]


def system_clock() -> float:
    """Return the current UTC epoch time in seconds."""
    return time.time()


class FakeClock:
    """Manually advanced clock for tests and deterministic simulations."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
