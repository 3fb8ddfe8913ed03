"""Shared fixtures for the topology engine tests."""

import pytest


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A clock starting at t=1000s."""
    return FakeClock(1000.0)
