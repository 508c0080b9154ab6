"""Shared fixtures for Switchyard tests."""

import pytest


class FakeClock:
    """Manually advanced monotonic millisecond clock."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()
