"""Monotonic clock helpers."""

import time
from collections.abc import Callable

# Returns milliseconds on a monotonic clock.
Clock = Callable[[], int]


def monotonic_ms() -> int:
    """Get the current monotonic time in milliseconds.

    Only meaningful for comparisons within the same running process.
    """
    return time.monotonic_ns() // 1_000_000
