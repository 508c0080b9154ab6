"""Error classification for backend blocking decisions.

A backend failure blocks the backend only if it matches one of the configured
patterns. Patterns come in three kinds:

- ``StatusRange``: the error carries an HTTP status code within a range.
- ``Marker``: a symbolic failure such as ``timeout`` or ``econnrefused``.
- ``Message``: a case-insensitive substring of the error's text.

Configuration uses a compact string form, parsed by ``parse_pattern``::

    "5xx"              StatusRange(500, 599)
    "500-504"          StatusRange(500, 504)
    "503"              StatusRange(503, 503)
    "timeout"          Marker("timeout")
    "message:overload" Message("overload")
"""

import asyncio
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from switchyard.backends.base import (
    BackendConnectionError,
    BackendError,
    BackendTimeoutError,
)

DEFAULT_BLOCK_ON_ERRORS: tuple[str, ...] = ("5xx", "timeout", "econnrefused")

_STATUS_CLASS_RE = re.compile(r"^([1-5])xx$")
_STATUS_RANGE_RE = re.compile(r"^(\d{3})\s*-\s*(\d{3})$")
_STATUS_RE = re.compile(r"^\d{3}$")
_MARKER_RE = re.compile(r"^[a-z][a-z0-9_]*$")
_MESSAGE_PREFIX = "message:"


@dataclass(frozen=True)
class StatusRange:
    """Matches errors whose status code lies in ``[low, high]``."""

    low: int
    high: int

    def __str__(self) -> str:
        if self.low == self.high:
            return str(self.low)
        return f"{self.low}-{self.high}"


@dataclass(frozen=True)
class Marker:
    """Matches a symbolic failure kind."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Message:
    """Matches errors whose text contains ``text`` (case-insensitive)."""

    text: str

    def __str__(self) -> str:
        return f"{_MESSAGE_PREFIX}{self.text}"


ErrorPattern = StatusRange | Marker | Message

# Exception types recognised for each built-in marker.
_MARKER_TYPES: dict[str, tuple[type[BaseException], ...]] = {
    "timeout": (
        BackendTimeoutError,
        httpx.TimeoutException,
        TimeoutError,
        asyncio.TimeoutError,
    ),
    "econnrefused": (
        BackendConnectionError,
        ConnectionRefusedError,
        httpx.ConnectError,
    ),
    "network_error": (
        BackendConnectionError,
        httpx.NetworkError,
        ConnectionError,
    ),
}


def parse_pattern(value: str | ErrorPattern) -> ErrorPattern:
    """Parse a configured pattern string.

    Args:
        value: Pattern string, or an already-parsed pattern.

    Returns:
        The parsed pattern.

    Raises:
        ValueError: If the string is not a valid pattern.
    """
    if isinstance(value, (StatusRange, Marker, Message)):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid error pattern: {value!r}")

    raw = value.strip()
    if raw.lower().startswith(_MESSAGE_PREFIX):
        text = raw[len(_MESSAGE_PREFIX):].strip()
        if not text:
            raise ValueError("Message pattern must not be empty")
        return Message(text)

    lowered = raw.lower()
    if match := _STATUS_CLASS_RE.match(lowered):
        base = int(match.group(1)) * 100
        return StatusRange(base, base + 99)
    if match := _STATUS_RANGE_RE.match(lowered):
        low, high = int(match.group(1)), int(match.group(2))
        if low > high:
            raise ValueError(f"Invalid status range '{value}': low > high")
        return StatusRange(low, high)
    if _STATUS_RE.match(lowered):
        code = int(lowered)
        return StatusRange(code, code)
    if _MARKER_RE.match(lowered):
        return Marker(lowered)

    raise ValueError(f"Invalid error pattern: {value!r}")


def parse_patterns(values: Iterable[str | ErrorPattern]) -> tuple[ErrorPattern, ...]:
    """Parse a list of configured patterns, keeping their order."""
    return tuple(parse_pattern(v) for v in values)


def status_code_of(error: Any) -> int | None:
    """Extract an HTTP status code from an error, if it carries one."""
    if isinstance(error, Mapping):
        status = error.get("status", error.get("status_code"))
        return status if isinstance(status, int) else None

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code

    for attr in ("status_code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    return None


def matches(pattern: ErrorPattern, error: Any) -> bool:
    """Check whether an error matches a single pattern."""
    if isinstance(pattern, StatusRange):
        status = status_code_of(error)
        return status is not None and pattern.low <= status <= pattern.high

    if isinstance(pattern, Marker):
        return _matches_marker(pattern.name, error)

    if isinstance(pattern, Message):
        return pattern.text.lower() in _error_text(error).lower()

    return False


def classify(error: Any, patterns: Iterable[ErrorPattern]) -> ErrorPattern | None:
    """Find the first pattern matching an error.

    Returns:
        The matching pattern, or None if the error is unclassified.
    """
    for pattern in patterns:
        if matches(pattern, error):
            return pattern
    return None


def _matches_marker(name: str, error: Any) -> bool:
    if isinstance(error, str):
        return name in error.lower()

    if isinstance(error, Mapping):
        return error.get("reason") == name or error.get("error") == name

    types = _MARKER_TYPES.get(name)
    if types and isinstance(error, types):
        return True

    return getattr(error, "reason", None) == name


def _error_text(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, BackendError):
        return str(error)
    if isinstance(error, Mapping):
        message = error.get("message", error.get("error"))
        if isinstance(message, str):
            return message
    return str(error)
