"""Router policy interface.

A router policy decides which backend of an ordered list serves a request
and learns from the outcome of each attempt. The fallback service only talks
to policies through this interface, so other strategies (health-check or
load based) can be plugged in next to the exponential backoff one.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from switchyard.backends.base import BackendSpec


class Decision(str, Enum):
    """Whether a backend may be used right now."""

    ALLOW = "allow"
    SKIP = "skip"


@dataclass(frozen=True)
class FailureVerdict:
    """What a policy did with a failed attempt.

    Args:
        action: 'continue' leaves the backend selectable for future requests,
            'block' excludes it for ``backoff_ms``.
        backoff_ms: Length of the block window; 0 for 'continue'.
    """

    action: Literal["continue", "block"]
    backoff_ms: int = 0

    @classmethod
    def block(cls, backoff_ms: int) -> "FailureVerdict":
        return cls(action="block", backoff_ms=backoff_ms)

    @property
    def blocked(self) -> bool:
        return self.action == "block"


CONTINUE = FailureVerdict(action="continue")


@dataclass(frozen=True)
class ExecutionMetrics:
    """Outcome of a single backend attempt. Not persisted."""

    backend: str
    model: str
    status: Literal["ok", "error"]
    latency_ms: float


class RouterPolicy(ABC):
    """Pluggable backend selection strategy."""

    @abstractmethod
    def should_use(self, backend: BackendSpec) -> Decision:
        """Decide whether a backend may currently be used."""

    @abstractmethod
    def on_success(
        self, backend: BackendSpec, metrics: ExecutionMetrics | None = None
    ) -> None:
        """Record a successful attempt."""

    @abstractmethod
    def on_failure(
        self,
        backend: BackendSpec,
        error: Any,
        metrics: ExecutionMetrics | None = None,
    ) -> FailureVerdict:
        """Record a failed attempt and report whether the backend got blocked."""

    def select(self, backends: Sequence[BackendSpec]) -> BackendSpec | None:
        """Pick the first usable backend in list order.

        Returns:
            The selected backend, or None if every backend is blocked.
        """
        for backend in backends:
            if self.should_use(backend) is Decision.ALLOW:
                return backend
        return None

    def with_overrides(self, **changes: Any) -> "RouterPolicy":
        """Get a policy with per-call setting overrides.

        Policies without settings ignore overrides.
        """
        return self

    def start(self) -> None:
        """Initialize background resources. Default: nothing."""

    def close(self) -> None:
        """Release background resources. Default: nothing."""
