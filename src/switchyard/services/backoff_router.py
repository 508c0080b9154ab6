"""Router policy with exponential backoff for failing backends.

Backends whose failures match the configured error patterns are blocked for a
backoff window that doubles with each consecutive failure::

    backoff_ms = min(max_backoff_ms, min_backoff_ms * 2 ** (failure_count - 1))

With the defaults (1s floor, 5 minute ceiling) that is 1s, 2s, 4s, 8s, ...
until the ceiling. A success deletes the backend's record, so the next
failure starts again from one. Blocked backends become selectable again as
soon as their window passes; no write is needed for that.

Block records are stored with a TTL much longer than any backoff window, so
a record survives the end of its block and the failure count keeps climbing
if the backend fails again. Timestamps come from the monotonic clock and are
only meaningful inside the running process.
"""

from dataclasses import dataclass
from typing import Any

from switchyard.backends.base import BackendSpec
from switchyard.config import RouterSettings
from switchyard.services.classifier import classify, parse_patterns
from switchyard.services.metrics import MetricsCollector
from switchyard.services.router import (
    CONTINUE,
    Decision,
    ExecutionMetrics,
    FailureVerdict,
    RouterPolicy,
)
from switchyard.store.base import BlockStore
from switchyard.store.factory import create_store
from switchyard.utils.clock import Clock, monotonic_ms
from switchyard.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BlockState:
    """Stored block record of one backend.

    Args:
        blocked_until: Monotonic timestamp (ms) the block lasts until.
        failure_count: Consecutive classified failures since the last success.
    """

    blocked_until: int
    failure_count: int


def compute_backoff(failure_count: int, min_backoff_ms: int, max_backoff_ms: int) -> int:
    """Compute the backoff window for a failure count.

    Args:
        failure_count: Consecutive failures, starting at 1.
        min_backoff_ms: Floor of the window.
        max_backoff_ms: Ceiling of the window.

    Returns:
        Backoff in milliseconds.
    """
    # Past this exponent the product always exceeds the ceiling.
    exponent = min(max(failure_count - 1, 0), max_backoff_ms.bit_length())
    return min(max_backoff_ms, min_backoff_ms * 2**exponent)


class ExponentialBackoffRouter(RouterPolicy):
    """Circuit breaker router with exponential backoff.

    Args:
        settings: Router configuration.
        store: Block state store. Created from ``settings.store`` if omitted.
        clock: Monotonic millisecond clock.
        metrics: Metrics collector. Defaults to a disabled collector.
    """

    def __init__(
        self,
        settings: RouterSettings | None = None,
        store: BlockStore | None = None,
        clock: Clock = monotonic_ms,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._settings = settings or RouterSettings()
        self._clock = clock
        if store is None:
            store = create_store(self._settings.namespace, self._settings.store, clock=clock)
        self._store = store
        self._metrics = metrics if metrics is not None else MetricsCollector(enabled=False)
        self._patterns = parse_patterns(self._settings.block_on_errors)
        self._known_backends: set[str] = set()

    @property
    def settings(self) -> RouterSettings:
        return self._settings

    @property
    def namespace(self) -> str:
        return self._settings.namespace

    @property
    def store(self) -> BlockStore:
        return self._store

    def key_for(self, backend: BackendSpec | str) -> str:
        """Get the store key of a backend within this router's namespace."""
        name = backend if isinstance(backend, str) else backend.name
        return f"{self._settings.namespace}:{name}"

    def get_state(self, backend: BackendSpec | str) -> BlockState | None:
        """Get the stored block record of a backend, if any."""
        state = self._store.get(self.key_for(backend))
        return state if isinstance(state, BlockState) else None

    def should_use(self, backend: BackendSpec) -> Decision:
        state = self.get_state(backend)
        if state is None:
            return Decision.ALLOW

        now = self._clock()
        if now < state.blocked_until:
            logger.info(
                "backend_skipped",
                namespace=self.namespace,
                backend=backend.name,
                remaining_ms=state.blocked_until - now,
                failure_count=state.failure_count,
            )
            self._metrics.record_skip(self.namespace, backend.name)
            return Decision.SKIP

        # The expired record stays: a success deletes it, another failure
        # keeps counting from it.
        return Decision.ALLOW

    def on_success(
        self, backend: BackendSpec, metrics: ExecutionMetrics | None = None
    ) -> None:
        previous = self._store.pop(self.key_for(backend))

        if isinstance(previous, BlockState):
            logger.info(
                "backend_unblocked",
                namespace=self.namespace,
                backend=backend.name,
                failure_count=previous.failure_count,
            )
            self._metrics.record_unblock(self.namespace, backend.name)

    def on_failure(
        self,
        backend: BackendSpec,
        error: Any,
        metrics: ExecutionMetrics | None = None,
    ) -> FailureVerdict:
        pattern = classify(error, self._patterns)
        if pattern is None:
            logger.debug(
                "backend_failure_not_blocking",
                namespace=self.namespace,
                backend=backend.name,
                error=str(error),
            )
            return CONTINUE

        now = self._clock()
        min_backoff_ms = self._settings.min_backoff_ms
        max_backoff_ms = self._settings.max_backoff_ms

        def next_state(current: Any) -> BlockState:
            count = current.failure_count + 1 if isinstance(current, BlockState) else 1
            backoff = compute_backoff(count, min_backoff_ms, max_backoff_ms)
            return BlockState(blocked_until=now + backoff, failure_count=count)

        state = self._store.update(
            self.key_for(backend), next_state, self._settings.store.ttl_seconds
        )
        self._known_backends.add(backend.name)
        backoff_ms = state.blocked_until - now

        logger.info(
            "backend_blocked",
            namespace=self.namespace,
            backend=backend.name,
            backoff_ms=backoff_ms,
            failure_count=state.failure_count,
            pattern=str(pattern),
            error=str(error),
        )
        self._metrics.record_block(self.namespace, backend.name, backoff_ms)
        return FailureVerdict.block(backoff_ms)

    def block_states(self) -> dict[str, BlockState]:
        """Snapshot the stored records of backends this router has blocked.

        Returns:
            Backend name to block record, for records still stored.
        """
        states = {}
        for name in sorted(self._known_backends):
            state = self.get_state(name)
            if state is not None:
                states[name] = state
        return states

    def with_overrides(self, **changes: Any) -> "ExponentialBackoffRouter":
        """Get a router with per-call setting overrides sharing this store.

        Args:
            **changes: RouterSettings fields to override.

        Returns:
            A new router, or this one if there are no changes.
        """
        if not changes:
            return self
        settings = RouterSettings(**{**self._settings.model_dump(), **changes})
        router = ExponentialBackoffRouter(
            settings=settings,
            store=self._store,
            clock=self._clock,
            metrics=self._metrics,
        )
        router._known_backends = self._known_backends
        return router

    def start(self) -> None:
        """Start the store's periodic sweeper."""
        self._store.start()

    def close(self) -> None:
        """Stop the store's periodic sweeper."""
        self._store.close()
