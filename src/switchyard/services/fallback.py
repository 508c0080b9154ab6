"""Fallback service executing requests over an ordered list of backends."""

import asyncio
import inspect
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, Literal, TypeVar

from switchyard.backends.base import BackendError, BackendSpec
from switchyard.services.metrics import MetricsCollector
from switchyard.services.router import ExecutionMetrics, RouterPolicy
from switchyard.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class SwitchyardError(Exception):
    """Base exception for errors raised by Switchyard itself."""

    pass


class NoBackendsConfiguredError(SwitchyardError):
    """Raised when a request is run with an empty backend list."""

    def __init__(self) -> None:
        super().__init__("No backends configured")


class NoBackendsAvailableError(SwitchyardError):
    """Raised when every configured backend is currently blocked.

    Args:
        backends: Names of the backends that were considered.
    """

    def __init__(self, backends: Sequence[str]) -> None:
        self.backends = list(backends)
        super().__init__(f"No backends available (all blocked: {', '.join(self.backends)})")


class FallbackService:
    """Runs a request on the first usable backend, falling back on failure.

    For each request the router policy selects the first backend it allows,
    in list order. A success is reported to the policy and returned at once.
    A failure is reported to the policy, and that backend is dropped for the
    rest of this request whether or not the policy blocked it. When nothing
    is left to try, the last backend error is raised unchanged; if no backend
    was tried at all, ``NoBackendsAvailableError`` is raised.

    A single-backend list is invoked directly, without consulting or
    updating the policy.

    Args:
        policy: Default router policy.
        metrics: Metrics collector. Defaults to a disabled collector.
    """

    def __init__(
        self,
        policy: RouterPolicy,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._policy = policy
        self._metrics = metrics if metrics is not None else MetricsCollector(enabled=False)

    @property
    def policy(self) -> RouterPolicy:
        return self._policy

    async def run(
        self,
        backends: Sequence[BackendSpec],
        request: Any,
        policy: RouterPolicy | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> tuple[Any, str]:
        """Execute a request with fallback to alternative backends.

        Args:
            backends: Backends in priority order.
            request: Payload passed to the backend callable.
            policy: Router policy for this call instead of the default one.
            overrides: Per-call router setting overrides.

        Returns:
            Tuple of (result, backend_name) for the backend that succeeded.

        Raises:
            NoBackendsConfiguredError: If ``backends`` is empty.
            NoBackendsAvailableError: If every backend is blocked.
            Exception: The last backend error if all attempts failed.
        """

        async def attempt(backend: BackendSpec) -> Any:
            return await _invoke(backend, request)

        return await self._execute(backends, attempt, policy, overrides)

    async def run_stream(
        self,
        backends: Sequence[BackendSpec],
        request: Any,
        policy: RouterPolicy | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> tuple[AsyncIterator[Any], str]:
        """Execute a streaming request with fallback.

        The backend callable must return an async iterator. An attempt counts
        as successful once the first chunk arrives, so fallback is only
        possible before streaming has started; later errors reach the consumer
        of the stream.

        Returns:
            Tuple of (async iterator, backend_name).
        """

        async def attempt(backend: BackendSpec) -> AsyncIterator[Any]:
            return await _open_stream(backend, request)

        return await self._execute(backends, attempt, policy, overrides)

    async def _execute(
        self,
        backends: Sequence[BackendSpec],
        attempt: Callable[[BackendSpec], Awaitable[T]],
        policy: RouterPolicy | None,
        overrides: dict[str, Any] | None,
    ) -> tuple[T, str]:
        if not backends:
            raise NoBackendsConfiguredError()

        if len(backends) == 1:
            backend = backends[0]
            return await attempt(backend), backend.name

        if policy is None:
            policy = self._policy
        if overrides:
            policy = policy.with_overrides(**overrides)

        remaining = list(backends)
        last_error: Exception | None = None

        while remaining:
            backend = policy.select(remaining)
            if backend is None:
                break

            if last_error is not None:
                # Lets a pending cancellation stop us before the next attempt.
                await asyncio.sleep(0)
                logger.info(
                    "trying_fallback_backend",
                    backend=backend.name,
                    model=backend.model,
                )

            start = time.perf_counter()
            try:
                result = await attempt(backend)
            except Exception as e:
                metrics = self._finish(backend, "error", start)
                logger.warning(
                    "backend_attempt_failed",
                    backend=backend.name,
                    model=backend.model,
                    error=str(e),
                    error_type=type(e).__name__,
                    latency_ms=round(metrics.latency_ms, 2),
                )
                policy.on_failure(backend, e, metrics)
                remaining = [b for b in remaining if b is not backend]
                last_error = e
                continue

            metrics = self._finish(backend, "ok", start)
            policy.on_success(backend, metrics)
            return result, backend.name

        if last_error is not None:
            logger.error(
                "all_backends_failed",
                backends=[b.name for b in backends],
                error=str(last_error),
            )
            raise last_error

        namespace = getattr(policy, "namespace", "default")
        logger.error(
            "no_backends_available",
            namespace=namespace,
            backends=[b.name for b in backends],
        )
        self._metrics.record_no_backends_available(namespace)
        raise NoBackendsAvailableError([b.name for b in backends])

    def _finish(
        self,
        backend: BackendSpec,
        status: Literal["ok", "error"],
        start: float,
    ) -> ExecutionMetrics:
        metrics = ExecutionMetrics(
            backend=backend.name,
            model=backend.model,
            status=status,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
        logger.debug(
            "backend_attempt_metrics",
            backend=metrics.backend,
            model=metrics.model,
            status=metrics.status,
            latency_ms=round(metrics.latency_ms, 2),
        )
        self._metrics.record_attempt(metrics)
        return metrics


async def _invoke(backend: BackendSpec, request: Any) -> Any:
    result = backend.call(request)
    if inspect.isawaitable(result):
        result = await result
    # Callables may hand back a failure instead of raising it.
    if isinstance(result, BackendError):
        raise result
    return result


async def _open_stream(backend: BackendSpec, request: Any) -> AsyncIterator[Any]:
    stream = await _invoke(backend, request)
    iterator = aiter(stream)
    try:
        first = await anext(iterator)
    except StopAsyncIteration:
        return _empty_stream()
    return _prepend(first, iterator)


async def _prepend(first: Any, rest: AsyncIterator[Any]) -> AsyncIterator[Any]:
    yield first
    async for chunk in rest:
        yield chunk


async def _empty_stream() -> AsyncIterator[Any]:
    return
    yield  # pragma: no cover
