"""Tests for fallback service."""

import asyncio

import pytest
from unittest.mock import MagicMock

from switchyard.backends.base import (
    BackendConnectionError,
    BackendError,
    BackendSpec,
    BackendStatusError,
    BackendUnavailableError,
)
from switchyard.config import RouterSettings
from switchyard.services.backoff_router import ExponentialBackoffRouter
from switchyard.services.fallback import (
    FallbackService,
    NoBackendsAvailableError,
    NoBackendsConfiguredError,
    SwitchyardError,
)
from switchyard.services.metrics import MetricsCollector
from switchyard.services.router import CONTINUE, Decision, ExecutionMetrics, RouterPolicy
from switchyard.store.memory import MemoryStore


class RecordingBackend:
    """Backend callable returning or raising scripted outcomes."""

    def __init__(self, name: str, *outcomes):
        self.name = name
        self.outcomes = list(outcomes)
        self.calls: list = []

    async def __call__(self, request):
        self.calls.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def spec(self) -> BackendSpec:
        return BackendSpec(name=self.name, call=self, model=f"{self.name}-model")


def unavailable() -> BackendUnavailableError:
    return BackendUnavailableError("Service unavailable", status_code=503)


@pytest.fixture
def router(clock) -> ExponentialBackoffRouter:
    """Create a backoff router on the fake clock."""
    return ExponentialBackoffRouter(
        settings=RouterSettings(),
        store=MemoryStore(name="test", clock=clock),
        clock=clock,
    )


@pytest.fixture
def service(router) -> FallbackService:
    """Create fallback service."""
    return FallbackService(router)


class TestRun:
    """Tests for run with several backends."""

    @pytest.mark.asyncio
    async def test_success_on_first(self, service) -> None:
        """Test the first backend answers and the rest are not called."""
        a = RecordingBackend("a", {"answer": "from a"})
        b = RecordingBackend("b", {"answer": "from b"})

        result, name = await service.run([a.spec(), b.spec()], {"prompt": "hi"})

        assert result == {"answer": "from a"}
        assert name == "a"
        assert a.calls == [{"prompt": "hi"}]
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_fallback_on_failure(self, service, router) -> None:
        """Test a failing backend falls through to the next one."""
        a = RecordingBackend("a", unavailable())
        b = RecordingBackend("b", "ok")

        result, name = await service.run([a.spec(), b.spec()], "req")

        assert (result, name) == ("ok", "b")
        assert router.should_use(a.spec()) is Decision.SKIP

    @pytest.mark.asyncio
    async def test_blocked_backend_skipped_on_next_request(self, service) -> None:
        """Test a blocked backend is not called by later requests."""
        a = RecordingBackend("a", unavailable())
        b = RecordingBackend("b", "ok")
        backends = [a.spec(), b.spec()]

        await service.run(backends, "first")
        result, name = await service.run(backends, "second")

        assert name == "b"
        assert len(a.calls) == 1
        assert len(b.calls) == 2

    @pytest.mark.asyncio
    async def test_blocked_backend_recovers(self, service, clock) -> None:
        """Test a backend is retried once its window passes and unblocked on success."""
        a = RecordingBackend("a", unavailable(), "recovered")
        b = RecordingBackend("b", "ok")
        backends = [a.spec(), b.spec()]

        await service.run(backends, "first")
        clock.advance(1_001)
        result, name = await service.run(backends, "second")

        assert (result, name) == ("recovered", "a")
        assert service.policy.get_state(a.spec()) is None

    @pytest.mark.asyncio
    async def test_unclassified_failure_not_retried_in_same_request(
        self, service, router
    ) -> None:
        """Test a 'continue' failure still drops the backend for this request."""
        a = RecordingBackend("a", BackendStatusError("Unprocessable", status_code=422))
        b = RecordingBackend("b", "ok")

        result, name = await service.run([a.spec(), b.spec()], "req")

        assert name == "b"
        assert len(a.calls) == 1
        assert router.get_state(a.spec()) is None

    @pytest.mark.asyncio
    async def test_all_fail_raises_last_error(self, service) -> None:
        """Test the last backend's error is raised unchanged."""
        last = BackendConnectionError("c refused")
        a = RecordingBackend("a", unavailable())
        b = RecordingBackend("b", BackendStatusError("bad", status_code=400))
        c = RecordingBackend("c", last)

        with pytest.raises(BackendConnectionError) as exc_info:
            await service.run([a.spec(), b.spec(), c.spec()], "req")

        assert exc_info.value is last
        assert [len(x.calls) for x in (a, b, c)] == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_no_backends_available(self, service, router) -> None:
        """Test every backend blocked gives NoBackendsAvailableError."""
        backends = [RecordingBackend(n, "ok") for n in ("a", "b", "c")]
        for backend in backends:
            router.on_failure(backend.spec(), unavailable())

        with pytest.raises(NoBackendsAvailableError) as exc_info:
            await service.run([b.spec() for b in backends], "req")

        assert isinstance(exc_info.value, SwitchyardError)
        assert exc_info.value.backends == ["a", "b", "c"]
        assert all(not b.calls for b in backends)

    @pytest.mark.asyncio
    async def test_remaining_blocked_after_failure_raises_last_error(
        self, service, router
    ) -> None:
        """Test exhaustion after an attempt surfaces the attempt's error."""
        error = unavailable()
        a = RecordingBackend("a", error)
        b = RecordingBackend("b", "ok")
        router.on_failure(b.spec(), unavailable())

        with pytest.raises(BackendUnavailableError) as exc_info:
            await service.run([a.spec(), b.spec()], "req")

        assert exc_info.value is error
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_sync_callable(self, service) -> None:
        """Test plain functions work as backend callables."""

        def failing(request):
            raise unavailable()

        backends = [
            BackendSpec(name="sync-a", call=failing),
            BackendSpec(name="sync-b", call=lambda request: request.upper()),
        ]

        result, name = await service.run(backends, "hi")

        assert (result, name) == ("HI", "sync-b")

    @pytest.mark.asyncio
    async def test_returned_failure_value(self, service, router) -> None:
        """Test a returned BackendError counts as a failure."""
        backends = [
            BackendSpec(name="a", call=lambda request: unavailable()),
            BackendSpec(name="b", call=lambda request: "ok"),
        ]

        result, name = await service.run(backends, "req")

        assert name == "b"
        assert router.get_state("a").failure_count == 1

    @pytest.mark.asyncio
    async def test_empty_list(self, service) -> None:
        """Test an empty backend list."""
        with pytest.raises(NoBackendsConfiguredError):
            await service.run([], "req")

    @pytest.mark.asyncio
    async def test_per_call_policy(self, service, router) -> None:
        """Test a policy passed to run replaces the default one."""
        policy = MagicMock(spec=RouterPolicy)
        a = RecordingBackend("a", "ok")
        policy.select.return_value = a.spec()

        await service.run([a.spec(), RecordingBackend("b", "ok").spec()], "req", policy=policy)

        policy.on_success.assert_called_once()
        assert router.get_state(a.spec()) is None

    @pytest.mark.asyncio
    async def test_per_call_overrides(self, service, router, clock) -> None:
        """Test overrides change the backoff for this call only."""
        a = RecordingBackend("a", unavailable())
        b = RecordingBackend("b", "ok")

        await service.run(
            [a.spec(), b.spec()], "req", overrides={"min_backoff_ms": 5_000}
        )

        state = router.get_state(a.spec())
        assert state.failure_count == 1
        assert state.blocked_until == clock() + 5_000
        assert router.settings.min_backoff_ms == 1_000


class TestSingleBackend:
    """Tests for the single-backend shortcut."""

    @pytest.mark.asyncio
    async def test_policy_never_consulted(self) -> None:
        """Test a single backend bypasses the policy completely."""
        policy = MagicMock(spec=RouterPolicy)
        policy.should_use.return_value = Decision.SKIP
        policy.select.return_value = None
        service = FallbackService(policy)
        a = RecordingBackend("a", "ok")

        result, name = await service.run([a.spec()], "req")

        assert (result, name) == ("ok", "a")
        assert policy.mock_calls == []

    @pytest.mark.asyncio
    async def test_blocked_single_backend_still_called(self, service, router) -> None:
        """Test a blocked single backend is invoked and its state untouched."""
        a = RecordingBackend("a", unavailable())
        router.on_failure(a.spec(), unavailable())
        before = router.get_state(a.spec())

        with pytest.raises(BackendUnavailableError):
            await service.run([a.spec()], "req")

        assert len(a.calls) == 1
        assert router.get_state(a.spec()) == before


class TestMetricsAndPolicyCalls:
    """Tests for what the service reports."""

    @pytest.mark.asyncio
    async def test_policy_receives_metrics(self) -> None:
        """Test on_failure/on_success get per-attempt metrics."""
        policy = MagicMock(spec=RouterPolicy)
        a = RecordingBackend("a", unavailable())
        b = RecordingBackend("b", "ok")
        a_spec, b_spec = a.spec(), b.spec()
        policy.select.side_effect = [a_spec, b_spec]
        policy.on_failure.return_value = CONTINUE
        service = FallbackService(policy)

        await service.run([a_spec, b_spec], "req")

        backend, error, metrics = policy.on_failure.call_args.args
        assert backend.name == "a"
        assert isinstance(error, BackendUnavailableError)
        assert isinstance(metrics, ExecutionMetrics)
        assert metrics.status == "error"
        assert metrics.model == "a-model"
        assert metrics.latency_ms >= 0

        backend, metrics = policy.on_success.call_args.args
        assert backend.name == "b"
        assert metrics.status == "ok"

        # The failed backend is no longer offered within the request
        assert [b.name for b in policy.select.call_args_list[1].args[0]] == ["b"]

    @pytest.mark.asyncio
    async def test_metrics_collector_records_attempts(self, router) -> None:
        """Test each attempt is recorded."""
        metrics = MagicMock(spec=MetricsCollector)
        service = FallbackService(router, metrics=metrics)
        a = RecordingBackend("a", unavailable())
        b = RecordingBackend("b", "ok")

        await service.run([a.spec(), b.spec()], "req")

        statuses = [c.args[0].status for c in metrics.record_attempt.call_args_list]
        assert statuses == ["error", "ok"]

    @pytest.mark.asyncio
    async def test_metrics_collector_records_no_backends(self, router) -> None:
        """Test exhaustion is recorded."""
        metrics = MagicMock(spec=MetricsCollector)
        service = FallbackService(router, metrics=metrics)
        specs = [RecordingBackend(n, "ok").spec() for n in ("a", "b")]
        for spec in specs:
            router.on_failure(spec, unavailable())

        with pytest.raises(NoBackendsAvailableError):
            await service.run(specs, "req")

        metrics.record_no_backends_available.assert_called_once_with("default")


class TestCancellation:
    """Tests for cancellation handling."""

    @pytest.mark.asyncio
    async def test_cancel_stops_further_attempts(self, service) -> None:
        """Test no backend is started after the request is cancelled."""
        started = asyncio.Event()

        async def slow(request):
            started.set()
            await asyncio.sleep(10)

        b = RecordingBackend("b", "ok")
        task = asyncio.create_task(
            service.run([BackendSpec(name="slow", call=slow), b.spec()], "req")
        )
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert b.calls == []
        assert service.policy.get_state("slow") is None


class TestRunStream:
    """Tests for run_stream."""

    @staticmethod
    def stream_of(*chunks, error: Exception | None = None):
        async def call(request):
            if error is not None:
                raise error
            for chunk in chunks:
                yield chunk

        return call

    @pytest.mark.asyncio
    async def test_stream_from_first(self, service) -> None:
        """Test a working stream is returned with all chunks."""
        backends = [
            BackendSpec(name="a", call=self.stream_of(b"1", b"2")),
            BackendSpec(name="b", call=self.stream_of(b"x")),
        ]

        stream, name = await service.run_stream(backends, "req")

        assert name == "a"
        assert [chunk async for chunk in stream] == [b"1", b"2"]

    @pytest.mark.asyncio
    async def test_stream_falls_back_before_first_chunk(self, service, router) -> None:
        """Test a stream failing before its first chunk falls back."""
        backends = [
            BackendSpec(name="a", call=self.stream_of(error=unavailable())),
            BackendSpec(name="b", call=self.stream_of(b"ok")),
        ]

        stream, name = await service.run_stream(backends, "req")

        assert name == "b"
        assert [chunk async for chunk in stream] == [b"ok"]
        assert router.get_state("a").failure_count == 1

    @pytest.mark.asyncio
    async def test_empty_stream(self, service) -> None:
        """Test an empty stream counts as success."""
        backends = [
            BackendSpec(name="a", call=self.stream_of()),
            BackendSpec(name="b", call=self.stream_of(b"x")),
        ]

        stream, name = await service.run_stream(backends, "req")

        assert name == "a"
        assert [chunk async for chunk in stream] == []

    @pytest.mark.asyncio
    async def test_all_streams_fail(self, service) -> None:
        """Test the last stream error is raised."""
        backends = [
            BackendSpec(name="a", call=self.stream_of(error=unavailable())),
            BackendSpec(name="b", call=self.stream_of(error=BackendError("b broke"))),
        ]

        with pytest.raises(BackendError, match="b broke"):
            await service.run_stream(backends, "req")
