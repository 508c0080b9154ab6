"""In-process TTL store."""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from switchyard.store.base import BlockStore
from switchyard.utils.clock import Clock, monotonic_ms
from switchyard.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0


@dataclass
class _Entry:
    value: Any
    expires_at: int  # monotonic ms


class MemoryStore(BlockStore):
    """Thread-safe in-memory TTL store.

    Every operation runs under a single lock, so each get/put/delete/update is
    atomic and readers never observe a half-written entry. Expiry is checked
    lazily on ``get`` and eagerly by a periodic sweeper thread started with
    ``start()``, which bounds growth from keys that are never read again.

    Args:
        name: Store name, used for the sweeper thread and logs.
        sweep_interval: Seconds between sweeps.
        clock: Monotonic millisecond clock.
    """

    def __init__(
        self,
        name: str = "default",
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Clock = monotonic_ms,
    ) -> None:
        self.name = name
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._get_locked(key)

    def put(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._put_locked(key, value, ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def pop(self, key: str) -> Any | None:
        with self._lock:
            value = self._get_locked(key)
            self._entries.pop(key, None)
            return value

    def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any],
        ttl: float,
    ) -> Any:
        with self._lock:
            value = fn(self._get_locked(key))
            self._put_locked(key, value, ttl)
            return value

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("store_sweep", store=self.name, removed=len(expired))
        return len(expired)

    def start(self) -> None:
        """Start the periodic sweeper thread. Calling it twice is a no-op."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper,
            name=f"switchyard-sweeper-{self.name}",
            daemon=True,
        )
        self._sweeper.start()
        logger.info(
            "store_sweeper_started", store=self.name, interval=self.sweep_interval
        )

    def close(self) -> None:
        """Stop the sweeper thread, if running."""
        if self._sweeper is None:
            return
        self._stop_event.set()
        self._sweeper.join()
        self._sweeper = None
        logger.info("store_sweeper_stopped", store=self.name)

    @property
    def running(self) -> bool:
        """Check if the sweeper thread is running."""
        return self._sweeper is not None and self._sweeper.is_alive()

    def _run_sweeper(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            self.sweep()

    def _get_locked(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def _put_locked(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = _Entry(
            value=value, expires_at=self._clock() + int(ttl * 1000)
        )
