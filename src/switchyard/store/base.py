"""Block state store interface."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any


class BlockStore(ABC):
    """Key/value store with per-entry time-to-live.

    Values are opaque to the store; ``put`` always overwrites and merge logic
    belongs to the caller. ``None`` is reserved to mean "not found" and must
    not be stored.
    """

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Get a value, or None if absent or expired.

        An expired entry is removed by the read that observes it.
        """

    @abstractmethod
    def put(self, key: str, value: Any, ttl: float) -> None:
        """Store a value for ``ttl`` seconds, replacing any previous one."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Removing an absent key is a no-op."""

    @abstractmethod
    def clear(self) -> None:
        """Remove all entries."""

    @abstractmethod
    def sweep(self) -> int:
        """Purge every expired entry.

        Returns:
            Number of entries removed.
        """

    def pop(self, key: str) -> Any | None:
        """Remove a key and return its value, or None if absent or expired.

        The default implementation is a get followed by a delete.
        """
        value = self.get(key)
        self.delete(key)
        return value

    def update(
        self,
        key: str,
        fn: Callable[[Any | None], Any],
        ttl: float,
    ) -> Any:
        """Read-modify-write a single key.

        The default implementation is a plain get followed by a put; stores
        that can be shared between threads override it to make the sequence
        atomic per key.

        Args:
            key: Key to update.
            fn: Receives the current value (None if absent) and returns the new one.
            ttl: TTL in seconds for the new value.

        Returns:
            The value written.
        """
        value = fn(self.get(key))
        self.put(key, value, ttl)
        return value

    def start(self) -> None:
        """Start background maintenance, if the store has any."""

    def close(self) -> None:
        """Stop background maintenance and release resources."""
