"""Block state stores for Switchyard."""

from switchyard.store.base import BlockStore
from switchyard.store.factory import create_store, load_store_class
from switchyard.store.memory import MemoryStore

__all__ = [
    "BlockStore",
    "MemoryStore",
    "create_store",
    "load_store_class",
]
