"""Store factory for creating block state stores."""

import importlib

from switchyard.config import StoreSettings
from switchyard.store.base import BlockStore
from switchyard.store.memory import MemoryStore
from switchyard.utils.clock import Clock, monotonic_ms
from switchyard.utils.logging import get_logger

logger = get_logger(__name__)


def load_store_class(path: str) -> type[BlockStore]:
    """Import a store class from a ``package.module:Class`` path.

    Args:
        path: Import path of the class.

    Returns:
        The BlockStore subclass.

    Raises:
        ValueError: If the path is malformed or does not name a BlockStore.
    """
    module_name, sep, class_name = path.partition(":")
    if not sep or not module_name or not class_name:
        raise ValueError(f"Invalid store path '{path}', expected 'module:Class'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import store module '{module_name}': {e}") from e

    store_cls = getattr(module, class_name, None)
    if not isinstance(store_cls, type) or not issubclass(store_cls, BlockStore):
        raise ValueError(f"'{path}' is not a BlockStore subclass")
    return store_cls


def create_store(
    name: str,
    settings: StoreSettings,
    clock: Clock = monotonic_ms,
) -> BlockStore:
    """Create a store instance from settings.

    Custom store classes are constructed with ``name`` and ``sweep_interval``
    keyword arguments.

    Args:
        name: Store name, normally the router namespace.
        settings: Store configuration settings.
        clock: Monotonic millisecond clock for the built-in memory store.

    Returns:
        BlockStore instance.

    Raises:
        ValueError: If the store type is unknown.
    """
    if settings.type == "memory":
        logger.info(
            "creating_memory_store",
            name=name,
            sweep_interval=settings.sweep_interval_seconds,
        )
        return MemoryStore(
            name=name,
            sweep_interval=settings.sweep_interval_seconds,
            clock=clock,
        )

    store_cls = load_store_class(settings.type)
    logger.info("creating_custom_store", name=name, store_class=settings.type)
    return store_cls(name=name, sweep_interval=settings.sweep_interval_seconds)
