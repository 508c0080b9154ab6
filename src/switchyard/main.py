"""Wiring of settings, logging, metrics, router and fallback service."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from switchyard import __version__
from switchyard.config import Settings, create_settings
from switchyard.services.backoff_router import ExponentialBackoffRouter
from switchyard.services.fallback import FallbackService
from switchyard.services.metrics import MetricsCollector
from switchyard.utils.clock import Clock, monotonic_ms
from switchyard.utils.logging import get_logger, setup_logging


def create_fallback_service(
    settings: Settings | None = None,
    config_path: Path | None = None,
    configure_logging: bool = True,
    clock: Clock = monotonic_ms,
) -> FallbackService:
    """Create a fallback service backed by the exponential backoff router.

    The store's sweeper is not started; use ``fallback_service`` or call
    ``service.policy.start()`` for that.

    Args:
        settings: Optional settings instance. If None, loads from config.
        config_path: YAML config path used when ``settings`` is None.
        configure_logging: Whether to configure structlog from the settings.
        clock: Monotonic millisecond clock.

    Returns:
        Configured FallbackService.
    """
    if settings is None:
        settings = create_settings(config_path)

    if configure_logging:
        setup_logging(level=settings.logging.level, format=settings.logging.format)

    metrics = MetricsCollector(enabled=settings.metrics.enabled, version=__version__)
    router = ExponentialBackoffRouter(
        settings=settings.router,
        clock=clock,
        metrics=metrics,
    )

    get_logger(__name__).info(
        "switchyard_configured",
        version=__version__,
        namespace=settings.router.namespace,
        store=settings.router.store.type,
        min_backoff_ms=settings.router.min_backoff_ms,
        max_backoff_ms=settings.router.max_backoff_ms,
        block_on_errors=settings.router.block_on_errors,
    )
    return FallbackService(router, metrics=metrics)


@asynccontextmanager
async def fallback_service(
    settings: Settings | None = None,
    config_path: Path | None = None,
    configure_logging: bool = True,
) -> AsyncIterator[FallbackService]:
    """Fallback service whose background sweeper runs for the block's duration.

    Args:
        settings: Optional settings instance. If None, loads from config.
        config_path: YAML config path used when ``settings`` is None.
        configure_logging: Whether to configure structlog from the settings.

    Yields:
        Running FallbackService.
    """
    service = create_fallback_service(
        settings=settings,
        config_path=config_path,
        configure_logging=configure_logging,
    )
    logger = get_logger(__name__)

    service.policy.start()
    logger.info("switchyard_started", version=__version__)
    try:
        yield service
    finally:
        service.policy.close()
        logger.info("switchyard_stopped")
