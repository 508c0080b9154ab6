"""Backend layer for Switchyard."""

from switchyard.backends.base import (
    BackendCall,
    BackendConnectionError,
    BackendError,
    BackendRateLimitError,
    BackendSpec,
    BackendStatusError,
    BackendTimeoutError,
    BackendUnavailableError,
)
from switchyard.backends.http import HTTPBackend

__all__ = [
    # Backend description
    "BackendCall",
    "BackendSpec",
    # Exceptions
    "BackendError",
    "BackendConnectionError",
    "BackendTimeoutError",
    "BackendUnavailableError",
    "BackendStatusError",
    "BackendRateLimitError",
    # Implementations
    "HTTPBackend",
]
