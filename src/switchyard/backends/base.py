"""Backend description and backend exceptions."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

# A backend callable takes the request payload and returns a result, either
# directly or as an awaitable. Failures are raised.
BackendCall = Callable[[Any], Any | Awaitable[Any]]


class BackendError(Exception):
    """Base exception for backend errors.

    Args:
        message: Error message.
        status_code: HTTP status code, when the failure came with one.
        backend_name: Name of the backend that failed.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        backend_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.backend_name = backend_name


class BackendConnectionError(BackendError):
    """Raised when connection to backend fails or is refused."""

    pass


class BackendTimeoutError(BackendError):
    """Raised when request to backend times out."""

    pass


class BackendUnavailableError(BackendError):
    """Raised when backend is unavailable (5xx status)."""

    pass


class BackendStatusError(BackendError):
    """Raised when backend rejects a request with a non-5xx error status."""

    pass


class BackendRateLimitError(BackendError):
    """Raised when backend returns 429 Too Many Requests."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        backend_name: str | None = None,
    ) -> None:
        """Initialize rate limit error.

        Args:
            message: Error message.
            retry_after: Suggested retry delay in seconds from Retry-After header.
            backend_name: Name of the backend that returned the error.
        """
        super().__init__(message, status_code=429, backend_name=backend_name)
        self.retry_after = retry_after


@dataclass(frozen=True)
class BackendSpec:
    """One entry of an ordered backend list.

    The list position is the priority; nothing reorders it.

    Args:
        name: Identifier used for block state, logs and metrics.
        call: Callable performing the completion request.
        model: Logical model tag reported in metrics.
        options: Free-form per-backend options for the caller's use.
    """

    name: str
    call: BackendCall = field(compare=False, repr=False)
    model: str = ""
    options: Mapping[str, Any] = field(default_factory=dict, compare=False)
