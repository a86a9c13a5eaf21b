"""Exception types raised by the Mina core."""


class MinaError(Exception):
    """Base class for all Mina errors."""


class ModelClientError(MinaError):
    """A call to the generative-model API failed."""


class ModelTimeoutError(ModelClientError):
    """The model call exceeded its deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Model API timed out after {timeout:.1f}s")
        self.timeout = timeout


class TransientUpstreamError(ModelClientError):
    """Rate limiting, server errors or transport failures. Safe to retry."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidRequestError(ModelClientError):
    """The API rejected the request (4xx other than 429). Never retried."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CircuitOpenError(ModelClientError):
    """The circuit breaker is open; no network call was attempted."""

    def __init__(self, endpoint: str, retry_in: float) -> None:
        super().__init__(
            f"Circuit breaker for '{endpoint}' is open, retry in {retry_in:.1f}s"
        )
        self.endpoint = endpoint
        self.retry_in = retry_in


class ExtractionParseError(MinaError):
    """The extraction model returned something that is not a fact list."""


class MediaFetchError(MinaError):
    """A single media attachment could not be fetched or inlined."""
