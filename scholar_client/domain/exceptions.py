"""Unified business exceptions.

Every error raised across module boundaries derives from BusinessError so the
API layer or a UI can catch one type and show a consistent message.
"""


class BusinessError(Exception):
    """Base class for business errors.

    Attributes:
        code: machine readable error code (e.g. "EMPTY_PROMPT").
        message: human readable error message.
        http_status: status code to use when mapped onto HTTP, 400 by default.
        extra: additional fields (exchange_id, url, ...).
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """Input or configuration failed validation; raised before any I/O."""


class ConcurrentRequestError(BusinessError):
    """A new exchange was submitted while another one is still in flight."""


class TransportError(BusinessError):
    """The request could not be issued or the service did not answer with 200."""


class NetworkError(TransportError):
    """Connection level failure: DNS, refused connection, reset, timeout."""


class ApiError(TransportError):
    """The service answered with a non-success status."""


class RateLimitError(ApiError):
    """The service answered 429."""


class StreamDecodeError(BusinessError):
    """A single framed line could not be decoded. Never fatal for the stream."""


class StreamConsumedError(BusinessError):
    """A stream handle was consumed twice."""


class InvalidStateError(BusinessError):
    """An ingestion state transition was attempted from the wrong status."""
