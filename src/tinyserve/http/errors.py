"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every fault a client can see maps to one JSON shape:

    {"error": "<label>", "message": "<detail>"}

    ┌──────────────────────┬────────┬──────────────────────────────────────┐
    │ Exception            │ Status │ Raised by                            │
    ├──────────────────────┼────────┼──────────────────────────────────────┤
    │ BadRequest           │  400   │ body parser (bad JSON)               │
    │ PayloadTooLarge      │  400   │ body reader (> 1 MiB)                │
    │ NotFound             │  404   │ pipeline (no route matched)          │
    │ TooManyRequests      │  429   │ handlers that want the rate shape    │
    │ InternalServerError  │  500   │ pipeline (any other exception)       │
    ├──────────────────────┼────────┼──────────────────────────────────────┤
    │ ConfigError          │   -    │ server construction (fatal)          │
    │ MiddlewareError      │   -    │ next() called twice (becomes a 500)  │
    └──────────────────────┴────────┴──────────────────────────────────────┘

PayloadTooLarge stays a 400 rather than a 413 so clients see a single
"Bad Request" shape for every body fault.

=============================================================================
"""

from typing import Optional

from .response import HandlerResponse, error_response


class HTTPError(Exception):
    """
    Base class for errors that carry their own HTTP response.

    Handlers may raise any subclass; the pipeline turns it into a
    response with the matching status instead of a 500.

    Attributes:
        status_code: HTTP status to send
        label: Short name placed in the "error" field
        message: Human-readable detail placed in the "message" field
    """

    status_code: int = 500
    label: str = "Internal Server Error"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message if message is not None else self.default_message
        super().__init__(self.message)

    def to_response(self) -> HandlerResponse:
        return error_response(self.status_code, self.label, self.message)


class BadRequest(HTTPError):
    status_code = 400
    label = "Bad Request"
    default_message = "Malformed request"


class PayloadTooLarge(BadRequest):
    """Request body exceeded the configured limit; the read is aborted."""

    default_message = "Request body too large"


class NotFound(HTTPError):
    status_code = 404
    label = "Not Found"
    default_message = "The requested endpoint does not exist"


class TooManyRequests(HTTPError):
    status_code = 429
    label = "Too Many Requests"
    default_message = "Rate limit exceeded, please try again later"


class InternalServerError(HTTPError):
    status_code = 500
    label = "Internal Server Error"
    default_message = "An unexpected error occurred"


class ConfigError(ValueError):
    """Invalid server configuration. Raised before any socket is opened."""


class MiddlewareError(RuntimeError):
    """A middleware broke the chain contract (e.g. called next() twice)."""
