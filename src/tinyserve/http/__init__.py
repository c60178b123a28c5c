"""
HTTP building blocks: requests, responses, bodies, path patterns,
the request context and the error taxonomy.

The Router lives in ``tinyserve.http.router`` and is imported from there
(it depends on the middleware package).
"""

from .body import EmptyBody, FormBody, JSONBody, TextBody, parse_body, read_body
from .context import RequestContext, ResponseHelpers
from .errors import (
    BadRequest,
    ConfigError,
    HTTPError,
    InternalServerError,
    MiddlewareError,
    NotFound,
    PayloadTooLarge,
    TooManyRequests,
)
from .path import PathPattern, PathPatternCache, compile_path, match_path
from .request import HTTPParseError, Request, RequestParser
from .response import BufferedResponseWriter, HandlerResponse, ResponseWriter
from .status_codes import HTTPStatus

__all__ = [
    "EmptyBody",
    "FormBody",
    "JSONBody",
    "TextBody",
    "parse_body",
    "read_body",
    "RequestContext",
    "ResponseHelpers",
    "HTTPError",
    "BadRequest",
    "PayloadTooLarge",
    "NotFound",
    "TooManyRequests",
    "InternalServerError",
    "ConfigError",
    "MiddlewareError",
    "PathPattern",
    "PathPatternCache",
    "compile_path",
    "match_path",
    "HTTPParseError",
    "Request",
    "RequestParser",
    "BufferedResponseWriter",
    "HandlerResponse",
    "ResponseWriter",
    "HTTPStatus",
]
