"""
=============================================================================
TINYSERVE - A Minimal HTTP Request-Processing Engine
=============================================================================

Routes requests through a middleware chain with per-client rate limiting,
CORS and security headers, over plaintext HTTP/1.1, HTTPS, or HTTP/2.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    tinyserve/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m tinyserve)
    ├── server.py            # TinyServe application + Server adapter
    ├── lifecycle.py         # Running-server handle, signal wiring
    ├── pipeline.py          # Per-request orchestration
    ├── config.py            # ServerConfig dataclass
    ├── logging_setup.py     # Root logger configuration
    ├── core/                # Transports
    │   ├── socket_server.py # TCP listener
    │   ├── connection.py    # HTTP/1.1 connection + body framing
    │   ├── http2.py         # HTTP/2 over TLS (h2)
    │   ├── tls.py           # SSLContext construction
    │   └── thread_pool.py   # Worker pool
    ├── http/                # Protocol-neutral request/response model
    │   ├── path.py          # Path templates
    │   ├── router.py        # Route table
    │   ├── context.py       # RequestContext + response helpers
    │   ├── body.py          # Body parsing under a size limit
    │   ├── request.py       # Request + HTTP/1.1 head parser
    │   ├── response.py      # HandlerResponse + ResponseWriter
    │   ├── errors.py        # Error taxonomy
    │   └── status_codes.py  # HTTP status enum
    └── middleware/
        ├── base.py          # Continuation chain
        ├── rate_limit.py    # Fixed-window limiter
        ├── cors.py          # CORS policy
        ├── security.py      # Security headers
        └── logging.py       # Access log

=============================================================================
QUICK START
=============================================================================

    from tinyserve import TinyServe

    app = TinyServe(port=3000)

    @app.get("/users/:id")
    def get_user(ctx):
        return ctx.json({"id": ctx.params["id"]})

    app.serve_forever()

=============================================================================
"""

__version__ = "1.0.0"

from .config import RateLimitConfig, ServerConfig, Transport
from .http.context import RequestContext
from .http.errors import (
    BadRequest,
    ConfigError,
    HTTPError,
    InternalServerError,
    MiddlewareError,
    NotFound,
    PayloadTooLarge,
    TooManyRequests,
)
from .http.response import HandlerResponse
from .http.router import Router
from .lifecycle import Lifecycle, install_signal_handlers
from .middleware import AccessLogMiddleware, Middleware, RateLimiter, RateLimitMiddleware
from .pipeline import RequestPipeline
from .server import Server, TinyServe

__all__ = [
    "__version__",
    "TinyServe",
    "Server",
    "Lifecycle",
    "install_signal_handlers",
    "ServerConfig",
    "RateLimitConfig",
    "Transport",
    "Router",
    "RequestPipeline",
    "RequestContext",
    "HandlerResponse",
    "Middleware",
    "RateLimiter",
    "RateLimitMiddleware",
    "AccessLogMiddleware",
    "HTTPError",
    "BadRequest",
    "PayloadTooLarge",
    "NotFound",
    "TooManyRequests",
    "InternalServerError",
    "ConfigError",
    "MiddlewareError",
]
