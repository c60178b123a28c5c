"""
Middleware: the continuation chain plus the built-in middlewares and
header injectors.
"""

from .base import (
    FunctionMiddleware,
    Middleware,
    MiddlewareChain,
    function_middleware,
    run_chain,
)
from .cors import CORSPolicy
from .logging import AccessLogMiddleware, RequestLog
from .rate_limit import RateLimiter, RateLimitEntry, RateLimitMiddleware
from .security import apply_security_headers

__all__ = [
    "Middleware",
    "FunctionMiddleware",
    "function_middleware",
    "MiddlewareChain",
    "run_chain",
    "CORSPolicy",
    "AccessLogMiddleware",
    "RequestLog",
    "RateLimiter",
    "RateLimitEntry",
    "RateLimitMiddleware",
    "apply_security_headers",
]
