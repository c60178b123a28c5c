"""
=============================================================================
MIDDLEWARE CONTINUATION CHAIN
=============================================================================

A middleware is any callable ``(context, next) -> HandlerResponse``.
``next()`` takes no arguments; calling it runs the rest of the chain and
returns its result.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        CHAIN EXECUTION                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   [global_1, global_2, route_1]  +  handler                         │
    │                                                                      │
    │   global_1(ctx, next)                                                │
    │      └─ next() ─► global_2(ctx, next)                                │
    │                      └─ next() ─► route_1(ctx, next)                 │
    │                                      └─ next() ─► handler(ctx)       │
    │                                                                      │
    │   Results unwind back up the same path.                              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Rules:

- Not calling ``next()`` short-circuits: nothing downstream runs and the
  middleware's own return value is the result.
- Calling ``next()`` twice from the same invocation raises MiddlewareError.
- Exceptions propagate unchanged to whoever started the chain.

Writing one:

    class Timing(Middleware):
        def __call__(self, ctx, next):
            started = time.perf_counter()
            result = next()
            ctx.response.set_header("X-Elapsed", f"{time.perf_counter() - started:.4f}")
            return result

    @function_middleware
    def require_token(ctx, next):
        if "authorization" not in ctx.headers:
            return ctx.status(401).json({"error": "Unauthorized"})
        return next()

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, Sequence
import logging

from ..http.context import RequestContext
from ..http.errors import MiddlewareError
from ..http.response import HandlerResponse


logger = logging.getLogger(__name__)


# =============================================================================
# TYPE ALIASES
# =============================================================================

Next = Callable[[], Optional[HandlerResponse]]
MiddlewareFunc = Callable[[RequestContext, Next], Optional[HandlerResponse]]
Handler = Callable[[RequestContext], Optional[HandlerResponse]]


class Middleware(ABC):
    """
    Base class for class-based middleware.

    Plain functions with the same signature are accepted everywhere a
    Middleware is; subclassing just gives a name for logs.
    """

    @abstractmethod
    def __call__(self, context: RequestContext, next: Next) -> Optional[HandlerResponse]:
        """
        Process the request.

        Args:
            context: The per-request context
            next: Runs the remainder of the chain (call at most once)

        Returns:
            The chain's result, or this middleware's own response
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class FunctionMiddleware(Middleware):
    """Wraps a plain ``(context, next)`` function as a Middleware."""

    def __init__(self, func: MiddlewareFunc, name: Optional[str] = None):
        self._func = func
        self._name = name or getattr(func, "__name__", "middleware")

    def __call__(self, context: RequestContext, next: Next) -> Optional[HandlerResponse]:
        return self._func(context, next)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(func: MiddlewareFunc) -> FunctionMiddleware:
    """Decorator form of FunctionMiddleware."""
    return FunctionMiddleware(func)


def middleware_name(middleware: MiddlewareFunc) -> str:
    return getattr(middleware, "name", None) or getattr(middleware, "__name__", repr(middleware))


# =============================================================================
# RUNNING A CHAIN
# =============================================================================

def run_chain(
    context: RequestContext,
    middlewares: Sequence[MiddlewareFunc],
    handler: Handler,
) -> Optional[HandlerResponse]:
    """
    Run ``middlewares`` in order around ``handler``.

    Each invocation gets its own ``next`` closure that remembers the
    position in the list and whether it has already been used.

    Raises:
        MiddlewareError: a middleware called next() more than once
    """

    def dispatch(index: int) -> Optional[HandlerResponse]:
        if index >= len(middlewares):
            return handler(context)

        middleware = middlewares[index]
        called = False

        def next_() -> Optional[HandlerResponse]:
            nonlocal called
            if called:
                raise MiddlewareError(
                    f"next() called multiple times by {middleware_name(middleware)}"
                )
            called = True
            return dispatch(index + 1)

        return middleware(context, next_)

    return dispatch(0)


class MiddlewareChain:
    """
    Ordered list of global middlewares.

        chain = MiddlewareChain()
        chain.add(RateLimitMiddleware(limiter))
        chain.add(AccessLogMiddleware())

        result = chain.run(context, handler, route_middlewares)

    First added runs first (outermost).
    """

    def __init__(self, middlewares: Iterable[MiddlewareFunc] = ()):
        self._middlewares: List[MiddlewareFunc] = list(middlewares)

    def add(self, middleware: MiddlewareFunc) -> "MiddlewareChain":
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {middleware!r}")
        self._middlewares.append(middleware)
        logger.debug(f"Added middleware: {middleware_name(middleware)}")
        return self

    def run(
        self,
        context: RequestContext,
        handler: Handler,
        extra: Sequence[MiddlewareFunc] = (),
    ) -> Optional[HandlerResponse]:
        """Run the global middlewares, then ``extra``, then ``handler``."""
        return run_chain(context, [*self._middlewares, *extra], handler)

    def __len__(self) -> int:
        return len(self._middlewares)

    def __iter__(self):
        return iter(self._middlewares)
