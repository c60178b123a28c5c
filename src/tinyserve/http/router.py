"""
=============================================================================
URL ROUTER
=============================================================================

Maps (method, path) to a handler plus its route-level middlewares.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ROUTING FLOW                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   GET /users/42?expand=1                                             │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌─────────────────────────────────────────────────────────────┐   │
    │   │  ROUTER (linear scan, registration order)                    │   │
    │   │                                                              │   │
    │   │  GET  /health         → health                               │   │
    │   │  GET  /users/:id      → get_user        ← FIRST MATCH        │   │
    │   │  GET  /users/me       → me              (never reached)      │   │
    │   │  *    /echo/*         → echo                                 │   │
    │   └─────────────────────────────────────────────────────────────┘   │
    │        │                                                             │
    │        ▼                                                             │
    │   RequestContext(params={"id": "42"}, query={"expand": "1"})         │
    │        │                                                             │
    │        ▼                                                             │
    │   [global middlewares..., route middlewares...] → get_user(ctx)     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

First registered wins. There is no "most specific route" ranking, so
register ``/users/me`` before ``/users/:id`` if both are needed.

Registration:

    router.get("/users/:id", get_user)
    router.post("/users", require_auth, create_user)   # route middleware

    @router.get("/health")
    def health(ctx):
        return ctx.json({"status": "ok"})

    @router.get("/admin", middlewares=[require_auth])
    def admin(ctx):
        return ctx.json({"admin": True})

=============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl
import logging

from .body import EmptyBody
from .context import RequestContext
from .path import PathPatternCache, match_path
from .request import Request
from .response import HandlerResponse, ResponseWriter
from ..middleware.base import Handler, MiddlewareChain, MiddlewareFunc


logger = logging.getLogger(__name__)


ANY_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS")


@dataclass(frozen=True)
class Route:
    """A registered route. Duplicates are allowed; the earliest wins."""

    method: str
    path: str
    handler: Handler
    middlewares: Tuple[MiddlewareFunc, ...] = ()


@dataclass
class RouteMatch:
    """
    Result of a successful match.

    Example:
        Template: /users/:id
        Path:     /users/123
        Result:   RouteMatch(route=<Route>, params={"id": "123"})
    """

    route: Route
    params: Dict[str, str]


class Router:
    """
    Route table plus global middleware chain.

    Every registration method accepts ``(path, *handlers)``: the last
    handler is the terminal one, the others are route middlewares run
    after the globals. Called with just a path, the method returns a
    decorator instead. The ``middlewares`` keyword adds route middlewares
    in either form, ahead of any positional ones.
    """

    def __init__(self):
        self._routes: List[Route] = []
        self._patterns = PathPatternCache()
        self._middleware = MiddlewareChain()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use(self, middleware: MiddlewareFunc) -> "Router":
        """Append a global middleware. Globals run in the order added."""
        self._middleware.add(middleware)
        return self

    def register(
        self,
        method: str,
        path: str,
        handler: Handler,
        middlewares: Tuple[MiddlewareFunc, ...] = (),
    ) -> Route:
        """Append a route and make sure its template is compiled."""
        self._patterns.get(path)
        route = Route(
            method=method.upper(),
            path=path,
            handler=handler,
            middlewares=tuple(middlewares),
        )
        self._routes.append(route)
        logger.debug(f"Registered route: {route.method} {path}")
        return route

    def _add(
        self,
        methods: Tuple[str, ...],
        path: str,
        handlers: Tuple[Callable, ...],
        middlewares: Sequence[MiddlewareFunc],
    ):
        def register_all(handler: Handler, route_middlewares: Tuple[MiddlewareFunc, ...]) -> Handler:
            for method in methods:
                self.register(method, path, handler, route_middlewares)
            return handler

        if not handlers:
            def decorator(handler: Handler) -> Handler:
                return register_all(handler, tuple(middlewares))
            return decorator

        *positional, handler = handlers
        register_all(handler, tuple(middlewares) + tuple(positional))
        return self

    def get(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._add(("GET",), path, handlers, middlewares)

    def post(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._add(("POST",), path, handlers, middlewares)

    def put(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._add(("PUT",), path, handlers, middlewares)

    def delete(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._add(("DELETE",), path, handlers, middlewares)

    def patch(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._add(("PATCH",), path, handlers, middlewares)

    def options(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._add(("OPTIONS",), path, handlers, middlewares)

    def any(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        """Register under GET, POST, PUT, DELETE, PATCH and OPTIONS at once."""
        return self._add(ANY_METHODS, path, handlers, middlewares)

    # =========================================================================
    # MATCHING
    # =========================================================================

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """
        Find the first route registered for ``method`` whose template
        matches ``path``.
        """
        method = method.upper()
        for route in self._routes:
            if route.method != method:
                continue
            matched, params = match_path(self._patterns.get(route.path), path)
            if matched:
                return RouteMatch(route=route, params=params)
        return None

    def handle(self, request: Request, response: ResponseWriter) -> Optional[HandlerResponse]:
        """
        Route a request and run its middleware chain.

        Returns:
            The chain's HandlerResponse, or None when no route matched.
            Exceptions from middlewares and handlers propagate.
        """
        path = request.path
        route_match = self.match(request.method, path)
        if route_match is None:
            return None

        context = RequestContext(
            request=request,
            response=response,
            params=route_match.params,
            query=dict(parse_qsl(request.query_string, keep_blank_values=True)),
            body=request.body if request.body is not None else EmptyBody(),
            path=path,
        )

        route = route_match.route
        return self._middleware.run(context, route.handler, route.middlewares)

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    @property
    def routes(self) -> List[Route]:
        return list(self._routes)

    @property
    def patterns(self) -> PathPatternCache:
        return self._patterns

    @property
    def middlewares(self) -> List[MiddlewareFunc]:
        return list(self._middleware)

    def __len__(self) -> int:
        return len(self._routes)
