"""
=============================================================================
REQUEST PIPELINE
=============================================================================

Per-request orchestration between a transport and the Router. This is the
only place faults are recovered; everything below it lets exceptions
propagate.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     RequestPipeline.dispatch()                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. CORS headers            (every response)                        │
    │   2. Security headers        (+ HSTS on TLS transports)              │
    │   3. OPTIONS?  ─────────────────────────────────────► 204, done     │
    │   4. read body (≤ 1 MiB) ── BadRequest/PayloadTooLarge ──► 400      │
    │   5. router.handle()                                                 │
    │         │                                                            │
    │         ├── None ───────────────────────────────────► 404           │
    │         ├── HTTPError raised ───────────────────────► its status    │
    │         ├── other exception ────────────────────────► 500           │
    │         └── HandlerResponse                                          │
    │   6. serialize onto the writer                                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Header precedence when serializing, lowest to highest:

    pipeline-injected (CORS, security)
    → set on the writer by middleware (X-RateLimit-*, X-Request-ID)
    → HandlerResponse.headers

A handler that finished the writer itself through ``ctx.raw()`` has
already produced the response; nothing more is written.

=============================================================================
"""

from typing import List, Optional
import logging
import time

from .http.body import MAX_BODY_SIZE, read_body
from .http.errors import HTTPError, InternalServerError, NotFound
from .http.request import Request
from .http.response import HandlerResponse, ResponseWriter, encode_body
from .http.router import Router
from .http.status_codes import allows_body
from .middleware.cors import CORSPolicy
from .middleware.security import apply_security_headers


logger = logging.getLogger(__name__)


class RequestPipeline:
    """
    Turns one Request into one response on a ResponseWriter.

    Args:
        router: Route table and global middlewares
        allowed_domains: CORS allow-list ("*" or empty means any origin)
        secure: Transport is TLS-backed (enables HSTS)
        debug: Expose exception messages in 500s, log timings
        max_body_size: Request body limit in bytes
    """

    def __init__(
        self,
        router: Router,
        allowed_domains: Optional[List[str]] = None,
        secure: bool = False,
        debug: bool = False,
        max_body_size: int = MAX_BODY_SIZE,
    ):
        self.router = router
        self.cors = CORSPolicy(
            allowed_domains=list(allowed_domains) if allowed_domains is not None else ["*"]
        )
        self.secure = secure
        self.debug = debug
        self.max_body_size = max_body_size

    def dispatch(self, request: Request, writer: ResponseWriter) -> None:
        """Process ``request`` and leave ``writer`` finished."""
        started = time.perf_counter()
        if self.debug:
            logger.debug(f"{request.method} {request.target}")

        try:
            self._dispatch(request, writer)
        finally:
            if self.debug:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.debug(f"{request.method} {request.target} completed in {elapsed_ms:.0f}ms")

    def _dispatch(self, request: Request, writer: ResponseWriter) -> None:
        # ─────────────────────────────────────────────────────────────────
        # Headers every response carries
        # ─────────────────────────────────────────────────────────────────
        self.cors.apply(writer, request.get_header("origin") or None)
        apply_security_headers(writer, self.secure or request.secure)

        # ─────────────────────────────────────────────────────────────────
        # Preflight short-circuit
        # ─────────────────────────────────────────────────────────────────
        if request.method == "OPTIONS":
            self.respond(writer, HandlerResponse(status_code=204))
            return

        # ─────────────────────────────────────────────────────────────────
        # Body acquisition
        # ─────────────────────────────────────────────────────────────────
        try:
            request.body = read_body(
                request.iter_body(),
                request.content_type,
                limit=self.max_body_size,
            )
        except HTTPError as e:
            logger.debug(f"Rejected body for {request.method} {request.path}: {e.message}")
            self.respond(writer, e.to_response())
            return

        # ─────────────────────────────────────────────────────────────────
        # Route, run the chain, map faults
        # ─────────────────────────────────────────────────────────────────
        try:
            result = self.router.handle(request, writer)
        except HTTPError as e:
            logger.debug(f"{request.method} {request.path} raised {e.status_code}: {e.message}")
            result = e.to_response()
        except Exception as e:
            logger.exception(f"Unhandled error in {request.method} {request.path}")
            message = str(e) if self.debug else InternalServerError.default_message
            result = InternalServerError(message).to_response()
        else:
            if result is None and not writer.finished:
                result = NotFound().to_response()

        self.respond(writer, result)

    def respond(self, writer: ResponseWriter, response: Optional[HandlerResponse]) -> None:
        """
        Serialize a HandlerResponse onto ``writer``.

        No-op when the writer has already been finished (``ctx.raw()``).
        A None response from a handler ends the writer as it stands. A body
        that cannot be encoded is replaced by the 500 error response.
        """
        if writer.finished:
            return

        if response is None:
            writer.end()
            return

        try:
            payload = encode_body(response)
        except Exception as e:
            logger.exception(f"Failed to serialize a {response.status_code} response")
            message = str(e) if self.debug else InternalServerError.default_message
            response = InternalServerError(message).to_response()
            payload = encode_body(response)

        if payload is not None and not allows_body(response.status_code):
            payload = None

        writer.write_head(response.status_code, response.headers)
        writer.end(payload)
