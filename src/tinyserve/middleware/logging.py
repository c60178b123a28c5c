"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

Optional global middleware emitting one log record per request.

    TEXT (Apache-style):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 10.0.0.7 [10/Jun/2024:10:55:36 +0000] "GET /users/42" 200 12.10ms   │
    │     HTTP/1.1 id=a1b2c3d4                                            │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"request_id": "a1b2c3d4", "method": "GET", "path": "/users/42",    │
    │  "client_ip": "10.0.0.7", "status_code": 200, "duration_ms": 12.1}  │
    └─────────────────────────────────────────────────────────────────────┘

Usage:

    app.use(AccessLogMiddleware(log_format="json", skip_paths=["/health"]))

TinyServe installs the rate limiter when it is constructed, so requests
rejected with 429 never reach an access log added afterwards.

The request id is stored in ``ctx.state["request_id"]`` and echoed as
X-Request-ID.

=============================================================================
"""

from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional
import json
import logging
import time
import uuid

from .base import Middleware, Next
from ..http.context import RequestContext
from ..http.response import HandlerResponse


logger = logging.getLogger(__name__)


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class RequestLog:
    request_id: str
    method: str
    path: str
    version: str
    client_ip: str
    status_code: int
    duration_ms: float
    user_agent: str = "-"
    logged_at: float = field(default_factory=time.time)

    def as_json(self) -> str:
        record = asdict(self)
        record["duration_ms"] = round(self.duration_ms, 2)
        record["logged_at"] = time.strftime("%Y-%m-%dT%H:%M:%S%z", time.localtime(self.logged_at))
        return json.dumps(record)

    def as_text(self) -> str:
        stamp = time.strftime("%d/%b/%Y:%H:%M:%S %z", time.localtime(self.logged_at))
        return (
            f'{self.client_ip or "-"} [{stamp}] "{self.method} {self.path}" '
            f'{self.status_code} {self.duration_ms:.2f}ms {self.version} id={self.request_id}'
        )


class AccessLogMiddleware(Middleware):
    """
    One access record per request, plus a request id for correlation.

    Args:
        log_format: "text" or "json"
        include_request_id: Send the id back as X-Request-ID
        log_level: Level the records are emitted at
        skip_paths: Paths that are never logged (health checks)
    """

    FORMATS = ("text", "json")

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        if log_format not in self.FORMATS:
            raise ValueError(f"log_format must be one of {self.FORMATS}, got {log_format!r}")
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = frozenset(skip_paths or ())

    def __call__(self, context: RequestContext, next: Next) -> Optional[HandlerResponse]:
        request = context.request
        request_id = request.get_header("x-request-id") or new_request_id()
        context.state["request_id"] = request_id
        if self.include_request_id:
            context.response.set_header("X-Request-ID", request_id)

        started = time.perf_counter()
        try:
            result = next()
        except Exception as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.error(f"[{request_id}] {context.method} {context.path} raised {type(e).__name__} after {elapsed:.2f}ms")
            raise

        if context.path in self.skip_paths:
            return result

        entry = RequestLog(
            request_id=request_id,
            method=context.method,
            path=context.path,
            version=request.version,
            client_ip=request.remote_addr,
            status_code=result.status_code if result is not None else context.response.status_code,
            duration_ms=(time.perf_counter() - started) * 1000,
            user_agent=request.get_header("user-agent", "-"),
        )
        logger.log(self.log_level, entry.as_json() if self.log_format == "json" else entry.as_text())
        return result
