"""
=============================================================================
HANDLER RESPONSES AND RESPONSE WRITERS
=============================================================================

Two halves of "producing a response":

1. HandlerResponse - what a handler (or a short-circuiting middleware)
   RETURNS. A plain value: status, body, headers, raw flag.

2. ResponseWriter - what a transport WRITES to. Each transport (HTTP/1.1
   over TCP, HTTP/1.1 over TLS, HTTP/2 stream) subclasses it and decides
   how status, headers and body bytes hit the wire.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        RESPONSE FLOW                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   handler(ctx) ──► HandlerResponse(status_code=200, body={...})     │
    │                          │                                           │
    │                          ▼                                           │
    │                    encode_body()                                     │
    │                      None   → no payload                             │
    │                      is_raw → bytes verbatim                         │
    │                      str    → UTF-8                                  │
    │                      other  → JSON                                   │
    │                          │                                           │
    │                          ▼                                           │
    │   writer.write_head(status, headers) ; writer.end(payload)          │
    │                          │                                           │
    │                          ▼                                           │
    │   HTTP11ResponseWriter / H2ResponseWriter ──► socket                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Headers set on the writer BEFORE write_head() (CORS, security headers,
X-RateLimit-*) are merged with the handler's headers; the handler's win.

=============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union
import json


@dataclass
class HandlerResponse:
    """
    Canonical output of a handler or short-circuiting middleware.

    Attributes:
        status_code: HTTP status to send.
        body: None, bytes (with is_raw), str, or any JSON-serializable value.
        headers: Extra response headers; override writer-level headers.
        is_raw: Body is pre-encoded bytes and is written verbatim.
    """

    status_code: int = 200
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    is_raw: bool = False


def encode_body(response: HandlerResponse) -> Optional[bytes]:
    """
    Serialize a HandlerResponse body to bytes.

    Returns:
        None when there is no payload, else the encoded bytes.

    Raises:
        TypeError: raw body that is not bytes-like or str
        ValueError: JSON body with a circular reference
    """
    body = response.body
    if body is None:
        return None
    if response.is_raw:
        if isinstance(body, str):
            return body.encode("utf-8")
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body)
        raise TypeError(f"Raw response body must be bytes or str, got {type(body).__name__}")
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body, separators=(",", ":"), default=str).encode("utf-8")


def error_response(status_code: int, label: str, message: str) -> HandlerResponse:
    """Build the structured ``{error, message}`` JSON body every fault maps to."""
    return HandlerResponse(
        status_code=status_code,
        body={"error": label, "message": message},
        headers={"Content-Type": "application/json"},
    )


class ResponseWriter(ABC):
    """
    Transport-neutral handle on the outgoing response.

    This is what ``ctx.raw()`` hands back. It behaves like a small
    mutable header bag until the response is committed:

        writer.set_header("X-Request-Id", "abc")
        writer.write_head(200, {"Content-Type": "text/plain"})
        writer.end(b"hello")

    Header names are matched case-insensitively; the most recently used
    spelling is the one written out.

    Subclasses implement ``_commit()``, called exactly once from ``end()``.
    """

    def __init__(self):
        self._headers: Dict[str, Tuple[str, str]] = {}
        self.status_code: int = 200
        self.headers_sent = False
        self.finished = False

    # =========================================================================
    # HEADER BAG
    # =========================================================================

    def set_header(self, name: str, value: Union[str, int]) -> "ResponseWriter":
        self._headers[name.lower()] = (name, str(value))
        return self

    def get_header(self, name: str) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def remove_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    @property
    def headers(self) -> Dict[str, str]:
        """Snapshot of the current headers, in insertion order."""
        return {name: value for name, value in self._headers.values()}

    # =========================================================================
    # COMMIT
    # =========================================================================

    def write_head(self, status_code: int, headers: Optional[Dict[str, str]] = None) -> "ResponseWriter":
        """
        Fix the status code and merge final headers.

        Nothing is sent until ``end()``; responses are length-framed.
        """
        if self.finished:
            raise RuntimeError("Response already finished")
        self.status_code = status_code
        for name, value in (headers or {}).items():
            self.set_header(name, value)
        self.headers_sent = True
        return self

    def end(self, body: Optional[bytes] = None) -> None:
        """Send the response. Calling it again is a no-op."""
        if self.finished:
            return
        if not self.headers_sent:
            self.write_head(self.status_code)
        self.finished = True
        self._commit(self.status_code, self.headers, body or b"")

    @abstractmethod
    def _commit(self, status_code: int, headers: Dict[str, str], body: bytes) -> None:
        """Put status, headers and body on the wire."""


class BufferedResponseWriter(ResponseWriter):
    """
    Writer that keeps the committed response in memory.

    Used when embedding the pipeline without a socket (tests, in-process
    dispatch) and as the reference for what a transport receives.
    """

    def __init__(self):
        super().__init__()
        self.body: bytes = b""
        self.committed_headers: Dict[str, str] = {}

    def _commit(self, status_code: int, headers: Dict[str, str], body: bytes) -> None:
        self.committed_headers = dict(headers)
        self.body = body

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))

    def text(self) -> str:
        return self.body.decode("utf-8")
