"""
=============================================================================
INBOUND REQUESTS
=============================================================================

``Request`` is the transport-neutral view of one inbound request. HTTP/1.1
connections build it from the request head; HTTP/2 streams build it from
pseudo-headers. Either way the pipeline sees the same object.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  WHERE A Request COMES FROM                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  HTTP/1.1                               HTTP/2                       │
    │  "GET /users/42?x=1 HTTP/1.1\r\n"       :method  GET                 │
    │  "Host: ...\r\n\r\n"                    :path    /users/42?x=1       │
    │        │                                :scheme  https               │
    │        ▼                                      │                      │
    │  RequestParser.parse_head()                   │                      │
    │        │                                      │                      │
    │        └──────────────► Request ◄─────────────┘                      │
    │                  method, target, headers,                            │
    │                  client_address, scheme,                             │
    │                  body_stream (lazy chunks)                           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The body is NOT read here. ``body_stream`` yields chunks straight from the
socket (or the HTTP/2 stream queue) so the pipeline can enforce its size
limit while reading.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple
from urllib.parse import urlsplit
import re


class HTTPParseError(Exception):
    """
    Raised when a request head cannot be parsed.

    Carries the status code the connection answers with before closing:

        400 Bad Request                  - malformed syntax
        431 Request Header Fields Too Large
        505 HTTP Version Not Supported
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class Request:
    """
    One inbound request.

    Attributes:
        method: Upper-case method ("GET", "POST", ...)
        target: Request target as sent ("/users/42?x=1")
        version: "HTTP/1.0", "HTTP/1.1" or "HTTP/2"
        headers: Header name → value, names lower-cased
        client_address: (ip, port) of the peer
        scheme: "http" or "https"
        body_stream: Iterable of raw body chunks, consumed once
        body: Parsed body, filled in by the pipeline
    """

    method: str
    target: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    client_address: Tuple[str, int] = ("", 0)
    scheme: str = "http"
    body_stream: Iterable[bytes] = field(default=(), repr=False)
    body: Any = None

    _consumed: bool = field(default=False, repr=False)

    @property
    def path(self) -> str:
        return urlsplit(self.target).path or "/"

    @property
    def query_string(self) -> str:
        return urlsplit(self.target).query

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    @property
    def content_length(self) -> Optional[int]:
        """Declared Content-Length, or None when absent or not a number."""
        try:
            return int(self.headers["content-length"])
        except (KeyError, ValueError):
            return None

    @property
    def remote_addr(self) -> str:
        return self.client_address[0] if self.client_address else ""

    @property
    def secure(self) -> bool:
        return self.scheme == "https"

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection unless told "close";
        HTTP/1.0 closes it unless told "keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.0":
            return connection == "keep-alive"
        return connection != "close"

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def iter_body(self) -> Iterator[bytes]:
        """
        Yield raw body chunks.

        The stream is backed by the socket, so it can only be read once.
        """
        if self._consumed:
            raise RuntimeError("Request body already consumed")
        self._consumed = True
        for chunk in self.body_stream:
            yield chunk


class RequestParser:
    """
    Parses an HTTP/1.x request head (request line + headers).

    The connection finds the ``\\r\\n\\r\\n`` terminator and hands over
    everything before it; the body stays on the socket.
    """

    VALID_METHODS = {
        "GET",
        "POST",
        "PUT",
        "DELETE",
        "PATCH",
        "HEAD",
        "OPTIONS",
        "TRACE",
        "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_head_size: int = 64 * 1024):
        self.max_head_size = max_head_size

    def parse_head(
        self,
        head: bytes,
        client_address: Tuple[str, int] = ("", 0),
        scheme: str = "http",
    ) -> Request:
        """
        Parse a request head.

        Args:
            head: Bytes up to (not including) the blank line
            client_address: Peer (ip, port)
            scheme: "https" when the socket is TLS-wrapped

        Returns:
            Request with an empty body stream

        Raises:
            HTTPParseError: malformed request line, bad version, oversize head
        """
        if len(head) > self.max_head_size:
            raise HTTPParseError(
                f"Request head too large: {len(head)} bytes",
                status_code=431,
            )

        text = head.decode("latin-1")
        lines = text.split("\r\n")
        if not lines or not lines[0]:
            raise HTTPParseError("Empty request")

        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        return Request(
            method=method,
            target=target,
            version=version,
            headers=headers,
            client_address=client_address,
            scheme=scheme,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        return method, target, version

    def _parse_headers(self, lines: Iterable[str]) -> Dict[str, str]:
        """
        Header lines → dict with lower-cased names.

        Repeated headers are joined with ", ". Obsolete line folding
        (continuation lines starting with whitespace) is unfolded.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers
