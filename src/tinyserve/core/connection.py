"""
=============================================================================
HTTP/1.1 CONNECTIONS
=============================================================================

One accepted socket (plain or TLS-wrapped) serving one or more requests.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

recv() returns whatever the kernel has: half a request line, two pipelined
requests, a header block plus part of the body. Everything here therefore
works from a per-connection buffer:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       CONNECTION BUFFER                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   _buffer: b"POST /users HTTP/1.1\r\n...\r\n\r\n{\"name\": \"a"     │
    │             └──────────── head ───────────────┘ └─ body start ─┘    │
    │                                                                      │
    │   read_head()   → bytes up to \r\n\r\n (consumed from buffer)        │
    │   BodyReader    → body chunks: buffer first, then the socket         │
    │                   Content-Length: exactly N bytes                    │
    │                   Transfer-Encoding: chunked: size-prefixed chunks   │
    │   leftovers     → stay in the buffer for the next request            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The body is NOT read before dispatch. The pipeline pulls chunks through
the BodyReader and stops as soon as its size limit is crossed, so an
oversized upload is never buffered in full.

=============================================================================
KEEP-ALIVE
=============================================================================

    NEW ─► READING ─► PROCESSING ─► WRITING ─┬─► KEEP_ALIVE ─► READING ...
                                              └─► CLOSING ─► CLOSED

The connection is kept when the client asked for it (HTTP/1.1 default),
the request body was read completely, the response went out, and the
server is not shutting down. Otherwise it closes after the response.

=============================================================================
"""

from dataclasses import dataclass, field
from email.utils import formatdate
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple
import logging
import socket
import threading
import time
import uuid

from ..http.errors import BadRequest
from ..http.request import HTTPParseError, RequestParser
from ..http.response import ResponseWriter, encode_body, error_response
from ..http.status_codes import allows_body, reason_phrase


logger = logging.getLogger(__name__)


SERVER_NAME = "tinyserve"

# Poll interval while idle, so shutdown is noticed between requests
POLL_INTERVAL = 1.0


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A client socket plus its receive buffer.

    Attributes:
        socket: The client socket (plain or ssl.SSLSocket)
        address: Client (ip, port)
        id: Short id for log correlation
        timeout: Seconds allowed for the first request head
        keep_alive_timeout: Seconds a kept-alive connection may sit idle
        body_timeout: Seconds allowed between body reads
        max_head_size: Largest accepted request head in bytes
    """

    socket: socket.socket
    address: Tuple[str, int]
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 65536
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    body_timeout: float = 30.0
    max_head_size: int = 64 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    @property
    def client_ip(self) -> str:
        return self.address[0] if self.address else ""

    # =========================================================================
    # READING
    # =========================================================================

    def read_head(self, stop_event: Optional[threading.Event] = None) -> Optional[bytes]:
        """
        Read up to the blank line ending a request head.

        Returns:
            Head bytes (without the terminator), or None when the client
            closed the connection, stayed idle too long, or the server is
            stopping while the connection is idle.

        Raises:
            HTTPParseError: head too large (431) or stalled mid-head (408)
        """
        self.state = ConnectionState.READING
        timeout = self.keep_alive_timeout if self.requests_handled else self.timeout
        deadline = time.time() + timeout
        self.socket.settimeout(POLL_INTERVAL)

        while True:
            # Stray CRLFs between pipelined requests are allowed (RFC 7230 §3.5)
            self._buffer = self._buffer.lstrip(b"\r\n")

            header_end = self._buffer.find(b"\r\n\r\n")
            if header_end != -1:
                head = self._buffer[:header_end]
                self._buffer = self._buffer[header_end + 4:]
                return head

            if len(self._buffer) > self.max_head_size:
                raise HTTPParseError(
                    f"Request head too large: {len(self._buffer)} bytes",
                    status_code=431,
                )

            if stop_event is not None and stop_event.is_set() and not self._buffer:
                return None

            try:
                chunk = self.socket.recv(self.buffer_size)
            except socket.timeout:
                if time.time() < deadline:
                    continue
                if self._buffer:
                    raise HTTPParseError("Timed out reading request head", status_code=408)
                logger.debug(f"[{self.id}] Idle timeout")
                return None
            except OSError:
                return None

            if not chunk:
                return None

            self._buffer += chunk
            self.last_activity = time.time()

    def read_some(self, max_bytes: int) -> bytes:
        """Body bytes: buffered data first, then one recv(). b"" on EOF."""
        if self._buffer:
            data = self._buffer[:max_bytes]
            self._buffer = self._buffer[max_bytes:]
            return data

        self.socket.settimeout(self.body_timeout)
        try:
            data = self.socket.recv(min(max_bytes, self.buffer_size))
        except socket.timeout:
            raise BadRequest("Timed out reading request body")
        except OSError:
            return b""
        self.last_activity = time.time()
        return data

    def read_line(self, limit: int = 8192) -> bytes:
        """Read one CRLF-terminated line (terminator stripped)."""
        while True:
            line_end = self._buffer.find(b"\r\n")
            if line_end != -1:
                line = self._buffer[:line_end]
                self._buffer = self._buffer[line_end + 2:]
                return line
            if len(self._buffer) > limit:
                raise BadRequest("Chunk header line too long")

            self.socket.settimeout(self.body_timeout)
            try:
                chunk = self.socket.recv(self.buffer_size)
            except socket.timeout:
                raise BadRequest("Timed out reading request body")
            except OSError:
                chunk = b""
            if not chunk:
                raise BadRequest("Incomplete request body")
            self._buffer += chunk

    # =========================================================================
    # WRITING / CLOSING
    # =========================================================================

    def send_all(self, data: bytes) -> bool:
        """sendall() with connection errors turned into False."""
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def close(self):
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class BodyReader:
    """
    Iterates over one request's body straight off the connection.

    Framing comes from the request headers:

        Transfer-Encoding: chunked   → chunked decoding (wins over length)
        Content-Length: N            → exactly N bytes
        neither                      → no body

    ``complete`` turns True once the framing has been fully consumed; the
    connection is only reused when it is.
    """

    def __init__(self, connection: Connection, headers: Dict[str, str], chunk_size: int = 65536):
        self.connection = connection
        self.chunk_size = chunk_size
        self.expect_continue = headers.get("expect", "").lower() == "100-continue"

        self.chunked = "chunked" in headers.get("transfer-encoding", "").lower()
        self.length = 0
        if not self.chunked and "content-length" in headers:
            try:
                self.length = int(headers["content-length"])
            except ValueError:
                raise HTTPParseError("Invalid Content-Length header")
            if self.length < 0:
                raise HTTPParseError("Invalid Content-Length header")

        self.complete = not self.chunked and self.length == 0
        self._started = False

    def __iter__(self) -> Iterator[bytes]:
        if self._started:
            raise RuntimeError("Request body already consumed")
        self._started = True

        if self.complete:
            return

        if self.expect_continue:
            self.connection.send_all(b"HTTP/1.1 100 Continue\r\n\r\n")

        if self.chunked:
            yield from self._iter_chunked()
        else:
            yield from self._iter_fixed()

    def _iter_fixed(self) -> Iterator[bytes]:
        remaining = self.length
        while remaining > 0:
            data = self.connection.read_some(min(remaining, self.chunk_size))
            if not data:
                raise BadRequest("Incomplete request body")
            remaining -= len(data)
            yield data
        self.complete = True

    def _iter_chunked(self) -> Iterator[bytes]:
        while True:
            size_line = self.connection.read_line()
            try:
                size = int(size_line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                raise BadRequest("Invalid chunk size")

            if size == 0:
                # Trailer section ends with an empty line
                while self.connection.read_line():
                    pass
                self.complete = True
                return

            remaining = size
            while remaining > 0:
                data = self.connection.read_some(min(remaining, self.chunk_size))
                if not data:
                    raise BadRequest("Incomplete request body")
                remaining -= len(data)
                yield data

            if self.connection.read_line() != b"":
                raise BadRequest("Malformed chunk terminator")


class HTTP11ResponseWriter(ResponseWriter):
    """
    Serializes a response as a Content-Length framed HTTP/1.1 message.

        HTTP/1.1 200 OK\\r\\n
        <headers set on the writer>\\r\\n
        Content-Length: 12\\r\\n
        Date: ...\\r\\n
        Server: tinyserve\\r\\n
        Connection: keep-alive\\r\\n
        \\r\\n
        <body>
    """

    def __init__(
        self,
        connection: Connection,
        keep_alive: bool = True,
        head_only: bool = False,
        body_reader: Optional[BodyReader] = None,
    ):
        super().__init__()
        self.connection = connection
        self.keep_alive = keep_alive
        self.head_only = head_only
        self.body_reader = body_reader
        self.sent = False

    def _commit(self, status_code: int, headers: Dict[str, str], body: bytes) -> None:
        if self.body_reader is not None and not self.body_reader.complete:
            self.keep_alive = False
        if headers.get("Connection", headers.get("connection", "")).lower() == "close":
            self.keep_alive = False

        out = {k: v for k, v in headers.items() if k.lower() not in ("content-length", "connection")}
        if allows_body(status_code):
            out["Content-Length"] = str(len(body))
        else:
            body = b""
        out.setdefault("Date", formatdate(usegmt=True))
        out.setdefault("Server", SERVER_NAME)
        out["Connection"] = "keep-alive" if self.keep_alive else "close"

        lines = [f"HTTP/1.1 {status_code} {reason_phrase(status_code)}"]
        lines.extend(f"{name}: {value}" for name, value in out.items())
        head = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1", errors="replace")

        payload = head if self.head_only else head + body
        self.sent = self.connection.send_all(payload)
        if not self.sent:
            self.keep_alive = False


class HTTP11Protocol:
    """
    Serves HTTP/1.x requests on one connection until it should close.

    Args:
        connection: The accepted connection
        dispatch: ``pipeline.dispatch``; called once per request
        scheme: "https" for TLS-wrapped sockets
        stop_event: Set when the server is shutting down
        max_requests: Requests served before the connection is closed
    """

    def __init__(
        self,
        connection: Connection,
        dispatch,
        scheme: str = "http",
        stop_event: Optional[threading.Event] = None,
        parser: Optional[RequestParser] = None,
        max_requests: int = 1000,
    ):
        self.connection = connection
        self.dispatch = dispatch
        self.scheme = scheme
        self.stop_event = stop_event or threading.Event()
        self.parser = parser or RequestParser(max_head_size=connection.max_head_size)
        self.max_requests = max_requests

    def serve(self) -> None:
        conn = self.connection
        with conn:
            while conn.requests_handled < self.max_requests:
                try:
                    head = conn.read_head(self.stop_event)
                    if head is None:
                        return
                    request = self.parser.parse_head(head, conn.address, self.scheme)
                    body_reader = BodyReader(conn, request.headers)
                except HTTPParseError as e:
                    logger.debug(f"[{conn.id}] Bad request head: {e.message}")
                    self._send_error(e.status_code, e.message)
                    return

                request.body_stream = body_reader

                keep_alive = request.is_keep_alive and not self.stop_event.is_set()
                writer = HTTP11ResponseWriter(
                    conn,
                    keep_alive=keep_alive and conn.requests_handled + 1 < self.max_requests,
                    head_only=request.method == "HEAD",
                    body_reader=body_reader,
                )

                conn.state = ConnectionState.PROCESSING
                self.dispatch(request, writer)
                if not writer.finished:
                    writer.end()
                conn.requests_handled += 1

                if not writer.keep_alive:
                    return
                conn.state = ConnectionState.KEEP_ALIVE

    def _send_error(self, status_code: int, message: str) -> None:
        writer = HTTP11ResponseWriter(self.connection, keep_alive=False)
        response = error_response(status_code, reason_phrase(status_code), message)
        writer.write_head(response.status_code, response.headers)
        writer.end(encode_body(response))
