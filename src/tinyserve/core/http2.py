"""
=============================================================================
HTTP/2 CONNECTIONS
=============================================================================

HTTP/2 over TLS, negotiated with ALPN "h2". Framing, HPACK and the stream
state machine come from the ``h2`` library; this module moves bytes
between it and the socket and hands each stream to the request pipeline.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       ONE HTTP/2 CONNECTION                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   I/O thread (owns the socket)           pool workers               │
    │   ────────────────────────────           ────────────               │
    │   select(socket, wakeup)                                            │
    │     recv → h2.receive_data()                                        │
    │       RequestReceived ──── submit ──────► _run_stream(stream 1)     │
    │       DataReceived    ──► stream queue ──►   pipeline.dispatch()    │
    │       StreamEnded     ──► stream queue       writer.end()           │
    │       WindowUpdated   ──► notify ───────►      send_headers/data    │
    │     data_to_send() → sendall  ◄── wakeup ──    (under the lock)     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Rules:

- Only the I/O thread touches the socket. Workers mutate the h2 state
  under ``_lock`` and poke the wakeup socket so the I/O thread flushes.
- Streams are dispatched as soon as their HEADERS arrive; the body is
  streamed to the pipeline through a queue, so the 1 MiB limit applies
  while the upload is still in flight.
- Response DATA respects the peer's flow-control window and maximum
  frame size; a worker blocked on a closed window waits for
  WINDOW_UPDATE.
- On shutdown, in-flight streams finish, new streams are refused, then
  GOAWAY is sent.

=============================================================================
"""

from email.utils import formatdate
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import logging
import queue
import select
import socket
import ssl
import threading
import time

import h2.config
import h2.connection
import h2.errors
import h2.events
import h2.exceptions

from ..http.errors import BadRequest
from ..http.request import Request
from ..http.response import ResponseWriter
from ..http.status_codes import allows_body
from .connection import SERVER_NAME


logger = logging.getLogger(__name__)


POLL_INTERVAL = 1.0

# Headers that are meaningless (and illegal) in HTTP/2 (RFC 7540 §8.1.2.2)
CONNECTION_SPECIFIC_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "upgrade",
})

_END = object()
_RESET = object()


class H2Stream:
    """Request-side state of one stream: the body chunk queue."""

    def __init__(self, stream_id: int, body_timeout: float = 30.0):
        self.stream_id = stream_id
        self.body_timeout = body_timeout
        self.ended = False
        self.was_reset = False
        self._chunks: "queue.Queue" = queue.Queue()

    def feed(self, data: bytes) -> None:
        self._chunks.put(data)

    def end(self) -> None:
        if not self.ended:
            self.ended = True
            self._chunks.put(_END)

    def reset(self) -> None:
        if not self.was_reset:
            self.was_reset = True
            self._chunks.put(_RESET)

    def chunks(self) -> Iterator[bytes]:
        """Body chunks until END_STREAM. Raises BadRequest on reset or stall."""
        while True:
            try:
                item = self._chunks.get(timeout=self.body_timeout)
            except queue.Empty:
                raise BadRequest("Timed out reading request body")
            if item is _END:
                return
            if item is _RESET:
                raise BadRequest("Stream reset by client")
            yield item


class H2ResponseWriter(ResponseWriter):
    """Sends one stream's response as HEADERS (+ DATA)."""

    def __init__(self, protocol: "H2Protocol", stream_id: int):
        super().__init__()
        self.protocol = protocol
        self.stream_id = stream_id
        self.sent = False

    def _commit(self, status_code: int, headers: Dict[str, str], body: bytes) -> None:
        if not allows_body(status_code):
            body = b""

        out: List[Tuple[str, str]] = [(":status", str(status_code))]
        seen = set()
        for name, value in headers.items():
            lower = name.lower()
            if lower in CONNECTION_SPECIFIC_HEADERS or lower == "content-length":
                continue
            seen.add(lower)
            out.append((lower, value))
        if allows_body(status_code):
            out.append(("content-length", str(len(body))))
        if "date" not in seen:
            out.append(("date", formatdate(usegmt=True)))
        if "server" not in seen:
            out.append(("server", SERVER_NAME))

        self.sent = self.protocol.send_response(self.stream_id, out, body)


class H2Protocol:
    """
    Serves one HTTP/2 connection.

    Args:
        sock: TLS socket that negotiated "h2"
        address: Peer (ip, port)
        dispatch: ``pipeline.dispatch``
        submit: Schedules ``func(*args)`` on the worker pool; returns
                False (or raises RuntimeError) when it cannot
        stop_event: Set when the server is shutting down
        idle_timeout: Seconds without streams before the connection closes
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Tuple[str, int],
        dispatch: Callable[[Request, ResponseWriter], None],
        submit: Callable[..., bool],
        stop_event: Optional[threading.Event] = None,
        idle_timeout: float = 60.0,
        body_timeout: float = 30.0,
    ):
        self.sock = sock
        self.address = address
        self.dispatch = dispatch
        self.submit = submit
        self.stop_event = stop_event or threading.Event()
        self.idle_timeout = idle_timeout
        self.body_timeout = body_timeout

        config = h2.config.H2Configuration(client_side=False, header_encoding="utf-8")
        self.conn = h2.connection.H2Connection(config=config)

        self._lock = threading.Lock()
        self._window_open = threading.Condition(self._lock)
        self._streams: Dict[int, H2Stream] = {}
        self._closed = False
        self._last_activity = time.time()

        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)

    # =========================================================================
    # I/O LOOP
    # =========================================================================

    def serve(self) -> None:
        self.sock.setblocking(False)
        try:
            with self._lock:
                self.conn.initiate_connection()
            self._flush()

            while not self._closed:
                if self.stop_event.is_set() and not self._streams:
                    self._goaway()
                    break

                readable, _, _ = select.select([self.sock, self._wake_r], [], [], POLL_INTERVAL)

                if self._wake_r in readable:
                    self._drain_wakeups()

                if self.sock in readable:
                    if not self._read_socket():
                        break

                self._flush()

                if not self._streams and time.time() - self._last_activity > self.idle_timeout:
                    logger.debug(f"HTTP/2 connection from {self.address[0]} idle, closing")
                    self._goaway()
                    break
        except OSError as e:
            logger.debug(f"HTTP/2 connection from {self.address[0]} failed: {e}")
        finally:
            self._teardown()

    def _read_socket(self) -> bool:
        """Feed everything readable to h2. False when the peer is gone."""
        while True:
            try:
                data = self.sock.recv(65536)
            except (ssl.SSLWantReadError, ssl.SSLWantWriteError, BlockingIOError):
                return True
            if not data:
                return False

            self._last_activity = time.time()
            self._receive(data)
            if self._closed:
                return False

            pending = getattr(self.sock, "pending", None)
            if pending is None or not pending():
                return True

    def _receive(self, data: bytes) -> None:
        with self._window_open:
            try:
                events = self.conn.receive_data(data)
            except h2.exceptions.ProtocolError as e:
                logger.debug(f"HTTP/2 protocol error from {self.address[0]}: {e}")
                try:
                    self.conn.close_connection(error_code=h2.errors.ErrorCodes.PROTOCOL_ERROR)
                except h2.exceptions.ProtocolError:
                    pass
                self._closed = True
                events = []
            self._window_open.notify_all()

        for event in events:
            self._handle_event(event)

    def _handle_event(self, event) -> None:
        if isinstance(event, h2.events.RequestReceived):
            self._on_request(event)
        elif isinstance(event, h2.events.DataReceived):
            stream = self._streams.get(event.stream_id)
            if stream is not None:
                stream.feed(event.data)
            with self._lock:
                try:
                    self.conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
                except h2.exceptions.ProtocolError:
                    pass
        elif isinstance(event, h2.events.StreamEnded):
            stream = self._streams.get(event.stream_id)
            if stream is not None:
                stream.end()
        elif isinstance(event, h2.events.StreamReset):
            stream = self._streams.get(event.stream_id)
            if stream is not None:
                stream.reset()
        elif isinstance(event, h2.events.ConnectionTerminated):
            logger.debug(f"HTTP/2 peer {self.address[0]} sent GOAWAY ({event.error_code})")
            self._closed = True

    def _on_request(self, event: "h2.events.RequestReceived") -> None:
        stream_id = event.stream_id
        pseudo: Dict[str, str] = {}
        headers: Dict[str, str] = {}

        for name, value in event.headers:
            if name.startswith(":"):
                pseudo[name] = value
            elif name in headers:
                separator = "; " if name == "cookie" else ", "
                headers[name] += separator + value
            else:
                headers[name] = value

        if "host" not in headers and ":authority" in pseudo:
            headers["host"] = pseudo[":authority"]

        stream = H2Stream(stream_id, body_timeout=self.body_timeout)
        self._streams[stream_id] = stream
        if event.stream_ended is not None:
            stream.end()

        request = Request(
            method=pseudo.get(":method", "GET"),
            target=pseudo.get(":path", "/"),
            version="HTTP/2",
            headers=headers,
            client_address=self.address,
            scheme="https",
            body_stream=stream.chunks(),
        )

        accepted = False
        if not self.stop_event.is_set():
            try:
                accepted = self.submit(self._run_stream, (stream, request))
            except RuntimeError:
                accepted = False

        if not accepted:
            logger.debug(f"Refusing HTTP/2 stream {stream_id}")
            self._streams.pop(stream_id, None)
            self._reset_stream(stream_id, h2.errors.ErrorCodes.REFUSED_STREAM)

    # =========================================================================
    # STREAMS (worker threads)
    # =========================================================================

    def _run_stream(self, stream: H2Stream, request: Request) -> None:
        writer = H2ResponseWriter(self, stream.stream_id)
        try:
            self.dispatch(request, writer)
            if not writer.finished:
                writer.end()
        finally:
            if not stream.ended and not stream.was_reset:
                # Response sent before the upload finished; stop the upload
                self._reset_stream(stream.stream_id, h2.errors.ErrorCodes.NO_ERROR)
            self._streams.pop(stream.stream_id, None)
            self._last_activity = time.time()
            self._wake()

    def send_response(self, stream_id: int, headers: List[Tuple[str, str]], body: bytes) -> bool:
        """
        Queue HEADERS and DATA frames for a stream, honouring flow control.

        Returns:
            False if the stream or connection went away first
        """
        stream = self._streams.get(stream_id)
        if stream is None or stream.was_reset:
            return False

        try:
            with self._lock:
                self.conn.send_headers(stream_id, headers, end_stream=not body)
            self._wake()

            offset = 0
            while offset < len(body):
                with self._window_open:
                    while True:
                        if stream.was_reset or self._closed:
                            return False
                        window = self.conn.local_flow_control_window(stream_id)
                        if window > 0:
                            break
                        self._window_open.wait(POLL_INTERVAL)

                    size = min(window, self.conn.max_outbound_frame_size, len(body) - offset)
                    chunk = body[offset:offset + size]
                    offset += size
                    self.conn.send_data(stream_id, chunk, end_stream=offset >= len(body))
                self._wake()
        except h2.exceptions.ProtocolError as e:
            logger.debug(f"HTTP/2 stream {stream_id} send failed: {e}")
            return False

        return True

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _reset_stream(self, stream_id: int, error_code) -> None:
        with self._lock:
            try:
                self.conn.reset_stream(stream_id, error_code=error_code)
            except h2.exceptions.ProtocolError:
                pass
        self._wake()

    def _goaway(self) -> None:
        with self._lock:
            try:
                self.conn.close_connection()
            except h2.exceptions.ProtocolError:
                pass
        self._flush()

    def _flush(self) -> None:
        with self._lock:
            data = self.conn.data_to_send()
        if data:
            self._send_all(data)

    def _send_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            try:
                sent = self.sock.send(view)
                view = view[sent:]
            except ssl.SSLWantReadError:
                select.select([self.sock], [], [], POLL_INTERVAL)
            except (ssl.SSLWantWriteError, BlockingIOError):
                select.select([], [self.sock], [], POLL_INTERVAL)

    def _wake(self) -> None:
        try:
            self._wake_w.send(b"\0")
        except OSError:
            pass

    def _drain_wakeups(self) -> None:
        try:
            while self._wake_r.recv(4096):
                pass
        except OSError:
            pass

    def _teardown(self) -> None:
        with self._window_open:
            self._closed = True
            self._window_open.notify_all()
        for stream in list(self._streams.values()):
            stream.reset()
        for sock in (self._wake_r, self._wake_w):
            try:
                sock.close()
            except OSError:
                pass
        try:
            self.sock.close()
        except OSError:
            pass
