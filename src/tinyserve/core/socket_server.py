"""
=============================================================================
TCP LISTENER
=============================================================================

The listening socket and its accept loop. Knows nothing about HTTP: each
accepted socket is handed to a callback, which the server uses to queue
the connection on its worker pool.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        SocketServer                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   bind()    socket() → setsockopt() → bind() → listen()             │
    │               │                                                      │
    │               ▼                                                      │
    │   serve()   while running:                                           │
    │                 accept()  (1s timeout so shutdown is noticed)        │
    │                 on_connection(client_socket, client_address)         │
    │               │                                                      │
    │               ▼                                                      │
    │   shutdown() running = False; the loop exits within a second and    │
    │              the listening socket is closed                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

SOCKET OPTIONS:

    SO_REUSEADDR   restart immediately instead of waiting out TIME_WAIT
    TCP_NODELAY    disable Nagle; responses are written in one sendall()

Port 0 asks the OS for a free port; ``address`` reports the real one.

=============================================================================
"""

from typing import Callable, Optional, Tuple
import logging
import socket
import threading


logger = logging.getLogger(__name__)


ConnectionCallback = Callable[[socket.socket, Tuple[str, int]], None]


class SocketServer:
    """
    Low-level TCP listener.

    Usage:
        server = SocketServer("127.0.0.1", 0)
        server.bind()
        print(server.address)           # ("127.0.0.1", 54321)
        server.serve(on_connection)     # blocks until shutdown()
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 3000, backlog: int = 128):
        self.host = host
        self.port = port
        self.backlog = backlog

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the configured pair before bind()."""
        if self._socket is not None:
            bound = self._socket.getsockname()
            return bound[0], bound[1]
        return self.host, self.port

    def _create_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(1.0)
        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Create, bind and listen.

        Returns:
            The bound address

        Raises:
            OSError: the address is unavailable
        """
        if self._socket is not None:
            return self.address

        sock = self._create_socket()
        try:
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {self.host}:{self.port}: {e}")
            raise

        self._socket = sock
        self._running = True
        self._stopped.clear()
        logger.debug(f"Listening on {self.address[0]}:{self.address[1]}")
        return self.address

    def serve(self, on_connection: ConnectionCallback) -> None:
        """Accept connections until shutdown(). Binds first if needed."""
        if self._socket is None:
            self.bind()

        try:
            while self._running:
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._running:
                        logger.error(f"Accept error: {e}")
                    break

                logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")
                client_socket.settimeout(None)
                try:
                    on_connection(client_socket, client_address)
                except Exception:
                    logger.exception(f"Failed to hand off connection from {client_address[0]}")
                    client_socket.close()
        finally:
            self._cleanup()

    def shutdown(self) -> None:
        """Stop accepting. Safe to call more than once, from any thread."""
        if self._running:
            logger.debug("Shutting down listener...")
        self._running = False

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)

    def close(self) -> None:
        """Release the socket of a listener that was bound but never served."""
        self._cleanup()

    def _cleanup(self) -> None:
        self._running = False
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        self._stopped.set()
        logger.debug("Listener stopped")
