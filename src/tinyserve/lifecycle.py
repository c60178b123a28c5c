"""
=============================================================================
SERVER LIFECYCLE
=============================================================================

A running server is represented by one Lifecycle object. It owns every
resource started by ``TinyServe.start()`` and knows how to release them in
the right order:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     Lifecycle.shutdown()                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. stop_event.set()         connections finish their current      │
    │                               request and close; HTTP/2 sends GOAWAY│
    │   2. listener.shutdown()      stop accepting; socket closed         │
    │   3. pool.shutdown(wait)      in-flight requests complete           │
    │   4. limiter.stop_cleanup()   sweep thread exits                    │
    │   5. stopped.set()            wait() returns                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

shutdown() is idempotent: the first call does the work, later calls
return immediately. Signals are only wired by install_signal_handlers(),
which the CLI calls; embedding applications keep control of their own
signal handling.

=============================================================================
"""

from typing import Optional
import logging
import signal
import threading

from .core.socket_server import SocketServer
from .core.thread_pool import ThreadPool
from .middleware.rate_limit import RateLimiter


logger = logging.getLogger(__name__)


class Lifecycle:
    """
    Handle on a running server.

    Attributes:
        listener: The bound SocketServer
        pool: Worker pool running connections and HTTP/2 streams
        limiter: RateLimiter whose sweep thread is running, if any
        stop_event: Set once shutdown begins; transports poll it
        url: Base URL the server answers on
    """

    def __init__(
        self,
        listener: SocketServer,
        pool: ThreadPool,
        limiter: Optional[RateLimiter] = None,
        stop_event: Optional[threading.Event] = None,
        url: str = "",
        drain_timeout: float = 30.0,
    ):
        self.listener = listener
        self.pool = pool
        self.limiter = limiter
        self.stop_event = stop_event or threading.Event()
        self.url = url
        self.drain_timeout = drain_timeout

        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._accept_thread: Optional[threading.Thread] = None

    @property
    def address(self):
        return self.listener.address

    @property
    def running(self) -> bool:
        return not self.stop_event.is_set()

    def attach(self, accept_thread: threading.Thread) -> None:
        self._accept_thread = accept_thread

    def shutdown(self, reason: Optional[str] = None, error: Optional[BaseException] = None) -> bool:
        """
        Stop the server.

        Args:
            reason: Why (e.g. "SIGTERM"); logged
            error: Fatal error that caused the shutdown; logged at ERROR

        Returns:
            True if this call performed the shutdown, False if it had
            already happened
        """
        with self._lock:
            if self.stop_event.is_set():
                return False
            self.stop_event.set()

        if error is not None:
            logger.error(f"Shutting down after error: {error}")
        else:
            logger.info(f"Shutting down server{f' ({reason})' if reason else ''}...")

        try:
            self.listener.shutdown()
            if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
                self._accept_thread.join(timeout=5.0)
            if not self.listener.wait_stopped(0):
                # accept loop never ran
                self.listener.close()

            self.pool.shutdown(wait=True, timeout=self.drain_timeout)

            if self.limiter is not None:
                self.limiter.stop_cleanup()
        finally:
            self._stopped.set()

        logger.info("Server stopped")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown() has completed."""
        return self._stopped.wait(timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(error=exc_val if exc_type and not issubclass(exc_type, KeyboardInterrupt) else None)


def install_signal_handlers(lifecycle: Lifecycle) -> None:
    """
    Shut ``lifecycle`` down on SIGINT/SIGTERM.

    Must be called from the main thread. The handler only starts the
    shutdown on a helper thread so the signal frame returns at once.
    """

    def handle(signum, frame):
        name = signal.Signals(signum).name
        logger.info(f"Received {name}")
        threading.Thread(
            target=lifecycle.shutdown,
            kwargs={"reason": name},
            name="tinyserve-shutdown",
            daemon=True,
        ).start()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)
