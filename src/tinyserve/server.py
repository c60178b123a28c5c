"""
=============================================================================
TINYSERVE APPLICATION & SERVER ADAPTER
=============================================================================

The orchestrator that ties configuration, routing, rate limiting, the
request pipeline and the transports together.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        TINYSERVE                                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │    TinyServe    │  routes, use(), config   │
    │                        └────────┬────────┘                          │
    │                                 │ create_server()                    │
    │                                 ▼                                    │
    │                        ┌─────────────────┐                          │
    │                        │     Server      │  TLS context, pipeline   │
    │                        └────────┬────────┘                          │
    │                                 │ start()                            │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐        │
    │    │ SocketServer │    │  ThreadPool  │    │ RateLimiter  │        │
    │    │  (accept)    │    │ (connections │    │   (sweep)    │        │
    │    │              │    │  + h2 streams│    │              │        │
    │    └──────────────┘    └──────────────┘    └──────────────┘        │
    │            └────────────────────┴────────────────────┘              │
    │                                 │                                    │
    │                                 ▼                                    │
    │                            Lifecycle  (shutdown, wait)              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TRANSPORT SELECTION
=============================================================================

    use_http2   TLS + ALPN ["h2", "http/1.1"]
                  "h2" negotiated   → H2Protocol
                  otherwise         → HTTP11Protocol (scheme "https")
    use_https   TLS                 → HTTP11Protocol (scheme "https")
    neither     plaintext           → HTTP11Protocol (scheme "http")

The TLS handshake happens on the worker thread, never in the accept loop,
so a slow client cannot stall other connections.

=============================================================================
"""

from typing import Any, Optional, Sequence, Tuple
import logging
import socket
import ssl
import threading

from .config import ServerConfig, Transport
from .core.connection import Connection, HTTP11Protocol, HTTP11ResponseWriter
from .core.http2 import H2Protocol
from .core.socket_server import SocketServer
from .core.thread_pool import ThreadPool
from .core.tls import create_ssl_context
from .http.response import error_response, encode_body
from .http.router import Router
from .lifecycle import Lifecycle
from .middleware.base import MiddlewareFunc
from .middleware.rate_limit import RateLimiter, RateLimitMiddleware
from .pipeline import RequestPipeline


logger = logging.getLogger(__name__)


ALPN_PROTOCOLS = ["h2", "http/1.1"]
HANDSHAKE_TIMEOUT = 10.0
RATE_LIMIT_WINDOW = 60.0


class Server:
    """
    Binds one transport to a RequestPipeline.

    Construction validates the configuration and loads TLS material, so
    every configuration fault surfaces here, before a socket exists.

    Raises:
        ConfigError: invalid configuration, missing or mismatched cert/key
    """

    def __init__(
        self,
        config: ServerConfig,
        router: Router,
        limiter: Optional[RateLimiter] = None,
    ):
        config.validate()
        self.config = config
        self.limiter = limiter

        self.ssl_context: Optional[ssl.SSLContext] = None
        if config.secure:
            alpn = ALPN_PROTOCOLS if config.transport is Transport.HTTP2 else None
            self.ssl_context = create_ssl_context(
                config.ssl_cert,
                config.ssl_key,
                config.ssl_ca or None,
                alpn_protocols=alpn,
            )

        self.pipeline = RequestPipeline(
            router,
            allowed_domains=config.allowed_domains,
            secure=config.secure,
            debug=config.debug,
            max_body_size=config.max_body_size,
        )
        self.listener = SocketServer(config.host, config.port, config.backlog)
        self.pool = ThreadPool(min_workers=config.min_workers, max_workers=config.max_workers)
        self.stop_event = threading.Event()
        self.lifecycle: Optional[Lifecycle] = None

    @property
    def url(self) -> str:
        host, port = self.listener.address
        if ":" in host:
            host = f"[{host}]"
        return f"{self.config.scheme}://{host}:{port}"

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> Lifecycle:
        """
        Bind, start workers, and accept on a background thread.

        Returns:
            The running Lifecycle

        Raises:
            OSError: the address could not be bound
        """
        if self.lifecycle is not None:
            return self.lifecycle

        self.listener.bind()
        self.pool.start()
        if self.limiter is not None:
            self.limiter.start_cleanup()

        lifecycle = Lifecycle(
            listener=self.listener,
            pool=self.pool,
            limiter=self.limiter,
            stop_event=self.stop_event,
            url=self.url,
        )

        accept_thread = threading.Thread(
            target=self._accept_loop,
            args=(lifecycle,),
            name="tinyserve-accept",
            daemon=True,
        )
        lifecycle.attach(accept_thread)
        self.lifecycle = lifecycle
        accept_thread.start()

        logger.info(f"Server running on {self.url} ({self.config.transport.value})")
        if self.config.debug:
            logger.debug(f"Effective configuration: {self.config.to_dict()}")
        return lifecycle

    def _accept_loop(self, lifecycle: Lifecycle) -> None:
        try:
            self.listener.serve(self._on_connection)
        except Exception as e:
            logger.exception("Accept loop failed")
            # shutdown joins the accept thread; run it elsewhere
            threading.Thread(
                target=lifecycle.shutdown,
                kwargs={"error": e},
                daemon=True,
            ).start()

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _on_connection(self, client_socket: socket.socket, client_address: Tuple[str, int]) -> None:
        """Queue an accepted socket on the worker pool."""
        try:
            submitted = self.pool.submit(
                self._serve_connection,
                args=(client_socket, client_address),
                queue_timeout=HANDSHAKE_TIMEOUT,
            )
        except RuntimeError:
            submitted = False

        if not submitted:
            logger.warning(f"Worker pool full, rejecting connection from {client_address[0]}")
            if self.ssl_context is None:
                self._reject(client_socket, client_address)
            client_socket.close()

    def _reject(self, client_socket: socket.socket, client_address: Tuple[str, int]) -> None:
        writer = HTTP11ResponseWriter(Connection(socket=client_socket, address=client_address), keep_alive=False)
        response = error_response(503, "Service Unavailable", "Server overloaded")
        writer.write_head(response.status_code, response.headers)
        writer.end(encode_body(response))

    def _serve_connection(self, client_socket: socket.socket, client_address: Tuple[str, int]) -> None:
        """Worker-thread entry: TLS handshake, protocol selection, serve."""
        scheme = "http"

        if self.ssl_context is not None:
            scheme = "https"
            try:
                client_socket.settimeout(HANDSHAKE_TIMEOUT)
                client_socket = self.ssl_context.wrap_socket(client_socket, server_side=True)
            except (ssl.SSLError, OSError) as e:
                logger.debug(f"TLS handshake with {client_address[0]} failed: {e}")
                client_socket.close()
                return

            if client_socket.selected_alpn_protocol() == "h2":
                H2Protocol(
                    client_socket,
                    client_address,
                    dispatch=self.pipeline.dispatch,
                    submit=self._submit_stream,
                    stop_event=self.stop_event,
                ).serve()
                return

        connection = Connection(
            socket=client_socket,
            address=client_address,
            keep_alive_timeout=self.config.keep_alive_timeout,
        )
        HTTP11Protocol(
            connection,
            self.pipeline.dispatch,
            scheme=scheme,
            stop_event=self.stop_event,
        ).serve()

    def _submit_stream(self, func, args: tuple = ()) -> bool:
        return self.pool.submit(func, args=args, block=False)


class TinyServe:
    """
    The application object.

    Usage:
        app = TinyServe(port=8080)

        @app.get("/users/:id")
        def get_user(ctx):
            return ctx.json({"id": ctx.params["id"]})

        app.serve_forever()

    Args:
        config: Base configuration. Defaults to ServerConfig.load(), which
                reads tinyserve.config.json and the environment.
        **options: Overrides applied on top of ``config``
    """

    def __init__(self, config: Optional[ServerConfig] = None, **options: Any):
        base = config if config is not None else ServerConfig.load()
        self.config = base.merged(**options)

        self.router = Router()
        self.rate_limiter = RateLimiter(
            limit=self.config.rate_limit.requests_per_minute,
            window_seconds=RATE_LIMIT_WINDOW,
        )
        if self.config.rate_limit.enabled:
            self.router.use(RateLimitMiddleware(self.rate_limiter))

        self._server: Optional[Server] = None

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use(self, middleware: MiddlewareFunc) -> "TinyServe":
        self.router.use(middleware)
        return self

    def _chain(self, result):
        # The router returns itself when handlers were given; keep chaining on the app.
        return self if result is self.router else result

    def get(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._chain(self.router.get(path, *handlers, middlewares=middlewares))

    def post(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._chain(self.router.post(path, *handlers, middlewares=middlewares))

    def put(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._chain(self.router.put(path, *handlers, middlewares=middlewares))

    def delete(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._chain(self.router.delete(path, *handlers, middlewares=middlewares))

    def patch(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._chain(self.router.patch(path, *handlers, middlewares=middlewares))

    def options(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._chain(self.router.options(path, *handlers, middlewares=middlewares))

    def any(self, path: str, *handlers, middlewares: Sequence[MiddlewareFunc] = ()):
        return self._chain(self.router.any(path, *handlers, middlewares=middlewares))

    # =========================================================================
    # SERVING
    # =========================================================================

    def create_server(self) -> Server:
        """
        Build the transport without opening a socket.

        Raises:
            ConfigError: see Server
        """
        if self._server is None:
            limiter = self.rate_limiter if self.config.rate_limit.enabled else None
            self._server = Server(self.config, self.router, limiter)
        return self._server

    def start(self) -> Lifecycle:
        """Start serving in the background and return the Lifecycle."""
        return self.create_server().start()

    def serve_forever(self) -> None:
        """Start and block until the server is shut down."""
        lifecycle = self.start()
        try:
            while not lifecycle.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            lifecycle.shutdown(reason="KeyboardInterrupt")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. TinyServe: routes, middlewares, rate limiting, configuration
# 2. Server: validated config + TLS context → listener, pool, pipeline
# 3. Per connection: handshake, ALPN → HTTP/1.1 or HTTP/2 protocol
# 4. Lifecycle: returned by start(), owns shutdown
#
