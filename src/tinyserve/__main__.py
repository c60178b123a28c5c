"""
=============================================================================
TINYSERVE CLI ENTRY POINT
=============================================================================

Runs a small demo application so the transports and middleware can be
exercised from a shell or a container.

=============================================================================
USAGE
=============================================================================

    # Defaults (0.0.0.0:3000, plaintext, 100 requests/minute)
    python -m tinyserve

    # HTTPS
    python -m tinyserve --https --cert server.crt --key server.key

    # HTTP/2 with HTTP/1.1 fallback
    tinyserve --http2 --cert server.crt --key server.key

    # Tighter limits, restricted CORS
    tinyserve --rps 30 --allowed https://app.example.com,https://admin.example.com

    # Disable rate limiting, verbose logs
    tinyserve --no-ratelimit --debug

Flags override options, which override the environment, which overrides
tinyserve.config.json (or the file given with --config).

=============================================================================
DEMO ROUTES
=============================================================================

    GET  /health       {"status": "ok"}
    ANY  /echo/*       method, path, params, query, headers and body

=============================================================================
"""

from typing import List, Optional
import argparse
import sys

from . import __version__
from .config import DEFAULT_CONFIG_FILE, ServerConfig
from .http.errors import ConfigError
from .lifecycle import install_signal_handlers
from .logging_setup import configure_logging
from .middleware.logging import AccessLogMiddleware
from .server import TinyServe


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tinyserve",
        description="Minimal HTTP/1.1, HTTPS and HTTP/2 request-processing engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tinyserve                                       # http://0.0.0.0:3000
  tinyserve --port 8080 --host 127.0.0.1          # local only
  tinyserve --https --cert c.pem --key k.pem      # TLS
  tinyserve --http2 --cert c.pem --key k.pem      # HTTP/2 (ALPN h2)
  tinyserve --rps 30 --allowed https://a.example  # limits + CORS
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 3000)")
    parser.add_argument("--host", "-H", default=None, help="Host to bind to (default: 0.0.0.0)")

    # ─────────────────────────────────────────────────────────────────────
    # TRANSPORT ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--https", dest="use_https", action="store_true", default=None, help="Serve HTTPS")
    parser.add_argument(
        "--http2", dest="use_http2", action="store_true", default=None,
        help="Serve HTTP/2 over TLS (falls back to HTTP/1.1)",
    )
    parser.add_argument("--cert", dest="ssl_cert", default=None, help="PEM certificate path")
    parser.add_argument("--key", dest="ssl_key", default=None, help="PEM private key path")
    parser.add_argument("--ca", dest="ssl_ca", default=None, help="PEM CA bundle path")

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST HANDLING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--ratelimit", dest="ratelimit", action=argparse.BooleanOptionalAction, default=None,
        help="Enable or disable per-client rate limiting (default: enabled)",
    )
    parser.add_argument(
        "--rps", type=int, default=None,
        help="Requests per minute allowed per client (default: 100)",
    )
    parser.add_argument(
        "--allowed", default=None,
        help="Comma-separated CORS allow-list (default: *)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # DIAGNOSTICS ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--debug", action="store_true", default=None, help="Debug logging and error detail")
    parser.add_argument(
        "--log-level", "-l", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None,
        help="Logging level (default: INFO, DEBUG with --debug)",
    )
    parser.add_argument(
        "--access-log", choices=["text", "json"], default=None,
        help="Log one line per request in this format",
    )

    # ─────────────────────────────────────────────────────────────────────
    # META ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--config", "-c", default=DEFAULT_CONFIG_FILE,
        help=f"JSON config file (default: {DEFAULT_CONFIG_FILE}, ignored if missing)",
    )
    parser.add_argument("--version", "-v", action="version", version=f"tinyserve {__version__}")

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Layer the CLI flags over file and environment configuration."""
    rate_limit = {"enabled": args.ratelimit, "requests_per_minute": args.rps}
    return ServerConfig.load(
        path=args.config,
        port=args.port,
        host=args.host,
        use_https=args.use_https,
        use_http2=args.use_http2,
        ssl_cert=args.ssl_cert,
        ssl_key=args.ssl_key,
        ssl_ca=args.ssl_ca,
        debug=args.debug,
        log_level=args.log_level,
        log_format=args.access_log,
        rate_limit=rate_limit,
        allowed_domains=args.allowed,
    )


def create_demo_app(config: ServerConfig, access_log: bool = False) -> TinyServe:
    app = TinyServe(config)

    if access_log:
        app.use(AccessLogMiddleware(log_format=config.log_format, skip_paths=["/health"]))

    @app.get("/health")
    def health(ctx):
        return ctx.json({"status": "ok"})

    @app.any("/echo/*")
    def echo(ctx):
        return ctx.json({
            "method": ctx.method,
            "path": ctx.path,
            "params": ctx.params,
            "query": ctx.query,
            "headers": ctx.headers,
            "body": ctx.body.value,
        })

    return app


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    configure_logging("DEBUG" if config.debug and not args.log_level else config.log_level, "text")

    app = create_demo_app(config, access_log=args.access_log is not None)
    try:
        lifecycle = app.start()
    except (ConfigError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    install_signal_handlers(lifecycle)
    try:
        while not lifecycle.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        lifecycle.shutdown(reason="KeyboardInterrupt")
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    sys.exit(main())
