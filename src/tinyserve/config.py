"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Configuration is a plain dataclass assembled from up to five layers:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                   CONFIGURATION PRECEDENCE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   highest   CLI flags             --port 8443 --https               │
    │      │      explicit options      TinyServe(port=8443)              │
    │      │      environment           PORT=8443 TINYSERVE_HTTPS=true    │
    │      │      config file           tinyserve.config.json             │
    │   lowest    dataclass defaults    port=3000                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The config file is JSON. Keys may be snake_case or camelCase:

    {
      "port": 8443,
      "useHttps": true,
      "sslCert": "certs/server.crt",
      "sslKey": "certs/server.key",
      "rateLimit": {"enabled": true, "requestsPerMinute": 300},
      "allowedDomains": ["https://app.example.com"]
    }

=============================================================================
"""

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
import json
import logging
import os

from .http.body import MAX_BODY_SIZE
from .http.errors import ConfigError


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_FILE = "tinyserve.config.json"
DEFAULT_REQUESTS_PER_MINUTE = 100

_TRUTHY = {"true", "1", "yes", "on"}


class Transport(Enum):
    HTTP = "http"
    HTTPS = "https"
    HTTP2 = "http2"


@dataclass
class RateLimitConfig:
    enabled: bool = True
    """Install the rate-limit middleware."""

    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE
    """Requests each client may make per 60-second window. 0 means the default."""

    def __post_init__(self):
        if not self.requests_per_minute:
            self.requests_per_minute = DEFAULT_REQUESTS_PER_MINUTE


@dataclass
class ServerConfig:
    """
    Everything the server reads at startup. Read-only once the server is
    built.

    Usage:
        config = ServerConfig.load()                      # file + env
        config = ServerConfig(port=8080, debug=True)      # explicit
        config = config.merged(port=9090)                 # copy with overrides
    """

    # ═════════════════════════════════════════════════════════════════════
    # NETWORK
    # ═════════════════════════════════════════════════════════════════════

    host: str = "0.0.0.0"
    """Interface to bind. "0.0.0.0" for all IPv4 interfaces."""

    port: int = 3000
    """TCP port. 0 lets the OS pick a free one."""

    backlog: int = 128
    """Listen queue length."""

    # ═════════════════════════════════════════════════════════════════════
    # TRANSPORT
    # ═════════════════════════════════════════════════════════════════════

    use_https: bool = False
    """Serve HTTP/1.1 over TLS."""

    use_http2: bool = False
    """Serve HTTP/2 over TLS (ALPN "h2", HTTP/1.1 fallback). Wins over use_https."""

    ssl_cert: str = ""
    """PEM certificate path. Required for HTTPS and HTTP/2."""

    ssl_key: str = ""
    """PEM private key path. Required for HTTPS and HTTP/2."""

    ssl_ca: str = ""
    """Optional CA bundle path."""

    # ═════════════════════════════════════════════════════════════════════
    # REQUEST HANDLING
    # ═════════════════════════════════════════════════════════════════════

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    allowed_domains: List[str] = field(default_factory=lambda: ["*"])
    """CORS allow-list. ["*"] (or an empty list) allows any origin."""

    max_body_size: int = MAX_BODY_SIZE
    """Request body limit in bytes."""

    keep_alive_timeout: float = 5.0
    """Seconds an idle HTTP/1.1 keep-alive connection is held open."""

    # ═════════════════════════════════════════════════════════════════════
    # WORKERS
    # ═════════════════════════════════════════════════════════════════════

    min_workers: int = 4
    max_workers: int = 32

    # ═════════════════════════════════════════════════════════════════════
    # DIAGNOSTICS
    # ═════════════════════════════════════════════════════════════════════

    debug: bool = False
    """Expose exception messages in 500 responses and log per-request timing."""

    log_level: str = "INFO"
    log_format: str = "text"
    """Access-log format when the access log is enabled: "text" or "json"."""

    def __post_init__(self):
        if isinstance(self.rate_limit, Mapping):
            self.rate_limit = RateLimitConfig(**_normalize_keys(self.rate_limit))
        if isinstance(self.allowed_domains, str):
            self.allowed_domains = _split_list(self.allowed_domains)

    # =========================================================================
    # DERIVED
    # =========================================================================

    @property
    def transport(self) -> Transport:
        if self.use_http2:
            return Transport.HTTP2
        if self.use_https:
            return Transport.HTTPS
        return Transport.HTTP

    @property
    def secure(self) -> bool:
        return self.transport is not Transport.HTTP

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServerConfig":
        """Build from a (possibly camelCase) mapping. Unknown keys are ignored."""
        return cls().merged(**_normalize_keys(data))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Defaults overlaid with environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        PORT                  port
        HOST                  host
        DEBUG                 debug ("true" enables)
        TINYSERVE_HTTPS       use_https
        TINYSERVE_HTTP2       use_http2
        TINYSERVE_SSL_CERT    ssl_cert
        TINYSERVE_SSL_KEY     ssl_key
        TINYSERVE_SSL_CA      ssl_ca
        TINYSERVE_RATE_LIMIT  rate_limit.enabled
        TINYSERVE_RPM         rate_limit.requests_per_minute
        TINYSERVE_ALLOWED     allowed_domains (comma-separated)

        =====================================================================
        """
        return cls().merged(**env_overrides(environ))

    @classmethod
    def from_file(cls, path: Union[str, Path] = DEFAULT_CONFIG_FILE) -> "ServerConfig":
        """Defaults overlaid with a JSON config file. A missing file gives defaults."""
        return cls().merged(**file_overrides(path))

    @classmethod
    def load(
        cls,
        path: Union[str, Path, None] = DEFAULT_CONFIG_FILE,
        environ: Optional[Mapping[str, str]] = None,
        **options: Any,
    ) -> "ServerConfig":
        """Defaults → config file → environment → ``options``."""
        config = cls()
        if path:
            config = config.merged(**file_overrides(path))
        config = config.merged(**env_overrides(environ))
        return config.merged(**options)

    def merged(self, **overrides: Any) -> "ServerConfig":
        """
        Copy with overrides applied. None values are skipped, so unset CLI
        flags fall through. ``rate_limit`` may be a partial dict.
        """
        known = {f.name for f in fields(self)}
        changes: Dict[str, Any] = {}

        for key, value in _normalize_keys(overrides).items():
            if value is None:
                continue
            if key not in known:
                logger.debug(f"Ignoring unknown config key: {key}")
                continue
            if key == "rate_limit":
                value = self._merged_rate_limit(value)
            elif key == "allowed_domains" and isinstance(value, str):
                value = _split_list(value)
            changes[key] = value

        return replace(self, **changes)

    def _merged_rate_limit(self, value: Any) -> RateLimitConfig:
        if isinstance(value, RateLimitConfig):
            return replace(value)
        if isinstance(value, Mapping):
            updates = {k: v for k, v in _normalize_keys(value).items() if v is not None}
            return replace(self.rate_limit, **updates)
        raise ConfigError(f"rate_limit must be a mapping, got {value!r}")

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self) -> None:
        """
        Fail fast on values the server cannot run with.

        Raises:
            ConfigError (a ValueError)
        """
        if not 0 <= self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}. Must be 0-65535.")
        if self.rate_limit.requests_per_minute < 1:
            raise ConfigError(
                f"requests_per_minute must be positive, got {self.rate_limit.requests_per_minute}"
            )
        if self.max_body_size <= 0:
            raise ConfigError(f"max_body_size must be > 0, got {self.max_body_size}")
        if self.min_workers < 1:
            raise ConfigError("min_workers must be >= 1")
        if self.max_workers < self.min_workers:
            raise ConfigError("max_workers must be >= min_workers")
        if self.log_format not in ("text", "json"):
            raise ConfigError(f"log_format must be 'text' or 'json', got {self.log_format!r}")
        if self.secure and (not self.ssl_cert or not self.ssl_key):
            raise ConfigError(
                "SSL certificate and key paths are required when useHttps/useHttp2 is true"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# LAYER SOURCES
# =============================================================================

_CAMEL_TO_SNAKE = {
    "useHttps": "use_https",
    "useHttp2": "use_http2",
    "sslCert": "ssl_cert",
    "sslKey": "ssl_key",
    "sslCa": "ssl_ca",
    "rateLimit": "rate_limit",
    "requestsPerMinute": "requests_per_minute",
    "allowedDomains": "allowed_domains",
    "maxBodySize": "max_body_size",
    "keepAliveTimeout": "keep_alive_timeout",
    "minWorkers": "min_workers",
    "maxWorkers": "max_workers",
    "logLevel": "log_level",
    "logFormat": "log_format",
}


def _normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_CAMEL_TO_SNAKE.get(key, key): value for key, value in data.items()}


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Overrides from environment variables that are actually set."""
    env = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}

    def number(name: str) -> Optional[int]:
        raw = env.get(name)
        if raw is None or raw.strip() == "":
            return None
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}")

    port = number("PORT")
    if port:
        overrides["port"] = port
    if env.get("HOST"):
        overrides["host"] = env["HOST"]
    if "DEBUG" in env:
        overrides["debug"] = env["DEBUG"] == "true"

    if "TINYSERVE_HTTPS" in env:
        overrides["use_https"] = _parse_bool(env["TINYSERVE_HTTPS"])
    if "TINYSERVE_HTTP2" in env:
        overrides["use_http2"] = _parse_bool(env["TINYSERVE_HTTP2"])
    for var, key in (
        ("TINYSERVE_SSL_CERT", "ssl_cert"),
        ("TINYSERVE_SSL_KEY", "ssl_key"),
        ("TINYSERVE_SSL_CA", "ssl_ca"),
    ):
        if env.get(var):
            overrides[key] = env[var]

    rate_limit: Dict[str, Any] = {}
    if "TINYSERVE_RATE_LIMIT" in env:
        rate_limit["enabled"] = _parse_bool(env["TINYSERVE_RATE_LIMIT"])
    rpm = number("TINYSERVE_RPM")
    if rpm is not None:
        rate_limit["requests_per_minute"] = rpm
    if rate_limit:
        overrides["rate_limit"] = rate_limit

    if env.get("TINYSERVE_ALLOWED"):
        overrides["allowed_domains"] = _split_list(env["TINYSERVE_ALLOWED"])

    return overrides


def file_overrides(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Overrides from a JSON config file.

    Raises:
        ConfigError: the file exists but is not a JSON object
    """
    path = Path(path)
    if not path.is_file():
        return {}

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    logger.debug(f"Loaded configuration from {path}")
    return _normalize_keys(data)


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. ServerConfig / RateLimitConfig: typed settings with defaults
# 2. Layered loading: file → environment → options → CLI
# 3. validate(): fail fast before any socket is opened
#
