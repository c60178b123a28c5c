"""
Unit tests for server configuration.
"""

import json

import pytest

from tinyserve.config import RateLimitConfig, ServerConfig, Transport, env_overrides
from tinyserve.http import ConfigError


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = ServerConfig()

        assert config.port == 3000
        assert config.host == "0.0.0.0"
        assert config.use_https is False
        assert config.use_http2 is False
        assert config.ssl_cert == config.ssl_key == config.ssl_ca == ""
        assert config.debug is False
        assert config.rate_limit == RateLimitConfig(enabled=True, requests_per_minute=100)
        assert config.allowed_domains == ["*"]
        assert config.max_body_size == 1048576

    def test_zero_rpm_falls_back(self):
        """Test 0 requests per minute means the default."""
        assert RateLimitConfig(requests_per_minute=0).requests_per_minute == 100

    @pytest.mark.parametrize(
        "https, http2, transport",
        [
            (False, False, Transport.HTTP),
            (True, False, Transport.HTTPS),
            (False, True, Transport.HTTP2),
            (True, True, Transport.HTTP2),
        ],
    )
    def test_transport(self, https, http2, transport):
        """Test HTTP/2 wins over HTTPS."""
        config = ServerConfig(use_https=https, use_http2=http2)
        assert config.transport is transport
        assert config.secure is (transport is not Transport.HTTP)


class TestMerged:
    """Tests for merged()."""

    def test_none_skipped(self):
        """Test None overrides leave values alone."""
        config = ServerConfig(port=8080).merged(port=None, host="127.0.0.1")

        assert config.port == 8080
        assert config.host == "127.0.0.1"

    def test_returns_copy(self):
        """Test the original is untouched."""
        original = ServerConfig()
        original.merged(port=1234)
        assert original.port == 3000

    def test_partial_rate_limit(self):
        """Test a partial rate_limit mapping only changes given keys."""
        config = ServerConfig().merged(rate_limit={"requestsPerMinute": 5, "enabled": None})

        assert config.rate_limit.requests_per_minute == 5
        assert config.rate_limit.enabled is True

    def test_allowed_domains_string(self):
        """Test a comma-separated string is split."""
        config = ServerConfig().merged(allowed_domains="https://a.com, https://b.com")
        assert config.allowed_domains == ["https://a.com", "https://b.com"]

    def test_unknown_keys_ignored(self):
        """Test unknown keys do not fail."""
        assert ServerConfig().merged(colour="blue") == ServerConfig()

    def test_camel_case(self):
        """Test camelCase keys are accepted."""
        config = ServerConfig.from_dict({
            "useHttps": True,
            "sslCert": "c.pem",
            "sslKey": "k.pem",
            "rateLimit": {"enabled": False, "requestsPerMinute": 10},
            "allowedDomains": ["https://a.com"],
        })

        assert config.use_https
        assert config.ssl_cert == "c.pem"
        assert config.ssl_key == "k.pem"
        assert config.rate_limit == RateLimitConfig(enabled=False, requests_per_minute=10)
        assert config.allowed_domains == ["https://a.com"]


class TestEnvironment:
    """Tests for environment variables."""

    def test_from_env(self):
        """Test every supported variable."""
        config = ServerConfig.from_env({
            "PORT": "8080",
            "HOST": "127.0.0.1",
            "DEBUG": "true",
            "TINYSERVE_HTTPS": "true",
            "TINYSERVE_SSL_CERT": "c.pem",
            "TINYSERVE_SSL_KEY": "k.pem",
            "TINYSERVE_RATE_LIMIT": "false",
            "TINYSERVE_RPM": "50",
            "TINYSERVE_ALLOWED": "https://a.com,https://b.com",
        })

        assert config.port == 8080
        assert config.host == "127.0.0.1"
        assert config.debug is True
        assert config.use_https is True
        assert config.use_http2 is False
        assert config.ssl_cert == "c.pem"
        assert config.rate_limit == RateLimitConfig(enabled=False, requests_per_minute=50)
        assert config.allowed_domains == ["https://a.com", "https://b.com"]

    def test_debug_requires_exact_true(self):
        """Test DEBUG is only enabled by the string "true"."""
        assert ServerConfig.from_env({"DEBUG": "1"}).debug is False

    def test_empty_environment(self):
        """Test no variables means no overrides."""
        assert env_overrides({}) == {}

    def test_invalid_port(self):
        """Test a non-numeric PORT is a ConfigError."""
        with pytest.raises(ConfigError):
            ServerConfig.from_env({"PORT": "http"})


class TestFile:
    """Tests for the JSON config file."""

    def test_missing_file(self, tmp_path):
        """Test a missing file gives defaults."""
        assert ServerConfig.from_file(tmp_path / "absent.json") == ServerConfig()

    def test_from_file(self, tmp_path):
        """Test values are read from the file."""
        path = tmp_path / "tinyserve.config.json"
        path.write_text(json.dumps({"port": 9000, "rateLimit": {"requestsPerMinute": 7}}))

        config = ServerConfig.from_file(path)
        assert config.port == 9000
        assert config.rate_limit.requests_per_minute == 7

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_invalid_file(self, tmp_path, content):
        """Test unreadable files are ConfigErrors."""
        path = tmp_path / "bad.json"
        path.write_text(content)

        with pytest.raises(ConfigError):
            ServerConfig.from_file(path)

    def test_precedence(self, tmp_path):
        """Test options > environment > file > defaults."""
        path = tmp_path / "tinyserve.config.json"
        path.write_text(json.dumps({"port": 9000, "host": "10.0.0.1", "debug": True}))

        config = ServerConfig.load(path, environ={"PORT": "9100"}, port=9200)
        assert config.port == 9200

        config = ServerConfig.load(path, environ={"PORT": "9100"})
        assert config.port == 9100
        assert config.host == "10.0.0.1"
        assert config.debug is True


class TestValidate:
    """Tests for validate()."""

    def test_valid(self):
        """Test defaults validate."""
        ServerConfig().validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"port": -1},
            {"port": 70000},
            {"rate_limit": {"requests_per_minute": -5}},
            {"max_body_size": 0},
            {"min_workers": 0},
            {"min_workers": 8, "max_workers": 4},
            {"log_format": "xml"},
        ],
    )
    def test_invalid(self, overrides):
        """Test invalid values raise ConfigError, which is a ValueError."""
        config = ServerConfig().merged(**overrides)
        with pytest.raises(ValueError):
            config.validate()

    @pytest.mark.parametrize("flag", ["use_https", "use_http2"])
    def test_tls_requires_cert_and_key(self, flag):
        """Test TLS transports need cert and key paths."""
        config = ServerConfig(**{flag: True})
        with pytest.raises(ConfigError, match="SSL certificate and key paths are required"):
            config.validate()
