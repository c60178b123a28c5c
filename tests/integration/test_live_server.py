"""
Integration tests for the HTTP server.

These tests start a real server on loopback and speak HTTP/1.1 to it.
"""

import socket

import pytest

from conftest import TestServer, json_body
from tinyserve import TinyServe


class TestServing:
    """Tests for requests through the whole stack."""

    def test_route_with_params(self, running_app: TestServer):
        """Test a parameterized route over the network."""
        status, headers, body = running_app.request("GET", "/users/42")

        assert status == 200
        assert json_body(body) == {"id": "42"}
        assert headers["content-type"] == "application/json"
        assert headers["server"] == "tinyserve"
        assert "date" in headers

    def test_not_found(self, running_app: TestServer):
        """Test unknown paths get the JSON 404."""
        status, _, body = running_app.request("GET", "/nothing/here")

        assert status == 404
        assert json_body(body)["error"] == "Not Found"

    def test_post_json(self, running_app: TestServer):
        """Test a JSON body reaches the handler."""
        status, _, body = running_app.request(
            "POST", "/echo",
            headers={"Content-Type": "application/json"},
            body=b'{"name": "ada"}',
        )

        assert status == 200
        assert json_body(body) == {"received": {"name": "ada"}}

    def test_invalid_json(self, running_app: TestServer):
        """Test malformed JSON is a 400."""
        status, _, body = running_app.request(
            "POST", "/echo",
            headers={"Content-Type": "application/json"},
            body=b"{oops",
        )

        assert status == 400
        assert json_body(body)["error"] == "Bad Request"

    def test_handler_exception_is_opaque(self, running_app: TestServer):
        """Test a crashing handler yields a generic 500."""
        status, _, body = running_app.request("GET", "/boom")

        assert status == 500
        assert json_body(body) == {
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
        }

    def test_security_headers(self, running_app: TestServer):
        """Test security headers are present and HSTS is not on plaintext."""
        _, headers, _ = running_app.request("GET", "/users/1")

        assert headers["x-content-type-options"] == "nosniff"
        assert headers["x-frame-options"] == "DENY"
        assert "strict-transport-security" not in headers


class TestCORS:
    """Tests for CORS headers on a restricted allow-list."""

    def test_allowed_origin_echoed(self, running_app: TestServer):
        """Test an allowed origin is echoed with Vary."""
        _, headers, _ = running_app.request("GET", "/users/1", headers={"Origin": "https://a.com"})

        assert headers["access-control-allow-origin"] == "https://a.com"
        assert "Origin" in headers["vary"]

    def test_other_origin_not_allowed(self, running_app: TestServer):
        """Test an unlisted origin gets no Allow-Origin."""
        _, headers, _ = running_app.request("GET", "/users/1", headers={"Origin": "https://evil.com"})

        assert "access-control-allow-origin" not in headers
        assert "access-control-allow-methods" in headers

    def test_preflight(self, running_app: TestServer):
        """Test OPTIONS is answered with 204 for any path."""
        status, headers, body = running_app.request(
            "OPTIONS", "/anything", headers={"Origin": "https://a.com"}
        )

        assert status == 204
        assert body == b""
        assert headers["access-control-max-age"] == "86400"


class TestRateLimiting:
    """Tests for the per-client fixed window."""

    def test_headers_and_exhaustion(self, running_app: TestServer):
        """Test the counter headers and the 429 after the limit."""
        remaining = []
        for _ in range(3):
            status, headers, _ = running_app.request("GET", "/users/1")
            assert status == 200
            assert headers["x-ratelimit-limit"] == "3"
            assert int(headers["x-ratelimit-reset"]) > 0
            remaining.append(headers["x-ratelimit-remaining"])

        assert remaining == ["3", "2", "1"]

        status, headers, body = running_app.request("GET", "/users/1")
        assert status == 429
        assert headers["x-ratelimit-remaining"] == "0"
        assert json_body(body)["error"] == "Too Many Requests"

    def test_disabled(self, test_config):
        """Test no rate-limit headers when disabled."""
        app = TinyServe(test_config, rate_limit={"enabled": False})
        app.get("/", lambda ctx: ctx.text("ok"))

        server = TestServer(app).start()
        try:
            status, headers, _ = server.request("GET", "/")
        finally:
            server.stop()

        assert status == 200
        assert "x-ratelimit-limit" not in headers


class TestLifecycle:
    """Tests for start and shutdown."""

    def test_shutdown_stops_accepting(self, test_config):
        """Test connections are refused after shutdown."""
        app = TinyServe(test_config)
        app.get("/", lambda ctx: ctx.text("ok"))
        server = TestServer(app).start()
        port = server.port

        assert server.request("GET", "/")[0] == 200
        assert server.lifecycle.shutdown(reason="test") is True
        assert server.lifecycle.shutdown() is False
        assert server.lifecycle.wait(timeout=1.0)

        with pytest.raises(OSError):
            socket.create_connection(("127.0.0.1", port), timeout=1.0).close()

    def test_start_is_idempotent(self, test_config):
        """Test starting twice returns the same lifecycle."""
        app = TinyServe(test_config)
        first = app.start()
        try:
            assert app.start() is first
            assert first.running
        finally:
            first.shutdown()
        assert not first.running

    def test_port_in_use(self, test_config):
        """Test binding an occupied port raises OSError."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]

            app = TinyServe(test_config, port=port)
            with pytest.raises(OSError):
                app.start()
