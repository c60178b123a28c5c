"""
pytest configuration and fixtures.
"""

import json
import socket
import threading
from typing import Dict, Generator, Iterable, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tinyserve import ServerConfig, TinyServe
from tinyserve.http import BufferedResponseWriter, Request
from tinyserve.lifecycle import Lifecycle


class FakeClock:
    """Manually advanced time source for the rate limiter."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_request(
    method: str = "GET",
    target: str = "/",
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
    chunks: Optional[Iterable[bytes]] = None,
    client_address: Tuple[str, int] = ("127.0.0.1", 50000),
    scheme: str = "http",
) -> Request:
    """Helper to create an in-memory request for testing."""
    headers = {k.lower(): v for k, v in (headers or {}).items()}
    if chunks is None:
        chunks = [body] if body else []
    return Request(
        method=method,
        target=target,
        headers=headers,
        client_address=client_address,
        scheme=scheme,
        body_stream=chunks,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def writer() -> BufferedResponseWriter:
    return BufferedResponseWriter()


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def test_config() -> ServerConfig:
    """Loopback configuration that never touches the environment or files."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=8,
        keep_alive_timeout=2.0,
    )


class TestServer:
    """Test server helper that runs in background threads."""

    __test__ = False

    def __init__(self, app: TinyServe):
        self.app = app
        self.lifecycle: Optional[Lifecycle] = None

    @property
    def port(self) -> int:
        return self.lifecycle.address[1]

    def start(self) -> "TestServer":
        self.lifecycle = self.app.start()
        return self

    def stop(self):
        if self.lifecycle is not None:
            self.lifecycle.shutdown(reason="test finished")

    def request(
        self,
        method: str,
        target: str,
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"",
    ) -> Tuple[int, Dict[str, str], bytes]:
        """Send one HTTP/1.1 request with Connection: close and read the reply."""
        lines = [f"{method} {target} HTTP/1.1", "Host: 127.0.0.1", "Connection: close"]
        for name, value in (headers or {}).items():
            lines.append(f"{name}: {value}")
        if body:
            lines.append(f"Content-Length: {len(body)}")
        raw = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body

        with socket.create_connection(("127.0.0.1", self.port), timeout=5.0) as s:
            s.sendall(raw)
            data = b""
            while True:
                chunk = s.recv(65536)
                if not chunk:
                    break
                data += chunk

        return parse_response(data)


def parse_response(data: bytes) -> Tuple[int, Dict[str, str], bytes]:
    """Split a raw HTTP/1.1 response into (status, lower-cased headers, body)."""
    head, _, body = data.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


def json_body(body: bytes):
    return json.loads(body.decode("utf-8"))


@pytest.fixture
def running_app(test_config: ServerConfig) -> Generator[TestServer, None, None]:
    """A started app with a few routes, rate-limited to 3 requests per minute."""
    config = test_config.merged(
        rate_limit={"requests_per_minute": 3},
        allowed_domains=["https://a.com"],
    )
    app = TinyServe(config)

    @app.get("/users/:id")
    def get_user(ctx):
        return ctx.json({"id": ctx.params["id"]})

    @app.post("/echo")
    def echo(ctx):
        return ctx.json({"received": ctx.body.value})

    @app.get("/boom")
    def boom(ctx):
        raise RuntimeError("kaboom")

    server = TestServer(app).start()
    yield server
    server.stop()
