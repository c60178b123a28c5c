"""
HTTP/2 tests: an h2 client talking to H2Protocol over a socketpair.

TLS and ALPN are left out here; H2Protocol only needs a connected socket.
"""

import socket
import threading

import h2.config
import h2.connection
import h2.events
import pytest

from tinyserve.core.http2 import H2Protocol
from tinyserve.http.router import Router
from tinyserve.pipeline import RequestPipeline


def run_in_thread(func, args) -> bool:
    threading.Thread(target=func, args=args, daemon=True).start()
    return True


class H2Client:
    """Minimal blocking h2 client for one connection."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.sock.settimeout(5.0)
        config = h2.config.H2Configuration(client_side=True, header_encoding="utf-8")
        self.conn = h2.connection.H2Connection(config=config)
        self.conn.initiate_connection()
        self.flush()

    def flush(self):
        data = self.conn.data_to_send()
        if data:
            self.sock.sendall(data)

    def request(self, method: str, path: str, body: bytes = b"", headers=None):
        stream_id = self.conn.get_next_available_stream_id()
        request_headers = [
            (":method", method),
            (":path", path),
            (":scheme", "https"),
            (":authority", "localhost"),
        ]
        request_headers.extend((headers or {}).items())
        self.conn.send_headers(stream_id, request_headers, end_stream=not body)
        if body:
            self.conn.send_data(stream_id, body, end_stream=True)
        self.flush()
        return stream_id

    def collect(self, stream_ids):
        """Read until every stream in ``stream_ids`` ended or was reset."""
        pending = set(stream_ids)
        responses = {sid: {"headers": {}, "body": b"", "reset": False} for sid in stream_ids}

        while pending:
            data = self.sock.recv(65536)
            if not data:
                break
            for event in self.conn.receive_data(data):
                sid = getattr(event, "stream_id", None)
                if sid not in responses:
                    continue
                if isinstance(event, h2.events.ResponseReceived):
                    responses[sid]["headers"] = dict(event.headers)
                elif isinstance(event, h2.events.DataReceived):
                    responses[sid]["body"] += event.data
                    self.conn.acknowledge_received_data(event.flow_controlled_length, sid)
                elif isinstance(event, h2.events.StreamEnded):
                    pending.discard(sid)
                elif isinstance(event, h2.events.StreamReset):
                    responses[sid]["reset"] = True
                    pending.discard(sid)
            self.flush()

        return responses


@pytest.fixture
def h2_pair():
    router = Router()

    @router.get("/users/:id")
    def get_user(ctx):
        return ctx.json({"id": ctx.params["id"]})

    @router.post("/echo")
    def echo(ctx):
        return ctx.json({"received": ctx.body.value})

    @router.get("/big")
    def big(ctx):
        return ctx.text("x" * 200_000)

    pipeline = RequestPipeline(router, secure=True)
    server_sock, client_sock = socket.socketpair()
    stop = threading.Event()
    protocol = H2Protocol(server_sock, ("127.0.0.1", 4444), pipeline.dispatch, run_in_thread, stop)

    thread = threading.Thread(target=protocol.serve, daemon=True)
    thread.start()

    client = H2Client(client_sock)
    yield client, stop

    stop.set()
    thread.join(timeout=5.0)
    client_sock.close()


class TestHTTP2:
    """Tests for H2Protocol."""

    def test_get(self, h2_pair):
        """Test a simple GET stream."""
        client, _ = h2_pair
        sid = client.request("GET", "/users/7")
        response = client.collect([sid])[sid]

        assert response["headers"][":status"] == "200"
        assert response["headers"]["content-type"] == "application/json"
        assert response["headers"]["strict-transport-security"].startswith("max-age=")
        assert response["body"] == b'{"id":"7"}'

    def test_post_body(self, h2_pair):
        """Test a request body sent in DATA frames."""
        client, _ = h2_pair
        sid = client.request(
            "POST", "/echo", body=b'{"a":1}', headers={"content-type": "application/json"}
        )
        response = client.collect([sid])[sid]

        assert response["headers"][":status"] == "200"
        assert response["body"] == b'{"received":{"a":1}}'

    def test_concurrent_streams(self, h2_pair):
        """Test multiple streams multiplexed on one connection."""
        client, _ = h2_pair
        sids = [client.request("GET", f"/users/{n}") for n in range(5)]
        responses = client.collect(sids)

        for n, sid in enumerate(sids):
            assert responses[sid]["body"] == f'{{"id":"{n}"}}'.encode()

    def test_large_response_flow_control(self, h2_pair):
        """Test a body larger than the default window is delivered whole."""
        client, _ = h2_pair
        sid = client.request("GET", "/big")
        response = client.collect([sid])[sid]

        assert len(response["body"]) == 200_000

    def test_options_preflight(self, h2_pair):
        """Test OPTIONS is answered with 204 and no body."""
        client, _ = h2_pair
        sid = client.request("OPTIONS", "/anything")
        response = client.collect([sid])[sid]

        assert response["headers"][":status"] == "204"
        assert response["body"] == b""

    def test_not_found(self, h2_pair):
        """Test unknown paths get the JSON 404."""
        client, _ = h2_pair
        sid = client.request("GET", "/missing")
        response = client.collect([sid])[sid]

        assert response["headers"][":status"] == "404"
        assert b"Not Found" in response["body"]

