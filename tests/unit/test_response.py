"""
Unit tests for response building: handler results, the writer and the
context helpers.
"""

import pytest

from conftest import make_request
from tinyserve.http import BufferedResponseWriter, HandlerResponse, HTTPStatus, RequestContext
from tinyserve.http.context import ResponseHelpers
from tinyserve.http.response import encode_body, error_response
from tinyserve.http.status_codes import allows_body, reason_phrase


class TestEncodeBody:
    """Tests for encode_body."""

    def test_none(self):
        """Test None means no payload."""
        assert encode_body(HandlerResponse()) is None

    def test_str(self):
        """Test strings are UTF-8 encoded as-is."""
        assert encode_body(HandlerResponse(body="ünïcode")) == "ünïcode".encode("utf-8")

    def test_json(self):
        """Test other values are compact JSON."""
        assert encode_body(HandlerResponse(body={"a": [1, 2]})) == b'{"a":[1,2]}'

    def test_json_falls_back_to_str(self):
        """Test non-JSON values are stringified rather than failing."""

        class Point:
            def __str__(self):
                return "P"

        assert encode_body(HandlerResponse(body={"p": Point()})) == b'{"p":"P"}'

    def test_raw(self):
        """Test raw bodies are written verbatim."""
        assert encode_body(HandlerResponse(body=b"\x89PNG", is_raw=True)) == b"\x89PNG"

    @pytest.mark.parametrize("body", [5, {"a": 1}, [1, 2]])
    def test_raw_requires_bytes(self, body):
        """Test raw bodies must already be bytes-like or str."""
        with pytest.raises(TypeError):
            encode_body(HandlerResponse(body=body, is_raw=True))

    def test_raw_bytearray(self):
        """Test bytearray and memoryview raw bodies are accepted."""
        assert encode_body(HandlerResponse(body=bytearray(b"ab"), is_raw=True)) == b"ab"
        assert encode_body(HandlerResponse(body=memoryview(b"cd"), is_raw=True)) == b"cd"

    def test_error_response(self):
        """Test the structured error shape."""
        response = error_response(429, "Too Many Requests", "slow down")
        assert response.status_code == 429
        assert response.body == {"error": "Too Many Requests", "message": "slow down"}
        assert response.headers["Content-Type"] == "application/json"


class TestResponseWriter:
    """Tests for the ResponseWriter header bag and commit."""

    def test_headers_case_insensitive(self):
        """Test header names are matched case-insensitively."""
        writer = BufferedResponseWriter()
        writer.set_header("X-Custom", "1")

        assert writer.get_header("x-custom") == "1"
        assert writer.has_header("X-CUSTOM")

        writer.set_header("x-custom", "2")
        assert writer.headers == {"x-custom": "2"}

        writer.remove_header("X-Custom")
        assert not writer.has_header("x-custom")

    def test_values_are_strings(self):
        """Test integer values are stringified."""
        writer = BufferedResponseWriter()
        writer.set_header("X-RateLimit-Limit", 100)
        assert writer.get_header("X-RateLimit-Limit") == "100"

    def test_end_commits_once(self):
        """Test end() commits and later calls are no-ops."""
        writer = BufferedResponseWriter()
        writer.write_head(201, {"Content-Type": "text/plain"})
        writer.end(b"first")
        writer.end(b"second")

        assert writer.finished
        assert writer.status_code == 201
        assert writer.body == b"first"
        assert writer.committed_headers == {"Content-Type": "text/plain"}

    def test_end_without_write_head(self):
        """Test end() alone sends the current status."""
        writer = BufferedResponseWriter()
        writer.end()

        assert writer.headers_sent
        assert writer.status_code == 200
        assert writer.body == b""

    def test_write_head_after_end(self):
        """Test the head cannot change once finished."""
        writer = BufferedResponseWriter()
        writer.end()
        with pytest.raises(RuntimeError):
            writer.write_head(500)


class TestResponseHelpers:
    """Tests for the context response helpers."""

    @pytest.fixture
    def ctx(self) -> RequestContext:
        return RequestContext(request=make_request(), response=BufferedResponseWriter())

    @pytest.mark.parametrize(
        "helper, content_type",
        [
            ("text", "text/plain"),
            ("html", "text/html"),
            ("form", "application/x-www-form-urlencoded"),
        ],
    )
    def test_string_helpers(self, ctx, helper, content_type):
        """Test string helpers set their content type and default to 200."""
        response = getattr(ctx, helper)("content")

        assert response.status_code == 200
        assert response.body == "content"
        assert response.headers == {"Content-Type": content_type}
        assert not response.is_raw

    def test_json(self, ctx):
        """Test json() with an explicit status."""
        response = ctx.json({"ok": True}, status=201)

        assert response.status_code == 201
        assert response.body == {"ok": True}
        assert response.headers["Content-Type"] == "application/json"

    def test_binary(self, ctx):
        """Test binary() is raw with a Content-Length."""
        response = ctx.binary(b"abc")

        assert response.is_raw
        assert response.body == b"abc"
        assert response.headers == {
            "Content-Type": "application/octet-stream",
            "Content-Length": "3",
        }

    def test_redirect(self, ctx):
        """Test redirect() defaults to 302 with no body."""
        response = ctx.redirect("/login")

        assert response.status_code == 302
        assert response.body is None
        assert response.headers == {"Location": "/login"}
        assert ctx.redirect("/moved", status=301).status_code == 301

    def test_status_binds_code(self, ctx):
        """Test status(code) binds the code for subsequent helpers."""
        bound = ctx.status(201)

        assert isinstance(bound, ResponseHelpers)
        assert bound.json({"id": 1}).status_code == 201
        assert bound.text("x").status_code == 201
        assert bound.json({}, status=202).status_code == 202

    def test_status_rebinds(self, ctx):
        """Test status() on a bound helper rebinds."""
        assert ctx.status(201).status(418).text("teapot").status_code == 418

    def test_bound_redirect_keeps_default(self, ctx):
        """Test redirect ignores the bound status."""
        assert ctx.status(201).redirect("/x").status_code == 302

    def test_raw(self, ctx):
        """Test raw() returns the writer, also from a bound helper."""
        assert ctx.raw() is ctx.response
        assert ctx.status(201).raw() is ctx.response

    def test_context_fields(self):
        """Test the context copies headers and starts with empty state."""
        request = make_request("POST", "/x", headers={"X-Token": "abc"})
        ctx = RequestContext(request=request, response=BufferedResponseWriter(), path="/x")

        assert ctx.method == "POST"
        assert ctx.headers == {"x-token": "abc"}
        assert ctx.headers is not request.headers
        assert ctx.params == {}
        assert ctx.query == {}
        assert ctx.state == {}


class TestStatusCodes:
    """Tests for status helpers."""

    def test_phrases(self):
        """Test reason phrases."""
        assert HTTPStatus.NOT_FOUND.phrase == "Not Found"
        assert reason_phrase(429) == "Too Many Requests"
        assert reason_phrase(599) == "Unknown"

    @pytest.mark.parametrize("code, expected", [(200, True), (204, False), (304, False), (101, False), (404, True)])
    def test_allows_body(self, code, expected):
        """Test which statuses may carry a payload."""
        assert allows_body(code) is expected
