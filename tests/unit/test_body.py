"""
Unit tests for request body parsing.
"""

import pytest

from tinyserve.http import BadRequest, EmptyBody, FormBody, JSONBody, PayloadTooLarge, TextBody
from tinyserve.http.body import MAX_BODY_SIZE, parse_body, read_body


class TestParseBody:
    """Tests for parse_body."""

    def test_empty(self):
        """Test zero bytes give an empty structured value."""
        body = parse_body(b"", "application/json")
        assert isinstance(body, EmptyBody)
        assert body.value == {}

    def test_json(self):
        """Test JSON content is decoded."""
        body = parse_body(b'{"name": "John", "tags": [1, 2]}', "application/json; charset=utf-8")
        assert body == JSONBody({"name": "John", "tags": [1, 2]})

    def test_invalid_json(self):
        """Test malformed JSON raises BadRequest carrying the parser's message."""
        with pytest.raises(BadRequest) as exc_info:
            parse_body(b'{"name": ', "application/json")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message.startswith("Invalid JSON in request body: ")
        assert "Expecting value" in exc_info.value.message

    def test_form(self):
        """Test form-encoded content becomes a flat dict."""
        body = parse_body(b"a=1&b=hello+world&empty=", "application/x-www-form-urlencoded")
        assert isinstance(body, FormBody)
        assert body.value == {"a": "1", "b": "hello world", "empty": ""}

    def test_form_last_value_wins(self):
        """Test repeated form keys keep the last value."""
        body = parse_body(b"a=1&a=2", "application/x-www-form-urlencoded")
        assert body.value == {"a": "2"}

    @pytest.mark.parametrize("content_type", [None, "text/plain", "application/octet-stream"])
    def test_text(self, content_type):
        """Test anything else is returned as text."""
        body = parse_body(b"hello", content_type)
        assert body == TextBody("hello")


class TestReadBody:
    """Tests for read_body."""

    def test_accumulates_chunks(self):
        """Test chunks are joined before decoding."""
        body = read_body([b'{"a"', b": ", b"1}"], "application/json")
        assert body.value == {"a": 1}

    def test_exactly_at_limit(self):
        """Test a body of exactly the limit is accepted."""
        body = read_body([b"x" * 10], "text/plain", limit=10)
        assert body.value == "x" * 10

    def test_over_limit(self):
        """Test exceeding the limit raises PayloadTooLarge, a 400."""
        with pytest.raises(PayloadTooLarge) as exc_info:
            read_body([b"x" * 6, b"x" * 5], "text/plain", limit=10)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Request body too large"

    def test_stops_reading_once_over(self):
        """Test the stream is abandoned as soon as the limit is crossed."""
        consumed = []

        def stream():
            for i in range(100):
                consumed.append(i)
                yield b"x" * 1024

        with pytest.raises(PayloadTooLarge):
            read_body(stream(), None, limit=4096)

        assert len(consumed) == 5

    def test_default_limit_is_one_mebibyte(self):
        """Test the default limit."""
        assert MAX_BODY_SIZE == 1048576
        with pytest.raises(PayloadTooLarge):
            read_body([b"x" * MAX_BODY_SIZE, b"x"], None)
