"""
Unit tests for HTTP response building.
"""

import json
from datetime import datetime, timezone

from httpfactory.http import (
    HTTPResponse,
    HTTPStatus,
    ResponseBuilder,
    error_response,
    internal_error,
    not_found,
    ok,
    payload_too_large,
    service_unavailable,
)
from httpfactory.http.response import format_http_date


class TestHTTPResponse:
    """Tests for HTTPResponse class."""

    def test_status_line(self):
        assert HTTPResponse(status=HTTPStatus.OK).status_line == "HTTP/1.1 200 OK"
        assert HTTPResponse(status=431).status_line == (
            "HTTP/1.1 431 Request Header Fields Too Large"
        )
        assert HTTPResponse(status=299).status_line == "HTTP/1.1 299 Unknown"

    def test_to_bytes_includes_headers(self):
        response = HTTPResponse(headers={"X-Custom": "value"}, body=b"hi")

        data = response.to_bytes(server_name="billing")

        head, body = data.split(b"\r\n\r\n", 1)
        assert head.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"X-Custom: value" in head
        assert b"Content-Length: 2" in head
        assert b"Server: billing" in head
        assert b"Date: " in head
        assert body == b"hi"

    def test_explicit_headers_win(self):
        response = HTTPResponse(headers={"Server": "custom", "Content-Length": "0"})

        head = response.to_bytes().split(b"\r\n\r\n", 1)[0]

        assert b"Server: custom" in head
        assert head.count(b"Content-Length") == 1

    def test_set_header_chaining(self):
        response = HTTPResponse().set_header("A", "1").set_body("text")

        assert response.headers == {"A": "1"}
        assert response.body == b"text"


class TestResponseBuilder:
    """Tests for ResponseBuilder class."""

    def test_json_body(self):
        response = ResponseBuilder().status(HTTPStatus.CREATED).json({"id": 7}).build()

        assert response.status == 201
        assert response.headers["Content-Type"] == "application/json; charset=utf-8"
        assert json.loads(response.body) == {"id": 7}

    def test_text_body(self):
        response = ResponseBuilder().text("hello").build()

        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert response.body == b"hello"

    def test_close_connection(self):
        response = ResponseBuilder().close_connection().build()

        assert response.headers["Connection"] == "close"

    def test_builds_independent_responses(self):
        builder = ResponseBuilder().header("X-A", "1")

        first = builder.build()
        first.headers["X-B"] = "2"

        assert "X-B" not in builder.build().headers


class TestConvenienceFunctions:
    """Tests for the one-line helpers."""

    def test_ok(self):
        assert json.loads(ok({"up": True}).body) == {"up": True}
        assert ok("text").body == b"text"
        assert ok(b"\x00\x01", "application/octet-stream").headers["Content-Type"] == (
            "application/octet-stream"
        )

    def test_error_helpers(self):
        assert not_found().status == 404
        assert payload_too_large().status == 413
        assert service_unavailable().status == 503
        assert internal_error().status == 500
        assert json.loads(error_response(418, "teapot").body) == {"error": "teapot"}


class TestHTTPStatus:
    """Tests for HTTPStatus."""

    def test_status_phrases(self):
        assert HTTPStatus.SERVICE_UNAVAILABLE.phrase == "Service Unavailable"
        assert str(HTTPStatus.NOT_FOUND) == "404"

    def test_status_categories(self):
        assert HTTPStatus.NO_CONTENT.is_success
        assert not HTTPStatus.NOT_FOUND.is_success
        assert HTTPStatus.REQUEST_TIMEOUT.is_error
        assert not HTTPStatus.OK.is_error


class TestFormatHTTPDate:
    def test_format(self):
        dt = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

        assert format_http_date(dt) == "Thu, 01 Jan 2026 12:00:00 GMT"
