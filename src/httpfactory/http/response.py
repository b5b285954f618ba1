"""
Response side of the HTTP message model.

Every dispatch (REQUEST, FORWARD, INCLUDE, ASYNC, ERROR) ends in an
HTTPResponse. The engine serializes whatever the handler tree returns:

    handler / filter chain  ──►  HTTPResponse  ──►  to_bytes(server_name)

Handlers return a response built one of three ways:

    HTTPResponse(status=204)
    ResponseBuilder().status(HTTPStatus.CREATED).json({"id": 7}).build()
    ok({"status": "UP"})

The error helpers at the end of the module produce the JSON bodies the
routing contexts and baseline filters answer with (404, 413, 500, 503).
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, List, Optional, Union

from .status_codes import HTTPStatus


DEFAULT_SERVER_NAME = "httpfactory/1.0"

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"

Body = Union[str, bytes]


def _encode(body: Body) -> bytes:
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


def format_http_date(dt: datetime) -> str:
    """IMF-fixdate, e.g. ``Thu, 01 Jan 2026 12:00:00 GMT``."""
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


@dataclass
class HTTPResponse:
    """Status, headers and body of one finished exchange."""

    status: int = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        code = int(self.status)
        try:
            reason = HTTPStatus(code).phrase
        except ValueError:
            reason = "Unknown"
        return f"{self.version} {code} {reason}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def set_body(self, body: Body) -> "HTTPResponse":
        self.body = _encode(body)
        return self

    def header_lines(self, server_name: str = DEFAULT_SERVER_NAME) -> List[str]:
        """
        Header lines as sent on the wire.

        Headers the handler set are kept as-is; Content-Length, Date and
        Server are only added when missing.
        """
        present = {name.lower() for name in self.headers}
        lines = [f"{name}: {value}" for name, value in self.headers.items()]
        if "content-length" not in present:
            lines.append(f"Content-Length: {len(self.body)}")
        if "date" not in present:
            lines.append(f"Date: {format_http_date(datetime.now(timezone.utc))}")
        if "server" not in present:
            lines.append(f"Server: {server_name}")
        return lines

    def to_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        head = "\r\n".join([self.status_line] + self.header_lines(server_name))
        return head.encode("latin-1", errors="replace") + b"\r\n\r\n" + self.body


class ResponseBuilder:
    """
    Fluent construction of an HTTPResponse.

    ``build()`` hands out a fresh response each time, so one builder can
    act as a template for several.
    """

    def __init__(self):
        self._status: int = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body = b""

    def status(self, status: int) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Body) -> "ResponseBuilder":
        self._body = _encode(body)
        return self

    def text(self, text: str, content_type: str = TEXT_CONTENT_TYPE) -> "ResponseBuilder":
        return self.content_type(content_type).body(text)

    def json(self, data: Any, pretty: bool = False) -> "ResponseBuilder":
        payload = json.dumps(data, indent=2 if pretty else None, default=str)
        return self.content_type(JSON_CONTENT_TYPE).body(payload)

    def close_connection(self) -> "ResponseBuilder":
        return self.header("Connection", "close")

    def build(self) -> HTTPResponse:
        return HTTPResponse(status=self._status, headers=dict(self._headers), body=self._body)


def ok(body: Union[Body, dict, list] = "", content_type: Optional[str] = None) -> HTTPResponse:
    """200 with a JSON (dict/list), text (str) or raw (bytes) body."""
    builder = ResponseBuilder()
    if isinstance(body, (dict, list)):
        return builder.json(body).build()
    if isinstance(body, str):
        return builder.text(body, content_type or TEXT_CONTENT_TYPE).build()
    builder.body(body)
    if content_type:
        builder.content_type(content_type)
    return builder.build()


def error_response(status: int, message: str) -> HTTPResponse:
    """``{"error": message}`` with the given status."""
    return ResponseBuilder().status(status).json({"error": message}).build()


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_FOUND, message)


def payload_too_large(message: str = "Payload Too Large") -> HTTPResponse:
    return error_response(HTTPStatus.PAYLOAD_TOO_LARGE, message)


def service_unavailable(message: str = "Service Unavailable") -> HTTPResponse:
    return error_response(HTTPStatus.SERVICE_UNAVAILABLE, message)


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    # Exception details go to the log, never the body.
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)
