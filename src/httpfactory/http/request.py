"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes a connection has read into an HTTPRequest object.

    Raw bytes                  HTTPRequest                 Handler tree
    from socket    ──parse──►   dataclass    ──dispatch──►  context/filters
       │                            │                          │
    b"GET /..."              HTTPRequest(                  handler(request)
                               method="GET",
                               path="/api/users",
                               dispatcher_type=REQUEST,
                               ...)

=============================================================================
DISPATCH PHASES
=============================================================================

A request is routed to a context for one of five reasons. Filters are
mapped per phase, so the phase travels with the request:

    REQUEST   the client's original request, straight off the wire
    FORWARD   a handler handed the request over to another path
    INCLUDE   a handler pulled another path's output into its own
    ASYNC     a suspended request resumed from another thread
    ERROR     a handler raised; the error handler is producing the reply

=============================================================================
"""

import dataclasses
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, unquote, urlparse


class DispatcherType(Enum):
    """Reason a request is being routed to a context."""
    REQUEST = "request"
    FORWARD = "forward"
    INCLUDE = "include"
    ASYNC = "async"
    ERROR = "error"

    @classmethod
    def all(cls) -> frozenset:
        """Every dispatch phase (what caller filters are mapped for)."""
        return frozenset(cls)


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code the engine should answer with:
        400 Bad Request, 405 Method Not Allowed, 413 Payload Too Large,
        431 Request Header Fields Too Large, 505 HTTP Version Not Supported
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Headers are stored with lowercase names. ``attributes`` is a per-request
    scratch space shared by filters and handlers (flow id, forward origin,
    the exception during an ERROR dispatch, ...).
    """

    method: str
    path: str
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""

    client_address: tuple[str, int] = ("", 0)
    scheme: str = "http"
    raw: bytes = b""

    # Set by the handler tree while the request is dispatched
    dispatcher_type: DispatcherType = DispatcherType.REQUEST
    attributes: Dict[str, Any] = field(default_factory=dict)

    _body_json: Optional[Any] = field(default=None, repr=False)
    _dispatch_source: Optional[Any] = field(default=None, repr=False, compare=False)
    _async_context: Optional[Any] = field(default=None, repr=False, compare=False)

    # =========================================================================
    # HEADER / BODY ACCESSORS
    # =========================================================================

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters (``application/json``)."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_secure(self) -> bool:
        """True when the request arrived on a TLS connector."""
        return self.scheme == "https"

    @property
    def json(self) -> Any:
        """Body parsed as JSON (cached after the first access)."""
        if self._body_json is None and self.body:
            try:
                self._body_json = json.loads(self.body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise HTTPParseError(f"Invalid JSON body: {e}")
        return self._body_json

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection open unless ``Connection: close``;
        HTTP/1.0 closes it unless ``Connection: keep-alive``.
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default

    # =========================================================================
    # DISPATCH HOOKS
    # =========================================================================
    #
    # The handler tree that is dispatching this request attaches itself as
    # _dispatch_source. These methods are how handlers reach it without
    # importing the routing package.
    #

    def get_request_dispatcher(self, path: str):
        """
        Get a dispatcher that forwards to, or includes, another path.

        Example:
            def legacy(request):
                return request.get_request_dispatcher("/v2/users").forward(request)
        """
        return self._require_dispatch_source().get_request_dispatcher(path)

    def start_async(self):
        """
        Suspend this request and return its AsyncContext.

        The handler's own return value is ignored once async has started;
        the response comes from ``AsyncContext.dispatch()`` or
        ``AsyncContext.complete()``.
        """
        if self._async_context is None:
            self._async_context = self._require_dispatch_source().start_async(self)
        return self._async_context

    @property
    def is_async_started(self) -> bool:
        return self._async_context is not None

    @property
    def async_context(self):
        return self._async_context

    def derive(self, path: str, dispatcher_type: DispatcherType) -> "HTTPRequest":
        """
        Copy of this request re-targeted at ``path`` for another dispatch.

        Attributes are copied so the target can add to them without the
        caller seeing the change.
        """
        return dataclasses.replace(
            self,
            path=path,
            dispatcher_type=dispatcher_type,
            attributes=dict(self.attributes),
            _async_context=None,
        )

    def _require_dispatch_source(self):
        if self._dispatch_source is None:
            raise RuntimeError("Request is not being dispatched by a handler tree")
        return self._dispatch_source


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

    ┌───────────────────────────────────────────────────────────────────┐
    │  1. Find the header/body separator (\\r\\n\\r\\n)                    │
    │  2. Enforce the connector's header size limit        → 431        │
    │  3. Parse the request line  METHOD SP URI SP VERSION → 400/405/505│
    │  4. Parse headers, lowercase names, join duplicates               │
    │  5. Cut the body at Content-Length                                │
    └───────────────────────────────────────────────────────────────────┘
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(
        self,
        max_request_size: int = 10 * 1024 * 1024,
        max_header_size: int = 8192,
    ):
        """
        Args:
            max_request_size: Largest accepted request (headers + body).
            max_header_size: Largest accepted header section, the
                             connector's request header size limit.
        """
        self.max_request_size = max_request_size
        self.max_header_size = max_header_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0),
        scheme: str = "http",
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data.

        Raises:
            HTTPParseError: If the request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")
        if header_end > self.max_header_size:
            raise HTTPParseError(
                f"Request header too large: {header_end} bytes",
                status_code=431,
            )

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
            scheme=scheme,
            raw=data,
        )

    def _parse_request_line(
        self,
        line: str,
    ) -> tuple[str, str, Dict[str, list[str]], str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        # Path traversal: "GET /../../etc/passwd"
        if ".." in path:
            raise HTTPParseError("Invalid path: contains ..", status_code=400)

        return method, path, query_params, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a dict with lowercase names.

        Continuation lines (leading whitespace) extend the previous header;
        repeated headers are joined with ", " as RFC 7230 allows.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue  # lenient: skip malformed header lines

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers
