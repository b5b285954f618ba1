"""
HTTP message model used by the engine and by handlers.

    request.py        HTTPRequest, RequestParser, DispatcherType
    response.py       HTTPResponse, ResponseBuilder, helpers
    status_codes.py   HTTPStatus
"""

from .request import DispatcherType, HTTPParseError, HTTPRequest, RequestParser
from .response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    internal_error,
    not_found,
    ok,
    payload_too_large,
    service_unavailable,
)
from .status_codes import HTTPStatus

__all__ = [
    "DispatcherType",
    "HTTPParseError",
    "HTTPRequest",
    "RequestParser",
    "HTTPResponse",
    "ResponseBuilder",
    "HTTPStatus",
    "ok",
    "error_response",
    "not_found",
    "payload_too_large",
    "service_unavailable",
    "internal_error",
]
