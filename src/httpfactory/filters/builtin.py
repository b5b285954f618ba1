"""
=============================================================================
BASELINE FILTERS
=============================================================================

Every routing context gets this filter set ahead of any caller filters,
mapped to ``/*`` for REQUEST dispatches. Each one can be switched off per
service:

    ┌───────────────────────┬──────────────────────────────────────┬───────┐
    │ Filter                │ Key (<service>.http.)                │ On by │
    ├───────────────────────┼──────────────────────────────────────┼───────┤
    │ FlowContextFilter     │ flowIdFilter.isEnabled               │ yes   │
    │ AvailabilityFilter    │ availabilityFilter.isEnabled         │ yes   │
    │                       │ availabilityFilter.maxQueuedTasks    │       │
    │ RequestLoggingFilter  │ httpPerfFilter.isEnabled             │ yes   │
    │ RequestValidityFilter │ requestValidityFilter.isEnabled      │ no    │
    │                       │ requestValidityFilter.maxContentLength│      │
    │ CrossOriginFilter     │ crossOriginFilter.isEnabled          │ no    │
    │                       │ crossOriginFilter.allowedOrigins     │       │
    └───────────────────────┴──────────────────────────────────────┴───────┘

    request ──► flow id ──► availability ──► logging ──► validity ──► CORS
                  │              │                           │          │
             X-Flow-Id      503 when the               413 when      preflight
             in and out     task queue is full         too large     answered

=============================================================================
"""

import logging
import time
import uuid
from typing import Iterable, List, Optional

from ..config import Configuration
from ..core.thread_pool import ThreadPool
from ..http import HTTPStatus, ResponseBuilder, error_response
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from .base import Chain, Filter


logger = logging.getLogger(__name__)
access_logger = logging.getLogger("httpfactory.access")


FLOW_ID_HEADER = "X-Flow-Id"
FLOW_ID_ATTRIBUTE = "flow.id"

DEFAULT_MAX_CONTENT_LENGTH = 100000


class FlowContextFilter(Filter):
    """
    Correlates everything done for one request under a flow id.

    Reuses the caller's ``X-Flow-Id`` or mints one, stores it in
    ``request.attributes["flow.id"]`` and echoes it on the response.
    """

    def __call__(self, request: HTTPRequest, chain: Chain) -> HTTPResponse:
        flow_id = request.get_header(FLOW_ID_HEADER) or uuid.uuid4().hex
        request.attributes[FLOW_ID_ATTRIBUTE] = flow_id

        response = chain(request)
        response.headers.setdefault(FLOW_ID_HEADER, flow_id)
        return response


class AvailabilityFilter(Filter):
    """
    Answers 503 while the service's worker pool cannot take more work.

    By default that means the task queue is full. ``max_queued_tasks``
    rejects earlier, once that many tasks are already waiting.
    """

    def __init__(
        self,
        pool: ThreadPool,
        retry_after: int = 1,
        max_queued_tasks: Optional[int] = None,
    ):
        self.pool = pool
        self.retry_after = retry_after
        self.max_queued_tasks = max_queued_tasks

    def is_overloaded(self) -> bool:
        if self.pool.is_saturated:
            return True
        if self.max_queued_tasks is None:
            return False
        return self.pool.queued_tasks >= self.max_queued_tasks

    def __call__(self, request: HTTPRequest, chain: Chain) -> HTTPResponse:
        if self.is_overloaded():
            logger.warning(
                f"{self.pool.name}: rejecting {request.method} {request.path}, "
                f"worker pool saturated ({self.pool.queued_tasks} queued)"
            )
            response = error_response(HTTPStatus.SERVICE_UNAVAILABLE, "Service Unavailable")
            response.set_header("Retry-After", str(self.retry_after))
            return response
        return chain(request)


class RequestLoggingFilter(Filter):
    """
    One access-log line per request: method, path, status, size, duration.

    Logged to ``httpfactory.access`` so it can be routed separately from
    the lifecycle log.
    """

    def __init__(self, service_name: str, log_level: int = logging.INFO):
        self.service_name = service_name
        self.log_level = log_level

    def __call__(self, request: HTTPRequest, chain: Chain) -> HTTPResponse:
        started = time.perf_counter()
        try:
            response = chain(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            access_logger.error(
                f"{self.service_name} {request.method} {request.path} failed: "
                f"{type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        access_logger.log(
            self.log_level,
            f'{self.service_name} {request.client_address[0]} "{request.method} {request.path}" '
            f"{int(response.status)} {len(response.body)} {duration_ms:.2f}ms "
            f"flow={request.attributes.get(FLOW_ID_ATTRIBUTE, '-')}",
        )
        return response


class RequestValidityFilter(Filter):
    """Rejects requests whose declared Content-Length is over the limit."""

    def __init__(self, max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH):
        self.max_content_length = max_content_length

    def __call__(self, request: HTTPRequest, chain: Chain) -> HTTPResponse:
        if request.content_length > self.max_content_length:
            return error_response(
                HTTPStatus.PAYLOAD_TOO_LARGE,
                f"Content-Length {request.content_length} exceeds {self.max_content_length}",
            )
        return chain(request)


class CrossOriginFilter(Filter):
    """
    CORS headers on every response; preflight OPTIONS answered with 204.

    ``allowed_origins`` of ``["*"]`` allows any origin.
    """

    ALLOW_METHODS = "GET, POST, PUT, DELETE, PATCH, HEAD, OPTIONS"
    ALLOW_HEADERS = "Content-Type, Authorization, X-Requested-With, X-Flow-Id"
    MAX_AGE = 1800

    def __init__(self, allowed_origins: Optional[Iterable[str]] = None):
        self.allowed_origins = list(allowed_origins or ["*"])

    def __call__(self, request: HTTPRequest, chain: Chain) -> HTTPResponse:
        origin = request.get_header("origin")

        if request.method == "OPTIONS" and request.get_header("access-control-request-method"):
            response = ResponseBuilder().status(HTTPStatus.NO_CONTENT).build()
            if self._add_cors_headers(response, origin):
                response.headers["Access-Control-Allow-Methods"] = self.ALLOW_METHODS
                response.headers["Access-Control-Allow-Headers"] = self.ALLOW_HEADERS
                response.headers["Access-Control-Max-Age"] = str(self.MAX_AGE)
            return response

        response = chain(request)
        self._add_cors_headers(response, origin)
        return response

    def _add_cors_headers(self, response: HTTPResponse, origin: str) -> bool:
        if "*" in self.allowed_origins:
            allowed = "*"
        elif origin and origin in self.allowed_origins:
            allowed = origin
        else:
            return False

        response.headers["Access-Control-Allow-Origin"] = allowed
        if allowed != "*":
            vary = response.headers.get("Vary", "")
            if "Origin" not in vary:
                response.headers["Vary"] = f"{vary}, Origin".lstrip(", ")
        return True


def baseline_filters(
    service_name: str,
    pool: Optional[ThreadPool],
    config: Configuration,
) -> List[Filter]:
    """
    The service's enabled baseline filters, outermost first.

    Raises:
        ConfigurationError: If a switch or limit is malformed.
    """
    prefix = f"{service_name}.http."
    filters: List[Filter] = []

    if config.get_bool(prefix + "flowIdFilter.isEnabled", True):
        filters.append(FlowContextFilter())

    if config.get_bool(prefix + "availabilityFilter.isEnabled", True) and pool is not None:
        filters.append(AvailabilityFilter(
            pool,
            max_queued_tasks=config.get_int(prefix + "availabilityFilter.maxQueuedTasks"),
        ))

    if config.get_bool(prefix + "httpPerfFilter.isEnabled", True):
        filters.append(RequestLoggingFilter(service_name))

    if config.get_bool(prefix + "requestValidityFilter.isEnabled", False):
        filters.append(RequestValidityFilter(
            config.get_int(
                prefix + "requestValidityFilter.maxContentLength",
                DEFAULT_MAX_CONTENT_LENGTH,
            )
        ))

    if config.get_bool(prefix + "crossOriginFilter.isEnabled", False):
        origins = config.get_string(prefix + "crossOriginFilter.allowedOrigins", "*")
        filters.append(CrossOriginFilter(o.strip() for o in origins.split(",") if o.strip()))

    return filters
