"""
=============================================================================
ROUTING CONTEXT
=============================================================================

One route table entry becomes one isolated routing context: its own path
spec, its own handler, its own filter mappings and its own error handler.
Two entries for the same path are two contexts; they are never merged.

    RoutingContext("/api/*", api_handler)
    ├── filter mappings (in attach order)
    │     /*      FlowContextFilter      {REQUEST}
    │     /*      AvailabilityFilter     {REQUEST}
    │     /*      RequestLoggingFilter   {REQUEST}
    │     /api/*  AuthFilter             {REQUEST, FORWARD, INCLUDE, ASYNC, ERROR}
    ├── handler
    └── error handler (500 JSON by default)

dispatch(request) runs the filters whose path spec matches the request
path *and* whose dispatcher types include the request's dispatch phase,
then the handler. A REQUEST or ASYNC dispatch that raises turns into an
ERROR dispatch of the same path:

    REQUEST ──► filters ──► handler ──✗ raises
                                        │
                                        ▼  request.attributes["error.exception"] = exc
    ERROR   ──► ERROR filters ──► error handler ──► 500 response

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, List, Optional

from ..filters.base import Filter, FilterChain
from ..http import HTTPResponse, HTTPStatus, ResponseBuilder, internal_error
from ..http.request import DispatcherType, HTTPRequest
from .path_spec import PathSpec


logger = logging.getLogger(__name__)


ERROR_EXCEPTION = "error.exception"
ERROR_STATUS = "error.status"
ERROR_REQUEST_URI = "error.request_uri"

Handler = Callable[[HTTPRequest], HTTPResponse]


class AsyncPending(HTTPResponse):
    """
    Placeholder a context returns when its handler went async.

    Filters see it as an ordinary response on the way out; headers they
    set on it are carried over to the real response once the async work
    completes.
    """

    def __init__(self, async_context: Any):
        super().__init__(status=HTTPStatus.ACCEPTED)
        self.async_context = async_context


def default_error_handler(request: HTTPRequest) -> HTTPResponse:
    """500 with a generic JSON body. Details stay in the log."""
    status = request.attributes.get(ERROR_STATUS, HTTPStatus.INTERNAL_SERVER_ERROR)
    return (ResponseBuilder()
        .status(status)
        .json({"error": "Internal Server Error", "path": request.path})
        .build())


@dataclass(frozen=True)
class FilterMapping:
    path_spec: PathSpec
    filter: Filter
    dispatcher_types: FrozenSet[DispatcherType]

    def applies_to(self, request: HTTPRequest) -> bool:
        return (
            request.dispatcher_type in self.dispatcher_types
            and self.path_spec.matches(request.path)
        )


class RoutingContext:
    """A path spec bound to one handler and its filters."""

    def __init__(
        self,
        path_spec: PathSpec,
        handler: Handler,
        service_name: str = "",
        error_handler: Handler = default_error_handler,
    ):
        self.path_spec = path_spec
        self.handler = handler
        self.service_name = service_name
        self.error_handler = error_handler
        self._mappings: List[FilterMapping] = []

    def __repr__(self) -> str:
        return f"RoutingContext({self.path_spec.pattern!r}, {len(self._mappings)} filters)"

    def add_filter(
        self,
        path_spec: PathSpec,
        filter_: Filter,
        dispatcher_types: Iterable[DispatcherType],
    ):
        self._mappings.append(FilterMapping(path_spec, filter_, frozenset(dispatcher_types)))

    @property
    def filter_mappings(self) -> List[FilterMapping]:
        return list(self._mappings)

    def matches(self, path: str) -> bool:
        return self.path_spec.matches(path)

    def filters_for(self, request: HTTPRequest) -> List[Filter]:
        return [m.filter for m in self._mappings if m.applies_to(request)]

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, request: HTTPRequest) -> HTTPResponse:
        """
        Run the mapped filters and the handler for ``request``.

        Returns an AsyncPending placeholder if the handler started async.
        """
        if request.dispatcher_type is DispatcherType.ERROR:
            return self._dispatch_error(request)

        chain = FilterChain(self.filters_for(request)).wrap(self._invoke_handler)

        if request.dispatcher_type not in (DispatcherType.REQUEST, DispatcherType.ASYNC):
            # FORWARD / INCLUDE failures belong to the dispatching handler
            return chain(request)

        try:
            return chain(request)
        except Exception as e:
            logger.exception(
                f"{self.service_name}: {request.dispatcher_type.name} dispatch of "
                f"{request.method} {request.path} failed: {e}"
            )
            return self.dispatch_error(request, e)

    def dispatch_error(self, request: HTTPRequest, exc: BaseException) -> HTTPResponse:
        """ERROR dispatch of ``request.path`` for exception ``exc``."""
        error_request = request.derive(request.path, DispatcherType.ERROR)
        error_request.attributes[ERROR_EXCEPTION] = exc
        error_request.attributes[ERROR_REQUEST_URI] = request.path
        error_request.attributes.setdefault(ERROR_STATUS, HTTPStatus.INTERNAL_SERVER_ERROR)
        return self._dispatch_error(error_request)

    def _dispatch_error(self, request: HTTPRequest) -> HTTPResponse:
        chain = FilterChain(self.filters_for(request)).wrap(self.error_handler)
        try:
            return chain(request)
        except Exception as e:
            logger.exception(f"{self.service_name}: error handler for {request.path} failed: {e}")
            return internal_error()

    def _invoke_handler(self, request: HTTPRequest) -> HTTPResponse:
        response = self.handler(request)
        if request.is_async_started:
            return AsyncPending(request.async_context)
        if not isinstance(response, HTTPResponse):
            raise TypeError(
                f"Handler for {self.path_spec.pattern} returned "
                f"{type(response).__name__}, not HTTPResponse"
            )
        return response


def find_context(contexts: Iterable[RoutingContext], path: str) -> Optional[RoutingContext]:
    """
    The most specific context matching ``path``; the earliest created one
    among equally specific matches.
    """
    best = None
    for context in contexts:
        if not context.matches(path):
            continue
        if best is None or context.path_spec.specificity > best.path_spec.specificity:
            best = context
    return best
