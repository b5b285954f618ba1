"""
=============================================================================
FILTERS
=============================================================================

A filter sits between the engine and a routing context's handler and can
inspect, short-circuit or decorate every exchange:

    class RequireJson(Filter):
        def __call__(self, request, chain):
            if request.method == "POST" and request.content_type != "application/json":
                return error_response(415, "JSON only")
            response = chain(request)         # continue to the next filter
            response.set_header("X-Checked", "1")
            return response

Filters are chained like onion layers, first added = outermost:

    FilterChain([A, B, C]).wrap(handler)

        request ──► A ──► B ──► C ──► handler
        response ◄── A ◄── B ◄── C ◄──┘

Plain functions work too:

    @function_filter
    def stamp(request, chain):
        response = chain(request)
        response.set_header("X-Served-By", "billing")
        return response

=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Iterator, List, Optional

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# What a filter calls to continue: the next filter or the handler
Chain = Callable[[HTTPRequest], HTTPResponse]


class Filter(ABC):
    """Base class for request filters."""

    @abstractmethod
    def __call__(self, request: HTTPRequest, chain: Chain) -> HTTPResponse:
        """
        Process the request.

        Call ``chain(request)`` to continue, or return a response to stop
        the exchange here.
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def __repr__(self) -> str:
        return f"<{self.name}>"


class FilterChain:
    """Ordered filters wrapped around a final handler."""

    def __init__(self, filters: Optional[Iterable[Filter]] = None):
        self._filters: List[Filter] = list(filters or [])

    def add(self, filter_: Filter) -> "FilterChain":
        self._filters.append(filter_)
        return self

    def wrap(self, handler: Chain) -> Chain:
        """Build the callable that runs every filter, then ``handler``."""
        current = handler
        for filter_ in reversed(self._filters):
            current = _link(filter_, current)
        return current

    def __len__(self) -> int:
        return len(self._filters)

    def __iter__(self) -> Iterator[Filter]:
        return iter(self._filters)


def _link(filter_: Filter, next_chain: Chain) -> Chain:
    def chained(request: HTTPRequest) -> HTTPResponse:
        return filter_(request, next_chain)
    return chained


class FunctionFilter(Filter):
    """Adapts a ``func(request, chain)`` function to the Filter interface."""

    def __init__(
        self,
        func: Callable[[HTTPRequest, Chain], HTTPResponse],
        name: Optional[str] = None,
    ):
        self._func = func
        self._name = name or getattr(func, "__name__", type(func).__name__)

    def __call__(self, request: HTTPRequest, chain: Chain) -> HTTPResponse:
        return self._func(request, chain)

    @property
    def name(self) -> str:
        return self._name


def function_filter(func: Callable[[HTTPRequest, Chain], HTTPResponse]) -> FunctionFilter:
    """Decorator: turn ``func(request, chain)`` into a Filter."""
    return FunctionFilter(func)


def as_filter(obj) -> Filter:
    """
    Accept a Filter, or any ``callable(request, chain)``.

    Raises:
        TypeError: If ``obj`` is not callable.
    """
    if isinstance(obj, Filter):
        return obj
    if callable(obj):
        return FunctionFilter(obj)
    raise TypeError(f"Not a filter: {obj!r}")
