"""
Routing assembly: route/filter tables → isolated routing contexts →
one handler tree per service.

    path_spec.py   servlet URL patterns and their precedence
    tables.py      MultiMap and table normalization
    context.py     RoutingContext, filter mappings, ERROR dispatch
    tree.py        HandlerTree, forward/include, async, assembly
"""

from .context import (
    ERROR_EXCEPTION,
    AsyncPending,
    FilterMapping,
    RoutingContext,
    default_error_handler,
)
from .path_spec import PathSpec, PathSpecKind
from .tables import MultiMap, iter_entries
from .tree import (
    FORWARD_REQUEST_URI,
    INCLUDE_REQUEST_URI,
    AsyncContext,
    HandlerTree,
    RequestDispatcher,
    assemble_handler_tree,
)

__all__ = [
    "ERROR_EXCEPTION",
    "FORWARD_REQUEST_URI",
    "INCLUDE_REQUEST_URI",
    "AsyncContext",
    "AsyncPending",
    "FilterMapping",
    "HandlerTree",
    "MultiMap",
    "PathSpec",
    "PathSpecKind",
    "RequestDispatcher",
    "RoutingContext",
    "assemble_handler_tree",
    "default_error_handler",
    "iter_entries",
]
