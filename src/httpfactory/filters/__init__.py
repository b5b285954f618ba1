"""
Request filters.

    base.py      Filter, FilterChain, function_filter
    builtin.py   baseline filters attached to every routing context
"""

from .base import Chain, Filter, FilterChain, FunctionFilter, as_filter, function_filter
from .builtin import (
    AvailabilityFilter,
    CrossOriginFilter,
    FlowContextFilter,
    RequestLoggingFilter,
    RequestValidityFilter,
    baseline_filters,
)

__all__ = [
    "Chain",
    "Filter",
    "FilterChain",
    "FunctionFilter",
    "as_filter",
    "function_filter",
    "AvailabilityFilter",
    "CrossOriginFilter",
    "FlowContextFilter",
    "RequestLoggingFilter",
    "RequestValidityFilter",
    "baseline_filters",
]
