"""
=============================================================================
HANDLER TREE
=============================================================================

The composite handler a server runs: every routing context of one
service, in creation order, plus the machinery for re-dispatching a
request while it is being handled.

    engine ──► tree.handle(request)
                  │
                  ├─ find_context(path)           no match → 404
                  ├─ context.dispatch(request)    REQUEST phase
                  │      │
                  │      ├─ handler forwards / includes
                  │      │     request.get_request_dispatcher("/other").forward(request)
                  │      │         └─► tree.dispatch(request, "/other", FORWARD)
                  │      │
                  │      └─ handler goes async
                  │            ctx = request.start_async()
                  │            ctx.start(work)     pool worker, or its own thread
                  │            ctx.dispatch()      ASYNC phase, completes
                  │            ctx.complete(resp)  completes directly
                  │
                  └─ async pending? wait up to asyncTimeout, else 503

=============================================================================
"""

import logging
import threading
from typing import Callable, List, Optional

from ..config import Configuration
from ..core.thread_pool import ThreadPool
from ..errors import ConfigurationError
from ..filters.base import as_filter
from ..filters.builtin import baseline_filters
from ..http import HTTPResponse, HTTPStatus, error_response, not_found
from ..http.request import DispatcherType, HTTPRequest
from .context import AsyncPending, RoutingContext, find_context
from .path_spec import PathSpec
from .tables import Table, iter_entries


logger = logging.getLogger(__name__)


DEFAULT_ASYNC_TIMEOUT_MS = 30000

FORWARD_REQUEST_URI = "forward.request_uri"
INCLUDE_REQUEST_URI = "include.request_uri"


class HandlerTree:
    """All routing contexts of one service."""

    def __init__(
        self,
        service_name: str = "",
        pool: Optional[ThreadPool] = None,
        async_timeout: float = DEFAULT_ASYNC_TIMEOUT_MS / 1000.0,
    ):
        self.service_name = service_name
        self.pool = pool
        self.async_timeout = async_timeout
        self._contexts: List[RoutingContext] = []

    def __repr__(self) -> str:
        return f"HandlerTree({self.service_name!r}, {len(self._contexts)} contexts)"

    def add_context(self, context: RoutingContext):
        self._contexts.append(context)

    @property
    def contexts(self) -> List[RoutingContext]:
        return list(self._contexts)

    def find_context(self, path: str) -> Optional[RoutingContext]:
        return find_context(self._contexts, path)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Entry point for the engine: a REQUEST dispatch."""
        request._dispatch_source = self
        return self._dispatch_to(request)

    def dispatch(
        self,
        request: HTTPRequest,
        path: str,
        dispatcher_type: DispatcherType,
    ) -> HTTPResponse:
        """Dispatch a copy of ``request`` to ``path`` for another phase."""
        target = request.derive(path, dispatcher_type)
        target._dispatch_source = self
        return self._dispatch_to(target)

    def _dispatch_to(self, request: HTTPRequest) -> HTTPResponse:
        context = self.find_context(request.path)
        if context is None:
            return not_found(f"No handler for {request.path}")

        response = context.dispatch(request)
        if isinstance(response, AsyncPending):
            response = self._await(response)
        return response

    def _await(self, pending: AsyncPending) -> HTTPResponse:
        response = pending.async_context.wait()
        for name, value in pending.headers.items():
            response.headers.setdefault(name, value)
        return response

    def dispatch_error(self, request: HTTPRequest, exc: BaseException) -> HTTPResponse:
        context = self.find_context(request.path)
        if context is None:
            logger.error(f"{self.service_name}: {request.path} failed: {exc}")
            return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error")
        return context.dispatch_error(request, exc)

    # =========================================================================
    # HOOKS USED BY HTTPRequest
    # =========================================================================

    def get_request_dispatcher(self, path: str) -> "RequestDispatcher":
        return RequestDispatcher(self, path)

    def start_async(self, request: HTTPRequest) -> "AsyncContext":
        return AsyncContext(self, request, self.async_timeout)


class RequestDispatcher:
    """Forward to, or include, another path of the same service."""

    def __init__(self, tree: HandlerTree, path: str):
        self.tree = tree
        self.path = path

    def forward(self, request: HTTPRequest) -> HTTPResponse:
        """The target answers instead of the caller."""
        request.attributes.setdefault(FORWARD_REQUEST_URI, request.path)
        return self.tree.dispatch(request, self.path, DispatcherType.FORWARD)

    def include(self, request: HTTPRequest) -> HTTPResponse:
        """The target's response, for the caller to merge into its own."""
        request.attributes[INCLUDE_REQUEST_URI] = self.path
        return self.tree.dispatch(request, self.path, DispatcherType.INCLUDE)


class AsyncContext:
    """
    A suspended request.

    Exactly one response completes it; later completions are ignored.
    If none arrives within the timeout the exchange fails with 503.
    """

    def __init__(self, tree: HandlerTree, request: HTTPRequest, timeout: float):
        self.tree = tree
        self.request = request
        self.timeout = timeout
        self._response: Optional[HTTPResponse] = None
        self._done = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_completed(self) -> bool:
        return self._done.is_set()

    def start(self, func: Callable[[], None]):
        """
        Run ``func`` off the dispatching thread.

        It goes to the service's worker pool when the pool can run it right
        away, and to a dedicated thread otherwise. The dispatching worker
        blocks until the request completes, so the work must never wait
        behind it in the queue. An exception from ``func`` completes the
        request through an ERROR dispatch.
        """
        pool = self.tree.pool
        if pool is not None and pool.is_running and pool.has_capacity:
            try:
                if pool.submit(self._run, args=(func,)):
                    return
            except RuntimeError:
                pass  # pool stopped in between

        logger.debug(f"{self.tree.service_name}: async {self.request.path} on a dedicated thread")
        threading.Thread(
            target=self._run,
            args=(func,),
            name=f"{self.tree.service_name}-async",
            daemon=True,
        ).start()

    def _run(self, func: Callable[[], None]):
        try:
            func()
        except Exception as e:
            logger.exception(f"{self.tree.service_name}: async work for {self.request.path} failed: {e}")
            self.complete(self.tree.dispatch_error(self.request, e))

    def dispatch(self, path: Optional[str] = None):
        """ASYNC dispatch to ``path`` (default: the original path); completes."""
        response = self.tree.dispatch(self.request, path or self.request.path, DispatcherType.ASYNC)
        self.complete(response)

    def complete(self, response: HTTPResponse):
        with self._lock:
            if self._done.is_set():
                return
            self._response = response
            self._done.set()

    def wait(self) -> HTTPResponse:
        if not self._done.wait(self.timeout):
            logger.warning(
                f"{self.tree.service_name}: async {self.request.path} timed out "
                f"after {self.timeout:.1f}s"
            )
            self.complete(error_response(HTTPStatus.SERVICE_UNAVAILABLE, "Async request timed out"))
        return self._response


def assemble_handler_tree(
    routes: Table,
    filters: Table,
    pool: Optional[ThreadPool],
    service_name: str,
    config: Configuration,
) -> HandlerTree:
    """
    One routing context per route entry, each with the baseline filters
    (REQUEST only) followed by every caller filter (all dispatch phases).

    Raises:
        ConfigurationError: On an invalid path pattern, a non-callable
                            handler or filter, or a bad setting.
    """
    async_timeout_ms = config.get_int(
        f"{service_name}.http.asyncTimeout", DEFAULT_ASYNC_TIMEOUT_MS
    )
    tree = HandlerTree(service_name, pool, async_timeout_ms / 1000.0)

    baseline = baseline_filters(service_name, pool, config)
    match_all = PathSpec.parse("/*")

    caller_filters = []
    for path, filter_ in iter_entries(filters):
        try:
            caller_filters.append((PathSpec.parse(path), as_filter(filter_)))
        except TypeError as e:
            raise ConfigurationError(f"filters[{path}]", str(e)) from e

    for path, handler in iter_entries(routes):
        if not callable(handler):
            raise ConfigurationError(f"routes[{path}]", f"handler is not callable: {handler!r}")

        context = RoutingContext(PathSpec.parse(path), handler, service_name)
        for filter_ in baseline:
            context.add_filter(match_all, filter_, {DispatcherType.REQUEST})
        for path_spec, filter_ in caller_filters:
            context.add_filter(path_spec, filter_, DispatcherType.all())
        tree.add_context(context)

    logger.debug(f"{service_name}: assembled {len(tree.contexts)} routing contexts")
    return tree
