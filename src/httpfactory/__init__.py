"""
=============================================================================
HTTPFACTORY - Named HTTP(S) Server Lifecycle Management
=============================================================================

Start, run and stop independently configured HTTP(S) servers inside one
process, each identified by a service name:

    from httpfactory import HttpServerFactory, Configuration, ok

    config = Configuration({"billing.http.port": 9000})

    with HttpServerFactory(configuration=config) as factory:
        factory.start("billing", {"/status": lambda request: ok({"up": True})})
        ...
    # every server stopped on exit

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httpfactory/
    ├── __init__.py        # This file - package exports
    ├── __main__.py        # CLI entry point (python -m httpfactory)
    ├── factory.py         # HttpServerFactory: start / stop / stop_all
    ├── registry.py        # ServerRegistry, ServerInstance
    ├── connectors.py      # ConnectorSpec, build_connectors()
    ├── tls.py             # TlsMaterial, TLS policy, SSLContext
    ├── config.py          # Configuration
    ├── errors.py          # exception hierarchy
    ├── handlers.py        # StatusHandler
    ├── core/              # the engine: pool, connections, connectors
    ├── http/              # request/response model
    ├── filters/           # Filter API and baseline filters
    └── routing/           # path specs, contexts, handler tree

=============================================================================
"""

__version__ = "1.0.0"

from .config import Configuration
from .connectors import ConnectorSpec, Protocol, TransportMode, build_connectors
from .errors import (
    ConfigurationError,
    DuplicateServerError,
    ServerFactoryError,
    ServerStartError,
    ServerStopError,
    StartFailure,
    TlsMaterialError,
)
from .factory import HttpServerFactory, get_server_factory
from .filters import Filter, function_filter
from .http import (
    DispatcherType,
    HTTPRequest,
    HTTPResponse,
    HTTPStatus,
    ResponseBuilder,
    error_response,
    not_found,
    ok,
)
from .registry import ServerInstance, ServerRegistry
from .routing import MultiMap
from .tls import TlsMaterial

__all__ = [
    "__version__",
    # Lifecycle
    "HttpServerFactory",
    "get_server_factory",
    "ServerRegistry",
    "ServerInstance",
    # Configuration
    "Configuration",
    "TlsMaterial",
    "ConnectorSpec",
    "Protocol",
    "TransportMode",
    "build_connectors",
    # Errors
    "ServerFactoryError",
    "ConfigurationError",
    "DuplicateServerError",
    "ServerStartError",
    "ServerStopError",
    "StartFailure",
    "TlsMaterialError",
    # Handlers and filters
    "DispatcherType",
    "Filter",
    "function_filter",
    "HTTPRequest",
    "HTTPResponse",
    "HTTPStatus",
    "MultiMap",
    "ResponseBuilder",
    "error_response",
    "not_found",
    "ok",
]
