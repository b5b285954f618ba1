"""
=============================================================================
HTTP SERVER FACTORY
=============================================================================

Start and stop named HTTP(S) servers inside one process.

    factory = HttpServerFactory(configuration=config)

    factory.start("billing", {"/invoices/*": invoices, "/status": status})
    factory.start(
        "reports",
        routes={"/reports/*": reports},
        filters={"/reports/*": require_token},
        tls=TlsMaterial(key_store_path="reports.pem", key_store_password="secret"),
    )
    ...
    factory.stop("billing")
    factory.stop_all()

=============================================================================
START SEQUENCE
=============================================================================

    start(name, routes, filters, tls)
        │
        ├─ registry.reserve(name)          DuplicateServerError if taken
        │
        ├─ build_connectors()              plaintext and/or TLS specs
        ├─ create_pool()                   "<name>-worker-N" threads
        ├─ assemble_handler_tree()         one context per route entry
        ├─ engine.set_connectors / set_handler / set_thread_pool
        ├─ engine.start()                  bind, listen, accept
        │
        ├─ success → registry.commit()     "Http server: <name> started on [...]"
        └─ failure → registry.release()    ServerStartError(reason=...)

Nothing is registered unless the engine is listening; a failed start
leaves the registry exactly as it was.

=============================================================================
"""

import atexit
import logging
import threading
import time
from typing import Callable, Optional

from .config import Configuration
from .connectors import build_connectors
from .core.engine import Server
from .core.thread_pool import create_pool
from .errors import ServerStartError, ServerStopError
from .registry import ServerInstance, ServerRegistry
from .routing.tables import Table
from .routing.tree import assemble_handler_tree
from .tls import NO_TLS, TlsMaterial


logger = logging.getLogger(__name__)


class HttpServerFactory:
    """
    Lifecycle manager for named servers.

    Holds no per-server state of its own; everything lives in the
    registry, which can be shared or injected.
    """

    def __init__(
        self,
        registry: Optional[ServerRegistry] = None,
        configuration: Optional[Configuration] = None,
        server_factory: Callable[[str], Server] = Server,
    ):
        """
        Args:
            registry: Running servers; a fresh registry if omitted.
            configuration: Settings source; empty (all defaults) if omitted.
            server_factory: Builds the engine for a service name.
        """
        self.registry = registry if registry is not None else ServerRegistry()
        self.configuration = configuration if configuration is not None else Configuration()
        self._server_factory = server_factory

    def __repr__(self) -> str:
        return f"HttpServerFactory(running={self.registry.names()})"

    # =========================================================================
    # START
    # =========================================================================

    def start(
        self,
        service_name: str,
        routes: Table,
        filters: Table = None,
        tls: Optional[TlsMaterial] = None,
    ) -> ServerInstance:
        """
        Start a server for ``service_name``.

        Args:
            service_name: Unique name; also the configuration key prefix.
            routes: Path pattern → handler table.
            filters: Path pattern → filter table applied to every context
                     for every dispatch phase.
            tls: Key store and optional trust store; no TLS if omitted.

        Returns:
            The running ServerInstance.

        Raises:
            DuplicateServerError: ``service_name`` is already running.
            ServerStartError: Anything went wrong building or starting the
                              server. Nothing was registered.
        """
        self.registry.reserve(service_name)

        try:
            instance = self._build_and_start(service_name, routes, filters, tls or NO_TLS)
        except Exception as e:
            self.registry.release(service_name)
            error = ServerStartError(service_name, e)
            logger.error(str(error), exc_info=e)
            raise error from e
        except BaseException:
            self.registry.release(service_name)
            raise

        self.registry.commit(instance)
        logger.info(f"Http server: {service_name} started on {instance.ports}")
        return instance

    def _build_and_start(
        self,
        service_name: str,
        routes: Table,
        filters: Table,
        tls: TlsMaterial,
    ) -> ServerInstance:
        config = self.configuration

        connectors = build_connectors(service_name, config, tls)
        pool = create_pool(service_name, config)
        tree = assemble_handler_tree(routes, filters, pool, service_name, config)

        engine = self._server_factory(service_name)
        engine.set_connectors(connectors)
        engine.set_handler(tree.handle)
        engine.set_thread_pool(pool)
        engine.start()

        return ServerInstance(
            service_name=service_name,
            connectors=connectors,
            handler_tree=tree,
            thread_pool=pool,
            engine=engine,
            started_at=time.time(),
            ports=list(engine.bound_ports),
        )

    # =========================================================================
    # STOP
    # =========================================================================

    def stop(self, service_name: str):
        """
        Stop ``service_name`` if it is running; otherwise do nothing.

        An engine failure is logged, not raised. Either way the name is
        free to be started again.
        """
        instance = self.registry.remove(service_name)
        if instance is None:
            logger.debug(f"Http server: {service_name} is not running")
            return

        try:
            instance.engine.stop()
        except Exception as e:
            error = ServerStopError(service_name, e)
            logger.error(str(error), exc_info=e)
            return

        logger.info(f"Http server: {service_name} stopped")

    def stop_all(self):
        """Stop every running server."""
        for service_name in self.registry.names():
            self.stop(service_name)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, service_name: str) -> Optional[ServerInstance]:
        return self.registry.get(service_name)

    def is_running(self, service_name: str) -> bool:
        return service_name in self.registry

    def __enter__(self) -> "HttpServerFactory":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_all()
        return False


_shared_factory: Optional[HttpServerFactory] = None
_shared_lock = threading.Lock()


def get_server_factory() -> HttpServerFactory:
    """
    The process-wide factory.

    Built on first use from ``Configuration.load_default()``; every server
    it started is stopped at interpreter exit.
    """
    global _shared_factory

    with _shared_lock:
        if _shared_factory is None:
            factory = HttpServerFactory(configuration=Configuration.load_default())
            atexit.register(factory.stop_all)
            _shared_factory = factory
        return _shared_factory
