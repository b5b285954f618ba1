"""
=============================================================================
NETWORK ENGINE
=============================================================================

The server the factory configures, starts and stops. It knows nothing
about service names, registries or configuration keys; it is handed
everything it needs:

    server = Server("billing")
    server.set_connectors(specs)        # where to listen
    server.set_handler(tree.handle)     # what answers requests
    server.set_thread_pool(pool)        # who runs connections
    server.start()                      # binds, or raises and cleans up
    ...
    server.stop()

=============================================================================
REQUEST FLOW
=============================================================================

    acceptor thread                         worker thread
    ───────────────                         ─────────────
    accept() ──► _on_accept()               _process_connection(conn)
                   │                          │
                   ├─ pool.submit() ────────► ├─ TLS handshake
                   │                          ├─ loop:
                   └─ queue full:             │    read_request()
                        503 + close           │    parse → HTTPRequest
                                              │    handler(request)
                                              │    send_response()
                                              │    keep-alive? repeat
                                              └─ close()

    ┌───────────────────────────┬───────────────────────────────────────┐
    │ Failure                   │ Client sees                           │
    ├───────────────────────────┼───────────────────────────────────────┤
    │ pool queue full           │ 503, connection closed                │
    │ first request too slow    │ 408, connection closed                │
    │ header over the limit     │ 431, connection closed                │
    │ malformed request         │ 400/405/413/505, connection closed    │
    │ handler raised            │ 500, connection kept if keep-alive    │
    └───────────────────────────┴───────────────────────────────────────┘

=============================================================================
"""

import logging
import socket
import threading
from typing import Callable, List, Optional, Set

from ..connectors import ConnectorSpec
from ..http import (
    HTTPParseError,
    HTTPRequest,
    HTTPResponse,
    HTTPStatus,
    RequestParser,
    ResponseBuilder,
    internal_error,
)
from ..http.response import DEFAULT_SERVER_NAME
from .connection import Connection, ConnectionState
from .connector import ServerConnector
from .thread_pool import ThreadPool


logger = logging.getLogger(__name__)


Handler = Callable[[HTTPRequest], HTTPResponse]

STOP_TIMEOUT = 10.0


class Server:
    """
    A configurable HTTP/1.1 engine: connectors + handler + worker pool.

    start() and stop() block until ports are bound or released.
    """

    def __init__(self, name: str = "server", server_name: str = DEFAULT_SERVER_NAME):
        self.name = name
        self.server_name = server_name

        self._specs: List[ConnectorSpec] = []
        self._handler: Optional[Handler] = None
        self._pool: Optional[ThreadPool] = None

        self._connectors: List[ServerConnector] = []
        self._connections: Set[Connection] = set()
        self._connections_lock = threading.Lock()
        self._running = False

    def __repr__(self) -> str:
        return f"Server({self.name!r}, running={self._running}, ports={self.bound_ports})"

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def set_connectors(self, specs: List[ConnectorSpec]):
        self._require_stopped()
        self._specs = list(specs)

    def set_handler(self, handler: Handler):
        self._require_stopped()
        self._handler = handler

    def set_thread_pool(self, pool: ThreadPool):
        self._require_stopped()
        self._pool = pool

    def _require_stopped(self):
        if self._running:
            raise RuntimeError(f"Server {self.name} is running")

    @property
    def connectors(self) -> List[ConnectorSpec]:
        return list(self._specs)

    @property
    def thread_pool(self) -> Optional[ThreadPool]:
        return self._pool

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def bound_ports(self) -> List[int]:
        """Actual listening ports, in connector order."""
        return [c.port for c in self._connectors if c.port is not None]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """
        Start the pool, bind every connector, start accepting.

        All-or-nothing: if any step fails, whatever was already opened is
        closed again and the original exception propagates.
        """
        if self._running:
            raise RuntimeError(f"Server {self.name} already started")
        if not self._specs:
            raise RuntimeError(f"Server {self.name} has no connectors")
        if self._handler is None or self._pool is None:
            raise RuntimeError(f"Server {self.name} needs a handler and a thread pool")

        try:
            self._pool.start()
            for spec in self._specs:
                connector = ServerConnector(spec, self._on_accept, name=self.name)
                self._connectors.append(connector)
                connector.open()
        except BaseException:
            self._release()
            raise

        self._running = True
        for connector in self._connectors:
            connector.start()

    def stop(self):
        """
        Stop accepting, interrupt open connections, stop the pool.

        Every resource is released even if one step fails; the first
        failure is re-raised afterwards.
        """
        self._running = False
        first_error = self._release()
        if first_error is not None:
            raise first_error

    def _release(self) -> Optional[BaseException]:
        first_error = None

        for connector in self._connectors:
            try:
                connector.close()
            except Exception as e:
                logger.warning(f"{self.name}: error closing {connector.spec.name}: {e}")
                first_error = first_error or e
        self._connectors.clear()

        with self._connections_lock:
            open_connections = list(self._connections)
        for conn in open_connections:
            conn.abort()

        if self._pool is not None:
            try:
                self._pool.shutdown(wait=True, timeout=STOP_TIMEOUT)
            except Exception as e:
                logger.warning(f"{self.name}: error stopping thread pool: {e}")
                first_error = first_error or e

        return first_error

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _on_accept(self, client: socket.socket, address: tuple, connector: ServerConnector):
        """Runs on an acceptor thread: hand the connection to the pool."""
        spec = connector.spec
        conn = Connection(
            socket=client,
            address=address,
            scheme=connector.scheme,
            idle_timeout=spec.idle_timeout,
            max_header_size=spec.request_header_size,
        )

        try:
            submitted = self._pool.submit(self._process_connection, args=(conn, spec))
        except RuntimeError:
            submitted = False  # pool already stopping

        if not submitted:
            logger.warning(f"{self.name}: [{conn.id}] thread pool saturated, rejecting connection")
            if conn.scheme == "http":
                # no handshake on the acceptor thread, so TLS clients are just closed
                self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()

    def _process_connection(self, conn: Connection, spec: ConnectorSpec):
        """Runs on a worker thread: the keep-alive loop for one client."""
        with self._connections_lock:
            self._connections.add(conn)

        parser = RequestParser(max_header_size=spec.request_header_size)
        keep_alive_header = f"timeout={int(spec.idle_timeout)}"

        try:
            with conn:
                if not conn.handshake():
                    return

                while self._running:
                    try:
                        raw_request = conn.read_request()
                        if raw_request is None:
                            break
                        request = parser.parse(raw_request, conn.address, conn.scheme)
                    except HTTPParseError as e:
                        self._send_error(conn, e.status_code, str(e))
                        break
                    except TimeoutError:
                        self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                        break

                    conn.state = ConnectionState.PROCESSING
                    response = self._invoke_handler(conn, request)

                    if request.is_keep_alive and self._running:
                        response.headers.setdefault("Connection", "keep-alive")
                        response.headers.setdefault("Keep-Alive", keep_alive_header)
                    else:
                        response.headers["Connection"] = "close"

                    if not conn.send_response(response.to_bytes(self.server_name)):
                        break
                    if response.headers.get("Connection") == "close":
                        break

                    conn.set_keep_alive()
        except Exception as e:
            logger.exception(f"{self.name}: [{conn.id}] connection error: {e}")
        finally:
            with self._connections_lock:
                self._connections.discard(conn)

    def _invoke_handler(self, conn: Connection, request: HTTPRequest) -> HTTPResponse:
        try:
            response = self._handler(request)
        except Exception as e:
            logger.exception(f"{self.name}: [{conn.id}] handler error: {e}")
            return internal_error()

        if not isinstance(response, HTTPResponse):
            logger.error(
                f"{self.name}: [{conn.id}] handler returned {type(response).__name__}, "
                f"not HTTPResponse"
            )
            return internal_error()
        return response

    def _send_error(self, conn: Connection, status: int, message: str):
        response = (ResponseBuilder()
            .status(status)
            .json({"error": message})
            .close_connection()
            .build())
        conn.send_response(response.to_bytes(self.server_name))
