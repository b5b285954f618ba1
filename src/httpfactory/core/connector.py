"""
=============================================================================
SERVER CONNECTOR
=============================================================================

A bound listening socket plus the acceptor threads that drain it. One
ServerConnector exists per ConnectorSpec of a running server.

    open()                       start()                        close()
    ──────                       ───────                        ───────
    getaddrinfo(host, port)      N acceptor threads             stop acceptors
    socket + SO_REUSEADDR        each: accept() → on_accept()   join them
    bind / listen(backlog)                                      close socket
    SSLContext (TLS only)

Two transport modes, chosen by ``isBlockingChannelConnector``:

    BLOCKING        socket timeout of 1s; accept() blocks, the timeout lets
                    the loop notice shutdown
    NON_BLOCKING    listening socket is non-blocking; each acceptor waits in
                    its own selector and races the others for accept();
                    losers get BlockingIOError and go back to waiting

TLS sockets are wrapped without handshaking; the handshake runs on the
worker thread that owns the connection.

=============================================================================
"""

import logging
import selectors
import socket
import ssl
import threading
from typing import Callable, List, Optional

from ..connectors import ConnectorSpec, TransportMode
from ..tls import create_ssl_context


logger = logging.getLogger(__name__)


# (client socket, client address, connector) → None
AcceptCallback = Callable[[socket.socket, tuple, "ServerConnector"], None]

POLL_INTERVAL = 1.0


class ServerConnector:
    """Listening endpoint for one ConnectorSpec."""

    def __init__(self, spec: ConnectorSpec, on_accept: AcceptCallback, name: str = "server"):
        self.spec = spec
        self.name = name
        self._on_accept = on_accept
        self._socket: Optional[socket.socket] = None
        self._ssl_context: Optional[ssl.SSLContext] = None
        self._acceptors: List[threading.Thread] = []
        self._running = threading.Event()

    def __repr__(self) -> str:
        return f"ServerConnector({self.spec.name}, port={self.port})"

    @property
    def scheme(self) -> str:
        return self.spec.protocol.value

    @property
    def port(self) -> Optional[int]:
        """Actual bound port (differs from spec.port when it was 0)."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open(self):
        """
        Bind and listen. Loads TLS material for a TLS connector.

        Raises:
            OSError: The address cannot be resolved or bound.
            TlsMaterialError: The key or trust store cannot be loaded.
        """
        if self.spec.is_tls:
            self._ssl_context = create_ssl_context(self.spec.tls, self.spec.need_client_auth)

        family, socktype, proto, _, sockaddr = socket.getaddrinfo(
            self.spec.host, self.spec.port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
        )[0]

        sock = socket.socket(family, socktype, proto)
        try:
            # no SO_REUSEPORT: a second server on the same port must fail to bind
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(sockaddr)
            sock.listen(self.spec.backlog)
        except OSError:
            sock.close()
            raise

        if self.spec.transport is TransportMode.BLOCKING:
            sock.settimeout(POLL_INTERVAL)
        else:
            sock.setblocking(False)

        self._socket = sock
        logger.debug(f"{self.name}: bound {self.spec.name} on port {self.port}")

    def start(self):
        """Start the acceptor threads. open() must have succeeded."""
        if self._socket is None:
            raise RuntimeError(f"Connector {self.spec.name} is not open")

        self._running.set()
        loop = (
            self._blocking_accept_loop
            if self.spec.transport is TransportMode.BLOCKING
            else self._selector_accept_loop
        )

        for n in range(self.spec.acceptors):
            thread = threading.Thread(
                target=loop,
                name=f"{self.name}-acceptor-{self.scheme}-{n}",
                daemon=True,
            )
            self._acceptors.append(thread)
            thread.start()

    def close(self):
        """Stop accepting and release the port. Idempotent."""
        self._running.clear()

        for thread in self._acceptors:
            if thread is not threading.current_thread():
                thread.join(timeout=POLL_INTERVAL * 2)
        self._acceptors.clear()

        if self._socket is not None:
            try:
                self._socket.close()
            finally:
                self._socket = None
                logger.debug(f"{self.name}: closed {self.spec.name}")

    # =========================================================================
    # ACCEPT LOOPS
    # =========================================================================

    def _blocking_accept_loop(self):
        while self._running.is_set():
            try:
                client, address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running.is_set():
                    logger.error(f"{self.name}: accept error on {self.spec.name}: {e}")
                break
            self._dispatch(client, address)

    def _selector_accept_loop(self):
        with selectors.DefaultSelector() as selector:
            selector.register(self._socket, selectors.EVENT_READ)
            while self._running.is_set():
                if not selector.select(timeout=POLL_INTERVAL):
                    continue
                try:
                    client, address = self._socket.accept()
                except BlockingIOError:
                    continue  # another acceptor won the race
                except OSError as e:
                    if self._running.is_set():
                        logger.error(f"{self.name}: accept error on {self.spec.name}: {e}")
                    break
                self._dispatch(client, address)

    def _dispatch(self, client: socket.socket, address: tuple):
        logger.debug(f"{self.name}: accepted {address[0]}:{address[1]} on {self.spec.name}")

        client.setblocking(True)
        try:
            client.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError:
            pass

        if self._ssl_context is not None:
            try:
                client = self._ssl_context.wrap_socket(
                    client, server_side=True, do_handshake_on_connect=False
                )
            except (ssl.SSLError, OSError) as e:
                logger.debug(f"{self.name}: TLS wrap failed for {address[0]}: {e}")
                client.close()
                return

        try:
            self._on_accept(client, address, self)
        except Exception as e:
            logger.exception(f"{self.name}: failed to hand off connection: {e}")
            client.close()
