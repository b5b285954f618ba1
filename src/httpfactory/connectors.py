"""
=============================================================================
CONNECTOR BUILDER
=============================================================================

Reads a service's ``<service>.http.*`` / ``<service>.https.*`` settings and
produces the connector specs its server will listen on.

    build_connectors("billing", config, tls)
        │
        ├──► plaintext spec   billing.http.host / port / connectionIdleTime /
        │                     isBlockingChannelConnector / numberOfAcceptors /
        │                     acceptQueueSize / requestHeaderSize
        │
        ├──► TLS eligible?    key store path + password non-blank
        │       │
        │       └──► TLS spec billing.https.host / port
        │                     client auth if trust store path + password set
        │
        └──► [tls]              useHttpsOnly
             [plain, tls]       TLS, plaintext kept
             [plain]            no TLS

The result always holds at least one connector. Building is pure: it reads
configuration and returns specs; nothing is bound until the engine starts.

=============================================================================
CONNECTOR SETTINGS
=============================================================================

    ┌───────────────────────────┬──────────────┬──────────────────────────┐
    │ Key (<service>.)          │ Default      │ Meaning                  │
    ├───────────────────────────┼──────────────┼──────────────────────────┤
    │ http.host                 │ 0.0.0.0      │ bind address             │
    │ http.port                 │ 8080         │ 0 = ephemeral port       │
    │ http.connectionIdleTime   │ 180000 ms    │ idle connection timeout  │
    │ http.isBlockingChannel... │ false        │ blocking accept loop     │
    │ http.numberOfAcceptors    │ CPU count    │ accept() threads         │
    │ http.acceptQueueSize      │ 0            │ listen backlog, 0=engine │
    │ http.requestHeaderSize    │ 8192 bytes   │ header section limit     │
    │ https.host                │ 0.0.0.0      │ TLS bind address         │
    │ https.port                │ 8090         │ TLS port                 │
    │ https.useHttpsOnly        │ false        │ drop plaintext connector │
    └───────────────────────────┴──────────────┴──────────────────────────┘

=============================================================================
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .config import Configuration
from .errors import ConfigurationError
from .tls import TlsMaterial, is_tls_enabled, requires_client_auth


# ─────────────────────────────────────────────────────────────────────────────
# ENGINE DEFAULTS
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8080
DEFAULT_HTTPS_PORT = 8090
DEFAULT_IDLE_TIMEOUT_MS = 180000

ENGINE_IDLE_TIMEOUT_MS = 200000
ENGINE_ACCEPTORS = 1
ENGINE_ACCEPT_QUEUE_SIZE = 128
ENGINE_REQUEST_HEADER_SIZE = 8192


class TransportMode(Enum):
    """How a connector's acceptors wait for connections."""
    BLOCKING = "blocking"          # accept() with a polling timeout
    NON_BLOCKING = "non_blocking"  # selector-driven accept()


class Protocol(Enum):
    HTTP = "http"
    HTTPS = "https"


@dataclass(frozen=True)
class ConnectorSpec:
    """
    One listening endpoint of a server instance.

    ``accept_queue_size`` of 0 means "use the engine default backlog".
    """

    protocol: Protocol
    host: str
    port: int
    idle_timeout_ms: int
    acceptors: int
    accept_queue_size: int
    request_header_size: int
    transport: TransportMode = TransportMode.NON_BLOCKING
    tls: Optional[TlsMaterial] = None
    need_client_auth: bool = False

    @property
    def is_tls(self) -> bool:
        return self.protocol is Protocol.HTTPS

    @property
    def idle_timeout(self) -> float:
        """Idle timeout in seconds, as sockets want it."""
        return self.idle_timeout_ms / 1000.0

    @property
    def backlog(self) -> int:
        return self.accept_queue_size or ENGINE_ACCEPT_QUEUE_SIZE

    @property
    def name(self) -> str:
        return f"{self.protocol.value}://{self.host}:{self.port}"

    def validate(self) -> None:
        """
        Fail fast on values the engine cannot use.

        Raises:
            ConfigurationError: On the first invalid value.
        """
        if not 0 <= self.port < 65536:
            raise ConfigurationError(f"{self.protocol.value}.port", f"invalid port {self.port}")
        if self.idle_timeout_ms <= 0:
            raise ConfigurationError(
                f"{self.protocol.value}.connectionIdleTime", "must be > 0"
            )
        if self.acceptors < 1:
            raise ConfigurationError(f"{self.protocol.value}.numberOfAcceptors", "must be >= 1")
        if self.accept_queue_size < 0:
            raise ConfigurationError(f"{self.protocol.value}.acceptQueueSize", "must be >= 0")
        if self.request_header_size < 1024:
            raise ConfigurationError(
                f"{self.protocol.value}.requestHeaderSize", "must be >= 1024"
            )
        if self.is_tls and not is_tls_enabled(self.tls):
            raise ConfigurationError("https", "TLS connector without key store")


def build_plain_connector(service_name: str, config: Configuration) -> ConnectorSpec:
    """The ``<service>.http.*`` connector."""
    prefix = f"{service_name}.http."

    blocking = config.get_bool(prefix + "isBlockingChannelConnector", False)

    return ConnectorSpec(
        protocol=Protocol.HTTP,
        host=config.get_string(prefix + "host", DEFAULT_HOST),
        port=config.get_int(prefix + "port", DEFAULT_HTTP_PORT),
        idle_timeout_ms=config.get_int(prefix + "connectionIdleTime", DEFAULT_IDLE_TIMEOUT_MS),
        acceptors=config.get_int(prefix + "numberOfAcceptors", os.cpu_count() or 1),
        accept_queue_size=config.get_int(prefix + "acceptQueueSize", 0),
        request_header_size=config.get_int(
            prefix + "requestHeaderSize", ENGINE_REQUEST_HEADER_SIZE
        ),
        transport=TransportMode.BLOCKING if blocking else TransportMode.NON_BLOCKING,
    )


def build_tls_connector(
    service_name: str,
    config: Configuration,
    tls: TlsMaterial,
) -> ConnectorSpec:
    """
    The ``<service>.https.*`` connector.

    Only host and port are configurable; the remaining tuning is the
    engine's default.
    """
    prefix = f"{service_name}.https."

    return ConnectorSpec(
        protocol=Protocol.HTTPS,
        host=config.get_string(prefix + "host", DEFAULT_HOST),
        port=config.get_int(prefix + "port", DEFAULT_HTTPS_PORT),
        idle_timeout_ms=ENGINE_IDLE_TIMEOUT_MS,
        acceptors=ENGINE_ACCEPTORS,
        accept_queue_size=0,
        request_header_size=ENGINE_REQUEST_HEADER_SIZE,
        transport=TransportMode.NON_BLOCKING,
        tls=tls,
        need_client_auth=requires_client_auth(tls),
    )


def build_connectors(
    service_name: str,
    config: Configuration,
    tls: Optional[TlsMaterial] = None,
) -> List[ConnectorSpec]:
    """
    Produce the connector set for one server start.

    Returns:
        ``[tls]`` when TLS is on and ``https.useHttpsOnly`` is set,
        ``[plain, tls]`` when TLS is on otherwise, ``[plain]`` without TLS.

    Raises:
        ConfigurationError: If a setting is malformed or out of range.
    """
    if not is_tls_enabled(tls):
        connectors = [build_plain_connector(service_name, config)]
    else:
        secure = build_tls_connector(service_name, config, tls)
        if config.get_bool(f"{service_name}.https.useHttpsOnly", False):
            connectors = [secure]
        else:
            connectors = [build_plain_connector(service_name, config), secure]

    for spec in connectors:
        spec.validate()

    return connectors
