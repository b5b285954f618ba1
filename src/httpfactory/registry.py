"""
=============================================================================
SERVER REGISTRY
=============================================================================

Which services have a running server in this process.

    ┌──────────────┐   reserve()    ┌──────────┐   commit()    ┌─────────┐
    │ Unregistered │ ─────────────► │ reserved │ ────────────► │ Running │
    └──────────────┘                └──────────┘               └─────────┘
           ▲                             │ release()               │
           └─────────────────────────────┘                         │
           ▲                                                       │
           └─────────────────────── remove() ──────────────────────┘

A reservation holds the name while a start is in progress so a second
start of the same name fails fast instead of racing for the ports.
Reservations are private to the starting thread: get(), names(), ``in``
and len() only ever see Running entries.

The lock guards the name table only; building and starting a server
happens outside it.

=============================================================================
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .connectors import ConnectorSpec
from .errors import DuplicateServerError


@dataclass(frozen=True)
class ServerInstance:
    """A running server and what it was started with."""

    service_name: str
    connectors: List[ConnectorSpec]
    handler_tree: object
    thread_pool: object
    engine: object
    started_at: float = 0.0
    ports: List[int] = field(default_factory=list)

    @property
    def port(self) -> Optional[int]:
        """First bound port (the plaintext one when there are two)."""
        return self.ports[0] if self.ports else None


# Placeholder for a name whose start is in progress
_RESERVED = object()


class ServerRegistry:
    """Thread-safe service name → ServerInstance table."""

    def __init__(self):
        self._entries: Dict[str, object] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ServerRegistry({self.names()})"

    # =========================================================================
    # START / STOP PROTOCOL
    # =========================================================================

    def reserve(self, service_name: str):
        """
        Claim ``service_name`` for a start in progress.

        Raises:
            DuplicateServerError: The name is running or being started.
        """
        with self._lock:
            if service_name in self._entries:
                raise DuplicateServerError(service_name)
            self._entries[service_name] = _RESERVED

    def commit(self, instance: ServerInstance):
        """Replace the reservation with the running instance."""
        with self._lock:
            if self._entries.get(instance.service_name) is not _RESERVED:
                raise RuntimeError(f"{instance.service_name} was not reserved")
            self._entries[instance.service_name] = instance

    def release(self, service_name: str):
        """Drop a reservation after a failed start."""
        with self._lock:
            if self._entries.get(service_name) is _RESERVED:
                del self._entries[service_name]

    def remove(self, service_name: str) -> Optional[ServerInstance]:
        """
        Atomically take a running instance out of the table.

        Returns None if the name is not running (including while it is
        only reserved).
        """
        with self._lock:
            entry = self._entries.get(service_name)
            if not isinstance(entry, ServerInstance):
                return None
            del self._entries[service_name]
            return entry

    # =========================================================================
    # READ ACCESS
    # =========================================================================

    def get(self, service_name: str) -> Optional[ServerInstance]:
        entry = self._entries.get(service_name)
        return entry if isinstance(entry, ServerInstance) else None

    def names(self) -> List[str]:
        with self._lock:
            return [n for n, e in self._entries.items() if isinstance(e, ServerInstance)]

    def __contains__(self, service_name: object) -> bool:
        return isinstance(self._entries.get(service_name), ServerInstance)

    def __len__(self) -> int:
        return len(self.names())
