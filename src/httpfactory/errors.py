"""
=============================================================================
FACTORY ERRORS
=============================================================================

Every failure the factory reports is a distinct exception type, so callers
branch on the type instead of matching message strings:

    try:
        factory.start("billing", routes)
    except DuplicateServerError:
        ...   # already running: stop it first
    except ServerStartError as e:
        if e.reason is StartFailure.BIND:
            ...   # port in use, retry on another port
        elif e.reason is StartFailure.TLS:
            ...   # bad key store or password

    ServerFactoryError
    ├── DuplicateServerError    start() for a name that is already running
    ├── ServerStartError        anything that made start() fail
    ├── ServerStopError         engine failure during stop() (logged only)
    ├── ConfigurationError      malformed configuration value
    └── TlsMaterialError        key/trust store could not be loaded

=============================================================================
"""

import errno
import socket
import ssl
from enum import Enum
from typing import Optional


class ServerFactoryError(Exception):
    """Base class for all httpfactory errors."""


class ConfigurationError(ServerFactoryError):
    """A configuration value is missing, malformed or out of range."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


class TlsMaterialError(ServerFactoryError):
    """The key store, its password or the trust store could not be loaded."""


class DuplicateServerError(ServerFactoryError):
    """start() was called for a service name that already has a server."""

    def __init__(self, service_name: str):
        super().__init__(
            f"you must first stop server: {service_name} before you want to start it again!"
        )
        self.service_name = service_name


class StartFailure(Enum):
    """Why a start attempt failed."""
    BIND = "bind"
    TLS = "tls"
    CONFIGURATION = "configuration"
    RESOURCES = "resources"
    UNKNOWN = "unknown"


_BIND_ERRNOS = {errno.EADDRINUSE, errno.EADDRNOTAVAIL, errno.EACCES}
_RESOURCE_ERRNOS = {errno.EMFILE, errno.ENFILE, errno.ENOMEM, errno.ENOBUFS}


def classify_start_failure(exc: BaseException) -> StartFailure:
    """Map the exception that aborted a start to a StartFailure."""
    if isinstance(exc, ConfigurationError):
        return StartFailure.CONFIGURATION
    if isinstance(exc, (TlsMaterialError, ssl.SSLError)):
        return StartFailure.TLS
    if isinstance(exc, MemoryError):
        return StartFailure.RESOURCES
    if isinstance(exc, socket.gaierror):
        return StartFailure.BIND
    if isinstance(exc, OSError):
        if exc.errno in _BIND_ERRNOS:
            return StartFailure.BIND
        if exc.errno in _RESOURCE_ERRNOS:
            return StartFailure.RESOURCES
    if isinstance(exc, RuntimeError) and "thread" in str(exc):
        # threading raises RuntimeError("can't start new thread")
        return StartFailure.RESOURCES
    return StartFailure.UNKNOWN


class ServerStartError(ServerFactoryError):
    """
    A server could not be started. The registry was left unchanged.

    The original exception is ``cause`` (and ``__cause__`` when raised
    with ``from``).
    """

    def __init__(
        self,
        service_name: str,
        cause: BaseException,
        reason: Optional[StartFailure] = None,
    ):
        self.service_name = service_name
        self.cause = cause
        self.reason = reason or classify_start_failure(cause)
        super().__init__(
            f"Problem starting the http {service_name} server "
            f"({self.reason.value}): {cause}"
        )


class ServerStopError(ServerFactoryError):
    """The engine failed while stopping. Reported through logging only."""

    def __init__(self, service_name: str, cause: BaseException):
        self.service_name = service_name
        self.cause = cause
        super().__init__(f"Problem stopping the http {service_name} server: {cause}")
