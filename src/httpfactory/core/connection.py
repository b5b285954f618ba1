"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted socket (plain or TLS) with buffered HTTP/1.1 message
reading, response writing and a clean close.

    Connection lifecycle:

    NEW ──► HANDSHAKE (TLS only) ──► READING ──► PROCESSING ──► WRITING
                                        ▲                          │
                                        └──────── KEEP_ALIVE ◄─────┘
                                                      │
                                            idle timeout / close
                                                      ▼
                                                   CLOSED

Every wait on the socket is bounded by the connector's idle timeout. The
header section is bounded by the connector's request header size; a
client that exceeds it gets 431 before its body is ever read.

=============================================================================
"""

import logging
import socket
import ssl
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..http import HTTPParseError


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"
    HANDSHAKE = "handshake"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """
    One client connection, owned by a single worker thread.

    Attributes:
        socket: The accepted socket; an un-handshaken SSLSocket for TLS.
        address: Client (ip, port).
        scheme: "http" or "https", copied onto every request read here.
        idle_timeout: Seconds any single read or write may wait.
        max_header_size: Connector request header size limit in bytes.
        max_request_size: Upper bound on a whole request.
    """

    socket: socket.socket
    address: tuple
    scheme: str = "http"
    idle_timeout: float = 180.0
    max_header_size: int = 8192
    max_request_size: int = 10 * 1024 * 1024
    buffer_size: int = 8192

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.monotonic)
    requests_handled: int = 0

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        self.socket.settimeout(self.idle_timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0] if self.address else ""

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    @property
    def peer_certificate(self) -> Optional[dict]:
        """The verified client certificate on a mutual-TLS connection."""
        if isinstance(self.socket, ssl.SSLSocket):
            try:
                return self.socket.getpeercert()
            except (ValueError, OSError):
                return None
        return None

    # =========================================================================
    # TLS
    # =========================================================================

    def handshake(self) -> bool:
        """
        Complete the TLS handshake (a no-op for plain sockets).

        Runs on the worker thread, not the acceptor, so a slow or hostile
        client cannot stall accept().

        Returns:
            False if the handshake failed; the connection should be closed.
        """
        if not isinstance(self.socket, ssl.SSLSocket):
            return True

        self.state = ConnectionState.HANDSHAKE
        try:
            self.socket.do_handshake()
            return True
        except (ssl.SSLError, socket.timeout, OSError) as e:
            logger.debug(f"[{self.id}] TLS handshake with {self.client_ip} failed: {e}")
            return False

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request (headers plus Content-Length body).

        Bytes past the end of the request stay buffered for the next call.

        Returns:
            The request bytes, or None when the client closed the connection
            or a keep-alive connection sat idle past the timeout.

        Raises:
            TimeoutError: The first request did not arrive in time.
            HTTPParseError: The header section exceeds the header size
                            limit (431) or the request is too large (413).
        """
        self.state = ConnectionState.READING

        try:
            while b"\r\n\r\n" not in self._buffer:
                if len(self._buffer) > self.max_header_size:
                    raise HTTPParseError(
                        f"Request header exceeds {self.max_header_size} bytes",
                        status_code=431,
                    )
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk

            header_end = self._buffer.find(b"\r\n\r\n")
            if header_end > self.max_header_size:
                raise HTTPParseError(
                    f"Request header exceeds {self.max_header_size} bytes",
                    status_code=431,
                )

            body_start = header_end + 4
            content_length = _content_length(self._buffer[:header_end])
            request_end = body_start + content_length
            if request_end > self.max_request_size:
                raise HTTPParseError(f"Request too large: {request_end} bytes", status_code=413)

            while len(self._buffer) < request_end:
                chunk = self._recv()
                if not chunk:
                    break  # the parser reports the short body
                self._buffer += chunk

            data, self._buffer = self._buffer[:request_end], self._buffer[request_end:]
            self.requests_handled += 1
            return data

        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive idle timeout")
                return None
            raise TimeoutError("Request read timeout")

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except socket.timeout:
            raise
        except (ConnectionResetError, BrokenPipeError, ssl.SSLError):
            return b""
        except OSError:
            # closed underneath us by Server.stop()
            if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                return b""
            raise

    # =========================================================================
    # WRITING / CLOSING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Write all of ``data``.

        Returns:
            False if the client went away.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def abort(self):
        """
        Interrupt a worker blocked on this connection (server stop).

        Safe to call from another thread; the owning worker still performs
        the final close().
        """
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # not connected any more

    def close(self):
        """Half-close, drain briefly, then release the socket."""
        if self.state is ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Closed after {self.requests_handled} requests")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _content_length(header_section: bytes) -> int:
    """Content-Length from raw headers, 0 if absent or malformed."""
    for line in header_section.split(b"\r\n")[1:]:
        name, _, value = line.partition(b":")
        if name.strip().lower() == b"content-length":
            try:
                return max(0, int(value.strip()))
            except ValueError:
                return 0
    return 0
