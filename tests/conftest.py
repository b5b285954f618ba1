"""
pytest configuration and fixtures.
"""

import http.client
import json
import socket
import ssl
import sys
from pathlib import Path
from typing import Generator, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpfactory import Configuration, HttpServerFactory, TlsMaterial
from httpfactory.http import HTTPRequest, HTTPResponse, ResponseBuilder


FIXTURES = Path(__file__).parent / "fixtures"

SERVER_PEM = str(FIXTURES / "server.pem")
SERVER_PEM_PASSWORD = "changeit"
CLIENT_PEM = str(FIXTURES / "client.pem")
CA_PEM = str(FIXTURES / "ca.pem")


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    head = (
        "POST /api/users HTTP/1.1\r\n"
        "Host: localhost:8080\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + body


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def local_config(service: str = "svc", **extra) -> Configuration:
    """Loopback, ephemeral ports, small pool."""
    values = {
        f"{service}.http.host": "127.0.0.1",
        f"{service}.http.port": "0",
        f"{service}.https.host": "127.0.0.1",
        f"{service}.https.port": "0",
        f"{service}.http.numberOfAcceptors": "1",
        f"{service}.http.minThreads": "2",
        f"{service}.http.maxThreads": "4",
        f"{service}.http.connectionIdleTime": "5000",
    }
    values.update(extra)
    return Configuration(values)


@pytest.fixture
def config() -> Configuration:
    """Loopback configuration for service "svc"."""
    return local_config("svc")


@pytest.fixture
def factory(config: Configuration) -> Generator[HttpServerFactory, None, None]:
    """Factory whose servers are all stopped at teardown."""
    with HttpServerFactory(configuration=config) as f:
        yield f


@pytest.fixture
def server_tls() -> TlsMaterial:
    """Key store only: TLS without client authentication."""
    return TlsMaterial(key_store_path=SERVER_PEM, key_store_password=SERVER_PEM_PASSWORD)


@pytest.fixture
def mutual_tls() -> TlsMaterial:
    """Key store and trust store: TLS with client certificates required."""
    return TlsMaterial(
        key_store_path=SERVER_PEM,
        key_store_password=SERVER_PEM_PASSWORD,
        trust_store_path=CA_PEM,
        trust_store_password="changeit",
    )


def json_handler(payload: dict):
    def handler(request: HTTPRequest) -> HTTPResponse:
        return ResponseBuilder().json(payload).build()
    return handler


class Client:
    """Tiny http.client wrapper for talking to a started server."""

    def __init__(self, port: int, tls_context: Optional[ssl.SSLContext] = None):
        self.port = port
        self.tls_context = tls_context

    def request(self, method: str, path: str, body: Optional[bytes] = None, headers=None):
        if self.tls_context is not None:
            conn = http.client.HTTPSConnection(
                "127.0.0.1", self.port, context=self.tls_context, timeout=5
            )
        else:
            conn = http.client.HTTPConnection("127.0.0.1", self.port, timeout=5)
        try:
            conn.request(method, path, body=body, headers=headers or {})
            response = conn.getresponse()
            data = response.read()
            return response.status, dict(response.getheaders()), data
        finally:
            conn.close()

    def get_json(self, path: str, headers=None):
        status, response_headers, data = self.request("GET", path, headers=headers)
        return status, response_headers, json.loads(data) if data else None


def client_tls_context(with_client_cert: bool = False) -> ssl.SSLContext:
    context = ssl.create_default_context(cafile=CA_PEM)
    context.check_hostname = False
    if with_client_cert:
        context.load_cert_chain(CLIENT_PEM)
    return context
