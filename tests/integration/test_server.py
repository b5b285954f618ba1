"""
Integration tests: real servers on loopback ports.
"""

import socket
import threading
import time

import pytest

from conftest import Client, client_tls_context, json_handler, local_config
from httpfactory import (
    HttpServerFactory,
    ServerStartError,
    StartFailure,
    TlsMaterial,
    function_filter,
    ok,
)
from httpfactory.http import ResponseBuilder


pytestmark = pytest.mark.integration


def raw_exchange(port: int, data: bytes = b"", timeout: float = 5.0) -> bytes:
    """Send ``data`` and read until the server closes the connection."""
    with socket.create_connection(("127.0.0.1", port), timeout=timeout) as sock:
        if data:
            sock.sendall(data)
        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


def scheme_handler(request):
    return ok({"scheme": request.scheme, "path": request.path})


class TestPlainServer:
    """Requests over the plaintext connector."""

    def test_serves_routes_on_bound_port(self, factory):
        instance = factory.start("svc", {"/hello": json_handler({"message": "hi"})})

        assert instance.port is not None and instance.port > 0
        status, headers, body = Client(instance.port).get_json("/hello")

        assert status == 200
        assert body == {"message": "hi"}
        assert headers["Server"] == "httpfactory/1.0"
        assert "X-Flow-Id" in headers

    def test_unknown_path_is_404(self, factory):
        instance = factory.start("svc", {"/hello": json_handler({})})

        status, _, _ = Client(instance.port).request("GET", "/missing")

        assert status == 404

    def test_flow_id_is_echoed(self, factory):
        instance = factory.start("svc", {"/hello": json_handler({})})

        _, headers, _ = Client(instance.port).request(
            "GET", "/hello", headers={"X-Flow-Id": "trace-42"}
        )

        assert headers["X-Flow-Id"] == "trace-42"

    def test_post_body_reaches_handler(self, factory):
        def echo(request):
            return ok({"received": request.json})

        instance = factory.start("svc", {"/echo": echo})

        status, _, body = Client(instance.port).request(
            "POST", "/echo", body=b'{"n": 1}', headers={"Content-Type": "application/json"}
        )

        assert status == 200
        assert body == b'{"received": {"n": 1}}'

    def test_keep_alive(self, factory):
        instance = factory.start("svc", {"/hello": json_handler({})})
        request = b"GET /hello HTTP/1.1\r\nHost: test\r\n\r\n"

        with socket.create_connection(("127.0.0.1", instance.port), timeout=5) as sock:
            sock.sendall(request)
            first = sock.recv(65536)
            sock.sendall(request)
            second = sock.recv(65536)

        assert first.startswith(b"HTTP/1.1 200 OK")
        assert b"Connection: keep-alive" in first
        assert b"Keep-Alive: timeout=5" in first
        assert second.startswith(b"HTTP/1.1 200 OK")

    def test_connection_close(self, factory):
        instance = factory.start("svc", {"/hello": json_handler({})})

        data = raw_exchange(
            instance.port, b"GET /hello HTTP/1.1\r\nHost: test\r\nConnection: close\r\n\r\n"
        )

        assert data.startswith(b"HTTP/1.1 200 OK")
        assert b"Connection: close" in data

    def test_oversized_header_is_431(self):
        config = local_config(**{"svc.http.requestHeaderSize": "1024"})

        with HttpServerFactory(configuration=config) as factory:
            instance = factory.start("svc", {"/hello": json_handler({})})

            data = raw_exchange(
                instance.port,
                b"GET /hello HTTP/1.1\r\nX-Big: " + b"a" * 2000 + b"\r\n\r\n",
            )

        assert data.startswith(b"HTTP/1.1 431")

    def test_malformed_request_is_400(self, factory):
        instance = factory.start("svc", {"/hello": json_handler({})})

        data = raw_exchange(instance.port, b"NONSENSE\r\n\r\n")

        assert data.startswith(b"HTTP/1.1 400")

    def test_silent_client_gets_408(self):
        config = local_config(**{"svc.http.connectionIdleTime": "300"})

        with HttpServerFactory(configuration=config) as factory:
            instance = factory.start("svc", {"/hello": json_handler({})})

            data = raw_exchange(instance.port)

        assert data.startswith(b"HTTP/1.1 408")

    def test_handler_error_is_500(self, factory):
        def boom(request):
            raise RuntimeError("boom")

        instance = factory.start("svc", {"/boom": boom})

        status, _, body = Client(instance.port).get_json("/boom")

        assert status == 500
        assert body == {"error": "Internal Server Error", "path": "/boom"}

    def test_caller_filters_run(self, factory):
        @function_filter
        def require_token(request, chain):
            if request.get_header("Authorization") != "Bearer t":
                return ResponseBuilder().status(401).json({"error": "unauthorized"}).build()
            return chain(request)

        instance = factory.start(
            "svc",
            {"/api/*": json_handler({"ok": True}), "/public": json_handler({})},
            filters={"/api/*": require_token},
        )
        client = Client(instance.port)

        assert client.request("GET", "/api/items")[0] == 401
        assert client.request("GET", "/api/items", headers={"Authorization": "Bearer t"})[0] == 200
        assert client.request("GET", "/public")[0] == 200

    def test_blocking_transport(self):
        config = local_config(**{"svc.http.isBlockingChannelConnector": "true"})

        with HttpServerFactory(configuration=config) as factory:
            instance = factory.start("svc", {"/hello": json_handler({"mode": "blocking"})})

            status, _, body = Client(instance.port).get_json("/hello")

        assert status == 200
        assert body == {"mode": "blocking"}

    def test_concurrent_clients(self, factory):
        def slow(request):
            time.sleep(0.1)
            return ok("done")

        instance = factory.start("svc", {"/slow": slow})
        statuses = []

        def call():
            statuses.append(Client(instance.port).request("GET", "/slow")[0])

        threads = [threading.Thread(target=call) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert statuses == [200] * 8

    def test_async_work_with_single_worker(self):
        config = local_config(**{
            "svc.http.minThreads": "1",
            "svc.http.maxThreads": "1",
            "svc.http.asyncTimeout": "2000",
        })

        def slow(request):
            context = request.start_async()
            context.start(lambda: context.complete(ok("done")))
            return None

        with HttpServerFactory(configuration=config) as factory:
            instance = factory.start("svc", {"/slow": slow})

            status, _, body = Client(instance.port).request("GET", "/slow")

        assert status == 200
        assert body == b"done"

    def test_saturated_pool_rejects_connections(self):
        config = local_config(**{
            "svc.http.minThreads": "1",
            "svc.http.maxThreads": "1",
            "svc.http.threadQueueSize": "1",
        })

        with HttpServerFactory(configuration=config) as factory:
            instance = factory.start("svc", {"/hello": json_handler({})})

            # occupy the only worker with an idle keep-alive connection
            busy = socket.create_connection(("127.0.0.1", instance.port), timeout=5)
            busy.sendall(b"GET /hello HTTP/1.1\r\nHost: test\r\n\r\n")
            assert busy.recv(65536).startswith(b"HTTP/1.1 200")

            # fills the queue
            queued = socket.create_connection(("127.0.0.1", instance.port), timeout=5)
            time.sleep(0.2)

            try:
                data = raw_exchange(instance.port)
            finally:
                busy.close()
                queued.close()

        assert data.startswith(b"HTTP/1.1 503")


class TestLifecycle:
    """Start/stop against real ports."""

    def test_two_services_side_by_side(self):
        config = local_config("a").with_overrides(local_config("b"))

        with HttpServerFactory(configuration=config) as factory:
            a = factory.start("a", {"/who": json_handler({"service": "a"})})
            b = factory.start("b", {"/who": json_handler({"service": "b"})})

            assert a.port != b.port
            assert Client(a.port).get_json("/who")[2] == {"service": "a"}
            assert Client(b.port).get_json("/who")[2] == {"service": "b"}

            factory.stop("a")

            assert Client(b.port).get_json("/who")[0] == 200

    def test_worker_threads_are_named_after_service(self, factory):
        def whoami(request):
            return ok({"thread": threading.current_thread().name})

        instance = factory.start("svc", {"/whoami": whoami})

        body = Client(instance.port).get_json("/whoami")[2]

        assert body["thread"].startswith("svc-worker-")

    def test_stop_releases_port(self, free_port):
        config = local_config(**{"svc.http.port": str(free_port)})

        with HttpServerFactory(configuration=config) as factory:
            factory.start("svc", {"/hello": json_handler({})})
            factory.stop("svc")

            with pytest.raises(OSError):
                socket.create_connection(("127.0.0.1", free_port), timeout=1).close()

            instance = factory.start("svc", {"/hello": json_handler({})})
            assert instance.port == free_port
            assert Client(free_port).request("GET", "/hello")[0] == 200

    def test_stop_interrupts_idle_keep_alive_connections(self):
        config = local_config(**{"svc.http.connectionIdleTime": "30000"})
        factory = HttpServerFactory(configuration=config)
        instance = factory.start("svc", {"/hello": json_handler({})})

        with socket.create_connection(("127.0.0.1", instance.port), timeout=5) as sock:
            sock.sendall(b"GET /hello HTTP/1.1\r\nHost: test\r\n\r\n")
            assert sock.recv(65536).startswith(b"HTTP/1.1 200")

            started = time.monotonic()
            factory.stop("svc")

            assert time.monotonic() - started < 5.0
            assert not instance.thread_pool.is_running

    def test_bind_conflict(self, free_port):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", free_port))
        blocker.listen(1)

        config = local_config(**{"svc.http.port": str(free_port)})
        try:
            with HttpServerFactory(configuration=config) as factory:
                with pytest.raises(ServerStartError) as exc_info:
                    factory.start("svc", {"/hello": json_handler({})})

                assert exc_info.value.reason is StartFailure.BIND
                assert factory.registry.names() == []
        finally:
            blocker.close()

    def test_bind_conflict_between_services(self, free_port):
        config = local_config("a", **{"a.http.port": str(free_port)}).with_overrides(
            local_config("b", **{"b.http.port": str(free_port)})
        )

        with HttpServerFactory(configuration=config) as factory:
            factory.start("a", {"/": json_handler({})})

            with pytest.raises(ServerStartError) as exc_info:
                factory.start("b", {"/": json_handler({})})

            assert exc_info.value.reason is StartFailure.BIND
            assert factory.registry.names() == ["a"]


class TestTls:
    """TLS and mutual TLS connectors."""

    def test_plain_and_tls_connectors(self, factory, server_tls):
        instance = factory.start("svc", {"/*": scheme_handler}, tls=server_tls)

        assert len(instance.ports) == 2
        plain_port, tls_port = instance.ports

        assert Client(plain_port).get_json("/x")[2]["scheme"] == "http"
        status, _, body = Client(tls_port, client_tls_context()).get_json("/x")
        assert status == 200
        assert body["scheme"] == "https"

    def test_https_only(self, server_tls):
        config = local_config(**{"svc.https.useHttpsOnly": "true"})

        with HttpServerFactory(configuration=config) as factory:
            instance = factory.start("svc", {"/*": scheme_handler}, tls=server_tls)

            assert len(instance.ports) == 1
            status, _, body = Client(instance.port, client_tls_context()).get_json("/x")

        assert status == 200
        assert body["scheme"] == "https"

    def test_mutual_tls_accepts_client_certificate(self, factory, mutual_tls):
        instance = factory.start("svc", {"/*": scheme_handler}, tls=mutual_tls)
        tls_port = instance.ports[1]

        status, _, _ = Client(tls_port, client_tls_context(with_client_cert=True)).get_json("/x")

        assert status == 200

    def test_mutual_tls_rejects_anonymous_client(self, factory, mutual_tls):
        instance = factory.start("svc", {"/*": scheme_handler}, tls=mutual_tls)
        tls_port = instance.ports[1]

        with pytest.raises(OSError):
            Client(tls_port, client_tls_context()).request("GET", "/x")

        # the server keeps serving after the failed handshake
        client = Client(tls_port, client_tls_context(with_client_cert=True))
        assert client.request("GET", "/x")[0] == 200

    def test_missing_key_store_fails_start(self, factory, tmp_path):
        tls = TlsMaterial(str(tmp_path / "missing.pem"), "changeit")

        with pytest.raises(ServerStartError) as exc_info:
            factory.start("svc", {"/": json_handler({})}, tls=tls)

        assert exc_info.value.reason is StartFailure.TLS
        assert factory.registry.names() == []

    def test_blank_key_store_means_plain_only(self, factory):
        instance = factory.start("svc", {"/": json_handler({})}, tls=TlsMaterial("", "changeit"))

        assert len(instance.ports) == 1
