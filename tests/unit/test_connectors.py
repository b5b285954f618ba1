"""
Unit tests for connector building and TLS policy.
"""

import os

import pytest

from httpfactory.config import Configuration
from httpfactory.connectors import (
    ENGINE_ACCEPTORS,
    ENGINE_IDLE_TIMEOUT_MS,
    ENGINE_REQUEST_HEADER_SIZE,
    Protocol,
    TransportMode,
    build_connectors,
)
from httpfactory.errors import ConfigurationError
from httpfactory.tls import TlsMaterial, is_tls_enabled, requires_client_auth


KEY_ONLY = TlsMaterial(key_store_path="/keys/server.pem", key_store_password="secret")
KEY_AND_TRUST = TlsMaterial(
    key_store_path="/keys/server.pem",
    key_store_password="secret",
    trust_store_path="/keys/ca.pem",
    trust_store_password="secret",
)


class TestTlsPolicy:
    """Tests for when TLS and client authentication are enabled."""

    def test_no_material_means_no_tls(self):
        assert is_tls_enabled(None) is False
        assert is_tls_enabled(TlsMaterial()) is False

    def test_blank_key_store_fields_disable_tls(self):
        assert is_tls_enabled(TlsMaterial("  ", "secret")) is False
        assert is_tls_enabled(TlsMaterial("/keys/server.pem", "  ")) is False

    def test_key_store_and_password_enable_tls(self):
        assert is_tls_enabled(KEY_ONLY) is True
        assert requires_client_auth(KEY_ONLY) is False

    def test_trust_store_requires_both_fields(self):
        partial = TlsMaterial("/keys/server.pem", "secret", "/keys/ca.pem", "")

        assert requires_client_auth(partial) is False
        assert requires_client_auth(KEY_AND_TRUST) is True

    def test_trust_store_without_key_store_is_ignored(self):
        material = TlsMaterial("", "", "/keys/ca.pem", "secret")

        assert requires_client_auth(material) is False

    def test_repr_hides_passwords(self):
        assert "secret" not in repr(KEY_AND_TRUST)


class TestBuildConnectors:
    """Tests for build_connectors()."""

    def test_defaults_without_tls(self):
        connectors = build_connectors("svc", Configuration())

        assert len(connectors) == 1
        plain = connectors[0]
        assert plain.protocol is Protocol.HTTP
        assert plain.host == "0.0.0.0"
        assert plain.port == 8080
        assert plain.idle_timeout_ms == 180000
        assert plain.transport is TransportMode.NON_BLOCKING
        assert plain.acceptors == (os.cpu_count() or 1)
        assert plain.accept_queue_size == 0
        assert plain.request_header_size == ENGINE_REQUEST_HEADER_SIZE
        assert plain.is_tls is False

    def test_blank_key_store_gives_single_plain_connector(self):
        connectors = build_connectors("svc", Configuration(), TlsMaterial("", "secret"))

        assert [c.protocol for c in connectors] == [Protocol.HTTP]

    def test_plain_settings_are_read_per_service(self):
        config = Configuration({
            "billing.http.host": "127.0.0.1",
            "billing.http.port": "9000",
            "billing.http.connectionIdleTime": "60000",
            "billing.http.isBlockingChannelConnector": "true",
            "billing.http.numberOfAcceptors": "3",
            "billing.http.acceptQueueSize": "50",
            "billing.http.requestHeaderSize": "16384",
            "reports.http.port": "9100",
        })

        [plain] = build_connectors("billing", config)

        assert plain.host == "127.0.0.1"
        assert plain.port == 9000
        assert plain.idle_timeout_ms == 60000
        assert plain.idle_timeout == 60.0
        assert plain.transport is TransportMode.BLOCKING
        assert plain.acceptors == 3
        assert plain.accept_queue_size == 50
        assert plain.backlog == 50
        assert plain.request_header_size == 16384

    def test_tls_gives_plain_and_tls_connectors(self):
        connectors = build_connectors("svc", Configuration(), KEY_ONLY)

        assert [c.protocol for c in connectors] == [Protocol.HTTP, Protocol.HTTPS]
        tls = connectors[1]
        assert tls.port == 8090
        assert tls.host == "0.0.0.0"
        assert tls.need_client_auth is False
        assert tls.tls is KEY_ONLY

    def test_tls_connector_uses_engine_defaults_for_tuning(self):
        config = Configuration({
            "svc.http.connectionIdleTime": "1000",
            "svc.http.numberOfAcceptors": "8",
            "svc.http.isBlockingChannelConnector": "true",
            "svc.https.port": "9443",
        })

        tls = build_connectors("svc", config, KEY_ONLY)[1]

        assert tls.port == 9443
        assert tls.idle_timeout_ms == ENGINE_IDLE_TIMEOUT_MS
        assert tls.acceptors == ENGINE_ACCEPTORS
        assert tls.transport is TransportMode.NON_BLOCKING

    def test_https_only_drops_plain_connector(self):
        config = Configuration({"svc.https.useHttpsOnly": "true"})

        connectors = build_connectors("svc", config, KEY_ONLY)

        assert [c.protocol for c in connectors] == [Protocol.HTTPS]

    def test_https_only_ignores_plain_settings(self):
        """Plaintext keys are never read when no plaintext connector is built."""
        config = Configuration({
            "svc.https.useHttpsOnly": "true",
            "svc.http.port": "not-a-port",
            "svc.http.numberOfAcceptors": "0",
        })

        [tls] = build_connectors("svc", config, KEY_ONLY)

        assert tls.protocol is Protocol.HTTPS

    def test_https_only_without_tls_keeps_plain(self):
        config = Configuration({"svc.https.useHttpsOnly": "true"})

        connectors = build_connectors("svc", config, TlsMaterial())

        assert [c.protocol for c in connectors] == [Protocol.HTTP]

    def test_mutual_tls_with_plain(self):
        connectors = build_connectors("svc", Configuration(), KEY_AND_TRUST)

        assert [c.protocol for c in connectors] == [Protocol.HTTP, Protocol.HTTPS]
        assert connectors[1].need_client_auth is True
        assert connectors[0].need_client_auth is False

    def test_malformed_port_raises(self):
        config = Configuration({"svc.http.port": "http"})

        with pytest.raises(ConfigurationError):
            build_connectors("svc", config)

    @pytest.mark.parametrize("key,value", [
        ("svc.http.port", "70000"),
        ("svc.http.connectionIdleTime", "0"),
        ("svc.http.numberOfAcceptors", "0"),
        ("svc.http.acceptQueueSize", "-1"),
        ("svc.http.requestHeaderSize", "10"),
    ])
    def test_out_of_range_values_fail_validation(self, key, value):
        with pytest.raises(ConfigurationError):
            build_connectors("svc", Configuration({key: value}))

    def test_port_zero_is_allowed(self):
        [plain] = build_connectors("svc", Configuration({"svc.http.port": "0"}))

        assert plain.port == 0
