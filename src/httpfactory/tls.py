"""
=============================================================================
TLS POLICY
=============================================================================

Decides how a service speaks TLS, and turns TLS material into an
``ssl.SSLContext`` for the engine.

    ┌──────────────────────────┬───────────────────────────────────────────┐
    │ TLS material supplied    │ Result                                    │
    ├──────────────────────────┼───────────────────────────────────────────┤
    │ no key store / password  │ plaintext connector only                  │
    │ key store + password     │ plaintext + TLS connector                 │
    │  ... + useHttpsOnly      │ TLS connector only                        │
    │  ... + trust store + pw  │ TLS connector requires client certificates│
    └──────────────────────────┴───────────────────────────────────────────┘

Key material is PEM:

    key_store_path        certificate chain and private key in one file
    key_store_password    passphrase of the private key
    trust_store_path      CA bundle used to verify client certificates
    trust_store_password  must be non-empty to enable client auth; PEM CA
                          bundles are not encrypted, so it is not used to
                          load the file

Nothing here touches the files until create_ssl_context() is called at
engine start; a missing or unreadable key store surfaces as a start error.

=============================================================================
"""

import ssl
from dataclasses import dataclass
from typing import Optional

from .errors import TlsMaterialError


@dataclass(frozen=True)
class TlsMaterial:
    """Key store and optional trust store for a service's TLS connector."""

    key_store_path: Optional[str] = ""
    key_store_password: Optional[str] = ""
    trust_store_path: Optional[str] = ""
    trust_store_password: Optional[str] = ""

    def __repr__(self) -> str:
        # keep passwords out of logs
        return (
            f"TlsMaterial(key_store_path={self.key_store_path!r}, "
            f"trust_store_path={self.trust_store_path!r})"
        )


NO_TLS = TlsMaterial()


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _is_empty(value: Optional[str]) -> bool:
    return value is None or value == ""


def is_tls_enabled(material: Optional[TlsMaterial]) -> bool:
    """TLS is on iff both key store path and password are non-blank."""
    if material is None:
        return False
    return not _is_blank(material.key_store_path) and not _is_blank(material.key_store_password)


def requires_client_auth(material: Optional[TlsMaterial]) -> bool:
    """
    Mutual TLS is on iff TLS is on and both trust store fields are
    non-empty.
    """
    if not is_tls_enabled(material):
        return False
    return not _is_empty(material.trust_store_path) and not _is_empty(material.trust_store_password)


def create_ssl_context(material: TlsMaterial, need_client_auth: bool = False) -> ssl.SSLContext:
    """
    Build a server-side SSLContext from PEM key material.

    Raises:
        TlsMaterialError: If a file is missing or unreadable, the password
                          is wrong, or the certificate does not match the key.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    try:
        context.load_cert_chain(
            certfile=material.key_store_path,
            password=material.key_store_password,
        )
    except (OSError, ssl.SSLError) as e:
        raise TlsMaterialError(
            f"Cannot load key store {material.key_store_path!r}: {e}"
        ) from e

    if need_client_auth:
        try:
            context.load_verify_locations(cafile=material.trust_store_path)
        except (OSError, ssl.SSLError) as e:
            raise TlsMaterialError(
                f"Cannot load trust store {material.trust_store_path!r}: {e}"
            ) from e
        context.verify_mode = ssl.CERT_REQUIRED
    else:
        context.verify_mode = ssl.CERT_NONE

    return context
