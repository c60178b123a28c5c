"""
=============================================================================
TLS CONTEXT
=============================================================================

Builds the server-side ``ssl.SSLContext`` for the HTTPS and HTTP/2
transports. Every problem is reported as ConfigError while the server is
being constructed, before any socket is opened.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     create_ssl_context()                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   cert/key missing?            → ConfigError                         │
    │   files unreadable?            → ConfigError                         │
    │   key does not fit the cert?   → ConfigError "... do not match: ..." │
    │   ca given?                    → load_verify_locations(ca)           │
    │   alpn given?                  → set_alpn_protocols(["h2",           │
    │                                                      "http/1.1"])    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

TLS 1.2 is the floor; HTTP/2 forbids anything older (RFC 7540 §9.2).

=============================================================================
"""

from typing import List, Optional
import logging
import ssl

from ..http.errors import ConfigError


logger = logging.getLogger(__name__)


def create_ssl_context(
    cert_path: Optional[str],
    key_path: Optional[str],
    ca_path: Optional[str] = None,
    alpn_protocols: Optional[List[str]] = None,
) -> ssl.SSLContext:
    """
    Load a certificate chain into a server SSLContext.

    Args:
        cert_path: PEM certificate (chain)
        key_path: PEM private key
        ca_path: Optional CA bundle
        alpn_protocols: Protocols to advertise, in preference order

    Raises:
        ConfigError: missing paths, unreadable files, or mismatched key
    """
    if not cert_path or not key_path:
        raise ConfigError("SSL certificate and key paths are required when useHttps/useHttp2 is true")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.options |= ssl.OP_NO_COMPRESSION

    try:
        context.load_cert_chain(certfile=cert_path, keyfile=key_path)
    except ssl.SSLError as e:
        detail = str(e)
        if "KEY_VALUES_MISMATCH" in detail or "key values mismatch" in detail.lower():
            raise ConfigError(f"SSL certificate and key do not match: {detail}") from e
        raise ConfigError(f"Failed to load SSL certificate or key: {detail}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read SSL certificate or key: {e}") from e

    if ca_path:
        try:
            context.load_verify_locations(cafile=ca_path)
        except (OSError, ssl.SSLError) as e:
            raise ConfigError(f"Failed to load SSL CA bundle {ca_path}: {e}") from e

    if alpn_protocols:
        context.set_alpn_protocols(alpn_protocols)

    logger.debug(f"Loaded TLS certificate {cert_path} (alpn={alpn_protocols})")
    return context
