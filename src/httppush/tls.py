"""
=============================================================================
TLS CONTEXTS
=============================================================================

Builds ssl.SSLContext objects from a ServerConfig.

=============================================================================
WHY ALPN MATTERS HERE
=============================================================================

Browsers only speak HTTP/2 over TLS, and they pick the protocol during
the handshake with ALPN (Application-Layer Protocol Negotiation):

    Client Hello ── ALPN: ["h2", "http/1.1"] ──►
                 ◄── ALPN: "h2" ──────────────── Server Hello

Whatever the server selects here decides which capability variant the
handlers get: an "h2" connection hands out pushable response writers,
an "http/1.1" connection hands out basic ones.

=============================================================================
"""

import logging
import os
import ssl
from typing import Optional, Sequence

from .config import ConfigNotFoundError, ServerConfig


logger = logging.getLogger(__name__)

# Preference order: first match wins on the server side
ALPN_PROTOCOLS = ["h2", "http/1.1"]


def _require_file(path: Optional[str]) -> str:
    if not path or not os.path.isfile(path):
        raise ConfigNotFoundError(path or "")
    return path


def build_server_context(config: ServerConfig) -> Optional[ssl.SSLContext]:
    """
    Build the server-side TLS context.

    Args:
        config: Server configuration with cert_file and key_file.

    Returns:
        None when neither certificate nor key is configured (plain TCP),
        otherwise a context offering h2 and http/1.1 via ALPN.

    Raises:
        ConfigNotFoundError: One of the two files is missing, or only
                             one of them is configured.
        ssl.SSLError: The key pair cannot be loaded.
    """
    if not config.cert_file and not config.key_file:
        logger.debug("No key pair configured, TLS disabled")
        return None

    cert_file = _require_file(config.cert_file)
    key_file = _require_file(config.key_file)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    # RFC 7540 section 9.2: HTTP/2 requires TLS 1.2 or later
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    context.set_alpn_protocols(ALPN_PROTOCOLS)

    logger.debug(f"Loaded X509 key pair {cert_file} / {key_file}")
    return context


def build_client_context(
    config: ServerConfig,
    alpn_protocols: Sequence[str] = ("h2", "http/1.1"),
) -> ssl.SSLContext:
    """
    Build a client-side TLS context that trusts the configured root CA.

    Used by tests and tooling talking to a server started from the same
    configuration.

    Raises:
        ConfigNotFoundError: root_ca is configured but missing.
    """
    cafile = _require_file(config.root_ca) if config.root_ca else None
    context = ssl.create_default_context(cafile=cafile)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    if alpn_protocols:
        context.set_alpn_protocols(list(alpn_protocols))
    return context
