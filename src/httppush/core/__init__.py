"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking layer underneath HTTPServer:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  SocketServer    bind, listen, accept; TLS-wrap accepted sockets    │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ one Connection per client
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  Connection      TLS handshake, ALPN / h2c preface, buffered reads  │
    └─────────────────────────────────────────────────────────────────────┘
                     │ "http/1.1"                   │ "h2"
                     ▼                              ▼
          keep-alive loop in server.py      HTTP2Session (h2 library)

    ReadySignal tells the thread that started the server when the
    listening socket is bound.

=============================================================================
"""

from .connection import Connection, ConnectionState, PROTOCOL_HTTP11, PROTOCOL_HTTP2
from .h2_session import HTTP2Session
from .signals import ReadySignal
from .socket_server import SocketServer

__all__ = [
    "Connection",
    "ConnectionState",
    "HTTP2Session",
    "PROTOCOL_HTTP11",
    "PROTOCOL_HTTP2",
    "ReadySignal",
    "SocketServer",
]
