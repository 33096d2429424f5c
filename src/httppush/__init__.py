"""
=============================================================================
HTTPPUSH - HTTP/2 Server Push Helpers and a Small TLS-Capable Server
=============================================================================

Two helpers for request handlers:

    probe(writer)                does this connection support server push?
    push_files(writer, files)    push each file, stop at the first failure

and the server they run on, with a lifecycle that tests can drive from
another thread:

    server = HTTPServer(load_config("server.json"))
    ready = ReadySignal()
    threading.Thread(target=server.run, args=(ready,)).start()
    ready.wait()            # listening
    ...
    server.quit()           # drained and stopped

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httppush/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m httppush)
    ├── push.py              # probe() and push_files()
    ├── server.py            # HTTPServer lifecycle and connection handling
    ├── config.py            # ServerConfig, load_config()
    ├── tls.py               # SSL contexts with ALPN
    ├── core/                # Sockets, connections, HTTP/2 sessions
    ├── http/                # Request, ResponseWriter, Router
    └── handlers/            # redirect_https(), PushedFileHandler

=============================================================================
"""

from .config import (
    ConfigError,
    ConfigNotFoundError,
    ConfigNotJSONError,
    ConfigValidationError,
    ServerConfig,
    load_config,
)
from .core import ReadySignal
from .http import Capability, HTTPRequest, PushOptions, PushRejected, ResponseWriter, Router
from .push import (
    PathResolutionError,
    PushError,
    PushFailedError,
    PushUnsupportedError,
    normalize_path,
    probe,
    push_files,
)
from .server import HTTPServer, ServerState, create_app

__version__ = "1.0.0"

__all__ = [
    # Push helpers
    "probe",
    "push_files",
    "normalize_path",
    "PushError",
    "PushUnsupportedError",
    "PathResolutionError",
    "PushFailedError",

    # Server
    "HTTPServer",
    "ServerState",
    "ReadySignal",
    "create_app",

    # Configuration
    "ServerConfig",
    "load_config",
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigNotJSONError",
    "ConfigValidationError",

    # HTTP
    "Capability",
    "HTTPRequest",
    "PushOptions",
    "PushRejected",
    "ResponseWriter",
    "Router",
]
