"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the listening socket: bind, listen, accept, and hand each client
socket to a callback. Everything above TCP (TLS handshake, protocol
selection, HTTP) happens in the connection workers.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create a socket file descriptor
    2. bind()      Associate the socket with an IP:PORT
    3. listen()    OS starts queueing incoming connections
                   └─ on_listening(address) fires here
    4. accept()    Returns a NEW socket per client
    5. close()     Release the socket resources

=============================================================================
TLS
=============================================================================

With a TLS context, accepted sockets are wrapped with
do_handshake_on_connect=False. Wrapping does no I/O, so a slow or broken
client cannot stall the accept loop; the handshake runs later in the
worker (Connection.negotiate).

=============================================================================
SIGNALS
=============================================================================

SIGINT (Ctrl+C) and SIGTERM trigger a graceful shutdown. Python only
allows installing signal handlers from the main thread, so a server
started on a background thread (tests, embedding) skips this step and
relies on its owner calling shutdown().

=============================================================================
"""

import logging
import signal
import socket
import ssl
import threading
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

# How often the accept loop re-checks the running flag
ACCEPT_POLL_INTERVAL = 0.5


class SocketServer:
    """
    Low-level TCP socket server.

        server = SocketServer(config, tls_context=None)
        server.start(handle_connection, on_listening=ready.fire)  # blocks

        # from another thread:
        server.shutdown()
    """

    def __init__(self, config: ServerConfig, tls_context: Optional[ssl.SSLContext] = None):
        self.config = config
        self.tls_context = tls_context

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._stop_requested = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        """True while the accept loop runs and no shutdown was requested."""
        return self._running and not self._stop_requested.is_set()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the configured pair before binding."""
        if self._socket is not None:
            host, port = self._socket.getsockname()[:2]
            return (host, port)
        return self.config.address

    def _create_socket(self) -> socket.socket:
        """Create the listening socket with SO_REUSEADDR and TCP_NODELAY."""
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # Restart without waiting for TIME_WAIT to expire
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Small frames (SETTINGS, PUSH_PROMISE) should not wait for Nagle
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up periodically to notice shutdown
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def _setup_signals(self):
        """Install SIGTERM/SIGINT handlers (main thread only)."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(
        self,
        connection_handler: Callable[[Connection], None],
        on_listening: Optional[Callable[[Tuple[str, int]], None]] = None,
    ):
        """
        Bind, listen and run the accept loop. Blocks until shutdown().

        Args:
            connection_handler: Called with each accepted Connection.
            on_listening: Called once with the bound address, after
                          listen() succeeded and before the first accept().

        Raises:
            OSError: bind() or listen() failed. Nothing is retried.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind(self.config.address)
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._running = True
        self._setup_signals()

        host, port = self.address
        logger.info(f"Server listening on {host}:{port}")

        try:
            if on_listening is not None:
                on_listening((host, port))
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while not self._stop_requested.is_set():
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue  # poll the running flag
            except OSError as e:
                if not self._stop_requested.is_set():
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            secure = False
            if self.tls_context is not None:
                try:
                    client_socket = self.tls_context.wrap_socket(
                        client_socket,
                        server_side=True,
                        do_handshake_on_connect=False,
                    )
                    secure = True
                except (ssl.SSLError, OSError) as e:
                    logger.warning(f"TLS wrap failed for {client_address[0]}: {e}")
                    client_socket.close()
                    continue

            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                secure=secure,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )
            connection_handler(conn)

    def shutdown(self):
        """
        Stop the accept loop. Safe to call from any thread, idempotent.

        start() returns within ACCEPT_POLL_INTERVAL. A shutdown requested
        before start() makes start() return right after binding.
        """
        if not self._stop_requested.is_set():
            logger.info("Shutting down socket server...")
        self._stop_requested.set()

    def _cleanup(self):
        self._running = False
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass  # already closed
            self._socket = None

        logger.info("Socket server stopped")
