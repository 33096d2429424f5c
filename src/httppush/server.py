"""
=============================================================================
HTTP SERVER
=============================================================================

HTTPServer ties the pieces together and owns the server lifecycle:

    ┌──────────────────────────────────────────────────────────────────────┐
    │  run(ready)                                                          │
    │    ├── build TLS context (None in plain mode)                        │
    │    ├── bind + listen ──────────────► ready.fire((host, port))        │
    │    └── accept loop                                                   │
    │          └── per connection, on a worker thread:                     │
    │                negotiate()                                           │
    │                  ├── "h2"       → HTTP2Session (push capable)        │
    │                  └── "http/1.1" → keep-alive request loop            │
    │                                                                      │
    │  quit()  (any thread)                                                │
    │    ├── stop accepting                                                │
    │    ├── drop connections that have not been negotiated yet            │
    │    ├── let in-flight requests finish (worker pool joined)            │
    │    └── return once run() has exited                                  │
    └──────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE STATES
=============================================================================

    CREATED ──run()──► RUNNING ──quit() / signal / bind error──► STOPPED
                          ▲                                         │
                          └────────────────run()────────────────────┘

A server runs at most once at a time. quit() on a server that is not
running does nothing and returns False.

=============================================================================
USAGE
=============================================================================

    server = HTTPServer(load_config("server.json"))

    @server.get("/")
    def index(writer, request):
        writer.write("<html>...</html>")
        try:
            push_files(writer, ["static/app.css"])
        except PushError as e:
            logger.info(f"push skipped: {e}")

    ready = ReadySignal()
    threading.Thread(target=server.run, args=(ready,)).start()
    ready.wait()
    ...
    server.quit()

=============================================================================
"""

import logging
import ssl
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from http import HTTPStatus
from typing import Dict, Optional

from .config import ServerConfig
from .core import (
    Connection,
    HTTP2Session,
    PROTOCOL_HTTP2,
    ReadySignal,
    SocketServer,
)
from .http import (
    HTTPParseError,
    HTTPRequest,
    RequestParser,
    ResponseWriter,
    Router,
    internal_error,
)
from .tls import build_server_context


logger = logging.getLogger(__name__)


class ServerState(Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class HTTPServer:
    """
    HTTP/1.1 and HTTP/2 server with server push.

    Handlers are registered on the router (or through the decorator
    shortcuts below) and receive (writer, request). On HTTP/2
    connections the writer can push.
    """

    def __init__(self, config: Optional[ServerConfig] = None, router: Optional[Router] = None):
        """
        Args:
            config: Server configuration. Defaults to ServerConfig().
            router: Router to dispatch to. A new, empty one by default.

        Raises:
            ConfigValidationError: config is invalid.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self._router = router or Router()
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        self._lock = threading.Lock()
        self._state = ServerState.CREATED
        self._socket_server: Optional[SocketServer] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stopped = threading.Event()
        # Connections still waiting for their first bytes or TLS handshake
        self._negotiating: Dict[str, Connection] = {}

    # =========================================================================
    # ROUTING
    # =========================================================================

    @property
    def router(self) -> Router:
        return self._router

    def route(self, path: str, method: Optional[str] = None, **kwargs):
        return self._router.route(path, method, **kwargs)

    def get(self, path: str, **kwargs):
        return self._router.get(path, **kwargs)

    def post(self, path: str, **kwargs):
        return self._router.post(path, **kwargs)

    def put(self, path: str, **kwargs):
        return self._router.put(path, **kwargs)

    def delete(self, path: str, **kwargs):
        return self._router.delete(path, **kwargs)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ServerState.RUNNING

    def run(self, ready: Optional[ReadySignal] = None) -> None:
        """
        Serve until quit() or SIGINT/SIGTERM. Blocks.

        Args:
            ready: Fired once with the bound (host, port) after listen()
                   and before the first accept(). Failed with the startup
                   error if the server never gets that far.

        Raises:
            RuntimeError: The server is already running.
            ConfigNotFoundError: A configured certificate or key is missing.
            OSError: The address could not be bound.
        """
        with self._lock:
            if self._state is ServerState.RUNNING:
                raise RuntimeError("server is already running")
            self._state = ServerState.RUNNING
            self._stopped.clear()
            self._socket_server = None

        self._setup_logging()

        try:
            tls_context = build_server_context(self.config)

            with self._lock:
                self._socket_server = SocketServer(self.config, tls_context)
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix="httppush-worker",
                )

            self.config.log_summary()
            self._router.log_routes()

            self._socket_server.start(
                self._handle_connection,
                on_listening=ready.fire if ready is not None else None,
            )
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        except Exception as e:
            if ready is not None and not ready.fired:
                ready.fail(e)
            raise
        finally:
            self._shutdown()

    def quit(self, timeout: Optional[float] = None) -> bool:
        """
        Stop a running server gracefully.

        Stops accepting, waits for in-flight requests to finish and for
        run() to return.

        Args:
            timeout: Seconds to wait for run() to exit; None waits forever.

        Returns:
            True if a running server stopped within timeout. False when
            the server was not running, or did not stop in time.
        """
        with self._lock:
            if self._state is not ServerState.RUNNING:
                logger.debug(f"quit() on a {self._state.value} server, nothing to do")
                return False
            socket_server = self._socket_server

        # None while run() is still starting; retried in the loop below
        if socket_server is not None:
            socket_server.shutdown()

        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._stopped.wait(0.1):
            with self._lock:
                socket_server = self._socket_server
            if socket_server is not None:
                socket_server.shutdown()
            if deadline is not None and time.monotonic() >= deadline:
                return False
        return True

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("httppush").setLevel(level)

    def _shutdown(self):
        logger.info("Shutting down server...")

        with self._lock:
            executor = self._executor
            self._executor = None
            negotiating = list(self._negotiating.values())

        # Unblock workers still waiting for a client's first bytes
        for conn in negotiating:
            conn.abort()

        if executor is not None:
            # Workers see _accepting() turn False and wind down
            executor.shutdown(wait=True)

        with self._lock:
            self._state = ServerState.STOPPED
            self._socket_server = None
        self._stopped.set()

        logger.info("Server stopped")

    def _accepting(self) -> bool:
        socket_server = self._socket_server
        return socket_server is not None and socket_server.is_running

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Hand an accepted connection to the worker pool."""
        self._executor.submit(self._process_connection, conn)

    def _process_connection(self, conn: Connection):
        """Negotiate the protocol and serve the connection (worker thread)."""
        with conn:
            with self._lock:
                if not self._accepting():
                    logger.debug(f"[{conn.id}] Server shutting down, dropping {conn.client_ip}")
                    return
                self._negotiating[conn.id] = conn

            try:
                protocol = conn.negotiate(allow_h2c=self.config.allow_h2c)
            except (ssl.SSLError, OSError) as e:
                # TimeoutError is an OSError
                if self._accepting():
                    logger.warning(f"[{conn.id}] Handshake with {conn.client_ip} failed: {e}")
                else:
                    logger.debug(f"[{conn.id}] Handshake aborted by shutdown: {e}")
                return
            finally:
                with self._lock:
                    self._negotiating.pop(conn.id, None)

            logger.debug(f"[{conn.id}] {conn.client_ip} speaks {protocol}")

            try:
                if protocol == PROTOCOL_HTTP2:
                    HTTP2Session(conn, self._dispatch, self.config, self._accepting).run()
                else:
                    self._serve_http11(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Connection error: {e}")

    def _dispatch(self, writer: ResponseWriter, request: HTTPRequest) -> None:
        self._router.handle(writer, request)

    def _serve_http11(self, conn: Connection):
        """
        HTTP/1.1 keep-alive loop.

            read → parse → dispatch → send → (keep-alive? repeat : close)

        Writers created here never carry the PUSH capability.
        """
        while self._accepting():
            try:
                raw_request = conn.read_request()
                if raw_request is None:
                    break

                try:
                    request = self._parser.parse(raw_request, conn.address, scheme=conn.scheme)
                except HTTPParseError as e:
                    self._send_error(conn, e.status_code, str(e))
                    break

                start = time.time()
                writer = ResponseWriter(protocol=request.version)
                try:
                    self._dispatch(writer, request)
                    response = writer.finish()
                except Exception as e:
                    logger.exception(f"[{conn.id}] Handler error: {e}")
                    writer.finish()
                    response = internal_error()

                keep_alive = request.is_keep_alive and self.config.keep_alive and self._accepting()
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        f"timeout={int(self.config.keep_alive_timeout)}"
                    )
                else:
                    response.headers["Connection"] = "close"

                if request.method == "HEAD":
                    response.headers.setdefault("Content-Length", str(len(response.body)))
                    response.body = b""

                if not conn.send_response(response.to_bytes(self.config.server_name)):
                    break

                elapsed_ms = (time.time() - start) * 1000
                logger.info(
                    f"[{conn.id}] {request.method} {request.target} {request.version} "
                    f"→ {int(response.status)} ({elapsed_ms:.1f}ms)"
                )

                if not keep_alive:
                    break
                conn.set_keep_alive()

            except TimeoutError:
                self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                break

            except ValueError as e:
                self._send_error(conn, HTTPStatus.REQUEST_ENTITY_TOO_LARGE, str(e))
                break

    def _send_error(self, conn: Connection, status: int, message: str):
        """Error response for failures before a handler ran; closes."""
        writer = ResponseWriter()
        writer.write_json({"error": message}, status=status)
        response = writer.finish()
        response.headers["Connection"] = "close"
        conn.send_response(response.to_bytes(self.config.server_name))


def create_app(config: Optional[ServerConfig] = None, router: Optional[Router] = None) -> HTTPServer:
    """
    Create a server application.

        app = create_app(ServerConfig(port=8443, cert_file=..., key_file=...))

        @app.get("/")
        def index(writer, request):
            writer.write("Hello!")

        app.run()
    """
    return HTTPServer(config, router)
