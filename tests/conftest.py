"""
pytest configuration and fixtures.
"""

import socket
import ssl
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Generator, List, Optional
from urllib.parse import unquote

import h2.config
import h2.connection
import h2.events
import h2.settings
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httppush import HTTPServer, ReadySignal, ServerConfig, load_config, push_files
from httppush.handlers import PushedFileHandler
from httppush.http import PushRejected, ResponseWriter


SAMPLE_DIR = Path(__file__).parent / "sample"
SAMPLE_CONFIG = SAMPLE_DIR / "sample_config.json"
SAMPLE_TLS_CONFIG = SAMPLE_DIR / "sample_config_tls.json"
SAMPLE_HTML = SAMPLE_DIR / "test.html"
SAMPLE_CSS = SAMPLE_DIR / "style.css"


# =============================================================================
# RAW REQUESTS
# =============================================================================

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
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
        + body
    )


@pytest.fixture
def config() -> ServerConfig:
    """Plain test configuration on an OS-assigned port."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# =============================================================================
# FAKE PUSH TRANSPORT
# =============================================================================

class RecordingPusher:
    """
    Pusher callback for ResponseWriter that records targets.

    Targets listed in reject raise PushRejected, like a transport whose
    peer refused the push.
    """

    def __init__(self, reject=()):
        self.reject = set(reject)
        self.pushed: List[str] = []
        self.attempted: List[str] = []

    def __call__(self, target, options):
        self.attempted.append(target)
        if target in self.reject:
            raise PushRejected(f"refused {target}")
        self.pushed.append(target)


@pytest.fixture
def pusher() -> RecordingPusher:
    return RecordingPusher()


@pytest.fixture
def push_writer(pusher) -> ResponseWriter:
    """Writer of an HTTP/2 client stream: WRITE | PUSH."""
    return ResponseWriter(pusher=pusher, protocol="HTTP/2")


@pytest.fixture
def basic_writer() -> ResponseWriter:
    """Writer of an HTTP/1.1 connection: WRITE only."""
    return ResponseWriter(protocol="HTTP/1.1")


# =============================================================================
# SERVER IN A BACKGROUND THREAD
# =============================================================================

class TestServer:
    """Runs an HTTPServer on a background thread."""

    __test__ = False

    def __init__(self, server: HTTPServer):
        self.server = server
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self._thread: Optional[threading.Thread] = None

    def start(self, timeout: float = 5.0):
        ready = ReadySignal()
        self._thread = threading.Thread(target=self.server.run, args=(ready,), daemon=True)
        self._thread.start()

        if not ready.wait(timeout):
            raise RuntimeError("Server failed to start")
        self.host, self.port = ready.address

    def stop(self) -> bool:
        stopped = self.server.quit(timeout=10.0)
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        return stopped


def build_push_app(config: ServerConfig, outcomes: list) -> HTTPServer:
    """
    Server with a pushing handler.

        /             "Hello, world"
        /pushAttempt  "Hello, ..." then push_files([test.html]); the
                      outcome (None or the exception) goes to outcomes
        /*path        the sample files, under their absolute paths
    """
    server = HTTPServer(config)
    files = PushedFileHandler([str(SAMPLE_HTML), str(SAMPLE_CSS)])

    @server.get("/")
    def index(writer, request):
        writer.write("Hello, world")

    @server.get("/pushAttempt")
    def push_attempt(writer, request):
        writer.write(f"Hello, {request.version}")
        try:
            push_files(writer, [str(SAMPLE_HTML)])
        except Exception as e:
            outcomes.append(e)
        else:
            outcomes.append(None)

    @server.get("/pushBoth")
    def push_both(writer, request):
        writer.write("Hello, both")
        push_files(writer, [str(SAMPLE_HTML), str(SAMPLE_CSS)])
        outcomes.append(None)

    @server.get("/boom")
    def boom(writer, request):
        raise RuntimeError("handler exploded")

    server.get("/*path")(files.handle)
    return server


@pytest.fixture
def push_outcomes() -> list:
    return []


@pytest.fixture
def plain_server(push_outcomes) -> Generator[TestServer, None, None]:
    """Cleartext server (HTTP/1.1 and h2c) from the sample config."""
    test_srv = TestServer(build_push_app(load_config(str(SAMPLE_CONFIG)), push_outcomes))
    test_srv.start()
    yield test_srv
    test_srv.stop()


@pytest.fixture
def make_server() -> Generator:
    """Factory: make_server(config) -> started TestServer, stopped at teardown."""
    started: List[TestServer] = []

    def start(config: ServerConfig) -> TestServer:
        test_srv = TestServer(HTTPServer(config))
        test_srv.start()
        started.append(test_srv)
        return test_srv

    yield start

    for test_srv in started:
        test_srv.stop()


@pytest.fixture
def tls_config() -> ServerConfig:
    return load_config(str(SAMPLE_TLS_CONFIG))


@pytest.fixture
def tls_server(tls_config, push_outcomes) -> Generator[TestServer, None, None]:
    """TLS server (ALPN h2 / http/1.1) from the sample TLS config."""
    test_srv = TestServer(build_push_app(tls_config, push_outcomes))
    test_srv.start()
    yield test_srv
    test_srv.stop()


# =============================================================================
# HTTP/2 TEST CLIENT
# =============================================================================

@dataclass
class H2Response:
    status: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class H2Exchange:
    """A response plus whatever the server pushed along with it."""
    response: H2Response
    pushes: Dict[str, H2Response] = field(default_factory=dict)


class H2Client:
    """
    Minimal blocking HTTP/2 client on top of h2.

    Speaks h2c with prior knowledge on a plain socket, or h2 over TLS
    when given an SSL context.
    """

    def __init__(
        self,
        host: str,
        port: int,
        ssl_context: Optional[ssl.SSLContext] = None,
        enable_push: bool = True,
        server_hostname: str = "localhost",
    ):
        sock = socket.create_connection((host, port), timeout=5.0)
        if ssl_context is not None:
            sock = ssl_context.wrap_socket(sock, server_hostname=server_hostname)
        self.sock = sock
        self.scheme = "https" if ssl_context is not None else "http"
        self.authority = f"{server_hostname}:{port}"

        self.conn = h2.connection.H2Connection(
            config=h2.config.H2Configuration(client_side=True, header_encoding="utf-8")
        )
        self.conn.initiate_connection()
        if not enable_push:
            self.conn.update_settings({h2.settings.SettingCodes.ENABLE_PUSH: 0})
        self.sock.sendall(self.conn.data_to_send())

    @property
    def alpn_protocol(self) -> Optional[str]:
        if isinstance(self.sock, ssl.SSLSocket):
            return self.sock.selected_alpn_protocol()
        return None

    def get(self, path: str) -> H2Exchange:
        stream_id = self.conn.get_next_available_stream_id()
        self.conn.send_headers(
            stream_id,
            [
                (":method", "GET"),
                (":scheme", self.scheme),
                (":authority", self.authority),
                (":path", path),
            ],
            end_stream=True,
        )
        self.sock.sendall(self.conn.data_to_send())
        return self._collect(stream_id)

    def _collect(self, stream_id: int) -> H2Exchange:
        responses: Dict[int, H2Response] = {stream_id: H2Response()}
        promised: Dict[int, str] = {}
        open_streams = {stream_id}

        while open_streams:
            data = self.sock.recv(65535)
            if not data:
                raise ConnectionError("server closed the connection")

            for event in self.conn.receive_data(data):
                if isinstance(event, h2.events.ResponseReceived):
                    response = responses.setdefault(event.stream_id, H2Response())
                    response.headers = dict(event.headers)
                    response.status = int(response.headers[":status"])
                elif isinstance(event, h2.events.DataReceived):
                    responses.setdefault(event.stream_id, H2Response()).body += event.data
                    self.conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
                elif isinstance(event, h2.events.PushedStreamReceived):
                    promised[event.pushed_stream_id] = unquote(dict(event.headers)[":path"])
                    responses[event.pushed_stream_id] = H2Response()
                    open_streams.add(event.pushed_stream_id)
                elif isinstance(event, (h2.events.StreamEnded, h2.events.StreamReset)):
                    open_streams.discard(event.stream_id)
                elif isinstance(event, h2.events.ConnectionTerminated):
                    open_streams.clear()

            self.sock.sendall(self.conn.data_to_send())

        return H2Exchange(
            response=responses[stream_id],
            pushes={path: responses[pid] for pid, path in promised.items()},
        )

    def close(self):
        try:
            self.conn.close_connection()
            self.sock.sendall(self.conn.data_to_send())
        except OSError:
            pass
        self.sock.close()


@pytest.fixture
def h2_client() -> Generator:
    """Factory: h2_client(test_server, ssl_context=None, enable_push=True)."""
    clients: List[H2Client] = []

    def connect(test_srv: TestServer, **kwargs) -> H2Client:
        client = H2Client(test_srv.host, test_srv.port, **kwargs)
        clients.append(client)
        return client

    yield connect

    for client in clients:
        client.close()


@pytest.fixture
def sample_html() -> str:
    return str(SAMPLE_HTML)


@pytest.fixture
def sample_css() -> str:
    return str(SAMPLE_CSS)


@pytest.fixture
def sample_dir() -> Path:
    return SAMPLE_DIR
