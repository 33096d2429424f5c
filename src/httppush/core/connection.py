"""
=============================================================================
CLIENT CONNECTIONS
=============================================================================

A Connection wraps one accepted socket (plain TCP or TLS) and answers
two questions for the worker that owns it:

    1. Which protocol does this client speak?     negotiate()
    2. Give me the next unit of input.            read_request() / recv()

=============================================================================
PROTOCOL SELECTION
=============================================================================

    ┌──────────────────┬─────────────────────────────┬──────────────────┐
    │  Transport       │  Signal                     │  Protocol        │
    ├──────────────────┼─────────────────────────────┼──────────────────┤
    │  TLS             │  ALPN selected "h2"         │  HTTP/2          │
    │  TLS             │  ALPN "http/1.1" or none    │  HTTP/1.1        │
    │  TCP (h2c on)    │  client preface PRI * ...   │  HTTP/2          │
    │  TCP             │  anything else              │  HTTP/1.1        │
    └──────────────────┴─────────────────────────────┴──────────────────┘

Cleartext HTTP/2 uses "prior knowledge" (RFC 7540 3.4): the client opens
with a fixed 24-byte preface instead of a request line. We peek at the
first bytes; whatever was read stays in the buffer, so the HTTP/1.1
reader or the HTTP/2 session sees the stream from its first byte.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

recv() returns arbitrary chunks. HTTP/1.1 requests are therefore
accumulated until the \r\n\r\n header terminator, then until
Content-Length body bytes are present. Bytes past the end of one request
(pipelining) stay buffered for the next read_request().

=============================================================================
"""

import socket
import ssl
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional


logger = logging.getLogger(__name__)

H2_PREFACE = b"PRI * HTTP/2.0\r\n\r\nSM\r\n\r\n"

PROTOCOL_HTTP2 = "h2"
PROTOCOL_HTTP11 = "http/1.1"


class ConnectionState(Enum):
    """Connection lifecycle states, for logging and close bookkeeping."""
    NEW = "new"
    HANDSHAKE = "handshake"
    READING = "reading"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: The client socket, an ssl.SSLSocket when secure.
        address: Client's (ip, port) tuple.
        secure: True when the socket is TLS-wrapped (handshake pending
                until negotiate()).
        id: Short identifier used as a log prefix.
        protocol: Negotiated protocol, set by negotiate().
        requests_handled: Number of HTTP/1.1 requests read so far.
    """

    socket: socket.socket
    address: tuple[str, int]
    secure: bool = False

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    protocol: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 65535
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    @property
    def idle_time(self) -> float:
        """Seconds since the last successful read or write."""
        return time.time() - self.last_activity

    # =========================================================================
    # NEGOTIATION
    # =========================================================================

    def negotiate(self, allow_h2c: bool = True) -> str:
        """
        Finish the TLS handshake (if any) and pick the protocol.

        Returns:
            PROTOCOL_HTTP2 or PROTOCOL_HTTP11.

        Raises:
            ssl.SSLError: TLS handshake failed.
            TimeoutError: The client sent nothing within the timeout.
        """
        self.state = ConnectionState.HANDSHAKE

        if self.secure:
            try:
                self.socket.do_handshake()
            except socket.timeout:
                raise TimeoutError("TLS handshake timeout")
            selected = self.socket.selected_alpn_protocol()
            logger.debug(f"[{self.id}] TLS {self.socket.version()}, ALPN {selected}")
            self.protocol = PROTOCOL_HTTP2 if selected == PROTOCOL_HTTP2 else PROTOCOL_HTTP11

        elif allow_h2c and self.sniff_h2_preface():
            self.protocol = PROTOCOL_HTTP2

        else:
            self.protocol = PROTOCOL_HTTP11

        self.last_activity = time.time()
        return self.protocol

    def sniff_h2_preface(self) -> bool:
        """
        Peek at the first bytes for the HTTP/2 client preface.

        Reads only until the bytes either match the full preface or
        diverge from it. Everything read stays buffered.
        """
        try:
            while len(self._buffer) < len(H2_PREFACE):
                if not H2_PREFACE.startswith(self._buffer):
                    return False
                chunk = self._recv()
                if not chunk:
                    return False
                self._buffer += chunk
        except socket.timeout:
            raise TimeoutError("No data before timeout")

        return self._buffer.startswith(H2_PREFACE)

    def take_buffered(self) -> bytes:
        """Hand over and clear whatever was read but not yet consumed."""
        data, self._buffer = self._buffer, b""
        return data

    # =========================================================================
    # READING
    # =========================================================================

    def recv(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """
        Read the next chunk for a framed protocol (HTTP/2).

        Returns:
            The chunk, b"" when the peer closed, or None when timeout
            expired with nothing to read.
        """
        if self._buffer:
            return self.take_buffered()

        self.socket.settimeout(timeout)
        try:
            return self._recv()
        except socket.timeout:
            return None
        finally:
            self.socket.settimeout(self.timeout)

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP/1.1 request.

        The first request waits up to timeout, later ones (keep-alive)
        up to keep_alive_timeout.

        Returns:
            Request bytes, or None when the client closed the connection
            or went quiet between keep-alive requests.

        Raises:
            TimeoutError: The first request did not arrive in time.
            ValueError: The request exceeds max_request_size.
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                self._check_size()

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break  # closed mid-body, the parser reports it
                self._buffer += chunk
                self._check_size()

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.last_activity = time.time()
            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            self.socket.settimeout(self.timeout)

    def _check_size(self):
        if len(self._buffer) > self.max_request_size:
            raise ValueError(f"Request too large: {len(self._buffer)} bytes")

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""
        except ssl.SSLError as e:
            logger.debug(f"[{self.id}] TLS read error: {e}")
            return b""
        if data:
            self.last_activity = time.time()
        return data

    @staticmethod
    def _parse_content_length(headers: bytes) -> int:
        """Content-Length from raw header bytes, 0 when absent or invalid."""
        header_str = headers.decode("utf-8", errors="replace").lower()
        for line in header_str.split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return int(line.split(":", 1)[1].strip())
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send data with sendall().

        Returns:
            True if sent, False if the client is gone.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False
        self.last_activity = time.time()
        return True

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close gracefully: send FIN, drain briefly, release the descriptor.

        Calling close() twice is harmless.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # peer already gone

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass  # includes timeout

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(
            f"[{self.id}] Connection closed "
            f"({self.protocol or 'unnegotiated'}, {self.requests_handled} requests)"
        )

    def abort(self):
        """
        Wake up a read blocked on another thread.

        Shuts the socket down in both directions, so a pending recv()
        or TLS handshake returns at once. The owning thread still calls
        close().
        """
        try:
            # Plain socket shutdown: SSLSocket.shutdown would also tear
            # down the TLS object the other thread is using
            socket.socket.shutdown(self.socket, socket.SHUT_RDWR)
        except OSError:
            pass  # already closed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
