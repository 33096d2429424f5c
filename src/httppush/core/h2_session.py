"""
=============================================================================
HTTP/2 SESSIONS
=============================================================================

One HTTP2Session serves one connection that negotiated HTTP/2. Framing,
HPACK and the stream state machine come from the h2 library; this module
feeds it bytes from the socket and turns its events into router calls.

    socket bytes ──► H2Connection.receive_data() ──► events
                                                       │
        RequestReceived   remember headers             │
        DataReceived      buffer body, ack flow control│
        StreamEnded       build HTTPRequest, dispatch ◄┘
        StreamReset       forget the stream

    H2Connection.data_to_send() ──► socket

=============================================================================
SERVER PUSH
=============================================================================

A handler running on a client-initiated stream gets a writer with the
PUSH capability. Each writer.push(target) sends a PUSH_PROMISE right away
(on the parent stream, before the parent's own response), so refusals
surface synchronously as PushRejected:

    client                                server
      │ ── HEADERS (stream 1) GET /page ──► │
      │                                     │  handler runs
      │ ◄── PUSH_PROMISE (1 → 2) /a.css ─── │  writer.push("/a.css")
      │ ◄── HEADERS + DATA (stream 1) ───── │  parent response
      │ ◄── HEADERS + DATA (stream 2) ───── │  promised response

After the parent response is sent, every promised stream is answered by
dispatching a synthetic GET through the same router. Writers of promised
streams have no PUSH capability: a promise cannot itself promise.

=============================================================================
FLOW CONTROL
=============================================================================

DATA frames are limited by the peer's stream and connection windows and
by its SETTINGS_MAX_FRAME_SIZE. When the window is exhausted the session
reads from the socket until a WINDOW_UPDATE opens it again. Events that
arrive meanwhile (new requests, for instance) are queued, not lost.

=============================================================================
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import quote

import h2.config
import h2.connection
import h2.events
import h2.exceptions

from ..config import ServerConfig
from ..http.request import HTTPParseError, HTTPRequest, build_h2_request
from ..http.response import (
    HTTPResponse,
    PushOptions,
    PushRejected,
    ResponseWriter,
    internal_error,
)
from .connection import Connection


logger = logging.getLogger(__name__)

Dispatch = Callable[[ResponseWriter, HTTPRequest], None]

PUSHABLE_METHODS = ("GET", "HEAD")

# How often the read loop wakes up to check for shutdown and idleness
POLL_INTERVAL = 0.5


@dataclass
class _StreamState:
    headers: List[Tuple[str, str]]
    body: bytearray = field(default_factory=bytearray)


class HTTP2Session:
    """
    Serve one HTTP/2 connection until the peer leaves, the connection
    idles out or the server shuts down.

        session = HTTP2Session(conn, router.handle, config, lambda: running)
        session.run()   # blocks
    """

    def __init__(
        self,
        conn: Connection,
        dispatch: Dispatch,
        config: ServerConfig,
        is_running: Callable[[], bool],
    ):
        self.conn = conn
        self.dispatch = dispatch
        self.config = config
        self._is_running = is_running

        self._h2 = h2.connection.H2Connection(
            config=h2.config.H2Configuration(client_side=False, header_encoding="utf-8")
        )
        self._streams: Dict[int, _StreamState] = {}
        self._reset: Set[int] = set()
        self._pending = deque()
        self._closed = False

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    def run(self) -> None:
        self._h2.initiate_connection()
        self._flush()

        while not self._closed:
            if self._pending:
                self._handle_event(self._pending.popleft())
                continue

            if not self._is_running():
                self._goaway("server shutting down")
                break

            if not self._streams and self.conn.idle_time > self.config.keep_alive_timeout:
                self._goaway("idle")
                break

            data = self.conn.recv(timeout=POLL_INTERVAL)
            if data is None:
                continue
            if not data:
                logger.debug(f"[{self.conn.id}] Peer closed HTTP/2 connection")
                break
            self._receive(data)

    def _receive(self, data: bytes) -> None:
        """Feed bytes to h2 and queue the resulting events."""
        try:
            events = self._h2.receive_data(data)
        except h2.exceptions.ProtocolError as e:
            logger.warning(f"[{self.conn.id}] HTTP/2 protocol error: {e}")
            self._flush()  # h2 queued a GOAWAY
            self._closed = True
            return

        for event in events:
            if isinstance(event, h2.events.DataReceived):
                # Ack at once so the peer keeps sending while we are busy
                self._h2.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
            elif isinstance(event, h2.events.StreamReset):
                self._reset.add(event.stream_id)
            elif isinstance(event, h2.events.ConnectionTerminated):
                logger.debug(f"[{self.conn.id}] GOAWAY from peer (error {event.error_code})")
                self._closed = True

        self._pending.extend(events)
        self._flush()

    def _handle_event(self, event) -> None:
        if isinstance(event, h2.events.RequestReceived):
            self._streams[event.stream_id] = _StreamState(headers=list(event.headers))

        elif isinstance(event, h2.events.DataReceived):
            stream = self._streams.get(event.stream_id)
            if stream is not None:
                stream.body.extend(event.data)
                if len(stream.body) > self.config.max_request_size:
                    self._streams.pop(event.stream_id)
                    self._send_error(event.stream_id, 413, "Request too large")

        elif isinstance(event, h2.events.StreamEnded):
            stream = self._streams.pop(event.stream_id, None)
            if stream is not None:
                self._handle_request(event.stream_id, stream)

        elif isinstance(event, h2.events.StreamReset):
            self._streams.pop(event.stream_id, None)
            # Any response for this stream has finished or been skipped by now
            self._reset.discard(event.stream_id)
            logger.debug(f"[{self.conn.id}] Stream {event.stream_id} reset by peer")

    def _flush(self) -> bool:
        data = self._h2.data_to_send()
        if data and not self.conn.send_response(data):
            self._closed = True
            return False
        return True

    def _goaway(self, reason: str) -> None:
        logger.debug(f"[{self.conn.id}] Sending GOAWAY ({reason})")
        self._h2.close_connection()
        self._flush()
        self._closed = True

    # =========================================================================
    # REQUESTS
    # =========================================================================

    def _handle_request(self, stream_id: int, stream: _StreamState) -> None:
        try:
            request = build_h2_request(stream.headers, bytes(stream.body), self.conn.address)
        except HTTPParseError as e:
            self._send_error(stream_id, e.status_code, str(e))
            return

        promised: List[Tuple[int, HTTPRequest]] = []

        def pusher(target: str, options: Optional[PushOptions]) -> None:
            promised.append(self._push(stream_id, request, target, options))

        self._respond(stream_id, ResponseWriter(pusher=pusher, protocol="HTTP/2"), request)

        for promised_id, push_request in promised:
            self._respond(promised_id, ResponseWriter(protocol="HTTP/2"), push_request)

    def _push(
        self,
        parent_id: int,
        request: HTTPRequest,
        target: str,
        options: Optional[PushOptions],
    ) -> Tuple[int, HTTPRequest]:
        """
        Send a PUSH_PROMISE for target on the parent stream.

        Returns:
            (promised stream id, synthetic request to answer it with)

        Raises:
            PushRejected: Invalid target or method, push disabled by the
                          peer, stream limit reached, parent stream gone.
        """
        options = options or PushOptions()
        method = options.method.upper()

        if method not in PUSHABLE_METHODS:
            raise PushRejected(f"cannot push {method} requests")
        if not target.startswith("/"):
            raise PushRejected(f"push target must be an absolute path: {target!r}")
        if self._closed:
            raise PushRejected("connection closed")

        headers = [
            (":method", method),
            (":scheme", request.scheme),
            (":authority", request.host or f"{self.config.host}:{self.config.port}"),
            (":path", quote(target)),
        ]
        headers.extend((name.lower(), value) for name, value in options.headers.items())

        try:
            push_request = build_h2_request(headers, client_address=self.conn.address, pushed=True)
        except HTTPParseError as e:
            raise PushRejected(str(e)) from e

        try:
            promised_id = self._h2.get_next_available_stream_id()
            self._h2.push_stream(parent_id, promised_id, headers)
        except h2.exceptions.ProtocolError as e:
            raise PushRejected(f"push refused: {e}") from e

        if not self._flush():
            raise PushRejected("connection lost while sending PUSH_PROMISE")

        logger.debug(f"[{self.conn.id}] PUSH_PROMISE {parent_id} -> {promised_id} {target}")
        return promised_id, push_request

    def _respond(self, stream_id: int, writer: ResponseWriter, request: HTTPRequest) -> None:
        start = time.time()

        try:
            self.dispatch(writer, request)
            response = writer.finish()
        except Exception as e:
            logger.exception(f"[{self.conn.id}] Handler error on stream {stream_id}: {e}")
            writer.finish()
            response = internal_error(protocol="HTTP/2")

        self._send_response(stream_id, response, head_only=request.method == "HEAD")

        elapsed_ms = (time.time() - start) * 1000
        kind = "push" if request.pushed else "stream"
        logger.info(
            f"[{self.conn.id}] {request.method} {request.target} HTTP/2 "
            f"{kind} {stream_id} → {int(response.status)} ({elapsed_ms:.1f}ms)"
        )

    def _send_error(self, stream_id: int, status: int, message: str) -> None:
        writer = ResponseWriter(protocol="HTTP/2")
        writer.write_json({"error": message}, status=status)
        self._send_response(stream_id, writer.finish())

    # =========================================================================
    # SENDING
    # =========================================================================

    def _send_response(self, stream_id: int, response: HTTPResponse, head_only: bool = False) -> None:
        if stream_id in self._reset or self._closed:
            return

        body = b"" if head_only else response.body
        try:
            self._h2.send_headers(
                stream_id,
                response.h2_headers(self.config.server_name),
                end_stream=not body,
            )
            if not self._flush():
                return
            if body:
                self._send_body(stream_id, body)
        except h2.exceptions.StreamClosedError:
            logger.debug(f"[{self.conn.id}] Stream {stream_id} closed before response completed")

    def _send_body(self, stream_id: int, body: bytes) -> None:
        """Send body as DATA frames within the peer's flow-control window."""
        offset = 0
        total = len(body)

        while offset < total:
            window = self._h2.local_flow_control_window(stream_id)
            if window <= 0:
                if not self._wait_for_window(stream_id):
                    return
                continue

            size = min(window, self._h2.max_outbound_frame_size, total - offset)
            end = offset + size >= total
            self._h2.send_data(stream_id, body[offset:offset + size], end_stream=end)
            if not self._flush():
                return
            offset += size

    def _wait_for_window(self, stream_id: int) -> bool:
        """
        Read until the window of stream_id opens.

        Returns:
            False if the stream was reset, the connection closed or the
            peer sent nothing within config.timeout.
        """
        while not self._closed and stream_id not in self._reset:
            data = self.conn.recv(timeout=self.config.timeout)
            if data is None:
                logger.warning(f"[{self.conn.id}] Timed out waiting for WINDOW_UPDATE")
                self._closed = True
                return False
            if not data:
                self._closed = True
                return False

            self._receive(data)
            if self._closed or stream_id in self._reset:
                return False
            if self._h2.local_flow_control_window(stream_id) > 0:
                return True

        return False
