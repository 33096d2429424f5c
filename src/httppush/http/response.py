"""
=============================================================================
RESPONSE WRITERS
=============================================================================

Handlers do not return responses, they write them through a
ResponseWriter that belongs to one in-flight request:

    def hello(writer, request):
        writer.set_header("Content-Type", "text/plain; charset=utf-8")
        writer.write(b"Hello!")
        push_files(writer, ["/static/app.css"])

The writer buffers status, headers and body. When the handler returns,
the connection turns the buffered state into an HTTPResponse and puts
it on the wire (HTTP/1.1 bytes or HTTP/2 frames).

=============================================================================
CAPABILITIES
=============================================================================

What a writer can do depends on the live connection, not on the server:

    ┌──────────────────────────────┬───────────────────────────────────┐
    │  Connection                  │  Capabilities                     │
    ├──────────────────────────────┼───────────────────────────────────┤
    │  HTTP/1.1 (plain or TLS)     │  WRITE                            │
    │  HTTP/2, client stream       │  WRITE | PUSH                     │
    │  HTTP/2, pushed stream       │  WRITE                            │
    └──────────────────────────────┴───────────────────────────────────┘

The set is fixed when the connection creates the writer. Callers ask
with writer.supports(Capability.PUSH) instead of inspecting types.

=============================================================================
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Flag, auto
from http import HTTPStatus
from typing import Any, Callable, Dict, List, Optional, Tuple, Union


logger = logging.getLogger(__name__)


# Connection-specific headers are forbidden in HTTP/2 (RFC 7540 8.1.2.2)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-connection",
    "transfer-encoding",
    "upgrade",
}

# Responses that never carry a body (RFC 9110 8.6)
BODYLESS_STATUSES = {HTTPStatus.NO_CONTENT, HTTPStatus.NOT_MODIFIED}


class Capability(Flag):
    """Operations a ResponseWriter supports."""
    WRITE = auto()
    PUSH = auto()


class PushRejected(Exception):
    """
    Raised by ResponseWriter.push when a push cannot be started.

    Covers a writer without the PUSH capability as well as transport
    refusals (peer disabled push, stream limit reached, invalid target).
    """


@dataclass
class PushOptions:
    """
    Per-push options.

    Only GET and HEAD can be pushed (RFC 7540 8.2). The headers are
    added to the synthetic request the promised stream answers.
    """
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)


Pusher = Callable[[str, Optional[PushOptions]], None]


@dataclass
class HTTPResponse:
    """
    A finished response, ready to be serialized.

    HTTP/1.1 connections call to_bytes(); HTTP/2 sessions call
    h2_headers() and send the body as DATA frames.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """
        Get the HTTP/1.1 status line.

        Example: "HTTP/1.1 200 OK"
        """
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    @property
    def has_body_length(self) -> bool:
        """False for 1xx, 204 and 304, which must not send Content-Length."""
        return int(self.status) >= 200 and self.status not in BODYLESS_STATUSES

    def _headers_with_defaults(self, server_name: str) -> Dict[str, str]:
        response_headers = dict(self.headers)
        if "Content-Length" not in response_headers and self.has_body_length:
            response_headers["Content-Length"] = str(len(self.body))
        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if "Server" not in response_headers:
            response_headers["Server"] = server_name
        return response_headers

    def to_bytes(self, server_name: str = "httppush/1.0") -> bytes:
        """
        Serialize as an HTTP/1.1 message.

        =====================================================================
        SERIALIZATION FORMAT
        =====================================================================

            HTTP/1.1 200 OK\r\n          ← Status line
            Content-Type: text/html\r\n
            Content-Length: 27\r\n       ← Auto-calculated
            Date: Wed, 01 Jan 2026 ...\r\n  ← Auto-added
            Server: httppush/1.0\r\n     ← Auto-added
            \r\n                         ← Empty line (separator)
            <html>...</html>             ← Body bytes

        =====================================================================
        """
        lines = [self.status_line]
        for name, value in self._headers_with_defaults(server_name).items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        return header_bytes + self.body

    def h2_headers(self, server_name: str = "httppush/1.0") -> List[Tuple[str, str]]:
        """
        Header list for an HTTP/2 HEADERS frame.

        The :status pseudo-header comes first, names are lowercase and
        connection-specific headers are dropped.
        """
        headers = [(":status", str(int(self.status)))]
        for name, value in self._headers_with_defaults(server_name).items():
            name = name.lower()
            if name in HOP_BY_HOP_HEADERS:
                continue
            headers.append((name, value))
        return headers


class ResponseWriter:
    """
    Write handle for one in-flight request.

    =========================================================================
    STATUS COMMIT RULES
    =========================================================================

        write_header(404)   → status committed as 404
        write(b"...")       → commits 200 if nothing was committed yet
        write_header(...)   → after a commit: ignored, logged as superfluous

    =========================================================================
    """

    def __init__(self, pusher: Optional[Pusher] = None, protocol: str = "HTTP/1.1"):
        """
        Args:
            pusher: Transport callback that starts a push. Its presence is
                    what grants the PUSH capability.
            protocol: Protocol of the owning connection, for diagnostics.
        """
        self.protocol = protocol
        self.headers: Dict[str, str] = {}
        self._pusher = pusher
        self._status: Optional[HTTPStatus] = None
        self._body = bytearray()
        self._finished = False

        self.capabilities = Capability.WRITE
        if pusher is not None:
            self.capabilities |= Capability.PUSH

    def supports(self, capability: Capability) -> bool:
        """Check whether every flag in capability is available."""
        return (self.capabilities & capability) == capability

    @property
    def status(self) -> Optional[HTTPStatus]:
        """The committed status, or None if nothing was committed yet."""
        return self._status

    @property
    def committed(self) -> bool:
        return self._status is not None

    def set_header(self, name: str, value: str) -> "ResponseWriter":
        self.headers[name] = value
        return self

    def write_header(self, status: Union[HTTPStatus, int]) -> None:
        """Commit the response status. Later calls are ignored."""
        if self._status is not None:
            logger.warning(
                f"Superfluous write_header({int(status)}) call, "
                f"status already {int(self._status)}"
            )
            return
        self._status = HTTPStatus(status)

    def write(self, data: Union[str, bytes]) -> int:
        """
        Append to the response body.

        Strings are encoded as UTF-8. Returns the number of bytes written.
        """
        if self._finished:
            raise RuntimeError("write after the response was finished")
        if isinstance(data, str):
            data = data.encode("utf-8")
        if self._status is None:
            self._status = HTTPStatus.OK
        self._body.extend(data)
        return len(data)

    def write_json(self, data: Any, status: Union[HTTPStatus, int] = HTTPStatus.OK) -> int:
        """Commit status and write data as a JSON body."""
        self.set_header("Content-Type", "application/json; charset=utf-8")
        self.write_header(status)
        return self.write(json.dumps(data))

    def push(self, target: str, options: Optional[PushOptions] = None) -> None:
        """
        Initiate a server push for target.

        Raises:
            PushRejected: The connection cannot push, or refused this push.
        """
        if self._pusher is None:
            raise PushRejected(f"push not supported on {self.protocol} connection")
        if self._finished:
            raise PushRejected("push after the response was finished")
        self._pusher(target, options)

    def finish(self) -> HTTPResponse:
        """Freeze the writer and return the response to send."""
        self._finished = True
        return HTTPResponse(
            status=self._status or HTTPStatus.OK,
            headers=dict(self.headers),
            body=bytes(self._body),
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def write_error(writer: ResponseWriter, status: Union[HTTPStatus, int], message: str) -> None:
    """Write a JSON error body: {"error": message}."""
    writer.write_json({"error": message}, status=status)


def not_found(writer: ResponseWriter, message: str = "Not Found") -> None:
    write_error(writer, HTTPStatus.NOT_FOUND, message)


def method_not_allowed(writer: ResponseWriter, allowed_methods: List[str]) -> None:
    """405 with the Allow header the RFC requires."""
    writer.set_header("Allow", ", ".join(allowed_methods))
    write_error(writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method Not Allowed")


def internal_error(message: str = "Internal Server Error", protocol: str = "HTTP/1.1") -> HTTPResponse:
    """
    Build a 500 response outside of any handler.

    Used when a handler raised, so whatever it buffered is discarded.
    """
    writer = ResponseWriter(protocol=protocol)
    write_error(writer, HTTPStatus.INTERNAL_SERVER_ERROR, message)
    return writer.finish()
