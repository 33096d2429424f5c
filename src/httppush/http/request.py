"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns what arrives on a connection into an HTTPRequest:

    HTTP/1.1:  raw bytes      ──RequestParser.parse()──►  HTTPRequest
    HTTP/2:    header list    ──build_h2_request()─────►  HTTPRequest

Both paths apply the same target rules (path/query split, URL decoding,
path traversal rejection), so a handler cannot tell which protocol the
request arrived on except through request.version.

=============================================================================
HTTP/2 PSEUDO-HEADERS
=============================================================================

HTTP/2 has no request line. Its parts travel as pseudo-headers:

    GET /style.css HTTP/1.1        :method    = GET
    Host: example.com         ≈    :path      = /style.css
                                   :scheme    = https
                                   :authority = example.com

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse
import json
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the HTTP status code that should be returned to the client:

        400 Bad Request                - Malformed request syntax
        405 Method Not Allowed         - Unknown/unsupported method
        413 Payload Too Large          - Request exceeds size limit
        505 HTTP Version Not Supported - Unknown HTTP version
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    Attributes:
        method:         GET, POST, ...
        path:           URL-decoded path without query string
        target:         The request-target as sent ("/a%20b?x=1")
        version:        "HTTP/1.0", "HTTP/1.1" or "HTTP/2"
        headers:        Lowercase header names → values
        query_params:   "?a=1&a=2" → {"a": ["1", "2"]}
        body:           Raw body bytes
        path_params:    Filled in by the router (":id" → "123")
        client_address: (ip, port) of the peer
        scheme:         "http" or "https"
        pushed:         True for synthetic requests answering a push
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    target: str = ""

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""

    path_params: Dict[str, str] = field(default_factory=dict)

    client_address: Tuple[str, int] = ("", 0)
    scheme: str = "http"
    pushed: bool = False
    raw: bytes = b""

    _body_json: Optional[Any] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.target:
            self.target = self.path

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("application/json")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        """Host header (HTTP/1.1) or :authority (HTTP/2)."""
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_json(self) -> bool:
        return self.content_type == "application/json"

    @property
    def json(self) -> Any:
        """
        Parse the request body as JSON (cached).

        Raises:
            HTTPParseError: If body is not valid JSON.
        """
        if self._body_json is None and self.body:
            try:
                self._body_json = json.loads(self.body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise HTTPParseError(f"Invalid JSON body: {e}")
        return self._body_json

    @property
    def is_keep_alive(self) -> bool:
        """
        Check if an HTTP/1.x connection should be kept alive.

        HTTP/1.1 keeps alive unless "Connection: close";
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()

        if self.version == "HTTP/1.0":
            return connection == "keep-alive"
        return connection != "close"

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def get_query_list(self, name: str) -> list[str]:
        return self.query_params.get(name, [])


def split_target(target: str) -> Tuple[str, Dict[str, list[str]]]:
    """
    Split a request-target into a decoded path and query parameters.

    Raises:
        HTTPParseError: On path traversal ("..") attempts.
    """
    parsed = urlparse(target)
    path = unquote(parsed.path) or "/"
    query_params = parse_qs(parsed.query, keep_blank_values=True)

    # "GET /../../../etc/passwd" must never reach a handler
    if ".." in path.split("/"):
        raise HTTPParseError("Invalid path: contains ..", status_code=400)

    return path, query_params


class RequestParser:
    """
    Parses raw HTTP/1.x request bytes into HTTPRequest objects.

        Raw Request Bytes
              │
              ▼
        1. Size check             too large? → 413
        2. Find \r\n\r\n          missing?   → 400
        3. Parse request line     METHOD SP TARGET SP VERSION
        4. Parse headers          lowercase names, duplicates joined
        5. Extract body           exactly Content-Length bytes
              │
              ▼
        HTTPRequest
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: Tuple[str, int] = ("", 0),
        scheme: str = "http",
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Args:
            data: Raw HTTP request bytes from the connection.
            client_address: Client's (ip, port) tuple for logging.
            scheme: "https" when the connection is TLS.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413,
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, target, version = self._parse_request_line(lines[0])
        path, query_params = split_target(target)
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {headers['content-length']}")

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        # Extra bytes belong to the next pipelined request
        body = body[:content_length]

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            target=target,
            headers=headers,
            query_params=query_params,
            body=body,
            client_address=client_address,
            scheme=scheme,
            raw=data,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        """
        Parse "METHOD SP REQUEST-TARGET SP HTTP-VERSION".

        Returns:
            Tuple of (method, target, version)
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        return method, target, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a dictionary with lowercase names.

        Continuation lines (leading whitespace) extend the previous
        header; repeated headers are joined with ", ".
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue  # lenient: skip malformed lines

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def build_h2_request(
    header_list: Iterable[Tuple[str, str]],
    body: bytes = b"",
    client_address: Tuple[str, int] = ("", 0),
    pushed: bool = False,
) -> HTTPRequest:
    """
    Build an HTTPRequest from an HTTP/2 header list.

    Args:
        header_list: (name, value) pairs as decoded by h2, pseudo-headers
                     included.
        body: Concatenated DATA frame payloads.
        client_address: Peer address.
        pushed: True for the synthetic request of a promised stream.

    Raises:
        HTTPParseError: Missing pseudo-headers or an invalid path.
    """
    pseudo: Dict[str, str] = {}
    headers: Dict[str, str] = {}

    for name, value in header_list:
        if isinstance(name, bytes):
            name = name.decode("utf-8")
        if isinstance(value, bytes):
            value = value.decode("utf-8")

        if name.startswith(":"):
            pseudo[name] = value
        elif name in headers:
            headers[name] += ", " + value
        else:
            headers[name] = value

    method = pseudo.get(":method")
    target = pseudo.get(":path")
    if not method or not target:
        raise HTTPParseError("Missing :method or :path pseudo-header")

    if ":authority" in pseudo:
        headers.setdefault("host", pseudo[":authority"])

    path, query_params = split_target(target)

    return HTTPRequest(
        method=method.upper(),
        path=path,
        version="HTTP/2",
        target=target,
        headers=headers,
        query_params=query_params,
        body=body,
        client_address=client_address,
        scheme=pseudo.get(":scheme", "https"),
        pushed=pushed,
    )


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """Parse one HTTP/1.x request with a throwaway RequestParser."""
    parser = RequestParser(max_request_size=max_size)
    return parser.parse(data, client_address)
