"""
=============================================================================
HTTP MESSAGE LAYER
=============================================================================

Protocol-neutral request/response types shared by the HTTP/1.1
connection and the HTTP/2 session:

    ┌─────────────────────────────────────────────────────────────────────┐
    │   request.py    HTTPRequest, RequestParser, build_h2_request        │
    │   response.py   ResponseWriter, Capability, HTTPResponse            │
    │   router.py     Router, Route                                       │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from http import HTTPStatus

from .request import HTTPRequest, RequestParser, HTTPParseError, build_h2_request
from .response import (
    Capability,
    HTTPResponse,
    PushOptions,
    PushRejected,
    ResponseWriter,
    not_found,
    method_not_allowed,
    internal_error,
)
from .router import Router, Route

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "build_h2_request",

    # Response writing
    "Capability",
    "HTTPResponse",
    "PushOptions",
    "PushRejected",
    "ResponseWriter",
    "not_found",
    "method_not_allowed",
    "internal_error",

    # Routing
    "Router",
    "Route",

    # Status codes
    "HTTPStatus",
]
