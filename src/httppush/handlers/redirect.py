"""
HTTP → HTTPS redirect.

Server push needs HTTP/2, and browsers only speak HTTP/2 over TLS, so a
plain listener is usually just a redirect to the TLS one:

    plain = HTTPServer(ServerConfig(port=8080))
    plain.router.route("/*path")(redirect_https("https://localhost:8443"))
"""

import logging
from http import HTTPStatus

from ..http.request import HTTPRequest
from ..http.response import ResponseWriter
from ..http.router import Handler


logger = logging.getLogger(__name__)


def redirect_https(https_host: str, debug: bool = False) -> Handler:
    """
    Build a handler that answers 301 Moved Permanently.

    The Location is https_host followed by the original request target
    (path and query string), e.g. "https://example.com" + "/a?b=1".

    Args:
        https_host: Scheme and authority of the TLS server, without a
                    trailing slash.
        debug: Log every redirect target.
    """
    https_host = https_host.rstrip("/")

    def handler(writer: ResponseWriter, request: HTTPRequest) -> None:
        target = https_host + request.target
        if debug:
            logger.info(f"redirect to: {target}")

        writer.set_header("Location", target)
        writer.set_header("Content-Type", "text/html; charset=utf-8")
        writer.write_header(HTTPStatus.MOVED_PERMANENTLY)
        writer.write(f'<a href="{target}">Moved Permanently</a>.\n')

    return handler
