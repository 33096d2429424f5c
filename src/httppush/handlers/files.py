"""
=============================================================================
PUSHED FILE HANDLER
=============================================================================

push_files() promises each file under its absolute filesystem path:

    push_files(writer, ["css/app.css"])
        └── PUSH_PROMISE  :path = /srv/site/css/app.css

The promised stream is then answered through the router like any other
request, so something has to serve that path. PushedFileHandler serves
exactly the files it was given and nothing else: the URL *is* the
filesystem path, so an allowlist is the only safe way to expose it.

    files = PushedFileHandler(["css/app.css", "js/app.js"])
    router.get("/*path")(files.handle)

=============================================================================
CACHING
=============================================================================

Responses carry an ETag built from mtime and size. A request whose
If-None-Match equals the current ETag gets 304 Not Modified without a
body, which is what a browser with a warm cache sends for a resource it
was just pushed again.

=============================================================================
"""

import logging
import mimetypes
import os
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Iterable

from ..http.request import HTTPRequest
from ..http.response import ResponseWriter, format_http_date, not_found, write_error
from ..push import normalize_path


logger = logging.getLogger(__name__)


class PushedFileHandler:
    """Serve an explicit set of files under their absolute paths."""

    def __init__(self, file_refs: Iterable[str], cache_max_age: int = 3600):
        """
        Args:
            file_refs: Files to expose, relative to the working directory
                       or absolute. Normalized the same way push_files()
                       normalizes them.
            cache_max_age: Cache-Control max-age in seconds.
        """
        self.paths = {normalize_path(ref) for ref in file_refs}
        self.cache_max_age = cache_max_age

    def handle(self, writer: ResponseWriter, request: HTTPRequest) -> None:
        path = os.path.normpath(request.path)

        if path not in self.paths:
            not_found(writer, f"File not found: {request.path}")
            return

        try:
            stat = os.stat(path)
            etag = f'"{int(stat.st_mtime)}-{stat.st_size}"'

            if request.get_header("if-none-match") == etag:
                writer.set_header("ETag", etag)
                writer.write_header(HTTPStatus.NOT_MODIFIED)
                return

            with open(path, "rb") as f:
                content = f.read()

        except FileNotFoundError:
            not_found(writer, f"File not found: {request.path}")
            return
        except PermissionError:
            write_error(writer, HTTPStatus.FORBIDDEN, "Permission denied")
            return
        except OSError as e:
            logger.error(f"Error serving file {path}: {e}")
            write_error(writer, HTTPStatus.INTERNAL_SERVER_ERROR, "Failed to read file")
            return

        content_type, _ = mimetypes.guess_type(path)
        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

        writer.set_header("Content-Type", content_type or "application/octet-stream")
        writer.set_header("ETag", etag)
        writer.set_header("Last-Modified", format_http_date(mtime))
        writer.set_header("Cache-Control", f"public, max-age={self.cache_max_age}")
        writer.write(content)
