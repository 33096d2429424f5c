"""
=============================================================================
SERVER PUSH HELPERS
=============================================================================

Two small operations a handler can call while it answers a request:

    probe(writer)                 → does this connection support push?
    push_files(writer, files)     → push each file, stop at the first error

=============================================================================
HOW A PUSH FLOWS
=============================================================================

    handler(writer, request)
        │
        ├──► writer.write(page)
        │
        └──► push_files(writer, ["css/app.css", "js/app.js"])
                 │
                 ├──► probe(writer)            (exactly once)
                 │       └── False → PushUnsupportedError, nothing pushed
                 │
                 └──► for each file, in order:
                         normalize_path(file)  → /srv/site/css/app.css
                         writer.push(path)     → PUSH_PROMISE on the wire
                         └── rejected → PushFailedError, rest skipped

=============================================================================
BEST EFFORT, NOT DELIVERY
=============================================================================

A push is a hint: the client may already have the resource cached, may
cancel the promised stream, or may have disabled push entirely. So:

- nothing is retried
- nothing is rolled back (promises already sent stay valid)
- the first failure aborts the remaining hints and is reported

Callers usually log the error and carry on serving the page:

    try:
        push_files(writer, assets)
    except PushError as e:
        logger.warning(f"push skipped: {e}")

=============================================================================
"""

import logging
import os
from typing import Optional, Sequence

from .http.response import Capability, PushRejected, ResponseWriter


logger = logging.getLogger(__name__)


class PushError(Exception):
    """Base class for push helper failures."""

    def __init__(self, message: str, file_ref: Optional[str] = None):
        super().__init__(message)
        self.file_ref = file_ref


class PushUnsupportedError(PushError):
    """The connection cannot push. Nothing was attempted."""

    def __init__(self):
        super().__init__("push capability unavailable")


class PathResolutionError(PushError):
    """A file reference could not be turned into an absolute path."""

    def __init__(self, file_ref, reason: str):
        super().__init__(f"cannot resolve {file_ref!r}: {reason}", file_ref=file_ref)
        self.reason = reason


class PushFailedError(PushError):
    """
    The transport rejected the push of one file.

    The transport's own exception is chained as __cause__.
    """

    def __init__(self, file_ref: str, target: str, cause: Exception):
        super().__init__(f"push of {file_ref!r} ({target}) failed: {cause}", file_ref=file_ref)
        self.target = target
        self.cause = cause


def probe(writer: ResponseWriter) -> bool:
    """
    Report whether the live connection behind writer supports push.

    The answer is a property of the connection (HTTP/2 vs HTTP/1.1,
    client-initiated vs pushed stream), so it is asked per request and
    never cached.
    """
    supported = writer.supports(Capability.PUSH)
    if supported:
        logger.debug("push supported")
    else:
        logger.debug("push not supported")
    return supported


def normalize_path(file_ref: str) -> str:
    """
    Turn a file reference into an absolute, cleaned path.

    Relative references are resolved against the current working
    directory. Normalizing an already normalized absolute path returns
    it unchanged.

    Raises:
        PathResolutionError: The working directory is gone, or file_ref
                             is not a usable path.
    """
    try:
        path = os.fspath(file_ref)
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        if "\x00" in path:
            raise ValueError("embedded null byte")
        if not os.path.isabs(path):
            path = os.path.join(os.getcwd(), path)
        return os.path.normpath(path)
    except (OSError, TypeError, ValueError) as e:
        raise PathResolutionError(file_ref, str(e)) from e


def push_files(writer: ResponseWriter, file_refs: Sequence[str]) -> None:
    """
    Push each file in file_refs over the connection behind writer.

    Args:
        writer: The live response writer of the current request.
        file_refs: File references, pushed in the given order.

    Raises:
        PushUnsupportedError: The connection cannot push (checked first,
                              even for an empty list).
        PathResolutionError: A reference could not be normalized.
        PushFailedError: The transport rejected a push. Files after the
                         failing one are not attempted.
    """
    if isinstance(file_refs, (str, bytes)):
        raise TypeError("file_refs must be a sequence of paths, not a single string")

    if not probe(writer):
        raise PushUnsupportedError()

    for file_ref in file_refs:
        target = normalize_path(file_ref)
        logger.debug(f"pushing {target}")

        # options=None: per-file options are not exposed yet
        try:
            writer.push(target, None)
        except PushRejected as e:
            raise PushFailedError(file_ref, target, e) from e
