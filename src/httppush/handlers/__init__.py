"""
=============================================================================
HANDLERS
=============================================================================

Ready-made handlers with the (writer, request) signature:

    redirect_https(host)         301 to the TLS server (same target)
    PushedFileHandler(files)     serve the files push_files() promises

=============================================================================
"""

from .files import PushedFileHandler
from .redirect import redirect_https

__all__ = [
    "PushedFileHandler",
    "redirect_https",
]
