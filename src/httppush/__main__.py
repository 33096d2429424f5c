"""
=============================================================================
CLI ENTRY POINT
=============================================================================

    python -m httppush --config server.json
    python -m httppush --config server.json --push css/app.css --push js/app.js

Serves a greeting page at "/" that pushes the --push files along with
it, and serves those files under their absolute paths so the promised
streams have something to answer with.

Exit codes:
    0   stopped normally (Ctrl+C / SIGTERM)
    1   configuration or startup error

=============================================================================
"""

import argparse
import logging
import sys

from . import __version__
from .config import ConfigError, load_config
from .handlers import PushedFileHandler
from .push import PushError, push_files
from .server import HTTPServer


logger = logging.getLogger("httppush")

GREETING = """<!DOCTYPE html>
<html>
<head><title>httppush</title></head>
<body>
<h1>Hello from httppush</h1>
<p>Protocol: {protocol}</p>
</body>
</html>
"""


def build_server(config, push: list) -> HTTPServer:
    """Server with the demo page at "/" and the pushed files behind it."""
    server = HTTPServer(config)
    files = PushedFileHandler(push)

    @server.get("/")
    def index(writer, request):
        writer.set_header("Content-Type", "text/html; charset=utf-8")
        writer.write(GREETING.format(protocol=request.version))

        if not push:
            return
        try:
            push_files(writer, push)
        except PushError as e:
            logger.info(f"push skipped: {e}")

    server.get("/*path")(files.handle)
    return server


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="httppush",
        description="HTTP/2 server that pushes files along with its index page",
    )
    parser.add_argument(
        "--config", "-c",
        required=True,
        help="JSON configuration file (Host, Port, RootCA, CertFile, KeyFile)",
    )
    parser.add_argument(
        "--push", "-p",
        action="append",
        default=[],
        metavar="FILE",
        help="File to push with the index page (repeatable)",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (overrides the configuration)",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"httppush {__version__}",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        if args.log_level:
            config.log_level = args.log_level
        server = build_server(config, args.push)
    except (ConfigError, PushError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        server.run()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
