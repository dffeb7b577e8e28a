"""
=============================================================================
AREA SERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:8080, 2s per rectangle)
    python -m areaserver

    # Custom port, faster computation
    python -m areaserver --port 9000 --delay 0.5

    # Listen on all interfaces
    python -m areaserver --host 0.0.0.0

    # Reject requests containing non-numeric pairs
    python -m areaserver --strict

    # Newline-terminated frames
    python -m areaserver --delimiter '\\n'

Defaults come from ServerConfig.from_env(), so AREA_* environment
variables apply unless overridden on the command line.

Exit status is 1 when the port cannot be bound.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig
from .errors import BindError
from .server import AreaServer


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="areaserver",
        description="Concurrent rectangle-area TCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m areaserver                       # Run with defaults
  python -m areaserver --port 9000           # Custom port
  python -m areaserver --delay 0.5           # Faster computation
  python -m areaserver --delimiter '\\n'      # Newline framing
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # COMPUTATION ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--delay", "-d",
        type=float,
        default=defaults.per_rectangle_delay,
        help=f"Seconds per rectangle (default: {defaults.per_rectangle_delay})"
    )

    parser.add_argument(
        "--jitter",
        type=float,
        default=defaults.delay_jitter,
        help="Extra random delay per rectangle, in seconds (default: 0)"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=defaults.max_workers,
        help=f"Max connections served in parallel (default: {defaults.max_workers})"
    )

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--strict",
        action="store_true",
        default=defaults.parse_policy == "strict",
        help="Reject the whole request if any pair is not numeric"
    )

    parser.add_argument(
        "--delimiter",
        default=defaults.frame_delimiter,
        help="Frame delimiter, e.g. '\\n' (default: one read per request)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=defaults.log_level.upper(),
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=defaults.log_format,
        help="Event log format (default: text)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"areaserver {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Translate CLI arguments to ServerConfig."""
    delimiter = args.delimiter
    if delimiter:
        # Let '\n' on the command line mean a newline
        delimiter = delimiter.encode("utf-8").decode("unicode_escape")

    return ServerConfig(
        host=args.host,
        port=args.port,
        per_rectangle_delay=args.delay,
        delay_jitter=args.jitter,
        parse_policy="strict" if args.strict else "skip",
        frame_delimiter=delimiter or None,
        min_workers=min(4, args.workers),
        max_workers=args.workers,
        log_level=args.log_level,
        log_format=args.log_format,
    )


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser(ServerConfig.from_env())
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
        server = AreaServer(config)
    except ValueError as e:
        parser.error(str(e))

    try:
        server.run()
    except BindError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
