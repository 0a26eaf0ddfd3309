"""Command-line entry point: `deepsight serve` and `deepsight dashboard`."""

import argparse
import logging
import sys

from deepsight.config import Settings
from deepsight.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deepsight", description="Live host telemetry.")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    parser.add_argument("--log-file", help="Also write logs to this rotating file")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Sample this host and stream updates")
    serve.add_argument("--host", help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Listen port (default: 3001)")
    serve.add_argument("--interval", type=float, help="Seconds between samples (default: 2.0)")
    serve.add_argument(
        "--query-timeout", type=float, help="Seconds a round of metric queries may take (default: 2.0)"
    )

    dashboard = commands.add_parser("dashboard", help="Terminal dashboard for a running server")
    dashboard.add_argument("--url", dest="server_url", help="Server URL (default: http://localhost:3001)")
    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {
        "log_level": args.log_level,
        "log_file": args.log_file,
        "host": getattr(args, "host", None),
        "port": getattr(args, "port", None),
        "interval": getattr(args, "interval", None),
        "query_timeout": getattr(args, "query_timeout", None),
        "server_url": getattr(args, "server_url", None),
    }
    return Settings.from_env().with_overrides(**overrides)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the deepsight command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = _settings_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    if args.command == "serve":
        setup_logging(settings.log_level, settings.log_file)
        from deepsight.server import run

        run(settings)
        return 0

    # The dashboard owns the terminal, so logs only go to a file
    setup_logging(settings.log_level, settings.log_file, console=False)
    from deepsight.app import DeepSightApp

    DeepSightApp(settings).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
