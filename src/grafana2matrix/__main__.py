"""CLI entry point for grafana2matrix.

This module provides the main entry point for running the bridge
from the command line.

Usage:
    python -m grafana2matrix [options]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError

from grafana2matrix import __version__
from grafana2matrix.bridge import Bridge
from grafana2matrix.config import (
    DEFAULT_CONFIG_FILE,
    Settings,
    clear_settings_cache,
    get_config_file,
    get_settings,
    set_config_file,
)
from grafana2matrix.engine.policy import MentionConfigLoader
from grafana2matrix.engine.schedule import parse_schedule
from grafana2matrix.shutdown import GracefulShutdown

# Application info
APP_NAME = "Grafana2Matrix"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="grafana2matrix",
        description="Forward Grafana alerts to a Matrix room.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m grafana2matrix                        Run the bridge
  python -m grafana2matrix --config prod.json     Use another config file
  python -m grafana2matrix --config-check         Validate config and exit
  python -m grafana2matrix --log-level DEBUG      Enable debug logging
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )

    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        metavar="PATH",
        help=f"JSON config file, overridden by environment (default: {DEFAULT_CONFIG_FILE})",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit without starting the bridge",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override webhook port (default: from settings)",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "aiohttp.access": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_banner() -> None:
    """Print the application startup banner."""
    banner = f"""
╔══════════════════════════════════════════════════════════════╗
║                                                              ║
║   {APP_NAME:^56}   ║
║   {"v" + APP_VERSION:^56}   ║
║                                                              ║
╚══════════════════════════════════════════════════════════════╝
"""
    print(banner)


def print_config_summary(settings: Settings) -> None:
    """Print a summary of the configuration.

    Args:
        settings: Application settings.
    """
    summary = settings.redacted_summary()

    print("Configuration:")
    print(f"  Config File: {get_config_file()}")
    print(f"  Homeserver: {settings.matrix.homeserver_url}")
    print(f"  Room: {settings.matrix.room_id}")
    print(f"  Grafana: {settings.grafana.url or '(not set)'}")
    print(f"  Silencing: {'enabled' if summary['silencing_enabled'] == 'True' else 'disabled'}")
    print(f"  CRIT Summaries: {settings.summary.schedule_crit}")
    print(f"  WARN Summaries: {settings.summary.schedule_warn}")
    print(f"  Mention Config: {summary['mention_config_path']}")
    print(f"  Database: {summary['db_file']}")
    print(f"  Log Level: {summary['log_level']}")
    print(f"  Port: {summary['port']}")
    print()


def validate_config() -> Settings | None:
    """Validate and load configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        # Clear cache to force reload
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            msg = error["msg"]
            print(f"  {field}: {msg}", file=sys.stderr)
        return None
    except ValueError as e:
        # Unreadable config file, e.g. malformed JSON
        print("Configuration validation failed:", file=sys.stderr)
        print(f"  {get_config_file()}: {e}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Run configuration check and exit.

    Args:
        settings: Validated settings.

    Returns:
        EXIT_SUCCESS, or EXIT_CONFIG_ERROR if a referenced file or
        directory is missing.
    """
    print("Configuration is valid!")
    print()
    print_config_summary(settings)

    print("Checking component availability...")
    ok = True

    if settings.grafana.enabled:
        print("  Grafana silencing: configured")
    else:
        print("  Grafana silencing: not configured")

    today = datetime.now(UTC).date()
    for label, schedule in (
        ("CRIT", settings.summary.schedule_crit),
        ("WARN", settings.summary.schedule_warn),
    ):
        slots = parse_schedule(schedule, today)
        times = ", ".join(slot.strftime("%H:%M") for slot in slots) or "(none)"
        print(f"  {label} summary times (UTC): {times}")

    if settings.mention_config_path:
        path = Path(settings.mention_config_path)
        if path.is_file():
            hosts = MentionConfigLoader(path).load()
            print(f"  Mention config: {len(hosts)} host(s) from {path}")
        else:
            print(f"  Mention config: {path} not found", file=sys.stderr)
            ok = False
    else:
        print("  Mention config: not configured")

    db_dir = Path(settings.db_file).resolve().parent
    if not db_dir.is_dir():
        print(f"  Database directory does not exist: {db_dir}", file=sys.stderr)
        ok = False

    print()
    if not ok:
        print("Some checks failed.", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


async def run_bridge(
    settings: Settings,
    port: int | None = None,
    shutdown_timeout: float = 30.0,
) -> int:
    """Run the bridge with graceful shutdown handling.

    Args:
        settings: Application settings.
        port: Webhook port override.
        shutdown_timeout: Maximum time to wait for graceful shutdown.

    Returns:
        Exit code.
    """
    logger = logging.getLogger(__name__)
    shutdown = GracefulShutdown(timeout=shutdown_timeout)

    try:
        async with shutdown:
            bridge = Bridge(settings)

            # Register bridge cleanup
            shutdown.register_cleanup(bridge.stop)

            logger.info("Starting bridge...")
            await bridge.start(port=port)

            logger.info("Bridge running. Press Ctrl+C to stop.")

            # Wait for shutdown signal
            await shutdown.wait()

            logger.info("Shutdown signal received, stopping bridge...")

        return EXIT_SUCCESS
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Bridge failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    set_config_file(args.config)

    # Validate configuration first
    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    # Determine effective log level
    log_level = args.log_level or settings.log_level
    configure_logging(log_level)

    print_banner()

    if args.config_check:
        sys.exit(run_config_check(settings))

    print_config_summary(settings)

    exit_code = asyncio.run(run_bridge(settings, port=args.port))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
