"""
Uptime Telemetry - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line entry point.

- Sets up logging (json or text)
- Loads configuration from a YAML file or the environment
- Loads an optional bulk JSON document as the initial state
- Serves the HTTP API

============================================================
USAGE
============================================================
python -m uptime_telemetry.cli --bulk snapshot.json
python -m uptime_telemetry.cli --config telemetry.yaml --port 9000 --log-format text

============================================================
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from aiohttp import web

from .api import create_app
from .config import TelemetryConfig, set_config
from .exceptions import TelemetryError
from .ingestor import parse_bulk
from .session import TelemetrySession


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "json") -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("uptime_telemetry")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="uptime-telemetry",
        description="Uptime telemetry aggregation service",
    )

    parser.add_argument(
        "--bulk",
        type=str,
        metavar="PATH",
        help="Bulk JSON document loaded as the initial state",
    )

    parser.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        help="YAML configuration file (default: environment)",
    )

    server_group = parser.add_argument_group("Server Options")

    server_group.add_argument(
        "--host",
        type=str,
        help="Bind address (default: from configuration)",
    )

    server_group.add_argument(
        "--port",
        type=int,
        help="Bind port (default: from configuration)",
    )

    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="json",
        help="Logging format (default: json)",
    )

    return parser


def build_config(args: argparse.Namespace) -> TelemetryConfig:
    """Configuration from a YAML file or the environment, overridden by CLI flags."""
    if args.config:
        config = TelemetryConfig.from_yaml(Path(args.config))
    else:
        config = TelemetryConfig.from_env()

    if args.host:
        config.api_host = args.host
    if args.port:
        config.api_port = args.port
    return config


def build_session(args: argparse.Namespace, config: TelemetryConfig) -> TelemetrySession:
    """Session with the optional bulk document loaded."""
    session = TelemetrySession(config=config)
    if args.bulk:
        document = Path(args.bulk).read_text(encoding="utf-8")
        session.load(parse_bulk(document))
    return session


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    logger = setup_logging(args.log_level, args.log_format)

    try:
        config = build_config(args)
        set_config(config)
        session = build_session(args, config)
    except (TelemetryError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info(f"Serving uptime telemetry on {config.api_host}:{config.api_port}")
    web.run_app(create_app(session), host=config.api_host, port=config.api_port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
