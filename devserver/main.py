"""
Development server - command line entry point

Serves the current directory with:
- Static files first, falling back to a proxy target
- Live reload of HTML, CSS and script changes
- HTTPS with a user supplied or self-signed certificate
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError

from devserver.config import ServerConfig, Settings, TLSFiles, get_settings
from devserver.orchestrator import DevServer, StartupError
from devserver.server import NoPortAvailable


class ConfigError(ValueError):
    """Command line input that cannot become a ServerConfig."""


def setup_logging(debug: bool = False):
    """Configure structured logging."""
    settings = get_settings()

    # Set log level
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if debug:
        log_level = logging.DEBUG

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure root logger
    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        stream=sys.stderr
    )

    # Reduce noise from libraries
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("watchfiles").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devserver",
        description="Serve the current directory with live reload and an optional fallback proxy.",
    )
    parser.add_argument("-p", "--port", type=int, default=8080, help="port to listen on (default: 8080)")
    parser.add_argument("--proxy", help="origin to forward requests that match no local file to")
    parser.add_argument(
        "--headers",
        default="{}",
        help="JSON object of extra headers for proxied requests (default: {})",
    )
    parser.add_argument("--noHot", action="store_true", help="disable live reload")
    parser.add_argument(
        "--ignore",
        nargs="+",
        action="extend",
        default=[],
        metavar="PATTERN",
        help="files or folders the live reload watcher ignores",
    )
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    parser.add_argument("--https", action="store_true", help="serve over HTTPS")
    parser.add_argument("--https-key", metavar="PATH", help="private key file for HTTPS (implies --https)")
    parser.add_argument("--https-cert", metavar="PATH", help="certificate file for HTTPS (implies --https)")
    return parser


def parse_config(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> ServerConfig:
    """Turn command line arguments into the immutable server configuration."""
    settings = settings or get_settings()
    args = build_parser().parse_args(argv)

    try:
        headers = json.loads(args.headers)
    except json.JSONDecodeError as e:
        raise ConfigError(f"--headers must be a valid JSON string: {e}") from e
    if not isinstance(headers, dict):
        raise ConfigError("--headers must be a JSON object")

    if bool(args.https_key) != bool(args.https_cert):
        raise ConfigError("--https-key and --https-cert must be given together")

    tls = args.https
    if args.https_key:
        tls = TLSFiles(key_path=args.https_key, cert_path=args.https_cert)

    try:
        return ServerConfig(
            requested_port=args.port,
            proxy_target=args.proxy,
            extra_headers={str(name): str(value) for name, value in headers.items()},
            live_reload_disabled=args.noHot,
            ignore_patterns=tuple(args.ignore),
            tls=tls,
            debug=args.debug,
            root=Path.cwd(),
            host=settings.host,
        )
    except ValidationError as e:
        raise ConfigError(str(e)) from e


async def run_server(config: ServerConfig) -> None:
    await DevServer(config).serve()


def main(argv: Optional[List[str]] = None) -> None:
    try:
        config = parse_config(argv)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(debug=config.debug)
    logger = structlog.get_logger()

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        pass
    except (NoPortAvailable, StartupError, OSError) as e:
        logger.error("Server failed to start", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
