"""
=============================================================================
ECHO SERVER CLI ENTRY POINT
=============================================================================

    # From a JSON config file (path from --config or PATH_TO_CONFIG)
    PATH_TO_CONFIG=./config.json python -m echoserver

    # From the environment
    ECHO_HOST=0.0.0.0 ECHO_PORT=7007 ECHO_DEBUG=1 python -m echoserver

    # From flags (override both of the above)
    python -m echoserver --host 127.0.0.1 --port 7007 --debug

Exit status is 1 when configuration is missing/invalid or the port
cannot be bound, 0 after a clean shutdown (Ctrl+C, SIGTERM).

=============================================================================
"""

import argparse
import logging
import os
import sys
from typing import List, Mapping, Optional

from . import __version__
from .config import ENV_CONFIG_PATH, LOG_LEVELS, ServerConfig, resolve_config
from .errors import BindError, ConfigurationError, ListenerError
from .server import create_server


logger = logging.getLogger("echoserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echo-server",
        description="TCP echo server: writes back every byte it receives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  PATH_TO_CONFIG   JSON config file ({"host": ..., "port": ..., "debug": ...})
  ECHO_HOST        Host to bind to
  ECHO_PORT        Port to listen on
  ECHO_DEBUG       1/true/yes/on enables debug records
  ECHO_LOG_LEVEL   Logging level when not in debug mode

Examples:
  python -m echoserver --host 0.0.0.0 --port 7007
  python -m echoserver --config /etc/echo/config.json --debug
        """
    )

    parser.add_argument(
        "--config", "-c",
        default=None,
        help="JSON configuration file (default: $PATH_TO_CONFIG)"
    )

    parser.add_argument(
        "--host", "-H",
        default=None,
        help="Host to bind to (use 0.0.0.0 for containers)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (0 = any free port)"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Log connection open/close events and open-connection counts"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        default=None,
        help="Logging level when not in debug mode (default: INFO)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"echo-server {__version__}"
    )

    return parser


def setup_logging(config: Optional[ServerConfig] = None) -> None:
    """Configure logging based on config."""
    if config is None:
        level = logging.INFO
    elif config.debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, config.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("echoserver").setLevel(level)


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    """
    Main CLI entry point.

    1. Parse flags
    2. Resolve config: file → environment → flags
    3. Run the server until Ctrl+C / SIGTERM

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(
            config_path=args.config,
            environ=environ,
            overrides={
                "host": args.host,
                "port": args.port,
                "debug": args.debug,
                "log_level": args.log_level,
            },
        )
    except ConfigurationError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(config)

    env = os.environ if environ is None else environ
    config_path = args.config or env.get(ENV_CONFIG_PATH)
    if config_path:
        logger.info(f"using configuration from {config_path}")

    server = create_server(config)

    try:
        server.run()
    except BindError as e:
        logger.error(f"echo server failed to start: {e}")
        return 1
    except ListenerError as e:
        logger.error(f"echo server stopped unexpectedly: {e}")
        return 1

    return 0


# This allows running: python -m echoserver
if __name__ == "__main__":
    sys.exit(main())
