"""
=============================================================================
HTTPFACTORY CLI
=============================================================================

Start one or more named services with a built-in status route and keep
them running until Ctrl+C (or SIGTERM).

    # Two services, settings from a properties file
    python -m httpfactory billing reports --config servers.properties

    # Override single settings
    python -m httpfactory billing --set billing.http.port=9000

    # TLS (PEM key store), HTTPS only
    python -m httpfactory billing \\
        --key-store billing.pem --key-store-password secret \\
        --set billing.https.useHttpsOnly=true

Each service answers ``GET /status`` and ``GET /<service>/status``.

Settings come from, lowest to highest priority: the file named by
HTTPFACTORY_CONFIG, --config, HTTPFACTORY_* environment variables, --set.

=============================================================================
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Dict, List, Optional

from . import __version__
from .config import Configuration
from .errors import ServerFactoryError
from .factory import HttpServerFactory
from .handlers import StatusHandler
from .tls import TlsMaterial


logger = logging.getLogger("httpfactory")


def _parse_overrides(pairs: List[str]) -> Dict[str, str]:
    overrides = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"expected key=value, got {pair!r}")
        overrides[key.strip()] = value.strip()
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m httpfactory",
        description="Run named HTTP(S) servers managed by httpfactory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpfactory billing                          # :8080
  python -m httpfactory billing --set billing.http.port=9000
  python -m httpfactory billing reports --config servers.properties
        """,
    )

    parser.add_argument("services", nargs="+", metavar="SERVICE", help="service names to start")

    # ─────────────────────────────────────────────────────────────────────
    # CONFIGURATION
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--config", "-c",
        default=None,
        help="properties file with <service>.http.* / <service>.https.* settings",
    )
    parser.add_argument(
        "--set", "-s",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="override one setting (repeatable)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--key-store", default="", help="PEM file with certificate chain and key")
    parser.add_argument("--key-store-password", default="", help="private key passphrase")
    parser.add_argument("--trust-store", default="", help="PEM CA bundle for client certificates")
    parser.add_argument(
        "--trust-store-password",
        default="",
        help="enables client certificate authentication together with --trust-store",
    )

    # ─────────────────────────────────────────────────────────────────────
    # META
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="logging level (default: INFO)",
    )
    parser.add_argument("--version", "-v", action="version", version=f"httpfactory {__version__}")

    return parser


def load_configuration(config_path: Optional[str], overrides: Dict[str, str]) -> Configuration:
    config = Configuration.load_default()
    if config_path:
        config = config.with_overrides(Configuration.from_properties(config_path))
        config = config.with_overrides(Configuration.from_env())
    return config.with_overrides(overrides)


def setup_logging(level_name: str):
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpfactory").setLevel(level)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    try:
        overrides = _parse_overrides(args.overrides)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    try:
        configuration = load_configuration(args.config, overrides)
    except OSError as e:
        print(f"Error: cannot read {args.config}: {e}", file=sys.stderr)
        return 1

    tls = TlsMaterial(
        key_store_path=args.key_store,
        key_store_password=args.key_store_password,
        trust_store_path=args.trust_store,
        trust_store_password=args.trust_store_password,
    )

    stopping = threading.Event()

    def shutdown_handler(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        stopping.set()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    with HttpServerFactory(configuration=configuration) as factory:
        for service in args.services:
            status = StatusHandler(factory, service, include_system_info=True)
            routes = {"/status": status, f"/{service}/status": status}
            try:
                factory.start(service, routes, tls=tls)
            except ServerFactoryError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1

        while not stopping.wait(timeout=1.0):
            pass

    return 0


if __name__ == "__main__":
    sys.exit(main())
