"""Entry point for the dashboard service."""
import argparse
import logging
import sys
from typing import List, Optional

from flask import Flask

from digiprobe.dashboard import create_app
from digiprobe.database import Database
from digiprobe.models import Config
from digiprobe.probe_service import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="digiprobe-dashboard",
        description="Serve stored DigiProbe sessions as JSON for the map and charts.",
    )
    parser.add_argument("--config", help="YAML configuration file (defaults to environment variables)")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, help="Overrides the configured dashboard port")
    return parser.parse_args(argv)


def build_app(config: Config) -> Flask:
    db = Database(config.database.path)
    return create_app(db, url_prefix=config.dashboard.url_prefix)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    config = Config.load(args.config) if args.config else Config.from_env()
    if args.port is not None:
        config.dashboard.port = args.port

    setup_logging(config.logging.level)

    for err in config.validate():
        logger.error("Config validation error: %s", err)

    app = build_app(config)
    logger.info(
        "Dashboard listening on %s:%d%s",
        args.host,
        config.dashboard.port,
        config.dashboard.url_prefix or "/",
    )
    app.run(host=args.host, port=config.dashboard.port)


if __name__ == "__main__":
    main()
