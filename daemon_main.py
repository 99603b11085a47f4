#!/usr/bin/env python3
"""Run the pattern engine workers as a standalone daemon."""
import argparse
import os
import signal
import sys
import threading

from loguru import logger

from config.config_loader import ConfigLoader
from config.settings import PatternerSettings
from patterner.engine import PatternEngine


def configure_logging(level: str = "INFO", log_file: str = "logs/patterner_{time:YYYY-MM-DD}.log"):
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logger.remove()
    logger.add(
        log_file,
        rotation="1 day",
        retention="30 days",
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
    )
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level}</level> | <cyan>{name}:{function}:{line}</cyan> | {message}",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pattern learning and reminder daemon")
    parser.add_argument("--config", default="patterner_config.json", help="Path to the JSON config file")
    parser.add_argument("--db", help="SQLite database path (overrides config)")
    parser.add_argument("--log-level", help="Log level (overrides config)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    loader = ConfigLoader(args.config)
    if args.db:
        loader.set("database.path", args.db)
    if args.log_level:
        loader.set("logging.level", args.log_level.upper())

    settings = PatternerSettings.from_dict(loader.to_dict())
    configure_logging(settings.log_level, settings.log_file)
    logger.info(f"Starting pattern engine (db={settings.db_path})")

    engine = PatternEngine(settings)
    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    engine.start_workers()
    try:
        stop.wait()
    finally:
        engine.stop_workers()
        logger.info("Pattern engine stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
