#!/usr/bin/env python3
"""logbeat entry point: tails log files into Elasticsearch until signalled."""

import argparse
import logging
import signal
import sys
import threading

from logbeat.config import ConfigError, load_config
from logbeat.handler import LogHandler
from logbeat.index import TRANSIENT_ERRORS, IndexSetupError, open_log_index
from logbeat.offset_store import OffsetStore, OffsetStoreError

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ship log files to Elasticsearch")
    parser.add_argument(
        "--config", default=None,
        help="Path to the YAML/JSON config (default: $CONFIG_PATH or /config/logging.json)",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [LOGBEAT] %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("Cannot load config: %s", e)
        return 1

    try:
        store = OffsetStore(config.metadata.path, config.metadata.lock_timeout)
    except OffsetStoreError as e:
        logger.error("Cannot open metadata storage: %s", e)
        return 1

    try:
        try:
            log_index = open_log_index(config.index, shutdown_event)
        except (IndexSetupError,) + TRANSIENT_ERRORS as e:
            logger.error("Cannot open log index: %s", e)
            return 1

        handler = LogHandler(config.handler, store, log_index, shutdown_event)
        worker = threading.Thread(target=handler.start, name="logbeat-handler", daemon=True)
        worker.start()

        while not shutdown_event.is_set() and worker.is_alive():
            shutdown_event.wait(1.0)
        crashed = not shutdown_event.is_set()

        handler.stop()
        worker.join()
        log_index.close()
    finally:
        store.close()

    if crashed:
        logger.error("Handler thread exited unexpectedly")
        return 1
    logger.info("logbeat stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
