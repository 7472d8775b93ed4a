#!/usr/bin/env python3
"""
DWD data crawler: cyclically mirror DWD open-data weather files into a local store.

Usage:
    DOWNLOAD_DIRECTORY_BASE_PATH=/downloads python dwd_data_crawler.py
    python dwd_data_crawler.py --download-directory /downloads --only reports

Three feeds run side by side, each in its own thread: COSMO-D2 grids,
MOSMIX_L station forecasts and POI station reports. A feed thread that dies
from an unexpected error is restarted on its own; a fatal storage error stops
the whole process.
"""

from __future__ import annotations

import logging
import queue
import signal
import sys
import threading
from typing import Dict, Optional, Sequence, Tuple

from dwd_common import FatalConfigError, FatalStorageError, format_exception_message, log_event
from dwd_config import CrawlerConfig, FeedSettings, load_config
from dwd_feeds import build_cycle

EXIT_CODES = {
    "DOWNLOAD_DIRECTORY_BASE_PATH_NIL_ERROR": 1,
    "STORE_DOWNLOAD_FILE_ERROR": 2,
}
LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s %(message)s"

logger = logging.getLogger("dwd_data_crawler")


def configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))


class FeedSupervisor:
    """Runs one thread per enabled feed and restarts threads that crash."""

    def __init__(self, config: CrawlerConfig) -> None:
        self.config = config
        self.stop_event = threading.Event()
        self.exits: "queue.Queue[Tuple[FeedSettings, Optional[BaseException]]]" = queue.Queue()
        self.threads: Dict[str, threading.Thread] = {}

    def _run_feed(self, settings: FeedSettings) -> None:
        error: Optional[BaseException] = None
        try:
            build_cycle(settings, self.config, stop_event=self.stop_event).run_forever()
        except Exception as exc:  # noqa: BLE001
            error = exc
        self.exits.put((settings, error))

    def start_feed(self, settings: FeedSettings) -> None:
        thread = threading.Thread(target=self._run_feed, args=(settings,), name=settings.name, daemon=True)
        self.threads[settings.name] = thread
        thread.start()

    def stop(self) -> None:
        self.stop_event.set()

    def run(self) -> int:
        feeds = self.config.enabled_feeds()
        if not feeds:
            logger.warning("no feed enabled, nothing to do")
            return 0
        for settings in feeds:
            self.start_feed(settings)

        running = len(feeds)
        while running:
            settings, error = self.exits.get()
            if isinstance(error, FatalStorageError):
                logger.critical("feed %s failed fatally: %s", settings.name, format_exception_message(error))
                self.stop()
                return EXIT_CODES["STORE_DOWNLOAD_FILE_ERROR"]
            if self.stop_event.is_set():
                running -= 1
                continue
            log_event(
                logger,
                logging.ERROR,
                "FEED_CRASHED",
                feed=settings.name,
                error=format_exception_message(error) if error else "exited",
                restart_in_minutes=settings.crawl_retry_wait_minutes,
            )
            if self.stop_event.wait(settings.crawl_retry_wait_seconds):
                running -= 1
                continue
            self.start_feed(settings)
        return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        config = load_config(argv)
    except FatalConfigError as exc:
        configure_logging("info")
        logger.critical("%s", exc)
        return EXIT_CODES["DOWNLOAD_DIRECTORY_BASE_PATH_NIL_ERROR"]

    configure_logging(config.log_level)
    logger.info("instantiation of service initiated")
    log_event(
        logger,
        logging.INFO,
        "RUN_CONFIG",
        download_directory=config.download_directory_base_path,
        feeds=",".join(feed.name for feed in config.enabled_feeds()) or "-",
        udp_port=config.udp_broadcast_port,
    )

    supervisor = FeedSupervisor(config)
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: supervisor.stop())
    return supervisor.run()


if __name__ == "__main__":
    sys.exit(main())
