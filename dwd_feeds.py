"""Acquisition cycles for the three DWD feeds.

Each feed repeats the same cycle forever: resolve the host once, crawl the
listing until it succeeds, fetch every new file one at a time, store it under
its date partition, broadcast a summary and sleep. The feeds differ only in
how they crawl and how a downloaded file is routed into the store:

* COSMO-D2 grids are recompressed from bzip2 to lz4 and written once.
* MOSMIX_L forecasts are written verbatim, once, under a per-station name.
* POI reports are split by observation date and merged into per-day CSVs.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Type

from tqdm import tqdm

import dwd_csv
from dwd_common import (
    DownloadError,
    FatalStorageError,
    ListingError,
    ResolutionError,
    StorageError,
    TranscodeError,
    format_exception_message,
    is_name_resolution_failure,
    log_event,
)
from dwd_config import FORECAST_FEED, GRID_FEED, REPORT_FEED, CrawlerConfig, FeedSettings
from dwd_fetch import HttpClient
from dwd_listing import crawl_flat, crawl_grid
from dwd_notify import UdpNotifier

logger = logging.getLogger(__name__)

GRID_DOWNLOAD_SUFFIX = ".bz2"
GRID_STORAGE_SUFFIX = ".lz4"
MOSMIX_KML_FOLDER = "kml/"


# -----------------------------------------------------------------------------
# File-store layout
# -----------------------------------------------------------------------------

def file_name_from_url(url: str) -> str:
    return url.rsplit("/", 1)[-1]


def grid_partition_token(file_name: str) -> str:
    """
    Return the model-run date-time token of a COSMO-D2 grib file name.

    Its position counted from the end depends on how many underscore-separated
    segments the name has (8, 7 or 6); any other shape raises ``ValueError``.
    """
    tokens = file_name.split("_")
    offsets = {8: 4, 7: 3, 6: 2}
    offset = offsets.get(len(tokens))
    if offset is None:
        raise ValueError(f"file name is invalid: {file_name}")
    return tokens[-offset]


def grid_storage_name(file_name: str) -> str:
    if file_name.endswith(GRID_DOWNLOAD_SUFFIX):
        return file_name[: -len(GRID_DOWNLOAD_SUFFIX)] + GRID_STORAGE_SUFFIX
    return file_name + GRID_STORAGE_SUFFIX


def grid_target_path(base_path: Path, url: str) -> Path:
    url_tokens = url.split("/")
    quantity = url_tokens[-2]
    file_name = url_tokens[-1]
    date_time = grid_partition_token(file_name)
    return base_path / "weather" / "cosmo-d2" / "grib" / date_time / quantity / grid_storage_name(file_name)


def forecast_target_path(base_path: Path, url: str) -> Path:
    file_name = file_name_from_url(url)
    tokens = file_name.split("_")
    extension_parts = file_name.split(".")
    if len(tokens) < 4 or len(extension_parts) < 2:
        raise ValueError(f"file name is invalid: {file_name}")
    time_stamp = tokens[2]
    station_id = tokens[3].split(".")[0]
    extension = extension_parts[1]
    return base_path / "weather" / "local_forecasts" / "mos" / time_stamp / f"{station_id}-MOSMIX.{extension}"


def report_target_path(base_path: Path, date_string: str, file_name: str) -> Path:
    return base_path / "weather" / "weather_reports" / "poi" / date_string / file_name


def write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp_path.write_bytes(payload)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


# -----------------------------------------------------------------------------
# Cycle
# -----------------------------------------------------------------------------

class AcquisitionCycle:
    """Crawl/download/store loop for one feed."""

    def __init__(
        self,
        settings: FeedSettings,
        config: CrawlerConfig,
        client: Optional[HttpClient] = None,
        notifier: Optional[UdpNotifier] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self.base_path = config.download_directory_base_path
        self.stop_event = stop_event or threading.Event()
        self.client = client or HttpClient(
            timeout_seconds=config.request_timeout_seconds,
            max_retries=config.download_max_retries,
            retry_delay_seconds=config.download_retry_delay_seconds,
            sleep=self.wait,
        )
        self.notifier = notifier or UdpNotifier(config.udp_broadcast_port)

    @property
    def name(self) -> str:
        return self.settings.name

    def wait(self, seconds: float) -> bool:
        """Sleep ``seconds``; returns True when the feed was asked to stop."""
        if seconds <= 0:
            return self.stop_event.is_set()
        return self.stop_event.wait(seconds)

    def crawl(self, base_url: str) -> List[str]:
        raise NotImplementedError

    def process(self, url: str) -> bool:
        """Store one crawl target; returns True when a new file was stored."""
        raise NotImplementedError

    def crawl_until_success(self, base_url: str) -> Optional[List[str]]:
        while not self.stop_event.is_set():
            log_event(logger, logging.INFO, "CRAWL_START", feed=self.name, url=base_url)
            try:
                return self.crawl(base_url)
            except ListingError as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "CRAWL_FAILED",
                    feed=self.name,
                    url=exc.url or base_url,
                    reason="name_resolution" if is_name_resolution_failure(exc) else "listing",
                    error=format_exception_message(exc),
                )
            log_event(
                logger,
                logging.INFO,
                "CRAWL_RETRY_WAIT",
                feed=self.name,
                minutes=self.settings.crawl_retry_wait_minutes,
            )
            self.wait(self.settings.crawl_retry_wait_seconds)
        return None

    def run_once(self) -> int:
        """
        Run one cycle without the trailing sleep.

        Returns the number of newly stored files. Raises ``ResolutionError``
        when the host cannot be resolved; per-file errors are logged and the
        file is skipped. ``FatalStorageError`` is never caught here.
        """
        base_url = self.client.resolve_base_url(self.settings.base_url)
        urls = self.crawl_until_success(base_url)
        if urls is None:
            return 0
        log_event(logger, logging.INFO, "CRAWL_DONE", feed=self.name, files=len(urls))

        stored = 0
        for url in tqdm(urls, desc=self.name, unit="file", leave=False, disable=not self.config.show_progress):
            if self.wait(self.config.file_pacing_seconds):
                break
            try:
                if self.process(url):
                    stored += 1
            except (DownloadError, StorageError, TranscodeError) as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "FILE_FAILED",
                    feed=self.name,
                    url=url,
                    stage=type(exc).__name__,
                    error=format_exception_message(exc),
                )
                continue

        log_event(logger, logging.INFO, "CYCLE_DONE", feed=self.name, new_files=stored)
        self.notifier.send(self.name, stored)
        return stored

    def run_forever(self) -> None:
        logger.info("start crawling %s", self.name)
        while not self.stop_event.is_set():
            try:
                self.run_once()
            except ResolutionError as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "HOST_RESOLVE_FAILED",
                    feed=self.name,
                    url=self.settings.base_url,
                    error=format_exception_message(exc),
                )
                self.wait(self.settings.crawl_retry_wait_seconds)
                continue
            log_event(
                logger,
                logging.INFO,
                "CYCLE_WAIT",
                feed=self.name,
                minutes=self.settings.complete_cycle_wait_minutes,
            )
            self.wait(self.settings.complete_cycle_wait_seconds)
        logger.info("stopped crawling %s", self.name)


class GridCycle(AcquisitionCycle):
    """COSMO-D2 single-level grib files on the regular lat/lon grid."""

    def crawl(self, base_url: str) -> List[str]:
        return crawl_grid(
            self.client,
            base_url,
            max_depth=self.config.grid_max_depth,
            max_pages=self.config.grid_max_pages,
        )

    def _run_command(self, command: Sequence[str]) -> None:
        try:
            subprocess.run(list(command), check=True, capture_output=True)
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise TranscodeError(
                f"{command[0]} exited with {exc.returncode}: {stderr or '-'}"
            ) from exc
        except OSError as exc:
            raise TranscodeError(f"running {command[0]} failed: {format_exception_message(exc)}") from exc

    def transcode(self, raw_path: Path, target_path: Path) -> None:
        decompressed = raw_path.with_suffix("")
        try:
            self._run_command([*self.config.decompress_command, str(raw_path)])
            self._run_command([*self.config.compress_command, str(decompressed), str(target_path)])
        except TranscodeError:
            for leftover in (raw_path, decompressed, target_path):
                leftover.unlink(missing_ok=True)
            raise
        try:
            decompressed.unlink()
        except OSError as exc:
            raise StorageError(f"removing {decompressed} failed: {format_exception_message(exc)}") from exc

    def process(self, url: str) -> bool:
        file_name = file_name_from_url(url)
        try:
            target_path = grid_target_path(self.base_path, url)
        except ValueError as exc:
            log_event(logger, logging.ERROR, "GRID_FILE_NAME_INVALID", url=url, error=str(exc))
            return False
        if target_path.exists():
            return False

        log_event(logger, logging.DEBUG, "DOWNLOAD_START", feed=self.name, url=url)
        content = self.client.download(url)
        raw_path = target_path.parent / file_name
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            raw_path.write_bytes(content)
        except OSError as exc:
            raise StorageError(f"writing {raw_path} failed: {format_exception_message(exc)}") from exc
        self.transcode(raw_path, target_path)
        return True


class ForecastCycle(AcquisitionCycle):
    """MOSMIX_L per-station forecasts, one ``.kmz`` per station and run."""

    def crawl(self, base_url: str) -> List[str]:
        stations = crawl_flat(self.client, base_url)
        log_event(logger, logging.INFO, "STATIONS_LISTED", feed=self.name, stations=len(stations))
        files: List[str] = []
        for station_url in stations:
            station_id = station_url.rstrip("/").rsplit("/", 1)[-1]
            try:
                files.extend(crawl_flat(self.client, station_url + MOSMIX_KML_FOLDER))
            except ListingError as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "STATION_LISTING_FAILED",
                    station=station_id,
                    error=format_exception_message(exc),
                )
        return files

    def process(self, url: str) -> bool:
        try:
            target_path = forecast_target_path(self.base_path, url)
        except ValueError as exc:
            log_event(logger, logging.ERROR, "FORECAST_FILE_NAME_INVALID", url=url, error=str(exc))
            return False
        if target_path.exists():
            return False

        content = self.client.download(url)
        log_event(logger, logging.DEBUG, "FORECAST_DOWNLOADED", url=url, bytes=len(content))
        try:
            write_atomic(target_path, content)
        except OSError as exc:
            raise FatalStorageError(
                f"storing file at {target_path} failed: {format_exception_message(exc)}"
            ) from exc
        return True


class ReportCycle(AcquisitionCycle):
    """POI station reports merged into one CSV per station and observation day."""

    def process(self, url: str) -> bool:
        content = self.client.download(url)
        text = content.decode("utf-8", errors="replace")
        table = dwd_csv.parse(text)
        file_name = file_name_from_url(url)

        for date_string in dwd_csv.partition_dates(table):
            try:
                self.store_partition(file_name, date_string, text, table)
            except StorageError as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "PARTITION_FAILED",
                    url=url,
                    partition=date_string,
                    error=format_exception_message(exc),
                )
        return True

    def crawl(self, base_url: str) -> List[str]:
        return crawl_flat(self.client, base_url)

    def store_partition(self, file_name: str, date_string: str, text: str, table: dwd_csv.RowTable) -> None:
        target_path = report_target_path(self.base_path, date_string, file_name)
        try:
            token = dwd_csv.partition_token(date_string)
            if target_path.exists():
                current = target_path.read_bytes().decode("utf-8")
                content = dwd_csv.merge(
                    current,
                    text,
                    token,
                    deduplicate=self.config.report_deduplicate_rows,
                )
            else:
                content = dwd_csv.serialize(dwd_csv.partition_table(table, token))
            write_atomic(target_path, content.encode("utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(
                f"writing partition {target_path} failed: {format_exception_message(exc)}"
            ) from exc


FEED_CYCLES: Dict[str, Type[AcquisitionCycle]] = {
    GRID_FEED: GridCycle,
    FORECAST_FEED: ForecastCycle,
    REPORT_FEED: ReportCycle,
}


def build_cycle(
    settings: FeedSettings,
    config: CrawlerConfig,
    stop_event: Optional[threading.Event] = None,
) -> AcquisitionCycle:
    return FEED_CYCLES[settings.name](settings, config, stop_event=stop_event)
