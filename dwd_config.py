"""Process configuration for the DWD data crawler.

Values are read once at startup from (lowest to highest precedence) built-in
defaults, an optional YAML/JSON config file, environment variables and CLI
flags, and frozen into a ``CrawlerConfig`` that is handed to every feed.
"""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import yaml

from dwd_common import FatalConfigError, parse_bool

DWD_COSMO_D2_BASE_URL = "https://opendata.dwd.de/weather/nwp/cosmo-d2/grib/"
DWD_MOSMIX_BASE_URL = "https://opendata.dwd.de/weather/local_forecasts/mos/MOSMIX_L/single_stations/"
DWD_REPORT_BASE_URL = "https://opendata.dwd.de/weather/weather_reports/poi/"

GRID_FEED = "cosmo-d2-forecasts"
FORECAST_FEED = "mosmix-forecasts"
REPORT_FEED = "reports"

# feed name -> (env prefix for intervals, enable flag, default retry minutes, default cycle minutes)
FEED_DEFAULTS: Dict[str, Tuple[str, str, float, float]] = {
    GRID_FEED: ("cosmo_d2", "enable_cosmo_download", 1, 10),
    FORECAST_FEED: ("forecast", "enable_forecast_download", 1, 120),
    REPORT_FEED: ("report", "enable_report_download", 1, 30),
}

DEFAULT_UDP_BROADCAST_PORT = 4000
DEFAULT_LOG_LEVEL = "info"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class FeedSettings:
    name: str
    base_url: str
    enabled: bool = True
    crawl_retry_wait_minutes: float = 1
    complete_cycle_wait_minutes: float = 10

    @property
    def crawl_retry_wait_seconds(self) -> float:
        return self.crawl_retry_wait_minutes * 60

    @property
    def complete_cycle_wait_seconds(self) -> float:
        return self.complete_cycle_wait_minutes * 60


@dataclass(frozen=True)
class CrawlerConfig:
    download_directory_base_path: Path
    grid: FeedSettings
    forecast: FeedSettings
    report: FeedSettings
    udp_broadcast_port: int = DEFAULT_UDP_BROADCAST_PORT
    log_level: str = DEFAULT_LOG_LEVEL
    report_deduplicate_rows: bool = False
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    download_max_retries: int = 3
    download_retry_delay_seconds: float = 0.01
    file_pacing_seconds: float = 0.001
    grid_max_depth: Optional[int] = None
    grid_max_pages: Optional[int] = None
    show_progress: bool = False
    decompress_command: Tuple[str, ...] = ("bzip2", "-d")
    compress_command: Tuple[str, ...] = ("lz4", "-z9")

    @property
    def feeds(self) -> Tuple[FeedSettings, FeedSettings, FeedSettings]:
        return (self.forecast, self.grid, self.report)

    def enabled_feeds(self) -> Tuple[FeedSettings, ...]:
        return tuple(feed for feed in self.feeds if feed.enabled)


def load_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FatalConfigError(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    raw = path.read_text(encoding="utf-8")
    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw)
        elif suffix == ".json":
            data = json.loads(raw)
        else:
            raise FatalConfigError("Unsupported config file extension. Use .yaml/.yml or .json.")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise FatalConfigError(f"Config file {path} is not valid: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FatalConfigError("Config root must be a mapping/object.")
    return data


def flatten_config(data: Dict[str, Any]) -> Dict[str, Any]:
    flattened: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for nested_key, nested_value in value.items():
                flattened[f"{key}_{nested_key}".lower()] = nested_value
        else:
            flattened[str(key).lower()] = value
    return flattened


def _known_keys() -> Tuple[str, ...]:
    keys = [
        "download_directory_base_path",
        "udp_broadcast_port",
        "log_level",
        "report_deduplicate_rows",
        "request_timeout_seconds",
        "download_max_retries",
        "download_retry_delay_seconds",
        "file_pacing_seconds",
        "grid_max_depth",
        "grid_max_pages",
        "show_progress",
        "decompress_command",
        "compress_command",
    ]
    for prefix, enable_key, _, _ in FEED_DEFAULTS.values():
        keys.append(f"{prefix}_crawl_retry_wait_minutes")
        keys.append(f"{prefix}_complete_cycle_wait_minutes")
        keys.append(enable_key)
    return tuple(keys)


def _coerce_float(value: object, key: str, minimum: float = 0.0) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise FatalConfigError(f"Config key '{key}' must be a number, got {value!r}.") from exc
    if number < minimum:
        raise FatalConfigError(f"Config key '{key}' must be >= {minimum}, got {number}.")
    return number


def _coerce_optional_int(value: object, key: str) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise FatalConfigError(f"Config key '{key}' must be an integer, got {value!r}.") from exc
    if number < 0:
        raise FatalConfigError(f"Config key '{key}' must not be negative, got {number}.")
    return number


def _coerce_bool(value: object, key: str) -> bool:
    try:
        return parse_bool(value)
    except ValueError as exc:
        raise FatalConfigError(f"Config key '{key}' must be a boolean, got {value!r}.") from exc


def _coerce_command(value: object, key: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        parts = tuple(value.split())
    elif isinstance(value, (list, tuple)):
        parts = tuple(str(item) for item in value)
    else:
        raise FatalConfigError(f"Config key '{key}' must be a string or list of strings.")
    if not parts:
        raise FatalConfigError(f"Config key '{key}' must not be empty.")
    return parts


def build_config(values: Mapping[str, Any]) -> CrawlerConfig:
    base_path = values.get("download_directory_base_path")
    if base_path is None or not str(base_path).strip():
        raise FatalConfigError(
            "no download directory base path given (DOWNLOAD_DIRECTORY_BASE_PATH missing)"
        )

    feeds: Dict[str, FeedSettings] = {}
    base_urls = {
        GRID_FEED: DWD_COSMO_D2_BASE_URL,
        FORECAST_FEED: DWD_MOSMIX_BASE_URL,
        REPORT_FEED: DWD_REPORT_BASE_URL,
    }
    for name, (prefix, enable_key, retry_default, cycle_default) in FEED_DEFAULTS.items():
        retry_key = f"{prefix}_crawl_retry_wait_minutes"
        cycle_key = f"{prefix}_complete_cycle_wait_minutes"
        feeds[name] = FeedSettings(
            name=name,
            base_url=base_urls[name],
            enabled=_coerce_bool(values.get(enable_key, True), enable_key),
            crawl_retry_wait_minutes=_coerce_float(values.get(retry_key, retry_default), retry_key),
            complete_cycle_wait_minutes=_coerce_float(values.get(cycle_key, cycle_default), cycle_key),
        )

    port = values.get("udp_broadcast_port", DEFAULT_UDP_BROADCAST_PORT)
    try:
        port = int(port)
    except (TypeError, ValueError) as exc:
        raise FatalConfigError(f"Config key 'udp_broadcast_port' must be an integer, got {port!r}.") from exc
    if not 0 < port < 65536:
        raise FatalConfigError(f"Config key 'udp_broadcast_port' out of range: {port}.")

    retries = _coerce_optional_int(values.get("download_max_retries", 3), "download_max_retries")

    return CrawlerConfig(
        download_directory_base_path=Path(str(base_path)),
        grid=feeds[GRID_FEED],
        forecast=feeds[FORECAST_FEED],
        report=feeds[REPORT_FEED],
        udp_broadcast_port=port,
        log_level=str(values.get("log_level") or DEFAULT_LOG_LEVEL).lower(),
        report_deduplicate_rows=_coerce_bool(
            values.get("report_deduplicate_rows", False), "report_deduplicate_rows"
        ),
        request_timeout_seconds=_coerce_float(
            values.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            "request_timeout_seconds",
        ),
        download_max_retries=3 if retries is None else retries,
        download_retry_delay_seconds=_coerce_float(
            values.get("download_retry_delay_seconds", 0.01), "download_retry_delay_seconds"
        ),
        file_pacing_seconds=_coerce_float(values.get("file_pacing_seconds", 0.001), "file_pacing_seconds"),
        grid_max_depth=_coerce_optional_int(values.get("grid_max_depth"), "grid_max_depth"),
        grid_max_pages=_coerce_optional_int(values.get("grid_max_pages"), "grid_max_pages"),
        show_progress=_coerce_bool(values.get("show_progress", False), "show_progress"),
        decompress_command=_coerce_command(
            values.get("decompress_command", ("bzip2", "-d")), "decompress_command"
        ),
        compress_command=_coerce_command(values.get("compress_command", ("lz4", "-z9")), "compress_command"),
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Cyclically mirror DWD open-data weather files into a local file store."
    )
    parser.add_argument("--config", help="Path to YAML/JSON config file.")
    parser.add_argument(
        "--download-directory",
        help="Root of the local file store. Falls back to DOWNLOAD_DIRECTORY_BASE_PATH.",
    )
    parser.add_argument("--log-level", help="Logging level (debug, info, warning, error). Falls back to LOG_LEVEL.")
    parser.add_argument("--udp-port", type=int, help="UDP broadcast port. Falls back to UDP_BROADCAST_PORT.")
    parser.add_argument(
        "--only",
        action="append",
        choices=sorted(FEED_DEFAULTS),
        help="Run only the given feed (repeatable). Overrides the ENABLE_* flags.",
    )
    parser.add_argument("--show-progress", action="store_true", help="Show per-cycle progress bars.")
    return parser.parse_args(argv)


def load_config(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CrawlerConfig:
    args = parse_args(argv)
    env = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    if args.config:
        values.update(flatten_config(load_config_file(Path(args.config))))
    for key in _known_keys():
        raw = env.get(key.upper())
        if raw is not None and raw != "":
            values[key] = raw

    if args.download_directory:
        values["download_directory_base_path"] = args.download_directory
    if args.log_level:
        values["log_level"] = args.log_level
    if args.udp_port is not None:
        values["udp_broadcast_port"] = args.udp_port
    if args.show_progress:
        values["show_progress"] = True
    if args.only:
        for name, (_, enable_key, _, _) in FEED_DEFAULTS.items():
            values[enable_key] = name in args.only

    return build_config(values)
