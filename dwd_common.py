"""Error taxonomy and logging helpers shared by the DWD crawler modules."""

from __future__ import annotations

import json
import logging
import re


class CrawlerError(Exception):
    """Base class for every error raised by the crawler."""


class ResolutionError(CrawlerError):
    """The feed host could not be resolved to a numeric address."""


class FetchError(CrawlerError):
    """An HTTP request against the open-data server failed."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class ListingError(FetchError):
    """A directory index page could not be fetched."""


class DownloadError(FetchError):
    """A file download failed after all retry attempts."""


class StorageError(CrawlerError):
    """Writing or merging a file in the local store failed."""


class TranscodeError(CrawlerError):
    """An external decompression/recompression command failed."""


class FatalConfigError(CrawlerError):
    """Required configuration is missing or invalid."""


class FatalStorageError(CrawlerError):
    """Persisting a file failed in a way that leaves the store ambiguous."""


def _log_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return "null"
    text = str(value)
    if re.fullmatch(r"[A-Za-z0-9._:/+\-]+", text):
        return text
    return json.dumps(text, ensure_ascii=True)


def format_event(event: str, **fields: object) -> str:
    parts = [event]
    for key, value in fields.items():
        parts.append(f"{key}={_log_value(value)}")
    return " ".join(parts)


def log_event(logger: logging.Logger, level: int, event: str, **fields: object) -> None:
    if logger.isEnabledFor(level):
        logger.log(level, format_event(event, **fields))


def format_exception_message(exc: BaseException) -> str:
    text = str(exc).strip()
    if text:
        return text
    rep = repr(exc).strip()
    if rep and rep != f"{type(exc).__name__}()":
        return rep
    return type(exc).__name__


def is_name_resolution_failure(exc: BaseException) -> bool:
    text = str(exc).lower()
    markers = (
        "nameresolutionerror",
        "failed to resolve",
        "nodename nor servname provided",
        "temporary failure in name resolution",
        "name or service not known",
        "getaddrinfo failed",
    )
    return any(marker in text for marker in markers)


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    raise ValueError(f"Cannot parse boolean from value '{value}'.")
