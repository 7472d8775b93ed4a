"""Shared fixtures: an in-memory stand-in for the DWD server and test configs."""
from typing import Dict, List, Union

import pytest
import requests

from dwd_common import DownloadError
from dwd_config import build_config


def listing_html(*hrefs: str) -> str:
    """Render an nginx-style autoindex page linking to ``hrefs``."""
    anchors = "\n".join(f'<a href="{href}">{href}</a>                 01-Jan-2020 00:00    -' for href in hrefs)
    return f"<html><head><title>Index of /</title></head><body><h1>Index of /</h1><hr><pre>{anchors}\n</pre><hr></body></html>"


PageValue = Union[str, Exception, List[Union[str, Exception]]]


class FakeDwdClient:
    """
    Serves listing pages and file payloads from dictionaries.

    A page value may be a list, in which case each call consumes the next
    entry (useful for flaky pages). Exceptions are raised instead of returned.
    """

    def __init__(
        self,
        pages: Dict[str, PageValue] = None,
        files: Dict[str, Union[bytes, Exception]] = None,
        resolve_error: Exception = None,
    ):
        self.pages = dict(pages or {})
        self.files = dict(files or {})
        self.resolve_error = resolve_error
        self.listed: List[str] = []
        self.downloaded: List[str] = []

    def resolve_base_url(self, url: str) -> str:
        if self.resolve_error is not None:
            raise self.resolve_error
        return url

    def get_text(self, url: str) -> str:
        self.listed.append(url)
        if url not in self.pages:
            raise requests.HTTPError(f"404 Client Error: Not Found for url: {url}")
        value = self.pages[url]
        if isinstance(value, list):
            value = value.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    def download(self, url: str) -> bytes:
        self.downloaded.append(url)
        value = self.files.get(url)
        if value is None:
            raise DownloadError(f"downloading {url} failed after 4 attempts", url=url)
        if isinstance(value, Exception):
            raise value
        return value


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, feed: str, count: int) -> bool:
        self.sent.append((feed, count))
        return True


def make_config(tmp_path, **overrides):
    values = {
        "download_directory_base_path": str(tmp_path),
        "cosmo_d2_crawl_retry_wait_minutes": 0,
        "cosmo_d2_complete_cycle_wait_minutes": 0,
        "forecast_crawl_retry_wait_minutes": 0,
        "forecast_complete_cycle_wait_minutes": 0,
        "report_crawl_retry_wait_minutes": 0,
        "report_complete_cycle_wait_minutes": 0,
        "file_pacing_seconds": 0,
        "download_retry_delay_seconds": 0,
    }
    values.update(overrides)
    return build_config(values)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def notifier():
    return RecordingNotifier()
