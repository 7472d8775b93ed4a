"""HTTP access to the DWD open-data server.

The server's certificate chain is not expected to validate, so every request
is made with ``verify=False``. Name resolution is done once per cycle by
``resolve_base_url``; later requests go to the numeric address and carry the
original hostname in the ``Host`` header.
"""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import requests
import urllib3

from dwd_common import DownloadError, ResolutionError, format_exception_message, log_event

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

USER_AGENT = "dwd-data-crawler/2.1 (+https://opendata.dwd.de/)"


def resolve_host(hostname: str) -> str:
    try:
        infos = socket.getaddrinfo(hostname, None, socket.AF_INET, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as exc:
        raise ResolutionError(f"resolving {hostname} failed: {format_exception_message(exc)}") from exc
    if not infos:
        raise ResolutionError(f"resolving {hostname} returned no addresses")
    return infos[0][4][0]


def substitute_host(url: str, address: str) -> str:
    parts = urlsplit(url)
    netloc = address if parts.port is None else f"{address}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class HttpClient:
    def __init__(
        self,
        timeout_seconds: float = 60.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 0.01,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self.sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.session.verify = False

    def resolve_base_url(self, url: str) -> str:
        """Return ``url`` with its hostname replaced by a freshly resolved IPv4 address."""
        hostname = urlsplit(url).hostname
        if not hostname:
            raise ResolutionError(f"no hostname in url {url}")
        address = resolve_host(hostname)
        self.session.headers["Host"] = hostname
        log_event(logger, logging.DEBUG, "HOST_RESOLVED", host=hostname, address=address)
        return substitute_host(url, address)

    def get(self, url: str) -> requests.Response:
        response = self.session.get(url, timeout=self.timeout_seconds)
        response.raise_for_status()
        return response

    def get_text(self, url: str) -> str:
        return self.get(url).text

    def download(self, url: str) -> bytes:
        """
        Download the full content of ``url``.

        Any request error is logged and retried after a short fixed delay, up to
        ``max_retries`` additional attempts. The last error is chained into the
        raised ``DownloadError``.
        """
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.get(url).content
            except requests.RequestException as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    "DOWNLOAD_RETRY" if attempt < attempts else "DOWNLOAD_FAILED",
                    url=url,
                    attempt=f"{attempt}/{attempts}",
                    error=format_exception_message(exc),
                )
                if attempt >= attempts:
                    raise DownloadError(
                        f"downloading {url} failed after {attempts} attempts: {format_exception_message(exc)}",
                        url=url,
                    ) from exc
                self.sleep(self.retry_delay_seconds)
        raise RuntimeError("Retry loop exhausted unexpectedly.")

    def close(self) -> None:
        self.session.close()
