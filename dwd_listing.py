"""Link listing and crawling over the DWD open-data directory index pages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Protocol, Tuple

import requests
from bs4 import BeautifulSoup

from dwd_common import ListingError, format_exception_message, log_event

logger = logging.getLogger(__name__)

PARENT_HREF = "../"
PLACEHOLDER_MARKER = "LATEST"

GRIB_SUFFIX = ".grib2.bz2"
SINGLE_LEVEL_MARKER = "single-level"
REGULAR_GRID_MARKER = "regular"
EXCLUDED_MODEL_MARKER = "COSMODE"
GRID_PAGE_RETRIES = 3


class TextSource(Protocol):
    def get_text(self, url: str) -> str:
        ...


@dataclass(frozen=True)
class DirectoryLink:
    href: str
    url: str

    @property
    def is_parent(self) -> bool:
        return self.href == PARENT_HREF

    @property
    def is_placeholder(self) -> bool:
        return PLACEHOLDER_MARKER in self.href


def parse_listing(base_url: str, html: str) -> Iterator[DirectoryLink]:
    soup = BeautifulSoup(html, "html.parser")
    for anchor in soup.find_all("a"):
        href = anchor.get("href")
        if not isinstance(href, str):
            continue
        yield DirectoryLink(href=href, url=base_url + href)


def list_directory(client: TextSource, base_url: str) -> List[DirectoryLink]:
    try:
        html = client.get_text(base_url)
    except requests.RequestException as exc:
        raise ListingError(
            f"listing {base_url} failed: {format_exception_message(exc)}", url=base_url
        ) from exc
    return [
        link
        for link in parse_listing(base_url, html)
        if not link.is_parent and not link.is_placeholder
    ]


def list_links(client: TextSource, base_url: str) -> List[str]:
    """
    Return the child URLs of the index page at ``base_url``.

    The parent-directory link and any link containing the ``LATEST``
    placeholder are left out. URLs are ``base_url + href`` in page order.
    """
    return [link.url for link in list_directory(client, base_url)]


def crawl_flat(client: TextSource, base_url: str) -> List[str]:
    return list_links(client, base_url)


def _list_directory_with_retries(client: TextSource, url: str, retries: int) -> List[DirectoryLink]:
    attempt = 0
    while True:
        try:
            return list_directory(client, url)
        except ListingError as exc:
            attempt += 1
            if attempt > retries:
                raise
            log_event(
                logger,
                logging.DEBUG,
                "GRID_LISTING_RETRY",
                url=url,
                attempt=f"{attempt}/{retries}",
                error=format_exception_message(exc),
            )


def is_grid_target(href: str) -> bool:
    return href.endswith(GRIB_SUFFIX) and SINGLE_LEVEL_MARKER in href and REGULAR_GRID_MARKER in href


def crawl_grid(
    client: TextSource,
    root_url: str,
    max_depth: Optional[int] = None,
    max_pages: Optional[int] = None,
    page_retries: int = GRID_PAGE_RETRIES,
) -> List[str]:
    """
    Walk the grid directory tree below ``root_url`` and collect grib files.

    Only single-level files on the regular lat/lon grid are admitted. Other
    grib files are dropped; directories of the COSMODE model variant are not
    entered. Each page is retried immediately ``page_retries`` times before
    the ``ListingError`` aborts the whole crawl.

    The walk keeps one link iterator per open directory on an explicit stack,
    so the result is in the same depth-first order a recursive walk would
    produce. ``max_depth`` and ``max_pages`` bound an unexpectedly deep or
    wide hierarchy.
    """
    targets: List[str] = []
    pages = 1
    stack: List[Tuple[int, Iterator[DirectoryLink]]] = [
        (0, iter(_list_directory_with_retries(client, root_url, page_retries)))
    ]
    while stack:
        depth, links = stack[-1]
        link = next(links, None)
        if link is None:
            stack.pop()
            continue

        if link.href.endswith(GRIB_SUFFIX):
            if is_grid_target(link.href):
                targets.append(link.url)
            continue
        if EXCLUDED_MODEL_MARKER in link.href:
            continue

        if max_depth is not None and depth + 1 > max_depth:
            log_event(logger, logging.WARNING, "GRID_DEPTH_LIMIT", url=link.url, max_depth=max_depth)
            continue
        if max_pages is not None and pages >= max_pages:
            log_event(logger, logging.WARNING, "GRID_PAGE_LIMIT", url=link.url, max_pages=max_pages)
            continue
        pages += 1
        stack.append((depth + 1, iter(_list_directory_with_retries(client, link.url, page_retries))))
    return targets
