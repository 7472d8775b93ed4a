#!/usr/bin/env python3
"""List the files one crawl of a DWD feed would fetch, without downloading them."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from dwd_common import CrawlerError, format_exception_message
from dwd_config import FEED_DEFAULTS, GRID_FEED, REPORT_FEED, build_config
from dwd_feeds import (
    build_cycle,
    file_name_from_url,
    forecast_target_path,
    grid_target_path,
    report_target_path,
)

REPORT_PARTITION_PATTERN = "{YYYYMMDD}"


def _target_for(feed: str, base_path: Path, url: str) -> Optional[str]:
    if feed == REPORT_FEED:
        # report files are split by the dates inside them
        return str(report_target_path(base_path, REPORT_PARTITION_PATTERN, file_name_from_url(url)))
    try:
        if feed == GRID_FEED:
            return str(grid_target_path(base_path, url))
        return str(forecast_target_path(base_path, url))
    except ValueError:
        return None


def _build_payload(feed: str, base_path: Path, urls: List[str]) -> Dict[str, object]:
    rows = []
    stored = 0
    for url in urls:
        target = _target_for(feed, base_path, url)
        exists = feed != REPORT_FEED and target is not None and Path(target).exists()
        stored += int(exists)
        rows.append({"url": url, "target": target, "exists": exists})
    return {"feed": feed, "file_count": len(rows), "already_stored": stored, "files": rows}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--feed", required=True, choices=sorted(FEED_DEFAULTS), help="Feed to crawl.")
    parser.add_argument(
        "--download-directory",
        default=os.getenv("DOWNLOAD_DIRECTORY_BASE_PATH", "."),
        help="Store root used to compute target paths. Defaults to DOWNLOAD_DIRECTORY_BASE_PATH or '.'.",
    )
    parser.add_argument("--max-pages", type=int, help="Stop descending the grid tree after this many pages.")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text output.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(message)s")
    config = build_config(
        {
            "download_directory_base_path": args.download_directory,
            "grid_max_pages": args.max_pages,
        }
    )
    settings = next(feed for feed in config.feeds if feed.name == args.feed)
    cycle = build_cycle(settings, config)
    try:
        base_url = cycle.client.resolve_base_url(settings.base_url)
        urls = cycle.crawl(base_url)
    except CrawlerError as exc:
        raise SystemExit(f"Crawling {args.feed} failed: {format_exception_message(exc)}") from exc

    payload = _build_payload(args.feed, config.download_directory_base_path, urls)
    if args.json:
        print(json.dumps(payload, indent=2))
        return
    for row in payload["files"]:  # type: ignore[union-attr]
        marker = "stored" if row["exists"] else "new"
        print(f"{marker}\t{row['url']}\t{row['target'] or '-'}")
    print(
        f"CRAWL_SUMMARY feed={args.feed} files={payload['file_count']} "
        f"already_stored={payload['already_stored']}"
    )


if __name__ == "__main__":
    main()
