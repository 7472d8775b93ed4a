"""Best-effort UDP broadcast announcing a finished crawl cycle."""

from __future__ import annotations

import json
import logging
import socket

from dwd_common import format_exception_message, log_event

logger = logging.getLogger(__name__)

BROADCAST_ADDRESS = "<broadcast>"


def build_payload(feed: str, count: int) -> bytes:
    return json.dumps({"crawled": feed, "count": count}).encode("utf-8")


class UdpNotifier:
    def __init__(self, port: int, address: str = BROADCAST_ADDRESS) -> None:
        self.port = port
        self.address = address

    def send(self, feed: str, count: int) -> bool:
        """Send one datagram; failures are logged and reported as ``False``."""
        payload = build_payload(feed, count)
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.sendto(payload, (self.address, self.port))
        except OSError as exc:
            log_event(
                logger,
                logging.WARNING,
                "NOTIFY_FAILED",
                feed=feed,
                port=self.port,
                error=format_exception_message(exc),
            )
            return False
        log_event(logger, logging.DEBUG, "NOTIFY_SENT", feed=feed, count=count, port=self.port)
        return True
