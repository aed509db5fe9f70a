"""
clock.py
Clock-skew tolerant "now" shared by every front-desk terminal.

ClockSync makes one round trip to an authoritative time source and keeps the
offset between that source and the local clock. If the round trip fails the
offset stays at zero and the local clock is used as-is.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable

import requests

logger = logging.getLogger(__name__)

TIME_URL = os.environ.get("LIBRARY_TIME_URL", "https://worldtimeapi.org/api/timezone/Etc/UTC")
TIME_TIMEOUT = float(os.environ.get("LIBRARY_TIME_TIMEOUT", "3"))


def local_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO-8601 string, got {value!r}")
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def fetch_authoritative_time(url: str = TIME_URL, timeout: float = TIME_TIMEOUT) -> datetime:
    """Single GET against a worldtimeapi-style endpoint."""
    resp = requests.get(url, timeout=timeout, headers={"Accept": "application/json"})
    resp.raise_for_status()
    payload = resp.json()
    return parse_instant(payload["utc_datetime"])


class ClockSync:
    def __init__(
        self,
        fetch_time: Callable[[], datetime] = fetch_authoritative_time,
        local_clock: Callable[[], datetime] = local_now,
    ):
        self._fetch_time = fetch_time
        self._local_clock = local_clock
        self.offset = timedelta(0)
        self.initialized = False

    def sync(self) -> None:
        try:
            t0 = self._local_clock()
            server_time = self._fetch_time()
            t1 = self._local_clock()
            if server_time.tzinfo is None:
                server_time = server_time.replace(tzinfo=timezone.utc)
            latency = (t1 - t0) / 2
            self.offset = server_time - (t1 - latency)
            logger.info("Clock synced, offset %.3fs", self.offset.total_seconds())
        except Exception as e:
            # sync never raises; offset stays zero
            logger.warning("Clock sync failed, falling back to local time: %s", e)
            self.offset = timedelta(0)
        finally:
            # no retry on every call
            self.initialized = True

    def now(self) -> datetime:
        if not self.initialized:
            self.sync()
        return self._local_clock() + self.offset
