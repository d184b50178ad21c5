"""
Best-effort "inverted index rebuild in progress" flag.

Single-process coordination only: each holder gets a token, only the holder
of the current token can clear the flag, and a flag older than
`stale_seconds` counts as free so a crashed rebuild cannot block future
bulk inserts.  The flag is not tied to any database lock; an occasional
double rebuild is tolerated.
"""

from __future__ import annotations

import threading
import time
import uuid
from typing import Callable, Optional

from config.settings import settings
from src.log import get_logger
from src.observability import metrics

logger = get_logger(__name__)


class RebuildCoordinator:
    def __init__(self, stale_seconds: Optional[float] = None, clock: Optional[Callable[[], float]] = None):
        self.stale_seconds = settings.ingest.rebuild_stale_seconds if stale_seconds is None else stale_seconds
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._started_at: float = 0.0

    def _is_live(self, now: float) -> bool:
        return self._token is not None and (now - self._started_at) < self.stale_seconds

    def is_running(self) -> bool:
        with self._lock:
            return self._is_live(self._clock())

    def try_start(self) -> Optional[str]:
        """Take the flag; returns a token, or None while a live rebuild holds it."""
        with self._lock:
            now = self._clock()
            if self._is_live(now):
                return None
            if self._token is not None:
                logger.warning(
                    "[rebuild] stale rebuild flag (%.0fs old) taken over", now - self._started_at
                )
            self._token = uuid.uuid4().hex
            self._started_at = now
            token = self._token
        metrics.index_rebuild_in_progress.set(1)
        return token

    def finish(self, token: str) -> bool:
        """Clear the flag if `token` still owns it."""
        with self._lock:
            if self._token != token:
                return False
            self._token = None
            self._started_at = 0.0
        metrics.index_rebuild_in_progress.set(0)
        return True

    def reset(self) -> None:
        """Forget the current holder (its rebuild was cancelled by a bulk insert)."""
        with self._lock:
            self._token = None
            self._started_at = 0.0
        metrics.index_rebuild_in_progress.set(0)
