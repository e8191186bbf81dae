"""Time-based in-memory cache for the last good DemandSnapshot.

One snapshot at most, replaced wholesale on every successful scrape. Readers
get fresh data immediately, trigger a background refresh when it has gone
stale, and wait a bounded time for that refresh before falling back to the
stale copy. A failed refresh never touches the snapshot already held.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, NamedTuple

import config
from extract import DemandSnapshot

log = logging.getLogger(__name__)


class NoDataError(Exception):
    """No snapshot has ever been produced and the refresh attempt did not yield one."""


class CacheState(enum.Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


class CacheResult(NamedTuple):
    snapshot: DemandSnapshot
    is_stale: bool


class DemandCache:
    """Holds one snapshot, its update instant, and an advisory refreshing flag.

    fetch: zero-argument callable returning a new DemandSnapshot (raises on failure).
    clock: monotonic seconds; injectable so tests control snapshot age.
    """

    def __init__(
        self,
        fetch: Callable[[], DemandSnapshot],
        ttl: float = config.CACHE_TTL_SECONDS,
        wait: float = config.CACHE_WAIT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl!r}")
        if wait < 0:
            raise ValueError(f"wait must be non-negative, got {wait!r}")
        self._fetch = fetch
        self.ttl = ttl
        self.wait = wait
        self._clock = clock

        self._cond = threading.Condition()
        self._snapshot: DemandSnapshot | None = None
        self._updated_at: float | None = None
        self._inflight = 0
        self._last_error: BaseException | None = None

    # -- state ---------------------------------------------------------------

    def _state_locked(self) -> CacheState:
        if self._snapshot is None:
            return CacheState.EMPTY
        if self._clock() - self._updated_at < self.ttl:
            return CacheState.FRESH
        return CacheState.STALE

    @property
    def state(self) -> CacheState:
        with self._cond:
            return self._state_locked()

    @property
    def refreshing(self) -> bool:
        with self._cond:
            return self._inflight > 0

    @property
    def snapshot(self) -> DemandSnapshot | None:
        with self._cond:
            return self._snapshot

    def status(self) -> dict:
        """Summary of the cache for health output."""
        with self._cond:
            age = None if self._updated_at is None else round(self._clock() - self._updated_at, 3)
            return {
                "state": self._state_locked().value,
                "refreshing": self._inflight > 0,
                "age_seconds": age,
                "ttl_seconds": self.ttl,
                "last_error": str(self._last_error) if self._last_error else None,
            }

    # -- refresh -------------------------------------------------------------

    def _begin_locked(self) -> None:
        self._inflight += 1

    def _finish(self, snapshot: DemandSnapshot | None, error: BaseException | None) -> None:
        with self._cond:
            if snapshot is not None:
                self._snapshot = snapshot
                self._updated_at = self._clock()
                self._last_error = None
            else:
                self._last_error = error
            self._inflight -= 1
            self._cond.notify_all()

    def _fetch_checked(self) -> DemandSnapshot:
        snapshot = self._fetch()
        if not isinstance(snapshot, DemandSnapshot):
            raise TypeError(f"fetch returned {type(snapshot).__name__}, expected DemandSnapshot")
        return snapshot

    def _run_refresh(self) -> None:
        """Background refresh body. Records failures instead of raising."""
        snapshot = None
        error = None
        try:
            snapshot = self._fetch_checked()
        except Exception as e:
            error = e
            log.warning("Background refresh failed: %s", e)
        finally:
            self._finish(snapshot, error)
        if snapshot is not None:
            log.info("Cache refreshed (snapshot %s)", snapshot.captured_at.isoformat())

    def _trigger_locked(self) -> bool:
        """Spawn a background refresh unless one is in flight. Caller holds the lock."""
        if self._inflight:
            return False
        self._begin_locked()
        thread = threading.Thread(target=self._run_refresh, name="demand-cache-refresh", daemon=True)
        thread.start()
        return True

    def refresh(self) -> DemandSnapshot:
        """Scrape now regardless of freshness.

        On failure the held snapshot is left as it was and the fetch error
        propagates to the caller.
        """
        with self._cond:
            self._begin_locked()
        snapshot = None
        error = None
        try:
            snapshot = self._fetch_checked()
        except Exception as e:
            error = e
            log.warning("Forced refresh failed: %s", e)
            raise
        finally:
            self._finish(snapshot, error)
        log.info("Cache refreshed on demand (snapshot %s)", snapshot.captured_at.isoformat())
        return snapshot

    # -- read ----------------------------------------------------------------

    def get(self) -> CacheResult:
        """Current snapshot, refreshing first when it is missing or stale.

        Raises NoDataError only when there is no snapshot at all after the
        bounded wait.
        """
        with self._cond:
            if self._state_locked() is CacheState.FRESH:
                return CacheResult(self._snapshot, False)

            if self._trigger_locked():
                log.debug("Snapshot %s, started refresh", self._state_locked().value)
            else:
                log.debug("Refresh already in flight, waiting up to %.1fs", self.wait)

            self._cond.wait_for(lambda: self._inflight == 0, timeout=self.wait)

            state = self._state_locked()
            if state is CacheState.FRESH:
                return CacheResult(self._snapshot, False)
            if self._snapshot is not None:
                log.info("Serving stale snapshot from %s", self._snapshot.captured_at.isoformat())
                return CacheResult(self._snapshot, True)

            if self._inflight:
                raise NoDataError(f"no data available yet: refresh still running after {self.wait:.1f}s")
            error = self._last_error
        if error is None:
            raise NoDataError("no data available")
        raise NoDataError(f"no data available: {error}") from error
