"""Freshness-bounded guideline cache that serves stale entries when the source fails."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from greenlit.config import settings
from greenlit.errors import UpstreamUnavailable
from greenlit.models.guideline import CachedGuidelines, CacheEntry, GuidelineDocument

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    async def fetch(self) -> GuidelineDocument: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuidelineCache:
    """Holds at most one guideline document and refreshes it on expiry.

    All concurrent misses share a single in-flight fetch. The live entry is
    only ever replaced by assigning a new immutable CacheEntry, so readers see
    either the old or the new entry in full.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        freshness: timedelta | None = None,
        fetch_timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.fetcher = fetcher
        self.freshness = (
            freshness
            if freshness is not None
            else timedelta(hours=settings.guidelines_ttl_hours)
        )
        self.fetch_timeout = (
            fetch_timeout if fetch_timeout is not None else settings.guidelines_timeout
        )
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._inflight: asyncio.Task[CacheEntry] | None = None

    @property
    def entry(self) -> CacheEntry | None:
        return self._entry

    async def get(self) -> CachedGuidelines:
        """Return the cached document, refreshing it if it has expired.

        A failed refresh falls back to the previous entry (marked stale). Only
        when nothing has ever been cached does the failure propagate.
        """
        entry = self._entry
        now = self._clock()
        if entry is not None and now - entry.fetched_at < self.freshness:
            return CachedGuidelines(
                document=entry.document, cached=True, age=now - entry.fetched_at
            )

        try:
            fresh = await self._refresh()
        except UpstreamUnavailable as exc:
            entry = self._entry
            if entry is None:
                raise
            logger.warning("Serving stale guidelines after failed refresh: %s", exc)
            return CachedGuidelines(
                document=entry.document,
                cached=True,
                stale=True,
                age=self._clock() - entry.fetched_at,
                error=f"Failed to fetch fresh guidelines, serving stale cache: {exc.message}",
            )
        return CachedGuidelines(document=fresh.document)

    async def force_refresh(self) -> CachedGuidelines:
        """Fetch now, bypassing freshness. Failure raises UpstreamUnavailable."""
        fresh = await self._refresh()
        return CachedGuidelines(document=fresh.document)

    def status(self) -> dict:
        """Snapshot of the cache slot for health reporting."""
        entry = self._entry
        if entry is None:
            return {
                "cached": False,
                "ageSeconds": None,
                "stale": False,
                "lastUpdated": None,
                "sections": 0,
            }
        age = self._clock() - entry.fetched_at
        return {
            "cached": True,
            "ageSeconds": int(age.total_seconds()),
            "stale": age >= self.freshness,
            "lastUpdated": entry.fetched_at.isoformat(),
            "sections": len(entry.document.sections),
        }

    async def _refresh(self) -> CacheEntry:
        # Join the fetch already running, if any, instead of starting another.
        task = self._inflight
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_swap())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        # Retrieve the exception so an unawaited failure is not reported as lost.
        if not task.cancelled():
            task.exception()

    async def _fetch_and_swap(self) -> CacheEntry:
        try:
            document = await asyncio.wait_for(
                self.fetcher.fetch(), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(
                f"Guideline fetch timed out after {self.fetch_timeout}s"
            ) from exc
        except UpstreamUnavailable:
            raise
        except Exception as exc:
            raise UpstreamUnavailable(f"Guideline fetch failed: {exc}") from exc

        previous = self._entry
        fetched_at = self._clock()
        if previous is not None and fetched_at < previous.fetched_at:
            fetched_at = previous.fetched_at
        entry = CacheEntry(document=document, fetched_at=fetched_at)
        self._entry = entry
        logger.info("Guideline cache refreshed (%d sections)", len(document.sections))
        return entry
