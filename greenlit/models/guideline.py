"""Guideline document data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass(frozen=True)
class GuidelineSection:
    """One top-level section of the App Store Review Guidelines."""

    index: int
    title: str
    body: str


@dataclass(frozen=True)
class GuidelineDocument:
    """A fetched copy of the guidelines. Never mutated once built."""

    fetched_at: datetime
    source_url: str
    sections: tuple[GuidelineSection, ...] = ()
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "fetchedAt": self.fetched_at.isoformat(),
            "sourceUrl": self.source_url,
            "fallback": self.fallback,
            "sections": [
                {"index": s.index, "title": s.title, "body": s.body}
                for s in self.sections
            ],
        }


@dataclass(frozen=True)
class CacheEntry:
    """The single live cache slot; replaced wholesale on refresh."""

    document: GuidelineDocument
    fetched_at: datetime


@dataclass(frozen=True)
class CachedGuidelines:
    """A guideline document as served by the cache, with freshness annotations."""

    document: GuidelineDocument
    cached: bool = False
    stale: bool = False
    age: timedelta = field(default_factory=timedelta)
    error: str | None = None

    def to_dict(self) -> dict:
        data = self.document.to_dict()
        data.update(
            cached=self.cached,
            stale=self.stale,
            ageSeconds=int(self.age.total_seconds()),
        )
        if self.error:
            data["error"] = self.error
        return data
