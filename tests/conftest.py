"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from greenlit.errors import UpstreamUnavailable
from greenlit.models.guideline import GuidelineDocument, GuidelineSection
from greenlit.models.scan import (
    Finding,
    ScanStatus,
    Severity,
    SeverityCounts,
    StructuredScan,
)

GUIDELINES_URL = "https://developer.apple.com/app-store/review/guidelines/"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubFetcher:
    """Fetcher returning queued documents or raising queued errors.

    When ``gate`` is set, every fetch waits on it before answering.
    """

    def __init__(self, *outcomes, gate: asyncio.Event | None = None) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.gate = gate

    async def fetch(self) -> GuidelineDocument:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_document(title: str = "Safety", fetched_at: datetime | None = None) -> GuidelineDocument:
    return GuidelineDocument(
        fetched_at=fetched_at or datetime(2025, 1, 1, tzinfo=timezone.utc),
        source_url=GUIDELINES_URL,
        sections=(GuidelineSection(1, title, f"{title} body text."),),
    )


def make_scan(*severities: Severity, status: ScanStatus = ScanStatus.WARNING) -> StructuredScan:
    findings = tuple(
        Finding(severity=s, title=f"Issue {i}", description=f"Description {i}")
        for i, s in enumerate(severities, 1)
    )
    return StructuredScan(
        status=status, counts=SeverityCounts.tally(findings), findings=findings
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def document() -> GuidelineDocument:
    return make_document()


@pytest.fixture
def upstream_down() -> UpstreamUnavailable:
    return UpstreamUnavailable("connection refused")
