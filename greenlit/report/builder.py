"""Report builder — merges scan results, guidelines and enrichment into one document."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from greenlit.config import settings
from greenlit.enrichment.base import Enricher
from greenlit.errors import EnrichmentFailed, Result, UpstreamUnavailable
from greenlit.guidelines.cache import GuidelineCache
from greenlit.models.guideline import CachedGuidelines
from greenlit.models.report import Analysis, ReportDocument
from greenlit.models.scan import Finding, ScanResult, StructuredScan

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportBuilder:
    """Builds a ReportDocument for one scan.

    Neither the guideline source nor the enrichment service can fail a build:
    their failures are recorded on the document and the report is produced
    with whatever is available. Findings keep their input order.
    """

    def __init__(
        self,
        cache: GuidelineCache,
        enricher: Enricher | None = None,
        concurrency: int | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.cache = cache
        self.enricher = enricher
        self.concurrency = max(
            1, concurrency if concurrency is not None else settings.enrichment_concurrency
        )
        self.timeout = timeout if timeout is not None else settings.enrichment_timeout
        self._clock = clock

    async def build(self, scan: ScanResult, want_enrichment: bool = False) -> ReportDocument:
        diagnostics: list[str] = list(scan.diagnostics)

        guidelines: CachedGuidelines | None = None
        guidelines_error: str | None = None
        try:
            guidelines = await self.cache.get()
        except UpstreamUnavailable as exc:
            logger.warning("Building report without guidelines: %s", exc)
            guidelines_error = exc.message
            diagnostics.append(f"{exc.kind}: {exc.message}")
        else:
            if guidelines.stale:
                diagnostics.append("Guidelines served from a stale cache entry")

        analysis: Analysis | None = None
        enrichment_error: str | None = None
        if want_enrichment:
            analysis, scan, enrichment_error = await self._enrich(scan, diagnostics)

        return ReportDocument(
            generated_at=self._clock(),
            scan=scan,
            guidelines=guidelines,
            analysis=analysis,
            diagnostics=tuple(diagnostics),
            guidelines_error=guidelines_error,
            enrichment_error=enrichment_error,
        )

    async def _enrich(
        self, scan: ScanResult, diagnostics: list[str]
    ) -> tuple[Analysis | None, ScanResult, str | None]:
        """Attach analysis and fixes. Returns (analysis, scan, error)."""
        if self.enricher is None:
            diagnostics.append("Enrichment requested but not configured")
            return None, scan, "Enrichment not configured"

        logger.info("Running enrichment via %s", self.enricher.name)
        outcome = await self._attempt(lambda: self.enricher.analyze(scan))
        if not outcome.ok:
            diagnostics.append(f"{outcome.error.kind}: {outcome.error.message}")
            return None, scan, outcome.error.message

        # Per-finding fixes only follow a successful analysis.
        if not isinstance(scan, StructuredScan) or not scan.findings:
            return outcome.value, scan, None

        findings, error = await self._suggest_fixes(scan.findings)
        if error:
            diagnostics.append(error)
        return outcome.value, scan.with_findings(findings), error

    async def _suggest_fixes(
        self, findings: tuple[Finding, ...]
    ) -> tuple[list[Finding], str | None]:
        """Fan out fix requests with at most ``concurrency`` in flight."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(finding: Finding) -> Result[str]:
            if finding.suggested_fix:
                return Result.success(finding.suggested_fix)
            async with semaphore:
                return await self._attempt(lambda: self.enricher.suggest_fix(finding))

        outcomes = await asyncio.gather(*[_one(f) for f in findings])

        enriched: list[Finding] = []
        failures: list[str] = []
        for finding, outcome in zip(findings, outcomes):
            if outcome.ok:
                enriched.append(finding.with_fix(outcome.value))
            else:
                failures.append(outcome.error.message)
                enriched.append(finding)

        if not failures:
            logger.info("Attached fix suggestions to %d findings", len(findings))
            return enriched, None
        error = (
            f"{len(failures)} of {len(findings)} fix suggestions failed: {failures[0]}"
        )
        logger.warning("%s", error)
        return enriched, error

    async def _attempt(self, call: Callable[[], Awaitable[T]]) -> Result[T]:
        """Run one enrichment call under the timeout, folding failures into a Result."""
        try:
            return Result.success(await asyncio.wait_for(call(), timeout=self.timeout))
        except asyncio.TimeoutError:
            logger.warning("Enrichment call timed out after %ss", self.timeout)
            return Result.failure(
                EnrichmentFailed(f"Enrichment timed out after {self.timeout}s")
            )
        except EnrichmentFailed as exc:
            logger.warning("Enrichment failed: %s", exc)
            return Result.failure(exc)
        except Exception as exc:
            logger.exception("Unexpected enrichment error")
            return Result.failure(EnrichmentFailed(f"Unexpected enrichment error: {exc}"))
