"""Base protocol for enrichment services."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from greenlit.models.report import Analysis
from greenlit.models.scan import Finding, ScanResult


@runtime_checkable
class Enricher(Protocol):
    """Interface for services that add analysis and fixes to a scan.

    Implementations raise EnrichmentFailed on any failure, including replies
    they cannot parse.
    """

    name: str

    async def analyze(self, scan: ScanResult) -> Analysis:
        """Assess the scan as a whole."""
        ...

    async def suggest_fix(self, finding: Finding) -> str:
        """Propose a short, actionable fix for one finding."""
        ...
