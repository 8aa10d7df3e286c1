"""Report document and enrichment analysis data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from greenlit.models.guideline import CachedGuidelines
from greenlit.models.scan import ScanResult


@dataclass(frozen=True)
class Recommendation:
    """A prioritized remediation step proposed by the enrichment service."""

    title: str
    description: str = ""
    priority: int | None = None
    impact: str | None = None
    effort: str | None = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "impact": self.impact,
            "effort": self.effort,
        }


@dataclass(frozen=True)
class Analysis:
    """Whole-scan assessment returned by the enrichment service."""

    risk_level: str
    summary: str = ""
    rejection_probability: int | None = None
    recommendations: tuple[Recommendation, ...] = ()
    critical_blockers: tuple[str, ...] = ()
    timeline: str | None = None
    model: str = ""
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "riskLevel": self.risk_level,
            "summary": self.summary,
            "rejectionProbability": self.rejection_probability,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "criticalBlockers": list(self.critical_blockers),
            "timeline": self.timeline,
            "model": self.model,
            "analyzedAt": self.analyzed_at.isoformat(),
        }


@dataclass(frozen=True)
class ReportDocument:
    """Everything a compliance report shows, assembled once per scan request."""

    generated_at: datetime
    scan: ScanResult
    guidelines: CachedGuidelines | None = None
    analysis: Analysis | None = None
    diagnostics: tuple[str, ...] = ()
    guidelines_error: str | None = None
    enrichment_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "generatedAt": self.generated_at.isoformat(),
            "scan": self.scan.to_dict(),
            "guidelines": self.guidelines.to_dict() if self.guidelines else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "diagnostics": list(self.diagnostics),
            "guidelinesError": self.guidelines_error,
            "enrichmentError": self.enrichment_error,
        }
