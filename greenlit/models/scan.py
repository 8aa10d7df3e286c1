"""Scan result data models."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Union


class Severity(Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


class ScanStatus(Enum):
    GREENLIT = "GREENLIT"
    WARNING = "WARNING"
    BLOCKED = "BLOCKED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class SeverityCounts:
    """Per-severity tally of findings."""

    critical: int = 0
    warning: int = 0
    info: int = 0

    @classmethod
    def tally(cls, findings: Iterable[Finding]) -> SeverityCounts:
        critical = warning = info = 0
        for finding in findings:
            if finding.severity is Severity.CRITICAL:
                critical += 1
            elif finding.severity is Severity.WARNING:
                warning += 1
            else:
                info += 1
        return cls(critical=critical, warning=warning, info=info)

    def to_dict(self) -> dict[str, int]:
        return {"critical": self.critical, "warning": self.warning, "info": self.info}


@dataclass(frozen=True)
class Finding:
    """A single policy violation reported by the scanner."""

    severity: Severity
    title: str
    description: str = ""
    guideline_ref: str | None = None
    location: str | None = None
    suggested_fix: str | None = None

    def with_fix(self, text: str) -> Finding:
        """Return a copy carrying a suggested fix. An existing fix is kept."""
        if self.suggested_fix:
            return self
        return replace(self, suggested_fix=text)

    def to_dict(self) -> dict:
        data: dict = {
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
        }
        if self.guideline_ref is not None:
            data["guidelineRef"] = self.guideline_ref
        if self.location is not None:
            data["location"] = self.location
        if self.suggested_fix is not None:
            data["suggestedFix"] = self.suggested_fix
        return data


@dataclass(frozen=True)
class StructuredScan:
    """Scanner output that parsed into status, counts and findings."""

    status: ScanStatus
    counts: SeverityCounts
    findings: tuple[Finding, ...] = ()
    diagnostics: tuple[str, ...] = ()

    def with_findings(self, findings: Iterable[Finding]) -> StructuredScan:
        return replace(self, findings=tuple(findings))

    def to_dict(self) -> dict:
        data = {
            "status": self.status.value,
            "counts": self.counts.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
        }
        if self.diagnostics:
            data["diagnostics"] = list(self.diagnostics)
        return data


@dataclass(frozen=True)
class UnparsedScan:
    """Scanner output that could not be understood; the raw text is kept."""

    unparsed: str
    stderr: str = ""
    exit_code: int = 0
    diagnostics: tuple[str, ...] = ()
    status: ScanStatus = field(default=ScanStatus.UNKNOWN, init=False)
    counts: SeverityCounts = field(default_factory=SeverityCounts, init=False)
    findings: tuple[Finding, ...] = field(default=(), init=False)

    def to_dict(self) -> dict:
        data = {
            "status": self.status.value,
            "counts": self.counts.to_dict(),
            "findings": [],
            "unparsed": self.unparsed,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
        }
        if self.diagnostics:
            data["diagnostics"] = list(self.diagnostics)
        return data


ScanResult = Union[StructuredScan, UnparsedScan]
