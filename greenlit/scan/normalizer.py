"""Scan normalizer — turns whatever the scanner printed into a ScanResult.

The scanner's output format is not guaranteed, so ``normalize`` accepts any
input and never raises. Two structured shapes are recognised:

* the canonical shape this service emits itself::

    {"status": "BLOCKED", "counts": {"critical": 1, "warning": 0, "info": 0},
     "findings": [...]}

* the scanner's native shape::

    {"summary": {"status": "BLOCKED", "critical": 1, "warnings": 0, "info": 0},
     "findings": [...]}

Everything else becomes an UnparsedScan carrying the raw text.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from greenlit.errors import MalformedScanOutput
from greenlit.models.scan import (
    Finding,
    ScanResult,
    ScanStatus,
    Severity,
    SeverityCounts,
    StructuredScan,
    UnparsedScan,
)

logger = logging.getLogger(__name__)

_GUIDELINE_KEYS = ("guidelineRef", "guideline_ref", "guideline")
_LOCATION_KEYS = ("location", "file", "path")
_FIX_KEYS = ("suggestedFix", "suggested_fix", "fixSuggestion")


def normalize(raw: object, *, stderr: str = "", exit_code: int = 0) -> ScanResult:
    """Convert raw scanner output into a canonical ScanResult."""
    if isinstance(raw, (bytes, bytearray)):
        text = bytes(raw).decode("utf-8", errors="replace")
    elif isinstance(raw, str):
        text = raw
    else:
        text = "" if raw is None else str(raw)

    try:
        payload = json.loads(text)
        return _from_payload(payload, stderr=stderr, exit_code=exit_code)
    except (ValueError, RecursionError, MalformedScanOutput) as exc:
        logger.warning("Scanner output is not structured (%s); keeping raw text", exc)
        return UnparsedScan(
            unparsed=text,
            stderr=stderr,
            exit_code=exit_code,
            diagnostics=(f"{MalformedScanOutput.kind}: {exc}",),
        )


def _from_payload(payload: Any, *, stderr: str, exit_code: int) -> ScanResult:
    if not isinstance(payload, dict):
        raise MalformedScanOutput(f"expected a JSON object, got {type(payload).__name__}")

    if "unparsed" in payload:
        return UnparsedScan(
            unparsed=str(payload.get("unparsed") or ""),
            stderr=str(payload.get("stderr") or stderr),
            exit_code=_as_int(payload.get("exitCode"), exit_code),
        )

    raw_findings = payload.get("findings", [])
    if not isinstance(raw_findings, list):
        raise MalformedScanOutput("'findings' is not a list")

    if "counts" in payload:
        reported_status = payload.get("status")
        reported_counts = payload.get("counts")
    elif "summary" in payload:
        summary = payload.get("summary")
        if not isinstance(summary, dict):
            raise MalformedScanOutput("'summary' is not an object")
        reported_status = summary.get("status")
        reported_counts = {
            "critical": summary.get("critical"),
            "warning": summary.get("warnings", summary.get("warning")),
            "info": summary.get("info"),
        }
        if all(v is None for v in reported_counts.values()):
            reported_counts = None
    elif "status" in payload or "findings" in payload:
        reported_status = payload.get("status")
        reported_counts = None
    else:
        raise MalformedScanOutput("no status, counts, summary or findings keys")

    diagnostics: list[str] = []
    findings = tuple(
        _parse_finding(item, i, diagnostics) for i, item in enumerate(raw_findings, 1)
    )

    counts = SeverityCounts.tally(findings)
    if reported_counts is not None and _read_counts(reported_counts) != counts:
        note = (
            f"Reported counts {_read_counts(reported_counts).to_dict()} disagree with "
            f"findings {counts.to_dict()}; recomputed from findings"
        )
        logger.info("%s", note)
        diagnostics.append(note)

    status = _parse_status(reported_status)
    if status is None:
        status = _derive_status(counts)
        diagnostics.append(
            f"Status {reported_status!r} not recognised; derived {status.value} from findings"
        )

    return StructuredScan(
        status=status,
        counts=counts,
        findings=findings,
        diagnostics=tuple(diagnostics),
    )


def _parse_finding(item: Any, position: int, diagnostics: list[str]) -> Finding:
    if not isinstance(item, dict):
        raise MalformedScanOutput(f"finding #{position} is not an object")

    raw_severity = item.get("severity")
    try:
        severity = Severity(str(raw_severity).strip().upper())
    except ValueError:
        severity = Severity.INFO
        diagnostics.append(
            f"Finding #{position} has unknown severity {raw_severity!r}; treated as INFO"
        )

    return Finding(
        severity=severity,
        title=_first_text(item, ("title",)) or f"Finding #{position}",
        description=_first_text(item, ("description", "message")) or "",
        guideline_ref=_first_text(item, _GUIDELINE_KEYS),
        location=_first_text(item, _LOCATION_KEYS),
        suggested_fix=_first_text(item, _FIX_KEYS),
    )


def _first_text(item: dict, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = item.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def _parse_status(value: Any) -> ScanStatus | None:
    if value is None:
        return None
    try:
        return ScanStatus(str(value).strip().upper())
    except ValueError:
        return None


def _derive_status(counts: SeverityCounts) -> ScanStatus:
    if counts.critical:
        return ScanStatus.BLOCKED
    if counts.warning:
        return ScanStatus.WARNING
    return ScanStatus.GREENLIT


def _read_counts(value: Any) -> SeverityCounts:
    if not isinstance(value, dict):
        return SeverityCounts(critical=-1, warning=-1, info=-1)
    return SeverityCounts(
        critical=_as_int(value.get("critical"), 0),
        warning=_as_int(value.get("warning", value.get("warnings")), 0),
        info=_as_int(value.get("info"), 0),
    )


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default
