"""Paginated layout — places report blocks onto fixed-size pages.

Layout is a pure function of the ReportDocument: ``compose`` turns the
document into an ordered list of blocks with measured heights, and
``paginate`` assigns each block to a page with a running vertical cursor.

Blocks are never split. A block that does not fit below the cursor moves to
the top of a new page; a block taller than an entire page body is placed
alone at the top of a fresh page and marked as overflowing. The footer
always sits on its own trailing page.
"""

from __future__ import annotations

import textwrap
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from greenlit.models.report import Analysis, ReportDocument
from greenlit.models.scan import Finding, ScanStatus, Severity, UnparsedScan

REPORT_TITLE = "iOS App Store Compliance Report"


class BlockKind(Enum):
    TITLE = "title"
    SUMMARY = "summary"
    FINDING = "finding"
    RECOMMENDATIONS = "recommendations"
    FOOTER = "footer"


@dataclass(frozen=True)
class ColorBand:
    name: str
    hex: str


RED = ColorBand("red", "#EF4444")
AMBER = ColorBand("amber", "#F59E0B")
BLUE = ColorBand("blue", "#3B82F6")
GREEN = ColorBand("green", "#10B981")
GRAY = ColorBand("gray", "#6B7280")

SEVERITY_BANDS: dict[str, ColorBand] = {
    Severity.CRITICAL.value: RED,
    Severity.WARNING.value: AMBER,
    Severity.INFO.value: BLUE,
}

STATUS_BANDS: dict[str, ColorBand] = {
    ScanStatus.GREENLIT.value: GREEN,
    ScanStatus.WARNING.value: AMBER,
    ScanStatus.BLOCKED.value: RED,
}

_SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}


def severity_band(severity: Severity | str | None) -> ColorBand:
    """Band for a finding severity; anything unrecognised is gray."""
    key = severity.value if isinstance(severity, Severity) else str(severity).upper()
    return SEVERITY_BANDS.get(key, GRAY)


def status_band(status: ScanStatus | str | None) -> ColorBand:
    key = status.value if isinstance(status, ScanStatus) else str(status).upper()
    return STATUS_BANDS.get(key, GRAY)


def sort_by_severity(findings: Iterable[Finding]) -> list[Finding]:
    """Stable CRITICAL → WARNING → INFO ordering.

    Rendering keeps document order; call this before building the report when
    grouped display is wanted.
    """
    return sorted(findings, key=lambda f: _SEVERITY_ORDER.get(f.severity, len(_SEVERITY_ORDER)))


@dataclass(frozen=True)
class PageGeometry:
    """Page size and text metrics, in points. Defaults to US Letter."""

    width: float = 612.0
    height: float = 792.0
    margin_top: float = 50.0
    margin_bottom: float = 50.0
    margin_left: float = 50.0
    margin_right: float = 50.0
    chars_per_line: int = 90
    heading_chars_per_line: int = 70
    line_height: float = 14.0
    heading_height: float = 22.0
    block_padding: float = 16.0

    @property
    def body_limit(self) -> float:
        """Lowest cursor position a block may reach."""
        return self.height - self.margin_bottom

    @property
    def body_height(self) -> float:
        return self.body_limit - self.margin_top


@dataclass(frozen=True)
class Block:
    """One unsplittable unit of report content."""

    kind: BlockKind
    heading: str
    paragraphs: tuple[str, ...]
    lines: tuple[str, ...]
    height: float
    band: ColorBand | None = None
    label: str | None = None


@dataclass(frozen=True)
class PlacedBlock:
    block: Block
    top: float
    overflow: bool = False


@dataclass(frozen=True)
class Page:
    number: int
    blocks: tuple[PlacedBlock, ...]

    @property
    def used_height(self) -> float:
        return sum(p.block.height for p in self.blocks)


def wrap_paragraphs(paragraphs: Sequence[str], chars_per_line: int) -> tuple[str, ...]:
    lines: list[str] = []
    for paragraph in paragraphs:
        wrapped = textwrap.wrap(paragraph, width=chars_per_line) if paragraph else []
        lines.extend(wrapped or [""])
    return tuple(lines)


class PaginatedRenderer:
    """Lays a ReportDocument out onto pages. Performs no I/O."""

    def __init__(self, geometry: PageGeometry | None = None) -> None:
        self.geometry = geometry or PageGeometry()

    def render(self, doc: ReportDocument) -> list[Page]:
        return self.paginate(self.compose(doc))

    # -- Composition --

    def compose(self, doc: ReportDocument) -> list[Block]:
        """Turn the document into blocks, in display order."""
        blocks = [self._title_block(doc), self._summary_block(doc)]
        blocks.extend(
            self._finding_block(i, finding)
            for i, finding in enumerate(doc.scan.findings, 1)
        )
        if doc.analysis is not None and doc.analysis.recommendations:
            blocks.append(self._recommendations_block(doc.analysis))
        blocks.append(self._footer_block())
        return blocks

    def make_block(
        self,
        kind: BlockKind,
        heading: str,
        paragraphs: Sequence[str],
        band: ColorBand | None = None,
        label: str | None = None,
    ) -> Block:
        """Build a block and measure its height from its wrapped text."""
        g = self.geometry
        lines = wrap_paragraphs(paragraphs, g.chars_per_line)
        height = g.block_padding + len(lines) * g.line_height
        if heading:
            heading_lines = textwrap.wrap(heading, width=g.heading_chars_per_line)
            height += g.heading_height * max(1, len(heading_lines))
        return Block(
            kind=kind,
            heading=heading,
            paragraphs=tuple(paragraphs),
            lines=lines,
            height=height,
            band=band,
            label=label,
        )

    def _title_block(self, doc: ReportDocument) -> Block:
        generated = doc.generated_at.strftime("%Y-%m-%d %H:%M %Z").strip()
        return self.make_block(
            BlockKind.TITLE,
            REPORT_TITLE,
            [f"Generated: {generated}", "Powered by Greenlit"],
        )

    def _summary_block(self, doc: ReportDocument) -> Block:
        scan = doc.scan
        counts = scan.counts
        paragraphs = [
            f"Critical Issues: {counts.critical}    "
            f"Warnings: {counts.warning}    Info: {counts.info}",
        ]
        if isinstance(scan, UnparsedScan):
            paragraphs.append(
                "The scanner output could not be parsed; the raw output is kept "
                "with the scan results."
            )
        paragraphs.append(self._guidelines_line(doc))
        if doc.analysis is not None:
            paragraphs.append(f"AI Risk Assessment: {doc.analysis.risk_level}")
            if doc.analysis.summary:
                paragraphs.append(doc.analysis.summary)
        elif doc.enrichment_error:
            paragraphs.append(f"AI analysis unavailable: {doc.enrichment_error}")
        return self.make_block(
            BlockKind.SUMMARY,
            "Executive Summary",
            paragraphs,
            band=status_band(scan.status),
            label=scan.status.value,
        )

    def _guidelines_line(self, doc: ReportDocument) -> str:
        cached = doc.guidelines
        if cached is None:
            reason = doc.guidelines_error or "source unreachable"
            return f"App Store Review Guidelines unavailable ({reason})."
        document = cached.document
        if document.fallback:
            freshness = "built-in summary"
        elif cached.stale:
            freshness = "stale cache"
        elif cached.cached:
            freshness = f"cached {int(cached.age.total_seconds() // 60)} minutes ago"
        else:
            freshness = "fetched live"
        return (
            f"Checked against {len(document.sections)} App Store Review Guideline "
            f"sections ({freshness}, {document.source_url})."
        )

    def _finding_block(self, position: int, finding: Finding) -> Block:
        paragraphs = [finding.description or "No description"]
        if finding.guideline_ref:
            paragraphs.append(f"Guideline: {finding.guideline_ref}")
        if finding.location:
            paragraphs.append(f"Location: {finding.location}")
        if finding.suggested_fix:
            paragraphs.append(f"Suggested Fix: {finding.suggested_fix}")
        return self.make_block(
            BlockKind.FINDING,
            finding.title or f"Finding #{position}",
            paragraphs,
            band=severity_band(finding.severity),
            label=finding.severity.value,
        )

    def _recommendations_block(self, analysis: Analysis) -> Block:
        paragraphs = []
        for i, rec in enumerate(analysis.recommendations, 1):
            text = f"{i}. {rec.title}"
            if rec.description:
                text += f": {rec.description}"
            paragraphs.append(text)
        if analysis.critical_blockers:
            paragraphs.append("Must fix before submission: " + "; ".join(analysis.critical_blockers))
        if analysis.timeline:
            paragraphs.append(f"Estimated timeline: {analysis.timeline}")
        return self.make_block(
            BlockKind.RECOMMENDATIONS, "AI-Powered Recommendations", paragraphs
        )

    def _footer_block(self) -> Block:
        return self.make_block(
            BlockKind.FOOTER,
            "",
            [
                "This report was generated by Greenlit, an App Store compliance scanner.",
                "Findings come from automated checks and should be confirmed before submission.",
            ],
        )

    # -- Pagination --

    def paginate(self, blocks: Sequence[Block]) -> list[Page]:
        """Assign blocks to pages in order, breaking before any block that would not fit."""
        g = self.geometry
        pages: list[Page] = []
        current: list[PlacedBlock] = []
        cursor = g.margin_top

        for block in blocks:
            must_break = block.kind is BlockKind.FOOTER or cursor + block.height > g.body_limit
            if current and must_break:
                pages.append(Page(number=len(pages) + 1, blocks=tuple(current)))
                current = []
                cursor = g.margin_top
            # Only a block alone at the top of a page can still overflow here.
            overflow = cursor + block.height > g.body_limit
            current.append(PlacedBlock(block=block, top=cursor, overflow=overflow))
            cursor += block.height

        if current:
            pages.append(Page(number=len(pages) + 1, blocks=tuple(current)))
        return pages
