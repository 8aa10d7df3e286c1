"""Typst generator — serializes laid-out report pages to Typst source."""

from __future__ import annotations

from collections.abc import Sequence

from greenlit.report.layout import BlockKind, Page, PageGeometry, PlacedBlock

CONTENT_MARKER = "// GREENLIT:CONTENT"

DEFAULT_TEMPLATE = """\
#set document(title: "{title}", author: "Greenlit")
#set page(width: {width}pt, height: {height}pt, margin: (top: {top}pt, bottom: {bottom}pt, left: {left}pt, right: {right}pt))
#set text(size: 10pt)

#let report-block(title: none, label: none, band: none, paragraphs: (), size: 10pt) = block(
  width: 100%,
  inset: (y: 8pt),
  breakable: false,
  {{
    if label != none {{
      box(fill: band, inset: 4pt, radius: 2pt, text(fill: white, weight: "bold", label))
      h(6pt)
    }}
    if title != none {{
      text(weight: "bold", size: 12pt, title)
    }}
    for p in paragraphs {{
      par(text(size: size, p))
    }}
  }},
)

// GREENLIT:CONTENT
"""


class TypstGenerator:
    """Generates Typst source from a paginated report.

    Page breaks are emitted exactly where the layout put them, so the Typst
    output has the same page count as the page model.
    """

    def __init__(self, template: str | None = None) -> None:
        self._template = template

    def generate(
        self,
        pages: Sequence[Page],
        title: str = "Compliance Report",
        geometry: PageGeometry | None = None,
    ) -> str:
        """Produce a complete Typst document from laid-out pages."""
        content_lines: list[str] = []
        for i, page in enumerate(pages):
            if i:
                content_lines.append("#pagebreak()")
                content_lines.append("")
            content_lines.append(f"// page {page.number}")
            for placed in page.blocks:
                content_lines.append(self._render_block(placed))
                content_lines.append("")

        content = "\n".join(content_lines)
        return self._preamble(title, geometry or PageGeometry()).replace(
            CONTENT_MARKER, content
        )

    def _preamble(self, title: str, geometry: PageGeometry) -> str:
        if self._template is not None:
            return self._template
        return DEFAULT_TEMPLATE.format(
            title=self._escape(title),
            width=_pt(geometry.width),
            height=_pt(geometry.height),
            top=_pt(geometry.margin_top),
            bottom=_pt(geometry.margin_bottom),
            left=_pt(geometry.margin_left),
            right=_pt(geometry.margin_right),
        )

    def _render_block(self, placed: PlacedBlock) -> str:
        """Render one block as a report-block call."""
        block = placed.block
        args: list[str] = []
        if block.heading:
            size = "20pt" if block.kind is BlockKind.TITLE else "12pt"
            args.append(f'title: text(size: {size}, "{self._escape(block.heading)}")')
        if block.band is not None and block.label:
            args.append(f'label: "{self._escape(block.label)}"')
            args.append(f'band: rgb("{block.band.hex}")')
        paragraphs = ", ".join(f'"{self._escape(p)}"' for p in block.paragraphs)
        args.append(f"paragraphs: ({paragraphs},)" if block.paragraphs else "paragraphs: ()")
        if block.kind is BlockKind.FOOTER:
            args.append("size: 9pt")

        call = "#report-block(" + ", ".join(args) + ")"
        if block.kind is BlockKind.FOOTER:
            call = f"#align(center + horizon)[{call}]"
        if placed.overflow:
            call = f"// overflows page body\n{call}"
        return call

    def _escape(self, text: str) -> str:
        """Escape special Typst characters in string literals."""
        # Backslash first, then quotes
        return (
            text.replace("\\", "\\\\")
            .replace('"', '\\"')
            .replace("\n", "\\n")
            .replace("\r", "")
        )


def _pt(value: float) -> str:
    return f"{value:g}"
