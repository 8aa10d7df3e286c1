"""Guideline fetcher — scrapes the App Store Review Guidelines page via httpx."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

import httpx
from bs4 import BeautifulSoup

from greenlit.config import settings
from greenlit.errors import UpstreamUnavailable
from greenlit.models.guideline import GuidelineDocument, GuidelineSection

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Greenlit/1.0"
)

FALLBACK_SECTIONS: tuple[GuidelineSection, ...] = (
    GuidelineSection(
        1,
        "Safety",
        "Apps must be safe for users. Any content that is offensive, insensitive, "
        "upsetting, or is intended to disgust users will be rejected.",
    ),
    GuidelineSection(
        2,
        "Performance",
        "Apps should include features, content, and UI that elevate them beyond a "
        "repackaged website. Apps should use APIs and frameworks for their intended "
        "purposes and indicate that integration in their app description.",
    ),
    GuidelineSection(
        3,
        "Business",
        "There are many ways to monetize your app on the App Store. If your business "
        "model isn't obvious, make sure to explain in its metadata and App Review notes.",
    ),
    GuidelineSection(
        4,
        "Design",
        "Apple customers place a high value on products that are simple, refined, "
        "innovative, and easy to use. Keep these principles in mind as you work on "
        "your app's design.",
    ),
    GuidelineSection(
        5,
        "Legal",
        "Apps must comply with all legal requirements in any location where you make "
        "them available. It is your responsibility to understand and make sure your "
        "app conforms with all local laws.",
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuidelineFetcher:
    """Reads the guidelines page once per call. Holds no state between calls."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.url = url or settings.guidelines_url
        self.timeout = timeout if timeout is not None else settings.guidelines_timeout
        self._transport = transport
        self._clock = clock

    async def fetch(self) -> GuidelineDocument:
        """Fetch and parse the guidelines page.

        Raises UpstreamUnavailable on any network or HTTP failure. A page that
        loads but yields no sections produces the built-in fallback set.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(self.url, headers={"User-Agent": USER_AGENT})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to fetch guidelines from %s: %s", self.url, exc)
            raise UpstreamUnavailable(
                f"Failed to fetch guidelines: {exc}", url=self.url
            ) from exc

        sections = parse_sections(response.text)
        if not sections:
            logger.warning("No guideline sections found at %s, using fallback", self.url)
            return self.fallback_document()

        logger.info("Fetched %d guideline sections from %s", len(sections), self.url)
        return GuidelineDocument(
            fetched_at=self._clock(),
            source_url=self.url,
            sections=sections,
        )

    def fallback_document(self) -> GuidelineDocument:
        """The fixed built-in guideline set."""
        return GuidelineDocument(
            fetched_at=self._clock(),
            source_url=self.url,
            sections=FALLBACK_SECTIONS,
            fallback=True,
        )


def parse_sections(html: str) -> tuple[GuidelineSection, ...]:
    """Extract (title, first paragraph) pairs from each ``article section``."""
    soup = BeautifulSoup(html, "html.parser")
    sections: list[GuidelineSection] = []
    for i, node in enumerate(soup.select("article section"), 1):
        heading = node.find("h2")
        paragraph = node.find("p")
        title = heading.get_text(strip=True) if heading else ""
        body = " ".join(paragraph.get_text().split()) if paragraph else ""
        if title and body:
            sections.append(GuidelineSection(index=i, title=title, body=body))
    return tuple(sections)
