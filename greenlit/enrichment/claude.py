"""Claude enricher — Anthropic Messages API via httpx."""

from __future__ import annotations

import json
import logging
import re

import httpx

from greenlit.config import settings
from greenlit.errors import EnrichmentFailed
from greenlit.models.report import Analysis, Recommendation
from greenlit.models.scan import Finding, ScanResult

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"

ANALYSIS_PROMPT = """\
You are an expert iOS App Store reviewer and compliance analyst. Analyze the \
following app compliance scan results and provide:

1. Overall risk assessment (Low/Medium/High/Critical)
2. Top 3 actionable recommendations to fix issues
3. Estimated rejection probability (0-100%)
4. Prioritization of fixes (what to fix first)

Respond with valid JSON in this exact format:
{
  "riskLevel": "Low|Medium|High|Critical",
  "rejectionProbability": 0,
  "summary": "Brief 2-3 sentence summary",
  "recommendations": [
    {
      "priority": 1,
      "title": "Fix title",
      "description": "Detailed fix description",
      "impact": "High|Medium|Low",
      "effort": "Hours|Days|Weeks"
    }
  ],
  "criticalBlockers": ["List of must-fix items before submission"],
  "timeline": "Estimated time to make app submission-ready"
}\
"""

FIX_PROMPT = """\
As an iOS developer expert, provide a specific, actionable fix for this App \
Store compliance issue:

Issue: {title}
Description: {description}
Guideline: {guideline}

Provide a single-paragraph fix suggestion (2-3 sentences) that is specific, \
technically accurate and easy to implement. Reply with the suggestion only.\
"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class ClaudeEnricher:
    """Enrichment using Anthropic's Claude API."""

    name: str = "Claude"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or settings.anthropic_api_key
        self.model = model or settings.enrichment_model
        self.timeout = timeout if timeout is not None else settings.enrichment_timeout
        self._transport = transport

    async def analyze(self, scan: ScanResult) -> Analysis:
        user_content = "Scan Results:\n" + json.dumps(scan.to_dict(), indent=2)
        raw_text = await self._complete(ANALYSIS_PROMPT, user_content, max_tokens=2000)
        return self._parse_analysis(raw_text)

    async def suggest_fix(self, finding: Finding) -> str:
        prompt = FIX_PROMPT.format(
            title=finding.title,
            description=finding.description or "Not specified",
            guideline=finding.guideline_ref or "Not specified",
        )
        text = (await self._complete(None, prompt, max_tokens=200)).strip()
        if not text:
            raise EnrichmentFailed("Empty fix suggestion", finding=finding.title)
        return text

    async def _complete(self, system: str | None, user_content: str, max_tokens: int) -> str:
        """Send one message and return the first text block of the reply."""
        if not self.api_key:
            raise EnrichmentFailed("No Anthropic API key configured")

        body: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": user_content}],
        }
        if system:
            body["system"] = system

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    ANTHROPIC_API_URL,
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": "2023-06-01",
                        "content-type": "application/json",
                    },
                    json=body,
                )
                response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.error("Claude request failed: %s", exc)
            raise EnrichmentFailed(f"Claude request failed: {exc}") from exc
        except ValueError as exc:
            raise EnrichmentFailed("Claude returned a non-JSON response") from exc

        try:
            for block in data["content"]:
                if block.get("type") == "text":
                    return block.get("text", "")
        except (KeyError, TypeError, AttributeError) as exc:
            raise EnrichmentFailed("Unexpected Claude response shape") from exc
        raise EnrichmentFailed("Claude response contained no text block")

    def _parse_analysis(self, raw_text: str) -> Analysis:
        """Parse the analysis reply, tolerating code fences and surrounding prose."""
        text = raw_text.strip()
        if text.startswith("```"):
            text = text.split("\n", 1)[-1]
            text = text.rsplit("```", 1)[0]

        match = _JSON_OBJECT.search(text)
        if not match:
            raise EnrichmentFailed("Failed to parse AI response: no JSON object")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            logger.warning("Malformed analysis JSON from Claude: %s", exc)
            raise EnrichmentFailed(f"Failed to parse AI response: {exc}") from exc
        if not isinstance(parsed, dict):
            raise EnrichmentFailed("Failed to parse AI response: not an object")

        recommendations = tuple(
            Recommendation(
                title=str(rec.get("title") or f"Recommendation {i}"),
                description=str(rec.get("description") or ""),
                priority=_as_int(rec.get("priority")),
                impact=_as_text(rec.get("impact")),
                effort=_as_text(rec.get("effort")),
            )
            for i, rec in enumerate(_as_list(parsed.get("recommendations")), 1)
            if isinstance(rec, dict)
        )
        return Analysis(
            risk_level=str(parsed.get("riskLevel") or "Unable to assess"),
            summary=str(parsed.get("summary") or ""),
            rejection_probability=_as_int(parsed.get("rejectionProbability")),
            recommendations=recommendations,
            critical_blockers=tuple(
                str(b) for b in _as_list(parsed.get("criticalBlockers"))
            ),
            timeline=_as_text(parsed.get("timeline")),
            model=self.model,
        )


def _as_list(value: object) -> list:
    return value if isinstance(value, list) else []


def _as_text(value: object) -> str | None:
    return None if value is None else str(value)


def _as_int(value: object) -> int | None:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return None
