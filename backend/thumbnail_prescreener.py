"""Creator Vetting Pipeline - Thumbnail Pre-Screener
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Tier 3: one cheap vision call per visual asset deciding whether the
expensive full media analysis is needed.

Only a "safe" verdict with confidence above the threshold skips full
analysis. Every other verdict, parse failure, fetch error or missing
configuration routes the asset to full analysis.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ai_client import IMAGE_FETCH_TIMEOUT, AIClient, ImageInput, extract_json_object, load_image
from errors import AnalysisError, ConfigError
from models import ContentItem, PreScreenResult
from rate_limit import DependencyPool

logger = logging.getLogger(__name__)

MAX_PRESCREEN_TOKENS = 300
PRESCREEN_REASONS = {"safe", "brands_detected", "uncertain", "concerning"}

PARSE_FAILURE_CONFIDENCE = 0.3
MODEL_DEFAULT_CONFIDENCE = 0.5

PRESCREEN_SYSTEM_PROMPT = "You are a brand safety pre-screener. Respond with JSON only."

PRESCREEN_PROMPT = """Analyze this video thumbnail for brand safety pre-screening.

Respond with ONLY a JSON object:
{
  "needs_analysis": true/false,
  "reason": "safe" | "brands_detected" | "uncertain" | "concerning",
  "brands": ["any", "visible", "brands"],
  "confidence": 0.0-1.0,
  "description": "one sentence describing the thumbnail"
}

Guidelines:
- "safe" (needs_analysis=false): Generic lifestyle content, nature, food, selfies with NO visible brands/logos/products
- "brands_detected" (needs_analysis=true): Any visible brand logos, product packaging, or sponsored content indicators
- "concerning" (needs_analysis=true): Content that might be controversial, adult-oriented, or unsafe
- "uncertain" (needs_analysis=true): Cannot clearly determine safety from thumbnail alone

Be conservative - if uncertain, mark as needs_analysis=true."""


def _unparseable(description: str) -> PreScreenResult:
    return PreScreenResult(
        needs_full_analysis=True,
        reason="uncertain",
        confidence=PARSE_FAILURE_CONFIDENCE,
        description=description,
    )


def _confidence(raw: object) -> float:
    if not isinstance(raw, (int, float)) or isinstance(raw, bool) or not math.isfinite(raw):
        return MODEL_DEFAULT_CONFIDENCE
    return round(min(max(float(raw), 0.0), 1.0), 2)


def parse_prescreen_response(text: str) -> PreScreenResult:
    """
    Parse the model's verdict. Unknown reasons become "uncertain"; an
    unparseable or malformed response becomes uncertain with confidence 0.3.
    """
    try:
        parsed = extract_json_object(text)
    except ValueError:
        logger.warning("Pre-screen response was not valid JSON")
        return _unparseable("Could not parse pre-screen response")

    try:
        reason = parsed.get("reason")
        if reason not in PRESCREEN_REASONS:
            reason = "uncertain"

        brands = parsed.get("brands")
        if not isinstance(brands, list):
            brands = []
        brands = [str(b) for b in brands if str(b).strip()]

        return PreScreenResult(
            needs_full_analysis=reason != "safe" or parsed.get("needs_analysis") is True,
            reason=reason,
            confidence=_confidence(parsed.get("confidence", MODEL_DEFAULT_CONFIDENCE)),
            brands=brands,
            description=str(parsed.get("description") or ""),
        )
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Pre-screen response had an unexpected shape: {e}")
        return _unparseable("Malformed pre-screen response")


@dataclass
class PreScreenSummary:
    needs_analysis: list[ContentItem] = field(default_factory=list)
    safe_items: list[ContentItem] = field(default_factory=list)
    results: dict[str, PreScreenResult] = field(default_factory=dict)

    @property
    def savings_percent(self) -> float:
        total = len(self.needs_analysis) + len(self.safe_items)
        return round(len(self.safe_items) / total * 100, 1) if total else 0.0


class ThumbnailPreScreener:
    """Cheap vision gate in front of the full media analyzer."""

    def __init__(
        self,
        ai_client: AIClient,
        threshold: float = 0.7,
        pool: Optional[DependencyPool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = IMAGE_FETCH_TIMEOUT,
    ):
        self.ai_client = ai_client
        self.threshold = threshold
        self.pool = pool
        self.timeout = timeout
        self._http_client = http_client

    @property
    def is_enabled(self) -> bool:
        return self.ai_client.is_ai_enabled

    def should_skip_full_analysis(self, result: PreScreenResult) -> bool:
        """Skip only for "safe" with confidence strictly above the threshold."""
        return result.reason == "safe" and result.confidence > self.threshold

    async def prescreen(self, image_url: str) -> PreScreenResult:
        """Pre-screen one image. Never raises."""
        if not self.is_enabled:
            return PreScreenResult(
                needs_full_analysis=True,
                reason="uncertain",
                confidence=0.0,
                description="Pre-screening not configured",
            )

        try:
            image = await load_image(image_url, self._http_client, self.timeout)
            if self.pool is not None:
                async with self.pool.slot():
                    text = await self._ask_model(image)
            else:
                text = await self._ask_model(image)
            result = parse_prescreen_response(text)
        except (httpx.HTTPError, AnalysisError, ConfigError) as e:
            logger.error(f"Pre-screen failed for {image_url[:80]}: {e}")
            return PreScreenResult(
                needs_full_analysis=True,
                reason="uncertain",
                confidence=0.0,
                description=f"error: {e}",
            )

        result.needs_full_analysis = result.needs_full_analysis or not self.should_skip_full_analysis(result)
        return result

    async def _ask_model(self, image: ImageInput) -> str:
        return await self.ai_client.complete(
            PRESCREEN_SYSTEM_PROMPT,
            PRESCREEN_PROMPT,
            max_tokens=MAX_PRESCREEN_TOKENS,
            image=image,
            fast=True,
        )

    async def filter_for_full_analysis(self, items: list[ContentItem]) -> PreScreenSummary:
        """
        Split items into those needing full analysis and those that can skip.
        Items without a visual reference always need full analysis.
        """
        summary = PreScreenSummary()
        with_visual = [item for item in items if item.visual_reference]
        summary.needs_analysis.extend(item for item in items if not item.visual_reference)

        results = await asyncio.gather(*(self.prescreen(item.visual_reference) for item in with_visual))
        for item, result in zip(with_visual, results):
            summary.results[item.id] = result
            if result.needs_full_analysis:
                summary.needs_analysis.append(item)
            else:
                summary.safe_items.append(item)

        brands_count = sum(1 for r in summary.results.values() if r.reason == "brands_detected")
        logger.info(
            f"Pre-screen: {len(items)} items, {len(summary.safe_items)} can skip "
            f"({summary.savings_percent}% savings), {brands_count} with brands"
        )
        return summary
