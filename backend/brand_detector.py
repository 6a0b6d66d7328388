"""Creator Vetting Pipeline - Brand/Ad Detector
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Tier 2: one model call per text-bearing item extracting brand mentions,
plus free local detection of ad disclosures (#ad, "sponsored by", ...).
Without a model provider only the local disclosure check runs.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ai_client import AIClient, extract_json_array
from errors import AnalysisError, ConfigError
from models import Evidence, LogoDetection
from rate_limit import DependencyPool

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 3000       # Characters sent to the model per item
MAX_BRAND_TOKENS = 2048

# Disclosure hashtags, including German, Spanish and French variants
AD_HASHTAGS = {
    "ad", "sponsored", "gifted", "partnership", "paid", "ambassador", "collab",
    "promo", "advertisement", "paidpartnership", "brandpartner",
    "werbung", "anzeige", "gesponsert", "kooperation",
    "publicidad", "patrocinado",
    "pub", "partenariat", "sponsorise",
}

AD_PHRASES = (
    "thank you to", "thanks to", "partnered with", "in partnership with",
    "sponsored by", "brought to you by", "paid promotion", "gifted by",
    "use my code", "use code", "discount code", "affiliate link",
)

HASHTAG_PATTERN = re.compile(r"#(\w+)")

BRAND_CONFIDENCE_LEVELS = {"high", "medium", "low"}

BRAND_DETECTION_SYSTEM_PROMPT = """You are a brand detection specialist analyzing social media content for a brand safety review.

Extract ALL brand mentions including product names, company names, service names, store names and food/beverage brands.

For each brand, determine:
1. The exact brand name
2. The context where it appears (quote the relevant text)
3. Whether it seems like a sponsored/paid mention
4. Your confidence level

Return ONLY a JSON array (no markdown). If no brands are found, return [].

Format:
[
  {
    "brand": "Brand Name",
    "context": "relevant sentence or phrase",
    "isSponsored": true | false,
    "confidence": "high" | "medium" | "low"
  }
]"""

BRAND_DETECTION_USER_TEMPLATE = """CONTENT (from {platform}):
{content}

Extract every brand mention as a JSON array."""


@dataclass
class BrandMention:
    brand: str
    context: str = ""
    is_sponsored: bool = False
    confidence: str = "medium"


@dataclass
class BrandDetectionResult:
    is_ad: bool
    ad_indicators: list[str] = field(default_factory=list)
    brands: list[BrandMention] = field(default_factory=list)
    summary: str = ""
    method: str = "heuristic"       # anthropic | openai | heuristic | error

    @property
    def sponsored_brands(self) -> list[str]:
        return [b.brand for b in self.brands if b.is_sponsored]


def detect_ad_indicators(text: str) -> list[str]:
    """Disclosure hashtags and phrases found in `text`, in order found."""
    indicators: list[str] = []
    for tag in HASHTAG_PATTERN.findall(text or ""):
        tag = tag.lower()
        if tag in AD_HASHTAGS and f"#{tag}" not in indicators:
            indicators.append(f"#{tag}")

    lower = (text or "").lower()
    for phrase in AD_PHRASES:
        if phrase in lower:
            indicators.append(phrase)
    return indicators


def _validate_mentions(raw: list) -> list[BrandMention]:
    """Normalize model output, dropping malformed entries."""
    mentions = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        brand = str(entry.get("brand") or "").strip()
        if len(brand) < 2:
            continue
        confidence = str(entry.get("confidence") or "medium").lower()
        if confidence not in BRAND_CONFIDENCE_LEVELS:
            confidence = "medium"
        mentions.append(BrandMention(
            brand=brand,
            context=str(entry.get("context") or "")[:500],
            is_sponsored=entry.get("isSponsored") is True,
            confidence=confidence,
        ))
    return mentions


def _summarize(brands: list[BrandMention], indicators: list[str]) -> str:
    parts = []
    sponsored = [b.brand for b in brands if b.is_sponsored]
    organic = [b.brand for b in brands if not b.is_sponsored]
    if sponsored:
        parts.append(f"{len(sponsored)} sponsored brand(s): {', '.join(sponsored)}")
    if organic:
        parts.append(f"{len(organic)} organic mention(s): {', '.join(organic)}")

    summary = ". ".join(parts) if parts else "No brand mentions detected."
    if indicators and not sponsored:
        summary += " Ad indicators present but sponsor brand unclear."
    return summary


class BrandDetector:
    """Detects sponsorship disclosures and brand mentions in post text."""

    def __init__(self, ai_client: AIClient, pool: Optional[DependencyPool] = None):
        self.ai_client = ai_client
        self.pool = pool

    @property
    def is_ai_enabled(self) -> bool:
        return self.ai_client.is_ai_enabled

    async def detect(self, text: str, platform: str = "social") -> BrandDetectionResult:
        """Classify one item. Model failures yield no brands, never an exception."""
        if not text or not text.strip():
            return BrandDetectionResult(is_ad=False, summary="No content to analyze")

        indicators = detect_ad_indicators(text)
        brands: list[BrandMention] = []
        method = "heuristic"

        if self.is_ai_enabled:
            try:
                brands = await self._extract_brands(text, platform)
                method = self.ai_client.provider
            except (AnalysisError, ConfigError, ValueError) as e:
                logger.error(f"Brand detection failed ({platform}): {e}")
                method = "error"

        return BrandDetectionResult(
            is_ad=bool(indicators) or any(b.is_sponsored for b in brands),
            ad_indicators=indicators,
            brands=brands,
            summary=_summarize(brands, indicators),
            method=method,
        )

    async def _extract_brands(self, text: str, platform: str) -> list[BrandMention]:
        prompt = BRAND_DETECTION_USER_TEMPLATE.format(
            platform=platform.upper(),
            content=text[:MAX_CONTENT_LENGTH],
        )
        if self.pool is not None:
            async with self.pool.slot():
                response = await self.ai_client.complete(
                    BRAND_DETECTION_SYSTEM_PROMPT, prompt, max_tokens=MAX_BRAND_TOKENS, fast=True,
                )
        else:
            response = await self.ai_client.complete(
                BRAND_DETECTION_SYSTEM_PROMPT, prompt, max_tokens=MAX_BRAND_TOKENS, fast=True,
            )
        return _validate_mentions(extract_json_array(response))


def aggregate_brands(results: Iterable[BrandDetectionResult]) -> dict:
    """Unique brands, sponsored brands and mention counts across items."""
    brand_counts: dict[str, int] = {}
    display_names: dict[str, str] = {}
    sponsored: list[str] = []
    ad_posts = 0

    for result in results:
        if result.is_ad:
            ad_posts += 1
        for mention in result.brands:
            key = mention.brand.lower()
            brand_counts[key] = brand_counts.get(key, 0) + 1
            display_names.setdefault(key, mention.brand)
            if mention.is_sponsored and mention.brand not in sponsored:
                sponsored.append(mention.brand)

    ranked = sorted(brand_counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return {
        "all_brands": [display_names[key] for key, _ in ranked],
        "sponsored_brands": sponsored,
        "has_ads": ad_posts > 0,
        "ad_posts": ad_posts,
        "brand_counts": {display_names[key]: count for key, count in ranked},
    }


def find_competitor_mentions(
    brand_results: Iterable[tuple[str, BrandDetectionResult]],
    logo_detections: Iterable[tuple[str, LogoDetection]],
    competitors: Iterable[str],
) -> tuple[list[Evidence], list[str]]:
    """
    Match detected brands against the batch's competitor list.

    Args:
        brand_results: (item_id, result) pairs from Tier 2
        logo_detections: (item_id, logo) pairs from Tier 4
        competitors: competitor brand names

    Returns:
        (competitor evidence, competitor names with sponsored partnerships)
    """
    wanted = {c.strip().lower(): c.strip() for c in competitors if c and c.strip()}
    if not wanted:
        return [], []

    evidence: list[Evidence] = []
    partnerships: list[str] = []

    for item_id, result in brand_results:
        for mention in result.brands:
            name = wanted.get(mention.brand.lower())
            if name is None:
                continue
            evidence.append(Evidence(
                category="competitor",
                severity="high" if mention.is_sponsored else "medium",
                description=f"{'Sponsored' if mention.is_sponsored else 'Organic'} mention of competitor {name}",
                source="text",
                quote=mention.context or None,
                item_id=item_id,
            ))
            if mention.is_sponsored and name not in partnerships:
                partnerships.append(name)

    for item_id, logo in logo_detections:
        name = wanted.get(logo.brand.lower())
        if name is None:
            continue
        first = logo.appearances[0] if logo.appearances else None
        evidence.append(Evidence(
            category="competitor",
            severity="high" if logo.likely_sponsor else "medium",
            description=f"Competitor logo {name} visible for {logo.total_duration:.0f}s",
            source="visual",
            timestamp=first.start_time if first else None,
            end_timestamp=first.end_time if first else None,
            item_id=item_id,
        ))
        if logo.likely_sponsor and name not in partnerships:
            partnerships.append(name)

    return evidence, partnerships


def sponsor_evidence(brand_results: Iterable[tuple[str, BrandDetectionResult]]) -> list[Evidence]:
    """Low-severity record of each disclosed sponsorship."""
    evidence = []
    for item_id, result in brand_results:
        for brand in result.sponsored_brands:
            evidence.append(Evidence(
                category="sponsor",
                severity="low",
                description=f"Sponsored mention of {brand}",
                source="text",
                item_id=item_id,
            ))
    return evidence
