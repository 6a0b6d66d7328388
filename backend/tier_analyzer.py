"""Creator Vetting Pipeline - Multi-Tier Analyzer
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Routes a creator's posts through the analysis tiers, cheapest first:

  Tier 1  keyword screen       every item, no network
  Tier 2  brand/ad detection   text-bearing items, one model call each
  Tier 3  thumbnail pre-screen every visual asset, one cheap vision call
  Tier 4  full media analysis  only assets Tier 3 did not clear as safe

Tier-local failures fall back to the conservative outcome. A Tier 4
failure on a gated-in asset raises AnalysisError.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from brand_detector import (
    BrandDetectionResult,
    BrandDetector,
    aggregate_brands,
    find_competitor_mentions,
    sponsor_evidence,
)
from config import VettingConfig
from content_cache import lookback_cutoff
from errors import ConfigError
from events import AnalysisStep, BatchEventStream
from keyword_screener import KeywordScreener, KeywordScreenResult, aggregate_keyword_results
from media_analyzer import FullMediaAnalyzer
from models import (
    ContentItem,
    Creator,
    Evidence,
    Finding,
    MediaAssetResult,
    PlatformSummary,
    SocialMediaResults,
    VideoAnalysisResults,
)
from thumbnail_prescreener import PreScreenSummary, ThumbnailPreScreener

logger = logging.getLogger(__name__)

TIER_KEYWORD = "keyword_screen"
TIER_BRAND = "brand_detection"
TIER_PRESCREEN = "thumbnail_prescreen"
TIER_VIDEO = "video_analysis"
TIER_IMAGE = "image_analysis"


@dataclass
class CreatorAnalysis:
    items: list[ContentItem] = field(default_factory=list)
    evidence: list[Evidence] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    keyword_results: dict[str, KeywordScreenResult] = field(default_factory=dict)
    brand_results: list[tuple[str, BrandDetectionResult]] = field(default_factory=list)
    prescreen: Optional[PreScreenSummary] = None
    media_results: list[MediaAssetResult] = field(default_factory=list)
    competitor_partnerships: list[str] = field(default_factory=list)
    tiers_completed: set[str] = field(default_factory=set)
    disabled_tiers: list[str] = field(default_factory=list)
    dropped_items: int = 0

    @property
    def analysis_completed(self) -> bool:
        return bool(self.tiers_completed)

    @property
    def brand_summary(self) -> dict:
        return aggregate_brands(result for _, result in self.brand_results)

    @property
    def sources(self) -> dict[str, str]:
        return {item.id: item.permalink for item in self.items if item.permalink}

    def social_media_results(self, platforms: dict[str, PlatformSummary]) -> SocialMediaResults:
        keywords = aggregate_keyword_results(self.keyword_results.values())
        brands = self.brand_summary
        return SocialMediaResults(
            platforms=platforms,
            keyword_counts=keywords["counts"],
            flagged_terms=keywords["flagged_terms"],
            brands=brands["all_brands"],
            sponsored_brands=brands["sponsored_brands"],
            ad_posts=brands["ad_posts"],
            competitor_partnerships=self.competitor_partnerships,
            disabled_tiers=self.disabled_tiers,
        )

    def video_analysis_results(self) -> Optional[VideoAnalysisResults]:
        if self.prescreen is None:
            return None
        return VideoAnalysisResults(
            assets_prescreened=len(self.prescreen.results),
            assets_skipped=len(self.prescreen.safe_items),
            assets=self.media_results,
        )


class MultiTierAnalyzer:
    """Per-creator tier routing. Holds no per-creator state."""

    def __init__(
        self,
        keyword_screener: KeywordScreener,
        brand_detector: BrandDetector,
        prescreener: ThumbnailPreScreener,
        media_analyzer: FullMediaAnalyzer,
        config: VettingConfig,
    ):
        self.keyword_screener = keyword_screener
        self.brand_detector = brand_detector
        self.prescreener = prescreener
        self.media_analyzer = media_analyzer
        self.config = config

    async def analyze_creator(
        self,
        creator: Creator,
        items: list[ContentItem],
        stream: BatchEventStream,
        competitors: Iterable[str] = (),
    ) -> CreatorAnalysis:
        analysis = CreatorAnalysis()

        async with stream.analysis_step(creator.id, AnalysisStep.VALIDATION):
            analysis.items = self._validate(items)
            analysis.dropped_items = len(items) - len(analysis.items)

        if not analysis.items:
            logger.warning(f"Creator {creator.id}: no analyzable content")
            return analysis

        async with stream.analysis_step(creator.id, AnalysisStep.PROFANITY_CHECK):
            self._screen_keywords(analysis)

        async with stream.analysis_step(creator.id, AnalysisStep.BRAND_DETECTION):
            await self._detect_brands(analysis)

        async with stream.analysis_step(creator.id, AnalysisStep.CONTENT_ANALYSIS):
            await self._analyze_media(creator, analysis)

        async with stream.analysis_step(creator.id, AnalysisStep.COMPETITOR_ANALYSIS):
            logos = [
                (asset.item_id, logo)
                for asset in analysis.media_results
                for logo in asset.logo_detections
            ]
            competitor_evidence, partnerships = find_competitor_mentions(
                analysis.brand_results, logos, competitors,
            )
            analysis.evidence.extend(competitor_evidence)
            analysis.evidence.extend(sponsor_evidence(analysis.brand_results))
            analysis.competitor_partnerships = partnerships

        logger.info(
            f"Creator {creator.id}: {len(analysis.items)} items, {len(analysis.evidence)} evidence, "
            f"{len(analysis.findings)} direct findings, tiers={sorted(analysis.tiers_completed)}"
        )
        return analysis

    # ------------------------------------------------------------------ #
    #  Steps                                                             #
    # ------------------------------------------------------------------ #

    def _validate(self, items: list[ContentItem]) -> list[ContentItem]:
        """Drop duplicates, empty items and posts outside the lookback window."""
        cutoff = lookback_cutoff(self.config.lookback_months)
        seen: set[tuple[str, str]] = set()
        valid = []
        for item in items:
            key = (item.platform, item.id)
            if key in seen:
                continue
            seen.add(key)
            if item.posted_at is not None and item.posted_at < cutoff:
                continue
            if not item.is_text_bearing and not item.is_visual:
                continue
            valid.append(item)
        return valid

    def _screen_keywords(self, analysis: CreatorAnalysis) -> None:
        for item in analysis.items:
            result = self.keyword_screener.screen(item.text)
            analysis.keyword_results[item.id] = result
            analysis.findings.extend(result.to_findings(item))
        analysis.tiers_completed.add(TIER_KEYWORD)

    async def _detect_brands(self, analysis: CreatorAnalysis) -> None:
        text_items = [item for item in analysis.items if item.is_text_bearing]
        if not self.brand_detector.is_ai_enabled:
            analysis.disabled_tiers.append(TIER_BRAND)
        if not text_items:
            return

        results = await asyncio.gather(*(
            self.brand_detector.detect(item.text, item.platform) for item in text_items
        ))
        analysis.brand_results = [(item.id, result) for item, result in zip(text_items, results)]
        if any(result.method != "error" for result in results):
            analysis.tiers_completed.add(TIER_BRAND)

    async def _analyze_media(self, creator: Creator, analysis: CreatorAnalysis) -> None:
        visual_items = [item for item in analysis.items if item.is_visual]
        if not visual_items:
            return

        if not self.prescreener.is_enabled:
            analysis.disabled_tiers.append(TIER_PRESCREEN)
        analysis.prescreen = await self.prescreener.filter_for_full_analysis(visual_items)
        if self.prescreener.is_enabled:
            analysis.tiers_completed.add(TIER_PRESCREEN)

        gated_in = analysis.prescreen.needs_analysis
        if not self.media_analyzer.is_video_enabled and any(i.media_type == "video" for i in gated_in):
            analysis.disabled_tiers.append(TIER_VIDEO)
        if not self.media_analyzer.is_image_enabled and any(i.media_type == "image" for i in gated_in):
            analysis.disabled_tiers.append(TIER_IMAGE)

        results = await asyncio.gather(*(self._analyze_asset(item) for item in gated_in))
        for item, result in zip(gated_in, results):
            if result is None:
                continue
            analysis.media_results.append(result)
            analysis.evidence.extend(result.evidence)
            analysis.tiers_completed.add(TIER_VIDEO if result.media_type == "video" else TIER_IMAGE)
            if result.transcript and not item.transcript:
                transcript_screen = self.keyword_screener.screen(result.transcript)
                analysis.findings.extend(transcript_screen.to_findings(item))

        logger.info(
            f"Creator {creator.id}: {len(visual_items)} visual assets, "
            f"{len(analysis.prescreen.safe_items)} skipped full analysis, "
            f"{len(analysis.media_results)} analyzed"
        )

    async def _analyze_asset(self, item: ContentItem) -> Optional[MediaAssetResult]:
        """Full analysis of one gated-in asset. None when the tier is not configured."""
        if item.media_type not in ("video", "image"):
            return None
        try:
            return await self.media_analyzer.analyze(item)
        except ConfigError:
            return None
