"""Creator Vetting Pipeline - Full Media Analyzer
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Tier 4: expensive multi-modal analysis for assets the pre-screener gated in.

Videos are indexed by the Twelve Labs API, then analyzed for transcript,
logos and category-scored safety evidence. Images go through the vision
model with the same evidence/score contract.
"""

import re
import asyncio
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from ai_client import AIClient, extract_json_object, load_image
from config import PollingConfig
from errors import AnalysisError, ConfigError
from models import (
    EVIDENCE_CATEGORIES,
    EVIDENCE_SEVERITIES,
    EVIDENCE_SOURCES,
    CategoryScore,
    ContentClassification,
    ContentItem,
    ContentLabel,
    Evidence,
    LogoAppearance,
    LogoDetection,
    MediaAssetResult,
    VisualAnalysis,
)
from rate_limit import DependencyPool

logger = logging.getLogger(__name__)

TWELVE_LABS_API_BASE = "https://api.twelvelabs.io/v1.3"
DEFAULT_REQUEST_TIMEOUT = 30.0
LIST_PAGE_LIMIT = 50

# --- Logo detection constants ---
PROMINENCE_CONFIDENCE = {"primary": 0.9, "secondary": 0.7, "background": 0.5}
DEFAULT_APPEARANCE_SECONDS = 3.0
SPONSOR_CONFIDENCE_THRESHOLD = 0.7     # Primary appearance above this implies sponsorship
SPONSOR_DURATION_SECONDS = 5.0         # Screen time above this implies sponsorship
NO_BRANDS_MARKERS = ("no_brands_detected", "no brands", "no logos", "none visible")

# --- Classification constants ---
CLASSIFICATION_CATEGORIES = (
    "BRAND_SAFE", "CONTROVERSIAL", "ADULT_CONTENT", "VIOLENCE",
    "POLITICAL", "SUBSTANCE_USE", "DANGEROUS_ACTIVITIES",
)
DEFAULT_OVERALL_SAFETY = 0.7
SCORED_CATEGORIES = ("profanity", "violence", "adult", "substances", "controversial", "dangerous", "political")
SAFETY_RATINGS = {"safe", "caution", "unsafe"}

LOGO_BRAND_PATTERN = re.compile(r"BRAND:\s*([^\n,]+)", re.IGNORECASE)
LOGO_TIME_PATTERN = re.compile(r"TIME:\s*(\d+(?:\.\d+)?)\s*-?\s*(\d+(?:\.\d+)?)?", re.IGNORECASE)
LOGO_PROMINENCE_PATTERN = re.compile(r"PROMINENCE:\s*(primary|secondary|background)", re.IGNORECASE)
LOGO_SPONSOR_PATTERN = re.compile(r"SPONSOR:\s*(yes|no)", re.IGNORECASE)
LOGO_ENTRY_SPLIT = re.compile(r"(?=BRAND:)", re.IGNORECASE)
OVERALL_SAFETY_PATTERN = re.compile(r"OVERALL_SAFETY:\s*(\d+)", re.IGNORECASE)

LOGO_DETECTION_PROMPT = """Identify ALL brand logos, company names, product brands, and sponsored content visible in this video.

For EACH brand/logo found, provide:
BRAND: [exact brand name]
TIME: [approximate start time in seconds]-[end time in seconds]
PROMINENCE: [primary if featured prominently, secondary if clearly visible, background if subtle]
CONTEXT: [how it appears - worn, held, displayed, mentioned, etc.]

If the video mentions or shows a brand partnership, mark it as:
SPONSOR: [yes/no]

List each brand on separate lines. If no brands are visible, respond with: NO_BRANDS_DETECTED"""

CLASSIFICATION_PROMPT = """Analyze this video for brand safety. Rate each category from 0-100:

BRAND_SAFE: [score] (100 = completely appropriate for brand advertising)
CONTROVERSIAL: [score] (0 = none, 100 = highly controversial)
ADULT_CONTENT: [score] (0 = none, 100 = explicit content)
VIOLENCE: [score] (0 = none, 100 = graphic violence)
POLITICAL: [score] (0 = none, 100 = heavily political)
SUBSTANCE_USE: [score] (0 = none, 100 = prominent drug/alcohol use)
DANGEROUS_ACTIVITIES: [score] (0 = none, 100 = very dangerous stunts)

OVERALL_SAFETY: [score] (0-100, where 100 is safest for brands)"""

COMPREHENSIVE_ANALYSIS_PROMPT = """You are a professional brand safety consultant analyzing this {medium} for a brand partnership evaluation.

Return a JSON object with this EXACT structure:
{{
  "visual": {{
    "description": "2-3 sentence description of the content",
    "setting": "where it takes place",
    "mood": "overall tone",
    "contentType": "e.g. product review, comedy skit",
    "textInVideo": ["on-screen", "text"]
  }},
  "safetyAnalysis": {{
    "rating": "safe|caution|unsafe",
    "summary": "2-3 sentence professional summary of the safety assessment",
    "evidence": [
      {{
        "category": "profanity|violence|adult|substances|controversial|dangerous|political",
        "severity": "low|medium|high",
        "timestamp": 0,
        "endTimestamp": 0,
        "source": "audio|visual|text",
        "quote": "exact words if applicable",
        "description": "what was detected"
      }}
    ],
    "categoryScores": {{
      "profanity": {{"score": 0, "reason": "explanation"}},
      "violence": {{"score": 0, "reason": "explanation"}},
      "adult": {{"score": 0, "reason": "explanation"}},
      "substances": {{"score": 0, "reason": "explanation"}},
      "controversial": {{"score": 0, "reason": "explanation"}},
      "dangerous": {{"score": 0, "reason": "explanation"}},
      "political": {{"score": 0, "reason": "explanation"}}
    }}
  }},
  "brands": [
    {{
      "name": "Brand Name",
      "appearances": [{{"startTime": 0, "endTime": 5, "prominence": "primary|secondary|background"}}],
      "isSponsor": true
    }}
  ]
}}

For EVERY concern give the timestamp in seconds and a quote or description.
Scores are 0-100 where 0 means none detected. Missing something is worse than over-flagging.
The evidence array is empty for completely safe content."""


# ------------------------------------------------------------------ #
#  Response parsers                                                  #
# ------------------------------------------------------------------ #

def _finalize_logo(logo: LogoDetection) -> LogoDetection:
    logo.appearances.sort(key=lambda a: a.start_time)
    if not logo.likely_sponsor:
        primary = any(
            a.prominence == "primary" and a.confidence > SPONSOR_CONFIDENCE_THRESHOLD
            for a in logo.appearances
        )
        logo.likely_sponsor = primary or logo.total_duration > SPONSOR_DURATION_SECONDS
    return logo


def parse_logo_response(text: str) -> list[LogoDetection]:
    """Parse BRAND/TIME/PROMINENCE/SPONSOR blocks, merging repeated brands."""
    lower = (text or "").lower()
    if not text or any(marker in lower for marker in NO_BRANDS_MARKERS):
        return []

    logos: dict[str, LogoDetection] = {}
    for entry in LOGO_ENTRY_SPLIT.split(text):
        brand_match = LOGO_BRAND_PATTERN.search(entry)
        if not brand_match:
            continue
        brand = brand_match.group(1).strip()
        if len(brand) < 2 or brand.lower() == "none":
            continue

        time_match = LOGO_TIME_PATTERN.search(entry)
        start = float(time_match.group(1)) if time_match else 0.0
        end = float(time_match.group(2)) if time_match and time_match.group(2) else start + DEFAULT_APPEARANCE_SECONDS
        prominence_match = LOGO_PROMINENCE_PATTERN.search(entry)
        prominence = prominence_match.group(1).lower() if prominence_match else "secondary"
        sponsor_match = LOGO_SPONSOR_PATTERN.search(entry)
        is_sponsor = bool(sponsor_match) and sponsor_match.group(1).lower() == "yes"

        appearance = LogoAppearance(
            start_time=start,
            end_time=end,
            confidence=PROMINENCE_CONFIDENCE[prominence],
            prominence=prominence,
        )
        existing = logos.get(brand.lower())
        if existing is None:
            logos[brand.lower()] = LogoDetection(
                brand=brand,
                appearances=[appearance],
                total_duration=end - start,
                likely_sponsor=is_sponsor,
            )
        else:
            existing.appearances.append(appearance)
            existing.total_duration += end - start
            existing.likely_sponsor = existing.likely_sponsor or is_sponsor

    return [_finalize_logo(logo) for logo in logos.values()]


def parse_classification_response(text: str) -> ContentClassification:
    """Parse 0-100 category scores; overall safety defaults to 0.7."""
    labels = []
    for category in CLASSIFICATION_CATEGORIES:
        match = re.search(rf"{category}:\s*(\d+)", text or "", re.IGNORECASE)
        if match:
            labels.append(ContentLabel(label=category.lower(), confidence=min(int(match.group(1)), 100) / 100))

    overall = DEFAULT_OVERALL_SAFETY
    overall_match = OVERALL_SAFETY_PATTERN.search(text or "")
    if overall_match:
        overall = min(int(overall_match.group(1)), 100) / 100
    elif labels:
        brand_safe = next((l.confidence for l in labels if l.label == "brand_safe"), DEFAULT_OVERALL_SAFETY)
        negatives = [l.confidence for l in labels if l.label != "brand_safe"]
        avg_negative = sum(negatives) / len(negatives) if negatives else 0.0
        overall = max(0.0, min(1.0, brand_safe * (1 - avg_negative * 0.5)))

    return ContentClassification(labels=labels, overall_safety_score=round(overall, 3))


def _normalize_evidence(raw: dict) -> Evidence:
    category = str(raw.get("category") or "controversial").lower()
    severity = str(raw.get("severity") or "medium").lower()
    source = str(raw.get("source") or "visual").lower()
    timestamp = raw.get("timestamp")
    end_timestamp = raw.get("endTimestamp")
    return Evidence(
        category=category if category in EVIDENCE_CATEGORIES else "controversial",
        severity=severity if severity in EVIDENCE_SEVERITIES else "medium",
        source=source if source in EVIDENCE_SOURCES else "visual",
        timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else 0.0,
        end_timestamp=float(end_timestamp) if isinstance(end_timestamp, (int, float)) else None,
        quote=raw.get("quote") or None,
        description=str(raw.get("description") or raw.get("context") or ""),
    )


def _score(raw: object) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0
    return int(min(max(raw, 0), 100))


@dataclass
class ComprehensiveAnalysis:
    visual_analysis: VisualAnalysis
    evidence: list[Evidence] = field(default_factory=list)
    category_scores: dict[str, CategoryScore] = field(default_factory=dict)
    logo_detections: list[LogoDetection] = field(default_factory=list)


def parse_comprehensive_analysis(text: str) -> ComprehensiveAnalysis:
    """
    Parse the combined visual/safety/brands JSON response.

    Raises:
        ValueError: the response holds no JSON object.
    """
    parsed = extract_json_object(text)
    visual = parsed.get("visual") or {}
    safety = parsed.get("safetyAnalysis") or {}

    evidence = [_normalize_evidence(e) for e in safety.get("evidence") or [] if isinstance(e, dict)]
    counts: dict[str, int] = {}
    for item in evidence:
        counts[item.category] = counts.get(item.category, 0) + 1

    raw_scores = safety.get("categoryScores") or {}
    category_scores = {}
    for name in SCORED_CATEGORIES:
        raw = raw_scores.get(name) or {}
        category_scores[name] = CategoryScore(
            score=_score(raw.get("score")),
            reason=str(raw.get("reason") or "No analysis available"),
            evidence_count=counts.get(name, 0),
        )

    rating = str(safety.get("rating") or "safe").lower()
    visual_analysis = VisualAnalysis(
        description=str(visual.get("description") or ""),
        setting=str(visual.get("setting") or ""),
        mood=str(visual.get("mood") or ""),
        content_type=str(visual.get("contentType") or ""),
        text_in_video=[str(t) for t in visual.get("textInVideo") or []],
        brand_safety_rating=rating if rating in SAFETY_RATINGS else "caution",
        summary=str(safety.get("summary") or ""),
    )

    logos = []
    for brand in parsed.get("brands") or []:
        if not isinstance(brand, dict) or not brand.get("name"):
            continue
        appearances = []
        for a in brand.get("appearances") or []:
            prominence = str(a.get("prominence") or "secondary").lower()
            if prominence not in PROMINENCE_CONFIDENCE:
                prominence = "secondary"
            start = float(a.get("startTime") or 0)
            end = float(a.get("endTime") or start + DEFAULT_APPEARANCE_SECONDS)
            appearances.append(LogoAppearance(
                start_time=start, end_time=end,
                confidence=PROMINENCE_CONFIDENCE[prominence], prominence=prominence,
            ))
        logos.append(_finalize_logo(LogoDetection(
            brand=str(brand["name"]),
            appearances=appearances,
            total_duration=sum(a.end_time - a.start_time for a in appearances),
            likely_sponsor=brand.get("isSponsor") is True,
        )))

    return ComprehensiveAnalysis(visual_analysis, evidence, category_scores, logos)


# ------------------------------------------------------------------ #
#  Video analysis provider                                           #
# ------------------------------------------------------------------ #

@dataclass
class ProviderResult:
    provider_id: str
    transcript: str
    visual_analysis: VisualAnalysis
    logo_detections: list[LogoDetection]
    content_classification: ContentClassification
    index_info: dict
    evidence: list[Evidence] = field(default_factory=list)


class TwelveLabsClient:
    """
    Video indexing and analysis over the Twelve Labs REST API.

    Usage:
        async with TwelveLabsClient(api_key, index_id) as client:
            task_id = await client.submit(video_url)
            video_id = await client.wait_for_task(task_id)
    """

    def __init__(
        self,
        api_key: Optional[str],
        index_id: Optional[str],
        polling: Optional[PollingConfig] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = TWELVE_LABS_API_BASE,
    ):
        self.api_key = api_key
        self.index_id = index_id
        self.polling = polling or PollingConfig()
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "TwelveLabsClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.index_id)

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.is_configured:
            raise ConfigError("Twelve Labs API key or index id not configured")
        headers = {"x-api-key": self.api_key}
        try:
            response = await self.client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise AnalysisError(f"Twelve Labs request {method} {path} failed: {e!r}") from e
        if response.status_code >= 400:
            raise AnalysisError(
                f"Twelve Labs {method} {path} returned {response.status_code}: {response.text[:200]}"
            )
        return response.json() if response.content else {}

    async def submit(self, video_url: str) -> str:
        """Start indexing a video by URL. Returns the task id."""
        data = await self._request(
            "POST", "/tasks",
            files={"index_id": (None, self.index_id), "video_url": (None, video_url)},
        )
        task_id = data.get("_id") or data.get("id")
        if not task_id:
            raise AnalysisError("Twelve Labs task response had no id")
        logger.info(f"Twelve Labs indexing task {task_id} submitted")
        return task_id

    async def wait_for_task(self, task_id: str) -> str:
        """Poll with adaptive backoff until the task is ready. Returns the video id."""
        interval = self.polling.initial_seconds
        waited = 0.0
        while True:
            data = await self._request("GET", f"/tasks/{task_id}")
            status = data.get("status")
            if status == "ready":
                video_id = data.get("video_id")
                if not video_id:
                    raise AnalysisError(f"Task {task_id} ready without a video id")
                return video_id
            if status == "failed":
                raise AnalysisError(f"Indexing task {task_id} failed")
            if waited >= self.polling.timeout_seconds:
                raise AnalysisError(f"Indexing task {task_id} timed out after {waited:.0f}s (status={status})")

            await asyncio.sleep(interval)
            waited += interval
            interval = min(max(interval * self.polling.backoff_multiplier, self.polling.min_seconds),
                           self.polling.max_seconds)

    async def get_video(self, video_id: str, transcription: bool = False) -> dict:
        params = {"transcription": "true"} if transcription else None
        return await self._request("GET", f"/indexes/{self.index_id}/videos/{video_id}", params=params)

    async def get_transcript(self, video_id: str) -> str:
        data = await self.get_video(video_id, transcription=True)
        segments = data.get("transcription") or []
        return " ".join(seg.get("value", "") for seg in segments if seg.get("value")).strip()

    async def summarize(self, video_id: str, prompt: str) -> str:
        data = await self._request(
            "POST", "/summarize",
            json={"video_id": video_id, "type": "summary", "prompt": prompt},
        )
        return data.get("summary") or ""

    async def analyze_comprehensive(self, video_id: str) -> ComprehensiveAnalysis:
        text = await self.summarize(video_id, COMPREHENSIVE_ANALYSIS_PROMPT.format(medium="video"))
        try:
            return parse_comprehensive_analysis(text)
        except ValueError as e:
            raise AnalysisError(f"Unparseable safety analysis for {video_id}: {e}") from e

    async def detect_logos(self, video_id: str) -> list[LogoDetection]:
        return parse_logo_response(await self.summarize(video_id, LOGO_DETECTION_PROMPT))

    async def classify_content(self, video_id: str) -> ContentClassification:
        return parse_classification_response(await self.summarize(video_id, CLASSIFICATION_PROMPT))

    async def list_completed(self, page_limit: int = LIST_PAGE_LIMIT) -> list[dict]:
        """Indexed videos, newest first."""
        data = await self._request(
            "GET", f"/indexes/{self.index_id}/videos",
            params={"page_limit": page_limit, "sort_by": "created_at", "sort_option": "desc"},
        )
        videos = []
        for video in data.get("data") or []:
            metadata = video.get("system_metadata") or {}
            videos.append({
                "provider_id": video.get("_id"),
                "filename": metadata.get("filename"),
                "duration": metadata.get("duration"),
                "created_at": video.get("created_at"),
            })
        return [v for v in videos if v["provider_id"]]

    async def fetch_result(self, provider_id: str) -> ProviderResult:
        """Transcript, visual analysis, logos and classification for an indexed video."""
        video = await self.get_video(provider_id, transcription=True)
        transcript = " ".join(
            seg.get("value", "") for seg in video.get("transcription") or [] if seg.get("value")
        ).strip()
        safety = await self.analyze_comprehensive(provider_id)
        logos = safety.logo_detections or await self.detect_logos(provider_id)
        classification = await self.classify_content(provider_id)
        return ProviderResult(
            provider_id=provider_id,
            transcript=transcript,
            visual_analysis=safety.visual_analysis,
            logo_detections=logos,
            content_classification=classification,
            index_info=video.get("system_metadata") or {},
            evidence=safety.evidence,
        )


# ------------------------------------------------------------------ #
#  Tier 4 entry point                                                #
# ------------------------------------------------------------------ #

MediaUrlResolver = Callable[[ContentItem], Awaitable[Optional[str]]]


class FullMediaAnalyzer:
    """Routes gated-in assets to video or image analysis."""

    def __init__(
        self,
        provider: Optional[TwelveLabsClient] = None,
        ai_client: Optional[AIClient] = None,
        video_pool: Optional[DependencyPool] = None,
        image_pool: Optional[DependencyPool] = None,
        media_url_resolver: Optional[MediaUrlResolver] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.ai_client = ai_client
        self.video_pool = video_pool
        self.image_pool = image_pool
        self.media_url_resolver = media_url_resolver
        self._http_client = http_client

    @property
    def is_video_enabled(self) -> bool:
        return self.provider is not None and self.provider.is_configured

    @property
    def is_image_enabled(self) -> bool:
        return self.ai_client is not None and self.ai_client.is_ai_enabled

    async def analyze(self, item: ContentItem) -> MediaAssetResult:
        """
        Analyze one asset.

        Raises:
            ConfigError: the tier for this media type is not configured.
            AnalysisError: the provider call failed.
        """
        if item.media_type == "video":
            return await self._analyze_video(item)
        if item.media_type == "image":
            return await self._analyze_image(item)
        raise AnalysisError(f"Item {item.id} has no analyzable media")

    async def _analyze_video(self, item: ContentItem) -> MediaAssetResult:
        if not self.is_video_enabled:
            raise ConfigError("Video analysis provider not configured")

        url = item.media_url
        if self.media_url_resolver is not None:
            url = await self.media_url_resolver(item) or url
        if not url:
            raise AnalysisError(f"No downloadable media for video {item.id}")

        async with self._slot(self.video_pool):
            task_id = await self.provider.submit(url)
            video_id = await self.provider.wait_for_task(task_id)
            transcript = await self.provider.get_transcript(video_id)
            safety = await self.provider.analyze_comprehensive(video_id)

        logger.info(
            f"Video {item.id} analyzed: {len(safety.evidence)} evidence, "
            f"{len(safety.logo_detections)} logos, rating={safety.visual_analysis.brand_safety_rating}"
        )
        return self._to_result(item, "video", safety, provider_id=video_id, transcript=transcript)

    async def _analyze_image(self, item: ContentItem) -> MediaAssetResult:
        if not self.is_image_enabled:
            raise ConfigError("Image analysis provider not configured")
        url = item.media_url or item.thumbnail_url
        if not url:
            raise AnalysisError(f"No image url for item {item.id}")

        async with self._slot(self.image_pool):
            try:
                image = await load_image(url, self._http_client)
            except httpx.HTTPError as e:
                raise AnalysisError(f"Image download failed for {item.id}: {e!r}") from e
            text = await self.ai_client.complete(
                "You are a brand safety analyst. Respond with JSON only.",
                COMPREHENSIVE_ANALYSIS_PROMPT.format(medium="image"),
                max_tokens=2048,
                image=image,
            )
        try:
            safety = parse_comprehensive_analysis(text)
        except ValueError as e:
            raise AnalysisError(f"Unparseable image analysis for {item.id}: {e}") from e
        return self._to_result(item, "image", safety)

    @staticmethod
    def _slot(pool: Optional[DependencyPool]):
        if pool is None:
            return nullcontext()
        return pool.slot()

    @staticmethod
    def _to_result(
        item: ContentItem,
        media_type: str,
        safety: ComprehensiveAnalysis,
        provider_id: Optional[str] = None,
        transcript: str = "",
    ) -> MediaAssetResult:
        evidence = [e.model_copy(update={"item_id": item.id}) for e in safety.evidence]
        return MediaAssetResult(
            item_id=item.id,
            media_type=media_type,
            provider_id=provider_id,
            transcript=transcript,
            visual_analysis=safety.visual_analysis,
            category_scores=safety.category_scores,
            evidence=evidence,
            logo_detections=safety.logo_detections,
        )

