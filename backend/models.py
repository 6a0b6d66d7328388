"""Creator Vetting Pipeline - Data Model
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Persisted rows (Batch, Creator, Report) are pydantic models so they can be
written to the JSON store and returned from the API unchanged. Transient
per-item values (ContentItem, PreScreenResult) are plain dataclasses.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ------------------------------------------------------------------ #
#  Status and severity enums                                         #
# ------------------------------------------------------------------ #

class BatchStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CreatorStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PlatformStatus(str, Enum):
    PENDING = "PENDING"
    NOT_REQUESTED = "NOT_REQUESTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"


class FindingType(str, Enum):
    COURT_CASE = "court_case"
    NEWS_ARTICLE = "news_article"
    SOCIAL_CONTROVERSY = "social_controversy"
    OTHER = "other"


RISK_LEVEL_ORDER = {
    RiskLevel.UNKNOWN: 0,
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}

SEVERITY_ORDER = {"critical": 3, "high": 2, "medium": 1, "low": 0}

EVIDENCE_CATEGORIES = (
    "profanity", "violence", "adult", "substances", "controversial",
    "dangerous", "political", "competitor", "sponsor",
)
EVIDENCE_SEVERITIES = ("low", "medium", "high")
EVIDENCE_SOURCES = ("audio", "visual", "text", "transcript")

Severity = Literal["low", "medium", "high", "critical"]
EvidenceSeverity = Literal["low", "medium", "high"]
EvidenceCategory = Literal[
    "profanity", "violence", "adult", "substances", "controversial",
    "dangerous", "political", "competitor", "sponsor",
]
EvidenceSource = Literal["audio", "visual", "text", "transcript"]

TERMINAL_CREATOR_STATUSES = {CreatorStatus.COMPLETED, CreatorStatus.FAILED}

# Allowed forward moves; recovery adds PENDING/PROCESSING -> COMPLETED.
_CREATOR_TRANSITIONS = {
    CreatorStatus.PENDING: {CreatorStatus.PROCESSING},
    CreatorStatus.PROCESSING: {CreatorStatus.COMPLETED, CreatorStatus.FAILED},
    CreatorStatus.COMPLETED: set(),
    CreatorStatus.FAILED: set(),
}
_RECOVERY_TRANSITIONS = {
    CreatorStatus.PENDING: {CreatorStatus.COMPLETED},
    CreatorStatus.PROCESSING: {CreatorStatus.COMPLETED},
}


def can_transition(current: CreatorStatus, new: CreatorStatus, recovery: bool = False) -> bool:
    """Check whether a creator may move from `current` to `new`."""
    if new in _CREATOR_TRANSITIONS[current]:
        return True
    return recovery and new in _RECOVERY_TRANSITIONS.get(current, set())


def max_risk_level(*levels: RiskLevel) -> RiskLevel:
    return max(levels, key=lambda level: RISK_LEVEL_ORDER[level])


# ------------------------------------------------------------------ #
#  Persisted rows                                                    #
# ------------------------------------------------------------------ #

class Batch(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    owner: Optional[str] = None
    status: BatchStatus = BatchStatus.PENDING
    search_terms: list[str] = Field(default_factory=list)
    competitors: list[str] = Field(default_factory=list)
    creator_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


class Creator(BaseModel):
    id: str = Field(default_factory=new_id)
    batch_id: str
    name: str
    social_links: list[str] = Field(default_factory=list)
    platform_status: dict[str, PlatformStatus] = Field(default_factory=dict)
    status: CreatorStatus = CreatorStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Evidence(BaseModel):
    category: EvidenceCategory
    severity: EvidenceSeverity
    description: str = ""
    source: EvidenceSource = "visual"
    timestamp: Optional[float] = None
    end_timestamp: Optional[float] = None
    quote: Optional[str] = None
    item_id: Optional[str] = None


class Finding(BaseModel):
    type: FindingType
    severity: Severity
    title: str
    summary: str = ""
    source: Optional[str] = None
    item_id: Optional[str] = None


# --- Raw results: provider-keyed tagged union ---

class CategoryScore(BaseModel):
    score: int = 0                  # 0-100
    reason: str = "No analysis available"
    evidence_count: int = 0


class LogoAppearance(BaseModel):
    start_time: float
    end_time: float
    confidence: float
    prominence: Literal["primary", "secondary", "background"]


class LogoDetection(BaseModel):
    brand: str
    appearances: list[LogoAppearance] = Field(default_factory=list)
    total_duration: float = 0.0
    likely_sponsor: bool = False


class ContentLabel(BaseModel):
    label: str
    confidence: float


class ContentClassification(BaseModel):
    labels: list[ContentLabel] = Field(default_factory=list)
    overall_safety_score: float = 0.7


class VisualAnalysis(BaseModel):
    description: str = ""
    setting: str = ""
    mood: str = ""
    content_type: str = ""
    text_in_video: list[str] = Field(default_factory=list)
    brand_safety_rating: Literal["safe", "caution", "unsafe"] = "safe"
    summary: str = ""


class PlatformSummary(BaseModel):
    handle: str
    posts_count: int = 0
    from_cache: bool = False
    error: Optional[str] = None
    duration_ms: int = 0


class SocialMediaResults(BaseModel):
    provider: Literal["social_media"] = "social_media"
    platforms: dict[str, PlatformSummary] = Field(default_factory=dict)
    keyword_counts: dict[str, int] = Field(default_factory=dict)
    flagged_terms: list[str] = Field(default_factory=list)
    brands: list[str] = Field(default_factory=list)
    sponsored_brands: list[str] = Field(default_factory=list)
    ad_posts: int = 0
    competitor_partnerships: list[str] = Field(default_factory=list)
    disabled_tiers: list[str] = Field(default_factory=list)


class MediaAssetResult(BaseModel):
    item_id: str
    media_type: Literal["video", "image"]
    provider_id: Optional[str] = None
    transcript: str = ""
    visual_analysis: VisualAnalysis = Field(default_factory=VisualAnalysis)
    category_scores: dict[str, CategoryScore] = Field(default_factory=dict)
    evidence: list[Evidence] = Field(default_factory=list)
    logo_detections: list[LogoDetection] = Field(default_factory=list)


class VideoAnalysisResults(BaseModel):
    provider: Literal["video_analysis"] = "video_analysis"
    assets_prescreened: int = 0
    assets_skipped: int = 0
    assets: list[MediaAssetResult] = Field(default_factory=list)


class WebSearchResults(BaseModel):
    provider: Literal["web_search"] = "web_search"
    queries: list[str] = Field(default_factory=list)
    topic_counts: dict[str, int] = Field(default_factory=dict)
    results_count: int = 0


class RecoveredVideo(BaseModel):
    transcript: str = ""
    visual_analysis: VisualAnalysis = Field(default_factory=VisualAnalysis)
    logo_detections: list[LogoDetection] = Field(default_factory=list)
    content_classification: ContentClassification = Field(default_factory=ContentClassification)
    index_info: dict = Field(default_factory=dict)
    recovered_at: datetime


class RecoveredVideoAnalysis(BaseModel):
    provider: Literal["recovered_video_analysis"] = "recovered_video_analysis"
    videos: dict[str, RecoveredVideo] = Field(default_factory=dict)


RawResultPayload = Annotated[
    Union[SocialMediaResults, VideoAnalysisResults, WebSearchResults, RecoveredVideoAnalysis],
    Field(discriminator="provider"),
]

SOCIAL_MEDIA_KEY = "socialMedia"
VIDEO_ANALYSIS_KEY = "videoAnalysis"
WEB_SEARCH_KEY = "webSearch"
RECOVERED_VIDEO_ANALYSIS_KEY = "recoveredVideoAnalysis"


class RawResults(RootModel[dict[str, RawResultPayload]]):
    """Provider-keyed results. Merges add keys and never remove them."""

    root: dict[str, RawResultPayload] = Field(default_factory=dict)

    def __contains__(self, key: str) -> bool:
        return key in self.root

    def __getitem__(self, key: str) -> RawResultPayload:
        return self.root[key]

    def keys(self) -> list[str]:
        return list(self.root.keys())

    def merged(self, key: str, payload: RawResultPayload) -> "RawResults":
        """
        Return a copy with `payload` merged under `key`.

        Recovered analyses merge per video id and keep the first copy of a
        video. Any other existing key is left untouched.
        """
        entries = dict(self.root)
        existing = entries.get(key)
        if existing is None:
            entries[key] = payload
        elif isinstance(existing, RecoveredVideoAnalysis) and isinstance(payload, RecoveredVideoAnalysis):
            videos = dict(payload.videos)
            videos.update(existing.videos)
            entries[key] = RecoveredVideoAnalysis(videos=videos)
        elif existing.provider != payload.provider:
            raise ValueError(
                f"raw results key {key!r} holds {existing.provider}, cannot merge {payload.provider}"
            )
        return RawResults(entries)

    def linked_provider_ids(self) -> set[str]:
        """External analysis ids referenced by this report."""
        ids: set[str] = set()
        for payload in self.root.values():
            if isinstance(payload, RecoveredVideoAnalysis):
                ids.update(payload.videos.keys())
            elif isinstance(payload, VideoAnalysisResults):
                ids.update(a.provider_id for a in payload.assets if a.provider_id)
        return ids


class Report(BaseModel):
    id: str = Field(default_factory=new_id)
    creator_id: str
    risk_level: RiskLevel = RiskLevel.UNKNOWN
    summary: str = ""
    findings: list[Finding] = Field(default_factory=list)
    search_queries: list[str] = Field(default_factory=list)
    raw_results: RawResults = Field(default_factory=RawResults)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ------------------------------------------------------------------ #
#  Transient pipeline values                                         #
# ------------------------------------------------------------------ #

@dataclass
class ContentItem:
    id: str
    platform: str
    handle: str
    caption: str = ""
    transcript: str = ""
    media_type: str = "text"            # "video", "image" or "text"
    media_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    permalink: Optional[str] = None
    posted_at: Optional[datetime] = None
    from_cache: bool = False

    @property
    def text(self) -> str:
        return " ".join(part for part in (self.caption, self.transcript) if part).strip()

    @property
    def is_text_bearing(self) -> bool:
        return bool(self.text)

    @property
    def visual_reference(self) -> Optional[str]:
        """Representative frame or image used for pre-screening."""
        if self.media_type == "image":
            return self.thumbnail_url or self.media_url
        return self.thumbnail_url

    @property
    def is_visual(self) -> bool:
        return self.media_type in ("video", "image")


@dataclass
class PreScreenResult:
    needs_full_analysis: bool
    reason: str                         # safe | brands_detected | uncertain | concerning
    confidence: float
    brands: list[str] = field(default_factory=list)
    description: str = ""
