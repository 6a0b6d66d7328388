"""Creator Vetting Pipeline - Event Stream Publisher
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Typed progress events for a batch run, fanned out to subscribers.

Delivery is push-based and forward-only: a subscriber sees events published
after it subscribed. Every event carries a per-batch sequence number so an
observer can detect gaps.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import FindingType, RiskLevel, utc_now

logger = logging.getLogger(__name__)


class AnalysisStep(str, Enum):
    VALIDATION = "validation"
    CONTENT_ANALYSIS = "content_analysis"
    BRAND_DETECTION = "brand_detection"
    PROFANITY_CHECK = "profanity_check"
    COMPETITOR_ANALYSIS = "competitor_analysis"
    RATIONALE_GENERATION = "rationale_generation"


class StepStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"


TERMINAL_EVENTS = {"creator_completed", "creator_failed"}


# ------------------------------------------------------------------ #
#  Event models                                                      #
# ------------------------------------------------------------------ #

class StreamEvent(BaseModel):
    """Base event. Wire format uses camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event: str
    batch_id: str = ""
    seq: int = 0
    creator_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SearchStarted(StreamEvent):
    event: Literal["search_started"] = "search_started"
    creator_id: str
    search_id: str
    query: str
    source: str


class SearchCompleted(StreamEvent):
    event: Literal["search_completed"] = "search_completed"
    creator_id: str
    search_id: str
    query: str
    source: str
    results_count: Optional[int] = None
    duration_ms: Optional[int] = None


class PlatformStarted(StreamEvent):
    event: Literal["platform_started"] = "platform_started"
    creator_id: str
    platform: str


class PlatformCompleted(StreamEvent):
    event: Literal["platform_completed"] = "platform_completed"
    creator_id: str
    platform: str
    posts_count: Optional[int] = None
    duration_ms: Optional[int] = None
    from_cache: bool = False
    error: Optional[str] = None


class AnalysisStepEvent(StreamEvent):
    event: Literal["analysis_step"] = "analysis_step"
    creator_id: str
    step: AnalysisStep
    status: StepStatus


class FindingDiscovered(StreamEvent):
    event: Literal["finding_discovered"] = "finding_discovered"
    creator_id: str
    title: str
    severity: str
    type: FindingType
    source: Optional[str] = None


class CreatorStarted(StreamEvent):
    event: Literal["creator_started"] = "creator_started"
    creator_id: str
    name: str


class CreatorCompleted(StreamEvent):
    event: Literal["creator_completed"] = "creator_completed"
    creator_id: str
    name: str
    risk_level: RiskLevel
    findings_count: int
    summary: str
    posts_count: int = 0
    brands_count: int = 0
    sponsored_count: int = 0
    competitor_partnerships: list[str] = Field(default_factory=list)


class CreatorFailed(StreamEvent):
    event: Literal["creator_failed"] = "creator_failed"
    creator_id: str
    name: str
    error: str


class BatchMetrics(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    duration_ms: int
    duration_minutes: float
    total_creators: int
    completed_creators: int
    failed_creators: int
    total_posts: int
    creators_per_minute: float
    posts_per_minute: float
    concurrency_used: int


class BatchCompleted(StreamEvent):
    event: Literal["batch_completed"] = "batch_completed"
    status: Literal["COMPLETED"] = "COMPLETED"
    metrics: BatchMetrics


# ------------------------------------------------------------------ #
#  Publisher                                                         #
# ------------------------------------------------------------------ #

class Subscription:
    """Async iterator over events published after subscription."""

    def __init__(self, stream: "BatchEventStream"):
        self._stream = stream
        self._queue: asyncio.Queue = asyncio.Queue()
        self._done = False

    def _deliver(self, event: Optional[StreamEvent]) -> None:
        self._queue.put_nowait(event)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._done:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            self.close()
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        self._done = True
        self._stream._unsubscribe(self)


class BatchEventStream:
    """
    Ordered event channel for one batch run.

    Enforces the per-creator contract: at most one creator_started, exactly
    one terminal event, and nothing for a creator after its terminal event.
    Violations are dropped and logged rather than delivered.
    """

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        self._seq = 0
        self._subscribers: set[Subscription] = set()
        self._started: set[str] = set()
        self._terminated: set[str] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_seq(self) -> int:
        return self._seq

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        if self._closed:
            subscription._deliver(None)
        else:
            self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    def is_terminated(self, creator_id: str) -> bool:
        return creator_id in self._terminated

    async def publish(self, event: StreamEvent) -> Optional[StreamEvent]:
        """Stamp the event with batch id and sequence number and fan it out."""
        if self._closed:
            logger.warning(f"Batch {self.batch_id}: stream closed, dropping {event.event}")
            return None

        creator_id = event.creator_id
        if creator_id:
            if creator_id in self._terminated:
                logger.warning(
                    f"Batch {self.batch_id}: dropping {event.event} for creator "
                    f"{creator_id} after its terminal event"
                )
                return None
            if event.event == "creator_started":
                if creator_id in self._started:
                    logger.warning(f"Batch {self.batch_id}: duplicate creator_started for {creator_id}")
                    return None
                self._started.add(creator_id)
            elif event.event in TERMINAL_EVENTS:
                self._terminated.add(creator_id)

        self._seq += 1
        stamped = event.model_copy(update={"batch_id": self.batch_id, "seq": self._seq})
        for subscription in list(self._subscribers):
            subscription._deliver(stamped)
        return stamped

    @asynccontextmanager
    async def analysis_step(self, creator_id: str, step: AnalysisStep) -> AsyncIterator[None]:
        """Emit started on entry and completed on exit, including on error."""
        await self.publish(AnalysisStepEvent(
            creator_id=creator_id, step=step, status=StepStatus.STARTED,
        ))
        try:
            yield
        finally:
            await self.publish(AnalysisStepEvent(
                creator_id=creator_id, step=step, status=StepStatus.COMPLETED,
            ))

    def close(self) -> None:
        """End every subscription. Later publishes are dropped."""
        if self._closed:
            return
        self._closed = True
        for subscription in list(self._subscribers):
            subscription._deliver(None)
        self._subscribers.clear()


class EventStreamRegistry:
    """One open stream per batch id."""

    def __init__(self):
        self._streams: dict[str, BatchEventStream] = {}

    def open(self, batch_id: str) -> BatchEventStream:
        stream = self._streams.get(batch_id)
        if stream is None or stream.closed:
            stream = BatchEventStream(batch_id)
            self._streams[batch_id] = stream
        return stream

    def get(self, batch_id: str) -> Optional[BatchEventStream]:
        return self._streams.get(batch_id)

    def discard(self, batch_id: str, stream: Optional[BatchEventStream] = None) -> None:
        """Forget the batch's stream; with `stream`, only if it is still the registered one."""
        if stream is not None and self._streams.get(batch_id) is not stream:
            return
        self._streams.pop(batch_id, None)


def format_sse(event: StreamEvent) -> str:
    """Render one Server-Sent Events frame."""
    return (
        f"id: {event.seq}\n"
        f"event: {event.event}\n"
        f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"
    )
