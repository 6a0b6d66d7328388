"""Tests for the batch event stream: ordering, per-creator contract, SSE framing."""

import json

import pytest

from conftest import drain
from events import (
    AnalysisStep,
    BatchCompleted,
    BatchMetrics,
    CreatorCompleted,
    CreatorFailed,
    CreatorStarted,
    EventStreamRegistry,
    PlatformStarted,
    format_sse,
)
from models import RiskLevel


def _metrics(**overrides):
    values = dict(
        duration_ms=1000, duration_minutes=0.02, total_creators=1, completed_creators=1,
        failed_creators=0, total_posts=3, creators_per_minute=60.0, posts_per_minute=180.0,
        concurrency_used=1,
    )
    values.update(overrides)
    return BatchMetrics(**values)


class TestPublishing:

    @pytest.mark.asyncio
    async def test_events_stamped_with_increasing_seq(self, stream):
        subscription = stream.subscribe()
        await stream.publish(CreatorStarted(creator_id="c1", name="Jane"))
        await stream.publish(PlatformStarted(creator_id="c1", platform="instagram"))
        stream.close()

        events = await drain(subscription)
        assert [e.seq for e in events] == [1, 2]
        assert all(e.batch_id == "batch-1" for e in events)

    @pytest.mark.asyncio
    async def test_late_subscriber_sees_only_new_events(self, stream):
        await stream.publish(CreatorStarted(creator_id="c1", name="Jane"))
        subscription = stream.subscribe()
        await stream.publish(CreatorStarted(creator_id="c2", name="Sam"))
        stream.close()

        events = await drain(subscription)
        assert [e.creator_id for e in events] == ["c2"]
        assert events[0].seq == 2

    @pytest.mark.asyncio
    async def test_nothing_after_terminal_event(self, stream):
        subscription = stream.subscribe()
        await stream.publish(CreatorStarted(creator_id="c1", name="Jane"))
        await stream.publish(CreatorFailed(creator_id="c1", name="Jane", error="boom"))
        dropped = await stream.publish(PlatformStarted(creator_id="c1", platform="tiktok"))
        second_terminal = await stream.publish(CreatorCompleted(
            creator_id="c1", name="Jane", risk_level=RiskLevel.LOW, findings_count=0, summary="",
        ))
        stream.close()

        assert dropped is None
        assert second_terminal is None
        assert stream.is_terminated("c1")
        events = await drain(subscription)
        assert [e.event for e in events] == ["creator_started", "creator_failed"]

    @pytest.mark.asyncio
    async def test_duplicate_creator_started_dropped(self, stream):
        await stream.publish(CreatorStarted(creator_id="c1", name="Jane"))
        assert await stream.publish(CreatorStarted(creator_id="c1", name="Jane")) is None
        assert stream.last_seq == 1

    @pytest.mark.asyncio
    async def test_closed_stream_drops_events(self, stream):
        stream.close()
        assert await stream.publish(CreatorStarted(creator_id="c1", name="Jane")) is None
        assert await drain(stream.subscribe()) == []

    @pytest.mark.asyncio
    async def test_analysis_step_emits_completed_on_error(self, stream):
        subscription = stream.subscribe()
        with pytest.raises(RuntimeError):
            async with stream.analysis_step("c1", AnalysisStep.BRAND_DETECTION):
                raise RuntimeError("tier failed")
        stream.close()

        events = await drain(subscription)
        assert [(e.step, e.status.value) for e in events] == [
            (AnalysisStep.BRAND_DETECTION, "started"),
            (AnalysisStep.BRAND_DETECTION, "completed"),
        ]

    @pytest.mark.asyncio
    async def test_unsubscribed_consumer_receives_nothing(self, stream):
        subscription = stream.subscribe()
        subscription.close()
        assert stream.subscriber_count == 0
        await stream.publish(CreatorStarted(creator_id="c1", name="Jane"))
        assert stream.last_seq == 1


class TestRegistry:

    def test_open_reuses_live_stream(self):
        registry = EventStreamRegistry()
        first = registry.open("b1")
        assert registry.open("b1") is first
        first.close()
        assert registry.open("b1") is not first

    def test_discard(self):
        registry = EventStreamRegistry()
        registry.open("b1")
        registry.discard("b1")
        assert registry.get("b1") is None

    def test_discard_ignores_replaced_stream(self):
        registry = EventStreamRegistry()
        old = registry.open("b1")
        old.close()
        current = registry.open("b1")
        registry.discard("b1", old)
        assert registry.get("b1") is current
        registry.discard("b1", current)
        assert registry.get("b1") is None


class TestWireFormat:

    @pytest.mark.asyncio
    async def test_sse_frame_uses_camel_case(self, stream):
        event = await stream.publish(BatchCompleted(metrics=_metrics()))
        frame = format_sse(event)
        lines = frame.strip().split("\n")
        assert lines[0] == "id: 1"
        assert lines[1] == "event: batch_completed"
        payload = json.loads(lines[2][len("data: "):])
        assert payload["batchId"] == "batch-1"
        assert payload["metrics"]["totalCreators"] == 1
        assert payload["metrics"]["concurrencyUsed"] == 1
        assert frame.endswith("\n\n")

    def test_to_wire_omits_unset_optionals(self):
        wire = PlatformStarted(creator_id="c1", platform="youtube").to_wire()
        assert wire["creatorId"] == "c1"
        assert wire["event"] == "platform_started"
