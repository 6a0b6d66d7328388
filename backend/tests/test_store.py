"""Tests for the data model helpers and the VettingStore."""

from datetime import datetime, timedelta, timezone

import pytest

from models import (
    RECOVERED_VIDEO_ANALYSIS_KEY,
    SOCIAL_MEDIA_KEY,
    CreatorStatus,
    Finding,
    FindingType,
    PlatformStatus,
    RawResults,
    RecoveredVideo,
    RecoveredVideoAnalysis,
    Report,
    RiskLevel,
    SocialMediaResults,
    WebSearchResults,
    can_transition,
    max_risk_level,
)
from store import InvalidTransitionError, VettingStore


def _recovered(video_id: str, transcript: str = "") -> RecoveredVideoAnalysis:
    return RecoveredVideoAnalysis(videos={
        video_id: RecoveredVideo(transcript=transcript, recovered_at=datetime(2026, 1, 1, tzinfo=timezone.utc)),
    })


@pytest.fixture
def store():
    return VettingStore()


@pytest.fixture
def batch(store):
    return store.create_batch(
        "Spring campaign",
        [("Jane", ["https://instagram.com/jane"]), ("Sam", ["https://www.tiktok.com/@sam"])],
        competitors=["Pepsi"],
    )


class TestTransitions:

    def test_forward_moves_allowed(self):
        assert can_transition(CreatorStatus.PENDING, CreatorStatus.PROCESSING)
        assert can_transition(CreatorStatus.PROCESSING, CreatorStatus.COMPLETED)
        assert can_transition(CreatorStatus.PROCESSING, CreatorStatus.FAILED)

    def test_backward_moves_rejected(self):
        assert not can_transition(CreatorStatus.COMPLETED, CreatorStatus.PROCESSING)
        assert not can_transition(CreatorStatus.FAILED, CreatorStatus.PENDING)
        assert not can_transition(CreatorStatus.PENDING, CreatorStatus.COMPLETED)

    def test_recovery_may_complete_stuck_creators(self):
        assert can_transition(CreatorStatus.PENDING, CreatorStatus.COMPLETED, recovery=True)
        assert can_transition(CreatorStatus.PROCESSING, CreatorStatus.COMPLETED, recovery=True)
        assert not can_transition(CreatorStatus.FAILED, CreatorStatus.COMPLETED, recovery=True)

    def test_max_risk_level(self):
        assert max_risk_level(RiskLevel.LOW, RiskLevel.CRITICAL, RiskLevel.MEDIUM) == RiskLevel.CRITICAL
        assert max_risk_level(RiskLevel.UNKNOWN, RiskLevel.LOW) == RiskLevel.LOW


class TestRawResults:

    def test_merge_adds_keys(self):
        raw = RawResults().merged(SOCIAL_MEDIA_KEY, SocialMediaResults())
        raw = raw.merged("webSearch", WebSearchResults(queries=["q"]))
        assert set(raw.keys()) == {SOCIAL_MEDIA_KEY, "webSearch"}

    def test_existing_key_is_not_replaced(self):
        raw = RawResults().merged("webSearch", WebSearchResults(queries=["first"]))
        raw = raw.merged("webSearch", WebSearchResults(queries=["second"]))
        assert raw["webSearch"].queries == ["first"]

    def test_recovered_videos_merge_per_video(self):
        raw = RawResults().merged(RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V1", "first"))
        raw = raw.merged(RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V2"))
        raw = raw.merged(RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V1", "second"))
        videos = raw[RECOVERED_VIDEO_ANALYSIS_KEY].videos
        assert set(videos) == {"V1", "V2"}
        assert videos["V1"].transcript == "first"
        assert raw.linked_provider_ids() == {"V1", "V2"}

    def test_mismatched_provider_rejected(self):
        raw = RawResults().merged("webSearch", WebSearchResults())
        with pytest.raises(ValueError):
            raw.merged("webSearch", SocialMediaResults())

    def test_round_trips_through_json(self):
        raw = RawResults().merged(RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V1"))
        report = Report(creator_id="c1", raw_results=raw)
        restored = Report.model_validate_json(report.model_dump_json())
        assert isinstance(restored.raw_results[RECOVERED_VIDEO_ANALYSIS_KEY], RecoveredVideoAnalysis)


class TestBatches:

    def test_create_batch_creates_pending_creators(self, store, batch):
        creators = store.list_creators(batch.id)
        assert [c.name for c in creators] == ["Jane", "Sam"]
        assert all(c.status == CreatorStatus.PENDING for c in creators)
        assert batch.competitors == ["Pepsi"]

    def test_progress_counts(self, store, batch):
        first = store.list_creators(batch.id)[0]
        store.set_creator_status(first.id, CreatorStatus.PROCESSING)
        progress = store.batch_progress(batch.id)
        assert progress["PENDING"] == 1
        assert progress["PROCESSING"] == 1
        assert progress["total"] == 2

    def test_unknown_batch(self, store):
        assert store.get_batch("missing") is None
        with pytest.raises(KeyError):
            store.list_creators("missing")


class TestCreators:

    def test_invalid_transition_raises(self, store, batch):
        creator = store.list_creators(batch.id)[0]
        with pytest.raises(InvalidTransitionError):
            store.set_creator_status(creator.id, CreatorStatus.COMPLETED)

    def test_platform_status_recorded(self, store, batch):
        creator = store.list_creators(batch.id)[0]
        store.set_platform_status(creator.id, {"instagram": PlatformStatus.COMPLETED})
        assert store.get_creator(creator.id).platform_status == {"instagram": PlatformStatus.COMPLETED}

    def test_stuck_creators_newest_first(self, store, batch):
        jane, sam = store.list_creators(batch.id)
        now = datetime.now(timezone.utc)
        jane.updated_at = now - timedelta(hours=2)
        sam.updated_at = now - timedelta(hours=1)
        stuck = store.list_stuck_creators(now - timedelta(minutes=30))
        assert [c.id for c in stuck] == [sam.id, jane.id]

    def test_terminal_creators_are_not_stuck(self, store, batch):
        jane, _ = store.list_creators(batch.id)
        store.set_creator_status(jane.id, CreatorStatus.PROCESSING)
        store.set_creator_status(jane.id, CreatorStatus.FAILED)
        stuck = store.list_stuck_creators(datetime.now(timezone.utc) + timedelta(minutes=1))
        assert jane.id not in [c.id for c in stuck]


class TestReports:

    def _finding(self, title, severity="medium"):
        return Finding(type=FindingType.NEWS_ARTICLE, severity=severity, title=title)

    def test_save_report_merges_without_lowering_risk(self, store, batch):
        creator = store.list_creators(batch.id)[0]
        store.save_report(Report(
            creator_id=creator.id,
            risk_level=RiskLevel.HIGH,
            findings=[self._finding("a", "high")],
        ))
        merged = store.save_report(Report(
            creator_id=creator.id,
            risk_level=RiskLevel.LOW,
            findings=[self._finding("a", "high"), self._finding("b", "low")],
            raw_results=RawResults().merged("webSearch", WebSearchResults()),
        ))
        assert merged.risk_level == RiskLevel.HIGH
        assert [f.title for f in merged.findings] == ["a", "b"]
        assert "webSearch" in merged.raw_results

    def test_merge_raw_results_requires_report(self, store, batch):
        creator = store.list_creators(batch.id)[0]
        with pytest.raises(KeyError):
            store.merge_raw_results(creator.id, RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V1"))

    def test_repeated_merge_is_a_no_op(self, store, batch):
        creator = store.list_creators(batch.id)[0]
        store.save_report(Report(creator_id=creator.id))
        once = store.merge_raw_results(creator.id, RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V1"))
        twice = store.merge_raw_results(creator.id, RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V1"))
        assert twice.model_dump_json() == once.model_dump_json()
        assert store.linked_provider_ids() == {"V1"}


class TestPersistence:

    def test_reload_from_disk(self, tmp_path):
        path = tmp_path / "state.json"
        store = VettingStore(path)
        batch = store.create_batch("Persisted", [("Jane", [])])
        creator = store.list_creators(batch.id)[0]
        store.set_creator_status(creator.id, CreatorStatus.PROCESSING)
        store.save_report(Report(
            creator_id=creator.id,
            risk_level=RiskLevel.MEDIUM,
            raw_results=RawResults().merged(RECOVERED_VIDEO_ANALYSIS_KEY, _recovered("V9")),
        ))

        reloaded = VettingStore(path)
        assert reloaded.get_batch(batch.id).name == "Persisted"
        assert reloaded.get_creator(creator.id).status == CreatorStatus.PROCESSING
        assert reloaded.get_report(creator.id).risk_level == RiskLevel.MEDIUM
        assert reloaded.linked_provider_ids() == {"V9"}
        assert not (tmp_path / "state.json.tmp").exists()
