"""Creator Vetting Pipeline - Recovery Reconciler
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Links video analyses that finished at the provider but never reached a
report (crashed runs, timed-out polls) back to their creators.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import VettingConfig
from errors import AnalysisError, ConfigError, RecoveryError
from keyword_screener import KeywordScreener
from media_analyzer import TwelveLabsClient
from models import (
    RECOVERED_VIDEO_ANALYSIS_KEY,
    ContentItem,
    Creator,
    CreatorStatus,
    RawResults,
    RecoveredVideo,
    RecoveredVideoAnalysis,
    Report,
    utc_now,
)
from risk_aggregator import aggregate
from store import STUCK_STATUSES, VettingStore

logger = logging.getLogger(__name__)

RECOVERED_PLATFORM = "video"


@dataclass
class RecoveryOutcome:
    creator_id: str
    external_id: str
    report: Report
    already_linked: bool = False
    report_created: bool = False
    status_changed: bool = False


class RecoveryReconciler:
    """Finds orphaned provider analyses and stuck creators, and relinks them."""

    def __init__(
        self,
        store: VettingStore,
        provider: TwelveLabsClient,
        config: VettingConfig,
        keyword_screener: Optional[KeywordScreener] = None,
    ):
        self.store = store
        self.provider = provider
        self.config = config
        self.keyword_screener = keyword_screener or KeywordScreener()

    async def list_unlinked_analyses(self) -> list[dict]:
        """Completed provider analyses not referenced by any report."""
        if not self.provider.is_configured:
            raise RecoveryError("Video analysis provider is not configured")
        try:
            videos = await self.provider.list_completed()
        except (AnalysisError, ConfigError) as e:
            raise RecoveryError(f"Could not list provider analyses: {e}") from e
        linked = self.store.linked_provider_ids()
        return [v for v in videos if v["provider_id"] not in linked]

    def list_stuck_creators(self, now: Optional[datetime] = None) -> list[Creator]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=self.config.stale_after_minutes)
        return self.store.list_stuck_creators(cutoff)

    async def recover(self, external_id: str, creator_id: str) -> RecoveryOutcome:
        """
        Attach one provider analysis to a creator's report.

        Repeating a recovery for the same pair changes nothing.

        Raises:
            RecoveryError: unknown creator, provider not configured, or the
                provider result could not be fetched.
        """
        creator = self.store.get_creator(creator_id)
        if creator is None:
            raise RecoveryError(f"creator {creator_id} not found")

        report = self.store.get_report(creator_id)
        if report is not None and external_id in report.raw_results.linked_provider_ids():
            logger.info(f"Analysis {external_id} already linked to creator {creator_id}")
            status_changed = self._complete_if_stuck(creator)
            return RecoveryOutcome(creator_id, external_id, report, already_linked=True,
                                   status_changed=status_changed)

        if not self.provider.is_configured:
            raise RecoveryError("Video analysis provider is not configured")
        try:
            result = await self.provider.fetch_result(external_id)
        except (AnalysisError, ConfigError) as e:
            raise RecoveryError(f"Could not fetch analysis {external_id}: {e}") from e

        payload = RecoveredVideoAnalysis(videos={
            external_id: RecoveredVideo(
                transcript=result.transcript,
                visual_analysis=result.visual_analysis,
                logo_detections=result.logo_detections,
                content_classification=result.content_classification,
                index_info=result.index_info,
                recovered_at=utc_now(),
            ),
        })

        created = report is None
        if created:
            item = ContentItem(
                id=external_id,
                platform=RECOVERED_PLATFORM,
                handle=creator.name,
                transcript=result.transcript,
                media_type="video",
            )
            findings = self.keyword_screener.screen(result.transcript).to_findings(item)
            assessment = aggregate(result.evidence, findings, analysis_completed=True)
            report = self.store.save_report(Report(
                creator_id=creator_id,
                risk_level=assessment.risk_level,
                summary=assessment.summary,
                findings=assessment.findings,
                raw_results=RawResults().merged(RECOVERED_VIDEO_ANALYSIS_KEY, payload),
            ))
        else:
            report = self.store.merge_raw_results(creator_id, RECOVERED_VIDEO_ANALYSIS_KEY, payload)

        status_changed = self._complete_if_stuck(creator)
        logger.info(
            f"Recovered analysis {external_id} for creator {creator_id} "
            f"(report {'created' if created else 'merged'})"
        )
        return RecoveryOutcome(creator_id, external_id, report,
                               report_created=created, status_changed=status_changed)

    def _complete_if_stuck(self, creator: Creator) -> bool:
        if creator.status not in STUCK_STATUSES:
            return False
        self.store.set_creator_status(creator.id, CreatorStatus.COMPLETED, recovery=True)
        return True
