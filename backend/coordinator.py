"""Creator Vetting Pipeline - Batch Coordinator
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Runs every pending creator of a batch through fetch -> search -> analyze ->
aggregate with at most N creators in flight. A creator is admitted as soon
as a slot frees. One creator failing never affects its siblings, and a
failed creator is not retried.
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from config import VettingConfig
from content_fetcher import ContentFetcher
from events import (
    AnalysisStep,
    BatchCompleted,
    BatchEventStream,
    BatchMetrics,
    CreatorCompleted,
    CreatorFailed,
    CreatorStarted,
    EventStreamRegistry,
    FindingDiscovered,
)
from models import (
    SOCIAL_MEDIA_KEY,
    TERMINAL_CREATOR_STATUSES,
    VIDEO_ANALYSIS_KEY,
    WEB_SEARCH_KEY,
    Batch,
    BatchStatus,
    Creator,
    CreatorStatus,
    RawResults,
    Report,
    RiskLevel,
    WebSearchResults,
)
from risk_aggregator import aggregate
from store import VettingStore
from tier_analyzer import MultiTierAnalyzer
from web_search import WebSearchClient, WebSearchOutcome

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


class BatchAlreadyRunningError(RuntimeError):
    pass


@dataclass
class _RunState:
    in_flight: int = 0
    peak_in_flight: int = 0


@dataclass
class CreatorOutcome:
    creator_id: str
    status: CreatorStatus
    risk_level: Optional[RiskLevel] = None
    posts_count: int = 0
    error: Optional[str] = None


@dataclass
class BatchRunResult:
    batch_id: str
    status: BatchStatus
    metrics: BatchMetrics
    outcomes: list[CreatorOutcome] = field(default_factory=list)
    peak_in_flight: int = 0

    @property
    def completed(self) -> list[CreatorOutcome]:
        return [o for o in self.outcomes if o.status == CreatorStatus.COMPLETED]

    @property
    def failed(self) -> list[CreatorOutcome]:
        return [o for o in self.outcomes if o.status == CreatorStatus.FAILED]


def build_metrics(
    duration_seconds: float,
    total: int,
    completed: int,
    failed: int,
    total_posts: int,
    concurrency_used: int,
) -> BatchMetrics:
    duration_minutes = duration_seconds / 60
    per_minute = 1 / duration_minutes if duration_minutes > 0 else 0.0
    return BatchMetrics(
        duration_ms=int(duration_seconds * 1000),
        duration_minutes=round(duration_minutes, 2),
        total_creators=total,
        completed_creators=completed,
        failed_creators=failed,
        total_posts=total_posts,
        creators_per_minute=round(total * per_minute, 2),
        posts_per_minute=round(total_posts * per_minute, 2),
        concurrency_used=concurrency_used,
    )


class BatchCoordinator:
    """Drives batch runs. One coordinator serves many batches."""

    def __init__(
        self,
        store: VettingStore,
        fetcher: ContentFetcher,
        analyzer: MultiTierAnalyzer,
        registry: EventStreamRegistry,
        config: VettingConfig,
        searcher: Optional[WebSearchClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.registry = registry
        self.config = config
        self.searcher = searcher
        self._clock = clock
        self._running: set[str] = set()

    def is_running(self, batch_id: str) -> bool:
        return batch_id in self._running

    async def run(self, batch_id: str) -> BatchRunResult:
        """
        Process every PENDING creator of the batch once.

        Raises:
            KeyError: unknown batch id.
            BatchAlreadyRunningError: a run for this batch is in progress.
        """
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise KeyError(f"batch {batch_id} not found")
        if batch_id in self._running:
            raise BatchAlreadyRunningError(f"batch {batch_id} is already running")

        self._running.add(batch_id)
        stream = self.registry.open(batch_id)
        try:
            return await self._run(batch, stream)
        finally:
            stream.close()
            self.registry.discard(batch_id, stream)
            self._running.discard(batch_id)

    async def _run(self, batch: Batch, stream: BatchEventStream) -> BatchRunResult:
        self.store.update_batch_status(batch.id, BatchStatus.PROCESSING)
        pending = [c for c in self.store.list_creators(batch.id) if c.status == CreatorStatus.PENDING]
        limit = self.config.creators.concurrency
        logger.info(f"Batch {batch.id}: processing {len(pending)} creators, concurrency {limit}")

        started = self._clock()
        state = _RunState()
        semaphore = asyncio.Semaphore(limit)
        tasks = []

        for index, creator in enumerate(pending):
            if index > 0 and self.config.inter_wave_delay_seconds > 0:
                await asyncio.sleep(self.config.inter_wave_delay_seconds)
            await semaphore.acquire()
            tasks.append(asyncio.create_task(self._admit(batch, creator, stream, semaphore, state)))

        outcomes = [o for o in await asyncio.gather(*tasks) if o is not None]
        duration = self._clock() - started

        creators = self.store.list_creators(batch.id)
        completed = sum(1 for c in creators if c.status == CreatorStatus.COMPLETED)
        failed = sum(1 for c in creators if c.status == CreatorStatus.FAILED)
        metrics = build_metrics(
            duration,
            total=len(creators),
            completed=completed,
            failed=failed,
            total_posts=sum(o.posts_count for o in outcomes),
            concurrency_used=state.peak_in_flight,
        )

        if all(c.status in TERMINAL_CREATOR_STATUSES for c in creators):
            status = BatchStatus.COMPLETED
            self.store.update_batch_status(batch.id, status)
            await stream.publish(BatchCompleted(metrics=metrics))
            logger.info(
                f"Batch {batch.id} completed: {completed} completed, {failed} failed "
                f"in {metrics.duration_minutes} min ({metrics.creators_per_minute} creators/min)"
            )
        else:
            status = BatchStatus.PROCESSING
            stuck = len(creators) - completed - failed
            logger.warning(f"Batch {batch.id}: {stuck} creators not terminal; left for recovery")
        stream.close()

        return BatchRunResult(
            batch_id=batch.id,
            status=status,
            metrics=metrics,
            outcomes=outcomes,
            peak_in_flight=state.peak_in_flight,
        )

    async def _admit(
        self,
        batch: Batch,
        creator: Creator,
        stream: BatchEventStream,
        semaphore: asyncio.Semaphore,
        state: _RunState,
    ) -> Optional[CreatorOutcome]:
        state.in_flight += 1
        state.peak_in_flight = max(state.peak_in_flight, state.in_flight)
        try:
            return await self._process_creator(batch, creator, stream)
        finally:
            state.in_flight -= 1
            semaphore.release()

    # ------------------------------------------------------------------ #
    #  Per-creator pipeline                                              #
    # ------------------------------------------------------------------ #

    async def _process_creator(
        self, batch: Batch, creator: Creator, stream: BatchEventStream,
    ) -> Optional[CreatorOutcome]:
        current = self.store.get_creator(creator.id)
        if current is None or current.status != CreatorStatus.PENDING:
            # Recovered (or removed) since the run listed it
            logger.info(f"Creator {creator.id} no longer pending; skipping")
            return None

        posts_count = 0
        try:
            self.store.set_creator_status(creator.id, CreatorStatus.PROCESSING)
            await stream.publish(CreatorStarted(creator_id=creator.id, name=creator.name))

            content = await self.fetcher.fetch_creator_content(creator, stream)
            posts_count = content.posts_count
            self.store.set_platform_status(creator.id, content.platform_status)

            search = await self._search(batch, creator, stream)
            analysis = await self.analyzer.analyze_creator(creator, content.items, stream, batch.competitors)

            async with stream.analysis_step(creator.id, AnalysisStep.RATIONALE_GENERATION):
                assessment = aggregate(
                    analysis.evidence,
                    analysis.findings + search.findings,
                    analysis_completed=analysis.analysis_completed or bool(search.queries),
                    sources=analysis.sources,
                )
                for finding in assessment.findings:
                    await stream.publish(FindingDiscovered(
                        creator_id=creator.id,
                        title=finding.title,
                        severity=finding.severity,
                        type=finding.type,
                        source=finding.source,
                    ))

                raw_results = RawResults().merged(
                    SOCIAL_MEDIA_KEY,
                    analysis.social_media_results({p: r.to_summary() for p, r in content.results.items()}),
                )
                video_results = analysis.video_analysis_results()
                if video_results is not None:
                    raw_results = raw_results.merged(VIDEO_ANALYSIS_KEY, video_results)
                if search.queries:
                    raw_results = raw_results.merged(WEB_SEARCH_KEY, WebSearchResults(
                        queries=search.queries,
                        topic_counts=search.topic_counts,
                        results_count=search.results_count,
                    ))

                self.store.save_report(Report(
                    creator_id=creator.id,
                    risk_level=assessment.risk_level,
                    summary=assessment.summary,
                    findings=assessment.findings,
                    search_queries=search.queries,
                    raw_results=raw_results,
                ))

            self.store.set_creator_status(creator.id, CreatorStatus.COMPLETED)
            brands = analysis.brand_summary
            await stream.publish(CreatorCompleted(
                creator_id=creator.id,
                name=creator.name,
                risk_level=assessment.risk_level,
                findings_count=len(assessment.findings),
                summary=assessment.summary,
                posts_count=posts_count,
                brands_count=len(brands["all_brands"]),
                sponsored_count=len(brands["sponsored_brands"]),
                competitor_partnerships=analysis.competitor_partnerships,
            ))
            return CreatorOutcome(creator.id, CreatorStatus.COMPLETED, assessment.risk_level, posts_count)

        except Exception as e:
            # Bulkhead: the failure stays with this creator
            error = str(e)[:MAX_ERROR_LENGTH] or type(e).__name__
            logger.error(f"Creator {creator.id} ({creator.name}) failed: {error}", exc_info=True)
            try:
                current = self.store.get_creator(creator.id)
                if current is not None and current.status == CreatorStatus.PROCESSING:
                    self.store.set_creator_status(creator.id, CreatorStatus.FAILED)
            except Exception as store_error:
                logger.error(f"Could not mark creator {creator.id} failed: {store_error}")
            await stream.publish(CreatorFailed(creator_id=creator.id, name=creator.name, error=error))
            return CreatorOutcome(creator.id, CreatorStatus.FAILED, posts_count=posts_count, error=error)

    async def _search(self, batch: Batch, creator: Creator, stream: BatchEventStream) -> WebSearchOutcome:
        if self.searcher is None or not self.searcher.is_configured:
            return WebSearchOutcome()
        handles = self.fetcher.resolve_links(creator.social_links).values()
        return await self.searcher.search_creator(
            creator.id, creator.name, handles, stream, extra_topics=batch.search_terms,
        )
