"""Creator Vetting Pipeline - Content Fetcher
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Per-creator post retrieval across platforms: content cache first, live
platform fetch otherwise. One platform failing never fails the creator.
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from config import VettingConfig
from content_cache import VespaContentCache, lookback_cutoff
from errors import FetchError
from events import BatchEventStream, PlatformCompleted, PlatformStarted
from models import ContentItem, Creator, PlatformStatus, PlatformSummary
from platforms import PlatformAdapter, resolve_social_link
from rate_limit import DependencyPool

logger = logging.getLogger(__name__)


@dataclass
class PlatformResult:
    platform: str
    handle: str
    items: list[ContentItem] = field(default_factory=list)
    from_cache: bool = False
    error: Optional[FetchError] = None
    not_requested: bool = False
    duration_ms: int = 0

    @property
    def status(self) -> PlatformStatus:
        if self.not_requested:
            return PlatformStatus.NOT_REQUESTED
        if self.error is not None:
            return PlatformStatus.FAILED
        return PlatformStatus.COMPLETED

    def to_summary(self) -> PlatformSummary:
        return PlatformSummary(
            handle=self.handle,
            posts_count=len(self.items),
            from_cache=self.from_cache,
            error=str(self.error) if self.error else None,
            duration_ms=self.duration_ms,
        )


@dataclass
class CreatorContent:
    creator_id: str
    results: dict[str, PlatformResult] = field(default_factory=dict)

    @property
    def items(self) -> list[ContentItem]:
        return [item for result in self.results.values() for item in result.items]

    @property
    def posts_count(self) -> int:
        return sum(len(result.items) for result in self.results.values())

    @property
    def platform_status(self) -> dict[str, PlatformStatus]:
        return {platform: result.status for platform, result in self.results.items()}

    @property
    def errors(self) -> dict[str, str]:
        return {p: str(r.error) for p, r in self.results.items() if r.error is not None}


class ContentFetcher:
    """
    Fetches a creator's recent posts.

    Platforms for one creator run in parallel up to `platform_concurrency`;
    live fetches additionally share the cross-creator scraper pool.
    """

    def __init__(
        self,
        adapters: dict[str, PlatformAdapter],
        config: VettingConfig,
        cache: Optional[VespaContentCache] = None,
        scraper_pool: Optional[DependencyPool] = None,
    ):
        self.adapters = adapters
        self.config = config
        self.cache = cache
        self.scraper_pool = scraper_pool or DependencyPool.from_limits("scraper", config.scraper)

    def resolve_links(self, links: list[str]) -> dict[str, str]:
        """platform -> handle; the first link per platform wins."""
        handles: dict[str, str] = {}
        for link in links:
            resolved = resolve_social_link(link)
            if resolved is None:
                continue
            platform, handle = resolved
            if platform.value in handles:
                logger.warning(f"Ignoring extra {platform.value} link {link[:100]}")
                continue
            handles[platform.value] = handle
        return handles

    async def fetch_creator_content(self, creator: Creator, stream: BatchEventStream) -> CreatorContent:
        content = CreatorContent(creator_id=creator.id)
        handles = self.resolve_links(creator.social_links)

        for platform in self.adapters:
            if platform not in handles:
                content.results[platform] = PlatformResult(platform, "", not_requested=True)

        if not handles:
            logger.warning(f"Creator {creator.id} has no supported social links")
            return content

        semaphore = asyncio.Semaphore(self.config.platform_concurrency)
        fetched = await asyncio.gather(*(
            self._fetch_platform(creator, platform, handle, stream, semaphore)
            for platform, handle in handles.items()
        ))
        for result in fetched:
            content.results[result.platform] = result

        logger.info(
            f"Creator {creator.id}: {content.posts_count} posts from "
            f"{sum(1 for r in fetched if r.status == PlatformStatus.COMPLETED)}/{len(fetched)} platforms"
        )
        return content

    async def _fetch_platform(
        self,
        creator: Creator,
        platform: str,
        handle: str,
        stream: BatchEventStream,
        semaphore: asyncio.Semaphore,
    ) -> PlatformResult:
        result = PlatformResult(platform, handle)
        adapter = self.adapters.get(platform)
        cache_enabled = self.cache is not None and self.cache.is_configured

        if (adapter is None or not adapter.is_configured) and not cache_enabled:
            logger.warning(f"{platform} not configured; skipping @{handle} for creator {creator.id}")
            result.not_requested = True
            return result

        async with semaphore:
            await stream.publish(PlatformStarted(creator_id=creator.id, platform=platform))
            started = time.monotonic()
            try:
                await self._fill(result, adapter, cache_enabled)
            except FetchError as e:
                result.error = e
            except httpx.HTTPError as e:
                result.error = FetchError(platform, f"request failed: {e!r}")
            except Exception as e:
                result.error = FetchError(platform, f"unexpected {type(e).__name__}: {e}")
            if result.error is not None:
                logger.error(f"Fetch failed for creator {creator.id} on {platform}: {result.error}")

            result.duration_ms = int((time.monotonic() - started) * 1000)
            await stream.publish(PlatformCompleted(
                creator_id=creator.id,
                platform=platform,
                posts_count=len(result.items),
                duration_ms=result.duration_ms,
                from_cache=result.from_cache,
                error=str(result.error) if result.error else None,
            ))
        return result

    async def _fill(self, result: PlatformResult, adapter: Optional[PlatformAdapter], cache_enabled: bool) -> None:
        limit = self.config.max_posts_per_platform

        if cache_enabled:
            try:
                cached = await self.cache.get_cached_posts(
                    result.handle, result.platform, self.config.lookback_months, limit=limit,
                )
            except FetchError as e:
                logger.warning(f"Content cache unavailable for {result.platform} @{result.handle}: {e}")
                cached = []
            if cached:
                result.items = cached[:limit]
                result.from_cache = True
                return

        if adapter is None or not adapter.is_configured:
            result.not_requested = True
            return

        since = lookback_cutoff(self.config.lookback_months)
        async with self.scraper_pool.slot():
            result.items = await adapter.fetch_posts(result.handle, since, limit)

    async def resolve_media_url(self, item: ContentItem) -> Optional[str]:
        adapter = self.adapters.get(item.platform)
        if adapter is None:
            return item.media_url
        return await adapter.resolve_media_url(item)
