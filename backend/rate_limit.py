"""Creator Vetting Pipeline - Dependency Pools
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Every external dependency gets its own concurrency ceiling plus a
requests-per-second ceiling (sliding one-second window).
"""

import asyncio
import time
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from config import PoolLimits, VettingConfig

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 1.0


class DependencyPool:
    """Bounded concurrency and request rate for one external dependency."""

    def __init__(
        self,
        name: str,
        concurrency: int,
        rate_per_second: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if concurrency < 1:
            raise ValueError(f"{name}: concurrency must be at least 1")
        self.name = name
        self.concurrency = concurrency
        self.rate_per_second = rate_per_second
        self._clock = clock
        self._semaphore = asyncio.Semaphore(concurrency)
        self._rate_lock = asyncio.Lock()
        self._calls: deque[float] = deque()
        self.in_flight = 0
        self.peak_in_flight = 0
        self.total_calls = 0

    @classmethod
    def from_limits(cls, name: str, limits: PoolLimits) -> "DependencyPool":
        return cls(name, limits.concurrency, limits.rate_per_second)

    async def _wait_for_rate_slot(self) -> None:
        if not self.rate_per_second:
            return
        max_calls = max(1, int(self.rate_per_second * RATE_WINDOW_SECONDS))
        async with self._rate_lock:
            while True:
                now = self._clock()
                cutoff = now - RATE_WINDOW_SECONDS
                while self._calls and self._calls[0] <= cutoff:
                    self._calls.popleft()
                if len(self._calls) < max_calls:
                    self._calls.append(now)
                    return
                wait = self._calls[0] + RATE_WINDOW_SECONDS - now
                logger.debug(f"{self.name}: rate ceiling reached, waiting {wait:.3f}s")
                await asyncio.sleep(max(wait, 0.001))

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one concurrency slot for the duration of a call."""
        async with self._semaphore:
            await self._wait_for_rate_slot()
            self.in_flight += 1
            self.total_calls += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                yield
            finally:
                self.in_flight -= 1


@dataclass
class DependencyPools:
    video: DependencyPool
    image: DependencyPool
    brand_detection: DependencyPool
    scraper: DependencyPool
    search: DependencyPool

    @classmethod
    def from_config(cls, config: VettingConfig) -> "DependencyPools":
        return cls(
            video=DependencyPool.from_limits("video_analysis", config.video),
            image=DependencyPool.from_limits("image_analysis", config.image),
            brand_detection=DependencyPool.from_limits("brand_detection", config.brand_detection),
            scraper=DependencyPool.from_limits("scraper", config.scraper),
            search=DependencyPool.from_limits("web_search", config.search),
        )
