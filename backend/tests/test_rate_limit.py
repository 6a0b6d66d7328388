"""Tests for per-dependency concurrency and rate ceilings."""

import asyncio

import pytest

from config import PoolLimits, VettingConfig
from rate_limit import DependencyPool, DependencyPools


class TestDependencyPool:

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            DependencyPool("video", 0)

    def test_from_limits(self):
        pool = DependencyPool.from_limits("image", PoolLimits(4, 8.0))
        assert pool.concurrency == 4
        assert pool.rate_per_second == 8.0

    @pytest.mark.asyncio
    async def test_concurrency_ceiling_holds(self):
        pool = DependencyPool("video", 2)

        async def call():
            async with pool.slot():
                await asyncio.sleep(0.01)

        await asyncio.gather(*(call() for _ in range(6)))
        assert pool.peak_in_flight == 2
        assert pool.in_flight == 0
        assert pool.total_calls == 6

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self):
        pool = DependencyPool("video", 1)
        with pytest.raises(RuntimeError):
            async with pool.slot():
                raise RuntimeError("provider down")
        assert pool.in_flight == 0
        async with pool.slot():
            pass
        assert pool.total_calls == 2

    @pytest.mark.asyncio
    async def test_rate_ceiling_waits_for_window(self, monkeypatch):
        now = [100.0]
        pool = DependencyPool("search", 10, rate_per_second=2, clock=lambda: now[0])
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        monkeypatch.setattr("rate_limit.asyncio.sleep", fake_sleep)
        for _ in range(3):
            async with pool.slot():
                pass

        # Third call had to wait for the first to leave the one-second window
        assert len(sleeps) == 1
        assert sleeps[0] == pytest.approx(1.0)
        assert pool.total_calls == 3


class TestDependencyPools:

    def test_one_pool_per_dependency(self):
        pools = DependencyPools.from_config(VettingConfig())
        assert pools.video.concurrency == 25
        assert pools.image.concurrency == 50
        assert pools.brand_detection.rate_per_second == 10.0
        assert pools.scraper.concurrency == 15
        assert pools.search.concurrency == 2
