import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add backend directory to path so imports work
backend_path = Path(__file__).parent.parent
sys.path.append(str(backend_path))

from config import PoolLimits, RetryConfig, VettingConfig
from content_fetcher import CreatorContent, PlatformResult
from events import BatchEventStream
from models import ContentItem
from tier_analyzer import TIER_KEYWORD, CreatorAnalysis


async def drain(subscription) -> list:
    """Collect every event of a subscription. The stream must be closed first."""
    return [event async for event in subscription]


@pytest.fixture
def fast_config():
    """Deterministic limits with no waiting between admissions or retries."""
    return VettingConfig(
        creators=PoolLimits(2),
        inter_wave_delay_seconds=0.0,
        retry=RetryConfig(max_retries=2, base_delay_seconds=0.0),
    )


@pytest.fixture
def stream():
    return BatchEventStream("batch-1")


@pytest.fixture
def recent():
    return datetime.now(timezone.utc) - timedelta(days=3)


@pytest.fixture
def sample_items(recent):
    return [
        ContentItem(
            id="post-1",
            platform="instagram",
            handle="jane",
            caption="Check out my new video about alcohol and partying 🍺",
            media_type="image",
            media_url="https://cdn.example.com/1.jpg",
            permalink="https://instagram.com/p/1",
            posted_at=recent,
        ),
        ContentItem(
            id="post-2",
            platform="instagram",
            handle="jane",
            caption="Had a great workout today, feeling strong! 💪",
            media_type="text",
            permalink="https://instagram.com/p/2",
            posted_at=recent,
        ),
    ]


async def wait_until(condition, turns=200):
    """Yield to the event loop until `condition()` holds."""
    for _ in range(turns):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class GatedFetcher:
    """Fetcher stand-in whose per-creator calls block until released."""

    def __init__(self, gated=(), errors=None):
        self.gates = {name: asyncio.Event() for name in gated}
        self.errors = errors or {}
        self.started: list[str] = []

    def release(self, name):
        self.gates[name].set()

    def resolve_links(self, links):
        return {"instagram": "handle"}

    async def fetch_creator_content(self, creator, stream):
        self.started.append(creator.name)
        gate = self.gates.get(creator.name)
        if gate is not None:
            await gate.wait()
        if creator.name in self.errors:
            raise self.errors[creator.name]
        item = ContentItem(id=f"{creator.name}-1", platform="instagram", handle="handle", caption="hi")
        return CreatorContent(
            creator_id=creator.id,
            results={"instagram": PlatformResult("instagram", "handle", items=[item])},
        )


def stub_analyzer(findings_by_name=None):
    """Analyzer stand-in returning a keyword-only analysis per creator."""
    findings_by_name = findings_by_name or {}

    def analyze(creator, items, stream, competitors=()):
        return CreatorAnalysis(
            items=items,
            findings=list(findings_by_name.get(creator.name, [])),
            tiers_completed={TIER_KEYWORD},
        )

    analyzer = MagicMock()
    analyzer.analyze_creator = AsyncMock(side_effect=analyze)
    return analyzer
