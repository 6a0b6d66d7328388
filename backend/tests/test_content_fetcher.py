"""Tests for per-creator content retrieval and the content cache."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import drain
from content_cache import VespaContentCache, build_query
from content_fetcher import ContentFetcher
from errors import FetchError
from models import ContentItem, Creator, PlatformStatus


def _adapter(items=None, error=None, configured=True):
    adapter = MagicMock()
    adapter.is_configured = configured
    adapter.fetch_posts = AsyncMock(return_value=items or [], side_effect=error)
    return adapter


def _cache(items=None, error=None, configured=True):
    cache = MagicMock()
    cache.is_configured = configured
    cache.get_cached_posts = AsyncMock(return_value=items or [], side_effect=error)
    return cache


def _creator(*links):
    return Creator(batch_id="batch-1", name="Jane", social_links=list(links))


class TestFetchCreatorContent:

    @pytest.mark.asyncio
    async def test_platform_failure_isolated(self, fast_config, stream, sample_items):
        adapters = {
            "youtube": _adapter(error=FetchError("youtube", "quota exceeded")),
            "tiktok": _adapter(),
            "instagram": _adapter(sample_items),
        }
        fetcher = ContentFetcher(adapters, fast_config)
        creator = _creator(
            "https://www.youtube.com/@jane",
            "https://instagram.com/jane",
            "https://twitter.com/jane",
        )

        subscription = stream.subscribe()
        content = await fetcher.fetch_creator_content(creator, stream)
        stream.close()
        events = await drain(subscription)

        assert content.platform_status == {
            "youtube": PlatformStatus.FAILED,
            "tiktok": PlatformStatus.NOT_REQUESTED,
            "instagram": PlatformStatus.COMPLETED,
        }
        assert [i.id for i in content.items] == ["post-1", "post-2"]
        assert "quota exceeded" in content.errors["youtube"]
        adapters["tiktok"].fetch_posts.assert_not_awaited()

        completed = {e.platform: e for e in events if e.event == "platform_completed"}
        assert set(completed) == {"youtube", "instagram"}
        assert completed["instagram"].posts_count == 2
        assert completed["youtube"].error is not None
        assert sum(1 for e in events if e.event == "platform_started") == 2

    @pytest.mark.asyncio
    async def test_cache_hit_skips_live_fetch(self, fast_config, stream, sample_items):
        adapter = _adapter()
        cache = _cache(sample_items)
        fetcher = ContentFetcher({"instagram": adapter}, fast_config, cache=cache)

        content = await fetcher.fetch_creator_content(_creator("https://instagram.com/jane"), stream)

        result = content.results["instagram"]
        assert result.from_cache is True
        assert result.to_summary().posts_count == 2
        adapter.fetch_posts.assert_not_awaited()
        cache.get_cached_posts.assert_awaited_once_with(
            "jane", "instagram", fast_config.lookback_months, limit=fast_config.max_posts_per_platform,
        )

    @pytest.mark.asyncio
    async def test_cache_error_falls_back_to_live(self, fast_config, stream, sample_items):
        adapter = _adapter(sample_items)
        cache = _cache(error=FetchError("instagram", "content cache returned 500"))
        fetcher = ContentFetcher({"instagram": adapter}, fast_config, cache=cache)

        content = await fetcher.fetch_creator_content(_creator("https://instagram.com/jane"), stream)

        assert content.results["instagram"].from_cache is False
        assert content.posts_count == 2
        adapter.fetch_posts.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unconfigured_platform_not_requested(self, fast_config, stream):
        fetcher = ContentFetcher({"tiktok": _adapter(configured=False)}, fast_config)
        subscription = stream.subscribe()
        content = await fetcher.fetch_creator_content(_creator("https://www.tiktok.com/@sam"), stream)
        stream.close()

        assert content.platform_status == {"tiktok": PlatformStatus.NOT_REQUESTED}
        assert await drain(subscription) == []

    @pytest.mark.asyncio
    async def test_transport_error_becomes_fetch_error(self, fast_config, stream):
        adapter = _adapter(error=httpx.ReadTimeout("timed out"))
        fetcher = ContentFetcher({"tiktok": adapter}, fast_config)
        content = await fetcher.fetch_creator_content(_creator("https://www.tiktok.com/@sam"), stream)
        assert isinstance(content.results["tiktok"].error, FetchError)

    @pytest.mark.asyncio
    async def test_unexpected_adapter_error_isolated(self, fast_config, stream, sample_items):
        adapters = {
            "youtube": _adapter(error=KeyError("id")),
            "instagram": _adapter(sample_items),
        }
        fetcher = ContentFetcher(adapters, fast_config)
        creator = _creator("https://www.youtube.com/@jane", "https://instagram.com/jane")

        content = await fetcher.fetch_creator_content(creator, stream)

        assert content.platform_status == {
            "youtube": PlatformStatus.FAILED,
            "instagram": PlatformStatus.COMPLETED,
        }
        assert isinstance(content.results["youtube"].error, FetchError)
        assert "KeyError" in content.errors["youtube"]

    @pytest.mark.asyncio
    async def test_malformed_cache_response_falls_back_to_live(self, fast_config, stream, sample_items):
        cache = VespaContentCache(
            "http://vespa:8080",
            client=httpx.AsyncClient(transport=httpx.MockTransport(
                lambda r: httpx.Response(200, text="<html>gateway</html>"),
            )),
        )
        adapter = _adapter(sample_items)
        fetcher = ContentFetcher({"instagram": adapter}, fast_config, cache=cache)

        content = await fetcher.fetch_creator_content(_creator("https://instagram.com/jane"), stream)
        await cache.close()

        assert content.platform_status == {"instagram": PlatformStatus.COMPLETED}
        assert content.results["instagram"].from_cache is False
        adapter.fetch_posts.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_posts_limited_per_platform(self, fast_config, stream):
        items = [ContentItem(id=f"p{i}", platform="tiktok", handle="sam") for i in range(30)]
        fetcher = ContentFetcher({"tiktok": _adapter()}, fast_config, cache=_cache(items))
        content = await fetcher.fetch_creator_content(_creator("https://www.tiktok.com/@sam"), stream)
        assert content.posts_count == fast_config.max_posts_per_platform


class TestResolveLinks:

    def test_first_link_per_platform_wins(self, fast_config):
        fetcher = ContentFetcher({}, fast_config)
        handles = fetcher.resolve_links([
            "https://www.tiktok.com/@first",
            "https://www.tiktok.com/@second",
            "https://instagram.com/jane",
            "https://example.com/nope",
        ])
        assert handles == {"tiktok": "first", "instagram": "jane"}


class TestContentCache:

    def test_query_sanitizes_handle(self):
        yql = build_query('@ja"ne', "tiktok", 1700000000, 10)
        assert 'handle contains "jane"' in yql
        assert 'handle contains "@jane"' in yql
        assert "posted_at_ts > 1700000000" in yql
        assert yql.endswith("limit 10")

    @pytest.mark.asyncio
    async def test_unconfigured_cache_misses(self):
        cache = VespaContentCache(None)
        assert cache.is_configured is False
        assert await cache.get_cached_posts("jane", "tiktok", 6) == []
        await cache.close()

    @pytest.mark.asyncio
    async def test_hits_parsed(self):
        def handler(request):
            return httpx.Response(200, json={"root": {"children": [
                {"fields": {"id": 1, "platform": "tiktok", "caption": ["so", "fun"],
                            "transcription_text": "beer time", "posted_at_ts": 1760000000,
                            "asset_url": "https://cdn.tt/1.mp4"}},
                {"fields": {"caption": "no id"}},
            ]}})

        cache = VespaContentCache("http://vespa:8080/", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        items = await cache.get_cached_posts("sam", "tiktok", 6)
        await cache.close()

        assert len(items) == 1
        item = items[0]
        assert item.id == "1"
        assert item.caption == "so fun"
        assert item.transcript == "beer time"
        assert item.media_type == "video"
        assert item.from_cache is True

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        cache = VespaContentCache(
            "http://vespa:8080", client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503))),
        )
        with pytest.raises(FetchError):
            await cache.get_cached_posts("sam", "tiktok", 6)
        await cache.close()

    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"root": {"children": [{"fields": {"id": 1, "posted_at_ts": "yesterday"}}]}}),
    ])
    @pytest.mark.asyncio
    async def test_malformed_response_raises_fetch_error(self, response):
        cache = VespaContentCache(
            "http://vespa:8080", client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: response)),
        )
        with pytest.raises(FetchError):
            await cache.get_cached_posts("sam", "tiktok", 6)
        await cache.close()
