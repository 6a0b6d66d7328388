"""Creator Vetting Pipeline - Content Cache
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Read-only lookup of pre-transcribed posts in a Vespa index, consulted
before any live platform fetch.
"""

import re
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from errors import FetchError
from models import ContentItem

logger = logging.getLogger(__name__)

CACHE_QUERY_TIMEOUT = 10.0          # Seconds, client side
CACHE_QUERY_TIMEOUT_VESPA = "10s"   # Server side
DAYS_PER_MONTH = 30
HANDLE_SAFE_PATTERN = re.compile(r"[^\w.\-]")

CACHE_FIELDS = "id, handle, transcription_text, caption, platform, posted_at_ts, asset_url, preview_url, permalink"
VIDEO_PLATFORMS = {"youtube", "tiktok"}


def lookback_cutoff(lookback_months: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=DAYS_PER_MONTH * lookback_months)


def build_query(handle: str, platform: str, cutoff_ts: int, limit: int) -> str:
    """YQL for posts by handle (with or without @) newer than the cutoff."""
    handle = HANDLE_SAFE_PATTERN.sub("", handle.lstrip("@"))
    platform = HANDLE_SAFE_PATTERN.sub("", platform)
    return (
        f"select {CACHE_FIELDS} from sources post "
        f'where (handle contains "{handle}" or handle contains "@{handle}") '
        f'and platform contains "{platform}" '
        f"and posted_at_ts > {cutoff_ts} "
        f"order by posted_at_ts desc limit {limit}"
    )


def _first(value) -> str:
    if isinstance(value, list):
        return " ".join(str(v) for v in value if v).strip()
    return str(value or "").strip()


def _parse_children(body: dict, handle: str, platform: str) -> list[ContentItem]:
    """Turn a Vespa search response into content items. Raises on unexpected shapes."""
    children = (body.get("root") or {}).get("children") or []
    items = []
    for child in children:
        fields = child.get("fields") or {}
        if not fields.get("id"):
            continue
        post_platform = fields.get("platform") or platform
        media_type = "video" if post_platform in VIDEO_PLATFORMS else "image"
        posted_ts = fields.get("posted_at_ts")
        items.append(ContentItem(
            id=str(fields["id"]),
            platform=post_platform,
            handle=handle,
            caption=_first(fields.get("caption")),
            transcript=_first(fields.get("transcription_text")),
            media_type=media_type,
            media_url=fields.get("asset_url"),
            thumbnail_url=fields.get("preview_url"),
            permalink=fields.get("permalink"),
            posted_at=datetime.fromtimestamp(posted_ts, tz=timezone.utc) if posted_ts else None,
            from_cache=True,
        ))
    return items


class VespaContentCache:
    """
    Cached post lookup.

    get_cached_posts() returns [] on a miss. Transport and parse failures raise
    FetchError so the fetcher can fall back to a live fetch.
    """

    def __init__(
        self,
        endpoint: Optional[str],
        timeout: float = CACHE_QUERY_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint.rstrip("/") if endpoint else None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint)

    async def close(self) -> None:
        await self.client.aclose()

    async def get_cached_posts(
        self,
        handle: str,
        platform: str,
        lookback_months: int,
        limit: int = 100,
    ) -> list[ContentItem]:
        if not self.is_configured:
            return []

        cutoff = int(lookback_cutoff(lookback_months).timestamp())
        yql = build_query(handle, platform, cutoff, limit)

        try:
            response = await self.client.post(
                f"{self.endpoint}/search/",
                json={"yql": yql, "timeout": CACHE_QUERY_TIMEOUT_VESPA},
            )
        except httpx.HTTPError as e:
            raise FetchError(platform, f"content cache query failed: {e!r}") from e
        if response.status_code != 200:
            raise FetchError(platform, f"content cache returned {response.status_code}")

        try:
            items = _parse_children(response.json(), handle, platform)
        except (ValueError, TypeError, KeyError, AttributeError, OverflowError, OSError) as e:
            raise FetchError(platform, f"content cache returned a malformed response: {e!r}") from e

        if items:
            logger.info(f"Content cache hit: {len(items)} {platform} posts for @{handle}")
        return items
