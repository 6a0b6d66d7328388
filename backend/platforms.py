"""Creator Vetting Pipeline - Platform Adapters
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Live post fetching for YouTube, TikTok and Instagram. Each adapter turns a
creator handle into ContentItems posted inside the lookback window.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

import httpx
from youtube_transcript_api import YouTubeTranscriptApi
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError

from config import Credentials, RetryConfig
from errors import FetchError
from models import ContentItem

logger = logging.getLogger(__name__)


class Platform(str, Enum):
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"


# Host -> platform. Anything else is an unsupported link.
PLATFORM_HOSTS = {
    "youtube.com": Platform.YOUTUBE,
    "www.youtube.com": Platform.YOUTUBE,
    "m.youtube.com": Platform.YOUTUBE,
    "tiktok.com": Platform.TIKTOK,
    "www.tiktok.com": Platform.TIKTOK,
    "m.tiktok.com": Platform.TIKTOK,
    "instagram.com": Platform.INSTAGRAM,
    "www.instagram.com": Platform.INSTAGRAM,
}

YOUTUBE_PATH_PREFIXES = ("c", "user", "channel")
INSTAGRAM_RESERVED_PATHS = {"p", "reel", "reels", "explore", "stories", "tv"}

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
YOUTUBE_MAX_RESULTS = 50                # API ceiling per page
YOUTUBE_CHANNEL_ID_PREFIX = "UC"
YOUTUBE_CHANNEL_ID_LENGTH = 24
YOUTUBE_TRANSCRIPT_LIMIT = 20000        # Characters kept per transcript

TIKTOK_TCM_URL = "https://business-api.tiktok.com/open_api/v1.3/tto/tcm/creator/public/video/list/"
TIKTOK_PAGE_SIZE = 10
TIKTOK_MAX_PAGES = 100

INSTAGRAM_GRAPH_BASE = "https://graph.facebook.com/v18.0"
INSTAGRAM_PAGE_SIZE = 100
INSTAGRAM_MAX_PAGES = 10
INSTAGRAM_MEDIA_FIELDS = "caption,comments_count,like_count,media_product_type,media_type,media_url,thumbnail_url,permalink,timestamp"


def resolve_social_link(url: str) -> Optional[tuple[Platform, str]]:
    """
    Map a profile link to (platform, handle).

    Returns None for unsupported hosts or links without a handle.
    """
    url = (url or "").strip()
    if not url:
        return None
    if "://" not in url:
        url = "https://" + url

    parsed = urlparse(url)
    platform = PLATFORM_HOSTS.get((parsed.hostname or "").lower())
    if platform is None:
        logger.warning(f"Unsupported social link ignored: {url[:100]}")
        return None

    segments = [s for s in parsed.path.split("/") if s]
    if not segments:
        return None

    handle: Optional[str] = None
    first = segments[0]
    if platform == Platform.YOUTUBE:
        if first.startswith("@"):
            handle = first[1:]
        elif first in YOUTUBE_PATH_PREFIXES and len(segments) > 1:
            handle = segments[1]
    elif platform == Platform.TIKTOK:
        if first.startswith("@"):
            handle = first[1:]
    elif platform == Platform.INSTAGRAM:
        if first.lower() not in INSTAGRAM_RESERVED_PATHS:
            handle = first.lstrip("@")

    if not handle:
        logger.warning(f"No handle found in {platform.value} link: {url[:100]}")
        return None
    return platform, handle


def _parse_timestamp(value) -> Optional[datetime]:
    """ISO-8601 strings or unix seconds to aware datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PlatformAdapter(ABC):
    """Live fetcher for one platform."""

    platform: Platform

    def __init__(
        self,
        retry: Optional[RetryConfig] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.retry = retry or RetryConfig()
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "PlatformAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the credentials this adapter needs are present."""

    async def resolve_handle(self, handle: str) -> str:
        """Platform-native account id for `handle`."""
        return handle

    @abstractmethod
    async def fetch_posts(self, handle: str, since: datetime, limit: int) -> list[ContentItem]:
        """
        Posts newer than `since`, newest first, at most `limit`.

        Raises:
            FetchError: the platform API failed or the account is unknown.
        """

    async def resolve_media_url(self, item: ContentItem) -> Optional[str]:
        """Downloadable media URL for a video item."""
        return item.media_url

    async def _make_request_with_retry(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Make HTTP request with retry logic for transient errors"""
        delay = self.retry.base_delay_seconds
        attempts = self.retry.max_retries + 1
        last_exception: Optional[Exception] = None
        response: Optional[httpx.Response] = None

        for attempt in range(attempts):
            try:
                response = await self.client.get(url, params=params, headers=headers)
                # Success or client error (4xx) - return immediately
                if response.status_code < 500:
                    return response
                logger.warning(
                    f"{self.platform.value}: server error {response.status_code}, "
                    f"retrying (attempt {attempt + 1}/{attempts})..."
                )
            except (httpx.RequestError, httpx.TimeoutException) as e:
                last_exception = e
                logger.warning(
                    f"{self.platform.value}: network error {e!r}, retrying (attempt {attempt + 1}/{attempts})..."
                )

            if attempt < attempts - 1:
                await asyncio.sleep(delay)
                delay *= 2.0

        if response is not None:
            return response
        raise FetchError(self.platform.value, f"request failed: {last_exception!r}") from last_exception

    def _json_or_raise(self, response: httpx.Response, what: str) -> dict:
        if response.status_code != 200:
            raise FetchError(self.platform.value, f"{what} returned {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(self.platform.value, f"{what} returned invalid JSON") from e


# ------------------------------------------------------------------ #
#  YouTube                                                           #
# ------------------------------------------------------------------ #

class YouTubeAdapter(PlatformAdapter):
    """YouTube Data API v3 listing plus caption transcripts."""

    platform = Platform.YOUTUBE

    def __init__(self, api_key: Optional[str], **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def resolve_handle(self, handle: str) -> str:
        if handle.startswith(YOUTUBE_CHANNEL_ID_PREFIX) and len(handle) == YOUTUBE_CHANNEL_ID_LENGTH:
            return handle

        response = await self._make_request_with_retry(
            f"{YOUTUBE_API_BASE}/search",
            {"part": "snippet", "q": handle, "type": "channel", "maxResults": 1, "key": self.api_key},
        )
        data = self._json_or_raise(response, "channel search")
        items = data.get("items") or []
        channel_id = items[0].get("id", {}).get("channelId") if items else None
        if not channel_id:
            raise FetchError(self.platform.value, f"channel not found for {handle}")
        logger.info(f"Found YouTube channel {channel_id} for {handle}")
        return channel_id

    async def fetch_posts(self, handle: str, since: datetime, limit: int) -> list[ContentItem]:
        channel_id = await self.resolve_handle(handle)

        response = await self._make_request_with_retry(
            f"{YOUTUBE_API_BASE}/search",
            {
                "part": "snippet",
                "channelId": channel_id,
                "maxResults": min(limit, YOUTUBE_MAX_RESULTS),
                "order": "date",
                "type": "video",
                "publishedAfter": since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                "key": self.api_key,
            },
        )
        data = self._json_or_raise(response, "video search")
        video_ids = [
            item["id"]["videoId"]
            for item in data.get("items") or []
            if item.get("id", {}).get("videoId")
        ][:limit]
        if not video_ids:
            return []

        response = await self._make_request_with_retry(
            f"{YOUTUBE_API_BASE}/videos",
            {"part": "snippet", "id": ",".join(video_ids), "key": self.api_key},
        )
        videos = self._json_or_raise(response, "video details").get("items") or []
        transcripts = await asyncio.gather(*(self._get_transcript(v["id"]) for v in videos))

        items = []
        for video, transcript in zip(videos, transcripts):
            snippet = video.get("snippet", {})
            video_id = video["id"]
            items.append(ContentItem(
                id=video_id,
                platform=self.platform.value,
                handle=handle,
                caption=f"{snippet.get('title', '')}\n\n{snippet.get('description', '')}".strip(),
                transcript=transcript,
                media_type="video",
                thumbnail_url=f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg",
                permalink=f"https://www.youtube.com/watch?v={video_id}",
                posted_at=_parse_timestamp(snippet.get("publishedAt")),
            ))

        with_transcripts = sum(1 for item in items if item.transcript)
        logger.info(f"Fetched {len(items)} YouTube videos for {handle} ({with_transcripts} with transcripts)")
        return items

    async def _get_transcript(self, video_id: str) -> str:
        """Caption text for a video, or "" when none is available"""
        try:
            # Run in thread pool since youtube_transcript_api is blocking
            loop = asyncio.get_running_loop()

            def fetch_transcript():
                ytt_api = YouTubeTranscriptApi()
                return ytt_api.fetch(video_id)

            transcript_list = await loop.run_in_executor(None, fetch_transcript)
            full_text = " ".join(segment.text for segment in transcript_list)
            return full_text[:YOUTUBE_TRANSCRIPT_LIMIT]
        except Exception as e:
            logger.warning(f"Transcript extraction failed for {video_id}: {e}")
            return ""

    async def resolve_media_url(self, item: ContentItem) -> Optional[str]:
        """Direct stream URL via yt-dlp, without downloading."""
        if item.media_url:
            return item.media_url
        if not item.permalink:
            return None

        ydl_opts = {
            'format': 'best[ext=mp4]/best',
            'quiet': True,
            'no_warnings': True,
            'skip_download': True,
        }

        def extract():
            with YoutubeDL(ydl_opts) as ydl:
                return ydl.extract_info(item.permalink, download=False)

        try:
            info = await asyncio.get_running_loop().run_in_executor(None, extract)
        except DownloadError as e:
            logger.warning(f"Could not resolve media URL for {item.id}: {e}")
            return None
        return (info or {}).get("url")


# ------------------------------------------------------------------ #
#  TikTok                                                            #
# ------------------------------------------------------------------ #

class TikTokAdapter(PlatformAdapter):
    """TikTok Creator Marketplace public video list with cursor pagination."""

    platform = Platform.TIKTOK

    def __init__(self, access_token: Optional[str], account_id: Optional[str], **kwargs):
        super().__init__(**kwargs)
        self.access_token = access_token
        self.account_id = account_id

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.account_id)

    async def fetch_posts(self, handle: str, since: datetime, limit: int) -> list[ContentItem]:
        since_ts = since.timestamp()
        posts: list[dict] = []
        cursor: Optional[str] = None

        for page in range(TIKTOK_MAX_PAGES):
            params = {
                "handle_name": handle,
                "tto_tcm_account_id": self.account_id,
                "limit": TIKTOK_PAGE_SIZE,
            }
            if cursor:
                params["cursor"] = cursor

            response = await self._make_request_with_retry(
                TIKTOK_TCM_URL, params, headers={"Access-Token": self.access_token},
            )
            body = self._json_or_raise(response, "video list")
            if body.get("code") != 0 or not body.get("data"):
                if page == 0:
                    raise FetchError(self.platform.value, body.get("message") or "API returned an error")
                logger.warning(f"TikTok @{handle}: page {page + 1} failed: {body.get('message')}")
                break

            page_posts = body["data"].get("posts") or []
            if not page_posts:
                break

            posts.extend(p for p in page_posts if (p.get("create_time") or 0) > since_ts)
            if len(posts) >= limit or (page_posts[-1].get("create_time") or 0) < since_ts:
                break

            page_info = body["data"].get("page_info") or {}
            cursor = page_info.get("cursor")
            if not page_info.get("has_more") or not cursor:
                break

        items = [
            ContentItem(
                id=str(post.get("video_id")),
                platform=self.platform.value,
                handle=handle,
                caption=post.get("caption") or "",
                media_type="video",
                media_url=post.get("media_url"),
                thumbnail_url=post.get("thumbnail_url"),
                permalink=post.get("embed_url"),
                posted_at=_parse_timestamp(post.get("create_time")),
            )
            for post in posts[:limit]
        ]
        logger.info(f"Fetched {len(items)} TikTok posts for @{handle}")
        return items


# ------------------------------------------------------------------ #
#  Instagram                                                         #
# ------------------------------------------------------------------ #

class InstagramAdapter(PlatformAdapter):
    """Instagram Graph API business discovery, paged by `until`."""

    platform = Platform.INSTAGRAM

    def __init__(self, access_token: Optional[str], user_id: Optional[str], **kwargs):
        super().__init__(**kwargs)
        self.access_token = access_token
        self.user_id = user_id

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.user_id)

    async def fetch_posts(self, handle: str, since: datetime, limit: int) -> list[ContentItem]:
        since_ts = int(since.timestamp())
        until_ts = int(datetime.now(timezone.utc).timestamp())
        page_size = min(limit, INSTAGRAM_PAGE_SIZE)
        posts: list[dict] = []

        for page in range(INSTAGRAM_MAX_PAGES):
            fields = (
                f"business_discovery.username({handle})"
                f"{{media.limit({page_size}).since({since_ts}).until({until_ts}){{{INSTAGRAM_MEDIA_FIELDS}}}}}"
            )
            response = await self._make_request_with_retry(
                f"{INSTAGRAM_GRAPH_BASE}/{self.user_id}",
                {"fields": fields, "access_token": self.access_token},
            )
            body = self._json_or_raise(response, "business discovery")
            if body.get("error"):
                raise FetchError(self.platform.value, body["error"].get("message", "API returned an error"))

            media = (body.get("business_discovery") or {}).get("media") or {}
            page_posts = media.get("data") or []
            if not page_posts:
                break
            posts.extend(page_posts)

            last_posted = _parse_timestamp(page_posts[-1].get("timestamp"))
            if len(posts) >= limit or "paging" not in media or last_posted is None:
                break
            until_ts = int(last_posted.timestamp())

        items = []
        for post in posts[:limit]:
            media_type = (post.get("media_type") or "").upper()
            is_video = media_type == "VIDEO"
            items.append(ContentItem(
                id=str(post.get("id")),
                platform=self.platform.value,
                handle=handle,
                caption=post.get("caption") or "",
                media_type="video" if is_video else "image",
                media_url=post.get("media_url"),
                thumbnail_url=post.get("thumbnail_url") if is_video else post.get("media_url"),
                permalink=post.get("permalink"),
                posted_at=_parse_timestamp(post.get("timestamp")),
            ))
        logger.info(f"Fetched {len(items)} Instagram posts for @{handle}")
        return items


def build_adapters(
    credentials: Credentials,
    retry: Optional[RetryConfig] = None,
    timeout: float = 10.0,
) -> dict[str, PlatformAdapter]:
    """One adapter per supported platform, configured or not."""
    return {
        Platform.YOUTUBE.value: YouTubeAdapter(credentials.google_api_key, retry=retry, timeout=timeout),
        Platform.TIKTOK.value: TikTokAdapter(
            credentials.tiktok_access_token, credentials.tiktok_account_id, retry=retry, timeout=timeout,
        ),
        Platform.INSTAGRAM.value: InstagramAdapter(
            credentials.facebook_access_token, credentials.facebook_user_id, retry=retry, timeout=timeout,
        ),
    }
