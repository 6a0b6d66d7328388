"""Creator Vetting Pipeline - Web Reputation Search
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Flagged-topic searches (Google Custom Search) about a creator outside their
own social accounts. Hits become non-content Findings.
"""

import re
import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

import httpx

from config import RetryConfig
from events import BatchEventStream, SearchCompleted, SearchStarted
from models import Finding, FindingType, new_id
from rate_limit import DependencyPool

logger = logging.getLogger(__name__)

GOOGLE_SEARCH_API = "https://www.googleapis.com/customsearch/v1"
SEARCH_SOURCE = "google"
RESULTS_PER_TOPIC = 5
MAX_RESULTS_PER_QUERY = 10          # API ceiling
TOPIC_DELAY_SECONDS = 0.1
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_SUMMARY_LENGTH = 300

FLAGGED_TOPICS = (
    "Allegations", "Alleged", "Arrested", "Fraud", "Felony", "Controversy",
    "Scandal", "Binge Drinking", "Illegal Drug Use", "DUI", "DWI",
    "Drunk driving", "Violence", "Rape", "Domestic violence", "Murder",
    "Sexual assault", "Hate Speech", "Racism", "Racist", "Embezzlement",
    "Theft", "Robbery", "Burglary", "Bullying", "Prank Content", "Nudity",
    "Politics", "Activism",
)

# Social-media self references are covered by the content fetcher
EXCLUDED_DOMAINS = (
    "instagram.com", "tiktok.com", "youtube.com", "twitter.com", "x.com",
    "facebook.com", "threads.net", "snapchat.com", "linkedin.com",
)
SOCIAL_RESULT_DOMAINS = ("instagram.com", "tiktok.com", "twitter.com", "x.com", "reddit.com")

COURT_CASE_PATTERN = re.compile(
    r"court|lawsuit|sued|legal|settlement|judge|verdict|arrested|criminal|convicted|restraining order"
)
SOCIAL_CONTROVERSY_PATTERN = re.compile(r"twitter|tweet|instagram|tiktok|\bpost\b|video|clip|caption")

CRITICAL_TERMS = (
    "criminal", "arrest", "felony", "assault", "abuse", "harassment", "fraud",
    "convicted", "rape", "sexual assault", "child", "minor", "trafficking",
    "murder", "manslaughter",
)
HIGH_TERMS = (
    "lawsuit", "court", "sued", "fired", "terminated", "racist", "sexist",
    "homophobic", "antisemitic", "slur", "blackface", "scam", "banned",
    "suspended", "restraining order", "domestic violence", "ftc", "investigation",
)
MEDIUM_TERMS = (
    "controversy", "scandal", "backlash", "cancelled", "outrage", "problematic",
    "offensive", "allegations", "accused", "dropped", "demonetized", "apology",
    "toxic", "bullying",
)


@dataclass(frozen=True)
class SearchResult:
    topic: str
    title: str
    url: str
    snippet: str
    display_link: str = ""


@dataclass
class WebSearchOutcome:
    findings: list[Finding] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)
    topic_counts: dict[str, int] = field(default_factory=dict)
    results_count: int = 0


def build_search_query(topic: str, creator_name: str, handles: Iterable[str]) -> str:
    """'"topic" "name" ("h1" OR "h2") -site:...' with social domains excluded."""
    clean = [h.lstrip("@").strip() for h in handles]
    handle_terms = " OR ".join(f'"{h}"' for h in clean if h)
    query = f'"{topic}" "{creator_name}"'
    if handle_terms:
        query += f" ({handle_terms})"
    exclusions = " ".join(f"-site:{d}" for d in EXCLUDED_DOMAINS)
    return f"{query} {exclusions}"


def categorize_result(result: SearchResult) -> FindingType:
    text = f"{result.title} {result.snippet}".lower()
    url = result.url.lower()
    if any(domain in url for domain in SOCIAL_RESULT_DOMAINS):
        return FindingType.SOCIAL_CONTROVERSY
    if COURT_CASE_PATTERN.search(text):
        return FindingType.COURT_CASE
    if SOCIAL_CONTROVERSY_PATTERN.search(text):
        return FindingType.SOCIAL_CONTROVERSY
    return FindingType.NEWS_ARTICLE


def determine_severity(result: SearchResult) -> str:
    text = f"{result.title} {result.snippet}".lower()
    if any(term in text for term in CRITICAL_TERMS):
        return "critical"
    if any(term in text for term in HIGH_TERMS):
        return "high"
    if any(term in text for term in MEDIUM_TERMS):
        return "medium"
    return "low"


def result_to_finding(result: SearchResult) -> Finding:
    return Finding(
        type=categorize_result(result),
        severity=determine_severity(result),
        title=result.title or result.display_link or result.url,
        summary=f"[{result.topic}] {result.snippet}"[:MAX_SUMMARY_LENGTH],
        source=result.url,
    )


def _parse_results(response: httpx.Response, topic: str, query: str) -> list[SearchResult]:
    """Search results from a 200 response. A body that is not the expected JSON yields none."""
    try:
        body = response.json()
    except ValueError:
        logger.error(f"Search returned a non-JSON body for query: {query[:50]}...")
        return []
    items = body.get("items") if isinstance(body, dict) else None
    if not isinstance(items, list):
        return []

    results = []
    for item in items:
        if not isinstance(item, dict) or not item.get("link"):
            continue
        results.append(SearchResult(
            topic=topic,
            title=str(item.get("title") or ""),
            url=str(item["link"]),
            snippet=str(item.get("snippet") or ""),
            display_link=str(item.get("displayLink") or ""),
        ))
    return results


class WebSearchClient:
    """Google Custom Search over the flagged-topic list."""

    def __init__(
        self,
        api_key: Optional[str],
        engine_id: Optional[str],
        pool: Optional[DependencyPool] = None,
        retry: Optional[RetryConfig] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        topics: Iterable[str] = FLAGGED_TOPICS,
        topic_delay: float = TOPIC_DELAY_SECONDS,
    ):
        self.api_key = api_key
        self.engine_id = engine_id
        self.pool = pool
        self.retry = retry or RetryConfig()
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.topics = tuple(topics)
        self.topic_delay = topic_delay

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.engine_id)

    async def close(self) -> None:
        await self.client.aclose()

    async def search_creator(
        self,
        creator_id: str,
        creator_name: str,
        handles: Iterable[str],
        stream: BatchEventStream,
        extra_topics: Iterable[str] = (),
    ) -> WebSearchOutcome:
        """Search every flagged topic plus the batch's own search terms."""
        outcome = WebSearchOutcome()
        if not self.is_configured:
            return outcome

        handles = list(handles)
        topics = list(self.topics) + [t for t in extra_topics if t and t not in self.topics]
        seen_urls: set[str] = set()

        for topic in topics:
            query = build_search_query(topic, creator_name, handles)
            outcome.queries.append(query)
            search_id = new_id()
            await stream.publish(SearchStarted(
                creator_id=creator_id, search_id=search_id, query=query, source=SEARCH_SOURCE,
            ))
            started = time.monotonic()
            results = await self._search(query, topic)
            await stream.publish(SearchCompleted(
                creator_id=creator_id,
                search_id=search_id,
                query=query,
                source=SEARCH_SOURCE,
                results_count=len(results),
                duration_ms=int((time.monotonic() - started) * 1000),
            ))

            if results:
                outcome.topic_counts[topic] = len(results)
            for result in results:
                outcome.results_count += 1
                if result.url in seen_urls:
                    continue
                seen_urls.add(result.url)
                outcome.findings.append(result_to_finding(result))

            if self.topic_delay:
                await asyncio.sleep(self.topic_delay)

        logger.info(
            f"Web search for {creator_name}: {outcome.results_count} results over {len(topics)} topics"
        )
        return outcome

    async def _search(self, query: str, topic: str) -> list[SearchResult]:
        """One query with backoff on 429/5xx. Failures yield no results."""
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": query,
            "num": min(RESULTS_PER_TOPIC, MAX_RESULTS_PER_QUERY),
        }
        delay = self.retry.base_delay_seconds
        attempts = self.retry.max_retries + 1

        for attempt in range(attempts):
            try:
                if self.pool is not None:
                    async with self.pool.slot():
                        response = await self.client.get(GOOGLE_SEARCH_API, params=params)
                else:
                    response = await self.client.get(GOOGLE_SEARCH_API, params=params)
            except httpx.HTTPError as e:
                logger.warning(f"Search network error {e!r} (attempt {attempt + 1}/{attempts})")
            else:
                if response.status_code == 200:
                    return _parse_results(response, topic, query)
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(f"Search failed ({response.status_code}) for query: {query[:50]}...")
                    return []
                logger.warning(f"Search returned {response.status_code} (attempt {attempt + 1}/{attempts})")

            if attempt < attempts - 1:
                await asyncio.sleep(delay)
                delay *= 2.0

        logger.error(f"Search gave up after {attempts} attempts for query: {query[:50]}...")
        return []
