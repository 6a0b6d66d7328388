"""
Creator Vetting Pipeline - Backend API
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

FastAPI server for creating vetting batches, running them and streaming
their progress as Server-Sent Events.
"""

import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

import asyncio
import os
import secrets
from dataclasses import dataclass
from typing import Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator
import uvicorn

from config import Credentials, VettingConfig, load_config
from content_cache import VespaContentCache
from content_fetcher import ContentFetcher
from coordinator import BatchAlreadyRunningError, BatchCoordinator
from errors import RecoveryError
from events import EventStreamRegistry, format_sse
from ai_client import AIClient
from brand_detector import BrandDetector
from keyword_screener import KeywordScreener
from media_analyzer import FullMediaAnalyzer, TwelveLabsClient
from models import BatchStatus
from platforms import build_adapters
from rate_limit import DependencyPools
from recovery import RecoveryReconciler
from store import VettingStore
from thumbnail_prescreener import ThumbnailPreScreener
from tier_analyzer import MultiTierAnalyzer
from web_search import WebSearchClient

API_VERSION = "1.0.0"
MAX_CREATORS_PER_BATCH = 500
MAX_LINKS_PER_CREATOR = 10
MAX_LINK_LENGTH = 500


@dataclass
class Services:
    store: VettingStore
    registry: EventStreamRegistry
    coordinator: BatchCoordinator
    reconciler: RecoveryReconciler
    features: dict


def build_services(credentials: Credentials, config: VettingConfig) -> Services:
    """Wire every pipeline component from credentials and configuration."""
    pools = DependencyPools.from_config(config)
    timeout = config.request_timeout_seconds

    ai_client = AIClient(
        anthropic_api_key=credentials.anthropic_api_key,
        openai_api_key=credentials.openai_api_key,
        provider=credentials.ai_provider,
        retry=config.retry,
    )
    keyword_screener = KeywordScreener()
    video_provider = TwelveLabsClient(
        credentials.twelve_labs_api_key,
        credentials.twelve_labs_index_id,
        polling=config.polling,
        timeout=timeout,
    )
    adapters = build_adapters(credentials, retry=config.retry, timeout=timeout)
    cache = VespaContentCache(credentials.vespa_endpoint)
    fetcher = ContentFetcher(adapters, config, cache=cache, scraper_pool=pools.scraper)

    analyzer = MultiTierAnalyzer(
        keyword_screener=keyword_screener,
        brand_detector=BrandDetector(ai_client, pool=pools.brand_detection),
        prescreener=ThumbnailPreScreener(ai_client, threshold=config.prescreen_threshold, pool=pools.image),
        media_analyzer=FullMediaAnalyzer(
            provider=video_provider,
            ai_client=ai_client,
            video_pool=pools.video,
            image_pool=pools.image,
            media_url_resolver=fetcher.resolve_media_url,
        ),
        config=config,
    )
    searcher = WebSearchClient(
        credentials.google_search_api_key,
        credentials.google_search_engine_id,
        pool=pools.search,
        retry=config.retry,
        timeout=timeout,
    )

    store = VettingStore(credentials.data_path)
    registry = EventStreamRegistry()
    coordinator = BatchCoordinator(store, fetcher, analyzer, registry, config, searcher=searcher)
    reconciler = RecoveryReconciler(store, video_provider, config, keyword_screener=keyword_screener)

    features = {
        "ai_provider": ai_client.provider,
        "ai_model": ai_client.model,
        "brand_detection": ai_client.is_ai_enabled,
        "thumbnail_prescreen": ai_client.is_ai_enabled,
        "video_analysis": video_provider.is_configured,
        "content_cache": cache.is_configured,
        "web_search": searcher.is_configured,
        "persistence": bool(credentials.data_path),
    }
    for platform, adapter in adapters.items():
        features[f"platform_{platform}"] = adapter.is_configured
    return Services(store, registry, coordinator, reconciler, features)


def log_feature_availability(features: dict) -> None:
    logger.info("=== Feature Availability ===")
    for feature, enabled in features.items():
        if isinstance(enabled, str):
            logger.info(f"  {feature}: {enabled}")
        else:
            status = "ENABLED" if enabled else "DISABLED"
            logger.info(f"  {feature}: {status}")
    if not features["brand_detection"]:
        logger.warning("Brand detection and pre-screen: using HEURISTIC fallback. Set ANTHROPIC_API_KEY or OPENAI_API_KEY to enable.")
    if not features["video_analysis"]:
        logger.warning("Video analysis disabled. Set TWELVE_LABS_API_KEY and TWELVE_LABS_INDEX_ID to enable.")
    if not features["web_search"]:
        logger.warning("Web search disabled. Set GOOGLE_CUSTOM_SEARCH_API_KEY and GOOGLE_CUSTOM_SEARCH_ENGINE_ID to enable.")
    if not features["persistence"]:
        logger.warning("VETTING_DATA_PATH not set. Batches are kept in memory only.")


credentials = Credentials.from_env()
config = load_config()
services = build_services(credentials, config)
log_feature_availability(services.features)

# Strong refs so running batches are not garbage collected
_background_tasks: set[asyncio.Task] = set()

app = FastAPI(
    title="Creator Vetting Pipeline API",
    description="Brand-safety vetting of social media creators in batches",
    version=API_VERSION
)

# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Attach security headers (X-Content-Type-Options, X-Frame-Options, etc.)."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response

# API Key Authentication middleware (optional, set API_SECRET_KEY in .env to enable)
_api_secret = credentials.api_secret_key or ""
# Endpoints that don't require authentication
_PUBLIC_ENDPOINTS = {"/health", "/docs", "/openapi.json", "/redoc"}

if _api_secret:
    logger.info("API authentication: ENABLED (API_SECRET_KEY set)")
else:
    logger.warning("API authentication: DISABLED. Set API_SECRET_KEY in .env to require auth.")

@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    """Require X-API-Key header on protected endpoints when API_SECRET_KEY is configured."""
    if not _api_secret:
        return await call_next(request)

    path = request.url.path.rstrip("/")
    if path in _PUBLIC_ENDPOINTS or request.method == "OPTIONS":
        return await call_next(request)

    provided_key = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(provided_key, _api_secret):
        return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})

    return await call_next(request)

# CORS for the vetting dashboard (comma-separated ALLOWED_ORIGINS in .env)
_allowed_origins = [o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "").split(",") if o.strip()]
if not _allowed_origins:
    _allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    logger.warning("CORS: No ALLOWED_ORIGINS set - allowing local dashboard only (dev mode).")
else:
    logger.info(f"CORS: Locked to {len(_allowed_origins)} origin(s)")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-API-Key"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400)."""
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": errors})


# Request/Response models
class CreatorInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    social_links: list[str] = Field(default_factory=list, max_length=MAX_LINKS_PER_CREATOR)

    @field_validator('name')
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Creator name must not be blank')
        return v

    @field_validator('social_links')
    @classmethod
    def validate_links(cls, v):
        links = [link.strip() for link in v if link and link.strip()]
        for link in links:
            if len(link) > MAX_LINK_LENGTH or any(ch.isspace() for ch in link):
                raise ValueError(f'Malformed social link: {link[:100]}')
        # Unsupported hosts are accepted here and skipped by the fetcher
        return links


class CreateBatchRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    owner: Optional[str] = Field(None, max_length=200)
    creators: list[CreatorInput] = Field(..., min_length=1, max_length=MAX_CREATORS_PER_BATCH)
    search_terms: list[str] = Field(default_factory=list, max_length=50)
    competitors: list[str] = Field(default_factory=list, max_length=100)

    @field_validator('search_terms', 'competitors')
    @classmethod
    def clean_terms(cls, v):
        return [t.strip() for t in v if t and t.strip()]


class RecoverRequest(BaseModel):
    external_id: str = Field(..., min_length=1, max_length=100)
    creator_id: str = Field(..., min_length=1, max_length=100)


def _batch_view(batch_id: str) -> dict:
    batch = services.store.get_batch(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return {
        "batch": batch.model_dump(mode="json"),
        "progress": services.store.batch_progress(batch_id),
        "running": services.coordinator.is_running(batch_id),
        "creators": [c.model_dump(mode="json") for c in services.store.list_creators(batch_id)],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": API_VERSION}


@app.post("/batches", status_code=201)
async def create_batch(request: CreateBatchRequest):
    """Create a batch and its creators. Processing starts separately."""
    batch = services.store.create_batch(
        request.name,
        [(c.name, c.social_links) for c in request.creators],
        owner=request.owner,
        search_terms=request.search_terms,
        competitors=request.competitors,
    )
    return _batch_view(batch.id)


@app.get("/batches/{batch_id}")
async def get_batch(batch_id: str):
    return _batch_view(batch_id)


async def _run_batch(batch_id: str) -> None:
    try:
        await services.coordinator.run(batch_id)
    except BatchAlreadyRunningError:
        logger.warning(f"Batch {batch_id} run skipped: already processing")
    except Exception as e:
        logger.error(f"Batch {batch_id} run aborted: {e}", exc_info=True)


@app.post("/batches/{batch_id}/process", status_code=202)
async def process_batch(batch_id: str):
    """
    Start processing a batch in the background.

    Subscribe to /batches/{batch_id}/stream for progress. Events published
    before a subscriber connects are not replayed.
    """
    batch = services.store.get_batch(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    if services.coordinator.is_running(batch_id):
        raise HTTPException(status_code=409, detail="Batch is already processing")
    if batch.status == BatchStatus.COMPLETED:
        raise HTTPException(status_code=409, detail="Batch already completed")

    # Open the stream now so clients can subscribe before the first event
    services.registry.open(batch_id)
    task = asyncio.create_task(_run_batch(batch_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return {"batch_id": batch_id, "status": BatchStatus.PROCESSING.value}


@app.get("/batches/{batch_id}/stream")
async def stream_batch(batch_id: str):
    """Server-Sent Events for the batch's current run."""
    if services.store.get_batch(batch_id) is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    stream = services.registry.get(batch_id)
    if stream is None or stream.closed:
        raise HTTPException(status_code=404, detail="No active run for this batch")

    subscription = stream.subscribe()

    async def event_source():
        try:
            async for event in subscription:
                yield format_sse(event)
        finally:
            subscription.close()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/creators/{creator_id}/report")
async def get_creator_report(creator_id: str):
    creator = services.store.get_creator(creator_id)
    if creator is None:
        raise HTTPException(status_code=404, detail="Creator not found")
    report = services.store.get_report(creator_id)
    if report is None:
        raise HTTPException(status_code=404, detail="No report for this creator yet")
    return {
        "creator": creator.model_dump(mode="json"),
        "report": report.model_dump(mode="json"),
    }


@app.get("/admin/recover-videos")
async def list_recoverable_videos():
    """Provider analyses not linked to any report, plus stuck creators."""
    unlinked = []
    if services.reconciler.provider.is_configured:
        try:
            unlinked = await services.reconciler.list_unlinked_analyses()
        except RecoveryError as e:
            logger.error(f"Recovery listing failed: {e}")
            raise HTTPException(status_code=502, detail="Video analysis provider unavailable")
    stuck = services.reconciler.list_stuck_creators()
    return {
        "video_analysis_enabled": services.reconciler.provider.is_configured,
        "unlinked_analyses": unlinked,
        "stuck_creators": [c.model_dump(mode="json") for c in stuck],
    }


@app.post("/admin/recover-videos")
async def recover_video(request: RecoverRequest):
    """Link a completed provider analysis to a creator's report."""
    if services.store.get_creator(request.creator_id) is None:
        raise HTTPException(status_code=404, detail="Creator not found")
    try:
        outcome = await services.reconciler.recover(request.external_id, request.creator_id)
    except RecoveryError as e:
        logger.error(f"Recovery of {request.external_id} for {request.creator_id} failed: {e}")
        raise HTTPException(status_code=502, detail="Could not recover video analysis")
    return {
        "creator_id": outcome.creator_id,
        "external_id": outcome.external_id,
        "already_linked": outcome.already_linked,
        "report_created": outcome.report_created,
        "status_changed": outcome.status_changed,
        "report": outcome.report.model_dump(mode="json"),
    }


if __name__ == "__main__":
    logger.info("Creator Vetting Pipeline API")
    logger.info("Starting server at http://127.0.0.1:8000")
    logger.info("API docs: http://127.0.0.1:8000/docs")
    # SECURITY: bind to localhost only, never 0.0.0.0 without authentication
    uvicorn.run(app, host="127.0.0.1", port=8000)
