"""Creator Vetting Pipeline - Configuration
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Immutable pipeline settings. Values are read once from the environment
(BATCH_<KEY> overrides) and passed explicitly to every component.
"""

import os
import logging
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "BATCH_"


@dataclass(frozen=True)
class PoolLimits:
    concurrency: int
    rate_per_second: Optional[float] = None


@dataclass(frozen=True)
class PollingConfig:
    initial_seconds: float = 1.0
    min_seconds: float = 0.5
    max_seconds: float = 5.0
    backoff_multiplier: float = 1.3
    timeout_seconds: float = 900.0


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_seconds: float = 1.0


@dataclass(frozen=True)
class VettingConfig:
    creators: PoolLimits = field(default_factory=lambda: PoolLimits(25))
    inter_wave_delay_seconds: float = 0.1
    video: PoolLimits = field(default_factory=lambda: PoolLimits(25, 25.0))
    image: PoolLimits = field(default_factory=lambda: PoolLimits(50, 50.0))
    brand_detection: PoolLimits = field(default_factory=lambda: PoolLimits(20, 10.0))
    scraper: PoolLimits = field(default_factory=lambda: PoolLimits(15, 15.0))
    search: PoolLimits = field(default_factory=lambda: PoolLimits(2, 10.0))
    platform_concurrency: int = 3           # Platforms fetched in parallel per creator
    polling: PollingConfig = field(default_factory=PollingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    prescreen_threshold: float = 0.7        # "safe" above this skips full analysis
    lookback_months: int = 6
    max_posts_per_platform: int = 10
    request_timeout_seconds: float = 10.0
    stale_after_minutes: int = 30           # Recovery: creators untouched this long are stuck


@dataclass(frozen=True)
class Credentials:
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    ai_provider: str = "auto"
    twelve_labs_api_key: Optional[str] = None
    twelve_labs_index_id: Optional[str] = None
    google_api_key: Optional[str] = None
    google_search_api_key: Optional[str] = None
    google_search_engine_id: Optional[str] = None
    tiktok_access_token: Optional[str] = None
    tiktok_account_id: Optional[str] = None
    facebook_access_token: Optional[str] = None
    facebook_user_id: Optional[str] = None
    vespa_endpoint: Optional[str] = None
    api_secret_key: Optional[str] = None
    data_path: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Credentials":
        env = os.environ if env is None else env

        def get(name: str) -> Optional[str]:
            value = env.get(name, "").strip()
            return value or None

        return cls(
            anthropic_api_key=get("ANTHROPIC_API_KEY"),
            openai_api_key=get("OPENAI_API_KEY"),
            ai_provider=get("AI_PROVIDER") or "auto",
            twelve_labs_api_key=get("TWELVE_LABS_API_KEY"),
            twelve_labs_index_id=get("TWELVE_LABS_INDEX_ID"),
            google_api_key=get("GOOGLE_API_KEY"),
            google_search_api_key=get("GOOGLE_CUSTOM_SEARCH_API_KEY"),
            google_search_engine_id=get("GOOGLE_CUSTOM_SEARCH_ENGINE_ID"),
            tiktok_access_token=get("TIKTOK_TCM_ACCESS_TOKEN"),
            tiktok_account_id=get("TIKTOK_TCM_ACCOUNT_ID"),
            facebook_access_token=get("FACEBOOK_ACCESS_TOKEN"),
            facebook_user_id=get("FACEBOOK_REQUEST_USER_ID"),
            vespa_endpoint=get("VESPA_ENDPOINT"),
            api_secret_key=get("API_SECRET_KEY"),
            data_path=get("VETTING_DATA_PATH"),
        )


# --- Environment overrides ---
# Maps BATCH_<KEY> to (path into VettingConfig, parser)
_INT_OVERRIDES = {
    "CREATORS_CONCURRENT": ("creators", "concurrency"),
    "VIDEO_CONCURRENCY": ("video", "concurrency"),
    "IMAGE_CONCURRENCY": ("image", "concurrency"),
    "BRAND_DETECTION_CONCURRENCY": ("brand_detection", "concurrency"),
    "SCRAPER_CONCURRENCY": ("scraper", "concurrency"),
    "SEARCH_CONCURRENCY": ("search", "concurrency"),
    "PLATFORM_CONCURRENCY": ("platform_concurrency", None),
    "RETRY_MAX_RETRIES": ("retry", "max_retries"),
    "LOOKBACK_MONTHS": ("lookback_months", None),
    "MAX_POSTS_PER_PLATFORM": ("max_posts_per_platform", None),
    "STALE_AFTER_MINUTES": ("stale_after_minutes", None),
}

_FLOAT_OVERRIDES = {
    "INTER_BATCH_DELAY_MS": ("inter_wave_delay_seconds", None, 1000.0),
    "VIDEO_RATE_PER_SECOND": ("video", "rate_per_second", 1.0),
    "IMAGE_RATE_PER_SECOND": ("image", "rate_per_second", 1.0),
    "BRAND_DETECTION_RATE_PER_SECOND": ("brand_detection", "rate_per_second", 1.0),
    "SCRAPER_RATE_PER_SECOND": ("scraper", "rate_per_second", 1.0),
    "POLLING_INITIAL_MS": ("polling", "initial_seconds", 1000.0),
    "POLLING_MIN_MS": ("polling", "min_seconds", 1000.0),
    "POLLING_MAX_MS": ("polling", "max_seconds", 1000.0),
    "POLLING_BACKOFF_MULTIPLIER": ("polling", "backoff_multiplier", 1.0),
    "RETRY_DELAY_MS": ("retry", "base_delay_seconds", 1000.0),
    "PRESCREEN_THRESHOLD": ("prescreen_threshold", None, 1.0),
    "REQUEST_TIMEOUT_MS": ("request_timeout_seconds", None, 1000.0),
}


def _parse_number(key: str, raw: str, cast):
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{ENV_PREFIX}{key} must not be negative, got {raw!r}")
    return value


def _apply(config: VettingConfig, section: str, attr: Optional[str], value) -> VettingConfig:
    if attr is None:
        return replace(config, **{section: value})
    nested = replace(getattr(config, section), **{attr: value})
    return replace(config, **{section: nested})


def load_config(env: Optional[Mapping[str, str]] = None) -> VettingConfig:
    """
    Build a VettingConfig from defaults plus BATCH_<KEY> overrides.

    Raises:
        ConfigError: an override is malformed or out of range.
    """
    env = os.environ if env is None else env
    config = VettingConfig()

    for key, (section, attr) in _INT_OVERRIDES.items():
        raw = env.get(ENV_PREFIX + key)
        if raw is None or raw.strip() == "":
            continue
        value = _parse_number(key, raw.strip(), int)
        config = _apply(config, section, attr, value)

    for key, (section, attr, divisor) in _FLOAT_OVERRIDES.items():
        raw = env.get(ENV_PREFIX + key)
        if raw is None or raw.strip() == "":
            continue
        value = _parse_number(key, raw.strip(), float) / divisor
        config = _apply(config, section, attr, value)

    validate_config(config)
    return config


def validate_config(config: VettingConfig) -> None:
    """Reject settings the pipeline cannot run with."""
    for name in ("creators", "video", "image", "brand_detection", "scraper", "search"):
        if getattr(config, name).concurrency < 1:
            raise ConfigError(f"{name} concurrency must be at least 1")
    if config.platform_concurrency < 1:
        raise ConfigError("platform concurrency must be at least 1")
    if not 0.0 <= config.prescreen_threshold <= 1.0:
        raise ConfigError(
            f"pre-screen threshold must be within [0, 1], got {config.prescreen_threshold}"
        )
    if config.lookback_months < 1:
        raise ConfigError("lookback window must be at least one month")
    if config.polling.min_seconds > config.polling.max_seconds:
        raise ConfigError("polling min interval exceeds max interval")
