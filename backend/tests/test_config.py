"""Tests for configuration loading: defaults, BATCH_ overrides, validation."""

import pytest

from config import Credentials, VettingConfig, load_config, validate_config
from errors import ConfigError


class TestDefaults:

    def test_batch_defaults(self):
        config = load_config({})
        assert config.creators.concurrency == 25
        assert config.inter_wave_delay_seconds == pytest.approx(0.1)
        assert config.video.concurrency == 25
        assert config.image.concurrency == 50
        assert config.brand_detection.rate_per_second == 10.0
        assert config.scraper.concurrency == 15
        assert config.platform_concurrency == 3
        assert config.prescreen_threshold == 0.7
        assert config.lookback_months == 6
        assert config.stale_after_minutes == 30

    def test_polling_and_retry_defaults(self):
        config = VettingConfig()
        assert config.polling.initial_seconds == 1.0
        assert config.polling.backoff_multiplier == 1.3
        assert config.polling.timeout_seconds == 900.0
        assert config.retry.max_retries == 3
        assert config.retry.base_delay_seconds == 1.0

    def test_config_is_immutable(self):
        config = VettingConfig()
        with pytest.raises(Exception):
            config.lookback_months = 12


class TestOverrides:

    def test_integer_override(self):
        config = load_config({"BATCH_CREATORS_CONCURRENT": "5"})
        assert config.creators.concurrency == 5
        # Sibling field in the same section is untouched
        assert config.creators.rate_per_second is None

    def test_millisecond_overrides_become_seconds(self):
        config = load_config({
            "BATCH_INTER_BATCH_DELAY_MS": "250",
            "BATCH_RETRY_DELAY_MS": "2000",
            "BATCH_POLLING_MAX_MS": "8000",
        })
        assert config.inter_wave_delay_seconds == pytest.approx(0.25)
        assert config.retry.base_delay_seconds == pytest.approx(2.0)
        assert config.polling.max_seconds == pytest.approx(8.0)

    def test_threshold_override(self):
        assert load_config({"BATCH_PRESCREEN_THRESHOLD": "0.85"}).prescreen_threshold == 0.85

    def test_blank_override_is_ignored(self):
        assert load_config({"BATCH_CREATORS_CONCURRENT": "  "}).creators.concurrency == 25

    def test_malformed_override_raises(self):
        with pytest.raises(ConfigError):
            load_config({"BATCH_CREATORS_CONCURRENT": "lots"})

    def test_negative_override_raises(self):
        with pytest.raises(ConfigError):
            load_config({"BATCH_LOOKBACK_MONTHS": "-1"})

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ConfigError):
            load_config({"BATCH_CREATORS_CONCURRENT": "0"})

    def test_threshold_out_of_range_rejected(self):
        with pytest.raises(ConfigError):
            load_config({"BATCH_PRESCREEN_THRESHOLD": "1.5"})

    def test_polling_bounds_checked(self):
        validate_config(VettingConfig())
        with pytest.raises(ConfigError):
            load_config({"BATCH_POLLING_MIN_MS": "9000", "BATCH_POLLING_MAX_MS": "1000"})


class TestCredentials:

    def test_missing_credentials_are_none(self):
        creds = Credentials.from_env({})
        assert creds.anthropic_api_key is None
        assert creds.twelve_labs_api_key is None
        assert creds.ai_provider == "auto"
        assert creds.data_path is None

    def test_values_are_stripped(self):
        creds = Credentials.from_env({
            "TWELVE_LABS_API_KEY": "  tl-key ",
            "GOOGLE_CUSTOM_SEARCH_ENGINE_ID": "cx",
            "API_SECRET_KEY": "",
            "AI_PROVIDER": "openai",
        })
        assert creds.twelve_labs_api_key == "tl-key"
        assert creds.google_search_engine_id == "cx"
        assert creds.api_secret_key is None
        assert creds.ai_provider == "openai"
