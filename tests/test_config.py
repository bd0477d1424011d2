"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for router configs.
"""

import os
import tempfile

import pytest
import yaml

from insight_router.config.loader import (
    load_router_config,
    CacheConfig,
    FeedbackConfig,
    ProviderConfig,
    QuotaConfig,
    QuotaPeriod,
    RouterConfig,
    TierLimits,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "cache": {"ttl_hours": 12, "max_entries": 50, "min_confidence": 0.8},
            "quota": {
                "period": "daily",
                "rate_limit": {"window_seconds": 30, "burst": 3},
                "tiers": {
                    "team": {"token_limit": 5000, "request_limit": 20, "conversation_limit": 5}
                },
                "default_tier": "team",
            },
            "provider": {"model": "gpt-4o", "timeout_seconds": 5, "offer_local_on_denial": False},
            "feedback": {"reset_confidence": 0.8},
            "breaker": {"failure_threshold": 2},
            "storage": {"db_path": "data/router.db", "outcome_log_size": 10},
        }

        config = load_router_config(self._write_config(config_data))

        assert config.cache.ttl_hours == 12.0
        assert config.cache.max_entries == 50
        assert config.cache.min_confidence == 0.8
        assert config.quota.period == QuotaPeriod.DAILY
        assert config.quota.rate_limit.window_seconds == 30.0
        assert config.quota.rate_limit.burst == 3
        assert config.quota.default_tier == "team"
        assert config.quota.get_tier("team") == TierLimits(5000, 20, 5)
        # Built-in tiers stay available alongside custom ones
        assert config.quota.get_tier("premium").token_limit == 200_000
        assert config.provider.model == "gpt-4o"
        assert config.provider.timeout_seconds == 5.0
        assert config.provider.offer_local_on_denial is False
        assert config.feedback.reset_confidence == 0.8
        assert config.breaker.failure_threshold == 2
        assert config.storage.db_path == "data/router.db"
        assert config.storage.outcome_log_size == 10

    def test_empty_file_gives_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        assert load_router_config(config_path) == RouterConfig()

    def test_defaults(self):
        config = RouterConfig()
        assert config.cache.ttl_hours == 24.0
        assert config.cache.max_entries == 1000
        assert config.cache.min_confidence == 0.7
        assert config.quota.period == QuotaPeriod.MONTHLY
        free = config.quota.get_tier("free")
        assert (free.token_limit, free.request_limit, free.conversation_limit) == (10_000, 50, 20)
        assert config.feedback.reset_confidence == 0.75

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="Router config file not found"):
            load_router_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("cache: [unclosed\n")

        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_router_config(config_path)

    def test_root_must_be_mapping(self):
        with pytest.raises(ValueError, match="Configuration root must be a dictionary"):
            load_router_config(self._write_config(["cache"]))

    def test_unknown_top_level_key(self):
        with pytest.raises(ValueError, match="Unknown keys in config"):
            load_router_config(self._write_config({"caches": {}}))

    def test_unknown_section_key(self):
        with pytest.raises(ValueError, match="Unknown keys in cache"):
            load_router_config(self._write_config({"cache": {"ttl": 5}}))

    def test_non_numeric_value(self):
        with pytest.raises(ValueError, match="'ttl_hours' in cache must be a number"):
            load_router_config(self._write_config({"cache": {"ttl_hours": "soon"}}))

    def test_boolean_is_not_a_number(self):
        with pytest.raises(ValueError, match="'burst' in quota.rate_limit must be a number"):
            load_router_config(self._write_config({"quota": {"rate_limit": {"burst": True}}}))

    def test_fractional_integer_rejected(self):
        with pytest.raises(ValueError, match="'max_entries' in cache must be an integer"):
            load_router_config(self._write_config({"cache": {"max_entries": 10.5}}))

    def test_invalid_period(self):
        with pytest.raises(ValueError, match="'period' in quota must be one of"):
            load_router_config(self._write_config({"quota": {"period": "weekly"}}))

    def test_tier_requires_all_limits(self):
        config_data = {"quota": {"tiers": {"team": {"token_limit": 100, "request_limit": 5}}}}
        with pytest.raises(ValueError, match="Missing required 'conversation_limit' in quota.tiers.team"):
            load_router_config(self._write_config(config_data))

    def test_unknown_default_tier(self):
        with pytest.raises(ValueError, match="default_tier 'gold' is not a configured tier"):
            load_router_config(self._write_config({"quota": {"default_tier": "gold"}}))

    def test_offer_local_must_be_boolean(self):
        with pytest.raises(ValueError, match="'offer_local_on_denial' in provider must be a boolean"):
            load_router_config(self._write_config({"provider": {"offer_local_on_denial": "yes"}}))

    def test_out_of_range_value(self):
        with pytest.raises(ValueError, match="min_confidence must be within"):
            load_router_config(self._write_config({"cache": {"min_confidence": 1.5}}))


class TestConfigObjects:
    """Test dataclass validation."""

    def test_tier_limits_must_be_positive(self):
        with pytest.raises(ValueError, match="token_limit must be > 0"):
            TierLimits(token_limit=0, request_limit=1, conversation_limit=1)

    def test_unknown_tier_lookup(self):
        with pytest.raises(ValueError, match="Unknown subscription tier: platinum"):
            QuotaConfig().get_tier("platinum")

    def test_cache_config_validation(self):
        with pytest.raises(ValueError, match="ttl_hours must be > 0"):
            CacheConfig(ttl_hours=0)

    def test_provider_config_validation(self):
        with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
            ProviderConfig(timeout_seconds=0)

    def test_feedback_config_validation(self):
        with pytest.raises(ValueError, match="min_learning_rate must be within"):
            FeedbackConfig(learning_rate=0.1, min_learning_rate=0.2)
