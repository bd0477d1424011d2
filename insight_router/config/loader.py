"""
Configuration management and loading.

Routing thresholds, quota tiers and provider settings, loaded from YAML with
strict validation. Every section is optional and falls back to the defaults
below.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import yaml


class QuotaPeriod(Enum):
    """Window over which usage counters accumulate."""
    MONTHLY = "monthly"
    DAILY = "daily"


@dataclass(frozen=True)
class CacheConfig:
    """Result cache limits."""
    ttl_hours: float = 24.0
    max_entries: int = 1000
    min_confidence: float = 0.7

    def __post_init__(self):
        """Validate cache limits."""
        if self.ttl_hours <= 0:
            raise ValueError("ttl_hours must be > 0")
        if self.max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")


@dataclass(frozen=True)
class TierLimits:
    """Per-period quota for one subscription tier."""
    token_limit: int
    request_limit: int
    conversation_limit: int

    def __post_init__(self):
        """Validate limits are positive."""
        if self.token_limit <= 0:
            raise ValueError("token_limit must be > 0")
        if self.request_limit <= 0:
            raise ValueError("request_limit must be > 0")
        if self.conversation_limit <= 0:
            raise ValueError("conversation_limit must be > 0")


DEFAULT_TIERS: Dict[str, TierLimits] = {
    "free": TierLimits(token_limit=10_000, request_limit=50, conversation_limit=20),
    "basic": TierLimits(token_limit=50_000, request_limit=200, conversation_limit=100),
    "premium": TierLimits(token_limit=200_000, request_limit=1_000, conversation_limit=500),
    "enterprise": TierLimits(token_limit=1_000_000, request_limit=10_000, conversation_limit=5_000),
}


@dataclass(frozen=True)
class RateLimitConfig:
    """Burst limit over a sliding window of cloud requests."""
    window_seconds: float = 60.0
    burst: int = 10

    def __post_init__(self):
        """Validate window and burst."""
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.burst <= 0:
            raise ValueError("burst must be > 0")


@dataclass(frozen=True)
class QuotaConfig:
    """Quota period, rate limit and tier table."""
    period: QuotaPeriod = QuotaPeriod.MONTHLY
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    tiers: Dict[str, TierLimits] = field(default_factory=lambda: dict(DEFAULT_TIERS))
    default_tier: str = "free"

    def __post_init__(self):
        """Validate the default tier exists."""
        if self.default_tier not in self.tiers:
            raise ValueError(f"default_tier '{self.default_tier}' is not a configured tier")

    def get_tier(self, tier: str) -> TierLimits:
        """Get limits for a tier.

        Raises:
            ValueError: If the tier is not configured
        """
        if tier not in self.tiers:
            raise ValueError(f"Unknown subscription tier: {tier}")
        return self.tiers[tier]


@dataclass(frozen=True)
class ProviderConfig:
    """External AI provider settings."""
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 15.0
    max_completion_tokens: int = 300
    offer_local_on_denial: bool = True

    def __post_init__(self):
        """Validate provider settings."""
        if not self.model or not self.model.strip():
            raise ValueError("model cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_completion_tokens <= 0:
            raise ValueError("max_completion_tokens must be > 0")


@dataclass(frozen=True)
class FeedbackConfig:
    """Learning rates for pattern-table updates."""
    reset_confidence: float = 0.75
    learning_rate: float = 0.5
    min_learning_rate: float = 0.05

    def __post_init__(self):
        """Validate learning parameters."""
        if not 0.0 < self.reset_confidence < 1.0:
            raise ValueError("reset_confidence must be within (0, 1)")
        if not 0.0 < self.learning_rate <= 1.0:
            raise ValueError("learning_rate must be within (0, 1]")
        if not 0.0 < self.min_learning_rate <= self.learning_rate:
            raise ValueError("min_learning_rate must be within (0, learning_rate]")


@dataclass(frozen=True)
class BreakerConfig:
    """Circuit breaker around the provider."""
    failure_threshold: int = 5
    reset_timeout_seconds: float = 60.0

    def __post_init__(self):
        """Validate breaker settings."""
        if self.failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        if self.reset_timeout_seconds <= 0:
            raise ValueError("reset_timeout_seconds must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    """Local persistence settings."""
    db_path: str = "insight_router.db"
    outcome_log_size: int = 500

    def __post_init__(self):
        """Validate storage settings."""
        if not self.db_path:
            raise ValueError("db_path cannot be empty")
        if self.outcome_log_size <= 0:
            raise ValueError("outcome_log_size must be > 0")


@dataclass(frozen=True)
class RouterConfig:
    """Complete router configuration."""
    cache: CacheConfig = field(default_factory=CacheConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_router_config(path: str) -> RouterConfig:
    """Load and validate router configuration from a YAML file.

    Unknown keys are rejected so a typo never silently falls back to a
    default threshold or quota.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated RouterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Router config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return RouterConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    _check_keys(raw_config, {'cache', 'quota', 'provider', 'feedback', 'breaker', 'storage'}, "config")

    return RouterConfig(
        cache=_parse_cache(_section(raw_config, 'cache')),
        quota=_parse_quota(_section(raw_config, 'quota')),
        provider=_parse_provider(_section(raw_config, 'provider')),
        feedback=_parse_feedback(_section(raw_config, 'feedback')),
        breaker=_parse_breaker(_section(raw_config, 'breaker')),
        storage=_parse_storage(_section(raw_config, 'storage')),
    )


def _section(raw: Dict, name: str) -> Dict:
    data = raw.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _number(data: Dict, key: str, path: str, default: Any, integer: bool = False) -> Any:
    """Read a numeric value, rejecting booleans and strings."""
    if key not in data:
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    if integer:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"'{key}' in {path} must be an integer")
        return int(value)
    return float(value)


def _parse_cache(data: Dict) -> CacheConfig:
    _check_keys(data, {'ttl_hours', 'max_entries', 'min_confidence'}, "cache")
    defaults = CacheConfig()
    return CacheConfig(
        ttl_hours=_number(data, 'ttl_hours', "cache", defaults.ttl_hours),
        max_entries=_number(data, 'max_entries', "cache", defaults.max_entries, integer=True),
        min_confidence=_number(data, 'min_confidence', "cache", defaults.min_confidence),
    )


def _parse_quota(data: Dict) -> QuotaConfig:
    _check_keys(data, {'period', 'rate_limit', 'tiers', 'default_tier'}, "quota")
    defaults = QuotaConfig()

    period = defaults.period
    if 'period' in data:
        period_str = data['period']
        if not isinstance(period_str, str):
            raise ValueError("'period' in quota must be a string")
        try:
            period = QuotaPeriod(period_str.lower())
        except ValueError:
            valid_periods = [p.value for p in QuotaPeriod]
            raise ValueError(f"'period' in quota must be one of: {valid_periods}")

    rate_data = data.get('rate_limit') or {}
    if not isinstance(rate_data, dict):
        raise ValueError("'rate_limit' in quota must be a dictionary")
    _check_keys(rate_data, {'window_seconds', 'burst'}, "quota.rate_limit")
    rate_limit = RateLimitConfig(
        window_seconds=_number(rate_data, 'window_seconds', "quota.rate_limit",
                               defaults.rate_limit.window_seconds),
        burst=_number(rate_data, 'burst', "quota.rate_limit", defaults.rate_limit.burst, integer=True),
    )

    tiers = dict(DEFAULT_TIERS)
    tiers_data = data.get('tiers') or {}
    if not isinstance(tiers_data, dict):
        raise ValueError("'tiers' in quota must be a dictionary")
    for tier_name, tier_data in tiers_data.items():
        tier_path = f"quota.tiers.{tier_name}"
        if not isinstance(tier_data, dict):
            raise ValueError(f"Tier '{tier_name}' must be a dictionary")
        _check_keys(tier_data, {'token_limit', 'request_limit', 'conversation_limit'}, tier_path)
        for required in ('token_limit', 'request_limit', 'conversation_limit'):
            if required not in tier_data:
                raise ValueError(f"Missing required '{required}' in {tier_path}")
        tiers[str(tier_name)] = TierLimits(
            token_limit=_number(tier_data, 'token_limit', tier_path, None, integer=True),
            request_limit=_number(tier_data, 'request_limit', tier_path, None, integer=True),
            conversation_limit=_number(tier_data, 'conversation_limit', tier_path, None, integer=True),
        )

    default_tier = data.get('default_tier', defaults.default_tier)
    if not isinstance(default_tier, str):
        raise ValueError("'default_tier' in quota must be a string")

    return QuotaConfig(
        period=period,
        rate_limit=rate_limit,
        tiers=tiers,
        default_tier=default_tier,
    )


def _parse_provider(data: Dict) -> ProviderConfig:
    _check_keys(data, {'model', 'timeout_seconds', 'max_completion_tokens', 'offer_local_on_denial'}, "provider")
    defaults = ProviderConfig()

    model = data.get('model', defaults.model)
    if not isinstance(model, str):
        raise ValueError("'model' in provider must be a string")

    offer_local = data.get('offer_local_on_denial', defaults.offer_local_on_denial)
    if not isinstance(offer_local, bool):
        raise ValueError("'offer_local_on_denial' in provider must be a boolean")

    return ProviderConfig(
        model=model,
        timeout_seconds=_number(data, 'timeout_seconds', "provider", defaults.timeout_seconds),
        max_completion_tokens=_number(data, 'max_completion_tokens', "provider",
                                      defaults.max_completion_tokens, integer=True),
        offer_local_on_denial=offer_local,
    )


def _parse_feedback(data: Dict) -> FeedbackConfig:
    _check_keys(data, {'reset_confidence', 'learning_rate', 'min_learning_rate'}, "feedback")
    defaults = FeedbackConfig()
    return FeedbackConfig(
        reset_confidence=_number(data, 'reset_confidence', "feedback", defaults.reset_confidence),
        learning_rate=_number(data, 'learning_rate', "feedback", defaults.learning_rate),
        min_learning_rate=_number(data, 'min_learning_rate', "feedback", defaults.min_learning_rate),
    )


def _parse_breaker(data: Dict) -> BreakerConfig:
    _check_keys(data, {'failure_threshold', 'reset_timeout_seconds'}, "breaker")
    defaults = BreakerConfig()
    return BreakerConfig(
        failure_threshold=_number(data, 'failure_threshold', "breaker",
                                  defaults.failure_threshold, integer=True),
        reset_timeout_seconds=_number(data, 'reset_timeout_seconds', "breaker",
                                      defaults.reset_timeout_seconds),
    )


def _parse_storage(data: Dict) -> StorageConfig:
    _check_keys(data, {'db_path', 'outcome_log_size'}, "storage")
    defaults = StorageConfig()

    db_path = data.get('db_path', defaults.db_path)
    if not isinstance(db_path, str):
        raise ValueError("'db_path' in storage must be a string")

    return StorageConfig(
        db_path=db_path,
        outcome_log_size=_number(data, 'outcome_log_size', "storage",
                                 defaults.outcome_log_size, integer=True),
    )
