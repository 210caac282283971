# jobmatch/services/match/config.py
"""
Matcher Configuration - execution knobs for the match engine.

Resolution order: built-in defaults -> provider defaults -> MATCHER_* environment
overrides -> explicit overrides. The result is validated and immutable; changing
configuration at runtime means building a new MatcherConfig and handing it to
MatchEngine.apply_config.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator, model_validator

logger = logging.getLogger("match.config")

# field -> (min, max, message); max=None means unbounded above
_RANGES: Dict[str, Tuple[int, Optional[int], str]] = {
    "batch_size": (1, 10, "Batch size must be between 1 and 10"),
    "max_retries": (1, 5, "Max retries must be between 1 and 5"),
    "concurrency_limit": (1, 10, "Concurrency limit must be between 1 and 10"),
    "inter_request_delay_ms": (0, 10_000, "Inter-request delay must be between 0ms and 10s"),
    "timeout_ms": (5_000, 120_000, "Timeout must be between 5s and 120s"),
    "backoff_base_delay_ms": (0, None, "Backoff base delay must be 0ms or more"),
    "backoff_max_delay_ms": (0, None, "Backoff max delay must be 0ms or more"),
    "backoff_jitter_ms": (0, 1_000, "Backoff jitter must be between 0ms and 1s"),
    "circuit_breaker_threshold": (3, 50, "Circuit breaker threshold must be between 3 and 50"),
    "circuit_breaker_reset_timeout_ms": (1_000, 600_000, "Circuit breaker reset timeout must be between 1s and 10m"),
    "half_open_max_calls": (1, 10, "Half-open trial calls must be between 1 and 10"),
}

BACKOFF_ORDER_MESSAGE = "Backoff max delay must be greater than or equal to the base delay"

# Bounds for runtime settings changes; MatcherConfig itself only enforces the wider engine limits
_UPDATE_RANGES: Dict[str, Tuple[int, Optional[int], str]] = {
    **_RANGES,
    "backoff_base_delay_ms": (500, 10_000, "Backoff base delay must be between 500ms and 10s"),
    "backoff_max_delay_ms": (5_000, 120_000, "Backoff max delay must be between 5s and 120s"),
    "circuit_breaker_reset_timeout_ms": (
        10_000, 300_000, "Circuit breaker reset timeout must be between 10s and 5m"
    ),
}


class MatcherConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    model: str = "gpt-4.1-mini"
    provider: str = "openai"
    reasoning_effort: str = "medium"
    bulk_enabled: bool = True
    batch_size: int = 2
    max_retries: int = 3
    concurrency_limit: int = 3
    serialize_operations: bool = False
    inter_request_delay_ms: int = 500
    timeout_ms: int = 30_000
    backoff_base_delay_ms: int = 2_000
    backoff_max_delay_ms: int = 32_000
    backoff_jitter_ms: int = 1_000
    circuit_breaker_threshold: int = 10
    circuit_breaker_reset_timeout_ms: int = 60_000
    half_open_max_calls: int = 3
    auto_match_after_scrape: bool = True

    @field_validator(*_RANGES.keys())
    @classmethod
    def check_range(cls, value: int, info: ValidationInfo) -> int:
        low, high, message = _RANGES[info.field_name]
        if value < low or (high is not None and value > high):
            raise ValueError(message)
        return value

    @model_validator(mode="after")
    def check_backoff_order(self) -> "MatcherConfig":
        if self.backoff_max_delay_ms < self.backoff_base_delay_ms:
            raise ValueError(BACKOFF_ORDER_MESSAGE)
        return self

    @property
    def provider_options(self) -> Dict[str, Any]:
        """Options forwarded to the model-call surface with every request."""
        return {"model": self.model, "provider": self.provider, "reasoning_effort": self.reasoning_effort}


DEFAULT_MATCHER_CONFIG = MatcherConfig()

# Local models cannot take parallel load; hosted APIs use the defaults
PROVIDER_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "ollama": {
        "serialize_operations": True,
        "concurrency_limit": 1,
        "batch_size": 1,
        "timeout_ms": 60_000,
        "inter_request_delay_ms": 0,
    },
    "openai": {},
}


def get_provider_defaults(provider: str) -> Dict[str, Any]:
    return dict(PROVIDER_DEFAULTS.get((provider or "").lower(), {}))


def validate_matcher_config(values: Mapping[str, Any]) -> List[str]:
    """
    Check a partial settings update without building a config, using the runtime bounds.
    Returns the descriptive error messages; empty list means valid.
    """
    errors: List[str] = []
    for field, value in values.items():
        if field not in _UPDATE_RANGES or value is None:
            continue
        low, high, message = _UPDATE_RANGES[field]
        if not isinstance(value, int) or value < low or (high is not None and value > high):
            errors.append(message)

    base = values.get("backoff_base_delay_ms")
    top = values.get("backoff_max_delay_ms")
    if isinstance(base, int) and isinstance(top, int) and top < base:
        errors.append(BACKOFF_ORDER_MESSAGE)
    return errors


def _environment_overrides(settings: Any) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field in MatcherConfig.model_fields:
        env_value = getattr(settings, f"MATCHER_{field.upper()}", None)
        if env_value is not None:
            values[field] = env_value
    return values


def load_matcher_config(settings: Any = None, overrides: Optional[Mapping[str, Any]] = None) -> MatcherConfig:
    """
    Build the effective MatcherConfig from application settings.

    Raises:
        pydantic.ValidationError: a resolved value is out of range.
    """
    if settings is None:
        from jobmatch.core.config import settings as app_settings
        settings = app_settings

    provider = settings.matcher_provider_effective
    values: Dict[str, Any] = DEFAULT_MATCHER_CONFIG.model_dump()
    values["provider"] = provider
    values.update(get_provider_defaults(provider))

    # Provider-level model settings, before the explicit MATCHER_MODEL
    if provider == "ollama" and settings.LLM_CHAT_MODEL:
        values["model"] = settings.LLM_CHAT_MODEL
    elif provider == "openai" and settings.OPENAI_MODEL:
        values["model"] = settings.OPENAI_MODEL

    values.update(_environment_overrides(settings))
    values["provider"] = provider
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    config = MatcherConfig(**values)
    logger.info(
        "Matcher config: provider=%s model=%s bulk=%s batch=%d concurrency=%d serialize=%s",
        config.provider, config.model, config.bulk_enabled, config.batch_size,
        config.concurrency_limit, config.serialize_operations,
    )
    return config
