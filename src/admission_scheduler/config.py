# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Default configurations for the admission scheduler.

This module contains the static per-model quota table, the admission
policy constants, and environment-variable loading for both.
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

lib_logger = logging.getLogger("admission_scheduler")

MINUTES_PER_DAY = 24 * 60

DEFAULT_SAFETY_FACTOR = 1.2
DEFAULT_MIN_TOKENS_PER_REQUEST = 1500
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_REFILL_INTERVAL_SECONDS = 60.0


# =============================================================================
# MODEL QUOTAS
# =============================================================================


@dataclass(frozen=True)
class ModelQuotaConfig:
    """
    Static quota limits for one upstream model.

    Each limit becomes the capacity of one bucket. The request and token
    buckets refill their full capacity every minute; the daily bucket
    refills continuously at rpd / 1440 per minute and is also reset
    explicitly at every UTC day boundary.
    """

    model_id: str
    requests_per_minute: int
    tokens_per_minute: int
    requests_per_day: int

    def __post_init__(self):
        if not self.model_id:
            raise ValueError("model_id must be a non-empty string")
        for name in ("requests_per_minute", "tokens_per_minute", "requests_per_day"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(
                    f"{name} for {self.model_id} must be a positive integer, got {value!r}"
                )

    @property
    def request_refill_per_minute(self) -> float:
        return float(self.requests_per_minute)

    @property
    def token_refill_per_minute(self) -> float:
        return float(self.tokens_per_minute)

    @property
    def daily_refill_per_minute(self) -> float:
        return self.requests_per_day / MINUTES_PER_DAY

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "ModelQuotaConfig":
        """Create from a ``{"id", "rpm", "tpm", "rpd"}`` mapping."""
        return cls(
            model_id=config.get("id") or config.get("model_id", ""),
            requests_per_minute=config.get("rpm", config.get("requests_per_minute")),
            tokens_per_minute=config.get("tpm", config.get("tokens_per_minute")),
            requests_per_day=config.get("rpd", config.get("requests_per_day")),
        )


def get_default_models() -> List[ModelQuotaConfig]:
    """
    Get the default model quota table.

    Free-tier Gemini limits for the models the page worker uses.
    """
    return [
        ModelQuotaConfig("g2.5-flash", 10, 250_000, 250),
        ModelQuotaConfig("g2.5-flash-lite", 15, 250_000, 1000),
        ModelQuotaConfig("g2.0-flash", 15, 1_000_000, 200),
        ModelQuotaConfig("g2.5-pro", 5, 125_000, 100),
    ]


# =============================================================================
# SCHEDULER POLICY
# =============================================================================


@dataclass
class SchedulerConfig:
    """
    Complete configuration for an AdmissionScheduler.

    Combines the model quota table with the admission policy constants.
    """

    models: List[ModelQuotaConfig] = field(default_factory=get_default_models)

    # Multiplier applied to caller estimates before debiting the token bucket
    safety_factor: float = DEFAULT_SAFETY_FACTOR
    # Floor for the effective token cost of a single request
    min_tokens_per_request: int = DEFAULT_MIN_TOKENS_PER_REQUEST

    # Delay between failed admission scans
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    # Background refill tick (also the daily reset check interval)
    refill_interval_seconds: float = DEFAULT_REFILL_INTERVAL_SECONDS

    def __post_init__(self):
        if not math.isfinite(self.safety_factor) or self.safety_factor <= 0:
            raise ValueError(
                f"safety_factor must be a positive finite number, got {self.safety_factor}"
            )
        if self.min_tokens_per_request < 0:
            raise ValueError(
                f"min_tokens_per_request must be >= 0, got {self.min_tokens_per_request}"
            )
        if not math.isfinite(self.retry_backoff_seconds) or self.retry_backoff_seconds <= 0:
            raise ValueError(
                f"retry_backoff_seconds must be positive, got {self.retry_backoff_seconds}"
            )
        if not math.isfinite(self.refill_interval_seconds) or self.refill_interval_seconds <= 0:
            raise ValueError(
                f"refill_interval_seconds must be positive, got {self.refill_interval_seconds}"
            )


# =============================================================================
# CONFIG LOADER
# =============================================================================


def _env_key(model_id: str) -> str:
    """g2.5-flash-lite -> G2_5_FLASH_LITE"""
    return model_id.upper().replace(".", "_").replace("-", "_")


def _load_models_from_env() -> Optional[List[ModelQuotaConfig]]:
    """Load the model table from LLM_MODEL_QUOTAS, or None if unset/invalid."""
    env_value = os.environ.get("LLM_MODEL_QUOTAS", "").strip()
    if not env_value:
        return None

    try:
        raw = json.loads(env_value)
    except json.JSONDecodeError as e:
        lib_logger.warning(f"Ignoring LLM_MODEL_QUOTAS: invalid JSON ({e})")
        return None

    if not isinstance(raw, list):
        lib_logger.warning(
            f"Ignoring LLM_MODEL_QUOTAS: expected a list, got {type(raw).__name__}"
        )
        return None

    models = []
    for entry in raw:
        if not isinstance(entry, dict):
            lib_logger.warning(f"Skipping model quota entry {entry!r}: not an object")
            continue
        try:
            models.append(ModelQuotaConfig.from_dict(entry))
        except (TypeError, ValueError) as e:
            lib_logger.warning(f"Skipping model quota entry {entry!r}: {e}")

    return models or None


def _apply_model_overrides(models: List[ModelQuotaConfig]) -> List[ModelQuotaConfig]:
    """
    Apply per-model LLM_QUOTA_{RPM,TPM,RPD}_<MODEL> overrides.

    Format: LLM_QUOTA_RPM_G2_5_FLASH=20
    """
    fields = {
        "RPM": "requests_per_minute",
        "TPM": "tokens_per_minute",
        "RPD": "requests_per_day",
    }
    result = []
    for model in models:
        overrides: Dict[str, int] = {}
        for suffix, attr in fields.items():
            env_name = f"LLM_QUOTA_{suffix}_{_env_key(model.model_id)}"
            env_value = os.getenv(env_name)
            if not env_value:
                continue
            try:
                value = int(env_value)
            except ValueError:
                lib_logger.warning(f"Ignoring {env_name}={env_value!r}: not an integer")
                continue
            if value <= 0:
                lib_logger.warning(f"Ignoring {env_name}={env_value!r}: must be positive")
                continue
            overrides[attr] = value

        if overrides:
            values = {
                "model_id": model.model_id,
                "requests_per_minute": model.requests_per_minute,
                "tokens_per_minute": model.tokens_per_minute,
                "requests_per_day": model.requests_per_day,
            }
            values.update(overrides)
            model = ModelQuotaConfig(**values)
        result.append(model)
    return result


def _float_env(name: str, default: float, scale: float = 1.0) -> float:
    env_value = os.getenv(name)
    if not env_value:
        return default
    try:
        value = float(env_value) * scale
    except ValueError:
        lib_logger.warning(f"Ignoring {name}={env_value!r}: not a number")
        return default
    if not math.isfinite(value) or value <= 0:
        lib_logger.warning(f"Ignoring {name}={env_value!r}: must be a positive finite number")
        return default
    return value


def load_scheduler_config() -> SchedulerConfig:
    """
    Load scheduler configuration.

    Merges:
    1. System defaults
    2. LLM_MODEL_QUOTAS (replaces the whole model table)
    3. Per-model and policy environment variables (always win)

    Returns:
        Complete configuration for the scheduler
    """
    models = _load_models_from_env() or get_default_models()
    models = _apply_model_overrides(models)

    min_tokens = DEFAULT_MIN_TOKENS_PER_REQUEST
    env_min = os.getenv("LLM_MIN_TOKENS_PER_REQ")
    if env_min:
        try:
            min_tokens = max(0, int(env_min))
        except ValueError:
            lib_logger.warning(f"Ignoring LLM_MIN_TOKENS_PER_REQ={env_min!r}: not an integer")

    return SchedulerConfig(
        models=models,
        safety_factor=_float_env("LLM_SAFETY_FACTOR", DEFAULT_SAFETY_FACTOR),
        min_tokens_per_request=min_tokens,
        retry_backoff_seconds=_float_env(
            "LLM_RETRY_BACKOFF_MS", DEFAULT_RETRY_BACKOFF_SECONDS, scale=0.001
        ),
        refill_interval_seconds=_float_env(
            "LLM_REFILL_INTERVAL_SECONDS", DEFAULT_REFILL_INTERVAL_SECONDS
        ),
    )
