"""Attribution engine tunables.

WHAT: Frozen, validated bundle of the engine's configuration surface
WHY: The service is built once per process; every component reads the same
     values instead of reaching for global settings
REFERENCES:
  - touchcredit/deps.py:Settings (environment-backed source of these values)
"""

import math
from dataclasses import dataclass
from typing import Any

from .credit_models import (
    DEFAULT_POSITION_FIRST_WEIGHT,
    DEFAULT_POSITION_LAST_WEIGHT,
    DEFAULT_POSITION_MIDDLE_WEIGHT,
    DEFAULT_TIME_DECAY_HALF_LIFE_DAYS,
)
from .errors import ConfigurationError


@dataclass(frozen=True)
class AttributionConfig:
    lookback_days: int = 30
    time_decay_half_life_days: float = DEFAULT_TIME_DECAY_HALF_LIFE_DAYS
    position_first_weight: float = DEFAULT_POSITION_FIRST_WEIGHT
    position_last_weight: float = DEFAULT_POSITION_LAST_WEIGHT
    position_middle_weight: float = DEFAULT_POSITION_MIDDLE_WEIGHT
    touch_retention_days: int = 90
    batch_size: int = 50
    claim_ttl_seconds: int = 600

    def __post_init__(self):
        if self.lookback_days <= 0:
            raise ConfigurationError("lookback_days must be positive")
        if self.time_decay_half_life_days <= 0:
            raise ConfigurationError("time_decay_half_life_days must be positive")
        if self.touch_retention_days <= 0:
            raise ConfigurationError("touch_retention_days must be positive")
        if self.batch_size <= 0:
            raise ConfigurationError("batch_size must be positive")
        if self.claim_ttl_seconds <= 0:
            raise ConfigurationError("claim_ttl_seconds must be positive")

        weights = (
            self.position_first_weight,
            self.position_last_weight,
            self.position_middle_weight,
        )
        if any(weight < 0 for weight in weights):
            raise ConfigurationError("position weights must be non-negative")
        if self.position_first_weight + self.position_last_weight <= 0:
            raise ConfigurationError("first and last position weights cannot both be zero")
        if not math.isclose(sum(weights), 1.0, abs_tol=1e-9):
            raise ConfigurationError(f"position weights must sum to 1.0, got {sum(weights)}")

    @classmethod
    def from_settings(cls, settings: Any) -> "AttributionConfig":
        """Build from touchcredit.deps.Settings (or any object with the same fields)."""
        return cls(
            lookback_days=settings.ATTRIBUTION_LOOKBACK_DAYS,
            time_decay_half_life_days=settings.ATTRIBUTION_TIME_DECAY_HALF_LIFE_DAYS,
            position_first_weight=settings.ATTRIBUTION_POSITION_FIRST_WEIGHT,
            position_last_weight=settings.ATTRIBUTION_POSITION_LAST_WEIGHT,
            position_middle_weight=settings.ATTRIBUTION_POSITION_MIDDLE_WEIGHT,
            touch_retention_days=settings.ATTRIBUTION_TOUCH_RETENTION_DAYS,
            batch_size=settings.ATTRIBUTION_BATCH_SIZE,
            claim_ttl_seconds=settings.ATTRIBUTION_CLAIM_TTL_SECONDS,
        )
