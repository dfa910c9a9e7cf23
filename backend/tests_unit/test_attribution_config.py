"""
Attribution Config Tests (Unit)
===============================

WHAT: Validation of AttributionConfig and its construction from Settings.
WHY: A bad weight or window would make every stored credit wrong.

REFERENCES:
- backend/touchcredit/services/attribution/config.py
- backend/touchcredit/deps.py:Settings
"""

from types import SimpleNamespace

import pytest

from touchcredit.services.attribution.config import AttributionConfig
from touchcredit.services.attribution.errors import ConfigurationError


def test_defaults() -> None:
    config = AttributionConfig()

    assert config.lookback_days == 30
    assert config.time_decay_half_life_days == 7.0
    assert (config.position_first_weight, config.position_last_weight, config.position_middle_weight) == (0.4, 0.4, 0.2)
    assert config.touch_retention_days == 90
    assert config.batch_size == 50


@pytest.mark.parametrize(
    "overrides",
    [
        {"lookback_days": 0},
        {"time_decay_half_life_days": -1},
        {"batch_size": 0},
        {"claim_ttl_seconds": 0},
        {"touch_retention_days": 0},
        {"position_first_weight": 0.5},
        {"position_first_weight": -0.1, "position_last_weight": 0.9},
        {"position_first_weight": 0.0, "position_last_weight": 0.0, "position_middle_weight": 1.0},
    ],
)
def test_invalid_values_rejected(overrides) -> None:
    with pytest.raises(ConfigurationError):
        AttributionConfig(**overrides)


def test_configuration_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        AttributionConfig(lookback_days=-5)


def test_from_settings() -> None:
    settings = SimpleNamespace(
        ATTRIBUTION_LOOKBACK_DAYS=14,
        ATTRIBUTION_TIME_DECAY_HALF_LIFE_DAYS=3.5,
        ATTRIBUTION_POSITION_FIRST_WEIGHT=0.3,
        ATTRIBUTION_POSITION_LAST_WEIGHT=0.5,
        ATTRIBUTION_POSITION_MIDDLE_WEIGHT=0.2,
        ATTRIBUTION_TOUCH_RETENTION_DAYS=60,
        ATTRIBUTION_BATCH_SIZE=10,
        ATTRIBUTION_CLAIM_TTL_SECONDS=120,
    )

    config = AttributionConfig.from_settings(settings)

    assert config.lookback_days == 14
    assert config.time_decay_half_life_days == 3.5
    assert config.position_last_weight == 0.5
    assert config.batch_size == 10
    assert config.claim_ttl_seconds == 120
