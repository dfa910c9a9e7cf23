"""
Attribution Calculator.

WHAT:
    Scores one conversion: finds the visitor's touches inside the lookback
    window, links them to the conversion and stores per-model credits.

WHY:
    Called synchronously when a conversion is recorded, by the batch
    processor for anything left unscored, and on demand for re-scoring.

SEMANTICS:
    - Window is [converted_at - lookback_days, converted_at], both inclusive
    - Scoring always recomputes from the current touches; a re-score replaces
      the link set and every requested model's result rows
    - Links and results for a conversion are committed together or not at all
    - not_found / no_touches are outcomes, not exceptions

REFERENCES:
    - touchcredit/services/attribution/store.py
    - touchcredit/services/attribution/credit_models.py
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from .config import AttributionConfig
from .credit_models import AttributionModel, CreditMap, CreditModel, build_credit_models
from .store import AttributionStore

logger = logging.getLogger(__name__)


class ScoreStatus(str, enum.Enum):
    scored = "scored"
    not_found = "not_found"
    no_touches = "no_touches"


@dataclass
class ScoreOutcome:
    """Result of scoring one conversion."""
    conversion_id: int
    status: ScoreStatus
    touches_count: int = 0
    credits: Dict[AttributionModel, CreditMap] = field(default_factory=dict)

    @property
    def scored(self) -> bool:
        return self.status == ScoreStatus.scored

    def to_dict(self) -> dict:
        return {
            "conversion_id": self.conversion_id,
            "status": self.status.value,
            "touches_count": self.touches_count,
            "credits": {
                model.value: dict(credit_map) for model, credit_map in self.credits.items()
            },
        }


def parse_models(models: Optional[Iterable[object]]) -> List[AttributionModel]:
    """Strictly parse requested model ids; None means all models.

    Raises:
        InvalidModelError: On the first unknown id
    """
    if models is None:
        return list(AttributionModel)
    parsed: List[AttributionModel] = []
    for value in models:
        model = AttributionModel.from_id(value)
        if model not in parsed:
            parsed.append(model)
    return parsed


def build_registry(config: AttributionConfig) -> Dict[AttributionModel, CreditModel]:
    return build_credit_models(
        half_life_days=config.time_decay_half_life_days,
        first_weight=config.position_first_weight,
        last_weight=config.position_last_weight,
        middle_weight=config.position_middle_weight,
    )


class AttributionCalculator:
    """Scores conversions against the store."""

    def __init__(
        self,
        store: AttributionStore,
        config: Optional[AttributionConfig] = None,
        registry: Optional[Mapping[AttributionModel, CreditModel]] = None,
    ):
        self.store = store
        self.config = config or AttributionConfig()
        self.registry = registry or build_registry(self.config)

    def window_for(self, converted_at: datetime):
        """Inclusive lookback window ending at the conversion."""
        return converted_at - timedelta(days=self.config.lookback_days), converted_at

    def score_conversion(
        self,
        conversion_id: int,
        models: Optional[Iterable[object]] = None,
    ) -> ScoreOutcome:
        """
        Score a conversion with the requested models (default: all five).

        Raises:
            InvalidModelError: Unknown model id (nothing is written)
            StorageError: Store failure (transaction rolled back)
        """
        requested = parse_models(models)

        conversion = self.store.get_conversion(conversion_id)
        if conversion is None:
            logger.info("[ATTRIBUTION] Conversion %s not found", conversion_id)
            return ScoreOutcome(conversion_id=conversion_id, status=ScoreStatus.not_found)

        window_start, window_end = self.window_for(conversion.converted_at)
        touches = self.store.get_touches_in_window(
            conversion.visitor_id, window_start, window_end
        )

        if not touches:
            logger.info(
                "[ATTRIBUTION] No touches for conversion %s (visitor=%s, window=%s..%s)",
                conversion_id, conversion.visitor_id, window_start, window_end,
            )
            return ScoreOutcome(conversion_id=conversion_id, status=ScoreStatus.no_touches)

        credits = {
            model: self.registry[model].calculate(touches, conversion.converted_at)
            for model in requested
        }

        calculated_at = datetime.utcnow()
        with self.store.transaction("score_conversion"):
            self.store.replace_links(conversion_id, [touch.id for touch in touches])
            for model, credit_map in credits.items():
                self.store.replace_results(conversion_id, model.value, credit_map, calculated_at)

        logger.info(
            "[ATTRIBUTION] Scored conversion %s: %d touches, models=%s",
            conversion_id, len(touches), [model.value for model in requested],
        )
        return ScoreOutcome(
            conversion_id=conversion_id,
            status=ScoreStatus.scored,
            touches_count=len(touches),
            credits=credits,
        )
