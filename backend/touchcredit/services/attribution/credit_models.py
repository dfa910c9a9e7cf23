"""
Attribution Model Set.

WHAT:
    Five deterministic credit-assignment strategies sharing one contract:
    touches x conversion_time -> {touch_id: credit}.

WHY:
    Different models answer different questions ("what started the journey"
    vs "what closed it"). Reports compare them side by side.

DESIGN:
    - AttributionModel: closed enum of model ids
    - CreditModel: abstract base class with calculate()
    - One concrete class per model; tunable constants are constructor args
    - build_credit_models() assembles the registry from configuration
    - calculate_credits() keeps the string-keyed dispatch with its
      fall back to Last Touch for unknown ids

INVARIANTS:
    - Touches are sorted by timestamp with a stable sort, so touches sharing
      a timestamp keep their input (arrival) order
    - Credits are non-negative and sum to 1.0 for a non-empty touch list
    - Empty input returns an empty map
"""

import enum
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .errors import InvalidModelError

logger = logging.getLogger(__name__)


SECONDS_PER_DAY = 24 * 60 * 60

DEFAULT_TIME_DECAY_HALF_LIFE_DAYS = 7.0
DEFAULT_POSITION_FIRST_WEIGHT = 0.40
DEFAULT_POSITION_LAST_WEIGHT = 0.40
DEFAULT_POSITION_MIDDLE_WEIGHT = 0.20


class AttributionModel(str, enum.Enum):
    """Attribution model ids."""
    first_touch = "first_touch"
    last_touch = "last_touch"
    linear = "linear"
    time_decay = "time_decay"
    position_based = "position_based"

    @property
    def label(self) -> str:
        return MODEL_LABELS[self]

    @property
    def description(self) -> str:
        return MODEL_DESCRIPTIONS[self]

    @classmethod
    def from_id(cls, value: Any) -> "AttributionModel":
        """Strict lookup for single-model paths.

        Raises:
            InvalidModelError: If value is not one of the five model ids
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidModelError(value) from None


MODEL_LABELS = {
    AttributionModel.first_touch: "First Touch",
    AttributionModel.last_touch: "Last Touch",
    AttributionModel.linear: "Linear",
    AttributionModel.time_decay: "Time Decay",
    AttributionModel.position_based: "Position Based",
}

MODEL_DESCRIPTIONS = {
    AttributionModel.first_touch: "Assigns 100% credit to the first touchpoint in the customer journey.",
    AttributionModel.last_touch: "Assigns 100% credit to the last touchpoint before conversion.",
    AttributionModel.linear: "Distributes credit equally among all touchpoints.",
    AttributionModel.time_decay: "Assigns more credit to touchpoints closer to conversion (7-day half-life).",
    AttributionModel.position_based: (
        "Assigns 40% to first touch, 40% to last touch, and 20% distributed among middle touches."
    ),
}


class TouchLike(Protocol):
    """Anything with an id and a timestamp (ORM Touch rows, TouchPoint)."""
    id: Any
    touched_at: datetime


@dataclass
class TouchPoint:
    """Lightweight touch for scoring outside the database."""
    id: Any
    touched_at: datetime
    channel: Optional[str] = None


CreditMap = Dict[Any, float]


def sort_touches(touches: Iterable[TouchLike]) -> List[TouchLike]:
    """Sort by timestamp; sorted() is stable so ties keep input order."""
    return sorted(touches, key=lambda touch: touch.touched_at)


# =============================================================================
# MODELS
# =============================================================================


class CreditModel(ABC):
    """
    Abstract base class for attribution models.

    Subclasses implement calculate(); callers never need to pre-sort.
    """

    model_id: AttributionModel

    @abstractmethod
    def calculate(self, touches: Sequence[TouchLike], conversion_time: datetime) -> CreditMap:
        """
        Assign credit to each touch.

        Parameters:
            touches: Touches in the lookback window, any order
            conversion_time: When the conversion happened

        Returns:
            {touch_id: credit}; empty when touches is empty
        """


class FirstTouchModel(CreditModel):
    """100% credit to the earliest touch."""

    model_id = AttributionModel.first_touch

    def calculate(self, touches, conversion_time):
        if not touches:
            return {}
        ordered = sort_touches(touches)
        first_id = ordered[0].id
        return {touch.id: 1.0 if touch.id == first_id else 0.0 for touch in ordered}


class LastTouchModel(CreditModel):
    """100% credit to the latest touch."""

    model_id = AttributionModel.last_touch

    def calculate(self, touches, conversion_time):
        if not touches:
            return {}
        ordered = sort_touches(touches)
        last_id = ordered[-1].id
        return {touch.id: 1.0 if touch.id == last_id else 0.0 for touch in ordered}


class LinearModel(CreditModel):
    """Equal credit to every touch."""

    model_id = AttributionModel.linear

    def calculate(self, touches, conversion_time):
        if not touches:
            return {}
        ordered = sort_touches(touches)
        credit = 1.0 / len(ordered)
        return {touch.id: credit for touch in ordered}


class TimeDecayModel(CreditModel):
    """
    More credit to touches closer to the conversion.

    Raw weight is 2^(-days_before / half_life); days may be fractional.
    Weights are normalized to sum to 1.
    """

    model_id = AttributionModel.time_decay

    def __init__(self, half_life_days: float = DEFAULT_TIME_DECAY_HALF_LIFE_DAYS):
        self.half_life_days = half_life_days

    def raw_weight(self, touched_at: datetime, conversion_time: datetime) -> float:
        days_before = (conversion_time - touched_at).total_seconds() / SECONDS_PER_DAY
        return 2.0 ** (-days_before / self.half_life_days)

    def calculate(self, touches, conversion_time):
        if not touches:
            return {}

        ordered = sort_touches(touches)
        weights = {
            touch.id: self.raw_weight(touch.touched_at, conversion_time)
            for touch in ordered
        }
        total = sum(weights.values())
        if total <= 0:
            # Degenerate: every weight underflowed
            return {}

        return {touch_id: weight / total for touch_id, weight in weights.items()}


class PositionBasedModel(CreditModel):
    """
    U-shaped credit: first and last touches get fixed shares, the middle
    touches split the rest equally.

    N=1 gets everything; N=2 splits first/last weights proportionally
    (50/50 with the defaults).
    """

    model_id = AttributionModel.position_based

    def __init__(
        self,
        first_weight: float = DEFAULT_POSITION_FIRST_WEIGHT,
        last_weight: float = DEFAULT_POSITION_LAST_WEIGHT,
        middle_weight: float = DEFAULT_POSITION_MIDDLE_WEIGHT,
    ):
        self.first_weight = first_weight
        self.last_weight = last_weight
        self.middle_weight = middle_weight

    def calculate(self, touches, conversion_time):
        if not touches:
            return {}

        ordered = sort_touches(touches)
        count = len(ordered)

        if count == 1:
            return {ordered[0].id: 1.0}

        if count == 2:
            ends = self.first_weight + self.last_weight
            return {
                ordered[0].id: self.first_weight / ends,
                ordered[1].id: self.last_weight / ends,
            }

        middle_credit = self.middle_weight / (count - 2)
        credits = {touch.id: middle_credit for touch in ordered[1:-1]}
        credits[ordered[0].id] = self.first_weight
        credits[ordered[-1].id] = self.last_weight
        # Keep chronological key order
        return {touch.id: credits[touch.id] for touch in ordered}


# =============================================================================
# REGISTRY & DISPATCH
# =============================================================================


def build_credit_models(
    half_life_days: float = DEFAULT_TIME_DECAY_HALF_LIFE_DAYS,
    first_weight: float = DEFAULT_POSITION_FIRST_WEIGHT,
    last_weight: float = DEFAULT_POSITION_LAST_WEIGHT,
    middle_weight: float = DEFAULT_POSITION_MIDDLE_WEIGHT,
) -> Dict[AttributionModel, CreditModel]:
    """Build one instance of every model, keyed by id, in enum order."""
    models: List[CreditModel] = [
        FirstTouchModel(),
        LastTouchModel(),
        LinearModel(),
        TimeDecayModel(half_life_days=half_life_days),
        PositionBasedModel(
            first_weight=first_weight,
            last_weight=last_weight,
            middle_weight=middle_weight,
        ),
    ]
    return {model.model_id: model for model in models}


DEFAULT_CREDIT_MODELS = build_credit_models()


def calculate_credits(
    model_id: str,
    touches: Sequence[TouchLike],
    conversion_time: datetime,
    registry: Optional[Mapping[AttributionModel, CreditModel]] = None,
) -> CreditMap:
    """String-keyed dispatch over the model set.

    An unknown model id falls back to Last Touch instead of raising. Paths
    that take a single model from a caller should use
    AttributionModel.from_id() and get InvalidModelError instead.
    """
    registry = registry or DEFAULT_CREDIT_MODELS
    try:
        model = AttributionModel.from_id(model_id)
    except InvalidModelError:
        logger.warning("[ATTRIBUTION] Unknown model %r, falling back to last_touch", model_id)
        model = AttributionModel.last_touch

    if not touches:
        return {}
    return registry[model].calculate(touches, conversion_time)


def calculate_all(
    touches: Sequence[TouchLike],
    conversion_time: datetime,
    registry: Optional[Mapping[AttributionModel, CreditModel]] = None,
) -> Dict[AttributionModel, CreditMap]:
    """Run every model over the same touch set."""
    registry = registry or DEFAULT_CREDIT_MODELS
    return {
        model: credit_model.calculate(touches, conversion_time)
        for model, credit_model in registry.items()
    }


def compare_channel_shares(
    touches: Sequence[Any],
    conversion_time: datetime,
    registry: Optional[Mapping[AttributionModel, CreditModel]] = None,
) -> Dict[str, Dict[str, float]]:
    """Percentage of credit per channel under each model for one journey.

    Touches without a channel are grouped under "Unknown".

    Returns:
        {"linear": {"Social": 50.0, "Email": 50.0}, ...}
    """
    all_credits = calculate_all(touches, conversion_time, registry)

    channel_touch_ids: Dict[str, List[Any]] = defaultdict(list)
    for touch in touches:
        channel_touch_ids[getattr(touch, "channel", None) or "Unknown"].append(touch.id)

    comparison: Dict[str, Dict[str, float]] = {}
    for model, credits in all_credits.items():
        comparison[model.value] = {
            channel: round(sum(credits.get(touch_id, 0.0) for touch_id in touch_ids) * 100, 1)
            for channel, touch_ids in channel_touch_ids.items()
        }
    return comparison
