"""
Surgery Duration Predictor Module.

Estimates surgery duration with a fixed weighted-sum formula over:
- Procedure complexity and the operator's base estimate
- Patient factors (age, BMI, ASA score, comorbidities)
- Case context (emergency flag, hour of day, day of week)
- A complexity x ASA interaction for high-acuity cases

The formula is an explainable heuristic with no fitted parameters: the same
feature vector always yields the same result. Predictions feed the priority
queue display and the OR scheduler.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .models import Surgery

logger = logging.getLogger(__name__)


MIN_PREDICTED_MINUTES = 15

# Fallbacks for missing or out-of-range optional inputs
DEFAULT_AGE = 45
DEFAULT_BMI = 25.0
DEFAULT_ASA = 2
DEFAULT_HOUR = 10
DEFAULT_DAY_OF_WEEK = 2  # Wednesday

# Fractional adjustment applied to the base estimate per feature unit
WEIGHTS: Dict[str, float] = {
    "complexity": 0.12,      # per level above 1
    "age": 0.005,            # per year over 50
    "bmi": 0.01,             # per BMI point over 30
    "asa": 0.05,             # per ASA class above 1
    "emergency": 0.15,
    "comorbidity": 0.08,
    "afternoon": 0.05,       # fatigue, start at or after 14:00
    "weekend": 0.04,         # reduced staffing
    "interaction": 0.02,     # (complexity - 3) * (asa - 2) for high acuity
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


@dataclass
class PredictionInput:
    """Input features for duration prediction."""
    complexity: int  # 1-5
    estimated_duration: int  # operator-entered minutes
    patient_age: Optional[int] = None
    patient_bmi: Optional[float] = None
    asa_score: Optional[int] = None  # 1-6
    is_emergency: bool = False
    has_comorbidities: bool = False
    hour_of_day: Optional[int] = None  # 0-23
    day_of_week: Optional[int] = None  # 0 = Monday

    @classmethod
    def from_surgery(cls, surgery: Surgery, start: Optional[datetime] = None) -> "PredictionInput":
        """Build features from a surgery, using its planned start for time-of-day terms."""
        start = start or surgery.scheduled_start
        return cls(
            complexity=surgery.complexity,
            estimated_duration=surgery.estimated_duration,
            patient_age=surgery.patient_age,
            patient_bmi=surgery.patient_bmi,
            asa_score=surgery.patient_asa_score,
            is_emergency=surgery.is_emergency,
            has_comorbidities=bool(surgery.patient_comorbidities),
            hour_of_day=start.hour if start else None,
            day_of_week=start.weekday() if start else None,
        )


@dataclass
class PredictionResult:
    """Output from duration prediction."""
    predicted: int
    lower: int
    upper: int
    confidence: int  # 0-100
    factors: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "predicted": self.predicted,
            "lower": self.lower,
            "upper": self.upper,
            "confidence": self.confidence,
            "factors": dict(self.factors),
        }


def _in_range(value, low, high, default):
    if value is None or not low <= value <= high:
        return default
    return value


class DurationPredictor:
    """
    Weighted-sum surgery duration predictor.

    Each feature contributes a fraction of the base estimate; the contributions
    are returned as ``factors`` so a scheduler can see what drove the number.
    """

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = dict(WEIGHTS)
        if weights:
            self.weights.update(weights)

    def _factors(self, data: PredictionInput) -> Dict[str, float]:
        w = self.weights
        complexity = min(5, max(1, data.complexity))
        age = _in_range(data.patient_age, 0, 120, DEFAULT_AGE)
        bmi = _in_range(data.patient_bmi, 10, 80, DEFAULT_BMI)
        asa = _in_range(data.asa_score, 1, 6, DEFAULT_ASA)
        hour = _in_range(data.hour_of_day, 0, 23, DEFAULT_HOUR)
        day = _in_range(data.day_of_week, 0, 6, DEFAULT_DAY_OF_WEEK)

        factors = {
            "complexity": w["complexity"] * (complexity - 1),
            "age": w["age"] * max(0, age - 50),
            "bmi": w["bmi"] * max(0.0, bmi - 30),
            "asa": w["asa"] * (asa - 1),
            "emergency": w["emergency"] if data.is_emergency else 0.0,
            "comorbidity": w["comorbidity"] if data.has_comorbidities else 0.0,
            "afternoon": w["afternoon"] if hour >= 14 else 0.0,
            "weekend": w["weekend"] if day >= 5 else 0.0,
            "interaction": 0.0,
        }
        if complexity >= 4 and asa >= 3:
            factors["interaction"] = w["interaction"] * (complexity - 3) * (asa - 2)
        return factors

    def predict(self, input_data: PredictionInput) -> PredictionResult:
        """
        Predict surgery duration for given input.

        Returns predicted minutes (>= 15) with an interval that widens with
        complexity and emergency status.
        """
        factors = self._factors(input_data)
        complexity = min(5, max(1, input_data.complexity))
        asa = _in_range(input_data.asa_score, 1, 6, DEFAULT_ASA)

        adjustment = 0.0
        for name in WEIGHTS:
            adjustment += factors[name]

        raw = input_data.estimated_duration * (1 + adjustment)
        predicted = max(MIN_PREDICTED_MINUTES, round_half_up(raw))

        margin = 0.10 + 0.03 * complexity + (0.05 if input_data.is_emergency else 0.0)
        lower = max(0, round_half_up(predicted * (1 - margin)))
        upper = round_half_up(predicted * (1 + margin))

        confidence = 95 - 5 * complexity
        if input_data.is_emergency:
            confidence -= 10
        if asa >= 4:
            confidence -= 5
        confidence = max(50, confidence)

        return PredictionResult(
            predicted=predicted,
            lower=lower,
            upper=upper,
            confidence=confidence,
            factors={k: round(v, 4) for k, v in factors.items()},
        )

    def predict_for_surgery(self, surgery: Surgery, start: Optional[datetime] = None) -> PredictionResult:
        return self.predict(PredictionInput.from_surgery(surgery, start))

    def predict_batch(self, inputs: List[PredictionInput]) -> List[PredictionResult]:
        """Predict durations for multiple surgeries."""
        return [self.predict(inp) for inp in inputs]


_default_predictor = DurationPredictor()


def predict_duration(input_data: PredictionInput) -> PredictionResult:
    """Module-level shortcut using the default weights."""
    return _default_predictor.predict(input_data)
