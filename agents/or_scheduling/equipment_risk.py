"""
Equipment Failure Risk Module.

Scores failure risk of OR equipment from two ratios:
- usage ratio: uses since maintenance vs. the maintenance threshold (60%)
- service-age ratio: days since last service vs. the type's expected
  maintenance interval (40%)

The combination is scaled by a type risk multiplier (cardiac and neuro
equipment score higher) and banded into low / medium / high / critical.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from .config import DEFAULT_EQUIPMENT_PROFILE, EQUIPMENT_PROFILES
from .duration_predictor import round_half_up
from .models import Equipment, RiskLevel

logger = logging.getLogger(__name__)


USAGE_WEIGHT = 0.6
SERVICE_AGE_WEIGHT = 0.4
DEFAULT_DAYS_SINCE_SERVICE = 30


RECOMMENDED_ACTIONS: Dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "Schedule immediate maintenance: high failure probability",
    RiskLevel.HIGH: "Schedule maintenance within 48 hours",
    RiskLevel.MEDIUM: "Monitor closely: maintenance due soon",
    RiskLevel.LOW: "Normal operation: no action required",
}


@dataclass
class FailureRisk:
    risk: RiskLevel
    score: int  # 0-100
    probability: float  # 0-1
    action: str
    equipment_id: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "equipment_id": self.equipment_id,
            "risk": self.risk.value,
            "score": self.score,
            "probability": self.probability,
            "action": self.action,
        }


def risk_band(score: int) -> RiskLevel:
    if score >= 80:
        return RiskLevel.CRITICAL
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 40:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def failure_probability(score: float) -> float:
    """Logistic squashing of the 0-100 score, centred at 50."""
    return round(1.0 / (1.0 + math.exp(-(score - 50) / 10.0)), 3)


def predict_equipment_failure(
    usage_count: int,
    max_usage: int,
    days_since_service: Optional[float] = None,
    equipment_type: Optional[str] = None,
) -> FailureRisk:
    """
    Predict equipment failure risk.

    ``max_usage <= 0`` is treated as fully used; a missing or negative
    ``days_since_service`` falls back to 30 days.
    """
    profile = EQUIPMENT_PROFILES.get((equipment_type or "").lower(), DEFAULT_EQUIPMENT_PROFILE)

    usage_ratio = max(0, usage_count) / max_usage if max_usage > 0 else 1.0
    if days_since_service is None or days_since_service < 0:
        days_since_service = DEFAULT_DAYS_SINCE_SERVICE
    service_ratio = days_since_service / profile["maintenance_interval_days"]

    raw = (USAGE_WEIGHT * usage_ratio + SERVICE_AGE_WEIGHT * service_ratio) * 100
    raw *= profile["risk_multiplier"]
    score = min(100, max(0, round_half_up(raw)))

    level = risk_band(score)
    return FailureRisk(
        risk=level,
        score=score,
        probability=failure_probability(score),
        action=RECOMMENDED_ACTIONS[level],
    )


def assess_equipment(item: Equipment, now: Optional[datetime] = None) -> FailureRisk:
    """Score one inventory item, deriving service age from ``last_service_at``."""
    now = now or datetime.now()
    days = None
    if item.last_service_at is not None:
        days = (now - item.last_service_at).total_seconds() / 86400
    result = predict_equipment_failure(
        usage_count=item.usage_count,
        max_usage=item.max_usage_before_maintenance,
        days_since_service=days,
        equipment_type=item.equipment_type,
    )
    result.equipment_id = item.id
    if result.risk in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        logger.info(f"Equipment {item.id} ({item.name}) at {result.risk.value} risk, score {result.score}")
    return result
