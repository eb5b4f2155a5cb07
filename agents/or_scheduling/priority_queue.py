"""
Three-tier surgery priority queue.

Partitions active surgery requests into emergency / urgent / elective tiers
and, for each request, computes:
- wait time in hours since the request was created
- an aging severity band (ok / warning / severe) for the dashboard
- whether it has waited past its tier's SLA and should be escalated

Within a tier the oldest request comes first. This is a fairness policy:
clinical urgency is expressed by the tier, not by reordering inside it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .config import PRIORITY_WEIGHTS, Settings, settings as default_settings
from .duration_predictor import DurationPredictor, round_half_up
from .models import AgingSeverity, Priority, Surgery

logger = logging.getLogger(__name__)


# (severe_after_hours, warning_after_hours) per tier
AGING_BANDS: Dict[Priority, tuple] = {
    Priority.EMERGENCY: (2, None),
    Priority.URGENT: (48, 24),
    Priority.ELECTIVE: (720, 360),  # 30 / 15 days
}

TIER_ORDER = (Priority.EMERGENCY, Priority.URGENT, Priority.ELECTIVE)

# Next tier up when a request is escalated
ESCALATION_TARGET: Dict[Priority, Priority] = {
    Priority.ELECTIVE: Priority.URGENT,
    Priority.URGENT: Priority.EMERGENCY,
}


@dataclass
class PriorityQueueEntry:
    surgery_id: str
    priority: Priority
    wait_hours: int
    escalate: bool
    aging: AgingSeverity
    priority_score: int
    display_duration: int
    position: int = 0
    procedure_name: str = ""
    status: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "surgery_id": self.surgery_id,
            "priority": self.priority.value,
            "wait_hours": self.wait_hours,
            "escalate": self.escalate,
            "aging": self.aging.value,
            "priority_score": self.priority_score,
            "display_duration": self.display_duration,
            "position": self.position,
            "procedure_name": self.procedure_name,
            "status": self.status,
        }


@dataclass
class PriorityQueueSnapshot:
    generated_at: datetime
    tiers: Dict[Priority, List[PriorityQueueEntry]] = field(default_factory=dict)

    def tier(self, priority: Priority) -> List[PriorityQueueEntry]:
        return self.tiers.get(priority, [])

    def entry(self, surgery_id: str) -> Optional[PriorityQueueEntry]:
        for entries in self.tiers.values():
            for entry in entries:
                if entry.surgery_id == surgery_id:
                    return entry
        return None

    @property
    def escalation_candidates(self) -> List[PriorityQueueEntry]:
        return [e for p in TIER_ORDER for e in self.tier(p) if e.escalate]

    def statistics(self) -> Dict[str, Dict[str, float]]:
        stats = {}
        for priority in TIER_ORDER:
            entries = self.tier(priority)
            stats[priority.value] = {
                "count": len(entries),
                "escalations": sum(1 for e in entries if e.escalate),
                "average_wait_hours": round(
                    sum(e.wait_hours for e in entries) / len(entries), 1
                ) if entries else 0.0,
            }
        return stats

    def to_dict(self) -> Dict[str, object]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "tiers": {p.value: [e.to_dict() for e in self.tier(p)] for p in TIER_ORDER},
            "statistics": self.statistics(),
        }


class PriorityQueueManager:
    """
    Builds the three-tier queue from a consistent read of active surgeries.

    Recomputation is idempotent and side-effect free, so it can run on a
    timer or on demand.
    """

    def __init__(
        self,
        duration_predictor: Optional[DurationPredictor] = None,
        config: Optional[Settings] = None,
    ):
        self.duration_predictor = duration_predictor or DurationPredictor()
        self.settings = config or default_settings

    @staticmethod
    def wait_hours(created_at: datetime, now: datetime) -> int:
        return round_half_up((now - created_at).total_seconds() / 3600)

    def escalation_threshold(self, priority: Priority) -> Optional[int]:
        if priority == Priority.ELECTIVE:
            return self.settings.elective_escalation_hours
        if priority == Priority.URGENT:
            return self.settings.urgent_escalation_hours
        return None  # emergency is already the top tier

    def should_escalate(self, priority: Priority, wait_hours: int) -> bool:
        threshold = self.escalation_threshold(priority)
        return threshold is not None and wait_hours > threshold

    @staticmethod
    def aging_severity(priority: Priority, wait_hours: int) -> AgingSeverity:
        severe, warning = AGING_BANDS[priority]
        if wait_hours > severe:
            return AgingSeverity.SEVERE
        if warning is not None and wait_hours > warning:
            return AgingSeverity.WARNING
        return AgingSeverity.OK

    def build_entry(self, surgery: Surgery, now: datetime) -> PriorityQueueEntry:
        wait = self.wait_hours(surgery.created_at, now)
        if surgery.predicted_duration is not None:
            display_duration = surgery.predicted_duration
        else:
            display_duration = self.duration_predictor.predict_for_surgery(surgery).predicted
        return PriorityQueueEntry(
            surgery_id=surgery.id,
            priority=surgery.priority,
            wait_hours=wait,
            escalate=surgery.escalated_at is None and self.should_escalate(surgery.priority, wait),
            aging=self.aging_severity(surgery.priority, wait),
            priority_score=PRIORITY_WEIGHTS[surgery.priority.value] + wait,
            display_duration=display_duration,
            procedure_name=surgery.procedure_name,
            status=surgery.status.value,
        )

    def build(self, surgeries: Iterable[Surgery], now: Optional[datetime] = None) -> PriorityQueueSnapshot:
        """
        Rebuild the queue.

        Order within a tier: longest wait first, then earliest ``created_at``,
        then surgery id, which makes the order total.
        """
        now = now or datetime.now()
        active = [s for s in surgeries if s.is_active]

        tiers: Dict[Priority, List[PriorityQueueEntry]] = {p: [] for p in TIER_ORDER}
        created = {s.id: s.created_at for s in active}
        for surgery in active:
            tiers[surgery.priority].append(self.build_entry(surgery, now))

        for entries in tiers.values():
            entries.sort(key=lambda e: (-e.wait_hours, created[e.surgery_id], e.surgery_id))
            for idx, entry in enumerate(entries):
                entry.position = idx + 1

        snapshot = PriorityQueueSnapshot(generated_at=now, tiers=tiers)
        logger.debug(
            f"Priority queue rebuilt: {len(active)} active, "
            f"{len(snapshot.escalation_candidates)} escalation candidates"
        )
        return snapshot
