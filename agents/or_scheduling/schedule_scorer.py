"""
Schedule Quality Scorer and Case Sequencer.

``score_schedule`` grades a day's slots from 0-100 by deducting penalties
for idle gaps, a missing emergency buffer, overtime, and fatiguing runs of
high-complexity cases. ``recommend_sequence`` orders a worklist by priority
and simplicity, then batches similar procedures next to each other.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .config import PRIORITY_WEIGHTS, Settings, settings as default_settings
from .models import Priority, ScheduleSlot, SlotType, Surgery

logger = logging.getLogger(__name__)


IDLE_GAP_MINUTES = 30
IDLE_GAP_PENALTY = 5
EMERGENCY_BUFFER_MINUTES = 120
NO_BUFFER_PENALTY = 10
OVERTIME_PENALTY = 3
HIGH_COMPLEXITY = 4
HIGH_COMPLEXITY_RUN = 3
HIGH_COMPLEXITY_PENALTY = 8

GRADE_THRESHOLDS = [(90, "A"), (75, "B"), (60, "C"), (40, "D")]


@dataclass
class ScoredSlot:
    """One case on the board, as seen by the quality scorer."""
    start: datetime
    end: datetime
    room_id: Optional[str] = None
    priority: Optional[Priority] = None
    procedure_type: Optional[str] = None
    complexity: Optional[int] = None


@dataclass
class ScheduleQuality:
    score: int
    grade: str
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    disruption_probability: int = 5

    def to_dict(self) -> Dict[str, object]:
        return {
            "score": self.score,
            "grade": self.grade,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "disruption_probability": self.disruption_probability,
        }


def grade_for(score: int) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def _by_room(slots: Iterable[ScoredSlot]) -> Dict[Optional[str], List[ScoredSlot]]:
    rooms: Dict[Optional[str], List[ScoredSlot]] = defaultdict(list)
    for slot in slots:
        rooms[slot.room_id].append(slot)
    for room_slots in rooms.values():
        room_slots.sort(key=lambda s: s.start)
    return rooms


def score_schedule(
    slots: Sequence[ScoredSlot],
    config: Optional[Settings] = None,
) -> ScheduleQuality:
    """
    Score schedule quality from 0-100.

    Penalties:
    - idle gap > 30 min between consecutive cases in a room: -5 each
    - more than 2 cases and no >= 2h gap anywhere for emergencies: -10
    - each case ending at or after regular hours (18:00 by default): -3
    - 3+ consecutive complexity >= 4 cases in a room: -8, once
    """
    if not slots:
        return ScheduleQuality(score=100, grade="A", disruption_probability=5)

    score = 100
    issues: List[str] = []
    recommendations: List[str] = []
    rooms = _by_room(slots)

    idle_gaps = 0
    has_buffer = False
    for room_id, room_slots in rooms.items():
        for prev, current in zip(room_slots, room_slots[1:]):
            gap = (current.start - prev.end).total_seconds() / 60
            if gap > IDLE_GAP_MINUTES:
                idle_gaps += 1
                score -= IDLE_GAP_PENALTY
                issues.append(
                    f"{round(gap)}min idle gap in {room_id or 'room'} before "
                    f"{current.start.strftime('%H:%M')}"
                )
            if gap >= EMERGENCY_BUFFER_MINUTES:
                has_buffer = True
    if idle_gaps:
        recommendations.append("Pull later cases forward to close idle gaps")

    if len(slots) > 2 and not has_buffer:
        score -= NO_BUFFER_PENALTY
        issues.append("No emergency buffer period detected")
        recommendations.append("Keep a 2-hour window free in at least one room for emergencies")

    regular_end = (config or default_settings).regular_hours_end_hour
    overtime = [s for s in slots if s.end.hour >= regular_end]
    if overtime:
        score -= OVERTIME_PENALTY * len(overtime)
        issues.append(f"{len(overtime)} surgeries extend past {regular_end}:00")
        recommendations.append("Move late cases to an earlier gap or another room")

    for room_id, room_slots in rooms.items():
        run = 0
        longest = 0
        for slot in room_slots:
            run = run + 1 if (slot.complexity or 0) >= HIGH_COMPLEXITY else 0
            longest = max(longest, run)
        if longest >= HIGH_COMPLEXITY_RUN:
            score -= HIGH_COMPLEXITY_PENALTY
            issues.append(
                f"{longest} consecutive high-complexity cases in {room_id or 'room'}"
            )
            recommendations.append("Interleave a lower-complexity case to reduce team fatigue")
            break

    score = max(0, min(100, score))
    disruption = max(5, min(95, 100 - score + 2 * len(slots)))

    return ScheduleQuality(
        score=score,
        grade=grade_for(score),
        issues=issues,
        recommendations=recommendations,
        disruption_probability=disruption,
    )


def scored_slots_from_schedule(
    slots: Iterable[ScheduleSlot],
    surgeries: Dict[str, Surgery],
) -> List[ScoredSlot]:
    """Project stored slots onto the scorer's view; only surgery slots count."""
    scored = []
    for slot in slots:
        if slot.slot_type != SlotType.SURGERY:
            continue
        surgery = surgeries.get(slot.surgery_id)
        scored.append(ScoredSlot(
            start=slot.start_time,
            end=slot.end_time,
            room_id=slot.room_id,
            priority=surgery.priority if surgery else None,
            procedure_type=surgery.procedure_type if surgery else None,
            complexity=surgery.complexity if surgery else None,
        ))
    return scored


def sequence_weight(surgery: Surgery) -> int:
    return PRIORITY_WEIGHTS[surgery.priority.value] + (6 - surgery.complexity) * 10


def recommend_sequence(surgeries: Sequence[Surgery]) -> List[str]:
    """
    Recommend an operating order.

    Highest priority first, simpler cases first within a tier (Python's sort
    is stable, so input order breaks remaining ties). Cases sharing the
    procedure type and priority of the case just placed are pulled forward.
    """
    remaining = sorted(surgeries, key=sequence_weight, reverse=True)
    ordered: List[str] = []

    while remaining:
        current = remaining.pop(0)
        ordered.append(current.id)
        if not current.procedure_type:
            continue
        key = (current.procedure_type, current.priority)
        batch = [s for s in remaining if (s.procedure_type, s.priority) == key]
        if batch:
            ordered.extend(s.id for s in batch)
            remaining = [s for s in remaining if (s.procedure_type, s.priority) != key]

    return ordered
