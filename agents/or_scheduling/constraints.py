"""
Constraint Engine for operating room placements.

Evaluates a proposed (surgery, room, time window) against explicit rules and
returns a ConflictReport. Rules come in two kinds:

1. HARD RULES: any violation makes the placement invalid
   - no_overlap, or_capability, room_status
   - surgeon_specialization, surgeon_hours, staff_double_booked
   - equipment_available, sterilization_gap
2. SOFT RULES: lower the optimality score but never block
   - minimize_overtime, early_start, minimize_idle

The engine holds no state between calls and never mutates its inputs; the
same arguments always produce the same report.

Example:
    >>> engine = ConstraintEngine()
    >>> report = engine.check_placement(surgery, room, start, end, slots)
    >>> if report.conflict:
    ...     print(report.violated_rules)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .config import Settings, settings as default_settings
from .exceptions import ValidationError
from .models import (
    ConflictReport,
    ConstraintKind,
    Equipment,
    EquipmentStatus,
    OperatingRoom,
    RuleViolation,
    ScheduleSlot,
    SlotType,
    Staff,
    Surgery,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Constraint:
    kind: ConstraintKind
    name: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "name": self.name, "description": self.description}


HARD_CONSTRAINTS: List[Constraint] = [
    Constraint(ConstraintKind.HARD, "no_overlap", "No overlapping occupation of the same OR"),
    Constraint(ConstraintKind.HARD, "or_capability", "OR must support the required specialization"),
    Constraint(ConstraintKind.HARD, "room_status", "OR under maintenance or blocked accepts no cases"),
    Constraint(ConstraintKind.HARD, "surgeon_specialization", "Surgeon specialization must match the surgery"),
    Constraint(ConstraintKind.HARD, "surgeon_hours", "Surgeon must stay within max hours in any 24h window"),
    Constraint(ConstraintKind.HARD, "staff_double_booked", "Surgeon or anesthesiologist cannot be in two ORs at once"),
    Constraint(ConstraintKind.HARD, "equipment_available", "Required equipment must be available and sterilized"),
    Constraint(ConstraintKind.HARD, "sterilization_gap", "Required equipment must not be due for sterilization"),
]

SOFT_CONSTRAINTS: List[Constraint] = [
    Constraint(ConstraintKind.SOFT, "minimize_overtime", "Avoid cases ending past regular hours"),
    Constraint(ConstraintKind.SOFT, "early_start", "Avoid cases starting before the operating day"),
    Constraint(ConstraintKind.SOFT, "minimize_idle", "Avoid long idle gaps before a case in the same OR"),
]

ROLLING_WINDOW = timedelta(hours=24)


def _hard(rule: str, message: str) -> RuleViolation:
    return RuleViolation(rule=rule, kind=ConstraintKind.HARD, message=message)


def _soft(rule: str, message: str) -> RuleViolation:
    return RuleViolation(rule=rule, kind=ConstraintKind.SOFT, message=message)


def _overlap_minutes(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> float:
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    return max(0.0, (end - start).total_seconds() / 60)


def busiest_window_minutes(
    intervals: Sequence[Tuple[datetime, datetime]],
    must_touch: Tuple[datetime, datetime],
    window: timedelta = ROLLING_WINDOW,
) -> float:
    """
    Largest number of booked minutes inside any ``window``-long span that
    intersects ``must_touch``. The maximum of a sliding-window sum is reached
    at a window that starts at some interval start or ends at some interval end.
    """
    candidates = set()
    for start, end in intervals:
        candidates.add(start)
        candidates.add(end - window)

    best = 0.0
    for window_start in candidates:
        window_end = window_start + window
        if not (must_touch[0] < window_end and must_touch[1] > window_start):
            continue
        total = sum(
            _overlap_minutes(start, end, window_start, window_end) for start, end in intervals
        )
        best = max(best, total)
    return best


class ConstraintEngine:
    """
    Rule-based placement checker.

    Thresholds and penalties come from Settings so a facility can tune them
    without code changes.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings

    def check_placement(
        self,
        surgery: Surgery,
        room: OperatingRoom,
        window_start: datetime,
        window_end: datetime,
        existing_slots: Sequence[ScheduleSlot],
        surgeon: Optional[Staff] = None,
        equipment_list: Optional[Sequence[Equipment]] = None,
        anesthesiologist: Optional[Staff] = None,
        setup_minutes: int = 0,
        cleanup_minutes: int = 0,
    ) -> ConflictReport:
        """
        Evaluate every rule for one candidate placement.

        ``[window_start, window_end)`` is the surgery itself. When
        ``setup_minutes``/``cleanup_minutes`` are given, the overlap and idle
        rules use the padded room occupancy instead. Slots belonging to the
        surgery being placed are ignored, so a move can be re-checked against
        the live board.
        """
        if window_start >= window_end:
            raise ValidationError("Placement window must start before it ends")

        occupancy_start = window_start - timedelta(minutes=setup_minutes)
        occupancy_end = window_end + timedelta(minutes=cleanup_minutes)
        others = [s for s in existing_slots if s.surgery_id != surgery.id]
        room_slots = [s for s in others if s.room_id == room.id]

        hard: List[RuleViolation] = []
        hard.extend(self._check_room_rules(surgery, room, occupancy_start, occupancy_end, room_slots))
        hard.extend(self._check_staff_rules(
            surgery, room, window_start, window_end, others, surgeon, anesthesiologist
        ))
        if equipment_list is not None:
            hard.extend(self._check_equipment_rules(surgery, window_end, equipment_list))

        soft = self._check_soft_rules(window_start, window_end, occupancy_start, room_slots)

        score = max(
            0,
            100
            - self.settings.hard_violation_penalty * len(hard)
            - self.settings.soft_violation_penalty * len(soft),
        )
        report = ConflictReport(hard_violations=hard, soft_violations=soft, score=score)

        if report.conflict:
            logger.debug(
                f"Surgery {surgery.id} in {room.id} at {window_start:%H:%M}: "
                f"{len(hard)} hard violations ({', '.join(report.violated_rules)})"
            )
        return report

    # -------------------------------------------------------------------------
    # HARD RULES
    # -------------------------------------------------------------------------

    def _check_room_rules(
        self,
        surgery: Surgery,
        room: OperatingRoom,
        occupancy_start: datetime,
        occupancy_end: datetime,
        room_slots: Sequence[ScheduleSlot],
    ) -> List[RuleViolation]:
        violations = []

        # Rule: no_overlap (half-open intervals, one violation per clash)
        for slot in room_slots:
            if slot.overlaps(occupancy_start, occupancy_end):
                violations.append(_hard(
                    "no_overlap",
                    f"Time conflict with {slot.slot_type.value} slot of surgery {slot.surgery_id} "
                    f"in {room.name} ({slot.start_time:%H:%M}-{slot.end_time:%H:%M})",
                ))

        # Rule: or_capability
        if not room.supports(surgery.specialization_required):
            violations.append(_hard(
                "or_capability",
                f"OR {room.name} lacks capability: {surgery.specialization_required}",
            ))

        # Rule: room_status
        if not room.accepts_placements:
            violations.append(_hard(
                "room_status",
                f"OR {room.name} is {room.status.value} and accepts no new cases",
            ))

        return violations

    def _check_staff_rules(
        self,
        surgery: Surgery,
        room: OperatingRoom,
        window_start: datetime,
        window_end: datetime,
        others: Sequence[ScheduleSlot],
        surgeon: Optional[Staff],
        anesthesiologist: Optional[Staff],
    ) -> List[RuleViolation]:
        violations = []

        if surgeon is not None:
            # Rule: surgeon_specialization
            if surgery.specialization_required and surgeon.specialization != surgery.specialization_required:
                violations.append(_hard(
                    "surgeon_specialization",
                    f"Surgeon {surgeon.full_name} ({surgeon.specialization or 'no specialization'}) "
                    f"does not match required {surgery.specialization_required}",
                ))

            # Rule: surgeon_hours (heaviest rolling 24h window)
            booked = [
                (s.start_time, s.end_time)
                for s in others
                if s.surgeon_id == surgeon.id and s.slot_type == SlotType.SURGERY
            ]
            booked.append((window_start, window_end))
            cap_hours = surgeon.max_hours_per_day or self.settings.default_surgeon_max_hours
            busiest = busiest_window_minutes(booked, (window_start, window_end))
            if busiest > cap_hours * 60:
                violations.append(_hard(
                    "surgeon_hours",
                    f"Surgeon {surgeon.full_name} would work {busiest / 60:.1f}h in 24h "
                    f"(limit {cap_hours}h)",
                ))

        # Rule: staff_double_booked (other rooms; same-room clashes are no_overlap)
        for member, attr in ((surgeon, "surgeon_id"), (anesthesiologist, "anesthesiologist_id")):
            if member is None:
                continue
            for slot in others:
                if (
                    getattr(slot, attr) == member.id
                    and slot.slot_type == SlotType.SURGERY
                    and slot.room_id != room.id
                    and slot.overlaps(window_start, window_end)
                ):
                    violations.append(_hard(
                        "staff_double_booked",
                        f"{member.full_name} is already operating in {slot.room_id} "
                        f"({slot.start_time:%H:%M}-{slot.end_time:%H:%M})",
                    ))

        return violations

    def _referenced_equipment(
        self,
        surgery: Surgery,
        equipment_list: Sequence[Equipment],
    ) -> List[Tuple[str, List[Equipment]]]:
        """
        Pair each requirement with the inventory items that can satisfy it.

        A requirement names an item id or an equipment type. Without declared
        requirements every supplied item is treated as reserved for the case.
        """
        if not surgery.equipment_requirements:
            return [(item.id, [item]) for item in equipment_list]

        referenced = []
        for requirement in surgery.equipment_requirements:
            by_id = [item for item in equipment_list if item.id == requirement]
            if by_id:
                referenced.append((requirement, by_id))
                continue
            wanted = requirement.lower()
            referenced.append((
                requirement,
                [item for item in equipment_list if item.equipment_type.lower() == wanted],
            ))
        return referenced

    def _check_equipment_rules(
        self,
        surgery: Surgery,
        window_end: datetime,
        equipment_list: Sequence[Equipment],
    ) -> List[RuleViolation]:
        violations = []

        for requirement, items in self._referenced_equipment(surgery, equipment_list):
            # Rule: equipment_available
            if not items:
                violations.append(_hard(
                    "equipment_available",
                    f"No equipment matches requirement '{requirement}'",
                ))
                continue

            usable = [item for item in items if item.is_usable]
            if not usable:
                item = items[0]
                if item.status == EquipmentStatus.STERILIZING:
                    message = f'Equipment "{item.name}" is currently being sterilized'
                else:
                    message = f'Equipment "{item.name}" is unavailable ({item.status.value})'
                violations.append(_hard("equipment_available", message))
                continue

            # Rule: sterilization_gap
            ready = [
                item for item in usable
                if item.sterilization_due is None or item.sterilization_due >= window_end
            ]
            if not ready:
                item = usable[0]
                violations.append(_hard(
                    "sterilization_gap",
                    f'Equipment "{item.name}" is due for sterilization at '
                    f"{item.sterilization_due:%H:%M}, before the case ends",
                ))

        return violations

    # -------------------------------------------------------------------------
    # SOFT RULES
    # -------------------------------------------------------------------------

    def _check_soft_rules(
        self,
        window_start: datetime,
        window_end: datetime,
        occupancy_start: datetime,
        room_slots: Sequence[ScheduleSlot],
    ) -> List[RuleViolation]:
        violations = []
        cfg = self.settings

        if window_end.hour >= cfg.regular_hours_end_hour:
            violations.append(_soft(
                "minimize_overtime",
                f"Surgery extends past regular hours ({cfg.regular_hours_end_hour}:00)",
            ))

        if window_start.hour < cfg.early_start_hour:
            violations.append(_soft(
                "early_start",
                f"Surgery starts before {cfg.early_start_hour:02d}:00",
            ))

        preceding = [
            s.end_time for s in room_slots
            if s.end_time <= occupancy_start and s.end_time.date() == occupancy_start.date()
        ]
        if preceding:
            gap = (occupancy_start - max(preceding)).total_seconds() / 60
            if gap > cfg.idle_gap_threshold_minutes:
                violations.append(_soft(
                    "minimize_idle",
                    f"{round(gap)}min gap before this surgery: OR underutilized",
                ))

        return violations
