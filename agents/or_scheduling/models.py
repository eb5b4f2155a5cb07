"""
Domain model for the OR Scheduling Agent.

Entities are snapshots read from the facility repository; the scheduling
core never mutates them in place (updates go through ``dataclasses.replace``
inside the repository).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import ValidationError


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Priority(str, Enum):
    """Clinical priority tier of a surgery request."""
    EMERGENCY = "emergency"
    URGENT = "urgent"
    ELECTIVE = "elective"


class SurgeryStatus(str, Enum):
    """Lifecycle status of a surgery request."""
    PENDING = "pending"
    APPROVED = "approved"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RoomType(str, Enum):
    """Capability category of an operating room."""
    GENERAL = "general"
    CARDIAC = "cardiac"
    NEURO = "neuro"
    ORTHOPEDIC = "orthopedic"
    ENT = "ent"
    OPHTHALMIC = "ophthalmic"


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    BLOCKED = "blocked"


class EquipmentStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    STERILIZING = "sterilizing"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class StaffRole(str, Enum):
    SURGEON = "surgeon"
    ANESTHESIOLOGIST = "anesthesiologist"
    NURSE = "nurse"
    OR_MANAGER = "or_manager"
    SCHEDULER = "scheduler"


class SlotType(str, Enum):
    """Kind of room occupation; every placed surgery owns one of each."""
    SETUP = "setup"
    SURGERY = "surgery"
    CLEANUP = "cleanup"


class ConstraintKind(str, Enum):
    """
    Hard constraints block a placement; soft constraints only lower its score.
    """
    HARD = "hard"
    SOFT = "soft"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AgingSeverity(str, Enum):
    """Dashboard band for how long a request has waited in its tier."""
    OK = "ok"
    WARNING = "warning"
    SEVERE = "severe"


# Surgeries in these states are no longer part of the queue or the schedule
TERMINAL_STATUSES = frozenset({SurgeryStatus.COMPLETED, SurgeryStatus.CANCELLED})

# Statuses from which a surgery may be placed (or moved) into a room
PLACEABLE_STATUSES = frozenset({
    SurgeryStatus.APPROVED,
    SurgeryStatus.SCHEDULED,
    SurgeryStatus.RESCHEDULED,
})

UNUSABLE_EQUIPMENT_STATUSES = frozenset({
    EquipmentStatus.MAINTENANCE,
    EquipmentStatus.RETIRED,
    EquipmentStatus.STERILIZING,
})


# =============================================================================
# ENTITIES
# =============================================================================

@dataclass
class Surgery:
    """A request for operating room time."""
    id: str
    facility_id: str
    patient_name: str
    procedure_name: str
    priority: Priority = Priority.ELECTIVE
    complexity: int = 3
    estimated_duration: int = 60  # minutes, operator-entered
    predicted_duration: Optional[int] = None
    procedure_type: Optional[str] = None
    specialization_required: Optional[str] = None
    patient_age: Optional[int] = None
    patient_bmi: Optional[float] = None
    patient_asa_score: Optional[int] = None
    patient_comorbidities: List[str] = field(default_factory=list)
    equipment_requirements: List[str] = field(default_factory=list)
    status: SurgeryStatus = SurgeryStatus.PENDING
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    room_id: Optional[str] = None
    surgeon_id: Optional[str] = None
    anesthesiologist_id: Optional[str] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    escalated_at: Optional[datetime] = None

    @property
    def is_emergency(self) -> bool:
        return self.priority == Priority.EMERGENCY

    @property
    def is_active(self) -> bool:
        return self.status not in TERMINAL_STATUSES

    def validate(self) -> None:
        """Raise ValidationError if any field is outside its documented range."""
        if not 1 <= self.complexity <= 5:
            raise ValidationError(
                f"Surgery '{self.id}': complexity must be between 1 and 5, got {self.complexity}"
            )
        if self.estimated_duration <= 0:
            raise ValidationError(
                f"Surgery '{self.id}': estimated_duration must be positive, "
                f"got {self.estimated_duration}"
            )
        if self.patient_asa_score is not None and not 1 <= self.patient_asa_score <= 6:
            raise ValidationError(
                f"Surgery '{self.id}': ASA score must be between 1 and 6, "
                f"got {self.patient_asa_score}"
            )
        if (
            self.scheduled_start is not None
            and self.scheduled_end is not None
            and self.scheduled_start >= self.scheduled_end
        ):
            raise ValidationError(
                f"Surgery '{self.id}': scheduled_start must be before scheduled_end"
            )


@dataclass
class OperatingRoom:
    id: str
    facility_id: str
    name: str
    room_type: RoomType = RoomType.GENERAL
    status: RoomStatus = RoomStatus.AVAILABLE
    capabilities: List[str] = field(default_factory=list)

    @property
    def accepts_placements(self) -> bool:
        return self.status not in (RoomStatus.MAINTENANCE, RoomStatus.BLOCKED)

    def supports(self, specialization: Optional[str]) -> bool:
        """
        General rooms take any case; specialty rooms need the specialization
        either as their room type or among their capabilities.
        """
        if not specialization or self.room_type == RoomType.GENERAL:
            return True
        return specialization in self.capabilities or self.room_type.value == specialization


@dataclass
class Staff:
    id: str
    facility_id: str
    full_name: str
    role: StaffRole = StaffRole.SURGEON
    specialization: Optional[str] = None
    max_hours_per_day: int = 12


@dataclass
class Equipment:
    id: str
    facility_id: str
    name: str
    equipment_type: str
    status: EquipmentStatus = EquipmentStatus.AVAILABLE
    usage_count: int = 0
    max_usage_before_maintenance: int = 100
    last_service_at: Optional[datetime] = None
    sterilization_due: Optional[datetime] = None

    @property
    def is_usable(self) -> bool:
        return self.status not in UNUSABLE_EQUIPMENT_STATUSES


@dataclass
class ScheduleSlot:
    """A time-boxed occupation of one room: ``[start_time, end_time)``."""
    id: str
    facility_id: str
    surgery_id: str
    room_id: str
    start_time: datetime
    end_time: datetime
    slot_type: SlotType = SlotType.SURGERY
    surgeon_id: Optional[str] = None
    anesthesiologist_id: Optional[str] = None

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval intersection test."""
        return start < self.end_time and end > self.start_time


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class RuleViolation:
    """A single failed constraint, named by its rule."""
    rule: str
    kind: ConstraintKind
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"rule": self.rule, "kind": self.kind.value, "message": self.message}


@dataclass
class ConflictReport:
    """Outcome of evaluating one candidate placement."""
    hard_violations: List[RuleViolation] = field(default_factory=list)
    soft_violations: List[RuleViolation] = field(default_factory=list)
    score: int = 100

    @property
    def conflict(self) -> bool:
        return len(self.hard_violations) > 0

    @property
    def violated_rules(self) -> List[str]:
        """Hard rule names, deduplicated, in the order they were found."""
        seen: List[str] = []
        for violation in self.hard_violations:
            if violation.rule not in seen:
                seen.append(violation.rule)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict": self.conflict,
            "hard_violations": [v.to_dict() for v in self.hard_violations],
            "soft_violations": [v.to_dict() for v in self.soft_violations],
            "violated_rules": self.violated_rules,
            "score": self.score,
        }


@dataclass(frozen=True)
class SlotProposal:
    """A feasible placement found by the allocator (surgery window, unpadded)."""
    room: OperatingRoom
    start: datetime
    end: datetime


@dataclass
class PlacementResult:
    """A committed placement: the updated surgery, its three slots, and advisories."""
    surgery: Surgery
    slots: List[ScheduleSlot]
    report: ConflictReport

    @property
    def soft_violations(self) -> List[RuleViolation]:
        return self.report.soft_violations


@dataclass(frozen=True)
class Actor:
    """Identity of the caller, as established by the external auth layer."""
    user_id: str
    role: Optional[StaffRole] = None
