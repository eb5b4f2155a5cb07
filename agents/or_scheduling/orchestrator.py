"""
Scheduling Orchestrator.

The entry point callers use to work with one facility's operating rooms.
It ties together:
- the Repository (facility-scoped reads and atomic slot commits)
- the Constraint Engine and Slot Allocator
- the Priority Queue Manager
- the injected Authorizer and Notification sink

Writes run inside a lock registry keyed by room, staff member and surgery,
and every commit carries the room versions read during validation, so a
check can never be separated from its write by another placement.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import ExitStack, contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .auth import Action, AllowAllAuthorizer, Authorizer
from .config import Settings, settings as default_settings
from .constraints import ConstraintEngine
from .duration_predictor import DurationPredictor
from .equipment_risk import FailureRisk, assess_equipment
from .exceptions import (
    ConcurrentModificationError,
    ConstraintViolation,
    EntityNotFoundError,
    NoFeasibleSlotError,
    RepositoryTimeoutError,
    ValidationError,
)
from .models import (
    PLACEABLE_STATUSES,
    TERMINAL_STATUSES,
    Actor,
    ApprovalStatus,
    ConflictReport,
    Equipment,
    OperatingRoom,
    PlacementResult,
    Priority,
    ScheduleSlot,
    SlotProposal,
    SlotType,
    Staff,
    Surgery,
    SurgeryStatus,
)
from .notifications import LoggingNotificationSink, Notification, NotificationSink, NotificationType
from .priority_queue import ESCALATION_TARGET, PriorityQueueManager, PriorityQueueSnapshot
from .repository import Repository
from .schedule_scorer import ScheduleQuality, score_schedule, scored_slots_from_schedule
from .scheduler import SlotAllocator

logger = logging.getLogger(__name__)


# Status changes allowed through ``transition``. Placement (-> scheduled)
# and approval have their own operations.
ALLOWED_TRANSITIONS: Dict[SurgeryStatus, frozenset] = {
    SurgeryStatus.PENDING: frozenset({
        SurgeryStatus.APPROVED, SurgeryStatus.CANCELLED, SurgeryStatus.RESCHEDULED,
    }),
    SurgeryStatus.APPROVED: frozenset({SurgeryStatus.CANCELLED, SurgeryStatus.RESCHEDULED}),
    SurgeryStatus.SCHEDULED: frozenset({
        SurgeryStatus.IN_PROGRESS, SurgeryStatus.CANCELLED, SurgeryStatus.RESCHEDULED,
    }),
    SurgeryStatus.IN_PROGRESS: frozenset({
        SurgeryStatus.COMPLETED, SurgeryStatus.CANCELLED, SurgeryStatus.RESCHEDULED,
    }),
    SurgeryStatus.RESCHEDULED: frozenset({SurgeryStatus.CANCELLED}),
    SurgeryStatus.COMPLETED: frozenset(),
    SurgeryStatus.CANCELLED: frozenset(),
}

# Transitions that give the room back
RELEASING_STATUSES = frozenset({SurgeryStatus.CANCELLED, SurgeryStatus.RESCHEDULED})

# Slots this far either side of a placement are read for the rolling 24h rules
CONTEXT_WINDOW = timedelta(hours=24)


class LockRegistry:
    """
    Named mutexes created on first use.

    ``hold`` acquires a set of keys in sorted order, so two writers that
    need overlapping keys can never deadlock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self._lock_for(key))
            yield


class SchedulingOrchestrator:
    """
    Facility-bound façade over the scheduling core.

    Example:
        >>> orchestrator = SchedulingOrchestrator(repository, "demo-hospital")
        >>> result = orchestrator.auto_place("surg-001")
        >>> [slot.slot_type.value for slot in result.slots]
        ['setup', 'surgery', 'cleanup']
    """

    def __init__(
        self,
        repository: Repository,
        facility_id: str,
        notifier: Optional[NotificationSink] = None,
        authorizer: Optional[Authorizer] = None,
        engine: Optional[ConstraintEngine] = None,
        allocator: Optional[SlotAllocator] = None,
        queue_manager: Optional[PriorityQueueManager] = None,
        duration_predictor: Optional[DurationPredictor] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[LockRegistry] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.repository = repository
        self.facility_id = facility_id
        self.notifier = notifier or LoggingNotificationSink()
        self.authorizer = authorizer or AllowAllAuthorizer()
        self.engine = engine or ConstraintEngine(self.settings)
        self.allocator = allocator or SlotAllocator(self.engine, self.settings)
        self.duration_predictor = duration_predictor or DurationPredictor()
        self.queue_manager = queue_manager or PriorityQueueManager(self.duration_predictor, self.settings)
        self.clock = clock or datetime.now
        self.locks = locks or LockRegistry()
        self._executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="or-repository")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # =========================================================================
    # Repository access
    # =========================================================================

    def _repo(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Call a repository method with the configured timeout."""
        fn = getattr(self.repository, method)
        future = self._executor.submit(fn, self.facility_id, *args, **kwargs)
        try:
            return future.result(timeout=self.settings.repository_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.error(
                f"Repository call {method} exceeded {self.settings.repository_timeout_seconds}s"
            )
            raise RepositoryTimeoutError(
                f"Repository call '{method}' timed out after "
                f"{self.settings.repository_timeout_seconds}s"
            )

    def _load_surgery(self, surgery_id: str) -> Surgery:
        surgery = self._repo("get_surgery", surgery_id)
        if surgery is None:
            raise EntityNotFoundError("Surgery", surgery_id)
        return surgery

    def _load_room(self, room_id: str) -> OperatingRoom:
        room = self._repo("get_room", room_id)
        if room is None:
            raise EntityNotFoundError("Operating room", room_id)
        return room

    def _load_staff(self, staff_id: Optional[str]) -> Optional[Staff]:
        if not staff_id:
            return None
        member = self._repo("get_staff", staff_id)
        if member is None:
            raise EntityNotFoundError("Staff member", staff_id)
        return member

    def _required_equipment(self, surgery: Surgery) -> List[Equipment]:
        """Inventory items that can satisfy the surgery's declared requirements."""
        if not surgery.equipment_requirements:
            return []
        wanted = {r.lower() for r in surgery.equipment_requirements}
        return [
            item for item in self._repo("list_equipment")
            if item.id in surgery.equipment_requirements or item.equipment_type.lower() in wanted
        ]

    def _context_slots(self, start: datetime, end: datetime) -> List[ScheduleSlot]:
        return self._repo("list_slots", start - CONTEXT_WINDOW, end + CONTEXT_WINDOW)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _authorize(self, actor: Optional[Actor], action: Action) -> None:
        self.authorizer.authorize(actor, action)

    def _notify(
        self,
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.INFO,
        surgery_id: Optional[str] = None,
    ) -> None:
        try:
            self.notifier.send(Notification(
                facility_id=self.facility_id,
                title=title,
                message=message,
                type=notification_type,
                surgery_id=surgery_id,
                created_at=self.clock(),
            ))
        except Exception as e:
            logger.warning(f"Failed to deliver notification '{title}': {e}")

    def _local_time(self, value: datetime) -> datetime:
        """Express ``value`` in the clock's convention (naive local time by default)."""
        tz = self.clock().tzinfo
        if tz is None and value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        if tz is not None and value.tzinfo is None:
            return value.replace(tzinfo=tz)
        return value

    def _validate_window(self, start: datetime, end: datetime) -> Tuple[datetime, datetime]:
        if start is None or end is None:
            raise ValidationError("Both start and end are required")
        start, end = self._local_time(start), self._local_time(end)
        if start >= end:
            raise ValidationError("Surgery start must be before its end")
        return start, end

    def _padded(self, start: datetime, end: datetime) -> Tuple[datetime, datetime]:
        return (
            start - timedelta(minutes=self.settings.setup_minutes),
            end + timedelta(minutes=self.settings.cleanup_minutes),
        )

    def _evaluate(
        self,
        surgery: Surgery,
        room: OperatingRoom,
        start: datetime,
        end: datetime,
    ) -> ConflictReport:
        return self.engine.check_placement(
            surgery,
            room,
            start,
            end,
            self._context_slots(start, end),
            surgeon=self._load_staff(surgery.surgeon_id),
            equipment_list=self._required_equipment(surgery),
            anesthesiologist=self._load_staff(surgery.anesthesiologist_id),
            setup_minutes=self.settings.setup_minutes,
            cleanup_minutes=self.settings.cleanup_minutes,
        )

    def _build_slots(
        self,
        surgery: Surgery,
        room: OperatingRoom,
        start: datetime,
        end: datetime,
    ) -> List[ScheduleSlot]:
        padded_start, padded_end = self._padded(start, end)
        windows = (
            (SlotType.SETUP, padded_start, start),
            (SlotType.SURGERY, start, end),
            (SlotType.CLEANUP, end, padded_end),
        )
        return [
            ScheduleSlot(
                id=str(uuid.uuid4()),
                facility_id=self.facility_id,
                surgery_id=surgery.id,
                room_id=room.id,
                start_time=slot_start,
                end_time=slot_end,
                slot_type=slot_type,
                surgeon_id=surgery.surgeon_id,
                anesthesiologist_id=surgery.anesthesiologist_id,
            )
            for slot_type, slot_start, slot_end in windows
        ]

    @staticmethod
    def _write_keys(surgery: Surgery, *room_ids: Optional[str]) -> List[str]:
        keys = [f"surgery:{surgery.id}"]
        keys.extend(f"room:{room_id}" for room_id in room_ids if room_id)
        if surgery.surgeon_id:
            keys.append(f"surgeon:{surgery.surgeon_id}")
        if surgery.anesthesiologist_id:
            keys.append(f"anesthesiologist:{surgery.anesthesiologist_id}")
        return keys

    # =========================================================================
    # Read-only operations
    # =========================================================================

    def check_placement(
        self,
        surgery_id: str,
        room_id: str,
        start: datetime,
        end: datetime,
    ) -> ConflictReport:
        """Evaluate a placement against the live board without changing it."""
        start, end = self._validate_window(start, end)
        surgery = self._load_surgery(surgery_id)
        room = self._load_room(room_id)
        return self._evaluate(surgery, room, start, end)

    def find_slot(self, surgery_id: str, day: Optional[date] = None) -> Optional[SlotProposal]:
        """
        Earliest feasible placement on ``day`` (today by default).

        Today's search starts no earlier than the current time.
        """
        now = self.clock()
        day = day or now.date()
        if day < now.date():
            raise ValidationError(f"Cannot schedule into the past ({day.isoformat()})")

        surgery = self._load_surgery(surgery_id)
        if not surgery.is_active:
            raise ValidationError(f"Surgery '{surgery_id}' is {surgery.status.value}")

        not_before = now if day == now.date() else None
        day_start, day_end = self.allocator.day_window(day, now.tzinfo)
        return self.allocator.find_slot(
            surgery,
            self._repo("list_rooms"),
            self._context_slots(day_start, day_end),
            day,
            not_before=not_before,
            surgeon=self._load_staff(surgery.surgeon_id),
            equipment_list=self._required_equipment(surgery),
            anesthesiologist=self._load_staff(surgery.anesthesiologist_id),
        )

    def priority_queue(self) -> PriorityQueueSnapshot:
        active = [
            status for status in SurgeryStatus if status not in TERMINAL_STATUSES
        ]
        surgeries = self._repo("list_surgeries", active)
        return self.queue_manager.build(surgeries, now=self.clock())

    def schedule_quality(self, day: Optional[date] = None) -> ScheduleQuality:
        """Score the stored schedule of one operating day."""
        now = self.clock()
        day = day or now.date()
        day_start, day_end = self.allocator.day_window(day, now.tzinfo)
        slots = self._repo("list_slots", day_start, day_end)
        surgeries = {s.id: s for s in self._repo("list_surgeries")}
        return score_schedule(scored_slots_from_schedule(slots, surgeries), self.settings)

    def equipment_risk(self) -> List[FailureRisk]:
        """Failure risk of every item in the facility inventory, riskiest first."""
        now = self.clock()
        risks = [assess_equipment(item, now) for item in self._repo("list_equipment")]
        return sorted(risks, key=lambda r: (-r.score, r.equipment_id or ""))

    # =========================================================================
    # Placement
    # =========================================================================

    def place(
        self,
        surgery_id: str,
        room_id: str,
        start: datetime,
        end: datetime,
        actor: Optional[Actor] = None,
    ) -> PlacementResult:
        """
        Place (or move) a surgery into a room and time window.

        Validation and commit happen as one unit: the room's slots are
        re-read and re-checked under the lock, and the commit is rejected if
        any involved room changed since it was read. On success the surgery
        owns exactly three slots (setup, surgery, cleanup).
        """
        self._authorize(actor, Action.PLACE)
        return self._place(surgery_id, room_id, start, end)

    def _place(self, surgery_id: str, room_id: str, start: datetime, end: datetime) -> PlacementResult:
        start, end = self._validate_window(start, end)
        surgery = self._load_surgery(surgery_id)
        room = self._load_room(room_id)

        with self.locks.hold(self._write_keys(surgery, room.id, surgery.room_id)):
            surgery = self._load_surgery(surgery_id)
            if surgery.status not in PLACEABLE_STATUSES:
                raise ValidationError(
                    f"Surgery '{surgery_id}' is {surgery.status.value}; only approved, scheduled "
                    f"or rescheduled surgeries can be placed"
                )
            if surgery.approval_status != ApprovalStatus.APPROVED:
                raise ValidationError(
                    f"Surgery '{surgery_id}' has approval status {surgery.approval_status.value}; "
                    f"it must be approved before it can be placed"
                )
            surgery.validate()

            room_ids = sorted({room.id} | ({surgery.room_id} if surgery.room_id else set()))
            versions = self._repo("room_versions", room_ids)
            report = self._evaluate(surgery, room, start, end)
            if report.conflict:
                logger.warning(
                    f"Rejected placement of surgery {surgery_id} in {room.id} "
                    f"{start:%Y-%m-%d %H:%M}: {', '.join(report.violated_rules)}"
                )
                raise ConstraintViolation(report.violated_rules, report)

            slots = self._build_slots(surgery, room, start, end)
            predicted = self.duration_predictor.predict_for_surgery(surgery, start).predicted
            updated = self._repo(
                "commit_placement",
                surgery_id,
                slots,
                {
                    "status": SurgeryStatus.SCHEDULED,
                    "room_id": room.id,
                    "scheduled_start": start,
                    "scheduled_end": end,
                    "predicted_duration": predicted,
                },
                versions,
            )

        logger.info(
            f"Placed surgery {surgery_id} in {room.id} {start:%Y-%m-%d %H:%M}-{end:%H:%M} "
            f"(score {report.score})"
        )
        self._notify(
            "Surgery scheduled",
            f"{surgery.procedure_name} for {surgery.patient_name} in {room.name} "
            f"at {start:%Y-%m-%d %H:%M}",
            NotificationType.SUCCESS,
            surgery_id,
        )
        return PlacementResult(surgery=updated, slots=slots, report=report)

    def auto_place(
        self,
        surgery_id: str,
        day: Optional[date] = None,
        actor: Optional[Actor] = None,
    ) -> PlacementResult:
        """Find the earliest feasible window on ``day`` and place the surgery there."""
        self._authorize(actor, Action.AUTO_PLACE)
        day = day or self.clock().date()
        proposal = self.find_slot(surgery_id, day)
        if proposal is None:
            raise NoFeasibleSlotError(surgery_id, day.isoformat())
        return self._place(surgery_id, proposal.room.id, proposal.start, proposal.end)

    # =========================================================================
    # Priority changes and lifecycle
    # =========================================================================

    def escalate(self, surgery_id: str, actor: Optional[Actor] = None) -> Surgery:
        """Promote a surgery one tier (elective -> urgent -> emergency)."""
        self._authorize(actor, Action.ESCALATE)
        return self._escalate(surgery_id)

    def _escalate(self, surgery_id: str) -> Surgery:
        surgery = self._load_surgery(surgery_id)
        with self.locks.hold([f"surgery:{surgery_id}"]):
            surgery = self._load_surgery(surgery_id)
            if not surgery.is_active:
                raise ValidationError(f"Surgery '{surgery_id}' is {surgery.status.value}")
            if surgery.priority == Priority.EMERGENCY:
                raise ValidationError(f"Surgery '{surgery_id}' is already an emergency")

            target = ESCALATION_TARGET[surgery.priority]
            updated = self._repo(
                "update_surgery",
                surgery_id,
                {"priority": target, "escalated_at": self.clock()},
                {"priority": surgery.priority},
            )

        logger.info(f"Escalated surgery {surgery_id}: {surgery.priority.value} -> {target.value}")
        self._notify(
            "Surgery escalated",
            f"{surgery.procedure_name} for {surgery.patient_name} escalated from "
            f"{surgery.priority.value} to {target.value}",
            NotificationType.EMERGENCY if target == Priority.EMERGENCY else NotificationType.WARNING,
            surgery_id,
        )
        return updated

    def run_escalation_cycle(self, actor: Optional[Actor] = None) -> List[Surgery]:
        """
        Escalate every request the queue flags.

        Running it twice in a row escalates nothing the second time: an
        escalated surgery is not flagged again.
        """
        self._authorize(actor, Action.ESCALATE)
        escalated = []
        for entry in self.priority_queue().escalation_candidates:
            try:
                escalated.append(self._escalate(entry.surgery_id))
            except (ValidationError, ConcurrentModificationError) as e:
                # Status changed since the snapshot; the next cycle re-reads it
                logger.warning(f"Skipped escalation of {entry.surgery_id}: {e}")
        logger.info(f"Escalation cycle escalated {len(escalated)} surgeries")
        return escalated

    def approve(self, surgery_id: str, approved: bool, actor: Optional[Actor] = None) -> Surgery:
        """Record the approval decision; a rejected request is cancelled."""
        self._authorize(actor, Action.APPROVE)
        with self.locks.hold([f"surgery:{surgery_id}"]):
            surgery = self._load_surgery(surgery_id)
            if surgery.status != SurgeryStatus.PENDING:
                raise ValidationError(
                    f"Surgery '{surgery_id}' is {surgery.status.value}; only pending requests "
                    f"can be approved or rejected"
                )
            if approved:
                changes = {"status": SurgeryStatus.APPROVED, "approval_status": ApprovalStatus.APPROVED}
            else:
                changes = {"status": SurgeryStatus.CANCELLED, "approval_status": ApprovalStatus.REJECTED}
            updated = self._repo(
                "update_surgery", surgery_id, changes, {"status": SurgeryStatus.PENDING}
            )

        decision = "approved" if approved else "rejected"
        logger.info(f"Surgery {surgery_id} {decision}")
        self._notify(
            f"Surgery {decision}",
            f"{surgery.procedure_name} for {surgery.patient_name} was {decision}",
            NotificationType.SUCCESS if approved else NotificationType.WARNING,
            surgery_id,
        )
        return updated

    def transition(
        self,
        surgery_id: str,
        new_status: SurgeryStatus,
        actor: Optional[Actor] = None,
    ) -> Surgery:
        """
        Move a surgery along its lifecycle.

        Cancelling or rescheduling releases the surgery's slots in the same
        commit that changes its status.
        """
        self._authorize(actor, Action.TRANSITION)
        surgery = self._load_surgery(surgery_id)

        with self.locks.hold(self._write_keys(surgery, surgery.room_id)):
            surgery = self._load_surgery(surgery_id)
            allowed = ALLOWED_TRANSITIONS[surgery.status]
            if new_status not in allowed:
                raise ValidationError(
                    f"Cannot move surgery '{surgery_id}' from {surgery.status.value} "
                    f"to {new_status.value}"
                )

            if new_status in RELEASING_STATUSES:
                owned = [s for s in self._repo("list_slots") if s.surgery_id == surgery_id]
                room_ids = sorted({s.room_id for s in owned})
                versions = self._repo("room_versions", room_ids)
                updated = self._repo(
                    "commit_placement",
                    surgery_id,
                    [],
                    {
                        "status": new_status,
                        "room_id": None,
                        "scheduled_start": None,
                        "scheduled_end": None,
                    },
                    versions,
                )
                if owned:
                    logger.info(f"Released {len(owned)} slots of surgery {surgery_id}")
            else:
                changes: Dict[str, Any] = {"status": new_status}
                if new_status == SurgeryStatus.APPROVED:
                    changes["approval_status"] = ApprovalStatus.APPROVED
                updated = self._repo(
                    "update_surgery", surgery_id, changes, {"status": surgery.status}
                )

        logger.info(f"Surgery {surgery_id}: {surgery.status.value} -> {new_status.value}")
        if new_status == SurgeryStatus.CANCELLED:
            self._notify(
                "Surgery cancelled",
                f"{surgery.procedure_name} for {surgery.patient_name} was cancelled",
                NotificationType.WARNING,
                surgery_id,
            )
        return updated
