"""
Facility repository interface and in-memory implementation.

The scheduling core reads surgeries, rooms, staff, equipment and slots
through this interface and writes only two things:
- schedule slots, replaced atomically per surgery (``commit_placement``)
- status / priority / approval / escalation fields of a surgery

Every call is scoped to one facility id. A durable backend implements the
same ``Repository`` methods on top of its own transactions.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .exceptions import ConcurrentModificationError, EntityNotFoundError, ValidationError
from .models import (
    Equipment,
    OperatingRoom,
    ScheduleSlot,
    Staff,
    Surgery,
    SurgeryStatus,
)

logger = logging.getLogger(__name__)


# Surgery fields the scheduling core is allowed to write
WRITABLE_SURGERY_FIELDS = frozenset({
    "status",
    "priority",
    "approval_status",
    "escalated_at",
    "room_id",
    "scheduled_start",
    "scheduled_end",
    "predicted_duration",
})


class Repository(ABC):
    """Read/write contract the scheduling core depends on."""

    @abstractmethod
    def get_surgery(self, facility_id: str, surgery_id: str) -> Optional[Surgery]:
        ...

    @abstractmethod
    def list_surgeries(
        self,
        facility_id: str,
        statuses: Optional[Iterable[SurgeryStatus]] = None,
    ) -> List[Surgery]:
        ...

    @abstractmethod
    def get_room(self, facility_id: str, room_id: str) -> Optional[OperatingRoom]:
        ...

    @abstractmethod
    def list_rooms(self, facility_id: str) -> List[OperatingRoom]:
        ...

    @abstractmethod
    def get_staff(self, facility_id: str, staff_id: str) -> Optional[Staff]:
        ...

    @abstractmethod
    def list_equipment(self, facility_id: str) -> List[Equipment]:
        ...

    @abstractmethod
    def list_slots(
        self,
        facility_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ScheduleSlot]:
        """Slots intersecting ``[start, end)``; all slots when no bounds are given."""

    @abstractmethod
    def room_versions(self, facility_id: str, room_ids: Iterable[str]) -> Dict[str, int]:
        """Monotonic per-room counters bumped on every slot write."""

    @abstractmethod
    def commit_placement(
        self,
        facility_id: str,
        surgery_id: str,
        slots: Sequence[ScheduleSlot],
        surgery_changes: Dict[str, Any],
        expected_versions: Dict[str, int],
    ) -> Surgery:
        """
        Atomically replace the surgery's slots with ``slots`` and apply
        ``surgery_changes``. Raises ConcurrentModificationError if any room
        in ``expected_versions`` has been written since it was read.
        """

    @abstractmethod
    def update_surgery(
        self,
        facility_id: str,
        surgery_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Surgery:
        """Single-row update; ``expected`` field values turn it into compare-and-set."""


def _check_writable(changes: Dict[str, Any]) -> None:
    illegal = set(changes) - WRITABLE_SURGERY_FIELDS
    if illegal:
        raise ValidationError(f"Fields not writable by the scheduler: {', '.join(sorted(illegal))}")


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository.

    Entities are stored as immutable snapshots: updates swap in a new object
    built with ``dataclasses.replace``.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._surgeries: Dict[str, Dict[str, Surgery]] = {}
        self._rooms: Dict[str, Dict[str, OperatingRoom]] = {}
        self._staff: Dict[str, Dict[str, Staff]] = {}
        self._equipment: Dict[str, Dict[str, Equipment]] = {}
        self._slots: Dict[str, Dict[str, ScheduleSlot]] = {}
        self._versions: Dict[str, Dict[str, int]] = {}

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_surgery(self, surgery: Surgery) -> Surgery:
        surgery.validate()
        with self._lock:
            self._surgeries.setdefault(surgery.facility_id, {})[surgery.id] = surgery
        return surgery

    def add_room(self, room: OperatingRoom) -> OperatingRoom:
        with self._lock:
            self._rooms.setdefault(room.facility_id, {})[room.id] = room
        return room

    def add_staff(self, member: Staff) -> Staff:
        with self._lock:
            self._staff.setdefault(member.facility_id, {})[member.id] = member
        return member

    def add_equipment(self, item: Equipment) -> Equipment:
        with self._lock:
            self._equipment.setdefault(item.facility_id, {})[item.id] = item
        return item

    def add_slot(self, slot: ScheduleSlot) -> ScheduleSlot:
        if slot.start_time >= slot.end_time:
            raise ValidationError(f"Slot '{slot.id}' must start before it ends")
        with self._lock:
            self._slots.setdefault(slot.facility_id, {})[slot.id] = slot
            self._bump(slot.facility_id, [slot.room_id])
        return slot

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_surgery(self, facility_id: str, surgery_id: str) -> Optional[Surgery]:
        with self._lock:
            return self._surgeries.get(facility_id, {}).get(surgery_id)

    def list_surgeries(
        self,
        facility_id: str,
        statuses: Optional[Iterable[SurgeryStatus]] = None,
    ) -> List[Surgery]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            surgeries = list(self._surgeries.get(facility_id, {}).values())
        if wanted is not None:
            surgeries = [s for s in surgeries if s.status in wanted]
        return surgeries

    def get_room(self, facility_id: str, room_id: str) -> Optional[OperatingRoom]:
        with self._lock:
            return self._rooms.get(facility_id, {}).get(room_id)

    def list_rooms(self, facility_id: str) -> List[OperatingRoom]:
        with self._lock:
            return list(self._rooms.get(facility_id, {}).values())

    def get_staff(self, facility_id: str, staff_id: str) -> Optional[Staff]:
        with self._lock:
            return self._staff.get(facility_id, {}).get(staff_id)

    def list_equipment(self, facility_id: str) -> List[Equipment]:
        with self._lock:
            return list(self._equipment.get(facility_id, {}).values())

    def list_slots(
        self,
        facility_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[ScheduleSlot]:
        with self._lock:
            slots = list(self._slots.get(facility_id, {}).values())
        if start is not None:
            slots = [s for s in slots if s.end_time > start]
        if end is not None:
            slots = [s for s in slots if s.start_time < end]
        return sorted(slots, key=lambda s: (s.room_id, s.start_time))

    def room_versions(self, facility_id: str, room_ids: Iterable[str]) -> Dict[str, int]:
        with self._lock:
            versions = self._versions.get(facility_id, {})
            return {room_id: versions.get(room_id, 0) for room_id in room_ids}

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _bump(self, facility_id: str, room_ids: Iterable[str]) -> None:
        versions = self._versions.setdefault(facility_id, {})
        for room_id in set(room_ids):
            versions[room_id] = versions.get(room_id, 0) + 1

    def _require_surgery(self, facility_id: str, surgery_id: str) -> Surgery:
        surgery = self._surgeries.get(facility_id, {}).get(surgery_id)
        if surgery is None:
            raise EntityNotFoundError("Surgery", surgery_id)
        return surgery

    def commit_placement(
        self,
        facility_id: str,
        surgery_id: str,
        slots: Sequence[ScheduleSlot],
        surgery_changes: Dict[str, Any],
        expected_versions: Dict[str, int],
    ) -> Surgery:
        _check_writable(surgery_changes)
        with self._lock:
            surgery = self._require_surgery(facility_id, surgery_id)
            current = self._versions.get(facility_id, {})
            stale = [
                room_id for room_id, version in expected_versions.items()
                if current.get(room_id, 0) != version
            ]
            if stale:
                raise ConcurrentModificationError(
                    f"Schedule for {', '.join(sorted(stale))} changed while placing surgery "
                    f"'{surgery_id}'; reload and retry"
                )

            facility_slots = self._slots.setdefault(facility_id, {})
            old = [s for s in facility_slots.values() if s.surgery_id == surgery_id]
            for slot in old:
                del facility_slots[slot.id]
            for slot in slots:
                facility_slots[slot.id] = slot

            updated = replace(surgery, **surgery_changes)
            self._surgeries[facility_id][surgery_id] = updated
            self._bump(facility_id, [s.room_id for s in old] + [s.room_id for s in slots])

        logger.debug(
            f"Committed {len(slots)} slots for surgery {surgery_id} "
            f"(replaced {len(old)})"
        )
        return updated

    def update_surgery(
        self,
        facility_id: str,
        surgery_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Surgery:
        _check_writable(changes)
        with self._lock:
            surgery = self._require_surgery(facility_id, surgery_id)
            for name, value in (expected or {}).items():
                if getattr(surgery, name) != value:
                    raise ConcurrentModificationError(
                        f"Surgery '{surgery_id}' changed ({name} is no longer {value!r}); reload and retry"
                    )
            updated = replace(surgery, **changes)
            self._surgeries[facility_id][surgery_id] = updated
        return updated
