"""
Shared fixtures for the OR Scheduling Agent tests.

All orchestrator tests run against a fixed clock: Wednesday 2025-03-12 08:30.
"""

import uuid
from datetime import datetime, timedelta

import pytest

from agents.or_scheduling.models import (
    ApprovalStatus,
    Equipment,
    EquipmentStatus,
    OperatingRoom,
    Priority,
    RoomStatus,
    RoomType,
    ScheduleSlot,
    SlotType,
    Staff,
    StaffRole,
    Surgery,
    SurgeryStatus,
)
from agents.or_scheduling.notifications import InMemoryNotificationSink
from agents.or_scheduling.orchestrator import SchedulingOrchestrator
from agents.or_scheduling.repository import InMemoryRepository

FACILITY_ID = "test-hospital"
NOW = datetime(2025, 3, 12, 8, 30)


def _at(hour: int, minute: int = 0, days: int = 0) -> datetime:
    return NOW.replace(hour=hour, minute=minute) + timedelta(days=days)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def at():
    """``at(10, 15)`` is 10:15 on the test day; ``days=1`` moves to the next day."""
    return _at


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_surgery():
    """Factory for surgeries with sensible defaults."""

    def _make(surgery_id=None, **overrides):
        values = dict(
            id=surgery_id or f"surg-{uuid.uuid4().hex[:8]}",
            facility_id=FACILITY_ID,
            patient_name="Test Patient",
            procedure_name="Laparoscopic Cholecystectomy",
            priority=Priority.ELECTIVE,
            complexity=3,
            estimated_duration=60,
            specialization_required="general",
            status=SurgeryStatus.APPROVED,
            approval_status=ApprovalStatus.APPROVED,
            created_at=NOW - timedelta(hours=1),
        )
        values.update(overrides)
        return Surgery(**values)

    return _make


@pytest.fixture
def make_slot():
    """Factory for schedule slots (surgery type unless stated otherwise)."""

    def _make(room_id, start, end, surgery_id=None, slot_type=SlotType.SURGERY, **overrides):
        return ScheduleSlot(
            id=f"slot-{uuid.uuid4().hex[:8]}",
            facility_id=FACILITY_ID,
            surgery_id=surgery_id or f"other-{uuid.uuid4().hex[:8]}",
            room_id=room_id,
            start_time=start,
            end_time=end,
            slot_type=slot_type,
            **overrides,
        )

    return _make


@pytest.fixture
def rooms():
    return [
        OperatingRoom("OR-1", FACILITY_ID, "OR-1 General A", RoomType.GENERAL,
                      RoomStatus.AVAILABLE, ["general"]),
        OperatingRoom("OR-2", FACILITY_ID, "OR-2 General B", RoomType.GENERAL,
                      RoomStatus.AVAILABLE, ["general"]),
        OperatingRoom("OR-3", FACILITY_ID, "OR-3 Cardiac", RoomType.CARDIAC,
                      RoomStatus.AVAILABLE, ["cardiac", "vascular"]),
        OperatingRoom("OR-4", FACILITY_ID, "OR-4 Neuro", RoomType.NEURO,
                      RoomStatus.MAINTENANCE, ["neuro"]),
    ]


@pytest.fixture
def staff():
    return [
        Staff("staff-khan", FACILITY_ID, "Dr. Ahmed Khan", StaffRole.SURGEON, "general", 12),
        Staff("staff-ali", FACILITY_ID, "Dr. Sara Ali", StaffRole.SURGEON, "cardiac", 10),
        Staff("staff-zahra", FACILITY_ID, "Dr. Fatima Zahra", StaffRole.ANESTHESIOLOGIST, "general", 12),
    ]


@pytest.fixture
def equipment():
    return [
        Equipment("eq-tower", FACILITY_ID, "Laparoscopic Tower", "instruments",
                  EquipmentStatus.AVAILABLE, 100, 100, NOW - timedelta(days=45)),
        Equipment("eq-broken", FACILITY_ID, "Electrocautery Unit", "instruments",
                  EquipmentStatus.MAINTENANCE, 10, 200, NOW - timedelta(days=5)),
        Equipment("eq-bypass", FACILITY_ID, "Heart-Lung Bypass Machine", "cardiac",
                  EquipmentStatus.AVAILABLE, 5, 50, NOW - timedelta(days=10)),
    ]


@pytest.fixture
def repository(rooms, staff, equipment):
    repo = InMemoryRepository()
    for room in rooms:
        repo.add_room(room)
    for member in staff:
        repo.add_staff(member)
    for item in equipment:
        repo.add_equipment(item)
    return repo


@pytest.fixture
def notifier():
    return InMemoryNotificationSink()


@pytest.fixture
def orchestrator(repository, notifier, clock):
    orch = SchedulingOrchestrator(repository, FACILITY_ID, notifier=notifier, clock=clock)
    yield orch
    orch.close()
