"""
Demo facility used by the API on startup and by the test suite.

Six operating rooms, a small surgical team, a handful of equipment items and
surgeries at different lifecycle stages. All times are relative to ``now``
so the board always looks current.
"""

import logging
from datetime import datetime, time, timedelta
from typing import Dict, Optional

from .config import settings
from .models import (
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
from .repository import InMemoryRepository

logger = logging.getLogger(__name__)


DEMO_FACILITY_NAME = "Pakistan Institute of Medical Sciences"


def _rooms(facility_id: str):
    return [
        OperatingRoom("OR-1", facility_id, "OR-1 General A", RoomType.GENERAL,
                      RoomStatus.AVAILABLE, ["general", "laparoscopic", "emergency"]),
        OperatingRoom("OR-2", facility_id, "OR-2 General B", RoomType.GENERAL,
                      RoomStatus.OCCUPIED, ["general", "bariatric", "trauma"]),
        OperatingRoom("OR-3", facility_id, "OR-3 Cardiac", RoomType.CARDIAC,
                      RoomStatus.AVAILABLE, ["cardiac", "vascular", "thoracic"]),
        OperatingRoom("OR-4", facility_id, "OR-4 Neuro", RoomType.NEURO,
                      RoomStatus.AVAILABLE, ["neuro", "spine", "cranial"]),
        OperatingRoom("OR-5", facility_id, "OR-5 Orthopedic", RoomType.ORTHOPEDIC,
                      RoomStatus.AVAILABLE, ["orthopedic", "trauma", "arthroplasty"]),
        OperatingRoom("OR-6", facility_id, "OR-6 ENT/Ophthalmic", RoomType.ENT,
                      RoomStatus.MAINTENANCE, ["ent", "ophthalmic", "dental"]),
    ]


def _staff(facility_id: str):
    return [
        Staff("staff-khan", facility_id, "Dr. Ahmed Khan", StaffRole.SURGEON, "general", 12),
        Staff("staff-ali", facility_id, "Dr. Sara Ali", StaffRole.SURGEON, "cardiac", 10),
        Staff("staff-tariq", facility_id, "Dr. Usman Tariq", StaffRole.SURGEON, "neuro", 12),
        Staff("staff-qureshi", facility_id, "Dr. Bilal Qureshi", StaffRole.SURGEON, "orthopedic", 10),
        Staff("staff-zahra", facility_id, "Dr. Fatima Zahra", StaffRole.ANESTHESIOLOGIST, "general", 12),
        Staff("staff-malik", facility_id, "Nurse Ayesha Malik", StaffRole.NURSE, None, 8),
        Staff("staff-hussain", facility_id, "Nurse Hira Hussain", StaffRole.NURSE, None, 8),
        Staff("staff-siddiqui", facility_id, "Dr. Kamran Siddiqui", StaffRole.OR_MANAGER, None, 10),
        Staff("staff-raza", facility_id, "Noor Raza", StaffRole.SCHEDULER, None, 8),
    ]


def _equipment(facility_id: str, now: datetime):
    return [
        Equipment("eq-lap-tower", facility_id, "Laparoscopic Tower (Stryker)", "instruments",
                  EquipmentStatus.AVAILABLE, 40, 150, now - timedelta(days=20)),
        Equipment("eq-cautery", facility_id, "Electrocautery Unit (Valleylab)", "instruments",
                  EquipmentStatus.AVAILABLE, 120, 200, now - timedelta(days=45)),
        Equipment("eq-bypass", facility_id, "Heart-Lung Bypass Machine (Terumo)", "cardiac",
                  EquipmentStatus.IN_USE, 45, 50, now - timedelta(days=70)),
        Equipment("eq-microscope", facility_id, "Surgical Microscope (Zeiss KINEVO)", "neuro",
                  EquipmentStatus.AVAILABLE, 60, 200, now - timedelta(days=15)),
        Equipment("eq-c-arm", facility_id, "C-Arm Fluoroscopy (Siemens Cios)", "imaging",
                  EquipmentStatus.MAINTENANCE, 290, 300, now - timedelta(days=130)),
        Equipment("eq-anesthesia", facility_id, "Anesthesia Machine (Dräger Primus)", "anesthesia",
                  EquipmentStatus.AVAILABLE, 210, 500, now - timedelta(days=30)),
    ]


def _placed_slots(facility_id: str, surgery: Surgery):
    setup = timedelta(minutes=settings.setup_minutes)
    cleanup = timedelta(minutes=settings.cleanup_minutes)
    windows = (
        (SlotType.SETUP, surgery.scheduled_start - setup, surgery.scheduled_start),
        (SlotType.SURGERY, surgery.scheduled_start, surgery.scheduled_end),
        (SlotType.CLEANUP, surgery.scheduled_end, surgery.scheduled_end + cleanup),
    )
    return [
        ScheduleSlot(
            id=f"{surgery.id}-{slot_type.value}",
            facility_id=facility_id,
            surgery_id=surgery.id,
            room_id=surgery.room_id,
            start_time=start,
            end_time=end,
            slot_type=slot_type,
            surgeon_id=surgery.surgeon_id,
            anesthesiologist_id=surgery.anesthesiologist_id,
        )
        for slot_type, start, end in windows
    ]


def _surgeries(facility_id: str, now: datetime):
    today = now.date()
    afternoon = datetime.combine(today, time(13, 0), tzinfo=now.tzinfo)
    in_progress_start = now - timedelta(hours=1)

    return [
        Surgery(
            id="surg-001", facility_id=facility_id,
            patient_name="Hassan Mirza", procedure_name="Laparoscopic Appendectomy",
            priority=Priority.URGENT, complexity=2, estimated_duration=60,
            procedure_type="Digestive System", specialization_required="general",
            patient_age=34, patient_bmi=24.1, patient_asa_score=2,
            equipment_requirements=["eq-lap-tower", "eq-cautery"],
            status=SurgeryStatus.APPROVED, approval_status=ApprovalStatus.APPROVED,
            surgeon_id="staff-khan", anesthesiologist_id="staff-zahra",
            created_at=now - timedelta(hours=30),
        ),
        Surgery(
            id="surg-002", facility_id=facility_id,
            patient_name="Zainab Akhtar", procedure_name="Emergency Coronary Artery Bypass Graft",
            priority=Priority.EMERGENCY, complexity=5, estimated_duration=240,
            procedure_type="Cardiovascular System", specialization_required="cardiac",
            patient_age=67, patient_bmi=29.5, patient_asa_score=4,
            patient_comorbidities=["Diabetes", "Hypertension"],
            equipment_requirements=["cardiac"],
            status=SurgeryStatus.IN_PROGRESS, approval_status=ApprovalStatus.APPROVED,
            room_id="OR-3", surgeon_id="staff-ali",
            scheduled_start=in_progress_start,
            scheduled_end=in_progress_start + timedelta(minutes=240),
            created_at=now - timedelta(hours=3),
        ),
        Surgery(
            id="surg-003", facility_id=facility_id,
            patient_name="Omar Shah", procedure_name="Lumbar Microdiscectomy",
            priority=Priority.ELECTIVE, complexity=3, estimated_duration=120,
            procedure_type="Central Nervous System", specialization_required="neuro",
            patient_age=52, patient_bmi=27.0, patient_asa_score=2,
            equipment_requirements=["neuro"],
            status=SurgeryStatus.SCHEDULED, approval_status=ApprovalStatus.APPROVED,
            room_id="OR-4", surgeon_id="staff-tariq",
            scheduled_start=afternoon, scheduled_end=afternoon + timedelta(minutes=120),
            created_at=now - timedelta(days=6),
        ),
        Surgery(
            id="surg-004", facility_id=facility_id,
            patient_name="Rabia Butt", procedure_name="Total Knee Arthroplasty",
            priority=Priority.ELECTIVE, complexity=3, estimated_duration=150,
            procedure_type="Lower Joints", specialization_required="orthopedic",
            patient_age=71, patient_bmi=33.2, patient_asa_score=3,
            patient_comorbidities=["Obesity"],
            status=SurgeryStatus.PENDING, approval_status=ApprovalStatus.PENDING,
            surgeon_id="staff-qureshi",
            created_at=now - timedelta(hours=80),
        ),
        Surgery(
            id="surg-005", facility_id=facility_id,
            patient_name="Nadia Haider", procedure_name="Laparoscopic Cholecystectomy",
            priority=Priority.ELECTIVE, complexity=2, estimated_duration=75,
            procedure_type="Hepatobiliary System", specialization_required="general",
            patient_age=45, patient_bmi=31.0, patient_asa_score=2,
            equipment_requirements=["instruments"],
            status=SurgeryStatus.APPROVED, approval_status=ApprovalStatus.APPROVED,
            created_at=now - timedelta(hours=50),
        ),
        Surgery(
            id="surg-006", facility_id=facility_id,
            patient_name="Imran Chaudhry", procedure_name="Total Thyroidectomy",
            priority=Priority.ELECTIVE, complexity=3, estimated_duration=120,
            procedure_type="Endocrine System", specialization_required="general",
            patient_age=58, patient_bmi=26.4, patient_asa_score=2,
            status=SurgeryStatus.COMPLETED, approval_status=ApprovalStatus.APPROVED,
            surgeon_id="staff-khan",
            created_at=now - timedelta(days=9),
        ),
    ]


def seed_demo_facility(
    repository: InMemoryRepository,
    now: Optional[datetime] = None,
    facility_id: Optional[str] = None,
) -> Dict[str, int]:
    """Load the demo hospital into ``repository``; returns counts per entity."""
    now = now or datetime.now()
    facility_id = facility_id or settings.default_facility_id

    rooms = _rooms(facility_id)
    staff = _staff(facility_id)
    equipment = _equipment(facility_id, now)
    surgeries = _surgeries(facility_id, now)

    for room in rooms:
        repository.add_room(room)
    for member in staff:
        repository.add_staff(member)
    for item in equipment:
        repository.add_equipment(item)

    slot_count = 0
    for surgery in surgeries:
        repository.add_surgery(surgery)
        if surgery.room_id and surgery.scheduled_start and surgery.scheduled_end:
            for slot in _placed_slots(facility_id, surgery):
                repository.add_slot(slot)
                slot_count += 1

    counts = {
        "rooms": len(rooms),
        "staff": len(staff),
        "equipment": len(equipment),
        "surgeries": len(surgeries),
        "slots": slot_count,
    }
    logger.info(f"Seeded demo facility '{facility_id}' ({DEMO_FACILITY_NAME}): {counts}")
    return counts
