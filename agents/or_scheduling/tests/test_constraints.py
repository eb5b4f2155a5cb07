"""
OR Scheduling Agent - Constraint Engine Tests

Run with: pytest agents/or_scheduling/tests/test_constraints.py -v
"""

import copy
from datetime import timedelta

import pytest

from agents.or_scheduling.constraints import (
    HARD_CONSTRAINTS,
    SOFT_CONSTRAINTS,
    ConstraintEngine,
    busiest_window_minutes,
)
from agents.or_scheduling.exceptions import ValidationError
from agents.or_scheduling.models import EquipmentStatus, SlotType


@pytest.fixture
def engine():
    return ConstraintEngine()


@pytest.fixture
def or1(rooms):
    return rooms[0]


@pytest.fixture
def surgeon(staff):
    return staff[0]


@pytest.fixture
def anesthesiologist(staff):
    return staff[2]


class TestOverlap:
    """Half-open interval overlap in the same room."""

    def test_one_minute_overlap_is_a_conflict(self, engine, or1, make_surgery, make_slot, at):
        existing = [make_slot("OR-1", at(10, 59), at(12, 0))]
        report = engine.check_placement(make_surgery(), or1, at(10, 0), at(11, 0), existing)

        assert report.conflict
        assert "no_overlap" in report.violated_rules

    def test_adjacent_windows_do_not_overlap(self, engine, or1, make_surgery, make_slot, at):
        existing = [make_slot("OR-1", at(10, 0), at(11, 0))]
        report = engine.check_placement(make_surgery(), or1, at(11, 0), at(12, 0), existing)

        assert not report.conflict
        assert report.hard_violations == []
        assert report.score == 100

    def test_other_rooms_are_ignored(self, engine, or1, make_surgery, make_slot, at):
        existing = [make_slot("OR-2", at(10, 0), at(11, 0))]
        report = engine.check_placement(make_surgery(), or1, at(10, 0), at(11, 0), existing)
        assert not report.conflict

    def test_padding_extends_the_checked_window(self, engine, or1, make_surgery, make_slot, at):
        existing = [make_slot("OR-1", at(9, 0), at(10, 0))]
        surgery = make_surgery()

        unpadded = engine.check_placement(surgery, or1, at(10, 5), at(11, 0), existing)
        padded = engine.check_placement(
            surgery, or1, at(10, 5), at(11, 0), existing, setup_minutes=15, cleanup_minutes=15
        )

        assert not unpadded.conflict
        assert padded.violated_rules == ["no_overlap"]

    def test_one_violation_per_overlapping_slot(self, engine, or1, make_surgery, make_slot, at):
        existing = [
            make_slot("OR-1", at(9, 45), at(10, 0), slot_type=SlotType.SETUP),
            make_slot("OR-1", at(10, 0), at(11, 0)),
        ]
        report = engine.check_placement(make_surgery(), or1, at(9, 30), at(10, 30), existing)

        assert len(report.hard_violations) == 2
        assert report.violated_rules == ["no_overlap"]

    def test_own_slots_are_ignored(self, engine, or1, make_surgery, make_slot, at):
        surgery = make_surgery("surg-move")
        existing = [make_slot("OR-1", at(10, 0), at(11, 0), surgery_id="surg-move")]
        report = engine.check_placement(surgery, or1, at(10, 30), at(11, 30), existing)
        assert not report.conflict


class TestRoomRules:
    def test_specialty_room_requires_capability(self, engine, rooms, make_surgery, at):
        cardiac_room = rooms[2]
        report = engine.check_placement(
            make_surgery(specialization_required="orthopedic"), cardiac_room, at(10, 0), at(11, 0), []
        )
        assert report.violated_rules == ["or_capability"]

    def test_capability_listed_on_room(self, engine, rooms, make_surgery, at):
        report = engine.check_placement(
            make_surgery(specialization_required="vascular"), rooms[2], at(10, 0), at(11, 0), []
        )
        assert not report.conflict

    def test_general_room_takes_any_case(self, engine, or1, make_surgery, at):
        report = engine.check_placement(
            make_surgery(specialization_required="cardiac"), or1, at(10, 0), at(11, 0), []
        )
        assert not report.conflict

    def test_room_under_maintenance(self, engine, rooms, make_surgery, at):
        report = engine.check_placement(
            make_surgery(specialization_required="neuro"), rooms[3], at(10, 0), at(11, 0), []
        )
        assert report.violated_rules == ["room_status"]


class TestStaffRules:
    def test_surgeon_specialization_must_match(self, engine, or1, staff, make_surgery, at):
        cardiac_surgeon = staff[1]
        report = engine.check_placement(
            make_surgery(), or1, at(10, 0), at(11, 0), [], surgeon=cardiac_surgeon
        )
        assert report.violated_rules == ["surgeon_specialization"]

    def test_surgeon_over_daily_cap(self, engine, or1, surgeon, make_surgery, make_slot, at):
        """11 hours already booked plus a 90 minute case exceeds 12 hours."""
        existing = [make_slot("OR-2", at(7, 0), at(18, 0), surgeon_id=surgeon.id)]
        report = engine.check_placement(
            make_surgery(estimated_duration=90), or1, at(18, 0), at(19, 30), existing, surgeon=surgeon
        )
        assert "surgeon_hours" in report.violated_rules

    def test_surgeon_within_daily_cap(self, engine, or1, surgeon, make_surgery, make_slot, at):
        existing = [make_slot("OR-2", at(7, 0), at(17, 0), surgeon_id=surgeon.id)]
        report = engine.check_placement(
            make_surgery(estimated_duration=90), or1, at(17, 0), at(18, 30), existing, surgeon=surgeon
        )
        assert "surgeon_hours" not in report.violated_rules

    def test_setup_and_cleanup_do_not_count_as_surgeon_time(
        self, engine, or1, surgeon, make_surgery, make_slot, at
    ):
        existing = [
            make_slot("OR-2", at(7, 0), at(17, 0), surgeon_id=surgeon.id),
            make_slot("OR-2", at(17, 0), at(18, 0), slot_type=SlotType.CLEANUP, surgeon_id=surgeon.id),
        ]
        report = engine.check_placement(
            make_surgery(), or1, at(18, 0), at(19, 0), existing, surgeon=surgeon
        )
        assert "surgeon_hours" not in report.violated_rules

    def test_hours_on_previous_day_count_in_rolling_window(
        self, engine, or1, surgeon, make_surgery, make_slot, at
    ):
        existing = [make_slot("OR-2", at(12, 0, days=-1), at(23, 0, days=-1), surgeon_id=surgeon.id)]
        report = engine.check_placement(
            make_surgery(), or1, at(7, 0), at(9, 0), existing, surgeon=surgeon
        )
        assert "surgeon_hours" in report.violated_rules

    def test_surgeon_double_booked_across_rooms(self, engine, or1, surgeon, make_surgery, make_slot, at):
        existing = [make_slot("OR-2", at(10, 0), at(11, 0), surgeon_id=surgeon.id)]
        report = engine.check_placement(
            make_surgery(), or1, at(10, 30), at(11, 30), existing, surgeon=surgeon
        )
        assert report.violated_rules == ["staff_double_booked"]

    def test_anesthesiologist_double_booked(
        self, engine, or1, anesthesiologist, make_surgery, make_slot, at
    ):
        existing = [make_slot("OR-2", at(10, 0), at(11, 0), anesthesiologist_id=anesthesiologist.id)]
        report = engine.check_placement(
            make_surgery(), or1, at(10, 30), at(11, 30), existing, anesthesiologist=anesthesiologist
        )
        assert report.violated_rules == ["staff_double_booked"]


class TestEquipmentRules:
    def test_equipment_in_maintenance_blocks(self, engine, or1, equipment, make_surgery, at):
        surgery = make_surgery(equipment_requirements=["eq-broken"])
        report = engine.check_placement(surgery, or1, at(10, 0), at(11, 0), [], equipment_list=equipment)

        assert report.violated_rules == ["equipment_available"]
        assert "maintenance" in report.hard_violations[0].message

    def test_sterilizing_equipment_blocks(self, engine, or1, equipment, make_surgery, at):
        items = copy.deepcopy(equipment)
        items[2].status = EquipmentStatus.STERILIZING
        surgery = make_surgery(equipment_requirements=["eq-bypass"])
        report = engine.check_placement(surgery, or1, at(10, 0), at(11, 0), [], equipment_list=items)

        assert report.violated_rules == ["equipment_available"]
        assert "sterilized" in report.hard_violations[0].message

    def test_type_requirement_needs_one_usable_item(self, engine, or1, equipment, make_surgery, at):
        surgery = make_surgery(equipment_requirements=["instruments"])
        report = engine.check_placement(surgery, or1, at(10, 0), at(11, 0), [], equipment_list=equipment)
        assert not report.conflict

    def test_unknown_requirement_blocks(self, engine, or1, equipment, make_surgery, at):
        surgery = make_surgery(equipment_requirements=["imaging"])
        report = engine.check_placement(surgery, or1, at(10, 0), at(11, 0), [], equipment_list=equipment)
        assert report.violated_rules == ["equipment_available"]

    def test_sterilization_due_before_case_end(self, engine, or1, equipment, make_surgery, at):
        items = copy.deepcopy(equipment)
        items[0].sterilization_due = at(10, 30)
        surgery = make_surgery(equipment_requirements=["eq-tower"])
        report = engine.check_placement(surgery, or1, at(10, 0), at(11, 0), [], equipment_list=items)
        assert report.violated_rules == ["sterilization_gap"]

    def test_without_requirements_every_supplied_item_is_referenced(
        self, engine, or1, equipment, make_surgery, at
    ):
        report = engine.check_placement(
            make_surgery(), or1, at(10, 0), at(11, 0), [], equipment_list=equipment
        )
        assert report.violated_rules == ["equipment_available"]


class TestSoftRules:
    def test_overtime(self, engine, or1, make_surgery, at):
        report = engine.check_placement(make_surgery(), or1, at(17, 30), at(18, 30), [])

        assert not report.conflict
        assert [v.rule for v in report.soft_violations] == ["minimize_overtime"]
        assert report.score == 95

    def test_early_start(self, engine, or1, make_surgery, at):
        report = engine.check_placement(make_surgery(), or1, at(6, 30), at(7, 30), [])
        assert [v.rule for v in report.soft_violations] == ["early_start"]

    def test_idle_gap_before_case(self, engine, or1, make_surgery, make_slot, at):
        existing = [make_slot("OR-1", at(7, 0), at(8, 0))]
        report = engine.check_placement(make_surgery(), or1, at(10, 0), at(11, 0), existing)
        assert [v.rule for v in report.soft_violations] == ["minimize_idle"]

    def test_short_gap_is_fine(self, engine, or1, make_surgery, make_slot, at):
        existing = [make_slot("OR-1", at(9, 0), at(9, 45))]
        report = engine.check_placement(make_surgery(), or1, at(10, 0), at(11, 0), existing)
        assert report.soft_violations == []


class TestReport:
    def test_score_formula(self, engine, rooms, make_surgery, make_slot, at):
        """Two hard and one soft violation: 100 - 2*25 - 5."""
        existing = [make_slot("OR-4", at(17, 0), at(18, 0))]
        report = engine.check_placement(
            make_surgery(specialization_required="neuro"), rooms[3], at(17, 30), at(18, 30), existing
        )

        assert sorted(report.violated_rules) == ["no_overlap", "room_status"]
        assert len(report.soft_violations) == 1
        assert report.score == 45

    def test_score_never_negative(self, engine, rooms, staff, make_surgery, make_slot, at):
        existing = [make_slot("OR-4", at(10, 0), at(10, 30)) for _ in range(6)]
        report = engine.check_placement(
            make_surgery(specialization_required="cardiac"), rooms[3], at(10, 0), at(11, 0), existing,
            surgeon=staff[0],
        )
        assert report.score == 0

    def test_check_is_pure(self, engine, or1, surgeon, equipment, make_surgery, make_slot, at):
        existing = [
            make_slot("OR-1", at(9, 0), at(10, 0)),
            make_slot("OR-2", at(10, 0), at(11, 0), surgeon_id=surgeon.id),
        ]
        snapshot = copy.deepcopy(existing)
        surgery = make_surgery(equipment_requirements=["eq-tower"])

        first = engine.check_placement(
            surgery, or1, at(10, 30), at(11, 30), existing, surgeon=surgeon, equipment_list=equipment
        )
        second = engine.check_placement(
            surgery, or1, at(10, 30), at(11, 30), existing, surgeon=surgeon, equipment_list=equipment
        )

        assert first.to_dict() == second.to_dict()
        assert existing == snapshot

    def test_empty_window_is_rejected(self, engine, or1, make_surgery, at):
        with pytest.raises(ValidationError):
            engine.check_placement(make_surgery(), or1, at(11, 0), at(11, 0), [])

    def test_rule_catalogue(self):
        assert [c.name for c in HARD_CONSTRAINTS][:2] == ["no_overlap", "or_capability"]
        assert {c.name for c in SOFT_CONSTRAINTS} == {"minimize_overtime", "early_start", "minimize_idle"}


class TestBusiestWindow:
    def test_single_interval(self, at):
        assert busiest_window_minutes([(at(8, 0), at(10, 0))], (at(8, 0), at(10, 0))) == 120

    def test_windows_more_than_a_day_apart_do_not_add_up(self, at):
        intervals = [(at(8, 0), at(18, 0)), (at(9, 0, days=2), at(12, 0, days=2))]
        busiest = busiest_window_minutes(intervals, intervals[1])
        assert busiest == pytest.approx(180)

    def test_window_is_24_hours(self, at):
        intervals = [(at(8, 0), at(9, 0)), (at(8, 0, days=1) - timedelta(minutes=1), at(9, 0, days=1))]
        assert busiest_window_minutes(intervals, intervals[1]) == pytest.approx(61)
