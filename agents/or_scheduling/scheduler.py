"""
OR Slot Allocator.

Greedy first-fit placement of one surgery into a day's existing schedule:
- Each candidate room is walked through the operating day in time order
- A case needs setup + duration + cleanup minutes of contiguous free time
- The first gap that fits (and passes the Constraint Engine) wins

This is deliberately not an optimiser: the first feasible room in list order
is returned, which keeps the result explainable to schedulers.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional, Sequence, Tuple

from .config import Settings, settings as default_settings
from .constraints import ConstraintEngine
from .models import (
    Equipment,
    OperatingRoom,
    ScheduleSlot,
    SlotProposal,
    Staff,
    Surgery,
)

logger = logging.getLogger(__name__)


class SlotAllocator:
    """
    First-fit operating room allocator.

    Every candidate window is confirmed with the Constraint Engine using the
    same setup/cleanup padding the orchestrator commits, so a proposal never
    fails a later ``check_placement``.
    """

    def __init__(
        self,
        engine: Optional[ConstraintEngine] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.engine = engine or ConstraintEngine(self.settings)

    def day_window(self, day: date, tzinfo=None) -> Tuple[datetime, datetime]:
        """Operating day bounds, e.g. 07:00-20:00."""
        start = datetime.combine(day, time(hour=self.settings.day_start_hour), tzinfo=tzinfo)
        if self.settings.day_end_hour >= 24:
            end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=tzinfo)
        else:
            end = datetime.combine(day, time(hour=self.settings.day_end_hour), tzinfo=tzinfo)
        return start, end

    def candidate_rooms(self, surgery: Surgery, rooms: Sequence[OperatingRoom]) -> List[OperatingRoom]:
        """Rooms able to take the case, in the caller's order."""
        return [
            room for room in rooms
            if room.accepts_placements and room.supports(surgery.specialization_required)
        ]

    def iter_gaps(
        self,
        room_slots: Sequence[ScheduleSlot],
        search_from: datetime,
        day_end: datetime,
        total: timedelta,
    ) -> Iterator[datetime]:
        """Yield the start of every free stretch of at least ``total`` in time order."""
        search_time = search_from
        for slot in sorted(room_slots, key=lambda s: s.start_time):
            if slot.start_time - search_time >= total:
                yield search_time
            search_time = max(search_time, slot.end_time)

        if search_time + total <= day_end:
            yield search_time

    def find_slot(
        self,
        surgery: Surgery,
        rooms: Sequence[OperatingRoom],
        existing_slots: Sequence[ScheduleSlot],
        day: date,
        not_before: Optional[datetime] = None,
        surgeon: Optional[Staff] = None,
        equipment_list: Optional[Sequence[Equipment]] = None,
        anesthesiologist: Optional[Staff] = None,
    ) -> Optional[SlotProposal]:
        """
        Find the earliest feasible placement on ``day``.

        Returns None when no room and gap fits; callers must surface that as
        unschedulable rather than retrying.
        """
        setup = timedelta(minutes=self.settings.setup_minutes)
        cleanup = timedelta(minutes=self.settings.cleanup_minutes)
        duration = timedelta(minutes=surgery.estimated_duration)
        total = setup + duration + cleanup

        tzinfo = not_before.tzinfo if not_before is not None else None
        day_start, day_end = self.day_window(day, tzinfo)
        search_from = max(day_start, not_before) if not_before is not None else day_start
        if search_from >= day_end:
            return None

        others = [s for s in existing_slots if s.surgery_id != surgery.id]

        for room in self.candidate_rooms(surgery, rooms):
            room_slots = [
                s for s in others
                if s.room_id == room.id and s.end_time > day_start and s.start_time < day_end
            ]
            for gap_start in self.iter_gaps(room_slots, search_from, day_end, total):
                start = gap_start + setup
                end = start + duration
                report = self.engine.check_placement(
                    surgery,
                    room,
                    start,
                    end,
                    others,
                    surgeon=surgeon,
                    equipment_list=equipment_list,
                    anesthesiologist=anesthesiologist,
                    setup_minutes=self.settings.setup_minutes,
                    cleanup_minutes=self.settings.cleanup_minutes,
                )
                if report.conflict:
                    logger.debug(
                        f"Skipping {room.id} at {start:%H:%M} for surgery {surgery.id}: "
                        f"{', '.join(report.violated_rules)}"
                    )
                    continue
                logger.info(
                    f"Surgery {surgery.id} fits {room.id} {start:%H:%M}-{end:%H:%M}"
                )
                return SlotProposal(room=room, start=start, end=end)

        logger.info(f"No feasible slot for surgery {surgery.id} on {day.isoformat()}")
        return None
