"""
rotation.py — Rotation Calculator: who is on-call for a role on a date

Algorithm:
  days = whole days from OnCallConfig.start_date to the date (may be negative)

  Consultants (weekly rotation):
    position = (floor(days / 7) mod cycle_length) + 1

  Registrars (daily rotation):
    day_of_cycle = (days mod cycle_length) + 1
    pattern table present → slot = pattern[day_of_cycle]
    otherwise             → position = ((day_of_cycle - 1) mod active_slots) + 1

  The slot's clinician is the SlotAssignment whose
  [effective_from, effective_to or open] range contains the date.

Python's floor division and modulo are already non-negative for a positive
divisor, so dates before the start date wrap backwards through the cycle.

The slot lookup strategy is chosen once per RotationData by select_strategy().

Usage:
  data = load_rotation_data(store, Role.REGISTRAR, start, end)
  who_is_on_call(date(2024, 3, 4), data)         → clinician id or None
  lookup = OnCallLookup.from_store(store, start, end)
  lookup.get(date(2024, 3, 4), Role.CONSULTANT)
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional

from .dates import date_range
from .models import OnCallConfig, OnCallSlot, Role, SlotAssignment
from .store import RotaStore

logger = logging.getLogger(__name__)


@dataclass
class RotationData:
    """Everything the calculator needs for one role, fetched once per range."""
    role: Role
    config: Optional[OnCallConfig]
    slots: List[OnCallSlot] = field(default_factory=list)              # active, by position
    patterns: Dict[int, int] = field(default_factory=dict)             # day_of_cycle → slot id
    assignments: Dict[int, List[SlotAssignment]] = field(default_factory=dict)  # slot id → rows

    def slot_at_position(self, position: int) -> Optional[int]:
        for slot in self.slots:
            if slot.position == position:
                return slot.id
        return None

    def clinician_for_slot(self, slot_id: int, d: date) -> Optional[int]:
        for assignment in self.assignments.get(slot_id, []):
            if assignment.covers(d):
                return assignment.clinician_id
        return None


def load_rotation_data(
    store: RotaStore,
    role: Role,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> RotationData:
    """
    Fetch config, active slots, registrar patterns and slot assignments.

    Assignments are fetched for every slot of the role, active or not, so a
    pattern that still names a soft-deleted slot resolves against its history.
    """
    config = store.get_oncall_config(role)
    all_slots = store.find_slots(role=role)
    active = [s for s in all_slots if s.active]
    patterns: Dict[int, int] = {}
    if role is Role.REGISTRAR:
        patterns = {p.day_of_cycle: p.slot_id for p in store.find_patterns(role)}

    assignments: Dict[int, List[SlotAssignment]] = {}
    if all_slots:
        rows = store.find_slot_assignments(
            slot_ids=[s.id for s in all_slots], start=start, end=end,
        )
        for row in rows:
            assignments.setdefault(row.slot_id, []).append(row)
        for rows_for_slot in assignments.values():
            rows_for_slot.sort(key=lambda a: a.effective_from)

    return RotationData(
        role=role,
        config=config,
        slots=sorted(active, key=lambda s: s.position),
        patterns=patterns,
        assignments=assignments,
    )


# ---------------------------------------------------------------------------
# Slot strategies: days since start → slot id
# ---------------------------------------------------------------------------

SlotStrategy = Callable[[int, RotationData], Optional[int]]


def _consultant_weekly_slot(days: int, data: RotationData) -> Optional[int]:
    week_of_cycle = (days // 7) % data.config.cycle_length
    return data.slot_at_position(week_of_cycle + 1)


def _registrar_pattern_slot(days: int, data: RotationData) -> Optional[int]:
    day_of_cycle = days % data.config.cycle_length + 1
    return data.patterns.get(day_of_cycle)


def _registrar_round_robin_slot(days: int, data: RotationData) -> Optional[int]:
    day_of_cycle = days % data.config.cycle_length + 1
    position = (day_of_cycle - 1) % len(data.slots) + 1
    return data.slot_at_position(position)


def select_strategy(data: RotationData) -> SlotStrategy:
    if data.role is Role.CONSULTANT:
        return _consultant_weekly_slot
    if data.patterns:
        return _registrar_pattern_slot
    return _registrar_round_robin_slot


def who_is_on_call(d: date, data: RotationData) -> Optional[int]:
    """Return the on-call clinician id for `d`, or None when the rotation is unset."""
    config = data.config
    if config is None or not data.slots:
        return None
    if config.cycle_length <= 0:
        logger.warning(f"Ignoring {data.role.value} rotation with cycle_length={config.cycle_length}")
        return None

    days = (d - config.start_date).days
    slot_id = select_strategy(data)(days, data)
    if slot_id is None:
        return None
    return data.clinician_for_slot(slot_id, d)


def oncall_by_date(data: RotationData, start: date, end: date) -> Dict[date, Optional[int]]:
    return {d: who_is_on_call(d, data) for d in date_range(start, end)}


def on_call_for(store: RotaStore, d: date, role: Role) -> Optional[int]:
    """One-off lookup; loads rotation data for the single day."""
    return who_is_on_call(d, load_rotation_data(store, role, d, d))


class OnCallLookup:
    """Memoised on-call lookup for both roles over a date range."""

    def __init__(self, data_by_role: Dict[Role, RotationData]):
        self._data = data_by_role
        self._cache: Dict[tuple, Optional[int]] = {}

    @classmethod
    def from_store(cls, store: RotaStore, start: date, end: date) -> "OnCallLookup":
        return cls({role: load_rotation_data(store, role, start, end) for role in Role})

    def get(self, d: date, role: Role) -> Optional[int]:
        key = (d, role)
        if key not in self._cache:
            data = self._data.get(role)
            self._cache[key] = who_is_on_call(d, data) if data else None
        return self._cache[key]

    def is_on_call(self, clinician_id: int, d: date) -> bool:
        return any(self.get(d, role) == clinician_id for role in self._data)

    def has_rotation(self, role: Role) -> bool:
        data = self._data.get(role)
        return bool(data and data.config and data.slots)
