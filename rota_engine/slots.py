"""
slots.py — On-call slot administration

Slots are rotation positions; SlotAssignments put a clinician in a slot for an
effective date range. Rules enforced here, before any write:

  - a slot's assignments never overlap (inclusive ranges, open end = forever)
  - the assigned clinician's role matches the slot's role
  - slots are soft-deleted, and only when no live or future assignment remains
  - a new slot takes the lowest free position, reactivating a soft-deleted
    slot at that position if one exists
  - cycle length follows the active slot count (consultant: n, registrar: 7n)

Usage:
  slot = create_slot(store, Role.REGISTRAR, today=date.today())
  quick_assign(store, slot.id, clinician_id=7, effective_from=date(2024, 3, 1))
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from .audit import AuditSink, resolve_sink
from .dates import add_days
from .errors import ConflictError, NotFoundError, ValidationError
from .models import OnCallConfig, OnCallPattern, OnCallSlot, Role, SlotAssignment, parse_enum
from .store import RotaStore

logger = logging.getLogger(__name__)

REGISTRAR_DAYS_PER_SLOT = 7


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def update_oncall_config(
    store: RotaStore,
    role: Role,
    start_date: Optional[date] = None,
    cycle_length: Optional[int] = None,
    audit: Optional[AuditSink] = None,
) -> OnCallConfig:
    role = parse_enum(Role, role, "role")
    if cycle_length is not None and cycle_length <= 0:
        raise ValidationError(f"cycle_length must be positive, got {cycle_length}")

    before = store.get_oncall_config(role)
    if before is None:
        if start_date is None or cycle_length is None:
            raise ValidationError(f"No {role.value} on-call config yet: start_date and cycle_length are required")
        after = OnCallConfig(role=role, start_date=start_date, cycle_length=cycle_length)
    else:
        after = OnCallConfig(
            role=role,
            start_date=start_date or before.start_date,
            cycle_length=cycle_length or before.cycle_length,
        )
    saved = store.put_oncall_config(after)
    resolve_sink(audit).record("update", "onCallConfig", role.value, before, saved)
    return saved


def _sync_cycle_length(store: RotaStore, role: Role, today: date) -> OnCallConfig:
    active_count = len(store.find_slots(role=role, active_only=True))
    per_slot = 1 if role is Role.CONSULTANT else REGISTRAR_DAYS_PER_SLOT
    cycle_length = max(1, active_count * per_slot)
    config = store.get_oncall_config(role)
    if config is None:
        config = OnCallConfig(role=role, start_date=today, cycle_length=cycle_length)
    else:
        config.cycle_length = cycle_length
    logger.info(f"{role.value} rotation: {active_count} active slots → cycle length {cycle_length}")
    return store.put_oncall_config(config)


# ---------------------------------------------------------------------------
# Slots
# ---------------------------------------------------------------------------

def create_slot(
    store: RotaStore,
    role: Role,
    name: Optional[str] = None,
    today: Optional[date] = None,
    audit: Optional[AuditSink] = None,
) -> OnCallSlot:
    role = parse_enum(Role, role, "role")
    today = today or date.today()
    all_slots = store.find_slots(role=role)
    taken = {s.position for s in all_slots if s.active}

    position = 1
    while position in taken:
        position += 1

    dormant = next((s for s in all_slots if not s.active and s.position == position), None)
    if dormant is not None:
        dormant.active = True
        slot = store.update_slot(dormant)
        logger.info(f"Reactivated {role.value} slot #{slot.id} at position {position}")
    else:
        label = "Consultant" if role is Role.CONSULTANT else "Registrar"
        slot = store.add_slot(OnCallSlot(
            id=None,
            role=role,
            position=position,
            name=name or f"{label} {position:02d}",
        ))
        logger.info(f"Created {role.value} slot #{slot.id} at position {position}")

    _sync_cycle_length(store, role, today)
    resolve_sink(audit).record("create", "onCallSlot", slot.id, None, slot)
    return slot


def delete_slot(
    store: RotaStore,
    slot_id: int,
    today: Optional[date] = None,
    audit: Optional[AuditSink] = None,
) -> OnCallSlot:
    today = today or date.today()
    slot = store.get_slot(slot_id)
    if slot is None:
        raise NotFoundError("OnCallSlot", slot_id)

    live = [
        a for a in store.find_slot_assignments(slot_ids=[slot_id])
        if a.effective_to is None or a.effective_to >= today
    ]
    if live:
        raise ConflictError(
            f"Slot #{slot_id} has {len(live)} active or future assignment(s); "
            f"end them before deleting (first: assignment #{live[0].id})"
        )

    before = store.get_slot(slot_id)
    slot.active = False
    updated = store.update_slot(slot)
    _sync_cycle_length(store, slot.role, today)
    resolve_sink(audit).record("delete", "onCallSlot", slot_id, before, updated)
    return updated


def set_registrar_pattern(
    store: RotaStore,
    pattern: Sequence[Tuple[int, int]],
    audit: Optional[AuditSink] = None,
) -> List[OnCallPattern]:
    """
    Replace the registrar pattern from (day_of_cycle, slot position) pairs.

    Positions are resolved against active registrar slots.
    """
    if not pattern:
        raise ValidationError("Pattern must contain at least one day")
    by_position: Dict[int, int] = {
        s.position: s.id for s in store.find_slots(role=Role.REGISTRAR, active_only=True)
    }
    rows: List[OnCallPattern] = []
    seen_days = set()
    for day_of_cycle, position in pattern:
        if day_of_cycle < 1:
            raise ValidationError(f"day_of_cycle must be >= 1, got {day_of_cycle}")
        if day_of_cycle in seen_days:
            raise ValidationError(f"Duplicate day_of_cycle {day_of_cycle} in pattern")
        if position not in by_position:
            raise ValidationError(f"No active registrar slot at position {position} (day {day_of_cycle})")
        seen_days.add(day_of_cycle)
        rows.append(OnCallPattern(role=Role.REGISTRAR, day_of_cycle=day_of_cycle,
                                  slot_id=by_position[position]))

    saved = store.replace_patterns(Role.REGISTRAR, rows)
    resolve_sink(audit).record("update", "onCallPattern", Role.REGISTRAR.value, None,
                               {"pattern": [[d, p] for d, p in pattern]})
    logger.info(f"Registrar pattern replaced: {len(saved)} days")
    return saved


# ---------------------------------------------------------------------------
# Slot assignments
# ---------------------------------------------------------------------------

def _validate_assignment(
    store: RotaStore,
    slot_id: int,
    clinician_id: int,
    effective_from: date,
    effective_to: Optional[date],
    ignore_id: Optional[int] = None,
) -> None:
    if effective_to is not None and effective_to < effective_from:
        raise ValidationError(f"effective_to {effective_to} is before effective_from {effective_from}")

    slot = store.get_slot(slot_id)
    if slot is None:
        raise NotFoundError("OnCallSlot", slot_id)
    clinician = store.get_clinician(clinician_id)
    if clinician is None:
        raise NotFoundError("Clinician", clinician_id)
    if clinician.role is not slot.role:
        raise ValidationError(
            f"{clinician.name} is a {clinician.role.value} but slot #{slot_id} is a {slot.role.value} slot"
        )

    for other in store.find_slot_assignments(slot_ids=[slot_id]):
        if other.id == ignore_id:
            continue
        if other.overlaps(effective_from, effective_to):
            end = other.effective_to.isoformat() if other.effective_to else "open"
            raise ConflictError(
                f"Slot #{slot_id} already assigned from {other.effective_from} to {end} "
                f"(assignment #{other.id})"
            )


def create_slot_assignment(
    store: RotaStore,
    slot_id: int,
    clinician_id: int,
    effective_from: date,
    effective_to: Optional[date] = None,
    audit: Optional[AuditSink] = None,
) -> SlotAssignment:
    _validate_assignment(store, slot_id, clinician_id, effective_from, effective_to)
    created = store.add_slot_assignment(SlotAssignment(
        id=None,
        slot_id=slot_id,
        clinician_id=clinician_id,
        effective_from=effective_from,
        effective_to=effective_to,
    ))
    resolve_sink(audit).record("create", "slotAssignment", created.id, None, created)
    return created


def update_slot_assignment(
    store: RotaStore,
    assignment_id: int,
    clinician_id: Optional[int] = None,
    effective_from: Optional[date] = None,
    effective_to: Optional[date] = None,
    clear_end: bool = False,
    audit: Optional[AuditSink] = None,
) -> SlotAssignment:
    before = store.get_slot_assignment(assignment_id)
    if before is None:
        raise NotFoundError("SlotAssignment", assignment_id)

    new_clinician = clinician_id if clinician_id is not None else before.clinician_id
    new_from = effective_from or before.effective_from
    new_to = None if clear_end else (effective_to or before.effective_to)
    _validate_assignment(store, before.slot_id, new_clinician, new_from, new_to, ignore_id=assignment_id)

    updated = store.update_slot_assignment(SlotAssignment(
        id=assignment_id,
        slot_id=before.slot_id,
        clinician_id=new_clinician,
        effective_from=new_from,
        effective_to=new_to,
    ))
    resolve_sink(audit).record("update", "slotAssignment", assignment_id, before, updated)
    return updated


def delete_slot_assignment(
    store: RotaStore,
    assignment_id: int,
    audit: Optional[AuditSink] = None,
) -> None:
    before = store.get_slot_assignment(assignment_id)
    if before is None:
        raise NotFoundError("SlotAssignment", assignment_id)
    store.delete_slot_assignment(assignment_id)
    resolve_sink(audit).record("delete", "slotAssignment", assignment_id, before, None)


def quick_assign(
    store: RotaStore,
    slot_id: int,
    clinician_id: int,
    effective_from: date,
    audit: Optional[AuditSink] = None,
) -> SlotAssignment:
    """
    Hand a slot to a new clinician from `effective_from`.

    The currently open assignment (if it started earlier) is closed the day
    before; an open assignment starting on or after that day is a conflict.
    """
    sink = resolve_sink(audit)
    open_rows = [a for a in store.find_slot_assignments(slot_ids=[slot_id]) if a.effective_to is None]
    to_close = [a for a in open_rows if a.effective_from < effective_from]

    # Validate the new row as if the open rows were already closed
    slot = store.get_slot(slot_id)
    if slot is None:
        raise NotFoundError("OnCallSlot", slot_id)
    closing_day = add_days(effective_from, -1)
    for other in store.find_slot_assignments(slot_ids=[slot_id]):
        if other in to_close:
            continue
        if other.overlaps(effective_from, None):
            raise ConflictError(
                f"Slot #{slot_id} already assigned from {other.effective_from} (assignment #{other.id})"
            )
    clinician = store.get_clinician(clinician_id)
    if clinician is None:
        raise NotFoundError("Clinician", clinician_id)
    if clinician.role is not slot.role:
        raise ValidationError(
            f"{clinician.name} is a {clinician.role.value} but slot #{slot_id} is a {slot.role.value} slot"
        )

    for row in to_close:
        before = store.get_slot_assignment(row.id)
        row.effective_to = closing_day
        closed = store.update_slot_assignment(row)
        sink.record("update", "slotAssignment", row.id, before, closed)
        logger.info(f"Closed assignment #{row.id} on slot #{slot_id} at {closing_day}")

    return create_slot_assignment(store, slot_id, clinician_id, effective_from, None, audit=sink)
