"""
Tests for on-call slot administration: slots, patterns, assignments, handover
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.audit import MemoryAuditSink
from rota_engine.errors import ConflictError, NotFoundError, ValidationError
from rota_engine.models import Role, SlotAssignment
from rota_engine.slots import (
    create_slot,
    create_slot_assignment,
    delete_slot,
    quick_assign,
    set_registrar_pattern,
    update_oncall_config,
    update_slot_assignment,
)

TODAY = date(2024, 3, 1)


class TestOnCallConfig:

    def test_first_config_needs_both_fields(self, clinic):
        with pytest.raises(ValidationError):
            update_oncall_config(clinic, Role.CONSULTANT, start_date=TODAY)

    def test_rejects_non_positive_cycle(self, clinic):
        with pytest.raises(ValidationError):
            update_oncall_config(clinic, "consultant", start_date=TODAY, cycle_length=0)

    def test_partial_update_keeps_other_field(self, clinic):
        update_oncall_config(clinic, Role.CONSULTANT, start_date=TODAY, cycle_length=4)
        saved = update_oncall_config(clinic, Role.CONSULTANT, cycle_length=6)
        assert saved.start_date == TODAY
        assert saved.cycle_length == 6


class TestSlots:

    def test_first_registrar_slot(self, clinic):
        slot = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        assert slot.position == 1
        assert slot.name == "Registrar 01"
        config = clinic.get_oncall_config(Role.REGISTRAR)
        assert config.cycle_length == 7
        assert config.start_date == TODAY

    def test_consultant_cycle_follows_slot_count(self, clinic):
        create_slot(clinic, Role.CONSULTANT, today=TODAY)
        second = create_slot(clinic, "consultant", name="Nights", today=TODAY)
        assert second.position == 2
        assert second.name == "Nights"
        assert clinic.get_oncall_config(Role.CONSULTANT).cycle_length == 2

    def test_delete_blocked_by_open_assignment(self, clinic):
        slot = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1))
        with pytest.raises(ConflictError):
            delete_slot(clinic, slot.id, today=TODAY)

    def test_delete_allowed_after_assignment_ended(self, clinic):
        slot = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        create_slot(clinic, Role.REGISTRAR, today=TODAY)
        create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1), date(2024, 2, 1))
        deleted = delete_slot(clinic, slot.id, today=TODAY)
        assert not deleted.active
        assert clinic.get_oncall_config(Role.REGISTRAR).cycle_length == 7

    def test_delete_missing_slot(self, clinic):
        with pytest.raises(NotFoundError):
            delete_slot(clinic, 999, today=TODAY)

    def test_new_slot_reactivates_dormant_position(self, clinic):
        first = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        create_slot(clinic, Role.REGISTRAR, today=TODAY)
        delete_slot(clinic, first.id, today=TODAY)
        again = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        assert again.id == first.id
        assert again.active
        assert len(clinic.find_slots(role=Role.REGISTRAR)) == 2

    def test_audit_records_slot_changes(self, clinic):
        audit = MemoryAuditSink()
        slot = create_slot(clinic, Role.REGISTRAR, today=TODAY, audit=audit)
        delete_slot(clinic, slot.id, today=TODAY, audit=audit)
        assert audit.actions() == ["create", "delete"]


class TestRegistrarPattern:

    @pytest.fixture
    def slots(self, clinic):
        return [create_slot(clinic, Role.REGISTRAR, today=TODAY) for _ in range(2)]

    def test_positions_resolved_to_slot_ids(self, clinic, slots):
        saved = set_registrar_pattern(clinic, [(1, 2), (2, 1)])
        assert [(p.day_of_cycle, p.slot_id) for p in saved] == [(1, slots[1].id), (2, slots[0].id)]

    def test_unknown_position_rejected(self, clinic, slots):
        with pytest.raises(ValidationError):
            set_registrar_pattern(clinic, [(1, 5)])

    def test_duplicate_day_rejected(self, clinic, slots):
        with pytest.raises(ValidationError):
            set_registrar_pattern(clinic, [(1, 1), (1, 2)])

    def test_empty_pattern_rejected(self, clinic, slots):
        with pytest.raises(ValidationError):
            set_registrar_pattern(clinic, [])


class TestAssignments:

    @pytest.fixture
    def slot(self, clinic):
        return create_slot(clinic, Role.REGISTRAR, today=TODAY)

    def test_role_must_match_slot(self, clinic, slot):
        with pytest.raises(ValidationError):
            create_slot_assignment(clinic, slot.id, 1, date(2024, 1, 1))

    def test_end_before_start_rejected(self, clinic, slot):
        with pytest.raises(ValidationError):
            create_slot_assignment(clinic, slot.id, 10, date(2024, 3, 1), date(2024, 2, 1))

    def test_overlap_is_inclusive(self, clinic, slot):
        create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1), date(2024, 3, 31))
        with pytest.raises(ConflictError):
            create_slot_assignment(clinic, slot.id, 11, date(2024, 3, 31))

    def test_adjacent_ranges_allowed(self, clinic, slot):
        create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1), date(2024, 3, 31))
        second = create_slot_assignment(clinic, slot.id, 11, date(2024, 4, 1))
        assert second.effective_to is None

    def test_open_assignment_blocks_later_one(self, clinic, slot):
        create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1))
        with pytest.raises(ConflictError):
            create_slot_assignment(clinic, slot.id, 11, date(2025, 1, 1))

    def test_update_can_clear_end(self, clinic, slot):
        row = create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1), date(2024, 2, 1))
        updated = update_slot_assignment(clinic, row.id, clear_end=True)
        assert updated.effective_to is None
        assert clinic.get_slot_assignment(row.id).effective_to is None

    def test_update_checks_overlap_against_others(self, clinic, slot):
        create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1), date(2024, 1, 31))
        later = create_slot_assignment(clinic, slot.id, 11, date(2024, 2, 1))
        with pytest.raises(ConflictError):
            update_slot_assignment(clinic, later.id, effective_from=date(2024, 1, 15))


class TestQuickAssign:

    def test_closes_open_assignment_day_before(self, clinic):
        slot = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        first = create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1))
        new = quick_assign(clinic, slot.id, 11, date(2024, 3, 1))
        assert clinic.get_slot_assignment(first.id).effective_to == date(2024, 2, 29)
        assert new.clinician_id == 11
        assert new.effective_to is None

    def test_open_assignment_starting_later_conflicts(self, clinic):
        slot = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        create_slot_assignment(clinic, slot.id, 10, date(2024, 4, 1))
        with pytest.raises(ConflictError):
            quick_assign(clinic, slot.id, 11, date(2024, 3, 1))

    def test_role_mismatch_leaves_existing_untouched(self, clinic):
        slot = create_slot(clinic, Role.REGISTRAR, today=TODAY)
        first = create_slot_assignment(clinic, slot.id, 10, date(2024, 1, 1))
        with pytest.raises(ValidationError):
            quick_assign(clinic, slot.id, 2, date(2024, 3, 1))
        assert clinic.get_slot_assignment(first.id).effective_to is None
