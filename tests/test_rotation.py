"""
Tests for the rotation calculator (consultant weekly, registrar daily)
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.models import OnCallConfig, OnCallSlot, Role, SlotAssignment
from rota_engine.rotation import (
    OnCallLookup,
    RotationData,
    _consultant_weekly_slot,
    _registrar_pattern_slot,
    _registrar_round_robin_slot,
    load_rotation_data,
    on_call_for,
    oncall_by_date,
    select_strategy,
    who_is_on_call,
)
from rota_engine.store import InMemoryStore


def _data(role, cycle_length, clinician_ids, patterns=None, start=date(2024, 1, 1)):
    slots = [OnCallSlot(i, role, i) for i in range(1, len(clinician_ids) + 1)]
    assignments = {
        i: [SlotAssignment(i, i, cid, date(2023, 1, 1))]
        for i, cid in enumerate(clinician_ids, start=1)
    }
    return RotationData(
        role=role,
        config=OnCallConfig(role, start, cycle_length),
        slots=slots,
        patterns=patterns or {},
        assignments=assignments,
    )


class TestConsultantRotation:
    """Three consultants A=101, B=102, C=103 rotating weekly from Monday 2024-01-01."""

    @pytest.fixture
    def data(self):
        return _data(Role.CONSULTANT, 3, [101, 102, 103])

    def test_whole_first_week_is_position_one(self, data):
        for day in range(1, 8):
            assert who_is_on_call(date(2024, 1, day), data) == 101

    def test_weeks_advance_and_wrap(self, data):
        assert who_is_on_call(date(2024, 1, 8), data) == 102
        assert who_is_on_call(date(2024, 1, 15), data) == 103
        assert who_is_on_call(date(2024, 1, 22), data) == 101

    def test_dates_before_start_wrap_backwards(self, data):
        # Sunday 2023-12-31 is in week -1, i.e. the last position of the cycle
        assert who_is_on_call(date(2023, 12, 31), data) == 103

    def test_assignment_handover_mid_cycle(self, data):
        data.assignments[2] = [
            SlotAssignment(2, 2, 102, date(2023, 1, 1), date(2024, 1, 10)),
            SlotAssignment(9, 2, 104, date(2024, 1, 11)),
        ]
        assert who_is_on_call(date(2024, 1, 8), data) == 102
        assert who_is_on_call(date(2024, 1, 14), data) == 104

    def test_unassigned_slot_resolves_to_none(self, data):
        data.assignments[3] = []
        assert who_is_on_call(date(2024, 1, 15), data) is None

    def test_no_config_or_no_slots(self, data):
        assert who_is_on_call(date(2024, 1, 1), RotationData(Role.CONSULTANT, None)) is None
        data.slots = []
        assert who_is_on_call(date(2024, 1, 1), data) is None

    def test_non_positive_cycle_length_ignored(self, data):
        data.config.cycle_length = 0
        assert who_is_on_call(date(2024, 1, 1), data) is None


class TestRegistrarRotation:

    def test_round_robin_daily(self):
        data = _data(Role.REGISTRAR, 21, [201, 202, 203])
        got = [who_is_on_call(date(2024, 1, d), data) for d in range(1, 7)]
        assert got == [201, 202, 203, 201, 202, 203]

    def test_pattern_overrides_round_robin(self):
        data = _data(Role.REGISTRAR, 2, [201, 202, 203], patterns={1: 3, 2: 1})
        assert who_is_on_call(date(2024, 1, 1), data) == 203
        assert who_is_on_call(date(2024, 1, 2), data) == 201
        assert who_is_on_call(date(2024, 1, 3), data) == 203

    def test_pattern_gap_resolves_to_none(self):
        data = _data(Role.REGISTRAR, 3, [201, 202, 203], patterns={1: 3, 2: 1})
        assert who_is_on_call(date(2024, 1, 3), data) is None

    def test_oncall_by_date(self):
        data = _data(Role.REGISTRAR, 21, [201, 202])
        result = oncall_by_date(data, date(2024, 1, 1), date(2024, 1, 3))
        assert result == {date(2024, 1, 1): 201, date(2024, 1, 2): 202, date(2024, 1, 3): 201}


class TestStrategySelection:

    def test_consultant_always_weekly(self):
        data = _data(Role.CONSULTANT, 2, [1, 2], patterns={1: 1})
        assert select_strategy(data) is _consultant_weekly_slot

    def test_registrar_pattern_when_present(self):
        assert select_strategy(_data(Role.REGISTRAR, 2, [1], patterns={1: 1})) is _registrar_pattern_slot
        assert select_strategy(_data(Role.REGISTRAR, 7, [1])) is _registrar_round_robin_slot


class TestStoreBacked:

    def test_on_call_for(self, rota_clinic):
        assert on_call_for(rota_clinic, date(2024, 3, 1), Role.CONSULTANT) == 1
        assert on_call_for(rota_clinic, date(2024, 3, 4), Role.CONSULTANT) == 2
        assert on_call_for(rota_clinic, date(2024, 3, 1), Role.REGISTRAR) == 10
        assert on_call_for(rota_clinic, date(2024, 3, 2), Role.REGISTRAR) == 11
        assert on_call_for(rota_clinic, date(2024, 3, 3), Role.REGISTRAR) == 12

    def test_inactive_slot_leaves_the_cycle(self, rota_clinic):
        slot = rota_clinic.get_slot(5)
        slot.active = False
        rota_clinic.update_slot(slot)
        data = load_rotation_data(rota_clinic, Role.REGISTRAR)
        assert [s.id for s in data.slots] == [3, 4]
        # history of the soft-deleted slot is still loaded
        assert 5 in data.assignments

    def test_lookup(self, rota_clinic):
        lookup = OnCallLookup.from_store(rota_clinic, date(2024, 3, 1), date(2024, 3, 7))
        assert lookup.get(date(2024, 3, 4), Role.REGISTRAR) == 10
        assert lookup.is_on_call(2, date(2024, 3, 5))
        assert not lookup.is_on_call(1, date(2024, 3, 5))
        assert lookup.has_rotation(Role.CONSULTANT)

    def test_lookup_without_rotation(self):
        lookup = OnCallLookup.from_store(InMemoryStore(), date(2024, 3, 1), date(2024, 3, 7))
        assert not lookup.has_rotation(Role.REGISTRAR)
        assert lookup.get(date(2024, 3, 1), Role.REGISTRAR) is None
