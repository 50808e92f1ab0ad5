"""
Tests for schedule composition: precedence of leave, manual, rest, coverage,
on-call and job plan
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.composer import compute_schedule, get_today_oncall, index_by_session
from rota_engine.errors import ValidationError
from rota_engine.models import (
    Clinician,
    CoverageReason,
    CoverageRequest,
    CoverageStatus,
    Leave,
    LeaveType,
    Role,
    RotaEntry,
    RotaSource,
    Session,
)

FRI = date(2024, 3, 1)
SUN = date(2024, 3, 3)
WED = date(2024, 3, 6)


def _entry(entries, clinician_id, d, session):
    matches = [e for e in entries if e.clinician_id == clinician_id and e.date == d and e.session is session]
    assert len(matches) == 1
    return matches[0]


class TestShape:

    def test_one_entry_per_clinician_date_session(self, rota_clinic):
        entries = compute_schedule(rota_clinic, FRI, SUN)
        assert len(entries) == 3 * 5 * 2
        keys = {(e.date, e.clinician_id, e.session) for e in entries}
        assert len(keys) == len(entries)

    def test_ordering(self, rota_clinic):
        entries = compute_schedule(rota_clinic, FRI, FRI)
        names = [e.clinician_name for e in entries[::2]]
        assert names == ["Dr Adams", "Dr Baker", "Dr Evans", "Dr Foster", "Dr Grant"]
        assert [e.session for e in entries[:2]] == [Session.AM, Session.PM]

    def test_inactive_clinicians_skipped(self, rota_clinic):
        rota_clinic.add_clinician(Clinician(99, "Dr Retired", Role.CONSULTANT, active=False))
        entries = compute_schedule(rota_clinic, FRI, FRI)
        assert 99 not in {e.clinician_id for e in entries}

    def test_inverted_range_rejected(self, rota_clinic):
        with pytest.raises(ValidationError):
            compute_schedule(rota_clinic, SUN, FRI)


class TestPrecedence:

    def test_oncall_rest_and_job_plan(self, rota_clinic):
        entries = compute_schedule(rota_clinic, FRI, FRI)

        evans = _entry(entries, 10, FRI, Session.AM)
        assert evans.source is RotaSource.ONCALL and evans.is_oncall

        foster = _entry(entries, 11, FRI, Session.PM)
        assert foster.source is RotaSource.REST
        assert foster.is_rest and foster.is_rest_off
        assert foster.duty_name == "OFF"

        grant = _entry(entries, 12, FRI, Session.AM)
        assert grant.source is RotaSource.REST
        assert grant.duty_id == 3 and grant.duty_name == "SPA"
        assert not grant.is_rest_off

        adams = _entry(entries, 1, FRI, Session.AM)
        assert adams.source is RotaSource.ONCALL

        baker = _entry(entries, 2, FRI, Session.AM)
        assert baker.source is RotaSource.JOBPLAN
        assert baker.duty_name == "Clinic" and baker.duty_color == "#9DC3E6"

    def test_job_plan_carries_supporting_consultant(self, rota_clinic):
        entries = compute_schedule(rota_clinic, WED, WED)
        evans = _entry(entries, 10, WED, Session.AM)
        assert evans.source is RotaSource.JOBPLAN
        assert evans.duty_id == 1
        assert evans.supporting_clinician_name == "Dr Adams"

    def test_weekend_without_oncall_is_empty(self, rota_clinic):
        entries = compute_schedule(rota_clinic, SUN, SUN)
        baker = _entry(entries, 2, SUN, Session.AM)
        assert baker.source is RotaSource.JOBPLAN
        assert baker.duty_id is None

    def test_full_leave_beats_oncall(self, rota_clinic):
        rota_clinic.add_leave(Leave(None, 10, FRI, Session.FULL, LeaveType.ANNUAL))
        entries = compute_schedule(rota_clinic, FRI, FRI)
        for session in (Session.AM, Session.PM):
            e = _entry(entries, 10, FRI, session)
            assert e.source is RotaSource.LEAVE
            assert e.is_leave and e.leave_type is LeaveType.ANNUAL

    def test_half_day_leave(self, rota_clinic):
        rota_clinic.add_leave(Leave(None, 10, FRI, Session.AM, LeaveType.STUDY))
        entries = compute_schedule(rota_clinic, FRI, FRI)
        assert _entry(entries, 10, FRI, Session.AM).source is RotaSource.LEAVE
        assert _entry(entries, 10, FRI, Session.PM).source is RotaSource.ONCALL

    def test_manual_beats_rest(self, rota_clinic):
        row = rota_clinic.upsert_rota_entry(RotaEntry(FRI, 11, Session.AM, RotaSource.MANUAL, duty_id=1))
        entries = compute_schedule(rota_clinic, FRI, FRI)
        am = _entry(entries, 11, FRI, Session.AM)
        assert am.source is RotaSource.MANUAL
        assert am.manual_override_id == row.id
        assert _entry(entries, 11, FRI, Session.PM).source is RotaSource.REST

    def test_full_manual_row_applies_to_both_halves(self, rota_clinic):
        rota_clinic.upsert_rota_entry(RotaEntry(WED, 10, Session.FULL, RotaSource.MANUAL, duty_id=4))
        entries = compute_schedule(rota_clinic, WED, WED)
        assert _entry(entries, 10, WED, Session.AM).duty_name == "Admin"
        assert _entry(entries, 10, WED, Session.PM).duty_name == "Admin"

    def test_assigned_coverage_shown_for_assignee(self, rota_clinic):
        rota_clinic.add_coverage_request(CoverageRequest(
            WED, Session.PM, 1, CoverageReason.MANUAL, status=CoverageStatus.ASSIGNED,
            consultant_id=2, assigned_registrar_id=10,
        ))
        entries = compute_schedule(rota_clinic, WED, WED)
        pm = _entry(entries, 10, WED, Session.PM)
        assert pm.source is RotaSource.MANUAL
        assert pm.duty_name == "Theatre"
        assert pm.supporting_clinician_name == "Dr Baker"
        assert _entry(entries, 10, WED, Session.AM).source is RotaSource.JOBPLAN

    def test_pending_coverage_not_shown(self, rota_clinic):
        rota_clinic.add_coverage_request(CoverageRequest(
            WED, Session.PM, 1, CoverageReason.MANUAL, assigned_registrar_id=10,
        ))
        entries = compute_schedule(rota_clinic, WED, WED)
        assert _entry(entries, 10, WED, Session.PM).duty_name == "Clinic"

    def test_coverage_for_missing_duty_ignored(self, rota_clinic):
        rota_clinic.add_coverage_request(CoverageRequest(
            WED, Session.PM, 99, CoverageReason.MANUAL, status=CoverageStatus.ASSIGNED,
            assigned_registrar_id=10,
        ))
        entries = compute_schedule(rota_clinic, WED, WED)
        assert _entry(entries, 10, WED, Session.PM).source is RotaSource.JOBPLAN

    def test_persisted_rest_row_wins(self, rota_clinic):
        rota_clinic.upsert_rota_entry(RotaEntry(WED, 10, Session.FULL, RotaSource.REST))
        entries = compute_schedule(rota_clinic, WED, WED)
        pm = _entry(entries, 10, WED, Session.PM)
        assert pm.source is RotaSource.REST and pm.is_rest_off


class TestHelpers:

    def test_half_session_row_wins_over_full(self):
        full = Leave(1, 10, FRI, Session.FULL, LeaveType.ANNUAL)
        half = Leave(2, 10, FRI, Session.AM, LeaveType.SICK)
        index = index_by_session([half, full], lambda lv: (lv.date, lv.clinician_id, lv.session))
        assert index[(FRI, 10, Session.AM)].id == 2
        assert index[(FRI, 10, Session.PM)].id == 1

    def test_today_oncall(self, rota_clinic):
        assert get_today_oncall(rota_clinic, FRI) == {
            "consultant": {"id": 1, "name": "Dr Adams"},
            "registrar": {"id": 10, "name": "Dr Evans"},
        }

    def test_today_oncall_without_rotation(self, clinic):
        assert get_today_oncall(clinic, FRI) == {"consultant": None, "registrar": None}
