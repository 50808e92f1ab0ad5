"""
Tests for CSV loading, settings overrides and rota persistence
"""

import json
import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.checks import validate_rotation_setup
from rota_engine.config import DEFAULT_CONFIG_DIR, get_config, load_store, save_coverage_requests, save_rota_entries
from rota_engine.errors import ValidationError
from rota_engine.models import (
    CoverageReason,
    CoverageRequest,
    CoverageType,
    LeaveType,
    Role,
    RotaEntry,
    RotaSource,
    Session,
)
from rota_engine.rota_config import SCORING_WEIGHTS

CLINICIANS_CSV = """id,name,role,grade,active
1,Dr Adams,Consultant,,yes
10,Dr Evans,registrar,ST5,
11,Dr Old,registrar,ST3,no
"""


def _write(directory: Path, name: str, text: str) -> None:
    (directory / name).write_text(text)


@pytest.fixture
def config_dir(tmp_path):
    _write(tmp_path, "clinicians.csv", CLINICIANS_CSV)
    _write(tmp_path, "duties.csv", "id,name,color,requires_coverage,active\n1,Theatre,#F4B183,yes,yes\n3,SPA,,no,\n5,Teaching,,,\n")
    _write(tmp_path, "job_plans.csv",
           "clinician_id,week_no,day_of_week,am_duty_id,pm_duty_id,am_supporting_clinician_id,pm_supporting_clinician_id\n"
           "10,1,1,1,,1,\n")
    _write(tmp_path, "leaves.csv", "id,clinician_id,date,session,type,note\n1,10,2024-03-06,full,Annual,\n")
    return tmp_path


class TestLoadStore:

    def test_tables_parsed(self, config_dir):
        store = load_store(config_dir)
        adams = store.get_clinician(1)
        assert adams.role is Role.CONSULTANT
        assert store.get_clinician(10).active
        assert not store.get_clinician(11).active
        assert [c.id for c in store.find_clinicians()] == [1, 10]

        assert store.get_duty(1).requires_coverage is True
        assert store.get_duty(3).requires_coverage is False
        assert store.get_duty(5).requires_coverage is None
        assert store.get_duty(5).needs_coverage

        plan = store.get_job_plan(10, 1, 1)
        assert plan.am_duty_id == 1 and plan.pm_duty_id is None
        assert plan.am_supporting_clinician_id == 1

        leave = store.get_leave(1)
        assert leave.session is Session.FULL and leave.type is LeaveType.ANNUAL

    def test_missing_optional_tables_are_empty(self, config_dir):
        store = load_store(config_dir)
        assert store.get_oncall_config(Role.REGISTRAR) is None
        assert store.find_slots() == []
        assert store.find_rota_entries() == []

    def test_clinicians_required(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_store(tmp_path)

    def test_bad_row_reports_line(self, tmp_path):
        _write(tmp_path, "clinicians.csv", "id,name,role\n1,Dr Adams,surgeon\n")
        with pytest.raises(ValidationError, match="clinicians.csv line 2"):
            load_store(tmp_path)

    def test_job_plan_week_out_of_range(self, config_dir):
        _write(config_dir, "job_plans.csv", "clinician_id,week_no,day_of_week,am_duty_id,pm_duty_id\n10,6,1,1,1\n")
        with pytest.raises(ValidationError, match="job_plans.csv line 2"):
            load_store(config_dir)

    def test_sample_config(self):
        store = load_store(DEFAULT_CONFIG_DIR)
        assert len(store.find_clinicians()) == 6
        assert len(store.find_duties()) == 4
        assert len(store.find_job_plans()) == 150
        assert store.get_oncall_config(Role.CONSULTANT).cycle_length == 3
        assert validate_rotation_setup(store) == ([], [])


class TestSaveTables:

    def test_rota_entries_round_trip(self, config_dir):
        store = load_store(config_dir)
        store.upsert_rota_entry(RotaEntry(date(2024, 3, 4), 10, Session.AM, RotaSource.MANUAL,
                                          duty_id=1, supporting_clinician_id=1, note="swap"))
        store.upsert_rota_entry(RotaEntry(date(2024, 3, 4), 1, Session.FULL, RotaSource.ONCALL, is_oncall=True))
        save_rota_entries(store, config_dir / "rota_entries.csv")

        reloaded = load_store(config_dir)
        manual = reloaded.get_rota_entry(date(2024, 3, 4), 10, Session.AM)
        assert manual.source is RotaSource.MANUAL
        assert (manual.duty_id, manual.supporting_clinician_id, manual.note) == (1, 1, "swap")
        oncall = reloaded.get_rota_entry(date(2024, 3, 4), 1, Session.FULL)
        assert oncall.is_oncall and oncall.duty_id is None

    def test_coverage_requests_round_trip(self, config_dir):
        store = load_store(config_dir)
        store.add_coverage_request(CoverageRequest(
            date(2024, 3, 6), Session.PM, 1, CoverageReason.ONCALL_CONFLICT,
            type=CoverageType.CONSULTANT, absent_consultant_id=1,
        ))
        save_coverage_requests(store, config_dir / "coverage_requests.csv")

        request = load_store(config_dir).find_coverage_requests()[0]
        assert request.type is CoverageType.CONSULTANT
        assert request.reason is CoverageReason.ONCALL_CONFLICT
        assert request.absent_consultant_id == 1
        assert request.assigned_at is None


class TestGetConfig:

    def test_defaults_without_file(self, tmp_path):
        config = get_config(tmp_path / "missing.json")
        assert config["scoring_weights"] == SCORING_WEIGHTS
        assert config["score_bounds"] == {"min": -150.0, "max": 90.0}

    def test_overrides_merge(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "score_bounds": {"min": -100},
            "scoring_weights": {"duty_session": -2},
            "colour_scheme": "dark",
        }))
        config = get_config(path)
        assert config["score_bounds"] == {"min": -100, "max": 90.0}
        assert config["scoring_weights"]["duty_session"] == -2
        assert config["scoring_weights"]["oncall_day"] == -8.0
        assert "colour_scheme" not in config

    def test_defaults_not_mutated(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"scoring_weights": {"oncall_day": 0}}))
        get_config(path)
        assert SCORING_WEIGHTS["oncall_day"] == -8.0

    def test_bad_bounds(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"score_bounds": {"max": -200}}))
        with pytest.raises(ValidationError):
            get_config(path)
