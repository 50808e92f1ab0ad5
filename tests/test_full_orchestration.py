"""
tests/test_full_orchestration.py

End-to-end run over the sample config/ tables:
  1. Validate rotation setup (3 consultants weekly, 3 registrars daily)
  2. Materialize a month of rota entries
  3. Record registrar leave, raise and auto-assign coverage
  4. Compose the effective schedule, check it, export CSV + Excel + report
  5. Drive the same flow through the command-line front end

Run with:
  python -m pytest tests/test_full_orchestration.py -v
"""

import csv
import shutil
import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.auto_assign import bulk_auto_assign
from rota_engine.checks import RotaChecker, validate_rotation_setup
from rota_engine.cli import main, run_schedule
from rota_engine.composer import compute_schedule, get_today_oncall
from rota_engine.config import DEFAULT_CONFIG_DIR, load_store
from rota_engine.leave_events import record_leave
from rota_engine.materializer import generate_rota
from rota_engine.models import CoverageStatus, CoverageType, Role, RotaSource, Session

MARCH_START = date(2024, 3, 1)
MARCH_END = date(2024, 3, 31)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir(tmp_path):
    target = tmp_path / "config"
    shutil.copytree(DEFAULT_CONFIG_DIR, target)
    return target


@pytest.fixture
def store(config_dir):
    return load_store(config_dir)


# ---------------------------------------------------------------------------
# Engine flow
# ---------------------------------------------------------------------------

class TestEngineFlow:

    def test_rotation_setup(self, store):
        errors, warnings = validate_rotation_setup(store)
        assert errors == []
        assert warnings == []

    def test_everyone_on_call_once_per_cycle(self, store):
        oncall = get_today_oncall(store, date(2024, 1, 1))
        assert oncall["consultant"]["name"] == "Dr Adams"
        assert oncall["registrar"]["name"] == "Dr Evans"

    def test_month_materialized(self, store):
        summary = generate_rota(store, MARCH_START, MARCH_END)
        assert summary["created"] > 0
        rows = store.find_rota_entries(start=MARCH_START, end=MARCH_END)
        keys = [r.key for r in rows]
        assert len(keys) == len(set(keys))
        assert {r.source for r in rows} >= {RotaSource.JOBPLAN, RotaSource.ONCALL, RotaSource.REST, RotaSource.LEAVE}
        assert summary["consultant_requests"] > 0

    def test_leave_to_assignment(self, store):
        result = record_leave(store, 4, date(2024, 3, 4), Session.FULL, "annual")
        assert result["requests_created"] == 2

        summary = bulk_auto_assign(store, date(2024, 3, 4), date(2024, 3, 4))
        requests = store.find_coverage_requests(start=date(2024, 3, 4), end=date(2024, 3, 4),
                                                coverage_type=CoverageType.REGISTRAR)
        assert summary["assigned"] + summary["failed"] == 2
        for request in requests:
            if request.status is CoverageStatus.ASSIGNED:
                assert request.assigned_registrar_id in (5, 6)

    def test_composed_schedule_passes_hard_checks(self, store):
        generate_rota(store, MARCH_START, MARCH_END)
        entries = compute_schedule(store, MARCH_START, MARCH_END)
        assert len(entries) == 31 * 6 * 2
        checker = RotaChecker(store.find_clinicians(), rotation_roles={Role.CONSULTANT, Role.REGISTRAR})
        hard, _ = checker.check_all(entries, MARCH_START, MARCH_END)
        assert hard == []

    def test_run_schedule_outputs(self, store, tmp_path):
        result = run_schedule(store, date(2024, 3, 4), date(2024, 3, 10), tmp_path / "out")
        for path in result["outputs"].values():
            assert path.exists()
        with open(result["outputs"]["csv"], newline="") as f:
            assert len(list(csv.DictReader(f))) == 7 * 6 * 2


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

class TestCommandLine:

    def _run(self, config_dir, tmp_path, *args):
        return main(["--config-dir", str(config_dir), "--output-dir", str(tmp_path / "out"), *args])

    def test_schedule(self, config_dir, tmp_path, capsys):
        assert self._run(config_dir, tmp_path, "schedule", "--start", "2024-03-04", "--end", "2024-03-10") == 0
        assert "EFFECTIVE SCHEDULE" in capsys.readouterr().out
        assert (tmp_path / "out" / "rota_2024-03-04_2024-03-10.xlsx").exists()

    def test_check(self, config_dir, tmp_path, capsys):
        assert self._run(config_dir, tmp_path, "check", "--today", "2024-01-01") == 0
        assert "Rotation setup valid" in capsys.readouterr().out

    def test_leave_saved(self, config_dir, tmp_path):
        code = self._run(config_dir, tmp_path, "leave", "--clinician", "4", "--date", "2024-03-04",
                         "--session", "full", "--type", "Study", "--save")
        assert code == 0
        reloaded = load_store(config_dir)
        assert len(reloaded.find_coverage_requests()) == 2
        assert len(reloaded.find_leaves(clinician_id=4)) == 1

    def test_generate_without_save_leaves_files_alone(self, config_dir, tmp_path):
        before = (config_dir / "rota_entries.csv").read_text()
        assert self._run(config_dir, tmp_path, "generate", "--start", "2024-03-04", "--end", "2024-03-08") == 0
        assert (config_dir / "rota_entries.csv").read_text() == before

    def test_unknown_request(self, config_dir, tmp_path, capsys):
        assert self._run(config_dir, tmp_path, "suggest", "--request-id", "999") == 1
        assert "Error:" in capsys.readouterr().out

    def test_missing_config(self, tmp_path, capsys):
        assert main(["--config-dir", str(tmp_path / "nowhere"), "check"]) == 1
        assert "Required file not found" in capsys.readouterr().out
