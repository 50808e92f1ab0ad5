"""
config.py — Loading rota sources of truth from CSV and engine settings

CSV files (config/ by default, one table each):
  clinicians.csv        id, name, role, grade, active
  duties.csv            id, name, color, requires_coverage, active
  job_plans.csv         clinician_id, week_no, day_of_week, am_duty_id, pm_duty_id,
                        am_supporting_clinician_id, pm_supporting_clinician_id
  oncall_config.csv     role, start_date, cycle_length
  oncall_slots.csv      id, role, position, name, active
  oncall_patterns.csv   day_of_cycle, slot_id            (registrar pattern)
  slot_assignments.csv  id, slot_id, clinician_id, effective_from, effective_to
  leaves.csv            id, clinician_id, date, session, type, note
  rota_entries.csv      id, date, clinician_id, session, source, duty_id,
                        is_oncall, supporting_clinician_id, note
  coverage_requests.csv id, date, session, duty_id, reason, type, status, ...

Only clinicians.csv is required; other missing files load as empty tables.
Blank cells mean "not set". Yes/no columns accept yes/true/1/y.

settings.json (optional) overrides rota_config defaults, e.g.
  {"score_bounds": {"min": -120, "max": 90}, "scoring_weights": {"duty_session": -2}}
"""

import copy
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .dates import parse_date
from .errors import ValidationError
from .models import (
    Clinician,
    CoverageReason,
    CoverageRequest,
    CoverageStatus,
    CoverageType,
    Duty,
    JobPlanWeek,
    Leave,
    LeaveType,
    OnCallConfig,
    OnCallPattern,
    OnCallSlot,
    Role,
    RotaEntry,
    RotaSource,
    Session,
    SlotAssignment,
    parse_enum,
    to_record,
)
from .rota_config import CONSULTANT_SCORING, SCORE_BOUNDS, SCORING_WEIGHTS
from .store import InMemoryStore

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_SETTINGS_PATH = DEFAULT_CONFIG_DIR / "settings.json"


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------

def _blank(value: Any) -> bool:
    return value is None or str(value).strip() == "" or str(value).strip().lower() == "nan"


def _parse_yes_no(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if _blank(value):
        return default
    return str(value).strip().lower() in ("yes", "true", "1", "y")


def _opt_bool(value: Any) -> Optional[bool]:
    return None if _blank(value) else _parse_yes_no(value)


def _opt_int(value: Any) -> Optional[int]:
    if _blank(value):
        return None
    try:
        return int(float(str(value).strip()))
    except ValueError:
        raise ValidationError(f"Expected an integer, got {value!r}")


def _opt_str(value: Any) -> Optional[str]:
    return None if _blank(value) else str(value).strip()


def _opt_date(value: Any):
    return None if _blank(value) else parse_date(str(value))


def _read_table(path: Path, required: bool = False) -> List[Dict[str, Any]]:
    """Read a CSV as a list of row dicts with every cell as a string."""
    import pandas as pd

    if not path.exists():
        if required:
            raise FileNotFoundError(f"Required file not found: {path}")
        logger.warning(f"{path.name} not found in {path.parent}; treating as empty")
        return []
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    return df.to_dict(orient="records")


def _load(path: Path, parse: Callable[[Dict[str, Any]], Any], required: bool = False) -> List[Any]:
    rows = _read_table(path, required=required)
    out = []
    for line_no, row in enumerate(rows, start=2):
        try:
            out.append(parse(row))
        except (ValidationError, KeyError, ValueError) as e:
            raise ValidationError(f"{path.name} line {line_no}: {e}")
    return out


# ---------------------------------------------------------------------------
# Row parsers
# ---------------------------------------------------------------------------

def _clinician(row: Dict[str, Any]) -> Clinician:
    return Clinician(
        id=int(row["id"]),
        name=str(row["name"]).strip(),
        role=parse_enum(Role, str(row["role"]).strip().lower(), "role"),
        grade=_opt_str(row.get("grade")),
        active=_parse_yes_no(row.get("active"), default=True),
    )


def _duty(row: Dict[str, Any]) -> Duty:
    return Duty(
        id=int(row["id"]),
        name=str(row["name"]).strip(),
        color=_opt_str(row.get("color")),
        requires_coverage=_opt_bool(row.get("requires_coverage")),
        active=_parse_yes_no(row.get("active"), default=True),
    )


def _job_plan(row: Dict[str, Any]) -> JobPlanWeek:
    plan = JobPlanWeek(
        clinician_id=int(row["clinician_id"]),
        week_no=int(row["week_no"]),
        day_of_week=int(row["day_of_week"]),
        am_duty_id=_opt_int(row.get("am_duty_id")),
        pm_duty_id=_opt_int(row.get("pm_duty_id")),
        am_supporting_clinician_id=_opt_int(row.get("am_supporting_clinician_id")),
        pm_supporting_clinician_id=_opt_int(row.get("pm_supporting_clinician_id")),
    )
    if not 1 <= plan.week_no <= 5 or not 1 <= plan.day_of_week <= 5:
        raise ValidationError(f"job plan week_no must be 1..5 and day_of_week 1..5, got "
                              f"{plan.week_no}/{plan.day_of_week}")
    return plan


def _oncall_config(row: Dict[str, Any]) -> OnCallConfig:
    cycle_length = int(row["cycle_length"])
    if cycle_length <= 0:
        raise ValidationError(f"cycle_length must be positive, got {cycle_length}")
    return OnCallConfig(
        role=parse_enum(Role, str(row["role"]).strip().lower(), "role"),
        start_date=parse_date(row["start_date"], "start_date"),
        cycle_length=cycle_length,
    )


def _slot(row: Dict[str, Any]) -> OnCallSlot:
    return OnCallSlot(
        id=int(row["id"]),
        role=parse_enum(Role, str(row["role"]).strip().lower(), "role"),
        position=int(row["position"]),
        name=_opt_str(row.get("name")),
        active=_parse_yes_no(row.get("active"), default=True),
    )


def _pattern(row: Dict[str, Any]) -> OnCallPattern:
    return OnCallPattern(role=Role.REGISTRAR, day_of_cycle=int(row["day_of_cycle"]), slot_id=int(row["slot_id"]))


def _assignment(row: Dict[str, Any]) -> SlotAssignment:
    return SlotAssignment(
        id=_opt_int(row.get("id")),
        slot_id=int(row["slot_id"]),
        clinician_id=int(row["clinician_id"]),
        effective_from=parse_date(row["effective_from"], "effective_from"),
        effective_to=_opt_date(row.get("effective_to")),
    )


def _leave(row: Dict[str, Any]) -> Leave:
    return Leave(
        id=_opt_int(row.get("id")),
        clinician_id=int(row["clinician_id"]),
        date=parse_date(row["date"]),
        session=parse_enum(Session, str(row["session"]).strip().upper(), "session"),
        type=parse_enum(LeaveType, str(row["type"]).strip().lower(), "leave type"),
        note=_opt_str(row.get("note")),
    )


def _rota_entry(row: Dict[str, Any]) -> RotaEntry:
    return RotaEntry(
        id=_opt_int(row.get("id")),
        date=parse_date(row["date"]),
        clinician_id=int(row["clinician_id"]),
        session=parse_enum(Session, str(row["session"]).strip().upper(), "session"),
        source=parse_enum(RotaSource, str(row.get("source") or "manual").strip().lower(), "source"),
        duty_id=_opt_int(row.get("duty_id")),
        is_oncall=_parse_yes_no(row.get("is_oncall")),
        supporting_clinician_id=_opt_int(row.get("supporting_clinician_id")),
        note=_opt_str(row.get("note")),
    )


def _coverage_request(row: Dict[str, Any]) -> CoverageRequest:
    assigned_at = _opt_str(row.get("assigned_at"))
    return CoverageRequest(
        id=_opt_int(row.get("id")),
        date=parse_date(row["date"]),
        session=parse_enum(Session, str(row["session"]).strip().upper(), "session"),
        duty_id=int(row["duty_id"]),
        reason=parse_enum(CoverageReason, str(row["reason"]).strip().lower(), "reason"),
        type=parse_enum(CoverageType, str(row.get("type") or "registrar").strip().lower(), "type"),
        status=parse_enum(CoverageStatus, str(row.get("status") or "pending").strip().lower(), "status"),
        consultant_id=_opt_int(row.get("consultant_id")),
        absent_registrar_id=_opt_int(row.get("absent_registrar_id")),
        absent_consultant_id=_opt_int(row.get("absent_consultant_id")),
        assigned_registrar_id=_opt_int(row.get("assigned_registrar_id")),
        assigned_consultant_id=_opt_int(row.get("assigned_consultant_id")),
        assigned_at=datetime.fromisoformat(assigned_at.replace("Z", "+00:00")) if assigned_at else None,
        assigned_by=_opt_str(row.get("assigned_by")),
        note=_opt_str(row.get("note")),
    )


# ---------------------------------------------------------------------------
# Store loader
# ---------------------------------------------------------------------------

def load_store(config_dir: Optional[Path] = None, store: Optional[InMemoryStore] = None) -> InMemoryStore:
    """Build an InMemoryStore from the CSV tables in config_dir."""
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    store = store or InMemoryStore()

    for clinician in _load(config_dir / "clinicians.csv", _clinician, required=True):
        store.add_clinician(clinician)
    for duty in _load(config_dir / "duties.csv", _duty):
        store.add_duty(duty)
    for plan in _load(config_dir / "job_plans.csv", _job_plan):
        store.put_job_plan(plan)
    for cfg in _load(config_dir / "oncall_config.csv", _oncall_config):
        store.put_oncall_config(cfg)
    for slot in _load(config_dir / "oncall_slots.csv", _slot):
        store.add_slot(slot)
    patterns = _load(config_dir / "oncall_patterns.csv", _pattern)
    if patterns:
        store.replace_patterns(Role.REGISTRAR, patterns)
    for assignment in _load(config_dir / "slot_assignments.csv", _assignment):
        store.add_slot_assignment(assignment)
    for leave in _load(config_dir / "leaves.csv", _leave):
        store.add_leave(leave)
    for entry in _load(config_dir / "rota_entries.csv", _rota_entry):
        store.upsert_rota_entry(entry)
    for request in _load(config_dir / "coverage_requests.csv", _coverage_request):
        store.add_coverage_request(request)

    logger.info(
        f"Loaded {len(store.clinicians)} clinicians, {len(store.duties)} duties, "
        f"{len(store.job_plans)} job plan days, {len(store.leaves)} leave rows from {config_dir}"
    )
    return store


def _write_table(records: List[Dict[str, Any]], columns: List[str], path: Path) -> None:
    import pandas as pd

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(records, columns=columns).to_csv(path, index=False)
    logger.info(f"Wrote {len(records)} rows → {path}")


def save_rota_entries(store: InMemoryStore, path: Path) -> None:
    columns = ["id", "date", "clinician_id", "session", "source", "duty_id",
               "is_oncall", "supporting_clinician_id", "note"]
    _write_table([to_record(e) for e in store.find_rota_entries()], columns, path)


def save_leaves(store: InMemoryStore, path: Path) -> None:
    columns = ["id", "clinician_id", "date", "session", "type", "note"]
    _write_table([to_record(lv) for lv in store.find_leaves()], columns, path)


def save_coverage_requests(store: InMemoryStore, path: Path) -> None:
    columns = ["id", "date", "session", "duty_id", "reason", "type", "status", "consultant_id",
               "absent_registrar_id", "absent_consultant_id", "assigned_registrar_id",
               "assigned_consultant_id", "assigned_at", "assigned_by", "note"]
    _write_table([to_record(r) for r in store.find_coverage_requests()], columns, path)


# ---------------------------------------------------------------------------
# Full config dict
# ---------------------------------------------------------------------------

def get_config(settings_path: Optional[Path] = None) -> Dict[str, Any]:
    """Engine defaults merged with overrides from settings.json (if present)."""
    config: Dict[str, Any] = {
        "scoring_weights":             copy.deepcopy(SCORING_WEIGHTS),
        "score_bounds":                copy.deepcopy(SCORE_BOUNDS),
        "consultant_scoring":          copy.deepcopy(CONSULTANT_SCORING),
    }
    path = Path(settings_path) if settings_path else DEFAULT_SETTINGS_PATH
    if not path.exists():
        return config

    with open(path) as f:
        overrides = json.load(f)
    for key, value in overrides.items():
        if key not in config:
            logger.warning(f"Ignoring unknown setting '{key}' in {path}")
            continue
        if isinstance(config[key], dict) and isinstance(value, dict):
            config[key].update(value)
        else:
            config[key] = value

    bounds = config["score_bounds"]
    if bounds["max"] <= bounds["min"]:
        raise ValidationError(f"score_bounds max ({bounds['max']}) must exceed min ({bounds['min']})")
    logger.info(f"Settings loaded from {path}")
    return config
