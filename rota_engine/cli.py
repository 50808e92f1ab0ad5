"""
cli.py — Command-line front end for the rota engine

Loads the CSV sources of truth (config.load_store), runs one operation and
writes its outputs. Mutating commands only touch the in-memory copy unless
--save is given, in which case leaves.csv, rota_entries.csv and
coverage_requests.csv are written back to the config directory.

Usage:
  python -m rota_engine.cli schedule    --start 2024-03-01 --end 2024-03-31
  python -m rota_engine.cli generate    --start 2024-03-01 --end 2024-03-31 --save
  python -m rota_engine.cli regenerate  --today 2024-03-15 --save
  python -m rota_engine.cli leave       --clinician 7 --date 2024-03-12 --session FULL --type annual --save
  python -m rota_engine.cli suggest     --request-id 12
  python -m rota_engine.cli auto-assign --start 2024-03-01 --end 2024-03-31 --save
  python -m rota_engine.cli check
"""

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from .audit import LoggingAuditSink
from .auto_assign import bulk_auto_assign, auto_assign_coverage, suggest_for_request
from .checks import RotaChecker, validate_rotation_setup
from .composer import compute_schedule, get_today_oncall
from .config import (
    DEFAULT_CONFIG_DIR,
    PROJECT_ROOT,
    get_config,
    load_store,
    save_coverage_requests,
    save_leaves,
    save_rota_entries,
)
from .coverage import pending_count
from .dates import parse_date, validate_range
from .errors import NotFoundError, RotaError
from .exporter import export_schedule_csv, export_schedule_excel, export_workload_report
from .leave_events import record_leave
from .materializer import generate_rota, run_regeneration
from .metrics import calculate_workload_metrics
from .models import CoverageStatus, LeaveType, Role, Session, parse_enum
from .rotation import OnCallLookup
from .store import InMemoryStore

logger = logging.getLogger(__name__)

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
SEP = "=" * 70


def _banner(title: str, period: str = "") -> None:
    print(f"\n{SEP}")
    print(f"  {title}")
    if period:
        print(f"  Period: {period}")
    print(f"{SEP}\n")


def _persist(store: InMemoryStore, config_dir: Path, save: bool) -> None:
    if not save:
        print("  (not saved; pass --save to write leaves, rota entries and coverage requests)")
        return
    save_leaves(store, config_dir / "leaves.csv")
    save_rota_entries(store, config_dir / "rota_entries.csv")
    save_coverage_requests(store, config_dir / "coverage_requests.csv")
    print(f"  ✓ Saved leaves, rota entries and coverage requests to {config_dir}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def run_schedule(store: InMemoryStore, start: date, end: date, output_dir: Path) -> Dict[str, Any]:
    """Compose, check and export the effective schedule for [start, end]."""
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = f"rota_{start}_{end}"
    _banner("EFFECTIVE SCHEDULE", f"{start} → {end}")

    entries = compute_schedule(store, start, end)
    print(f"  ✓ {len(entries)} entries")

    lookup = OnCallLookup.from_store(store, start, end)
    checker = RotaChecker(
        clinicians=store.find_clinicians(active_only=False),
        pending_requests=store.find_coverage_requests(start=start, end=end, status=CoverageStatus.PENDING),
        rotation_roles={role for role in Role if lookup.has_rotation(role)},
    )
    hard, soft = checker.check_all(entries, start, end)
    metrics = calculate_workload_metrics(entries)

    csv_path = output_dir / f"{prefix}.csv"
    xlsx_path = output_dir / f"{prefix}.xlsx"
    report_path = output_dir / f"{prefix}_workload.txt"
    violations_path = output_dir / f"{prefix}_violations.txt"

    export_schedule_csv(entries, csv_path)
    export_schedule_excel(entries, xlsx_path)
    export_workload_report(metrics, report_path, label=f"{start} → {end}")
    with open(violations_path, "w") as f:
        f.write("=== Rota Violations ===\n\n")
        f.write(f"HARD ({len(hard)}):\n")
        for v in hard:
            f.write(f"  {v}\n")
        f.write(f"\nSOFT ({len(soft)}):\n")
        for v in soft:
            f.write(f"  {v}\n")

    status = "✓" if not hard else "✗"
    print(f"  {status} Hard violations: {len(hard)}")
    print(f"    Soft violations: {len(soft)}")
    for role, spread in metrics["per_role"].items():
        print(f"    {role:<12} load CV {spread['cv']:6.2f}%")
    print(f"\n  ✓ CSV:        {csv_path.name}")
    print(f"  ✓ Excel:      {xlsx_path.name}")
    print(f"  ✓ Workload:   {report_path.name}")
    print(f"  ✓ Violations: {violations_path.name}")
    print(f"\n{SEP}\n")

    return {
        "entries": entries,
        "metrics": metrics,
        "hard_violations": hard,
        "soft_violations": soft,
        "outputs": {"csv": csv_path, "excel": xlsx_path, "report": report_path, "violations": violations_path},
    }


def _print_counts(title: str, counts: Dict[str, Any]) -> None:
    print(f"  {title}")
    for key, value in counts.items():
        if not isinstance(value, (dict, list)):
            print(f"    {key:<20} {value}")


def _cmd_schedule(args, store, config_dir, output_dir) -> int:
    start, end = validate_range(args.start, args.end)
    result = run_schedule(store, start, end, output_dir)
    return 1 if result["hard_violations"] else 0


def _cmd_generate(args, store, config_dir, output_dir) -> int:
    start, end = validate_range(args.start, args.end)
    _banner("GENERATE ROTA", f"{start} → {end}")
    summary = generate_rota(store, start, end, audit=LoggingAuditSink())
    _print_counts("Materialized:", summary)
    _persist(store, config_dir, args.save)
    return 0


def _cmd_regenerate(args, store, config_dir, output_dir) -> int:
    today = parse_date(args.today, "today") if args.today else date.today()
    _banner("SCHEDULED REGENERATION", f"from {today}")
    result = run_regeneration(store, today, audit=LoggingAuditSink())
    _print_counts("Materialized:", result["rota"])
    print(f"  Needs detected:     {result['needs_detected']}")
    print(f"  Requests created:   {result['requests_created']}")
    print(f"  Pending requests:   {pending_count(store)}")
    _persist(store, config_dir, args.save)
    return 0


def _cmd_leave(args, store, config_dir, output_dir) -> int:
    d = parse_date(args.date)
    session = parse_enum(Session, args.session.upper(), "session")
    leave_type = parse_enum(LeaveType, args.type.lower(), "leave type")
    _banner("RECORD LEAVE", str(d))
    result = record_leave(store, args.clinician, d, session, leave_type, note=args.note, audit=LoggingAuditSink())
    print(f"  ✓ Leave #{result['leave'].id} recorded")
    print(f"  Coverage requests created: {result['requests_created']}")
    print(f"  Registrars freed:          {result['freed_registrars']}")
    _persist(store, config_dir, args.save)
    return 0


def _cmd_suggest(args, store, config_dir, output_dir) -> int:
    request = store.get_coverage_request(args.request_id)
    if request is None:
        raise NotFoundError("CoverageRequest", args.request_id)
    suggestions = suggest_for_request(store, request, get_config(args.settings))
    _banner(f"SUGGESTIONS FOR REQUEST #{request.id}", f"{request.date} {request.session.value}")
    for i, c in enumerate(suggestions.available, 1):
        print(f"  {i:>2}. {c.name:<24} {c.score:5.1f}  {'; '.join(c.reasons)}")
    if suggestions.unavailable:
        print("\n  Unavailable:")
        for u in suggestions.unavailable:
            print(f"    {u.name:<24} {u.reason}")
    print(f"\n{SEP}\n")
    return 0


def _cmd_auto_assign(args, store, config_dir, output_dir) -> int:
    settings = get_config(args.settings)
    audit = LoggingAuditSink()
    if args.request_id is not None:
        outcomes: List[Dict[str, Any]] = [auto_assign_coverage(store, args.request_id, audit=audit, settings=settings)]
        summary = {"assigned": int(outcomes[0]["success"]), "failed": int(not outcomes[0]["success"]),
                   "details": outcomes}
    else:
        start = parse_date(args.start, "start") if args.start else None
        end = parse_date(args.end, "end") if args.end else None
        summary = bulk_auto_assign(store, start, end, output_dir=output_dir, audit=audit, settings=settings)

    _banner("AUTO-ASSIGN COVERAGE")
    for d in summary["details"]:
        icon = "✓" if d["success"] else "✗"
        who = f"{d['assigned_name']} ({d['score']})" if d["success"] else d["error"]
        print(f"  {icon} #{d['request_id']:<5} {d.get('date', ''):<10} {d.get('session', ''):<3} {who}")
    print(f"\n  Assigned: {summary['assigned']}   Failed: {summary['failed']}")
    _persist(store, config_dir, args.save)
    return 0 if summary["failed"] == 0 else 1


def _cmd_check(args, store, config_dir, output_dir) -> int:
    _banner("ROTATION SETUP CHECK")
    errors, warnings = validate_rotation_setup(store)
    for err in errors:
        print(f"  ✗ ERROR: {err}")
    for w in warnings:
        print(f"  ⚠ WARNING: {w}")
    if not errors and not warnings:
        print("  ✓ Rotation setup valid")
    today = parse_date(args.today, "today") if args.today else date.today()
    print(f"\n  On call {today}: {json.dumps(get_today_oncall(store, today))}")
    print(f"\n{SEP}\n")
    return 1 if errors else 0


COMMANDS = {
    "schedule":    _cmd_schedule,
    "generate":    _cmd_generate,
    "regenerate":  _cmd_regenerate,
    "leave":       _cmd_leave,
    "suggest":     _cmd_suggest,
    "auto-assign": _cmd_auto_assign,
    "check":       _cmd_check,
}


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Clinical duty rota engine")
    parser.add_argument("--config-dir", default=None, help="Directory of source CSVs (default: config/)")
    parser.add_argument("--output-dir", default=None, help="Output directory (default: outputs/)")
    parser.add_argument("--settings",   default=None, help="settings.json path (default: <config-dir>/settings.json)")
    parser.add_argument("--verbose",    action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("schedule", help="Compose, check and export the effective schedule")
    p.add_argument("--start", required=True, help="Start date YYYY-MM-DD")
    p.add_argument("--end",   required=True, help="End date YYYY-MM-DD")

    p = sub.add_parser("generate", help="Materialize rota entries for a range")
    p.add_argument("--start", required=True, help="Start date YYYY-MM-DD")
    p.add_argument("--end",   required=True, help="End date YYYY-MM-DD")
    p.add_argument("--save",  action="store_true", help="Write results back to the config directory")

    p = sub.add_parser("regenerate", help="Regenerate the rolling horizon and raise coverage requests")
    p.add_argument("--today", default=None, help="Reference date (default: today)")
    p.add_argument("--save",  action="store_true", help="Write results back to the config directory")

    p = sub.add_parser("leave", help="Record leave and raise the resulting coverage requests")
    p.add_argument("--clinician", required=True, type=int, help="Clinician id")
    p.add_argument("--date",      required=True, help="Leave date YYYY-MM-DD")
    p.add_argument("--session",   default="FULL", help="AM, PM or FULL")
    p.add_argument("--type",      default="annual", help="annual, study, sick or professional")
    p.add_argument("--note",      default=None)
    p.add_argument("--save",      action="store_true", help="Write results back to the config directory")

    p = sub.add_parser("suggest", help="Ranked candidates for a coverage request")
    p.add_argument("--request-id", required=True, type=int)

    p = sub.add_parser("auto-assign", help="Auto-assign one or all pending coverage requests")
    p.add_argument("--request-id", type=int, default=None)
    p.add_argument("--start", default=None, help="Only requests on/after this date")
    p.add_argument("--end",   default=None, help="Only requests on/before this date")
    p.add_argument("--save",  action="store_true", help="Write results back to the config directory")

    p = sub.add_parser("check", help="Validate rotation setup and show today's on-call")
    p.add_argument("--today", default=None, help="Reference date (default: today)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config_dir = Path(args.config_dir) if args.config_dir else DEFAULT_CONFIG_DIR
    output_dir = Path(args.output_dir) if args.output_dir else OUTPUTS_DIR
    if args.settings is None:
        args.settings = config_dir / "settings.json"

    try:
        store = load_store(config_dir)
        return COMMANDS[args.command](args, store, config_dir, output_dir)
    except (RotaError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
