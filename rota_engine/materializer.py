"""
materializer.py — Rota Materializer: persist the derived rota as RotaEntry rows

generate_rota(store, start, end) writes, for each active clinician × date ×
half-session, the row the sources of truth call for:

  leave   → source 'leave'
  rest    → source 'rest' (registrars)
  on-call → source 'oncall', is_oncall=True
  weekday → source 'jobplan' with duty and supporting clinician

Rows with a pinned source (manual, leave, rest) are never overwritten.
Regenerable rows (jobplan, oncall) are rewritten when their inputs change
and removed when nothing drives them any more. A registrar whose supporting
consultant is on leave or on-call that session is left free rather than
re-created. After the pass, consultant impact runs for every consultant
on-call date and the resulting consultant coverage requests are created.

Running the same range twice leaves identical rows.

run_regeneration(store, today) is the entry point for an external monthly
scheduler: current month plus the following REGENERATION_HORIZON_MONTHS - 1.
"""

import logging
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional, Set, Tuple

from .audit import AuditSink, resolve_sink
from .composer import index_by_session
from .coverage import create_coverage_requests, detect_coverage_needs
from .dates import add_days, date_range, day_of_week, format_date, is_weekday, job_plan_week, month_horizon, validate_range
from .impact import detect_consultant_impact
from .models import (
    HALF_SESSIONS,
    Clinician,
    CoverageNeed,
    CoverageReason,
    JobPlanWeek,
    Leave,
    Role,
    RotaEntry,
    RotaSource,
    Session,
)
from .rest_days import derive_rest_days, find_spa_duty, index_rest_days
from .rota_config import PINNED_SOURCES, REGENERATION_HORIZON_MONTHS, REST_LOOKAROUND_DAYS
from .rotation import OnCallLookup
from .store import RotaStore, call_with_retry

logger = logging.getLogger(__name__)


def _desired_entry(
    clinician: Clinician,
    d: date,
    half: Session,
    leaves: Dict[Tuple[date, int, Session], Leave],
    rest,
    lookup: OnCallLookup,
    plans: Dict[Tuple[int, int, int], JobPlanWeek],
    absent_consultants: Set[Tuple[date, int, Session]],
) -> Optional[RotaEntry]:
    key = (d, clinician.id, half)
    if key in leaves:
        return RotaEntry(d, clinician.id, half, RotaSource.LEAVE)

    if clinician.role is Role.REGISTRAR and key in rest:
        return RotaEntry(d, clinician.id, half, RotaSource.REST, duty_id=rest[key].duty_id)

    if lookup.get(d, clinician.role) == clinician.id:
        return RotaEntry(d, clinician.id, half, RotaSource.ONCALL, is_oncall=True)

    if not is_weekday(d):
        return None
    plan = plans.get((clinician.id, job_plan_week(d), day_of_week(d)))
    if plan is None:
        return None
    supporting = plan.supporting_for(half)
    if clinician.role is Role.REGISTRAR and supporting is not None and (d, supporting, half) in absent_consultants:
        logger.debug(f"{clinician.name} {d} {half.value}: supporting consultant #{supporting} absent, left free")
        return None
    return RotaEntry(d, clinician.id, half, RotaSource.JOBPLAN,
                     duty_id=plan.duty_for(half), supporting_clinician_id=supporting)


def generate_rota(
    store: RotaStore,
    start: date,
    end: date,
    audit: Optional[AuditSink] = None,
) -> Dict[str, Any]:
    """
    Materialize [start, end]. Serialized with other runs by the
    'generate_rota' advisory lock.

    Returns counts: created, updated, unchanged, deleted, skipped_pinned,
    freed_registrars, consultant_requests.
    """
    start, end = validate_range(start, end)
    sink = resolve_sink(audit)
    stats: Counter = Counter()

    with store.advisory_lock("generate_rota"):
        clinicians = sorted(store.find_clinicians(), key=lambda c: (c.role.value, c.name))
        plans = {(p.clinician_id, p.week_no, p.day_of_week): p for p in store.find_job_plans()}
        lookup = OnCallLookup.from_store(
            store, add_days(start, -REST_LOOKAROUND_DAYS), add_days(end, REST_LOOKAROUND_DAYS)
        )
        spa = find_spa_duty(store.find_duties(active_only=True))
        registrar_ids = {c.id for c in clinicians if c.role is Role.REGISTRAR}
        rest = index_rest_days(derive_rest_days(
            start, end, lambda d: lookup.get(d, Role.REGISTRAR), registrar_ids, spa.id if spa else None,
        ))
        leaves = index_by_session(store.find_leaves(start=start, end=end),
                                  lambda lv: (lv.date, lv.clinician_id, lv.session))
        existing = {e.key: e for e in store.find_rota_entries(start=start, end=end)}

        consultant_ids = {c.id for c in clinicians if c.role is Role.CONSULTANT}
        absent_consultants: Set[Tuple[date, int, Session]] = {
            key for key in leaves if key[1] in consultant_ids
        }
        oncall_consultant_dates: List[Tuple[date, int]] = []
        for d in date_range(start, end):
            cid = lookup.get(d, Role.CONSULTANT)
            if cid in consultant_ids:
                oncall_consultant_dates.append((d, cid))
                for half in HALF_SESSIONS:
                    absent_consultants.add((d, cid, half))

        for d in date_range(start, end):
            for clinician in clinicians:
                for half in HALF_SESSIONS:
                    current = existing.get((d, clinician.id, half))
                    if current is not None and current.source in PINNED_SOURCES:
                        stats["skipped_pinned"] += 1
                        continue
                    desired = _desired_entry(clinician, d, half, leaves, rest, lookup, plans, absent_consultants)
                    if desired is None:
                        if current is not None:
                            call_with_retry(store.delete_rota_entry, current.id)
                            sink.record("delete", "rotaEntry", current.id, current, None)
                            stats["deleted"] += 1
                        continue
                    if current is not None and current.same_content(desired):
                        stats["unchanged"] += 1
                        continue
                    call_with_retry(store.upsert_rota_entry, desired)
                    stats["updated" if current is not None else "created"] += 1

        needs: List[CoverageNeed] = []
        freed = 0
        for d, cid in oncall_consultant_dates:
            impact = detect_consultant_impact(store, cid, d, Session.FULL, CoverageReason.ONCALL_CONFLICT, audit=sink)
            needs.extend(impact.needs)
            freed += len(impact.freed_registrars)
        stats["freed_registrars"] = freed
        stats["consultant_requests"] = create_coverage_requests(store, needs, audit=sink)

    summary = {
        "start": format_date(start),
        "end": format_date(end),
        **{k: stats.get(k, 0) for k in (
            "created", "updated", "unchanged", "deleted", "skipped_pinned",
            "freed_registrars", "consultant_requests",
        )},
    }
    logger.info(
        f"Rota {start} → {end}: {summary['created']} created, {summary['updated']} updated, "
        f"{summary['deleted']} deleted, {summary['skipped_pinned']} pinned kept"
    )
    sink.record("generate", "rota", f"{summary['start']}..{summary['end']}", None, summary)
    return summary


def run_regeneration(
    store: RotaStore,
    today: Optional[date] = None,
    audit: Optional[AuditSink] = None,
) -> Dict[str, Any]:
    """Regenerate the rolling horizon and raise registrar coverage requests."""
    today = today or date.today()
    start, end = month_horizon(today, REGENERATION_HORIZON_MONTHS)
    sink = resolve_sink(audit)
    logger.info(f"Scheduled regeneration {start} → {end}")
    try:
        rota = generate_rota(store, start, end, audit=sink)
        needs = detect_coverage_needs(store, start, end)
        created = create_coverage_requests(store, needs, audit=sink)
    except Exception as e:
        logger.error(f"Scheduled regeneration failed: {e}")
        sink.record("scheduled-regenerate-error", "rota", format_date(today), None,
                    {"start": format_date(start), "end": format_date(end), "error": str(e)})
        raise

    result = {"rota": rota, "needs_detected": len(needs), "requests_created": created}
    sink.record("scheduled-regenerate", "rota", format_date(today), None, result)
    return result
