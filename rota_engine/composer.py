"""
composer.py — Schedule Composer: the effective rota for a date range

For every active clinician × date × session exactly one ScheduleEntry is
produced. Each resolver in PRECEDENCE either claims the slot or passes:

  leave → manual → rest (registrars) → assigned coverage → on-call → job plan

and an empty entry (source jobplan, no duty) is emitted when none claims it.

All inputs are fetched up front into a read-only ScheduleIndex, so composing
a range costs a fixed number of store calls regardless of its length.

Usage:
  entries = compute_schedule(store, date(2024, 3, 1), date(2024, 3, 31))
  get_today_oncall(store, date.today())  → {"consultant": {...}, "registrar": {...}}
"""

import logging
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .dates import add_days, date_range, day_of_week, is_weekday, job_plan_week, validate_range
from .models import (
    HALF_SESSIONS,
    Clinician,
    CoverageRequest,
    CoverageStatus,
    Duty,
    JobPlanWeek,
    Leave,
    RestDay,
    Role,
    RotaEntry,
    RotaSource,
    ScheduleEntry,
    Session,
)
from .rest_days import find_spa_duty, derive_rest_days
from .rota_config import REST_LOOKAROUND_DAYS, REST_OFF_LABEL
from .rotation import OnCallLookup
from .store import RotaStore

logger = logging.getLogger(__name__)

SlotKey = Tuple[date, int, Session]


@dataclass(frozen=True)
class ScheduleIndex:
    """Lookups built once per compute_schedule call; never mutated afterwards."""
    clinicians: Mapping[int, Clinician]
    duties: Mapping[int, Duty]
    job_plans: Mapping[Tuple[int, int, int], JobPlanWeek]
    leaves: Mapping[SlotKey, Leave]
    manual: Mapping[SlotKey, RotaEntry]
    rest: Mapping[SlotKey, RestDay]
    coverage: Mapping[SlotKey, CoverageRequest]
    oncall: OnCallLookup


def index_by_session(rows, key_of) -> Dict[SlotKey, Any]:
    """Expand FULL rows onto AM and PM; a half-session row wins over a FULL one."""
    out: Dict[SlotKey, Any] = {}
    for row in rows:
        d, clinician_id, session = key_of(row)
        for half in session.halves():
            key = (d, clinician_id, half)
            if key in out and session is Session.FULL:
                continue
            out[key] = row
    return out


def build_schedule_index(store: RotaStore, start: date, end: date) -> ScheduleIndex:
    clinicians = {c.id: c for c in store.find_clinicians(active_only=False)}
    duties = {d.id: d for d in store.find_duties()}
    job_plans = {(p.clinician_id, p.week_no, p.day_of_week): p for p in store.find_job_plans()}
    leaves = index_by_session(store.find_leaves(start=start, end=end),
                              lambda lv: (lv.date, lv.clinician_id, lv.session))
    manual = index_by_session(store.find_rota_entries(start=start, end=end, sources=[RotaSource.MANUAL]),
                              lambda e: (e.date, e.clinician_id, e.session))

    oncall = OnCallLookup.from_store(
        store, add_days(start, -REST_LOOKAROUND_DAYS), add_days(end, REST_LOOKAROUND_DAYS)
    )

    # Persisted rest rows win over freshly derived ones
    registrar_ids = {c.id for c in clinicians.values() if c.role is Role.REGISTRAR and c.active}
    spa = find_spa_duty(duties.values())
    rest: Dict[SlotKey, RestDay] = {
        (r.date, r.clinician_id, r.session): r
        for r in derive_rest_days(start, end, lambda d: oncall.get(d, Role.REGISTRAR),
                                  registrar_ids, spa.id if spa else None)
    }
    for row in store.find_rota_entries(start=start, end=end, sources=[RotaSource.REST]):
        for half in row.session.halves():
            rest[(row.date, row.clinician_id, half)] = RestDay(
                row.date, row.clinician_id, half, row.duty_id, is_off=row.duty_id is None,
            )

    coverage: Dict[SlotKey, CoverageRequest] = {}
    for request in store.find_coverage_requests(start=start, end=end, status=CoverageStatus.ASSIGNED):
        if request.assignee_id is None:
            continue
        if request.duty_id not in duties:
            logger.warning(f"Coverage request #{request.id} refers to missing duty #{request.duty_id}; ignored")
            continue
        coverage[(request.date, request.assignee_id, request.session)] = request

    return ScheduleIndex(
        clinicians=MappingProxyType(clinicians),
        duties=MappingProxyType(duties),
        job_plans=MappingProxyType(job_plans),
        leaves=MappingProxyType(leaves),
        manual=MappingProxyType(manual),
        rest=MappingProxyType(rest),
        coverage=MappingProxyType(coverage),
        oncall=oncall,
    )


# ---------------------------------------------------------------------------
# Resolvers (in precedence order)
# ---------------------------------------------------------------------------

def _entry(index: ScheduleIndex, clinician: Clinician, d: date, session: Session,
           source: RotaSource, duty_id: Optional[int] = None,
           supporting_id: Optional[int] = None, **flags: Any) -> ScheduleEntry:
    duty = index.duties.get(duty_id) if duty_id is not None else None
    supporting = index.clinicians.get(supporting_id) if supporting_id is not None else None
    return ScheduleEntry(
        date=d,
        clinician_id=clinician.id,
        clinician_name=clinician.name,
        clinician_role=clinician.role,
        session=session,
        source=source,
        duty_id=duty_id,
        duty_name=duty.name if duty else None,
        duty_color=duty.color if duty else None,
        supporting_clinician_id=supporting_id,
        supporting_clinician_name=supporting.name if supporting else None,
        **flags,
    )


def _from_leave(index, clinician, d, session) -> Optional[ScheduleEntry]:
    leave = index.leaves.get((d, clinician.id, session))
    if leave is None:
        return None
    return _entry(index, clinician, d, session, RotaSource.LEAVE, is_leave=True, leave_type=leave.type)


def _from_manual(index, clinician, d, session) -> Optional[ScheduleEntry]:
    row = index.manual.get((d, clinician.id, session))
    if row is None:
        return None
    return _entry(index, clinician, d, session, RotaSource.MANUAL, row.duty_id,
                  row.supporting_clinician_id, is_oncall=row.is_oncall, manual_override_id=row.id)


def _from_rest(index, clinician, d, session) -> Optional[ScheduleEntry]:
    if clinician.role is not Role.REGISTRAR:
        return None
    rest = index.rest.get((d, clinician.id, session))
    if rest is None:
        return None
    entry = _entry(index, clinician, d, session, RotaSource.REST, rest.duty_id,
                   is_rest=True, is_rest_off=rest.is_off)
    if rest.is_off:
        entry.duty_name = REST_OFF_LABEL
    return entry


def _from_coverage(index, clinician, d, session) -> Optional[ScheduleEntry]:
    request = index.coverage.get((d, clinician.id, session))
    if request is None:
        return None
    return _entry(index, clinician, d, session, RotaSource.MANUAL, request.duty_id, request.consultant_id)


def _from_oncall(index, clinician, d, session) -> Optional[ScheduleEntry]:
    if index.oncall.get(d, clinician.role) != clinician.id:
        return None
    return _entry(index, clinician, d, session, RotaSource.ONCALL, is_oncall=True)


def _from_job_plan(index, clinician, d, session) -> Optional[ScheduleEntry]:
    if not is_weekday(d):
        return None
    plan = index.job_plans.get((clinician.id, job_plan_week(d), day_of_week(d)))
    if plan is None:
        return None
    return _entry(index, clinician, d, session, RotaSource.JOBPLAN,
                  plan.duty_for(session), plan.supporting_for(session))


Resolver = Callable[[ScheduleIndex, Clinician, date, Session], Optional[ScheduleEntry]]

PRECEDENCE: Tuple[Resolver, ...] = (
    _from_leave,
    _from_manual,
    _from_rest,
    _from_coverage,
    _from_oncall,
    _from_job_plan,
)


def resolve_entry(index: ScheduleIndex, clinician: Clinician, d: date, session: Session) -> ScheduleEntry:
    for resolver in PRECEDENCE:
        entry = resolver(index, clinician, d, session)
        if entry is not None:
            return entry
    return _entry(index, clinician, d, session, RotaSource.JOBPLAN)


def compute_schedule(
    store: RotaStore,
    start: date,
    end: date,
    index: Optional[ScheduleIndex] = None,
) -> List[ScheduleEntry]:
    """
    Effective schedule for [start, end], ordered by date, then clinician
    (role, name), then session.
    """
    start, end = validate_range(start, end)
    index = index or build_schedule_index(store, start, end)
    clinicians = sorted(
        (c for c in index.clinicians.values() if c.active),
        key=lambda c: (c.role.value, c.name),
    )
    entries: List[ScheduleEntry] = []
    for d in date_range(start, end):
        for clinician in clinicians:
            for session in HALF_SESSIONS:
                entries.append(resolve_entry(index, clinician, d, session))
    logger.info(f"Composed {len(entries)} entries for {len(clinicians)} clinicians, {start} → {end}")
    return entries


def get_today_oncall(store: RotaStore, today: date) -> Dict[str, Optional[Dict[str, Any]]]:
    lookup = OnCallLookup.from_store(store, today, today)
    out: Dict[str, Optional[Dict[str, Any]]] = {}
    for role in Role:
        clinician_id = lookup.get(today, role)
        clinician = store.get_clinician(clinician_id) if clinician_id is not None else None
        out[role.value] = {"id": clinician.id, "name": clinician.name} if clinician else None
    return out
