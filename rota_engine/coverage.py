"""
coverage.py — Coverage Need Detector (registrars) and coverage request lifecycle

A coverage need exists when an absent registrar would otherwise have worked a
duty that must be covered. For each weekday leave session (FULL → AM and PM):

  duty = manual RotaEntry duty for that session, else job plan duty
  need = duty present and duty.requires_coverage is not False

Needs are turned into CoverageRequest rows by create_coverage_requests(),
which skips any (date, session, duty, absent clinician, type) that already
has a request. Leave deletion calls cancel_coverage_requests_for_leave().

Request lifecycle: pending → assigned → (unassign) pending; any → cancelled.
"""

import logging
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .audit import AuditSink, resolve_sink
from .dates import day_of_week, is_weekday, job_plan_week, validate_range
from .errors import NotFoundError, ValidationError
from .models import (
    HALF_SESSIONS,
    CoverageNeed,
    CoverageReason,
    CoverageRequest,
    CoverageStatus,
    CoverageType,
    Duty,
    Leave,
    Role,
    RotaEntry,
    RotaSource,
    Session,
    parse_enum,
)
from .store import RotaStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def _manual_by_session(entries: Iterable[RotaEntry]) -> Dict[Tuple[date, Session], RotaEntry]:
    out: Dict[Tuple[date, Session], RotaEntry] = {}
    for entry in entries:
        for half in entry.session.halves():
            out[(entry.date, half)] = entry
    return out


def _coverable_duty(duties: Dict[int, Duty], duty_id: Optional[int], context: str) -> Optional[Duty]:
    if duty_id is None:
        return None
    duty = duties.get(duty_id)
    if duty is None:
        logger.warning(f"{context}: duty #{duty_id} no longer exists, skipped")
        return None
    return duty if duty.needs_coverage else None


def _registrar_needs(
    store: RotaStore,
    registrar_id: int,
    leaves: List[Leave],
    duties: Dict[int, Duty],
    start: date,
    end: date,
) -> List[CoverageNeed]:
    manual = _manual_by_session(store.find_rota_entries(
        start=start, end=end, clinician_id=registrar_id, sources=[RotaSource.MANUAL],
    ))
    needs: List[CoverageNeed] = []
    for leave in leaves:
        if not is_weekday(leave.date):
            continue
        plan = store.get_job_plan(registrar_id, job_plan_week(leave.date), day_of_week(leave.date))
        for session in leave.session.halves():
            override = manual.get((leave.date, session))
            if override is not None and override.duty_id is not None:
                duty_id, supporting = override.duty_id, override.supporting_clinician_id
            elif plan is not None:
                duty_id, supporting = plan.duty_for(session), plan.supporting_for(session)
            else:
                continue
            duty = _coverable_duty(duties, duty_id, f"Leave #{leave.id} {leave.date} {session.value}")
            if duty is None:
                continue
            needs.append(CoverageNeed(
                date=leave.date,
                session=session,
                duty_id=duty.id,
                reason=CoverageReason.LEAVE,
                type=CoverageType.REGISTRAR,
                consultant_id=supporting,
                absent_registrar_id=registrar_id,
            ))
    return needs


def _dedupe(needs: Iterable[CoverageNeed]) -> List[CoverageNeed]:
    seen: Dict[tuple, CoverageNeed] = {}
    for need in needs:
        seen.setdefault(need.key, need)
    return list(seen.values())


def detect_coverage_needs_for_clinician(
    store: RotaStore,
    clinician_id: int,
    start: date,
    end: date,
) -> List[CoverageNeed]:
    """Needs created by one registrar's leave in [start, end]. Consultants yield []."""
    start, end = validate_range(start, end)
    clinician = store.get_clinician(clinician_id)
    if clinician is None:
        raise NotFoundError("Clinician", clinician_id)
    if clinician.role is not Role.REGISTRAR:
        return []
    leaves = store.find_leaves(start=start, end=end, clinician_id=clinician_id)
    duties = {d.id: d for d in store.find_duties()}
    return _dedupe(_registrar_needs(store, clinician_id, leaves, duties, start, end))


def detect_coverage_needs(store: RotaStore, start: date, end: date) -> List[CoverageNeed]:
    """Needs created by every active registrar's leave in [start, end]."""
    start, end = validate_range(start, end)
    registrars = {c.id for c in store.find_clinicians(role=Role.REGISTRAR)}
    duties = {d.id: d for d in store.find_duties()}

    by_registrar: Dict[int, List[Leave]] = {}
    for leave in store.find_leaves(start=start, end=end):
        if leave.clinician_id in registrars:
            by_registrar.setdefault(leave.clinician_id, []).append(leave)

    needs: List[CoverageNeed] = []
    for registrar_id, leaves in sorted(by_registrar.items()):
        needs.extend(_registrar_needs(store, registrar_id, leaves, duties, start, end))
    needs = _dedupe(needs)
    logger.info(f"Coverage needs {start} → {end}: {len(needs)} from {len(by_registrar)} registrar(s) on leave")
    return needs


# ---------------------------------------------------------------------------
# Request creation / cancellation
# ---------------------------------------------------------------------------

def _request_key(item) -> tuple:
    return (item.date, item.session, item.duty_id, item.type, item.absent_clinician_id)


def create_coverage_requests(
    store: RotaStore,
    needs: Iterable[CoverageNeed],
    audit: Optional[AuditSink] = None,
) -> int:
    """
    Persist needs as pending requests; returns the number created.

    Runs under the 'coverage_requests' advisory lock so concurrent callers
    cannot create duplicates for the same key.
    """
    needs = list(needs)
    if not needs:
        return 0
    sink = resolve_sink(audit)
    created = 0
    with store.advisory_lock("coverage_requests"):
        first = min(n.date for n in needs)
        last = max(n.date for n in needs)
        existing = {_request_key(r) for r in store.find_coverage_requests(start=first, end=last)}
        for need in needs:
            key = _request_key(need)
            if key in existing:
                continue
            request = store.add_coverage_request(CoverageRequest(
                date=need.date,
                session=need.session,
                duty_id=need.duty_id,
                reason=need.reason,
                type=need.type,
                status=CoverageStatus.PENDING,
                consultant_id=need.consultant_id,
                absent_registrar_id=need.absent_registrar_id,
                absent_consultant_id=need.absent_consultant_id,
            ))
            existing.add(key)
            created += 1
            sink.record("create", "coverageRequest", request.id, None, request)
    if created:
        logger.info(f"Created {created} coverage request(s) ({len(needs) - created} already existed)")
    return created


def cancel_coverage_requests_for_leave(
    store: RotaStore,
    clinician_id: int,
    d: date,
    session: Session,
    audit: Optional[AuditSink] = None,
) -> int:
    """Delete pending leave-reason requests raised for this clinician's absence."""
    session = parse_enum(Session, session, "session")
    halves = set(session.halves())
    sink = resolve_sink(audit)
    deleted = 0
    with store.advisory_lock("coverage_requests"):
        for request in store.find_coverage_requests(start=d, end=d, status=CoverageStatus.PENDING):
            if request.reason is not CoverageReason.LEAVE:
                continue
            if request.absent_clinician_id != clinician_id or request.session not in halves:
                continue
            store.delete_coverage_request(request.id)
            sink.record("delete", "coverageRequest", request.id, request, None)
            deleted += 1
    if deleted:
        logger.info(f"Cancelled {deleted} pending request(s) for clinician #{clinician_id} on {d} {session.value}")
    return deleted


def cleanup_orphaned_coverage_requests(
    store: RotaStore,
    start: Optional[date] = None,
    end: Optional[date] = None,
    audit: Optional[AuditSink] = None,
) -> int:
    """Delete pending leave requests whose absent clinician no longer has that leave."""
    sink = resolve_sink(audit)
    leave_sessions = set()
    for leave in store.find_leaves(start=start, end=end):
        for half in leave.session.halves():
            leave_sessions.add((leave.clinician_id, leave.date, half))

    removed = 0
    with store.advisory_lock("coverage_requests"):
        for request in store.find_coverage_requests(start=start, end=end, status=CoverageStatus.PENDING):
            if request.reason is not CoverageReason.LEAVE:
                continue
            if (request.absent_clinician_id, request.date, request.session) in leave_sessions:
                continue
            store.delete_coverage_request(request.id)
            sink.record("delete", "coverageRequest", request.id, request, None)
            removed += 1
    if removed:
        logger.info(f"Removed {removed} orphaned coverage request(s)")
    return removed


# ---------------------------------------------------------------------------
# Manual lifecycle
# ---------------------------------------------------------------------------

def create_manual_coverage_request(
    store: RotaStore,
    d: date,
    session: Session,
    duty_id: int,
    consultant_id: Optional[int] = None,
    coverage_type: CoverageType = CoverageType.REGISTRAR,
    note: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> CoverageRequest:
    session = parse_enum(Session, session, "session")
    coverage_type = parse_enum(CoverageType, coverage_type, "coverage type")
    if session not in HALF_SESSIONS:
        raise ValidationError("Coverage requests are per half-day session (AM or PM)")
    if store.get_duty(duty_id) is None:
        raise NotFoundError("Duty", duty_id)
    if consultant_id is not None and store.get_clinician(consultant_id) is None:
        raise NotFoundError("Clinician", consultant_id)

    request = store.add_coverage_request(CoverageRequest(
        date=d,
        session=session,
        duty_id=duty_id,
        reason=CoverageReason.MANUAL,
        type=coverage_type,
        consultant_id=consultant_id,
        note=note,
    ))
    resolve_sink(audit).record("create", "coverageRequest", request.id, None, request)
    return request


def _get_request(store: RotaStore, request_id: int) -> CoverageRequest:
    request = store.get_coverage_request(request_id)
    if request is None:
        raise NotFoundError("CoverageRequest", request_id)
    return request


def assign_coverage_request(
    store: RotaStore,
    request_id: int,
    clinician_id: int,
    assigned_by: Optional[str] = None,
    now: Optional[datetime] = None,
    audit: Optional[AuditSink] = None,
) -> CoverageRequest:
    """Manually assign (or reassign) a request to a clinician of the request's type."""
    request = _get_request(store, request_id)
    if request.status is CoverageStatus.CANCELLED:
        raise ValidationError(f"Coverage request #{request_id} is cancelled")
    clinician = store.get_clinician(clinician_id)
    if clinician is None:
        raise NotFoundError("Clinician", clinician_id)
    wanted_role = Role.CONSULTANT if request.type is CoverageType.CONSULTANT else Role.REGISTRAR
    if clinician.role is not wanted_role:
        raise ValidationError(
            f"{clinician.name} is a {clinician.role.value}; request #{request_id} needs a {wanted_role.value}"
        )

    before = store.get_coverage_request(request_id)
    if request.type is CoverageType.CONSULTANT:
        request.assigned_consultant_id = clinician_id
    else:
        request.assigned_registrar_id = clinician_id
    request.status = CoverageStatus.ASSIGNED
    request.assigned_at = now or datetime.now(timezone.utc)
    request.assigned_by = assigned_by
    updated = store.update_coverage_request(request)
    resolve_sink(audit).record("assign", "coverageRequest", request_id, before, updated)
    return updated


def unassign_coverage_request(
    store: RotaStore,
    request_id: int,
    audit: Optional[AuditSink] = None,
) -> CoverageRequest:
    request = _get_request(store, request_id)
    if request.status is not CoverageStatus.ASSIGNED:
        raise ValidationError(f"Coverage request #{request_id} is not assigned")
    before = store.get_coverage_request(request_id)
    request.assigned_registrar_id = None
    request.assigned_consultant_id = None
    request.assigned_at = None
    request.assigned_by = None
    request.status = CoverageStatus.PENDING
    updated = store.update_coverage_request(request)
    resolve_sink(audit).record("unassign", "coverageRequest", request_id, before, updated)
    return updated


def cancel_coverage_request(
    store: RotaStore,
    request_id: int,
    audit: Optional[AuditSink] = None,
) -> CoverageRequest:
    request = _get_request(store, request_id)
    before = store.get_coverage_request(request_id)
    request.status = CoverageStatus.CANCELLED
    updated = store.update_coverage_request(request)
    resolve_sink(audit).record("cancel", "coverageRequest", request_id, before, updated)
    return updated


def pending_count(store: RotaStore, start: Optional[date] = None, end: Optional[date] = None) -> int:
    return len(store.find_coverage_requests(start=start, end=end, status=CoverageStatus.PENDING))
