"""
leave_events.py — Leave create/delete handlers and the work they trigger

  record_leave        → registrar: detect needs + create requests
                        consultant: consultant impact + consultant requests
  record_leave_range  → same, for up to MAX_BULK_LEAVE_DAYS days at once;
                        days that already have overlapping leave are skipped
  remove_leave        → cancel the absence's pending leave requests and, for a
                        consultant, restore the registrars that were freed
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from .audit import AuditSink, resolve_sink
from .coverage import (
    cancel_coverage_requests_for_leave,
    create_coverage_requests,
    detect_coverage_needs_for_clinician,
)
from .dates import date_range, parse_date, validate_range
from .errors import ConflictError, NotFoundError, ValidationError
from .impact import detect_consultant_impact, restore_registrar_entries_for_consultant
from .models import Clinician, CoverageReason, Leave, LeaveType, Role, RotaSource, Session, parse_enum
from .rota_config import MAX_BULK_LEAVE_DAYS
from .store import RotaStore

logger = logging.getLogger(__name__)


def _get_clinician(store: RotaStore, clinician_id: int) -> Clinician:
    clinician = store.get_clinician(clinician_id)
    if clinician is None:
        raise NotFoundError("Clinician", clinician_id)
    return clinician


def _add_leave(store: RotaStore, clinician_id: int, d: date, session: Session,
               leave_type: LeaveType, note: Optional[str], sink: AuditSink) -> Leave:
    for other in store.find_leaves(start=d, end=d, clinician_id=clinician_id):
        if other.session.covers(session) or session.covers(other.session):
            raise ConflictError(
                f"Clinician #{clinician_id} already has {other.session.value} leave on {d} (leave #{other.id})"
            )
    leave = store.add_leave(Leave(id=None, clinician_id=clinician_id, date=d, session=session,
                                  type=leave_type, note=note))
    sink.record("create", "leave", leave.id, None, leave)
    return leave


def _trigger_for_leaves(store: RotaStore, clinician: Clinician, leaves: List[Leave],
                        sink: AuditSink) -> Dict[str, int]:
    if not leaves:
        return {"requests_created": 0, "freed_registrars": 0}
    if clinician.role is Role.REGISTRAR:
        first = min(lv.date for lv in leaves)
        last = max(lv.date for lv in leaves)
        needs = detect_coverage_needs_for_clinician(store, clinician.id, first, last)
        return {"requests_created": create_coverage_requests(store, needs, audit=sink), "freed_registrars": 0}

    needs = []
    freed = 0
    for leave in leaves:
        impact = detect_consultant_impact(store, clinician.id, leave.date, leave.session,
                                          CoverageReason.LEAVE, audit=sink)
        needs.extend(impact.needs)
        freed += len(impact.freed_registrars)
    return {"requests_created": create_coverage_requests(store, needs, audit=sink), "freed_registrars": freed}


def record_leave(
    store: RotaStore,
    clinician_id: int,
    d: Any,
    session: Any,
    leave_type: Any,
    note: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> Dict[str, Any]:
    d = parse_date(d)
    session = parse_enum(Session, session, "session")
    leave_type = parse_enum(LeaveType, leave_type, "leave type")
    clinician = _get_clinician(store, clinician_id)
    sink = resolve_sink(audit)

    leave = _add_leave(store, clinician_id, d, session, leave_type, note, sink)
    triggered = _trigger_for_leaves(store, clinician, [leave], sink)
    logger.info(f"Leave recorded: {clinician.name} {d} {session.value} ({leave_type.value})")
    return {"leave": leave, **triggered}


def record_leave_range(
    store: RotaStore,
    clinician_id: int,
    start: Any,
    end: Any,
    session: Any,
    leave_type: Any,
    note: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> Dict[str, Any]:
    start, end = validate_range(start, end)
    days = (end - start).days + 1
    if days > MAX_BULK_LEAVE_DAYS:
        raise ValidationError(f"Cannot create more than {MAX_BULK_LEAVE_DAYS} days of leave at once (got {days})")
    session = parse_enum(Session, session, "session")
    leave_type = parse_enum(LeaveType, leave_type, "leave type")
    clinician = _get_clinician(store, clinician_id)
    sink = resolve_sink(audit)

    created: List[Leave] = []
    skipped = 0
    for d in date_range(start, end):
        try:
            created.append(_add_leave(store, clinician_id, d, session, leave_type, note, sink))
        except ConflictError as e:
            logger.debug(f"Skipping existing leave: {e}")
            skipped += 1

    triggered = _trigger_for_leaves(store, clinician, created, sink)
    logger.info(f"Bulk leave for {clinician.name} {start} → {end}: {len(created)} created, {skipped} skipped")
    return {"created": created, "count": len(created), "skipped": skipped, **triggered}


def remove_leave(
    store: RotaStore,
    leave_id: int,
    audit: Optional[AuditSink] = None,
) -> Dict[str, int]:
    leave = store.get_leave(leave_id)
    if leave is None:
        raise NotFoundError("Leave", leave_id)
    sink = resolve_sink(audit)
    clinician = store.get_clinician(leave.clinician_id)

    cancelled = cancel_coverage_requests_for_leave(store, leave.clinician_id, leave.date, leave.session, audit=sink)
    store.delete_leave(leave_id)
    sink.record("delete", "leave", leave_id, leave, None)

    # Materialized leave rows are pinned; the leave they mirror is gone
    for half in leave.session.halves():
        row = store.get_rota_entry(leave.date, leave.clinician_id, half)
        if row is not None and row.source is RotaSource.LEAVE:
            store.delete_rota_entry(row.id)
            sink.record("delete", "rotaEntry", row.id, row, None)

    restored = 0
    if clinician is not None and clinician.role is Role.CONSULTANT:
        restored = restore_registrar_entries_for_consultant(
            store, clinician.id, leave.date, leave.session, audit=sink,
        )
    return {"cancelled_requests": cancelled, "restored_entries": restored}
