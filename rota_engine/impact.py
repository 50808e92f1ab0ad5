"""
impact.py — Consultant impact: what happens when a consultant is unavailable

When a consultant is on leave or on-call for a weekday session:

  1. The consultant's own duty (manual entry first, else job plan) becomes a
     consultant coverage need unless the duty has requires_coverage=False.
  2. Registrars supporting that consultant in that session are freed:
     manual entries naming the consultant are deleted first, then the
     jobplan entries of registrars whose job plan names the
     consultant. Each registrar is freed at most once per session and every
     deletion is audited so it can be reversed.

restore_registrar_entries_for_consultant() is the inverse for the job-plan
part: it recreates missing jobplan rows once the consultant is back.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Set

from .audit import AuditSink, resolve_sink
from .dates import date_range, day_of_week, is_weekday, job_plan_week, validate_range
from .models import (
    CoverageNeed,
    CoverageReason,
    CoverageType,
    FreedRegistrar,
    Role,
    RotaEntry,
    RotaSource,
    Session,
    parse_enum,
)
from .store import RotaStore

logger = logging.getLogger(__name__)


@dataclass
class ConsultantImpact:
    needs: List[CoverageNeed] = field(default_factory=list)
    freed_registrars: List[FreedRegistrar] = field(default_factory=list)

    def extend(self, other: "ConsultantImpact") -> None:
        self.needs.extend(other.needs)
        self.freed_registrars.extend(other.freed_registrars)


def detect_consultant_impact(
    store: RotaStore,
    consultant_id: int,
    d: date,
    session: Session,
    reason: CoverageReason,
    audit: Optional[AuditSink] = None,
) -> ConsultantImpact:
    session = parse_enum(Session, session, "session")
    reason = parse_enum(CoverageReason, reason, "coverage reason")
    impact = ConsultantImpact()

    consultant = store.get_clinician(consultant_id)
    if consultant is None or consultant.role is not Role.CONSULTANT:
        return impact
    if not is_weekday(d):
        return impact

    sink = resolve_sink(audit)
    week_no, dow = job_plan_week(d), day_of_week(d)
    own_plan = store.get_job_plan(consultant_id, week_no, dow)
    own_manual = [
        e for e in store.find_rota_entries(start=d, end=d, clinician_id=consultant_id,
                                           sources=[RotaSource.MANUAL])
        if e.duty_id is not None
    ]
    registrars = {c.id: c for c in store.find_clinicians(role=Role.REGISTRAR)}
    registrar_plans = [
        p for p in store.find_job_plans()
        if p.clinician_id in registrars and p.week_no == week_no and p.day_of_week == dow
    ]
    supporting_manual = store.find_rota_entries(
        start=d, end=d, sources=[RotaSource.MANUAL], supporting_clinician_id=consultant_id,
    )

    for half in session.halves():
        # 1. the consultant's own duty
        override = next((e for e in own_manual if e.session.covers(half)), None)
        if override is not None:
            duty_id = override.duty_id
        elif own_plan is not None:
            duty_id = own_plan.duty_for(half)
        else:
            duty_id = None
        if duty_id is not None:
            duty = store.get_duty(duty_id)
            if duty is None:
                logger.warning(f"Consultant #{consultant_id} {d} {half.value}: duty #{duty_id} no longer exists")
            elif duty.needs_coverage:
                impact.needs.append(CoverageNeed(
                    date=d,
                    session=half,
                    duty_id=duty_id,
                    reason=reason,
                    type=CoverageType.CONSULTANT,
                    absent_consultant_id=consultant_id,
                ))

        # 2. free supporting registrars
        freed: Set[int] = set()
        for entry in supporting_manual:
            if entry.session is not half or entry.clinician_id not in registrars or entry.clinician_id in freed:
                continue
            freed.add(entry.clinician_id)
            _record_freed(store, impact, d, half, registrars[entry.clinician_id], entry.duty_id)
            store.delete_rota_entry(entry.id)
            sink.record("delete", "rotaEntry", entry.id, entry, None)

        for plan in registrar_plans:
            if plan.supporting_for(half) != consultant_id or plan.clinician_id in freed:
                continue
            freed.add(plan.clinician_id)
            _record_freed(store, impact, d, half, registrars[plan.clinician_id], plan.duty_for(half))
            existing = store.get_rota_entry(d, plan.clinician_id, half)
            if (existing is not None and existing.source is RotaSource.JOBPLAN
                    and existing.supporting_clinician_id == consultant_id):
                store.delete_rota_entry(existing.id)
                sink.record("delete", "rotaEntry", existing.id, existing, None)

    if impact.freed_registrars:
        names = ", ".join(sorted({f.registrar_name for f in impact.freed_registrars}))
        logger.info(f"{consultant.name} unavailable {d} {session.value} ({reason.value}): freed {names}")
    return impact


def _record_freed(store: RotaStore, impact: ConsultantImpact, d: date, half: Session,
                  registrar, duty_id: Optional[int]) -> None:
    if duty_id is None:
        return
    duty = store.get_duty(duty_id)
    if duty is None:
        return
    impact.freed_registrars.append(FreedRegistrar(
        date=d,
        session=half,
        registrar_id=registrar.id,
        registrar_name=registrar.name,
        duty_id=duty.id,
        duty_name=duty.name,
    ))


def detect_consultant_impact_for_range(
    store: RotaStore,
    consultant_id: int,
    start: date,
    end: date,
    session: Session,
    reason: CoverageReason,
    audit: Optional[AuditSink] = None,
) -> ConsultantImpact:
    start, end = validate_range(start, end)
    total = ConsultantImpact()
    for d in date_range(start, end):
        total.extend(detect_consultant_impact(store, consultant_id, d, session, reason, audit=audit))
    return total


def restore_registrar_entries_for_consultant(
    store: RotaStore,
    consultant_id: int,
    d: date,
    session: Session,
    audit: Optional[AuditSink] = None,
) -> int:
    """Recreate jobplan rows for registrars supporting the consultant; returns the count."""
    session = parse_enum(Session, session, "session")
    if not is_weekday(d):
        return 0
    sink = resolve_sink(audit)
    week_no, dow = job_plan_week(d), day_of_week(d)
    registrars = {c.id for c in store.find_clinicians(role=Role.REGISTRAR)}
    plans = [
        p for p in store.find_job_plans()
        if p.clinician_id in registrars and p.week_no == week_no and p.day_of_week == dow
    ]
    on_leave = {
        (lv.clinician_id, half) for lv in store.find_leaves(start=d, end=d) for half in lv.session.halves()
    }

    restored = 0
    for half in session.halves():
        for plan in plans:
            if plan.supporting_for(half) != consultant_id:
                continue
            if (plan.clinician_id, half) in on_leave:
                continue
            if store.get_rota_entry(d, plan.clinician_id, half) is not None:
                continue
            entry = store.upsert_rota_entry(RotaEntry(
                date=d,
                clinician_id=plan.clinician_id,
                session=half,
                source=RotaSource.JOBPLAN,
                duty_id=plan.duty_for(half),
                supporting_clinician_id=consultant_id,
            ))
            sink.record("restore", "rotaEntry", entry.id, None, entry)
            restored += 1
    if restored:
        logger.info(f"Restored {restored} registrar entr{'y' if restored == 1 else 'ies'} for consultant #{consultant_id} on {d}")
    return restored
