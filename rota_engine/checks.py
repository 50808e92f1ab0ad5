"""
checks.py — Consistency checks for a composed rota

Hard (a composed rota must NOT contain these):
  - DUPLICATE_ENTRY:     two entries for one clinician × date × session
  - MISSING_SESSION:     an active clinician has no entry for a date/session
  - LEAVE_WITH_DUTY:     a leave entry that still carries a duty
  - REST_FOR_CONSULTANT: a rest entry on a consultant

Soft (worth a look):
  - NO_ONCALL:           a configured rotation resolves to nobody on a date
  - UNCOVERED_REQUEST:   a coverage request in range is still pending

Usage:
  checker = RotaChecker(clinicians, pending_requests=pending, rotation_roles={Role.REGISTRAR})
  hard, soft = checker.check_all(entries, start, end)
  errors, warnings = validate_rotation_setup(store)
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .dates import date_range, format_date
from .models import HALF_SESSIONS, Clinician, CoverageRequest, Role, RotaSource, ScheduleEntry
from .store import RotaStore

logger = logging.getLogger(__name__)


class ConstraintSeverity(Enum):
    HARD = "hard"
    SOFT = "soft"


@dataclass
class ConstraintViolation:
    severity: ConstraintSeverity
    constraint_type: str
    description: str
    date: Optional[str] = None
    clinician: Optional[str] = None
    session: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        parts = [f"[{self.severity.value.upper()}] {self.constraint_type}"]
        if self.date:
            parts.append(f"date={self.date}")
        if self.clinician:
            parts.append(f"clinician={self.clinician}")
        if self.session:
            parts.append(f"session={self.session}")
        parts.append(f"→ {self.description}")
        return " | ".join(parts)


class RotaChecker:
    """Validates composed ScheduleEntry lists against hard and soft rules."""

    def __init__(
        self,
        clinicians: List[Clinician],
        pending_requests: Optional[List[CoverageRequest]] = None,
        rotation_roles: Optional[Set[Role]] = None,
    ):
        self.clinicians = {c.id: c for c in clinicians}
        self.pending_requests = pending_requests or []
        self.rotation_roles = rotation_roles or set()

    def _name(self, clinician_id: int) -> str:
        c = self.clinicians.get(clinician_id)
        return c.name if c else f"#{clinician_id}"

    # -----------------------------------------------------------------------
    # HARD
    # -----------------------------------------------------------------------

    def check_duplicates(self, entries: Iterable[ScheduleEntry]) -> List[ConstraintViolation]:
        counts = Counter((e.date, e.clinician_id, e.session) for e in entries)
        return [
            ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="DUPLICATE_ENTRY",
                description=f"{n} entries for one session",
                date=format_date(d),
                clinician=self._name(cid),
                session=session.value,
            )
            for (d, cid, session), n in sorted(counts.items(), key=lambda kv: (kv[0][0], kv[0][1], kv[0][2].value))
            if n > 1
        ]

    def check_missing_sessions(self, entries: Iterable[ScheduleEntry], start: date, end: date) -> List[ConstraintViolation]:
        present = {(e.date, e.clinician_id, e.session) for e in entries}
        violations = []
        for d in date_range(start, end):
            for c in self.clinicians.values():
                if not c.active:
                    continue
                for session in HALF_SESSIONS:
                    if (d, c.id, session) not in present:
                        violations.append(ConstraintViolation(
                            severity=ConstraintSeverity.HARD,
                            constraint_type="MISSING_SESSION",
                            description="No entry composed for this session",
                            date=format_date(d),
                            clinician=c.name,
                            session=session.value,
                        ))
        return violations

    def check_leave_with_duty(self, entries: Iterable[ScheduleEntry]) -> List[ConstraintViolation]:
        return [
            ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="LEAVE_WITH_DUTY",
                description=f"On leave but shown on duty {e.duty_name or e.duty_id}",
                date=format_date(e.date),
                clinician=e.clinician_name,
                session=e.session.value,
            )
            for e in entries
            if e.source is RotaSource.LEAVE and e.duty_id is not None
        ]

    def check_rest_roles(self, entries: Iterable[ScheduleEntry]) -> List[ConstraintViolation]:
        return [
            ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="REST_FOR_CONSULTANT",
                description="Rest entries apply to registrars only",
                date=format_date(e.date),
                clinician=e.clinician_name,
                session=e.session.value,
            )
            for e in entries
            if e.is_rest and e.clinician_role is Role.CONSULTANT
        ]

    # -----------------------------------------------------------------------
    # SOFT
    # -----------------------------------------------------------------------

    def check_oncall_gaps(self, entries: Iterable[ScheduleEntry], start: date, end: date) -> List[ConstraintViolation]:
        covered: Set[Tuple[date, Role]] = {(e.date, e.clinician_role) for e in entries if e.is_oncall}
        violations = []
        for d in date_range(start, end):
            for role in sorted(self.rotation_roles, key=lambda r: r.value):
                if (d, role) not in covered:
                    violations.append(ConstraintViolation(
                        severity=ConstraintSeverity.SOFT,
                        constraint_type="NO_ONCALL",
                        description=f"No {role.value} on-call resolved (unassigned slot or on leave)",
                        date=format_date(d),
                    ))
        return violations

    def check_pending_coverage(self) -> List[ConstraintViolation]:
        return [
            ConstraintViolation(
                severity=ConstraintSeverity.SOFT,
                constraint_type="UNCOVERED_REQUEST",
                description=f"Coverage request #{r.id} ({r.type.value}, duty #{r.duty_id}) is pending",
                date=format_date(r.date),
                clinician=self._name(r.absent_clinician_id) if r.absent_clinician_id else None,
                session=r.session.value,
                details={"request_id": r.id, "reason": r.reason.value},
            )
            for r in self.pending_requests
        ]

    # -----------------------------------------------------------------------
    # Run all checks
    # -----------------------------------------------------------------------

    def check_all(
        self,
        entries: List[ScheduleEntry],
        start: date,
        end: date,
    ) -> Tuple[List[ConstraintViolation], List[ConstraintViolation]]:
        """
        Returns:
            (hard_violations, soft_violations)
        """
        hard: List[ConstraintViolation] = []
        soft: List[ConstraintViolation] = []

        hard.extend(self.check_duplicates(entries))
        hard.extend(self.check_missing_sessions(entries, start, end))
        hard.extend(self.check_leave_with_duty(entries))
        hard.extend(self.check_rest_roles(entries))
        soft.extend(self.check_oncall_gaps(entries, start, end))
        soft.extend(self.check_pending_coverage())

        if hard:
            logger.warning(f"{len(hard)} hard violation(s) in rota {start} → {end}")
        return hard, soft


# ---------------------------------------------------------------------------
# Rotation setup validation
# ---------------------------------------------------------------------------

def validate_rotation_setup(store: RotaStore) -> Tuple[List[str], List[str]]:
    """
    Validate slots, assignments and patterns for structural integrity.

    Returns:
        (errors, warnings) as lists of strings
    """
    errors: List[str] = []
    warnings: List[str] = []

    for role in Role:
        config = store.get_oncall_config(role)
        slots = store.find_slots(role=role)
        active = [s for s in slots if s.active]
        if config is None:
            if active:
                warnings.append(f"{role.value}: {len(active)} active slot(s) but no on-call config")
            continue
        if config.cycle_length <= 0:
            errors.append(f"{role.value}: cycle_length={config.cycle_length} must be positive")

        positions = [s.position for s in active]
        dupes = sorted({p for p in positions if positions.count(p) > 1})
        if dupes:
            errors.append(f"{role.value}: duplicate active slot positions {dupes}")

        expected = len(active) if role is Role.CONSULTANT else len(active) * 7
        if active and config.cycle_length != expected:
            warnings.append(
                f"{role.value}: cycle_length={config.cycle_length} but {len(active)} active slot(s) imply {expected}"
            )

        slot_ids = {s.id for s in slots}
        assignments = store.find_slot_assignments(slot_ids=slot_ids) if slot_ids else []
        by_slot: Dict[int, list] = {}
        for a in assignments:
            by_slot.setdefault(a.slot_id, []).append(a)
        for slot_id, rows in by_slot.items():
            rows.sort(key=lambda a: a.effective_from)
            for prev, nxt in zip(rows, rows[1:]):
                if prev.overlaps(nxt.effective_from, nxt.effective_to):
                    errors.append(f"slot #{slot_id}: assignments #{prev.id} and #{nxt.id} overlap")
        for slot in active:
            if slot.id not in by_slot:
                warnings.append(f"{role.value} slot #{slot.id} ({slot.name}) has no assignments")

        if role is Role.REGISTRAR:
            for p in store.find_patterns(role):
                if p.slot_id not in slot_ids:
                    errors.append(f"registrar pattern day {p.day_of_cycle} names unknown slot #{p.slot_id}")
                elif p.day_of_cycle > config.cycle_length:
                    warnings.append(
                        f"registrar pattern day {p.day_of_cycle} is beyond cycle length {config.cycle_length}"
                    )

    return errors, warnings
