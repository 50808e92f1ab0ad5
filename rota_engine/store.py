"""
store.py — Persistence interface used by the rota engine

The engine never talks to a database directly. Every read and write goes
through RotaStore:

  - keyed lookup and filtered find for each entity
  - RotaEntry upsert by (date, clinician_id, session)
  - create / update / delete for coverage requests, slots, assignments, leaves
  - advisory_lock(name) to serialize materialization and request creation

InMemoryStore is the reference implementation (tests, CLI runs from CSV).
api_client.RotaApiClient implements the same interface over HTTP.

Usage:
  store = InMemoryStore()
  store.add_clinician(Clinician(id=1, name="Dr A", role=Role.CONSULTANT))
  with store.advisory_lock("generate_rota"):
      store.upsert_rota_entry(entry)
"""

import abc
import copy
import itertools
import logging
import threading
import time
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import NotFoundError, StoreUnavailableError
from .models import (
    Clinician,
    CoverageRequest,
    CoverageStatus,
    CoverageType,
    Duty,
    JobPlanWeek,
    Leave,
    OnCallConfig,
    OnCallPattern,
    OnCallSlot,
    Role,
    RotaEntry,
    RotaSource,
    Session,
    SlotAssignment,
)
from .rota_config import STORE_RETRY

logger = logging.getLogger(__name__)

RotaKey = Tuple[date, int, Session]


class RotaStore(abc.ABC):
    """Narrow persistence interface consumed by every engine module."""

    # -- clinicians / duties -------------------------------------------------
    @abc.abstractmethod
    def get_clinician(self, clinician_id: int) -> Optional[Clinician]: ...

    @abc.abstractmethod
    def find_clinicians(self, role: Optional[Role] = None, active_only: bool = True) -> List[Clinician]: ...

    @abc.abstractmethod
    def get_duty(self, duty_id: int) -> Optional[Duty]: ...

    @abc.abstractmethod
    def find_duties(self, active_only: bool = False) -> List[Duty]: ...

    # -- job plans -----------------------------------------------------------
    @abc.abstractmethod
    def find_job_plans(self, clinician_id: Optional[int] = None) -> List[JobPlanWeek]: ...

    @abc.abstractmethod
    def get_job_plan(self, clinician_id: int, week_no: int, day_of_week: int) -> Optional[JobPlanWeek]: ...

    # -- rotation ------------------------------------------------------------
    @abc.abstractmethod
    def get_oncall_config(self, role: Role) -> Optional[OnCallConfig]: ...

    @abc.abstractmethod
    def put_oncall_config(self, config: OnCallConfig) -> OnCallConfig: ...

    @abc.abstractmethod
    def get_slot(self, slot_id: int) -> Optional[OnCallSlot]: ...

    @abc.abstractmethod
    def find_slots(self, role: Optional[Role] = None, active_only: bool = False) -> List[OnCallSlot]: ...

    @abc.abstractmethod
    def add_slot(self, slot: OnCallSlot) -> OnCallSlot: ...

    @abc.abstractmethod
    def update_slot(self, slot: OnCallSlot) -> OnCallSlot: ...

    @abc.abstractmethod
    def find_patterns(self, role: Role) -> List[OnCallPattern]: ...

    @abc.abstractmethod
    def replace_patterns(self, role: Role, patterns: List[OnCallPattern]) -> List[OnCallPattern]: ...

    @abc.abstractmethod
    def get_slot_assignment(self, assignment_id: int) -> Optional[SlotAssignment]: ...

    @abc.abstractmethod
    def find_slot_assignments(
        self,
        slot_ids: Optional[Iterable[int]] = None,
        clinician_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[SlotAssignment]: ...

    @abc.abstractmethod
    def add_slot_assignment(self, assignment: SlotAssignment) -> SlotAssignment: ...

    @abc.abstractmethod
    def update_slot_assignment(self, assignment: SlotAssignment) -> SlotAssignment: ...

    @abc.abstractmethod
    def delete_slot_assignment(self, assignment_id: int) -> None: ...

    # -- leave ---------------------------------------------------------------
    @abc.abstractmethod
    def get_leave(self, leave_id: int) -> Optional[Leave]: ...

    @abc.abstractmethod
    def find_leaves(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        clinician_id: Optional[int] = None,
    ) -> List[Leave]: ...

    @abc.abstractmethod
    def add_leave(self, leave: Leave) -> Leave: ...

    @abc.abstractmethod
    def delete_leave(self, leave_id: int) -> None: ...

    # -- rota entries --------------------------------------------------------
    @abc.abstractmethod
    def get_rota_entry(self, d: date, clinician_id: int, session: Session) -> Optional[RotaEntry]: ...

    @abc.abstractmethod
    def find_rota_entries(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        clinician_id: Optional[int] = None,
        sources: Optional[Iterable[RotaSource]] = None,
        supporting_clinician_id: Optional[int] = None,
    ) -> List[RotaEntry]: ...

    @abc.abstractmethod
    def upsert_rota_entry(self, entry: RotaEntry) -> RotaEntry: ...

    @abc.abstractmethod
    def delete_rota_entry(self, entry_id: int) -> None: ...

    # -- coverage requests ---------------------------------------------------
    @abc.abstractmethod
    def get_coverage_request(self, request_id: int) -> Optional[CoverageRequest]: ...

    @abc.abstractmethod
    def find_coverage_requests(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        status: Optional[CoverageStatus] = None,
        coverage_type: Optional[CoverageType] = None,
    ) -> List[CoverageRequest]: ...

    @abc.abstractmethod
    def add_coverage_request(self, request: CoverageRequest) -> CoverageRequest: ...

    @abc.abstractmethod
    def update_coverage_request(self, request: CoverageRequest) -> CoverageRequest: ...

    @abc.abstractmethod
    def delete_coverage_request(self, request_id: int) -> None: ...

    # -- coordination --------------------------------------------------------
    @abc.abstractmethod
    def advisory_lock(self, name: str) -> Any:
        """Context manager serializing writers that share `name`."""


def _in_range(d: date, start: Optional[date], end: Optional[date]) -> bool:
    return (start is None or d >= start) and (end is None or d <= end)


class InMemoryStore(RotaStore):
    """
    Dictionary-backed store. Returned objects are copies, so callers must
    write changes back through the interface, as they would with a database.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.clinicians: Dict[int, Clinician] = {}
        self.duties: Dict[int, Duty] = {}
        self.job_plans: Dict[Tuple[int, int, int], JobPlanWeek] = {}
        self.oncall_configs: Dict[Role, OnCallConfig] = {}
        self.slots: Dict[int, OnCallSlot] = {}
        self.patterns: Dict[Role, List[OnCallPattern]] = {}
        self.slot_assignments: Dict[int, SlotAssignment] = {}
        self.leaves: Dict[int, Leave] = {}
        self.rota_entries: Dict[RotaKey, RotaEntry] = {}
        self.coverage_requests: Dict[int, CoverageRequest] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _next_id(self, taken: Iterable[int]) -> int:
        taken = set(taken)
        new_id = next(self._ids)
        while new_id in taken:
            new_id = next(self._ids)
        return new_id

    # -- loading helpers (admin side) ----------------------------------------
    def add_clinician(self, clinician: Clinician) -> Clinician:
        self.clinicians[clinician.id] = copy.copy(clinician)
        return copy.copy(clinician)

    def add_duty(self, duty: Duty) -> Duty:
        self.duties[duty.id] = copy.copy(duty)
        return copy.copy(duty)

    def put_job_plan(self, plan: JobPlanWeek) -> JobPlanWeek:
        key = (plan.clinician_id, plan.week_no, plan.day_of_week)
        self.job_plans[key] = copy.copy(plan)
        return copy.copy(plan)

    # -- clinicians / duties -------------------------------------------------
    def get_clinician(self, clinician_id: int) -> Optional[Clinician]:
        c = self.clinicians.get(clinician_id)
        return copy.copy(c) if c else None

    def find_clinicians(self, role: Optional[Role] = None, active_only: bool = True) -> List[Clinician]:
        return [
            copy.copy(c) for c in self.clinicians.values()
            if (role is None or c.role is role) and (c.active or not active_only)
        ]

    def get_duty(self, duty_id: int) -> Optional[Duty]:
        d = self.duties.get(duty_id)
        return copy.copy(d) if d else None

    def find_duties(self, active_only: bool = False) -> List[Duty]:
        return [copy.copy(d) for d in self.duties.values() if d.active or not active_only]

    # -- job plans -----------------------------------------------------------
    def find_job_plans(self, clinician_id: Optional[int] = None) -> List[JobPlanWeek]:
        return [
            copy.copy(p) for p in self.job_plans.values()
            if clinician_id is None or p.clinician_id == clinician_id
        ]

    def get_job_plan(self, clinician_id: int, week_no: int, day_of_week: int) -> Optional[JobPlanWeek]:
        p = self.job_plans.get((clinician_id, week_no, day_of_week))
        return copy.copy(p) if p else None

    # -- rotation ------------------------------------------------------------
    def get_oncall_config(self, role: Role) -> Optional[OnCallConfig]:
        cfg = self.oncall_configs.get(role)
        return copy.copy(cfg) if cfg else None

    def put_oncall_config(self, config: OnCallConfig) -> OnCallConfig:
        self.oncall_configs[config.role] = copy.copy(config)
        return copy.copy(config)

    def get_slot(self, slot_id: int) -> Optional[OnCallSlot]:
        s = self.slots.get(slot_id)
        return copy.copy(s) if s else None

    def find_slots(self, role: Optional[Role] = None, active_only: bool = False) -> List[OnCallSlot]:
        slots = [
            copy.copy(s) for s in self.slots.values()
            if (role is None or s.role is role) and (s.active or not active_only)
        ]
        return sorted(slots, key=lambda s: s.position)

    def add_slot(self, slot: OnCallSlot) -> OnCallSlot:
        if slot.id is None or slot.id in self.slots:
            slot = copy.copy(slot)
            slot.id = self._next_id(self.slots)
        self.slots[slot.id] = copy.copy(slot)
        return copy.copy(slot)

    def update_slot(self, slot: OnCallSlot) -> OnCallSlot:
        if slot.id not in self.slots:
            raise NotFoundError("OnCallSlot", slot.id)
        self.slots[slot.id] = copy.copy(slot)
        return copy.copy(slot)

    def find_patterns(self, role: Role) -> List[OnCallPattern]:
        patterns = [copy.copy(p) for p in self.patterns.get(role, [])]
        return sorted(patterns, key=lambda p: p.day_of_cycle)

    def replace_patterns(self, role: Role, patterns: List[OnCallPattern]) -> List[OnCallPattern]:
        self.patterns[role] = [copy.copy(p) for p in patterns]
        return self.find_patterns(role)

    def get_slot_assignment(self, assignment_id: int) -> Optional[SlotAssignment]:
        a = self.slot_assignments.get(assignment_id)
        return copy.copy(a) if a else None

    def find_slot_assignments(
        self,
        slot_ids: Optional[Iterable[int]] = None,
        clinician_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[SlotAssignment]:
        wanted = set(slot_ids) if slot_ids is not None else None
        out = []
        for a in self.slot_assignments.values():
            if wanted is not None and a.slot_id not in wanted:
                continue
            if clinician_id is not None and a.clinician_id != clinician_id:
                continue
            if start is not None and not a.overlaps(start, end):
                continue
            if start is None and end is not None and a.effective_from > end:
                continue
            out.append(copy.copy(a))
        return sorted(out, key=lambda a: (a.slot_id, a.effective_from))

    def add_slot_assignment(self, assignment: SlotAssignment) -> SlotAssignment:
        assignment = copy.copy(assignment)
        if assignment.id is None or assignment.id in self.slot_assignments:
            assignment.id = self._next_id(self.slot_assignments)
        self.slot_assignments[assignment.id] = copy.copy(assignment)
        return assignment

    def update_slot_assignment(self, assignment: SlotAssignment) -> SlotAssignment:
        if assignment.id not in self.slot_assignments:
            raise NotFoundError("SlotAssignment", assignment.id)
        self.slot_assignments[assignment.id] = copy.copy(assignment)
        return copy.copy(assignment)

    def delete_slot_assignment(self, assignment_id: int) -> None:
        if self.slot_assignments.pop(assignment_id, None) is None:
            raise NotFoundError("SlotAssignment", assignment_id)

    # -- leave ---------------------------------------------------------------
    def get_leave(self, leave_id: int) -> Optional[Leave]:
        lv = self.leaves.get(leave_id)
        return copy.copy(lv) if lv else None

    def find_leaves(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        clinician_id: Optional[int] = None,
    ) -> List[Leave]:
        out = [
            copy.copy(lv) for lv in self.leaves.values()
            if _in_range(lv.date, start, end)
            and (clinician_id is None or lv.clinician_id == clinician_id)
        ]
        return sorted(out, key=lambda lv: (lv.date, lv.clinician_id, lv.session.value))

    def add_leave(self, leave: Leave) -> Leave:
        leave = copy.copy(leave)
        if leave.id is None or leave.id in self.leaves:
            leave.id = self._next_id(self.leaves)
        self.leaves[leave.id] = copy.copy(leave)
        return leave

    def delete_leave(self, leave_id: int) -> None:
        if self.leaves.pop(leave_id, None) is None:
            raise NotFoundError("Leave", leave_id)

    # -- rota entries --------------------------------------------------------
    def get_rota_entry(self, d: date, clinician_id: int, session: Session) -> Optional[RotaEntry]:
        e = self.rota_entries.get((d, clinician_id, session))
        return copy.copy(e) if e else None

    def find_rota_entries(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        clinician_id: Optional[int] = None,
        sources: Optional[Iterable[RotaSource]] = None,
        supporting_clinician_id: Optional[int] = None,
    ) -> List[RotaEntry]:
        wanted = set(sources) if sources is not None else None
        out = []
        for e in self.rota_entries.values():
            if not _in_range(e.date, start, end):
                continue
            if clinician_id is not None and e.clinician_id != clinician_id:
                continue
            if wanted is not None and e.source not in wanted:
                continue
            if supporting_clinician_id is not None and e.supporting_clinician_id != supporting_clinician_id:
                continue
            out.append(copy.copy(e))
        return sorted(out, key=lambda e: (e.date, e.clinician_id, e.session.value))

    def upsert_rota_entry(self, entry: RotaEntry) -> RotaEntry:
        entry = copy.copy(entry)
        existing = self.rota_entries.get(entry.key)
        if existing is not None:
            entry.id = existing.id
        else:
            taken = [e.id for e in self.rota_entries.values()]
            if entry.id is None or entry.id in taken:
                entry.id = self._next_id(taken)
        self.rota_entries[entry.key] = copy.copy(entry)
        return entry

    def delete_rota_entry(self, entry_id: int) -> None:
        for key, e in self.rota_entries.items():
            if e.id == entry_id:
                del self.rota_entries[key]
                return
        raise NotFoundError("RotaEntry", entry_id)

    # -- coverage requests ---------------------------------------------------
    def get_coverage_request(self, request_id: int) -> Optional[CoverageRequest]:
        r = self.coverage_requests.get(request_id)
        return copy.copy(r) if r else None

    def find_coverage_requests(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        status: Optional[CoverageStatus] = None,
        coverage_type: Optional[CoverageType] = None,
    ) -> List[CoverageRequest]:
        out = [
            copy.copy(r) for r in self.coverage_requests.values()
            if _in_range(r.date, start, end)
            and (status is None or r.status is status)
            and (coverage_type is None or r.type is coverage_type)
        ]
        return sorted(out, key=lambda r: (r.date, r.session.value, r.id))

    def add_coverage_request(self, request: CoverageRequest) -> CoverageRequest:
        request = copy.copy(request)
        if request.id is None or request.id in self.coverage_requests:
            request.id = self._next_id(self.coverage_requests)
        self.coverage_requests[request.id] = copy.copy(request)
        return request

    def update_coverage_request(self, request: CoverageRequest) -> CoverageRequest:
        if request.id not in self.coverage_requests:
            raise NotFoundError("CoverageRequest", request.id)
        self.coverage_requests[request.id] = copy.copy(request)
        return copy.copy(request)

    def delete_coverage_request(self, request_id: int) -> None:
        if self.coverage_requests.pop(request_id, None) is None:
            raise NotFoundError("CoverageRequest", request_id)

    # -- coordination --------------------------------------------------------
    @contextmanager
    def advisory_lock(self, name: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(name, threading.RLock())
        with lock:
            yield


def call_with_retry(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """
    Call fn, retrying only StoreUnavailableError a bounded number of times.

    Any other exception propagates on the first failure.
    """
    attempts = STORE_RETRY["attempts"]
    delay = STORE_RETRY["delay_seconds"]
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except StoreUnavailableError as e:
            if attempt == attempts:
                logger.error(f"Store call {getattr(fn, '__name__', fn)} failed after {attempts} attempts: {e}")
                raise
            logger.warning(f"Store unavailable (attempt {attempt}/{attempts}): {e}; retrying")
            time.sleep(delay)
