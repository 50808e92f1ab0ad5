"""
models.py — Entities and result records of the rota engine

Sources of truth (read by the engine, written only by admin operations):
  Clinician, Duty, JobPlanWeek, OnCallConfig, OnCallSlot, OnCallPattern,
  SlotAssignment, Leave

Persisted outputs (written by the engine):
  RotaEntry, CoverageRequest

Ephemeral results:
  ScheduleEntry, CoverageNeed, FreedRegistrar, RestDay, ScoredCandidate,
  UnavailableCandidate

Closed variants are Enums; parse_enum() turns raw strings into members and
raises ValidationError for anything outside the set.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union, get_args, get_origin, get_type_hints

from .errors import ValidationError


class Role(Enum):
    CONSULTANT = "consultant"
    REGISTRAR = "registrar"


class Session(Enum):
    AM = "AM"
    PM = "PM"
    FULL = "FULL"

    def covers(self, other: "Session") -> bool:
        """True if a row for this session applies to `other` (FULL covers both halves)."""
        return self is Session.FULL or self is other

    def halves(self) -> Tuple["Session", ...]:
        return HALF_SESSIONS if self is Session.FULL else (self,)


HALF_SESSIONS: Tuple[Session, Session] = (Session.AM, Session.PM)


class RotaSource(Enum):
    JOBPLAN = "jobplan"
    ONCALL = "oncall"
    MANUAL = "manual"
    LEAVE = "leave"
    REST = "rest"


class LeaveType(Enum):
    ANNUAL = "annual"
    STUDY = "study"
    SICK = "sick"
    PROFESSIONAL = "professional"


class CoverageType(Enum):
    REGISTRAR = "registrar"
    CONSULTANT = "consultant"


class CoverageStatus(Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    CANCELLED = "cancelled"


class CoverageReason(Enum):
    LEAVE = "leave"
    ONCALL_CONFLICT = "oncall_conflict"
    MANUAL = "manual"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], value: Any, field_name: Optional[str] = None) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        label = field_name or enum_cls.__name__
        raise ValidationError(f"Invalid {label}: {value!r} (expected one of {allowed})")


# ---------------------------------------------------------------------------
# Sources of truth
# ---------------------------------------------------------------------------

@dataclass
class Clinician:
    id: int
    name: str
    role: Role
    grade: Optional[str] = None
    active: bool = True


@dataclass
class Duty:
    id: int
    name: str
    color: Optional[str] = None
    # None means "not specified", which counts as requiring coverage
    requires_coverage: Optional[bool] = None
    active: bool = True

    @property
    def needs_coverage(self) -> bool:
        return self.requires_coverage is not False


@dataclass
class JobPlanWeek:
    clinician_id: int
    week_no: int
    day_of_week: int
    am_duty_id: Optional[int] = None
    pm_duty_id: Optional[int] = None
    am_supporting_clinician_id: Optional[int] = None
    pm_supporting_clinician_id: Optional[int] = None

    def duty_for(self, session: Session) -> Optional[int]:
        return self.am_duty_id if session is Session.AM else self.pm_duty_id

    def supporting_for(self, session: Session) -> Optional[int]:
        if session is Session.AM:
            return self.am_supporting_clinician_id
        return self.pm_supporting_clinician_id


@dataclass
class OnCallConfig:
    role: Role
    start_date: date
    cycle_length: int


@dataclass
class OnCallSlot:
    id: int
    role: Role
    position: int
    name: Optional[str] = None
    active: bool = True


@dataclass
class OnCallPattern:
    role: Role
    day_of_cycle: int
    slot_id: int


@dataclass
class SlotAssignment:
    id: int
    slot_id: int
    clinician_id: int
    effective_from: date
    effective_to: Optional[date] = None

    def covers(self, d: date) -> bool:
        return self.effective_from <= d and (self.effective_to is None or d <= self.effective_to)

    def overlaps(self, start: date, end: Optional[date]) -> bool:
        """Inclusive overlap test against [start, end]; None means open-ended."""
        starts_before_end = end is None or self.effective_from <= end
        ends_after_start = self.effective_to is None or self.effective_to >= start
        return starts_before_end and ends_after_start


@dataclass
class Leave:
    id: int
    clinician_id: int
    date: date
    session: Session
    type: LeaveType
    note: Optional[str] = None

    def covers(self, session: Session) -> bool:
        return self.session.covers(session)


# ---------------------------------------------------------------------------
# Persisted outputs
# ---------------------------------------------------------------------------

@dataclass
class RotaEntry:
    date: date
    clinician_id: int
    session: Session
    source: RotaSource
    duty_id: Optional[int] = None
    is_oncall: bool = False
    supporting_clinician_id: Optional[int] = None
    note: Optional[str] = None
    id: Optional[int] = None

    @property
    def key(self) -> Tuple[date, int, Session]:
        return (self.date, self.clinician_id, self.session)

    def same_content(self, other: "RotaEntry") -> bool:
        return (
            self.source is other.source
            and self.duty_id == other.duty_id
            and self.is_oncall == other.is_oncall
            and self.supporting_clinician_id == other.supporting_clinician_id
        )


@dataclass
class CoverageRequest:
    date: date
    session: Session
    duty_id: int
    reason: CoverageReason
    type: CoverageType = CoverageType.REGISTRAR
    status: CoverageStatus = CoverageStatus.PENDING
    consultant_id: Optional[int] = None
    absent_registrar_id: Optional[int] = None
    absent_consultant_id: Optional[int] = None
    assigned_registrar_id: Optional[int] = None
    assigned_consultant_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    note: Optional[str] = None
    id: Optional[int] = None

    @property
    def absent_clinician_id(self) -> Optional[int]:
        if self.type is CoverageType.CONSULTANT:
            return self.absent_consultant_id
        return self.absent_registrar_id

    @property
    def assignee_id(self) -> Optional[int]:
        if self.type is CoverageType.CONSULTANT:
            return self.assigned_consultant_id
        return self.assigned_registrar_id


# ---------------------------------------------------------------------------
# Ephemeral results
# ---------------------------------------------------------------------------

@dataclass
class ScheduleEntry:
    date: date
    clinician_id: int
    clinician_name: str
    clinician_role: Role
    session: Session
    source: RotaSource
    duty_id: Optional[int] = None
    duty_name: Optional[str] = None
    duty_color: Optional[str] = None
    is_oncall: bool = False
    is_leave: bool = False
    leave_type: Optional[LeaveType] = None
    manual_override_id: Optional[int] = None
    is_rest: bool = False
    is_rest_off: bool = False
    supporting_clinician_id: Optional[int] = None
    supporting_clinician_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_record(self)


@dataclass
class CoverageNeed:
    date: date
    session: Session
    duty_id: int
    reason: CoverageReason
    type: CoverageType = CoverageType.REGISTRAR
    consultant_id: Optional[int] = None
    absent_registrar_id: Optional[int] = None
    absent_consultant_id: Optional[int] = None

    @property
    def absent_clinician_id(self) -> Optional[int]:
        if self.type is CoverageType.CONSULTANT:
            return self.absent_consultant_id
        return self.absent_registrar_id

    @property
    def key(self) -> Tuple[date, Session, int, Optional[int], CoverageType, Optional[int]]:
        return (self.date, self.session, self.duty_id, self.absent_clinician_id,
                self.type, self.consultant_id)


@dataclass
class FreedRegistrar:
    date: date
    session: Session
    registrar_id: int
    registrar_name: str
    duty_id: Optional[int] = None
    duty_name: Optional[str] = None


@dataclass
class RestDay:
    date: date
    clinician_id: int
    session: Session
    duty_id: Optional[int] = None
    is_off: bool = True


@dataclass
class ScoredCandidate:
    clinician_id: int
    name: str
    score: float
    raw_score: float = 0.0
    grade: Optional[str] = None
    reasons: List[str] = field(default_factory=list)
    workload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UnavailableCandidate:
    clinician_id: int
    name: str
    reason: str


def to_record(obj: Any) -> Dict[str, Any]:
    """Plain-JSON dict of a dataclass: dates as ISO strings, enums as values."""

    def _plain(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        if isinstance(value, dict):
            return {k: _plain(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_plain(v) for v in value]
        return value

    return {k: _plain(v) for k, v in asdict(obj).items()}


def _coerce(hint: Any, value: Any) -> Any:
    if value is None:
        return None
    if get_origin(hint) is Union:
        args = [a for a in get_args(hint) if a is not type(None)]
        hint = args[0] if len(args) == 1 else hint
    if isinstance(hint, type):
        if issubclass(hint, Enum):
            return hint(value)
        if hint is datetime:
            return value if isinstance(value, datetime) else datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        if hint is date:
            return value if isinstance(value, date) else date.fromisoformat(str(value)[:10])
    return value


def from_record(cls: Type[Any], data: Dict[str, Any]) -> Any:
    """Inverse of to_record(): build a dataclass from a plain-JSON dict, ignoring unknown keys."""
    hints = get_type_hints(cls)
    kwargs = {f.name: _coerce(hints[f.name], data[f.name]) for f in fields(cls) if f.name in data}
    try:
        return cls(**kwargs)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Cannot build {cls.__name__} from {data!r}: {e}")
