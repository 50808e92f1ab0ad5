"""
auto_assign.py — Coverage Auto-Assigner: rank and pick cover for requests

For a (date, session) each candidate of the request's role is either
unavailable, with the first matching reason:

  on leave → rest day after on-call (registrars) → on-call → already covering
  another request that session

or scored on trailing WORKLOAD_WINDOW_DAYS history (see rota_config for the
weights). Registrar raw scores are rescaled from SCORE_BOUNDS onto 0..100;
consultants start from a flat base and lose points for workload. Ties are
broken by clinician id so results are deterministic.

bulk_auto_assign() walks pending requests in date/session order, so each
assignment is visible to the next suggestion, and appends a run summary to
auto_assign_log.json when an output directory is given.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from .audit import AuditSink, resolve_sink
from .dates import add_days, format_date
from .errors import NotFoundError
from .models import (
    CoverageRequest,
    CoverageStatus,
    CoverageType,
    Role,
    RotaSource,
    ScoredCandidate,
    Session,
    UnavailableCandidate,
    parse_enum,
)
from .rest_days import derive_rest_days, find_spa_duty
from .rota_config import (
    AUTO_ASSIGN_LOG_FILENAME,
    CONSULTANT_SCORING,
    RECENCY_CAP_DAYS,
    RECENT_COVERAGE_DAYS,
    REST_LOOKAROUND_DAYS,
    SCORE_BOUNDS,
    SCORING_WEIGHTS,
    UNAVAILABLE_ASSIGNED,
    UNAVAILABLE_ON_LEAVE,
    UNAVAILABLE_ONCALL,
    UNAVAILABLE_REST,
    WORKLOAD_WINDOW_DAYS,
)
from .rotation import OnCallLookup
from .store import RotaStore

logger = logging.getLogger(__name__)

DUTY_SOURCES = (RotaSource.JOBPLAN, RotaSource.MANUAL)


@dataclass
class Suggestions:
    available: List[ScoredCandidate] = field(default_factory=list)
    unavailable: List[UnavailableCandidate] = field(default_factory=list)

    @property
    def best(self) -> Optional[ScoredCandidate]:
        return self.available[0] if self.available else None


# ---------------------------------------------------------------------------
# Workload history
# ---------------------------------------------------------------------------

def _days_since(target: date, last: Optional[date]) -> int:
    if last is None:
        return RECENCY_CAP_DAYS
    return min(RECENCY_CAP_DAYS, (target - last).days)


def _workload(
    store: RotaStore,
    clinician_ids: Iterable[int],
    role: Role,
    target: date,
    lookup: OnCallLookup,
    skip_request_id: Optional[int] = None,
) -> Dict[int, Dict[str, Any]]:
    """Per-clinician counts over [target - window, target - 1]; coverage also counts target day."""
    window_start = add_days(target, -WORKLOAD_WINDOW_DAYS)
    yesterday = add_days(target, -1)
    ids = set(clinician_ids)
    stats: Dict[int, Dict[str, Any]] = {
        cid: {"oncall_count": 0, "duty_count": 0, "coverage_count": 0,
              "last_oncall": None, "last_coverage": None}
        for cid in ids
    }

    d = window_start
    while d <= yesterday:
        cid = lookup.get(d, role)
        if cid in stats:
            stats[cid]["oncall_count"] += 1
            stats[cid]["last_oncall"] = d
        d = add_days(d, 1)

    for entry in store.find_rota_entries(start=window_start, end=yesterday, sources=DUTY_SOURCES):
        if entry.clinician_id in stats and entry.duty_id is not None:
            stats[entry.clinician_id]["duty_count"] += 1

    for request in store.find_coverage_requests(start=window_start, end=target, status=CoverageStatus.ASSIGNED):
        cid = request.assignee_id
        if cid not in stats or request.id == skip_request_id:
            continue
        stats[cid]["coverage_count"] += 1
        last = stats[cid]["last_coverage"]
        if last is None or request.date > last:
            stats[cid]["last_coverage"] = request.date
    return stats


def score_registrar(
    stats: Dict[str, Any],
    target: date,
    weights: Optional[Dict[str, float]] = None,
    bounds: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """Return {"score", "raw_score", "reasons"} for one registrar's workload stats."""
    w = weights or SCORING_WEIGHTS
    b = bounds or SCORE_BOUNDS
    days_cov = _days_since(target, stats["last_coverage"])
    days_oc = _days_since(target, stats["last_oncall"])
    reasons: List[str] = []

    raw = w["days_since_coverage"] * days_cov + w["days_since_oncall"] * days_oc
    raw += w["oncall_day"] * stats["oncall_count"]
    raw += w["duty_session"] * stats["duty_count"]
    raw += w["coverage_assignment"] * stats["coverage_count"]

    if stats["last_coverage"] is None:
        reasons.append(f"No coverage in last {WORKLOAD_WINDOW_DAYS} days")
    else:
        reasons.append(f"Last covered {days_cov} day(s) ago")
        if days_cov <= RECENT_COVERAGE_DAYS:
            raw += w["recent_coverage"]
        if days_cov == 1:
            raw += w["covered_yesterday"]
            reasons.append("Covered yesterday")
    if stats["oncall_count"]:
        reasons.append(f"{stats['oncall_count']} on-call day(s) in last {WORKLOAD_WINDOW_DAYS} days")
    if stats["coverage_count"]:
        reasons.append(f"{stats['coverage_count']} coverage assignment(s) in last {WORKLOAD_WINDOW_DAYS} days")

    span = b["max"] - b["min"]
    normalized = (raw - b["min"]) / span * 100 if span > 0 else 0.0
    score = round(min(100.0, max(0.0, normalized)), 1)
    return {"score": score, "raw_score": raw, "reasons": reasons}


def score_consultant(stats: Dict[str, Any], target: date,
                     scoring: Optional[Dict[str, float]] = None) -> Dict[str, Any]:
    s = scoring or CONSULTANT_SCORING
    raw = s["base"] + s["oncall_day"] * stats["oncall_count"] + s["coverage_assignment"] * stats["coverage_count"]
    reasons: List[str] = []
    if stats["last_coverage"] is not None and _days_since(target, stats["last_coverage"]) <= RECENT_COVERAGE_DAYS:
        raw += s["recent_coverage"]
        reasons.append("Covered in last 3 days")
    if stats["coverage_count"]:
        reasons.append(f"{stats['coverage_count']} coverage assignment(s) in last {WORKLOAD_WINDOW_DAYS} days")
    return {"score": round(min(100.0, max(0.0, raw)), 1), "raw_score": raw, "reasons": reasons}


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

def _suggest(
    store: RotaStore,
    role: Role,
    d: date,
    session: Session,
    exclude_ids: Iterable[int],
    skip_request_id: Optional[int],
    weights: Optional[Dict[str, float]],
    bounds: Optional[Dict[str, float]],
    consultant_scoring: Optional[Dict[str, float]] = None,
) -> Suggestions:
    session = parse_enum(Session, session, "session")
    excluded: Set[int] = set(exclude_ids)
    candidates = [c for c in store.find_clinicians(role=role) if c.id not in excluded]
    lookup = OnCallLookup.from_store(
        store, add_days(d, -WORKLOAD_WINDOW_DAYS - REST_LOOKAROUND_DAYS), add_days(d, REST_LOOKAROUND_DAYS)
    )

    on_leave = {
        lv.clinician_id for lv in store.find_leaves(start=d, end=d) if lv.covers(session)
    }
    resting: Set[int] = set()
    if role is Role.REGISTRAR:
        spa = find_spa_duty(store.find_duties(active_only=True))
        for rest in derive_rest_days(d, d, lambda day: lookup.get(day, Role.REGISTRAR),
                                     {c.id for c in candidates}, spa.id if spa else None):
            if rest.session is session:
                resting.add(rest.clinician_id)
        for row in store.find_rota_entries(start=d, end=d, sources=[RotaSource.REST]):
            if row.session.covers(session):
                resting.add(row.clinician_id)
    covering = {
        r.assignee_id for r in store.find_coverage_requests(start=d, end=d, status=CoverageStatus.ASSIGNED)
        if r.session is session and r.id != skip_request_id and r.assignee_id is not None
    }

    result = Suggestions()
    eligible = []
    for clinician in candidates:
        if clinician.id in on_leave:
            reason = UNAVAILABLE_ON_LEAVE
        elif clinician.id in resting:
            reason = UNAVAILABLE_REST
        elif lookup.get(d, role) == clinician.id:
            reason = UNAVAILABLE_ONCALL
        elif clinician.id in covering:
            reason = UNAVAILABLE_ASSIGNED
        else:
            eligible.append(clinician)
            continue
        result.unavailable.append(UnavailableCandidate(clinician.id, clinician.name, reason))

    stats = _workload(store, [c.id for c in eligible], role, d, lookup, skip_request_id)
    for clinician in eligible:
        if role is Role.REGISTRAR:
            scored = score_registrar(stats[clinician.id], d, weights, bounds)
        else:
            scored = score_consultant(stats[clinician.id], d, consultant_scoring)
        workload = dict(stats[clinician.id])
        for key in ("last_oncall", "last_coverage"):
            if workload[key] is not None:
                workload[key] = format_date(workload[key])
        result.available.append(ScoredCandidate(
            clinician_id=clinician.id,
            name=clinician.name,
            grade=clinician.grade,
            score=scored["score"],
            raw_score=scored["raw_score"],
            reasons=scored["reasons"],
            workload=workload,
        ))

    result.available.sort(key=lambda c: (-c.score, c.clinician_id))
    result.unavailable.sort(key=lambda u: u.clinician_id)
    return result


def get_suggested_registrars(
    store: RotaStore,
    d: date,
    session: Session,
    exclude_ids: Iterable[int] = (),
    skip_request_id: Optional[int] = None,
    weights: Optional[Dict[str, float]] = None,
    bounds: Optional[Dict[str, float]] = None,
) -> Suggestions:
    return _suggest(store, Role.REGISTRAR, d, session, exclude_ids, skip_request_id, weights, bounds)


def get_suggested_consultants(
    store: RotaStore,
    d: date,
    session: Session,
    exclude_ids: Iterable[int] = (),
    skip_request_id: Optional[int] = None,
    scoring: Optional[Dict[str, float]] = None,
) -> Suggestions:
    return _suggest(store, Role.CONSULTANT, d, session, exclude_ids, skip_request_id, None, None, scoring)


def suggest_for_request(store: RotaStore, request: CoverageRequest,
                        settings: Optional[Dict[str, Any]] = None) -> Suggestions:
    """Suggestions for a request, excluding the absent clinician. `settings` is config.get_config() output."""
    settings = settings or {}
    exclude = [request.absent_clinician_id] if request.absent_clinician_id is not None else []
    if request.type is CoverageType.CONSULTANT:
        return get_suggested_consultants(store, request.date, request.session, exclude, request.id,
                                         settings.get("consultant_scoring"))
    return get_suggested_registrars(store, request.date, request.session, exclude, request.id,
                                    settings.get("scoring_weights"), settings.get("score_bounds"))


# ---------------------------------------------------------------------------
# Auto-assign
# ---------------------------------------------------------------------------

def auto_assign_coverage(
    store: RotaStore,
    request_id: int,
    now: Optional[datetime] = None,
    audit: Optional[AuditSink] = None,
    settings: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Assign the best-scoring available candidate to one pending request.

    Returns {"success", "request_id", "assigned_to", "assigned_name", "score", "error"}.
    Raises NotFoundError if the request does not exist.
    """
    with store.advisory_lock("coverage_assignment"):
        request = store.get_coverage_request(request_id)
        if request is None:
            raise NotFoundError("CoverageRequest", request_id)
        result: Dict[str, Any] = {
            "success": False, "request_id": request_id,
            "assigned_to": None, "assigned_name": None, "score": None, "error": None,
        }
        if request.status is not CoverageStatus.PENDING:
            result["error"] = "Coverage request is not pending"
            return result

        best = suggest_for_request(store, request, settings).best
        if best is None:
            result["error"] = f"No available {request.type.value}s"
            return result

        before = store.get_coverage_request(request_id)
        if request.type is CoverageType.CONSULTANT:
            request.assigned_consultant_id = best.clinician_id
        else:
            request.assigned_registrar_id = best.clinician_id
        request.status = CoverageStatus.ASSIGNED
        request.assigned_at = now or datetime.now(timezone.utc)
        request.assigned_by = "auto-assign"
        updated = store.update_coverage_request(request)
        resolve_sink(audit).record("auto-assign", "coverageRequest", request_id, before, updated)

    logger.info(f"Request #{request_id} {request.date} {request.session.value} → {best.name} (score {best.score})")
    result.update(success=True, assigned_to=best.clinician_id, assigned_name=best.name, score=best.score)
    return result


def bulk_auto_assign(
    store: RotaStore,
    start: Optional[date] = None,
    end: Optional[date] = None,
    output_dir: Optional[Path] = None,
    now: Optional[datetime] = None,
    audit: Optional[AuditSink] = None,
    settings: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Auto-assign every pending request in [start, end] in date/session order.

    Returns {"assigned", "failed", "details"}.
    """
    pending = store.find_coverage_requests(start=start, end=end, status=CoverageStatus.PENDING)
    pending.sort(key=lambda r: (r.date, r.session.value, r.id))

    details: List[Dict[str, Any]] = []
    assigned = failed = 0
    for request in pending:
        outcome = auto_assign_coverage(store, request.id, now=now, audit=audit, settings=settings)
        outcome["date"] = format_date(request.date)
        outcome["session"] = request.session.value
        details.append(outcome)
        if outcome["success"]:
            assigned += 1
        else:
            failed += 1

    logger.info(f"Bulk auto-assign: {assigned} assigned, {failed} failed of {len(pending)} pending")
    summary = {"assigned": assigned, "failed": failed, "details": details}

    if output_dir is not None:
        _append_run_log(Path(output_dir), summary)
    return summary


def _append_run_log(output_dir: Path, summary: Dict[str, Any]) -> None:
    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        **summary,
    }
    log_path = output_dir / AUTO_ASSIGN_LOG_FILENAME
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        existing: List[Dict[str, Any]] = []
        if log_path.exists():
            with open(log_path) as f:
                data = json.load(f)
                existing = data if isinstance(data, list) else [data]
        existing.append(log_entry)
        with open(log_path, "w") as f:
            json.dump(existing, f, indent=2)
    except Exception as e:
        logger.warning(f"Could not write auto-assign log: {e}")
