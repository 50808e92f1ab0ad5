"""
rota_config.py — Rota rules, scoring weights and engine constants

PRECEDENCE (one outcome per clinician × date × session)
───────────────────────────────────────────────────────
  1. Leave        (FULL leave covers AM and PM)
  2. Manual       (admin override rows)
  3. Rest         (registrars only, derived from on-call)
  4. Coverage     (assigned coverage request, shown as a manual row)
  5. On-call      (rotation calculator)
  6. Job plan     (weekdays only, week template 1..5)
  7. Empty        (no duty)

Persisted rows with a pinned source are never touched by regeneration.

REST AFTER REGISTRAR ON-CALL
────────────────────────────
  Saturday on-call    → Fri before, Mon and Tue after: AM + PM OFF
  Mon–Thu on-call     → next day: AM = SPA duty, PM = OFF
  Friday / Sunday     → nothing

SUGGESTION SCORE (registrars, trailing WORKLOAD_WINDOW_DAYS)
────────────────────────────────────────────────────────────
  + 2 per day since last coverage   (capped at 30, never → 30)
  + 1 per day since last on-call    (capped at 30, never → 30)
  − 8 per on-call day
  − 3 per duty session
  − 5 per coverage assignment
  −15 if covered within the last 3 days, −10 more if covered yesterday
  Raw score rescaled from SCORE_BOUNDS onto 0..100 and clamped.
"""

from typing import Any, Dict, FrozenSet

from .models import RotaSource

# ---------------------------------------------------------------------------
# Rota entry lifecycle
# ---------------------------------------------------------------------------
PINNED_SOURCES: FrozenSet[RotaSource] = frozenset({
    RotaSource.MANUAL, RotaSource.LEAVE, RotaSource.REST,
})
REGENERABLE_SOURCES: FrozenSet[RotaSource] = frozenset({
    RotaSource.JOBPLAN, RotaSource.ONCALL,
})

# Job plan templates exist for weeks 1..5 of a month
JOB_PLAN_WEEKS = 5

# ---------------------------------------------------------------------------
# Rest-day rules (ISO weekday of the on-call day → offsets and outcome)
# ---------------------------------------------------------------------------
SATURDAY = 6
REST_RULES: Dict[int, Dict[str, Any]] = {
    # Saturday on-call: Friday before, Monday and Tuesday after are fully off
    SATURDAY: {"offsets": (-1, 2, 3), "am": "off", "pm": "off"},
    # Monday–Thursday on-call: SPA morning, afternoon off
    1: {"offsets": (1,), "am": "spa", "pm": "off"},
    2: {"offsets": (1,), "am": "spa", "pm": "off"},
    3: {"offsets": (1,), "am": "spa", "pm": "off"},
    4: {"offsets": (1,), "am": "spa", "pm": "off"},
}
# How far outside the requested range on-call days can generate rest inside it
REST_LOOKAROUND_DAYS = 3
SPA_DUTY_MARKER = "SPA"
REST_OFF_LABEL = "OFF"

# ---------------------------------------------------------------------------
# Auto-assign scoring
# ---------------------------------------------------------------------------
WORKLOAD_WINDOW_DAYS = 30

SCORING_WEIGHTS: Dict[str, float] = {
    "days_since_coverage":   2.0,
    "days_since_oncall":     1.0,
    "oncall_day":           -8.0,
    "duty_session":         -3.0,
    "coverage_assignment":  -5.0,
    "recent_coverage":     -15.0,
    "covered_yesterday":   -10.0,
}
RECENCY_CAP_DAYS = 30
RECENT_COVERAGE_DAYS = 3

# Rescaling bounds for the raw registrar score; configurable via settings.json
SCORE_BOUNDS: Dict[str, float] = {"min": -150.0, "max": 90.0}

CONSULTANT_SCORING: Dict[str, float] = {
    "base":             100.0,
    "oncall_day":        -5.0,
    "coverage_assignment": -10.0,
    "recent_coverage":  -15.0,
}

UNAVAILABLE_ON_LEAVE = "On leave"
UNAVAILABLE_REST = "Rest day after on-call"
UNAVAILABLE_ONCALL = "On-call"
UNAVAILABLE_ASSIGNED = "Already assigned to cover another duty"

# ---------------------------------------------------------------------------
# Jobs and operational limits
# ---------------------------------------------------------------------------
REGENERATION_HORIZON_MONTHS = 4
MAX_BULK_LEAVE_DAYS = 60

STORE_RETRY: Dict[str, Any] = {
    "attempts": 3,
    "delay_seconds": 0.2,
}

AUTO_ASSIGN_LOG_FILENAME = "auto_assign_log.json"
