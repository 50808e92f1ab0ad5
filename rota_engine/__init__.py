"""
Clinical Duty Rota Engine

Modules:
- rotation: On-call rotation calculator (consultant weekly, registrar daily)
- rest_days: Post-on-call rest derivation for registrars
- coverage / impact: Coverage need detection and consultant absence impact
- composer: Effective schedule for a date range (precedence resolution)
- auto_assign: Candidate scoring and coverage auto-assignment
- materializer: Persisted rota generation and scheduled regeneration
- store / api_client: In-memory and REST-backed persistence
- config: CSV sources of truth and settings
"""

from .auto_assign import (
    auto_assign_coverage,
    bulk_auto_assign,
    get_suggested_consultants,
    get_suggested_registrars,
)
from .composer import compute_schedule, get_today_oncall
from .config import get_config, load_store
from .coverage import create_coverage_requests, detect_coverage_needs, detect_coverage_needs_for_clinician
from .impact import detect_consultant_impact, restore_registrar_entries_for_consultant
from .materializer import generate_rota, run_regeneration
from .rest_days import derive_rest_days
from .rotation import OnCallLookup, on_call_for, who_is_on_call
from .store import InMemoryStore, RotaStore

__all__ = [
    "auto_assign_coverage",
    "bulk_auto_assign",
    "get_suggested_consultants",
    "get_suggested_registrars",
    "compute_schedule",
    "get_today_oncall",
    "get_config",
    "load_store",
    "create_coverage_requests",
    "detect_coverage_needs",
    "detect_coverage_needs_for_clinician",
    "detect_consultant_impact",
    "restore_registrar_entries_for_consultant",
    "generate_rota",
    "run_regeneration",
    "derive_rest_days",
    "OnCallLookup",
    "on_call_for",
    "who_is_on_call",
    "InMemoryStore",
    "RotaStore",
]
