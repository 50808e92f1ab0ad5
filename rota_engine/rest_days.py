"""
rest_days.py — Rest-Day Deriver

Registrars get compensatory rest around their on-call days (REST_RULES):

  Saturday on-call   → Friday before, Monday and Tuesday after: AM + PM OFF
  Mon–Thu on-call    → next day: AM on the SPA duty, PM OFF

On-call days up to REST_LOOKAROUND_DAYS outside the requested range are
examined, so rest generated by an on-call just outside the range still
appears inside it. Output is restricted to the requested range and holds at
most one row per (date, clinician, session).
"""

import logging
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .dates import add_days, date_range, day_of_week
from .models import Duty, RestDay, Role, Session
from .rota_config import REST_LOOKAROUND_DAYS, REST_RULES, SPA_DUTY_MARKER
from .rotation import OnCallLookup

logger = logging.getLogger(__name__)

RestKey = Tuple[date, int, Session]


def find_spa_duty(duties: Iterable[Duty]) -> Optional[Duty]:
    """First active duty whose name contains the SPA marker."""
    for duty in duties:
        if duty.active and SPA_DUTY_MARKER in duty.name:
            return duty
    return None


def derive_rest_days(
    start: date,
    end: date,
    registrar_on_call: Callable[[date], Optional[int]],
    registrar_ids: Set[int],
    spa_duty_id: Optional[int],
) -> List[RestDay]:
    """
    Derive rest rows for [start, end].

    Args:
        registrar_on_call: date → on-call registrar id (or None)
        registrar_ids:     ids of active registrars; anyone else is ignored
        spa_duty_id:       duty for the morning after a weekday on-call
    """
    rest: Dict[RestKey, RestDay] = {}

    for oncall_day in date_range(add_days(start, -REST_LOOKAROUND_DAYS), add_days(end, REST_LOOKAROUND_DAYS)):
        registrar_id = registrar_on_call(oncall_day)
        if registrar_id is None or registrar_id not in registrar_ids:
            continue
        rule = REST_RULES.get(day_of_week(oncall_day))
        if rule is None:
            continue

        for offset in rule["offsets"]:
            rest_day = add_days(oncall_day, offset)
            if rest_day < start or rest_day > end:
                continue
            for session, outcome in ((Session.AM, rule["am"]), (Session.PM, rule["pm"])):
                key = (rest_day, registrar_id, session)
                if key in rest:
                    continue
                if outcome == "spa":
                    rest[key] = RestDay(rest_day, registrar_id, session, duty_id=spa_duty_id, is_off=False)
                else:
                    rest[key] = RestDay(rest_day, registrar_id, session, duty_id=None, is_off=True)

    return sorted(rest.values(), key=lambda r: (r.date, r.clinician_id, r.session.value))


def derive_rest_days_from_store(store, start: date, end: date,
                                lookup: Optional[OnCallLookup] = None) -> List[RestDay]:
    """Convenience wrapper that loads registrars, SPA duty and rotation from a store."""
    lookup = lookup or OnCallLookup.from_store(
        store, add_days(start, -REST_LOOKAROUND_DAYS), add_days(end, REST_LOOKAROUND_DAYS)
    )
    registrar_ids = {c.id for c in store.find_clinicians(role=Role.REGISTRAR)}
    spa = find_spa_duty(store.find_duties(active_only=True))
    if spa is None:
        logger.warning(f"No active duty containing '{SPA_DUTY_MARKER}'; post on-call mornings have no duty")
    return derive_rest_days(
        start, end,
        lambda d: lookup.get(d, Role.REGISTRAR),
        registrar_ids,
        spa.id if spa else None,
    )


def index_rest_days(rest_days: Iterable[RestDay]) -> Dict[RestKey, RestDay]:
    return {(r.date, r.clinician_id, r.session): r for r in rest_days}
