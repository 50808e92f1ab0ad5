"""
metrics.py — Workload metrics over a composed schedule

Each ScheduleEntry falls in exactly one bucket: leave, rest, oncall, duty
(has a duty), or empty. Load = duty + oncall sessions. Spread is reported per
role, since consultants and registrars carry different rotas.
"""

from typing import Any, Dict, Iterable, List

from .models import Role, RotaSource, ScheduleEntry

BUCKETS = ("duty", "oncall", "leave", "rest", "empty")


def classify_entry(entry: ScheduleEntry) -> str:
    if entry.source is RotaSource.LEAVE:
        return "leave"
    if entry.is_rest:
        return "rest"
    if entry.is_oncall:
        return "oncall"
    if entry.duty_id is not None:
        return "duty"
    return "empty"


def _spread(values: List[float]) -> Dict[str, float]:
    import numpy as np

    if not values:
        return {"mean": 0.0, "std": 0.0, "cv": 0.0, "min": 0.0, "max": 0.0}
    mean_val = float(np.mean(values))
    std_val = float(np.std(values, ddof=0))
    return {
        "mean": mean_val,
        "std": std_val,
        "cv": (std_val / mean_val * 100) if mean_val > 0 else 0.0,
        "min": min(values),
        "max": max(values),
    }


def calculate_workload_metrics(entries: Iterable[ScheduleEntry]) -> Dict[str, Any]:
    """
    Returns:
        {
          counts: {clinician_name: {bucket: int}},
          roles:  {clinician_name: role value},
          load:   {clinician_name: int},
          per_role: {role value: {mean, std, cv, min, max}},
        }
    """
    counts: Dict[str, Dict[str, int]] = {}
    roles: Dict[str, str] = {}
    for entry in entries:
        row = counts.setdefault(entry.clinician_name, {b: 0 for b in BUCKETS})
        roles[entry.clinician_name] = entry.clinician_role.value
        row[classify_entry(entry)] += 1

    load = {name: row["duty"] + row["oncall"] for name, row in counts.items()}
    per_role = {
        role.value: _spread([float(load[n]) for n, r in roles.items() if r == role.value])
        for role in Role
    }
    return {"counts": counts, "roles": roles, "load": load, "per_role": per_role}
