"""
Shared fixtures: a small in-memory clinic.

  Consultants: 1 Dr Adams, 2 Dr Baker
  Registrars:  10 Dr Evans (supports Adams), 11 Dr Foster (supports Baker AM), 12 Dr Grant (no job plan)
  Duties:      1 Theatre (covered), 2 Clinic (unspecified → covered), 3 SPA, 4 Admin (not covered)

rota_clinic adds rotations starting Monday 2024-01-01:
  consultants weekly, cycle 2 → Adams on the week of 2024-02-26, Baker on 2024-03-04
  registrars daily round robin, cycle 21 → March d: Evans if d % 3 == 1,
  Foster if d % 3 == 2, Grant if d % 3 == 0
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from rota_engine.models import (
    Clinician,
    Duty,
    JobPlanWeek,
    OnCallConfig,
    OnCallSlot,
    Role,
    SlotAssignment,
)
from rota_engine.store import InMemoryStore


def _job_plans():
    for week_no in range(1, 6):
        for dow in range(1, 6):
            yield JobPlanWeek(1, week_no, dow, am_duty_id=1, pm_duty_id=2)
            yield JobPlanWeek(2, week_no, dow, am_duty_id=2, pm_duty_id=4)
            yield JobPlanWeek(10, week_no, dow, am_duty_id=1, pm_duty_id=2,
                              am_supporting_clinician_id=1, pm_supporting_clinician_id=1)
            yield JobPlanWeek(11, week_no, dow, am_duty_id=2, pm_duty_id=4,
                              am_supporting_clinician_id=2)


@pytest.fixture
def clinic():
    store = InMemoryStore()
    for clinician in [
        Clinician(1, "Dr Adams", Role.CONSULTANT),
        Clinician(2, "Dr Baker", Role.CONSULTANT),
        Clinician(10, "Dr Evans", Role.REGISTRAR, grade="ST5"),
        Clinician(11, "Dr Foster", Role.REGISTRAR, grade="ST4"),
        Clinician(12, "Dr Grant", Role.REGISTRAR, grade="ST6"),
    ]:
        store.add_clinician(clinician)
    for duty in [
        Duty(1, "Theatre", "#F4B183", requires_coverage=True),
        Duty(2, "Clinic", "#9DC3E6"),
        Duty(3, "SPA", "#C9C9C9", requires_coverage=False),
        Duty(4, "Admin", requires_coverage=False),
    ]:
        store.add_duty(duty)
    for plan in _job_plans():
        store.put_job_plan(plan)
    return store


@pytest.fixture
def rota_clinic(clinic):
    start = date(2024, 1, 1)
    clinic.put_oncall_config(OnCallConfig(Role.CONSULTANT, start, 2))
    clinic.put_oncall_config(OnCallConfig(Role.REGISTRAR, start, 21))
    slots = [
        (1, Role.CONSULTANT, 1, 1),
        (2, Role.CONSULTANT, 2, 2),
        (3, Role.REGISTRAR, 1, 10),
        (4, Role.REGISTRAR, 2, 11),
        (5, Role.REGISTRAR, 3, 12),
    ]
    for slot_id, role, position, clinician_id in slots:
        clinic.add_slot(OnCallSlot(slot_id, role, position, f"{role.value.title()} {position:02d}"))
        clinic.add_slot_assignment(SlotAssignment(slot_id, slot_id, clinician_id, date(2023, 1, 1)))
    return clinic
