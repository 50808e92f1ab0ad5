"""
api_client.py — RotaStore backed by a remote rota persistence service

Implements the same interface as store.InMemoryStore over a JSON REST API,
so the engine can run against a shared database service:

  GET/PUT    /oncall-config/{role}
  GET/POST   /oncall-slots, /slot-assignments, /leaves, /coverage-requests
  PUT        /rota-entries              (upsert by date, clinician_id, session)
  POST/DELETE /locks/{name}             (advisory lock)

Payloads are models.to_record() dicts. HTTP errors map onto engine errors:
404 → NotFoundError, 409 → ConflictError, 400/422 → ValidationError,
5xx / connection failures → StoreUnavailableError (after transport retries).

Usage:
  client = RotaApiClient("https://rota.example.org/api", api_key="...")
  entries = compute_schedule(client, start, end)
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterable, Iterator, List, Optional, Type

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ConflictError, NotFoundError, StoreUnavailableError, ValidationError
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
    from_record,
    to_record,
)
from .store import RotaStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


class RotaApiClient(RotaStore):
    """
    Client for a rota persistence REST API
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url:    API root, e.g. https://rota.example.org/api
            api_key:     Bearer token (optional)
            timeout:     Per-request timeout in seconds
            max_retries: Transport-level retries for idempotent calls on 502/503/504
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if api_key:
            self.session.headers.update({'Authorization': f'Bearer {api_key}'})
        retry = Retry(total=max_retries, backoff_factor=0.5, status_forcelist=(502, 503, 504))
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Any] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = self.session.request(method, url, params=params or None, json=payload,
                                            timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            detail = e.response.text if e.response is not None else str(e)
            logger.error(f"{method} {path} failed with {status}: {detail}")
            if status == 404:
                raise NotFoundError(path, params or None)
            if status == 409:
                raise ConflictError(detail)
            if status in (400, 422):
                raise ValidationError(detail)
            if status is not None and status >= 500:
                raise StoreUnavailableError(f"{method} {path}: HTTP {status}")
            raise
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout,
                requests.exceptions.RetryError) as e:
            logger.error(f"{method} {path} unreachable: {e}")
            raise StoreUnavailableError(f"{method} {path}: {e}")

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _get_one(self, cls: Type[Any], path: str) -> Optional[Any]:
        try:
            data = self._request('GET', path)
        except NotFoundError:
            return None
        return from_record(cls, data) if data else None

    def _get_many(self, cls: Type[Any], path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        data = self._request('GET', path, params=params) or []
        return [from_record(cls, row) for row in data]

    def _send(self, method: str, cls: Type[Any], path: str, obj: Any) -> Any:
        return from_record(cls, self._request(method, path, payload=to_record(obj)))

    # -----------------------------------------------------------------------
    # Clinicians / duties / job plans
    # -----------------------------------------------------------------------

    def get_clinician(self, clinician_id: int) -> Optional[Clinician]:
        return self._get_one(Clinician, f"/clinicians/{clinician_id}")

    def find_clinicians(self, role: Optional[Role] = None, active_only: bool = True) -> List[Clinician]:
        params = {'role': role.value if role else None, 'active': 'true' if active_only else None}
        return self._get_many(Clinician, "/clinicians", params)

    def get_duty(self, duty_id: int) -> Optional[Duty]:
        return self._get_one(Duty, f"/duties/{duty_id}")

    def find_duties(self, active_only: bool = False) -> List[Duty]:
        return self._get_many(Duty, "/duties", {'active': 'true' if active_only else None})

    def find_job_plans(self, clinician_id: Optional[int] = None) -> List[JobPlanWeek]:
        return self._get_many(JobPlanWeek, "/job-plans", {'clinician_id': clinician_id})

    def get_job_plan(self, clinician_id: int, week_no: int, day_of_week: int) -> Optional[JobPlanWeek]:
        return self._get_one(JobPlanWeek, f"/job-plans/{clinician_id}/{week_no}/{day_of_week}")

    # -----------------------------------------------------------------------
    # Rotation
    # -----------------------------------------------------------------------

    def get_oncall_config(self, role: Role) -> Optional[OnCallConfig]:
        return self._get_one(OnCallConfig, f"/oncall-config/{role.value}")

    def put_oncall_config(self, config: OnCallConfig) -> OnCallConfig:
        return self._send('PUT', OnCallConfig, f"/oncall-config/{config.role.value}", config)

    def get_slot(self, slot_id: int) -> Optional[OnCallSlot]:
        return self._get_one(OnCallSlot, f"/oncall-slots/{slot_id}")

    def find_slots(self, role: Optional[Role] = None, active_only: bool = False) -> List[OnCallSlot]:
        params = {'role': role.value if role else None, 'active': 'true' if active_only else None}
        return sorted(self._get_many(OnCallSlot, "/oncall-slots", params), key=lambda s: s.position)

    def add_slot(self, slot: OnCallSlot) -> OnCallSlot:
        return self._send('POST', OnCallSlot, "/oncall-slots", slot)

    def update_slot(self, slot: OnCallSlot) -> OnCallSlot:
        return self._send('PUT', OnCallSlot, f"/oncall-slots/{slot.id}", slot)

    def find_patterns(self, role: Role) -> List[OnCallPattern]:
        rows = self._get_many(OnCallPattern, "/oncall-pattern", {'role': role.value})
        return sorted(rows, key=lambda p: p.day_of_cycle)

    def replace_patterns(self, role: Role, patterns: List[OnCallPattern]) -> List[OnCallPattern]:
        data = self._request('PUT', "/oncall-pattern", params={'role': role.value},
                             payload=[to_record(p) for p in patterns]) or []
        return [from_record(OnCallPattern, row) for row in data]

    def get_slot_assignment(self, assignment_id: int) -> Optional[SlotAssignment]:
        return self._get_one(SlotAssignment, f"/slot-assignments/{assignment_id}")

    def find_slot_assignments(
        self,
        slot_ids: Optional[Iterable[int]] = None,
        clinician_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[SlotAssignment]:
        params = {
            'slot_ids': ",".join(str(s) for s in slot_ids) if slot_ids is not None else None,
            'clinician_id': clinician_id,
            'from': _iso(start),
            'to': _iso(end),
        }
        return self._get_many(SlotAssignment, "/slot-assignments", params)

    def add_slot_assignment(self, assignment: SlotAssignment) -> SlotAssignment:
        return self._send('POST', SlotAssignment, "/slot-assignments", assignment)

    def update_slot_assignment(self, assignment: SlotAssignment) -> SlotAssignment:
        return self._send('PUT', SlotAssignment, f"/slot-assignments/{assignment.id}", assignment)

    def delete_slot_assignment(self, assignment_id: int) -> None:
        self._request('DELETE', f"/slot-assignments/{assignment_id}")

    # -----------------------------------------------------------------------
    # Leave
    # -----------------------------------------------------------------------

    def get_leave(self, leave_id: int) -> Optional[Leave]:
        return self._get_one(Leave, f"/leaves/{leave_id}")

    def find_leaves(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        clinician_id: Optional[int] = None,
    ) -> List[Leave]:
        return self._get_many(Leave, "/leaves", {'from': _iso(start), 'to': _iso(end), 'clinician_id': clinician_id})

    def add_leave(self, leave: Leave) -> Leave:
        return self._send('POST', Leave, "/leaves", leave)

    def delete_leave(self, leave_id: int) -> None:
        self._request('DELETE', f"/leaves/{leave_id}")

    # -----------------------------------------------------------------------
    # Rota entries
    # -----------------------------------------------------------------------

    def get_rota_entry(self, d: date, clinician_id: int, session: Session) -> Optional[RotaEntry]:
        return self._get_one(RotaEntry, f"/rota-entries/{d.isoformat()}/{clinician_id}/{session.value}")

    def find_rota_entries(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        clinician_id: Optional[int] = None,
        sources: Optional[Iterable[RotaSource]] = None,
        supporting_clinician_id: Optional[int] = None,
    ) -> List[RotaEntry]:
        params = {
            'from': _iso(start),
            'to': _iso(end),
            'clinician_id': clinician_id,
            'source': ",".join(s.value for s in sources) if sources is not None else None,
            'supporting_clinician_id': supporting_clinician_id,
        }
        return self._get_many(RotaEntry, "/rota-entries", params)

    def upsert_rota_entry(self, entry: RotaEntry) -> RotaEntry:
        return self._send('PUT', RotaEntry, "/rota-entries", entry)

    def delete_rota_entry(self, entry_id: int) -> None:
        self._request('DELETE', f"/rota-entries/{entry_id}")

    # -----------------------------------------------------------------------
    # Coverage requests
    # -----------------------------------------------------------------------

    def get_coverage_request(self, request_id: int) -> Optional[CoverageRequest]:
        return self._get_one(CoverageRequest, f"/coverage-requests/{request_id}")

    def find_coverage_requests(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        status: Optional[CoverageStatus] = None,
        coverage_type: Optional[CoverageType] = None,
    ) -> List[CoverageRequest]:
        params = {
            'from': _iso(start),
            'to': _iso(end),
            'status': status.value if status else None,
            'type': coverage_type.value if coverage_type else None,
        }
        return self._get_many(CoverageRequest, "/coverage-requests", params)

    def add_coverage_request(self, request: CoverageRequest) -> CoverageRequest:
        return self._send('POST', CoverageRequest, "/coverage-requests", request)

    def update_coverage_request(self, request: CoverageRequest) -> CoverageRequest:
        return self._send('PUT', CoverageRequest, f"/coverage-requests/{request.id}", request)

    def delete_coverage_request(self, request_id: int) -> None:
        self._request('DELETE', f"/coverage-requests/{request_id}")

    # -----------------------------------------------------------------------
    # Coordination
    # -----------------------------------------------------------------------

    @contextmanager
    def advisory_lock(self, name: str) -> Iterator[None]:
        """Server-side named lock; held for the duration of the block."""
        self._request('POST', f"/locks/{name}")
        try:
            yield
        finally:
            try:
                self._request('DELETE', f"/locks/{name}")
            except StoreUnavailableError as e:
                logger.warning(f"Could not release lock '{name}': {e}")
