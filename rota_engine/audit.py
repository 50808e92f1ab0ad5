"""
audit.py — Audit sinks for destructive or state-changing operations

Every sink accepts the same record: {action, entity, entity_id, before, after}.
Recording is fire-and-forget: a failing sink is logged and never aborts the
operation that triggered it.
"""

import json
import logging
from dataclasses import dataclass, field, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import to_record

logger = logging.getLogger(__name__)


@dataclass
class AuditRecord:
    action: str
    entity: str
    entity_id: Any
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )


def _snapshot(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if is_dataclass(value):
        return to_record(value)
    return dict(value)


class AuditSink:
    """Base sink: subclasses implement write()."""

    def record(
        self,
        action: str,
        entity: str,
        entity_id: Any,
        before: Any = None,
        after: Any = None,
    ) -> None:
        try:
            self.write(AuditRecord(
                action=action,
                entity=entity,
                entity_id=entity_id,
                before=_snapshot(before),
                after=_snapshot(after),
            ))
        except Exception as e:
            logger.warning(f"Audit write failed for {action} {entity}#{entity_id}: {e}")

    def write(self, record: AuditRecord) -> None:
        raise NotImplementedError


class NullAuditSink(AuditSink):
    def write(self, record: AuditRecord) -> None:
        pass


class MemoryAuditSink(AuditSink):
    """Keeps records in a list; used by tests and CLI summaries."""

    def __init__(self):
        self.records: List[AuditRecord] = []

    def write(self, record: AuditRecord) -> None:
        self.records.append(record)

    def actions(self) -> List[str]:
        return [r.action for r in self.records]


class LoggingAuditSink(AuditSink):
    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger("rota_engine.audit.trail")

    def write(self, record: AuditRecord) -> None:
        self.log.info(json.dumps({
            "action": record.action,
            "entity": record.entity,
            "entity_id": record.entity_id,
            "before": record.before,
            "after": record.after,
            "timestamp": record.timestamp,
        }, default=str))


def resolve_sink(audit: Optional[AuditSink]) -> AuditSink:
    return audit if audit is not None else NullAuditSink()
