"""Best-effort audit trail for access denials."""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Set

from supabase import Client

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    event_type: str
    user_id: Optional[str]
    role: Optional[str]
    permissions: List[str]
    decision: str
    reason: str
    path: Optional[str] = None
    method: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class AuditSink(Protocol):
    async def write(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    async def write(self, event: AuditEvent) -> None:
        logger.info(
            f"AUDIT {event.event_type} decision={event.decision} user={event.user_id} "
            f"role={event.role} permissions={','.join(event.permissions)} path={event.path}"
        )


class SupabaseAuditSink:
    """Writes audit events to the rbac_audit_logs table."""

    def __init__(self, supabase: Client, table: str = "rbac_audit_logs"):
        self.supabase = supabase
        self.table = table

    async def write(self, event: AuditEvent) -> None:
        await asyncio.to_thread(self._insert, event.to_dict())

    def _insert(self, row: dict) -> None:
        self.supabase.table(self.table).insert(row).execute()


class AuditLogger:
    """
    Fans events out to sinks as background tasks.

    record() never raises and never waits on a sink, so a slow or broken audit
    backend cannot delay or fail the response being audited. flush() waits for
    pending writes (shutdown, tests).
    """

    def __init__(self, sinks: Optional[List[AuditSink]] = None, enabled: bool = True):
        self.sinks = list(sinks) if sinks is not None else [LoggingAuditSink()]
        self.enabled = enabled
        self._pending: Set[asyncio.Task] = set()

    def record(self, event: AuditEvent) -> None:
        if not self.enabled:
            return
        for sink in self.sinks:
            try:
                task = asyncio.get_running_loop().create_task(self._write(sink, event))
            except RuntimeError:
                logger.warning(f"No running event loop, dropping audit event {event.event_type}")
                return
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _write(self, sink: AuditSink, event: AuditEvent) -> None:
        try:
            await sink.write(event)
        except Exception as e:
            logger.warning(f"Audit sink {type(sink).__name__} failed for {event.event_type}: {e}")

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
