"""
Audit recorder.

Services stage ``AuditRecord`` values on the session while they work. When
the transaction commits the staged records are handed to the process-wide
``AuditRecorder``, which writes them from a background asyncio task. A
rolled-back transaction drops its records. Sink failures are logged and
swallowed: they never reach the request that produced the record.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from docflow.config import settings
from docflow.database import AsyncSessionLocal, TenantAwareSession, utcnow
from docflow.errors import AuditSinkError
from docflow.models.audit_log import AuditLog
from docflow.tenancy import TenantContext

logger = structlog.get_logger()

PENDING_AUDIT_KEY = "pending_audit_records"


@dataclass(frozen=True)
class AuditRecord:
    tenant_id: uuid.UUID
    company_id: Optional[uuid.UUID]
    actor_id: Optional[uuid.UUID]
    action: str
    entity_type: str
    entity_id: uuid.UUID
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    changed_fields: Optional[list] = None
    request_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)


def _compute_changed_fields(
    before: Optional[dict], after: Optional[dict]
) -> Optional[list[str]]:
    """Diff two state dicts and return list of changed field names."""
    if not before or not after:
        return None
    changed = [
        key
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    ]
    return changed or None


def _request_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get("request_id")


def stage_audit(
    session: AsyncSession,
    ctx: TenantContext,
    action: str,
    entity_type: str,
    entity_id: Any,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
) -> AuditRecord:
    """Queue an audit record to be written once the current transaction commits."""
    record = AuditRecord(
        tenant_id=ctx.tenant_id,
        company_id=ctx.company_id,
        actor_id=ctx.user_id,
        action=action,
        entity_type=entity_type,
        entity_id=uuid.UUID(str(entity_id)),
        before_state=before_state,
        after_state=after_state,
        changed_fields=_compute_changed_fields(before_state, after_state),
        request_id=_request_id(),
    )
    session.info.setdefault(PENDING_AUDIT_KEY, []).append(record)
    return record


AuditSink = Callable[[AuditRecord], Awaitable[None]]


class DatabaseAuditSink:
    """Writes each record to audit_logs in its own transaction."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory

    async def __call__(self, record: AuditRecord) -> None:
        factory = self.session_factory or AsyncSessionLocal
        try:
            async with factory() as session:
                async with session.begin():
                    session.add(
                        AuditLog(
                            tenant_id=record.tenant_id,
                            company_id=record.company_id,
                            actor_id=record.actor_id,
                            action=record.action,
                            entity_type=record.entity_type,
                            entity_id=record.entity_id,
                            before_state=record.before_state,
                            after_state=record.after_state,
                            changed_fields=record.changed_fields,
                            request_id=record.request_id,
                            occurred_at=record.occurred_at,
                        )
                    )
        except Exception as exc:
            raise AuditSinkError(f"audit write failed: {exc}") from exc


class AuditRecorder:
    """Bounded queue drained by one background task."""

    def __init__(self, sink: Optional[AuditSink] = None, maxsize: Optional[int] = None):
        self.sink = sink or DatabaseAuditSink()
        self.maxsize = maxsize or settings.AUDIT_QUEUE_SIZE
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._worker = asyncio.get_running_loop().create_task(self._drain())
        logger.info("audit_recorder_started", maxsize=self.maxsize)

    def submit(self, record: AuditRecord) -> None:
        if not self.running:
            try:
                self.start()
            except RuntimeError:
                logger.warning("audit_record_dropped", reason="no_event_loop", action=record.action)
                return
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            logger.error(
                "audit_record_dropped",
                reason="queue_full",
                action=record.action,
                entity_type=record.entity_type,
                entity_id=str(record.entity_id),
            )

    async def flush(self) -> None:
        """Wait until every submitted record has been handled."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        await self.flush()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("audit_recorder_stopped")

    async def _drain(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.sink(record)
                logger.debug(
                    "audit_log_created",
                    action=record.action,
                    entity_type=record.entity_type,
                    entity_id=str(record.entity_id),
                )
            except AuditSinkError as exc:
                logger.error(
                    "audit_sink_failed",
                    action=record.action,
                    entity_type=record.entity_type,
                    entity_id=str(record.entity_id),
                    error=str(exc),
                )
            except Exception:
                logger.exception("audit_sink_crashed", action=record.action)
            finally:
                self._queue.task_done()


audit_recorder = AuditRecorder()


@event.listens_for(TenantAwareSession, "after_commit")
def _hand_off_audit_records(session):
    records = session.info.pop(PENDING_AUDIT_KEY, None)
    for record in records or ():
        audit_recorder.submit(record)


@event.listens_for(TenantAwareSession, "after_rollback")
def _discard_audit_records(session):
    dropped = session.info.pop(PENDING_AUDIT_KEY, None)
    if dropped:
        logger.info("audit_records_discarded", count=len(dropped))
