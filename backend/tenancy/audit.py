# tenancy/audit.py — Audit Trail Sink
"""
Fire-and-forget recording of state-changing actions.

``record`` only enqueues; a single background worker writes entries in their
own sessions, in the order they were recorded. A failed write is logged and
the entry dropped: audit problems never fail, block or roll back the action
being described.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from models import AuditLog, AuditAction, utcnow

logger = logging.getLogger("workspace-hub.audit")

AUDIT_QUEUE_SIZE = int(os.getenv("AUDIT_QUEUE_SIZE", "10000"))


@dataclass(frozen=True)
class AuditEntry:
    tenant_id: Optional[str]
    user_id: Optional[str]
    action: AuditAction
    entity_type: str
    entity_id: Optional[str]
    ip_address: Optional[str] = None


class AuditTrail:
    """Queue-backed audit writer bound to one Database."""

    def __init__(self, database, max_pending: int = AUDIT_QUEUE_SIZE):
        self._database = database
        self._max_pending = max_pending
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_pending)
        self._worker = asyncio.create_task(self._run(), name="audit-trail-writer")
        logger.info("Audit trail writer started")

    def record(self, entry: AuditEntry) -> None:
        if not self.running:
            self._drop(entry, "writer not running")
            return
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self._drop(entry, "queue full")

    async def flush(self) -> None:
        """Wait until everything recorded so far has been written or dropped."""
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
        logger.info("Audit trail writer stopped")

    async def _run(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                await self._persist(entry)
            except Exception:
                self.dropped += 1
                logger.exception(
                    f"Failed to persist audit entry {entry.action.value} "
                    f"{entry.entity_type}:{entry.entity_id} (tenant={entry.tenant_id})"
                )
            finally:
                self._queue.task_done()

    async def _persist(self, entry: AuditEntry) -> None:
        async with self._database.session() as session:
            session.add(AuditLog(
                tenant_id=entry.tenant_id,
                user_id=entry.user_id,
                action=entry.action.value,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                ip_address=entry.ip_address,
                created_at=utcnow(),
            ))
            await session.commit()

    def _drop(self, entry: AuditEntry, why: str) -> None:
        self.dropped += 1
        logger.warning(
            f"Dropped audit entry {entry.action.value} {entry.entity_type}:{entry.entity_id} ({why})"
        )
