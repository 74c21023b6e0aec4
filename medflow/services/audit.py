import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from medflow.database import PersistenceAdapter
from medflow.models.audit import AuditEvent, AuditEventInput

logger = logging.getLogger(__name__)

AUDIT_COLLECTION = "audit_logs"


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class AuditSink:
    """Append-only audit log.

    Events are stamped and kept in memory (newest first) as soon as they are
    recorded; the durable copy is written in the background and a failed
    write is only logged.
    """

    def __init__(self, adapter: PersistenceAdapter, clock: Callable[[], str] = _utc_now) -> None:
        self.adapter = adapter
        self._clock = clock
        self._events: list[AuditEvent] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    def for_patient(self, patient_id: str) -> list[AuditEvent]:
        return [event for event in self._events if event.patient_id == patient_id]

    def record(self, event: AuditEventInput | None = None, **fields: Any) -> AuditEvent:
        if event is None:
            event = AuditEventInput(**fields)
        stamped = AuditEvent(
            **event.model_dump(),
            id=f"AUDIT-{uuid.uuid4().hex}",
            timestamp=self._clock(),
        )
        self._events.insert(0, stamped)
        self._forward(stamped)
        return stamped

    def _forward(self, event: AuditEvent) -> None:
        if not self.adapter.configured:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; audit event %s kept in memory only", event.id)
            return
        task = loop.create_task(self._write(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, event: AuditEvent) -> None:
        try:
            await self.adapter.append(AUDIT_COLLECTION, event.model_dump(mode="json"))
        except Exception as exc:
            logger.error("Failed to persist audit event %s: %s", event.id, exc)

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
