"""Audit recording for lifecycle mutations.

Audit is best effort: the lifecycle service emits after its own commit and never
waits for, or fails because of, the audit write.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

from loguru import logger
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restodir.core.config import settings
from restodir.models.audit_log import AuditLog


class AuditSink(Protocol):
    async def record(
        self,
        actor_id: str,
        action: str,
        entity_id: str,
        old_snapshot: Optional[dict[str, Any]],
        new_snapshot: Optional[dict[str, Any]],
    ) -> None:
        """Persist one event. Implementations must not raise."""


class DatabaseAuditSink:
    """Writes events to ``audit_logs`` in an independent transaction."""

    entity_type = "establishment"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record(
        self,
        actor_id: str,
        action: str,
        entity_id: str,
        old_snapshot: Optional[dict[str, Any]],
        new_snapshot: Optional[dict[str, Any]],
    ) -> None:
        payload = {
            "user_id": actor_id,
            "action": action,
            "entity_type": self.entity_type,
            "entity_id": entity_id,
            "old_data": old_snapshot,
            "new_data": new_snapshot,
        }
        try:
            async with self.session_factory() as audit_session:
                async with audit_session.begin():
                    await audit_session.execute(insert(AuditLog).values(**payload))
        except Exception as exc:  # noqa: BLE001 - audit must never propagate
            logger.bind(action=action, entity_id=entity_id, error=str(exc)).warning(
                "audit_write_failed"
            )


class AuditEmitter:
    """Schedules sink writes as background tasks bounded by a timeout."""

    def __init__(self, sink: AuditSink, timeout: float | None = None) -> None:
        self.sink = sink
        self.timeout = timeout if timeout is not None else settings.AUDIT_TIMEOUT_SEC
        self._tasks: set[asyncio.Task[None]] = set()

    def emit(
        self,
        actor_id: str,
        action: str,
        entity_id: str,
        old_snapshot: Optional[dict[str, Any]],
        new_snapshot: Optional[dict[str, Any]],
    ) -> None:
        task = asyncio.create_task(
            self._deliver(actor_id, action, entity_id, old_snapshot, new_snapshot)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, actor_id, action, entity_id, old_snapshot, new_snapshot) -> None:
        try:
            await asyncio.wait_for(
                self.sink.record(actor_id, action, entity_id, old_snapshot, new_snapshot),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.bind(action=action, entity_id=entity_id, timeout=self.timeout).warning(
                "audit_timeout"
            )
        except Exception as exc:  # noqa: BLE001 - a misbehaving sink is logged, not raised
            logger.bind(action=action, entity_id=entity_id, error=str(exc)).warning(
                "audit_sink_error"
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait for every scheduled write; used on shutdown and in tests."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
