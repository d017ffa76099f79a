import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from restodir.core.audit import AuditEmitter, DatabaseAuditSink
from restodir.core.db import build_engine
from restodir.models import AuditLog
from restodir.services.lifecycle import LifecycleService

from factories import PARTNER, complete_fields


@pytest.mark.anyio
async def test_database_sink_writes_row(session_factory, session):
    sink = DatabaseAuditSink(session_factory)
    await sink.record("moderator-1", "approve", "est-1", {"status": "pending"}, {"status": "active"})

    rows = (await session.execute(select(AuditLog))).scalars().all()
    assert len(rows) == 1
    row = rows[0]
    assert (row.user_id, row.action, row.entity_type, row.entity_id) == (
        "moderator-1",
        "approve",
        "establishment",
        "est-1",
    )
    assert row.old_data == {"status": "pending"}
    assert row.new_data == {"status": "active"}


@pytest.mark.anyio
async def test_database_sink_swallows_failures(anyio_backend, tmp_path):
    # no tables were created in this database, so the insert fails
    broken = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    sink = DatabaseAuditSink(async_sessionmaker(bind=broken, expire_on_commit=False))
    try:
        await sink.record("partner-1", "create", "est-1", None, {"status": "draft"})
    finally:
        await broken.dispose()


@pytest.mark.anyio
async def test_lifecycle_events_reach_audit_table(session_factory, session):
    emitter = AuditEmitter(DatabaseAuditSink(session_factory))
    service = LifecycleService(session, emitter)

    record = await service.create_establishment(PARTNER, complete_fields())
    await service.submit_for_moderation(record.id, PARTNER)
    await emitter.wait_idle()

    rows = (
        await session.execute(select(AuditLog).order_by(AuditLog.id))
    ).scalars().all()
    assert [row.action for row in rows] == ["create", "submit"]
    assert all(row.entity_id == record.id for row in rows)
    assert rows[1].old_data == {"status": "draft"}
    assert rows[1].new_data == {"status": "pending"}
