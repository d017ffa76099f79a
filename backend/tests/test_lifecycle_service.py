import asyncio
from datetime import datetime, timedelta

import pytest

from restodir.core.audit import AuditEmitter
from restodir.core.errors import (
    DuplicateName,
    Forbidden,
    IllegalTransition,
    NotFound,
    StaleState,
    ValidationError,
)
from restodir.domain.enums import EstablishmentStatus
from restodir.services.lifecycle import LifecycleService
from restodir.services.store import EstablishmentStore

from factories import (
    ADMIN,
    CONSUMER,
    MODERATOR,
    OTHER_PARTNER,
    PARTNER,
    ExplodingSink,
    RecordingSink,
    add_establishment,
    complete_fields,
    draft_fields,
)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def emitter(sink):
    return AuditEmitter(sink, timeout=1.0)


@pytest.fixture
def service(session, emitter):
    return LifecycleService(session, emitter)


async def active_listing(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    await service.submit_for_moderation(record.id, PARTNER)
    return await service.moderate(record.id, MODERATOR, "approve")


# -- creation ------------------------------------------------------------------


@pytest.mark.anyio
async def test_create_starts_in_draft(service, emitter, sink):
    record = await service.create_establishment(PARTNER, draft_fields())

    assert record.status == "draft"
    assert record.partner_id == PARTNER.id
    assert record.latitude is None
    assert record.working_hours == {}
    await emitter.wait_idle()
    assert sink.actions() == ["create"]
    assert sink.events[0][3] is None
    assert sink.events[0][4]["status"] == "draft"


@pytest.mark.anyio
async def test_category_count_limits(service):
    ok = await service.create_establishment(
        PARTNER, draft_fields(name="Two", categories=["Ресторан", "Бар"])
    )
    assert ok.categories == ["Ресторан", "Бар"]

    with pytest.raises(ValidationError):
        await service.create_establishment(
            PARTNER, draft_fields(name="Three", categories=["Ресторан", "Бар", "Паб"])
        )
    with pytest.raises(ValidationError):
        await service.create_establishment(PARTNER, draft_fields(name="Zero", categories=[]))
    with pytest.raises(ValidationError):
        await service.create_establishment(
            PARTNER, draft_fields(name="Dup", categories=["Бар", "Бар"])
        )


@pytest.mark.anyio
async def test_cuisine_count_limits(service):
    await service.create_establishment(
        PARTNER, draft_fields(name="Three", cuisines=["Народная", "Японская", "Итальянская"])
    )
    with pytest.raises(ValidationError):
        await service.create_establishment(
            PARTNER,
            draft_fields(name="Four", cuisines=["Народная", "Японская", "Итальянская", "Азиатская"]),
        )


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides",
    [
        {"latitude": 50.9, "longitude": 27.5},
        {"latitude": 53.9, "longitude": 33.1},
        {"longitude": None},
        {"latitude": 52.0976, "longitude": 23.7341},  # Brest, listed as Minsk
        {"city": "Лондон"},
        {"price_range": "$$$$"},
        {"name": "   "},
        {"status": "active"},
        {"working_hours": {"monday": {"open": "9am", "close": "22:00"}}},
        {"attributes": {"wifi": "yes"}},
    ],
)
async def test_create_rejects_bad_fields(service, overrides):
    with pytest.raises(ValidationError):
        await service.create_establishment(PARTNER, complete_fields(**overrides))


@pytest.mark.anyio
async def test_consumer_cannot_create(service):
    with pytest.raises(Forbidden):
        await service.create_establishment(CONSUMER, draft_fields())


@pytest.mark.anyio
async def test_duplicate_name_is_case_insensitive(service):
    await service.create_establishment(PARTNER, draft_fields(name="Каменица"))
    with pytest.raises(DuplicateName):
        await service.create_establishment(PARTNER, draft_fields(name="КАМЕНИЦА"))
    # another partner may reuse the name
    await service.create_establishment(OTHER_PARTNER, draft_fields(name="Каменица"))


# -- field updates -------------------------------------------------------------


@pytest.mark.anyio
async def test_partial_update_in_draft(service, emitter, sink):
    record = await service.create_establishment(PARTNER, draft_fields())
    updated = await service.update_establishment(
        record.id, PARTNER, {"address": "ул. Ленина, 5", "latitude": 53.9, "longitude": 27.56}
    )

    assert updated.address == "ул. Ленина, 5"
    assert updated.name == "Draft Cafe"
    assert updated.updated_at >= record.created_at
    await emitter.wait_idle()
    _, action, _, old, new = sink.events[-1]
    assert action == "update"
    assert old == {"address": None, "latitude": None, "longitude": None}
    assert new["address"] == "ул. Ленина, 5"


@pytest.mark.anyio
async def test_update_rechecks_present_arrays_only(service):
    record = await service.create_establishment(PARTNER, draft_fields())
    with pytest.raises(ValidationError):
        await service.update_establishment(
            record.id, PARTNER, {"categories": ["Ресторан", "Бар", "Паб"]}
        )
    updated = await service.update_establishment(record.id, PARTNER, {"description": "New"})
    assert updated.categories == ["Кофейня"]


@pytest.mark.anyio
async def test_update_cannot_touch_status(service):
    record = await service.create_establishment(PARTNER, draft_fields())
    with pytest.raises(ValidationError):
        await service.update_establishment(record.id, PARTNER, {"status": "active"})
    with pytest.raises(ValidationError):
        await service.update_establishment(record.id, PARTNER, {"partner_id": OTHER_PARTNER.id})


@pytest.mark.anyio
async def test_update_guards(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    with pytest.raises(Forbidden):
        await service.update_establishment(record.id, OTHER_PARTNER, {"description": "x"})

    await service.submit_for_moderation(record.id, PARTNER)
    with pytest.raises(IllegalTransition):
        await service.update_establishment(record.id, PARTNER, {"description": "x"})
    # a stranger hears Forbidden, not the listing's status
    with pytest.raises(Forbidden):
        await service.update_establishment(record.id, OTHER_PARTNER, {"description": "x"})

    with pytest.raises(NotFound):
        await service.update_establishment("missing", PARTNER, {"description": "x"})


@pytest.mark.anyio
async def test_update_checks_location_against_current_city(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    with pytest.raises(ValidationError):
        await service.update_establishment(record.id, PARTNER, {"city": "Брест"})
    moved = await service.update_establishment(
        record.id, PARTNER, {"city": "Брест", "latitude": 52.0976, "longitude": 23.7341}
    )
    assert moved.city == "Брест"


@pytest.mark.anyio
async def test_update_with_stale_timestamp(service):
    record = await service.create_establishment(PARTNER, draft_fields())
    seen = record.updated_at
    await service.update_establishment(
        record.id, PARTNER, {"description": "first"}, expected_updated_at=seen
    )
    with pytest.raises(StaleState):
        await service.update_establishment(
            record.id, PARTNER, {"description": "second"}, expected_updated_at=seen
        )
    current = await service.store.require(record.id)
    assert current.description == "first"


# -- transitions ---------------------------------------------------------------


@pytest.mark.anyio
async def test_happy_path_to_active(service, emitter, sink):
    record = await service.create_establishment(PARTNER, complete_fields())
    pending = await service.submit_for_moderation(record.id, PARTNER)
    assert pending.status == "pending"

    active = await service.moderate(record.id, MODERATOR, "approve")
    assert active.status == "active"
    assert active.published_at is not None
    assert active.moderated_by == MODERATOR.id
    assert active.moderation_notes is None

    await emitter.wait_idle()
    assert sink.actions() == ["create", "submit", "approve"]
    _, _, _, old, new = sink.events[-1]
    assert old["status"] == "pending" and new["status"] == "active"
    assert set(new) == {"status", "moderation_notes", "moderated_by", "moderated_at", "published_at"}


@pytest.mark.anyio
async def test_submit_incomplete_draft(service):
    record = await service.create_establishment(PARTNER, draft_fields())
    with pytest.raises(ValidationError):
        await service.submit_for_moderation(record.id, PARTNER)
    assert (await service.store.require(record.id)).status == "draft"


@pytest.mark.anyio
async def test_non_moderator_cannot_approve(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    await service.submit_for_moderation(record.id, PARTNER)
    with pytest.raises(Forbidden):
        await service.moderate(record.id, PARTNER, "approve")


@pytest.mark.anyio
async def test_draft_cannot_be_approved(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    with pytest.raises(IllegalTransition):
        await service.moderate(record.id, MODERATOR, "approve")


@pytest.mark.anyio
async def test_moderate_rejects_unknown_action(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    with pytest.raises(ValidationError):
        await service.moderate(record.id, MODERATOR, "archive")


@pytest.mark.anyio
async def test_reject_then_resubmit_archives_notes(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    await service.submit_for_moderation(record.id, PARTNER)

    with pytest.raises(ValidationError):
        await service.moderate(record.id, MODERATOR, "reject", {})

    rejected = await service.moderate(
        record.id, MODERATOR, "reject", {"address": "Wrong building", "name": ""}
    )
    assert rejected.status == "rejected"
    assert rejected.moderation_notes == {"address": "Wrong building"}

    await service.update_establishment(record.id, PARTNER, {"address": "пр. Независимости, 3"})
    resubmitted = await service.submit_for_moderation(record.id, PARTNER)

    assert resubmitted.status == "pending"
    assert resubmitted.moderation_notes is None
    assert len(resubmitted.moderation_history) == 1
    entry = resubmitted.moderation_history[0]
    assert entry["notes"] == {"address": "Wrong building"}
    assert entry["moderated_by"] == MODERATOR.id
    assert entry["archived_at"]


@pytest.mark.anyio
async def test_approve_with_notes_keeps_them(service):
    record = await service.create_establishment(PARTNER, complete_fields())
    await service.submit_for_moderation(record.id, PARTNER)
    approved = await service.moderate(record.id, ADMIN, "approve", {"photos": "Add more"})
    assert approved.moderation_notes == {"photos": "Add more"}


@pytest.mark.anyio
async def test_approve_never_overwrites_published_at(session, service):
    first_published = datetime(2023, 1, 1, 10, 0)
    row = await add_establishment(session, status="pending", published_at=first_published)
    approved = await service.moderate(row.id, MODERATOR, "approve")
    assert approved.published_at == first_published


@pytest.mark.anyio
async def test_suspend_and_unsuspend(service):
    active = await active_listing(service)
    published = active.published_at

    with pytest.raises(ValidationError):
        await service.suspend(active.id, PARTNER, "")

    suspended = await service.suspend(active.id, PARTNER, " Renovation ")
    assert suspended.status == "suspended"
    assert suspended.moderation_notes == {"suspend_reason": "Renovation"}

    with pytest.raises(IllegalTransition):
        await service.suspend(active.id, MODERATOR, "again")

    resumed = await service.unsuspend(active.id, MODERATOR)
    assert resumed.status == "active"
    assert resumed.moderation_notes is None
    assert resumed.moderated_by == MODERATOR.id
    assert resumed.published_at == published


@pytest.mark.anyio
async def test_archive_is_terminal(service):
    active = await active_listing(service)
    with pytest.raises(Forbidden):
        await service.archive(active.id, PARTNER)

    archived = await service.archive(active.id, MODERATOR)
    assert archived.status == "archived"
    with pytest.raises(IllegalTransition):
        await service.unsuspend(active.id, MODERATOR)
    with pytest.raises(IllegalTransition):
        await service.archive(active.id, MODERATOR)


@pytest.mark.anyio
async def test_correct_coordinates(service, emitter, sink):
    active = await active_listing(service)
    with pytest.raises(Forbidden):
        await service.correct_coordinates(active.id, PARTNER, 53.91, 27.56)
    with pytest.raises(ValidationError):
        await service.correct_coordinates(active.id, MODERATOR, 52.0976, 23.7341)

    moved = await service.correct_coordinates(active.id, MODERATOR, 53.91, 27.56)
    assert (moved.latitude, moved.longitude) == (53.91, 27.56)
    assert moved.status == "active"
    await emitter.wait_idle()
    assert sink.actions()[-1] == "admin_update_coordinates"

    await service.archive(active.id, MODERATOR)
    with pytest.raises(Forbidden):
        await service.correct_coordinates(active.id, PARTNER, 53.91, 27.56)
    with pytest.raises(IllegalTransition):
        await service.correct_coordinates(active.id, MODERATOR, 53.91, 27.56)


# -- concurrency and audit -----------------------------------------------------


class Gate:
    """Holds every caller until ``parties`` of them have arrived."""

    def __init__(self, parties: int) -> None:
        self.parties = parties
        self.arrived = 0
        self.open = asyncio.Event()

    async def arrive(self) -> None:
        self.arrived += 1
        if self.arrived >= self.parties:
            self.open.set()
        await self.open.wait()


class GatedStore(EstablishmentStore):
    def __init__(self, session, gate: Gate) -> None:
        super().__init__(session)
        self.gate = gate

    async def compare_and_set(self, *args, **kwargs):
        await self.gate.arrive()
        return await super().compare_and_set(*args, **kwargs)


@pytest.mark.anyio
async def test_concurrent_approvals_exactly_one_wins(session_factory, session):
    row = await add_establishment(session, status="pending")
    gate = Gate(parties=2)
    sink = RecordingSink()
    emitter = AuditEmitter(sink)

    async with session_factory() as first, session_factory() as second:
        services = []
        for s in (first, second):
            svc = LifecycleService(s, emitter)
            svc.store = GatedStore(s, gate)
            services.append(svc)

        results = await asyncio.gather(
            services[0].moderate(row.id, MODERATOR, "approve"),
            services[1].moderate(row.id, ADMIN, "approve"),
            return_exceptions=True,
        )

    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], StaleState)
    assert winners[0].status == "active"

    await emitter.wait_idle()
    assert sink.actions() == ["approve"]


class InterleavingStore(EstablishmentStore):
    """Runs ``step`` once, between the service's read and its guarded write."""

    def __init__(self, session, step) -> None:
        super().__init__(session)
        self.step = step

    async def compare_and_set(self, *args, **kwargs):
        if self.step is not None:
            step, self.step = self.step, None
            await step()
        return await super().compare_and_set(*args, **kwargs)


@pytest.mark.anyio
async def test_submit_loses_to_edit_made_after_its_checks(session_factory, session):
    record = await LifecycleService(session).create_establishment(PARTNER, complete_fields())

    async with session_factory() as editor_session:
        editor = LifecycleService(editor_session)

        async def clear_location():
            await editor.update_establishment(
                record.id, PARTNER, {"latitude": None, "longitude": None, "address": None}
            )

        submitter = LifecycleService(session)
        submitter.store = InterleavingStore(session, clear_location)
        with pytest.raises(StaleState):
            await submitter.submit_for_moderation(record.id, PARTNER)

    current = await EstablishmentStore(session).require(record.id)
    assert current.status == "draft"
    assert current.latitude is None and current.address is None

    # a retry re-reads the record and now fails the completeness check
    with pytest.raises(ValidationError):
        await LifecycleService(session).submit_for_moderation(record.id, PARTNER)


@pytest.mark.anyio
async def test_resubmission_loses_to_concurrent_edit(session_factory, session):
    row = await add_establishment(session, status="rejected", moderation_notes={"name": "typo"})

    async with session_factory() as editor_session:
        editor = LifecycleService(editor_session)

        async def rename():
            await editor.update_establishment(row.id, PARTNER, {"name": "Renamed"})

        submitter = LifecycleService(session)
        submitter.store = InterleavingStore(session, rename)
        with pytest.raises(StaleState):
            await submitter.submit_for_moderation(row.id, PARTNER)

    current = await EstablishmentStore(session).require(row.id)
    assert current.status == "rejected"
    assert current.name == "Renamed"


@pytest.mark.anyio
async def test_store_compare_and_set_detects_stale_status(session_factory, session):
    row = await add_establishment(session, status="pending")
    async with session_factory() as other:
        store = EstablishmentStore(other)
        await store.compare_and_set(row.id, EstablishmentStatus.PENDING, {"status": "active"})
        await other.commit()

    with pytest.raises(StaleState):
        await EstablishmentStore(session).compare_and_set(
            row.id, EstablishmentStatus.PENDING, {"status": "rejected"}
        )
    await session.rollback()
    assert (await EstablishmentStore(session).require(row.id)).status == "active"


@pytest.mark.anyio
async def test_audit_failure_does_not_fail_transition(session):
    exploding = ExplodingSink()
    emitter = AuditEmitter(exploding, timeout=1.0)
    service = LifecycleService(session, emitter)

    record = await service.create_establishment(PARTNER, complete_fields())
    pending = await service.submit_for_moderation(record.id, PARTNER)
    await emitter.wait_idle()

    assert pending.status == "pending"
    assert exploding.calls == 2


@pytest.mark.anyio
async def test_slow_audit_is_bounded_by_timeout(session):
    class SlowSink:
        async def record(self, *args):
            await asyncio.sleep(10)

    emitter = AuditEmitter(SlowSink(), timeout=0.05)
    service = LifecycleService(session, emitter)
    record = await service.create_establishment(PARTNER, draft_fields())

    assert record.status == "draft"
    await asyncio.wait_for(emitter.wait_idle(), timeout=2)
    assert emitter.pending == 0


# -- read models ---------------------------------------------------------------


@pytest.mark.anyio
async def test_partner_listing_and_detail(service):
    mine = await service.create_establishment(PARTNER, draft_fields(name="Mine"))
    await service.create_establishment(OTHER_PARTNER, draft_fields(name="Theirs"))

    page = await service.list_own(PARTNER)
    assert [r.id for r in page.items] == [mine.id]
    assert page.total == 1 and not page.has_more

    assert (await service.get_own(mine.id, PARTNER)).id == mine.id
    with pytest.raises(NotFound):
        await service.get_own(mine.id, OTHER_PARTNER)
    with pytest.raises(ValidationError):
        await service.list_own(PARTNER, limit=51)


@pytest.mark.anyio
async def test_partner_listing_hides_archived_by_default(service):
    record = await service.create_establishment(PARTNER, draft_fields())
    await service.archive(record.id, MODERATOR)

    assert (await service.list_own(PARTNER)).total == 0
    assert (await service.list_own(PARTNER, include_archived=True)).total == 1


@pytest.mark.anyio
async def test_moderation_queue_is_fifo(session, service):
    older = await add_establishment(
        session, status="pending", updated_at=datetime(2024, 1, 1) + timedelta(hours=1)
    )
    newer = await add_establishment(
        session, status="pending", updated_at=datetime(2024, 1, 1) + timedelta(hours=2)
    )
    await add_establishment(session, status="active")

    page = await service.moderation_queue(MODERATOR)
    assert [r.id for r in page.items] == [older.id, newer.id]

    with pytest.raises(Forbidden):
        await service.moderation_queue(PARTNER)


@pytest.mark.anyio
async def test_moderator_search_by_name(session, service):
    await add_establishment(session, status="pending", name="Golden Coffee")
    await add_establishment(session, status="active", name="Coffee Point")
    await add_establishment(session, status="active", name="Burger Bar")

    page = await service.search_for_moderation(MODERATOR, "coffee")
    assert [r.name for r in page.items] == ["Coffee Point", "Golden Coffee"]

    page = await service.search_for_moderation(MODERATOR, "coffee", status=EstablishmentStatus.ACTIVE)
    assert page.total == 1

    with pytest.raises(Forbidden):
        await service.search_for_moderation(PARTNER, "coffee")
    with pytest.raises(ValidationError):
        await service.search_for_moderation(MODERATOR, "  ")
