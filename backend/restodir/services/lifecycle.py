"""Lifecycle service: creation, edits and status transitions for establishments.

Each mutation is validated against the transition table before the store is
touched, written with a single compare-and-set statement, committed, and only
then handed to the audit emitter.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from restodir.core.audit import AuditEmitter
from restodir.core.config import settings
from restodir.core.db_retry import with_db_retry
from restodir.core.errors import (
    DuplicateName,
    Forbidden,
    IllegalTransition,
    NotFound,
    StaleState,
    ValidationError,
)
from restodir.domain.enums import ActorRole, EstablishmentStatus, LifecycleAction
from restodir.domain.lifecycle import (
    Actor,
    TransitionContext,
    clean_notes,
    ensure_editable,
    resolve_transition,
)
from restodir.domain.validation import check_location, check_pagination, clean_fields
from restodir.models.establishment import Establishment, utcnow
from restodir.services.store import EstablishmentStore, Page

SUSPEND_REASON_KEY = "suspend_reason"
CREATOR_ROLES = frozenset({ActorRole.PARTNER, ActorRole.ADMIN})
LOCATION_FIELDS = ("city", "latitude", "longitude")


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def snapshot(source: Any, fields: Iterable[str]) -> dict[str, Any]:
    """JSON-ready copy of ``fields`` taken from a record or a mapping."""

    if isinstance(source, Mapping):
        return {name: _json_safe(source.get(name)) for name in fields}
    return {name: _json_safe(getattr(source, name)) for name in fields}


class LifecycleService:
    def __init__(self, session: AsyncSession, audit: Optional[AuditEmitter] = None) -> None:
        self.session = session
        self.store = EstablishmentStore(session)
        self.audit = audit

    # -- writes ---------------------------------------------------------------

    async def create_establishment(self, actor: Actor, fields: Mapping[str, Any]) -> Establishment:
        if actor.role not in CREATOR_ROLES:
            raise Forbidden(f"Actor {actor.id} with role '{actor.role.value}' cannot create establishments")
        values = clean_fields(fields, partial=False)
        check_location(values.get("city"), values.get("latitude"), values.get("longitude"))
        if await self.store.name_taken(actor.id, values["name"]):
            raise DuplicateName(f"You already have an establishment named '{values['name']}'", field="name")

        async def op() -> Establishment:
            record = await self.store.insert(actor.id, values)
            await self.session.commit()
            return record

        record = await with_db_retry(self.session, op)
        logger.bind(establishment_id=record.id, partner_id=actor.id).info("establishment_created")
        self._emit(actor, "create", record.id, None, snapshot(record, ["status", *values]))
        return record

    async def update_establishment(
        self,
        establishment_id: str,
        actor: Actor,
        fields: Mapping[str, Any],
        *,
        expected_updated_at: Optional[datetime] = None,
    ) -> Establishment:
        record = await self.store.require(establishment_id)
        ensure_editable(record, actor)
        if not fields:
            raise ValidationError("No fields to update")
        values = clean_fields(fields, partial=True)
        if expected_updated_at is not None and expected_updated_at.tzinfo is not None:
            expected_updated_at = expected_updated_at.astimezone(timezone.utc).replace(tzinfo=None)

        if any(name in values for name in LOCATION_FIELDS):
            effective = {name: values.get(name, getattr(record, name)) for name in LOCATION_FIELDS}
            check_location(effective["city"], effective["latitude"], effective["longitude"])
        if "name" in values and values["name"].casefold() != record.name.casefold():
            if await self.store.name_taken(actor.id, values["name"], exclude_id=record.id):
                raise DuplicateName(f"You already have an establishment named '{values['name']}'", field="name")

        changed = {name: value for name, value in values.items() if getattr(record, name) != value}
        if not changed:
            if expected_updated_at is not None and expected_updated_at != record.updated_at:
                raise StaleState(record.id, record.status)
            return record

        old = snapshot(record, changed)
        updated = await self._write(
            record.id,
            EstablishmentStatus(record.status),
            changed,
            partner_id=actor.id,
            expected_updated_at=expected_updated_at,
        )
        logger.bind(establishment_id=record.id, fields=sorted(changed)).info("establishment_updated")
        self._emit(actor, "update", record.id, old, snapshot(updated, changed))
        return updated

    async def submit_for_moderation(self, establishment_id: str, actor: Actor) -> Establishment:
        def values(record: Establishment) -> dict[str, Any]:
            if not record.moderation_notes:
                return {}
            # keep the previous review round instead of discarding it
            entry = {
                "notes": dict(record.moderation_notes),
                "moderated_by": record.moderated_by,
                "moderated_at": _json_safe(record.moderated_at),
                "archived_at": utcnow().isoformat(),
            }
            return {
                "moderation_notes": None,
                "moderation_history": [*(record.moderation_history or []), entry],
            }

        return await self._transition(establishment_id, actor, LifecycleAction.SUBMIT, values)

    async def moderate(
        self,
        establishment_id: str,
        actor: Actor,
        action: LifecycleAction | str,
        notes: Optional[Mapping[str, str]] = None,
    ) -> Establishment:
        try:
            action = LifecycleAction(action)
        except ValueError:
            raise ValidationError(f"Unknown moderation action '{action}'", field="action") from None
        if action not in (LifecycleAction.APPROVE, LifecycleAction.REJECT):
            raise ValidationError("Moderation action must be approve or reject", field="action")

        cleaned = clean_notes(notes)

        def values(record: Establishment) -> dict[str, Any]:
            now = utcnow()
            result: dict[str, Any] = {
                "moderation_notes": cleaned or None,
                "moderated_by": actor.id,
                "moderated_at": now,
            }
            if action == LifecycleAction.APPROVE and record.published_at is None:
                result["published_at"] = now
            return result

        return await self._transition(
            establishment_id, actor, action, values, TransitionContext(notes=cleaned)
        )

    async def suspend(self, establishment_id: str, actor: Actor, reason: str) -> Establishment:
        def values(record: Establishment) -> dict[str, Any]:
            notes = dict(record.moderation_notes or {})
            notes[SUSPEND_REASON_KEY] = reason.strip()
            return {"moderation_notes": notes, **self._moderation_stamp(actor)}

        return await self._transition(
            establishment_id, actor, LifecycleAction.SUSPEND, values, TransitionContext(reason=reason)
        )

    async def unsuspend(self, establishment_id: str, actor: Actor) -> Establishment:
        def values(record: Establishment) -> dict[str, Any]:
            notes = dict(record.moderation_notes or {})
            notes.pop(SUSPEND_REASON_KEY, None)
            return {"moderation_notes": notes or None, **self._moderation_stamp(actor)}

        return await self._transition(establishment_id, actor, LifecycleAction.UNSUSPEND, values)

    async def archive(self, establishment_id: str, actor: Actor) -> Establishment:
        return await self._transition(
            establishment_id,
            actor,
            LifecycleAction.ARCHIVE,
            lambda record: self._moderation_stamp(actor),
        )

    async def correct_coordinates(
        self, establishment_id: str, actor: Actor, latitude: float, longitude: float
    ) -> Establishment:
        self._require_moderator(actor)
        record = await self.store.require(establishment_id)
        if record.status == EstablishmentStatus.ARCHIVED.value:
            raise IllegalTransition(
                "Archived establishments cannot be changed",
                current=record.status,
                action="admin_update_coordinates",
            )
        if latitude is None or longitude is None:
            raise ValidationError("latitude and longitude are both required", field="latitude")
        values = clean_fields({"latitude": latitude, "longitude": longitude}, partial=True)
        check_location(record.city, values["latitude"], values["longitude"])

        old = snapshot(record, values)
        updated = await self._write(record.id, EstablishmentStatus(record.status), values)
        logger.bind(establishment_id=record.id, moderator_id=actor.id).info("coordinates_corrected")
        self._emit(actor, "admin_update_coordinates", record.id, old, snapshot(updated, values))
        return updated

    # -- reads ----------------------------------------------------------------

    async def list_own(
        self,
        actor: Actor,
        *,
        status: Optional[EstablishmentStatus] = None,
        include_archived: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Page:
        limit, offset = check_pagination(
            limit, offset, default=settings.LISTING_DEFAULT_LIMIT, maximum=settings.LISTING_MAX_LIMIT
        )
        return await self.store.list_by_partner(
            actor.id, status=status, include_archived=include_archived, limit=limit, offset=offset
        )

    async def get_own(self, establishment_id: str, actor: Actor) -> Establishment:
        record = await self.store.require(establishment_id)
        if not actor.owns(record):
            # same answer as a missing id so other partners' ids do not leak
            raise NotFound(establishment_id)
        return record

    async def moderation_queue(
        self,
        actor: Actor,
        status: EstablishmentStatus = EstablishmentStatus.PENDING,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Page:
        self._require_moderator(actor)
        limit, offset = check_pagination(
            limit, offset, default=settings.LISTING_DEFAULT_LIMIT, maximum=settings.LISTING_MAX_LIMIT
        )
        return await self.store.list_by_status(status, limit=limit, offset=offset)

    async def get_for_moderation(self, establishment_id: str, actor: Actor) -> Establishment:
        self._require_moderator(actor)
        return await self.store.require(establishment_id)

    async def search_for_moderation(
        self,
        actor: Actor,
        term: str,
        *,
        status: Optional[EstablishmentStatus] = None,
        city: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Page:
        self._require_moderator(actor)
        term = (term or "").strip()
        if not term:
            raise ValidationError("Search term must not be empty", field="q")
        limit, offset = check_pagination(
            limit, offset, default=settings.LISTING_DEFAULT_LIMIT, maximum=settings.LISTING_MAX_LIMIT
        )
        return await self.store.search_by_name(
            term, status=status, city=city, limit=limit, offset=offset
        )

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _require_moderator(actor: Actor) -> None:
        if not actor.is_moderator:
            raise Forbidden(f"Actor {actor.id} lacks moderator capability")

    @staticmethod
    def _moderation_stamp(actor: Actor) -> dict[str, Any]:
        if not actor.is_moderator:
            return {}
        return {"moderated_by": actor.id, "moderated_at": utcnow()}

    async def _transition(
        self,
        establishment_id: str,
        actor: Actor,
        action: LifecycleAction,
        build_values,
        ctx: Optional[TransitionContext] = None,
    ) -> Establishment:
        record = await self.store.require(establishment_id)
        rule = resolve_transition(record, actor, action, ctx)
        current = EstablishmentStatus(record.status)
        values = {"status": rule.target.value, **build_values(record)}

        old = snapshot(record, values)
        # preconditions were checked on this read; any edit since then loses the write
        updated = await self._write(
            record.id, current, values, expected_updated_at=record.updated_at
        )
        logger.bind(
            establishment_id=record.id,
            action=action.value,
            from_status=current.value,
            to_status=rule.target.value,
        ).info("establishment_transition")
        self._emit(actor, action.value, record.id, old, snapshot(updated, values))
        return updated

    async def _write(
        self,
        establishment_id: str,
        expected: EstablishmentStatus,
        values: dict[str, Any],
        **guards: Any,
    ) -> Establishment:
        async def op() -> Establishment:
            updated = await self.store.compare_and_set(establishment_id, expected, values, **guards)
            await self.session.commit()
            return updated

        try:
            return await with_db_retry(self.session, op)
        except StaleState:
            await self.session.rollback()
            logger.bind(establishment_id=establishment_id, expected_status=expected.value).info(
                "establishment_stale_write"
            )
            raise

    def _emit(
        self,
        actor: Actor,
        action: str,
        entity_id: str,
        old: Optional[dict[str, Any]],
        new: Optional[dict[str, Any]],
    ) -> None:
        if self.audit is not None:
            self.audit.emit(actor.id, action, entity_id, old, new)
