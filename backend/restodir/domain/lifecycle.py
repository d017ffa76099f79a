"""Establishment status transition table.

Every status change is looked up in ``TRANSITIONS`` by ``resolve_transition``;
nothing else in the codebase decides whether a transition is legal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from restodir.core.errors import Forbidden, IllegalTransition, ValidationError
from restodir.domain.enums import MODERATOR_ROLES, ActorRole, EstablishmentStatus, LifecycleAction
from restodir.domain.validation import missing_for_submission

S = EstablishmentStatus
A = LifecycleAction


class Party(str, Enum):
    OWNER = "owner"
    MODERATOR = "moderator"


@dataclass(frozen=True, slots=True)
class Actor:
    id: str
    role: ActorRole

    @property
    def is_moderator(self) -> bool:
        return self.role in MODERATOR_ROLES

    def owns(self, record: Any) -> bool:
        return record.partner_id == self.id


@dataclass(frozen=True, slots=True)
class TransitionContext:
    notes: Mapping[str, str] | None = None
    reason: str | None = None


Precondition = Callable[[Any, TransitionContext], None]


@dataclass(frozen=True, slots=True)
class TransitionRule:
    target: EstablishmentStatus
    parties: frozenset[Party]
    precondition: Precondition | None = None


def clean_notes(notes: Mapping[str, Any] | None) -> dict[str, str]:
    """Drop blank comments and trim the rest."""

    if not notes:
        return {}
    if not isinstance(notes, Mapping):
        raise ValidationError("notes must map field names to comments", field="notes")
    cleaned: dict[str, str] = {}
    for field, comment in notes.items():
        if not isinstance(field, str) or not isinstance(comment, (str, type(None))):
            raise ValidationError("notes must map field names to comments", field="notes")
        if comment and comment.strip():
            cleaned[field.strip()] = comment.strip()
    return cleaned


def _require_complete(record: Any, ctx: TransitionContext) -> None:
    missing = missing_for_submission(record)
    if missing:
        raise ValidationError(
            f"Establishment is incomplete, missing {missing}", field=missing[0]
        )


def _require_notes(record: Any, ctx: TransitionContext) -> None:
    if not clean_notes(ctx.notes):
        raise ValidationError("Rejection requires at least one moderation note", field="notes")


def _require_reason(record: Any, ctx: TransitionContext) -> None:
    if not ctx.reason or not ctx.reason.strip():
        raise ValidationError("Suspension requires a reason", field="reason")


OWNER = frozenset({Party.OWNER})
MODERATOR = frozenset({Party.MODERATOR})
OWNER_OR_MODERATOR = frozenset({Party.OWNER, Party.MODERATOR})

TRANSITIONS: dict[tuple[EstablishmentStatus, LifecycleAction], TransitionRule] = {
    (S.DRAFT, A.SUBMIT): TransitionRule(S.PENDING, OWNER, _require_complete),
    (S.REJECTED, A.SUBMIT): TransitionRule(S.PENDING, OWNER, _require_complete),
    (S.PENDING, A.APPROVE): TransitionRule(S.ACTIVE, MODERATOR),
    (S.PENDING, A.REJECT): TransitionRule(S.REJECTED, MODERATOR, _require_notes),
    (S.ACTIVE, A.SUSPEND): TransitionRule(S.SUSPENDED, OWNER_OR_MODERATOR, _require_reason),
    (S.SUSPENDED, A.UNSUSPEND): TransitionRule(S.ACTIVE, OWNER_OR_MODERATOR),
    **{
        (state, A.ARCHIVE): TransitionRule(S.ARCHIVED, MODERATOR)
        for state in (S.DRAFT, S.PENDING, S.ACTIVE, S.SUSPENDED, S.REJECTED)
    },
}

EDITABLE_STATES = frozenset({S.DRAFT, S.REJECTED})


def allowed_actions(status: EstablishmentStatus) -> list[LifecycleAction]:
    return [action for (state, action) in TRANSITIONS if state == status]


def is_permitted(actor: Actor, record: Any, parties: frozenset[Party]) -> bool:
    if Party.MODERATOR in parties and actor.is_moderator:
        return True
    return Party.OWNER in parties and actor.owns(record)


def resolve_transition(
    record: Any,
    actor: Actor,
    action: LifecycleAction,
    ctx: TransitionContext | None = None,
) -> TransitionRule:
    """Return the rule for ``action`` on ``record`` or raise.

    Checks run in a fixed order: the table, then the actor, then the precondition.
    """

    current = S(record.status)
    rule = TRANSITIONS.get((current, action))
    if rule is None:
        raise IllegalTransition(
            f"Cannot {action.value} an establishment in status '{current.value}'",
            current=current.value,
            action=action.value,
        )
    if not is_permitted(actor, record, rule.parties):
        raise Forbidden(f"Actor {actor.id} may not {action.value} establishment {record.id}")
    if rule.precondition is not None:
        rule.precondition(record, ctx or TransitionContext())
    return rule


def ensure_editable(record: Any, actor: Actor) -> None:
    """Guard for the generic field-update path.

    Ownership comes first: a non-owner gets ``Forbidden`` whatever the status.
    """

    if not actor.owns(record):
        raise Forbidden(f"Actor {actor.id} does not own establishment {record.id}")
    current = S(record.status)
    if current not in EDITABLE_STATES:
        raise IllegalTransition(
            f"Establishment in status '{current.value}' cannot be edited",
            current=current.value,
            action="update",
        )
