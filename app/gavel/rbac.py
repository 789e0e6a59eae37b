"""
Authorization gate.

Role checks for committee and motion mutations, and the single transition
table every motion status change goes through.
"""
from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any

from app.gavel.constants import (
    ROLE_CHAIR,
    ROLE_OWNER,
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_COMPLETED,
    STATUS_DELETED,
    STATUS_DENIED,
)
from app.gavel.errors import InvalidTransition, Unauthenticated, Unauthorized, ValidationError
from app.gavel.identity import Identity, current_identity

if TYPE_CHECKING:
    from app.gavel.modules.committees.models import Committee, CommitteeMember
    from app.gavel.modules.motions.models import Motion


ACTION_DELETE = "delete"
ACTION_CLOSE = "close"
ACTION_APPROVE = "approve"
ACTION_DENY = "deny"
MOTION_ACTIONS = frozenset({ACTION_DELETE, ACTION_CLOSE, ACTION_APPROVE, ACTION_DENY})

# Status each action moves a motion to
ACTION_TARGETS = {
    ACTION_CLOSE: STATUS_CLOSED,
    ACTION_APPROVE: STATUS_COMPLETED,
    ACTION_DENY: STATUS_DENIED,
    ACTION_DELETE: STATUS_DELETED,
}

STATUS_TRANSITIONS = {
    STATUS_ACTIVE: {STATUS_CLOSED, STATUS_DELETED},
    STATUS_CLOSED: {STATUS_COMPLETED, STATUS_DENIED, STATUS_DELETED},
    STATUS_COMPLETED: set(),
    STATUS_DENIED: set(),
    STATUS_DELETED: set(),
}
TERMINAL_STATUSES = frozenset(k for k, v in STATUS_TRANSITIONS.items() if not v)


def member_role(committee: Committee, user_id: int) -> str | None:
    if committee.owner_user_id == user_id:
        return ROLE_OWNER
    m = committee.member_for(user_id)
    return m.role if m else None


def is_owner(committee: Committee, user_id: int) -> bool:
    return committee.owner_user_id == user_id


def can_manage_committee(committee: Committee, user_id: int) -> bool:
    return member_role(committee, user_id) in (ROLE_OWNER, ROLE_CHAIR)


def can_mutate(actor_id: int, committee: Committee, motion: Motion, action: str) -> bool:
    if action not in MOTION_ACTIONS:
        raise ValidationError(f"Unknown motion action {action!r}")
    if can_manage_committee(committee, actor_id):
        return True
    if action == ACTION_DELETE:
        return motion.creator_user_id == actor_id
    return False


def require_mutation(actor: Identity | None, committee: Committee, motion: Motion, action: str) -> Identity:
    if actor is None:
        raise Unauthenticated()
    if not can_mutate(actor.id, committee, motion, action):
        raise Unauthorized(f"Not authorized to {action} this motion")
    return actor


def require_member(actor: Identity | None, committee: Committee) -> CommitteeMember | None:
    """
    Raise unless ``actor`` belongs to ``committee``.
    Returns the roster row (the owner is a member even if the row is missing).
    """
    if actor is None:
        raise Unauthenticated()
    if member_role(committee, actor.id) is None:
        raise Unauthorized("Only committee members can do this")
    return committee.member_for(actor.id)


def require_manager(actor: Identity | None, committee: Committee) -> Identity:
    if actor is None:
        raise Unauthenticated()
    if not can_manage_committee(committee, actor.id):
        raise Unauthorized("Only the committee owner or a chair can do this")
    return actor


def require_owner(actor: Identity | None, committee: Committee) -> Identity:
    if actor is None:
        raise Unauthenticated()
    if not is_owner(committee, actor.id):
        raise Unauthorized("Only the committee owner can do this")
    return actor


def can_transition(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, set())


def check_transition(current: str, target: str) -> None:
    if current not in STATUS_TRANSITIONS:
        raise InvalidTransition(f"Current status '{current}' is invalid")
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"Motion is already '{current}'; no further changes are allowed")
    if not can_transition(current, target):
        raise InvalidTransition(f"Cannot transition from '{current}' to '{target}'")


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        # Unauthenticated -> 401 via the GavelError handler.
        if current_identity() is None:
            raise Unauthenticated()
        return fn(*args, **kwargs)

    return wrapped
