"""
Committees service layer.
Handles committee lifecycle, roster roles, invite codes, settings and export.
"""
from __future__ import annotations

import secrets
from datetime import datetime

from flask import Flask, current_app
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.gavel.audit import record_event
from app.gavel.constants import (
    DEFAULT_SETTINGS,
    INVITE_CODE_ALPHABET,
    INVITE_CODE_LENGTH,
    MEMBER_ROLES,
    ROLE_MEMBER,
    ROLE_OWNER,
)
from app.gavel.db import run_transaction
from app.gavel.errors import NotFound, PreconditionFailed, ValidationError
from app.gavel.identity import Identity, require_identity
from app.gavel.models import User
from app.gavel.modules.committees.serializers import committee_to_dict, member_to_dict
from app.gavel.modules.motions.serializers import decision_to_dict, motion_to_dict
from app.gavel.modules.motions.tally import parse_threshold
from app.gavel.rbac import require_manager, require_member, require_owner

from .models import Committee, CommitteeMember


def get_committee(s: Session, committee_id: int, *, for_update: bool = False) -> Committee:
    stmt = select(Committee).where(Committee.id == committee_id)
    if for_update:
        stmt = stmt.with_for_update()
    c = s.execute(stmt).scalar_one_or_none()
    if not c:
        raise NotFound("Committee not found")
    return c


def _get_user(s: Session, user_id: int) -> User:
    u = s.get(User, user_id)
    if not u or not u.is_active:
        raise NotFound("User not found")
    return u


def _clean_settings(updates: dict | None) -> dict:
    """Validate a (partial) settings mapping; unknown keys are rejected."""
    out: dict = {}
    for key, value in (updates or {}).items():
        if key not in DEFAULT_SETTINGS:
            raise ValidationError(f"Unknown setting {key!r}")
        if key == "default_threshold":
            out[key] = parse_threshold(value)
        else:
            if not isinstance(value, bool):
                raise ValidationError(f"Setting {key!r} must be true or false")
            out[key] = value
    return out


def create_committee(
    s: Session,
    actor: Identity | None,
    *,
    name: str,
    description: str = "",
    settings: dict | None = None,
) -> Committee:
    """Create a committee and enrol ``actor`` as its owner."""
    actor = require_identity(actor)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Committee name is required")

    resolved = {**DEFAULT_SETTINGS, **_clean_settings(settings)}
    c = Committee(
        name=name,
        description=(description or "").strip(),
        owner_user_id=actor.id,
        invite_code=None,
        **resolved,
    )
    s.add(c)
    s.flush()

    c.members.append(
        CommitteeMember(
            user_id=actor.id,
            role=ROLE_OWNER,
            display_name=actor.label,
            email=actor.email,
            added_by_user_id=actor.id,
        )
    )
    s.flush()

    record_event(
        s,
        actor=actor,
        action="committee.create",
        entity_type="Committee",
        entity_id=str(c.id),
        metadata={"name": c.name, "settings": c.settings},
    )
    return c


def delete_committee(s: Session, actor: Identity | None, committee_id: int) -> None:
    """Owner only. Removes the committee with its motions, votes, replies, decisions and roster."""
    actor = require_identity(actor)
    c = get_committee(s, committee_id)
    require_owner(actor, c)

    name = c.name
    s.delete(c)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="committee.delete",
        entity_type="Committee",
        entity_id=str(committee_id),
        metadata={"name": name},
    )


def list_committees_for(s: Session, actor: Identity | None) -> list[Committee]:
    actor = require_identity(actor)
    stmt = (
        select(Committee)
        .outerjoin(CommitteeMember, CommitteeMember.committee_id == Committee.id)
        .where(or_(Committee.owner_user_id == actor.id, CommitteeMember.user_id == actor.id))
        .order_by(Committee.created_at.desc(), Committee.id.desc())
    )
    return list(s.execute(stmt).scalars().unique().all())


def get_committee_for_member(s: Session, actor: Identity | None, committee_id: int) -> Committee:
    c = get_committee(s, committee_id)
    require_member(actor, c)
    return c


def add_member(
    s: Session,
    actor: Identity | None,
    committee_id: int,
    *,
    user_id: int,
    role: str = ROLE_MEMBER,
) -> CommitteeMember:
    """
    Owner/chair only. Adds a roster entry; re-adding an existing member
    changes their role, which (like set_member_role) only the owner may do.
    """
    actor = require_identity(actor)
    c = get_committee(s, committee_id)
    require_manager(actor, c)

    if role not in MEMBER_ROLES:
        raise ValidationError(f"Unknown role {role!r}")
    if role == ROLE_OWNER:
        raise ValidationError("Ownership is transferred with set_member_role, not add_member")

    u = _get_user(s, user_id)
    m = c.member_for(u.id)
    if m is None:
        m = CommitteeMember(user_id=u.id, role=role, display_name=u.label, email=u.email, added_by_user_id=actor.id)
        c.members.append(m)
    elif m.role == ROLE_OWNER:
        raise PreconditionFailed("Cannot demote the committee owner without assigning a new owner first")
    elif m.role != role:
        require_owner(actor, c)
        m.role = role
        m.added_by_user_id = actor.id
    s.flush()

    record_event(
        s,
        actor=actor,
        action="committee.member.add",
        entity_type="Committee",
        entity_id=str(c.id),
        metadata={"user_id": u.id, "role": role},
    )
    return m


def set_member_role(
    actor: Identity | None,
    committee_id: int,
    user_id: int,
    role: str,
    *,
    app: Flask | None = None,
) -> CommitteeMember:
    """
    Owner only. Change a member's role inside one transaction.

    Assigning ``owner`` moves committee ownership and demotes the previous
    owner to member. The current owner cannot be demoted directly, so a
    committee never ends up without an owner.
    """
    actor = require_identity(actor)
    if role not in MEMBER_ROLES:
        raise ValidationError(f"Unknown role {role!r}")

    def _apply(s: Session) -> CommitteeMember:
        c = get_committee(s, committee_id, for_update=True)
        require_owner(actor, c)

        m = c.member_for(user_id)
        if m is None:
            raise NotFound("Member not found")

        prev_owner_id = c.owner_user_id
        if user_id == prev_owner_id and role != ROLE_OWNER:
            raise PreconditionFailed("Cannot demote the committee owner without assigning a new owner first")

        prev_role = m.role
        m.role = role
        if role == ROLE_OWNER and prev_owner_id != user_id:
            c.owner_user_id = user_id
            c.updated_at = datetime.utcnow()
            prev_owner = c.member_for(prev_owner_id)
            if prev_owner is not None:
                prev_owner.role = ROLE_MEMBER

        record_event(
            s,
            actor=actor,
            action="committee.member.role",
            entity_type="Committee",
            entity_id=str(c.id),
            metadata={"user_id": user_id, "from": prev_role, "to": role},
        )
        return m

    return run_transaction(_apply, app=app)


def _random_invite_code() -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def generate_invite_code(s: Session, actor: Identity | None, committee_id: int) -> str:
    """Owner/chair only. Assigns a fresh code that no other committee holds."""
    actor = require_identity(actor)
    c = get_committee(s, committee_id)
    require_manager(actor, c)

    attempts = int(current_app.config.get("INVITE_CODE_ATTEMPTS") or 10)
    for _ in range(attempts):
        code = _random_invite_code()
        taken = s.execute(select(Committee.id).where(Committee.invite_code == code)).first()
        if not taken:
            break
    else:
        raise PreconditionFailed("Could not generate unique invite code.")

    c.invite_code = code
    c.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=actor, action="committee.invite_code", entity_type="Committee", entity_id=str(c.id))
    return code


def join_by_code(s: Session, actor: Identity | None, raw_code: str) -> tuple[Committee, CommitteeMember]:
    actor = require_identity(actor)
    code = (raw_code or "").strip().upper()
    if not code:
        raise ValidationError("No code provided")

    c = s.execute(select(Committee).where(Committee.invite_code == code)).scalar_one_or_none()
    if not c:
        raise NotFound("Invalid or expired code.")

    m = c.member_for(actor.id)
    if m is None:
        m = CommitteeMember(
            user_id=actor.id,
            role=ROLE_MEMBER,
            display_name=actor.label,
            email=actor.email,
            added_by_user_id=actor.id,
        )
        c.members.append(m)
        s.flush()
        record_event(s, actor=actor, action="committee.join", entity_type="Committee", entity_id=str(c.id))
    return c, m


def update_settings(s: Session, actor: Identity | None, committee_id: int, updates: dict) -> Committee:
    """Owner/chair only. Partial update: keys not present keep their current value."""
    actor = require_identity(actor)
    c = get_committee(s, committee_id)
    require_manager(actor, c)

    cleaned = _clean_settings(updates)
    changes = {}
    for key, value in cleaned.items():
        if getattr(c, key) != value:
            changes[key] = {"from": getattr(c, key), "to": value}
            setattr(c, key, value)

    if changes:
        c.updated_at = datetime.utcnow()
        s.flush()
        record_event(
            s,
            actor=actor,
            action="committee.settings",
            entity_type="Committee",
            entity_id=str(c.id),
            metadata={"changes": changes},
        )
    return c


def export_committee(s: Session, actor: Identity | None, committee_id: int) -> dict:
    c = get_committee_for_member(s, actor, committee_id)
    return {
        "committee": committee_to_dict(c, include_members=False),
        "members": [member_to_dict(m) for m in c.members],
        "motions": [motion_to_dict(m, with_evaluation=True) for m in c.motions],
        "decisions": [decision_to_dict(d) for d in c.decisions],
        "exported_at": datetime.utcnow().isoformat(),
    }
