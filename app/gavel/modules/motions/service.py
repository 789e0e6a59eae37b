"""
Motions service layer.
Handles motion creation, seconding, discussion, the vote ledger, status
transitions, decisions and overturn proposals.

Anything that reads and then rewrites a motion row (votes, seconds, status
changes) runs inside ``run_transaction``; the rest uses the caller's session
and leaves the commit to the caller.
"""
from __future__ import annotations

from datetime import datetime

from flask import Flask
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.gavel.audit import record_event
from app.gavel.constants import (
    CHOICE_YES,
    KIND_OVERTURN,
    KIND_SPECIAL,
    KIND_STANDARD,
    KIND_SUB,
    MOTION_KINDS,
    MOTION_STATUSES,
    MOTION_TYPES,
    REPLY_STANCES,
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_COMPLETED,
    STATUS_DELETED,
    STATUS_DENIED,
    VOTE_CHOICES,
)
from app.gavel.db import run_transaction
from app.gavel.errors import NotFound, PreconditionFailed, Unauthorized, ValidationError
from app.gavel.identity import Identity, require_identity
from app.gavel.modules.committees.service import get_committee
from app.gavel.rbac import (
    ACTION_APPROVE,
    ACTION_CLOSE,
    ACTION_DELETE,
    ACTION_DENY,
    ACTION_TARGETS,
    check_transition,
    require_manager,
    require_member,
    require_mutation,
)

from .models import Decision, Motion, Reply, Vote
from .serializers import reply_to_dict
from .tally import Tally, parse_threshold

# Timestamp column stamped by each status change
_STATUS_TIMESTAMPS = {
    STATUS_CLOSED: "closed_at",
    STATUS_COMPLETED: "approved_at",
    STATUS_DENIED: "denied_at",
    STATUS_DELETED: "deleted_at",
}


def get_motion(s: Session, committee_id: int, motion_id: int, *, for_update: bool = False) -> Motion:
    stmt = select(Motion).where(Motion.id == motion_id, Motion.committee_id == committee_id)
    if for_update:
        stmt = stmt.with_for_update()
    m = s.execute(stmt).scalar_one_or_none()
    if not m:
        raise NotFound("Motion not found")
    return m


def parse_motion_type(raw: str | None) -> str:
    value = (raw or "Main").strip()
    if value.lower().endswith(" motion"):
        value = value[: -len(" motion")].strip()
    for name in MOTION_TYPES:
        if value.lower() == name.lower():
            return name
    raise ValidationError(f"Unknown motion type {raw!r}; expected one of: {', '.join(MOTION_TYPES)}")


def _require_seconded(m: Motion, what: str) -> None:
    if m.second_required and not m.seconded:
        raise PreconditionFailed(f"This motion requires a second before {what}")


def _lines(value: list | str | None) -> list[str]:
    """Accept a list or newline-separated text; drop blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split("\n")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ValidationError("Expected a list or newline-separated text")
    return [str(x).strip() for x in items if str(x).strip()]


def create_motion(
    s: Session,
    actor: Identity | None,
    committee_id: int,
    *,
    title: str,
    description: str = "",
    motion_type: str | None = None,
    kind: str = KIND_STANDARD,
    threshold: str | None = None,
    requires_discussion: bool | None = None,
    second_required: bool | None = None,
    allow_anonymous: bool | None = None,
    parent_motion_id: int | None = None,
    related_motion_id: int | None = None,
) -> Motion:
    """
    Propose a motion. Optional settings fall back to the committee's settings
    and are stored on the motion, so later reads never consult the committee.
    """
    actor = require_identity(actor)
    c = get_committee(s, committee_id)
    require_member(actor, c)

    if kind not in MOTION_KINDS:
        raise ValidationError(f"Unknown motion kind {kind!r}")
    if kind == KIND_OVERTURN and related_motion_id is None:
        raise ValidationError("Overturn motions are proposed against an adopted motion")
    if kind != KIND_OVERTURN:
        related_motion_id = None
    mtype = parse_motion_type(motion_type)
    resolved_threshold = parse_threshold(threshold) if threshold else c.default_threshold

    if allow_anonymous is None:
        allow_anonymous = c.allow_anonymous_voting
    elif allow_anonymous and not c.allow_anonymous_voting:
        raise ValidationError("Anonymous voting is disabled for this committee")
    if second_required is None:
        second_required = c.require_second
    if requires_discussion is None:
        requires_discussion = True
    if kind == KIND_SPECIAL:
        # Special motions go straight to a vote.
        requires_discussion = False

    if kind == KIND_SUB:
        if parent_motion_id is None:
            raise ValidationError("Sub-motions need a parent motion")
        parent = get_motion(s, committee_id, parent_motion_id)
        if parent.status == STATUS_DELETED:
            raise PreconditionFailed("Parent motion has been deleted")
    else:
        parent_motion_id = None

    m = Motion(
        committee_id=c.id,
        title=(title or "").strip() or "Untitled Motion",
        description=(description or "").strip(),
        motion_type=mtype,
        kind=kind,
        creator_user_id=actor.id,
        creator_display_name=actor.label,
        status=STATUS_ACTIVE,
        threshold=resolved_threshold,
        tally_yes=0,
        tally_no=0,
        tally_abstain=0,
        requires_discussion=bool(requires_discussion),
        second_required=bool(second_required),
        allow_anonymous=bool(allow_anonymous),
        seconded=False,
        parent_motion_id=parent_motion_id,
        related_motion_id=related_motion_id,
    )
    s.add(m)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="motion.create",
        entity_type="Motion",
        entity_id=str(m.id),
        metadata={
            "committee_id": c.id,
            "title": m.title,
            "type": m.motion_type,
            "kind": m.kind,
            "threshold": m.threshold,
        },
    )
    return m


def second_motion(
    actor: Identity | None,
    committee_id: int,
    motion_id: int,
    *,
    app: Flask | None = None,
) -> Motion:
    """Second a motion. Members only; creators cannot second their own motion; repeat seconds are no-ops."""
    actor = require_identity(actor)

    def _apply(s: Session) -> Motion:
        m = get_motion(s, committee_id, motion_id, for_update=True)
        require_member(actor, m.committee)
        if m.status != STATUS_ACTIVE:
            raise PreconditionFailed(f"Only active motions can be seconded (status is '{m.status}')")
        if m.creator_user_id == actor.id:
            raise PreconditionFailed("Motion creators cannot second their own motion")
        if m.seconded:
            return m

        m.seconded = True
        m.seconded_by_user_id = actor.id
        m.seconded_by_name = actor.label
        m.seconded_at = datetime.utcnow()
        record_event(s, actor=actor, action="motion.second", entity_type="Motion", entity_id=str(m.id))
        return m

    return run_transaction(_apply, app=app)


def cast_vote(
    actor: Identity | None,
    committee_id: int,
    motion_id: int,
    choice: str,
    *,
    anonymous: bool = False,
    app: Flask | None = None,
) -> Tally:
    """
    Record ``actor``'s vote and return the motion's updated tally.

    The motion row and the voter's existing vote are read and both are
    written in one transaction. Re-casting the same choice leaves the tally
    alone but applies the new ``anonymous`` flag to the stored vote; a
    changed choice moves one count from the old bucket to the new one.
    """
    actor = require_identity(actor)
    if choice not in VOTE_CHOICES:
        raise ValidationError(f"Unknown vote choice {choice!r}; expected one of: {', '.join(VOTE_CHOICES)}")
    anonymous = bool(anonymous)

    def _apply(s: Session) -> Tally:
        m = get_motion(s, committee_id, motion_id, for_update=True)
        require_member(actor, m.committee)
        if m.status != STATUS_ACTIVE:
            raise PreconditionFailed(f"Voting is closed for this motion (status is '{m.status}')")
        _require_seconded(m, "voting")
        if anonymous and not m.allow_anonymous:
            raise ValidationError("Anonymous votes are not allowed on this motion")

        counts = Tally.of(m)
        existing = s.execute(
            select(Vote).where(Vote.motion_id == m.id, Vote.voter_user_id == actor.id).with_for_update()
        ).scalar_one_or_none()

        display_name = None if anonymous else actor.label
        if existing is not None:
            if existing.choice == choice:
                if existing.anonymous == anonymous:
                    return counts
                # Tally unchanged; anonymity follows the latest cast.
                existing.anonymous = anonymous
                existing.voter_display_name = display_name
                existing.updated_at = datetime.utcnow()
                record_event(
                    s,
                    actor=actor,
                    action="vote.anonymity",
                    entity_type="Motion",
                    entity_id=str(m.id),
                    metadata={"anonymous": anonymous},
                )
                return counts
            previous = existing.choice
            counts = counts.bump(previous, -1).bump(choice, 1)
            existing.choice = choice
            existing.anonymous = anonymous
            existing.voter_display_name = display_name
            existing.updated_at = datetime.utcnow()
        else:
            previous = None
            counts = counts.bump(choice, 1)
            s.add(
                Vote(
                    motion_id=m.id,
                    voter_user_id=actor.id,
                    choice=choice,
                    anonymous=anonymous,
                    voter_display_name=display_name,
                )
            )

        m.tally_yes = counts.yes
        m.tally_no = counts.no
        m.tally_abstain = counts.abstain

        record_event(
            s,
            actor=actor,
            action="vote.cast",
            entity_type="Motion",
            entity_id=str(m.id),
            metadata={"anonymous": True} if anonymous else {"choice": choice, "previous": previous},
        )
        return counts

    return run_transaction(_apply, app=app)


def recount_tally(s: Session, motion_id: int) -> Tally:
    """Tally rebuilt from the live vote rows (for consistency checks)."""
    rows = s.execute(
        select(Vote.choice, func.count(Vote.id)).where(Vote.motion_id == motion_id).group_by(Vote.choice)
    ).all()
    counts = {choice: 0 for choice in VOTE_CHOICES}
    for choice, n in rows:
        if choice in counts:
            counts[choice] = n
    return Tally(**counts)


def get_vote(s: Session, motion_id: int, user_id: int) -> Vote | None:
    return s.execute(
        select(Vote).where(Vote.motion_id == motion_id, Vote.voter_user_id == user_id)
    ).scalar_one_or_none()


def reply_to_motion(
    s: Session,
    actor: Identity | None,
    committee_id: int,
    motion_id: int,
    *,
    text: str,
    stance: str = "neutral",
) -> Reply:
    """Append a discussion entry. Replies are never edited afterwards."""
    actor = require_identity(actor)
    m = get_motion(s, committee_id, motion_id)
    require_member(actor, m.committee)

    text = (text or "").strip()
    if not text:
        raise ValidationError("Reply text is required")
    stance = (stance or "neutral").strip().lower()
    if stance not in REPLY_STANCES:
        raise ValidationError(f"Unknown stance {stance!r}")
    if m.status == STATUS_DELETED:
        raise PreconditionFailed("This motion has been deleted")
    if not m.requires_discussion:
        raise PreconditionFailed("This motion does not allow discussion")
    _require_seconded(m, "discussion can begin")

    r = Reply(
        motion_id=m.id,
        author_user_id=actor.id,
        author_display_name=actor.label,
        text=text,
        stance=stance,
    )
    s.add(r)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="motion.reply",
        entity_type="Motion",
        entity_id=str(m.id),
        metadata={"reply_id": r.id, "stance": stance},
    )
    return r


def _overturn_outcome(s: Session, m: Motion, *, overturned: bool) -> None:
    if m.kind != KIND_OVERTURN or m.related_motion_id is None:
        return
    d = s.execute(select(Decision).where(Decision.motion_id == m.related_motion_id)).scalar_one_or_none()
    if d is None:
        return
    d.overturn_motion_id = m.id
    d.is_overturned = overturned
    d.overturned_at = datetime.utcnow() if overturned else None


def transition_motion(
    actor: Identity | None,
    committee_id: int,
    motion_id: int,
    action: str,
    *,
    app: Flask | None = None,
) -> Motion:
    """
    Apply a status action (close, approve, deny, delete).
    Role check first, then the transition table; both raise rather than return.
    """
    actor = require_identity(actor)
    if action not in ACTION_TARGETS:
        raise ValidationError(f"Unknown motion action {action!r}")
    target = ACTION_TARGETS[action]

    def _apply(s: Session) -> Motion:
        m = get_motion(s, committee_id, motion_id, for_update=True)
        require_mutation(actor, m.committee, m, action)
        check_transition(m.status, target)

        previous = m.status
        m.status = target
        setattr(m, _STATUS_TIMESTAMPS[target], datetime.utcnow())

        if action == ACTION_APPROVE:
            _overturn_outcome(s, m, overturned=True)
        elif action == ACTION_DENY:
            _overturn_outcome(s, m, overturned=False)

        record_event(
            s,
            actor=actor,
            action=f"motion.{action}",
            entity_type="Motion",
            entity_id=str(m.id),
            metadata={"from": previous, "to": target},
        )
        return m

    return run_transaction(_apply, app=app)


def close_motion(actor: Identity | None, committee_id: int, motion_id: int, *, app: Flask | None = None) -> Motion:
    return transition_motion(actor, committee_id, motion_id, ACTION_CLOSE, app=app)


def approve_motion(actor: Identity | None, committee_id: int, motion_id: int, *, app: Flask | None = None) -> Motion:
    return transition_motion(actor, committee_id, motion_id, ACTION_APPROVE, app=app)


def deny_motion(actor: Identity | None, committee_id: int, motion_id: int, *, app: Flask | None = None) -> Motion:
    return transition_motion(actor, committee_id, motion_id, ACTION_DENY, app=app)


def delete_motion(actor: Identity | None, committee_id: int, motion_id: int, *, app: Flask | None = None) -> Motion:
    # Soft delete: the row stays (status "deleted") until the committee is removed.
    return transition_motion(actor, committee_id, motion_id, ACTION_DELETE, app=app)


def record_decision(
    s: Session,
    actor: Identity | None,
    committee_id: int,
    motion_id: int,
    *,
    summary: str = "",
    pros: list | str | None = None,
    cons: list | str | None = None,
    recording_url: str | None = None,
) -> Decision:
    """Record the outcome of a closed motion with a snapshot of its discussion."""
    actor = require_identity(actor)
    m = get_motion(s, committee_id, motion_id)
    require_manager(actor, m.committee)

    if m.status not in (STATUS_CLOSED, STATUS_COMPLETED, STATUS_DENIED):
        raise PreconditionFailed("Close voting before recording a decision")
    if m.decision is not None:
        raise PreconditionFailed("A decision has already been recorded for this motion")

    snapshot = [reply_to_dict(r) for r in m.replies]
    d = Decision(
        committee_id=m.committee_id,
        motion_id=m.id,
        summary=(summary or "").strip(),
        pros=_lines(pros),
        cons=_lines(cons),
        discussion_snapshot=snapshot,
        recording_url=(recording_url or "").strip() or None,
        recorded_by_user_id=actor.id,
        recorded_by_name=actor.label,
    )
    s.add(d)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="motion.decision",
        entity_type="Motion",
        entity_id=str(m.id),
        metadata={"decision_id": d.id, "replies": len(snapshot)},
    )
    return d


def propose_overturn(
    s: Session,
    actor: Identity | None,
    committee_id: int,
    motion_id: int,
    *,
    title: str,
    description: str = "",
) -> Motion:
    """Only members who voted yes on an adopted motion may move to overturn it."""
    actor = require_identity(actor)
    original = get_motion(s, committee_id, motion_id)
    require_member(actor, original.committee)

    if original.status != STATUS_COMPLETED:
        raise PreconditionFailed("Only adopted motions can be overturned")
    mine = get_vote(s, original.id, actor.id)
    if mine is None or mine.choice != CHOICE_YES:
        raise Unauthorized("Only members who voted in favor can propose to overturn")

    return create_motion(
        s,
        actor,
        committee_id,
        title=title,
        description=description,
        motion_type="Incidental",
        kind=KIND_OVERTURN,
        requires_discussion=True,
        related_motion_id=original.id,
    )


def list_motions(s: Session, actor: Identity | None, committee_id: int, *, status: str | None = None) -> list[Motion]:
    """Motions newest first; deleted motions only when asked for by status."""
    c = get_committee(s, committee_id)
    require_member(actor, c)

    stmt = select(Motion).where(Motion.committee_id == c.id)
    if status:
        if status not in MOTION_STATUSES:
            raise ValidationError(f"Unknown status {status!r}")
        stmt = stmt.where(Motion.status == status)
    else:
        stmt = stmt.where(Motion.status != STATUS_DELETED)
    stmt = stmt.order_by(Motion.created_at.desc(), Motion.id.desc())
    return list(s.execute(stmt).scalars().all())


def get_motion_for_member(s: Session, actor: Identity | None, committee_id: int, motion_id: int) -> Motion:
    m = get_motion(s, committee_id, motion_id)
    require_member(actor, m.committee)
    return m


def list_votes(s: Session, actor: Identity | None, committee_id: int, motion_id: int) -> list[Vote]:
    m = get_motion_for_member(s, actor, committee_id, motion_id)
    return list(s.execute(select(Vote).where(Vote.motion_id == m.id).order_by(Vote.id.asc())).scalars().all())


def list_replies(s: Session, actor: Identity | None, committee_id: int, motion_id: int) -> list[Reply]:
    m = get_motion_for_member(s, actor, committee_id, motion_id)
    return list(
        s.execute(select(Reply).where(Reply.motion_id == m.id).order_by(Reply.created_at.asc(), Reply.id.asc()))
        .scalars()
        .all()
    )
