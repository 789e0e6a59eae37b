from __future__ import annotations

from flask import Blueprint, request

from app.gavel.constants import KIND_OVERTURN, KIND_STANDARD
from app.gavel.db import db_session
from app.gavel.errors import ValidationError
from app.gavel.identity import current_identity
from app.gavel.modules.motions.serializers import (
    decision_to_dict,
    motion_to_dict,
    reply_to_dict,
    vote_to_dict,
)
from app.gavel.modules.motions.service import (
    cast_vote,
    create_motion,
    get_motion,
    get_motion_for_member,
    get_vote,
    list_motions,
    list_replies,
    list_votes,
    propose_overturn,
    record_decision,
    reply_to_motion,
    second_motion,
    transition_motion,
)
from app.gavel.modules.motions.tally import evaluate
from app.gavel.rbac import ACTION_DELETE, require_login
from app.gavel.utils import json_body, optional_bool, optional_int, optional_str

bp = Blueprint("motions", __name__)


@bp.get("/")
@require_login
def index(committee_id: int):
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    items = list_motions(s, current_identity(), committee_id, status=status)
    return {"motions": [motion_to_dict(m, with_evaluation=True) for m in items]}


@bp.post("/")
@require_login
def create(committee_id: int):
    s = db_session()
    data = json_body()
    kind = optional_str(data, "kind") or KIND_STANDARD
    if kind == KIND_OVERTURN:
        raise ValidationError("Use POST /<motion_id>/overturn to propose an overturn.")
    m = create_motion(
        s,
        current_identity(),
        committee_id,
        title=optional_str(data, "title") or "",
        description=optional_str(data, "description") or "",
        motion_type=optional_str(data, "type"),
        kind=kind,
        threshold=optional_str(data, "threshold"),
        requires_discussion=optional_bool(data, "requires_discussion"),
        second_required=optional_bool(data, "second_required"),
        allow_anonymous=optional_bool(data, "allow_anonymous"),
        parent_motion_id=optional_int(data, "parent_motion_id"),
    )
    s.commit()
    return {"motion": motion_to_dict(m, with_evaluation=True)}, 201


@bp.get("/<int:motion_id>")
@require_login
def detail(committee_id: int, motion_id: int):
    s = db_session()
    actor = current_identity()
    m = get_motion_for_member(s, actor, committee_id, motion_id)
    mine = get_vote(s, m.id, actor.id)
    return {
        "motion": motion_to_dict(m, with_evaluation=True),
        "my_vote": mine.choice if mine else None,
        "decision": decision_to_dict(m.decision) if m.decision else None,
    }


@bp.delete("/<int:motion_id>")
@require_login
def delete(committee_id: int, motion_id: int):
    m = transition_motion(current_identity(), committee_id, motion_id, ACTION_DELETE)
    return {"motion": motion_to_dict(m)}


@bp.post("/<int:motion_id>/<any(close, approve, deny):action>")
@require_login
def transition(committee_id: int, motion_id: int, action: str):
    m = transition_motion(current_identity(), committee_id, motion_id, action)
    return {"motion": motion_to_dict(m, with_evaluation=True)}


@bp.post("/<int:motion_id>/second")
@require_login
def second(committee_id: int, motion_id: int):
    m = second_motion(current_identity(), committee_id, motion_id)
    return {"motion": motion_to_dict(m)}


@bp.get("/<int:motion_id>/votes")
@require_login
def votes(committee_id: int, motion_id: int):
    s = db_session()
    items = list_votes(s, current_identity(), committee_id, motion_id)
    return {"votes": [vote_to_dict(v) for v in items]}


@bp.post("/<int:motion_id>/votes")
@require_login
def vote(committee_id: int, motion_id: int):
    data = json_body()
    tally = cast_vote(
        current_identity(),
        committee_id,
        motion_id,
        (optional_str(data, "choice") or "").strip().lower(),
        anonymous=bool(optional_bool(data, "anonymous")),
    )
    m = get_motion(db_session(), committee_id, motion_id)
    return {"tally": tally.to_dict(), "evaluation": evaluate(tally, m.threshold).to_dict()}


@bp.get("/<int:motion_id>/replies")
@require_login
def replies(committee_id: int, motion_id: int):
    s = db_session()
    items = list_replies(s, current_identity(), committee_id, motion_id)
    return {"replies": [reply_to_dict(r) for r in items]}


@bp.post("/<int:motion_id>/replies")
@require_login
def reply(committee_id: int, motion_id: int):
    s = db_session()
    data = json_body()
    r = reply_to_motion(
        s,
        current_identity(),
        committee_id,
        motion_id,
        text=optional_str(data, "text") or "",
        stance=optional_str(data, "stance") or "neutral",
    )
    s.commit()
    return {"reply": reply_to_dict(r)}, 201


@bp.post("/<int:motion_id>/decision")
@require_login
def decision(committee_id: int, motion_id: int):
    s = db_session()
    data = json_body()
    d = record_decision(
        s,
        current_identity(),
        committee_id,
        motion_id,
        summary=optional_str(data, "summary") or "",
        pros=data.get("pros"),
        cons=data.get("cons"),
        recording_url=optional_str(data, "recording_url"),
    )
    s.commit()
    return {"decision": decision_to_dict(d)}, 201


@bp.post("/<int:motion_id>/overturn")
@require_login
def overturn(committee_id: int, motion_id: int):
    s = db_session()
    data = json_body()
    m = propose_overturn(
        s,
        current_identity(),
        committee_id,
        motion_id,
        title=optional_str(data, "title") or "",
        description=optional_str(data, "description") or "",
    )
    s.commit()
    return {"motion": motion_to_dict(m, with_evaluation=True)}, 201
