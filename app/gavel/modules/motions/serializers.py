from __future__ import annotations

from app.gavel.modules.committees.serializers import iso
from app.gavel.modules.motions.models import Decision, Motion, Reply, Vote
from app.gavel.modules.motions.tally import Tally, evaluate


def motion_to_dict(m: Motion, *, with_evaluation: bool = False) -> dict:
    tally = Tally.of(m)
    out = {
        "id": m.id,
        "committee_id": m.committee_id,
        "title": m.title,
        "description": m.description,
        "type": m.motion_type,
        "kind": m.kind,
        "creator_user_id": m.creator_user_id,
        "creator_display_name": m.creator_display_name,
        "created_at": iso(m.created_at),
        "status": m.status,
        "threshold": m.threshold,
        "tally": tally.to_dict(),
        "requires_discussion": m.requires_discussion,
        "second_required": m.second_required,
        "allow_anonymous": m.allow_anonymous,
        "seconded": m.seconded,
        "seconded_by_user_id": m.seconded_by_user_id,
        "seconded_by_name": m.seconded_by_name,
        "seconded_at": iso(m.seconded_at),
        "parent_motion_id": m.parent_motion_id,
        "related_motion_id": m.related_motion_id,
        "closed_at": iso(m.closed_at),
        "approved_at": iso(m.approved_at),
        "denied_at": iso(m.denied_at),
        "deleted_at": iso(m.deleted_at),
    }
    if with_evaluation:
        out["evaluation"] = evaluate(tally, m.threshold).to_dict()
    return out


def vote_to_dict(v: Vote) -> dict:
    return {
        "voter_user_id": None if v.anonymous else v.voter_user_id,
        "voter_display_name": None if v.anonymous else v.voter_display_name,
        "choice": v.choice,
        "anonymous": v.anonymous,
        "created_at": iso(v.created_at),
        "updated_at": iso(v.updated_at),
    }


def reply_to_dict(r: Reply) -> dict:
    return {
        "id": r.id,
        "author_user_id": r.author_user_id,
        "author_display_name": r.author_display_name,
        "text": r.text,
        "stance": r.stance,
        "created_at": iso(r.created_at),
    }


def decision_to_dict(d: Decision) -> dict:
    return {
        "id": d.id,
        "committee_id": d.committee_id,
        "motion_id": d.motion_id,
        "summary": d.summary,
        "pros": list(d.pros or []),
        "cons": list(d.cons or []),
        "discussion_snapshot": list(d.discussion_snapshot or []),
        "recording_url": d.recording_url,
        "recorded_by_user_id": d.recorded_by_user_id,
        "recorded_by_name": d.recorded_by_name,
        "created_at": iso(d.created_at),
        "overturn_motion_id": d.overturn_motion_id,
        "is_overturned": d.is_overturned,
        "overturned_at": iso(d.overturned_at),
    }
