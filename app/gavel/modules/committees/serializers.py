from __future__ import annotations

from datetime import datetime

from app.gavel.modules.committees.models import Committee, CommitteeMember


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def member_to_dict(m: CommitteeMember) -> dict:
    return {
        "user_id": m.user_id,
        "role": m.role,
        "display_name": m.display_name,
        "email": m.email,
        "added_by_user_id": m.added_by_user_id,
        "joined_at": iso(m.joined_at),
    }


def committee_to_dict(c: Committee, *, include_members: bool = True) -> dict:
    out = {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "owner_user_id": c.owner_user_id,
        "invite_code": c.invite_code,
        "settings": c.settings,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
    if include_members:
        out["members"] = [member_to_dict(m) for m in c.members]
    return out
