from __future__ import annotations

from flask import Blueprint
from sqlalchemy.orm import Session

from app.gavel.db import db_session
from app.gavel.errors import NotFound, ValidationError
from app.gavel.identity import current_identity
from app.gavel.models import User
from app.gavel.modules.committees.serializers import committee_to_dict, member_to_dict
from app.gavel.modules.committees.service import (
    add_member,
    create_committee,
    delete_committee,
    export_committee,
    generate_invite_code,
    get_committee_for_member,
    join_by_code,
    list_committees_for,
    set_member_role,
    update_settings,
)
from app.gavel.rbac import member_role, require_login
from app.gavel.utils import json_body, optional_int, optional_str

bp = Blueprint("committees", __name__)


def _resolve_user_id(s: Session, data: dict) -> int:
    user_id = optional_int(data, "user_id")
    if user_id is not None:
        return user_id
    email = (optional_str(data, "email") or "").strip().lower()
    if not email:
        raise ValidationError("user_id or email is required.")
    u = s.query(User).filter(User.email == email).one_or_none()
    if not u:
        raise NotFound("User not found")
    return u.id


@bp.get("/")
@require_login
def list_committees():
    s = db_session()
    items = list_committees_for(s, current_identity())
    return {"committees": [committee_to_dict(c, include_members=False) for c in items]}


@bp.post("/")
@require_login
def create():
    s = db_session()
    data = json_body()
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        raise ValidationError("settings must be an object.")
    c = create_committee(
        s,
        current_identity(),
        name=optional_str(data, "name") or "",
        description=optional_str(data, "description") or "",
        settings=settings,
    )
    s.commit()
    return {"committee": committee_to_dict(c)}, 201


@bp.post("/join")
@require_login
def join():
    s = db_session()
    data = json_body()
    c, m = join_by_code(s, current_identity(), optional_str(data, "code") or "")
    s.commit()
    return {"committee_id": c.id, "committee_name": c.name, "role": m.role}


@bp.get("/<int:committee_id>")
@require_login
def detail(committee_id: int):
    s = db_session()
    actor = current_identity()
    c = get_committee_for_member(s, actor, committee_id)
    return {"committee": committee_to_dict(c), "my_role": member_role(c, actor.id)}


@bp.delete("/<int:committee_id>")
@require_login
def delete(committee_id: int):
    s = db_session()
    delete_committee(s, current_identity(), committee_id)
    s.commit()
    return {"ok": True}


@bp.patch("/<int:committee_id>/settings")
@require_login
def settings(committee_id: int):
    s = db_session()
    c = update_settings(s, current_identity(), committee_id, json_body())
    s.commit()
    return {"settings": c.settings}


@bp.post("/<int:committee_id>/invite-code")
@require_login
def invite_code(committee_id: int):
    s = db_session()
    code = generate_invite_code(s, current_identity(), committee_id)
    s.commit()
    return {"invite_code": code}


@bp.post("/<int:committee_id>/members")
@require_login
def add(committee_id: int):
    s = db_session()
    data = json_body()
    m = add_member(
        s,
        current_identity(),
        committee_id,
        user_id=_resolve_user_id(s, data),
        role=optional_str(data, "role") or "member",
    )
    s.commit()
    return {"member": member_to_dict(m)}, 201


@bp.patch("/<int:committee_id>/members/<int:user_id>")
@require_login
def change_role(committee_id: int, user_id: int):
    data = json_body()
    role = optional_str(data, "role")
    if not role:
        raise ValidationError("role is required.")
    m = set_member_role(current_identity(), committee_id, user_id, role)
    return {"member": member_to_dict(m)}


@bp.get("/<int:committee_id>/export")
@require_login
def export(committee_id: int):
    s = db_session()
    return export_committee(s, current_identity(), committee_id)
