"""
Explicit caller identity.

Services take an ``Identity`` (or ``None``) as a parameter instead of reading
the session themselves, so they can be exercised without a request.
"""
from __future__ import annotations

from dataclasses import dataclass

from flask import g

from app.gavel.errors import Unauthenticated
from app.gavel.models import User


@dataclass(frozen=True)
class Identity:
    id: int
    email: str
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or str(self.id)

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, email=user.email, display_name=user.display_name)


def current_identity() -> Identity | None:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return Identity.from_user(user)


def require_identity(actor: Identity | None) -> Identity:
    if actor is None:
        raise Unauthenticated()
    return actor
