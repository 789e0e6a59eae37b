from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.gavel.constants import DEFAULT_SETTINGS, ROLE_MEMBER
from app.gavel.models import Base

if TYPE_CHECKING:
    from app.gavel.modules.motions.models import Decision, Motion


class Committee(Base):
    __tablename__ = "committees"
    __table_args__ = (
        Index("idx_committees_owner", "owner_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    owner_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    # 6 upper-case letters; null until generated
    invite_code: Mapped[str | None] = mapped_column(String(16), nullable=True, unique=True)

    # Settings
    default_threshold: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DEFAULT_SETTINGS["default_threshold"]
    )
    allow_anonymous_voting: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=DEFAULT_SETTINGS["allow_anonymous_voting"]
    )
    require_second: Mapped[bool] = mapped_column(Boolean, nullable=False, default=DEFAULT_SETTINGS["require_second"])

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    members: Mapped[list["CommitteeMember"]] = relationship(
        "CommitteeMember",
        back_populates="committee",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CommitteeMember.joined_at",
    )
    motions: Mapped[list["Motion"]] = relationship(
        "Motion",
        back_populates="committee",
        cascade="all, delete-orphan",
        lazy="select",
        foreign_keys="Motion.committee_id",
    )
    decisions: Mapped[list["Decision"]] = relationship(
        "Decision",
        back_populates="committee",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def settings(self) -> dict:
        return {
            "default_threshold": self.default_threshold,
            "allow_anonymous_voting": self.allow_anonymous_voting,
            "require_second": self.require_second,
        }

    def member_for(self, user_id: int) -> "CommitteeMember | None":
        for m in self.members:
            if m.user_id == user_id:
                return m
        return None


class CommitteeMember(Base):
    __tablename__ = "committee_members"
    __table_args__ = (
        UniqueConstraint("committee_id", "user_id", name="uq_committee_member"),
        Index("idx_committee_members_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    committee_id: Mapped[int] = mapped_column(ForeignKey("committees.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_MEMBER)  # owner | chair | member
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    added_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    committee: Mapped[Committee] = relationship("Committee", back_populates="members", lazy="selectin")
