from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.gavel.constants import KIND_STANDARD, STATUS_ACTIVE, THRESHOLD_SIMPLE_MAJORITY
from app.gavel.models import Base
from app.gavel.modules.committees.models import Committee


class Motion(Base):
    __tablename__ = "motions"
    __table_args__ = (
        Index("idx_motions_committee", "committee_id"),
        Index("idx_motions_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    committee_id: Mapped[int] = mapped_column(ForeignKey("committees.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    motion_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Main")
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default=KIND_STANDARD)

    creator_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    creator_display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    # active -> closed -> completed|denied; active|closed -> deleted
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    threshold: Mapped[str] = mapped_column(String(32), nullable=False, default=THRESHOLD_SIMPLE_MAJORITY)

    # Aggregate of live Vote rows; only written inside run_transaction
    tally_yes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tally_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tally_abstain: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Resolved from committee settings at creation time
    requires_discussion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    second_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    seconded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seconded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    seconded_by_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    seconded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    parent_motion_id: Mapped[int | None] = mapped_column(ForeignKey("motions.id", ondelete="SET NULL"), nullable=True)
    # For overturn motions: the motion whose decision is being revisited
    related_motion_id: Mapped[int | None] = mapped_column(ForeignKey("motions.id", ondelete="SET NULL"), nullable=True)

    # Optimistic concurrency: every UPDATE checks and bumps this
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    committee: Mapped[Committee] = relationship(
        "Committee",
        back_populates="motions",
        foreign_keys=[committee_id],
        lazy="selectin",
    )
    votes: Mapped[list["Vote"]] = relationship(
        "Vote",
        back_populates="motion",
        cascade="all, delete-orphan",
        lazy="select",
    )
    replies: Mapped[list["Reply"]] = relationship(
        "Reply",
        back_populates="motion",
        cascade="all, delete-orphan",
        lazy="select",
        order_by="Reply.created_at",
    )
    decision: Mapped["Decision | None"] = relationship(
        "Decision",
        back_populates="motion",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
        foreign_keys="Decision.motion_id",
    )


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("motion_id", "voter_user_id", name="uq_vote_motion_voter"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    motion_id: Mapped[int] = mapped_column(ForeignKey("motions.id", ondelete="CASCADE"), nullable=False)
    voter_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    choice: Mapped[str] = mapped_column(String(16), nullable=False)  # yes | no | abstain
    anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    voter_display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)  # null when anonymous

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    motion: Mapped[Motion] = relationship("Motion", back_populates="votes", lazy="selectin")


class Reply(Base):
    __tablename__ = "replies"
    __table_args__ = (
        Index("idx_replies_motion", "motion_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    motion_id: Mapped[int] = mapped_column(ForeignKey("motions.id", ondelete="CASCADE"), nullable=False)
    author_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    author_display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    text: Mapped[str] = mapped_column(Text, nullable=False)
    stance: Mapped[str] = mapped_column(String(16), nullable=False, default="neutral")  # pro | con | neutral

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    motion: Mapped[Motion] = relationship("Motion", back_populates="replies", lazy="selectin")


class Decision(Base):
    __tablename__ = "decisions"
    __table_args__ = (
        UniqueConstraint("motion_id", name="uq_decision_motion"),
        Index("idx_decisions_committee", "committee_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    committee_id: Mapped[int] = mapped_column(ForeignKey("committees.id", ondelete="CASCADE"), nullable=False)
    motion_id: Mapped[int] = mapped_column(ForeignKey("motions.id", ondelete="CASCADE"), nullable=False)

    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    pros: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    cons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # Replies as they stood when the decision was recorded
    discussion_snapshot: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    recording_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    recorded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recorded_by_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    overturn_motion_id: Mapped[int | None] = mapped_column(ForeignKey("motions.id", ondelete="SET NULL"), nullable=True)
    is_overturned: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    overturned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    committee: Mapped[Committee] = relationship("Committee", back_populates="decisions", lazy="selectin")
    motion: Mapped[Motion] = relationship(
        "Motion",
        back_populates="decision",
        foreign_keys=[motion_id],
        lazy="selectin",
    )
