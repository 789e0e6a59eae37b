"""add committees, motions, votes, replies and decisions

Revision ID: 8e4d2b6a1c37
Revises: 3f1a9c2b7d10
Create Date: 2026-10-05 16:41:03.552917

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8e4d2b6a1c37"
down_revision: Union[str, Sequence[str], None] = "3f1a9c2b7d10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "committees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("owner_user_id", sa.Integer(), nullable=False),
        sa.Column("invite_code", sa.String(16), nullable=True),
        sa.Column("default_threshold", sa.String(32), nullable=False, server_default="Simple Majority"),
        sa.Column("allow_anonymous_voting", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("require_second", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=True),
        sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("invite_code"),
    )
    op.create_index("idx_committees_owner", "committees", ["owner_user_id"])

    op.create_table(
        "committee_members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("committee_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="member"),
        sa.Column("display_name", sa.String(128), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("added_by_user_id", sa.Integer(), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=False), nullable=False),
        sa.ForeignKeyConstraint(["committee_id"], ["committees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["added_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("committee_id", "user_id", name="uq_committee_member"),
    )
    op.create_index("idx_committee_members_user", "committee_members", ["user_id"])

    op.create_table(
        "motions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("committee_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("motion_type", sa.String(32), nullable=False, server_default="Main"),
        sa.Column("kind", sa.String(16), nullable=False, server_default="standard"),
        sa.Column("creator_user_id", sa.Integer(), nullable=False),
        sa.Column("creator_display_name", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("closed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("denied_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("threshold", sa.String(32), nullable=False, server_default="Simple Majority"),
        sa.Column("tally_yes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tally_no", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tally_abstain", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requires_discussion", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("second_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("allow_anonymous", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("seconded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("seconded_by_user_id", sa.Integer(), nullable=True),
        sa.Column("seconded_by_name", sa.String(128), nullable=True),
        sa.Column("seconded_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("parent_motion_id", sa.Integer(), nullable=True),
        sa.Column("related_motion_id", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["committee_id"], ["committees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["creator_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["seconded_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["parent_motion_id"], ["motions.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["related_motion_id"], ["motions.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_motions_committee", "motions", ["committee_id"])
    op.create_index("idx_motions_status", "motions", ["status"])

    op.create_table(
        "votes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("motion_id", sa.Integer(), nullable=False),
        sa.Column("voter_user_id", sa.Integer(), nullable=False),
        sa.Column("choice", sa.String(16), nullable=False),
        sa.Column("anonymous", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("voter_display_name", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=True),
        sa.ForeignKeyConstraint(["motion_id"], ["motions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["voter_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("motion_id", "voter_user_id", name="uq_vote_motion_voter"),
    )

    op.create_table(
        "replies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("motion_id", sa.Integer(), nullable=False),
        sa.Column("author_user_id", sa.Integer(), nullable=False),
        sa.Column("author_display_name", sa.String(128), nullable=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("stance", sa.String(16), nullable=False, server_default="neutral"),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.ForeignKeyConstraint(["motion_id"], ["motions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_user_id"], ["users.id"], ondelete="RESTRICT"),
    )
    op.create_index("idx_replies_motion", "replies", ["motion_id"])

    op.create_table(
        "decisions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("committee_id", sa.Integer(), nullable=False),
        sa.Column("motion_id", sa.Integer(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("pros", sa.JSON(), nullable=False),
        sa.Column("cons", sa.JSON(), nullable=False),
        sa.Column("discussion_snapshot", sa.JSON(), nullable=False),
        sa.Column("recording_url", sa.String(1024), nullable=True),
        sa.Column("recorded_by_user_id", sa.Integer(), nullable=True),
        sa.Column("recorded_by_name", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("overturn_motion_id", sa.Integer(), nullable=True),
        sa.Column("is_overturned", sa.Boolean(), nullable=True),
        sa.Column("overturned_at", sa.DateTime(timezone=False), nullable=True),
        sa.ForeignKeyConstraint(["committee_id"], ["committees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["motion_id"], ["motions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recorded_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["overturn_motion_id"], ["motions.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("motion_id", name="uq_decision_motion"),
    )
    op.create_index("idx_decisions_committee", "decisions", ["committee_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_decisions_committee", table_name="decisions")
    op.drop_table("decisions")
    op.drop_index("idx_replies_motion", table_name="replies")
    op.drop_table("replies")
    op.drop_table("votes")
    op.drop_index("idx_motions_status", table_name="motions")
    op.drop_index("idx_motions_committee", table_name="motions")
    op.drop_table("motions")
    op.drop_index("idx_committee_members_user", table_name="committee_members")
    op.drop_table("committee_members")
    op.drop_index("idx_committees_owner", table_name="committees")
    op.drop_table("committees")
