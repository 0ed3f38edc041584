"""Initial migration: users, game schedules, members, match tables, levels, notifications

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("uid", sa.String(), nullable=False),
        sa.Column("nickname", sa.String(), nullable=True),
        sa.Column("level", sa.Float(), nullable=False),
        sa.Column("fcm_token", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("uid"),
    )

    op.create_table(
        "schedule",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("tag", sa.String(), nullable=False),
        sa.Column("is_kdk", sa.Boolean(), nullable=False),
        sa.Column("is_single", sa.Boolean(), nullable=False),
        sa.Column("final_score", sa.Integer(), nullable=False),
        sa.Column("state", sa.Integer(), nullable=False),
        sa.Column("current_round", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_schedule_uid", "schedule", ["uid"])

    op.create_table(
        "schedulemember",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(), nullable=False),
        sa.Column("approval", sa.Boolean(), nullable=False),
        sa.Column("team_name", sa.String(), nullable=True),
        sa.Column("member_index", sa.Integer(), nullable=True),
        sa.Column("is_walk_over", sa.Boolean(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("win_point", sa.Integer(), nullable=False),
        sa.Column("ranking", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["schedule_id"], ["schedule.id"]),
        sa.UniqueConstraint("schedule_id", "uid", name="uq_schedule_member_uid"),
    )
    op.create_index("ix_schedulemember_schedule_id", "schedulemember", ["schedule_id"])

    op.create_table(
        "gametable",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("table_id", sa.Integer(), nullable=False),
        sa.Column("player1_0", sa.String(), nullable=True),
        sa.Column("player1_1", sa.String(), nullable=True),
        sa.Column("player2_0", sa.String(), nullable=True),
        sa.Column("player2_1", sa.String(), nullable=True),
        sa.Column("score1", sa.Integer(), nullable=True),
        sa.Column("score2", sa.Integer(), nullable=True),
        sa.Column("walk_over", sa.Boolean(), nullable=False),
        sa.Column("court", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["schedule_id"], ["schedule.id"]),
        sa.UniqueConstraint("schedule_id", "table_id", name="uq_game_table_schedule_table"),
    )
    op.create_index("ix_gametable_schedule_id", "gametable", ["schedule_id"])

    op.create_table(
        "userlevel",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("table_id", sa.Integer(), nullable=False),
        sa.Column("fluctuation", sa.Float(), nullable=False),
        sa.Column("original", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["schedule_id"], ["schedule.id"]),
    )
    op.create_index("ix_userlevel_uid", "userlevel", ["uid"])
    op.create_index("ix_userlevel_schedule_id", "userlevel", ["schedule_id"])

    op.create_table(
        "notification",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("sub_title", sa.String(), nullable=True),
        sa.Column("routing", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_uid", "notification", ["uid"])


def downgrade() -> None:
    op.drop_index("ix_notification_uid", table_name="notification")
    op.drop_table("notification")
    op.drop_index("ix_userlevel_schedule_id", table_name="userlevel")
    op.drop_index("ix_userlevel_uid", table_name="userlevel")
    op.drop_table("userlevel")
    op.drop_index("ix_gametable_schedule_id", table_name="gametable")
    op.drop_table("gametable")
    op.drop_index("ix_schedulemember_schedule_id", table_name="schedulemember")
    op.drop_table("schedulemember")
    op.drop_index("ix_schedule_uid", table_name="schedule")
    op.drop_table("schedule")
    op.drop_table("user")
