"""reminder engine schema

Revision ID: 20260301_01
Revises: None
Create Date: 2026-03-01
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20260301_01"
down_revision = None
branch_labels = None
depends_on = None

REMINDER_TYPES = (
    "session_48h",
    "session_24h",
    "session_6h",
    "session_start",
    "coach_session_start",
    "coach_session_plus_60m",
    "parent_session_plus_120m",
    "follow_up_1d",
    "follow_up_3d",
    "follow_up_7d",
    "follow_up_14d",
)

TSTZ = sa.DateTime(timezone=True)


def _session_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("session_date", TSTZ, nullable=False),
        sa.Column("status", sa.String(length=32), nullable=True),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("showed_up", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(f"ix_{name}_parent_date", name, ["parent_id", "session_date"])


def upgrade() -> None:
    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("secondary_parent_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("dm_status", sa.String(length=32), nullable=True),
        sa.Column("phone_call_booked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("call_date_time", TSTZ, nullable=True),
        sa.Column("call_outcome", sa.String(length=32), nullable=True),
        sa.Column("is_customer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_dead", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_activity_at", TSTZ, nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", TSTZ, nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", TSTZ, nullable=False, server_default=sa.func.now()),
    )
    _session_table("first_sessions")
    _session_table("sessions")
    op.create_table(
        "first_session_players",
        sa.Column("first_session_id", sa.Integer(), sa.ForeignKey("first_sessions.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("player_id", sa.Integer(), sa.ForeignKey("players.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "session_players",
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("player_id", sa.Integer(), sa.ForeignKey("players.id", ondelete="CASCADE"), primary_key=True),
    )

    type_list = ", ".join(f"'{t}'" for t in REMINDER_TYPES)
    op.create_table(
        "reminders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_session_id", sa.Integer(), sa.ForeignKey("first_sessions.id", ondelete="CASCADE"), nullable=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=True),
        sa.Column("reminder_type", sa.String(length=32), nullable=False),
        sa.Column("reminder_category", sa.String(length=40), nullable=False),
        sa.Column("due_at", TSTZ, nullable=False),
        sa.Column("sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", TSTZ, nullable=True),
        sa.Column("undeliverable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", TSTZ, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "NOT (first_session_id IS NOT NULL AND session_id IS NOT NULL)",
            name="ck_reminders_single_session_link",
        ),
        sa.CheckConstraint(
            f"reminder_type IN ({type_list})",
            name="ck_reminders_reminder_type",
        ),
    )
    op.create_index(
        "uq_reminders_unsent_slot",
        "reminders",
        ["parent_id", "reminder_type", "reminder_category", "due_at"],
        unique=True,
        postgresql_where=sa.text("sent = false"),
        sqlite_where=sa.text("sent = 0"),
    )
    op.create_index("ix_reminders_due_unsent", "reminders", ["sent", "due_at"])


def downgrade() -> None:
    op.drop_index("ix_reminders_due_unsent", table_name="reminders")
    op.drop_index("uq_reminders_unsent_slot", table_name="reminders")
    op.drop_table("reminders")
    op.drop_table("session_players")
    op.drop_table("first_session_players")
    op.drop_index("ix_sessions_parent_date", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("ix_first_sessions_parent_date", table_name="first_sessions")
    op.drop_table("first_sessions")
    op.drop_table("players")
    op.drop_table("contacts")
