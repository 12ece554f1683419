"""Points core tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)

account_status = sa.Enum("active", "suspended", name="account_status")
ledger_reason = sa.Enum(
    "post",
    "like",
    "comment",
    "survey",
    "daily-task",
    "check-in",
    "redemption-debit",
    "cashout-debit",
    "admin-adjustment",
    name="ledger_reason",
)
check_in_method = sa.Enum("gps", "qr", "either", name="check_in_method")
cashout_status = sa.Enum("pending", "paid", "rejected", name="cashout_status")
case_status = sa.Enum("pending", "investigating", "resolved", "dismissed", name="moderation_case_status")
case_severity = sa.Enum("low", "medium", "high", name="moderation_severity")
content_type = sa.Enum("post", "comment", "none", name="moderation_content_type")
moderation_action = sa.Enum("open", "dismiss", "warn", "suspend", "escalate", "reinstate", name="moderation_action")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("username", sa.String(), nullable=True, unique=True),
        sa.Column("point_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", account_status, nullable=False, server_default="active"),
        sa.Column("warning_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("point_balance >= 0", name="ck_accounts_point_balance_non_negative"),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("account_id", UUID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount_delta", sa.Integer(), nullable=False),
        sa.Column("reason", ledger_reason, nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("account_id", "idempotency_key", name="uq_ledger_entries_account_idempotency"),
    )
    op.create_index("ix_ledger_entries_account_created", "ledger_entries", ["account_id", "created_at"])

    op.create_table(
        "venues",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "rewards",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("venue_id", UUID, sa.ForeignKey("venues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("cost_points", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("cost_points >= 0", name="ck_rewards_cost_points_non_negative"),
    )
    op.create_index("ix_rewards_venue_id", "rewards", ["venue_id"])

    op.create_table(
        "vouchers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("account_id", UUID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reward_id", UUID, sa.ForeignKey("rewards.id"), nullable=False),
        sa.Column("ledger_entry_id", UUID, sa.ForeignKey("ledger_entries.id"), nullable=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consumed_at_venue_id", UUID, sa.ForeignKey("venues.id"), nullable=True),
    )
    op.create_index("ix_vouchers_code", "vouchers", ["code"], unique=True)
    op.create_index("ix_vouchers_account_id", "vouchers", ["account_id"])

    op.create_table(
        "events",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("venue_id", UUID, sa.ForeignKey("venues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_in_method", check_in_method, nullable=False, server_default="either"),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("qr_token", sa.String(), nullable=True),
        sa.Column("points_reward", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requires_registration", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_events_venue_id", "events", ["venue_id"])

    op.create_table(
        "event_registrations",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("account_id", UUID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", UUID, sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("account_id", "event_id", name="uq_event_registrations_account_event"),
    )

    op.create_table(
        "checkin_records",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("account_id", UUID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", UUID, sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("venue_id", UUID, sa.ForeignKey("venues.id"), nullable=False),
        sa.Column("method", postgresql.ENUM("gps", "qr", "either", name="check_in_method", create_type=False), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False),
        sa.Column("distance_meters", sa.Float(), nullable=True),
        sa.Column("ledger_entry_id", UUID, sa.ForeignKey("ledger_entries.id"), nullable=True),
        sa.UniqueConstraint("account_id", "event_id", name="uq_checkin_records_account_event"),
    )
    op.create_index("ix_checkin_records_event_id", "checkin_records", ["event_id"])

    op.create_table(
        "cashout_requests",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("account_id", UUID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", cashout_status, nullable=False, server_default="pending"),
        sa.Column("ledger_entry_id", UUID, sa.ForeignKey("ledger_entries.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_cashout_requests_account_id", "cashout_requests", ["account_id"])

    op.create_table(
        "moderation_cases",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("subject_account_id", UUID, sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reporter_account_id", UUID, sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("content_type", content_type, nullable=False, server_default="none"),
        sa.Column("content_id", sa.String(), nullable=True),
        sa.Column("severity", case_severity, nullable=False, server_default="low"),
        sa.Column("status", case_status, nullable=False, server_default="pending"),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_moderation_cases_subject_account_id", "moderation_cases", ["subject_account_id"])
    op.create_index("ix_moderation_cases_status", "moderation_cases", ["status"])

    op.create_table(
        "moderation_case_events",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("case_id", UUID, sa.ForeignKey("moderation_cases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", moderation_action, nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("actor_label", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_moderation_case_events_case_id", "moderation_case_events", ["case_id"])


def downgrade() -> None:
    op.drop_index("ix_moderation_case_events_case_id", table_name="moderation_case_events")
    op.drop_table("moderation_case_events")
    op.drop_index("ix_moderation_cases_status", table_name="moderation_cases")
    op.drop_index("ix_moderation_cases_subject_account_id", table_name="moderation_cases")
    op.drop_table("moderation_cases")
    op.drop_index("ix_cashout_requests_account_id", table_name="cashout_requests")
    op.drop_table("cashout_requests")
    op.drop_index("ix_checkin_records_event_id", table_name="checkin_records")
    op.drop_table("checkin_records")
    op.drop_table("event_registrations")
    op.drop_index("ix_events_venue_id", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_vouchers_account_id", table_name="vouchers")
    op.drop_index("ix_vouchers_code", table_name="vouchers")
    op.drop_table("vouchers")
    op.drop_index("ix_rewards_venue_id", table_name="rewards")
    op.drop_table("rewards")
    op.drop_table("venues")
    op.drop_index("ix_ledger_entries_account_created", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_table("accounts")

    bind = op.get_bind()
    for enum in (
        moderation_action,
        content_type,
        case_severity,
        case_status,
        cashout_status,
        check_in_method,
        ledger_reason,
        account_status,
    ):
        enum.drop(bind, checkfirst=True)
