"""Referral program core tables.

Revision ID: 20261001_01
Revises:
Create Date: 2026-10-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261001_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = sa.dialects.postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("square_customer_id", sa.String(64), nullable=False, unique=True),
        sa.Column("given_name", sa.String(128), nullable=True),
        sa.Column("family_name", sa.String(128), nullable=True),
        sa.Column("email_address", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("personal_code", sa.String(32), nullable=True, unique=True),
        sa.Column("referral_url", sa.String(512), nullable=True),
        sa.Column("used_referral_code", sa.String(32), nullable=True),
        sa.Column("referral_code_source", sa.String(64), nullable=True),
        sa.Column("got_signup_bonus", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("activated_as_referrer", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("first_payment_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("referral_email_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("gift_card_id", sa.String(64), nullable=True),
        sa.Column("gift_card_gan", sa.String(32), nullable=True),
        sa.Column("first_payment_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_customers_square_customer_id", "customers", ["square_customer_id"])
    op.create_index("ix_customers_email_address", "customers", ["email_address"])
    op.create_index("ix_customers_personal_code", "customers", ["personal_code"])
    op.create_index("ix_customers_used_referral_code", "customers", ["used_referral_code"])
    op.create_index("ix_customers_gift_card_gan", "customers", ["gift_card_gan"])

    op.create_table(
        "referral_clicks",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("ref_code", sa.String(32), nullable=False),
        sa.Column("ref_sid", sa.String(128), nullable=True),
        sa.Column("ip_hash", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("landing_url", sa.Text(), nullable=True),
        sa.Column("utm_source", sa.String(128), nullable=True),
        sa.Column("utm_medium", sa.String(128), nullable=True),
        sa.Column("utm_campaign", sa.String(128), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_referral_clicks_ref_code", "referral_clicks", ["ref_code"])

    op.create_table(
        "gift_card_rewards",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("customer_id", UUID, nullable=False),
        sa.Column("referred_customer_id", UUID, nullable=True),
        sa.Column(
            "reward_type",
            sa.Enum("FRIEND_SIGNUP_BONUS", "REFERRER_REWARD", name="reward_type_enum"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "issued", name="reward_status_enum"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("dedupe_key", sa.String(160), nullable=False, unique=True),
        sa.Column("idempotency_key", sa.String(45), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("square_gift_card_id", sa.String(64), nullable=True),
        sa.Column("gift_card_gan", sa.String(32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["referred_customer_id"], ["customers.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_gift_card_rewards_customer_id", "gift_card_rewards", ["customer_id"])

    op.create_table(
        "device_pass_registrations",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("device_library_identifier", sa.String(128), nullable=False),
        sa.Column("pass_type_identifier", sa.String(128), nullable=False),
        sa.Column("serial_number", sa.String(64), nullable=False),
        sa.Column("push_token", sa.String(255), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "device_library_identifier",
            "pass_type_identifier",
            "serial_number",
            name="uq_device_pass_registration",
        ),
    )
    op.create_index(
        "ix_device_pass_registrations_device_library_identifier",
        "device_pass_registrations",
        ["device_library_identifier"],
    )
    op.create_index("ix_device_pass_registrations_serial_number", "device_pass_registrations", ["serial_number"])

    op.create_table(
        "process_runs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("process_type", sa.Enum("webhook", "gift_card", name="process_type_enum"), nullable=False),
        sa.Column("correlation_id", sa.String(128), nullable=False, unique=True),
        sa.Column("event_type", sa.String(96), nullable=True),
        sa.Column("resource_id", sa.String(128), nullable=True),
        sa.Column(
            "status",
            sa.Enum("received", "processing", "completed", "failed", "ignored", name="process_status_enum"),
            nullable=False,
            server_default="received",
        ),
        sa.Column("stage", sa.String(64), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_process_runs_process_type", "process_runs", ["process_type"])
    op.create_index("ix_process_runs_resource_id", "process_runs", ["resource_id"])
    op.create_index("ix_process_runs_status", "process_runs", ["status"])

    for table, key, name in (
        ("square_orders", "square_order_id", "uq_square_orders_org_order"),
        ("square_payments", "square_payment_id", "uq_square_payments_org_payment"),
        ("square_bookings", "square_booking_id", "uq_square_bookings_org_booking"),
    ):
        extra: list[sa.Column]
        if table == "square_orders":
            extra = [
                sa.Column("state", sa.String(32), nullable=True),
                sa.Column("total_money_cents", sa.Integer(), nullable=True),
                sa.Column("currency", sa.String(3), nullable=True),
            ]
        elif table == "square_payments":
            extra = [
                sa.Column("order_id", sa.String(64), nullable=True),
                sa.Column("status", sa.String(32), nullable=True),
                sa.Column("amount_cents", sa.Integer(), nullable=True),
                sa.Column("currency", sa.String(3), nullable=True),
            ]
        else:
            extra = [
                sa.Column("status", sa.String(32), nullable=True),
                sa.Column("start_at", sa.String(64), nullable=True),
                sa.Column("version", sa.Integer(), nullable=True),
            ]
        op.create_table(
            table,
            sa.Column("id", UUID, primary_key=True),
            sa.Column("organization_id", sa.String(64), nullable=False),
            sa.Column(key, sa.String(64), nullable=False),
            sa.Column("customer_id", sa.String(64), nullable=True),
            sa.Column("location_id", sa.String(64), nullable=True),
            *extra,
            sa.Column("raw_json", sa.JSON(), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("organization_id", key, name=name),
        )
        op.create_index(f"ix_{table}_{key}", table, [key])
        op.create_index(f"ix_{table}_customer_id", table, ["customer_id"])


def downgrade() -> None:
    for table in ("square_bookings", "square_payments", "square_orders"):
        op.drop_table(table)
    op.drop_table("process_runs")
    op.drop_table("device_pass_registrations")
    op.drop_table("gift_card_rewards")
    op.drop_table("referral_clicks")
    op.drop_table("customers")
    op.execute("DROP TYPE IF EXISTS process_status_enum")
    op.execute("DROP TYPE IF EXISTS process_type_enum")
    op.execute("DROP TYPE IF EXISTS reward_status_enum")
    op.execute("DROP TYPE IF EXISTS reward_type_enum")
