"""Initial schema: organisations, balances, programs, events, vouchers,
discount codes, the ticket ledger and bookings.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("crm_account_id", sa.String(100), nullable=True),
        sa.Column("training_fund_balance", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("purchase_order_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("training_fund_balance >= 0", name="check_training_fund_non_negative"),
    )
    op.create_index("ix_organizations_id", "organizations", ["id"])
    op.create_index("ix_organizations_crm_account_id", "organizations", ["crm_account_id"])

    # One row per organisation/program so a booking can decrement with
    # UPDATE ... WHERE balance >= n. The CHECK is the last line of defence.
    op.create_table(
        "program_ticket_balances",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("program_tag", sa.String(100), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "program_tag", name="uq_org_program_balance"),
        sa.CheckConstraint("balance >= 0", name="check_ticket_balance_non_negative"),
    )
    op.create_index("ix_program_ticket_balances_id", "program_ticket_balances", ["id"])
    op.create_index("ix_program_ticket_balances_organization_id", "program_ticket_balances", ["organization_id"])

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_members_id", "members", ["id"])
    op.create_index("ix_members_email", "members", ["email"], unique=True)
    op.create_index("ix_members_organization_id", "members", ["organization_id"])

    op.create_table(
        "programs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("program_tag", sa.String(100), nullable=False),
        sa.Column("ticket_price", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("offer_type", sa.String(20), nullable=False, server_default=sa.text("'none'")),
        sa.Column("bogo_buy_quantity", sa.Integer(), nullable=True),
        sa.Column("bogo_free_quantity", sa.Integer(), nullable=True),
        sa.Column("bogo_logic", sa.String(30), nullable=True),
        sa.Column("bulk_discount_threshold", sa.Integer(), nullable=True),
        sa.Column("bulk_discount_percentage", sa.Numeric(5, 2), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("ticket_price >= 0", name="check_program_price_non_negative"),
        sa.CheckConstraint("offer_type IN ('none', 'bogo', 'bulk_discount')", name="check_program_offer_type"),
    )
    op.create_index("ix_programs_id", "programs", ["id"])
    op.create_index("ix_programs_program_tag", "programs", ["program_tag"], unique=True)

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("program_tag", sa.String(100), nullable=True),
        sa.Column("ticket_price", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("backstage_event_id", sa.String(100), nullable=True),
        sa.Column("backstage_ticket_type_id", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_program_tag", "events", ["program_tag"])
    op.create_index("ix_events_start_date", "events", ["start_date"])

    op.create_table(
        "vouchers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("value", sa.Numeric(10, 2), nullable=False),
        sa.Column("remaining_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("remaining_value >= 0", name="check_voucher_remaining_non_negative"),
        sa.CheckConstraint("status IN ('active', 'used', 'expired')", name="check_voucher_status"),
    )
    op.create_index("ix_vouchers_id", "vouchers", ["id"])
    op.create_index("ix_vouchers_organization_id", "vouchers", ["organization_id"])

    op.create_table(
        "discount_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("value", sa.Numeric(10, 2), nullable=False),
        sa.Column("program_tag", sa.String(100), nullable=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("min_purchase_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("discount_type IN ('percentage', 'fixed')", name="check_discount_type"),
        sa.CheckConstraint("value >= 0", name="check_discount_value_non_negative"),
    )
    op.create_index("ix_discount_codes_id", "discount_codes", ["id"])
    op.create_index("ix_discount_codes_code", "discount_codes", ["code"], unique=True)

    op.create_table(
        "discount_code_usages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("discount_code_id", sa.Integer(), sa.ForeignKey("discount_codes.id"), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("discount_code_id", "organization_id", name="uq_discount_usage_org"),
    )
    op.create_index("ix_discount_code_usages_id", "discount_code_usages", ["id"])
    op.create_index("ix_discount_code_usages_discount_code_id", "discount_code_usages", ["discount_code_id"])
    op.create_index("ix_discount_code_usages_organization_id", "discount_code_usages", ["organization_id"])

    # Append-only ledger. Cancellation and reinstatement point back at the
    # purchase through related_transaction_id.
    op.create_table(
        "program_ticket_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id"), nullable=True),
        sa.Column("program_name", sa.String(100), nullable=True),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("value", sa.Numeric(12, 2), nullable=True),
        sa.Column("original_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cancelled_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column(
            "related_transaction_id",
            sa.Integer(),
            sa.ForeignKey("program_ticket_transactions.id"),
            nullable=True,
        ),
        sa.Column("voucher_id", sa.Integer(), sa.ForeignKey("vouchers.id"), nullable=True),
        sa.Column("booking_reference", sa.String(50), nullable=True),
        sa.Column("purchase_order_number", sa.String(100), nullable=True),
        sa.Column("invoice_id", sa.String(100), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(100), nullable=True),
        sa.Column("invoice_number", sa.String(100), nullable=True),
        sa.Column("actor_email", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("cancelled_quantity <= original_quantity", name="check_cancelled_lte_original"),
        sa.CheckConstraint("cancelled_quantity >= 0", name="check_cancelled_non_negative"),
        sa.CheckConstraint("status IN ('active', 'cancelled')", name="check_transaction_status"),
        sa.UniqueConstraint("stripe_payment_intent_id", name="uq_transactions_payment_intent"),
    )
    op.create_index("ix_program_ticket_transactions_id", "program_ticket_transactions", ["id"])
    op.create_index(
        "ix_program_ticket_transactions_organization_id", "program_ticket_transactions", ["organization_id"]
    )
    op.create_index(
        "ix_program_ticket_transactions_booking_reference", "program_ticket_transactions", ["booking_reference"]
    )
    op.create_index(
        "ix_transactions_org_program", "program_ticket_transactions", ["organization_id", "program_name"]
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("attendee_email", sa.String(255), nullable=True),
        sa.Column("attendee_first_name", sa.String(100), nullable=True),
        sa.Column("attendee_last_name", sa.String(100), nullable=True),
        sa.Column("booking_reference", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("program_tag", sa.String(100), nullable=True),
        sa.Column("ticket_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("external_reservation_id", sa.String(100), nullable=True),
        sa.Column("join_url", sa.String(500), nullable=True),
        sa.Column("sync_error", sa.String(500), nullable=True),
        sa.Column("confirmation_token", sa.String(64), nullable=True, unique=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voucher_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("training_fund_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("account_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("card_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("purchase_order_number", sa.String(100), nullable=True),
        sa.Column("po_to_follow", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("stripe_payment_intent_id", sa.String(100), nullable=True),
        sa.Column("invoice_id", sa.String(100), nullable=True),
        sa.Column("invoice_number", sa.String(100), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'pending_backstage_sync', 'pending_zoom_sync', 'cancelled')",
            name="check_booking_status",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_event_id", "bookings", ["event_id"])
    op.create_index("ix_bookings_member_id", "bookings", ["member_id"])
    op.create_index("ix_bookings_organization_id", "bookings", ["organization_id"])
    op.create_index("ix_bookings_booking_reference", "bookings", ["booking_reference"])
    # Duplicate-registration pre-check looks attendees up by event and email.
    op.create_index("ix_bookings_event_email", "bookings", ["event_id", "attendee_email"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("program_ticket_transactions")
    op.drop_table("discount_code_usages")
    op.drop_table("discount_codes")
    op.drop_table("vouchers")
    op.drop_table("events")
    op.drop_table("programs")
    op.drop_table("members")
    op.drop_table("program_ticket_balances")
    op.drop_table("organizations")
