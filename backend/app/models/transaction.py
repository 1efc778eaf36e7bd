"""
Append-only ledger explaining every change to an organisation's balances.

Key design decisions:
- Rows are never deleted; cancellation and reinstatement append audit rows
  pointing back at the purchase they reverse (related_transaction_id) and
  update the purchase's counters
- CHECK constraint enforces cancelled_quantity <= original_quantity
- A Stripe payment intent funds at most one order (UNIQUE on
  stripe_payment_intent_id)
"""

from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from app.db.base import Base, TimestampMixin


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    VOUCHER = "voucher"
    TRAINING_FUND_USAGE = "training_fund_usage"
    ACCOUNT_CHARGE = "account_charge"
    CARD_PAYMENT = "card_payment"
    CANCELLATION_VOID = "cancellation_void"
    REINSTATEMENT = "reinstatement"


class TransactionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class ProgramTicketTransaction(Base, TimestampMixin):
    __tablename__ = "program_ticket_transactions"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=True)
    program_name = Column(String(100), nullable=True)
    transaction_type = Column(String(30), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    value = Column(Numeric(12, 2), nullable=True)
    original_quantity = Column(Integer, nullable=False, default=0)
    cancelled_quantity = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=TransactionStatus.ACTIVE.value)
    related_transaction_id = Column(
        Integer, ForeignKey("program_ticket_transactions.id"), nullable=True
    )
    voucher_id = Column(Integer, ForeignKey("vouchers.id"), nullable=True)
    booking_reference = Column(String(50), nullable=True, index=True)
    purchase_order_number = Column(String(100), nullable=True)
    invoice_id = Column(String(100), nullable=True)
    invoice_number = Column(String(100), nullable=True)
    stripe_payment_intent_id = Column(String(100), nullable=True)
    actor_email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "cancelled_quantity <= original_quantity", name="check_cancelled_lte_original"
        ),
        CheckConstraint("cancelled_quantity >= 0", name="check_cancelled_non_negative"),
        CheckConstraint("status IN ('active', 'cancelled')", name="check_transaction_status"),
        UniqueConstraint("stripe_payment_intent_id", name="uq_transactions_payment_intent"),
        Index("ix_transactions_org_program", "organization_id", "program_name"),
    )

    @property
    def remaining_quantity(self) -> int:
        return (self.original_quantity or 0) - (self.cancelled_quantity or 0)

    def __repr__(self) -> str:
        return (
            f"<ProgramTicketTransaction(id={self.id}, type={self.transaction_type}, "
            f"qty={self.quantity}, status={self.status})>"
        )
