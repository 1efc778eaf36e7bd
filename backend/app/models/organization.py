"""
Organisation and its consumable balances.

Key design decisions:
- Per-program ticket balances live in their own table (one row per
  organisation/program tag) instead of a JSON map, so a booking can decrement
  with a single conditional UPDATE ... WHERE balance >= n
- CHECK constraints keep both the ticket balances and the training fund
  non-negative at the DB level as the final safety net
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean, CheckConstraint, Column, ForeignKey, Integer, Numeric, String, UniqueConstraint,
)

from app.db.base import Base, TimestampMixin


class Organization(Base, TimestampMixin):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    crm_account_id = Column(String(100), nullable=True, index=True)
    training_fund_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    purchase_order_enabled = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("training_fund_balance >= 0", name="check_training_fund_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"


class ProgramTicketBalance(Base, TimestampMixin):
    __tablename__ = "program_ticket_balances"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    program_tag = Column(String(100), nullable=False)
    balance = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("organization_id", "program_tag", name="uq_org_program_balance"),
        CheckConstraint("balance >= 0", name="check_ticket_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProgramTicketBalance(org={self.organization_id}, "
            f"program={self.program_tag}, balance={self.balance})>"
        )
