"""
Prepaid, organisation-scoped currency credit.

Key design decisions:
- remaining_value decreases as the voucher is consumed; status flips to
  'used' when it reaches zero
- version column enables optimistic locking so two purchases cannot spend
  the same remaining value
"""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String

from app.db.base import Base, TimestampMixin


class VoucherStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class Voucher(Base, TimestampMixin):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    code = Column(String(50), nullable=True)
    value = Column(Numeric(10, 2), nullable=False)
    remaining_value = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=VoucherStatus.ACTIVE.value)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("remaining_value >= 0", name="check_voucher_remaining_non_negative"),
        CheckConstraint("status IN ('active', 'used', 'expired')", name="check_voucher_status"),
    )

    def __repr__(self) -> str:
        return f"<Voucher(id={self.id}, org={self.organization_id}, remaining={self.remaining_value})>"
