"""
Discount codes and their per-organisation usage counters.
"""

from enum import Enum

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String,
    UniqueConstraint,
)

from app.db.base import Base, TimestampMixin


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountCode(Base, TimestampMixin):
    __tablename__ = "discount_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    discount_type = Column(String(20), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    program_tag = Column(String(100), nullable=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    min_purchase_amount = Column(Numeric(10, 2), nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("discount_type IN ('percentage', 'fixed')", name="check_discount_type"),
        CheckConstraint("value >= 0", name="check_discount_value_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<DiscountCode(id={self.id}, code={self.code}, uses={self.current_uses})>"


class DiscountCodeUsage(Base, TimestampMixin):
    __tablename__ = "discount_code_usages"

    id = Column(Integer, primary_key=True, index=True)
    discount_code_id = Column(Integer, ForeignKey("discount_codes.id"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    usage_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("discount_code_id", "organization_id", name="uq_discount_usage_org"),
    )
