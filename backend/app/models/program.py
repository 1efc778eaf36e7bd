"""
Program (a ticket-denominated training programme) and its offer configuration.

Offers:
- none: plain per-ticket pricing
- bogo: buy X get Y free, in one of two variants (see BogoLogic)
- bulk_discount: percentage off once quantity reaches a threshold
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, Numeric, String

from app.db.base import Base, TimestampMixin


class OfferType(str, Enum):
    NONE = "none"
    BOGO = "bogo"
    BULK_DISCOUNT = "bulk_discount"


class BogoLogic(str, Enum):
    # Free tickets are added on top of the quantity paid for.
    BUY_X_GET_Y_FREE = "buy_x_get_y_free"
    # Free tickets are folded into the quantity requested: every complete
    # set of X + Y only charges X.
    SET = "set"


class Program(Base, TimestampMixin):
    __tablename__ = "programs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    program_tag = Column(String(100), unique=True, index=True, nullable=False)
    ticket_price = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    is_active = Column(Boolean, nullable=False, default=True)

    offer_type = Column(String(20), nullable=False, default=OfferType.NONE.value)
    bogo_buy_quantity = Column(Integer, nullable=True)
    bogo_free_quantity = Column(Integer, nullable=True)
    bogo_logic = Column(String(30), nullable=True)
    bulk_discount_threshold = Column(Integer, nullable=True)
    bulk_discount_percentage = Column(Numeric(5, 2), nullable=True)

    __table_args__ = (
        CheckConstraint("ticket_price >= 0", name="check_program_price_non_negative"),
        CheckConstraint(
            "offer_type IN ('none', 'bogo', 'bulk_discount')", name="check_program_offer_type"
        ),
    )

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, tag={self.program_tag}, offer={self.offer_type})>"
