"""
Booking: one row per attendee (or per unclaimed registration link).

Key design decisions:
- booking_reference groups every row created by one booking request
- Status is a closed enumeration with an explicit transition table; the
  degraded pending_*_sync states mark rows whose external reservation failed
  and need reconciliation
- Payment breakdown is stored per row (each attendee's share) so totals can
  be recomputed for a reference by summing
"""

from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Boolean

from app.db.base import Base, TimestampMixin


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PENDING_BACKSTAGE_SYNC = "pending_backstage_sync"
    PENDING_ZOOM_SYNC = "pending_zoom_sync"
    CANCELLED = "cancelled"


# None is the state of a row that does not exist yet.
ALLOWED_TRANSITIONS: dict[Optional[BookingStatus], frozenset[BookingStatus]] = {
    None: frozenset({
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.PENDING_BACKSTAGE_SYNC,
        BookingStatus.PENDING_ZOOM_SYNC,
    }),
    BookingStatus.PENDING: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.PENDING_BACKSTAGE_SYNC,
        BookingStatus.PENDING_ZOOM_SYNC,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.PENDING_BACKSTAGE_SYNC: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.PENDING_ZOOM_SYNC: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}


def can_transition(current: Optional[str], new: str) -> bool:
    current_status = BookingStatus(current) if current is not None else None
    return BookingStatus(new) in ALLOWED_TRANSITIONS[current_status]


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    attendee_email = Column(String(255), nullable=True)
    attendee_first_name = Column(String(100), nullable=True)
    attendee_last_name = Column(String(100), nullable=True)
    booking_reference = Column(String(50), nullable=False, index=True)
    status = Column(String(30), nullable=False, default=BookingStatus.PENDING.value)
    program_tag = Column(String(100), nullable=True)
    ticket_price = Column(Numeric(10, 2), nullable=True)

    # External reservation
    external_reservation_id = Column(String(100), nullable=True)
    join_url = Column(String(500), nullable=True)
    sync_error = Column(String(500), nullable=True)
    confirmation_token = Column(String(64), nullable=True, unique=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    # Payment breakdown (this row's share)
    voucher_amount = Column(Numeric(10, 2), nullable=False, default=0)
    training_fund_amount = Column(Numeric(10, 2), nullable=False, default=0)
    account_amount = Column(Numeric(10, 2), nullable=False, default=0)
    card_amount = Column(Numeric(10, 2), nullable=False, default=0)
    purchase_order_number = Column(String(100), nullable=True)
    po_to_follow = Column(Boolean, nullable=False, default=False)
    stripe_payment_intent_id = Column(String(100), nullable=True)
    invoice_id = Column(String(100), nullable=True)
    invoice_number = Column(String(100), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'pending_backstage_sync', "
            "'pending_zoom_sync', 'cancelled')",
            name="check_booking_status",
        ),
        Index("ix_bookings_event_email", "event_id", "attendee_email"),
    )

    def transition_to(self, new_status: BookingStatus) -> None:
        if not can_transition(self.status, new_status.value):
            raise ValueError(f"Booking {self.id}: cannot move from {self.status} to {new_status.value}")
        self.status = new_status.value

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, ref={self.booking_reference}, "
            f"email={self.attendee_email}, status={self.status})>"
        )
