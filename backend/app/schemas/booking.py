"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.common import Attendee, CamelModel, Money
from app.schemas.purchase import InvoiceSummary, PaymentBreakdown


class ProgramBookingCreate(CamelModel):
    event_id: int
    attendees: list[Attendee] = Field(default_factory=list)
    registration_mode: Literal["self", "colleagues", "links"] = "colleagues"
    tickets_required: Optional[int] = None
    program_tag: Optional[str] = None


class OneOffBookingCreate(CamelModel):
    event_id: int
    attendees: list[Attendee] = Field(default_factory=list)
    registration_mode: Literal["self", "colleagues"] = "colleagues"
    selected_voucher_ids: list[int] = Field(default_factory=list)
    applied_discount_id: Optional[int] = None
    training_fund_amount: Decimal = Decimal("0")
    account_amount: Decimal = Decimal("0")
    purchase_order_number: Optional[str] = None
    po_to_follow: bool = False
    payment_method: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None


class BookingClaim(Attendee):
    pass


class PurchaseOrderUpdate(CamelModel):
    purchase_order_number: str = Field(min_length=1)


class BookingResponse(BaseModel):
    id: int
    event_id: int
    member_id: int
    booking_reference: str
    status: str
    attendee_email: Optional[str] = None
    attendee_first_name: Optional[str] = None
    attendee_last_name: Optional[str] = None
    program_tag: Optional[str] = None
    external_reservation_id: Optional[str] = None
    join_url: Optional[str] = None
    sync_error: Optional[str] = None
    confirmation_token: Optional[str] = None
    voucher_amount: Money = Decimal("0")
    training_fund_amount: Money = Decimal("0")
    account_amount: Money = Decimal("0")
    card_amount: Money = Decimal("0")
    purchase_order_number: Optional[str] = None
    po_to_follow: bool = False
    invoice_number: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProgramBookingResponse(BaseModel):
    success: bool = True
    booking_reference: str
    bookings: list[BookingResponse]
    remaining_balance: int
    warning: Optional[str] = None


class OneOffBookingResponse(BaseModel):
    success: bool = True
    booking_reference: str
    bookings: list[BookingResponse]
    total_cost: float
    discount_applied: bool
    discount_details: str
    payment_breakdown: PaymentBreakdown
    xero_invoice: Optional[InvoiceSummary] = None
    warning: Optional[str] = None


class BookingActionResponse(BaseModel):
    success: bool = True
    booking: BookingResponse
    remaining_balance: Optional[int] = None
    warning: Optional[str] = None


class PurchaseOrderUpdateResponse(BaseModel):
    success: bool = True
    booking_reference: str
    purchase_order_number: str
    updated_bookings: int
    warning: Optional[str] = None
