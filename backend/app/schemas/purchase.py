"""
Pydantic schemas for program ticket purchases.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.common import CamelModel


class PurchaseRequest(CamelModel):
    program_name: str = Field(min_length=1)
    quantity: int
    purchase_order_number: Optional[str] = None
    po_to_follow: bool = False
    selected_voucher_ids: list[int] = Field(default_factory=list)
    training_fund_amount: Decimal = Decimal("0")
    account_amount: Decimal = Decimal("0")
    payment_method: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    applied_discount_id: Optional[int] = None


class PaymentBreakdown(BaseModel):
    voucher_amount: float
    training_fund_amount: float
    account_amount: float
    card_amount: float
    purchase_order_number: Optional[str] = None
    po_to_follow: bool = False


class InvoiceSummary(BaseModel):
    invoice_id: str
    invoice_number: Optional[str] = None
    total: float


class PurchaseResponse(BaseModel):
    success: bool = True
    booking_reference: str
    transaction_id: int
    program_tag: str
    total_tickets_received: int
    total_cost: float
    discount_applied: bool
    discount_details: str
    payment_breakdown: PaymentBreakdown
    new_balance: int
    xero_invoice: Optional[InvoiceSummary] = None
    warning: Optional[str] = None
