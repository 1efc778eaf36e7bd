"""
Pydantic schemas for the program ticket ledger.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.schemas.common import CamelModel, Money


class CancelTransactionRequest(CamelModel):
    quantity_to_cancel: int
    admin_email: str


class ReinstateTransactionRequest(CamelModel):
    admin_email: str


class TransactionSummary(BaseModel):
    id: int
    program_name: Optional[str] = None
    original_quantity: int
    cancelled_quantity: int
    remaining_quantity: int
    status: str


class CancelTransactionResponse(BaseModel):
    success: bool = True
    message: str
    transaction: TransactionSummary
    audit_transaction_id: int
    new_balance: int
    program_ticket_balances: dict[str, int]


class ReinstateTransactionResponse(BaseModel):
    success: bool = True
    message: str
    transaction: TransactionSummary
    audit_transaction_id: int
    new_balance: int


class TransactionResponse(BaseModel):
    id: int
    transaction_type: str
    program_name: Optional[str] = None
    quantity: int
    value: Optional[Money] = None
    original_quantity: int
    cancelled_quantity: int
    status: str
    related_transaction_id: Optional[int] = None
    voucher_id: Optional[int] = None
    booking_reference: Optional[str] = None
    purchase_order_number: Optional[str] = None
    invoice_number: Optional[str] = None
    actor_email: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
