"""
Pydantic schemas for the member's organisation summary.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class VoucherSummary(BaseModel):
    id: int
    code: Optional[str] = None
    remaining_value: float
    expires_at: Optional[datetime] = None


class OrganizationSummary(BaseModel):
    id: int
    name: str
    training_fund_balance: float
    purchase_order_enabled: bool
    program_ticket_balances: dict[str, int]
    vouchers: list[VoucherSummary]
