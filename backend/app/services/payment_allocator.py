"""
Payment allocator: checks that the funding sources a member chose cover the
total cost exactly, before anything is mutated.

Sources:
- vouchers        computed server-side from the voucher plan
- training fund   clamped to min(requested, organisation balance, total cost)
- account         charged to the organisation's account; needs a PO number
                  or an explicit "PO to follow"
- card            the amount actually received on a verified payment intent

Validation only. Committing (debiting the training fund, writing ledger rows)
happens in the booking saga once everything else is ready.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.core.config import get_settings
from app.core.exceptions import ExternalServiceError, ValidationError
from app.core.logging import get_logger
from app.models.organization import Organization
from app.services.interfaces.platforms import PaymentProcessor
from app.services.pricing_service import ZERO, money

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class PaymentAllocation:
    total_cost: Decimal
    voucher_amount: Decimal = ZERO
    training_fund_amount: Decimal = ZERO
    account_amount: Decimal = ZERO
    card_amount: Decimal = ZERO
    purchase_order_number: Optional[str] = None
    po_to_follow: bool = False
    stripe_payment_intent_id: Optional[str] = None

    @property
    def allocated(self) -> Decimal:
        return money(self.voucher_amount + self.training_fund_amount + self.account_amount + self.card_amount)

    def as_breakdown(self) -> dict:
        return {
            "voucher_amount": float(self.voucher_amount),
            "training_fund_amount": float(self.training_fund_amount),
            "account_amount": float(self.account_amount),
            "card_amount": float(self.card_amount),
            "purchase_order_number": self.purchase_order_number,
            "po_to_follow": self.po_to_follow,
        }


async def verify_card_payment(
    payments: PaymentProcessor, payment_intent_id: Optional[str], payment_method: str
) -> Decimal:
    """Amount actually captured on the payment intent; zero when no card was used."""
    if not payment_intent_id:
        if payment_method == "card":
            raise ValidationError("Card payment selected but no payment intent was supplied")
        return ZERO

    try:
        verification = await payments.verify_payment_intent(payment_intent_id)
    except ExternalServiceError as e:
        logger.error("payment_verification_failed", payment_intent_id=payment_intent_id, error=e.detail)
        raise ValidationError("Card payment could not be verified") from e

    if not verification.succeeded:
        raise ValidationError("Card payment has not completed")
    if verification.currency and verification.currency != settings.CURRENCY:
        raise ValidationError(f"Card payment was taken in {verification.currency}, expected {settings.CURRENCY}")
    return verification.amount


def validate_allocation(
    total_cost: Decimal,
    organization: Organization,
    voucher_amount: Decimal = ZERO,
    requested_training_fund: Decimal = ZERO,
    account_amount: Decimal = ZERO,
    card_amount: Decimal = ZERO,
    purchase_order_number: Optional[str] = None,
    po_to_follow: bool = False,
    stripe_payment_intent_id: Optional[str] = None,
) -> PaymentAllocation:
    total_cost = money(total_cost)
    amounts = {
        "voucher": money(voucher_amount or 0),
        "training fund": money(requested_training_fund or 0),
        "account": money(account_amount or 0),
        "card": money(card_amount or 0),
    }
    for source, amount in amounts.items():
        if amount < ZERO:
            raise ValidationError(f"The {source} amount cannot be negative")

    training_fund = min(
        amounts["training fund"],
        money(organization.training_fund_balance or 0),
        total_cost,
    )

    po_number = (purchase_order_number or "").strip() or None
    if amounts["account"] > ZERO:
        if not organization.purchase_order_enabled:
            raise ValidationError("Account payments are not enabled for your organisation")
        if not po_number and not po_to_follow:
            raise ValidationError(
                "A purchase order number is required for account payments (or mark the PO as to follow)"
            )

    allocation = PaymentAllocation(
        total_cost=total_cost,
        voucher_amount=amounts["voucher"],
        training_fund_amount=training_fund,
        account_amount=amounts["account"],
        card_amount=amounts["card"],
        purchase_order_number=po_number,
        po_to_follow=bool(po_to_follow) and not po_number,
        stripe_payment_intent_id=stripe_payment_intent_id,
    )

    if abs(allocation.allocated - total_cost) > settings.ALLOCATION_TOLERANCE:
        logger.warning(
            "payment_allocation_mismatch",
            total_cost=total_cost,
            allocated=allocation.allocated,
            voucher=allocation.voucher_amount,
            training_fund=allocation.training_fund_amount,
            account=allocation.account_amount,
            card=allocation.card_amount,
        )
        raise ValidationError(
            f"Payment allocation does not match total cost: allocated £{allocation.allocated}, "
            f"total £{total_cost}"
        )
    return allocation
