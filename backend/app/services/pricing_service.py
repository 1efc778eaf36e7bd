"""
Pricing engine: offer pricing, discount codes and voucher application.

PRICING PIPELINE
================

  1. Offer pricing      quantity x unit price, reshaped by the program's offer
  2. Discount code      percentage or fixed amount off the offer price
  3. Vouchers           prepaid credit consumed against what is left

Steps 2 and 3 are split into a read-only half (evaluate/plan) and a mutating
half (record/consume). The saga runs the read-only half while validating the
request and only mutates once the payment allocation has been accepted, so a
rejected request leaves usage counters and voucher values untouched.

BOGO VARIANTS
=============

Two "buy X get Y free" variants exist and must not be conflated:

  buy_x_get_y_free   Every complete block of X earns Y free tickets ON TOP of
                     the quantity requested. The payer is charged for the
                     full requested quantity.
                     buy=2 free=1 qty=6  ->  9 tickets, pay for 6

  set                The free tickets are already part of the requested
                     quantity. Each complete set of X + Y charges only X;
                     any remainder is charged in full (even a remainder that
                     would look like a partial set).
                     buy=2 free=1 qty=7  ->  7 tickets, pay for 2*2 + 1 = 5
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BalanceConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.metrics import record_balance_conflict
from app.db.base import as_utc, utcnow
from app.models.discount_code import DiscountCode, DiscountCodeUsage, DiscountType
from app.models.program import BogoLogic, OfferType, Program
from app.models.voucher import Voucher, VoucherStatus

logger = get_logger(__name__)

PENNY = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(PENNY, rounding=ROUND_HALF_UP)


@dataclass
class OfferConfig:
    unit_price: Decimal
    offer_type: OfferType = OfferType.NONE
    bogo_buy_quantity: Optional[int] = None
    bogo_free_quantity: Optional[int] = None
    bogo_logic: BogoLogic = BogoLogic.BUY_X_GET_Y_FREE
    bulk_threshold: Optional[int] = None
    bulk_percentage: Optional[Decimal] = None

    @classmethod
    def from_program(cls, program: Program) -> "OfferConfig":
        return cls(
            unit_price=money(program.ticket_price or 0),
            offer_type=OfferType(program.offer_type or OfferType.NONE.value),
            bogo_buy_quantity=program.bogo_buy_quantity,
            bogo_free_quantity=program.bogo_free_quantity,
            bogo_logic=BogoLogic(program.bogo_logic or BogoLogic.BUY_X_GET_Y_FREE.value),
            bulk_threshold=program.bulk_discount_threshold,
            bulk_percentage=(
                Decimal(program.bulk_discount_percentage)
                if program.bulk_discount_percentage is not None else None
            ),
        )


@dataclass
class PricingResult:
    total_tickets_received: int
    total_cost: Decimal
    discount_applied: bool
    discount_details: str
    base_cost: Decimal
    discount_code_amount: Decimal = ZERO
    discount_code: Optional[DiscountCode] = None


def calculate_offer_price(config: OfferConfig, quantity: int) -> PricingResult:
    """Price `quantity` tickets under the offer. Pure; no side effects."""
    if quantity <= 0:
        raise ValidationError("Quantity must be a positive whole number")

    price = money(config.unit_price)
    plain_cost = money(price * quantity)

    if config.offer_type == OfferType.BOGO:
        buy = config.bogo_buy_quantity or 0
        free = config.bogo_free_quantity or 0
        if buy <= 0 or free <= 0:
            return PricingResult(quantity, plain_cost, False, "", plain_cost)

        if config.bogo_logic == BogoLogic.SET:
            set_size = buy + free
            complete_sets, remainder = divmod(quantity, set_size)
            if complete_sets == 0:
                return PricingResult(quantity, plain_cost, False, "", plain_cost)
            payable_units = complete_sets * buy + remainder
            cost = money(price * payable_units)
            details = (
                f"Buy {buy} get {free} free: {complete_sets} complete set(s), "
                f"paying for {payable_units} of {quantity} tickets"
            )
            return PricingResult(quantity, cost, True, details, plain_cost)

        blocks = quantity // buy
        if blocks == 0:
            return PricingResult(quantity, plain_cost, False, "", plain_cost)
        free_tickets = blocks * free
        details = f"Buy {buy} get {free} free: {free_tickets} free ticket(s) added"
        return PricingResult(quantity + free_tickets, plain_cost, True, details, plain_cost)

    if config.offer_type == OfferType.BULK_DISCOUNT:
        threshold = config.bulk_threshold or 0
        percentage = config.bulk_percentage or ZERO
        if threshold > 0 and percentage > 0 and quantity >= threshold:
            discount = money(plain_cost * percentage / Decimal(100))
            cost = max(ZERO, plain_cost - discount)
            details = f"{percentage.normalize():f}% bulk discount for {threshold}+ tickets (saved £{discount})"
            return PricingResult(quantity, cost, True, details, plain_cost)

    return PricingResult(quantity, plain_cost, False, "", plain_cost)


# ---------------------------------------------------------------------------
# Discount codes
# ---------------------------------------------------------------------------

async def _usage_for_organization(db: AsyncSession, code_id: int, organization_id: int) -> int:
    result = await db.execute(
        select(DiscountCodeUsage.usage_count).where(
            DiscountCodeUsage.discount_code_id == code_id,
            DiscountCodeUsage.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none() or 0


async def apply_discount_code(
    db: AsyncSession,
    pricing: PricingResult,
    discount_code_id: int,
    organization_id: int,
    program_tag: Optional[str],
    now: Optional[datetime] = None,
) -> PricingResult:
    """
    Validate the code and fold its discount into `pricing`.
    Read-only: usage is recorded by record_discount_usage once the purchase commits.
    """
    now = now or utcnow()
    result = await db.execute(select(DiscountCode).where(DiscountCode.id == discount_code_id))
    code = result.scalar_one_or_none()
    if not code:
        raise NotFoundError("Discount code not found")

    if not code.is_active:
        raise ValidationError(f"Discount code {code.code} is no longer active")
    if code.expires_at is not None and as_utc(code.expires_at) <= now:
        raise ValidationError(f"Discount code {code.code} has expired")
    if code.program_tag and code.program_tag != program_tag:
        raise ValidationError(f"Discount code {code.code} does not apply to this program")
    if code.organization_id is not None and code.organization_id != organization_id:
        raise ValidationError(f"Discount code {code.code} is not valid for your organisation")
    if code.min_purchase_amount is not None and pricing.total_cost < money(code.min_purchase_amount):
        raise ValidationError(
            f"Discount code {code.code} requires a minimum purchase of £{money(code.min_purchase_amount)}"
        )
    if code.max_uses is not None:
        if code.organization_id is not None:
            used = await _usage_for_organization(db, code.id, organization_id)
        else:
            used = code.current_uses or 0
        if used >= code.max_uses:
            raise ValidationError(f"Discount code {code.code} has reached its usage limit")

    if code.discount_type == DiscountType.PERCENTAGE.value:
        amount = money(pricing.total_cost * Decimal(code.value) / Decimal(100))
        label = f"{Decimal(code.value).normalize():f}% off"
    else:
        amount = money(code.value)
        label = f"£{amount} off"
    amount = min(amount, pricing.total_cost)

    details = "; ".join(d for d in (pricing.discount_details, f"Code {code.code}: {label}") if d)
    return PricingResult(
        total_tickets_received=pricing.total_tickets_received,
        total_cost=money(pricing.total_cost - amount),
        discount_applied=True,
        discount_details=details,
        base_cost=pricing.base_cost,
        discount_code_amount=amount,
        discount_code=code,
    )


async def _bump_usage_row(
    db: AsyncSession, code_id: int, organization_id: int, limit: Optional[int]
) -> bool:
    conditions = [
        DiscountCodeUsage.discount_code_id == code_id,
        DiscountCodeUsage.organization_id == organization_id,
    ]
    if limit is not None:
        conditions.append(DiscountCodeUsage.usage_count < limit)
    result = await db.execute(
        update(DiscountCodeUsage)
        .where(*conditions)
        .values(usage_count=DiscountCodeUsage.usage_count + 1)
    )
    if result.rowcount:
        return True

    existing = await _usage_for_organization(db, code_id, organization_id)
    if existing:
        # Row exists but the limit condition failed.
        return False
    db.add(DiscountCodeUsage(discount_code_id=code_id, organization_id=organization_id, usage_count=1))
    await db.flush()
    return True


async def record_discount_usage(db: AsyncSession, code: DiscountCode, organization_id: int) -> None:
    """
    Increment usage counters. Not idempotent: call exactly once per
    accepted purchase, inside the commit unit.
    """
    org_scoped = code.organization_id is not None

    global_conditions = [DiscountCode.id == code.id]
    if code.max_uses is not None and not org_scoped:
        global_conditions.append(DiscountCode.current_uses < code.max_uses)
    result = await db.execute(
        update(DiscountCode)
        .where(*global_conditions)
        .values(current_uses=DiscountCode.current_uses + 1)
    )
    bumped = bool(result.rowcount)
    if bumped:
        bumped = await _bump_usage_row(
            db, code.id, organization_id, code.max_uses if org_scoped else None
        )

    if not bumped:
        record_balance_conflict("discount_code")
        raise BalanceConflictError(f"Discount code {code.code} has reached its usage limit")

    logger.info("discount_code_used", discount_code_id=code.id, organization_id=organization_id)


# ---------------------------------------------------------------------------
# Vouchers
# ---------------------------------------------------------------------------

@dataclass
class VoucherApplication:
    voucher: Voucher
    amount: Decimal
    remaining_after: Decimal

    @property
    def exhausts(self) -> bool:
        return self.remaining_after <= ZERO


@dataclass
class VoucherPlan:
    applications: list[VoucherApplication] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return money(sum((a.amount for a in self.applications), ZERO))


async def load_vouchers(db: AsyncSession, voucher_ids: list[int]) -> list[Voucher]:
    if not voucher_ids:
        return []
    unique_ids = list(dict.fromkeys(voucher_ids))
    result = await db.execute(select(Voucher).where(Voucher.id.in_(unique_ids)))
    vouchers = list(result.scalars().all())
    missing = set(unique_ids) - {v.id for v in vouchers}
    if missing:
        raise NotFoundError(f"Voucher(s) not found: {', '.join(str(i) for i in sorted(missing))}")
    return vouchers


def _voucher_sort_key(voucher: Voucher):
    expires = as_utc(voucher.expires_at)
    # Vouchers without an expiry are used last.
    return (expires is None, expires or datetime.max, money(voucher.remaining_value))


def plan_voucher_usage(
    vouchers: list[Voucher], organization_id: int, cost: Decimal, now: Optional[datetime] = None
) -> VoucherPlan:
    """
    Soonest-expiring, then smallest, first; consumed greedily until `cost`
    is covered. Every selected voucher is validated even if it ends up unused.
    """
    now = now or utcnow()
    for voucher in vouchers:
        if voucher.organization_id != organization_id:
            raise ValidationError(f"Voucher {voucher.id} does not belong to your organisation")
        if voucher.status != VoucherStatus.ACTIVE.value:
            raise ValidationError(f"Voucher {voucher.id} is not active ({voucher.status})")
        if voucher.expires_at is not None and as_utc(voucher.expires_at) <= now:
            raise ValidationError(f"Voucher {voucher.id} has expired")
        if money(voucher.remaining_value) <= ZERO:
            raise ValidationError(f"Voucher {voucher.id} has no remaining value")

    plan = VoucherPlan()
    outstanding = money(cost)
    for voucher in sorted(vouchers, key=_voucher_sort_key):
        if outstanding <= ZERO:
            break
        available = money(voucher.remaining_value)
        used = min(available, outstanding)
        plan.applications.append(VoucherApplication(voucher, used, money(available - used)))
        outstanding = money(outstanding - used)
    return plan


async def consume_vouchers(db: AsyncSession, plan: VoucherPlan) -> None:
    """Apply a plan with optimistic locking; any lost race aborts the unit."""
    for application in plan.applications:
        voucher = application.voucher
        new_status = VoucherStatus.USED.value if application.exhausts else VoucherStatus.ACTIVE.value
        result = await db.execute(
            update(Voucher)
            .where(
                Voucher.id == voucher.id,
                Voucher.version == voucher.version,
                Voucher.status == VoucherStatus.ACTIVE.value,
            )
            .values(
                remaining_value=application.remaining_after,
                status=new_status,
                version=Voucher.version + 1,
            )
        )
        if result.rowcount == 0:
            record_balance_conflict("voucher")
            logger.warning("voucher_version_conflict", voucher_id=voucher.id)
            raise BalanceConflictError(
                f"Voucher {voucher.id} was used by another booking. Please review your vouchers and retry."
            )
        logger.info(
            "voucher_consumed",
            voucher_id=voucher.id,
            amount=application.amount,
            remaining=application.remaining_after,
            status=new_status,
        )
