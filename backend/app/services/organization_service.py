"""
Member and organisation lookups shared by the sagas and read endpoints.
"""

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.db.base import as_utc, utcnow
from app.models.member import Member
from app.models.organization import Organization
from app.models.voucher import Voucher, VoucherStatus
from app.services import ledger_service


@dataclass
class MemberContext:
    member: Member
    organization: Organization


async def get_member_context(db: AsyncSession, member_id: int) -> MemberContext:
    result = await db.execute(select(Member).where(Member.id == member_id))
    member = result.scalar_one_or_none()
    if not member or not member.is_active:
        raise NotFoundError("Member not found")
    if member.organization_id is None:
        raise NotFoundError("You are not linked to an organisation")

    result = await db.execute(select(Organization).where(Organization.id == member.organization_id))
    organization = result.scalar_one_or_none()
    if not organization:
        raise NotFoundError(f"Organisation {member.organization_id} not found")
    return MemberContext(member=member, organization=organization)


async def find_member_by_email(db: AsyncSession, email: str):
    result = await db.execute(select(Member).where(func.lower(Member.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def get_active_vouchers(db: AsyncSession, organization_id: int) -> list[Voucher]:
    result = await db.execute(
        select(Voucher)
        .where(Voucher.organization_id == organization_id, Voucher.status == VoucherStatus.ACTIVE.value)
        .order_by(Voucher.expires_at, Voucher.id)
    )
    now = utcnow()
    return [v for v in result.scalars().all() if v.expires_at is None or as_utc(v.expires_at) > now]


async def get_summary(db: AsyncSession, member_id: int) -> dict:
    context = await get_member_context(db, member_id)
    organization = context.organization
    return {
        "id": organization.id,
        "name": organization.name,
        "training_fund_balance": float(organization.training_fund_balance or 0),
        "purchase_order_enabled": organization.purchase_order_enabled,
        "program_ticket_balances": await ledger_service.get_balances(db, organization.id),
        "vouchers": [
            {
                "id": v.id,
                "code": v.code,
                "remaining_value": float(v.remaining_value),
                "expires_at": v.expires_at,
            }
            for v in await get_active_vouchers(db, organization.id)
        ],
    }
