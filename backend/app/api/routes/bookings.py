"""
Booking endpoints: program-ticket and one-off bookings, registration links,
member cancellation and late purchase orders.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_current_member_id
from app.db.session import get_db
from app.schemas.booking import (
    BookingActionResponse,
    BookingClaim,
    BookingResponse,
    OneOffBookingCreate,
    OneOffBookingResponse,
    ProgramBookingCreate,
    ProgramBookingResponse,
    PurchaseOrderUpdate,
    PurchaseOrderUpdateResponse,
)
from app.services.booking_service import (
    cancel_member_booking,
    claim_link_booking,
    create_one_off_booking,
    create_program_booking,
    get_member_bookings,
    update_purchase_order,
)
from app.services.integration_factory import Integrations, get_integrations

router = APIRouter(tags=["Bookings"])


@router.post("/booking", response_model=ProgramBookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: ProgramBookingCreate,
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    """
    Book attendees onto a program event using the organisation's program tickets.

    Returns 409 with duplicateEmails if any attendee already holds a place.
    Attendees the event platform rejects are kept in a pending_*_sync status
    and reported in `warning`; the booking still succeeds.
    """
    return await create_program_booking(db, integrations, member_id, booking_data)


@router.post("/booking/one-off", response_model=OneOffBookingResponse, status_code=status.HTTP_201_CREATED)
async def create_one_off(
    booking_data: OneOffBookingCreate,
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    """Book a paid (non-program) event."""
    return await create_one_off_booking(db, integrations, member_id, booking_data)


@router.post("/booking/claim/{confirmation_token}", response_model=BookingActionResponse)
async def claim_registration_link(
    confirmation_token: str,
    claim: BookingClaim,
    db: AsyncSession = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    """Claim a place issued through a registration link. No login required."""
    return await claim_link_booking(db, integrations, confirmation_token, claim)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingActionResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    """Cancel one attendee's booking. Program tickets go back to the balance."""
    return await cancel_member_booking(db, integrations, member_id, booking_id)


@router.patch(
    "/bookings/reference/{booking_reference}/purchase-order",
    response_model=PurchaseOrderUpdateResponse,
)
async def supply_purchase_order(
    booking_reference: str,
    update: PurchaseOrderUpdate,
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
    integrations: Integrations = Depends(get_integrations),
):
    """Attach a purchase order number to a booking that was marked 'PO to follow'."""
    return await update_purchase_order(
        db, integrations, member_id, booking_reference, update.purchase_order_number
    )


@router.get("/bookings", response_model=list[BookingResponse])
async def list_member_bookings(
    member_id: int = Depends(get_current_member_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings made by the authenticated member."""
    return await get_member_bookings(db, member_id)
