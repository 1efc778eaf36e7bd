"""
External reservation coordinator.

Creates one reservation per attendee on whichever platform the event is bound
to. Failures are per attendee: the row is kept in a pending_*_sync status and
the caller carries on with the rest of the batch. A "already registered"
answer from the platform mid-batch counts as success.

The duplicate pre-check is a separate, batch-level gate that runs before
anything is reserved or debited: if any attendee already holds a place on the
event the whole request is refused with the conflicting emails.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DuplicateRegistrationError, ExternalServiceError
from app.core.logging import get_logger
from app.core.metrics import record_reservation
from app.models.booking import Booking, BookingStatus
from app.models.event import Event
from app.services.interfaces.platforms import (
    AttendeeDetails,
    TicketingPlatform,
    WebinarPlatform,
)

logger = get_logger(__name__)

# https://us02web.zoom.us/j/81234567890?pwd=... or .../w/81234567890
ZOOM_JOIN_URL = re.compile(r"https?://(?:[\w-]+\.)*zoom\.us/(?:j|w|webinar/register)/(\d{9,12})", re.IGNORECASE)


class Platform(str, Enum):
    BACKSTAGE = "backstage"
    ZOOM = "zoom"
    NONE = "none"


PENDING_STATUS = {
    Platform.BACKSTAGE: BookingStatus.PENDING_BACKSTAGE_SYNC,
    Platform.ZOOM: BookingStatus.PENDING_ZOOM_SYNC,
}


@dataclass
class EventBinding:
    platform: Platform
    external_id: Optional[str] = None
    ticket_class_id: Optional[str] = None

    @property
    def needs_reservation(self) -> bool:
        return self.platform != Platform.NONE


@dataclass
class ReservationOutcome:
    attendee: AttendeeDetails
    status: BookingStatus
    external_id: Optional[str] = None
    join_url: Optional[str] = None
    error: Optional[str] = None
    duplicate: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


def extract_webinar_id(location: Optional[str]) -> Optional[str]:
    if not location:
        return None
    match = ZOOM_JOIN_URL.search(location)
    return match.group(1) if match else None


def normalise_email(email: str) -> str:
    return email.strip().lower()


class ReservationCoordinator:
    def __init__(self, ticketing: TicketingPlatform, webinars: WebinarPlatform):
        self.ticketing = ticketing
        self.webinars = webinars

    async def resolve_binding(self, event: Event) -> EventBinding:
        if event.backstage_event_id:
            return EventBinding(Platform.BACKSTAGE, event.backstage_event_id, event.backstage_ticket_type_id)

        webinar_id = extract_webinar_id(event.location)
        if webinar_id is None:
            return EventBinding(Platform.NONE)

        try:
            webinar = await self.webinars.get_webinar(webinar_id)
        except ExternalServiceError as e:
            # Cannot tell whether registration is needed; attempt it so a
            # failure is recorded as pending_zoom_sync instead of silently skipped.
            logger.warning("webinar_lookup_failed", event_id=event.id, webinar_id=webinar_id, error=e.detail)
            return EventBinding(Platform.ZOOM, webinar_id)

        if webinar is None or not webinar.registration_required:
            return EventBinding(Platform.NONE)
        return EventBinding(Platform.ZOOM, webinar_id)

    async def find_duplicates(
        self, db: AsyncSession, event: Event, binding: EventBinding, emails: list[str]
    ) -> list[str]:
        wanted = {normalise_email(e) for e in emails if e}
        if not wanted:
            return []

        result = await db.execute(
            select(func.lower(Booking.attendee_email)).where(
                Booking.event_id == event.id,
                Booking.status != BookingStatus.CANCELLED.value,
                func.lower(Booking.attendee_email).in_(wanted),
            )
        )
        found = set(result.scalars().all())

        if binding.platform == Platform.BACKSTAGE:
            try:
                orders = await self.ticketing.list_orders(binding.external_id)
            except ExternalServiceError as e:
                logger.warning(
                    "duplicate_precheck_platform_unavailable",
                    event_id=event.id,
                    external_event_id=binding.external_id,
                    error=e.detail,
                )
                orders = []
            for order in orders:
                if order.cancelled:
                    continue
                found.update(normalise_email(e) for e in order.emails if normalise_email(e) in wanted)

        return sorted(found)

    async def precheck_duplicates(
        self, db: AsyncSession, event: Event, binding: EventBinding, emails: list[str]
    ) -> None:
        duplicates = await self.find_duplicates(db, event, binding, emails)
        if duplicates:
            logger.warning("duplicate_registration_rejected", event_id=event.id, emails=duplicates)
            raise DuplicateRegistrationError(duplicates)

    async def reserve(self, binding: EventBinding, attendee: AttendeeDetails) -> ReservationOutcome:
        if not binding.needs_reservation:
            record_reservation(Platform.NONE.value, "success")
            return ReservationOutcome(attendee, BookingStatus.CONFIRMED)

        try:
            if binding.platform == Platform.BACKSTAGE:
                reservation = await self.ticketing.create_order(
                    binding.external_id, binding.ticket_class_id, attendee
                )
            else:
                reservation = await self.webinars.register_attendee(binding.external_id, attendee)
        except ExternalServiceError as e:
            record_reservation(binding.platform.value, "failed")
            logger.error(
                "external_reservation_failed",
                platform=binding.platform.value,
                external_event_id=binding.external_id,
                attendee_email=attendee.email,
                error=e.detail,
            )
            return ReservationOutcome(attendee, PENDING_STATUS[binding.platform], error=e.detail)

        record_reservation(binding.platform.value, "duplicate" if reservation.duplicate else "success")
        logger.info(
            "external_reservation_created",
            platform=binding.platform.value,
            external_event_id=binding.external_id,
            attendee_email=attendee.email,
            external_id=reservation.external_id,
            duplicate=reservation.duplicate,
        )
        return ReservationOutcome(
            attendee,
            BookingStatus.CONFIRMED,
            external_id=reservation.external_id,
            join_url=reservation.join_url,
            duplicate=reservation.duplicate,
        )

    async def reserve_all(
        self, binding: EventBinding, attendees: list[AttendeeDetails]
    ) -> list[ReservationOutcome]:
        # Sequential: provider rate limits are per account, and order of
        # outcomes must match order of attendees.
        return [await self.reserve(binding, attendee) for attendee in attendees]

    async def cancel(self, binding: EventBinding, booking: Booking) -> Optional[str]:
        """Best-effort external cancellation. Returns the error text, if any."""
        if not binding.needs_reservation or not booking.external_reservation_id:
            return None
        try:
            if binding.platform == Platform.BACKSTAGE:
                await self.ticketing.cancel_order(
                    binding.external_id, booking.external_reservation_id, "Cancelled by member"
                )
            else:
                await self.webinars.cancel_registrant(
                    binding.external_id, booking.external_reservation_id, booking.attendee_email
                )
        except ExternalServiceError as e:
            logger.error(
                "external_cancellation_failed",
                platform=binding.platform.value,
                booking_id=booking.id,
                external_id=booking.external_reservation_id,
                error=e.detail,
            )
            return e.detail
        logger.info(
            "external_reservation_cancelled",
            platform=binding.platform.value,
            booking_id=booking.id,
            external_id=booking.external_reservation_id,
        )
        return None


def warning_for(outcomes: list[ReservationOutcome]) -> Optional[str]:
    failed = [o for o in outcomes if not o.success]
    if not failed:
        return None
    emails = ", ".join(o.attendee.email for o in failed)
    return (
        f"Booking saved, but {len(failed)} attendee(s) could not be registered on the event platform "
        f"({emails}). They are marked for follow-up and will be synced manually."
    )
