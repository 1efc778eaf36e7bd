"""
Tests for booking endpoints: program and one-off bookings, partial external
failure, duplicate pre-check, registration links and cancellation.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.config import get_settings
from app.models import Booking, ProgramTicketTransaction
from app.services import ledger_service
from app.services.interfaces.platforms import ExternalOrder
from conftest import BACKSTAGE_EVENT_ID, WEBINAR_ID


ATTENDEES = [
    {"email": "a@acme.test", "firstName": "Ann", "lastName": "Able"},
    {"email": "b@acme.test", "firstName": "Ben", "lastName": "Baker"},
    {"email": "c@acme.test", "firstName": "Cat", "lastName": "Cole"},
]


async def _booking_count(db) -> int:
    return (await db.execute(select(func.count(Booking.id)))).scalar_one()


@pytest.mark.asyncio
async def test_program_booking_confirms_all_attendees(
    client: AsyncClient, db_session, auth_headers, funded_organization, backstage_event, integrations
):
    org_id = funded_organization.id
    response = await client.post(
        "/api/v1/booking",
        json={
            "eventId": backstage_event.id,
            "attendees": ATTENDEES,
            "registrationMode": "colleagues",
            "ticketsRequired": 3,
            "programTag": "leadership",
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["remaining_balance"] == 7
    assert data["warning"] is None
    assert [b["status"] for b in data["bookings"]] == ["confirmed"] * 3
    assert len({b["booking_reference"] for b in data["bookings"]}) == 1
    assert [email for _, email in integrations.ticketing.created] == ["a@acme.test", "b@acme.test", "c@acme.test"]

    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 7
    usage = (
        await db_session.execute(
            select(ProgramTicketTransaction.quantity).where(ProgramTicketTransaction.transaction_type == "usage")
        )
    ).scalar_one()
    assert usage == 3


@pytest.mark.asyncio
async def test_partial_external_failure_keeps_booking(
    client: AsyncClient, db_session, auth_headers, funded_organization, backstage_event, integrations
):
    """Attendee 2 cannot be registered: 3 rows, one pending sync, success with a warning."""
    integrations.ticketing.fail_emails.add("b@acme.test")

    response = await client.post(
        "/api/v1/booking",
        json={"eventId": backstage_event.id, "attendees": ATTENDEES, "ticketsRequired": 3},
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["warning"]
    assert "b@acme.test" in data["warning"]
    statuses = [b["status"] for b in data["bookings"]]
    assert statuses == ["confirmed", "pending_backstage_sync", "confirmed"]
    assert data["bookings"][1]["sync_error"]

    assert await _booking_count(db_session) == 3


@pytest.mark.asyncio
async def test_duplicate_attendee_rejects_whole_batch(
    client: AsyncClient, db_session, auth_headers, funded_organization, backstage_event, integrations
):
    org_id = funded_organization.id
    integrations.ticketing.orders[BACKSTAGE_EVENT_ID] = [ExternalOrder("ord-existing", ["b@acme.test"])]

    response = await client.post(
        "/api/v1/booking",
        json={"eventId": backstage_event.id, "attendees": ATTENDEES},
        headers=auth_headers,
    )
    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["duplicateEmails"] == ["b@acme.test"]

    assert await _booking_count(db_session) == 0
    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 10
    assert integrations.ticketing.created == []


@pytest.mark.asyncio
async def test_local_duplicate_rejected(
    client: AsyncClient, db_session, auth_headers, funded_organization, local_event
):
    first = await client.post(
        "/api/v1/booking",
        json={"eventId": local_event.id, "attendees": ATTENDEES[:1]},
        headers=auth_headers,
    )
    assert first.status_code == 201

    second = await client.post(
        "/api/v1/booking",
        json={"eventId": local_event.id, "attendees": [{"email": "A@Acme.test"}]},
        headers=auth_headers,
    )
    assert second.status_code == 409
    assert second.json()["duplicateEmails"] == ["a@acme.test"]


@pytest.mark.asyncio
async def test_platform_duplicate_mid_batch_counts_as_success(
    client: AsyncClient, auth_headers, funded_organization, backstage_event, integrations
):
    integrations.ticketing.duplicate_emails.add("a@acme.test")

    response = await client.post(
        "/api/v1/booking",
        json={"eventId": backstage_event.id, "attendees": ATTENDEES[:2]},
        headers=auth_headers,
    )
    assert response.status_code == 201
    assert [b["status"] for b in response.json()["bookings"]] == ["confirmed", "confirmed"]
    assert response.json()["warning"] is None


@pytest.mark.asyncio
async def test_insufficient_balance_rejected(
    client: AsyncClient, db_session, auth_headers, organization, program, local_event
):
    response = await client.post(
        "/api/v1/booking",
        json={"eventId": local_event.id, "attendees": ATTENDEES},
        headers=auth_headers,
    )
    assert response.status_code == 400
    body = response.json()
    assert body["available"] == 0
    assert body["requested"] == 3
    assert await _booking_count(db_session) == 0


@pytest.mark.asyncio
async def test_webinar_booking_and_failure_status(
    client: AsyncClient, auth_headers, funded_organization, webinar_event, integrations
):
    integrations.webinars.fail_emails.add("c@acme.test")

    response = await client.post(
        "/api/v1/booking",
        json={"eventId": webinar_event.id, "attendees": ATTENDEES},
        headers=auth_headers,
    )
    assert response.status_code == 201
    bookings = response.json()["bookings"]
    assert [b["status"] for b in bookings] == ["confirmed", "confirmed", "pending_zoom_sync"]
    assert bookings[0]["join_url"].startswith(f"https://us02web.zoom.us/w/{WEBINAR_ID}")


@pytest.mark.asyncio
async def test_self_registration_uses_member_details(
    client: AsyncClient, auth_headers, funded_organization, local_event
):
    response = await client.post(
        "/api/v1/booking",
        json={"eventId": local_event.id, "registrationMode": "self"},
        headers=auth_headers,
    )
    assert response.status_code == 201
    booking = response.json()["bookings"][0]
    assert booking["attendee_email"] == "member@acme.test"
    assert booking["status"] == "confirmed"


@pytest.mark.asyncio
async def test_registration_links_then_claim(
    client: AsyncClient, db_session, auth_headers, funded_organization, backstage_event, integrations
):
    org_id = funded_organization.id
    response = await client.post(
        "/api/v1/booking",
        json={"eventId": backstage_event.id, "registrationMode": "links", "ticketsRequired": 2},
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["remaining_balance"] == 8
    assert [b["status"] for b in data["bookings"]] == ["pending", "pending"]
    token = data["bookings"][0]["confirmation_token"]
    assert token

    claim = await client.post(
        f"/api/v1/booking/claim/{token}",
        json={"email": "Guest@Acme.test", "firstName": "Gus"},
    )
    assert claim.status_code == 200
    booking = claim.json()["booking"]
    assert booking["attendee_email"] == "guest@acme.test"
    assert booking["status"] == "confirmed"
    assert integrations.ticketing.created == [(BACKSTAGE_EVENT_ID, "guest@acme.test")]

    again = await client.post(f"/api/v1/booking/claim/{token}", json={"email": "other@acme.test"})
    assert again.status_code == 400
    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 8


@pytest.mark.asyncio
async def test_member_cancellation_returns_ticket(
    client: AsyncClient, db_session, auth_headers, funded_organization, backstage_event, integrations
):
    org_id = funded_organization.id
    created = await client.post(
        "/api/v1/booking",
        json={"eventId": backstage_event.id, "attendees": ATTENDEES[:2]},
        headers=auth_headers,
    )
    booking_id = created.json()["bookings"][0]["id"]
    order_id = created.json()["bookings"][0]["external_reservation_id"]

    response = await client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["booking"]["status"] == "cancelled"
    assert data["remaining_balance"] == 9
    assert integrations.ticketing.cancelled == [order_id]
    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 9

    again = await client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=auth_headers)
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_cancellation_survives_platform_failure(
    client: AsyncClient, auth_headers, funded_organization, backstage_event, integrations
):
    created = await client.post(
        "/api/v1/booking",
        json={"eventId": backstage_event.id, "attendees": ATTENDEES[:1]},
        headers=auth_headers,
    )
    booking_id = created.json()["bookings"][0]["id"]
    integrations.ticketing.fail_cancel = True

    response = await client.post(f"/api/v1/bookings/{booking_id}/cancel", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "cancelled"
    assert response.json()["warning"]


@pytest.mark.asyncio
async def test_one_off_booking_split_payment(
    client: AsyncClient, db_session, auth_headers, organization, one_off_event, integrations
):
    integrations.payments.add_intent("pi_card", "50.00")

    response = await client.post(
        "/api/v1/booking/one-off",
        json={
            "eventId": one_off_event.id,
            "attendees": ATTENDEES[:2],
            "trainingFundAmount": 50,
            "paymentMethod": "card",
            "stripePaymentIntentId": "pi_card",
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["total_cost"] == 100.0
    assert data["payment_breakdown"]["training_fund_amount"] == 50.0
    assert data["payment_breakdown"]["card_amount"] == 50.0
    bookings = data["bookings"]
    assert [b["status"] for b in bookings] == ["confirmed", "confirmed"]
    assert sum(b["training_fund_amount"] for b in bookings) == 50.0
    assert sum(b["card_amount"] for b in bookings) == 50.0


@pytest.mark.asyncio
async def test_one_off_booking_po_to_follow_then_supplied(
    client: AsyncClient, db_session, auth_headers, organization, one_off_event, integrations, monkeypatch
):
    monkeypatch.setattr(get_settings(), "INVOICING_ENABLED", True)

    response = await client.post(
        "/api/v1/booking/one-off",
        json={
            "eventId": one_off_event.id,
            "attendees": ATTENDEES,
            "accountAmount": 150,
            "poToFollow": True,
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    reference = data["booking_reference"]
    assert data["xero_invoice"]["invoice_id"] == "inv-1"
    assert all(b["po_to_follow"] for b in data["bookings"])

    update = await client.patch(
        f"/api/v1/bookings/reference/{reference}/purchase-order",
        json={"purchaseOrderNumber": "PO-LATE-1"},
        headers=auth_headers,
    )
    assert update.status_code == 200
    assert update.json()["updated_bookings"] == 3
    assert integrations.accounting.references == {"inv-1": "PO-LATE-1"}

    rows = (await db_session.execute(select(Booking.purchase_order_number, Booking.po_to_follow))).all()
    assert rows == [("PO-LATE-1", False)] * 3


@pytest.mark.asyncio
async def test_program_event_cannot_be_booked_one_off(
    client: AsyncClient, auth_headers, funded_organization, local_event
):
    response = await client.post(
        "/api/v1/booking/one-off",
        json={"eventId": local_event.id, "attendees": ATTENDEES[:1]},
        headers=auth_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_member_bookings(client: AsyncClient, auth_headers, funded_organization, local_event):
    await client.post(
        "/api/v1/booking",
        json={"eventId": local_event.id, "attendees": ATTENDEES[:2]},
        headers=auth_headers,
    )
    response = await client.get("/api/v1/bookings", headers=auth_headers)
    assert response.status_code == 200
    assert {b["attendee_email"] for b in response.json()} == {"a@acme.test", "b@acme.test"}


@pytest.mark.asyncio
async def test_organization_summary(client: AsyncClient, auth_headers, funded_organization):
    response = await client.get("/api/v1/organizations/me", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["program_ticket_balances"] == {"leadership": 10}
    assert data["training_fund_balance"] == 100.0


@pytest.mark.asyncio
async def test_unknown_event_returns_404(client: AsyncClient, auth_headers, funded_organization):
    response = await client.post(
        "/api/v1/booking",
        json={"eventId": 4242, "attendees": ATTENDEES[:1]},
        headers=auth_headers,
    )
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Event 4242 not found"}


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient, auth_headers, funded_organization, local_event):
    await client.post(
        "/api/v1/booking",
        json={"eventId": local_event.id, "attendees": ATTENDEES[:1]},
        headers={**auth_headers, "X-Request-ID": "req-abc"},
    )

    health = await client.get("/health", headers={"X-Request-ID": "req-abc"})
    assert health.status_code == 200
    assert health.json()["redis"] == "unavailable"
    assert health.headers["X-Request-ID"] == "req-abc"

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "booking_attempts_total" in metrics.text
