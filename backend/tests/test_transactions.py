"""
Tests for the balance ledger and admin cancellation/reinstatement.
"""

import pytest
from decimal import Decimal
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.exceptions import InsufficientBalanceError
from app.models import ProgramTicketTransaction, TransactionType
from app.services import ledger_service


async def _purchase_and_use(db, organization_id: int, bought: int, used: int) -> int:
    purchase = await ledger_service.commit_purchase(db, organization_id, "leadership", bought, Decimal("100.00"))
    if used:
        await ledger_service.commit_usage(db, organization_id, "leadership", used, "BK-TEST")
    await db.commit()
    return purchase.id


async def _purchase_row(db, transaction_id: int):
    result = await db.execute(
        select(
            ProgramTicketTransaction.cancelled_quantity,
            ProgramTicketTransaction.status,
        ).where(ProgramTicketTransaction.id == transaction_id)
    )
    return result.one()


@pytest.mark.asyncio
async def test_usage_never_drives_balance_negative(db_session, organization):
    org_id = organization.id
    await ledger_service.commit_purchase(db_session, org_id, "leadership", 2, Decimal("20.00"))
    await db_session.commit()

    with pytest.raises(InsufficientBalanceError) as exc:
        await ledger_service.commit_usage(db_session, org_id, "leadership", 3, "BK-1")
    await db_session.rollback()
    assert exc.value.available == 2
    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 2


@pytest.mark.asyncio
async def test_check_available_has_no_side_effects(db_session, organization):
    org_id = organization.id
    with pytest.raises(InsufficientBalanceError):
        await ledger_service.check_available(db_session, org_id, "leadership", 1)
    count = (await db_session.execute(select(func.count(ProgramTicketTransaction.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_cancel_then_reinstate_round_trip(client: AsyncClient, db_session, organization, admin_member):
    org_id = organization.id
    txn_id = await _purchase_and_use(db_session, org_id, bought=10, used=0)

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/cancel",
        json={"quantityToCancel": 3, "adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["new_balance"] == 7
    assert data["transaction"]["cancelled_quantity"] == 3
    assert data["transaction"]["status"] == "active"
    assert data["program_ticket_balances"] == {"leadership": 7}

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/reinstate",
        json={"adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 200
    assert response.json()["new_balance"] == 10

    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 10
    cancelled, status = await _purchase_row(db_session, txn_id)
    assert cancelled == 0
    assert status == "active"

    audit_types = (
        await db_session.execute(
            select(ProgramTicketTransaction.transaction_type)
            .where(ProgramTicketTransaction.related_transaction_id == txn_id)
            .order_by(ProgramTicketTransaction.id)
        )
    ).scalars().all()
    assert audit_types == [TransactionType.CANCELLATION_VOID.value, TransactionType.REINSTATEMENT.value]


@pytest.mark.asyncio
async def test_full_cancel_marks_purchase_cancelled(client: AsyncClient, db_session, organization, admin_member):
    org_id = organization.id
    txn_id = await _purchase_and_use(db_session, org_id, bought=4, used=0)

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/cancel",
        json={"quantityToCancel": 4, "adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 200
    assert response.json()["transaction"]["status"] == "cancelled"

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/cancel",
        json={"quantityToCancel": 1, "adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 400
    assert "already been fully cancelled" in response.json()["error"]


@pytest.mark.asyncio
async def test_cancel_more_than_unallocated_rejected(client: AsyncClient, db_session, organization, admin_member):
    """10 bought, 7 spent: cancelling 5 fails and names 3 as the maximum."""
    org_id = organization.id
    txn_id = await _purchase_and_use(db_session, org_id, bought=10, used=7)

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/cancel",
        json={"quantityToCancel": 5, "adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "only 3" in body["error"]
    assert body["maxCancellable"] == 3

    assert await ledger_service.get_balance(db_session, org_id, "leadership") == 3
    cancelled, status = await _purchase_row(db_session, txn_id)
    assert cancelled == 0
    assert status == "active"
    voids = (
        await db_session.execute(
            select(func.count(ProgramTicketTransaction.id)).where(
                ProgramTicketTransaction.transaction_type == TransactionType.CANCELLATION_VOID.value
            )
        )
    ).scalar_one()
    assert voids == 0


@pytest.mark.asyncio
async def test_cancel_more_than_purchased_rejected(client: AsyncClient, db_session, organization, admin_member):
    org_id = organization.id
    txn_id = await _purchase_and_use(db_session, org_id, bought=5, used=0)
    await ledger_service.commit_purchase(db_session, org_id, "leadership", 20, Decimal("200.00"))
    await db_session.commit()

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/cancel",
        json={"quantityToCancel": 6, "adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 400
    assert "remain uncancelled" in response.json()["error"]


@pytest.mark.asyncio
async def test_non_admin_cannot_cancel(client: AsyncClient, db_session, organization, test_member):
    txn_id = await _purchase_and_use(db_session, organization.id, bought=5, used=0)

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/cancel",
        json={"quantityToCancel": 1, "adminEmail": "member@acme.test"},
    )
    assert response.status_code == 403
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_only_purchases_can_be_cancelled(client: AsyncClient, db_session, organization, admin_member):
    org_id = organization.id
    await _purchase_and_use(db_session, org_id, bought=5, used=2)
    usage_id = (
        await db_session.execute(
            select(ProgramTicketTransaction.id).where(
                ProgramTicketTransaction.transaction_type == TransactionType.USAGE.value
            )
        )
    ).scalar_one()

    response = await client.post(
        f"/api/v1/transactions/{usage_id}/cancel",
        json={"quantityToCancel": 1, "adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cancel_missing_transaction_returns_404(client: AsyncClient, admin_member):
    response = await client.post(
        "/api/v1/transactions/9999/cancel",
        json={"quantityToCancel": 1, "adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Transaction 9999 not found"}


@pytest.mark.asyncio
async def test_reinstate_without_cancellation_rejected(client: AsyncClient, db_session, organization, admin_member):
    txn_id = await _purchase_and_use(db_session, organization.id, bought=5, used=0)

    response = await client.post(
        f"/api/v1/transactions/{txn_id}/reinstate",
        json={"adminEmail": "admin@portal.test"},
    )
    assert response.status_code == 400
    assert "no cancelled tickets" in response.json()["error"]


@pytest.mark.asyncio
async def test_list_transactions_newest_first(client: AsyncClient, db_session, organization, auth_headers):
    await _purchase_and_use(db_session, organization.id, bought=5, used=2)

    response = await client.get("/api/v1/transactions", headers=auth_headers)
    assert response.status_code == 200
    types = [row["transaction_type"] for row in response.json()]
    assert types == ["usage", "purchase"]
