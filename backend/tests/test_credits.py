"""
Tests for the credit ledger: bounds, guards, the transaction chain and the API.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from tutorbook.core.clock import utcnow
from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    BalanceCeilingExceeded,
    InsufficientBalance,
    InvalidCreditAmount,
    InvalidReason,
    UserNotFound,
)
from tutorbook.domain.events import CreditsChanged
from tutorbook.models.credit import CreditTransaction
from tutorbook.services.credit_service import (
    add_user_credits,
    deduct_user_credits,
    get_balance,
    get_transaction_history,
    reconcile_balance,
    refund_user_credits,
)

settings = get_settings()


@pytest.mark.asyncio
async def test_add_credits_records_snapshots(db_session, student, notifier):
    student_id = student.id
    transaction = await add_user_credits(db_session, student_id, 5, "Bought a pack")

    assert transaction.operation_type == "add"
    assert transaction.amount == 5
    assert transaction.balance_before == 10
    assert transaction.balance_after == 15
    assert (await get_balance(db_session, student_id)).balance == 15

    events = notifier.of_type(CreditsChanged)
    assert len(events) == 1
    assert events[0].balance_after == 15


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -1, 101])
async def test_amount_out_of_bounds_rejected(db_session, student, amount):
    with pytest.raises(InvalidCreditAmount):
        await add_user_credits(db_session, student.id, amount, "Out of range")


@pytest.mark.asyncio
async def test_blank_reason_rejected(db_session, student):
    with pytest.raises(InvalidReason):
        await add_user_credits(db_session, student.id, 1, "   ")


@pytest.mark.asyncio
async def test_unknown_user_rejected(db_session):
    with pytest.raises(UserNotFound):
        await add_user_credits(db_session, 9999, 1, "Nobody")


@pytest.mark.asyncio
async def test_deduct_more_than_balance_changes_nothing(db_session, student):
    student_id = student.id
    with pytest.raises(InsufficientBalance) as exc:
        await deduct_user_credits(db_session, student_id, 11, "Too much")
    assert exc.value.details["required"] == 11
    assert exc.value.details["available"] == 10

    assert (await get_balance(db_session, student_id)).balance == 10
    history = await get_transaction_history(db_session, student_id)
    assert [t.operation_type for t in history] == ["add"]


@pytest.mark.asyncio
async def test_deduct_entire_balance(db_session, student):
    transaction = await deduct_user_credits(db_session, student.id, 10, "Spend it all")
    assert transaction.balance_after == 0


@pytest.mark.asyncio
async def test_balance_ceiling(db_session, student, monkeypatch):
    student_id = student.id
    monkeypatch.setattr(settings, "MAX_BALANCE", 15)

    await add_user_credits(db_session, student_id, 5, "Up to the ceiling")
    with pytest.raises(BalanceCeilingExceeded):
        await refund_user_credits(db_session, student_id, 1, "Over the ceiling")
    assert (await get_balance(db_session, student_id)).balance == 15


@pytest.mark.asyncio
async def test_reconcile_consistent_chain(db_session, student):
    student_id = student.id
    await add_user_credits(db_session, student_id, 7, "Top up")
    await deduct_user_credits(db_session, student_id, 4, "Manual charge")
    await refund_user_credits(db_session, student_id, 2, "Goodwill")

    report = await reconcile_balance(db_session, student_id)
    assert report.consistent
    assert report.stored_balance == report.computed_balance == 15
    assert report.transaction_count == 4


@pytest.mark.asyncio
async def test_reconcile_detects_tampered_balance(db_session, student):
    student_id = student.id
    account = await get_balance(db_session, student_id)
    account.balance = 99
    await db_session.commit()

    report = await reconcile_balance(db_session, student_id)
    assert not report.consistent
    assert report.computed_balance == 10
    assert "stored balance is 99" in report.issues[0]


@pytest.mark.asyncio
async def test_history_filters_and_limits(db_session, student, monkeypatch):
    student_id = student.id
    for _ in range(3):
        await deduct_user_credits(db_session, student_id, 1, "Small charge")

    deducts = await get_transaction_history(db_session, student_id, operation_type="deduct")
    assert len(deducts) == 3
    assert all(t.operation_type == "deduct" for t in deducts)

    newest_first = await get_transaction_history(db_session, student_id)
    assert [t.balance_after for t in newest_first] == [7, 8, 9, 10]

    assert len(await get_transaction_history(db_session, student_id, limit=2)) == 2
    assert len(await get_transaction_history(db_session, student_id, limit=2, offset=3)) == 1

    monkeypatch.setattr(settings, "TRANSACTION_HISTORY_MAX_LIMIT", 3)
    assert len(await get_transaction_history(db_session, student_id, limit=100)) == 3

    future = utcnow() + timedelta(days=1)
    assert await get_transaction_history(db_session, student_id, start=future) == []


@pytest.mark.asyncio
async def test_amounts_are_stored_positive(db_session, student):
    await deduct_user_credits(db_session, student.id, 3, "Charge")
    rows = (await db_session.execute(CreditTransaction.__table__.select())).all()
    assert all(row.amount > 0 for row in rows)


# --- HTTP -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_admin_adds_credits_via_api(client: AsyncClient, admin_headers, student, admin):
    student_id, admin_id = student.id, admin.id
    response = await client.post(
        "/api/v1/credits/add",
        json={"user_id": student_id, "amount": 5, "reason": "Promo"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["balance_after"] == 15
    assert data["performed_by"] == admin_id

    balance = await client.get(f"/api/v1/credits/users/{student_id}/balance", headers=admin_headers)
    assert balance.json()["balance"] == 15


@pytest.mark.asyncio
async def test_student_cannot_add_credits(client: AsyncClient, student_headers, student):
    response = await client.post(
        "/api/v1/credits/add",
        json={"user_id": student.id, "amount": 5, "reason": "Free money"},
        headers=student_headers,
    )
    assert response.status_code == 403
    assert response.json()["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_insufficient_balance_error_body(client: AsyncClient, admin_headers, student):
    student_id = student.id
    response = await client.post(
        "/api/v1/credits/deduct",
        json={"user_id": student_id, "amount": 50, "reason": "Too much"},
        headers=admin_headers,
    )
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "INSUFFICIENT_BALANCE"
    assert body["details"]["user_id"] == student_id


@pytest.mark.asyncio
async def test_student_reads_own_history(client: AsyncClient, student_headers, student):
    response = await client.get("/api/v1/credits/history", headers=student_headers)
    assert response.status_code == 200
    rows = response.json()
    assert len(rows) == 1
    assert rows[0]["reason"] == "Initial credits"

    balance = await client.get("/api/v1/credits/balance", headers=student_headers)
    assert balance.json()["balance"] == 10


@pytest.mark.asyncio
async def test_reconcile_endpoint(client: AsyncClient, admin_headers, student):
    response = await client.get(
        f"/api/v1/credits/users/{student.id}/reconcile", headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["consistent"] is True
