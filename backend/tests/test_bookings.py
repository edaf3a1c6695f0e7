"""
Tests for booking and cancellation: seat counter, ledger effects, re-booking
block, admin overrides and the HTTP endpoints.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from tutorbook.core.clock import utcnow
from tutorbook.core.errors import (
    AlreadyCancelledLesson,
    CancellationWindowClosed,
    DuplicateActiveBooking,
    InsufficientBalance,
    LessonFull,
    LessonInPast,
    NotBookingOwner,
    ScheduleConflict,
)
from tutorbook.domain.events import BookingCancelled, BookingCreated
from tutorbook.models.booking import Booking, CancelledBooking
from tutorbook.services.booking_service import cancel_booking, create_booking
from tutorbook.services.credit_service import get_balance, get_transaction_history, reconcile_balance
from tutorbook.services.lesson_service import get_lesson

from tests.factories import make_lesson, make_user, next_slot


async def balance_of(db, user_id: int) -> int:
    return (await get_balance(db, user_id)).balance


@pytest.mark.asyncio
async def test_booking_takes_seat_and_charges(db_session, teacher, notifier):
    """Scenario: single seat costing 2 credits, student holding exactly 2."""
    student = await make_user(db_session, "exact@example.com", balance=2)
    rival = await make_user(db_session, "rival@example.com", balance=5)
    lesson = await make_lesson(db_session, teacher.id, credits_cost=2)
    student_id, rival_id, lesson_id = student.id, rival.id, lesson.id

    booking = await create_booking(db_session, student_id, lesson_id)
    booking_id = booking.id

    assert booking.status == "active"
    assert await balance_of(db_session, student_id) == 0
    assert (await get_lesson(db_session, lesson_id)).current_students == 1

    history = await get_transaction_history(db_session, student_id, operation_type="deduct")
    assert len(history) == 1
    assert history[0].booking_id == booking_id
    assert history[0].amount == 2

    with pytest.raises(LessonFull):
        await create_booking(db_session, rival_id, lesson_id)
    assert await balance_of(db_session, rival_id) == 5

    assert [e.booking_id for e in notifier.of_type(BookingCreated)] == [booking_id]


@pytest.mark.asyncio
async def test_cancel_refunds_and_blocks_rebooking(db_session, teacher):
    """Scenario: cancelling restores the balance and the seat, then blocks re-booking."""
    student = await make_user(db_session, "exact@example.com", balance=2)
    lesson = await make_lesson(db_session, teacher.id, credits_cost=2)
    student_id, lesson_id = student.id, lesson.id

    booking = await create_booking(db_session, student_id, lesson_id)
    result = await cancel_booking(db_session, booking.id, student_id)

    assert result.status == "success"
    assert result.refunded_credits == 2
    assert await balance_of(db_session, student_id) == 2
    assert (await get_lesson(db_session, lesson_id)).current_students == 0

    blocks = (
        await db_session.execute(
            select(CancelledBooking).where(
                CancelledBooking.student_id == student_id,
                CancelledBooking.lesson_id == lesson_id,
            )
        )
    ).scalars().all()
    assert len(blocks) == 1

    with pytest.raises(AlreadyCancelledLesson):
        await create_booking(db_session, student_id, lesson_id)

    assert (await reconcile_balance(db_session, student_id)).consistent


@pytest.mark.asyncio
async def test_insufficient_balance_leaves_no_booking(db_session, teacher):
    """A failed deduction rolls back the booking row and the seat with it."""
    student = await make_user(db_session, "poor@example.com", balance=1)
    lesson = await make_lesson(db_session, teacher.id, credits_cost=2)
    student_id, lesson_id = student.id, lesson.id

    with pytest.raises(InsufficientBalance):
        await create_booking(db_session, student_id, lesson_id)

    assert (await get_lesson(db_session, lesson_id)).current_students == 0
    assert await balance_of(db_session, student_id) == 1
    bookings = (
        await db_session.execute(select(Booking).where(Booking.student_id == student_id))
    ).scalars().all()
    assert bookings == []


@pytest.mark.asyncio
async def test_cancel_twice_is_idempotent(db_session, student, lesson, notifier):
    student_id, lesson_id = student.id, lesson.id
    booking = await create_booking(db_session, student_id, lesson_id)
    await cancel_booking(db_session, booking.id, student_id)

    again = await cancel_booking(db_session, booking.id, student_id)

    assert again.status == "already_cancelled"
    assert again.refunded_credits == 0
    assert await balance_of(db_session, student_id) == 10
    refunds = await get_transaction_history(db_session, student_id, operation_type="refund")
    assert len(refunds) == 1
    assert len(notifier.of_type(BookingCancelled)) == 1


@pytest.mark.asyncio
async def test_duplicate_active_booking_rejected(db_session, student, group_lesson):
    student_id, lesson_id = student.id, group_lesson.id
    await create_booking(db_session, student_id, lesson_id)
    with pytest.raises(DuplicateActiveBooking):
        await create_booking(db_session, student_id, lesson_id)
    assert (await get_lesson(db_session, lesson_id)).current_students == 1


@pytest.mark.asyncio
async def test_group_lesson_fills_up(db_session, teacher, group_lesson):
    lesson_id = group_lesson.id
    students = [
        await make_user(db_session, f"group{i}@example.com", balance=3) for i in range(5)
    ]
    ids = [s.id for s in students]

    for student_id in ids[:4]:
        await create_booking(db_session, student_id, lesson_id)
    with pytest.raises(LessonFull):
        await create_booking(db_session, ids[4], lesson_id)

    assert (await get_lesson(db_session, lesson_id)).current_students == 4


@pytest.mark.asyncio
async def test_student_schedule_conflict(db_session, student, teacher):
    other_teacher = await make_user(db_session, "second.teacher@example.com", role="teacher")
    start = next_slot(days=5, hour=10)
    first = await make_lesson(db_session, teacher.id, start=start)
    overlapping = await make_lesson(db_session, other_teacher.id, start=start + timedelta(hours=1))
    back_to_back = await make_lesson(db_session, teacher.id, start=start + timedelta(hours=2))
    student_id = student.id
    first_id, overlapping_id, back_id = first.id, overlapping.id, back_to_back.id

    await create_booking(db_session, student_id, first_id)
    with pytest.raises(ScheduleConflict) as exc:
        await create_booking(db_session, student_id, overlapping_id)
    assert exc.value.details["conflicting_lesson_id"] == first_id

    await create_booking(db_session, student_id, back_id)


@pytest.mark.asyncio
async def test_past_lesson_rejected_for_students(db_session, student, teacher):
    past = await make_lesson(db_session, teacher.id, start=utcnow() - timedelta(hours=3))
    with pytest.raises(LessonInPast):
        await create_booking(db_session, student.id, past.id)


@pytest.mark.asyncio
async def test_cancellation_window(db_session, student, teacher, admin):
    soon = await make_lesson(db_session, teacher.id, start=utcnow() + timedelta(hours=2))
    student_id, admin_id = student.id, admin.id
    booking = await create_booking(db_session, student_id, soon.id)
    booking_id = booking.id

    with pytest.raises(CancellationWindowClosed):
        await cancel_booking(db_session, booking_id, student_id)

    result = await cancel_booking(db_session, booking_id, admin_id, is_admin=True)
    assert result.status == "success"
    assert await balance_of(db_session, student_id) == 10


@pytest.mark.asyncio
async def test_other_student_cannot_cancel(db_session, student, other_student, lesson):
    booking = await create_booking(db_session, student.id, lesson.id)
    with pytest.raises(NotBookingOwner):
        await cancel_booking(db_session, booking.id, other_student.id)


@pytest.mark.asyncio
async def test_admin_booking_is_free_and_not_refunded(db_session, student, admin, lesson):
    """An uncharged booking has nothing to refund when cancelled."""
    student_id, admin_id, lesson_id = student.id, admin.id, lesson.id

    booking = await create_booking(
        db_session, student_id, lesson_id, is_admin=True, performed_by=admin_id
    )
    assert booking.booked_by == admin_id
    assert await balance_of(db_session, student_id) == 10

    result = await cancel_booking(db_session, booking.id, admin_id, is_admin=True)
    assert result.refunded_credits == 0
    assert await balance_of(db_session, student_id) == 10
    assert (await reconcile_balance(db_session, student_id)).consistent


@pytest.mark.asyncio
async def test_admin_overrides_cancellation_block(db_session, student, admin, lesson):
    student_id, admin_id, lesson_id = student.id, admin.id, lesson.id
    booking = await create_booking(db_session, student_id, lesson_id)
    await cancel_booking(db_session, booking.id, student_id)

    rebooked = await create_booking(
        db_session, student_id, lesson_id, is_admin=True, performed_by=admin_id
    )
    assert rebooked.status == "active"
    remaining = (
        await db_session.execute(
            select(CancelledBooking).where(CancelledBooking.student_id == student_id)
        )
    ).scalars().all()
    assert remaining == []


# --- HTTP -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_book_lesson_via_api(client: AsyncClient, student_headers, lesson):
    """Successful booking takes a seat."""
    lesson_id = lesson.id
    response = await client.post(
        "/api/v1/bookings/", json={"lesson_id": lesson_id}, headers=student_headers
    )
    assert response.status_code == 201
    data = response.json()
    assert data["lesson_id"] == lesson_id
    assert data["status"] == "active"

    lesson_response = await client.get(f"/api/v1/lessons/{lesson_id}", headers=student_headers)
    assert lesson_response.json()["current_students"] == 1

    balance = await client.get("/api/v1/credits/balance", headers=student_headers)
    assert balance.json()["balance"] == 8


@pytest.mark.asyncio
async def test_book_unauthenticated(client: AsyncClient, lesson):
    response = await client.post("/api/v1/bookings/", json={"lesson_id": lesson.id})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_book_full_lesson_via_api(
    client: AsyncClient, db_session, student_headers, other_student, lesson
):
    lesson_id = lesson.id
    await create_booking(db_session, other_student.id, lesson_id)

    response = await client.post(
        "/api/v1/bookings/", json={"lesson_id": lesson_id}, headers=student_headers
    )
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "LESSON_FULL"
    assert body["details"] == {"lesson_id": lesson_id}


@pytest.mark.asyncio
async def test_cancel_via_api_twice(client: AsyncClient, student_headers, lesson):
    created = await client.post(
        "/api/v1/bookings/", json={"lesson_id": lesson.id}, headers=student_headers
    )
    booking_id = created.json()["id"]

    first = await client.delete(f"/api/v1/bookings/{booking_id}", headers=student_headers)
    assert first.status_code == 200
    assert first.json() == {"status": "success", "booking_id": booking_id, "refunded_credits": 2}

    second = await client.delete(f"/api/v1/bookings/{booking_id}", headers=student_headers)
    assert second.status_code == 200
    assert second.json()["status"] == "already_cancelled"

    cancelled = await client.get("/api/v1/bookings/cancelled-lessons", headers=student_headers)
    assert cancelled.json() == [created.json()["lesson_id"]]


@pytest.mark.asyncio
async def test_admin_books_for_student_via_api(
    client: AsyncClient, admin_headers, student, lesson
):
    student_id = student.id
    response = await client.post(
        "/api/v1/bookings/",
        json={"lesson_id": lesson.id, "student_id": student_id},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["student_id"] == student_id

    balance = await client.get(f"/api/v1/credits/users/{student_id}/balance", headers=admin_headers)
    assert balance.json()["balance"] == 10


@pytest.mark.asyncio
async def test_list_my_bookings(client: AsyncClient, student_headers, lesson, group_lesson):
    await client.post("/api/v1/bookings/", json={"lesson_id": lesson.id}, headers=student_headers)
    await client.post(
        "/api/v1/bookings/", json={"lesson_id": group_lesson.id}, headers=student_headers
    )

    response = await client.get("/api/v1/bookings/", headers=student_headers)
    assert response.status_code == 200
    assert len(response.json()) == 2
