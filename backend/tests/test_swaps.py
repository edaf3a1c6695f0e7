"""
Tests for atomic lesson swaps and swap validation.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    AlreadyCancelledLesson,
    BalanceCeilingExceeded,
    InsufficientBalance,
    LessonFull,
    NoActiveBooking,
    SameLessonSwap,
    ScheduleConflict,
)
from tutorbook.domain.events import SwapPerformed
from tutorbook.models.booking import Booking, Swap
from tutorbook.services.booking_service import cancel_booking, create_booking
from tutorbook.services.credit_service import add_user_credits, get_balance, reconcile_balance
from tutorbook.services.lesson_service import get_lesson
from tutorbook.services.swap_service import perform_swap, validate_swap

from tests.factories import make_lesson, make_user, next_slot

settings = get_settings()


async def balance_of(db, user_id: int) -> int:
    return (await get_balance(db, user_id)).balance


async def active_lesson_ids(db, student_id: int) -> list[int]:
    result = await db.execute(
        select(Booking.lesson_id)
        .where(Booking.student_id == student_id, Booking.status == "active")
        .order_by(Booking.lesson_id)
    )
    return list(result.scalars().all())


@pytest.fixture
def monday_10am():
    return next_slot(days=7, hour=10)


@pytest.mark.asyncio
async def test_swap_to_overlapping_lesson_ignores_old_booking(
    db_session, student, teacher, monday_10am, notifier
):
    """Moving from X to an overlapping Y is allowed: X is being released."""
    other_teacher = await make_user(db_session, "second.teacher@example.com", role="teacher")
    x = await make_lesson(db_session, teacher.id, start=monday_10am, credits_cost=2)
    y = await make_lesson(
        db_session, other_teacher.id, start=monday_10am + timedelta(minutes=30), credits_cost=3
    )
    student_id, x_id, y_id = student.id, x.id, y.id
    await create_booking(db_session, student_id, x_id)

    swap = await perform_swap(db_session, student_id, x_id, y_id)

    assert swap.old_lesson_id == x_id
    assert swap.new_lesson_id == y_id
    assert await active_lesson_ids(db_session, student_id) == [y_id]
    assert (await get_lesson(db_session, x_id)).current_students == 0
    assert (await get_lesson(db_session, y_id)).current_students == 1
    # 10 - 2 (book X) + 2 (refund X) - 3 (book Y)
    assert await balance_of(db_session, student_id) == 7
    assert (await reconcile_balance(db_session, student_id)).consistent
    assert len(notifier.of_type(SwapPerformed)) == 1


@pytest.mark.asyncio
async def test_swap_conflicts_with_another_booking(db_session, student, teacher, monday_10am):
    """A third booking overlapping Y still blocks the swap."""
    t2 = await make_user(db_session, "t2@example.com", role="teacher")
    t3 = await make_user(db_session, "t3@example.com", role="teacher")
    x = await make_lesson(db_session, teacher.id, start=monday_10am)
    y = await make_lesson(db_session, t2.id, start=monday_10am + timedelta(hours=3))
    z = await make_lesson(db_session, t3.id, start=monday_10am + timedelta(hours=4))
    student_id, x_id, y_id, z_id = student.id, x.id, y.id, z.id
    await create_booking(db_session, student_id, x_id)
    await create_booking(db_session, student_id, z_id)

    with pytest.raises(ScheduleConflict) as exc:
        await perform_swap(db_session, student_id, x_id, y_id)
    assert exc.value.details["conflicting_lesson_id"] == z_id

    assert await active_lesson_ids(db_session, student_id) == sorted([x_id, z_id])


@pytest.mark.asyncio
async def test_failed_swap_keeps_original_booking(
    db_session, student, other_student, teacher, monday_10am
):
    x = await make_lesson(db_session, teacher.id, start=monday_10am)
    full = await make_lesson(db_session, teacher.id, start=monday_10am + timedelta(days=1))
    student_id, x_id, full_id = student.id, x.id, full.id
    await create_booking(db_session, other_student.id, full_id)
    await create_booking(db_session, student_id, x_id)
    balance_before = await balance_of(db_session, student_id)

    with pytest.raises(LessonFull):
        await perform_swap(db_session, student_id, x_id, full_id)

    assert await active_lesson_ids(db_session, student_id) == [x_id]
    assert await balance_of(db_session, student_id) == balance_before
    assert (await get_lesson(db_session, x_id)).current_students == 1
    swaps = (await db_session.execute(select(Swap))).scalars().all()
    assert swaps == []


@pytest.mark.asyncio
async def test_swap_counts_refund_towards_new_price(db_session, teacher, monday_10am):
    student = await make_user(db_session, "tight@example.com", balance=3)
    cheap = await make_lesson(db_session, teacher.id, start=monday_10am, credits_cost=3)
    pricey = await make_lesson(
        db_session, teacher.id, start=monday_10am + timedelta(days=1), credits_cost=3
    )
    dearer = await make_lesson(
        db_session, teacher.id, start=monday_10am + timedelta(days=2), credits_cost=4
    )
    student_id, cheap_id, pricey_id, dearer_id = student.id, cheap.id, pricey.id, dearer.id
    await create_booking(db_session, student_id, cheap_id)
    assert await balance_of(db_session, student_id) == 0

    with pytest.raises(InsufficientBalance):
        await perform_swap(db_session, student_id, cheap_id, dearer_id)

    await perform_swap(db_session, student_id, cheap_id, pricey_id)
    assert await balance_of(db_session, student_id) == 0


@pytest.mark.asyncio
async def test_swap_without_booking(db_session, student, teacher, monday_10am):
    x = await make_lesson(db_session, teacher.id, start=monday_10am)
    y = await make_lesson(db_session, teacher.id, start=monday_10am + timedelta(days=1))
    with pytest.raises(NoActiveBooking):
        await perform_swap(db_session, student.id, x.id, y.id)


@pytest.mark.asyncio
async def test_swap_to_same_lesson(db_session, student, lesson):
    with pytest.raises(SameLessonSwap):
        await perform_swap(db_session, student.id, lesson.id, lesson.id)


@pytest.mark.asyncio
async def test_swap_back_to_cancelled_lesson_blocked(db_session, student, teacher, monday_10am):
    x = await make_lesson(db_session, teacher.id, start=monday_10am)
    y = await make_lesson(db_session, teacher.id, start=monday_10am + timedelta(days=1))
    student_id, x_id, y_id = student.id, x.id, y.id
    await create_booking(db_session, student_id, x_id)
    await perform_swap(db_session, student_id, x_id, y_id)

    with pytest.raises(AlreadyCancelledLesson):
        await perform_swap(db_session, student_id, y_id, x_id)


@pytest.mark.asyncio
async def test_validate_swap_reports_every_violation(
    db_session, student, other_student, teacher, monday_10am
):
    x = await make_lesson(db_session, teacher.id, start=monday_10am)
    y = await make_lesson(db_session, teacher.id, start=monday_10am + timedelta(days=1))
    student_id, x_id, y_id = student.id, x.id, y.id
    booking = await create_booking(db_session, student_id, y_id)
    await cancel_booking(db_session, booking.id, student_id)
    await create_booking(db_session, other_student.id, y_id)

    result = await validate_swap(db_session, student_id, x_id, y_id)

    assert result.valid is False
    codes = {v["code"] for v in result.violations}
    assert codes == {"NO_ACTIVE_BOOKING", "LESSON_FULL", "ALREADY_CANCELLED_LESSON"}


@pytest.mark.asyncio
async def test_validate_swap_writes_nothing(db_session, student, teacher, monday_10am):
    x = await make_lesson(db_session, teacher.id, start=monday_10am)
    y = await make_lesson(db_session, teacher.id, start=monday_10am + timedelta(days=1))
    student_id, x_id, y_id = student.id, x.id, y.id
    await create_booking(db_session, student_id, x_id)
    balance_before = await balance_of(db_session, student_id)

    result = await validate_swap(db_session, student_id, x_id, y_id)

    assert result.valid is True
    assert result.violations == []
    assert await active_lesson_ids(db_session, student_id) == [x_id]
    assert await balance_of(db_session, student_id) == balance_before
    assert (await get_lesson(db_session, y_id)).current_students == 0


@pytest.mark.asyncio
async def test_swap_at_balance_ceiling_rejected_by_both_paths(
    db_session, student, teacher, monday_10am, monkeypatch
):
    """The refund lands before the new charge, so a full balance blocks the swap."""
    x = await make_lesson(db_session, teacher.id, start=monday_10am, credits_cost=2)
    y = await make_lesson(
        db_session, teacher.id, start=monday_10am + timedelta(days=1), credits_cost=2
    )
    student_id, x_id, y_id = student.id, x.id, y.id
    monkeypatch.setattr(settings, "MAX_BALANCE", 12)
    await create_booking(db_session, student_id, x_id)
    await add_user_credits(db_session, student_id, 4, "Top up to the ceiling")
    assert await balance_of(db_session, student_id) == 12

    result = await validate_swap(db_session, student_id, x_id, y_id)
    assert result.valid is False
    assert [v["code"] for v in result.violations] == ["BALANCE_CEILING_EXCEEDED"]

    with pytest.raises(BalanceCeilingExceeded):
        await perform_swap(db_session, student_id, x_id, y_id)
    assert await active_lesson_ids(db_session, student_id) == [x_id]
    assert await balance_of(db_session, student_id) == 12


# --- HTTP -------------------------------------------------------------------


@pytest.mark.asyncio
async def test_swap_via_api(client: AsyncClient, db_session, student, student_headers, teacher):
    start = next_slot(days=6)
    x = await make_lesson(db_session, teacher.id, start=start)
    y = await make_lesson(db_session, teacher.id, start=start + timedelta(days=1))
    x_id, y_id = x.id, y.id
    await client.post("/api/v1/bookings/", json={"lesson_id": x_id}, headers=student_headers)

    preview = await client.post(
        "/api/v1/swaps/validate",
        json={"old_lesson_id": x_id, "new_lesson_id": y_id},
        headers=student_headers,
    )
    assert preview.status_code == 200
    assert preview.json() == {"valid": True, "violations": []}

    response = await client.post(
        "/api/v1/swaps/", json={"old_lesson_id": x_id, "new_lesson_id": y_id}, headers=student_headers
    )
    assert response.status_code == 201
    assert response.json()["new_lesson_id"] == y_id

    history = await client.get("/api/v1/swaps/", headers=student_headers)
    assert len(history.json()) == 1


@pytest.mark.asyncio
async def test_swap_same_lesson_via_api(client: AsyncClient, student_headers, lesson):
    response = await client.post(
        "/api/v1/swaps/",
        json={"old_lesson_id": lesson.id, "new_lesson_id": lesson.id},
        headers=student_headers,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "SAME_LESSON_SWAP"
