"""
Persistence primitives shared by the booking, swap, template and lesson services.

Locking loads use SELECT ... FOR UPDATE (a no-op on SQLite, where the single
writer already serialises transactions). Counter writes are conditional
UPDATEs whose rowcount tells the caller whether the guard held at write time.

Lock order across every operation:
  template row -> template application row -> teacher user rows
  -> lesson rows (ascending id) -> booking rows
  -> credit balance rows (ascending user id)
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from tutorbook.core.clock import utcnow
from tutorbook.core.metrics import record_db_operation
from tutorbook.models.booking import Booking, CancelledBooking, BOOKING_ACTIVE
from tutorbook.models.credit import CreditBalance
from tutorbook.models.lesson import Lesson
from tutorbook.models.user import User


async def lock_user(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(
        select(User)
        .where(User.id == user_id, User.deleted_at.is_(None))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_active_user(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def lock_lesson(db: AsyncSession, lesson_id: int) -> Optional[Lesson]:
    """Lock a non-deleted lesson row and return it fresh from the database."""
    record_db_operation("lock")
    result = await db.execute(
        select(Lesson)
        .where(Lesson.id == lesson_id, Lesson.deleted_at.is_(None))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_lessons(db: AsyncSession, lesson_ids: Iterable[int]) -> dict[int, Lesson]:
    """Lock several lessons in ascending id order. Missing or deleted ids are absent from the result."""
    locked: dict[int, Lesson] = {}
    for lesson_id in sorted(set(lesson_ids)):
        lesson = await lock_lesson(db, lesson_id)
        if lesson is not None:
            locked[lesson_id] = lesson
    return locked


async def lock_balance(db: AsyncSession, user_id: int) -> Optional[CreditBalance]:
    result = await db.execute(
        select(CreditBalance)
        .where(CreditBalance.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_balances(db: AsyncSession, user_ids: Iterable[int]) -> dict[int, CreditBalance]:
    locked: dict[int, CreditBalance] = {}
    for user_id in sorted(set(user_ids)):
        balance = await lock_balance(db, user_id)
        if balance is not None:
            locked[user_id] = balance
    return locked


async def increment_students(db: AsyncSession, lesson: Lesson) -> Optional[int]:
    """Take one seat if one is free. Returns the new count, or None if the lesson was full."""
    record_db_operation("write")
    result = await db.execute(
        update(Lesson)
        .where(
            Lesson.id == lesson.id,
            Lesson.deleted_at.is_(None),
            Lesson.current_students < Lesson.max_students,
        )
        .values(current_students=Lesson.current_students + 1)
        .returning(Lesson.current_students)
        .execution_options(synchronize_session=False)
    )
    new_count = result.scalar_one_or_none()
    if new_count is not None:
        set_committed_value(lesson, "current_students", new_count)
    return new_count


async def decrement_students(db: AsyncSession, lesson: Lesson) -> None:
    """Release one seat, never going below zero."""
    record_db_operation("write")
    result = await db.execute(
        update(Lesson)
        .where(Lesson.id == lesson.id, Lesson.current_students > 0)
        .values(current_students=Lesson.current_students - 1)
        .returning(Lesson.current_students)
        .execution_options(synchronize_session=False)
    )
    new_count = result.scalar_one_or_none()
    if new_count is not None:
        set_committed_value(lesson, "current_students", new_count)


async def find_teacher_overlap(
    db: AsyncSession,
    teacher_id: int,
    start: datetime,
    end: datetime,
    exclude_lesson_id: Optional[int] = None,
) -> Optional[Lesson]:
    query = select(Lesson).where(
        Lesson.teacher_id == teacher_id,
        Lesson.deleted_at.is_(None),
        Lesson.start_time < end,
        Lesson.end_time > start,
    )
    if exclude_lesson_id is not None:
        query = query.where(Lesson.id != exclude_lesson_id)
    result = await db.execute(query.order_by(Lesson.start_time).limit(1))
    return result.scalar_one_or_none()


async def find_student_conflict(
    db: AsyncSession,
    student_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> Optional[Lesson]:
    """Return a lesson the student actively attends that overlaps [start, end)."""
    query = (
        select(Lesson)
        .join(Booking, Booking.lesson_id == Lesson.id)
        .where(
            Booking.student_id == student_id,
            Booking.status == BOOKING_ACTIVE,
            Lesson.deleted_at.is_(None),
            Lesson.start_time < end,
            Lesson.end_time > start,
        )
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    result = await db.execute(query.order_by(Lesson.start_time).limit(1))
    return result.scalar_one_or_none()


async def find_active_booking(
    db: AsyncSession, student_id: int, lesson_id: int, lock: bool = False
) -> Optional[Booking]:
    query = select(Booking).where(
        Booking.student_id == student_id,
        Booking.lesson_id == lesson_id,
        Booking.status == BOOKING_ACTIVE,
    )
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def active_bookings_for_lessons(
    db: AsyncSession, lesson_ids: Iterable[int]
) -> list[Booking]:
    ids = list(lesson_ids)
    if not ids:
        return []
    result = await db.execute(
        select(Booking)
        .where(Booking.lesson_id.in_(ids), Booking.status == BOOKING_ACTIVE)
        .order_by(Booking.lesson_id, Booking.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def has_cancellation(db: AsyncSession, student_id: int, lesson_id: int) -> bool:
    result = await db.execute(
        select(func.count())
        .select_from(CancelledBooking)
        .where(
            CancelledBooking.student_id == student_id,
            CancelledBooking.lesson_id == lesson_id,
        )
    )
    return result.scalar_one() > 0


async def record_cancellation(db: AsyncSession, booking: Booking) -> None:
    """Write the re-booking block for (student, lesson) unless one already exists."""
    if await has_cancellation(db, booking.student_id, booking.lesson_id):
        return
    db.add(
        CancelledBooking(
            booking_id=booking.id,
            student_id=booking.student_id,
            lesson_id=booking.lesson_id,
            cancelled_at=booking.cancelled_at or utcnow(),
        )
    )
    await db.flush()


async def clear_cancellation(db: AsyncSession, student_id: int, lesson_id: int) -> None:
    await db.execute(
        delete(CancelledBooking).where(
            CancelledBooking.student_id == student_id,
            CancelledBooking.lesson_id == lesson_id,
        )
    )
