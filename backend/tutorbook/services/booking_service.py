"""
Booking orchestrator: concurrency-safe enrollment and cancellation.

CONCURRENCY STRATEGY: Pessimistic Row Lock + Conditional Update
================================================================

Problem:
  Two students try to book the last seat simultaneously.
  Both read current_students=0 of max_students=1, both insert a booking.
  Result: Overbooking. The same race exists on the student's balance.

Solution:
  Every check that gates a write runs on rows locked inside the same
  transaction as the write, and the write itself is guarded:

  1. SELECT ... FROM lessons WHERE id = :id FOR UPDATE
  2. Capacity, cancellation-history and duplicate checks on the locked row
  3. UPDATE lessons SET current_students = current_students + 1
     WHERE id = :id AND current_students < max_students
     -> rows_affected == 0 means LessonFull
  4. Credit deduction through the ledger engine (balance row locked after
     the lesson row, never before)

  Any failure rolls back the booking row, the counter and the deduction
  together: there is no state with credits taken and no booking.

  Unlike an optimistic version column there is no retry loop: a lost race
  is reported as the same business error the pre-check would have raised,
  and the caller decides whether to retry.

Cancellation refunds exactly what the booking still holds in the ledger
(deductions minus refunds tied to its id), so a booking an admin created
without charging is cancelled without a refund.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.clock import utcnow
from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    AlreadyCancelledLesson,
    BookingNotFound,
    CancellationWindowClosed,
    ConflictError,
    DomainError,
    DuplicateActiveBooking,
    LessonFull,
    LessonInPast,
    LessonNotFound,
    NotBookingOwner,
    ScheduleConflict,
    UserNotFound,
)
from tutorbook.core.logging import get_logger
from tutorbook.core.metrics import booking_latency, record_booking_attempt, record_cancellation_result
from tutorbook.db.session import transactional
from tutorbook.domain.capacity import can_enroll
from tutorbook.domain.events import BookingCancelled, BookingCreated
from tutorbook.models.booking import Booking, CancelledBooking, BOOKING_ACTIVE, BOOKING_CANCELLED
from tutorbook.models.lesson import Lesson
from tutorbook.services import credit_ledger, ledger_store
from tutorbook.services.strategy_factory import get_notifier

logger = get_logger(__name__)
settings = get_settings()

REASON_BOOKING = "Booking lesson"
REASON_CANCELLED = "Booking cancelled"

CANCEL_SUCCESS = "success"
CANCEL_ALREADY_CANCELLED = "already_cancelled"


@dataclass
class CancelResult:
    status: str
    booking: Booking
    refunded_credits: int = 0


def check_cancellation_window(lesson: Lesson) -> None:
    """Students may not cancel within CANCELLATION_CUTOFF_HOURS of the start."""
    cutoff = settings.CANCELLATION_CUTOFF_HOURS
    if cutoff <= 0:
        return
    if lesson.start_time - utcnow() < timedelta(hours=cutoff):
        raise CancellationWindowClosed(lesson.id, cutoff)


async def enroll_in_tx(
    db: AsyncSession,
    lesson: Lesson,
    student_id: int,
    charge: bool,
    booked_by: Optional[int] = None,
    reason: str = REASON_BOOKING,
) -> tuple[Booking, int]:
    """
    Insert the booking, take the seat and charge the student.

    The lesson must already be locked by the caller and the eligibility
    checks done. Returns the booking and the credits deducted.
    """
    booking = Booking(
        student_id=student_id,
        lesson_id=lesson.id,
        status=BOOKING_ACTIVE,
        booked_by=booked_by,
        booked_at=utcnow(),
    )
    db.add(booking)
    await db.flush()

    if await ledger_store.increment_students(db, lesson) is None:
        raise LessonFull(lesson.id)

    deducted = 0
    if charge and lesson.credits_cost > 0:
        await credit_ledger.deduct_credits(
            db,
            student_id,
            lesson.credits_cost,
            reason,
            booking_id=booking.id,
            performed_by=booked_by,
        )
        deducted = lesson.credits_cost

    return booking, deducted


async def cancel_booking_in_tx(
    db: AsyncSession,
    booking: Booking,
    lesson: Optional[Lesson],
    performed_by: Optional[int] = None,
    record_history: bool = True,
    reason: str = REASON_CANCELLED,
) -> int:
    """
    Cancel an active booking inside the caller's transaction.

    The booking and its lesson must be locked by the caller. Releases the
    seat, refunds what the booking still holds and, unless the caller opts
    out, writes the re-booking block. Returns the refunded credits.
    """
    booking.status = BOOKING_CANCELLED
    booking.cancelled_at = utcnow()
    await db.flush()

    if lesson is not None:
        await ledger_store.decrement_students(db, lesson)

    refund = await credit_ledger.deduction_for_booking(db, booking.id)
    if refund > 0:
        await credit_ledger.refund_credits(
            db,
            booking.student_id,
            refund,
            reason,
            booking_id=booking.id,
            performed_by=performed_by,
        )

    if record_history:
        await ledger_store.record_cancellation(db, booking)

    return refund


async def _lock_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _lock_lesson_any(db: AsyncSession, lesson_id: int) -> Optional[Lesson]:
    # Cancelling must still work on soft-deleted lessons
    result = await db.execute(
        select(Lesson)
        .where(Lesson.id == lesson_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_booking(
    db: AsyncSession,
    student_id: int,
    lesson_id: int,
    is_admin: bool = False,
    performed_by: Optional[int] = None,
) -> Booking:
    """
    Book one seat for a student.

    Students pay the lesson's credits_cost; admins book on the student's
    behalf without a deduction and may override a previous cancellation.
    """
    try:
        with booking_latency.time():
            async with transactional(db):
                if await ledger_store.get_active_user(db, student_id) is None:
                    raise UserNotFound(student_id)

                lesson = await ledger_store.lock_lesson(db, lesson_id)
                if lesson is None:
                    raise LessonNotFound(lesson_id)

                if not can_enroll(lesson):
                    raise LessonFull(lesson_id)

                if not is_admin and lesson.start_time <= utcnow():
                    raise LessonInPast(lesson_id)

                if await ledger_store.has_cancellation(db, student_id, lesson_id):
                    if not is_admin:
                        raise AlreadyCancelledLesson(student_id, lesson_id)
                    await ledger_store.clear_cancellation(db, student_id, lesson_id)
                    logger.info(
                        "cancellation_overridden",
                        student_id=student_id,
                        lesson_id=lesson_id,
                        performed_by=performed_by,
                    )

                if await ledger_store.find_active_booking(db, student_id, lesson_id):
                    raise DuplicateActiveBooking(student_id, lesson_id)

                if not is_admin:
                    conflict = await ledger_store.find_student_conflict(
                        db, student_id, lesson.start_time, lesson.end_time
                    )
                    if conflict is not None:
                        raise ScheduleConflict(student_id, lesson_id, conflict.id)

                booking, deducted = await enroll_in_tx(
                    db,
                    lesson,
                    student_id,
                    charge=not is_admin,
                    booked_by=performed_by,
                )
    except ConflictError as e:
        record_booking_attempt("conflict")
        logger.warning("booking_rejected", student_id=student_id, lesson_id=lesson_id, code=e.code.value)
        raise
    except DomainError:
        record_booking_attempt("error")
        raise

    record_booking_attempt("success")
    logger.info(
        "booking_created",
        booking_id=booking.id,
        student_id=student_id,
        lesson_id=lesson_id,
        credits_deducted=deducted,
        is_admin=is_admin,
    )
    await get_notifier().publish(
        BookingCreated(
            booking_id=booking.id,
            student_id=student_id,
            lesson_id=lesson_id,
            credits_deducted=deducted,
            booked_by=performed_by,
        )
    )
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    student_id: int,
    is_admin: bool = False,
) -> CancelResult:
    """
    Cancel a booking. Cancelling an already cancelled booking is not an
    error: it reports ``already_cancelled`` and writes nothing.
    """
    async with transactional(db):
        booking = await db.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        if not is_admin and booking.student_id != student_id:
            raise NotBookingOwner(booking_id)

        # lesson before booking, same order as booking creation and swaps
        lesson = await _lock_lesson_any(db, booking.lesson_id)
        booking = await _lock_booking(db, booking_id)

        if booking.status == BOOKING_CANCELLED:
            result = CancelResult(status=CANCEL_ALREADY_CANCELLED, booking=booking)
        else:
            if lesson is not None and not is_admin and lesson.deleted_at is None:
                check_cancellation_window(lesson)
            refunded = await cancel_booking_in_tx(db, booking, lesson, performed_by=student_id)
            result = CancelResult(status=CANCEL_SUCCESS, booking=booking, refunded_credits=refunded)

    record_cancellation_result(result.status)
    if result.status == CANCEL_ALREADY_CANCELLED:
        logger.info("booking_already_cancelled", booking_id=booking_id)
        return result

    logger.info(
        "booking_cancelled",
        booking_id=booking_id,
        student_id=booking.student_id,
        lesson_id=booking.lesson_id,
        refunded_credits=result.refunded_credits,
    )
    await get_notifier().publish(
        BookingCancelled(
            booking_id=booking_id,
            student_id=booking.student_id,
            lesson_id=booking.lesson_id,
            refunded_credits=result.refunded_credits,
            cancelled_by=student_id,
        )
    )
    return result


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


async def list_student_bookings(
    db: AsyncSession, student_id: int, active_only: bool = False
) -> list[Booking]:
    """Get all bookings for a student, newest first."""
    query = select(Booking).where(Booking.student_id == student_id)
    if active_only:
        query = query.where(Booking.status == BOOKING_ACTIVE)
    result = await db.execute(
        query.order_by(Booking.booked_at.desc(), Booking.id.desc()).execution_options(
            populate_existing=True
        )
    )
    return list(result.scalars().all())


async def list_cancelled_lesson_ids(db: AsyncSession, student_id: int) -> list[int]:
    """Lessons the student may no longer book."""
    result = await db.execute(
        select(CancelledBooking.lesson_id)
        .where(CancelledBooking.student_id == student_id)
        .order_by(CancelledBooking.lesson_id)
    )
    return list(result.scalars().all())
