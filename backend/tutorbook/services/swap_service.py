"""
Swap orchestrator: move a student from one lesson to another in one unit of work.

The old booking is cancelled (refund, re-booking block) and the new one is
created (seat, deduction) inside the same transaction, then a Swap row links
them. If any part fails the transaction rolls back, so the student keeps the
original booking and the balance is untouched.

Locks: both lessons in ascending id order, then the old booking, then the
student's balance. ``validate_swap`` takes the same locks, collects every
violated rule instead of stopping at the first, and rolls back.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.clock import utcnow
from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    AlreadyCancelledLesson,
    BalanceCeilingExceeded,
    CancellationWindowClosed,
    ConflictError,
    CreditAccountNotFound,
    DomainError,
    DuplicateActiveBooking,
    InsufficientBalance,
    LessonFull,
    LessonInPast,
    LessonNotFound,
    NoActiveBooking,
    SameLessonSwap,
    ScheduleConflict,
)
from tutorbook.core.logging import get_logger
from tutorbook.core.metrics import record_swap_attempt
from tutorbook.db.session import rollback_only, transactional
from tutorbook.domain.capacity import can_enroll
from tutorbook.domain.events import SwapPerformed
from tutorbook.models.booking import Booking, Swap
from tutorbook.models.lesson import Lesson
from tutorbook.services import credit_ledger, ledger_store
from tutorbook.services.booking_service import (
    cancel_booking_in_tx,
    check_cancellation_window,
    enroll_in_tx,
)
from tutorbook.services.strategy_factory import get_notifier

logger = get_logger(__name__)
settings = get_settings()

REASON_SWAP_REFUND = "Lesson swap: previous booking cancelled"
REASON_SWAP_BOOKING = "Lesson swap: new booking"


@dataclass
class SwapPlan:
    old_lesson: Optional[Lesson]
    new_lesson: Optional[Lesson]
    old_booking: Optional[Booking]
    violations: list[DomainError] = field(default_factory=list)


@dataclass
class SwapValidation:
    valid: bool
    violations: list[dict[str, Any]] = field(default_factory=list)


async def _evaluate(
    db: AsyncSession, student_id: int, old_lesson_id: int, new_lesson_id: int
) -> SwapPlan:
    """Lock everything the swap touches and check every rule on the locked rows."""
    violations: list[DomainError] = []

    lessons = await ledger_store.lock_lessons(db, [old_lesson_id, new_lesson_id])
    old_lesson = lessons.get(old_lesson_id)
    new_lesson = lessons.get(new_lesson_id)

    old_booking = None
    if old_lesson is not None:
        old_booking = await ledger_store.find_active_booking(
            db, student_id, old_lesson_id, lock=True
        )
    if old_booking is None:
        violations.append(NoActiveBooking(student_id, old_lesson_id))
    else:
        try:
            check_cancellation_window(old_lesson)
        except CancellationWindowClosed as e:
            violations.append(e)

    if new_lesson is None:
        violations.append(LessonNotFound(new_lesson_id))
    else:
        if not can_enroll(new_lesson):
            violations.append(LessonFull(new_lesson_id))
        if new_lesson.start_time <= utcnow():
            violations.append(LessonInPast(new_lesson_id))
        if await ledger_store.has_cancellation(db, student_id, new_lesson_id):
            violations.append(AlreadyCancelledLesson(student_id, new_lesson_id))
        if await ledger_store.find_active_booking(db, student_id, new_lesson_id):
            violations.append(DuplicateActiveBooking(student_id, new_lesson_id))

        conflict = await ledger_store.find_student_conflict(
            db,
            student_id,
            new_lesson.start_time,
            new_lesson.end_time,
            exclude_booking_id=old_booking.id if old_booking else None,
        )
        if conflict is not None:
            violations.append(ScheduleConflict(student_id, new_lesson_id, conflict.id))

    account = await ledger_store.lock_balance(db, student_id)
    if account is None:
        violations.append(CreditAccountNotFound(student_id))
    elif new_lesson is not None:
        refund = await credit_ledger.deduction_for_booking(db, old_booking.id) if old_booking else 0
        available = account.balance + refund
        if available < new_lesson.credits_cost:
            violations.append(InsufficientBalance(student_id, new_lesson.credits_cost, available))
        # the old booking is refunded before the new one is charged
        elif available > settings.MAX_BALANCE:
            violations.append(BalanceCeilingExceeded(student_id, refund, settings.MAX_BALANCE))

    return SwapPlan(old_lesson, new_lesson, old_booking, violations)


async def perform_swap(
    db: AsyncSession, student_id: int, old_lesson_id: int, new_lesson_id: int
) -> Swap:
    if old_lesson_id == new_lesson_id:
        record_swap_attempt("conflict")
        raise SameLessonSwap(old_lesson_id)

    try:
        async with transactional(db):
            plan = await _evaluate(db, student_id, old_lesson_id, new_lesson_id)
            if plan.violations:
                raise plan.violations[0]

            refunded = await cancel_booking_in_tx(
                db,
                plan.old_booking,
                plan.old_lesson,
                performed_by=student_id,
                reason=REASON_SWAP_REFUND,
            )
            new_booking, deducted = await enroll_in_tx(
                db,
                plan.new_lesson,
                student_id,
                charge=True,
                booked_by=student_id,
                reason=REASON_SWAP_BOOKING,
            )

            swap = Swap(
                student_id=student_id,
                old_lesson_id=old_lesson_id,
                new_lesson_id=new_lesson_id,
                old_booking_id=plan.old_booking.id,
                new_booking_id=new_booking.id,
                created_at=utcnow(),
            )
            db.add(swap)
            await db.flush()
    except ConflictError as e:
        record_swap_attempt("conflict")
        logger.warning(
            "swap_rejected",
            student_id=student_id,
            old_lesson_id=old_lesson_id,
            new_lesson_id=new_lesson_id,
            code=e.code.value,
        )
        raise
    except DomainError:
        record_swap_attempt("error")
        raise

    record_swap_attempt("success")
    logger.info(
        "swap_performed",
        swap_id=swap.id,
        student_id=student_id,
        old_lesson_id=old_lesson_id,
        new_lesson_id=new_lesson_id,
        refunded=refunded,
        deducted=deducted,
    )
    await get_notifier().publish(
        SwapPerformed(
            swap_id=swap.id,
            student_id=student_id,
            old_lesson_id=old_lesson_id,
            new_lesson_id=new_lesson_id,
            old_booking_id=swap.old_booking_id,
            new_booking_id=swap.new_booking_id,
        )
    )
    return swap


async def validate_swap(
    db: AsyncSession, student_id: int, old_lesson_id: int, new_lesson_id: int
) -> SwapValidation:
    """Dry-run of perform_swap: every violated rule, nothing written."""
    if old_lesson_id == new_lesson_id:
        return SwapValidation(valid=False, violations=[SameLessonSwap(old_lesson_id).to_dict()])

    async with rollback_only(db):
        plan = await _evaluate(db, student_id, old_lesson_id, new_lesson_id)

    return SwapValidation(
        valid=not plan.violations,
        violations=[v.to_dict() for v in plan.violations],
    )


async def list_swaps(db: AsyncSession, student_id: int) -> list[Swap]:
    result = await db.execute(
        select(Swap).where(Swap.student_id == student_id).order_by(Swap.created_at.desc(), Swap.id.desc())
    )
    return list(result.scalars().all())
