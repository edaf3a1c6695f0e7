"""
Lesson scheduling: creation with the teacher-overlap guard, reads, soft delete.

Two concurrent creations for one teacher both pass an unlocked overlap
query. Creation therefore locks the teacher's user row first, so lesson
creation for a given teacher is serialised and the overlap check sees every
committed lesson.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.clock import utcnow
from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    InvalidTemplateEntry,
    InvalidTimeRange,
    LessonNotFound,
    PermissionDenied,
    TeacherOverlap,
    UserNotFound,
)
from tutorbook.core.logging import get_logger
from tutorbook.db.base import as_utc
from tutorbook.db.session import transactional
from tutorbook.domain.capacity import parse_kind, validate_capacity
from tutorbook.models.lesson import Lesson
from tutorbook.models.user import ROLE_STUDENT
from tutorbook.schemas.lesson import LessonCreate
from tutorbook.services import ledger_store
from tutorbook.services.booking_service import cancel_booking_in_tx, enroll_in_tx

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class LessonDeletion:
    lesson_id: int
    cancelled_bookings: int = 0
    refunded_credits: int = 0


def validate_lesson(lesson_data: LessonCreate) -> None:
    if as_utc(lesson_data.end_time) <= as_utc(lesson_data.start_time):
        raise InvalidTimeRange()
    validate_capacity(
        parse_kind(lesson_data.kind, settings.GROUP_MIN_STUDENTS), lesson_data.max_students
    )
    if len(set(lesson_data.student_ids)) > lesson_data.max_students:
        raise InvalidTemplateEntry("More students than seats")


async def create_lesson(db: AsyncSession, lesson_data: LessonCreate, created_by: int) -> Lesson:
    """
    Create a lesson for a teacher.

    Initial students are enrolled the way an admin booking is: a seat is
    taken without charging the student.
    """
    validate_lesson(lesson_data)
    start = as_utc(lesson_data.start_time)
    end = as_utc(lesson_data.end_time)

    async with transactional(db):
        teacher = await ledger_store.lock_user(db, lesson_data.teacher_id)
        if teacher is None:
            raise UserNotFound(lesson_data.teacher_id)
        if teacher.role == ROLE_STUDENT:
            raise PermissionDenied("Lessons can only be assigned to teachers")

        overlap = await ledger_store.find_teacher_overlap(db, teacher.id, start, end)
        if overlap is not None:
            logger.warning(
                "lesson_rejected_teacher_overlap",
                teacher_id=teacher.id,
                conflicting_lesson_id=overlap.id,
            )
            raise TeacherOverlap(teacher.id, overlap.id)

        lesson = Lesson(
            teacher_id=teacher.id,
            subject=lesson_data.subject,
            kind=lesson_data.kind,
            start_time=start,
            end_time=end,
            max_students=lesson_data.max_students,
            current_students=0,
            credits_cost=lesson_data.credits_cost,
            color=lesson_data.color,
            created_by=created_by,
        )
        db.add(lesson)
        await db.flush()

        for student_id in dict.fromkeys(lesson_data.student_ids):
            if await ledger_store.get_active_user(db, student_id) is None:
                raise UserNotFound(student_id)
            await enroll_in_tx(db, lesson, student_id, charge=False, booked_by=created_by)

    logger.info(
        "lesson_created",
        lesson_id=lesson.id,
        teacher_id=lesson.teacher_id,
        max_students=lesson.max_students,
        initial_students=lesson.current_students,
    )
    return lesson


async def get_lesson(db: AsyncSession, lesson_id: int) -> Lesson:
    """Get a single lesson with its live seat count."""
    result = await db.execute(
        select(Lesson)
        .where(Lesson.id == lesson_id, Lesson.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    lesson = result.scalar_one_or_none()
    if lesson is None:
        raise LessonNotFound(lesson_id)
    return lesson


async def list_lessons(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
    teacher_id: Optional[int] = None,
) -> tuple[list[Lesson], int]:
    """List non-deleted lessons ordered by start time, with total count."""
    query = select(Lesson).where(Lesson.deleted_at.is_(None))
    count_query = select(func.count()).select_from(Lesson).where(Lesson.deleted_at.is_(None))

    if upcoming_only:
        now = utcnow()
        query = query.where(Lesson.start_time > now)
        count_query = count_query.where(Lesson.start_time > now)
    if teacher_id is not None:
        query = query.where(Lesson.teacher_id == teacher_id)
        count_query = count_query.where(Lesson.teacher_id == teacher_id)

    total = (await db.execute(count_query)).scalar_one()

    offset = (page - 1) * page_size
    result = await db.execute(
        query.order_by(Lesson.start_time.asc(), Lesson.id.asc())
        .offset(offset)
        .limit(page_size)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all()), total


async def delete_lesson(db: AsyncSession, lesson_id: int, performed_by: int) -> LessonDeletion:
    """Soft-delete a lesson, cancelling and refunding its active bookings."""
    deletion = LessonDeletion(lesson_id=lesson_id)

    async with transactional(db):
        lesson = await ledger_store.lock_lesson(db, lesson_id)
        if lesson is None:
            raise LessonNotFound(lesson_id)

        bookings = await ledger_store.active_bookings_for_lessons(db, [lesson_id])
        await ledger_store.lock_balances(db, (b.student_id for b in bookings))
        for booking in bookings:
            deletion.refunded_credits += await cancel_booking_in_tx(
                db,
                booking,
                lesson,
                performed_by=performed_by,
                record_history=False,
                reason="Lesson cancelled",
            )
            deletion.cancelled_bookings += 1

        lesson.deleted_at = utcnow()
        await db.flush()

    logger.info(
        "lesson_deleted",
        lesson_id=lesson_id,
        cancelled_bookings=deletion.cancelled_bookings,
        refunded_credits=deletion.refunded_credits,
    )
    return deletion
