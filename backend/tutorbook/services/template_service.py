"""
Weekly templates: creation, application to a concrete week, and rollback.

Applying a template
-------------------
For a Monday ``week_start`` every entry becomes a lesson on
``week_start + day_of_week`` at the entry's times (UTC), tagged with a new
TemplateApplication. Pre-assigned students are booked and charged the
entry's credits_cost.

  - A teacher overlap aborts the whole application (TeacherOverlap).
  - A student who cannot be booked (lesson full, schedule conflict, no
    account, insufficient balance) is skipped and reported as a warning.
    Each student is checked on locked rows before anything is written for
    them, so skipping never leaves partial writes behind.
  - If the template is already applied to that week, the earlier
    application is cleaned up first in the same transaction (bookings
    cancelled and refunded, lessons soft-deleted) and marked ``replaced``.

``dry_run=True`` runs exactly the same steps inside a transaction that is
always rolled back, and reports the result as ``preview``.

Locks are taken in this order: template row, prior application row,
teacher rows, prior lessons (ascending id), their bookings, then every
affected balance (ascending user id).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.clock import utcnow
from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    ApplicationNotFound,
    CreditAccountNotFound,
    DomainError,
    InsufficientBalance,
    InvalidApplicationState,
    InvalidTemplateEntry,
    InvalidTimeRange,
    InvalidWeekStart,
    LessonFull,
    ScheduleConflict,
    TeacherOverlap,
    TemplateNotFound,
    UserNotFound,
)
from tutorbook.core.logging import get_logger
from tutorbook.core.metrics import record_template_application
from tutorbook.db.session import rollback_only, transactional
from tutorbook.domain.capacity import can_enroll, find_overlapping, parse_kind, validate_capacity
from tutorbook.domain.events import TemplateApplicationRolledBack, TemplateApplied
from tutorbook.models.lesson import Lesson
from tutorbook.models.template import (
    APPLICATION_APPLIED,
    APPLICATION_REPLACED,
    APPLICATION_ROLLED_BACK,
    LessonTemplate,
    TemplateApplication,
    TemplateLessonEntry,
    TemplateLessonStudent,
)
from tutorbook.services import ledger_store
from tutorbook.services.booking_service import cancel_booking_in_tx, enroll_in_tx
from tutorbook.services.strategy_factory import get_notifier

logger = get_logger(__name__)
settings = get_settings()

STATUS_PREVIEW = "preview"
DEFAULT_LESSON_LENGTH = timedelta(hours=2)
REASON_ROLLBACK = "Template application rolled back"
REASON_REPLACED = "Template application replaced"
# any Monday; entries are compared on the same projected week
REFERENCE_MONDAY = date(2024, 1, 1)


@dataclass
class CreationStats:
    created_lessons: int = 0
    created_bookings: int = 0
    deducted_credits: int = 0


@dataclass
class CleanupStats:
    cancelled_bookings: int = 0
    refunded_credits: int = 0
    deleted_lessons: int = 0
    replaced_application_id: Optional[int] = None


@dataclass
class ApplicationResult:
    template_id: int
    week_start_date: date
    status: str
    application_id: Optional[int] = None
    creation: CreationStats = field(default_factory=CreationStats)
    cleanup: Optional[CleanupStats] = None
    warnings: list[dict[str, Any]] = field(default_factory=list)


# --- Template management ----------------------------------------------------


def _entry_end_time(start: time, end: Optional[time]) -> time:
    if end is not None:
        return end
    start_dt = datetime.combine(date.min, start)
    end_dt = start_dt + DEFAULT_LESSON_LENGTH
    if end_dt.date() != start_dt.date():
        raise InvalidTimeRange("Default two-hour lesson would run past midnight", start_time=str(start))
    return end_dt.time()


def validate_entry(entry: Any, index: int) -> time:
    """Check one entry and return its effective end time."""
    if not 0 <= entry.day_of_week <= 6:
        raise InvalidTemplateEntry("day_of_week must be between 0 (Monday) and 6", entry=index)
    end_time = _entry_end_time(entry.start_time, entry.end_time)
    if end_time <= entry.start_time:
        raise InvalidTimeRange(entry=index)
    validate_capacity(parse_kind(entry.kind, settings.GROUP_MIN_STUDENTS), entry.max_students)
    if not 0 <= entry.credits_cost <= settings.MAX_CREDIT_OPERATION:
        raise InvalidTemplateEntry(
            f"credits_cost must be between 0 and {settings.MAX_CREDIT_OPERATION}", entry=index
        )
    student_ids = list(entry.student_ids or [])
    if len(set(student_ids)) != len(student_ids):
        raise InvalidTemplateEntry("A student is listed twice", entry=index)
    if len(student_ids) > entry.max_students:
        raise InvalidTemplateEntry("More students than seats", entry=index)
    return end_time


@dataclass
class _EntrySlot:
    id: int
    teacher_id: int
    start_time: datetime
    end_time: datetime
    max_students: int = 0
    current_students: int = 0
    deleted_at: Optional[datetime] = None


def check_entry_overlaps(entries: list[Any], end_times: list[time]) -> None:
    """Reject two entries that put one teacher in two places in the same week."""
    slots: list[_EntrySlot] = []
    for index, (entry, end_time) in enumerate(zip(entries, end_times)):
        day = REFERENCE_MONDAY + timedelta(days=entry.day_of_week)
        start = datetime.combine(day, entry.start_time, tzinfo=timezone.utc)
        end = datetime.combine(day, end_time, tzinfo=timezone.utc)
        clash = find_overlapping(slots, entry.teacher_id, start, end)
        if clash is not None:
            raise InvalidTemplateEntry(
                "Overlaps another entry of the same teacher",
                entry=index,
                overlapping_entry=clash.id,
                teacher_id=entry.teacher_id,
            )
        slots.append(_EntrySlot(index, entry.teacher_id, start, end))


async def create_template(db: AsyncSession, created_by: int, payload: Any) -> LessonTemplate:
    end_times = [validate_entry(entry, i) for i, entry in enumerate(payload.entries)]
    check_entry_overlaps(payload.entries, end_times)

    async with transactional(db):
        user_ids = {e.teacher_id for e in payload.entries}
        for e in payload.entries:
            user_ids.update(e.student_ids or [])
        for user_id in sorted(user_ids):
            if await ledger_store.get_active_user(db, user_id) is None:
                raise UserNotFound(user_id)

        template = LessonTemplate(
            name=payload.name,
            description=payload.description,
            created_by=created_by,
            entries=[
                TemplateLessonEntry(
                    day_of_week=entry.day_of_week,
                    start_time=entry.start_time,
                    end_time=end_time,
                    teacher_id=entry.teacher_id,
                    subject=entry.subject,
                    kind=entry.kind,
                    max_students=entry.max_students,
                    credits_cost=entry.credits_cost,
                    color=entry.color,
                    students=[TemplateLessonStudent(student_id=sid) for sid in entry.student_ids or []],
                )
                for entry, end_time in zip(payload.entries, end_times)
            ],
        )
        db.add(template)
        await db.flush()

    logger.info("template_created", template_id=template.id, entries=len(template.entries))
    return template


async def get_template(db: AsyncSession, template_id: int) -> LessonTemplate:
    template = await db.get(LessonTemplate, template_id)
    if template is None:
        raise TemplateNotFound(template_id)
    return template


async def list_applications(
    db: AsyncSession, template_id: Optional[int] = None
) -> list[TemplateApplication]:
    query = select(TemplateApplication)
    if template_id is not None:
        query = query.where(TemplateApplication.template_id == template_id)
    result = await db.execute(
        query.order_by(TemplateApplication.applied_at.desc(), TemplateApplication.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# --- Application ------------------------------------------------------------


async def _lock_template(db: AsyncSession, template_id: int) -> Optional[LessonTemplate]:
    result = await db.execute(
        select(LessonTemplate)
        .where(LessonTemplate.id == template_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _lock_application(db: AsyncSession, application_id: int) -> Optional[TemplateApplication]:
    result = await db.execute(
        select(TemplateApplication)
        .where(TemplateApplication.id == application_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _find_applied(db: AsyncSession, template_id: int, week_start: date) -> Optional[TemplateApplication]:
    result = await db.execute(
        select(TemplateApplication)
        .where(
            TemplateApplication.template_id == template_id,
            TemplateApplication.week_start_date == week_start,
            TemplateApplication.status == APPLICATION_APPLIED,
        )
        .order_by(TemplateApplication.id)
        .limit(1)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _application_lessons(db: AsyncSession, application_id: int) -> list[Lesson]:
    result = await db.execute(
        select(Lesson)
        .where(Lesson.template_application_id == application_id, Lesson.deleted_at.is_(None))
        .order_by(Lesson.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _cleanup_application(
    db: AsyncSession,
    application: TemplateApplication,
    performed_by: int,
    new_status: str,
    reason: str,
) -> CleanupStats:
    """Cancel and refund the application's bookings, soft-delete its lessons, close it."""
    stats = CleanupStats()
    lessons = await _application_lessons(db, application.id)
    by_id = {lesson.id: lesson for lesson in lessons}
    bookings = await ledger_store.active_bookings_for_lessons(db, by_id)
    await ledger_store.lock_balances(db, (b.student_id for b in bookings))

    for booking in bookings:
        stats.refunded_credits += await cancel_booking_in_tx(
            db,
            booking,
            by_id[booking.lesson_id],
            performed_by=performed_by,
            record_history=False,
            reason=reason,
        )
        stats.cancelled_bookings += 1

    now = utcnow()
    for lesson in lessons:
        lesson.deleted_at = now
        stats.deleted_lessons += 1

    application.status = new_status
    application.rolled_back_at = now
    await db.flush()
    return stats


def lesson_window(week_start: date, entry: TemplateLessonEntry) -> tuple[datetime, datetime]:
    day = week_start + timedelta(days=entry.day_of_week)
    return (
        datetime.combine(day, entry.start_time, tzinfo=timezone.utc),
        datetime.combine(day, entry.end_time, tzinfo=timezone.utc),
    )


def _warning(entry: TemplateLessonEntry, student_id: int, error: DomainError) -> dict[str, Any]:
    return {
        "student_id": student_id,
        "entry_id": entry.id,
        "code": error.code.value,
        "message": error.message,
    }


async def _check_student(
    db: AsyncSession, lesson: Lesson, student_id: int
) -> Optional[DomainError]:
    if await ledger_store.get_active_user(db, student_id) is None:
        return UserNotFound(student_id)
    if not can_enroll(lesson):
        return LessonFull(lesson.id)
    conflict = await ledger_store.find_student_conflict(
        db, student_id, lesson.start_time, lesson.end_time
    )
    if conflict is not None:
        return ScheduleConflict(student_id, lesson.id, conflict.id)
    if lesson.credits_cost > 0:
        account = await ledger_store.lock_balance(db, student_id)
        if account is None:
            return CreditAccountNotFound(student_id)
        if account.balance < lesson.credits_cost:
            return InsufficientBalance(student_id, lesson.credits_cost, account.balance)
    return None


async def _apply_in_tx(
    db: AsyncSession,
    template_id: int,
    week_start: date,
    applied_by: int,
    dry_run: bool,
) -> ApplicationResult:
    template = await _lock_template(db, template_id)
    if template is None:
        raise TemplateNotFound(template_id)

    result = ApplicationResult(
        template_id=template_id,
        week_start_date=week_start,
        status=STATUS_PREVIEW if dry_run else APPLICATION_APPLIED,
    )

    prior = await _find_applied(db, template_id, week_start)

    for teacher_id in sorted({e.teacher_id for e in template.entries}):
        if await ledger_store.lock_user(db, teacher_id) is None:
            raise UserNotFound(teacher_id)

    if prior is not None:
        prior_lessons = await _application_lessons(db, prior.id)
        prior_bookings = await ledger_store.active_bookings_for_lessons(
            db, [lesson.id for lesson in prior_lessons]
        )
        student_ids = {b.student_id for b in prior_bookings}
    else:
        student_ids = set()
    for entry in template.entries:
        student_ids.update(s.student_id for s in entry.students)
    await ledger_store.lock_balances(db, student_ids)

    if prior is not None:
        result.cleanup = await _cleanup_application(
            db, prior, applied_by, APPLICATION_REPLACED, REASON_REPLACED
        )
        result.cleanup.replaced_application_id = prior.id

    application = TemplateApplication(
        template_id=template_id,
        applied_by_id=applied_by,
        week_start_date=week_start,
        status=APPLICATION_APPLIED,
        replaced_application_id=prior.id if prior is not None else None,
        applied_at=utcnow(),
        warnings=[],
    )
    db.add(application)
    await db.flush()

    reason = f"Lesson booking (template {template.name}, week {week_start.isoformat()})"
    stats = result.creation

    for entry in template.entries:
        start, end = lesson_window(week_start, entry)
        overlap = await ledger_store.find_teacher_overlap(db, entry.teacher_id, start, end)
        if overlap is not None:
            raise TeacherOverlap(entry.teacher_id, overlap.id)

        lesson = Lesson(
            teacher_id=entry.teacher_id,
            subject=entry.subject,
            kind=entry.kind,
            start_time=start,
            end_time=end,
            max_students=entry.max_students,
            current_students=0,
            credits_cost=entry.credits_cost,
            color=entry.color,
            created_by=applied_by,
            template_application_id=application.id,
        )
        db.add(lesson)
        await db.flush()
        stats.created_lessons += 1

        for assigned in entry.students:
            problem = await _check_student(db, lesson, assigned.student_id)
            if problem is not None:
                result.warnings.append(_warning(entry, assigned.student_id, problem))
                continue
            _, deducted = await enroll_in_tx(
                db,
                lesson,
                assigned.student_id,
                charge=True,
                booked_by=applied_by,
                reason=reason,
            )
            stats.created_bookings += 1
            stats.deducted_credits += deducted

    application.created_lessons = stats.created_lessons
    application.created_bookings = stats.created_bookings
    application.deducted_credits = stats.deducted_credits
    application.warnings = list(result.warnings)
    await db.flush()

    if not dry_run:
        result.application_id = application.id
    return result


async def apply_template(
    db: AsyncSession,
    template_id: int,
    week_start: date,
    applied_by: int,
    dry_run: bool = False,
) -> ApplicationResult:
    if week_start.weekday() != 0:
        raise InvalidWeekStart(week_start)

    scope = rollback_only(db) if dry_run else transactional(db)
    async with scope:
        result = await _apply_in_tx(db, template_id, week_start, applied_by, dry_run)

    record_template_application(result.status)
    logger.info(
        "template_previewed" if dry_run else "template_applied",
        template_id=template_id,
        week_start=week_start.isoformat(),
        application_id=result.application_id,
        created_lessons=result.creation.created_lessons,
        created_bookings=result.creation.created_bookings,
        deducted_credits=result.creation.deducted_credits,
        warnings=len(result.warnings),
        replaced_application_id=result.cleanup.replaced_application_id if result.cleanup else None,
    )
    if not dry_run:
        await get_notifier().publish(
            TemplateApplied(
                application_id=result.application_id,
                template_id=template_id,
                week_start_date=week_start.isoformat(),
                created_lessons=result.creation.created_lessons,
                created_bookings=result.creation.created_bookings,
                deducted_credits=result.creation.deducted_credits,
                replaced_application_id=(
                    result.cleanup.replaced_application_id if result.cleanup else None
                ),
            )
        )
    return result


async def rollback_application(
    db: AsyncSession, application_id: int, performed_by: int
) -> CleanupStats:
    async with transactional(db):
        application = await _lock_application(db, application_id)
        if application is None:
            raise ApplicationNotFound(application_id)
        if application.status != APPLICATION_APPLIED:
            raise InvalidApplicationState(application_id, application.status)
        stats = await _cleanup_application(
            db, application, performed_by, APPLICATION_ROLLED_BACK, REASON_ROLLBACK
        )

    record_template_application(APPLICATION_ROLLED_BACK)
    logger.info(
        "template_application_rolled_back",
        application_id=application_id,
        cancelled_bookings=stats.cancelled_bookings,
        refunded_credits=stats.refunded_credits,
        deleted_lessons=stats.deleted_lessons,
    )
    await get_notifier().publish(
        TemplateApplicationRolledBack(
            application_id=application_id,
            template_id=application.template_id,
            cancelled_bookings=stats.cancelled_bookings,
            refunded_credits=stats.refunded_credits,
            deleted_lessons=stats.deleted_lessons,
        )
    )
    return stats
