"""
Lesson endpoints with Redis caching on list operations.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.logging import get_logger
from tutorbook.core.security import CurrentUser, get_current_user, require_admin
from tutorbook.db.session import get_db
from tutorbook.schemas.lesson import (
    LessonCreate,
    LessonDeleteResponse,
    LessonListResponse,
    LessonResponse,
)
from tutorbook.services.cache_service import (
    get_cached_lessons,
    invalidate_lesson_cache,
    set_cached_lessons,
)
from tutorbook.services.lesson_service import create_lesson, delete_lesson, get_lesson, list_lessons

logger = get_logger(__name__)
router = APIRouter(prefix="/lessons", tags=["Lessons"])


@router.post("/", response_model=LessonResponse, status_code=status.HTTP_201_CREATED)
async def create_lesson_endpoint(
    lesson_data: LessonCreate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Schedule a lesson. Admin only."""
    lesson = await create_lesson(db, lesson_data, admin.id)
    await invalidate_lesson_cache()
    return lesson


@router.get("/", response_model=LessonListResponse)
async def list_lessons_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    teacher_id: Optional[int] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    List lessons with pagination.
    Results are cached in Redis and invalidated on every seat or schedule change.
    """
    cached = await get_cached_lessons(page, page_size, upcoming_only, teacher_id)
    if cached:
        logger.info("lessons_list_cache_hit", page=page)
        cached["cached"] = True
        return LessonListResponse(**cached)

    lessons, total = await list_lessons(db, page, page_size, upcoming_only, teacher_id)

    response_data = {
        "lessons": [LessonResponse.model_validate(lesson).model_dump(mode="json") for lesson in lessons],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_lessons(page, page_size, upcoming_only, teacher_id, response_data)

    return LessonListResponse(**response_data)


@router.get("/{lesson_id}", response_model=LessonResponse)
async def get_lesson_endpoint(
    lesson_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a single lesson. Not cached (needs real-time seat counts)."""
    return await get_lesson(db, lesson_id)


@router.delete("/{lesson_id}", response_model=LessonDeleteResponse)
async def delete_lesson_endpoint(
    lesson_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Soft-delete a lesson and refund its active bookings. Admin only."""
    deletion = await delete_lesson(db, lesson_id, admin.id)
    await invalidate_lesson_cache()
    return LessonDeleteResponse(
        lesson_id=deletion.lesson_id,
        cancelled_bookings=deletion.cancelled_bookings,
        refunded_credits=deletion.refunded_credits,
    )
