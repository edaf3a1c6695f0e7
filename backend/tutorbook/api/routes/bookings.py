"""
Booking endpoints with concurrency-safe seat reservation.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.security import CurrentUser, get_current_user
from tutorbook.db.session import get_db
from tutorbook.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from tutorbook.services.booking_service import (
    cancel_booking,
    create_booking,
    list_cancelled_lesson_ids,
    list_student_bookings,
)
from tutorbook.services.cache_service import invalidate_lesson_cache

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Book a seat in a lesson.

    Students book for themselves and pay the lesson's credits. Admins may
    pass student_id to book on a student's behalf without a deduction.
    """
    student_id = current_user.id
    if current_user.is_admin and booking_data.student_id is not None:
        student_id = booking_data.student_id

    booking = await create_booking(
        db,
        student_id,
        booking_data.lesson_id,
        is_admin=current_user.is_admin,
        performed_by=current_user.id,
    )
    await invalidate_lesson_cache()
    return booking


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking. Cancelling twice reports already_cancelled."""
    result = await cancel_booking(db, booking_id, current_user.id, is_admin=current_user.is_admin)
    if result.status == "success":
        await invalidate_lesson_cache()
    return BookingCancelResponse(
        status=result.status,
        booking_id=booking_id,
        refunded_credits=result.refunded_credits,
    )


@router.get("/", response_model=list[BookingResponse])
async def list_my_bookings(
    active_only: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated student."""
    return await list_student_bookings(db, current_user.id, active_only=active_only)


@router.get("/cancelled-lessons", response_model=list[int])
async def list_my_cancelled_lessons(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Lessons the authenticated student cancelled and can no longer book."""
    return await list_cancelled_lesson_ids(db, current_user.id)
