"""
Lesson swap endpoints.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.security import CurrentUser, get_current_user
from tutorbook.db.session import get_db
from tutorbook.schemas.swap import SwapRequest, SwapResponse, SwapValidationResponse
from tutorbook.services.cache_service import invalidate_lesson_cache
from tutorbook.services.swap_service import list_swaps, perform_swap, validate_swap

router = APIRouter(prefix="/swaps", tags=["Swaps"])


@router.post("/", response_model=SwapResponse, status_code=status.HTTP_201_CREATED)
async def perform_swap_endpoint(
    swap_data: SwapRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Move the student's booking from one lesson to another atomically."""
    swap = await perform_swap(db, current_user.id, swap_data.old_lesson_id, swap_data.new_lesson_id)
    await invalidate_lesson_cache()
    return swap


@router.post("/validate", response_model=SwapValidationResponse)
async def validate_swap_endpoint(
    swap_data: SwapRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Preview a swap: list every rule it would violate, change nothing."""
    return await validate_swap(db, current_user.id, swap_data.old_lesson_id, swap_data.new_lesson_id)


@router.get("/", response_model=list[SwapResponse])
async def list_my_swaps(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_swaps(db, current_user.id)
