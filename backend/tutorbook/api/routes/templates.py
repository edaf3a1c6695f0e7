"""
Lesson template endpoints. Admin only.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.security import CurrentUser, require_admin
from tutorbook.db.session import get_db
from tutorbook.schemas.template import (
    ApplicationResultResponse,
    ApplyTemplateRequest,
    CleanupStatsResponse,
    TemplateApplicationResponse,
    TemplateCreate,
    TemplateResponse,
)
from tutorbook.services.cache_service import invalidate_lesson_cache
from tutorbook.services.template_service import (
    apply_template,
    create_template,
    get_template,
    list_applications,
    rollback_application,
)

router = APIRouter(prefix="/templates", tags=["Templates"])


@router.post("/", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template_endpoint(
    template_data: TemplateCreate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await create_template(db, admin.id, template_data)


@router.get("/applications", response_model=list[TemplateApplicationResponse])
async def list_applications_endpoint(
    template_id: Optional[int] = None,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_applications(db, template_id)


@router.post("/applications/{application_id}/rollback", response_model=CleanupStatsResponse)
async def rollback_application_endpoint(
    application_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Cancel and refund an application's bookings and delete its lessons."""
    stats = await rollback_application(db, application_id, admin.id)
    await invalidate_lesson_cache()
    return CleanupStatsResponse.model_validate(stats)


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template_endpoint(
    template_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_template(db, template_id)


@router.post("/{template_id}/apply", response_model=ApplicationResultResponse)
async def apply_template_endpoint(
    template_id: int,
    request: ApplyTemplateRequest,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Expand the template into lessons and bookings for one week.
    With dry_run the result is computed and reported as a preview only.
    """
    result = await apply_template(
        db, template_id, request.week_start_date, admin.id, dry_run=request.dry_run
    )
    if not request.dry_run:
        await invalidate_lesson_cache()
    return ApplicationResultResponse.model_validate(result)
