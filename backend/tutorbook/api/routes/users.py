"""
Account management endpoints.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.errors import UserNotFound
from tutorbook.core.security import CurrentUser, get_current_user, require_admin
from tutorbook.db.session import get_db
from tutorbook.models.user import User
from tutorbook.schemas.user import AdminUserCreate, UserResponse
from tutorbook.services.auth_service import create_user_as_admin

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user_endpoint(
    user_data: AdminUserCreate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create an account of any role. Admin only."""
    return await create_user_as_admin(db, user_data)


@router.get("/me", response_model=UserResponse)
async def read_me(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await db.get(User, current_user.id)
    if user is None:
        raise UserNotFound(current_user.id)
    return user
