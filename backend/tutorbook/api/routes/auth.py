"""
Self-service account endpoints: student registration and login.

Teachers and admins are created by an admin through /users.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import get_settings
from tutorbook.db.session import get_db
from tutorbook.schemas.user import RegisteredUserResponse, Token, UserCreate, UserLogin, UserResponse
from tutorbook.services.auth_service import authenticate_user, register_user
from tutorbook.services.credit_service import get_balance

router = APIRouter(prefix="/auth", tags=["Authentication"])
settings = get_settings()


@router.post("/register", response_model=RegisteredUserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a student account. The credit balance starts at zero."""
    user = await register_user(db, user_data)
    account = await get_balance(db, user.id)
    return RegisteredUserResponse(
        **UserResponse.model_validate(user).model_dump(),
        credit_balance=account.balance,
    )


@router.post("/login", response_model=Token)
async def login(login_data: UserLogin, db: AsyncSession = Depends(get_db)):
    token, user = await authenticate_user(db, login_data)
    return Token(
        access_token=token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user_id=user.id,
        role=user.role,
    )
