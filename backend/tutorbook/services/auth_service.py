"""
Authentication service handling registration, admin-created accounts and login.

Every account gets its CreditBalance row at creation, so the ledger engine
never has to create one lazily.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from tutorbook.core.errors import EmailAlreadyRegistered
from tutorbook.core.logging import get_logger
from tutorbook.core.security import hash_password, verify_password, create_access_token
from tutorbook.db.session import transactional
from tutorbook.models.credit import CreditBalance
from tutorbook.models.user import User, ROLE_STUDENT
from tutorbook.schemas.user import AdminUserCreate, UserCreate, UserLogin

logger = get_logger(__name__)


async def create_user(db: AsyncSession, email: str, full_name: str, password: str, role: str) -> User:
    """
    Create an account of any role with a zero balance.
    Raises EmailAlreadyRegistered if the email is taken.
    """
    email = email.lower()
    async with transactional(db):
        result = await db.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none():
            logger.warning("registration_failed", reason="email_exists", email=email)
            raise EmailAlreadyRegistered()

        user = User(
            email=email,
            full_name=full_name,
            hashed_password=hash_password(password),
            role=role,
        )
        db.add(user)
        await db.flush()
        db.add(CreditBalance(user_id=user.id, balance=0))
        await db.flush()

    logger.info("user_registered", user_id=user.id, role=role)
    return user


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """Self-service registration always creates a student."""
    return await create_user(db, user_data.email, user_data.full_name, user_data.password, ROLE_STUDENT)


async def create_user_as_admin(db: AsyncSession, user_data: AdminUserCreate) -> User:
    return await create_user(db, user_data.email, user_data.full_name, user_data.password, user_data.role)


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> tuple[str, User]:
    """
    Check credentials and return a JWT carrying the account id and role,
    together with the account. Raises 401 if credentials are invalid.
    """
    result = await db.execute(
        select(User).where(User.email == login_data.email.lower(), User.deleted_at.is_(None))
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    logger.info("user_logged_in", user_id=user.id, role=user.role)
    return token, user
