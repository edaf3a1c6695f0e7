"""
Credit balance and ledger endpoints.

Students read their own balance and history. Admins move credits and audit
any account.
"""

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.security import CurrentUser, get_current_user, require_admin
from tutorbook.db.session import get_db
from tutorbook.schemas.credit import (
    BalanceResponse,
    CreditOperation,
    LedgerReportResponse,
    TransactionResponse,
)
from tutorbook.services.credit_service import (
    add_user_credits,
    deduct_user_credits,
    get_balance,
    get_transaction_history,
    reconcile_balance,
    refund_user_credits,
)

router = APIRouter(prefix="/credits", tags=["Credits"])

OperationType = Literal["add", "deduct", "refund"]


@router.get("/balance", response_model=BalanceResponse)
async def my_balance(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_balance(db, current_user.id)


@router.get("/history", response_model=list[TransactionResponse])
async def my_history(
    operation_type: Optional[OperationType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_transaction_history(
        db, current_user.id, operation_type, start, end, limit, offset
    )


@router.post("/add", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def add_credits_endpoint(
    operation: CreditOperation,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await add_user_credits(db, operation.user_id, operation.amount, operation.reason, admin.id)


@router.post("/deduct", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def deduct_credits_endpoint(
    operation: CreditOperation,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await deduct_user_credits(db, operation.user_id, operation.amount, operation.reason, admin.id)


@router.post("/refund", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def refund_credits_endpoint(
    operation: CreditOperation,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await refund_user_credits(db, operation.user_id, operation.amount, operation.reason, admin.id)


@router.get("/users/{user_id}/balance", response_model=BalanceResponse)
async def user_balance(
    user_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_balance(db, user_id)


@router.get("/transactions", response_model=list[TransactionResponse])
async def all_transactions(
    user_id: Optional[int] = None,
    operation_type: Optional[OperationType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_transaction_history(db, user_id, operation_type, start, end, limit, offset)


@router.get("/users/{user_id}/reconcile", response_model=LedgerReportResponse)
async def reconcile_endpoint(
    user_id: int,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Replay the user's transaction chain against the stored balance."""
    report = await reconcile_balance(db, user_id)
    return LedgerReportResponse.model_validate(report)
