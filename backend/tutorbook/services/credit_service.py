"""
Public credit operations: validated add/deduct/refund, balance and history
queries, and ledger reconciliation.

Request validation (amount bounds, reason) happens here, before any
transaction opens. Each mutation runs the ledger engine inside its own unit
of work and announces ``CreditsChanged`` once committed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    CreditAccountNotFound,
    InvalidCreditAmount,
    InvalidReason,
    UserNotFound,
)
from tutorbook.core.logging import get_logger
from tutorbook.core.metrics import record_credit_operation
from tutorbook.db.base import as_utc
from tutorbook.db.session import transactional
from tutorbook.domain.events import CreditsChanged
from tutorbook.models.credit import CreditBalance, CreditTransaction, OPERATION_TYPES, signed
from tutorbook.services import credit_ledger
from tutorbook.services.ledger_store import get_active_user
from tutorbook.services.strategy_factory import get_notifier

logger = get_logger(__name__)
settings = get_settings()


def validate_operation(amount: int, reason: str) -> str:
    if not settings.MIN_CREDIT_OPERATION <= amount <= settings.MAX_CREDIT_OPERATION:
        raise InvalidCreditAmount(
            amount, settings.MIN_CREDIT_OPERATION, settings.MAX_CREDIT_OPERATION
        )
    reason = (reason or "").strip()
    if not reason:
        raise InvalidReason()
    return reason


async def _run(operation, db: AsyncSession, user_id: int, amount: int, reason: str, **kwargs) -> CreditTransaction:
    reason = validate_operation(amount, reason)

    async with transactional(db):
        if await get_active_user(db, user_id) is None:
            raise UserNotFound(user_id)
        transaction = await operation(db, user_id, amount, reason, **kwargs)

    record_credit_operation(transaction.operation_type, amount)
    await get_notifier().publish(
        CreditsChanged(
            transaction_id=transaction.id,
            user_id=user_id,
            operation_type=transaction.operation_type,
            amount=amount,
            balance_after=transaction.balance_after,
            performed_by=transaction.performed_by,
        )
    )
    return transaction


async def add_user_credits(
    db: AsyncSession, user_id: int, amount: int, reason: str, performed_by: Optional[int] = None
) -> CreditTransaction:
    return await _run(credit_ledger.add_credits, db, user_id, amount, reason, performed_by=performed_by)


async def deduct_user_credits(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    performed_by: Optional[int] = None,
    booking_id: Optional[int] = None,
) -> CreditTransaction:
    return await _run(
        credit_ledger.deduct_credits,
        db,
        user_id,
        amount,
        reason,
        booking_id=booking_id,
        performed_by=performed_by,
    )


async def refund_user_credits(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    performed_by: Optional[int] = None,
    booking_id: Optional[int] = None,
) -> CreditTransaction:
    return await _run(
        credit_ledger.refund_credits,
        db,
        user_id,
        amount,
        reason,
        booking_id=booking_id,
        performed_by=performed_by,
    )


async def get_balance(db: AsyncSession, user_id: int) -> CreditBalance:
    result = await db.execute(
        select(CreditBalance)
        .where(CreditBalance.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise CreditAccountNotFound(user_id)
    return account


async def get_transaction_history(
    db: AsyncSession,
    user_id: Optional[int] = None,
    operation_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[CreditTransaction]:
    """Newest first. Limit defaults to 50 and is capped at 500."""
    if limit is None or limit <= 0:
        limit = settings.TRANSACTION_HISTORY_DEFAULT_LIMIT
    limit = min(limit, settings.TRANSACTION_HISTORY_MAX_LIMIT)

    query = select(CreditTransaction)
    if user_id is not None:
        query = query.where(CreditTransaction.user_id == user_id)
    if operation_type is not None and operation_type in OPERATION_TYPES:
        query = query.where(CreditTransaction.operation_type == operation_type)
    if start is not None:
        query = query.where(CreditTransaction.created_at >= as_utc(start))
    if end is not None:
        query = query.where(CreditTransaction.created_at < as_utc(end))

    result = await db.execute(
        query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset(max(offset, 0))
        .limit(limit)
    )
    return list(result.scalars().all())


@dataclass
class LedgerReport:
    user_id: int
    stored_balance: int
    computed_balance: int
    transaction_count: int
    issues: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.issues


async def reconcile_balance(db: AsyncSession, user_id: int) -> LedgerReport:
    """
    Replay a user's transaction chain and compare it with the stored balance.

    Checks every row's arithmetic, that each row starts where the previous
    one ended, and that the chain ends at CreditBalance.balance. An account
    with no transactions must hold 0.
    """
    account = await get_balance(db, user_id)
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at, CreditTransaction.id)
    )
    chain = list(result.scalars().all())

    issues: list[str] = []
    running = 0
    for row in chain:
        if row.balance_before != running:
            issues.append(
                f"transaction {row.id}: balance_before {row.balance_before} != previous balance_after {running}"
            )
        expected_after = row.balance_before + signed(row.amount, row.operation_type)
        if row.balance_after != expected_after:
            issues.append(
                f"transaction {row.id}: balance_after {row.balance_after} != {expected_after}"
            )
        running = row.balance_after

    if running != account.balance:
        issues.append(f"chain ends at {running} but stored balance is {account.balance}")

    report = LedgerReport(
        user_id=user_id,
        stored_balance=account.balance,
        computed_balance=running,
        transaction_count=len(chain),
        issues=issues,
    )
    if issues:
        logger.warning("ledger_inconsistent", user_id=user_id, issues=len(issues))
    return report
