"""
Credit ledger engine: the only writer of CreditBalance.balance.

CONCURRENCY STRATEGY: Row Lock + Conditional Update
===================================================

Problem:
  Two deductions race on one balance. Both read balance=5, both subtract 5,
  both succeed. Result: balance -5, or a lost update.

Solution:
  1. SELECT ... FOR UPDATE on the balance row, so concurrent mutations of
     the same balance queue behind each other inside their transactions
  2. UPDATE credit_balances SET balance = balance - :amount
     WHERE user_id = :user_id AND balance >= :amount RETURNING balance
     (add/refund use WHERE balance + :amount <= MAX_BALANCE)
  3. rows_affected == 0 means the guard failed at write time ->
     InsufficientBalance / BalanceCeilingExceeded

  balance_before is derived from the value the UPDATE returned, so the log
  row always agrees with the stored balance even if the lock is unsupported
  by the backend.

The engine never opens or commits a transaction. Callers run it inside
``transactional(db)`` together with the rest of their writes, so a failure
anywhere rolls the balance change back with everything else.
"""

from typing import Optional

from sqlalchemy import select, update, func, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from tutorbook.core.clock import utcnow
from tutorbook.core.config import get_settings
from tutorbook.core.errors import (
    BalanceCeilingExceeded,
    CreditAccountNotFound,
    InsufficientBalance,
    InvalidCreditAmount,
)
from tutorbook.core.logging import get_logger
from tutorbook.models.credit import (
    CreditBalance,
    CreditTransaction,
    OP_ADD,
    OP_DEDUCT,
    OP_REFUND,
    signed,
)
from tutorbook.services.ledger_store import lock_balance

logger = get_logger(__name__)
settings = get_settings()

_LOG_EVENTS = {
    OP_ADD: "credits_added",
    OP_DEDUCT: "credits_deducted",
    OP_REFUND: "credits_refunded",
}


async def _apply(
    db: AsyncSession,
    user_id: int,
    operation_type: str,
    amount: int,
    reason: str,
    booking_id: Optional[int],
    performed_by: Optional[int],
) -> CreditTransaction:
    if amount <= 0:
        raise InvalidCreditAmount(amount, 1, settings.MAX_CREDIT_OPERATION)

    account = await lock_balance(db, user_id)
    if account is None:
        raise CreditAccountNotFound(user_id)

    stmt = update(CreditBalance).where(CreditBalance.user_id == user_id)
    if operation_type == OP_DEDUCT:
        stmt = stmt.where(CreditBalance.balance >= amount).values(
            balance=CreditBalance.balance - amount, updated_at=utcnow()
        )
    else:
        stmt = stmt.where(CreditBalance.balance + amount <= settings.MAX_BALANCE).values(
            balance=CreditBalance.balance + amount, updated_at=utcnow()
        )

    result = await db.execute(
        stmt.returning(CreditBalance.balance).execution_options(synchronize_session=False)
    )
    balance_after = result.scalar_one_or_none()

    if balance_after is None:
        logger.warning(
            "credit_operation_rejected",
            user_id=user_id,
            operation=operation_type,
            amount=amount,
            balance=account.balance,
        )
        if operation_type == OP_DEDUCT:
            raise InsufficientBalance(user_id, amount, account.balance)
        raise BalanceCeilingExceeded(user_id, amount, settings.MAX_BALANCE)

    set_committed_value(account, "balance", balance_after)

    transaction = CreditTransaction(
        user_id=user_id,
        amount=amount,
        operation_type=operation_type,
        reason=reason,
        performed_by=performed_by,
        booking_id=booking_id,
        balance_before=balance_after - signed(amount, operation_type),
        balance_after=balance_after,
        created_at=utcnow(),
    )
    db.add(transaction)
    await db.flush()

    logger.info(
        _LOG_EVENTS[operation_type],
        user_id=user_id,
        amount=amount,
        balance_before=transaction.balance_before,
        balance_after=balance_after,
        booking_id=booking_id,
        performed_by=performed_by,
    )
    return transaction


async def add_credits(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    performed_by: Optional[int] = None,
) -> CreditTransaction:
    return await _apply(db, user_id, OP_ADD, amount, reason, None, performed_by)


async def deduct_credits(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    booking_id: Optional[int] = None,
    performed_by: Optional[int] = None,
) -> CreditTransaction:
    return await _apply(db, user_id, OP_DEDUCT, amount, reason, booking_id, performed_by)


async def refund_credits(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    booking_id: Optional[int] = None,
    performed_by: Optional[int] = None,
) -> CreditTransaction:
    return await _apply(db, user_id, OP_REFUND, amount, reason, booking_id, performed_by)


async def deduction_for_booking(db: AsyncSession, booking_id: int) -> int:
    """Credits still held for a booking: its deductions minus its refunds."""
    result = await db.execute(
        select(
            func.coalesce(
                func.sum(
                    case(
                        (CreditTransaction.operation_type == OP_DEDUCT, CreditTransaction.amount),
                        (CreditTransaction.operation_type == OP_REFUND, -CreditTransaction.amount),
                        else_=0,
                    )
                ),
                0,
            )
        ).where(CreditTransaction.booking_id == booking_id)
    )
    return max(int(result.scalar_one()), 0)
