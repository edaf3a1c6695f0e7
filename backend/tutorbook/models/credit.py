"""
Credit balances and the append-only transaction log.

Key design decisions:
- One CreditBalance row per user; the CHECK constraint is a structural
  backstop, the ledger engine is the only writer
- CreditTransaction.amount is always positive; the sign comes from
  operation_type (add/refund credit the balance, deduct debits it)
- (user_id, created_at, id) orders a user's chain for reconciliation
"""

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint, Index

from tutorbook.core.clock import utcnow
from tutorbook.db.base import Base, TimestampMixin, UTCDateTime

OP_ADD = "add"
OP_DEDUCT = "deduct"
OP_REFUND = "refund"
OPERATION_TYPES = (OP_ADD, OP_DEDUCT, OP_REFUND)


def signed(amount: int, operation_type: str) -> int:
    return -amount if operation_type == OP_DEDUCT else amount


class CreditBalance(Base, TimestampMixin):
    __tablename__ = "credit_balances"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    balance = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="check_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<CreditBalance(user={self.user_id}, balance={self.balance})>"


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    operation_type = Column(String(10), nullable=False)
    reason = Column(String(500), nullable=False)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_transaction_amount_positive"),
        CheckConstraint(
            "operation_type IN ('add', 'deduct', 'refund')",
            name="check_transaction_operation_type",
        ),
        CheckConstraint("balance_before >= 0", name="check_transaction_before_non_negative"),
        CheckConstraint("balance_after >= 0", name="check_transaction_after_non_negative"),
        Index("ix_credit_transactions_user_created", "user_id", "created_at", "id"),
    )

    @property
    def signed_amount(self) -> int:
        return signed(self.amount, self.operation_type)

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, user={self.user_id}, "
            f"{self.operation_type} {self.amount}, {self.balance_before}->{self.balance_after})>"
        )
