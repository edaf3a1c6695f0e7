"""
Pydantic schemas for credit balances, ledger operations and reconciliation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CreditOperation(BaseModel):
    user_id: int
    amount: int = Field(..., gt=0, le=100)
    reason: str = Field(..., min_length=1, max_length=500)


class BalanceResponse(BaseModel):
    user_id: int
    balance: int
    updated_at: datetime

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    amount: int
    operation_type: str
    reason: str
    performed_by: Optional[int]
    booking_id: Optional[int]
    balance_before: int
    balance_after: int
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerReportResponse(BaseModel):
    user_id: int
    stored_balance: int
    computed_balance: int
    transaction_count: int
    consistent: bool
    issues: list[str]

    model_config = {"from_attributes": True}
