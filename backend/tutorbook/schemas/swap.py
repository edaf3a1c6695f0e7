"""
Pydantic schemas for lesson swaps.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class SwapRequest(BaseModel):
    old_lesson_id: int
    new_lesson_id: int


class SwapResponse(BaseModel):
    id: int
    student_id: int
    old_lesson_id: int
    new_lesson_id: int
    old_booking_id: int
    new_booking_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class SwapViolation(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}


class SwapValidationResponse(BaseModel):
    valid: bool
    violations: list[SwapViolation]

    model_config = {"from_attributes": True}
