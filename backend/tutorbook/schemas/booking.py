"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class BookingCreate(BaseModel):
    lesson_id: int
    # Admins book on behalf of a student; ignored for students
    student_id: Optional[int] = None


class BookingResponse(BaseModel):
    id: int
    student_id: int
    lesson_id: int
    status: str
    booked_by: Optional[int]
    booked_at: datetime
    cancelled_at: Optional[datetime]

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    status: Literal["success", "already_cancelled"]
    booking_id: int
    refunded_credits: int = 0
