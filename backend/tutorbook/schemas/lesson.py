"""
Pydantic schemas for lesson-related request/response validation.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class LessonCreate(BaseModel):
    teacher_id: int
    subject: Optional[str] = Field(None, max_length=255)
    kind: Literal["individual", "group"] = "individual"
    start_time: datetime
    end_time: datetime
    max_students: int = Field(1, gt=0, le=100)
    credits_cost: int = Field(1, ge=0, le=100)
    color: str = Field("#3B82F6", pattern=r"^#[0-9A-Fa-f]{6}$")
    student_ids: list[int] = Field(default_factory=list)


class LessonResponse(BaseModel):
    id: int
    teacher_id: int
    subject: Optional[str]
    kind: str
    start_time: datetime
    end_time: datetime
    max_students: int
    current_students: int
    credits_cost: int
    color: str
    template_application_id: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class LessonListResponse(BaseModel):
    lessons: list[LessonResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class LessonDeleteResponse(BaseModel):
    lesson_id: int
    cancelled_bookings: int
    refunded_credits: int
