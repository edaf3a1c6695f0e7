"""
Pydantic schemas for lesson templates and their applications.
"""

from datetime import date, datetime, time
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class TemplateEntryCreate(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)  # 0 = Monday
    start_time: time
    end_time: Optional[time] = None  # defaults to start + 2h
    teacher_id: int
    subject: Optional[str] = Field(None, max_length=255)
    kind: Literal["individual", "group"] = "individual"
    max_students: int = Field(1, gt=0, le=100)
    credits_cost: int = Field(1, ge=0, le=100)
    color: str = Field("#3B82F6", pattern=r"^#[0-9A-Fa-f]{6}$")
    student_ids: list[int] = Field(default_factory=list)


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    entries: list[TemplateEntryCreate] = Field(default_factory=list)


class TemplateStudentResponse(BaseModel):
    student_id: int

    model_config = {"from_attributes": True}


class TemplateEntryResponse(BaseModel):
    id: int
    day_of_week: int
    start_time: time
    end_time: time
    teacher_id: int
    subject: Optional[str]
    kind: str
    max_students: int
    credits_cost: int
    color: str
    students: list[TemplateStudentResponse]

    model_config = {"from_attributes": True}


class TemplateResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    created_by: int
    entries: list[TemplateEntryResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class ApplyTemplateRequest(BaseModel):
    week_start_date: date
    dry_run: bool = False


class CreationStatsResponse(BaseModel):
    created_lessons: int
    created_bookings: int
    deducted_credits: int

    model_config = {"from_attributes": True}


class CleanupStatsResponse(BaseModel):
    cancelled_bookings: int
    refunded_credits: int
    deleted_lessons: int
    replaced_application_id: Optional[int] = None

    model_config = {"from_attributes": True}


class ApplicationResultResponse(BaseModel):
    template_id: int
    week_start_date: date
    status: str
    application_id: Optional[int]
    creation: CreationStatsResponse
    cleanup: Optional[CleanupStatsResponse]
    warnings: list[dict[str, Any]]

    model_config = {"from_attributes": True}


class TemplateApplicationResponse(BaseModel):
    id: int
    template_id: int
    applied_by_id: int
    week_start_date: date
    status: str
    created_lessons: int
    created_bookings: int
    deducted_credits: int
    warnings: list[dict[str, Any]]
    replaced_application_id: Optional[int]
    applied_at: datetime
    rolled_back_at: Optional[datetime]

    model_config = {"from_attributes": True}
