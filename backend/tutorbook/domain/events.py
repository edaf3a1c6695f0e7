"""Domain events emitted after a unit of work commits."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from tutorbook.core.clock import utcnow


@dataclass
class BookingCreated:
    """Fired after a booking is committed."""

    booking_id: int
    student_id: int
    lesson_id: int
    credits_deducted: int
    booked_by: Optional[int] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    booking_id: int
    student_id: int
    lesson_id: int
    refunded_credits: int
    cancelled_by: Optional[int] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SwapPerformed:
    swap_id: int
    student_id: int
    old_lesson_id: int
    new_lesson_id: int
    old_booking_id: int
    new_booking_id: int
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CreditsChanged:
    transaction_id: int
    user_id: int
    operation_type: str
    amount: int
    balance_after: int
    performed_by: Optional[int] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TemplateApplied:
    application_id: int
    template_id: int
    week_start_date: str
    created_lessons: int
    created_bookings: int
    deducted_credits: int
    replaced_application_id: Optional[int] = None
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TemplateApplicationRolledBack:
    application_id: int
    template_id: int
    cancelled_bookings: int
    refunded_credits: int
    deleted_lessons: int
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
