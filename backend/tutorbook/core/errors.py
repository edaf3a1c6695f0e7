"""
Typed domain errors for the booking and credit ledger core.

Every error carries a stable ``ErrorCode``, a user-safe message and a
``details`` dict naming the offending entities. The API layer renders them as
``{"code", "message", "details"}`` with the class's ``status_code``.

Families:
  - ValidationError (400): caller-fixable input, raised before a transaction opens
  - NotFoundError (404)
  - ForbiddenError (403)
  - ConflictError (409): business invariant violations, including lost races
  - StoreUnavailable (503): infrastructure failure, safe to retry
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    # Validation
    INVALID_CREDIT_AMOUNT = "INVALID_CREDIT_AMOUNT"
    INVALID_REASON = "INVALID_REASON"
    INVALID_TIME_RANGE = "INVALID_TIME_RANGE"
    INVALID_LESSON_KIND = "INVALID_LESSON_KIND"
    INVALID_WEEK_START = "INVALID_WEEK_START"
    INVALID_TEMPLATE_ENTRY = "INVALID_TEMPLATE_ENTRY"
    LESSON_IN_PAST = "LESSON_IN_PAST"
    CANCELLATION_WINDOW_CLOSED = "CANCELLATION_WINDOW_CLOSED"

    # Not found
    USER_NOT_FOUND = "USER_NOT_FOUND"
    LESSON_NOT_FOUND = "LESSON_NOT_FOUND"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    CREDIT_ACCOUNT_NOT_FOUND = "CREDIT_ACCOUNT_NOT_FOUND"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    APPLICATION_NOT_FOUND = "APPLICATION_NOT_FOUND"
    NO_ACTIVE_BOOKING = "NO_ACTIVE_BOOKING"

    # Permission
    NOT_BOOKING_OWNER = "NOT_BOOKING_OWNER"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Invariant violations
    LESSON_FULL = "LESSON_FULL"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    BALANCE_CEILING_EXCEEDED = "BALANCE_CEILING_EXCEEDED"
    SCHEDULE_CONFLICT = "SCHEDULE_CONFLICT"
    TEACHER_OVERLAP = "TEACHER_OVERLAP"
    ALREADY_CANCELLED_LESSON = "ALREADY_CANCELLED_LESSON"
    DUPLICATE_ACTIVE_BOOKING = "DUPLICATE_ACTIVE_BOOKING"
    SAME_LESSON_SWAP = "SAME_LESSON_SWAP"
    INVALID_APPLICATION_STATE = "INVALID_APPLICATION_STATE"
    EMAIL_ALREADY_REGISTERED = "EMAIL_ALREADY_REGISTERED"

    # Infrastructure
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class DomainError(Exception):
    """Base domain error with code, user-safe message and entity details."""

    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainError):
    status_code = 400


class NotFoundError(DomainError):
    status_code = 404


class ForbiddenError(DomainError):
    status_code = 403


class ConflictError(DomainError):
    status_code = 409


# --- Validation -------------------------------------------------------------


class InvalidCreditAmount(ValidationError):
    def __init__(self, amount: int, minimum: int, maximum: int) -> None:
        super().__init__(
            ErrorCode.INVALID_CREDIT_AMOUNT,
            f"Amount must be between {minimum} and {maximum} credits",
            {"amount": amount, "min": minimum, "max": maximum},
        )


class InvalidReason(ValidationError):
    def __init__(self) -> None:
        super().__init__(ErrorCode.INVALID_REASON, "A reason is required")


class InvalidTimeRange(ValidationError):
    def __init__(self, message: str = "End time must be after start time", **details: Any) -> None:
        super().__init__(ErrorCode.INVALID_TIME_RANGE, message, details)


class InvalidLessonKind(ValidationError):
    def __init__(self, kind: str, max_students: int, message: str) -> None:
        super().__init__(
            ErrorCode.INVALID_LESSON_KIND,
            message,
            {"kind": kind, "max_students": max_students},
        )


class InvalidWeekStart(ValidationError):
    def __init__(self, week_start: Any) -> None:
        super().__init__(
            ErrorCode.INVALID_WEEK_START,
            "Week start date must be a Monday",
            {"week_start": str(week_start)},
        )


class InvalidTemplateEntry(ValidationError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(ErrorCode.INVALID_TEMPLATE_ENTRY, message, details)


class LessonInPast(ValidationError):
    def __init__(self, lesson_id: int) -> None:
        super().__init__(
            ErrorCode.LESSON_IN_PAST,
            "Cannot book a lesson that has already started",
            {"lesson_id": lesson_id},
        )


class CancellationWindowClosed(ValidationError):
    def __init__(self, lesson_id: int, cutoff_hours: int) -> None:
        super().__init__(
            ErrorCode.CANCELLATION_WINDOW_CLOSED,
            f"Bookings cannot be cancelled less than {cutoff_hours} hours before the lesson",
            {"lesson_id": lesson_id, "cutoff_hours": cutoff_hours},
        )


# --- Not found --------------------------------------------------------------


class UserNotFound(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(ErrorCode.USER_NOT_FOUND, "User not found", {"user_id": user_id})


class LessonNotFound(NotFoundError):
    def __init__(self, lesson_id: int) -> None:
        super().__init__(ErrorCode.LESSON_NOT_FOUND, "Lesson not found", {"lesson_id": lesson_id})


class BookingNotFound(NotFoundError):
    def __init__(self, booking_id: int) -> None:
        super().__init__(
            ErrorCode.BOOKING_NOT_FOUND, "Booking not found", {"booking_id": booking_id}
        )


class CreditAccountNotFound(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(
            ErrorCode.CREDIT_ACCOUNT_NOT_FOUND,
            "Credit account not found",
            {"user_id": user_id},
        )


class TemplateNotFound(NotFoundError):
    def __init__(self, template_id: int) -> None:
        super().__init__(
            ErrorCode.TEMPLATE_NOT_FOUND, "Template not found", {"template_id": template_id}
        )


class ApplicationNotFound(NotFoundError):
    def __init__(self, application_id: int) -> None:
        super().__init__(
            ErrorCode.APPLICATION_NOT_FOUND,
            "Template application not found",
            {"application_id": application_id},
        )


class NoActiveBooking(NotFoundError):
    def __init__(self, student_id: int, lesson_id: int) -> None:
        super().__init__(
            ErrorCode.NO_ACTIVE_BOOKING,
            "Student has no active booking for this lesson",
            {"student_id": student_id, "lesson_id": lesson_id},
        )


# --- Permission -------------------------------------------------------------


class NotBookingOwner(ForbiddenError):
    def __init__(self, booking_id: int) -> None:
        super().__init__(
            ErrorCode.NOT_BOOKING_OWNER,
            "Booking belongs to another student",
            {"booking_id": booking_id},
        )


class PermissionDenied(ForbiddenError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(ErrorCode.PERMISSION_DENIED, message)


# --- Invariant violations ---------------------------------------------------


class LessonFull(ConflictError):
    def __init__(self, lesson_id: int) -> None:
        super().__init__(ErrorCode.LESSON_FULL, "Lesson is full", {"lesson_id": lesson_id})


class InsufficientBalance(ConflictError):
    def __init__(self, user_id: int, required: int, available: Optional[int] = None) -> None:
        details: dict[str, Any] = {"user_id": user_id, "required": required}
        if available is not None:
            details["available"] = available
        super().__init__(ErrorCode.INSUFFICIENT_BALANCE, "Insufficient credit balance", details)


class BalanceCeilingExceeded(ConflictError):
    def __init__(self, user_id: int, amount: int, ceiling: int) -> None:
        super().__init__(
            ErrorCode.BALANCE_CEILING_EXCEEDED,
            f"Balance cannot exceed {ceiling} credits",
            {"user_id": user_id, "amount": amount, "ceiling": ceiling},
        )


class ScheduleConflict(ConflictError):
    def __init__(self, student_id: int, lesson_id: int, conflicting_lesson_id: int) -> None:
        super().__init__(
            ErrorCode.SCHEDULE_CONFLICT,
            "Student already has a booking at this time",
            {
                "student_id": student_id,
                "lesson_id": lesson_id,
                "conflicting_lesson_id": conflicting_lesson_id,
            },
        )


class TeacherOverlap(ConflictError):
    def __init__(self, teacher_id: int, conflicting_lesson_id: Optional[int] = None) -> None:
        details: dict[str, Any] = {"teacher_id": teacher_id}
        if conflicting_lesson_id is not None:
            details["conflicting_lesson_id"] = conflicting_lesson_id
        super().__init__(
            ErrorCode.TEACHER_OVERLAP,
            "Teacher already has a lesson at this time",
            details,
        )


class AlreadyCancelledLesson(ConflictError):
    def __init__(self, student_id: int, lesson_id: int) -> None:
        super().__init__(
            ErrorCode.ALREADY_CANCELLED_LESSON,
            "Student cancelled this lesson before and cannot book it again",
            {"student_id": student_id, "lesson_id": lesson_id},
        )


class DuplicateActiveBooking(ConflictError):
    def __init__(self, student_id: int, lesson_id: int) -> None:
        super().__init__(
            ErrorCode.DUPLICATE_ACTIVE_BOOKING,
            "Student already has an active booking for this lesson",
            {"student_id": student_id, "lesson_id": lesson_id},
        )


class SameLessonSwap(ConflictError):
    def __init__(self, lesson_id: int) -> None:
        super().__init__(
            ErrorCode.SAME_LESSON_SWAP,
            "Cannot swap a lesson with itself",
            {"lesson_id": lesson_id},
        )


class InvalidApplicationState(ConflictError):
    def __init__(self, application_id: int, status: str) -> None:
        super().__init__(
            ErrorCode.INVALID_APPLICATION_STATE,
            f"Application is {status} and cannot be rolled back",
            {"application_id": application_id, "status": status},
        )


class EmailAlreadyRegistered(ConflictError):
    def __init__(self) -> None:
        super().__init__(ErrorCode.EMAIL_ALREADY_REGISTERED, "Email already registered")


# --- Infrastructure ---------------------------------------------------------


class StoreUnavailable(DomainError):
    status_code = 503
    retryable = True

    def __init__(self, operation: str = "transaction") -> None:
        super().__init__(
            ErrorCode.STORE_UNAVAILABLE,
            "Storage is temporarily unavailable, please retry",
            {"operation": operation},
        )
