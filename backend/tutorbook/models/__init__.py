from tutorbook.models.user import User
from tutorbook.models.credit import CreditBalance, CreditTransaction
from tutorbook.models.lesson import Lesson
from tutorbook.models.booking import Booking, CancelledBooking, Swap
from tutorbook.models.template import (
    LessonTemplate,
    TemplateLessonEntry,
    TemplateLessonStudent,
    TemplateApplication,
)

__all__ = [
    "User",
    "CreditBalance",
    "CreditTransaction",
    "Lesson",
    "Booking",
    "CancelledBooking",
    "Swap",
    "LessonTemplate",
    "TemplateLessonEntry",
    "TemplateLessonStudent",
    "TemplateApplication",
]
