"""
Bookings, the cancellation history and the swap history.

Key design decisions:
- Status moves active -> cancelled only; rows are never deleted
- A partial unique index allows one active booking per (student, lesson)
  while keeping cancelled rows around
- CancelledBooking is unique per (student, lesson) and blocks re-booking
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    text,
)

from tutorbook.core.clock import utcnow
from tutorbook.db.base import Base, TimestampMixin, UTCDateTime

BOOKING_ACTIVE = "active"
BOOKING_CANCELLED = "cancelled"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lesson_id = Column(Integer, ForeignKey("lessons.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BOOKING_ACTIVE)
    booked_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    booked_at = Column(UTCDateTime, nullable=False, default=utcnow)
    cancelled_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'cancelled')", name="check_booking_status"),
        CheckConstraint(
            "(status = 'active' AND cancelled_at IS NULL) OR "
            "(status = 'cancelled' AND cancelled_at IS NOT NULL)",
            name="check_booking_cancelled_at",
        ),
        Index(
            "uq_active_booking_student_lesson",
            "student_id",
            "lesson_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, student={self.student_id}, lesson={self.lesson_id}, status={self.status})>"


class CancelledBooking(Base):
    __tablename__ = "cancelled_bookings"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    lesson_id = Column(Integer, ForeignKey("lessons.id"), nullable=False)
    cancelled_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("student_id", "lesson_id", name="uq_cancelled_booking_student_lesson"),
    )


class Swap(Base):
    __tablename__ = "swaps"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    old_lesson_id = Column(Integer, ForeignKey("lessons.id"), nullable=False)
    new_lesson_id = Column(Integer, ForeignKey("lessons.id"), nullable=False)
    old_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    new_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("old_lesson_id <> new_lesson_id", name="check_swap_distinct_lessons"),
    )
