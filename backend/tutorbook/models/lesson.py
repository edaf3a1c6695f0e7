"""
Lesson model with seat counter.

Key design decisions:
- `current_students` is denormalized and only moved by the booking, swap
  and template orchestrators through conditional updates
- `kind` is stored explicitly; capacity is validated against it, never inferred
- Lessons are soft-deleted so bookings and ledger rows keep their references
- Index on (teacher_id, start_time) backs the teacher-overlap query
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Index, CheckConstraint

from tutorbook.db.base import Base, TimestampMixin, UTCDateTime


class Lesson(Base, TimestampMixin):
    __tablename__ = "lessons"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    subject = Column(String(255), nullable=True)
    kind = Column(String(20), nullable=False, default="individual")
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    max_students = Column(Integer, nullable=False, default=1)
    current_students = Column(Integer, nullable=False, default=0)
    credits_cost = Column(Integer, nullable=False, default=1)
    color = Column(String(7), nullable=False, default="#3B82F6")
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    template_application_id = Column(
        Integer, ForeignKey("template_applications.id"), nullable=True, index=True
    )
    deleted_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_lesson_time_range"),
        CheckConstraint("max_students > 0", name="check_lesson_max_students_positive"),
        CheckConstraint("current_students >= 0", name="check_lesson_current_non_negative"),
        CheckConstraint("current_students <= max_students", name="check_lesson_current_lte_max"),
        CheckConstraint("credits_cost >= 0", name="check_lesson_credits_cost_non_negative"),
        CheckConstraint("kind IN ('individual', 'group')", name="check_lesson_kind"),
        Index("ix_lessons_teacher_start", "teacher_id", "start_time"),
        Index("ix_lessons_start_time", "start_time"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return (
            f"<Lesson(id={self.id}, teacher={self.teacher_id}, "
            f"seats={self.current_students}/{self.max_students})>"
        )
