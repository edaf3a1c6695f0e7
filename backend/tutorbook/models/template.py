"""
Weekly lesson templates and their applications to concrete weeks.

A template holds entries (day of week + time range + teacher + capacity),
each with pre-assigned students. Applying a template to a week creates real
lessons and bookings tagged with the TemplateApplication row, so the
application can later be rolled back or replaced.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    Time,
    JSON,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from tutorbook.core.clock import utcnow
from tutorbook.db.base import Base, TimestampMixin, UTCDateTime

APPLICATION_APPLIED = "applied"
APPLICATION_REPLACED = "replaced"
APPLICATION_ROLLED_BACK = "rolled_back"


class LessonTemplate(Base, TimestampMixin):
    __tablename__ = "lesson_templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    entries = relationship(
        "TemplateLessonEntry",
        lazy="selectin",
        order_by="TemplateLessonEntry.id",
        cascade="all, delete-orphan",
    )


class TemplateLessonEntry(Base):
    __tablename__ = "template_lesson_entries"

    id = Column(Integer, primary_key=True)
    template_id = Column(Integer, ForeignKey("lesson_templates.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    subject = Column(String(255), nullable=True)
    kind = Column(String(20), nullable=False, default="individual")
    max_students = Column(Integer, nullable=False, default=1)
    credits_cost = Column(Integer, nullable=False, default=1)
    color = Column(String(7), nullable=False, default="#3B82F6")

    students = relationship(
        "TemplateLessonStudent",
        lazy="selectin",
        order_by="TemplateLessonStudent.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="check_entry_day_of_week"),
        CheckConstraint("end_time > start_time", name="check_entry_time_range"),
        CheckConstraint("max_students > 0", name="check_entry_max_students_positive"),
        CheckConstraint("credits_cost BETWEEN 0 AND 100", name="check_entry_credits_cost"),
    )


class TemplateLessonStudent(Base):
    __tablename__ = "template_lesson_students"

    id = Column(Integer, primary_key=True)
    entry_id = Column(Integer, ForeignKey("template_lesson_entries.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint("entry_id", "student_id", name="uq_template_entry_student"),
    )


class TemplateApplication(Base):
    __tablename__ = "template_applications"

    id = Column(Integer, primary_key=True)
    template_id = Column(Integer, ForeignKey("lesson_templates.id"), nullable=False)
    applied_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    week_start_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=APPLICATION_APPLIED)
    created_lessons = Column(Integer, nullable=False, default=0)
    created_bookings = Column(Integer, nullable=False, default=0)
    deducted_credits = Column(Integer, nullable=False, default=0)
    warnings = Column(JSON, nullable=False, default=list)
    replaced_application_id = Column(Integer, ForeignKey("template_applications.id"), nullable=True)
    applied_at = Column(UTCDateTime, nullable=False, default=utcnow)
    rolled_back_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('applied', 'replaced', 'rolled_back')",
            name="check_application_status",
        ),
        CheckConstraint(
            "(status = 'applied' AND rolled_back_at IS NULL) OR "
            "(status IN ('replaced', 'rolled_back') AND rolled_back_at IS NOT NULL)",
            name="check_application_rolled_back_at",
        ),
        Index("ix_template_applications_template_week", "template_id", "week_start_date"),
    )
