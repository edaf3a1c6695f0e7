"""
User accounts. Roles are student, teacher or admin; accounts are soft-deleted.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint

from tutorbook.db.base import Base, TimestampMixin, UTCDateTime

ROLE_STUDENT = "student"
ROLE_TEACHER = "teacher"
ROLE_ADMIN = "admin"
ROLES = (ROLE_STUDENT, ROLE_TEACHER, ROLE_ADMIN)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=ROLE_STUDENT)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("role IN ('student', 'teacher', 'admin')", name="check_user_role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
