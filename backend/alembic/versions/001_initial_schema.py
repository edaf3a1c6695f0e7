"""Initial schema: accounts, credit ledger, lessons, bookings, swaps and templates.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TZ = sa.DateTime(timezone=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TZ, nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("deleted_at", TZ, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("role IN ('student', 'teacher', 'admin')", name="check_user_role"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Credit balances: one per user
    op.create_table(
        "credit_balances",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="check_balance_non_negative"),
    )
    op.create_index("ix_credit_balances_user_id", "credit_balances", ["user_id"], unique=True)

    # Templates
    op.create_table(
        "lesson_templates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "template_lesson_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("lesson_templates.id"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("kind", sa.String(20), nullable=False, server_default="individual"),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("color", sa.String(7), nullable=False, server_default="#3B82F6"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="check_entry_day_of_week"),
        sa.CheckConstraint("end_time > start_time", name="check_entry_time_range"),
        sa.CheckConstraint("max_students > 0", name="check_entry_max_students_positive"),
        sa.CheckConstraint("credits_cost BETWEEN 0 AND 100", name="check_entry_credits_cost"),
    )
    op.create_index(
        "ix_template_lesson_entries_template_id", "template_lesson_entries", ["template_id"]
    )

    op.create_table(
        "template_lesson_students",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entry_id", sa.Integer(), sa.ForeignKey("template_lesson_entries.id"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.UniqueConstraint("entry_id", "student_id", name="uq_template_entry_student"),
    )

    op.create_table(
        "template_applications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("lesson_templates.id"), nullable=False),
        sa.Column("applied_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("week_start_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="applied"),
        sa.Column("created_lessons", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_bookings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deducted_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("warnings", sa.JSON(), nullable=False),
        sa.Column(
            "replaced_application_id",
            sa.Integer(),
            sa.ForeignKey("template_applications.id"),
            nullable=True,
        ),
        sa.Column("applied_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.Column("rolled_back_at", TZ, nullable=True),
        sa.CheckConstraint(
            "status IN ('applied', 'replaced', 'rolled_back')", name="check_application_status"
        ),
        sa.CheckConstraint(
            "(status = 'applied' AND rolled_back_at IS NULL) OR "
            "(status IN ('replaced', 'rolled_back') AND rolled_back_at IS NOT NULL)",
            name="check_application_rolled_back_at",
        ),
    )
    op.create_index(
        "ix_template_applications_template_week",
        "template_applications",
        ["template_id", "week_start_date"],
    )

    # Lessons
    op.create_table(
        "lessons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("kind", sa.String(20), nullable=False, server_default="individual"),
        sa.Column("start_time", TZ, nullable=False),
        sa.Column("end_time", TZ, nullable=False),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_students", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("color", sa.String(7), nullable=False, server_default="#3B82F6"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "template_application_id",
            sa.Integer(),
            sa.ForeignKey("template_applications.id"),
            nullable=True,
        ),
        sa.Column("deleted_at", TZ, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_time > start_time", name="check_lesson_time_range"),
        sa.CheckConstraint("max_students > 0", name="check_lesson_max_students_positive"),
        sa.CheckConstraint("current_students >= 0", name="check_lesson_current_non_negative"),
        sa.CheckConstraint("current_students <= max_students", name="check_lesson_current_lte_max"),
        sa.CheckConstraint("credits_cost >= 0", name="check_lesson_credits_cost_non_negative"),
        sa.CheckConstraint("kind IN ('individual', 'group')", name="check_lesson_kind"),
    )
    op.create_index("ix_lessons_id", "lessons", ["id"])
    op.create_index("ix_lessons_teacher_start", "lessons", ["teacher_id", "start_time"])
    op.create_index("ix_lessons_start_time", "lessons", ["start_time"])
    op.create_index("ix_lessons_template_application_id", "lessons", ["template_application_id"])

    # Bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("lesson_id", sa.Integer(), sa.ForeignKey("lessons.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("booked_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("booked_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.Column("cancelled_at", TZ, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('active', 'cancelled')", name="check_booking_status"),
        sa.CheckConstraint(
            "(status = 'active' AND cancelled_at IS NULL) OR "
            "(status = 'cancelled' AND cancelled_at IS NOT NULL)",
            name="check_booking_cancelled_at",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_student_id", "bookings", ["student_id"])
    op.create_index("ix_bookings_lesson_id", "bookings", ["lesson_id"])
    # One active booking per student per lesson; cancelled rows are kept
    op.create_index(
        "uq_active_booking_student_lesson",
        "bookings",
        ["student_id", "lesson_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    # Append-only credit log
    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("operation_type", sa.String(10), nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("performed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="check_transaction_amount_positive"),
        sa.CheckConstraint(
            "operation_type IN ('add', 'deduct', 'refund')",
            name="check_transaction_operation_type",
        ),
        sa.CheckConstraint("balance_before >= 0", name="check_transaction_before_non_negative"),
        sa.CheckConstraint("balance_after >= 0", name="check_transaction_after_non_negative"),
    )
    op.create_index(
        "ix_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", "created_at", "id"],
    )
    op.create_index("ix_credit_transactions_booking_id", "credit_transactions", ["booking_id"])

    # Re-booking block
    op.create_table(
        "cancelled_bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("lesson_id", sa.Integer(), sa.ForeignKey("lessons.id"), nullable=False),
        sa.Column("cancelled_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("student_id", "lesson_id", name="uq_cancelled_booking_student_lesson"),
    )

    # Swap history
    op.create_table(
        "swaps",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("old_lesson_id", sa.Integer(), sa.ForeignKey("lessons.id"), nullable=False),
        sa.Column("new_lesson_id", sa.Integer(), sa.ForeignKey("lessons.id"), nullable=False),
        sa.Column("old_booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("new_booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("created_at", TZ, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("old_lesson_id <> new_lesson_id", name="check_swap_distinct_lessons"),
    )
    op.create_index("ix_swaps_student_id", "swaps", ["student_id"])


def downgrade() -> None:
    op.drop_table("swaps")
    op.drop_table("cancelled_bookings")
    op.drop_table("credit_transactions")
    op.drop_table("bookings")
    op.drop_table("lessons")
    op.drop_table("template_applications")
    op.drop_table("template_lesson_students")
    op.drop_table("template_lesson_entries")
    op.drop_table("lesson_templates")
    op.drop_table("credit_balances")
    op.drop_table("users")
