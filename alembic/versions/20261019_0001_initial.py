"""initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="student"),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "credit_balances",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "lesson_templates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lesson_templates_owner_id", "lesson_templates", ["owner_id"])

    op.create_table(
        "template_lesson_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("template_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=8), nullable=False),
        sa.Column("end_time", sa.String(length=8), nullable=False),
        sa.Column("teacher_id", sa.Uuid(), nullable=False),
        sa.Column("lesson_type", sa.String(length=16), nullable=False, server_default="group"),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#3B82F6"),
        sa.Column("subject", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["template_id"], ["lesson_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["teacher_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_template_lesson_entries_template_id", "template_lesson_entries", ["template_id"])
    op.create_index("ix_template_entries_order", "template_lesson_entries", ["template_id", "position"])

    op.create_table(
        "template_entry_students",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("student_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["template_lesson_entries.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "student_id", name="uq_template_entry_student"),
    )
    op.create_index("ix_template_entry_students_entry_id", "template_entry_students", ["entry_id"])

    op.create_table(
        "template_applications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("template_id", sa.Uuid(), nullable=False),
        sa.Column("applied_by_id", sa.Uuid(), nullable=False),
        sa.Column("week_start_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="applied"),
        sa.Column("created_lessons_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_bookings_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deducted_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("applied_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("rolled_back_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["template_id"], ["lesson_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["applied_by_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_template_applications_applied_week",
        "template_applications",
        ["template_id", "week_start_date"],
        unique=True,
        postgresql_where=sa.text("status = 'applied'"),
    )

    op.create_table(
        "lessons",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("teacher_id", sa.Uuid(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lesson_type", sa.String(length=16), nullable=False, server_default="group"),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("current_students", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_cost", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("color", sa.String(length=7), nullable=False, server_default="#3B82F6"),
        sa.Column("subject", sa.String(length=200), nullable=True),
        sa.Column("homework_text", sa.Text(), nullable=True),
        sa.Column("report_text", sa.Text(), nullable=True),
        sa.Column("recurring_group_id", sa.Uuid(), nullable=True),
        sa.Column("template_application_id", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["teacher_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["template_application_id"], ["template_applications.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("current_students >= 0 AND current_students <= max_students", name="ck_lessons_capacity"),
    )
    op.create_index("ix_lessons_recurring_group_id", "lessons", ["recurring_group_id"])
    op.create_index("ix_lessons_template_application_id", "lessons", ["template_application_id"])
    op.create_index("ix_lessons_teacher_start", "lessons", ["teacher_id", "start_time"])
    op.create_index("ix_lessons_start_time", "lessons", ["start_time"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("student_id", sa.Uuid(), nullable=False),
        sa.Column("lesson_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("booked_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bookings_student_status", "bookings", ["student_id", "status"])
    op.create_index("ix_bookings_lesson_status", "bookings", ["lesson_id", "status"])
    op.create_index(
        "uq_bookings_active_student_lesson",
        "bookings",
        ["student_id", "lesson_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "cancelled_bookings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("student_id", sa.Uuid(), nullable=False),
        sa.Column("lesson_id", sa.Uuid(), nullable=False),
        sa.Column("booking_id", sa.Uuid(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "lesson_id", name="uq_cancelled_booking_student_lesson"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("operation", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("performed_by", sa.Uuid(), nullable=True),
        sa.Column("booking_id", sa.Uuid(), nullable=True),
        sa.Column("template_application_id", sa.Uuid(), nullable=True),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["performed_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["template_application_id"], ["template_applications.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
    )
    op.create_index("ix_credit_transactions_operation", "credit_transactions", ["operation"])
    op.create_index("ix_credit_transactions_booking_id", "credit_transactions", ["booking_id"])
    op.create_index(
        "ix_credit_transactions_template_application_id",
        "credit_transactions",
        ["template_application_id"],
    )
    op.create_index("ix_credit_tx_user_created", "credit_transactions", ["user_id", "created_at"])

    op.create_table(
        "lesson_modifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("original_lesson_id", sa.Uuid(), nullable=False),
        sa.Column("modification_type", sa.String(length=32), nullable=False),
        sa.Column("applied_by_id", sa.Uuid(), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("affected_lessons_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["original_lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["applied_by_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lesson_modifications_original_lesson_id", "lesson_modifications", ["original_lesson_id"])


def downgrade() -> None:
    op.drop_index("ix_lesson_modifications_original_lesson_id", table_name="lesson_modifications")
    op.drop_table("lesson_modifications")

    op.drop_index("ix_credit_tx_user_created", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_template_application_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_booking_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_operation", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_table("cancelled_bookings")

    op.drop_index("uq_bookings_active_student_lesson", table_name="bookings")
    op.drop_index("ix_bookings_lesson_status", table_name="bookings")
    op.drop_index("ix_bookings_student_status", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_lessons_start_time", table_name="lessons")
    op.drop_index("ix_lessons_teacher_start", table_name="lessons")
    op.drop_index("ix_lessons_template_application_id", table_name="lessons")
    op.drop_index("ix_lessons_recurring_group_id", table_name="lessons")
    op.drop_table("lessons")

    op.drop_index("uq_template_applications_applied_week", table_name="template_applications")
    op.drop_table("template_applications")

    op.drop_index("ix_template_entry_students_entry_id", table_name="template_entry_students")
    op.drop_table("template_entry_students")

    op.drop_index("ix_template_entries_order", table_name="template_lesson_entries")
    op.drop_index("ix_template_lesson_entries_template_id", table_name="template_lesson_entries")
    op.drop_table("template_lesson_entries")

    op.drop_index("ix_lesson_templates_owner_id", table_name="lesson_templates")
    op.drop_table("lesson_templates")

    op.drop_table("credit_balances")

    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
