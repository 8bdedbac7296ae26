from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Uuid

from lessonhub.db.base import Base
from lessonhub.domain.enums import (
    ApplicationStatus,
    BookingStatus,
    LessonType,
    UserRole,
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(32), default=UserRole.STUDENT.value, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT.value

    @property
    def is_teacher(self) -> bool:
        return self.role == UserRole.TEACHER.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class CreditBalance(Base):
    __tablename__ = "credit_balances"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True)
    balance: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    operation: Mapped[str] = mapped_column(String(16), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String(255))
    performed_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    booking_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    template_application_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("template_applications.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    balance_before: Mapped[int] = mapped_column(Integer)
    balance_after: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        CheckConstraint("current_students >= 0 AND current_students <= max_students", name="ck_lessons_capacity"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    teacher_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    lesson_type: Mapped[str] = mapped_column(String(16), default=LessonType.GROUP.value)
    max_students: Mapped[int] = mapped_column(Integer, default=4)
    current_students: Mapped[int] = mapped_column(Integer, default=0)
    credits_cost: Mapped[int] = mapped_column(Integer, default=1)
    color: Mapped[str] = mapped_column(String(7), default="#3B82F6")
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    homework_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    report_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    recurring_group_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    template_application_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("template_applications.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_individual(self) -> bool:
        return self.max_students == 1


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    lesson_id: Mapped[UUID] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"))
    status: Mapped[str] = mapped_column(String(16), default=BookingStatus.ACTIVE.value)
    booked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.ACTIVE.value


class CancelledBooking(Base):
    __tablename__ = "cancelled_bookings"
    __table_args__ = (UniqueConstraint("student_id", "lesson_id", name="uq_cancelled_booking_student_lesson"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    lesson_id: Mapped[UUID] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"))
    booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class LessonTemplate(Base):
    __tablename__ = "lesson_templates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TemplateLessonEntry(Base):
    __tablename__ = "template_lesson_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    template_id: Mapped[UUID] = mapped_column(ForeignKey("lesson_templates.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    day_of_week: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[str] = mapped_column(String(8))
    end_time: Mapped[str] = mapped_column(String(8))
    teacher_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    lesson_type: Mapped[str] = mapped_column(String(16), default=LessonType.GROUP.value)
    max_students: Mapped[int] = mapped_column(Integer, default=4)
    credits_cost: Mapped[int] = mapped_column(Integer, default=1)
    color: Mapped[str] = mapped_column(String(7), default="#3B82F6")
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class TemplateEntryStudent(Base):
    __tablename__ = "template_entry_students"
    __table_args__ = (UniqueConstraint("entry_id", "student_id", name="uq_template_entry_student"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    entry_id: Mapped[UUID] = mapped_column(ForeignKey("template_lesson_entries.id", ondelete="CASCADE"), index=True)
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TemplateApplication(Base):
    __tablename__ = "template_applications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    template_id: Mapped[UUID] = mapped_column(ForeignKey("lesson_templates.id", ondelete="CASCADE"))
    applied_by_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    week_start_date: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(16), default=ApplicationStatus.APPLIED.value)
    created_lessons_count: Mapped[int] = mapped_column(Integer, default=0)
    created_bookings_count: Mapped[int] = mapped_column(Integer, default=0)
    deducted_credits: Mapped[int] = mapped_column(Integer, default=0)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    rolled_back_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class LessonModification(Base):
    __tablename__ = "lesson_modifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    original_lesson_id: Mapped[UUID] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"), index=True)
    modification_type: Mapped[str] = mapped_column(String(32))
    applied_by_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    affected_lessons_count: Mapped[int] = mapped_column(Integer, default=0)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


Index("ix_credit_tx_user_created", CreditTransaction.user_id, CreditTransaction.created_at)
Index("ix_lessons_teacher_start", Lesson.teacher_id, Lesson.start_time)
Index("ix_lessons_start_time", Lesson.start_time)
Index("ix_bookings_student_status", Booking.student_id, Booking.status)
Index("ix_bookings_lesson_status", Booking.lesson_id, Booking.status)
Index(
    "uq_bookings_active_student_lesson",
    Booking.student_id,
    Booking.lesson_id,
    unique=True,
    postgresql_where=text("status = 'active'"),
    sqlite_where=text("status = 'active'"),
)
Index("ix_template_entries_order", TemplateLessonEntry.template_id, TemplateLessonEntry.position)
Index(
    "uq_template_applications_applied_week",
    TemplateApplication.template_id,
    TemplateApplication.week_start_date,
    unique=True,
    postgresql_where=text("status = 'applied'"),
    sqlite_where=text("status = 'applied'"),
)
