"""ORM models for the academy tables read and written by the scheduler."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


def _uuid() -> str:
    return str(uuid.uuid4())


class StudentModel(TimestampMixin, Base):
    __tablename__ = "students"
    __table_args__ = (Index("ix_students_test_level", "test_level"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    full_name: Mapped[str] = mapped_column(String(160), default="", nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    test_level: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # "metadata" is reserved on declarative classes.
    profile_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    enrollments: Mapped[list["StudentCourseModel"]] = relationship(
        back_populates="student", cascade="all, delete-orphan"
    )


class CourseModel(TimestampMixin, Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(160), nullable=False)
    course_type: Mapped[str] = mapped_column(String(64), default="Basic", nullable=False)

    materials: Mapped[list["MaterialModel"]] = relationship(
        back_populates="course", cascade="all, delete-orphan"
    )


class StudentCourseModel(TimestampMixin, Base):
    __tablename__ = "student_courses"
    __table_args__ = (UniqueConstraint("student_id", "course_id", name="uq_student_course"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    current_unit: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_lesson: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_percentage: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="active", nullable=False)
    enrollment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    student: Mapped[StudentModel] = relationship(back_populates="enrollments")


class MaterialModel(Base):
    __tablename__ = "materials"
    __table_args__ = (Index("ix_materials_course_position", "course_id", "unit_number", "lesson_number"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    material_type: Mapped[str] = mapped_column(String(32), default="PDF", nullable=False)
    unit_number: Mapped[int] = mapped_column(Integer, nullable=False)
    lesson_number: Mapped[int] = mapped_column(Integer, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    course: Mapped[CourseModel] = relationship(back_populates="materials")


class TeacherModel(TimestampMixin, Base):
    __tablename__ = "teachers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    full_name: Mapped[str] = mapped_column(String(160), default="", nullable=False)
    specializations: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    certifications: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    max_students_per_class: Mapped[int] = mapped_column(Integer, default=9, nullable=False)
    availability: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ClassModel(TimestampMixin, Base):
    __tablename__ = "classes"
    __table_args__ = (
        CheckConstraint("capacity <= 9", name="ck_classes_capacity"),
        Index("ix_classes_course_position", "course_id", "unit_number", "lesson_number"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    teacher_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teachers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    class_name: Mapped[str] = mapped_column(String(160), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=9, nullable=False)
    current_enrollment: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit_number: Mapped[int] = mapped_column(Integer, nullable=False)
    lesson_number: Mapped[int] = mapped_column(Integer, nullable=False)
    location: Mapped[str | None] = mapped_column(String(160), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    class_type: Mapped[str] = mapped_column(String(16), default="group", nullable=False)
    pace: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    difficulty: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    course: Mapped[CourseModel] = relationship()
    bookings: Mapped[list["BookingModel"]] = relationship(
        back_populates="klass", cascade="all, delete-orphan"
    )


class BookingModel(TimestampMixin, Base):
    __tablename__ = "bookings"
    __table_args__ = (UniqueConstraint("student_id", "class_id", name="uq_booking_student_class"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(32), default="confirmed", nullable=False)
    learning_goals: Mapped[str | None] = mapped_column(Text, nullable=True)

    klass: Mapped[ClassModel] = relationship(back_populates="bookings")
    attendance: Mapped[list["AttendanceModel"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan"
    )


class AttendanceModel(Base):
    __tablename__ = "attendance"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(16), default="present", nullable=False)
    attendance_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    booking: Mapped[BookingModel] = relationship(back_populates="attendance")


class FeedbackModel(Base):
    __tablename__ = "feedback"
    __table_args__ = (Index("ix_feedback_student_course", "student_id", "course_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    course_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    class_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="SET NULL"), nullable=True
    )
    booking_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    unit_number: Mapped[int] = mapped_column(Integer, nullable=False)
    lesson_number: Mapped[int] = mapped_column(Integer, nullable=False)
    lesson_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    areas_for_improvement: Mapped[str] = mapped_column(Text, default="", nullable=False)
    strengths: Mapped[str] = mapped_column(Text, default="", nullable=False)
    submitted_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class ClassWaitlistModel(Base):
    __tablename__ = "class_waitlist"
    __table_args__ = (UniqueConstraint("class_id", "student_id", name="uq_waitlist_class_student"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


__all__ = [
    "AttendanceModel",
    "BookingModel",
    "ClassModel",
    "ClassWaitlistModel",
    "CourseModel",
    "FeedbackModel",
    "MaterialModel",
    "StudentCourseModel",
    "StudentModel",
    "TeacherModel",
]
