"""Database-backed academy store consumed by the scheduling core."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.models import (
    AttendanceModel,
    BookingModel,
    ClassModel,
    ClassWaitlistModel,
    CourseModel,
    FeedbackModel,
    MaterialModel,
    StudentCourseModel,
    StudentModel,
    TeacherModel,
)
from ..errors import NotFoundError, UpstreamStoreError
from ..records import (
    AttendanceRecord,
    BookingRecord,
    ClassRecord,
    CourseRecord,
    EnrollmentRecord,
    FeedbackRecord,
    MaterialRecord,
    StudentRecord,
    TeacherRecord,
    WaitlistEntry,
)

logger = logging.getLogger(__name__)

INACTIVE_BOOKING_STATUSES = ("cancelled", "canceled")


class AcademyStore(Protocol):
    """Read/write operations the scheduling core needs from persistence."""

    def get_student(self, student_id: str) -> Optional[StudentRecord]: ...

    def list_students(
        self, *, level: Optional[str] = None, student_ids: Optional[Sequence[str]] = None
    ) -> List[StudentRecord]: ...

    def list_courses(self, course_ids: Optional[Sequence[str]] = None) -> List[CourseRecord]: ...

    def list_enrollments(self, *, student_ids: Optional[Sequence[str]] = None) -> List[EnrollmentRecord]: ...

    def list_materials(self, course_id: str) -> List[MaterialRecord]: ...

    def list_feedback(
        self,
        *,
        student_ids: Optional[Sequence[str]] = None,
        course_id: Optional[str] = None,
        completed_only: bool = False,
    ) -> List[FeedbackRecord]: ...

    def list_attendance(self, student_id: str) -> List[AttendanceRecord]: ...

    def list_bookings(
        self, *, student_id: Optional[str] = None, class_ids: Optional[Sequence[str]] = None
    ) -> List[BookingRecord]: ...

    def get_class(self, class_id: str) -> Optional[ClassRecord]: ...

    def list_classes(
        self, *, active_only: bool = True, class_ids: Optional[Sequence[str]] = None
    ) -> List[ClassRecord]: ...

    def list_teachers(self, *, active_only: bool = True) -> List[TeacherRecord]: ...

    def list_waitlist(self, class_id: str) -> List[WaitlistEntry]: ...

    def insert_feedback(
        self,
        *,
        student_id: str,
        course_id: str,
        unit_number: int,
        lesson_number: int,
        lesson_completed: bool,
        rating: Optional[int] = None,
        areas_for_improvement: str = "",
        strengths: str = "",
        class_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        submitted_time: Optional[datetime] = None,
    ) -> FeedbackRecord: ...

    def update_enrollment_progress(
        self,
        enrollment_id: str,
        *,
        current_unit: int,
        current_lesson: int,
        progress_percentage: float,
    ) -> EnrollmentRecord: ...

    def update_student_metadata(self, student_id: str, metadata: Dict[str, Any]) -> StudentRecord: ...


@contextmanager
def _store_call(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Academy store operation %s failed", operation)
        raise UpstreamStoreError(f"Store operation '{operation}' failed: {exc}") from exc


class SqlAcademyStore:
    """SQLAlchemy implementation of :class:`AcademyStore` bound to one session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_student(self, student_id: str) -> Optional[StudentRecord]:
        with _store_call("get_student"):
            model = self._session.get(StudentModel, student_id)
            return StudentRecord.model_validate(model) if model is not None else None

    def list_students(
        self, *, level: Optional[str] = None, student_ids: Optional[Sequence[str]] = None
    ) -> List[StudentRecord]:
        stmt = select(StudentModel).where(StudentModel.is_active.is_(True))
        if level is not None:
            stmt = stmt.where(StudentModel.test_level == level)
        if student_ids is not None:
            stmt = stmt.where(StudentModel.id.in_(list(student_ids)))
        with _store_call("list_students"):
            models = self._session.execute(stmt.order_by(StudentModel.id)).scalars().all()
            return [StudentRecord.model_validate(model) for model in models]

    def list_courses(self, course_ids: Optional[Sequence[str]] = None) -> List[CourseRecord]:
        stmt = select(CourseModel)
        if course_ids is not None:
            stmt = stmt.where(CourseModel.id.in_(list(course_ids)))
        with _store_call("list_courses"):
            models = self._session.execute(stmt.order_by(CourseModel.id)).scalars().all()
            return [CourseRecord.model_validate(model) for model in models]

    def list_enrollments(self, *, student_ids: Optional[Sequence[str]] = None) -> List[EnrollmentRecord]:
        stmt = select(StudentCourseModel)
        if student_ids is not None:
            stmt = stmt.where(StudentCourseModel.student_id.in_(list(student_ids)))
        stmt = stmt.order_by(StudentCourseModel.student_id, StudentCourseModel.enrollment_date)
        with _store_call("list_enrollments"):
            models = self._session.execute(stmt).scalars().all()
            return [EnrollmentRecord.model_validate(model) for model in models]

    def list_materials(self, course_id: str) -> List[MaterialRecord]:
        stmt = (
            select(MaterialModel)
            .where(MaterialModel.course_id == course_id, MaterialModel.is_active.is_(True))
            .order_by(MaterialModel.unit_number, MaterialModel.lesson_number, MaterialModel.order_index)
        )
        with _store_call("list_materials"):
            models = self._session.execute(stmt).scalars().all()
            return [MaterialRecord.model_validate(model) for model in models]

    def list_feedback(
        self,
        *,
        student_ids: Optional[Sequence[str]] = None,
        course_id: Optional[str] = None,
        completed_only: bool = False,
    ) -> List[FeedbackRecord]:
        stmt = select(FeedbackModel)
        if student_ids is not None:
            stmt = stmt.where(FeedbackModel.student_id.in_(list(student_ids)))
        if course_id is not None:
            stmt = stmt.where(FeedbackModel.course_id == course_id)
        if completed_only:
            stmt = stmt.where(FeedbackModel.lesson_completed.is_(True))
        stmt = stmt.order_by(FeedbackModel.submitted_time, FeedbackModel.id)
        with _store_call("list_feedback"):
            models = self._session.execute(stmt).scalars().all()
            return [FeedbackRecord.model_validate(model) for model in models]

    def list_attendance(self, student_id: str) -> List[AttendanceRecord]:
        stmt = (
            select(AttendanceModel, BookingModel.student_id, BookingModel.class_id, ClassModel.current_enrollment)
            .join(BookingModel, AttendanceModel.booking_id == BookingModel.id)
            .join(ClassModel, BookingModel.class_id == ClassModel.id)
            .where(BookingModel.student_id == student_id)
            .order_by(AttendanceModel.attendance_time)
        )
        with _store_call("list_attendance"):
            rows = self._session.execute(stmt).all()
            return [
                AttendanceRecord(
                    id=attendance.id,
                    booking_id=attendance.booking_id,
                    student_id=owner_id,
                    class_id=class_id,
                    status=attendance.status,
                    attendance_time=attendance.attendance_time,
                    class_size=class_size,
                )
                for attendance, owner_id, class_id, class_size in rows
            ]

    def list_bookings(
        self, *, student_id: Optional[str] = None, class_ids: Optional[Sequence[str]] = None
    ) -> List[BookingRecord]:
        stmt = select(BookingModel).where(BookingModel.status.not_in(INACTIVE_BOOKING_STATUSES))
        if student_id is not None:
            stmt = stmt.where(BookingModel.student_id == student_id)
        if class_ids is not None:
            stmt = stmt.where(BookingModel.class_id.in_(list(class_ids)))
        with _store_call("list_bookings"):
            models = self._session.execute(stmt.order_by(BookingModel.id)).scalars().all()
            return [BookingRecord.model_validate(model) for model in models]

    def get_class(self, class_id: str) -> Optional[ClassRecord]:
        records = self.list_classes(active_only=False, class_ids=[class_id])
        return records[0] if records else None

    def list_classes(
        self, *, active_only: bool = True, class_ids: Optional[Sequence[str]] = None
    ) -> List[ClassRecord]:
        stmt = select(ClassModel, CourseModel.course_type).join(CourseModel, ClassModel.course_id == CourseModel.id)
        if active_only:
            stmt = stmt.where(ClassModel.is_active.is_(True))
        if class_ids is not None:
            stmt = stmt.where(ClassModel.id.in_(list(class_ids)))
        stmt = stmt.order_by(ClassModel.scheduled_start, ClassModel.id)
        with _store_call("list_classes"):
            rows = self._session.execute(stmt).all()
            return [
                ClassRecord.model_validate(model).model_copy(update={"course_type": course_type})
                for model, course_type in rows
            ]

    def list_teachers(self, *, active_only: bool = True) -> List[TeacherRecord]:
        stmt = select(TeacherModel)
        if active_only:
            stmt = stmt.where(TeacherModel.is_active.is_(True))
        with _store_call("list_teachers"):
            models = self._session.execute(stmt.order_by(TeacherModel.id)).scalars().all()
            return [TeacherRecord.model_validate(model) for model in models]

    def list_waitlist(self, class_id: str) -> List[WaitlistEntry]:
        stmt = (
            select(ClassWaitlistModel)
            .where(ClassWaitlistModel.class_id == class_id)
            .order_by(ClassWaitlistModel.position)
        )
        with _store_call("list_waitlist"):
            models = self._session.execute(stmt).scalars().all()
            return [WaitlistEntry.model_validate(model) for model in models]

    def insert_feedback(
        self,
        *,
        student_id: str,
        course_id: str,
        unit_number: int,
        lesson_number: int,
        lesson_completed: bool,
        rating: Optional[int] = None,
        areas_for_improvement: str = "",
        strengths: str = "",
        class_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        submitted_time: Optional[datetime] = None,
    ) -> FeedbackRecord:
        model = FeedbackModel(
            student_id=student_id,
            course_id=course_id,
            class_id=class_id,
            booking_id=booking_id,
            unit_number=unit_number,
            lesson_number=lesson_number,
            lesson_completed=lesson_completed,
            rating=rating,
            areas_for_improvement=areas_for_improvement,
            strengths=strengths,
            submitted_time=submitted_time or datetime.now(timezone.utc),
        )
        with _store_call("insert_feedback"):
            self._session.add(model)
            self._session.flush()
            return FeedbackRecord.model_validate(model)

    def update_enrollment_progress(
        self,
        enrollment_id: str,
        *,
        current_unit: int,
        current_lesson: int,
        progress_percentage: float,
    ) -> EnrollmentRecord:
        with _store_call("update_enrollment_progress"):
            model = self._session.get(StudentCourseModel, enrollment_id)
            if model is None:
                raise NotFoundError(f"Enrollment '{enrollment_id}' was not found.")
            model.current_unit = current_unit
            model.current_lesson = current_lesson
            model.progress_percentage = progress_percentage
            self._session.flush()
            return EnrollmentRecord.model_validate(model)

    def update_student_metadata(self, student_id: str, metadata: Dict[str, Any]) -> StudentRecord:
        with _store_call("update_student_metadata"):
            model = self._session.get(StudentModel, student_id)
            if model is None:
                raise NotFoundError(f"Student '{student_id}' was not found.")
            # Reassign so the JSON column is flagged dirty.
            model.profile_metadata = dict(metadata)
            self._session.flush()
            return StudentRecord.model_validate(model)


__all__ = [
    "AcademyStore",
    "SqlAcademyStore",
]
