from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, Iterable, List, Optional

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from academy_scheduler.db.models import (
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
from academy_scheduler.db.session import create_schema
from academy_scheduler.repositories.academy_store import SqlAcademyStore
from academy_scheduler.telemetry import TelemetryEvent, clear_listeners, register_listener

# Monday.
MONDAY = datetime(2024, 3, 4, tzinfo=timezone.utc)

WEEKDAY_AVAILABILITY = [
    {"day_of_week": day, "start_time": "09:00", "end_time": "17:00"} for day in range(1, 6)
]


class AcademyFactory:
    """Inserts academy rows with sensible defaults for scheduler tests."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _add(self, model: Any) -> Any:
        self.session.add(model)
        self.session.flush()
        return model

    def student(
        self,
        student_id: str,
        *,
        level: str = "Basic",
        metadata: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> StudentModel:
        return self._add(
            StudentModel(
                id=student_id,
                full_name=student_id.title(),
                test_level=level,
                is_active=is_active,
                profile_metadata=metadata or {},
            )
        )

    def course(self, course_id: str, *, course_type: str = "Basic") -> CourseModel:
        return self._add(CourseModel(id=course_id, title=f"{course_type} course", course_type=course_type))

    def material(
        self,
        course_id: str,
        unit_number: int,
        lesson_number: int,
        *,
        material_type: str = "PDF",
        description: str = "Practice greetings and introductions. Review basic vocabulary lists.",
    ) -> MaterialModel:
        return self._add(
            MaterialModel(
                id=f"{course_id}-u{unit_number}-l{lesson_number}",
                course_id=course_id,
                title=f"Unit {unit_number} Lesson {lesson_number}",
                description=description,
                material_type=material_type,
                unit_number=unit_number,
                lesson_number=lesson_number,
            )
        )

    def curriculum(self, course_id: str, units: int = 2, lessons: int = 3) -> List[MaterialModel]:
        return [
            self.material(course_id, unit, lesson)
            for unit in range(1, units + 1)
            for lesson in range(1, lessons + 1)
        ]

    def enroll(
        self,
        student_id: str,
        course_id: str,
        *,
        current_unit: int = 1,
        current_lesson: int = 0,
        progress_percentage: float = 0.0,
    ) -> StudentCourseModel:
        return self._add(
            StudentCourseModel(
                student_id=student_id,
                course_id=course_id,
                current_unit=current_unit,
                current_lesson=current_lesson,
                progress_percentage=progress_percentage,
                enrollment_date=MONDAY - timedelta(days=60),
            )
        )

    def teacher(
        self,
        teacher_id: str,
        *,
        specializations: Optional[List[str]] = None,
        certifications: Optional[List[str]] = None,
        availability: Optional[List[Dict[str, Any]]] = None,
        max_students_per_class: int = 9,
    ) -> TeacherModel:
        return self._add(
            TeacherModel(
                id=teacher_id,
                full_name=teacher_id.title(),
                specializations=specializations if specializations is not None else ["Basic"],
                certifications=certifications or [],
                availability=availability if availability is not None else list(WEEKDAY_AVAILABILITY),
                max_students_per_class=max_students_per_class,
            )
        )

    def klass(
        self,
        class_id: str,
        course_id: str,
        teacher_id: str,
        *,
        unit_number: int = 1,
        lesson_number: int = 1,
        scheduled_start: datetime = MONDAY + timedelta(days=7, hours=10),
        capacity: int = 9,
        current_enrollment: int = 3,
        location: Optional[str] = "Room 1",
        meeting_link: Optional[str] = None,
        distance_km: Optional[float] = None,
        pace: int = 2,
        difficulty: int = 1,
        duration_minutes: int = 60,
        is_active: bool = True,
    ) -> ClassModel:
        return self._add(
            ClassModel(
                id=class_id,
                course_id=course_id,
                teacher_id=teacher_id,
                class_name=f"Class {class_id}",
                capacity=capacity,
                current_enrollment=current_enrollment,
                unit_number=unit_number,
                lesson_number=lesson_number,
                location=location,
                meeting_link=meeting_link,
                distance_km=distance_km,
                class_type="group",
                pace=pace,
                difficulty=difficulty,
                scheduled_start=scheduled_start,
                duration_minutes=duration_minutes,
                is_active=is_active,
            )
        )

    def booking(self, student_id: str, class_id: str, *, status: str = "confirmed") -> BookingModel:
        return self._add(BookingModel(student_id=student_id, class_id=class_id, status=status))

    def attendance(self, booking_id: str, attended_at: datetime, *, status: str = "present") -> AttendanceModel:
        return self._add(AttendanceModel(booking_id=booking_id, status=status, attendance_time=attended_at))

    def completion(
        self,
        student_id: str,
        course_id: str,
        unit_number: int,
        lesson_number: int,
        *,
        submitted_time: datetime = MONDAY,
        rating: Optional[int] = 4,
        strengths: str = "",
        areas_for_improvement: str = "",
        class_id: Optional[str] = None,
        lesson_completed: bool = True,
    ) -> FeedbackModel:
        return self._add(
            FeedbackModel(
                student_id=student_id,
                course_id=course_id,
                class_id=class_id,
                unit_number=unit_number,
                lesson_number=lesson_number,
                lesson_completed=lesson_completed,
                rating=rating,
                strengths=strengths,
                areas_for_improvement=areas_for_improvement,
                submitted_time=submitted_time,
            )
        )

    def waitlist(self, class_id: str, student_id: str, position: int) -> ClassWaitlistModel:
        return self._add(
            ClassWaitlistModel(class_id=class_id, student_id=student_id, position=position, created_at=MONDAY)
        )


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine: Engine) -> Generator[Session, None, None]:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    session = factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(session: Session) -> SqlAcademyStore:
    return SqlAcademyStore(session)


@pytest.fixture()
def academy(session: Session) -> AcademyFactory:
    return AcademyFactory(session)


@pytest.fixture(autouse=True)
def _isolated_telemetry() -> Iterable[None]:
    clear_listeners()
    yield
    clear_listeners()


@pytest.fixture()
def events() -> List[TelemetryEvent]:
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)
    return captured
