"""Write-back of lesson completions and learning goals."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from .content_analysis import ContentGapAnalyzer
from .curriculum import lesson_key, position
from .errors import NotFoundError, ValidationError
from .repositories.academy_store import AcademyStore
from .scheduling_models import StudentProgress
from .telemetry import emit_event

logger = logging.getLogger(__name__)

MAX_LEARNING_GOALS = 20


def record_lesson_completion(
    store: AcademyStore,
    student_id: str,
    course_id: str,
    *,
    unit_number: int,
    lesson_number: int,
    rating: Optional[int] = None,
    strengths: str = "",
    areas_for_improvement: str = "",
    class_id: Optional[str] = None,
    booking_id: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> StudentProgress:
    """Store a completed lesson and advance the enrollment without ever moving it backwards."""
    if unit_number < 0 or lesson_number < 0:
        raise ValidationError("Unit and lesson numbers must be non-negative.")
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5.")

    enrollment = next(
        (entry for entry in store.list_enrollments(student_ids=[student_id]) if entry.course_id == course_id),
        None,
    )
    if enrollment is None:
        raise NotFoundError(f"Student '{student_id}' is not enrolled in course '{course_id}'.")

    store.insert_feedback(
        student_id=student_id,
        course_id=course_id,
        unit_number=unit_number,
        lesson_number=lesson_number,
        lesson_completed=True,
        rating=rating,
        strengths=strengths,
        areas_for_improvement=areas_for_improvement,
        class_id=class_id,
        booking_id=booking_id,
        submitted_time=completed_at,
    )

    materials = store.list_materials(course_id)
    completed_keys = {
        lesson_key(entry.unit_number, entry.lesson_number)
        for entry in store.list_feedback(student_ids=[student_id], course_id=course_id, completed_only=True)
    }
    curriculum_keys = {lesson_key(material.unit_number, material.lesson_number) for material in materials}
    covered = len(completed_keys & curriculum_keys)
    computed = covered / len(curriculum_keys) * 100.0 if curriculum_keys else enrollment.progress_percentage
    percentage = round(min(100.0, max(enrollment.progress_percentage, computed)), 2)
    furthest = max(
        position(enrollment.current_unit, enrollment.current_lesson),
        position(unit_number, lesson_number),
    )
    store.update_enrollment_progress(
        enrollment.id,
        current_unit=furthest[0],
        current_lesson=furthest[1],
        progress_percentage=percentage,
    )
    emit_event(
        "lesson_completion_recorded",
        student_id=student_id,
        course_id=course_id,
        unit_number=unit_number,
        lesson_number=lesson_number,
        progress_percentage=percentage,
    )

    progress = [
        record
        for record in ContentGapAnalyzer(store).analyze_student_progress(student_id)
        if record.course_id == course_id
    ]
    return progress[0]


def store_learning_goals(store: AcademyStore, student_id: str, goals: Iterable[str]) -> List[str]:
    """Persist cleaned learning goals in the student's metadata and return them."""
    student = store.get_student(student_id)
    if student is None:
        raise NotFoundError(f"Student '{student_id}' was not found.")
    cleaned = list(dict.fromkeys(goal.strip() for goal in goals if goal and goal.strip()))[:MAX_LEARNING_GOALS]
    metadata = dict(student.metadata)
    metadata["learning_goals"] = cleaned
    store.update_student_metadata(student_id, metadata)
    emit_event("learning_goals_stored", student_id=student_id, goal_count=len(cleaned))
    logger.info("Stored %d learning goals for %s", len(cleaned), student_id)
    return cleaned


__all__ = [
    "record_lesson_completion",
    "store_learning_goals",
]
