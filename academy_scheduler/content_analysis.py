"""Content gap analysis: per-student progress, pace and unlearned curriculum."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .curriculum import content_items_for, items_after, lesson_key, position
from .records import AttendanceRecord, EnrollmentRecord, FeedbackRecord
from .repositories.academy_store import AcademyStore
from .scheduling_models import (
    MAX_GROUPING_COMPATIBILITY,
    ClassType,
    ContentItem,
    LearningPace,
    StudentProgress,
    UnlearnedContent,
    urgency_for_score,
)

logger = logging.getLogger(__name__)

SLOW_LESSONS_PER_WEEK = 1.0
FAST_LESSONS_PER_WEEK = 3.0
NEXT_CONTENT_LIMIT = 3
STRUGGLING_RATING_CEILING = 3
MASTERED_RATING_FLOOR = 4
INDIVIDUAL_STRUGGLING_THRESHOLD = 2
INDIVIDUAL_DIFFICULTY_THRESHOLD = 7
GROUPING_LESSON_TOLERANCE = 1
COMPATIBLE_LESSON_TOLERANCE = 2


def split_topics(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [topic.strip() for topic in raw.split(",") if topic.strip()]


def _dedupe(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def learning_pace_for(completion_times: Sequence[datetime]) -> LearningPace:
    """Classify lessons completed per week: under 1 is slow, over 3 is fast."""
    if len(completion_times) < 2:
        return "average"
    ordered = sorted(completion_times)
    span_days = max(1.0, (ordered[-1] - ordered[0]).total_seconds() / 86400.0)
    per_week = len(ordered) / span_days * 7.0
    if per_week < SLOW_LESSONS_PER_WEEK:
        return "slow"
    if per_week > FAST_LESSONS_PER_WEEK:
        return "fast"
    return "average"


def calculate_priority_score(
    progress_percentage: float,
    struggling_count: int,
    unlearned_count: int,
    learning_pace: LearningPace,
) -> float:
    score = 0.0
    if progress_percentage < 50:
        score += 30
    elif progress_percentage < 75:
        score += 20
    else:
        score += 10

    if struggling_count > 3:
        score += 20
    elif struggling_count > 0:
        score += 10

    if unlearned_count > 10:
        score += 25
    elif unlearned_count > 5:
        score += 15
    else:
        score += 5

    if learning_pace == "slow":
        score += 15
    elif learning_pace == "fast":
        score -= 5

    return max(0.0, min(100.0, score))


def recommend_class_type(struggling_count: int, items: Sequence[ContentItem]) -> ClassType:
    if struggling_count > INDIVIDUAL_STRUGGLING_THRESHOLD:
        return "individual"
    if any(item.difficulty_level > INDIVIDUAL_DIFFICULTY_THRESHOLD for item in items):
        return "individual"
    return "group"


@dataclass
class UnlearnedIndex:
    """Unlearned content for many students, keyed for neighbourhood lookups."""

    items_by_student: Dict[str, Dict[str, List[ContentItem]]] = field(default_factory=dict)
    students_by_position: Dict[Tuple[str, int, int], Set[str]] = field(default_factory=lambda: defaultdict(set))

    def add(self, student_id: str, course_id: str, items: Sequence[ContentItem]) -> None:
        self.items_by_student.setdefault(student_id, {})[course_id] = list(items)
        for item in items:
            self.students_by_position[(course_id, item.unit_number, item.lesson_number)].add(student_id)

    def unlearned_for(self, student_id: str, course_id: str) -> Optional[List[ContentItem]]:
        return self.items_by_student.get(student_id, {}).get(course_id)

    def neighbours(
        self,
        student_id: str,
        course_id: str,
        items: Sequence[ContentItem],
        *,
        tolerance: int = GROUPING_LESSON_TOLERANCE,
        limit: int = MAX_GROUPING_COMPATIBILITY,
    ) -> List[str]:
        """Other students with unlearned items in the same course within ``tolerance`` lessons."""
        offsets = [0] + [step for delta in range(1, tolerance + 1) for step in (-delta, delta)]
        found: List[str] = []
        seen: Set[str] = {student_id}
        for item in items:
            for offset in offsets:
                key = (course_id, item.unit_number, item.lesson_number + offset)
                for other in sorted(self.students_by_position.get(key, ())):
                    if other in seen:
                        continue
                    seen.add(other)
                    found.append(other)
                    if len(found) >= limit:
                        return found
        return found

    def overlaps(self, student_id: str, targets: Sequence[ContentItem], *, tolerance: int) -> bool:
        for items in self.items_by_student.get(student_id, {}).values():
            for item in items:
                for target in targets:
                    if item.unit_number == target.unit_number and abs(item.lesson_number - target.lesson_number) <= tolerance:
                        return True
        return False


class ContentGapAnalyzer:
    """Computes progress and unlearned content for students from the academy store."""

    def __init__(self, store: AcademyStore) -> None:
        self._store = store
        self._curricula: Dict[str, List[ContentItem]] = {}
        self._index: Optional[UnlearnedIndex] = None

    def curriculum_for(self, course_id: str) -> List[ContentItem]:
        if course_id not in self._curricula:
            self._curricula[course_id] = content_items_for(self._store.list_materials(course_id))
        return self._curricula[course_id]

    def analyze_student_progress(self, student_id: str) -> List[StudentProgress]:
        return [progress for progress, _ in self._progress_with_completions(student_id)]

    def identify_unlearned_content(
        self,
        student_id: str,
        course_id: Optional[str] = None,
        *,
        index: Optional[UnlearnedIndex] = None,
    ) -> List[UnlearnedContent]:
        _, unlearned = self.progress_and_gaps(student_id, course_id, index=index)
        return unlearned

    def progress_and_gaps(
        self,
        student_id: str,
        course_id: Optional[str] = None,
        *,
        index: Optional[UnlearnedIndex] = None,
    ) -> Tuple[List[StudentProgress], List[UnlearnedContent]]:
        """Progress records and unlearned content from a single pass over the student's history."""
        records: List[StudentProgress] = []
        results: List[UnlearnedContent] = []
        for progress, completed_keys in self._progress_with_completions(student_id):
            if course_id is not None and progress.course_id != course_id:
                continue
            records.append(progress)
            items = None if index is None else index.unlearned_for(student_id, progress.course_id)
            if items is None:
                items = [
                    item
                    for item in self.curriculum_for(progress.course_id)
                    if item.lesson_key not in completed_keys
                ]
            struggling = len(progress.struggling_topics)
            score = calculate_priority_score(progress.progress_percentage, struggling, len(items), progress.learning_pace)
            lookup = index or self._full_index()
            results.append(
                UnlearnedContent(
                    student_id=student_id,
                    course_id=progress.course_id,
                    content_items=items,
                    priority_score=score,
                    urgency_level=urgency_for_score(score),
                    recommended_class_type=recommend_class_type(struggling, items),
                    estimated_learning_time=sum(item.estimated_duration_minutes for item in items),
                    grouping_compatibility=lookup.neighbours(student_id, progress.course_id, items),
                )
            )
        return records, results

    def find_compatible_students(
        self,
        content_items: Sequence[ContentItem],
        course_type: str,
        *,
        index: Optional[UnlearnedIndex] = None,
    ) -> List[str]:
        """Students at ``course_type`` whose unlearned content sits within two lessons of a target."""
        if not content_items:
            return []
        candidates = self._store.list_students(level=course_type)
        if not candidates:
            return []
        lookup = index or self.build_unlearned_index([student.id for student in candidates])
        return [
            student.id
            for student in candidates
            if lookup.overlaps(student.id, content_items, tolerance=COMPATIBLE_LESSON_TOLERANCE)
        ]

    def build_unlearned_index(self, student_ids: Optional[Sequence[str]] = None) -> UnlearnedIndex:
        """Batch-load enrollments and completions once and index what remains unlearned."""
        index = UnlearnedIndex()
        enrollments = self._store.list_enrollments(student_ids=student_ids)
        if not enrollments:
            return index
        enrolled_ids = sorted({enrollment.student_id for enrollment in enrollments})
        completed: Dict[Tuple[str, str], Set[str]] = defaultdict(set)
        for entry in self._store.list_feedback(student_ids=enrolled_ids, completed_only=True):
            completed[(entry.student_id, entry.course_id)].add(lesson_key(entry.unit_number, entry.lesson_number))
        for enrollment in enrollments:
            keys = completed.get((enrollment.student_id, enrollment.course_id), set())
            remaining = [item for item in self.curriculum_for(enrollment.course_id) if item.lesson_key not in keys]
            index.add(enrollment.student_id, enrollment.course_id, remaining)
        logger.debug("Indexed unlearned content for %d enrollments", len(enrollments))
        return index

    def _full_index(self) -> UnlearnedIndex:
        if self._index is None:
            self._index = self.build_unlearned_index()
        return self._index

    def _progress_with_completions(self, student_id: str) -> List[Tuple[StudentProgress, Set[str]]]:
        enrollments = self._store.list_enrollments(student_ids=[student_id])
        if not enrollments:
            return []
        student = self._store.get_student(student_id)
        goals = student.learning_goals if student is not None else []
        course_types = {
            course.id: course.course_type
            for course in self._store.list_courses([enrollment.course_id for enrollment in enrollments])
        }
        feedback_by_course: Dict[str, List[FeedbackRecord]] = defaultdict(list)
        for entry in self._store.list_feedback(student_ids=[student_id]):
            feedback_by_course[entry.course_id].append(entry)
        last_class_by_course = self._last_class_dates(self._store.list_attendance(student_id))

        results: List[Tuple[StudentProgress, Set[str]]] = []
        for enrollment in enrollments:
            results.append(
                self._progress_for(
                    enrollment,
                    feedback_by_course.get(enrollment.course_id, []),
                    goals=goals,
                    course_type=course_types.get(enrollment.course_id),
                    last_class_date=last_class_by_course.get(enrollment.course_id),
                )
            )
        return results

    def _progress_for(
        self,
        enrollment: EnrollmentRecord,
        feedback: Sequence[FeedbackRecord],
        *,
        goals: List[str],
        course_type: Optional[str],
        last_class_date: Optional[datetime],
    ) -> Tuple[StudentProgress, Set[str]]:
        completed = [entry for entry in feedback if entry.lesson_completed]
        completed_keys = {lesson_key(entry.unit_number, entry.lesson_number) for entry in completed}
        curriculum = self.curriculum_for(enrollment.course_id)

        percentage = enrollment.progress_percentage
        if curriculum:
            covered = sum(1 for item in curriculum if item.lesson_key in completed_keys)
            percentage = max(percentage, covered / len(curriculum) * 100.0)
        percentage = min(100.0, percentage)

        furthest = position(enrollment.current_unit, enrollment.current_lesson)
        for entry in completed:
            furthest = max(furthest, position(entry.unit_number, entry.lesson_number))
        latest = max(completed, key=lambda entry: entry.submitted_time) if completed else None

        struggling = _dedupe(
            topic
            for entry in feedback
            if entry.rating is not None and entry.rating < STRUGGLING_RATING_CEILING
            for topic in split_topics(entry.areas_for_improvement)
        )
        mastered = _dedupe(
            topic
            for entry in feedback
            if entry.rating is not None and entry.rating >= MASTERED_RATING_FLOOR
            for topic in split_topics(entry.strengths)
        )
        upcoming = [
            item
            for item in items_after(curriculum, *furthest, limit=len(curriculum))
            if item.lesson_key not in completed_keys
        ][:NEXT_CONTENT_LIMIT]

        progress = StudentProgress(
            student_id=enrollment.student_id,
            course_id=enrollment.course_id,
            course_type=course_type,
            current_unit=furthest[0],
            current_lesson=furthest[1],
            progress_percentage=round(percentage, 2),
            last_completed_lesson=latest.lesson_number if latest else enrollment.current_lesson,
            last_class_date=last_class_date,
            learning_pace=learning_pace_for([entry.submitted_time for entry in completed]),
            struggling_topics=struggling,
            mastered_topics=mastered,
            learning_goals=list(goals),
            next_priority_content=upcoming,
        )
        return progress, completed_keys

    def _last_class_dates(self, attendance: Sequence[AttendanceRecord]) -> Dict[str, datetime]:
        present = [record for record in attendance if record.status == "present"]
        if not present:
            return {}
        classes = self._store.list_classes(active_only=False, class_ids=sorted({record.class_id for record in present}))
        course_by_class = {record.id: record.course_id for record in classes}
        latest: Dict[str, datetime] = {}
        for record in present:
            course_id = course_by_class.get(record.class_id)
            if course_id is None:
                continue
            if course_id not in latest or record.attendance_time > latest[course_id]:
                latest[course_id] = record.attendance_time
        return latest


__all__ = [
    "ContentGapAnalyzer",
    "UnlearnedIndex",
    "calculate_priority_score",
    "learning_pace_for",
    "recommend_class_type",
    "split_topics",
]
