"""Learning analytics derived from attendance and feedback history."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Dict, List, Sequence, Tuple

from .content_analysis import split_topics
from .errors import NotFoundError
from .records import AttendanceRecord, FeedbackRecord, StudentRecord
from .repositories.academy_store import AcademyStore
from .scheduling_models import MAX_CLASS_SIZE, LearningAnalytics, LearningStyle, TimeSlot, TopicPerformance, day_of_week

logger = logging.getLogger(__name__)

DEFAULT_OPTIMAL_CLASS_SIZE = 4
DEFAULT_RATING = 3.0
BEST_SLOT_LIMIT = 5
ATTENDANCE_WEIGHT = 40.0
RATING_WEIGHT = 60.0
RETENTION_RATING_FLOOR = 4
REVIEW_RATING_CEILING = 3
LEARNING_STYLES: Tuple[LearningStyle, ...] = ("visual", "auditory", "kinesthetic", "mixed")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def learning_velocity(attendance: Sequence[AttendanceRecord]) -> float:
    """Attended classes per week across the span of the attendance history."""
    present = [record.attendance_time for record in attendance if record.status == "present"]
    if not present:
        return 0.0
    span_weeks = (max(present) - min(present)).total_seconds() / (7 * 86400.0)
    return round(len(present) / max(1.0, span_weeks), 2)


def retention_rate(feedback: Sequence[FeedbackRecord]) -> float:
    rated = [entry.rating for entry in feedback if entry.rating is not None]
    if not rated:
        return 0.0
    positive = sum(1 for rating in rated if rating >= RETENTION_RATING_FLOOR)
    return round(positive / len(rated) * 100.0, 2)


def engagement_score(attendance: Sequence[AttendanceRecord], feedback: Sequence[FeedbackRecord]) -> float:
    attendance_rate = (
        sum(1 for record in attendance if record.status == "present") / len(attendance) if attendance else 0.0
    )
    ratings = [entry.rating for entry in feedback if entry.rating is not None]
    average_rating = sum(ratings) / len(ratings) if ratings else 0.0
    score = attendance_rate * ATTENDANCE_WEIGHT + (average_rating / 5.0) * RATING_WEIGHT
    return round(_clamp(score, 0.0, 100.0), 2)


def optimal_class_size(feedback: Sequence[FeedbackRecord], attendance: Sequence[AttendanceRecord]) -> int:
    """Attended class size with the best average rating; ties favour the smaller class.

    Feedback is matched to attendance by booking, falling back to the class.
    """
    size_by_booking = {record.booking_id: record.class_size for record in attendance if record.class_size > 0}
    size_by_class = {record.class_id: record.class_size for record in attendance if record.class_size > 0}
    ratings_by_size: Dict[int, List[float]] = defaultdict(list)
    for entry in feedback:
        size = size_by_booking.get(entry.booking_id or "") or size_by_class.get(entry.class_id or "")
        if not size:
            continue
        rating = float(entry.rating) if entry.rating is not None else DEFAULT_RATING
        ratings_by_size[size].append(rating)
    if not ratings_by_size:
        return DEFAULT_OPTIMAL_CLASS_SIZE
    best_size = min(ratings_by_size, key=lambda size: (-sum(ratings_by_size[size]) / len(ratings_by_size[size]), size))
    return int(_clamp(best_size, 1, MAX_CLASS_SIZE))


def best_time_slots(attendance: Sequence[AttendanceRecord], *, limit: int = BEST_SLOT_LIMIT) -> List[TimeSlot]:
    buckets: Counter[Tuple[int, int]] = Counter(
        (day_of_week(record.attendance_time), record.attendance_time.hour)
        for record in attendance
        if record.status == "present"
    )
    ranked = sorted(buckets.items(), key=lambda entry: (-entry[1], entry[0]))[:limit]
    return [
        TimeSlot(
            day_of_week=day,
            start_time=f"{hour:02d}:00",
            end_time=f"{hour + 1:02d}:00" if hour < 23 else "23:59",
            is_available=True,
            recurring=True,
        )
        for (day, hour), _ in ranked
    ]


def topic_performance(feedback: Sequence[FeedbackRecord]) -> List[TopicPerformance]:
    ratings_by_topic: Dict[str, List[int]] = defaultdict(list)
    for entry in feedback:
        if entry.rating is None:
            continue
        for topic in split_topics(entry.areas_for_improvement):
            ratings_by_topic[topic].append(entry.rating)
    performance: List[TopicPerformance] = []
    for topic, ratings in ratings_by_topic.items():
        average = sum(ratings) / len(ratings)
        performance.append(
            TopicPerformance(
                topic=topic,
                mastery_level=round(_clamp(average * 20.0, 0.0, 100.0), 2),
                difficulty_rating=round(_clamp(10.0 - average, 1.0, 10.0), 2),
                attempts=len(ratings),
                requires_review=any(rating < REVIEW_RATING_CEILING for rating in ratings),
            )
        )
    return performance


def preferred_learning_style(student: StudentRecord) -> LearningStyle:
    style = (student.learning_style or "").lower()
    for candidate in LEARNING_STYLES:
        if candidate == style:
            return candidate
    return "mixed"


class LearningAnalyticsEstimator:
    """Builds :class:`LearningAnalytics` for a single student."""

    def __init__(self, store: AcademyStore) -> None:
        self._store = store

    def generate_learning_analytics(self, student_id: str) -> LearningAnalytics:
        student = self._store.get_student(student_id)
        if student is None:
            raise NotFoundError(f"Student '{student_id}' was not found.")

        attendance = self._store.list_attendance(student_id)
        feedback = self._store.list_feedback(student_ids=[student_id])

        return LearningAnalytics(
            student_id=student_id,
            learning_velocity=learning_velocity(attendance),
            retention_rate=retention_rate(feedback),
            engagement_score=engagement_score(attendance, feedback),
            preferred_learning_style=preferred_learning_style(student),
            optimal_class_size=optimal_class_size(feedback, attendance),
            best_time_slots=best_time_slots(attendance),
            peer_compatibility=self.peer_ids(student_id),
            topic_performance=topic_performance(feedback),
        )

    def peer_ids(self, student_id: str) -> List[str]:
        """Distinct students who have shared any booked class with ``student_id``."""
        own = self._store.list_bookings(student_id=student_id)
        if not own:
            return []
        shared = self._store.list_bookings(class_ids=sorted({booking.class_id for booking in own}))
        return sorted({booking.student_id for booking in shared if booking.student_id != student_id})


__all__ = [
    "LearningAnalyticsEstimator",
    "best_time_slots",
    "engagement_score",
    "learning_velocity",
    "optimal_class_size",
    "retention_rate",
    "topic_performance",
]
