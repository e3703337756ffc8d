from __future__ import annotations

from datetime import timedelta

import pytest

from academy_scheduler.errors import NotFoundError
from academy_scheduler.learning_analytics import (
    LearningAnalyticsEstimator,
    engagement_score,
    learning_velocity,
    optimal_class_size,
    retention_rate,
)
from academy_scheduler.records import AttendanceRecord, FeedbackRecord

from conftest import MONDAY


def _attendance(days: int, status: str = "present", hour: int = 10) -> AttendanceRecord:
    return AttendanceRecord(
        id=f"a-{days}-{status}",
        booking_id="b",
        student_id="s1",
        class_id="k",
        status=status,
        attendance_time=MONDAY + timedelta(days=days, hours=hour),
    )


def _feedback(rating, class_id: str = "k", areas: str = "", booking_id=None) -> FeedbackRecord:
    return FeedbackRecord(
        id=f"f-{class_id}-{rating}-{areas}",
        student_id="s1",
        course_id="c1",
        class_id=class_id,
        booking_id=booking_id,
        unit_number=1,
        lesson_number=1,
        rating=rating,
        areas_for_improvement=areas,
        submitted_time=MONDAY,
    )


def _sized(booking_id: str, class_id: str, size: int) -> AttendanceRecord:
    return AttendanceRecord(
        id=f"a-{booking_id}",
        booking_id=booking_id,
        student_id="s1",
        class_id=class_id,
        status="present",
        attendance_time=MONDAY,
        class_size=size,
    )


def test_velocity_counts_present_classes_per_week() -> None:
    attendance = [_attendance(0), _attendance(7), _attendance(14), _attendance(21), _attendance(3, "absent")]

    assert learning_velocity(attendance) == pytest.approx(round(4 / 3, 2))
    assert learning_velocity([_attendance(0), _attendance(1)]) == 2.0
    assert learning_velocity([]) == 0.0


def test_retention_and_engagement() -> None:
    feedback = [_feedback(5), _feedback(4), _feedback(2), _feedback(None)]
    attendance = [_attendance(0), _attendance(1, "absent")]

    assert retention_rate(feedback) == pytest.approx(66.67)
    assert retention_rate([]) == 0.0
    # 0.5 attendance * 40 + (11/3 / 5) * 60
    assert engagement_score(attendance, feedback) == pytest.approx(64.0)
    assert engagement_score([], []) == 0.0


def test_optimal_class_size_prefers_best_rated_then_smaller() -> None:
    attendance = [_sized("b-small", "small", 3), _sized("b-large", "large", 6), _sized("b-tie", "tie", 2)]

    assert optimal_class_size([_feedback(5, "small"), _feedback(3, "large")], attendance) == 3
    assert optimal_class_size([_feedback(4, "small"), _feedback(4, "tie")], attendance) == 2
    assert optimal_class_size([], attendance) == 4
    assert optimal_class_size([_feedback(5, "never-attended")], attendance) == 4


def test_optimal_class_size_matches_feedback_by_booking_first() -> None:
    attendance = [_sized("b-crowded", "k", 7), _sized("b-quiet", "k", 2)]

    assert optimal_class_size([_feedback(5, "k", booking_id="b-crowded")], attendance) == 7
    assert optimal_class_size([_feedback(5, "k")], attendance) == 2


def test_generate_learning_analytics(academy, store) -> None:
    academy.course("c1")
    academy.teacher("t1")
    academy.student("s1", metadata={"learning_style": "Visual"})
    academy.student("s2")
    academy.student("s3")
    academy.klass("k1", "c1", "t1", current_enrollment=3)
    academy.klass("k2", "c1", "t1", current_enrollment=5, lesson_number=2)
    own = academy.booking("s1", "k1")
    second = academy.booking("s1", "k2")
    academy.booking("s2", "k1")
    academy.booking("s3", "k2", status="cancelled")
    academy.attendance(own.id, MONDAY + timedelta(hours=10))
    academy.attendance(own.id, MONDAY + timedelta(days=7, hours=10))
    academy.attendance(second.id, MONDAY + timedelta(days=1, hours=10), status="absent")
    academy.completion("s1", "c1", 1, 1, class_id="k1", rating=2, areas_for_improvement="listening")
    academy.completion("s1", "c1", 1, 2, class_id="k2", rating=4, areas_for_improvement="listening")

    analytics = LearningAnalyticsEstimator(store).generate_learning_analytics("s1")

    assert analytics.student_id == "s1"
    assert analytics.learning_velocity == 2.0
    assert analytics.retention_rate == 50.0
    assert analytics.preferred_learning_style == "visual"
    assert analytics.optimal_class_size == 5
    assert analytics.peer_compatibility == ["s2"]
    [slot] = analytics.best_time_slots
    assert (slot.day_of_week, slot.start_time, slot.end_time) == (1, "10:00", "11:00")
    [topic] = analytics.topic_performance
    assert topic.topic == "listening"
    assert topic.attempts == 2
    assert topic.mastery_level == 60.0
    assert topic.requires_review is True


def test_analytics_for_unknown_student_raises(store) -> None:
    with pytest.raises(NotFoundError):
        LearningAnalyticsEstimator(store).generate_learning_analytics("ghost")


def test_analytics_defaults_without_history(academy, store) -> None:
    academy.student("fresh")

    analytics = LearningAnalyticsEstimator(store).generate_learning_analytics("fresh")

    assert analytics.learning_velocity == 0.0
    assert analytics.engagement_score == 0.0
    assert analytics.optimal_class_size == 4
    assert analytics.preferred_learning_style == "mixed"
    assert analytics.best_time_slots == []
    assert analytics.peer_compatibility == []
