from __future__ import annotations

from datetime import timedelta
from typing import List

from academy_scheduler.collaborators import DefaultRoomAllocator
from academy_scheduler.config import Settings
from academy_scheduler.scheduling_engine import (
    FAILURE_RECOMMENDATION,
    SchedulingRulesEngine,
    decision_confidence,
    optimization_score,
)
from academy_scheduler.scheduling_models import (
    ClassComposition,
    ScheduledClass,
    SchedulingDecision,
    SchedulingRequest,
    TimeRange,
)
from academy_scheduler.scheduling_rules import OptimizationWeights

from conftest import MONDAY

MONDAY_ONLY = [
    {"day_of_week": 1, "start_time": f"{hour:02d}:00", "end_time": f"{hour + 1:02d}:00"} for hour in range(9, 17)
]


class _FixedRooms:
    def allocate(self, class_id: str, composition: ClassComposition) -> str:
        return f"room-for-{composition.class_type}"


class _OfflineStore:
    def list_students(self, **_: object):
        raise RuntimeError("database offline")


def _request(student_ids=None, level=None, days: int = 7, **extra) -> SchedulingRequest:
    return SchedulingRequest(
        student_ids=student_ids,
        level=level,
        time_range=TimeRange(start_date=MONDAY, end_date=MONDAY + timedelta(days=days)),
        **extra,
    )


def _engine(store, **kwargs) -> SchedulingRulesEngine:
    kwargs.setdefault("room_allocator", _FixedRooms())
    return SchedulingRulesEngine(store, clock=lambda: MONDAY, **kwargs)


def _seed_course(academy, course_id: str, students, **student_kwargs) -> None:
    academy.course(course_id)
    academy.curriculum(course_id, units=2, lessons=3)
    for student_id in students:
        academy.student(student_id, **student_kwargs)
        academy.enroll(student_id, course_id)


def _assert_no_double_booking(classes: List[ScheduledClass]) -> None:
    for index, first in enumerate(classes):
        for second in classes[index + 1:]:
            if first.scheduled_time < second.end_time and second.scheduled_time < first.end_time:
                assert first.teacher_id != second.teacher_id
                assert not set(first.student_ids) & set(second.student_ids)


def test_empty_student_list_succeeds_with_no_classes(store) -> None:
    response = _engine(store).schedule_classes(_request(student_ids=[]))

    assert response.success is True
    assert response.result is not None
    assert response.result.scheduled_classes == []
    assert response.result.unscheduled_students == []
    assert response.result.next_optimization_date == MONDAY + timedelta(days=7)


def test_inverted_time_range_is_reported_as_failure(store, events) -> None:
    request = SchedulingRequest(
        student_ids=["s1"],
        time_range=TimeRange(start_date=MONDAY, end_date=MONDAY - timedelta(days=1)),
    )

    response = _engine(store).schedule_classes(request)

    assert response.success is False
    assert response.result is None
    assert "end_date" in (response.error or "")
    assert response.error_code == "validation_error"
    assert events[-1].name == "scheduling_run"
    assert events[-1].payload["status"] == "invalid"


def test_request_must_select_students(store) -> None:
    response = _engine(store).schedule_classes(_request())

    assert response.success is False
    assert response.error_code == "validation_error"


def test_invalid_config_override_is_reported(store) -> None:
    response = _engine(store).schedule_classes(
        _request(student_ids=["s1"], config_override={"constraints": {"max_students_per_group": 40}})
    )

    assert response.success is False
    assert response.error_code == "validation_error"
    assert "config_override" in (response.error or "")


def test_unexpected_failures_degrade_to_error_response(events) -> None:
    response = _engine(_OfflineStore()).schedule_classes(_request(level="Basic"))

    assert response.success is False
    assert response.error == "database offline"
    assert response.error_code == "internal_error"
    assert response.recommendations == [FAILURE_RECOMMENDATION]
    assert events[-1].payload["status"] == "error"
    assert events[-1].payload["exception_type"] == "RuntimeError"


def test_students_sharing_a_gap_are_scheduled_together(academy, store, events) -> None:
    _seed_course(academy, "c1", ["s1", "s2", "s3"])
    academy.teacher("t1")

    response = _engine(store).schedule_classes(_request(student_ids=["s1", "s2", "s3", "s1"]))

    assert response.success is True
    result = response.result
    [scheduled] = result.scheduled_classes
    assert scheduled.class_type == "group"
    assert scheduled.student_ids == ["s1", "s2", "s3"]
    assert scheduled.teacher_id == "t1"
    assert scheduled.scheduled_time == MONDAY + timedelta(hours=9)
    assert scheduled.duration_minutes == 45
    assert scheduled.room_or_link == "room-for-group"
    assert scheduled.preparation_notes[0] == "Review Unit 1 Lesson 1 (Unit 1, Lesson 1)"
    assert "Effective group interaction and collaboration" in scheduled.success_criteria
    assert result.unscheduled_students == []
    metrics = result.performance_metrics
    assert metrics.total_students_scheduled == 3
    assert metrics.total_classes_created == 1
    assert metrics.content_coverage_percentage == 100.0
    assert metrics.teacher_utilization_rate == 100.0
    assert metrics.scheduling_efficiency == 100.0
    assert result.optimization_score == 100.0
    assert any("smaller than optimal" in message for message in response.recommendations)
    assert events[-1].payload["status"] == "success"
    assert events[-1].payload["scheduled_count"] == 1


def test_level_selection_skips_inactive_students(academy, store) -> None:
    _seed_course(academy, "c1", ["s1", "s2"])
    academy.student("dormant", is_active=False)
    academy.enroll("dormant", "c1")
    academy.student("advanced", level="Business English")
    academy.enroll("advanced", "c1")
    academy.teacher("t1")

    response = _engine(store).schedule_classes(_request(level="Basic"))

    [scheduled] = response.result.scheduled_classes
    assert scheduled.student_ids == ["s1", "s2"]


def test_teacher_conflict_moves_second_class_past_the_break(academy, store) -> None:
    _seed_course(academy, "c1", ["s1", "s2"])
    _seed_course(academy, "c2", ["s3", "s4"])
    academy.teacher("t1", availability=MONDAY_ONLY)

    response = _engine(store).schedule_classes(_request(level="Basic"))

    classes = response.result.scheduled_classes
    assert [klass.scheduled_time for klass in classes] == [
        MONDAY + timedelta(hours=9),
        MONDAY + timedelta(hours=10),
    ]
    _assert_no_double_booking(classes)


def test_config_override_applies_to_one_run_only(academy, store) -> None:
    _seed_course(academy, "c1", ["s1", "s2"])
    _seed_course(academy, "c2", ["s3", "s4"])
    academy.teacher("t1", availability=MONDAY_ONLY)
    engine = _engine(store)

    response = engine.schedule_classes(
        _request(level="Basic", config_override={"constraints": {"min_break_between_classes": 30}})
    )

    assert response.result.scheduled_classes[1].scheduled_time == MONDAY + timedelta(hours=10, minutes=30)
    assert engine.config.constraints.min_break_between_classes == 15


def test_daily_class_cap_leaves_students_unscheduled(academy, store) -> None:
    _seed_course(academy, "c1", ["s1", "s2"])
    _seed_course(academy, "c2", ["s3", "s4"])
    academy.teacher("t1", availability=MONDAY_ONLY)

    response = _engine(store).schedule_classes(
        _request(level="Basic", config_override={"constraints": {"max_classes_per_day": 1}})
    )

    result = response.result
    assert len(result.scheduled_classes) == 1
    assert result.unscheduled_students == ["s3", "s4"]
    assert result.performance_metrics.scheduling_efficiency == 50.0
    assert response.recommendations[0].startswith("2 students could not be scheduled")


def test_slow_learners_are_split_into_individual_classes(academy, store) -> None:
    _seed_course(academy, "c1", ["s1", "s2"])
    academy.teacher("t1")
    for student_id in ("s1", "s2"):
        for step, (unit, lesson) in enumerate([(1, 1), (1, 2), (1, 3), (2, 1)]):
            academy.completion(student_id, "c1", unit, lesson, submitted_time=MONDAY - timedelta(days=40 - 10 * step))

    response = _engine(store).schedule_classes(_request(student_ids=["s1", "s2"]))

    classes = response.result.scheduled_classes
    assert [klass.class_type for klass in classes] == ["individual", "individual"]
    assert sorted(student for klass in classes for student in klass.student_ids) == ["s1", "s2"]
    assert {klass.room_or_link for klass in classes} == {"room-for-individual"}
    assert [(item.unit_number, item.lesson_number) for item in classes[0].content_items] == [(2, 2)]
    _assert_no_double_booking(classes)


def test_students_without_a_qualified_teacher_stay_unscheduled(academy, store) -> None:
    _seed_course(academy, "c1", ["s1", "s2", "s3"])
    academy.teacher("t1", specializations=["Business English"])

    response = _engine(store).schedule_classes(_request(level="Basic"))

    assert response.success is True
    assert response.result.scheduled_classes == []
    assert response.result.unscheduled_students == ["s1", "s2", "s3"]
    assert response.recommendations[0].startswith("3 students could not be scheduled")


def test_student_availability_constrains_start_time(academy, store) -> None:
    tuesday_late_morning = {"availability": [{"day_of_week": 2, "start_time": "10:00", "end_time": "12:00"}]}
    _seed_course(academy, "c1", ["s1", "s2"], metadata=tuesday_late_morning)
    academy.teacher("t1")

    response = _engine(store).schedule_classes(_request(level="Basic"))

    [scheduled] = response.result.scheduled_classes
    assert scheduled.scheduled_time == MONDAY + timedelta(days=1, hours=10)


def test_scheduling_horizon_limits_candidate_days(academy, store) -> None:
    friday_only = {"availability": [{"day_of_week": 5, "start_time": "09:00", "end_time": "17:00"}]}
    _seed_course(academy, "c1", ["s1", "s2"], metadata=friday_only)
    academy.teacher("t1")

    response = _engine(store).schedule_classes(
        _request(level="Basic", days=14, config_override={"scheduling_horizon_days": 2})
    )

    assert response.result.scheduled_classes == []
    assert response.result.unscheduled_students == ["s1", "s2"]


def test_decision_scores_stay_in_range() -> None:
    composition = ClassComposition(
        id="solo",
        student_ids=["s1"],
        class_type="individual",
        recommended_duration=45,
        scheduling_priority="urgent",
        optimal_class_size=1,
    )
    confidence = decision_confidence(has_teacher=True, has_time=True, composition=composition)
    decision = SchedulingDecision(
        composition=composition,
        teacher_id="t1",
        scheduled_time=MONDAY,
        confidence_score=confidence,
    )

    assert confidence == 100.0
    assert optimization_score(decision, OptimizationWeights()) == 100.0
    heavy = OptimizationWeights(content_priority=3.0, teacher_availability=3.0)
    assert optimization_score(decision, heavy) == 100.0
    assert decision_confidence(has_teacher=False, has_time=False, composition=composition) == 65.0


def test_default_room_allocator_links_individuals_and_rotates_rooms() -> None:
    settings = Settings(ACADEMY_MEETING_BASE_URL="https://meet.example/room/", ACADEMY_ROOM_COUNT=2)
    allocator = DefaultRoomAllocator(settings)
    group = ClassComposition(id="g", student_ids=["a", "b"], class_type="group", recommended_duration=45)
    solo = ClassComposition(id="i", student_ids=["a"], class_type="individual", recommended_duration=45)

    assert allocator.allocate("class-1", solo) == "https://meet.example/room/class-1"
    assert [allocator.allocate(f"class-{n}", group) for n in range(3)] == ["Room 1", "Room 2", "Room 1"]
