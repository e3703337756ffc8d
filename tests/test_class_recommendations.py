from __future__ import annotations

from datetime import timedelta
from typing import Dict

import pytest

from academy_scheduler.class_recommendations import (
    AlternativeRecommendationService,
    classify,
    confidence_level,
    overall_score,
    spot_availability,
)
from academy_scheduler.errors import NotFoundError
from academy_scheduler.records import ClassRecord
from academy_scheduler.scheduling_models import (
    AlternativeClassRecommendation,
    AlternativeRecommendationRequest,
    RecommendationScoreBreakdown,
    RecommendationWeights,
    TimeWindow,
)

from conftest import MONDAY

NEXT_MONDAY_TEN = MONDAY + timedelta(days=7, hours=10)


def _breakdown(**overrides: float) -> RecommendationScoreBreakdown:
    values: Dict[str, float] = {name: 50.0 for name in RecommendationScoreBreakdown.model_fields}
    values.update(overrides)
    return RecommendationScoreBreakdown(**values)


def _class_record(capacity: int, enrolled: int, is_active: bool = True) -> ClassRecord:
    return ClassRecord(
        id="k",
        course_id="c1",
        teacher_id="t1",
        class_name="k",
        capacity=capacity,
        current_enrollment=enrolled,
        unit_number=1,
        lesson_number=1,
        scheduled_start=MONDAY,
        is_active=is_active,
    )


def _seed(academy) -> None:
    academy.course("c1")
    academy.curriculum("c1", units=2, lessons=3)
    academy.student("s1")
    academy.enroll("s1", "c1")
    academy.teacher("t1")
    academy.klass("full", "c1", "t1", capacity=3, current_enrollment=3)


def _by_id(recommendations, class_id: str) -> AlternativeClassRecommendation:
    return next(item for item in recommendations if item.alternative_class.id == class_id)


def test_spot_availability_levels() -> None:
    assert spot_availability(_class_record(9, 7)) == "immediate"
    assert spot_availability(_class_record(9, 8)) == "limited_spots"
    assert spot_availability(_class_record(9, 9)) == "waitlist"
    assert spot_availability(_class_record(9, 2, is_active=False)) == "unavailable"


def test_type_classification_follows_fixed_precedence() -> None:
    assert classify(_breakdown(content_similarity=81, schedule_compatibility=95)) == "content_similar"
    assert classify(_breakdown(schedule_compatibility=81, teacher_compatibility=95)) == "time_alternative"
    assert classify(_breakdown(teacher_compatibility=90)) == "teacher_match"
    assert classify(_breakdown(location_convenience=100)) == "location_optimized"
    assert classify(_breakdown()) == "content_similar"


def test_confidence_is_scaled_by_availability_and_clamped() -> None:
    assert confidence_level(80, "immediate", 50) == 0.8
    assert confidence_level(80, "waitlist", 50) == pytest.approx(0.56)
    assert confidence_level(95, "immediate", 90) == 1.0
    assert confidence_level(5, "unavailable", 10) == 0.1


def test_overall_score_uses_weights_and_stays_bounded() -> None:
    perfect = _breakdown(**{name: 100.0 for name in RecommendationScoreBreakdown.model_fields})

    assert overall_score(perfect, RecommendationWeights()) == 100.0
    assert overall_score(perfect, RecommendationWeights(content_similarity=5.0)) == 100.0
    assert overall_score(_breakdown(), RecommendationWeights()) == 50.0


def test_online_alternative_outranks_distant_offline_class(academy, store, events) -> None:
    _seed(academy)
    academy.klass("online", "c1", "t1", lesson_number=2, location="Online", meeting_link="https://meet/online")
    academy.klass("offline", "c1", "t1", lesson_number=2, location="Downtown", distance_km=8.0)
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full", max_distance_km=10)

    recommendations = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert [item.alternative_class.id for item in recommendations] == ["online", "offline"]
    online, offline = recommendations
    assert online.score_breakdown.location_convenience == 100.0
    assert offline.score_breakdown.location_convenience == pytest.approx(20.0)
    assert online.distance == 0.0
    assert offline.distance == 8.0
    assert online.overall_score == 91.0
    assert offline.overall_score == 85.0
    assert online.type == "content_similar"
    assert online.availability == "immediate"
    assert "Convenient location" in online.benefits
    assert "Less convenient location" in offline.drawbacks
    assert online.alternative_class.student_ids == ["s1"]
    assert online.alternative_class.room_or_link == "https://meet/online"
    assert events[-1].name == "alternative_recommendations"
    assert events[-1].payload["count"] == 2


def test_recommendations_are_ranked_and_capped(academy, store) -> None:
    _seed(academy)
    for number in range(14):
        academy.klass(
            f"alt-{number:02d}",
            "c1",
            "t1",
            lesson_number=number % 3 + 1,
            current_enrollment=number % 9,
        )
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full")

    recommendations = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert len(recommendations) == 10
    ranking = [item.ranking_score for item in recommendations]
    assert ranking == sorted(ranking, reverse=True)
    assert "full" not in {item.alternative_class.id for item in recommendations}
    for item in recommendations:
        assert 0 <= item.overall_score <= 100
        assert 0.1 <= item.confidence_level <= 1.0


def test_waitlist_entry_leads_when_requested(academy, store) -> None:
    _seed(academy)
    for number in range(12):
        academy.klass(f"alt-{number:02d}", "c1", "t1", lesson_number=2)
    academy.student("w1")
    academy.student("w2")
    academy.waitlist("full", "w1", 1)
    academy.waitlist("full", "w2", 2)
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full", include_waitlist=True)

    recommendations = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert len(recommendations) == 10
    waitlist = recommendations[0]
    assert waitlist.type == "waitlist"
    assert waitlist.alternative_class.id == "full"
    assert waitlist.estimated_wait_time == 6
    assert waitlist.spot_probability == pytest.approx(0.7)
    assert waitlist.overall_score == 95.0
    assert waitlist.reasoning.endswith("Estimated wait time: 6 days.")
    assert all(item.type != "waitlist" for item in recommendations[1:])


def test_existing_waitlist_position_is_reused(academy, store) -> None:
    _seed(academy)
    academy.student("w1")
    academy.waitlist("full", "w1", 1)
    academy.waitlist("full", "s1", 2)
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full", include_waitlist=True)

    [waitlist] = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert waitlist.estimated_wait_time == 4
    assert waitlist.spot_probability == pytest.approx(0.8)


def test_booked_and_inactive_classes_are_not_offered(academy, store) -> None:
    _seed(academy)
    academy.klass("mine", "c1", "t1", lesson_number=2)
    academy.klass("closed", "c1", "t1", lesson_number=2, is_active=False)
    academy.klass("open", "c1", "t1", lesson_number=2)
    academy.booking("s1", "mine")
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full")

    recommendations = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert [item.alternative_class.id for item in recommendations] == ["open"]


def test_conflicting_class_scores_zero_schedule_compatibility(academy, store) -> None:
    _seed(academy)
    academy.klass("mine", "c1", "t1", lesson_number=3, scheduled_start=NEXT_MONDAY_TEN)
    academy.klass("clash", "c1", "t1", lesson_number=2, scheduled_start=NEXT_MONDAY_TEN + timedelta(minutes=30))
    academy.booking("s1", "mine")
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full")

    [clash] = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert clash.score_breakdown.schedule_compatibility == 0.0
    assert "Less ideal timing" in clash.drawbacks


def test_preferred_time_window_raises_schedule_score(academy, store) -> None:
    _seed(academy)
    academy.klass("monday", "c1", "t1", lesson_number=2, scheduled_start=NEXT_MONDAY_TEN)
    academy.klass("tuesday", "c1", "t1", lesson_number=2, scheduled_start=NEXT_MONDAY_TEN + timedelta(days=1))
    window = TimeWindow(start=NEXT_MONDAY_TEN + timedelta(days=1, hours=-1), end=NEXT_MONDAY_TEN + timedelta(days=1, hours=2))
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full", preferred_times=[window])

    recommendations = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert _by_id(recommendations, "tuesday").score_breakdown.schedule_compatibility == 100.0
    assert _by_id(recommendations, "monday").score_breakdown.schedule_compatibility == 80.0


def test_teacher_history_drives_teacher_compatibility(academy, store) -> None:
    _seed(academy)
    academy.teacher("t2")
    academy.klass("past", "c1", "t2", is_active=False)
    academy.completion("s1", "c1", 1, 1, class_id="past", rating=2)
    academy.klass("with-t2", "c1", "t2", lesson_number=2)
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full")

    [recommendation] = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    assert recommendation.score_breakdown.teacher_compatibility == 40.0


def test_failing_candidate_is_skipped(academy, store, events, monkeypatch) -> None:
    _seed(academy)
    academy.klass("good", "c1", "t1", lesson_number=2)
    academy.klass("broken", "c1", "t1", lesson_number=2)
    service = AlternativeRecommendationService(store)
    original = service._recommend

    def flaky(klass, *args, **kwargs):
        if klass.id == "broken":
            raise RuntimeError("scoring exploded")
        return original(klass, *args, **kwargs)

    monkeypatch.setattr(service, "_recommend", flaky)
    request = AlternativeRecommendationRequest(student_id="s1", preferred_class_id="full")

    recommendations = service.generate_alternative_recommendations(request)

    assert [item.alternative_class.id for item in recommendations] == ["good"]
    failures = [event for event in events if event.name == "recommendation_candidate_failed"]
    assert [event.payload["class_id"] for event in failures] == ["broken"]
    assert events[-1].payload["skipped"] == 1


def test_unknown_student_or_class_raises(academy, store) -> None:
    _seed(academy)
    service = AlternativeRecommendationService(store)

    with pytest.raises(NotFoundError):
        service.generate_alternative_recommendations(
            AlternativeRecommendationRequest(student_id="ghost", preferred_class_id="full")
        )
    with pytest.raises(NotFoundError):
        service.generate_alternative_recommendations(
            AlternativeRecommendationRequest(student_id="s1", preferred_class_id="ghost")
        )


def test_student_without_progress_gets_neutral_pace_and_difficulty(academy, store) -> None:
    _seed(academy)
    academy.student("newcomer")
    academy.klass("open", "c1", "t1", lesson_number=2, pace=3, difficulty=5)
    request = AlternativeRecommendationRequest(student_id="newcomer", preferred_class_id="full")

    recommendations = AlternativeRecommendationService(store).generate_alternative_recommendations(request)

    breakdown = _by_id(recommendations, "open").score_breakdown
    assert breakdown.learning_pace_match == 50.0
    assert breakdown.difficulty_match == 50.0
