"""Ranked alternatives when a student's preferred class is full or conflicting."""

from __future__ import annotations

import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .collaborators import DistanceEstimator, StoredDistanceEstimator
from .content_analysis import ContentGapAnalyzer
from .errors import NotFoundError
from .learning_analytics import LearningAnalyticsEstimator
from .records import ClassRecord, StudentRecord, TeacherRecord
from .repositories.academy_store import AcademyStore
from .scheduling_models import (
    MAX_CLASS_SIZE,
    AlternativeClassRecommendation,
    AlternativeRecommendationRequest,
    LearningAnalytics,
    RecommendationScoreBreakdown,
    RecommendationType,
    RecommendationWeights,
    ScheduledClass,
    SpotAvailability,
    StudentProgress,
    UnlearnedContent,
    day_of_week,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 10
CONTENT_POOL_THRESHOLD = 0.6
TEACHER_POOL_THRESHOLD = 0.7
STRONG_FACTOR = 80.0
WEAK_FACTOR = 60.0
CONTENT_CONFIDENCE_BOOST_FLOOR = 85.0
CONTENT_CONFIDENCE_BOOST = 1.1
NEUTRAL_SCORE = 75.0
UNKNOWN_PROGRESS_SCORE = 50.0
PAST_CLASSMATE_SCORE = 100.0
NEW_CLASSMATE_SCORE = 60.0
NO_CONFLICT_SCORE = 80.0
PREFERRED_TIME_BONUS = 20.0
WAITLIST_OVERALL_SCORE = 95.0
WAITLIST_DAYS_PER_POSITION = 2
PACE_VALUES = {"slow": 1, "average": 2, "fast": 3}
LESSON_SIMILARITY = {0: 1.0, 1: 0.7, 2: 0.4}
AVAILABILITY_MULTIPLIER: Dict[str, float] = {
    "immediate": 1.0,
    "limited_spots": 0.9,
    "waitlist": 0.7,
    "unavailable": 0.3,
}
DEFAULT_SPECIALIZATIONS = ["Basic", "Everyday A", "Everyday B"]

REASONING: Dict[str, str] = {
    "content_similar": "This class covers content closely aligned with what you still need to learn.",
    "time_alternative": "This class fits your schedule and stated availability.",
    "teacher_match": "This teacher's approach matches how you have learned best so far.",
    "location_optimized": "This class is the most convenient to attend from where you are.",
}
BENEFITS = (
    ("content_similarity", "Highly relevant content"),
    ("schedule_compatibility", "Perfect timing"),
    ("teacher_compatibility", "Compatible teaching style"),
    ("location_convenience", "Convenient location"),
)
DRAWBACKS = (
    ("content_similarity", "Different content focus"),
    ("schedule_compatibility", "Less ideal timing"),
    ("teacher_compatibility", "Different teaching approach"),
    ("location_convenience", "Less convenient location"),
)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


@dataclass
class _StudentContext:
    student: StudentRecord
    progress: List[StudentProgress]
    unlearned: List[UnlearnedContent]
    analytics: LearningAnalytics
    booked_class_ids: Set[str]
    busy: List[Tuple[datetime, datetime]]
    teacher_ratings: Dict[str, float] = field(default_factory=dict)


def spot_availability(klass: ClassRecord) -> SpotAvailability:
    if not klass.is_active:
        return "unavailable"
    if klass.free_spots >= 2:
        return "immediate"
    if klass.free_spots >= 1:
        return "limited_spots"
    return "waitlist"


def content_similarity(klass: ClassRecord, unlearned: Sequence[UnlearnedContent]) -> float:
    """1.0 for an exact unlearned lesson, 0.7 within one lesson, 0.4 within two."""
    best = 0.0
    for entry in unlearned:
        if entry.course_id != klass.course_id:
            continue
        for item in entry.content_items:
            if item.unit_number != klass.unit_number:
                continue
            best = max(best, LESSON_SIMILARITY.get(abs(item.lesson_number - klass.lesson_number), 0.0))
    return best


def progress_alignment(klass: ClassRecord, progress: Sequence[StudentProgress]) -> float:
    for record in progress:
        if record.course_id != klass.course_id:
            continue
        if klass.unit_number == record.current_unit:
            return 1.0 - min(1.0, abs(klass.lesson_number - record.current_lesson) / 5.0)
        if klass.unit_number == record.current_unit + 1:
            return 0.3
        return 0.0
    return 0.0


def confidence_level(overall: float, availability: str, content_score: float) -> float:
    confidence = overall / 100.0 * AVAILABILITY_MULTIPLIER[availability]
    if content_score > CONTENT_CONFIDENCE_BOOST_FLOOR:
        confidence *= CONTENT_CONFIDENCE_BOOST
    return round(_clamp(confidence, 0.1, 1.0), 4)


def classify(breakdown: RecommendationScoreBreakdown) -> RecommendationType:
    if breakdown.content_similarity > STRONG_FACTOR:
        return "content_similar"
    if breakdown.schedule_compatibility > STRONG_FACTOR:
        return "time_alternative"
    if breakdown.teacher_compatibility > STRONG_FACTOR:
        return "teacher_match"
    if breakdown.location_convenience > STRONG_FACTOR:
        return "location_optimized"
    return "content_similar"


def overall_score(breakdown: RecommendationScoreBreakdown, weights: RecommendationWeights) -> float:
    total = sum(getattr(breakdown, name) * getattr(weights, name) for name in RecommendationWeights.model_fields)
    return float(round(_clamp(total)))


class AlternativeRecommendationService:
    """Scores and ranks alternatives to an unavailable preferred class."""

    def __init__(
        self,
        store: AcademyStore,
        *,
        analyzer: Optional[ContentGapAnalyzer] = None,
        estimator: Optional[LearningAnalyticsEstimator] = None,
        distance_estimator: Optional[DistanceEstimator] = None,
    ) -> None:
        self._store = store
        self._analyzer = analyzer or ContentGapAnalyzer(store)
        self._estimator = estimator or LearningAnalyticsEstimator(store)
        self._distance = distance_estimator or StoredDistanceEstimator()

    def generate_alternative_recommendations(
        self,
        request: AlternativeRecommendationRequest,
        weights: Optional[RecommendationWeights] = None,
    ) -> List[AlternativeClassRecommendation]:
        start = time.perf_counter()
        weights = weights or RecommendationWeights()
        student = self._store.get_student(request.student_id)
        if student is None:
            raise NotFoundError(f"Student '{request.student_id}' was not found.")
        preferred = self._store.get_class(request.preferred_class_id)
        if preferred is None:
            raise NotFoundError(f"Class '{request.preferred_class_id}' was not found.")

        context = self._student_context(student)
        teachers = {teacher.id: teacher for teacher in self._store.list_teachers(active_only=False)}
        candidates = [
            klass
            for klass in self._store.list_classes()
            if klass.id != preferred.id and klass.id not in context.booked_class_ids
        ]
        pool = self._candidate_pool(candidates, context, teachers, request)
        rosters = self._rosters([klass.id for klass in pool] + [preferred.id])

        scored: List[AlternativeClassRecommendation] = []
        skipped = 0
        for klass in pool:
            availability = spot_availability(klass)
            if availability == "unavailable":
                continue
            try:
                scored.append(
                    self._recommend(klass, availability, context, teachers, rosters.get(klass.id, []), weights, request)
                )
            except Exception as exc:  # noqa: BLE001
                skipped += 1
                logger.exception("Failed to score alternative class %s", klass.id)
                emit_event(
                    "recommendation_candidate_failed",
                    student_id=student.id,
                    class_id=klass.id,
                    error=str(exc),
                    exception_type=exc.__class__.__name__,
                )

        ranked = sorted(scored, key=lambda recommendation: -recommendation.ranking_score)
        if request.include_waitlist:
            waitlist = self._waitlist_recommendation(preferred, student, rosters.get(preferred.id, []))
            ranked = [waitlist, *ranked[: MAX_RECOMMENDATIONS - 1]]
        else:
            ranked = ranked[:MAX_RECOMMENDATIONS]

        emit_event(
            "alternative_recommendations",
            student_id=student.id,
            preferred_class_id=preferred.id,
            candidate_count=len(pool),
            count=len(ranked),
            skipped=skipped,
            duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
        )
        return ranked

    def _student_context(self, student: StudentRecord) -> _StudentContext:
        progress, unlearned = self._analyzer.progress_and_gaps(student.id)
        analytics = self._estimator.generate_learning_analytics(student.id)
        bookings = self._store.list_bookings(student_id=student.id)
        booked_ids = {booking.class_id for booking in bookings}
        booked_classes = self._store.list_classes(active_only=False, class_ids=sorted(booked_ids)) if booked_ids else []
        busy = [
            (klass.scheduled_start, klass.scheduled_start + timedelta(minutes=klass.duration_minutes))
            for klass in booked_classes
            if klass.is_active
        ]
        return _StudentContext(
            student=student,
            progress=progress,
            unlearned=unlearned,
            analytics=analytics,
            booked_class_ids=booked_ids,
            busy=busy,
            teacher_ratings=self._teacher_ratings(student.id),
        )

    def _teacher_ratings(self, student_id: str) -> Dict[str, float]:
        """Average rating this student has given each teacher's past classes."""
        feedback = [entry for entry in self._store.list_feedback(student_ids=[student_id]) if entry.class_id and entry.rating]
        if not feedback:
            return {}
        classes = self._store.list_classes(active_only=False, class_ids=sorted({entry.class_id for entry in feedback if entry.class_id}))
        teacher_by_class = {klass.id: klass.teacher_id for klass in classes}
        ratings: Dict[str, List[int]] = defaultdict(list)
        for entry in feedback:
            teacher_id = teacher_by_class.get(entry.class_id or "")
            if teacher_id and entry.rating is not None:
                ratings[teacher_id].append(entry.rating)
        return {teacher_id: sum(values) / len(values) for teacher_id, values in ratings.items()}

    def _rosters(self, class_ids: Sequence[str]) -> Dict[str, List[str]]:
        rosters: Dict[str, List[str]] = defaultdict(list)
        for booking in self._store.list_bookings(class_ids=sorted(set(class_ids))):
            rosters[booking.class_id].append(booking.student_id)
        return rosters

    def _candidate_pool(
        self,
        candidates: Sequence[ClassRecord],
        context: _StudentContext,
        teachers: Dict[str, TeacherRecord],
        request: AlternativeRecommendationRequest,
    ) -> List[ClassRecord]:
        content_pool = [
            klass for klass in candidates if content_similarity(klass, context.unlearned) >= CONTENT_POOL_THRESHOLD
        ]
        time_pool = [
            klass
            for klass in candidates
            if klass.free_spots > 0
            and (not request.preferred_times or self._in_preferred_window(klass, request))
            and self._fits_student_availability(klass, context.student)
            and not self._has_conflict(klass, context)
        ]
        teacher_pool = [
            klass
            for klass in candidates
            if self._teacher_compatibility(klass, teachers.get(klass.teacher_id), context) / 100.0 >= TEACHER_POOL_THRESHOLD
        ]
        merged: Dict[str, ClassRecord] = {}
        for klass in [*content_pool, *time_pool, *teacher_pool]:
            merged.setdefault(klass.id, klass)
        return list(merged.values())

    def _in_preferred_window(self, klass: ClassRecord, request: AlternativeRecommendationRequest) -> bool:
        return any(window.contains(klass.scheduled_start) for window in request.preferred_times)

    def _fits_student_availability(self, klass: ClassRecord, student: StudentRecord) -> bool:
        slots = student.availability
        if not slots:
            return True
        start = klass.scheduled_start
        start_minutes = start.hour * 60 + start.minute
        return any(
            slot.covers(day_of_week(start), start_minutes, start_minutes + klass.duration_minutes) for slot in slots
        )

    def _has_conflict(self, klass: ClassRecord, context: _StudentContext) -> bool:
        start = klass.scheduled_start
        end = start + timedelta(minutes=klass.duration_minutes)
        return any(start < busy_end and busy_start < end for busy_start, busy_end in context.busy)

    def _teacher_compatibility(
        self,
        klass: ClassRecord,
        teacher: Optional[TeacherRecord],
        context: _StudentContext,
    ) -> float:
        historical = context.teacher_ratings.get(klass.teacher_id)
        if historical is not None:
            return _clamp(historical / 5.0 * 100.0)
        if teacher is None:
            return 50.0
        match = 0.5
        specializations = teacher.specializations or DEFAULT_SPECIALIZATIONS
        if klass.course_type and klass.course_type in specializations:
            match += 0.3
        if teacher.max_students_per_class >= klass.capacity:
            match += 0.2
        return _clamp(match * 100.0)

    def _schedule_compatibility(
        self,
        klass: ClassRecord,
        context: _StudentContext,
        request: AlternativeRecommendationRequest,
    ) -> float:
        if self._has_conflict(klass, context):
            return 0.0
        score = NO_CONFLICT_SCORE
        start = klass.scheduled_start
        preferred_hour = any(
            slot.day_of_week == day_of_week(start) and slot.start_minutes <= start.hour * 60 + start.minute < slot.end_minutes
            for slot in context.analytics.best_time_slots
        )
        if self._in_preferred_window(klass, request) or preferred_hour:
            score += PREFERRED_TIME_BONUS
        return _clamp(score)

    def _pace_match(self, klass: ClassRecord, progress: Sequence[StudentProgress]) -> float:
        if not progress:
            return UNKNOWN_PROGRESS_SCORE
        paces = [PACE_VALUES[record.learning_pace] for record in progress]
        student_pace = sum(paces) / len(paces)
        return _clamp((1.0 - abs(student_pace - klass.pace) / 2.0) * 100.0)

    def _difficulty_match(self, klass: ClassRecord, progress: Sequence[StudentProgress]) -> float:
        if not progress:
            return UNKNOWN_PROGRESS_SCORE
        percentages = [record.progress_percentage for record in progress]
        average = sum(percentages) / len(percentages)
        expected = min(5, math.floor(average / 20.0) + 1)
        return _clamp((1.0 - abs(expected - klass.difficulty) / 4.0) * 100.0)

    def _location_convenience(
        self,
        klass: ClassRecord,
        student: StudentRecord,
        max_distance_km: Optional[float],
    ) -> Tuple[float, Optional[float]]:
        if klass.is_online:
            return 100.0, 0.0
        distance = self._distance.estimate_km(student, klass)
        if max_distance_km is None or distance is None:
            return NEUTRAL_SCORE, distance
        return _clamp(100.0 - distance / max_distance_km * 100.0), distance

    def _peer_compatibility(self, roster: Sequence[str], context: _StudentContext) -> float:
        others = [student_id for student_id in roster if student_id != context.student.id]
        if not others:
            return NEUTRAL_SCORE
        known = set(context.analytics.peer_compatibility)
        scores = [PAST_CLASSMATE_SCORE if student_id in known else NEW_CLASSMATE_SCORE for student_id in others]
        return _clamp(sum(scores) / len(scores))

    def _class_size_preference(
        self,
        klass: ClassRecord,
        context: _StudentContext,
        request: AlternativeRecommendationRequest,
    ) -> float:
        preferred = request.preferred_class_size or context.analytics.optimal_class_size
        size_after_joining = klass.current_enrollment + 1
        return _clamp(100.0 - abs(size_after_joining - preferred) / 8.0 * 100.0)

    def _recommend(
        self,
        klass: ClassRecord,
        availability: SpotAvailability,
        context: _StudentContext,
        teachers: Dict[str, TeacherRecord],
        roster: Sequence[str],
        weights: RecommendationWeights,
        request: AlternativeRecommendationRequest,
    ) -> AlternativeClassRecommendation:
        similarity = content_similarity(klass, context.unlearned)
        alignment = progress_alignment(klass, context.progress)
        location, distance = self._location_convenience(klass, context.student, request.max_distance_km)
        breakdown = RecommendationScoreBreakdown(
            content_similarity=_clamp((similarity * 0.7 + alignment * 0.3) * 100.0),
            schedule_compatibility=self._schedule_compatibility(klass, context, request),
            teacher_compatibility=self._teacher_compatibility(klass, teachers.get(klass.teacher_id), context),
            learning_pace_match=self._pace_match(klass, context.progress),
            difficulty_match=self._difficulty_match(klass, context.progress),
            location_convenience=location,
            peer_compatibility=self._peer_compatibility(roster, context),
            class_size_preference=self._class_size_preference(klass, context, request),
        )
        overall = overall_score(breakdown, weights)
        recommendation_type = classify(breakdown)
        benefits = [label for name, label in BENEFITS if getattr(breakdown, name) > STRONG_FACTOR]
        drawbacks = [label for name, label in DRAWBACKS if getattr(breakdown, name) < WEAK_FACTOR]
        if availability == "waitlist":
            drawbacks.append("Class is currently full")
        return AlternativeClassRecommendation(
            alternative_class=self._as_scheduled_class(klass, roster, context.student.id),
            overall_score=overall,
            score_breakdown=breakdown,
            type=recommendation_type,
            reasoning=REASONING[recommendation_type],
            benefits=benefits,
            drawbacks=drawbacks,
            confidence_level=confidence_level(overall, availability, breakdown.content_similarity),
            availability=availability,
            distance=distance,
        )

    def _waitlist_recommendation(
        self,
        preferred: ClassRecord,
        student: StudentRecord,
        roster: Sequence[str],
    ) -> AlternativeClassRecommendation:
        entries = self._store.list_waitlist(preferred.id)
        existing = next((entry.position for entry in entries if entry.student_id == student.id), None)
        position = existing if existing is not None else len(entries) + 1
        wait_days = math.ceil(WAITLIST_DAYS_PER_POSITION * position)
        probability = max(0.1, 1.0 - 0.1 * position)
        return AlternativeClassRecommendation(
            alternative_class=self._as_scheduled_class(preferred, roster, student.id),
            overall_score=WAITLIST_OVERALL_SCORE,
            type="waitlist",
            reasoning=f"Join waitlist for your preferred class. Estimated wait time: {wait_days} days.",
            benefits=["Original preferred class", "Highest content relevance", "Preferred teacher and time slot"],
            drawbacks=[f"Wait time of {wait_days} days", "No guarantee of spot", "May need interim alternatives"],
            confidence_level=round(_clamp(probability, 0.1, 1.0), 4),
            availability="waitlist",
            estimated_wait_time=wait_days,
            spot_probability=round(probability, 4),
        )

    def _as_scheduled_class(self, klass: ClassRecord, roster: Sequence[str], student_id: str) -> ScheduledClass:
        """Project the class roster as it would look with ``student_id`` joining when a seat is free."""
        students = list(dict.fromkeys(roster))
        if klass.free_spots > 0 and student_id not in students:
            students.append(student_id)
        if not students:
            students = [student_id]
        students = students[:MAX_CLASS_SIZE]
        items = [
            item
            for item in self._analyzer.curriculum_for(klass.course_id)
            if item.unit_number == klass.unit_number and item.lesson_number == klass.lesson_number
        ]
        objectives = list(dict.fromkeys(objective for item in items for objective in item.learning_objectives))
        return ScheduledClass(
            id=klass.id,
            course_id=klass.course_id,
            student_ids=students,
            teacher_id=klass.teacher_id,
            content_items=items,
            scheduled_time=klass.scheduled_start,
            duration_minutes=klass.duration_minutes,
            class_type="individual" if len(students) == 1 else "group",
            room_or_link=klass.meeting_link or klass.location or "",
            learning_objectives=objectives,
        )


__all__ = [
    "AlternativeRecommendationService",
    "classify",
    "confidence_level",
    "content_similarity",
    "overall_score",
    "spot_availability",
]
