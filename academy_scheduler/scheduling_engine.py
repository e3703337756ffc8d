"""Scheduling pipeline: compositions to teacher/time decisions to committed classes.

The optimizer is a documented greedy heuristic rather than a solver. Decisions
are stably sorted by optimization score and accepted one at a time; a decision
is rejected when none of its candidate start times is free for the teacher and
every student. A matching or ILP solver could replace :meth:`_optimize` behind
the same interface.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from .class_composition import ClassCompositionBuilder, individual_composition
from .collaborators import DefaultRoomAllocator, RoomAllocator
from .config import get_settings
from .content_analysis import ContentGapAnalyzer
from .errors import SchedulerError, ValidationError
from .records import StudentRecord, TeacherRecord, ensure_utc
from .repositories.academy_store import AcademyStore
from .scheduling_models import (
    ClassComposition,
    PerformanceMetrics,
    ScheduledClass,
    SchedulingDecision,
    SchedulingRequest,
    SchedulingResponse,
    SchedulingResult,
    StudentProgress,
    TimeSlot,
    UnlearnedContent,
    day_of_week,
)
from .scheduling_rules import (
    DEFAULT_RULES,
    OptimizationWeights,
    RuleContext,
    RulesEngineConfig,
    SchedulingConstraints,
    SchedulingRule,
    applicable_rules,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)

DEFAULT_TEACHER_COURSE_TYPES = ["Basic", "Everyday A", "Everyday B"]
DEFAULT_WEEKLY_SLOTS = [
    TimeSlot(day_of_week=day, start_time=f"{hour:02d}:00", end_time=f"{hour + 1:02d}:00")
    for day in range(1, 6)
    for hour in range(9, 17)
]
MAX_CANDIDATE_TIMES = 96
CANDIDATE_STEP_MINUTES = 30
PRIORITY_POINTS = {"urgent": 30, "high": 20}
DEFAULT_PRIORITY_POINTS = 10
REOPTIMIZATION_DAYS = {"daily": 1, "weekly": 7, "monthly": 30}
FAILURE_RECOMMENDATION = "Check system logs for detailed error information"
INVALID_REQUEST_RECOMMENDATION = "Correct the request parameters and try again"
SMALL_CLASS_THRESHOLD = 5
LOW_TEACHER_UTILIZATION = 60

Interval = Tuple[datetime, datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _merged_windows(slots: Sequence[TimeSlot], weekday: int) -> List[Tuple[int, int]]:
    """Contiguous availability windows (minutes from midnight) for one weekday."""
    windows: List[Tuple[int, int]] = []
    for slot in sorted((slot for slot in slots if slot.is_available and slot.day_of_week == weekday), key=lambda s: s.start_minutes):
        if windows and slot.start_minutes <= windows[-1][1]:
            windows[-1] = (windows[-1][0], max(windows[-1][1], slot.end_minutes))
        else:
            windows.append((slot.start_minutes, slot.end_minutes))
    return windows


def _covered(windows: Sequence[Tuple[int, int]], start: int, end: int) -> bool:
    return any(low <= start and end <= high for low, high in windows)


def _overlaps(start: datetime, end: datetime, other: Interval, padding: timedelta = timedelta(0)) -> bool:
    return start < other[1] + padding and other[0] < end + padding


def decision_confidence(
    *,
    has_teacher: bool,
    has_time: bool,
    composition: ClassComposition,
) -> float:
    score = 50.0
    if has_teacher:
        score += 20
    if has_time:
        score += 15
    if composition.prerequisite_check:
        score += 10
    if composition.class_type == "individual" and len(composition.student_ids) == 1:
        score += 5
    return min(100.0, score)


def optimization_score(decision: SchedulingDecision, weights: OptimizationWeights) -> float:
    """Composite score; the default weights reproduce the unweighted point scale."""
    defaults = OptimizationWeights()
    composition = decision.composition

    def scaled(points: float, weight: float, default: float) -> float:
        return points * (weight / default) if default else points

    priority_points = PRIORITY_POINTS.get(composition.scheduling_priority, DEFAULT_PRIORITY_POINTS)
    size_points = max(0.0, 20.0 - abs(composition.optimal_class_size - len(composition.student_ids)) * 5.0)
    total = (
        scaled(priority_points, weights.content_priority, defaults.content_priority)
        + scaled(size_points, weights.class_size_optimization, defaults.class_size_optimization)
        + scaled(20.0 if decision.teacher_id else 0.0, weights.teacher_availability, defaults.teacher_availability)
        + scaled(15.0 if decision.scheduled_time else 0.0, weights.time_efficiency, defaults.time_efficiency)
        + scaled(decision.confidence_score * 0.15, weights.student_preference, defaults.student_preference)
    )
    return round(max(0.0, min(100.0, total)), 2)


def preparation_notes(composition: ClassComposition) -> List[str]:
    notes = [
        f"Review {item.title} (Unit {item.unit_number}, Lesson {item.lesson_number})"
        for item in composition.content_focus
    ]
    if composition.teacher_requirements:
        notes.append(f"Teacher requirements: {', '.join(composition.teacher_requirements)}")
    if not composition.prerequisite_check:
        notes.append("Some students have prerequisite gaps; open with a short review")
    if composition.class_type == "group":
        notes.append(f"Prepare group activities for {len(composition.student_ids)} students")
    return notes


def success_criteria(composition: ClassComposition) -> List[str]:
    criteria = [
        f"Students complete {len(composition.content_focus)} content items",
        "Minimum 80% participation rate",
        f"Achieve learning objectives for difficulty level {composition.difficulty_level}",
    ]
    if composition.class_type == "group":
        criteria.append("Effective group interaction and collaboration")
    return criteria


class SchedulingRulesEngine:
    """Turns student gaps into committed classes for one request at a time."""

    def __init__(
        self,
        store: AcademyStore,
        *,
        config: Optional[RulesEngineConfig] = None,
        rules: Optional[Sequence[SchedulingRule]] = None,
        analyzer: Optional[ContentGapAnalyzer] = None,
        builder: Optional[ClassCompositionBuilder] = None,
        room_allocator: Optional[RoomAllocator] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config or RulesEngineConfig()
        self._rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        self._analyzer = analyzer or ContentGapAnalyzer(store)
        self._builder = builder or ClassCompositionBuilder()
        self._room_allocator = room_allocator
        self._clock = clock

    @property
    def config(self) -> RulesEngineConfig:
        return self._config

    def schedule_classes(self, request: SchedulingRequest) -> SchedulingResponse:
        """Run the full pipeline, converting every failure into a degraded response."""
        start = time.perf_counter()
        try:
            result, decision_count = self._run(request)
        except Exception as exc:  # noqa: BLE001
            duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
            invalid = isinstance(exc, ValidationError)
            emit_event(
                "scheduling_run",
                status="invalid" if invalid else "error",
                duration_ms=duration_ms,
                error=str(exc),
                exception_type=exc.__class__.__name__,
            )
            if invalid:
                logger.warning("Rejected scheduling request: %s", exc)
            else:
                logger.exception("Scheduling run failed")
            return SchedulingResponse(
                success=False,
                error=str(exc),
                error_code=exc.code if isinstance(exc, SchedulerError) else "internal_error",
                processing_time_ms=duration_ms,
                recommendations=[INVALID_REQUEST_RECOMMENDATION if invalid else FAILURE_RECOMMENDATION],
            )

        duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
        emit_event(
            "scheduling_run",
            status="success",
            duration_ms=duration_ms,
            decision_count=decision_count,
            scheduled_count=len(result.scheduled_classes),
            unscheduled_count=len(result.unscheduled_students),
        )
        logger.info(
            "Scheduled %d classes (%d students unscheduled) in %.2fms",
            len(result.scheduled_classes),
            len(result.unscheduled_students),
            duration_ms,
        )
        return SchedulingResponse(
            success=True,
            result=result,
            processing_time_ms=duration_ms,
            recommendations=self._recommendations(result),
        )

    def _run(self, request: SchedulingRequest) -> Tuple[SchedulingResult, int]:
        window_start = ensure_utc(request.time_range.start_date)
        window_end = ensure_utc(request.time_range.end_date)
        if window_end < window_start:
            raise ValidationError("time_range.end_date must not be earlier than time_range.start_date.")
        try:
            config = self._config.merged_with(request.config_override)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid config_override: {exc}") from exc

        now = self._clock()
        students = self._resolve_students(request)
        if not students:
            return self._result([], [], 0, 0, [], 0, config, now), 0

        student_ids = [student.id for student in students]
        index = self._analyzer.build_unlearned_index(student_ids)
        progress_by_student: Dict[str, List[StudentProgress]] = {}
        unlearned_by_student: Dict[str, List[UnlearnedContent]] = {}
        for student_id in student_ids:
            progress, unlearned = self._analyzer.progress_and_gaps(student_id, index=index)
            progress_by_student[student_id] = progress
            unlearned_by_student[student_id] = unlearned

        compositions = self._builder.build_compositions(unlearned_by_student, progress_by_student, config.constraints)
        course_types = {course.id: course.course_type for course in self._store.list_courses()}
        compositions = self._apply_rules(compositions, progress_by_student, course_types, config)

        teachers = self._store.list_teachers()
        students_by_id = {student.id: student for student in students}
        horizon_end = min(window_end, window_start + timedelta(days=config.scheduling_horizon_days))
        decisions = [
            self._make_decision(composition, teachers, students_by_id, course_types, window_start, horizon_end, config)
            for composition in compositions
        ]
        scheduled, unscheduled, accepted = self._optimize(decisions, config.constraints)
        targeted = len({student_id for composition in compositions for student_id in composition.student_ids})
        return (
            self._result(scheduled, unscheduled, len(decisions), targeted, accepted, len(teachers), config, now),
            len(decisions),
        )

    def _resolve_students(self, request: SchedulingRequest) -> List[StudentRecord]:
        if request.student_ids is not None:
            if not request.student_ids:
                return []
            found = self._store.list_students(student_ids=request.student_ids)
            missing = set(request.student_ids) - {student.id for student in found}
            if missing:
                logger.warning("Ignoring unknown or inactive students: %s", sorted(missing))
            return found
        if request.level:
            return self._store.list_students(level=request.level)
        raise ValidationError("Provide student_ids or a level to select students.")

    def _rule_context(
        self,
        composition: ClassComposition,
        progress_by_student: Mapping[str, Sequence[StudentProgress]],
    ) -> RuleContext:
        records = [
            record
            for student_id in composition.student_ids
            for record in progress_by_student.get(student_id, ())
            if record.course_id == composition.course_id
        ]
        focus = composition.content_focus
        difficulty = sum(item.difficulty_level for item in focus) / len(focus) if focus else float(composition.difficulty_level)
        if records:
            paces = Counter(record.learning_pace for record in records)
            pace = paces.most_common(1)[0][0]
            average_progress = sum(record.progress_percentage for record in records) / len(records)
        else:
            pace = "average"
            average_progress = 0.0
        return RuleContext(
            student_count=len(composition.student_ids),
            content_difficulty=difficulty,
            learning_pace=pace,
            progress_gap=round(1.0 - average_progress / 100.0, 4),
        )

    def _apply_rules(
        self,
        compositions: Sequence[ClassComposition],
        progress_by_student: Mapping[str, Sequence[StudentProgress]],
        course_types: Mapping[str, str],
        config: RulesEngineConfig,
    ) -> List[ClassComposition]:
        default_course_type = get_settings().default_course_type
        output: List[ClassComposition] = []
        for composition in compositions:
            course_type = course_types.get(composition.course_id or "", default_course_type)
            context = self._rule_context(composition, progress_by_student)
            current = [composition]
            for rule in applicable_rules(self._rules, course_type, context):
                for action in rule.actions:
                    current = self._apply_action(current, rule.id, action.type, action.parameters, config)
            output.extend(current)
        return output

    def _apply_action(
        self,
        compositions: List[ClassComposition],
        rule_id: str,
        action_type: str,
        parameters: Mapping[str, object],
        config: RulesEngineConfig,
    ) -> List[ClassComposition]:
        updated: List[ClassComposition] = []
        for composition in compositions:
            applied = [*composition.applied_rules, rule_id]
            if action_type == "set_priority":
                priority = parameters.get("priority", composition.scheduling_priority)
                updated.append(composition.model_copy(update={"scheduling_priority": priority, "applied_rules": applied}))
            elif action_type == "assign_teacher":
                updated.append(composition.model_copy(update={"requires_specialist": True, "applied_rules": applied}))
            elif action_type == "schedule_class" and parameters.get("class_type") == "individual" and composition.class_type == "group":
                updated.extend(
                    individual_composition(
                        student_id,
                        composition.course_id,
                        composition.content_focus,
                        priority=composition.scheduling_priority,
                        prerequisite_check=composition.prerequisite_check,
                        composition_id=f"{composition.id}-{student_id}",
                        applied_rules=applied,
                    ).model_copy(update={"requires_specialist": composition.requires_specialist})
                    for student_id in composition.student_ids
                )
            elif action_type == "group_students":
                max_size = min(int(parameters.get("max_size", config.constraints.max_students_per_group)), config.constraints.max_students_per_group)
                if len(composition.student_ids) > max_size:
                    logger.warning("Composition %s exceeds group bound %d", composition.id, max_size)
                updated.append(composition.model_copy(update={"applied_rules": applied}))
            else:
                updated.append(composition.model_copy(update={"applied_rules": applied}))
        return updated

    def _select_teacher(
        self,
        composition: ClassComposition,
        course_type: str,
        teachers: Sequence[TeacherRecord],
    ) -> Optional[TeacherRecord]:
        for teacher in teachers:
            specializations = teacher.specializations or DEFAULT_TEACHER_COURSE_TYPES
            if course_type not in specializations:
                continue
            if teacher.max_students_per_class < len(composition.student_ids):
                continue
            if composition.requires_specialist and not set(composition.teacher_requirements) <= set(teacher.certifications):
                continue
            return teacher
        return None

    def _candidate_times(
        self,
        teacher: TeacherRecord,
        composition: ClassComposition,
        students_by_id: Mapping[str, StudentRecord],
        window_start: datetime,
        window_end: datetime,
    ) -> List[datetime]:
        teacher_slots = [slot for slot in teacher.availability if slot.is_available] or DEFAULT_WEEKLY_SLOTS
        student_slots = [
            students_by_id[student_id].availability
            for student_id in composition.student_ids
            if student_id in students_by_id and students_by_id[student_id].availability
        ]
        duration = composition.recommended_duration
        candidates: List[datetime] = []
        day: date = window_start.date()
        while day <= window_end.date() and len(candidates) < MAX_CANDIDATE_TIMES:
            weekday = day_of_week(datetime(day.year, day.month, day.day))
            teacher_windows = _merged_windows(teacher_slots, weekday)
            student_windows = [_merged_windows(slots, weekday) for slots in student_slots]
            midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
            for low, high in teacher_windows:
                for start_minutes in range(low, high - duration + 1, CANDIDATE_STEP_MINUTES):
                    start_at = midnight + timedelta(minutes=start_minutes)
                    if start_at < window_start or start_at > window_end:
                        continue
                    end_minutes = start_minutes + duration
                    if not all(_covered(windows, start_minutes, end_minutes) for windows in student_windows):
                        continue
                    candidates.append(start_at)
                    if len(candidates) >= MAX_CANDIDATE_TIMES:
                        return candidates
            day += timedelta(days=1)
        return candidates

    def _make_decision(
        self,
        composition: ClassComposition,
        teachers: Sequence[TeacherRecord],
        students_by_id: Mapping[str, StudentRecord],
        course_types: Mapping[str, str],
        window_start: datetime,
        window_end: datetime,
        config: RulesEngineConfig,
    ) -> SchedulingDecision:
        course_type = course_types.get(composition.course_id or "", get_settings().default_course_type)
        teacher = self._select_teacher(composition, course_type, teachers)
        times = self._candidate_times(teacher, composition, students_by_id, window_start, window_end) if teacher else []
        scheduled_time = times[0] if times else None

        satisfied: List[str] = []
        violated: List[str] = []
        (satisfied if teacher else violated).append("teacher_specialization_and_capacity")
        (satisfied if scheduled_time else violated).append("common_time_slot")
        (satisfied if composition.prerequisite_check else violated).append("prerequisites_met")
        (satisfied if len(composition.student_ids) <= config.constraints.max_students_per_group else violated).append(
            "group_size_within_bounds"
        )

        if composition.class_type == "group":
            header = f"Group of {len(composition.student_ids)} students"
        else:
            header = "Individual class"
        rationale = "; ".join(
            [
                header,
                f"Content difficulty level: {composition.difficulty_level}",
                f"Priority: {composition.scheduling_priority}",
                "Teacher assigned based on availability" if teacher else "No qualified teacher available",
                "Time slot optimized for student availability" if scheduled_time else "No common time slot available",
            ]
        )
        decision = SchedulingDecision(
            composition=composition,
            teacher_id=teacher.id if teacher else None,
            scheduled_time=scheduled_time,
            alternative_times=times[1:],
            confidence_score=decision_confidence(
                has_teacher=teacher is not None,
                has_time=scheduled_time is not None,
                composition=composition,
            ),
            rationale=rationale,
            constraints_satisfied=satisfied,
            constraints_violated=violated,
        )
        return decision.model_copy(update={"optimization_score": optimization_score(decision, config.optimization_weights)})

    def _optimize(
        self,
        decisions: Sequence[SchedulingDecision],
        constraints: SchedulingConstraints,
    ) -> Tuple[List[ScheduledClass], List[str], List[SchedulingDecision]]:
        ordered = sorted(decisions, key=lambda decision: -decision.optimization_score)
        allocator = self._room_allocator or DefaultRoomAllocator()
        teacher_busy: Dict[str, List[Interval]] = defaultdict(list)
        student_busy: Dict[str, List[Interval]] = defaultdict(list)
        scheduled: List[ScheduledClass] = []
        unscheduled: List[str] = []
        accepted: List[SchedulingDecision] = []
        padding = timedelta(minutes=constraints.min_break_between_classes)

        for decision in ordered:
            composition = decision.composition
            if decision.teacher_id is None or decision.scheduled_time is None:
                unscheduled.extend(composition.student_ids)
                continue
            duration = timedelta(minutes=composition.recommended_duration)
            chosen: Optional[datetime] = None
            for candidate in [decision.scheduled_time, *decision.alternative_times]:
                end = candidate + duration
                busy = teacher_busy[decision.teacher_id]
                same_day = sum(1 for interval in busy if interval[0].date() == candidate.date())
                if same_day >= constraints.max_classes_per_day:
                    continue
                if any(_overlaps(candidate, end, interval, padding) for interval in busy):
                    continue
                if any(
                    _overlaps(candidate, end, interval)
                    for student_id in composition.student_ids
                    for interval in student_busy[student_id]
                ):
                    continue
                chosen = candidate
                break
            if chosen is None:
                logger.debug("Rejected composition %s: no conflict-free slot", composition.id)
                unscheduled.extend(composition.student_ids)
                continue

            interval = (chosen, chosen + duration)
            teacher_busy[decision.teacher_id].append(interval)
            for student_id in composition.student_ids:
                student_busy[student_id].append(interval)
            class_id = f"class-{uuid.uuid4().hex[:12]}"
            scheduled.append(
                ScheduledClass(
                    id=class_id,
                    course_id=composition.course_id,
                    student_ids=list(composition.student_ids),
                    teacher_id=decision.teacher_id,
                    content_items=list(composition.content_focus),
                    scheduled_time=chosen,
                    duration_minutes=composition.recommended_duration,
                    class_type=composition.class_type,
                    room_or_link=allocator.allocate(class_id, composition),
                    preparation_notes=preparation_notes(composition),
                    learning_objectives=list(composition.learning_objectives),
                    success_criteria=success_criteria(composition),
                )
            )
            accepted.append(decision)
        placed = {student_id for klass in scheduled for student_id in klass.student_ids}
        remaining = [student_id for student_id in dict.fromkeys(unscheduled) if student_id not in placed]
        return scheduled, remaining, accepted

    def _result(
        self,
        scheduled: List[ScheduledClass],
        unscheduled: List[str],
        decision_count: int,
        targeted_students: int,
        accepted: Sequence[SchedulingDecision],
        teacher_count: int,
        config: RulesEngineConfig,
        now: datetime,
    ) -> SchedulingResult:
        scheduled_students = {student_id for klass in scheduled for student_id in klass.student_ids}
        seats = sum(len(klass.student_ids) for klass in scheduled)
        teachers_used = {klass.teacher_id for klass in scheduled}
        efficiency = len(accepted) / decision_count * 100.0 if decision_count else 0.0
        metrics = PerformanceMetrics(
            total_students_scheduled=len(scheduled_students),
            total_classes_created=len(scheduled),
            average_class_utilization=round(seats / len(scheduled), 2) if scheduled else 0.0,
            content_coverage_percentage=round(len(scheduled_students) / targeted_students * 100.0, 2) if targeted_students else 0.0,
            student_satisfaction_prediction=round(
                sum(decision.confidence_score for decision in accepted) / len(accepted), 2
            ) if accepted else 0.0,
            teacher_utilization_rate=round(len(teachers_used) / teacher_count * 100.0, 2) if teacher_count else 0.0,
            scheduling_efficiency=round(efficiency, 2),
        )
        return SchedulingResult(
            scheduled_classes=scheduled,
            unscheduled_students=unscheduled,
            optimization_score=round(efficiency, 2),
            performance_metrics=metrics,
            next_optimization_date=now + timedelta(days=REOPTIMIZATION_DAYS[config.reoptimization_frequency]),
        )

    def _recommendations(self, result: SchedulingResult) -> List[str]:
        recommendations: List[str] = []
        metrics = result.performance_metrics
        if result.unscheduled_students:
            recommendations.append(
                f"{len(result.unscheduled_students)} students could not be scheduled. "
                "Consider additional time slots or teachers."
            )
        if result.scheduled_classes and metrics.average_class_utilization < SMALL_CLASS_THRESHOLD:
            recommendations.append(
                "Class sizes are smaller than optimal. Consider consolidating classes or adjusting grouping rules."
            )
        if result.scheduled_classes and metrics.teacher_utilization_rate < LOW_TEACHER_UTILIZATION:
            recommendations.append(
                "Teacher utilization is low. Consider scheduling more classes or reducing teacher capacity."
            )
        return recommendations


__all__ = [
    "DEFAULT_WEEKLY_SLOTS",
    "SchedulingRulesEngine",
    "decision_confidence",
    "optimization_score",
    "preparation_notes",
    "success_criteria",
]
