"""Value objects exchanged between the analyzer, builder, rules engine and recommender."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

LearningPace = Literal["slow", "average", "fast"]
ContentType = Literal["reading", "listening", "speaking"]
UrgencyLevel = Literal["low", "medium", "high", "urgent"]
ClassType = Literal["individual", "group"]
LearningStyle = Literal["visual", "auditory", "kinesthetic", "mixed"]
RecommendationType = Literal[
    "content_similar",
    "time_alternative",
    "teacher_match",
    "waitlist",
    "location_optimized",
]
SpotAvailability = Literal["immediate", "limited_spots", "waitlist", "unavailable"]

URGENCY_RANK: Dict[str, int] = {"low": 0, "medium": 1, "high": 2, "urgent": 3}
URGENT_THRESHOLD = 80
HIGH_THRESHOLD = 60
MEDIUM_THRESHOLD = 40
MAX_CLASS_SIZE = 9
MAX_GROUPING_COMPATIBILITY = 8


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDateTime = Annotated[datetime, AfterValidator(ensure_utc)]


def urgency_for_score(score: float) -> UrgencyLevel:
    """Bucket a 0-100 priority score into an urgency level."""
    if score >= URGENT_THRESHOLD:
        return "urgent"
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def _clock_minutes(value: str) -> int:
    hours, _, minutes = value.partition(":")
    return int(hours) * 60 + int(minutes or 0)


class TimeSlot(BaseModel):
    """Recurring weekly slot. ``day_of_week`` counts from 0 = Sunday."""

    day_of_week: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    end_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    is_available: bool = True
    recurring: bool = True

    @model_validator(mode="after")
    def _check_order(self) -> "TimeSlot":
        if self.start_minutes >= self.end_minutes:
            raise ValueError("Time slot must end after it starts.")
        return self

    @property
    def start_minutes(self) -> int:
        return _clock_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return _clock_minutes(self.end_time)

    def covers(self, day_of_week: int, start_minutes: int, end_minutes: int) -> bool:
        return (
            self.is_available
            and self.day_of_week == day_of_week
            and self.start_minutes <= start_minutes
            and end_minutes <= self.end_minutes
        )


def day_of_week(moment: datetime) -> int:
    """Sunday-based weekday index used by stored availability."""
    return (moment.weekday() + 1) % 7


class ContentItem(BaseModel):
    id: str
    course_id: Optional[str] = None
    title: str
    unit_number: int = Field(ge=0)
    lesson_number: int = Field(ge=0)
    content_type: ContentType = "reading"
    difficulty_level: int = Field(default=1, ge=1, le=10)
    prerequisites: List[str] = Field(default_factory=list)
    estimated_duration_minutes: int = Field(default=45, ge=0)
    tags: List[str] = Field(default_factory=list)
    learning_objectives: List[str] = Field(default_factory=list)

    @property
    def lesson_key(self) -> str:
        return f"{self.unit_number}-{self.lesson_number}"


class StudentProgress(BaseModel):
    student_id: str
    course_id: str
    course_type: Optional[str] = None
    current_unit: int = Field(default=1, ge=0)
    current_lesson: int = Field(default=0, ge=0)
    progress_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    last_completed_lesson: int = Field(default=0, ge=0)
    last_class_date: Optional[datetime] = None
    learning_pace: LearningPace = "average"
    struggling_topics: List[str] = Field(default_factory=list)
    mastered_topics: List[str] = Field(default_factory=list)
    learning_goals: List[str] = Field(default_factory=list)
    next_priority_content: List[ContentItem] = Field(default_factory=list)


class UnlearnedContent(BaseModel):
    student_id: str
    course_id: str
    content_items: List[ContentItem] = Field(default_factory=list)
    priority_score: float = Field(ge=0.0, le=100.0)
    urgency_level: UrgencyLevel
    recommended_class_type: ClassType = "group"
    estimated_learning_time: int = Field(default=0, ge=0)
    grouping_compatibility: List[str] = Field(default_factory=list, max_length=MAX_GROUPING_COMPATIBILITY)

    @model_validator(mode="after")
    def _check_urgency(self) -> "UnlearnedContent":
        expected = urgency_for_score(self.priority_score)
        if self.urgency_level != expected:
            raise ValueError(
                f"Urgency {self.urgency_level!r} does not match priority score {self.priority_score} ({expected!r})."
            )
        return self


class TopicPerformance(BaseModel):
    topic: str
    mastery_level: float = Field(ge=0.0, le=100.0)
    difficulty_rating: float = Field(ge=1.0, le=10.0)
    attempts: int = Field(default=0, ge=0)
    requires_review: bool = False


class LearningAnalytics(BaseModel):
    student_id: str
    learning_velocity: float = Field(default=0.0, ge=0.0)
    retention_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    engagement_score: float = Field(default=0.0, ge=0.0, le=100.0)
    preferred_learning_style: LearningStyle = "mixed"
    optimal_class_size: int = Field(default=4, ge=1, le=MAX_CLASS_SIZE)
    best_time_slots: List[TimeSlot] = Field(default_factory=list)
    peer_compatibility: List[str] = Field(default_factory=list)
    topic_performance: List[TopicPerformance] = Field(default_factory=list)


def _check_roster(student_ids: List[str], class_type: str) -> None:
    if len(set(student_ids)) != len(student_ids):
        raise ValueError("Student ids must be unique within a class.")
    if (class_type == "individual") != (len(student_ids) == 1):
        raise ValueError("Individual classes hold exactly one student and groups hold more than one.")


class ClassComposition(BaseModel):
    id: str
    course_id: Optional[str] = None
    student_ids: List[str] = Field(min_length=1, max_length=MAX_CLASS_SIZE)
    content_focus: List[ContentItem] = Field(default_factory=list)
    class_type: ClassType
    recommended_duration: int = Field(ge=45, le=120)
    difficulty_level: int = Field(default=1, ge=1, le=10)
    teacher_requirements: List[str] = Field(default_factory=list)
    scheduling_priority: UrgencyLevel = "medium"
    optimal_class_size: int = Field(default=4, ge=1, le=MAX_CLASS_SIZE)
    learning_objectives: List[str] = Field(default_factory=list)
    prerequisite_check: bool = True
    requires_specialist: bool = False
    applied_rules: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_class_type(self) -> "ClassComposition":
        _check_roster(self.student_ids, self.class_type)
        return self


class SchedulingDecision(BaseModel):
    composition: ClassComposition
    teacher_id: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    alternative_times: List[datetime] = Field(default_factory=list)
    confidence_score: float = Field(default=50.0, ge=0.0, le=100.0)
    optimization_score: float = Field(default=0.0, ge=0.0, le=100.0)
    rationale: str = ""
    constraints_satisfied: List[str] = Field(default_factory=list)
    constraints_violated: List[str] = Field(default_factory=list)


class ScheduledClass(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    course_id: Optional[str] = None
    student_ids: List[str] = Field(min_length=1, max_length=MAX_CLASS_SIZE)
    teacher_id: str
    content_items: List[ContentItem] = Field(default_factory=list)
    scheduled_time: datetime
    duration_minutes: int = Field(gt=0)
    class_type: ClassType
    room_or_link: str = ""
    preparation_notes: List[str] = Field(default_factory=list)
    learning_objectives: List[str] = Field(default_factory=list)
    success_criteria: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_class_type(self) -> "ScheduledClass":
        _check_roster(self.student_ids, self.class_type)
        return self

    @property
    def end_time(self) -> datetime:
        return self.scheduled_time + timedelta(minutes=self.duration_minutes)


class RecommendationScoreBreakdown(BaseModel):
    content_similarity: float = Field(ge=0.0, le=100.0)
    schedule_compatibility: float = Field(ge=0.0, le=100.0)
    teacher_compatibility: float = Field(ge=0.0, le=100.0)
    learning_pace_match: float = Field(ge=0.0, le=100.0)
    difficulty_match: float = Field(ge=0.0, le=100.0)
    location_convenience: float = Field(ge=0.0, le=100.0)
    peer_compatibility: float = Field(ge=0.0, le=100.0)
    class_size_preference: float = Field(ge=0.0, le=100.0)


class RecommendationWeights(BaseModel):
    content_similarity: float = Field(default=0.25, ge=0.0)
    schedule_compatibility: float = Field(default=0.20, ge=0.0)
    teacher_compatibility: float = Field(default=0.15, ge=0.0)
    learning_pace_match: float = Field(default=0.10, ge=0.0)
    difficulty_match: float = Field(default=0.10, ge=0.0)
    location_convenience: float = Field(default=0.08, ge=0.0)
    peer_compatibility: float = Field(default=0.07, ge=0.0)
    class_size_preference: float = Field(default=0.05, ge=0.0)


class AlternativeClassRecommendation(BaseModel):
    alternative_class: ScheduledClass
    overall_score: float = Field(ge=0.0, le=100.0)
    score_breakdown: Optional[RecommendationScoreBreakdown] = None
    type: RecommendationType
    reasoning: str
    benefits: List[str] = Field(default_factory=list)
    drawbacks: List[str] = Field(default_factory=list)
    confidence_level: float = Field(ge=0.1, le=1.0)
    availability: SpotAvailability
    distance: Optional[float] = None
    estimated_wait_time: Optional[int] = None
    spot_probability: Optional[float] = None

    @property
    def ranking_score(self) -> float:
        return self.overall_score * self.confidence_level


class TimeWindow(BaseModel):
    start: UtcDateTime
    end: UtcDateTime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class AlternativeRecommendationRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    preferred_class_id: str = Field(..., min_length=1)
    preferred_times: List[TimeWindow] = Field(default_factory=list)
    max_distance_km: Optional[float] = Field(default=None, gt=0)
    preferred_class_size: Optional[int] = Field(default=None, ge=1, le=MAX_CLASS_SIZE)
    include_waitlist: bool = False


class TimeRange(BaseModel):
    start_date: UtcDateTime
    end_date: UtcDateTime


class SchedulingRequest(BaseModel):
    student_ids: Optional[List[str]] = None
    level: Optional[str] = None
    time_range: TimeRange
    optimization_goals: List[str] = Field(default_factory=list)
    config_override: Optional[Dict[str, Any]] = None

    @field_validator("student_ids")
    @classmethod
    def _dedupe_students(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return list(dict.fromkeys(value))


class PerformanceMetrics(BaseModel):
    total_students_scheduled: int = 0
    total_classes_created: int = 0
    average_class_utilization: float = 0.0
    content_coverage_percentage: float = 0.0
    student_satisfaction_prediction: float = 0.0
    teacher_utilization_rate: float = 0.0
    scheduling_efficiency: float = 0.0


class SchedulingResult(BaseModel):
    scheduled_classes: List[ScheduledClass] = Field(default_factory=list)
    unscheduled_students: List[str] = Field(default_factory=list)
    optimization_score: float = 0.0
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    next_optimization_date: Optional[datetime] = None


class SchedulingResponse(BaseModel):
    success: bool
    result: Optional[SchedulingResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    processing_time_ms: float = 0.0
    recommendations: List[str] = Field(default_factory=list)


__all__ = [
    "AlternativeClassRecommendation",
    "AlternativeRecommendationRequest",
    "ClassComposition",
    "ClassType",
    "ContentItem",
    "LearningAnalytics",
    "LearningPace",
    "PerformanceMetrics",
    "RecommendationScoreBreakdown",
    "RecommendationWeights",
    "ScheduledClass",
    "SchedulingDecision",
    "SchedulingRequest",
    "SchedulingResponse",
    "SchedulingResult",
    "StudentProgress",
    "TimeRange",
    "TimeSlot",
    "TimeWindow",
    "TopicPerformance",
    "URGENCY_RANK",
    "UnlearnedContent",
    "UrgencyLevel",
    "UtcDateTime",
    "day_of_week",
    "ensure_utc",
    "urgency_for_score",
]
