"""REST endpoints exposing the scheduling, analysis and recommendation operations."""

from __future__ import annotations

import logging
from typing import Dict, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .class_recommendations import AlternativeRecommendationService
from .content_analysis import ContentGapAnalyzer
from .db.session import get_session_dependency
from .errors import NotFoundError, SchedulerError, UpstreamStoreError, ValidationError
from .learning_analytics import LearningAnalyticsEstimator
from .progress_tracking import record_lesson_completion, store_learning_goals
from .repositories.academy_store import AcademyStore, SqlAcademyStore
from .scheduling_engine import SchedulingRulesEngine
from .scheduling_models import (
    AlternativeClassRecommendation,
    AlternativeRecommendationRequest,
    LearningAnalytics,
    RecommendationWeights,
    SchedulingRequest,
    SchedulingResponse,
    StudentProgress,
    UnlearnedContent,
)

router = APIRouter(prefix="/api", tags=["scheduling"])
logger = logging.getLogger(__name__)


class LessonCompletionRequest(BaseModel):
    course_id: str = Field(..., min_length=1)
    unit_number: int = Field(..., ge=0)
    lesson_number: int = Field(..., ge=0)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    strengths: str = Field(default="", max_length=500)
    areas_for_improvement: str = Field(default="", max_length=500)
    class_id: Optional[str] = None
    booking_id: Optional[str] = None


class LearningGoalsRequest(BaseModel):
    learning_goals: List[str] = Field(default_factory=list, max_length=50)


class AlternativesRequest(AlternativeRecommendationRequest):
    weights: Optional[RecommendationWeights] = None


def get_academy_store(session: Session = Depends(get_session_dependency)) -> AcademyStore:
    return SqlAcademyStore(session)


def _raise_http(exc: SchedulerError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, UpstreamStoreError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=code, detail=exc.to_payload()) from exc


@router.post("/scheduling/run", response_model=SchedulingResponse)
def run_scheduling(request: SchedulingRequest, store: AcademyStore = Depends(get_academy_store)) -> SchedulingResponse:
    return SchedulingRulesEngine(store).schedule_classes(request)


@router.get("/students/{student_id}/progress", response_model=List[StudentProgress])
def student_progress(student_id: str, store: AcademyStore = Depends(get_academy_store)) -> List[StudentProgress]:
    try:
        return ContentGapAnalyzer(store).analyze_student_progress(student_id)
    except SchedulerError as exc:
        _raise_http(exc)


@router.get("/students/{student_id}/unlearned", response_model=List[UnlearnedContent])
def student_unlearned_content(
    student_id: str,
    course_id: Optional[str] = Query(default=None),
    store: AcademyStore = Depends(get_academy_store),
) -> List[UnlearnedContent]:
    try:
        return ContentGapAnalyzer(store).identify_unlearned_content(student_id, course_id)
    except SchedulerError as exc:
        _raise_http(exc)


@router.get("/students/{student_id}/analytics", response_model=LearningAnalytics)
def student_analytics(student_id: str, store: AcademyStore = Depends(get_academy_store)) -> LearningAnalytics:
    try:
        return LearningAnalyticsEstimator(store).generate_learning_analytics(student_id)
    except SchedulerError as exc:
        _raise_http(exc)


@router.post(
    "/students/{student_id}/completions",
    response_model=StudentProgress,
    status_code=status.HTTP_201_CREATED,
)
def record_completion(
    student_id: str,
    payload: LessonCompletionRequest,
    store: AcademyStore = Depends(get_academy_store),
) -> StudentProgress:
    try:
        return record_lesson_completion(
            store,
            student_id,
            payload.course_id,
            unit_number=payload.unit_number,
            lesson_number=payload.lesson_number,
            rating=payload.rating,
            strengths=payload.strengths,
            areas_for_improvement=payload.areas_for_improvement,
            class_id=payload.class_id,
            booking_id=payload.booking_id,
        )
    except SchedulerError as exc:
        _raise_http(exc)


@router.put("/students/{student_id}/learning-goals")
def update_learning_goals(
    student_id: str,
    payload: LearningGoalsRequest,
    store: AcademyStore = Depends(get_academy_store),
) -> Dict[str, List[str]]:
    try:
        return {"learning_goals": store_learning_goals(store, student_id, payload.learning_goals)}
    except SchedulerError as exc:
        _raise_http(exc)


@router.post("/recommendations/alternatives", response_model=List[AlternativeClassRecommendation])
def alternative_recommendations(
    payload: AlternativesRequest,
    store: AcademyStore = Depends(get_academy_store),
) -> List[AlternativeClassRecommendation]:
    request = AlternativeRecommendationRequest.model_validate(payload.model_dump(exclude={"weights"}))
    try:
        return AlternativeRecommendationService(store).generate_alternative_recommendations(request, payload.weights)
    except SchedulerError as exc:
        _raise_http(exc)


__all__ = ["get_academy_store", "router"]
