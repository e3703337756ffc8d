"""Typed records validated at the persistence boundary."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .scheduling_models import TimeSlot, UtcDateTime, ensure_utc

logger = logging.getLogger(__name__)


class _StoreRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


def _parse_slots(raw: Any, *, owner: str) -> List[TimeSlot]:
    slots: List[TimeSlot] = []
    if not isinstance(raw, list):
        return slots
    for entry in raw:
        try:
            slots.append(TimeSlot.model_validate(entry))
        except PydanticValidationError:
            logger.warning("Ignoring malformed availability entry for %s: %r", owner, entry)
    return slots


class StudentRecord(_StoreRecord):
    id: str
    full_name: str = ""
    test_level: Optional[str] = None
    is_active: bool = True
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("profile_metadata", "metadata"),
    )

    @property
    def learning_goals(self) -> List[str]:
        goals = self.metadata.get("learning_goals") or []
        return [str(goal) for goal in goals if str(goal).strip()]

    @property
    def availability(self) -> List[TimeSlot]:
        return _parse_slots(self.metadata.get("availability"), owner=f"student {self.id}")

    @property
    def learning_style(self) -> Optional[str]:
        style = self.metadata.get("learning_style")
        return str(style) if style else None


class CourseRecord(_StoreRecord):
    id: str
    title: str
    course_type: str = "Basic"


class EnrollmentRecord(_StoreRecord):
    id: str
    student_id: str
    course_id: str
    current_unit: int = 1
    current_lesson: int = 0
    progress_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    status: str = "active"
    enrollment_date: Optional[UtcDateTime] = None


class MaterialRecord(_StoreRecord):
    id: str
    course_id: str
    title: str
    description: str = ""
    material_type: str = "PDF"
    unit_number: int
    lesson_number: int
    order_index: int = 0
    is_active: bool = True


class FeedbackRecord(_StoreRecord):
    id: str
    student_id: str
    course_id: str
    class_id: Optional[str] = None
    booking_id: Optional[str] = None
    unit_number: int
    lesson_number: int
    lesson_completed: bool = False
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    areas_for_improvement: str = ""
    strengths: str = ""
    submitted_time: UtcDateTime


class AttendanceRecord(_StoreRecord):
    id: str
    booking_id: str
    student_id: str
    class_id: str
    status: str
    attendance_time: UtcDateTime
    class_size: int = 0


class BookingRecord(_StoreRecord):
    id: str
    student_id: str
    class_id: str
    status: str = "confirmed"
    learning_goals: Optional[str] = None


class ClassRecord(_StoreRecord):
    id: str
    course_id: str
    course_type: Optional[str] = None
    teacher_id: str
    class_name: str
    capacity: int = Field(default=9, ge=0, le=9)
    current_enrollment: int = Field(default=0, ge=0)
    unit_number: int
    lesson_number: int
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    distance_km: Optional[float] = None
    class_type: str = "group"
    pace: int = Field(default=2, ge=1, le=3)
    difficulty: int = Field(default=3, ge=1, le=5)
    scheduled_start: UtcDateTime
    duration_minutes: int = 60
    is_active: bool = True

    @property
    def free_spots(self) -> int:
        return max(0, self.capacity - self.current_enrollment)

    @property
    def is_online(self) -> bool:
        location = (self.location or "").lower()
        if "online" in location or "zoom" in location:
            return True
        return not location and bool(self.meeting_link)


class TeacherRecord(_StoreRecord):
    id: str
    full_name: str = ""
    specializations: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    max_students_per_class: int = 9
    availability_raw: List[Dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("availability", "availability_raw"),
    )
    is_active: bool = True

    @property
    def availability(self) -> List[TimeSlot]:
        return _parse_slots(self.availability_raw, owner=f"teacher {self.id}")


class WaitlistEntry(_StoreRecord):
    id: str
    class_id: str
    student_id: str
    position: int = Field(ge=1)
    created_at: UtcDateTime


__all__ = [
    "AttendanceRecord",
    "BookingRecord",
    "ClassRecord",
    "CourseRecord",
    "EnrollmentRecord",
    "FeedbackRecord",
    "MaterialRecord",
    "StudentRecord",
    "TeacherRecord",
    "UtcDateTime",
    "WaitlistEntry",
    "ensure_utc",
]
