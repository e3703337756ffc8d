"""Grouping of students with shared unlearned content into class compositions."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .scheduling_models import (
    URGENCY_RANK,
    ClassComposition,
    ContentItem,
    StudentProgress,
    UnlearnedContent,
    UrgencyLevel,
)
from .scheduling_rules import SchedulingConstraints

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 45
MAX_GROUP_DURATION_MINUTES = 120
MAX_INDIVIDUAL_DURATION_MINUTES = 90
MAX_INDIVIDUAL_ITEMS = 3
HARD_CONTENT_DIFFICULTY = 7
MEDIUM_CONTENT_DIFFICULTY = 5
INDIVIDUAL_AVERAGE_DIFFICULTY = 8
HARD_GROUP_SIZE = 4
MEDIUM_GROUP_SIZE = 6
STUDENTS_PER_DURATION_STEP = 4

GroupKey = Tuple[str, int, int]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def optimal_group_size(max_difficulty: int, configured_max: int, member_count: int) -> int:
    if max_difficulty > HARD_CONTENT_DIFFICULTY:
        size = HARD_GROUP_SIZE
    elif max_difficulty > MEDIUM_CONTENT_DIFFICULTY:
        size = MEDIUM_GROUP_SIZE
    else:
        size = configured_max
    return max(1, min(size, configured_max, member_count))


def recommended_duration(items: Sequence[ContentItem], student_count: int) -> int:
    """Sum of item durations stretched for larger groups, within 45..120 minutes."""
    base = sum(item.estimated_duration_minutes for item in items)
    scaled = base * max(1.0, student_count / STUDENTS_PER_DURATION_STEP)
    return int(round(_clamp(scaled, MIN_DURATION_MINUTES, MAX_GROUP_DURATION_MINUTES)))


def teacher_requirements_for(items: Sequence[ContentItem]) -> List[str]:
    requirements: List[str] = []
    max_difficulty = max((item.difficulty_level for item in items), default=0)
    if max_difficulty > 8:
        requirements.append("advanced_certification")
    elif max_difficulty > 6:
        requirements.append("intermediate_certification")
    if any(item.content_type == "speaking" for item in items):
        requirements.append("speaking_specialist")
    return requirements


def group_priority(progress: Sequence[StudentProgress], average_difficulty: float) -> UrgencyLevel:
    score = 0
    for record in progress:
        if len(record.struggling_topics) > 2:
            score += 20
        if record.progress_percentage < 50:
            score += 15
        if record.learning_pace == "slow":
            score += 10
    if average_difficulty > 8:
        score += 15
    if score >= 60:
        return "urgent"
    if score >= 40:
        return "high"
    if score >= 20:
        return "medium"
    return "low"


def _objectives(items: Iterable[ContentItem]) -> List[str]:
    objectives: List[str] = []
    for item in items:
        objectives.extend(item.learning_objectives or [f"Complete {item.title}"])
    return list(dict.fromkeys(objectives))


def individual_composition(
    student_id: str,
    course_id: Optional[str],
    items: Sequence[ContentItem],
    *,
    priority: UrgencyLevel,
    prerequisite_check: bool = True,
    composition_id: Optional[str] = None,
    applied_rules: Sequence[str] = (),
) -> ClassComposition:
    focus = list(items)[:MAX_INDIVIDUAL_ITEMS]
    duration = sum(item.estimated_duration_minutes for item in focus)
    return ClassComposition(
        id=composition_id or f"individual-{student_id}-{course_id or 'any'}",
        course_id=course_id,
        student_ids=[student_id],
        content_focus=focus,
        class_type="individual",
        recommended_duration=int(_clamp(duration, MIN_DURATION_MINUTES, MAX_INDIVIDUAL_DURATION_MINUTES)),
        difficulty_level=max((item.difficulty_level for item in focus), default=1),
        teacher_requirements=teacher_requirements_for(focus),
        scheduling_priority=priority,
        optimal_class_size=1,
        learning_objectives=_objectives(focus),
        prerequisite_check=prerequisite_check,
        applied_rules=list(applied_rules),
    )


class ClassCompositionBuilder:
    """Greedy grouping by shared ``course-unit-lesson`` gaps, earliest lesson first."""

    def build_compositions(
        self,
        unlearned: Mapping[str, Sequence[UnlearnedContent]],
        progress: Mapping[str, Sequence[StudentProgress]],
        constraints: Optional[SchedulingConstraints] = None,
    ) -> List[ClassComposition]:
        constraints = constraints or SchedulingConstraints()
        members_by_key: Dict[GroupKey, List[str]] = defaultdict(list)
        item_by_key: Dict[GroupKey, ContentItem] = {}
        unlearned_ids: Dict[str, Set[str]] = defaultdict(set)

        for student_id in sorted(unlearned):
            for entry in unlearned[student_id]:
                for item in entry.content_items:
                    key = (entry.course_id, item.unit_number, item.lesson_number)
                    item_by_key.setdefault(key, item)
                    unlearned_ids[student_id].add(item.id)
                    if student_id not in members_by_key[key]:
                        members_by_key[key].append(student_id)

        compositions: List[ClassComposition] = []
        assigned: Set[str] = set()
        for key in sorted(members_by_key):
            members = [student_id for student_id in members_by_key[key] if student_id not in assigned]
            if len(members) < constraints.min_students_per_group:
                continue
            compositions.extend(
                self._compositions_for_group(key, members, item_by_key[key], progress, unlearned_ids, constraints)
            )
            assigned.update(members)

        for student_id in sorted(unlearned):
            if student_id in assigned:
                continue
            fallback = self._individual_fallback(student_id, unlearned[student_id], unlearned_ids[student_id])
            if fallback is not None:
                compositions.append(fallback)

        logger.debug(
            "Built %d compositions for %d students (%d grouped)",
            len(compositions),
            len(unlearned),
            len(assigned),
        )
        return compositions

    def _compositions_for_group(
        self,
        key: GroupKey,
        members: List[str],
        item: ContentItem,
        progress: Mapping[str, Sequence[StudentProgress]],
        unlearned_ids: Mapping[str, Set[str]],
        constraints: SchedulingConstraints,
    ) -> List[ClassComposition]:
        course_id, unit_number, lesson_number = key
        focus = [item]
        max_difficulty = max(entry.difficulty_level for entry in focus)
        average_difficulty = sum(entry.difficulty_level for entry in focus) / len(focus)
        size = optimal_group_size(max_difficulty, constraints.max_students_per_group, len(members))
        if average_difficulty > INDIVIDUAL_AVERAGE_DIFFICULTY:
            size = 1

        compositions: List[ClassComposition] = []
        for chunk_number, start in enumerate(range(0, len(members), size), start=1):
            chunk = members[start:start + size]
            chunk_progress = [
                record
                for student_id in chunk
                for record in progress.get(student_id, ())
                if record.course_id == course_id
            ]
            prerequisite_check = all(
                prerequisite not in unlearned_ids.get(student_id, set())
                for student_id in chunk
                for entry in focus
                for prerequisite in entry.prerequisites
            )
            priority = group_priority(chunk_progress, average_difficulty)
            composition_id = f"group-{course_id}-{unit_number}-{lesson_number}-{chunk_number}"
            if len(chunk) == 1:
                compositions.append(
                    individual_composition(
                        chunk[0],
                        course_id,
                        focus,
                        priority=priority,
                        prerequisite_check=prerequisite_check,
                        composition_id=composition_id,
                    )
                )
                continue
            compositions.append(
                ClassComposition(
                    id=composition_id,
                    course_id=course_id,
                    student_ids=chunk,
                    content_focus=focus,
                    class_type="group",
                    recommended_duration=recommended_duration(focus, len(chunk)),
                    difficulty_level=max_difficulty,
                    teacher_requirements=teacher_requirements_for(focus),
                    scheduling_priority=priority,
                    optimal_class_size=size,
                    learning_objectives=_objectives(focus),
                    prerequisite_check=prerequisite_check,
                )
            )
        return compositions

    def _individual_fallback(
        self,
        student_id: str,
        entries: Sequence[UnlearnedContent],
        unlearned_ids: Set[str],
    ) -> Optional[ClassComposition]:
        candidates = [entry for entry in entries if entry.content_items]
        if not candidates:
            return None
        best = max(candidates, key=lambda entry: (URGENCY_RANK[entry.urgency_level], entry.priority_score))
        focus = best.content_items[:MAX_INDIVIDUAL_ITEMS]
        focus_ids = {item.id for item in focus}
        prerequisite_check = all(
            prerequisite in focus_ids or prerequisite not in unlearned_ids
            for item in focus
            for prerequisite in item.prerequisites
        )
        return individual_composition(
            student_id,
            best.course_id,
            focus,
            priority=best.urgency_level,
            prerequisite_check=prerequisite_check,
        )


__all__ = [
    "ClassCompositionBuilder",
    "group_priority",
    "individual_composition",
    "optimal_group_size",
    "recommended_duration",
    "teacher_requirements_for",
]
