"""Rules-engine configuration and the declarative scheduling rule set."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field, model_validator

from .scheduling_models import MAX_CLASS_SIZE

logger = logging.getLogger(__name__)

ALL_COURSE_TYPES = ["Basic", "Everyday A", "Everyday B", "Speak Up", "Business English", "1-on-1"]
GROUP_COURSE_TYPES = [course for course in ALL_COURSE_TYPES if course != "1-on-1"]
SPECIALIST_COURSE_TYPES = ["Speak Up", "Business English", "1-on-1"]

ConditionType = Literal["student_count", "content_difficulty", "learning_pace", "progress_gap"]
ConditionOperator = Literal["eq", "gt", "lt", "gte", "lte", "in"]
ActionType = Literal["set_priority", "group_students", "schedule_class", "assign_teacher"]
ConditionValue = Union[float, int, str, List[Union[float, int, str]]]


class OptimizationWeights(BaseModel):
    content_priority: float = Field(default=0.3, ge=0.0)
    student_preference: float = Field(default=0.2, ge=0.0)
    teacher_availability: float = Field(default=0.2, ge=0.0)
    class_size_optimization: float = Field(default=0.15, ge=0.0)
    time_efficiency: float = Field(default=0.15, ge=0.0)


class SchedulingConstraints(BaseModel):
    max_students_per_group: int = Field(default=MAX_CLASS_SIZE, ge=1, le=MAX_CLASS_SIZE)
    min_students_per_group: int = Field(default=2, ge=1, le=MAX_CLASS_SIZE)
    max_classes_per_day: int = Field(default=8, ge=1)
    min_break_between_classes: int = Field(default=15, ge=0)
    max_difficulty_variance: int = Field(default=2, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "SchedulingConstraints":
        if self.min_students_per_group > self.max_students_per_group:
            raise ValueError("min_students_per_group cannot exceed max_students_per_group.")
        return self


class RulesEngineConfig(BaseModel):
    strategy: Literal["balanced", "content_focused", "availability_focused", "efficiency_focused"] = "balanced"
    optimization_weights: OptimizationWeights = Field(default_factory=OptimizationWeights)
    constraints: SchedulingConstraints = Field(default_factory=SchedulingConstraints)
    scheduling_horizon_days: int = Field(default=14, ge=1)
    reoptimization_frequency: Literal["daily", "weekly", "monthly"] = "weekly"

    def merged_with(self, override: Optional[Mapping[str, Any]]) -> "RulesEngineConfig":
        """Return a new config with ``override`` deep-merged over this one."""
        if not override:
            return self.model_copy(deep=True)
        merged = _deep_merge(self.model_dump(), override)
        return RulesEngineConfig.model_validate(merged)


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class RuleCondition(BaseModel):
    type: ConditionType
    operator: ConditionOperator
    value: ConditionValue
    weight: float = Field(default=1.0, ge=0.0, le=1.0)


class RuleAction(BaseModel):
    type: ActionType
    parameters: Dict[str, Any] = Field(default_factory=dict)


class SchedulingRule(BaseModel):
    id: str
    name: str
    priority: int = 0
    course_types: List[str] = Field(default_factory=lambda: list(ALL_COURSE_TYPES))
    conditions: List[RuleCondition] = Field(default_factory=list)
    actions: List[RuleAction] = Field(default_factory=list)
    is_active: bool = True


class RuleContext(BaseModel):
    """Facts about one composition that rule conditions are evaluated against."""

    student_count: int
    content_difficulty: float
    learning_pace: str
    progress_gap: float


DEFAULT_RULES: List[SchedulingRule] = [
    SchedulingRule(
        id="content_priority_urgent",
        name="Urgent Content Priority",
        priority=100,
        course_types=list(ALL_COURSE_TYPES),
        conditions=[RuleCondition(type="progress_gap", operator="gte", value=0.5, weight=0.8)],
        actions=[RuleAction(type="set_priority", parameters={"priority": "urgent"})],
    ),
    SchedulingRule(
        id="group_size_optimization",
        name="Optimal Group Size",
        priority=90,
        course_types=list(GROUP_COURSE_TYPES),
        conditions=[
            RuleCondition(type="student_count", operator="gte", value=2, weight=0.6),
            RuleCondition(type="student_count", operator="lte", value=9, weight=0.6),
        ],
        actions=[RuleAction(type="group_students", parameters={"min_size": 2, "max_size": 9})],
    ),
    SchedulingRule(
        id="individual_class_struggling",
        name="Individual Classes for Struggling Students",
        priority=80,
        course_types=list(ALL_COURSE_TYPES),
        conditions=[RuleCondition(type="learning_pace", operator="eq", value="slow", weight=0.7)],
        actions=[RuleAction(type="schedule_class", parameters={"class_type": "individual"})],
    ),
    SchedulingRule(
        id="teacher_specialization",
        name="Teacher Specialization Match",
        priority=70,
        course_types=list(SPECIALIST_COURSE_TYPES),
        conditions=[RuleCondition(type="content_difficulty", operator="gte", value=7, weight=0.5)],
        actions=[RuleAction(type="assign_teacher", parameters={"match_specialization": True})],
    ),
]


def evaluate_condition(condition: RuleCondition, context: RuleContext) -> bool:
    actual = getattr(context, condition.type)
    expected = condition.value
    operator = condition.operator
    if operator == "in":
        options = expected if isinstance(expected, list) else [expected]
        return actual in options
    if operator == "eq":
        return actual == expected
    if isinstance(expected, (list, str)) or isinstance(actual, str):
        logger.warning("Operator %s is not defined for %s=%r", operator, condition.type, expected)
        return False
    if operator == "gt":
        return actual > expected
    if operator == "lt":
        return actual < expected
    if operator == "gte":
        return actual >= expected
    return actual <= expected


def applicable_rules(
    rules: Sequence[SchedulingRule],
    course_type: str,
    context: RuleContext,
) -> List[SchedulingRule]:
    """Active rules for ``course_type`` whose conditions all hold, highest priority first."""
    matched = [
        rule
        for rule in rules
        if rule.is_active
        and course_type in rule.course_types
        and all(evaluate_condition(condition, context) for condition in rule.conditions)
    ]
    return sorted(matched, key=lambda rule: -rule.priority)


__all__ = [
    "ALL_COURSE_TYPES",
    "DEFAULT_RULES",
    "OptimizationWeights",
    "RuleAction",
    "RuleCondition",
    "RuleContext",
    "RulesEngineConfig",
    "SchedulingConstraints",
    "SchedulingRule",
    "applicable_rules",
    "evaluate_condition",
]
