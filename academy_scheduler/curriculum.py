"""Derivation of curriculum content items from stored course materials."""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .records import MaterialRecord
from .scheduling_models import ContentItem, ContentType

MAX_DIFFICULTY = 10
MAX_TAGS = 5
MAX_OBJECTIVES = 3
MIN_TAG_LENGTH = 4
MIN_OBJECTIVE_LENGTH = 11
DEFAULT_DURATION_MINUTES = 45

CONTENT_TYPE_BY_MATERIAL: Dict[str, ContentType] = {
    "pdf": "reading",
    "book": "reading",
    "audio": "listening",
    "video": "listening",
}

DURATION_BY_MATERIAL: Dict[str, int] = {
    "pdf": 45,
    "audio": 60,
    "video": 60,
    "book": 90,
}


def difficulty_for(unit_number: int, lesson_number: int) -> int:
    """Difficulty grows with curriculum position: floor(unit*1.5 + lesson*0.3), within 1..10."""
    raw = math.floor(unit_number * 1.5 + lesson_number * 0.3)
    return max(1, min(MAX_DIFFICULTY, raw))


def content_type_for(material_type: Optional[str]) -> ContentType:
    return CONTENT_TYPE_BY_MATERIAL.get((material_type or "").strip().lower(), "speaking")


def duration_for(material_type: Optional[str]) -> int:
    return DURATION_BY_MATERIAL.get((material_type or "").strip().lower(), DEFAULT_DURATION_MINUTES)


def extract_tags(description: str) -> List[str]:
    words = [word for word in description.lower().split() if len(word) >= MIN_TAG_LENGTH]
    return words[:MAX_TAGS]


def extract_objectives(description: str) -> List[str]:
    sentences = (sentence.strip() for sentence in description.split("."))
    return [sentence for sentence in sentences if len(sentence) >= MIN_OBJECTIVE_LENGTH][:MAX_OBJECTIVES]


def lesson_key(unit_number: int, lesson_number: int) -> str:
    return f"{unit_number}-{lesson_number}"


def position(unit_number: int, lesson_number: int) -> Tuple[int, int]:
    return (unit_number, lesson_number)


def content_items_for(materials: Sequence[MaterialRecord]) -> List[ContentItem]:
    """Convert ordered course materials into content items.

    Each item lists the item immediately before it in the course as its
    prerequisite, so the curriculum forms a single chain.
    """
    ordered = sorted(materials, key=lambda material: (material.unit_number, material.lesson_number, material.order_index))
    items: List[ContentItem] = []
    previous_id: Optional[str] = None
    for material in ordered:
        items.append(
            ContentItem(
                id=material.id,
                course_id=material.course_id,
                title=material.title,
                unit_number=material.unit_number,
                lesson_number=material.lesson_number,
                content_type=content_type_for(material.material_type),
                difficulty_level=difficulty_for(material.unit_number, material.lesson_number),
                prerequisites=[previous_id] if previous_id else [],
                estimated_duration_minutes=duration_for(material.material_type),
                tags=extract_tags(material.description),
                learning_objectives=extract_objectives(material.description),
            )
        )
        previous_id = material.id
    return items


def items_after(items: Iterable[ContentItem], unit_number: int, lesson_number: int, *, limit: int) -> List[ContentItem]:
    """Items strictly beyond the given curriculum position, in order."""
    current = position(unit_number, lesson_number)
    upcoming = [item for item in items if position(item.unit_number, item.lesson_number) > current]
    return upcoming[:limit]


__all__ = [
    "content_items_for",
    "content_type_for",
    "difficulty_for",
    "duration_for",
    "extract_objectives",
    "extract_tags",
    "items_after",
    "lesson_key",
    "position",
]
