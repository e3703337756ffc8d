"""Injected collaborators for room allocation and travel distance."""

from __future__ import annotations

from typing import Optional, Protocol

from .config import Settings, get_settings
from .records import ClassRecord, StudentRecord
from .scheduling_models import ClassComposition


class RoomAllocator(Protocol):
    def allocate(self, class_id: str, composition: ClassComposition) -> str: ...


class DistanceEstimator(Protocol):
    def estimate_km(self, student: StudentRecord, klass: ClassRecord) -> Optional[float]: ...


class DefaultRoomAllocator:
    """Meeting links for individual classes, rotating physical rooms for groups."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        self._meeting_base_url = settings.meeting_base_url.rstrip("/")
        self._room_count = settings.room_count
        self._next_room = 0

    def allocate(self, class_id: str, composition: ClassComposition) -> str:
        if composition.class_type == "individual":
            return f"{self._meeting_base_url}/{class_id}"
        room = self._next_room % self._room_count + 1
        self._next_room += 1
        return f"Room {room}"


class StoredDistanceEstimator:
    """Uses the distance recorded on the class; unknown distances stay unknown."""

    def estimate_km(self, student: StudentRecord, klass: ClassRecord) -> Optional[float]:
        if klass.is_online:
            return 0.0
        return klass.distance_km


__all__ = [
    "DefaultRoomAllocator",
    "DistanceEstimator",
    "RoomAllocator",
    "StoredDistanceEstimator",
]
