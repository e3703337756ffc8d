"""Error taxonomy shared by the analyzer, scheduler and recommendation layers."""

from __future__ import annotations

from typing import Optional


class SchedulerError(Exception):
    """Base error carrying a stable machine-readable code."""

    code = "scheduler_error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class NotFoundError(SchedulerError, LookupError):
    """A referenced student, class, course or teacher does not exist."""

    code = "not_found"


class ValidationError(SchedulerError, ValueError):
    """The request is malformed, e.g. an inverted time range."""

    code = "validation_error"


class UpstreamStoreError(SchedulerError):
    """The persistence layer failed while serving a read or write."""

    code = "upstream_store_error"


__all__ = [
    "NotFoundError",
    "SchedulerError",
    "UpstreamStoreError",
    "ValidationError",
]
