"""Repositories over the academy persistence layer."""

from .academy_store import AcademyStore, SqlAcademyStore

__all__ = ["AcademyStore", "SqlAcademyStore"]
