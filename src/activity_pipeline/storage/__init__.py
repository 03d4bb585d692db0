"""Durable storage for analysis results."""

from activity_pipeline.storage.models import StoredResult
from activity_pipeline.storage.results import ResultStore, SqliteResultStore

__all__ = ["ResultStore", "SqliteResultStore", "StoredResult"]
