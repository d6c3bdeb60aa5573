"""
Domain exceptions.

Pure scoring code raises nothing.  These exceptions are raised by the
persistence and collaborator layers and caught at the orchestrator's
best-effort call sites (or turned into ``[ERROR]`` messages by the CLI).
"""

from __future__ import annotations

from datetime import date
from typing import Optional


class RecordNotFoundError(RuntimeError):
    """Raised when a daily record, recommendation or alert does not exist.

    Attributes:
        user_id: Owner of the record that was looked up.
        detail:  What was missing.
    """

    def __init__(self, user_id: str, detail: str) -> None:
        self.user_id = user_id
        self.detail  = detail
        super().__init__(f"Not found for user '{user_id}': {detail}")


class RecordConflictError(RuntimeError):
    """Raised when a save loses an optimistic-concurrency race.

    The record was modified by another writer between read and write.
    Callers log and drop this error; it is never retried.

    Attributes:
        user_id:          Record owner.
        day:              Record day.
        expected_version: Version the writer read.
    """

    def __init__(self, user_id: str, day: date, expected_version: int) -> None:
        self.user_id          = user_id
        self.day              = day
        self.expected_version = expected_version
        super().__init__(
            f"Daily record for user '{user_id}' on {day.isoformat()} was modified "
            f"concurrently (expected version {expected_version})."
        )


class CatalogUnavailableError(RuntimeError):
    """Raised when the exercise catalog cannot be reached or returns garbage.

    Attributes:
        category: Catalog category that was requested.
        reason:   Underlying failure description.
    """

    def __init__(self, category: str, reason: Optional[str] = None) -> None:
        self.category = category
        self.reason   = reason
        super().__init__(
            f"Exercise catalog unavailable for category '{category}'"
            + (f": {reason}" if reason else ".")
        )
