"""Progress engine error taxonomy.

Every error carries a stable ``code`` and the HTTP status the API layer maps
it to. ``extra`` holds structured details (e.g. the offending objective keys)
rendered verbatim in error responses.
"""

from __future__ import annotations

from typing import Any


class ProgressError(Exception):
    """Base class for all progress engine errors."""

    code = "progress_error"
    status_code = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.extra}


class ChallengeNotFound(ProgressError):
    code = "challenge_not_found"
    status_code = 404

    def __init__(self, slug: str) -> None:
        super().__init__("Challenge not found", slug=slug)


class IncompleteSubmission(ProgressError):
    """A registered objective is missing from the submitted results."""

    code = "incomplete_submission"
    status_code = 422

    def __init__(self, missing_keys: list[str]) -> None:
        super().__init__("Submission is missing registered objectives", missing_keys=missing_keys)


class UnknownObjective(ProgressError):
    """A submitted objective key is not registered for the challenge."""

    code = "unknown_objective"
    status_code = 422

    def __init__(self, unknown_keys: list[str]) -> None:
        super().__init__("Submission contains unregistered objectives", unknown_keys=unknown_keys)


class DuplicateObjective(ProgressError):
    """The same objective key appears more than once in one submission."""

    code = "duplicate_objective"
    status_code = 422

    def __init__(self, duplicate_keys: list[str]) -> None:
        super().__init__("Submission repeats objective keys", duplicate_keys=duplicate_keys)


class AlreadyCompleted(ProgressError):
    code = "already_completed"
    status_code = 409

    def __init__(self, slug: str) -> None:
        super().__init__("Challenge already completed", slug=slug)


class StorageError(ProgressError):
    code = "storage_error"
    status_code = 500


class TransientStorageError(StorageError):
    """Retriable storage failure (timeouts, serialization conflicts, lock waits)."""

    code = "transient_storage_error"
    status_code = 503


class PermanentStorageError(StorageError):
    """Non-retriable storage failure (constraint violations, corrupt data)."""

    code = "permanent_storage_error"
    status_code = 500


class LedgerConstraintError(PermanentStorageError):
    """A ledger batch violated a per-user uniqueness rule; nothing was written."""

    code = "ledger_constraint_violation"
