"""Error types shared by the scoring engine, retry executor and storage layer."""

from __future__ import annotations


class ScorerError(Exception):
    """Base error for behavior-scorer failures.

    ``transient`` tags whether the failure is eligible for retry. Subclasses
    set it where the failure is raised; ``None`` means untagged, and the retry
    executor falls back to inspecting the message.
    """

    transient: bool | None = None


class InvalidInputError(ScorerError, ValueError):
    """Raised when a session id or transcript fails validation."""

    transient = False


class TransientError(ScorerError):
    """A failure that may succeed if the operation is attempted again."""

    transient = True


class PermanentError(ScorerError):
    """A failure that will not go away on retry."""

    transient = False


class MaxRetriesExceededError(ScorerError):
    """Raised when every retry attempt ended in a transient failure."""

    transient = False

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"Max retry attempts exceeded after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts
