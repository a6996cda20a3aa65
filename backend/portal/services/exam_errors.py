"""
Error taxonomy for the timed assessment.

Adapters translate transport and schema problems into one of these kinds,
so the engine and the HTTP layer only ever look at ``kind``.
"""

from __future__ import annotations


class ExamError(Exception):
    """Base exception for all assessment errors."""

    kind = "exam"
    retryable = False


class ExamConfigError(ExamError):
    """Invalid configuration; never reaches an external call."""

    kind = "config"


class ExamPhaseError(ExamError):
    """Operation is not valid in the current phase."""

    kind = "phase"


class ExamAnswerError(ExamError):
    """Answer refers to an unknown question or option."""

    kind = "answer"


class GenerationFailed(ExamError):
    """Question source failed or returned an unusable batch."""

    kind = "generation"
    retryable = True


class GradingFailed(ExamError):
    """Grading source failed; the attempt is abandoned."""

    kind = "grading"
    retryable = True


class PersistenceFailed(ExamError):
    """Result could not be stored; the in-memory result stays valid."""

    kind = "persistence"


class StaleAttemptError(ExamError):
    """A source call completed after its attempt was torn down."""

    kind = "stale"
