# core/errors.py
"""Exception hierarchy shared by the pipeline stages."""

from __future__ import annotations


class OntoloomError(Exception):
    """Base class for all pipeline errors."""


class GenerationError(OntoloomError):
    """The generation endpoint could not be reached or refused the call."""


class RateLimitExceededError(GenerationError):
    """The endpoint kept throttling after every retry was spent."""

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Rate limit exceeded after {attempts} attempts")


class MalformedResponseError(OntoloomError):
    """The model answered, but not in the expected structured shape."""

    def __init__(self, message: str, raw_text: str | None = None):
        self.raw_text = raw_text
        super().__init__(message)


class EmptyProposalError(OntoloomError):
    """The proposer produced no entities for an observation."""


class ProposerError(OntoloomError):
    """Raised by the proposer stage; the original failure is ``__cause__``."""


class ValidationSystemError(OntoloomError):
    """A hard validation gate crashed instead of returning a verdict."""


class ApplierSystemicFailure(OntoloomError):
    """The knowledge store became unreachable while applying changes."""

    def __init__(self, message: str, items_applied: int = 0):
        self.items_applied = items_applied
        super().__init__(message)


class StageDeadlineExceeded(OntoloomError):
    """A stage ran past the per-run deadline."""

    def __init__(self, stage: str, deadline_seconds: float):
        self.stage = stage
        self.deadline_seconds = deadline_seconds
        super().__init__(
            f"{stage} exceeded the run deadline of {deadline_seconds:.1f}s"
        )
