"""Domain exceptions.

Services raise these; the HTTP layer (studyforge/api) translates them to
status codes and the job dispatcher decides from them whether a failure
is worth retrying.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the pipeline services."""


class ValidationError(PipelineError):
    """Input rejected before anything was mutated."""


class NotFoundError(PipelineError):
    pass


class ConflictError(PipelineError):
    """A concurrent writer won; re-read and try again."""


class InvalidStateTransition(ConflictError):
    def __init__(self, current_status: str, action: str) -> None:
        super().__init__(f"cannot {action} while status is {current_status}")
        self.current_status = current_status
        self.action = action


class InsufficientCreditsError(PipelineError):
    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(
            f"insufficient credits: balance={balance} requested={requested}"
        )
        self.balance = balance
        self.requested = requested


class RateLimitedError(PipelineError):
    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after


class TransientStorageError(PipelineError):
    """Storage was unreachable; safe to retry the same call."""


class DownstreamFailure(PipelineError):
    """The AI model or another remote collaborator failed or answered garbage."""


class FatalJobError(PipelineError):
    """A job failure that retrying cannot fix (bad payload, missing entity)."""
