"""Error taxonomy for the digest engine."""

from typing import Optional


class DigestEngineError(Exception):
    """Base class for all engine errors."""


class TransientInfraError(DigestEngineError):
    """Cache or store temporarily unreachable."""


class ValidationError(DigestEngineError):
    """Input has the wrong shape or is out of range."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class AuthorizationError(DigestEngineError):
    """Request carries no usable user identity."""


class ConflictError(DigestEngineError):
    """Write collides with an existing record."""


class NotFoundError(DigestEngineError):
    """Referenced record does not exist."""


class RateLimitExceeded(DigestEngineError):
    """Caller exhausted its recomputation budget for the current window."""

    def __init__(self, message: str, reset_in: float = 0.0) -> None:
        super().__init__(message)
        self.reset_in = reset_in


class SummarizationError(DigestEngineError):
    """A summarization pass failed."""


class JobExecutionError(DigestEngineError):
    """A background job handler failed."""

    def __init__(self, message: str, job_id: str, job_type: str) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.job_type = job_type
