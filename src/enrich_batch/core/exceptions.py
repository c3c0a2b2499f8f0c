"""Exceptions for batch enrichment."""


class EnrichBatchError(Exception):
    """Base exception for enrichment errors"""  # noqa: D415


class ConfigurationError(EnrichBatchError):
    """Raised when configuration cannot be resolved or validated"""  # noqa: D415


class ValidationError(EnrichBatchError):
    """Raised when job input fails a precondition"""  # noqa: D415


class InvariantViolationError(EnrichBatchError):
    """Raised when the engine would emit an incomplete or misordered result set."""

    def __init__(self, message: str, *, expected: int, actual: int) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class EngineError(EnrichBatchError):
    """Raised when a job aborts on an unexpected failure."""

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id
