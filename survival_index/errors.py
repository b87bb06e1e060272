"""Error taxonomy shared by the judge, the services and the API layer."""
from __future__ import annotations


class SurvivalIndexError(Exception):
    """Base class for all domain errors."""


class NotFoundError(SurvivalIndexError):
    """A referenced record does not exist."""


class ValidationError(SurvivalIndexError):
    """Caller-supplied data is outside its legal domain."""


class ConflictError(SurvivalIndexError):
    """The operation clashes with existing state (duplicate name, already reviewed)."""


class ParseError(SurvivalIndexError):
    """Model output does not follow the judge's output contract."""


class InvocationError(SurvivalIndexError):
    """LLM call failed (network, auth, quota)."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class EvaluationError(SurvivalIndexError):
    """A single project evaluation failed. The root cause is chained as ``__cause__``."""
