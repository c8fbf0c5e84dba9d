"""
Error taxonomy for the evaluation engine.
"""


class TechEvalError(Exception):
    """Base class for all errors raised by tech_eval."""


class ValidationError(TechEvalError):
    """Empty or too-short input, malformed batch shapes, invalid configuration."""


class NotFoundError(TechEvalError):
    """Unknown question id, or a question without a reference embedding."""


class ProviderError(TechEvalError):
    """Embedding call failed after retries, or returned an empty/mismatched response."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class CacheError(TechEvalError):
    """Storage read/write failure. Never propagates out of the cache."""


class InitializationError(TechEvalError):
    """The engine could not be brought to a usable state."""


class StateError(TechEvalError):
    """Operation invoked before the engine is ready."""
