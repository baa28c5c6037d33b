"""
Error taxonomy for estimation and selection.

NumericFailure and InsufficientDataError are recoverable: callers fall back to
a previous estimate or skip an update. ConfigurationError marks a setup defect
and must reach the caller. Pipeline termination is not an exception; it is a
Result carrying a Status.
"""

from typing import Any, Dict, Optional, Sequence


class CATError(Exception):
    """Base exception for the estimation engine."""

    def __init__(  # noqa: D107
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} (context: {ctx_str})"
        if self.original_error:
            msg = f"{msg} - caused by: {str(self.original_error)}"
        return msg


class NumericFailure(CATError):
    """
    A numeric solve did not produce a usable value.

    Raised for non-convergence within the iteration cap and for NaN/Inf
    results. The last iterate is kept so that callers can log it.
    """

    def __init__(  # noqa: D107
        self,
        message: str,
        last_iterate: Optional[Sequence[float]] = None,
        iterations: Optional[int] = None,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.last_iterate = None if last_iterate is None else tuple(last_iterate)
        self.iterations = iterations
        super().__init__(message, original_error=original_error, context=context)


class InsufficientDataError(NumericFailure):
    """The response set cannot identify a finite maximum-likelihood estimate."""


class ConfigurationError(CATError):
    """A model, strategy or matrix shape does not fit the requested operation."""


class PartialResponseError(ValueError):
    """A response fraction is neither 0 nor 1."""
