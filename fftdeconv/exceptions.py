"""Exception types raised by the toolkit.

All of them derive from built-in exceptions so that callers which only
care about ``ValueError`` (bad arguments) or ``RuntimeError`` (operator
used in the wrong state) keep working.
"""

__all__ = [
    "ConfigurationError",
    "IncorrectSpaceError",
    "InvalidWeightError",
    "UninitializedOperatorError",
]


class ConfigurationError(ValueError):
    """Unsupported element type or rank, or inconsistent shapes/offsets."""


class IncorrectSpaceError(ValueError):
    """A vector does not belong to the expected vector space."""


class InvalidWeightError(ValueError):
    """Weights are not finite and nonnegative, or weigh non-finite data."""


class UninitializedOperatorError(RuntimeError):
    """Operator or cost used before its PSF (or data) has been set."""
