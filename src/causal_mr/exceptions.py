"""
Exceptions raised by the MR toolkit.

Per-variant and per-method failures are local: the harmonisation and
estimation pipeline catches them and records them in the discard log or
the omitted-method table of the report.
"""


class MRError(Exception):
    """Base class for all toolkit errors."""

    reason = "error"


class InvalidRecord(MRError, ValueError):
    """A VariantEffect is missing a required field or holds an invalid value."""

    reason = "invalid_record"

    def __init__(self, message: str, variant_id=None):
        super().__init__(message)
        self.variant_id = variant_id


class HarmonisationError(MRError):
    """A variant could not be aligned between the exposure and outcome studies."""

    def __init__(self, variant_id: str, message: str):
        super().__init__(f"{variant_id}: {message}")
        self.variant_id = variant_id


class AlleleMismatch(HarmonisationError):
    reason = "allele_mismatch"


class AmbiguousPalindrome(HarmonisationError):
    reason = "ambiguous_palindrome"


class EstimationError(MRError):
    """An estimator could not produce a result for the analysis set."""


class InsufficientInstruments(EstimationError):
    reason = "insufficient_instruments"

    def __init__(self, method: str, required: int, available: int):
        super().__init__(
            f"{method} requires at least {required} instruments, got {available}"
        )
        self.method = method
        self.required = required
        self.available = available


class NumericDegenerate(EstimationError):
    reason = "numeric_degenerate"


class Cancelled(MRError):
    """Raised when a long-running computation observes a cancellation signal."""

    reason = "cancelled"
