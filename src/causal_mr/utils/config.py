"""
Analysis configuration.

A single immutable `MRConfig` is shared by the harmoniser, the quality
filter and every estimator of one run.
"""

import warnings
from dataclasses import dataclass, field, fields, replace as dc_replace
from typing import Any, Dict, FrozenSet, Optional, Tuple

DEFAULT_METHODS: Tuple[str, ...] = (
    "ivw",
    "mr_egger",
    "weighted_median",
    "simple_median",
    "weighted_mode",
    "simple_mode",
)


@dataclass(frozen=True)
class MRConfig:
    """
    Options recognised by the harmonisation and estimation pipeline.

    Parameters
    ----------
    strand_flip_allowed : bool
        Allow resolving alleles on the opposite strand. When False, all
        alleles are assumed to be reported on the forward strand.
    palindrome_freq_tolerance : float
        Palindromic variants whose effect-allele frequency lies within this
        distance of 0.5 (inclusive) are excluded as ambiguous.
    exclude_palindromes : bool
        Drop every palindromic variant regardless of frequency or of
        `strand_flip_allowed`.
    exclude_unresolved_palindromes : bool
        Drop palindromic variants that were aligned by allele labels only
        because a study did not report frequencies.
    significance_threshold : float, optional
        Exclude instruments whose exposure or outcome p-value is below this
        threshold. None disables the filter.
    excluded_variants : frozenset of str
        Variant identifiers the caller wants removed from the analysis set.
    bootstrap_iterations : int
        Resamples used by the median and mode estimators.
    random_effects : bool
        Inflate the IVW standard error by the residual standard error when
        it exceeds one.
    mode_bandwidth_factor : float
        Multiplier (phi) applied to the modified Silverman bandwidth.
    second_order_weights : bool
        Use second-order ratio variances for the weighted median weights.
    outlier_zscore_threshold : float
        Absolute standardised residual above which a variant is flagged.
    ci_level : float
        Confidence level of every reported interval.
    seed : int, optional
        Seed for the bootstrap random generators.
    methods : tuple of str
        Estimators run by default.
    show_progress : bool
        Display tqdm progress bars for batch runs.
    """

    strand_flip_allowed: bool = True
    palindrome_freq_tolerance: float = 0.08
    exclude_palindromes: bool = False
    exclude_unresolved_palindromes: bool = False
    significance_threshold: Optional[float] = None
    excluded_variants: FrozenSet[str] = field(default_factory=frozenset)
    bootstrap_iterations: int = 1000
    random_effects: bool = True
    mode_bandwidth_factor: float = 1.0
    second_order_weights: bool = False
    outlier_zscore_threshold: float = 2.0
    ci_level: float = 0.95
    seed: Optional[int] = None
    methods: Tuple[str, ...] = DEFAULT_METHODS
    show_progress: bool = False

    def __post_init__(self):
        # Accept any iterable from callers but store hashable, immutable values
        object.__setattr__(self, "excluded_variants", frozenset(self.excluded_variants))
        object.__setattr__(self, "methods", tuple(self.methods))

        if not 0 <= self.palindrome_freq_tolerance < 0.5:
            raise ValueError("palindrome_freq_tolerance must be in [0, 0.5)")
        if self.significance_threshold is not None and not 0 < self.significance_threshold <= 1:
            raise ValueError("significance_threshold must be in (0, 1]")
        if self.bootstrap_iterations < 2:
            raise ValueError("bootstrap_iterations must be at least 2")
        if self.mode_bandwidth_factor <= 0:
            raise ValueError("mode_bandwidth_factor must be positive")
        if self.outlier_zscore_threshold <= 0:
            raise ValueError("outlier_zscore_threshold must be positive")
        if not 0 < self.ci_level < 1:
            raise ValueError("ci_level must be in (0, 1)")
        if not self.methods:
            raise ValueError("At least one method must be configured")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MRConfig":
        """Build a config from a plain mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            warnings.warn(f"Ignoring unknown configuration keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def replace(self, **changes) -> "MRConfig":
        """Return a copy with the given fields changed."""
        return dc_replace(self, **changes)
