"""
Instrument quality filtering.

Turns harmonised instruments into the analysis set and keeps a discard log
(variant id -> reason) for every instrument it removes.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

from ..exceptions import AlleleMismatch, AmbiguousPalindrome
from ..utils.config import MRConfig
from .records import Action, HarmonisedInstrument

logger = logging.getLogger(__name__)

REASON_ALLELE_MISMATCH = AlleleMismatch.reason
REASON_AMBIGUOUS_PALINDROME = AmbiguousPalindrome.reason
REASON_UNRESOLVED_PALINDROME = "unresolved_palindrome"
REASON_ZERO_EXPOSURE_EFFECT = "zero_exposure_effect"
REASON_EXPOSURE_NOT_SIGNIFICANT = "exposure_not_significant"
REASON_OUTCOME_SIGNIFICANT = "outcome_significant"
REASON_CUSTOM_EXCLUSION = "custom_exclusion"


@dataclass(frozen=True)
class FilterResult:
    analysis_set: Tuple[HarmonisedInstrument, ...]
    discard_log: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "discard_log", MappingProxyType(dict(self.discard_log)))


class QualityFilter:
    """
    Apply inclusion rules to harmonised instruments.

    Rules, in order (the first matching rule is logged):

    1. unusable after harmonisation (allele mismatch, ambiguous palindrome)
    2. palindrome aligned by labels only, if `exclude_unresolved_palindromes`
    3. zero exposure effect (the Wald ratio is undefined)
    4. custom exclusion list
    5. significance threshold: the exposure association must reach it and
       the outcome association must not
    """

    def __init__(self, config: Optional[MRConfig] = None):
        self.config = config or MRConfig()

    def reason(self, instrument: HarmonisedInstrument) -> Optional[str]:
        """Exclusion reason for one instrument, or None if it is kept."""
        if not instrument.usable:
            if instrument.action is Action.AMBIGUOUS_EXCLUDED:
                return REASON_AMBIGUOUS_PALINDROME
            return REASON_ALLELE_MISMATCH
        if instrument.unresolved_palindrome and self.config.exclude_unresolved_palindromes:
            return REASON_UNRESOLVED_PALINDROME
        if instrument.beta_exposure == 0:
            return REASON_ZERO_EXPOSURE_EFFECT
        if instrument.variant_id in self.config.excluded_variants:
            return REASON_CUSTOM_EXCLUSION

        threshold = self.config.significance_threshold
        if threshold is not None:
            if instrument.pval_exposure is not None and instrument.pval_exposure > threshold:
                return REASON_EXPOSURE_NOT_SIGNIFICANT
            if instrument.pval_outcome is not None and instrument.pval_outcome < threshold:
                return REASON_OUTCOME_SIGNIFICANT
        return None

    def apply(self, instruments: Iterable[HarmonisedInstrument]) -> FilterResult:
        kept = []
        discard_log = {}
        for instrument in instruments:
            reason = self.reason(instrument)
            if reason is None:
                kept.append(instrument)
            else:
                discard_log[instrument.variant_id] = reason

        if discard_log:
            logger.info(f"QC: Removed {len(discard_log)} instruments, {len(kept)} remain")
        return FilterResult(analysis_set=tuple(kept), discard_log=discard_log)
