"""
Allele Harmonisation Module

Aligns exposure and outcome associations of each shared variant onto the
exposure effect allele and strand, resolving palindromic variants from
allele frequencies and flagging variants that cannot be safely aligned.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from Bio.Seq import reverse_complement

from ..exceptions import AlleleMismatch, AmbiguousPalindrome
from ..utils.config import MRConfig
from .records import Action, HarmonisedInstrument, VariantEffect

logger = logging.getLogger(__name__)

NUCLEOTIDES = frozenset("ACGT")


def complement_allele(allele: Optional[str]) -> Optional[str]:
    """
    Allele as read from the opposite strand.

    Multi-base alleles are reverse-complemented. Alleles containing anything
    other than A/C/G/T (e.g. the D/I indel codes) have no complement and
    return None.
    """
    if not allele or not set(allele) <= NUCLEOTIDES:
        return None
    return str(reverse_complement(allele))


def is_palindromic(allele1: Optional[str], allele2: Optional[str]) -> bool:
    """True if reading the pair from the opposite strand gives the same pair (A/T, C/G)."""
    c1, c2 = complement_allele(allele1), complement_allele(allele2)
    if c1 is None or c2 is None:
        return False
    return {c1, c2} == {allele1, allele2}


def _frequency_ambiguous(eaf: float, tolerance: float) -> bool:
    # Boundary inclusive: |eaf - 0.5| == tolerance is ambiguous
    return abs(eaf - 0.5) <= tolerance


def classify_alleles(exposure_alleles: Tuple[Optional[str], Optional[str]],
                     outcome_alleles: Tuple[Optional[str], Optional[str]],
                     exposure_eaf: Optional[float] = None,
                     outcome_eaf: Optional[float] = None,
                     tolerance: float = 0.08,
                     strand_flip_allowed: bool = True,
                     exclude_palindromes: bool = False) -> Action:
    """
    Decide how the outcome record must be transformed to match the exposure.

    Parameters
    ----------
    exposure_alleles, outcome_alleles : tuple
        (effect_allele, other_allele), canonicalised.
    exposure_eaf, outcome_eaf : float, optional
        Effect allele frequencies, each relative to its own effect allele.
    tolerance : float
        Palindromic variants with a frequency within this distance of 0.5
        cannot be oriented.
    strand_flip_allowed : bool
        If False, both studies are assumed to report the forward strand:
        complementary alleles are a mismatch and palindromes are matched by
        label alone.
    exclude_palindromes : bool
        Exclude palindromic variants without looking at frequencies, also
        when strand flips are not allowed.

    Returns
    -------
    Action
    """
    exp_ea, exp_oa = exposure_alleles
    out_ea, out_oa = outcome_alleles

    if None in (exp_ea, exp_oa, out_ea, out_oa):
        return Action.MISMATCH_EXCLUDED

    same_order = exp_ea == out_ea and exp_oa == out_oa
    reversed_order = exp_ea == out_oa and exp_oa == out_ea

    palindromic = (same_order or reversed_order) and is_palindromic(exp_ea, exp_oa)
    if palindromic and exclude_palindromes:
        return Action.AMBIGUOUS_EXCLUDED

    if palindromic and strand_flip_allowed:
        if any(eaf is not None and _frequency_ambiguous(eaf, tolerance)
               for eaf in (exposure_eaf, outcome_eaf)):
            return Action.AMBIGUOUS_EXCLUDED
        if exposure_eaf is None or outcome_eaf is None:
            # Nothing to orient by: fall back to the reported labels and let
            # the quality filter decide whether to keep the variant
            return Action.NONE if same_order else Action.SIGN_FLIP

        # Outcome frequency of the exposure effect allele, assuming same strand
        aligned_eaf = outcome_eaf if same_order else 1 - outcome_eaf
        same_strand = (exposure_eaf < 0.5) == (aligned_eaf < 0.5)
        if same_strand:
            return Action.NONE if same_order else Action.SIGN_FLIP
        # On the opposite strand the outcome labels denote the complementary alleles
        return Action.STRAND_SIGN_FLIP if same_order else Action.STRAND_FLIP

    if same_order:
        return Action.NONE
    if reversed_order:
        return Action.SIGN_FLIP

    if strand_flip_allowed:
        comp_ea, comp_oa = complement_allele(out_ea), complement_allele(out_oa)
        if comp_ea is not None and comp_oa is not None:
            if comp_ea == exp_ea and comp_oa == exp_oa:
                return Action.STRAND_FLIP
            if comp_ea == exp_oa and comp_oa == exp_ea:
                return Action.STRAND_SIGN_FLIP

    return Action.MISMATCH_EXCLUDED


def infer_other_alleles(exposure: VariantEffect,
                        outcome: VariantEffect) -> Tuple[Optional[str], Optional[str]]:
    """
    Fill a missing other allele from the counterpart study.

    Only same-strand inference is attempted; returns
    (exposure_other_allele, outcome_other_allele).
    """
    exp_oa, out_oa = exposure.other_allele, outcome.other_allele

    if exp_oa is None and out_oa is not None:
        if exposure.effect_allele == outcome.effect_allele:
            exp_oa = out_oa
        elif exposure.effect_allele == out_oa:
            exp_oa = outcome.effect_allele

    if out_oa is None and exp_oa is not None:
        if outcome.effect_allele == exposure.effect_allele:
            out_oa = exp_oa
        elif outcome.effect_allele == exp_oa:
            out_oa = exposure.effect_allele

    return exp_oa, out_oa


def deduplicate(records: Iterable[VariantEffect]) -> Tuple[List[VariantEffect], List[VariantEffect]]:
    """
    Keep one record per variant: the one with the smallest standard error.

    Ties go to the record seen first. Output preserves first-seen order of
    variant identifiers.

    Returns
    -------
    tuple
        (kept, dropped)
    """
    best: Dict[str, VariantEffect] = {}
    dropped = []
    for record in records:
        current = best.get(record.variant_id)
        if current is None:
            best[record.variant_id] = record
        elif record.se < current.se:
            dropped.append(current)
            best[record.variant_id] = record
        else:
            dropped.append(record)
    return list(best.values()), dropped


@dataclass(frozen=True)
class HarmonisationResult:
    """Output of one harmonisation run."""

    instruments: Tuple[HarmonisedInstrument, ...]
    duplicates: Tuple[Tuple[str, str], ...] = ()
    exposure_only: Tuple[str, ...] = ()
    outcome_only: Tuple[str, ...] = ()
    action_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def usable(self) -> Tuple[HarmonisedInstrument, ...]:
        return tuple(inst for inst in self.instruments if inst.usable)


class AlleleHarmonizer:
    """
    Harmonise exposure and outcome summary statistics.

    Harmonisation is a pure function of the two input record sequences and
    the configuration: running it again on the same inputs gives the same
    instruments in the same order.
    """

    def __init__(self, config: Optional[MRConfig] = None):
        self.config = config or MRConfig()

    def classify(self, exposure: VariantEffect, outcome: VariantEffect) -> Action:
        """Alignment action for one variant under this harmoniser's settings."""
        exp_oa, out_oa = infer_other_alleles(exposure, outcome)
        return classify_alleles(
            (exposure.effect_allele, exp_oa),
            (outcome.effect_allele, out_oa),
            exposure_eaf=exposure.eaf,
            outcome_eaf=outcome.eaf,
            tolerance=self.config.palindrome_freq_tolerance,
            strand_flip_allowed=self.config.strand_flip_allowed,
            exclude_palindromes=self.config.exclude_palindromes,
        )

    def _build(self, exposure: VariantEffect, outcome: VariantEffect) -> HarmonisedInstrument:
        action = self.classify(exposure, outcome)
        exp_oa, _ = infer_other_alleles(exposure, outcome)

        beta_out = outcome.beta
        eaf_out = outcome.eaf
        if action.flips_sign:
            beta_out = -beta_out
            if eaf_out is not None:
                eaf_out = 1 - eaf_out

        unresolved = (
            action.usable
            and self.config.strand_flip_allowed
            and is_palindromic(exposure.effect_allele, exp_oa)
            and (exposure.eaf is None or outcome.eaf is None)
        )

        return HarmonisedInstrument(
            variant_id=exposure.variant_id,
            effect_allele=exposure.effect_allele,
            other_allele=exp_oa,
            beta_exposure=exposure.beta,
            se_exposure=exposure.se,
            beta_outcome=beta_out,
            se_outcome=outcome.se,
            action=action,
            usable=action.usable,
            eaf_exposure=exposure.eaf,
            eaf_outcome=eaf_out,
            pval_exposure=exposure.p_value,
            pval_outcome=outcome.p_value,
            exposure_id=exposure.study_id,
            outcome_id=outcome.study_id,
            unresolved_palindrome=unresolved,
        )

    def align(self, exposure: VariantEffect, outcome: VariantEffect) -> HarmonisedInstrument:
        """
        Align a single variant, raising if it cannot be used.

        Raises
        ------
        AmbiguousPalindrome
            Palindromic variant whose strand cannot be inferred.
        AlleleMismatch
            Alleles cannot be reconciled between the two studies.
        """
        if exposure.variant_id != outcome.variant_id:
            raise AlleleMismatch(
                exposure.variant_id,
                f"cannot align against a different variant ({outcome.variant_id})",
            )
        instrument = self._build(exposure, outcome)
        if instrument.action is Action.AMBIGUOUS_EXCLUDED:
            raise AmbiguousPalindrome(
                exposure.variant_id,
                f"palindromic alleles {exposure.effect_allele}/{instrument.other_allele} "
                f"with frequencies {exposure.eaf}/{outcome.eaf}",
            )
        if instrument.action is Action.MISMATCH_EXCLUDED:
            raise AlleleMismatch(
                exposure.variant_id,
                f"exposure {exposure.effect_allele}/{exposure.other_allele} vs "
                f"outcome {outcome.effect_allele}/{outcome.other_allele}",
            )
        return instrument

    def harmonise(self,
                  exposures: Sequence[VariantEffect],
                  outcomes: Sequence[VariantEffect]) -> HarmonisationResult:
        """
        Harmonise every variant present in both studies.

        Duplicate identifiers within a study are resolved first (smallest
        standard error wins). Instruments are returned in exposure order and
        include unusable ones, flagged with their exclusion action.
        """
        exposures, exp_dups = deduplicate(exposures)
        outcomes, out_dups = deduplicate(outcomes)
        duplicates = tuple([('exposure', r.variant_id) for r in exp_dups]
                           + [('outcome', r.variant_id) for r in out_dups])
        if duplicates:
            logger.info(f"Resolved {len(duplicates)} duplicate records")

        outcome_by_id = {r.variant_id: r for r in outcomes}
        exposure_ids = {r.variant_id for r in exposures}

        instruments = []
        counts: Dict[str, int] = {a.value: 0 for a in Action}
        for exposure in exposures:
            outcome = outcome_by_id.get(exposure.variant_id)
            if outcome is None:
                continue
            instrument = self._build(exposure, outcome)
            counts[instrument.action.value] += 1
            if not instrument.usable:
                logger.debug(f"{instrument.variant_id}: {instrument.action.value}")
            instruments.append(instrument)

        exposure_only = tuple(r.variant_id for r in exposures if r.variant_id not in outcome_by_id)
        outcome_only = tuple(r.variant_id for r in outcomes if r.variant_id not in exposure_ids)

        n_usable = sum(inst.usable for inst in instruments)
        logger.info(
            f"Harmonised {len(instruments)} shared variants: {n_usable} usable, "
            f"{counts[Action.SIGN_FLIP.value] + counts[Action.STRAND_SIGN_FLIP.value]} sign-flipped, "
            f"{counts[Action.AMBIGUOUS_EXCLUDED.value]} ambiguous, "
            f"{counts[Action.MISMATCH_EXCLUDED.value]} mismatched"
        )

        return HarmonisationResult(
            instruments=tuple(instruments),
            duplicates=duplicates,
            exposure_only=exposure_only,
            outcome_only=outcome_only,
            action_counts=counts,
        )
