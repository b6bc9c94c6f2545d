"""
Unit tests for allele harmonisation
"""

import pytest

from causal_mr.data.harmonisation import (
    AlleleHarmonizer,
    classify_alleles,
    complement_allele,
    deduplicate,
    infer_other_alleles,
    is_palindromic,
)
from causal_mr.data.records import Action, VariantEffect
from causal_mr.exceptions import AlleleMismatch, AmbiguousPalindrome
from causal_mr.utils.config import MRConfig


def variant(variant_id='rs1', ea='A', oa='G', beta=0.1, se=0.01, eaf=None, **kwargs):
    return VariantEffect(variant_id=variant_id, effect_allele=ea, other_allele=oa,
                         beta=beta, se=se, eaf=eaf, **kwargs)


class TestAlleleUtilities:
    """Test complement and palindrome helpers"""

    def test_complement_single_base(self):
        """Test single base complements"""
        assert complement_allele('A') == 'T'
        assert complement_allele('C') == 'G'
        assert complement_allele('G') == 'C'
        assert complement_allele('T') == 'A'

    def test_complement_multi_base_is_reverse_complement(self):
        """Test indel alleles are read backwards on the other strand"""
        assert complement_allele('AC') == 'GT'
        assert complement_allele('AAG') == 'CTT'

    def test_complement_undefined(self):
        """Test alleles without a nucleotide complement"""
        assert complement_allele('D') is None
        assert complement_allele('I') is None
        assert complement_allele(None) is None

    @pytest.mark.parametrize('a1,a2,expected', [
        ('A', 'T', True),
        ('T', 'A', True),
        ('C', 'G', True),
        ('G', 'C', True),
        ('A', 'G', False),
        ('C', 'T', False),
        ('D', 'I', False),
    ])
    def test_is_palindromic(self, a1, a2, expected):
        """Test palindrome detection"""
        assert is_palindromic(a1, a2) is expected


class TestClassifyAlleles:
    """Test the per-variant classification of alignment actions"""

    def test_same_order(self):
        """Test identical alleles need no change"""
        assert classify_alleles(('A', 'G'), ('A', 'G')) is Action.NONE

    def test_reversed_order(self):
        """Test swapped alleles need a sign flip"""
        assert classify_alleles(('A', 'G'), ('G', 'A')) is Action.SIGN_FLIP

    def test_strand_flip(self):
        """Test complementary alleles resolve to a strand flip"""
        assert classify_alleles(('A', 'G'), ('T', 'C')) is Action.STRAND_FLIP

    def test_strand_and_sign_flip(self):
        """Test complementary swapped alleles"""
        assert classify_alleles(('A', 'G'), ('C', 'T')) is Action.STRAND_SIGN_FLIP

    def test_strand_flip_disallowed(self):
        """Test complementary alleles are a mismatch when strand flips are off"""
        action = classify_alleles(('A', 'G'), ('T', 'C'), strand_flip_allowed=False)
        assert action is Action.MISMATCH_EXCLUDED

    def test_mismatch(self):
        """Test irreconcilable alleles"""
        assert classify_alleles(('A', 'G'), ('A', 'C')) is Action.MISMATCH_EXCLUDED

    def test_missing_allele_is_mismatch(self):
        """Test alleles that are still missing cannot be matched"""
        assert classify_alleles(('A', None), ('A', 'G')) is Action.MISMATCH_EXCLUDED

    def test_palindrome_same_strand(self):
        """Test palindromes with consistent frequencies keep their orientation"""
        action = classify_alleles(('A', 'T'), ('A', 'T'), exposure_eaf=0.2, outcome_eaf=0.25)
        assert action is Action.NONE

    def test_palindrome_same_strand_reversed_labels(self):
        """Test palindromes reported with swapped labels on the same strand"""
        action = classify_alleles(('A', 'T'), ('T', 'A'), exposure_eaf=0.2, outcome_eaf=0.75)
        assert action is Action.SIGN_FLIP

    def test_palindrome_opposite_strand(self):
        """Test palindromes whose frequencies disagree are on the opposite strand"""
        action = classify_alleles(('A', 'T'), ('A', 'T'), exposure_eaf=0.2, outcome_eaf=0.8)
        assert action is Action.STRAND_SIGN_FLIP

    def test_palindrome_opposite_strand_reversed_labels(self):
        """Test opposite strand palindromes with swapped labels need no sign change"""
        action = classify_alleles(('A', 'T'), ('T', 'A'), exposure_eaf=0.2, outcome_eaf=0.2)
        assert action is Action.STRAND_FLIP

    @pytest.mark.parametrize('tolerance', [0.0, 0.01, 0.08, 0.2, 0.49])
    def test_palindrome_at_half_always_ambiguous(self, tolerance):
        """Test a frequency of exactly 0.5 can never orient a palindrome"""
        action = classify_alleles(('C', 'G'), ('C', 'G'), exposure_eaf=0.5,
                                  outcome_eaf=0.2, tolerance=tolerance)
        assert action is Action.AMBIGUOUS_EXCLUDED

    def test_palindrome_within_tolerance(self):
        """Test frequencies close to 0.5 are ambiguous"""
        action = classify_alleles(('A', 'T'), ('A', 'T'), exposure_eaf=0.45,
                                  outcome_eaf=0.2, tolerance=0.08)
        assert action is Action.AMBIGUOUS_EXCLUDED

    def test_palindrome_tolerance_boundary_inclusive(self):
        """Test a frequency exactly on the tolerance boundary is ambiguous"""
        action = classify_alleles(('A', 'T'), ('A', 'T'), exposure_eaf=0.25,
                                  outcome_eaf=0.1, tolerance=0.25)
        assert action is Action.AMBIGUOUS_EXCLUDED

    def test_palindrome_without_frequency_uses_labels(self):
        """Test palindromes without frequencies fall back to label matching"""
        assert classify_alleles(('A', 'T'), ('T', 'A')) is Action.SIGN_FLIP
        assert classify_alleles(('A', 'T'), ('A', 'T')) is Action.NONE

    def test_exclude_palindromes(self):
        """Test the conservative mode drops every palindrome"""
        action = classify_alleles(('A', 'T'), ('A', 'T'), exposure_eaf=0.1,
                                  outcome_eaf=0.1, exclude_palindromes=True)
        assert action is Action.AMBIGUOUS_EXCLUDED

    def test_exclude_palindromes_forward_strand(self):
        """Test the conservative mode also applies without strand flips"""
        action = classify_alleles(('A', 'T'), ('T', 'A'), exposure_eaf=0.1, outcome_eaf=0.9,
                                  strand_flip_allowed=False, exclude_palindromes=True)
        assert action is Action.AMBIGUOUS_EXCLUDED
        harmonizer = AlleleHarmonizer(MRConfig(strand_flip_allowed=False, exclude_palindromes=True))
        inst = harmonizer.harmonise([variant('rs1', 'C', 'G')], [variant('rs1', 'C', 'G')]).instruments[0]
        assert not inst.usable
        assert not inst.unresolved_palindrome

    def test_palindrome_forward_strand_mode(self):
        """Test palindromes are matched by label when strand flips are off"""
        action = classify_alleles(('A', 'T'), ('T', 'A'), exposure_eaf=0.5,
                                  outcome_eaf=0.5, strand_flip_allowed=False)
        assert action is Action.SIGN_FLIP

    def test_indel_alleles(self):
        """Test multi-character alleles are matched by label"""
        assert classify_alleles(('AT', 'A'), ('A', 'AT')) is Action.SIGN_FLIP
        assert classify_alleles(('D', 'I'), ('I', 'D')) is Action.SIGN_FLIP
        assert classify_alleles(('D', 'I'), ('A', 'I')) is Action.MISMATCH_EXCLUDED


class TestInferenceAndDuplicates:
    """Test other-allele inference and duplicate resolution"""

    def test_infer_missing_exposure_other_allele(self):
        """Test other allele copied from the outcome study"""
        exposure = variant(ea='A', oa=None)
        outcome = variant(ea='G', oa='A')
        assert infer_other_alleles(exposure, outcome) == ('G', 'A')

    def test_infer_missing_outcome_other_allele(self):
        """Test other allele copied from the exposure study"""
        exposure = variant(ea='A', oa='G')
        outcome = variant(ea='A', oa=None)
        assert infer_other_alleles(exposure, outcome) == ('G', 'G')

    def test_no_inference_when_unrelated(self):
        """Test nothing is inferred from an unrelated allele"""
        exposure = variant(ea='A', oa=None)
        outcome = variant(ea='C', oa='T')
        assert infer_other_alleles(exposure, outcome) == (None, 'T')

    def test_deduplicate_keeps_smallest_se(self):
        """Test duplicate records resolve to the most precise one"""
        records = [
            variant('rs1', se=0.05, beta=0.1),
            variant('rs2', se=0.02),
            variant('rs1', se=0.01, beta=0.3),
        ]
        kept, dropped = deduplicate(records)
        assert [r.variant_id for r in kept] == ['rs1', 'rs2']
        assert kept[0].beta == 0.3
        assert len(dropped) == 1

    def test_deduplicate_tie_keeps_first(self):
        """Test ties go to the first-seen record"""
        records = [variant('rs1', se=0.02, beta=0.1), variant('rs1', se=0.02, beta=0.9)]
        kept, dropped = deduplicate(records)
        assert kept[0].beta == 0.1
        assert dropped[0].beta == 0.9


class TestAlleleHarmonizer:
    """Test AlleleHarmonizer class"""

    @pytest.fixture
    def harmonizer(self):
        return AlleleHarmonizer(MRConfig())

    def test_initialization(self):
        """Test default configuration"""
        harmonizer = AlleleHarmonizer()
        assert harmonizer.config.palindrome_freq_tolerance == 0.08
        assert harmonizer.config.strand_flip_allowed is True

    def test_already_harmonised_is_idempotent(self, harmonizer):
        """Test identical alleles give action none and unchanged betas"""
        exposure = [variant('rs1', 'A', 'G', beta=0.2, se=0.02)]
        outcome = [variant('rs1', 'A', 'G', beta=-0.05, se=0.01)]

        result = harmonizer.harmonise(exposure, outcome)
        inst = result.instruments[0]

        assert inst.action is Action.NONE
        assert inst.usable
        assert inst.beta_exposure == 0.2
        assert inst.beta_outcome == -0.05

    def test_rerun_gives_identical_output(self, harmonizer):
        """Test harmonisation is deterministic"""
        exposure = [variant('rs1', 'A', 'G'), variant('rs2', 'C', 'T', beta=-0.2)]
        outcome = [variant('rs2', 'T', 'C', beta=0.05), variant('rs1', 'T', 'C', beta=0.1)]

        first = harmonizer.harmonise(exposure, outcome)
        second = harmonizer.harmonise(exposure, outcome)
        assert first.instruments == second.instruments

    def test_sign_flip_symmetry(self, harmonizer):
        """Test swapping outcome allele order flips the outcome beta"""
        exposure = [variant('rs1', 'A', 'G', beta=0.2)]
        same = harmonizer.harmonise(exposure, [variant('rs1', 'A', 'G', beta=0.07)])
        swapped = harmonizer.harmonise(exposure, [variant('rs1', 'G', 'A', beta=0.07)])

        assert swapped.instruments[0].action is Action.SIGN_FLIP
        assert swapped.instruments[0].beta_outcome == -same.instruments[0].beta_outcome
        assert abs(swapped.instruments[0].beta_outcome) == 0.07

    def test_sign_flip_updates_frequency(self, harmonizer):
        """Test outcome frequency is re-expressed on the exposure effect allele"""
        exposure = [variant('rs1', 'A', 'G', eaf=0.3)]
        outcome = [variant('rs1', 'G', 'A', eaf=0.7)]
        inst = harmonizer.harmonise(exposure, outcome).instruments[0]
        assert inst.eaf_outcome == pytest.approx(0.3)
        assert inst.eaf == 0.3

    def test_strand_flip_keeps_sign(self, harmonizer):
        """Test complementary non-palindromic alleles keep the outcome sign"""
        exposure = [variant('rs1', 'A', 'G', beta=0.2)]
        outcome = [variant('rs1', 'T', 'C', beta=0.05)]

        inst = harmonizer.harmonise(exposure, outcome).instruments[0]
        assert inst.action is Action.STRAND_FLIP
        assert inst.usable
        assert inst.beta_outcome == 0.05
        assert inst.effect_allele == 'A'

    def test_lowercase_alleles(self, harmonizer):
        """Test alleles are canonicalised before matching"""
        exposure = [variant('rs1', 'a', 'g')]
        outcome = [variant('rs1', 'G', 'a', beta=0.05)]
        inst = harmonizer.harmonise(exposure, outcome).instruments[0]
        assert inst.action is Action.SIGN_FLIP
        assert inst.beta_outcome == -0.05

    def test_ambiguous_palindrome_flagged(self, harmonizer):
        """Test ambiguous palindromes are kept but unusable"""
        exposure = [variant('rs1', 'A', 'T', eaf=0.5)]
        outcome = [variant('rs1', 'A', 'T', eaf=0.5)]
        inst = harmonizer.harmonise(exposure, outcome).instruments[0]
        assert inst.action is Action.AMBIGUOUS_EXCLUDED
        assert not inst.usable

    def test_unresolved_palindrome_flagged(self, harmonizer):
        """Test palindromes aligned without frequencies are marked"""
        exposure = [variant('rs1', 'A', 'T')]
        outcome = [variant('rs1', 'T', 'A')]
        inst = harmonizer.harmonise(exposure, outcome).instruments[0]
        assert inst.usable
        assert inst.unresolved_palindrome

    def test_mismatch_flagged(self, harmonizer):
        """Test irreconcilable alleles are unusable"""
        exposure = [variant('rs1', 'A', 'G')]
        outcome = [variant('rs1', 'A', 'C')]
        inst = harmonizer.harmonise(exposure, outcome).instruments[0]
        assert inst.action is Action.MISMATCH_EXCLUDED
        assert not inst.usable

    def test_intersection_and_order(self, harmonizer):
        """Test only shared variants are returned, in exposure order"""
        exposure = [variant('rs3'), variant('rs1'), variant('rs2')]
        outcome = [variant('rs1'), variant('rs3'), variant('rs9')]

        result = harmonizer.harmonise(exposure, outcome)
        assert [i.variant_id for i in result.instruments] == ['rs3', 'rs1']
        assert result.exposure_only == ('rs2',)
        assert result.outcome_only == ('rs9',)

    def test_duplicates_resolved_before_alignment(self, harmonizer):
        """Test duplicates within a study are resolved first"""
        exposure = [variant('rs1', se=0.05, beta=0.1), variant('rs1', se=0.01, beta=0.4)]
        outcome = [variant('rs1')]

        result = harmonizer.harmonise(exposure, outcome)
        assert len(result.instruments) == 1
        assert result.instruments[0].beta_exposure == 0.4
        assert result.duplicates == (('exposure', 'rs1'),)

    def test_action_counts(self, harmonizer):
        """Test summary counts per action"""
        exposure = [variant('rs1', 'A', 'G'), variant('rs2', 'A', 'G')]
        outcome = [variant('rs1', 'G', 'A'), variant('rs2', 'A', 'C')]
        counts = harmonizer.harmonise(exposure, outcome).action_counts
        assert counts['sign_flip'] == 1
        assert counts['mismatch_excluded'] == 1

    def test_align_raises_for_mismatch(self, harmonizer):
        """Test the strict single-variant API raises"""
        with pytest.raises(AlleleMismatch):
            harmonizer.align(variant('rs1', 'A', 'G'), variant('rs1', 'A', 'C'))

    def test_align_raises_for_ambiguous(self, harmonizer):
        """Test the strict API raises for ambiguous palindromes"""
        with pytest.raises(AmbiguousPalindrome):
            harmonizer.align(variant('rs1', 'C', 'G', eaf=0.48),
                             variant('rs1', 'C', 'G', eaf=0.3))

    def test_align_rejects_different_variants(self, harmonizer):
        """Test aligning records of different variants"""
        with pytest.raises(AlleleMismatch):
            harmonizer.align(variant('rs1'), variant('rs2'))


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
