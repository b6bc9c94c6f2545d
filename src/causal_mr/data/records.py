"""
Record types for GWAS summary statistics and harmonised instruments.

Records are immutable and validated once at construction; downstream code
never re-checks their fields.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from ..exceptions import InvalidRecord


def _is_missing(value) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def canonical_allele(allele) -> Optional[str]:
    """Uppercase and strip an allele; missing values become None."""
    if _is_missing(allele):
        return None
    allele = str(allele).strip().upper()
    return allele or None


@dataclass(frozen=True)
class VariantEffect:
    """
    One GWAS association of one variant in one study.

    Parameters
    ----------
    variant_id : str
        Variant identifier (usually an rsID).
    effect_allele : str
        Allele the effect size refers to.
    beta : float
        Effect size (log odds ratio for binary traits).
    se : float
        Standard error of `beta`, strictly positive.
    other_allele : str, optional
        Non-effect allele.
    eaf : float, optional
        Effect allele frequency.
    p_value : float, optional
        Association p-value.
    sample_size : int, optional
        Number of individuals in the association test.
    study_id : str, optional
        Study or phenotype identifier.
    """

    variant_id: str
    effect_allele: str
    beta: float
    se: float
    other_allele: Optional[str] = None
    eaf: Optional[float] = None
    p_value: Optional[float] = None
    sample_size: Optional[int] = None
    study_id: Optional[str] = None

    def __post_init__(self):
        if _is_missing(self.variant_id) or not str(self.variant_id).strip():
            raise InvalidRecord("variant_id is required")
        variant_id = str(self.variant_id).strip()
        object.__setattr__(self, "variant_id", variant_id)

        effect_allele = canonical_allele(self.effect_allele)
        if effect_allele is None:
            raise InvalidRecord("effect_allele is required", variant_id)
        other_allele = canonical_allele(self.other_allele)
        if other_allele is not None and other_allele == effect_allele:
            raise InvalidRecord(
                f"effect and other allele are both {effect_allele}", variant_id
            )
        object.__setattr__(self, "effect_allele", effect_allele)
        object.__setattr__(self, "other_allele", other_allele)

        for name in ("beta", "se"):
            value = getattr(self, name)
            if _is_missing(value):
                raise InvalidRecord(f"{name} is required", variant_id)
            value = float(value)
            if not math.isfinite(value):
                raise InvalidRecord(f"{name} must be finite", variant_id)
            object.__setattr__(self, name, value)
        if self.se <= 0:
            raise InvalidRecord("se must be positive", variant_id)

        for name in ("eaf", "p_value"):
            value = getattr(self, name)
            if _is_missing(value):
                object.__setattr__(self, name, None)
                continue
            value = float(value)
            if not 0 <= value <= 1:
                raise InvalidRecord(f"{name} must lie in [0, 1]", variant_id)
            object.__setattr__(self, name, value)

        if _is_missing(self.sample_size):
            object.__setattr__(self, "sample_size", None)
        else:
            sample_size = int(self.sample_size)
            if sample_size <= 0:
                raise InvalidRecord("sample_size must be positive", variant_id)
            object.__setattr__(self, "sample_size", sample_size)

        if _is_missing(self.study_id):
            object.__setattr__(self, "study_id", None)


class Action(Enum):
    """Alignment step applied to the outcome record of a variant."""

    NONE = "none"
    SIGN_FLIP = "sign_flip"
    STRAND_FLIP = "strand_flip"
    STRAND_SIGN_FLIP = "strand_flip_sign_flip"
    AMBIGUOUS_EXCLUDED = "ambiguous_excluded"
    MISMATCH_EXCLUDED = "mismatch_excluded"

    @property
    def usable(self) -> bool:
        return self not in (Action.AMBIGUOUS_EXCLUDED, Action.MISMATCH_EXCLUDED)

    @property
    def flips_sign(self) -> bool:
        return self in (Action.SIGN_FLIP, Action.STRAND_SIGN_FLIP)

    @property
    def flips_strand(self) -> bool:
        return self in (Action.STRAND_FLIP, Action.STRAND_SIGN_FLIP)


@dataclass(frozen=True)
class HarmonisedInstrument:
    """
    Exposure and outcome associations of one variant on a common allele.

    When `usable` is True both betas refer to `effect_allele` on the same
    strand. Unusable instruments keep the outcome values as reported.
    """

    variant_id: str
    effect_allele: str
    other_allele: Optional[str]
    beta_exposure: float
    se_exposure: float
    beta_outcome: float
    se_outcome: float
    action: Action
    usable: bool
    eaf_exposure: Optional[float] = None
    eaf_outcome: Optional[float] = None
    pval_exposure: Optional[float] = None
    pval_outcome: Optional[float] = None
    exposure_id: Optional[str] = None
    outcome_id: Optional[str] = None
    unresolved_palindrome: bool = False

    def __post_init__(self):
        if self.usable and not self.action.usable:
            raise InvalidRecord(
                f"instrument marked usable with action {self.action.value}", self.variant_id
            )

    @property
    def eaf(self) -> Optional[float]:
        """Harmonised effect allele frequency, exposure first."""
        return self.eaf_exposure if self.eaf_exposure is not None else self.eaf_outcome

    @property
    def ratio(self) -> float:
        """Wald ratio estimate of the causal effect from this variant alone."""
        if self.beta_exposure == 0:
            return math.nan
        return self.beta_outcome / self.beta_exposure

    @property
    def ratio_se(self) -> float:
        """First-order standard error of the Wald ratio."""
        if self.beta_exposure == 0:
            return math.nan
        return self.se_outcome / abs(self.beta_exposure)

    @property
    def f_statistic(self) -> float:
        return (self.beta_exposure / self.se_exposure) ** 2

    def to_dict(self) -> dict:
        return {
            "SNP": self.variant_id,
            "effect_allele": self.effect_allele,
            "other_allele": self.other_allele,
            "beta_exp": self.beta_exposure,
            "se_exp": self.se_exposure,
            "beta_out": self.beta_outcome,
            "se_out": self.se_outcome,
            "eaf_exp": self.eaf_exposure,
            "eaf_out": self.eaf_outcome,
            "pval_exp": self.pval_exposure,
            "pval_out": self.pval_outcome,
            "action": self.action.value,
            "usable": self.usable,
            "exposure": self.exposure_id,
            "outcome": self.outcome_id,
            "unresolved_palindrome": self.unresolved_palindrome,
        }


def instruments_to_frame(instruments) -> pd.DataFrame:
    """Tabulate harmonised instruments, one row per variant."""
    instruments = list(instruments)
    if not instruments:
        return pd.DataFrame(columns=list(_EMPTY_INSTRUMENT_COLUMNS))
    frame = pd.DataFrame([inst.to_dict() for inst in instruments])
    frame["ratio"] = [inst.ratio for inst in instruments]
    frame["ratio_se"] = [inst.ratio_se for inst in instruments]
    return frame


_EMPTY_INSTRUMENT_COLUMNS = (
    "SNP", "effect_allele", "other_allele", "beta_exp", "se_exp", "beta_out",
    "se_out", "eaf_exp", "eaf_out", "pval_exp", "pval_out", "action", "usable",
    "exposure", "outcome", "unresolved_palindrome", "ratio", "ratio_se",
)


def records_from_frame(data: pd.DataFrame,
                       snp_col: str = 'SNP',
                       beta_col: str = 'beta',
                       se_col: str = 'se',
                       effect_allele_col: str = 'effect_allele',
                       other_allele_col: Optional[str] = 'other_allele',
                       eaf_col: Optional[str] = 'eaf',
                       pval_col: Optional[str] = 'pval',
                       samplesize_col: Optional[str] = 'samplesize',
                       study_id: Optional[str] = None
                       ) -> Tuple[List[VariantEffect], List[InvalidRecord]]:
    """
    Convert a standardised summary-statistics table into VariantEffect records.

    Optional columns absent from `data` are treated as missing. Rows failing
    validation are not raised; they are returned as the second element so the
    caller can report them.

    Returns
    -------
    tuple
        (records, invalid_records)
    """
    for col in (snp_col, beta_col, se_col, effect_allele_col):
        if col not in data.columns:
            raise KeyError(f"Required column '{col}' not found")

    optional = {
        'other_allele': other_allele_col,
        'eaf': eaf_col,
        'p_value': pval_col,
        'sample_size': samplesize_col,
    }
    optional = {k: v for k, v in optional.items() if v is not None and v in data.columns}

    records = []
    invalid = []
    for row in data.to_dict('records'):
        values = {k: row.get(col) for k, col in optional.items()}
        try:
            records.append(VariantEffect(
                variant_id=row.get(snp_col),
                effect_allele=row.get(effect_allele_col),
                beta=row.get(beta_col),
                se=row.get(se_col),
                study_id=study_id,
                **values,
            ))
        except InvalidRecord as e:
            invalid.append(e)
        except (TypeError, ValueError) as e:
            invalid.append(InvalidRecord(str(e), row.get(snp_col)))

    return records, invalid


def as_arrays(instruments) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Return (beta_exp, se_exp, beta_out, se_out) arrays for an analysis set."""
    b_exp = np.array([i.beta_exposure for i in instruments], dtype=float)
    se_exp = np.array([i.se_exposure for i in instruments], dtype=float)
    b_out = np.array([i.beta_outcome for i in instruments], dtype=float)
    se_out = np.array([i.se_outcome for i in instruments], dtype=float)
    return b_exp, se_exp, b_out, se_out
