"""
Heterogeneity Analysis Module

Cochran's Q and I-squared around the inverse-variance weighted estimate,
per-variant contributions to Q, and instrument strength.
"""

import math
from typing import Dict, Sequence, Tuple

import numpy as np
from scipy import stats

from ..data.records import HarmonisedInstrument, as_arrays
from ..report import HeterogeneityResult


def cochran_q(ratio: np.ndarray, weights: np.ndarray, pooled: float) -> Tuple[float, np.ndarray]:
    """
    Cochran's Q statistic.

    Returns
    -------
    tuple
        (Q, per-variant contributions weight_i * (ratio_i - pooled)**2)
    """
    contributions = weights * (ratio - pooled) ** 2
    return float(np.sum(contributions)), contributions


def q_pvalue(q: float, df: int) -> float:
    if df <= 0:
        return math.nan
    return float(stats.chi2.sf(q, df))


def i_squared(q: float, df: int) -> float:
    """I-squared in percent, bounded to [0, 100]."""
    if q <= 0:
        return 0.0
    return max(0.0, (q - df) / q) * 100


def ratio_weights(instruments: Sequence[HarmonisedInstrument]) -> Tuple[np.ndarray, np.ndarray]:
    """Wald ratios and their first-order inverse-variance weights."""
    b_exp, _, b_out, se_out = as_arrays(instruments)
    ratio = b_out / b_exp
    weights = b_exp ** 2 / se_out ** 2
    return ratio, weights


class HeterogeneityAnalyzer:
    """
    Heterogeneity of per-variant causal estimates.

    Large Q relative to its degrees of freedom indicates that the variants
    disagree about the causal effect, typically because some of them are
    pleiotropic.
    """

    def analyse(self, instruments: Sequence[HarmonisedInstrument]) -> HeterogeneityResult:
        if not instruments:
            raise ValueError("Heterogeneity requires at least one instrument")

        ratio, weights = ratio_weights(instruments)
        pooled = float(np.sum(weights * ratio) / np.sum(weights))
        q, contributions = cochran_q(ratio, weights, pooled)
        df = len(instruments) - 1

        return HeterogeneityResult(
            q=q,
            df=df,
            pval=q_pvalue(q, df),
            i2=i_squared(q, df),
            pooled_estimate=pooled,
            contributions={
                inst.variant_id: float(c) for inst, c in zip(instruments, contributions)
            },
        )


def instrument_strength(instruments: Sequence[HarmonisedInstrument]) -> Dict[str, float]:
    """Per-variant F statistic (beta_exp / se_exp)**2; values below 10 suggest weak instruments."""
    return {inst.variant_id: inst.f_statistic for inst in instruments}
