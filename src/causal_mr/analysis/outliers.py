"""
Outlier Analysis Module

Leave-one-out IVW re-estimation and standardised residual flags for
candidate pleiotropic instruments.
"""

import logging
from typing import Optional, Sequence, Tuple

from ..data.records import HarmonisedInstrument
from ..report import LeaveOneOutEstimate, OutlierAnalysis, ResidualFlag
from ..utils.config import MRConfig
from .estimators import InverseVarianceWeighted

logger = logging.getLogger(__name__)


class OutlierAnalyzer:
    """
    Sensitivity of the IVW estimate to individual instruments.

    Parameters
    ----------
    config : MRConfig, optional
        `outlier_zscore_threshold` sets the residual flag threshold and
        `random_effects` the IVW standard errors of leave-one-out fits.
    """

    def __init__(self, config: Optional[MRConfig] = None):
        self.config = config or MRConfig()
        self._ivw = InverseVarianceWeighted(self.config)

    def leave_one_out(self,
                      instruments: Sequence[HarmonisedInstrument],
                      full_estimate: Optional[float] = None) -> Tuple[LeaveOneOutEstimate, ...]:
        """
        Re-estimate IVW once per instrument with that instrument removed.

        Returns an empty tuple for fewer than two instruments.
        """
        instruments = list(instruments)
        if len(instruments) < 2:
            return ()
        if full_estimate is None:
            full_estimate = self._ivw.estimate(instruments).estimate

        estimates = []
        for i, left_out in enumerate(instruments):
            result = self._ivw.estimate(instruments[:i] + instruments[i + 1:])
            estimates.append(LeaveOneOutEstimate(
                variant_id=left_out.variant_id,
                estimate=result.estimate,
                se=result.se,
                pval=result.pval,
                shift=result.estimate - full_estimate,
            ))
        return tuple(estimates)

    def residual_flags(self,
                       instruments: Sequence[HarmonisedInstrument],
                       pooled_estimate: float) -> Tuple[ResidualFlag, ...]:
        """
        Standardised residuals (ratio_i - pooled) / se_i of each Wald ratio.

        A variant is flagged when the absolute residual strictly exceeds the
        configured threshold.
        """
        threshold = self.config.outlier_zscore_threshold
        flags = []
        for inst in instruments:
            residual = inst.ratio - pooled_estimate
            zscore = residual / inst.ratio_se
            flags.append(ResidualFlag(
                variant_id=inst.variant_id,
                residual=residual,
                zscore=zscore,
                is_outlier=abs(zscore) > threshold,
            ))
        return tuple(flags)

    def analyse(self, instruments: Sequence[HarmonisedInstrument]) -> OutlierAnalysis:
        instruments = list(instruments)
        full = self._ivw.estimate(instruments).estimate
        analysis = OutlierAnalysis(
            full_estimate=full,
            leave_one_out=self.leave_one_out(instruments, full),
            residuals=self.residual_flags(instruments, full),
            threshold=self.config.outlier_zscore_threshold,
        )
        if analysis.outliers:
            logger.info(f"Candidate outliers: {', '.join(analysis.outliers)}")
        return analysis
