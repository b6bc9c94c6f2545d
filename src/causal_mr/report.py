"""
Result containers and report assembly.

`MethodResult` is produced by one estimator; `AnalysisReport` gathers the
results, diagnostics and audit trail of one exposure-outcome pair and is
what plotting and reporting code consumes.
"""

import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .data.records import HarmonisedInstrument, instruments_to_frame

STATUS_OK = "ok"
STATUS_NO_INSTRUMENTS = "no_instruments"
STATUS_CANCELLED = "cancelled"


class _ReadOnlyMappings:
    """Expose mapping fields as read-only views while staying picklable."""

    _mapping_fields: Tuple[str, ...] = ()

    def _freeze_mappings(self):
        for name in self._mapping_fields:
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def __getstate__(self):
        state = dict(self.__dict__)
        for name in self._mapping_fields:
            state[name] = dict(state[name])
        return state

    def __setstate__(self, state):
        for name, value in state.items():
            object.__setattr__(self, name, value)
        self._freeze_mappings()


@dataclass(frozen=True)
class LeaveOneOutEstimate:
    """IVW estimate with one variant removed."""

    variant_id: str
    estimate: float
    se: float
    pval: float
    shift: float


@dataclass(frozen=True)
class MethodResult(_ReadOnlyMappings):
    """
    Output of one causal effect estimator.

    Attributes
    ----------
    method : str
        Registry key of the estimator (e.g. 'ivw').
    estimate, se : float
        Causal effect and its standard error.
    ci_lower, ci_upper : float
        Confidence interval bounds.
    pval : float
        P-value of the causal effect.
    n_instruments : int
        Number of variants used.
    q, q_df, q_pval : float
        Residual heterogeneity of the fit, where the method defines one.
    i2 : float
        I-squared (percent) derived from `q`.
    intercept, intercept_se, intercept_pval : float
        MR-Egger intercept (directional pleiotropy) and its test.
    leave_one_out : tuple of LeaveOneOutEstimate
        Attached to the IVW result by the aggregator.
    diagnostics : mapping
        Method specific extras (bootstrap percentiles, bandwidth, ...).
    notes : tuple of str
        Human readable remarks about the fit.
    """

    method: str
    estimate: float
    se: float
    ci_lower: float
    ci_upper: float
    pval: float
    n_instruments: int
    q: float = math.nan
    q_df: Optional[int] = None
    q_pval: float = math.nan
    i2: float = math.nan
    intercept: float = math.nan
    intercept_se: float = math.nan
    intercept_pval: float = math.nan
    leave_one_out: Tuple[LeaveOneOutEstimate, ...] = ()
    diagnostics: Mapping[str, float] = field(default_factory=dict)
    notes: Tuple[str, ...] = ()

    _mapping_fields = ("diagnostics",)

    def __post_init__(self):
        self._freeze_mappings()

    def to_dict(self) -> dict:
        return {
            'method': self.method,
            'beta': self.estimate,
            'se': self.se,
            'ci_lower': self.ci_lower,
            'ci_upper': self.ci_upper,
            'pval': self.pval,
            'n_snps': self.n_instruments,
            'Q': self.q,
            'Q_df': self.q_df,
            'Q_pval': self.q_pval,
            'I2': self.i2,
            'intercept': self.intercept,
            'intercept_se': self.intercept_se,
            'intercept_pval': self.intercept_pval,
        }


@dataclass(frozen=True)
class HeterogeneityResult(_ReadOnlyMappings):
    """Cochran's Q around the IVW estimate with per-variant contributions."""

    q: float
    df: int
    pval: float
    i2: float
    pooled_estimate: float
    contributions: Mapping[str, float] = field(default_factory=dict)

    _mapping_fields = ("contributions",)

    def __post_init__(self):
        self._freeze_mappings()

    def ranked_contributions(self) -> Tuple[Tuple[str, float], ...]:
        """Variants ordered from largest to smallest contribution to Q."""
        return tuple(sorted(self.contributions.items(), key=lambda kv: kv[1], reverse=True))


@dataclass(frozen=True)
class ResidualFlag:
    variant_id: str
    residual: float
    zscore: float
    is_outlier: bool


@dataclass(frozen=True)
class OutlierAnalysis:
    """Leave-one-out estimates and standardised residual flags."""

    full_estimate: float
    leave_one_out: Tuple[LeaveOneOutEstimate, ...]
    residuals: Tuple[ResidualFlag, ...]
    threshold: float

    @property
    def outliers(self) -> Tuple[str, ...]:
        return tuple(r.variant_id for r in self.residuals if r.is_outlier)


@dataclass(frozen=True)
class AnalysisReport(_ReadOnlyMappings):
    """
    Everything computed for one exposure-outcome pair.

    Immutable once assembled. `instruments` holds every shared variant
    after harmonisation (usable or not); `analysis_set` the filtered subset
    the estimators saw.

    The harmonisation audit trail is kept alongside: `duplicates` lists the
    (study, variant_id) records dropped in favour of a more precise
    duplicate, `exposure_only` and `outcome_only` the variants missing from
    the other study, and `action_counts` the number of variants per
    alignment action.
    """

    exposure_id: Optional[str]
    outcome_id: Optional[str]
    status: str
    instruments: Tuple[HarmonisedInstrument, ...]
    analysis_set: Tuple[HarmonisedInstrument, ...]
    results: Mapping[str, MethodResult]
    omitted: Mapping[str, str]
    discard_log: Mapping[str, str]
    heterogeneity: Optional[HeterogeneityResult] = None
    outliers: Optional[OutlierAnalysis] = None
    instrument_strength: Mapping[str, float] = field(default_factory=dict)
    duplicates: Tuple[Tuple[str, str], ...] = ()
    exposure_only: Tuple[str, ...] = ()
    outcome_only: Tuple[str, ...] = ()
    action_counts: Mapping[str, int] = field(default_factory=dict)

    _mapping_fields = ("results", "omitted", "discard_log", "instrument_strength", "action_counts")

    def __post_init__(self):
        self._freeze_mappings()

    @property
    def n_instruments(self) -> int:
        return len(self.analysis_set)

    @property
    def leave_one_out(self) -> Tuple[LeaveOneOutEstimate, ...]:
        return self.outliers.leave_one_out if self.outliers is not None else ()

    @property
    def mean_f_statistic(self) -> float:
        if not self.instrument_strength:
            return math.nan
        return sum(self.instrument_strength.values()) / len(self.instrument_strength)

    def results_table(self) -> pd.DataFrame:
        """One row per successful method, in the order the methods were requested."""
        rows = [r.to_dict() for r in self.results.values()]
        frame = pd.DataFrame(rows)
        if not frame.empty:
            frame.insert(0, 'outcome', self.outcome_id)
            frame.insert(0, 'exposure', self.exposure_id)
        return frame

    def instruments_table(self, usable_only: bool = True) -> pd.DataFrame:
        """Harmonised instruments for scatter and forest plots."""
        return instruments_to_frame(self.analysis_set if usable_only else self.instruments)

    def leave_one_out_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            [vars(loo) for loo in self.leave_one_out],
            columns=['variant_id', 'estimate', 'se', 'pval', 'shift'],
        )

    def discard_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            list(self.discard_log.items()), columns=['variant_id', 'reason']
        )

    def duplicates_table(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.duplicates), columns=['study', 'variant_id'])


class ResultAggregator:
    """
    Assemble per-method results and diagnostics into an AnalysisReport.

    Performs no computation of its own beyond structuring: the IVW result
    receives the leave-one-out estimates and the status is derived from the
    size of the analysis set.
    """

    def assemble(self,
                 instruments: Sequence[HarmonisedInstrument],
                 analysis_set: Sequence[HarmonisedInstrument],
                 results: Mapping[str, MethodResult],
                 omitted: Mapping[str, str],
                 discard_log: Mapping[str, str],
                 heterogeneity: Optional[HeterogeneityResult] = None,
                 outliers: Optional[OutlierAnalysis] = None,
                 instrument_strength: Optional[Mapping[str, float]] = None,
                 exposure_id: Optional[str] = None,
                 outcome_id: Optional[str] = None,
                 cancelled: bool = False,
                 duplicates: Sequence[Tuple[str, str]] = (),
                 exposure_only: Sequence[str] = (),
                 outcome_only: Sequence[str] = (),
                 action_counts: Optional[Mapping[str, int]] = None) -> AnalysisReport:
        results: Dict[str, MethodResult] = dict(results)
        if outliers is not None and 'ivw' in results:
            results['ivw'] = replace(results['ivw'], leave_one_out=outliers.leave_one_out)

        if cancelled:
            status = STATUS_CANCELLED
            # Nothing computed for a cancelled pair is published
            results, heterogeneity, outliers = {}, None, None
        elif not analysis_set:
            status = STATUS_NO_INSTRUMENTS
        else:
            status = STATUS_OK

        return AnalysisReport(
            exposure_id=exposure_id,
            outcome_id=outcome_id,
            status=status,
            instruments=tuple(instruments),
            analysis_set=tuple(analysis_set),
            results=results,
            omitted=omitted,
            discard_log=discard_log,
            heterogeneity=heterogeneity,
            outliers=outliers,
            instrument_strength=instrument_strength or {},
            duplicates=tuple(duplicates),
            exposure_only=tuple(exposure_only),
            outcome_only=tuple(outcome_only),
            action_counts=action_counts or {},
        )


def combine_reports(reports: Sequence[AnalysisReport]) -> pd.DataFrame:
    """Stack the result tables of many reports."""
    tables = [r.results_table() for r in reports if r.results]
    if not tables:
        return pd.DataFrame()
    return pd.concat(tables, ignore_index=True)
