"""
Causal Effect Estimators

Two-sample MR estimators operating on a harmonised analysis set. Every
estimator is a pure function of the instruments and an `MRConfig`; the
bootstrap-based ones draw from a generator created for the call, so
estimators can run concurrently without sharing state.
"""

import math
import zlib
from typing import Callable, Dict, Optional, Sequence, Type

import numpy as np
import statsmodels.api as sm
from scipy import stats
from sklearn.neighbors import KernelDensity

from ..data.records import HarmonisedInstrument, as_arrays
from ..exceptions import Cancelled, EstimationError, InsufficientInstruments, NumericDegenerate
from ..report import MethodResult
from ..utils.config import MRConfig
from .heterogeneity import cochran_q, i_squared, q_pvalue

MODE_GRID_POINTS = 512


def _z_critical(ci_level: float) -> float:
    return float(stats.norm.ppf(1 - (1 - ci_level) / 2))


def _normal_pval(estimate: float, se: float) -> float:
    if not se > 0:
        return math.nan
    return float(2 * stats.norm.sf(abs(estimate / se)))


def _t_pval(estimate: float, se: float, df: int) -> float:
    if not se > 0 or df <= 0:
        return math.nan
    return float(2 * stats.t.sf(abs(estimate / se), df))


def weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    """
    Weighted median with linear interpolation between order statistics.

    Each value sits at the midpoint of its weight on the standardised
    cumulative scale; the median is interpolated where that scale crosses 0.5.
    """
    order = np.argsort(values)
    values = np.asarray(values, dtype=float)[order]
    weights = np.asarray(weights, dtype=float)[order]

    cumulative = (np.cumsum(weights) - 0.5 * weights) / np.sum(weights)
    below = int(np.max(np.where(cumulative < 0.5)[0]))
    if below == len(values) - 1:
        return float(values[below])
    return float(
        values[below]
        + (values[below + 1] - values[below])
        * (0.5 - cumulative[below])
        / (cumulative[below + 1] - cumulative[below])
    )


def mode_bandwidth(values: np.ndarray, phi: float) -> float:
    """Modified Silverman bandwidth (Bickel, 2002) scaled by `phi`."""
    spread = min(
        np.std(values, ddof=1),
        stats.median_abs_deviation(values, scale='normal'),
    )
    s = 0.9 * spread / len(values) ** (1 / 5)
    return max(1e-8, s * phi)


def kernel_mode(values: np.ndarray, weights: Optional[np.ndarray], phi: float) -> float:
    """
    Location of the maximum of a Gaussian kernel density estimate.

    The density is evaluated on a regular grid plus the sample values
    themselves; with tied values the bandwidth can be far narrower than the
    grid spacing and only the sample points carry any density.
    """
    h = mode_bandwidth(values, phi)
    kde = KernelDensity(bandwidth=h, kernel='gaussian')
    kde.fit(values.reshape(-1, 1), sample_weight=weights)

    grid = np.linspace(values.min() - 3 * h, values.max() + 3 * h, MODE_GRID_POINTS)
    grid = np.union1d(grid, values)
    density = np.exp(kde.score_samples(grid.reshape(-1, 1)))
    return float(grid[np.argmax(density)])


def bootstrap(statistic: Callable[[np.random.Generator], float],
              iterations: int,
              rng: np.random.Generator,
              cancel=None) -> np.ndarray:
    """
    Repeatedly evaluate `statistic` on parametric resamples.

    `cancel` is any object with an ``is_set()`` method (e.g.
    ``threading.Event``); it is polled between resamples.

    Raises
    ------
    Cancelled
        If the cancellation signal is observed.
    """
    draws = np.empty(iterations)
    for i in range(iterations):
        if cancel is not None and cancel.is_set():
            raise Cancelled(f"bootstrap cancelled after {i} of {iterations} resamples")
        draws[i] = statistic(rng)
    return draws


class Estimator:
    """
    Base class for causal effect estimators.

    Subclasses set `name`, `label` and `min_instruments` and implement
    `_estimate`.
    """

    name = "estimator"
    label = "Estimator"
    min_instruments = 1

    def __init__(self, config: Optional[MRConfig] = None):
        self.config = config or MRConfig()

    def rng(self) -> np.random.Generator:
        """Random generator for one call; deterministic per method when seeded."""
        if self.config.seed is None:
            return np.random.default_rng()
        return np.random.default_rng([self.config.seed, zlib.crc32(self.name.encode())])

    def estimate(self, instruments: Sequence[HarmonisedInstrument], cancel=None) -> MethodResult:
        """
        Estimate the causal effect from an analysis set.

        Raises
        ------
        InsufficientInstruments
            Fewer instruments than the method requires.
        NumericDegenerate
            The fit is not identifiable from the data.
        Cancelled
            A bootstrap observed the cancellation signal.
        """
        instruments = list(instruments)
        if len(instruments) < self.min_instruments:
            raise InsufficientInstruments(self.name, self.min_instruments, len(instruments))
        if any(inst.beta_exposure == 0 for inst in instruments):
            raise NumericDegenerate(f"{self.name}: zero exposure effect makes the ratio undefined")
        return self._estimate(instruments, cancel)

    def _estimate(self, instruments, cancel) -> MethodResult:
        raise NotImplementedError

    def _result(self, estimate: float, se: float, pval: float, n: int, **kwargs) -> MethodResult:
        z = _z_critical(self.config.ci_level)
        return MethodResult(
            method=self.name,
            estimate=float(estimate),
            se=float(se),
            ci_lower=float(estimate - z * se),
            ci_upper=float(estimate + z * se),
            pval=float(pval),
            n_instruments=n,
            **kwargs,
        )


class WaldRatio(Estimator):
    """Ratio of outcome to exposure effect for a single instrument."""

    name = "wald_ratio"
    label = "Wald ratio"
    min_instruments = 1

    def _estimate(self, instruments, cancel):
        if len(instruments) != 1:
            raise EstimationError("The Wald ratio applies to exactly one instrument")
        inst = instruments[0]
        b, se = inst.ratio, inst.ratio_se
        return self._result(b, se, _normal_pval(b, se), 1)


class InverseVarianceWeighted(Estimator):
    """
    Inverse-variance weighted estimate.

    The weighted mean of Wald ratios with weights 1 / (se_out / beta_exp)**2.
    With `random_effects` the standard error is multiplied by
    sqrt(max(Q / (n - 1), 1)). On a single instrument it reduces to the
    Wald ratio.
    """

    name = "ivw"
    label = "Inverse variance weighted"
    min_instruments = 1

    def _estimate(self, instruments, cancel):
        b_exp, _, b_out, se_out = as_arrays(instruments)
        ratio = b_out / b_exp
        weights = b_exp ** 2 / se_out ** 2
        n = len(instruments)

        b = float(np.sum(weights * ratio) / np.sum(weights))
        se = float(np.sqrt(1 / np.sum(weights)))

        q, _ = cochran_q(ratio, weights, b)
        df = n - 1
        notes = ()
        if self.config.random_effects and df > 0:
            inflation = math.sqrt(max(q / df, 1.0))
            se *= inflation
            if inflation > 1:
                notes = (f"standard error inflated by {inflation:.3f} (random effects)",)

        return self._result(
            b, se, _normal_pval(b, se), n,
            q=q, q_df=df, q_pval=q_pvalue(q, df), i2=i_squared(q, df),
            notes=notes,
        )


class MREgger(Estimator):
    """
    MR-Egger regression.

    Weighted regression of outcome effects on exposure effects with an
    intercept, after orienting every variant so its exposure effect is
    positive. The slope is the causal estimate; a non-zero intercept
    indicates directional pleiotropy. Standard errors use the residual
    standard error when it exceeds one.
    """

    name = "mr_egger"
    label = "MR Egger"
    min_instruments = 3

    def _estimate(self, instruments, cancel):
        b_exp, _, b_out, se_out = as_arrays(instruments)
        n = len(instruments)

        orientation = np.where(b_exp < 0, -1.0, 1.0)
        y = b_out * orientation
        x = np.abs(b_exp)
        weights = 1 / se_out ** 2

        X = sm.add_constant(x, has_constant='add')
        if np.linalg.matrix_rank(X * np.sqrt(weights)[:, None]) < 2:
            raise NumericDegenerate(
                "MR Egger: exposure effects have no spread, slope and intercept are not identifiable"
            )

        mod = sm.WLS(y, X, weights=weights).fit()
        sigma = math.sqrt(mod.scale)
        unscaled_se = np.sqrt(np.diag(mod.normalized_cov_params))
        intercept_se, slope_se = unscaled_se * max(1.0, sigma)
        intercept, slope = float(mod.params[0]), float(mod.params[1])

        df = n - 2
        q = float(mod.ssr)
        notes = ()
        if not math.isfinite(slope_se) or slope_se == 0:
            notes = ("Egger fit is exact; standard errors are unreliable",)

        return self._result(
            slope, slope_se, _t_pval(slope, slope_se, df), n,
            q=q, q_df=df, q_pval=q_pvalue(q, df), i2=i_squared(q, df),
            intercept=intercept,
            intercept_se=float(intercept_se),
            intercept_pval=_t_pval(intercept, intercept_se, df),
            diagnostics={'sigma': sigma},
            notes=notes,
        )


class _MedianEstimator(Estimator):
    """Median of Wald ratios with a parametric bootstrap standard error."""

    min_instruments = 2

    def weights(self, b_exp, se_exp, b_out, se_out) -> np.ndarray:
        raise NotImplementedError

    def _estimate(self, instruments, cancel):
        b_exp, se_exp, b_out, se_out = as_arrays(instruments)
        n = len(instruments)
        weights = self.weights(b_exp, se_exp, b_out, se_out)
        b = weighted_median(b_out / b_exp, weights)

        def resample(rng):
            b_exp_boot = rng.normal(b_exp, se_exp)
            b_out_boot = rng.normal(b_out, se_out)
            b_exp_boot = np.where(b_exp_boot == 0, np.finfo(float).eps, b_exp_boot)
            return weighted_median(b_out_boot / b_exp_boot, weights)

        draws = bootstrap(resample, self.config.bootstrap_iterations, self.rng(), cancel)
        se = float(np.std(draws, ddof=1))
        alpha = 1 - self.config.ci_level
        lower, upper = np.quantile(draws, [alpha / 2, 1 - alpha / 2])

        return self._result(
            b, se, _normal_pval(b, se), n,
            diagnostics={'bootstrap_lower': float(lower), 'bootstrap_upper': float(upper)},
        )


class WeightedMedian(_MedianEstimator):
    """
    Weighted median of Wald ratios.

    Consistent when instruments holding at least half of the weight are
    valid.
    """

    name = "weighted_median"
    label = "Weighted median"

    def weights(self, b_exp, se_exp, b_out, se_out):
        if self.config.second_order_weights:
            variance = se_out ** 2 / b_exp ** 2 + b_out ** 2 * se_exp ** 2 / b_exp ** 4
        else:
            variance = se_out ** 2 / b_exp ** 2
        return 1 / variance


class SimpleMedian(_MedianEstimator):
    name = "simple_median"
    label = "Simple median"

    def weights(self, b_exp, se_exp, b_out, se_out):
        return np.full(len(b_exp), 1 / len(b_exp))


class _ModeEstimator(Estimator):
    """
    Mode of the Wald ratio distribution.

    Ratio standard errors assume no measurement error in the exposure
    effects (first order). The standard error is the normal-consistent
    median absolute deviation of bootstrap estimates.
    """

    min_instruments = 2
    weighted = False

    def _kde_weights(self, ratio_se):
        if not self.weighted:
            return None
        w = ratio_se ** -2
        return w / np.sum(w)

    def _estimate(self, instruments, cancel):
        b_exp, _, b_out, se_out = as_arrays(instruments)
        n = len(instruments)
        ratio = b_out / b_exp
        ratio_se = se_out / np.abs(b_exp)
        phi = self.config.mode_bandwidth_factor
        kde_weights = self._kde_weights(ratio_se)

        b = kernel_mode(ratio, kde_weights, phi)

        def resample(rng):
            return kernel_mode(rng.normal(ratio, ratio_se), kde_weights, phi)

        draws = bootstrap(resample, self.config.bootstrap_iterations, self.rng(), cancel)
        se = float(stats.median_abs_deviation(draws, scale='normal'))
        alpha = 1 - self.config.ci_level
        lower, upper = np.quantile(draws, [alpha / 2, 1 - alpha / 2])

        return self._result(
            b, se, _t_pval(b, se, n - 1), n,
            diagnostics={
                'bandwidth': mode_bandwidth(ratio, phi),
                'bootstrap_lower': float(lower),
                'bootstrap_upper': float(upper),
            },
        )


class WeightedMode(_ModeEstimator):
    name = "weighted_mode"
    label = "Weighted mode"
    weighted = True


class SimpleMode(_ModeEstimator):
    name = "simple_mode"
    label = "Simple mode"
    weighted = False


class SignConcordance(Estimator):
    """
    Sign concordance test.

    Binomial test of the share of instruments whose exposure and outcome
    effects agree in sign against 50%. The estimate is 2 * (share - 0.5).
    """

    name = "sign_concordance"
    label = "Sign concordance test"
    min_instruments = 6

    def _estimate(self, instruments, cancel):
        b_exp, _, b_out, _ = as_arrays(instruments)
        valid = (b_exp != 0) & (b_out != 0)
        n = int(np.sum(valid))
        if n < self.min_instruments:
            raise InsufficientInstruments(self.name, self.min_instruments, n)

        concordant = int(np.sum(np.sign(b_exp[valid]) == np.sign(b_out[valid])))
        pval = stats.binomtest(concordant, n, p=0.5).pvalue
        b = (concordant / n - 0.5) * 2
        return MethodResult(
            method=self.name,
            estimate=b,
            se=math.nan,
            ci_lower=math.nan,
            ci_upper=math.nan,
            pval=float(pval),
            n_instruments=n,
            diagnostics={'concordant': concordant},
        )


ESTIMATORS: Dict[str, Type[Estimator]] = {
    cls.name: cls
    for cls in (
        WaldRatio,
        InverseVarianceWeighted,
        MREgger,
        WeightedMedian,
        SimpleMedian,
        WeightedMode,
        SimpleMode,
        SignConcordance,
    )
}


def get_estimator(name: str, config: Optional[MRConfig] = None) -> Estimator:
    """Instantiate a registered estimator by name."""
    try:
        cls = ESTIMATORS[name]
    except KeyError:
        raise ValueError(f"Unknown MR method: {name}. Options: {sorted(ESTIMATORS)}") from None
    return cls(config)
