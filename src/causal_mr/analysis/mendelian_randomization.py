"""
Mendelian Randomization Analysis Module

Two-sample MR pipeline: harmonise exposure and outcome summary statistics,
filter instruments, run the estimators, and assemble heterogeneity and
outlier diagnostics into an AnalysisReport.
"""

import logging
import warnings
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from tqdm import tqdm

from ..data.harmonisation import AlleleHarmonizer
from ..data.quality import QualityFilter
from ..data.records import HarmonisedInstrument, VariantEffect, records_from_frame
from ..exceptions import Cancelled, EstimationError, InvalidRecord, NumericDegenerate
from ..report import AnalysisReport, MethodResult, ResultAggregator
from ..utils.config import MRConfig
from .estimators import WaldRatio, get_estimator
from .heterogeneity import HeterogeneityAnalyzer, instrument_strength
from .outliers import OutlierAnalyzer

logger = logging.getLogger(__name__)

PairInput = Tuple[Optional[str], Optional[str], Sequence[VariantEffect], Sequence[VariantEffect]]


def _methods_for(analysis_set: Sequence[HarmonisedInstrument],
                 methods: Sequence[str]) -> List[str]:
    methods = list(dict.fromkeys(methods))
    if len(analysis_set) == 1 and WaldRatio.name not in methods:
        methods.insert(0, WaldRatio.name)
    return methods


def run_methods(analysis_set: Sequence[HarmonisedInstrument],
                config: MRConfig,
                methods: Optional[Sequence[str]] = None,
                max_workers: Optional[int] = None,
                cancel=None) -> Tuple[Dict[str, MethodResult], Dict[str, str], bool]:
    """
    Run estimators on one analysis set.

    Methods that cannot be estimated are recorded in the omitted mapping
    instead of raising. With `max_workers` > 1 the methods run on a thread
    pool; results keep the requested method order either way.

    Returns
    -------
    tuple
        (results, omitted, cancelled)
    """
    names = _methods_for(analysis_set, methods or config.methods)
    estimators = [get_estimator(name, config) for name in names]

    if max_workers and max_workers > 1 and len(estimators) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(_try_estimate, est, analysis_set, cancel) for est in estimators]
            outcomes = [f.result() for f in futures]
    else:
        outcomes = [_try_estimate(est, analysis_set, cancel) for est in estimators]

    results: Dict[str, MethodResult] = {}
    omitted: Dict[str, str] = {}
    cancelled = False
    for est, (result, error) in zip(estimators, outcomes):
        if isinstance(error, Cancelled):
            cancelled = True
        elif error is not None:
            omitted[est.name] = str(error)
        else:
            results[est.name] = result
    return results, omitted, cancelled


def _try_estimate(estimator, analysis_set, cancel):
    try:
        return estimator.estimate(analysis_set, cancel=cancel), None
    except Cancelled as e:
        return None, e
    except NumericDegenerate as e:
        warnings.warn(f"{estimator.label} omitted: {e}")
        return None, e
    except EstimationError as e:
        logger.info(f"{estimator.label} omitted: {e}")
        return None, e


def analyse_pair(exposures: Sequence[VariantEffect],
                 outcomes: Sequence[VariantEffect],
                 config: Optional[MRConfig] = None,
                 exposure_id: Optional[str] = None,
                 outcome_id: Optional[str] = None,
                 methods: Optional[Sequence[str]] = None,
                 max_workers: Optional[int] = None,
                 cancel=None) -> AnalysisReport:
    """
    Full two-sample MR analysis of one exposure-outcome pair.

    Never raises for per-variant or per-method failures: excluded variants
    appear in the discard log, failed methods in `omitted`, and a pair with
    no usable instruments yields a report with status 'no_instruments'.
    """
    config = config or MRConfig()
    label = f"{exposure_id or 'exposure'} -> {outcome_id or 'outcome'}"

    harmonised = AlleleHarmonizer(config).harmonise(exposures, outcomes)
    filtered = QualityFilter(config).apply(harmonised.instruments)
    analysis_set = filtered.analysis_set
    aggregator = ResultAggregator()
    audit = dict(
        duplicates=harmonised.duplicates,
        exposure_only=harmonised.exposure_only,
        outcome_only=harmonised.outcome_only,
        action_counts=harmonised.action_counts,
    )

    if not analysis_set:
        logger.warning(f"{label}: no usable instruments")
        return aggregator.assemble(
            instruments=harmonised.instruments,
            analysis_set=(),
            results={},
            omitted={},
            discard_log=filtered.discard_log,
            exposure_id=exposure_id,
            outcome_id=outcome_id,
            **audit,
        )

    results, omitted, cancelled = run_methods(
        analysis_set, config, methods=methods, max_workers=max_workers, cancel=cancel
    )
    if cancelled:
        logger.info(f"{label}: cancelled")
        return aggregator.assemble(
            instruments=harmonised.instruments,
            analysis_set=analysis_set,
            results={},
            omitted={},
            discard_log=filtered.discard_log,
            exposure_id=exposure_id,
            outcome_id=outcome_id,
            cancelled=True,
            **audit,
        )

    logger.info(f"{label}: {len(analysis_set)} instruments, {len(results)} methods estimated")
    return aggregator.assemble(
        instruments=harmonised.instruments,
        analysis_set=analysis_set,
        results=results,
        omitted=omitted,
        discard_log=filtered.discard_log,
        heterogeneity=HeterogeneityAnalyzer().analyse(analysis_set),
        outliers=OutlierAnalyzer(config).analyse(analysis_set),
        instrument_strength=instrument_strength(analysis_set),
        exposure_id=exposure_id,
        outcome_id=outcome_id,
        **audit,
    )


def _analyse_pair_job(pair: PairInput, config: MRConfig) -> AnalysisReport:
    exposure_id, outcome_id, exposures, outcomes = pair
    return analyse_pair(exposures, outcomes, config,
                        exposure_id=exposure_id, outcome_id=outcome_id)


def run_batch(pairs: Iterable[PairInput],
              config: Optional[MRConfig] = None,
              max_workers: Optional[int] = None,
              use_processes: bool = True) -> List[AnalysisReport]:
    """
    Analyse many exposure-outcome pairs.

    Parameters
    ----------
    pairs : iterable of tuple
        (exposure_id, outcome_id, exposure_records, outcome_records)
    config : MRConfig, optional
        Shared configuration.
    max_workers : int, optional
        Number of parallel workers. None or 1 runs in the calling process.
    use_processes : bool
        Use a process pool (default) rather than a thread pool.

    Returns
    -------
    list of AnalysisReport
        In the order of `pairs`.
    """
    config = config or MRConfig()
    pairs = list(pairs)
    progress = dict(total=len(pairs), desc="MR pairs", ncols=100,
                    disable=not config.show_progress)

    if not max_workers or max_workers <= 1:
        return [_analyse_pair_job(pair, config) for pair in tqdm(pairs, **progress)]

    pool = ProcessPoolExecutor if use_processes else ThreadPoolExecutor
    with pool(max_workers=max_workers) as executor:
        jobs = executor.map(_analyse_pair_job, pairs, [config] * len(pairs))
        return list(tqdm(jobs, **progress))


class MendelianRandomization:
    """
    Mendelian Randomization analysis for causal inference.

    Uses genetic variants as instrumental variables to estimate causal effects
    of an exposure on an outcome from two independent GWAS.

    Parameters
    ----------
    config : MRConfig, optional
        Analysis configuration.
    **options
        Overrides applied on top of `config` (e.g. ``bootstrap_iterations=500``).
    """

    def __init__(self, config: Optional[MRConfig] = None, **options):
        config = config or MRConfig()
        self.config = config.replace(**options) if options else config
        self.exposure_data: Optional[List[VariantEffect]] = None
        self.outcome_data: Optional[List[VariantEffect]] = None
        self.exposure_name: Optional[str] = None
        self.outcome_name: Optional[str] = None
        self.invalid_records: List[InvalidRecord] = []
        self.report: Optional[AnalysisReport] = None

    def load_exposure_gwas(self, data: pd.DataFrame, name: Optional[str] = None,
                           **columns) -> List[InvalidRecord]:
        """
        Load exposure GWAS summary statistics.

        Column names default to SNP, beta, se, effect_allele, other_allele,
        eaf, pval and samplesize; override them with ``<field>_col`` keywords
        as accepted by `records_from_frame`.

        Returns
        -------
        list of InvalidRecord
            Rows that failed validation and were not loaded.
        """
        records, invalid = records_from_frame(data, study_id=name, **columns)
        self.load_exposure_records(records, name)
        self.invalid_records.extend(invalid)
        return invalid

    def load_outcome_gwas(self, data: pd.DataFrame, name: Optional[str] = None,
                          **columns) -> List[InvalidRecord]:
        """Load outcome GWAS summary statistics. See `load_exposure_gwas`."""
        records, invalid = records_from_frame(data, study_id=name, **columns)
        self.load_outcome_records(records, name)
        self.invalid_records.extend(invalid)
        return invalid

    def load_exposure_records(self, records: Iterable[VariantEffect], name: Optional[str] = None) -> None:
        self.exposure_data = list(records)
        self.exposure_name = name
        self.report = None

    def load_outcome_records(self, records: Iterable[VariantEffect], name: Optional[str] = None) -> None:
        self.outcome_data = list(records)
        self.outcome_name = name
        self.report = None

    def _require_data(self):
        if self.exposure_data is None or self.outcome_data is None:
            raise ValueError("Must load both exposure and outcome data first")

    def harmonize_data(self) -> pd.DataFrame:
        """
        Harmonise exposure and outcome data.

        Returns every shared variant with its alignment action and a
        `usable` flag.
        """
        self._require_data()
        result = AlleleHarmonizer(self.config).harmonise(self.exposure_data, self.outcome_data)
        return pd.DataFrame([inst.to_dict() for inst in result.instruments])

    def run_analysis(self,
                     methods: Optional[List[str]] = None,
                     max_workers: Optional[int] = None,
                     cancel=None) -> AnalysisReport:
        """
        Run the full pipeline.

        Parameters
        ----------
        methods : list of str, optional
            Estimators to run. Default is the configured method set.
        max_workers : int, optional
            Threads used to run the estimators concurrently.
        cancel : threading.Event, optional
            Cooperative cancellation signal for the bootstrap loops.
        """
        self._require_data()
        self.report = analyse_pair(
            self.exposure_data,
            self.outcome_data,
            self.config,
            exposure_id=self.exposure_name,
            outcome_id=self.outcome_name,
            methods=methods,
            max_workers=max_workers,
            cancel=cancel,
        )
        return self.report

    def results_table(self) -> pd.DataFrame:
        if self.report is None:
            self.run_analysis()
        return self.report.results_table()

    def heterogeneity_test(self) -> Dict:
        """
        Cochran's Q test for heterogeneity.

        Tests whether causal estimates from individual SNPs are homogeneous.
        """
        if self.report is None:
            self.run_analysis()
        het = self.report.heterogeneity
        if het is None:
            raise ValueError("No instruments available for heterogeneity testing")
        return {'Q': het.q, 'df': het.df, 'pval': het.pval, 'I2': het.i2}
