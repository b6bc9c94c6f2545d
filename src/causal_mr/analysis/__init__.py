"""
Analysis module for two-sample Mendelian randomization.

Contains:
- Causal effect estimators (IVW, MR-Egger, median and mode based)
- Heterogeneity analysis
- Outlier and leave-one-out analysis
- The end-to-end MR pipeline
"""

from .estimators import (
    ESTIMATORS,
    Estimator,
    InverseVarianceWeighted,
    MREgger,
    SignConcordance,
    SimpleMedian,
    SimpleMode,
    WaldRatio,
    WeightedMedian,
    WeightedMode,
    get_estimator,
)
from .heterogeneity import HeterogeneityAnalyzer, instrument_strength
from .outliers import OutlierAnalyzer
from .mendelian_randomization import MendelianRandomization, analyse_pair, run_batch, run_methods

__all__ = [
    # Estimators
    "ESTIMATORS",
    "Estimator",
    "InverseVarianceWeighted",
    "MREgger",
    "SignConcordance",
    "SimpleMedian",
    "SimpleMode",
    "WaldRatio",
    "WeightedMedian",
    "WeightedMode",
    "get_estimator",
    # Diagnostics
    "HeterogeneityAnalyzer",
    "instrument_strength",
    "OutlierAnalyzer",
    # Pipeline
    "MendelianRandomization",
    "analyse_pair",
    "run_batch",
    "run_methods",
]
