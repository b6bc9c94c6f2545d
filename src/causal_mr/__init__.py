"""
Causal MR Toolkit

Two-sample Mendelian randomization from GWAS summary statistics: allele
harmonisation of exposure and outcome associations, a family of causal
effect estimators, and heterogeneity and outlier diagnostics.
"""

__version__ = "0.1.0"
__author__ = "Lior Shachaf"

from .analysis.mendelian_randomization import MendelianRandomization, analyse_pair, run_batch
from .analysis.estimators import get_estimator
from .analysis.heterogeneity import HeterogeneityAnalyzer
from .analysis.outliers import OutlierAnalyzer
from .data.records import VariantEffect, HarmonisedInstrument, Action, records_from_frame
from .data.harmonisation import AlleleHarmonizer
from .data.quality import QualityFilter
from .report import AnalysisReport, MethodResult, ResultAggregator
from .utils.config import MRConfig
from .utils.logging import setup_logger, get_logger
from .exceptions import (
    MRError,
    InvalidRecord,
    AlleleMismatch,
    AmbiguousPalindrome,
    InsufficientInstruments,
    NumericDegenerate,
    Cancelled,
)

__all__ = [
    # Pipeline
    "MendelianRandomization",
    "analyse_pair",
    "run_batch",
    "get_estimator",
    "HeterogeneityAnalyzer",
    "OutlierAnalyzer",
    # Data
    "VariantEffect",
    "HarmonisedInstrument",
    "Action",
    "records_from_frame",
    "AlleleHarmonizer",
    "QualityFilter",
    # Results
    "AnalysisReport",
    "MethodResult",
    "ResultAggregator",
    # Config and logging
    "MRConfig",
    "setup_logger",
    "get_logger",
    # Errors
    "MRError",
    "InvalidRecord",
    "AlleleMismatch",
    "AmbiguousPalindrome",
    "InsufficientInstruments",
    "NumericDegenerate",
    "Cancelled",
]
