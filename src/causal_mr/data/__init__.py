"""
Data module: summary-statistic records, allele harmonisation and
instrument quality filtering.
"""

from .records import (
    Action,
    HarmonisedInstrument,
    VariantEffect,
    instruments_to_frame,
    records_from_frame,
)
from .harmonisation import AlleleHarmonizer, HarmonisationResult, classify_alleles
from .quality import FilterResult, QualityFilter

__all__ = [
    "Action",
    "HarmonisedInstrument",
    "VariantEffect",
    "instruments_to_frame",
    "records_from_frame",
    "AlleleHarmonizer",
    "HarmonisationResult",
    "classify_alleles",
    "FilterResult",
    "QualityFilter",
]
