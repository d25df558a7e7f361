# metafunc_tools/__init__.py
"""
metafunc_tools - differential abundance of metagenomic functional genes.

This package provides a modular workflow for functional-gene count tables:
1. RPKG normalization with genome equivalents, then log2 transform
2. Design matrices aligned to the abundance matrix by sample ID
3. Mean-variance trend and precision weights
4. Weighted linear models with empirical Bayes moderation
5. Per-comparison q-values
6. Gene-set enrichment among significant features
"""

__version__ = "0.1.0"

from metafunc_tools.logger import setup_logger, log_print

from metafunc_tools.analysis.differential_abundance import (
    DifferentialAbundanceResult,
    run_differential_abundance_analysis,
)
