# metafunc_tools/analysis/__init__.py
"""Normalization, modelling and testing functions for functional-gene tables."""

from metafunc_tools.analysis.normalization import (
    NormalizationResult,
    calculate_pseudocount,
    calculate_rpkg,
    compute_genome_equivalents,
    log_transform,
    normalize_abundance,
)

from metafunc_tools.analysis.design import (
    build_design_matrix,
    check_design_alignment,
)

from metafunc_tools.analysis.variance import (
    VarianceTrend,
    estimate_precision_weights,
)

from metafunc_tools.analysis.linear_model import (
    LinearFit,
    ModeratedFit,
    fit_weighted_model,
    moderate,
    moderated_fit,
)

from metafunc_tools.analysis.fdr import (
    estimate_pi0,
    qvalues,
    qvalues_by_group,
)

from metafunc_tools.analysis.enrichment import (
    adjust_enrichment_pvalues,
    annotate_sets,
    enrichment_test,
    select_hits,
)
