#!/usr/bin/env python3
"""
Differential abundance of functional genes between health states.

Chains RPKG normalization, design construction, precision weights,
moderated linear models, per-comparison q-values and, when gene sets are
supplied, set enrichment among significant features.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from metafunc_tools.analysis.design import build_design_matrix
from metafunc_tools.analysis.enrichment import (
    adjust_enrichment_pvalues,
    annotate_sets,
    enrichment_test,
    select_hits,
)
from metafunc_tools.analysis.fdr import qvalues_by_group
from metafunc_tools.analysis.linear_model import ModeratedFit, moderated_fit
from metafunc_tools.analysis.normalization import (
    NormalizationResult,
    compute_genome_equivalents,
    normalize_abundance,
)
from metafunc_tools.analysis.variance import VarianceTrend, estimate_precision_weights
from metafunc_tools.config import (
    DEFAULT_GROUP_COL,
    DEFAULT_PI0_METHOD,
    DEFAULT_Q_THRESHOLD,
    DEFAULT_SPAN,
    GENOME_EQUIVALENTS_COL,
)
from metafunc_tools.exceptions import DataAlignmentError, MissingReferenceDataError
from metafunc_tools.logger import get_logger
from metafunc_tools.utils.file_utils import ensure_output_dir, sanitize_filename


@dataclass
class DifferentialAbundanceResult:
    normalization: NormalizationResult
    design: pd.DataFrame
    variance: VarianceTrend
    fit: ModeratedFit
    results: pd.DataFrame
    enrichment: Dict[str, pd.DataFrame] = field(default_factory=dict)

    @property
    def exclusions(self) -> Dict[str, int]:
        return {
            "dropped_genes": len(self.normalization.dropped_genes),
            "dropped_samples": len(self.normalization.dropped_samples),
            "skipped_genes": len(self.fit.skipped),
        }

    def significant(self, threshold: float = DEFAULT_Q_THRESHOLD) -> pd.DataFrame:
        return self.results[self.results["q_value"] <= threshold]


def _plot_volcano(results: pd.DataFrame, comparison: str, output_dir: str, threshold: float):
    """Generate and save a volcano plot for one comparison."""
    df = results[results["comparison"] == comparison]
    sig = df["q_value"] <= threshold
    plt.figure(figsize=(8, 6))
    plt.scatter(df.loc[~sig, "log2FC"], -np.log10(df.loc[~sig, "p_value"]), alpha=0.6, s=10)
    plt.scatter(df.loc[sig, "log2FC"], -np.log10(df.loc[sig, "p_value"]),
                alpha=0.8, s=12, label=f"q<={threshold}")
    plt.xlabel(f"log2 fold change ({comparison} vs reference)")
    plt.ylabel("-log10(p-value)")
    plt.legend()
    plt.tight_layout()
    plt.savefig(os.path.join(output_dir, f"volcano_{sanitize_filename(comparison)}.png"), dpi=300)
    plt.close()


def _write_summary(result: DifferentialAbundanceResult, path: str, threshold: float):
    lines = [
        "Differential abundance summary",
        "==============================",
        f"Genes analysed: {result.normalization.log_rpkg.shape[0]}",
        f"Samples analysed: {result.normalization.log_rpkg.shape[1]}",
        f"Genes dropped (no length): {len(result.normalization.dropped_genes)}",
        f"Samples dropped (invalid genome equivalents): {len(result.normalization.dropped_samples)}",
        f"Genes skipped (rank deficient fit): {len(result.fit.skipped)}",
        f"Log pseudocount: {result.normalization.pseudocount:.6g}",
        f"Variance prior: d0 = {result.fit.df_prior:.4g}, s0^2 = {result.fit.s2_prior:.4g}",
        "",
    ]
    for comparison, sub in result.results.groupby("comparison", sort=False):
        n_sig = int((sub["q_value"] <= threshold).sum())
        lines.append(f"{comparison}: {n_sig} of {len(sub)} features with q <= {threshold} "
                     f"(pi0 = {sub['pi0'].iloc[0]:.3f})")
    if result.enrichment:
        lines.append("")
        for comparison, enr in result.enrichment.items():
            n_sig = int((enr["p_adj"] <= threshold).sum()) if "p_adj" in enr else 0
            lines.append(f"Enrichment {comparison}: {len(enr)} sets tested, {n_sig} with adjusted p <= {threshold}")
    with open(path, "w") as fw:
        fw.write("\n".join(lines) + "\n")


def run_enrichment_for_comparisons(
    results: pd.DataFrame,
    gene_sets,
    set_descriptions=None,
    q_threshold: float = DEFAULT_Q_THRESHOLD,
    correction: str = "fdr_bh",
    logger: Optional[logging.Logger] = None
) -> Dict[str, pd.DataFrame]:
    """
    Enrichment of each comparison's hits (q <= threshold) against all tested features.
    """
    logger = get_logger(logger)
    enrichment = {}
    for comparison in pd.unique(results["comparison"]):
        sub = results[results["comparison"] == comparison]
        background = set(sub["feature"])
        hits = select_hits(sub, threshold=q_threshold)
        logger.info(f"Enrichment for {comparison}: {len(hits)} hits among {len(background)} features")
        enr = enrichment_test(hits, background, gene_sets, logger=logger)
        enr = adjust_enrichment_pvalues(enr, method=correction)
        if set_descriptions is not None:
            enr = annotate_sets(enr, set_descriptions)
        enrichment[comparison] = enr
    return enrichment


def run_differential_abundance_analysis(
    counts_df: pd.DataFrame,
    metadata_df: pd.DataFrame,
    gene_lengths: pd.Series,
    output_dir: Optional[str] = None,
    group_col: str = DEFAULT_GROUP_COL,
    levels: Optional[Sequence] = None,
    reference=None,
    span: float = DEFAULT_SPAN,
    drop_missing: bool = True,
    q_threshold: float = DEFAULT_Q_THRESHOLD,
    pi0_method: str = DEFAULT_PI0_METHOD,
    gene_sets=None,
    set_descriptions=None,
    make_plots: bool = False,
    logger: Optional[logging.Logger] = None
) -> DifferentialAbundanceResult:
    """
    Run the normalization -> moderated fit -> q-value -> enrichment pipeline.

    Args:
        counts_df: Raw counts, genes as index and samples as columns
        metadata_df: Sample metadata indexed by sample ID, with a genome
            equivalents column or the reads, mean_read_length and
            genome_size columns it is computed from
        gene_lengths: Gene ID -> protein length (amino acids)
        output_dir: Directory for result files (nothing written when None)
        group_col: Metadata column with the health state
        levels: Declared factor levels, reference first
        reference: Reference level (overrides the first declared level)
        span: Lowess span for the mean-variance trend
        drop_missing: Exclude genes/samples lacking reference data instead of raising
        q_threshold: q-value cut-off used to select enrichment hits
        pi0_method: "smoother" or "bootstrap"
        gene_sets: Optional gene -> set mapping for enrichment
        set_descriptions: Optional set ID -> description
        make_plots: Save a volcano plot per comparison (requires output_dir)
        logger: Logger instance for logging

    Returns:
        DifferentialAbundanceResult
    """
    logger = get_logger(logger)

    metadata_df = compute_genome_equivalents(metadata_df, logger=logger)
    if metadata_df[GENOME_EQUIVALENTS_COL].isna().all():
        raise MissingReferenceDataError(
            f"Metadata has no '{GENOME_EQUIVALENTS_COL}' values; "
            "provide them or reads, mean_read_length and genome_size"
        )
    unknown = [s for s in counts_df.columns if s not in metadata_df.index]
    if unknown:
        raise DataAlignmentError(f"Samples in the count table have no metadata: {unknown}")
    genome_equivalents = metadata_df[GENOME_EQUIVALENTS_COL].reindex(counts_df.columns)

    normalization = normalize_abundance(
        counts_df, gene_lengths, genome_equivalents, drop_missing=drop_missing, logger=logger
    )
    log_rpkg = normalization.log_rpkg

    design = build_design_matrix(
        log_rpkg.columns, metadata_df, group_col=group_col,
        levels=levels, reference=reference, logger=logger
    )
    variance = estimate_precision_weights(log_rpkg, design, span=span, logger=logger)
    fit = moderated_fit(log_rpkg, design, weights=variance.weights, logger=logger)

    results = qvalues_by_group(fit.to_long(), pi0_method=pi0_method, logger=logger)
    results = results.sort_values(["comparison", "p_value"], kind="mergesort").reset_index(drop=True)

    enrichment = {}
    if gene_sets is not None:
        enrichment = run_enrichment_for_comparisons(
            results, gene_sets, set_descriptions=set_descriptions,
            q_threshold=q_threshold, logger=logger
        )

    result = DifferentialAbundanceResult(
        normalization=normalization,
        design=design,
        variance=variance,
        fit=fit,
        results=results,
        enrichment=enrichment,
    )

    excl = result.exclusions
    logger.info(
        f"Exclusions: {excl['dropped_genes']} genes without length, "
        f"{excl['dropped_samples']} samples without genome equivalents, "
        f"{excl['skipped_genes']} genes with rank-deficient fits"
    )

    if output_dir:
        save_results(result, output_dir, q_threshold=q_threshold, make_plots=make_plots, logger=logger)
    return result


def save_results(
    result: DifferentialAbundanceResult,
    output_dir: str,
    q_threshold: float = DEFAULT_Q_THRESHOLD,
    make_plots: bool = False,
    logger: Optional[logging.Logger] = None
) -> List[str]:
    """Write the result tables (and optional plots); returns the written paths."""
    logger = get_logger(logger)
    ensure_output_dir(output_dir)
    written = []

    for name, frame in [("rpkg.tsv", result.normalization.rpkg),
                        ("log_rpkg.tsv", result.normalization.log_rpkg)]:
        path = os.path.join(output_dir, name)
        frame.to_csv(path, sep="\t")
        written.append(path)

    path = os.path.join(output_dir, "differential_abundance.csv")
    result.results.to_csv(path, index=False)
    written.append(path)

    if result.fit.skipped:
        path = os.path.join(output_dir, "skipped_genes.csv")
        pd.DataFrame(
            {"feature": list(result.fit.skipped), "reason": list(result.fit.skipped.values())}
        ).to_csv(path, index=False)
        written.append(path)

    for comparison, enr in result.enrichment.items():
        path = os.path.join(output_dir, f"enrichment_{sanitize_filename(comparison)}.csv")
        enr.to_csv(path, index=False)
        written.append(path)

    if make_plots:
        for comparison in pd.unique(result.results["comparison"]):
            _plot_volcano(result.results, comparison, output_dir, q_threshold)

    path = os.path.join(output_dir, "diff_abundance_summary.txt")
    _write_summary(result, path, q_threshold)
    written.append(path)

    logger.info(f"Saved {len(written)} result files to {output_dir}")
    return written
