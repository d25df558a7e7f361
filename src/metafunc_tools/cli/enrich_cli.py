#!/usr/bin/env python3
"""
metafunc_tools Enrichment Module

Tests gene sets for over-representation among significant genes of an
existing differential abundance result.
"""

import os
import sys
import logging
import argparse

import pandas as pd

from metafunc_tools.analysis.differential_abundance import run_enrichment_for_comparisons
from metafunc_tools.analysis.fdr import qvalues_by_group
from metafunc_tools.analysis.metadata import read_gene_sets, read_set_descriptions
from metafunc_tools.config import DEFAULT_ENRICHMENT_CORRECTION, DEFAULT_Q_THRESHOLD
from metafunc_tools.exceptions import MetaFuncError
from metafunc_tools.logger import setup_logger
from metafunc_tools.utils.file_utils import (
    check_file_exists_with_logger,
    ensure_output_dir,
    sanitize_filename,
)


def parse_args(argv=None):
    """Parse command line arguments for the enrichment module."""
    parser = argparse.ArgumentParser(
        description="Gene-set enrichment (two-sided Fisher exact test) among significant genes"
    )
    parser.add_argument("--results-file", required=True,
                        help="differential_abundance.csv (feature, comparison, p_value[, q_value])")
    parser.add_argument("--gene-sets", required=True, help="Gene to set mapping (gene ID, set ID)")
    parser.add_argument("--set-descriptions", help="Set descriptions (set ID, description)")
    parser.add_argument("--q-threshold", type=float, default=DEFAULT_Q_THRESHOLD,
                        help=f"q-value threshold defining hits (default: {DEFAULT_Q_THRESHOLD})")
    parser.add_argument("--correction", default=DEFAULT_ENRICHMENT_CORRECTION,
                        help="Multiple testing correction across sets (statsmodels method name)")
    parser.add_argument("--output-dir", default="./Enrichment", help="Directory for output files")
    parser.add_argument("--log-file", default=None, help="Path to log file")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logger = setup_logger(args.log_file, getattr(logging, args.log_level.upper()))

    inputs = [(args.results_file, "Results"), (args.gene_sets, "Gene set")]
    if args.set_descriptions:
        inputs.append((args.set_descriptions, "Set description"))
    for file_path, desc in inputs:
        if not check_file_exists_with_logger(file_path, desc, logger):
            return 1

    try:
        results = pd.read_csv(args.results_file)
        missing = {"feature", "comparison", "p_value"} - set(results.columns)
        if missing:
            logger.error(f"Results file is missing columns: {sorted(missing)}")
            return 1
        results["feature"] = results["feature"].astype(str)
        if "q_value" not in results.columns:
            logger.info("No q_value column; estimating q-values per comparison")
            results = qvalues_by_group(results, logger=logger)

        gene_sets = read_gene_sets(args.gene_sets, logger=logger)
        descriptions = read_set_descriptions(args.set_descriptions) if args.set_descriptions else None
        enrichment = run_enrichment_for_comparisons(
            results, gene_sets, set_descriptions=descriptions,
            q_threshold=args.q_threshold, correction=args.correction, logger=logger
        )
    except (MetaFuncError, ValueError, KeyError) as e:
        logger.error(f"Enrichment failed: {e}")
        return 1

    ensure_output_dir(args.output_dir)
    for comparison, enr in enrichment.items():
        path = os.path.join(args.output_dir, f"enrichment_{sanitize_filename(comparison)}.csv")
        enr.to_csv(path, index=False)
        logger.info(f"Saved enrichment for {comparison}: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
