#!/usr/bin/env python3
"""
metafunc_tools Differential Abundance Module

Normalizes a functional-gene count table to RPKG, fits precision-weighted
moderated linear models per gene, estimates q-values per comparison and,
optionally, tests gene sets for enrichment among significant genes.
"""

import os
import sys
import time
import logging
import argparse

from metafunc_tools.analysis.differential_abundance import run_differential_abundance_analysis
from metafunc_tools.analysis.metadata import (
    read_abundance_table,
    read_and_process_metadata,
    read_gene_lengths,
    read_gene_sets,
    read_set_descriptions,
)
from metafunc_tools.config import (
    DEFAULT_GROUP_COL,
    DEFAULT_PI0_METHOD,
    DEFAULT_Q_THRESHOLD,
    DEFAULT_SPAN,
)
from metafunc_tools.exceptions import MetaFuncError
from metafunc_tools.logger import log_print, setup_logger
from metafunc_tools.utils.file_utils import check_file_exists_with_logger


def parse_args(argv=None):
    """Parse command line arguments for the Differential Abundance module."""
    parser = argparse.ArgumentParser(
        description="Run differential abundance analysis on functional-gene count tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Description:
  Counts are normalized to reads per kilobase per genome equivalent (RPKG),
  log2 transformed with a global pseudocount, and fit gene by gene with a
  precision-weighted linear model. Residual variances are shrunk toward a
  common prior (empirical Bayes) before computing moderated t-statistics.
  q-values are estimated separately for each health state vs the reference.

Output Files:
  • rpkg.tsv / log_rpkg.tsv: normalized abundance matrices
  • differential_abundance.csv: per gene and comparison statistics with q-values
  • enrichment_<comparison>.csv: gene-set enrichment (when --gene-sets is given)
  • diff_abundance_summary.txt: summary with exclusion counts

Common Usage:
  metafunc-tools diff --abundance-file genefamilies_counts.tsv --metadata-file metadata.csv --lengths-file lengths.tsv

  # With KEGG module enrichment:
  metafunc-tools diff --abundance-file counts.tsv --metadata-file metadata.csv --lengths-file lengths.tsv \\
      --gene-sets ko_to_module.tsv --set-descriptions modules.tsv
"""
    )
    
    # Required arguments
    parser.add_argument("--abundance-file", required=True,
                      help="Gene x sample raw count table")
    parser.add_argument("--metadata-file", required=True,
                      help="Sample metadata CSV (group label and genome equivalents)")
    parser.add_argument("--lengths-file", required=True,
                      help="Gene length table (gene ID, length in amino acids)")
    
    # Analysis options
    parser.add_argument("--output-dir", default="./DifferentialAbundance",
                      help="Directory for output files")
    parser.add_argument("--group-col", default=DEFAULT_GROUP_COL,
                      help="Column name in metadata for the health state")
    parser.add_argument("--sample-id-col",
                      help="Column name in metadata for sample IDs (autodetected if not specified)")
    parser.add_argument("--levels",
                      help="Comma-separated factor levels, reference first (default: order of appearance)")
    parser.add_argument("--reference",
                      help="Reference level (default: first level)")
    parser.add_argument("--span", type=float, default=DEFAULT_SPAN,
                      help=f"Lowess span for the mean-variance trend (default: {DEFAULT_SPAN})")
    parser.add_argument("--q-threshold", type=float, default=DEFAULT_Q_THRESHOLD,
                      help=f"q-value threshold for significant genes (default: {DEFAULT_Q_THRESHOLD})")
    parser.add_argument("--pi0-method", choices=["smoother", "bootstrap"], default=DEFAULT_PI0_METHOD,
                      help="pi0 estimator for q-values")
    parser.add_argument("--strict", action="store_true",
                      help="Fail on genes without length or samples without genome equivalents "
                           "instead of excluding them")
    parser.add_argument("--exclude-unmapped", action="store_true",
                      help="Exclude UNMAPPED/UNGROUPED features from analysis")
    parser.add_argument("--gene-sets",
                      help="Gene to set mapping (gene ID, set ID) for enrichment testing")
    parser.add_argument("--set-descriptions",
                      help="Set descriptions (set ID, description)")
    parser.add_argument("--plots", action="store_true",
                      help="Save volcano plots")
    
    # Additional options
    parser.add_argument("--log-file", 
                      help="Path to log file")
    parser.add_argument("--log-level", default="INFO", 
                      choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                      help="Logging level")
    
    return parser.parse_args(argv)


def main(argv=None):
    """Main function to run differential abundance analysis."""
    args = parse_args(argv)
    
    log_level = getattr(logging, args.log_level.upper())
    logger = setup_logger(args.log_file, log_level)
    
    logger.info("Starting metafunc_tools Differential Abundance Module")
    start_time = time.time()
    
    inputs = [(args.abundance_file, "Abundance"), (args.metadata_file, "Metadata"),
              (args.lengths_file, "Gene length")]
    if args.gene_sets:
        inputs.append((args.gene_sets, "Gene set"))
    if args.set_descriptions:
        inputs.append((args.set_descriptions, "Set description"))
    for file_path, desc in inputs:
        if not check_file_exists_with_logger(file_path, desc, logger):
            return 1
    
    levels = [lv.strip() for lv in args.levels.split(',')] if args.levels else None
    
    try:
        counts = read_abundance_table(args.abundance_file, exclude_unmapped=args.exclude_unmapped, logger=logger)
        metadata = read_and_process_metadata(args.metadata_file, logger, sample_id_col=args.sample_id_col)
        lengths = read_gene_lengths(args.lengths_file, logger=logger)
        gene_sets = read_gene_sets(args.gene_sets, logger=logger) if args.gene_sets else None
        descriptions = read_set_descriptions(args.set_descriptions) if args.set_descriptions else None
        
        result = run_differential_abundance_analysis(
            counts,
            metadata,
            lengths,
            output_dir=args.output_dir,
            group_col=args.group_col,
            levels=levels,
            reference=args.reference,
            span=args.span,
            drop_missing=not args.strict,
            q_threshold=args.q_threshold,
            pi0_method=args.pi0_method,
            gene_sets=gene_sets,
            set_descriptions=descriptions,
            make_plots=args.plots,
            logger=logger
        )
    except (MetaFuncError, ValueError, KeyError) as e:
        logger.error(f"Differential abundance analysis failed: {e}")
        return 1
    
    n_sig = len(result.significant(args.q_threshold))
    log_print(f"{n_sig} gene/comparison pairs with q <= {args.q_threshold}", level="info")
    
    elapsed_time = time.time() - start_time
    minutes, seconds = divmod(elapsed_time, 60)
    logger.info(f"Total processing time: {int(minutes)}m {int(seconds)}s")
    logger.info(f"Results written to {os.path.abspath(args.output_dir)}")
    
    return 0


if __name__ == "__main__":
    sys.exit(main())
