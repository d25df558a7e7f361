#!/usr/bin/env python3
"""
metafunc_tools Normalization Module

Converts a raw functional-gene count table to RPKG and log2-RPKG.
"""

import os
import sys
import logging
import argparse

from metafunc_tools.analysis.metadata import (
    read_abundance_table,
    read_and_process_metadata,
    read_gene_lengths,
)
from metafunc_tools.analysis.normalization import normalize_abundance
from metafunc_tools.config import GENOME_EQUIVALENTS_COL
from metafunc_tools.exceptions import MetaFuncError
from metafunc_tools.logger import setup_logger
from metafunc_tools.utils.file_utils import check_file_exists_with_logger, ensure_output_dir


def parse_args(argv=None):
    """Parse command line arguments for the normalization module."""
    parser = argparse.ArgumentParser(
        description="Normalize functional-gene counts to RPKG (reads per kilobase per genome equivalent)"
    )
    parser.add_argument("--abundance-file", required=True, help="Gene x sample raw count table")
    parser.add_argument("--metadata-file", required=True,
                        help="Sample metadata CSV with genome equivalents (or reads, mean_read_length, genome_size)")
    parser.add_argument("--lengths-file", required=True, help="Gene length table (gene ID, length in amino acids)")
    parser.add_argument("--sample-id-col", help="Column name in metadata for sample IDs")
    parser.add_argument("--output-dir", default="./Normalized", help="Directory for output files")
    parser.add_argument("--strict", action="store_true",
                        help="Fail instead of excluding genes/samples without reference data")
    parser.add_argument("--exclude-unmapped", action="store_true", help="Exclude UNMAPPED/UNGROUPED features")
    parser.add_argument("--log-file", default=None, help="Path to log file")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logger = setup_logger(args.log_file, getattr(logging, args.log_level.upper()))

    for file_path, desc in [(args.abundance_file, "Abundance"), (args.metadata_file, "Metadata"),
                            (args.lengths_file, "Gene length")]:
        if not check_file_exists_with_logger(file_path, desc, logger):
            return 1

    try:
        counts = read_abundance_table(args.abundance_file, exclude_unmapped=args.exclude_unmapped, logger=logger)
        metadata = read_and_process_metadata(args.metadata_file, logger, sample_id_col=args.sample_id_col)
        lengths = read_gene_lengths(args.lengths_file, logger=logger)
        if GENOME_EQUIVALENTS_COL not in metadata.columns:
            logger.error(f"Metadata has no '{GENOME_EQUIVALENTS_COL}' column")
            return 1
        result = normalize_abundance(
            counts, lengths, metadata[GENOME_EQUIVALENTS_COL],
            drop_missing=not args.strict, logger=logger
        )
    except (MetaFuncError, ValueError, KeyError) as e:
        logger.error(f"Normalization failed: {e}")
        return 1

    ensure_output_dir(args.output_dir)
    result.rpkg.to_csv(os.path.join(args.output_dir, "rpkg.tsv"), sep="\t")
    result.log_rpkg.to_csv(os.path.join(args.output_dir, "log_rpkg.tsv"), sep="\t")
    logger.info(
        f"Wrote RPKG tables to {args.output_dir} "
        f"({len(result.dropped_genes)} genes and {len(result.dropped_samples)} samples excluded)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
