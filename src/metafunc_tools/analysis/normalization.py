# metafunc_tools/analysis/normalization.py
"""
Length and depth normalization of functional-gene count tables.

Raw read counts are converted to RPKG (reads per kilobase of gene per genome
equivalent) and then to log2(RPKG + p), where p is half of the smallest
positive RPKG value in the whole matrix.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from metafunc_tools.config import (
    AA_TO_KB,
    GENOME_EQUIVALENTS_COL,
    GENOME_SIZE_COL,
    READ_LENGTH_COL,
    READS_COL,
)
from metafunc_tools.exceptions import (
    DegenerateFitError,
    InvalidSampleError,
    MissingLengthError,
)
from metafunc_tools.logger import get_logger, log_exclusions


@dataclass
class NormalizationResult:
    """RPKG and log2-RPKG matrices plus a record of everything that was excluded."""
    rpkg: pd.DataFrame
    log_rpkg: pd.DataFrame
    pseudocount: float
    dropped_genes: List[str] = field(default_factory=list)
    dropped_samples: List[str] = field(default_factory=list)


def compute_genome_equivalents(metadata_df: pd.DataFrame, logger=None) -> pd.DataFrame:
    """
    Fill in genome equivalents as reads * mean_read_length / genome_size.

    Values already present in the genome equivalents column are kept as they
    are; only missing entries are computed. The input frame is not modified.

    Args:
        metadata_df: Sample metadata indexed by sample ID
        logger: Logger instance for logging

    Returns:
        Copy of the metadata with a complete genome equivalents column where
        the inputs allow it
    """
    logger = get_logger(logger)
    meta = metadata_df.copy()
    if GENOME_EQUIVALENTS_COL not in meta.columns:
        meta[GENOME_EQUIVALENTS_COL] = np.nan

    missing = meta[GENOME_EQUIVALENTS_COL].isna()
    if not missing.any():
        return meta

    needed = [READS_COL, READ_LENGTH_COL, GENOME_SIZE_COL]
    absent = [c for c in needed if c not in meta.columns]
    if absent:
        logger.warning(
            f"Cannot compute genome equivalents for {int(missing.sum())} samples; "
            f"missing columns: {absent}"
        )
        return meta

    computed = (
        meta.loc[missing, READS_COL].astype(float)
        * meta.loc[missing, READ_LENGTH_COL].astype(float)
        / meta.loc[missing, GENOME_SIZE_COL].astype(float)
    )
    meta.loc[missing, GENOME_EQUIVALENTS_COL] = computed
    logger.info(f"Computed genome equivalents for {int(missing.sum())} samples")
    return meta


def convert_lengths_to_kb(lengths_aa: pd.Series) -> pd.Series:
    """Convert protein lengths in amino acids to nucleotide kilobases."""
    return lengths_aa.astype(float) * AA_TO_KB


def calculate_rpkg(
    counts_df: pd.DataFrame,
    gene_lengths: pd.Series,
    genome_equivalents: pd.Series,
    drop_missing: bool = True,
    logger: Optional[logging.Logger] = None
):
    """
    Compute RPKG = count / (length_aa * 3 / 1000) / genome_equivalents.

    Args:
        counts_df: Raw counts, genes as index and samples as columns
        gene_lengths: Gene ID -> estimated protein length (amino acids)
        genome_equivalents: Sample ID -> genome equivalents
        drop_missing: Drop (and log) genes without a length and samples with
            invalid genome equivalents instead of raising
        logger: Logger instance for logging

    Returns:
        Tuple of (rpkg_df, dropped_genes, dropped_samples)

    Raises:
        MissingLengthError: A gene has no usable length and drop_missing is False
        InvalidSampleError: A sample has zero/undefined genome equivalents and
            drop_missing is False
    """
    logger = get_logger(logger)

    values = counts_df.to_numpy(dtype=float)
    if np.any(values[~np.isnan(values)] < 0):
        raise ValueError("Count matrix contains negative values")

    lengths = pd.to_numeric(gene_lengths.reindex(counts_df.index), errors="coerce")
    bad_genes = lengths.index[~(lengths > 0)].tolist()
    if bad_genes:
        if not drop_missing:
            raise MissingLengthError(bad_genes)
        log_exclusions("genes", bad_genes, "no length estimate", logger=logger)

    ge = pd.to_numeric(genome_equivalents.reindex(counts_df.columns), errors="coerce")
    bad_samples = ge.index[~(ge > 0) | ~np.isfinite(ge)].tolist()
    if bad_samples:
        if not drop_missing:
            raise InvalidSampleError(bad_samples)
        log_exclusions("samples", bad_samples, "invalid genome equivalents", logger=logger)

    keep_genes = [g for g in counts_df.index if g not in set(bad_genes)]
    keep_samples = [s for s in counts_df.columns if s not in set(bad_samples)]

    kb = convert_lengths_to_kb(lengths.loc[keep_genes])
    subset = counts_df.loc[keep_genes, keep_samples].astype(float)
    rpkg = subset.div(kb, axis=0).div(ge.loc[keep_samples], axis=1)

    logger.info(f"Computed RPKG for {rpkg.shape[0]} genes across {rpkg.shape[1]} samples")
    return rpkg, bad_genes, bad_samples


def calculate_pseudocount(rpkg_df: pd.DataFrame) -> float:
    """Half of the smallest strictly positive value in the whole matrix."""
    values = rpkg_df.to_numpy(dtype=float)
    positive = values[values > 0]
    if positive.size == 0:
        raise DegenerateFitError("RPKG matrix has no positive values; cannot derive a pseudocount")
    return float(positive.min()) / 2.0


def log_transform(rpkg_df: pd.DataFrame, pseudocount: Optional[float] = None) -> pd.DataFrame:
    """
    log2(RPKG + p) with a single global pseudocount.

    Args:
        rpkg_df: RPKG matrix
        pseudocount: Pseudocount; derived with calculate_pseudocount when None

    Returns:
        DataFrame of the same shape as rpkg_df
    """
    if pseudocount is None:
        pseudocount = calculate_pseudocount(rpkg_df)
    return np.log2(rpkg_df + pseudocount)


def normalize_abundance(
    counts_df: pd.DataFrame,
    gene_lengths: pd.Series,
    genome_equivalents: pd.Series,
    drop_missing: bool = True,
    logger: Optional[logging.Logger] = None
) -> NormalizationResult:
    """
    Run RPKG normalization followed by the log2 transform.

    The raw count matrix is not modified.
    """
    logger = get_logger(logger)
    rpkg, dropped_genes, dropped_samples = calculate_rpkg(
        counts_df, gene_lengths, genome_equivalents,
        drop_missing=drop_missing, logger=logger
    )
    pseudocount = calculate_pseudocount(rpkg)
    logger.info(f"Log pseudocount (half minimum positive RPKG): {pseudocount:.6g}")
    log_rpkg = log_transform(rpkg, pseudocount)
    return NormalizationResult(
        rpkg=rpkg,
        log_rpkg=log_rpkg,
        pseudocount=pseudocount,
        dropped_genes=dropped_genes,
        dropped_samples=dropped_samples,
    )
