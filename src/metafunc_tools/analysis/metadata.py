# metafunc_tools/analysis/metadata.py
"""
Readers for the input tables: counts, sample metadata, gene lengths and
gene sets. These are thin pandas wrappers; all checks that matter for the
statistics happen in the analysis modules.
"""

import traceback
from typing import Optional

import pandas as pd

from metafunc_tools.analysis.normalization import compute_genome_equivalents
from metafunc_tools.config import SAMPLE_ID_COLUMNS
from metafunc_tools.logger import get_logger
from metafunc_tools.utils.file_utils import strip_suffix

UNMAPPED_FEATURES = ("UNMAPPED", "UNGROUPED", "UNINTEGRATED")


def _sep_for(path):
    return "\t" if str(path).endswith((".tsv", ".txt")) else ","


def read_abundance_table(abundance_file, exclude_unmapped=False, logger=None) -> pd.DataFrame:
    """
    Read a feature x sample count table.

    HUMAnN header comments and abundance suffixes are removed from the
    column names, stratified rows (``feature|taxon``) are dropped.

    Args:
        abundance_file: Path to a tab- or comma-separated table, features in
            the first column
        exclude_unmapped: Drop UNMAPPED / UNGROUPED / UNINTEGRATED rows
        logger: Logger instance for logging

    Returns:
        DataFrame with features as index and samples as columns
    """
    logger = get_logger(logger)
    df = pd.read_csv(abundance_file, sep=_sep_for(abundance_file), index_col=0)
    df.index = df.index.astype(str)
    df.index.name = str(df.index.name or "feature").lstrip("#").strip().replace(" ", "_")
    df.columns = [strip_suffix(str(c)) for c in df.columns]

    stratified = df.index.str.contains("|", regex=False)
    if stratified.any():
        logger.info(f"Dropping {int(stratified.sum())} stratified rows")
        df = df.loc[~stratified]

    if exclude_unmapped:
        unmapped = df.index.isin(UNMAPPED_FEATURES)
        if unmapped.any():
            logger.info(f"Dropping unmapped rows: {df.index[unmapped].tolist()}")
            df = df.loc[~unmapped]

    if df.columns.duplicated().any():
        raise ValueError(f"Duplicate sample columns after suffix removal: "
                         f"{df.columns[df.columns.duplicated()].tolist()}")
    if df.index.duplicated().any():
        raise ValueError(f"Duplicate feature IDs: {df.index[df.index.duplicated()].tolist()[:5]}")

    logger.info(f"Loaded abundance data with {df.shape[0]} features and {df.shape[1]} samples")
    return df


def read_and_process_metadata(sample_key, logger=None, sample_id_col: Optional[str] = None) -> pd.DataFrame:
    """
    Read and process sample metadata file.

    Args:
        sample_key: Path to the sample key CSV file
        logger: Logger instance for logging
        sample_id_col: Column with sample IDs (auto-detected if None)

    Returns:
        DataFrame indexed by sample ID, with genome equivalents filled in
        where reads, read length and genome size are available
    """
    logger = get_logger(logger)
    try:
        df = pd.read_csv(sample_key, sep=_sep_for(sample_key))
    except Exception as e:
        logger.error(f"Error reading sample key: {str(e)}")
        logger.error(traceback.format_exc())
        raise RuntimeError(e)
    logger.info(f"Loaded sample key {len(df)} rows, columns: {list(df.columns)}")

    if not sample_id_col:
        for col in SAMPLE_ID_COLUMNS:
            if col in df.columns:
                sample_id_col = col
                logger.info(f"Auto-detected sample ID column: {sample_id_col}")
                break
        if not sample_id_col:
            sample_id_col = df.columns[0]
            logger.warning(f"Could not auto-detect sample ID column, using the first column: {sample_id_col}")
    if sample_id_col not in df.columns:
        raise KeyError(f"Sample ID column '{sample_id_col}' not found in metadata")

    df[sample_id_col] = df[sample_id_col].astype(str)
    df = df.set_index(sample_id_col)
    return compute_genome_equivalents(df, logger=logger)


def read_gene_lengths(lengths_file, logger=None) -> pd.Series:
    """Two-column table (gene ID, length in amino acids) -> Series."""
    logger = get_logger(logger)
    df = pd.read_csv(lengths_file, sep=_sep_for(lengths_file))
    if df.shape[1] < 2:
        raise ValueError(f"Gene length table needs two columns: {lengths_file}")
    lengths = pd.Series(
        pd.to_numeric(df.iloc[:, 1], errors="coerce").to_numpy(),
        index=df.iloc[:, 0].astype(str),
        name="length_aa",
    )
    logger.info(f"Loaded lengths for {len(lengths)} genes")
    return lengths


def read_gene_sets(gene_set_file, logger=None) -> pd.DataFrame:
    """Two-column table (gene ID, set ID), one row per membership."""
    logger = get_logger(logger)
    df = pd.read_csv(gene_set_file, sep=_sep_for(gene_set_file))
    if df.shape[1] < 2:
        raise ValueError(f"Gene set table needs two columns: {gene_set_file}")
    df = df.iloc[:, :2].astype(str)
    df.columns = ["feature", "set_id"]
    logger.info(f"Loaded {len(df)} memberships for {df['set_id'].nunique()} gene sets")
    return df


def read_set_descriptions(description_file, logger=None) -> pd.Series:
    """Two-column table (set ID, description) -> Series."""
    df = pd.read_csv(description_file, sep=_sep_for(description_file))
    if df.shape[1] < 2:
        raise ValueError(f"Set description table needs two columns: {description_file}")
    return pd.Series(df.iloc[:, 1].to_numpy(), index=df.iloc[:, 0].astype(str), name="description")
