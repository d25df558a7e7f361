# metafunc_tools/analysis/design.py
"""
Treatment-coded design matrices aligned to the abundance matrix by sample ID.
"""

import re
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from metafunc_tools.config import DEFAULT_GROUP_COL, DEFAULT_LEVELS, DEFAULT_REFERENCE
from metafunc_tools.exceptions import DataAlignmentError, OrderMismatchError
from metafunc_tools.logger import get_logger

INTERCEPT = "Intercept"

_COEF_RE = re.compile(r"^.+\[T\.(.+)\]$")


def coefficient_name(group_col: str, level) -> str:
    """Column name for the indicator of a non-reference level, e.g. ``Group[T.IBD]``."""
    return f"{group_col}[T.{level}]"


def coefficient_label(column: str) -> str:
    """Comparison label for a design column (``Group[T.IBD]`` -> ``IBD``)."""
    match = _COEF_RE.match(column)
    return match.group(1) if match else column


def _resolve_levels(labels: pd.Series, levels: Optional[Sequence], reference) -> List:
    if levels is None:
        if DEFAULT_REFERENCE in set(labels) and set(labels) <= set(DEFAULT_LEVELS):
            levels = list(DEFAULT_LEVELS)
        else:
            levels = list(pd.unique(labels))
    else:
        levels = list(levels)
        if len(set(levels)) != len(levels):
            raise ValueError(f"Duplicate factor levels: {levels}")
    if reference is not None:
        if reference not in levels:
            raise ValueError(f"Reference level '{reference}' not among levels {levels}")
        levels = [reference] + [lv for lv in levels if lv != reference]
    return levels


def build_design_matrix(
    sample_ids: Sequence,
    metadata_df: pd.DataFrame,
    group_col: str = DEFAULT_GROUP_COL,
    levels: Optional[Sequence] = None,
    reference=None,
    logger=None
) -> pd.DataFrame:
    """
    Build an intercept + indicator design for the given sample order.

    Labels are looked up by sample ID, so the row order of ``metadata_df``
    has no influence on the result; row i of the design always belongs to
    ``sample_ids[i]``.

    Args:
        sample_ids: Ordered sample IDs, normally ``abundance_df.columns``
        metadata_df: Sample metadata indexed by sample ID
        group_col: Column holding the health-state label
        levels: Declared factor levels; the first one is the reference
        reference: Explicit reference level (moved to the front of levels)
        logger: Logger instance for logging

    Returns:
        DataFrame with samples as index and columns
        [Intercept, <group_col>[T.<level>], ...]

    Raises:
        OrderMismatchError: a sample is missing from or duplicated in the metadata
    """
    logger = get_logger(logger)
    sample_ids = list(sample_ids)

    if group_col not in metadata_df.columns:
        raise KeyError(f"Group column '{group_col}' not found in metadata")

    dup_samples = pd.Index(sample_ids)[pd.Index(sample_ids).duplicated()].unique().tolist()
    if dup_samples:
        raise OrderMismatchError(f"Duplicate sample IDs in abundance matrix: {dup_samples}")
    dup_meta = metadata_df.index[metadata_df.index.duplicated()].unique().tolist()
    if dup_meta:
        raise OrderMismatchError(f"Duplicate sample IDs in metadata: {dup_meta}")
    missing = [s for s in sample_ids if s not in metadata_df.index]
    if missing:
        raise OrderMismatchError(f"Samples missing from metadata: {missing}")

    labels = metadata_df.loc[sample_ids, group_col]
    unlabeled = labels.index[labels.isna()].tolist()
    if unlabeled:
        raise OrderMismatchError(f"Samples without a '{group_col}' label: {unlabeled}")

    levels = _resolve_levels(labels, levels, reference)
    unknown = sorted(set(labels) - set(levels), key=str)
    if unknown:
        raise ValueError(f"Labels {unknown} are not among declared levels {levels}")

    design = pd.DataFrame(index=pd.Index(sample_ids, name=metadata_df.index.name))
    design[INTERCEPT] = 1.0
    for level in levels[1:]:
        indicator = (labels == level).to_numpy(dtype=float)
        if not indicator.any():
            logger.warning(f"Level '{level}' has no samples; dropping its coefficient")
            continue
        design[coefficient_name(group_col, level)] = indicator

    counts = labels.value_counts()
    logger.info(
        f"Design matrix: {design.shape[0]} samples x {design.shape[1]} coefficients "
        f"(reference '{levels[0]}'; group sizes {counts.to_dict()})"
    )
    return design


def check_design_alignment(design_df: pd.DataFrame, abundance_df: pd.DataFrame) -> None:
    """Raise DataAlignmentError unless design rows equal the matrix columns, in order."""
    if len(design_df.index) != len(abundance_df.columns) or not np.array_equal(
        design_df.index.to_numpy(), abundance_df.columns.to_numpy()
    ):
        raise DataAlignmentError(
            "Design matrix rows do not match abundance matrix columns; "
            "rebuild the design from the matrix's own column labels"
        )


def comparison_columns(design_df: pd.DataFrame) -> List[str]:
    """All design columns except the intercept."""
    return [c for c in design_df.columns if c != INTERCEPT]
