# metafunc_tools/analysis/enrichment.py
"""
Gene-set over-representation among differentially abundant features.

Each set is tested with a two-sided Fisher exact test on

                     in set      not in set
    hits             |H & S|     |H - S|
    background only  |B' & S|    |B' - S|        (B' = B - H)

The p-values returned by ``enrichment_test`` are NOT corrected for the
number of sets tested; run ``adjust_enrichment_pvalues`` afterwards.
"""

import logging
from typing import Dict, Iterable, Optional, Union

import pandas as pd
from scipy.stats import fisher_exact
from statsmodels.stats.multitest import multipletests

from metafunc_tools.config import DEFAULT_ENRICHMENT_CORRECTION, DEFAULT_Q_THRESHOLD
from metafunc_tools.logger import get_logger

RESULT_COLUMNS = [
    "set_id", "hits_in_set", "hits_not_in_set", "background_in_set",
    "background_not_in_set", "set_size", "odds_ratio", "p_value",
]


def gene_sets_from_mapping(
    mapping: Union[pd.DataFrame, Dict[str, Iterable]],
    feature_col: str = "feature",
    set_col: str = "set_id"
) -> Dict[str, set]:
    """
    Normalize a gene -> set mapping to {set_id: set(features)}.

    Accepts a long two-column table (one row per gene/set pair) or a dict
    of set members.
    """
    if isinstance(mapping, pd.DataFrame):
        if feature_col not in mapping.columns or set_col not in mapping.columns:
            raise KeyError(f"Gene set table needs '{feature_col}' and '{set_col}' columns")
        pairs = mapping[[feature_col, set_col]].dropna().drop_duplicates()
        return {
            set_id: set(members)
            for set_id, members in pairs.groupby(set_col, sort=False)[feature_col]
        }
    return {set_id: set(members) for set_id, members in mapping.items()}


def select_hits(
    qvalue_df: pd.DataFrame,
    comparison: Optional[str] = None,
    threshold: float = DEFAULT_Q_THRESHOLD,
    feature_col: str = "feature",
    group_col: str = "comparison",
    q_col: str = "q_value"
) -> set:
    """Features with q-value <= threshold, optionally restricted to one comparison."""
    df = qvalue_df
    if comparison is not None:
        df = df[df[group_col] == comparison]
    return set(df.loc[df[q_col] <= threshold, feature_col])


def enrichment_test(
    hits: Iterable,
    background: Iterable,
    gene_sets: Union[pd.DataFrame, Dict[str, Iterable]],
    logger: Optional[logging.Logger] = None
) -> pd.DataFrame:
    """
    Two-sided Fisher exact test for every set with members in the background.

    Args:
        hits: Significant features (must all be in the background)
        background: All tested features
        gene_sets: Gene -> set mapping (long table or dict of members)
        logger: Logger instance for logging

    Returns:
        DataFrame with one row per tested set, sorted by p-value. Contains
        uncorrected p-values only.
    """
    logger = get_logger(logger)
    background = set(background)
    hits = set(hits)
    outside = hits - background
    if outside:
        raise ValueError(f"{len(outside)} hits are not part of the background universe")

    sets = gene_sets_from_mapping(gene_sets)
    n_hits = len(hits)
    n_rest = len(background) - n_hits

    rows = []
    skipped = 0
    for set_id, members in sets.items():
        in_background = members & background
        if not in_background:
            skipped += 1
            continue
        a = len(in_background & hits)
        c = len(in_background) - a
        table = [[a, n_hits - a], [c, n_rest - c]]
        odds_ratio, p_value = fisher_exact(table, alternative="two-sided")
        rows.append({
            "set_id": set_id,
            "hits_in_set": a,
            "hits_not_in_set": n_hits - a,
            "background_in_set": c,
            "background_not_in_set": n_rest - c,
            "set_size": len(in_background),
            "odds_ratio": odds_ratio,
            "p_value": p_value,
        })

    if skipped:
        logger.info(f"Skipped {skipped} sets with no members in the background")
    logger.info(f"Tested {len(rows)} sets ({n_hits} hits, {len(background)} background features)")

    result = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    result["hits"] = n_hits
    result["background_size"] = len(background)
    return result.sort_values(["p_value", "set_id"], kind="mergesort").reset_index(drop=True)


def adjust_enrichment_pvalues(
    enrichment_df: pd.DataFrame,
    method: str = DEFAULT_ENRICHMENT_CORRECTION,
    p_col: str = "p_value"
) -> pd.DataFrame:
    """Multiple-testing correction across sets (adds ``p_adj``)."""
    out = enrichment_df.copy()
    if out.empty:
        out["p_adj"] = pd.Series(dtype=float)
        return out
    out["p_adj"] = multipletests(out[p_col].to_numpy(), method=method)[1]
    return out


def annotate_sets(enrichment_df: pd.DataFrame, descriptions: Union[pd.Series, Dict[str, str]]) -> pd.DataFrame:
    """Left join of set descriptions onto an enrichment table."""
    if not isinstance(descriptions, pd.Series):
        descriptions = pd.Series(descriptions, dtype=object)
    out = enrichment_df.copy()
    out["description"] = out["set_id"].map(descriptions)
    return out

