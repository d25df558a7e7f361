# metafunc_tools/analysis/fdr.py
"""
Storey q-values, estimated separately for each comparison.

pi0 (the proportion of true nulls) is estimated from the p-value tail mass
above a grid of lambda thresholds; q-values are then the BH-style step-up
values scaled by pi0, made monotone with a running minimum from the largest
p-value down.
"""

import logging
from functools import lru_cache
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.interpolate import make_smoothing_spline

from metafunc_tools.config import (
    DEFAULT_PI0_METHOD,
    MIN_TESTS_FOR_PI0,
    PI0_LAMBDAS,
    PI0_SMOOTH_DF,
)
from metafunc_tools.exceptions import InsufficientDataError
from metafunc_tools.logger import get_logger


def _validate_pvalues(p_values) -> np.ndarray:
    p = np.asarray(p_values, dtype=float).ravel()
    if np.isnan(p).any():
        raise ValueError("p-values contain NaN")
    if np.any((p < 0) | (p > 1)):
        raise ValueError("p-values must lie in [0, 1]")
    return p


def pi0_by_lambda(p_values, lambdas: Sequence[float] = PI0_LAMBDAS) -> np.ndarray:
    """
    Raw estimates #{p >= lambda} / (n * (1 - lambda)) for each lambda.

    p-values equal to lambda count as tail mass, as in the qvalue package.
    """
    p = _validate_pvalues(p_values)
    lambdas = np.asarray(lambdas, dtype=float)
    return np.array([np.mean(p >= lam) / (1.0 - lam) for lam in lambdas])


@lru_cache(maxsize=32)
def _smoothing_penalty(grid: Tuple[float, ...], df: float) -> float:
    """Penalty giving a cubic smoothing spline on ``grid`` ``df`` effective degrees of freedom."""
    x = np.asarray(grid, dtype=float)
    basis = np.eye(x.size)

    def trace(log_lam):
        lam = 10.0 ** log_lam
        return sum(float(make_smoothing_spline(x, basis[j], lam=lam)(x[j])) for j in range(x.size))

    # trace of the hat matrix falls from len(grid) towards 2 as the penalty grows
    lo, hi = -10.0, 5.0
    for _ in range(60):
        mid = (lo + hi) / 2
        if trace(mid) > df:
            lo = mid
        else:
            hi = mid
    return 10.0 ** ((lo + hi) / 2)


def estimate_pi0(
    p_values,
    lambdas: Sequence[float] = PI0_LAMBDAS,
    method: str = DEFAULT_PI0_METHOD,
    min_tests: int = MIN_TESTS_FOR_PI0
) -> float:
    """
    Estimate the proportion of truly null tests.

    Args:
        p_values: p-values of a single comparison
        lambdas: Tuning thresholds in [0, 1)
        method: "smoother" (cubic smoothing spline with PI0_SMOOTH_DF
            degrees of freedom over lambda, read at the largest lambda) or "bootstrap" (lambda minimising the closed-form
            bootstrap MSE)
        min_tests: Minimum number of p-values required

    Returns:
        pi0 in (0, 1]

    Raises:
        InsufficientDataError: too few tests, or the estimate is not positive
    """
    p = _validate_pvalues(p_values)
    m = p.size
    if m < min_tests:
        raise InsufficientDataError(
            f"{m} tests are too few to estimate pi0 (need at least {min_tests})"
        )

    lambdas = np.unique(np.asarray(lambdas, dtype=float))
    if lambdas.size == 0 or lambdas.min() < 0 or lambdas.max() >= 1:
        raise ValueError("lambdas must be a non-empty set of values in [0, 1)")
    raw = pi0_by_lambda(p, lambdas)

    if lambdas.size < 5:
        pi0 = raw[-1]
    elif method == "smoother":
        lam = _smoothing_penalty(tuple(lambdas), PI0_SMOOTH_DF)
        pi0 = float(make_smoothing_spline(lambdas, raw, lam=lam)(lambdas[-1]))
    elif method == "bootstrap":
        min_pi0 = np.quantile(raw, 0.1)
        w = np.array([np.sum(p >= lam) for lam in lambdas])
        mse = (w / (m ** 2 * (1 - lambdas) ** 2)) * (1 - w / m) + (raw - min_pi0) ** 2
        pi0 = raw[np.argmin(mse)]
    else:
        raise ValueError(f"Unknown pi0 method '{method}'; use 'smoother' or 'bootstrap'")

    pi0 = min(float(pi0), 1.0)
    if pi0 <= 0:
        raise InsufficientDataError(
            "pi0 estimate is not positive; check the p-values or use a different lambda range"
        )
    return pi0


def qvalues(
    p_values,
    pi0: Optional[float] = None,
    fallback_pi0: bool = True,
    lambdas: Sequence[float] = PI0_LAMBDAS,
    pi0_method: str = DEFAULT_PI0_METHOD,
    logger: Optional[logging.Logger] = None
) -> Tuple[np.ndarray, float]:
    """
    q-values for one comparison.

    q_(i) = min over j >= i of pi0 * m * p_(j) / j, capped at 1.

    Args:
        p_values: p-values of a single comparison
        pi0: Fixed pi0; estimated when None
        fallback_pi0: Use the conservative pi0 = 1 when pi0 cannot be estimated
        lambdas: Tuning thresholds for the pi0 estimate
        pi0_method: "smoother" or "bootstrap"
        logger: Logger instance for logging

    Returns:
        Tuple of (q-values in the input order, pi0 used)
    """
    logger = get_logger(logger)
    p = _validate_pvalues(p_values)
    m = p.size
    if m == 0:
        return np.array([], dtype=float), 1.0 if pi0 is None else float(pi0)

    if pi0 is None:
        try:
            pi0 = estimate_pi0(p, lambdas=lambdas, method=pi0_method)
        except InsufficientDataError as e:
            if not fallback_pi0:
                raise
            logger.warning(f"{e}; using conservative pi0 = 1")
            pi0 = 1.0
    elif not 0 < pi0 <= 1:
        raise ValueError(f"pi0 must be in (0, 1], got {pi0}")

    order = np.argsort(p, kind="mergesort")[::-1]
    ranks = np.arange(m, 0, -1)
    stepped = np.minimum(1.0, np.minimum.accumulate(p[order] * m / ranks))
    q = np.empty(m, dtype=float)
    q[order] = pi0 * stepped
    return q, float(pi0)


def qvalues_by_group(
    results_df: pd.DataFrame,
    group_col: str = "comparison",
    p_col: str = "p_value",
    pi0: Optional[float] = None,
    fallback_pi0: bool = True,
    pi0_method: str = DEFAULT_PI0_METHOD,
    logger: Optional[logging.Logger] = None
) -> pd.DataFrame:
    """
    Add ``q_value`` and ``pi0`` columns, computed separately per comparison.

    Args:
        results_df: Long table with one row per (feature, comparison)
        group_col: Column identifying the comparison
        p_col: Column holding p-values
        pi0: Fixed pi0 for every group; estimated per group when None
        fallback_pi0: Fall back to pi0 = 1 for groups with too few tests
        pi0_method: "smoother" or "bootstrap"
        logger: Logger instance for logging

    Returns:
        Copy of results_df with q_value and pi0 columns, groups in order of
        first appearance

    Raises:
        ValueError: a row has no comparison label
    """
    logger = get_logger(logger)
    if results_df[group_col].isna().any():
        raise ValueError(f"Column '{group_col}' has missing comparison labels")
    pvalue_map: Dict[str, pd.Series] = {}
    for label in pd.unique(results_df[group_col]):
        pvalue_map[label] = results_df.loc[(results_df[group_col] == label).to_numpy(), p_col]

    frames = []
    for label, pvals in pvalue_map.items():
        q, used_pi0 = qvalues(
            pvals.to_numpy(), pi0=pi0, fallback_pi0=fallback_pi0,
            pi0_method=pi0_method, logger=logger
        )
        part = results_df[(results_df[group_col] == label).to_numpy()].copy()
        part["q_value"] = q
        part["pi0"] = used_pi0
        logger.info(f"{label}: {len(q)} tests, pi0 = {used_pi0:.3f}")
        frames.append(part)

    if not frames:
        out = results_df.copy()
        out["q_value"] = pd.Series(dtype=float)
        out["pi0"] = pd.Series(dtype=float)
        return out
    return pd.concat(frames, ignore_index=True)
