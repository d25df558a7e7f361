# metafunc_tools/analysis/variance.py
"""
Mean-variance trend and observation-level precision weights.

Count-derived log-abundances are noisier at low abundance. Following the
voom idea, an OLS fit per gene gives residual standard deviations, a lowess
curve of log(SD) against mean fitted log-abundance summarizes the trend, and
the curve evaluated at each fitted value gives a predicted variance whose
reciprocal is the observation weight.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from statsmodels.nonparametric.smoothers_lowess import lowess

from metafunc_tools.analysis.linear_model import fit_weighted_model
from metafunc_tools.config import DEFAULT_SPAN, MIN_GENES_FOR_TREND
from metafunc_tools.exceptions import DegenerateFitError
from metafunc_tools.logger import get_logger


@dataclass
class VarianceTrend:
    weights: pd.DataFrame
    trend_x: np.ndarray
    trend_y: np.ndarray
    mean_fitted: pd.Series
    sigma: pd.Series

    def predict_log_sd(self, x) -> np.ndarray:
        """Trend value (log residual SD) at x, held constant outside the fitted range."""
        return np.interp(x, self.trend_x, self.trend_y)


def fit_mean_variance_trend(mean_fitted: np.ndarray, sigma: np.ndarray, span: float = DEFAULT_SPAN):
    """
    Lowess fit of log(sigma) on mean fitted log-abundance.

    Args:
        mean_fitted: Mean fitted log-abundance per gene
        sigma: Residual standard deviation per gene
        span: Fraction of genes used for each local fit

    Returns:
        Tuple (x, y) of strictly increasing x and the smoothed log(sigma)
    """
    if not 0 < span <= 1:
        raise ValueError(f"span must be in (0, 1], got {span}")

    ok = np.isfinite(mean_fitted) & np.isfinite(sigma) & (sigma > 0)
    if np.count_nonzero(ok) < MIN_GENES_FOR_TREND:
        raise DegenerateFitError(
            f"Only {int(np.count_nonzero(ok))} genes have nonzero residual variance; "
            f"at least {MIN_GENES_FOR_TREND} are needed for a mean-variance trend"
        )

    smoothed = lowess(np.log(sigma[ok]), mean_fitted[ok], frac=span, it=3, return_sorted=True)
    x, y = smoothed[:, 0], smoothed[:, 1]
    # collapse tied x so interpolation sees a strictly increasing grid
    ux, inverse = np.unique(x, return_inverse=True)
    uy = np.bincount(inverse, weights=y) / np.bincount(inverse)
    if not np.all(np.isfinite(uy)):
        raise DegenerateFitError(f"Lowess trend is undefined with span={span}; try a larger span")
    return ux, uy


def estimate_precision_weights(
    log_abundance: pd.DataFrame,
    design: pd.DataFrame,
    span: float = DEFAULT_SPAN,
    logger: Optional[logging.Logger] = None
) -> VarianceTrend:
    """
    Precision weights for every (gene, sample) observation.

    Args:
        log_abundance: Genes x samples log-abundance matrix
        design: Samples x coefficients design aligned to the matrix columns
        span: Lowess span; large values over-smooth the trend, small values
            chase noise
        logger: Logger instance for logging

    Returns:
        VarianceTrend whose ``weights`` has the shape of ``log_abundance``

    Raises:
        DegenerateFitError: fewer than 3 genes with nonzero residual variance
    """
    logger = get_logger(logger)
    if design.shape[0] - design.shape[1] < 1:
        raise DegenerateFitError("Design leaves no residual degrees of freedom for a variance trend")

    fit = fit_weighted_model(log_abundance, design, weights=None, logger=logger)
    fitted = fit.fitted_values().reindex(log_abundance.index)

    # genes that could not be fit are placed on the trend at their observed mean
    if fit.skipped:
        row_means = log_abundance.loc[list(fit.skipped)].mean(axis=1)
        for gene, value in row_means.items():
            fitted.loc[gene] = value

    mean_fitted = fitted.mean(axis=1)
    sigma = fit.sigma.reindex(log_abundance.index)

    trend_x, trend_y = fit_mean_variance_trend(mean_fitted.to_numpy(), sigma.to_numpy(), span=span)

    predicted_log_sd = np.interp(fitted.to_numpy(), trend_x, trend_y)
    # a gene with no observed values at all has nothing to place on the trend
    predicted_log_sd = np.where(np.isfinite(predicted_log_sd), predicted_log_sd, np.max(trend_y))
    weights = pd.DataFrame(
        np.exp(-2.0 * predicted_log_sd),
        index=log_abundance.index,
        columns=log_abundance.columns,
    )

    logger.info(
        f"Mean-variance trend fit on {int(np.count_nonzero(sigma.to_numpy() > 0))} genes "
        f"(span={span}); weights range {weights.values.min():.3g}-{weights.values.max():.3g}"
    )
    return VarianceTrend(
        weights=weights,
        trend_x=trend_x,
        trend_y=trend_y,
        mean_fitted=mean_fitted,
        sigma=sigma,
    )
