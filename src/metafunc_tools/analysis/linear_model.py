# metafunc_tools/analysis/linear_model.py
"""
Per-gene weighted linear models with empirical Bayes variance moderation.

Each gene's log-abundance row is regressed on the design matrix using its
precision weights (``inmoose.limma.lmFit``), and ``inmoose.limma.eBayes``
moderates the residual variances.

The prior is a scaled inverse chi-square distribution with d0 degrees of
freedom and scale s0^2, fitted by the method of moments on the log scale
(Smyth 2004). With e_g = log(s_g^2) - digamma(d_g/2) + log(d_g/2):

    trigamma(d0/2) = var(e) - mean(trigamma(d_g/2))
    s0^2 = exp(mean(e) + digamma(d0/2) - log(d0/2))

If the excess variance on the right is not positive, d0 = inf and
s0^2 = exp(mean(e)). Posterior variances are
(d0 s0^2 + d_g s_g^2) / (d0 + d_g), moderated t-statistics use them in
place of s_g^2, and the total degrees of freedom d0 + d_g are capped at the
pooled residual degrees of freedom.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import inmoose.limma as imo
import numpy as np
import pandas as pd
from tqdm import tqdm

from metafunc_tools.analysis.design import (
    check_design_alignment,
    coefficient_label,
    comparison_columns,
)
from metafunc_tools.exceptions import (
    DataAlignmentError,
    DegenerateFitError,
    RankDeficiencyError,
)
from metafunc_tools.logger import get_logger, log_exclusions


@dataclass
class LinearFit:
    """Unmoderated per-gene fit. Rows are the genes that could be fit."""
    coefficients: pd.DataFrame
    unscaled_se: pd.DataFrame
    sigma: pd.Series
    df_residual: pd.Series
    design: pd.DataFrame
    skipped: Dict[str, str] = field(default_factory=dict)
    limma_fit: Optional[object] = field(default=None, repr=False)

    @property
    def s2(self) -> pd.Series:
        return self.sigma ** 2

    def fitted_values(self) -> pd.DataFrame:
        """Fitted log-abundance for every (gene, sample) pair."""
        values = self.coefficients.to_numpy() @ self.design.to_numpy().T
        return pd.DataFrame(values, index=self.coefficients.index, columns=self.design.index)


@dataclass
class ModeratedFit:
    """Linear fit plus the empirical Bayes moderated statistics."""
    fit: LinearFit
    df_prior: float
    s2_prior: float
    s2_post: pd.Series
    t: pd.DataFrame
    df_total: pd.Series
    p_value: pd.DataFrame
    ave_abundance: pd.Series

    @property
    def skipped(self) -> Dict[str, str]:
        return self.fit.skipped

    @property
    def comparisons(self) -> List[str]:
        return list(self.t.columns)

    def top_table(self, coef: str) -> pd.DataFrame:
        """
        Results for one non-intercept coefficient, sorted by p-value.

        Args:
            coef: Design column name (``Group[T.A]``) or its label (``A``)
        """
        column = self._resolve(coef)
        se = self.fit.unscaled_se[column] * np.sqrt(self.s2_post)
        table = pd.DataFrame({
            "log2FC": self.fit.coefficients[column],
            "AveAbundance": self.ave_abundance,
            "se": se,
            "t": self.t[column],
            "df_total": self.df_total,
            "p_value": self.p_value[column],
        })
        table.index.name = "feature"
        return table.sort_values("p_value")

    def to_long(self) -> pd.DataFrame:
        """Long table (feature, comparison, log2FC, se, t, df_total, p_value)."""
        frames = []
        for column in self.comparisons:
            part = self.top_table(column).reset_index()
            part.insert(1, "comparison", coefficient_label(column))
            frames.append(part)
        if not frames:
            return pd.DataFrame(
                columns=["feature", "comparison", "log2FC", "AveAbundance", "se", "t", "df_total", "p_value"]
            )
        return pd.concat(frames, ignore_index=True)

    def _resolve(self, coef: str) -> str:
        if coef in self.t.columns:
            return coef
        for column in self.t.columns:
            if coefficient_label(column) == coef:
                return column
        raise KeyError(f"Unknown coefficient '{coef}'; available: {self.comparisons}")



def _screen_gene(y: np.ndarray, X: np.ndarray, w: Optional[np.ndarray]) -> Optional[str]:
    """Reason a gene cannot be fit on its observed samples, or None."""
    obs = np.isfinite(y)
    if w is not None:
        obs &= np.isfinite(w)
    n_obs = int(obs.sum())
    if n_obs == 0 or np.linalg.matrix_rank(X[obs]) < X.shape[1]:
        return f"design restricted to {n_obs} observed samples is rank deficient"
    if n_obs - X.shape[1] < 1:
        return "no residual degrees of freedom"
    return None


def _check_weights(weights: pd.DataFrame, log_abundance: pd.DataFrame) -> np.ndarray:
    if not (weights.index.equals(log_abundance.index) and weights.columns.equals(log_abundance.columns)):
        raise DataAlignmentError("Weight matrix labels do not match the log-abundance matrix")
    W = weights.to_numpy(dtype=float)
    finite = W[np.isfinite(W)]
    if np.any(finite <= 0):
        raise ValueError("Precision weights must be strictly positive")
    return W


def fit_weighted_model(
    log_abundance: pd.DataFrame,
    design: pd.DataFrame,
    weights: Optional[pd.DataFrame] = None,
    progress: bool = False,
    logger: Optional[logging.Logger] = None
) -> LinearFit:
    """
    Fit a (weighted) least-squares model to every gene.

    Missing observations are dropped per gene. Genes whose observed design is
    rank deficient, or leaves no residual degrees of freedom, are skipped and
    recorded in ``LinearFit.skipped``; the rest are fit together by
    ``lmFit``.

    Args:
        log_abundance: Genes x samples log-abundance matrix
        design: Samples x coefficients design; rows must equal the matrix columns
        weights: Optional genes x samples precision weights (all positive)
        progress: Show a progress bar while screening genes
        logger: Logger instance for logging

    Returns:
        LinearFit

    Raises:
        DataAlignmentError: design or weights do not match the matrix labels
        RankDeficiencyError: the full design matrix is singular
    """
    logger = get_logger(logger)
    check_design_alignment(design, log_abundance)

    X = design.to_numpy(dtype=float)
    if np.linalg.matrix_rank(X) < X.shape[1]:
        raise RankDeficiencyError(
            f"Design matrix with columns {list(design.columns)} is rank deficient"
        )

    Y = log_abundance.to_numpy(dtype=float)
    W = _check_weights(weights, log_abundance) if weights is not None else None
    genes = list(log_abundance.index)

    skipped = {}
    for i, gene in enumerate(tqdm(genes, desc="Screening genes", disable=not progress)):
        reason = _screen_gene(Y[i], X, W[i] if W is not None else None)
        if reason is not None:
            skipped[gene] = reason
    log_exclusions("genes", skipped, "rank-deficient or saturated fit", logger=logger)
    for gene, reason in skipped.items():
        logger.debug(f"Skipped gene {gene}: {reason}")

    keep = np.array([g not in skipped for g in genes], dtype=bool)
    columns = list(design.columns)
    index = log_abundance.index[keep]

    limma_fit = None
    if keep.any():
        with np.errstate(divide="ignore", invalid="ignore"):
            limma_fit = imo.lmFit(
                log_abundance.loc[keep],
                design=X,
                weights=W[keep] if W is not None else None,
            )
        coef = np.asarray(limma_fit.coefficients, dtype=float)
        unscaled = np.asarray(limma_fit.stdev_unscaled, dtype=float)
        sigma = np.asarray(limma_fit.sigma, dtype=float)
        df_residual = np.asarray(limma_fit.df_residual, dtype=float)
    else:
        coef = np.empty((0, len(columns)))
        unscaled = np.empty((0, len(columns)))
        sigma = np.empty(0)
        df_residual = np.empty(0)

    fit = LinearFit(
        coefficients=pd.DataFrame(coef, index=index, columns=columns),
        unscaled_se=pd.DataFrame(unscaled, index=index, columns=columns),
        sigma=pd.Series(sigma, index=index, dtype=float),
        df_residual=pd.Series(df_residual, index=index, dtype=float),
        design=design,
        skipped=skipped,
        limma_fit=limma_fit,
    )
    logger.info(f"Fitted {len(index)} genes; skipped {len(skipped)}")
    return fit


def moderate(fit: LinearFit, ave_abundance: Optional[pd.Series] = None, logger=None) -> ModeratedFit:
    """
    Empirical Bayes moderation of a LinearFit.

    The intercept is dropped from the reported statistics.
    """
    logger = get_logger(logger)
    if fit.coefficients.empty:
        raise DegenerateFitError("No genes could be fit; nothing to moderate")
    if np.count_nonzero(fit.s2.to_numpy() > 0) < 2:
        raise DegenerateFitError("Fewer than 2 genes with positive residual variance; cannot fit variance prior")

    # eBayes stores its results on the fit object it is given
    with np.errstate(divide="ignore", invalid="ignore"):
        eb = imo.eBayes(copy.deepcopy(fit.limma_fit))

    d0 = float(np.squeeze(eb.df_prior))
    s0_sq = float(np.squeeze(eb.s2_prior))
    logger.info(f"Variance prior: d0 = {d0:.4g}, s0^2 = {s0_sq:.4g}")

    index = fit.coefficients.index
    columns = comparison_columns(fit.design)
    positions = [list(fit.design.columns).index(c) for c in columns]

    t = pd.DataFrame(np.asarray(eb.t, dtype=float)[:, positions], index=index, columns=columns)
    p = pd.DataFrame(np.asarray(eb.p_value, dtype=float)[:, positions], index=index, columns=columns)

    if ave_abundance is None:
        ave_abundance = pd.Series(np.nan, index=index)
    else:
        ave_abundance = ave_abundance.reindex(index)

    return ModeratedFit(
        fit=fit,
        df_prior=d0,
        s2_prior=s0_sq,
        s2_post=pd.Series(np.asarray(eb.s2_post, dtype=float), index=index),
        t=t,
        df_total=pd.Series(np.asarray(eb.df_total, dtype=float), index=index),
        p_value=p,
        ave_abundance=ave_abundance,
    )


def moderated_fit(
    log_abundance: pd.DataFrame,
    design: pd.DataFrame,
    weights: Optional[pd.DataFrame] = None,
    progress: bool = False,
    logger: Optional[logging.Logger] = None
) -> ModeratedFit:
    """Weighted per-gene fit followed by empirical Bayes moderation."""
    fit = fit_weighted_model(log_abundance, design, weights=weights, progress=progress, logger=logger)
    return moderate(fit, ave_abundance=log_abundance.mean(axis=1), logger=logger)
