"""Tests for the mean-variance trend and precision weights."""

import numpy as np
import pandas as pd
import pytest

from metafunc_tools.analysis.design import build_design_matrix
from metafunc_tools.analysis.linear_model import fit_weighted_model
from metafunc_tools.analysis.variance import (
    estimate_precision_weights,
    fit_mean_variance_trend,
)
from metafunc_tools.exceptions import DegenerateFitError


def _design_for(frame, metadata):
    return build_design_matrix(frame.columns, metadata)


class TestPrecisionWeights:

    def test_shape_and_positivity(self, dataset):
        log_ab = dataset["log_rpkg"]
        design = _design_for(log_ab, dataset["metadata"])
        trend = estimate_precision_weights(log_ab, design)
        assert trend.weights.shape == log_ab.shape
        assert trend.weights.index.equals(log_ab.index)
        assert trend.weights.columns.equals(log_ab.columns)
        assert np.all(np.isfinite(trend.weights.values))
        assert np.all(trend.weights.values > 0)

    def test_noisier_genes_get_smaller_weights(self, simulate):
        data = simulate(n_genes=300, n_shifted=0, heteroskedastic=True, seed=3)
        log_ab = data["log_rpkg"]
        design = _design_for(log_ab, data["metadata"])
        trend = estimate_precision_weights(log_ab, design)
        gene_weight = trend.weights.mean(axis=1)
        mean_ab = log_ab.mean(axis=1)
        low = gene_weight[mean_ab <= mean_ab.quantile(0.25)].mean()
        high = gene_weight[mean_ab >= mean_ab.quantile(0.75)].mean()
        assert low < high

    def test_weights_follow_trend(self, dataset):
        log_ab = dataset["log_rpkg"]
        design = _design_for(log_ab, dataset["metadata"])
        trend = estimate_precision_weights(log_ab, design)
        fitted = fit_weighted_model(log_ab, design).fitted_values()
        expected = np.exp(-2 * trend.predict_log_sd(fitted.to_numpy()))
        np.testing.assert_allclose(trend.weights.to_numpy(), expected, rtol=1e-10)

    def test_constant_extrapolation(self, dataset):
        log_ab = dataset["log_rpkg"]
        design = _design_for(log_ab, dataset["metadata"])
        trend = estimate_precision_weights(log_ab, design)
        assert trend.predict_log_sd(trend.trend_x[0] - 100) == pytest.approx(trend.trend_y[0])
        assert trend.predict_log_sd(trend.trend_x[-1] + 100) == pytest.approx(trend.trend_y[-1])

    def test_too_few_genes_for_trend(self, dataset):
        log_ab = dataset["log_rpkg"].iloc[:2]
        design = _design_for(log_ab, dataset["metadata"])
        with pytest.raises(DegenerateFitError):
            estimate_precision_weights(log_ab, design)

    def test_saturated_design(self, metadata_three_groups):
        meta = metadata_three_groups.iloc[[0, 2, 4]]
        log_ab = pd.DataFrame(np.random.default_rng(0).normal(size=(20, 3)), columns=meta.index)
        design = build_design_matrix(log_ab.columns, meta)
        with pytest.raises(DegenerateFitError):
            estimate_precision_weights(log_ab, design)


class TestTrendFit:

    @pytest.mark.parametrize("span", [0.0, -0.2, 1.5])
    def test_invalid_span(self, span):
        x = np.linspace(0, 10, 50)
        with pytest.raises(ValueError):
            fit_mean_variance_trend(x, np.ones(50), span=span)

    def test_too_few_genes(self):
        with pytest.raises(DegenerateFitError):
            fit_mean_variance_trend(np.array([1.0, 2.0]), np.array([0.5, 0.4]))

    def test_zero_sigma_ignored(self):
        x = np.linspace(0, 10, 40)
        sigma = 0.5 + 0.05 * np.sin(x)
        sigma[:5] = 0.0
        tx, ty = fit_mean_variance_trend(x, sigma, span=0.5)
        assert tx[0] == pytest.approx(x[5])
        assert np.all(np.isfinite(ty))
        assert len(tx) == 35

    def test_increasing_grid_with_ties(self):
        x = np.repeat(np.arange(10.0), 3)
        sigma = np.exp(-0.1 * x) + 0.01 * np.tile([0, 1, 2], 10)
        tx, ty = fit_mean_variance_trend(x, sigma, span=0.6)
        assert np.all(np.diff(tx) > 0)
        assert len(tx) == len(ty) == 10
