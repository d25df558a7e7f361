"""Tests for design matrix construction and sample alignment."""

import numpy as np
import pandas as pd
import pytest

from metafunc_tools.analysis.design import (
    INTERCEPT,
    build_design_matrix,
    check_design_alignment,
    coefficient_label,
    comparison_columns,
)
from metafunc_tools.analysis.linear_model import fit_weighted_model
from metafunc_tools.exceptions import DataAlignmentError, OrderMismatchError

SAMPLES = ["S1", "S2", "S3", "S4", "S5", "S6"]
LEVELS = ["healthy", "condition_A", "condition_B"]


class TestBuildDesign:

    def test_columns_and_indicators(self, metadata_three_groups):
        design = build_design_matrix(SAMPLES, metadata_three_groups, levels=LEVELS)
        assert list(design.columns) == [INTERCEPT, "Group[T.condition_A]", "Group[T.condition_B]"]
        assert list(design.index) == SAMPLES
        np.testing.assert_array_equal(design[INTERCEPT], np.ones(6))
        np.testing.assert_array_equal(design["Group[T.condition_A]"], [0, 0, 1, 1, 0, 0])
        np.testing.assert_array_equal(design["Group[T.condition_B]"], [0, 0, 0, 0, 1, 1])

    def test_joined_by_sample_id(self, metadata_three_groups):
        shuffled = metadata_three_groups.iloc[[4, 0, 5, 2, 1, 3]]
        expected = build_design_matrix(SAMPLES, metadata_three_groups, levels=LEVELS)
        design = build_design_matrix(SAMPLES, shuffled, levels=LEVELS)
        pd.testing.assert_frame_equal(design, expected)

    def test_follows_matrix_column_order(self, metadata_three_groups):
        order = ["S5", "S1", "S3", "S6", "S2", "S4"]
        design = build_design_matrix(order, metadata_three_groups, levels=LEVELS)
        assert list(design.index) == order
        np.testing.assert_array_equal(design["Group[T.condition_B]"], [1, 0, 0, 1, 0, 0])

    def test_reference_override(self, metadata_three_groups):
        design = build_design_matrix(SAMPLES, metadata_three_groups, levels=LEVELS, reference="condition_B")
        assert comparison_columns(design) == ["Group[T.healthy]", "Group[T.condition_A]"]

    def test_default_health_states(self, metadata_three_groups):
        order = ["S5", "S3", "S1", "S6", "S4", "S2"]
        design = build_design_matrix(order, metadata_three_groups)
        assert [coefficient_label(c) for c in comparison_columns(design)] == ["condition_A", "condition_B"]

    def test_custom_labels_use_first_appearance(self):
        meta = pd.DataFrame(
            {"Group": ["IBD", "control", "IBD", "control"]},
            index=pd.Index(["S1", "S2", "S3", "S4"], name="SampleID"),
        )
        design = build_design_matrix(["S1", "S2", "S3", "S4"], meta)
        assert comparison_columns(design) == ["Group[T.control]"]
        design = build_design_matrix(["S1", "S2", "S3", "S4"], meta, reference="control")
        assert comparison_columns(design) == ["Group[T.IBD]"]

    def test_unknown_reference(self, metadata_three_groups):
        with pytest.raises(ValueError):
            build_design_matrix(SAMPLES, metadata_three_groups, levels=LEVELS, reference="IBD")

    def test_label_outside_declared_levels(self, metadata_three_groups):
        with pytest.raises(ValueError):
            build_design_matrix(SAMPLES, metadata_three_groups, levels=["healthy", "condition_A"])

    def test_empty_level_dropped(self, metadata_three_groups):
        meta = metadata_three_groups[metadata_three_groups["Group"] != "condition_B"]
        design = build_design_matrix(SAMPLES[:4], meta, levels=LEVELS)
        assert comparison_columns(design) == ["Group[T.condition_A]"]

    def test_missing_group_column(self, metadata_three_groups):
        with pytest.raises(KeyError):
            build_design_matrix(SAMPLES, metadata_three_groups, group_col="State")


class TestAlignmentErrors:

    def test_sample_missing_from_metadata(self, metadata_three_groups):
        with pytest.raises(OrderMismatchError):
            build_design_matrix(SAMPLES + ["S7"], metadata_three_groups)

    def test_duplicate_metadata_rows(self, metadata_three_groups):
        meta = pd.concat([metadata_three_groups, metadata_three_groups.iloc[[0]]])
        with pytest.raises(OrderMismatchError):
            build_design_matrix(SAMPLES, meta)

    def test_unlabeled_sample(self, metadata_three_groups):
        meta = metadata_three_groups.copy()
        meta.loc["S3", "Group"] = np.nan
        with pytest.raises(DataAlignmentError):
            build_design_matrix(SAMPLES, meta)

    def test_order_mismatch_is_alignment_error(self):
        assert issubclass(OrderMismatchError, DataAlignmentError)

    def test_permuted_design_rejected(self, metadata_three_groups):
        design = build_design_matrix(SAMPLES, metadata_three_groups, levels=LEVELS)
        matrix = pd.DataFrame(np.random.default_rng(1).normal(size=(10, 6)), columns=SAMPLES)
        permuted = design.iloc[[1, 0, 2, 3, 4, 5]]
        with pytest.raises(DataAlignmentError):
            check_design_alignment(permuted, matrix)
        with pytest.raises(DataAlignmentError):
            fit_weighted_model(matrix, permuted)

    def test_aligned_design_accepted(self, metadata_three_groups):
        design = build_design_matrix(SAMPLES, metadata_three_groups, levels=LEVELS)
        matrix = pd.DataFrame(np.zeros((2, 6)), columns=SAMPLES)
        check_design_alignment(design, matrix)


def test_coefficient_label():
    assert coefficient_label("Group[T.condition_A]") == "condition_A"
    assert coefficient_label(INTERCEPT) == INTERCEPT
