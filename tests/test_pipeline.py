"""End-to-end tests of the differential abundance pipeline."""

import os

import numpy as np
import pandas as pd
import pytest

from metafunc_tools.analysis.differential_abundance import run_differential_abundance_analysis
from metafunc_tools.exceptions import DataAlignmentError, MissingReferenceDataError

LEVELS = ["healthy", "condition_A", "condition_B"]


def _run(data, **kwargs):
    return run_differential_abundance_analysis(
        data["counts"], data["metadata"], data["lengths"], levels=LEVELS, **kwargs
    )


class TestRecovery:

    def test_shifted_genes_detected(self, dataset):
        result = _run(dataset)
        sig = result.significant(0.05)
        sig_a = set(sig.loc[sig["comparison"] == "condition_A", "feature"])
        assert set(dataset["shifted"]) <= sig_a

    def test_false_positives_are_rare(self, simulate):
        false_pos = []
        for seed in range(5):
            data = simulate(seed=seed)
            result = _run(data)
            sig = result.significant(0.05)
            sig_a = set(sig.loc[sig["comparison"] == "condition_A", "feature"])
            assert set(data["shifted"]) <= sig_a
            false_pos.append(len(sig_a - set(data["shifted"])))
        assert np.mean(false_pos) <= 1

    def test_result_table(self, dataset):
        result = _run(dataset)
        table = result.results
        assert set(table["comparison"]) == {"condition_A", "condition_B"}
        assert len(table) == 2 * len(dataset["counts"])
        for column in ["feature", "log2FC", "se", "t", "df_total", "p_value", "q_value", "pi0"]:
            assert column in table.columns
        assert table["q_value"].between(0, 1).all()

    def test_input_not_modified(self, dataset):
        counts = dataset["counts"].copy()
        metadata = dataset["metadata"].copy()
        _run(dataset)
        pd.testing.assert_frame_equal(dataset["counts"], counts)
        pd.testing.assert_frame_equal(dataset["metadata"], metadata)


class TestExclusions:

    def test_missing_lengths_reported(self, dataset):
        data = dict(dataset, lengths=dataset["lengths"].drop(["K00050", "K00051"]))
        result = _run(data)
        assert result.exclusions["dropped_genes"] == 2
        assert "K00050" not in set(result.results["feature"])

    def test_strict_mode_raises(self, dataset):
        data = dict(dataset, lengths=dataset["lengths"].drop("K00050"))
        with pytest.raises(MissingReferenceDataError):
            _run(data, drop_missing=False)

    def test_missing_genome_equivalents_column(self, dataset):
        data = dict(dataset, metadata=dataset["metadata"].drop(columns="genome_equivalents"))
        with pytest.raises(MissingReferenceDataError):
            _run(data)

    def test_genome_equivalents_from_read_statistics(self, dataset):
        meta = dataset["metadata"]
        derived = meta.drop(columns="genome_equivalents").assign(
            reads=meta["genome_equivalents"] * 20000,
            mean_read_length=150,
            genome_size=3_000_000,
        )
        result = _run(dict(dataset, metadata=derived))
        expected = _run(dataset)
        assert "genome_equivalents" not in derived.columns
        pd.testing.assert_frame_equal(result.normalization.rpkg, expected.normalization.rpkg)
        assert result.normalization.dropped_samples == []

    def test_sample_without_metadata(self, dataset):
        data = dict(dataset, metadata=dataset["metadata"].drop("S04"))
        with pytest.raises(DataAlignmentError):
            _run(data)

    def test_metadata_order_irrelevant(self, dataset):
        shuffled = dict(dataset, metadata=dataset["metadata"].sample(frac=1, random_state=3))
        first = _run(dataset).results
        second = _run(shuffled).results
        pd.testing.assert_frame_equal(first, second)


class TestEnrichmentAndOutput:

    def test_enrichment_of_shifted_module(self, dataset):
        gene_sets = {
            "M_shift": dataset["shifted"] + ["K00090", "K00091", "K00092"],
            "M_other": [f"K{i:05d}" for i in range(40, 60)],
        }
        result = _run(dataset, gene_sets=gene_sets, set_descriptions={"M_shift": "shifted genes"})
        enr = result.enrichment["condition_A"]
        assert enr.iloc[0]["set_id"] == "M_shift"
        assert enr.iloc[0]["hits_in_set"] == 5
        assert enr.iloc[0]["description"] == "shifted genes"
        assert "p_adj" in enr.columns
        assert set(result.enrichment) == {"condition_A", "condition_B"}

    def test_output_files(self, dataset, tmp_path):
        gene_sets = {"M_shift": dataset["shifted"]}
        _run(dataset, output_dir=str(tmp_path), gene_sets=gene_sets, make_plots=True)
        for name in ["rpkg.tsv", "log_rpkg.tsv", "differential_abundance.csv",
                     "enrichment_condition_A.csv", "diff_abundance_summary.txt",
                     "volcano_condition_A.png"]:
            assert os.path.exists(tmp_path / name), name
        saved = pd.read_csv(tmp_path / "differential_abundance.csv")
        assert "q_value" in saved.columns
        summary = (tmp_path / "diff_abundance_summary.txt").read_text()
        assert "condition_A" in summary
