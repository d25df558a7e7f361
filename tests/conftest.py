"""Shared fixtures: small synthetic functional-gene datasets."""

import numpy as np
import pandas as pd
import pytest

LEVELS = ["healthy", "condition_A", "condition_B"]


def _simulate_dataset(
    n_genes=100,
    n_per_group=3,
    n_shifted=5,
    shift=4.0,
    noise=0.5,
    seed=0,
    heteroskedastic=False,
):
    """
    Counts whose log2-RPKG is base + noise, with the first ``n_shifted``
    genes raised by ``shift`` in condition_A.
    """
    rng = np.random.default_rng(seed)
    groups = [lv for lv in LEVELS for _ in range(n_per_group)]
    samples = [f"S{i:02d}" for i in range(len(groups))]
    genes = [f"K{i:05d}" for i in range(n_genes)]

    base = rng.uniform(6, 10, size=n_genes)
    if heteroskedastic:
        sd = 2.5 / np.sqrt(base - 5)[:, None]
    else:
        sd = noise
    log_rpkg = base[:, None] + rng.normal(0, 1, size=(n_genes, len(samples))) * sd

    a_cols = [i for i, g in enumerate(groups) if g == "condition_A"]
    log_rpkg[np.ix_(range(n_shifted), a_cols)] += shift

    lengths = pd.Series(rng.integers(100, 800, size=n_genes), index=genes, dtype=float)
    genome_eq = rng.uniform(2, 8, size=len(samples))
    counts = np.round(2 ** log_rpkg * (lengths.to_numpy()[:, None] * 3 / 1000) * genome_eq[None, :])

    counts_df = pd.DataFrame(counts, index=genes, columns=samples)
    metadata = pd.DataFrame(
        {"Group": groups, "genome_equivalents": genome_eq},
        index=pd.Index(samples, name="SampleID"),
    )
    return {
        "counts": counts_df,
        "metadata": metadata,
        "lengths": lengths,
        "shifted": genes[:n_shifted],
        "log_rpkg": pd.DataFrame(log_rpkg, index=genes, columns=samples),
    }


@pytest.fixture
def simulate():
    return _simulate_dataset


@pytest.fixture
def dataset():
    return _simulate_dataset()


@pytest.fixture
def small_counts():
    counts = pd.DataFrame(
        {
            "S1": [300, 0, 12, 40],
            "S2": [150, 6, 0, 80],
            "S3": [90, 3, 9, 20],
        },
        index=["K00001", "K00002", "K00003", "K00004"],
        dtype=float,
    )
    lengths = pd.Series({"K00001": 100, "K00002": 250, "K00003": 400, "K00004": 50}, dtype=float)
    genome_eq = pd.Series({"S1": 2.0, "S2": 1.0, "S3": 3.0})
    return counts, lengths, genome_eq


@pytest.fixture
def metadata_three_groups():
    return pd.DataFrame(
        {"Group": ["healthy", "healthy", "condition_A", "condition_A", "condition_B", "condition_B"]},
        index=pd.Index(["S1", "S2", "S3", "S4", "S5", "S6"], name="SampleID"),
    )
