"""
Median-of-ratios helpers.
"""
import numpy as np
import pandas as pd
import pytest

from rnaseq_de.utils.normalization import (
    log2_transform,
    log_geometric_means,
    median_of_ratios,
    normalize_counts,
    relative_difference,
    top_variable_genes,
)


class TestMedianOfRatios:

    def test_proportional_samples(self, tiny_counts):
        # Non-zero genes are exactly 1:2:4 across samples
        sf = median_of_ratios(tiny_counts)

        assert sf.name == "size_factor"
        assert list(sf.index) == ["S1", "S2", "S3"]
        np.testing.assert_allclose(sf.to_numpy(), [0.5, 1.0, 2.0])
        # Geometric mean of size factors is 1
        assert np.exp(np.log(sf).mean()) == pytest.approx(1.0)

    def test_genes_with_zero_ignored(self, tiny_counts):
        log_means = log_geometric_means(tiny_counts)
        assert np.isneginf(log_means["g2"])
        assert np.isfinite(log_means.drop("g2")).all()

    def test_all_genes_with_zero(self):
        counts = pd.DataFrame({"S1": [0, 5], "S2": [3, 0]}, index=["g1", "g2"])
        with pytest.raises(ValueError, match="undefined"):
            median_of_ratios(counts)

    def test_normalized_counts_equalize_depth(self, tiny_counts):
        sf = median_of_ratios(tiny_counts)
        normalized = normalize_counts(tiny_counts, sf)

        np.testing.assert_allclose(normalized.loc["g1"].to_numpy(), [20.0, 20.0, 20.0])
        np.testing.assert_allclose(normalized.loc["g4"].to_numpy(), [200.0, 200.0, 200.0])

    def test_normalize_missing_size_factor(self, tiny_counts):
        sf = pd.Series([1.0, 1.0], index=["S1", "S2"])
        with pytest.raises(ValueError, match="S3"):
            normalize_counts(tiny_counts, sf)

    def test_simulated_depth_recovered(self, count_dataset):
        sf = median_of_ratios(count_dataset.counts)
        library_sizes = count_dataset.library_sizes()
        assert np.corrcoef(sf, library_sizes)[0, 1] > 0.7


def test_log2_transform():
    counts = pd.DataFrame({"S1": [0, 1, 3]})
    np.testing.assert_allclose(log2_transform(counts)["S1"].to_numpy(), [0.0, 1.0, 2.0])


def test_top_variable_genes():
    matrix = pd.DataFrame(
        {"S1": [1.0, 0.0, 5.0], "S2": [1.0, 10.0, 6.0]},
        index=["flat", "wide", "narrow"]
    )
    top = top_variable_genes(matrix, 2)
    assert list(top.index) == ["wide", "narrow"]


def test_relative_difference():
    a = pd.Series([1.0, 2.0], index=["x", "y"])
    b = pd.Series([2.0, 1.0], index=["y", "x"])
    assert relative_difference(a, b) == 0.0
