"""
Median-of-ratios normalization, computed by hand.

The engine (PyDESeq2 / DESeq2) estimates size factors itself; these helpers
reproduce the calculation step by step so that the normalization agent can
show and cross-check it.
"""

import numpy as np
import pandas as pd


def log_geometric_means(counts: pd.DataFrame) -> pd.Series:
    """Per-gene mean of log counts (genes x samples).

    Genes with a zero in any sample get -inf.
    """
    with np.errstate(divide="ignore"):
        log_counts = np.log(counts.astype(float))
    return log_counts.mean(axis=1)


def median_of_ratios(counts: pd.DataFrame) -> pd.Series:
    """Size factor per sample: median ratio of counts to the gene geometric mean.

    Only genes with non-zero counts in every sample take part.
    """
    log_means = log_geometric_means(counts)
    usable = np.isfinite(log_means)
    if not usable.any():
        raise ValueError(
            "Every gene has at least one zero count; "
            "median-of-ratios size factors are undefined"
        )

    log_counts = np.log(counts.loc[usable].astype(float))
    log_ratios = log_counts.sub(log_means[usable], axis=0)
    size_factors = np.exp(log_ratios.median(axis=0))
    size_factors.name = "size_factor"
    return size_factors


def normalize_counts(counts: pd.DataFrame, size_factors: pd.Series) -> pd.DataFrame:
    """Divide each sample column by its size factor."""
    missing = set(counts.columns) - set(size_factors.index)
    if missing:
        raise ValueError(f"No size factor for samples: {sorted(missing)}")
    return counts.div(size_factors[counts.columns], axis=1)


def log2_transform(counts: pd.DataFrame, pseudocount: float = 1.0) -> pd.DataFrame:
    """log2(x + pseudocount)."""
    return np.log2(counts + pseudocount)


def top_variable_genes(matrix: pd.DataFrame, n: int) -> pd.DataFrame:
    """Rows of a genes x samples matrix with the highest variance."""
    variances = matrix.var(axis=1)
    top = variances.sort_values(ascending=False).index[:n]
    return matrix.loc[top]


def relative_difference(a: pd.Series, b: pd.Series) -> float:
    """Largest relative difference between two aligned series."""
    b = b.reindex(a.index)
    return float((np.abs(a - b) / np.abs(b)).max())
