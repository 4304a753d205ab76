"""
DESeq2 engine adapters.
"""
import logging
from types import SimpleNamespace
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from rnaseq_de.deseq import PyDESeq2Backend, find_coefficient, get_backend
from rnaseq_de.deseq.backends import RESULT_COLUMNS, _standardize_results
from rnaseq_de.utils.normalization import median_of_ratios

from conftest import requires_r

pytestmark = pytest.mark.filterwarnings("ignore::DeprecationWarning")

DESIGN = ["time", "treatment"]


@pytest.fixture
def filtered(count_dataset):
    return count_dataset.filter_low_counts(min_count=10)


class TestHelpers:

    @pytest.mark.parametrize("coefficients, expected", [
        (["Intercept", "time[T.48h]", "treatment[T.DPN]", "treatment[T.OHT]"], "treatment[T.DPN]"),
        (["Intercept", "time_48h_vs_24h", "treatment_DPN_vs_Control"], "treatment_DPN_vs_Control"),
        (["Intercept", "time_48h_vs_24h"], None),
    ])
    def test_find_coefficient(self, coefficients, expected):
        assert find_coefficient(coefficients, "treatment", "DPN") == expected

    def test_get_backend(self):
        assert isinstance(get_backend("pydeseq2", {"n_cpus": 1}), PyDESeq2Backend)
        with pytest.raises(ValueError, match="Unknown backend"):
            get_backend("edger")

    def test_standardize_results(self):
        raw = pd.DataFrame(
            {"baseMean": [10.0], "log2FoldChange": [2.0], "lfcSE": [0.5],
             "pvalue": [0.01], "padj": [0.02]},
            index=["g1"]
        )
        df = _standardize_results(raw)
        assert list(df.columns) == RESULT_COLUMNS
        assert df.loc[0, "gene_id"] == "g1"
        assert df.loc[0, "stat"] == pytest.approx(4.0)


class TestPyDESeq2Backend:

    def test_size_factors_match_manual(self, filtered):
        backend = PyDESeq2Backend()

        engine = backend.size_factors(filtered, DESIGN)
        manual = median_of_ratios(filtered.counts)

        assert list(engine.index) == filtered.samples
        np.testing.assert_allclose(engine.to_numpy(), manual[engine.index].to_numpy(), rtol=1e-6)

    def test_vst(self, filtered):
        result = PyDESeq2Backend().transform(filtered, "vst", blind=True, design_factors=DESIGN)

        assert result.method_used == "vst"
        assert result.matrix.shape == filtered.counts.shape
        assert np.isfinite(result.matrix.to_numpy()).all()

    def test_rlog_served_by_vst(self, filtered):
        result = PyDESeq2Backend().transform(filtered, "rlog", design_factors=DESIGN)
        assert result.method_requested == "rlog"
        assert result.method_used == "vst"

    def test_log2(self, filtered):
        result = PyDESeq2Backend().transform(filtered, "log2", design_factors=DESIGN)
        assert result.method_used == "log2"
        assert (result.matrix.to_numpy() >= 0).all()

    def test_unknown_transform(self, filtered):
        with pytest.raises(ValueError, match="Unknown transform"):
            PyDESeq2Backend().transform(filtered, "tpm")

    def test_contrast_validation(self, filtered):
        backend = PyDESeq2Backend()
        with pytest.raises(ValueError, match="not in the design"):
            backend.differential_expression(filtered, ["time"], "treatment", "DPN", "Control")
        with pytest.raises(ValueError, match="not found"):
            backend.differential_expression(filtered, DESIGN, "treatment", "E2", "Control")

    def test_differential_expression(self, filtered):
        result = PyDESeq2Backend().differential_expression(
            filtered, DESIGN, "treatment", "DPN", "Control", shrink=True
        )
        res = result.results.set_index("gene_id")

        assert list(result.results.columns[:len(RESULT_COLUMNS)]) == RESULT_COLUMNS
        assert len(res) == filtered.n_genes
        assert result.normalized_counts.shape == filtered.counts.shape
        assert list(result.dispersions.columns) == ["gene_id", "baseMean", "genewise", "fitted", "final"]
        assert (result.size_factors > 0).all()
        assert result.method == "PyDESeq2"
        assert result.dispersions[["genewise", "fitted", "final"]].notna().any().all()

        # The first 15 simulated genes are 4x up under DPN
        up = [g for g in simulated_block(0, 15) if g in res.index]
        called = res.loc[up]
        assert (called["padj"] < 0.05).mean() > 0.5
        assert (called.loc[called["padj"] < 0.05, "log2FC"] > 0).all()

        # Genes 15-29 are 4x down
        down = [g for g in simulated_block(15, 30) if g in res.index]
        called = res.loc[down]
        assert (called.loc[called["padj"] < 0.05, "log2FC"] < 0).all()

    def test_shrinkage_pulls_towards_zero(self, filtered):
        result = PyDESeq2Backend().differential_expression(
            filtered, DESIGN, "treatment", "DPN", "Control", shrink=True
        )
        assert result.shrinkage_applied
        assert result.shrinkage_coefficient == "treatment[T.DPN]"

        res = result.results.dropna(subset=["log2FC", "log2FC_mle"])
        assert (res["log2FC"].abs() <= res["log2FC_mle"].abs() + 1e-6).mean() > 0.9

    def test_unmatched_coefficient_keeps_mle(self, filtered, caplog):
        with patch("rnaseq_de.deseq.backends.find_coefficient", return_value=None):
            with caplog.at_level(logging.WARNING, logger="rnaseq_de.deseq.backends"):
                result = PyDESeq2Backend().differential_expression(
                    filtered, DESIGN, "treatment", "DPN", "Control", shrink=True
                )

        assert not result.shrinkage_applied
        assert result.shrinkage_coefficient is None
        assert "log2FC_mle" not in result.results.columns
        assert "using unshrunk LFC" in caplog.text

    def test_dispersions_read_from_var_or_varm(self):
        var = pd.DataFrame({"dispersions": [0.1, 0.2]})
        dds = SimpleNamespace(var=var, varm={"genewise_dispersions": np.array([0.3, 0.4])})

        np.testing.assert_allclose(PyDESeq2Backend._gene_values_of(dds, "dispersions"), [0.1, 0.2])
        np.testing.assert_allclose(PyDESeq2Backend._gene_values_of(dds, "genewise_dispersions"), [0.3, 0.4])


def simulated_block(start, stop):
    return [f"ENSG{i:011d}" for i in range(start + 1, stop + 1)]


@requires_r
class TestRDESeq2Backend:

    def test_size_factors_match_manual(self, filtered):
        from rnaseq_de.deseq import RDESeq2Backend

        try:
            backend = RDESeq2Backend()
        except Exception as e:
            pytest.skip(f"DESeq2 not available: {e}")

        engine = backend.size_factors(filtered, DESIGN)
        manual = median_of_ratios(filtered.counts)
        np.testing.assert_allclose(engine.to_numpy(), manual[engine.index].to_numpy(), rtol=1e-6)
