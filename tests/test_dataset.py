"""
Count container, readers and simulated data.
"""
import pandas as pd
import pytest

from rnaseq_de.dataset import CountDataset, create_sample_data, load_dataset, simulate_counts


class TestCountDataset:

    def test_construction(self, tiny_counts, tiny_metadata):
        ds = CountDataset(tiny_counts, tiny_metadata)

        assert ds.n_genes == 4
        assert ds.n_samples == 3
        assert ds.samples == ["S1", "S2", "S3"]
        assert ds.counts.index.name == "gene_id"
        assert ds.metadata.index.name == "sample_id"
        assert ds.counts.dtypes.unique().tolist() == ["int64"]
        assert ds.library_sizes().tolist() == [115, 233, 461]

    def test_metadata_reordered_and_extra_dropped(self, tiny_counts, tiny_metadata):
        metadata = tiny_metadata.iloc[::-1].copy()
        metadata.loc["S9"] = ["A", "z"]

        ds = CountDataset(tiny_counts, metadata)

        assert list(ds.metadata.index) == ["S1", "S2", "S3"]

    def test_missing_metadata_sample(self, tiny_counts, tiny_metadata):
        with pytest.raises(ValueError, match="missing from metadata"):
            CountDataset(tiny_counts, tiny_metadata.drop("S2"))

    @pytest.mark.parametrize("value, message", [
        (-1, "negative"),
        (2.5, "non-integer"),
        (float("nan"), "missing"),
    ])
    def test_invalid_counts(self, tiny_counts, tiny_metadata, value, message):
        counts = tiny_counts.astype(float)
        counts.iloc[0, 0] = value
        with pytest.raises(ValueError, match=message):
            CountDataset(counts, tiny_metadata)

    def test_duplicate_genes(self, tiny_counts, tiny_metadata):
        counts = tiny_counts.copy()
        counts.index = ["g1", "g1", "g3", "g4"]
        with pytest.raises(ValueError, match="Duplicate gene"):
            CountDataset(counts, tiny_metadata)

    def test_empty(self, tiny_metadata):
        with pytest.raises(ValueError, match="empty"):
            CountDataset(pd.DataFrame(), tiny_metadata)

    def test_filter_low_counts(self, tiny_counts, tiny_metadata):
        ds = CountDataset(tiny_counts, tiny_metadata)

        filtered = ds.filter_low_counts(min_count=10, min_samples=3)

        assert list(filtered.counts.index) == ["g1", "g3", "g4"]
        with pytest.raises(ValueError):
            ds.filter_low_counts(min_count=10_000)

    def test_levels_and_relevel(self, tiny_counts, tiny_metadata):
        ds = CountDataset(tiny_counts, tiny_metadata)
        assert ds.levels("condition") == ["A", "B"]

        releveled = ds.relevel("condition", "B")

        assert releveled.levels("condition") == ["B", "A"]
        with pytest.raises(ValueError):
            ds.relevel("condition", "C")
        with pytest.raises(ValueError):
            ds.levels("unknown")

    def test_design_metadata(self, tiny_counts, tiny_metadata):
        ds = CountDataset(tiny_counts, tiny_metadata)

        design = ds.design_metadata(["batch", "condition"])

        assert list(design.columns) == ["batch", "condition"]
        assert isinstance(design["condition"].dtype, pd.CategoricalDtype)
        with pytest.raises(ValueError, match="not in metadata"):
            ds.design_metadata(["time"])

    def test_design_metadata_single_level(self, tiny_counts, tiny_metadata):
        metadata = tiny_metadata.assign(batch="x")
        ds = CountDataset(tiny_counts, metadata)
        with pytest.raises(ValueError, match="single level"):
            ds.design_metadata(["batch"])

    def test_subset_samples(self, tiny_counts, tiny_metadata):
        ds = CountDataset(tiny_counts, tiny_metadata).subset_samples(["S3", "S1"])
        assert ds.samples == ["S3", "S1"]
        assert list(ds.metadata.index) == ["S3", "S1"]

    def test_csv_round_trip(self, tmp_path, count_dataset):
        paths = count_dataset.to_csv(tmp_path / "counts.csv", tmp_path / "meta.csv")

        loaded = CountDataset.from_csv(paths["counts"], paths["metadata"], sample_column="sample_id")

        pd.testing.assert_frame_equal(loaded.counts, count_dataset.counts)
        assert list(loaded.metadata.columns) == ["patient", "treatment", "time"]

    def test_anndata_round_trip(self, count_dataset):
        adata = count_dataset.to_anndata()
        assert adata.shape == (count_dataset.n_samples, count_dataset.n_genes)

        back = CountDataset.from_anndata(adata)
        pd.testing.assert_frame_equal(back.counts, count_dataset.counts)


class TestReaders:

    def test_load_tsv_with_metadata(self, tmp_path, count_dataset):
        counts_path = tmp_path / "counts.tsv"
        count_dataset.counts.reset_index().to_csv(counts_path, sep="\t", index=False)
        count_dataset.metadata.reset_index().to_csv(tmp_path / "metadata.csv", index=False)

        ds = load_dataset(counts_path)

        assert ds.n_genes == count_dataset.n_genes
        assert ds.samples == count_dataset.samples

    def test_load_h5ad(self, tmp_path, count_dataset):
        path = tmp_path / "dataset.h5ad"
        count_dataset.to_anndata().write_h5ad(path)

        ds = load_dataset(path)

        assert ds.n_samples == count_dataset.n_samples
        assert "treatment" in ds.metadata.columns

    def test_missing_metadata(self, tmp_path, count_dataset):
        counts_path = tmp_path / "counts.csv"
        count_dataset.counts.reset_index().to_csv(counts_path, index=False)
        with pytest.raises(FileNotFoundError, match="Metadata"):
            load_dataset(counts_path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_dataset(tmp_path / "nope.h5ad")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "dataset.xlsx"
        path.write_bytes(b"")
        with pytest.raises(ValueError, match="Unsupported"):
            load_dataset(path)


class TestSampleData:

    def test_simulate_design(self):
        sim = simulate_counts(n_genes=50, n_patients=3, seed=1)

        assert sim["counts"].shape == (50, 18)
        assert list(sim["metadata"].columns) == ["sample_id", "patient", "treatment", "time"]
        assert sim["metadata"].groupby(["treatment", "time"]).size().eq(3).all()
        assert (sim["counts"].to_numpy() >= 0).all()

    def test_simulate_reproducible(self):
        a = simulate_counts(n_genes=20, seed=3)["counts"]
        b = simulate_counts(n_genes=20, seed=3)["counts"]
        pd.testing.assert_frame_equal(a, b)

    def test_create_sample_data(self, tmp_path):
        paths = create_sample_data(tmp_path, n_genes=40, n_patients=2)

        assert all(p.exists() for p in paths.values())
        ds = CountDataset.from_csv(paths["counts"], paths["metadata"], sample_column="sample_id")
        assert ds.n_samples == 12
        assert ds.n_genes == 40
