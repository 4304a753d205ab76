"""
Agent 1: Data Loading

Fetches the prepared dataset (once, into a local cache), wraps it in a
CountDataset and applies the low-count filter.

Input (one of):
- count_matrix.csv + metadata.csv in the input directory
- config["dataset_path"]: local .h5ad / .rds / count table
- config["dataset_url"]: downloaded into config["cache_dir"] if absent

Output:
- count_matrix.csv: Filtered raw counts (genes x samples)
- metadata.csv: Sample metadata aligned to the count columns
- library_sizes.csv: Total counts per sample
- meta_agent1_data.json: Execution metadata
"""

from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from ..dataset import CountDataset, fetch_dataset, load_dataset
from ..utils.base_agent import BaseAgent


class DataAgent(BaseAgent):
    """Agent for loading the dataset into a count container."""

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        default_config = {
            "dataset_url": None,
            "dataset_path": None,
            "dataset_filename": None,
            "cache_dir": str(Path.home() / ".rnaseq_de_cache"),
            "force_download": False,
            "counts_filename": "count_matrix.csv",
            "metadata_filename": "metadata.csv",
            "sample_column": "sample_id",
            "condition_column": "treatment",
            "design_factors": ["time", "treatment"],
            "contrast": ["DPN", "Control"],
            "min_count_filter": 10,
            "min_samples_filter": 1,
        }

        merged_config = {**default_config, **(config or {})}
        super().__init__("agent1_data", input_dir, output_dir, merged_config)

        self.dataset: Optional[CountDataset] = None
        self.source: Optional[str] = None

    def _load(self) -> CountDataset:
        """Locate and load the dataset."""
        counts_file = self.input_dir / self.config["counts_filename"]
        metadata_file = self.input_dir / self.config["metadata_filename"]
        sample_col = self.config["sample_column"]

        if counts_file.exists():
            self.source = str(counts_file)
            count_table = self.load_csv(self.config["counts_filename"])
            metadata_table = self.load_csv(self.config["metadata_filename"])
            return CountDataset.from_frames(count_table, metadata_table, sample_col)

        if self.config.get("dataset_path"):
            path = Path(self.config["dataset_path"])
            self.source = str(path)
            return load_dataset(
                path,
                metadata_path=metadata_file if metadata_file.exists() else None,
                sample_column=sample_col
            )

        if self.config.get("dataset_url"):
            path = fetch_dataset(
                self.config["dataset_url"],
                cache_dir=Path(self.config["cache_dir"]),
                filename=self.config.get("dataset_filename"),
                force=self.config.get("force_download", False)
            )
            self.source = self.config["dataset_url"]
            return load_dataset(
                path,
                metadata_path=metadata_file if metadata_file.exists() else None,
                sample_column=sample_col
            )

        raise FileNotFoundError(
            f"No dataset: {counts_file} not found and neither "
            "dataset_path nor dataset_url is configured"
        )

    def validate_inputs(self) -> bool:
        """Load the dataset and check the design against its metadata."""
        self.dataset = self._load()
        self.logger.info(f"Dataset: {self.dataset}")

        condition_col = self.config["condition_column"]
        if condition_col not in self.dataset.metadata.columns:
            self.logger.error(f"Condition column '{condition_col}' not in metadata")
            return False

        missing = [f for f in self.config["design_factors"] if f not in self.dataset.metadata.columns]
        if missing:
            self.logger.error(f"Design factors missing from metadata: {missing}")
            return False

        contrast = self.config["contrast"]
        if len(contrast) != 2:
            self.logger.error(f"Contrast must be [numerator, denominator], got {contrast}")
            return False

        levels = self.dataset.levels(condition_col)
        if not all(c in levels for c in contrast):
            self.logger.error(f"Contrast {contrast} not all in {condition_col} levels {levels}")
            return False

        self.logger.info(f"Conditions ({condition_col}): {levels}")
        return True

    def _log_sample_table(self, dataset: CountDataset) -> None:
        table = dataset.metadata.copy()
        table["library_size"] = dataset.library_sizes()
        self.logger.info("Sample table:\n" + table.to_string())

    def run(self) -> Dict[str, Any]:
        """Filter low counts and write the container to CSV."""
        n_genes_raw = self.dataset.n_genes

        filtered = self.dataset.filter_low_counts(
            min_count=self.config["min_count_filter"],
            min_samples=self.config["min_samples_filter"]
        )
        filtered = filtered.relevel(self.config["condition_column"], self.config["contrast"][1])

        filtered.to_csv(
            self.output_dir / "count_matrix.csv",
            self.output_dir / "metadata.csv"
        )
        self.written_files += ["count_matrix.csv", "metadata.csv"]
        self.logger.info(f"Saved count_matrix.csv: {filtered.n_genes} genes x {filtered.n_samples} samples")

        library_sizes = pd.DataFrame({
            "sample_id": filtered.samples,
            "library_size": filtered.library_sizes().to_numpy()
        })
        self.save_csv(library_sizes, "library_sizes.csv")
        self._log_sample_table(filtered)

        condition_col = self.config["condition_column"]
        group_sizes = filtered.metadata[condition_col].astype(str).value_counts().to_dict()

        return {
            "source": self.source,
            "n_genes_raw": n_genes_raw,
            "n_genes_filtered": filtered.n_genes,
            "n_samples": filtered.n_samples,
            "group_sizes": group_sizes,
            "reference_level": self.config["contrast"][1]
        }

    def validate_outputs(self) -> bool:
        """Validate written count matrix and metadata."""
        for filename in ["count_matrix.csv", "metadata.csv", "library_sizes.csv"]:
            if not (self.output_dir / filename).exists():
                self.logger.error(f"Missing output file: {filename}")
                return False

        # Round-trip through the container re-checks all invariants
        try:
            CountDataset.from_csv(
                self.output_dir / "count_matrix.csv",
                self.output_dir / "metadata.csv",
                sample_column=self.config["sample_column"]
            )
        except ValueError as e:
            self.logger.error(f"Written dataset is invalid: {e}")
            return False

        return True
