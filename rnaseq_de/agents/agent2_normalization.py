"""
Agent 2: Normalization

Corrects for sequencing depth with median-of-ratios size factors and
produces a variance-stabilized matrix for exploratory analysis.

Size factors are computed twice: by the DESeq2 engine and step by step
(geometric means -> ratios -> per-sample median) so the two can be compared.

Input:
- count_matrix.csv, metadata.csv: From Agent 1

Output:
- size_factors.csv: sample_id, library_size, size_factor, size_factor_manual
- normalized_counts.csv: Counts divided by size factors
- transformed_counts.csv: VST / rlog / log2 expression matrix
- meta_agent2_normalization.json: Execution metadata
"""

from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from ..deseq import get_backend
from ..utils.base_agent import BaseAgent
from ..utils.normalization import median_of_ratios, normalize_counts, relative_difference


class NormalizationAgent(BaseAgent):
    """Agent for size factor estimation and variance-stabilizing transformation."""

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        default_config = {
            "backend": "pydeseq2",
            "transform": "vst",
            "blind_transform": True,
            "design_factors": ["time", "treatment"],
            "condition_column": "treatment",
            "contrast": ["DPN", "Control"],
            "size_factor_tolerance": 1e-6,
        }

        merged_config = {**default_config, **(config or {})}
        super().__init__("agent2_normalization", input_dir, output_dir, merged_config)

        self.dataset = None

    def validate_inputs(self) -> bool:
        """Load the count container."""
        self.dataset = self.load_count_dataset()
        self.logger.info(f"Dataset: {self.dataset}")

        if self.dataset.n_samples < 2:
            self.logger.error("Normalization needs at least 2 samples")
            return False
        return True

    def _to_table(self, matrix: pd.DataFrame) -> pd.DataFrame:
        table = matrix.copy()
        table.index.name = "gene_id"
        return table.reset_index()

    def run(self) -> Dict[str, Any]:
        """Estimate size factors, normalize and transform."""
        backend = get_backend(self.config["backend"], self.config)
        design_factors = self.config["design_factors"]

        self.logger.info(f"Estimating size factors ({backend.name})...")
        engine_sf = backend.size_factors(self.dataset, design_factors)

        self.logger.info("Computing median-of-ratios size factors by hand...")
        manual_sf = median_of_ratios(self.dataset.counts)
        max_diff = relative_difference(manual_sf, engine_sf)
        self.logger.info(f"Max relative difference engine vs manual: {max_diff:.2e}")
        if max_diff > self.config["size_factor_tolerance"]:
            self.logger.warning(
                f"Size factors differ by more than {self.config['size_factor_tolerance']:g}"
            )

        library_sizes = self.dataset.library_sizes()
        size_table = pd.DataFrame({
            "sample_id": self.dataset.samples,
            "library_size": library_sizes.to_numpy(),
            "size_factor": engine_sf.to_numpy(),
            "size_factor_manual": manual_sf.reindex(engine_sf.index).to_numpy(),
        })
        self.save_csv(size_table, "size_factors.csv")
        self.logger.info("Size factors:\n" + size_table.to_string(index=False))

        normalized = normalize_counts(self.dataset.counts, engine_sf)
        self.save_csv(self._to_table(normalized), "normalized_counts.csv")

        method = self.config["transform"]
        self.logger.info(f"Applying {method} transformation (blind={self.config['blind_transform']})...")
        transformed = backend.transform(
            self.dataset,
            method=method,
            blind=self.config["blind_transform"],
            design_factors=design_factors
        )
        if transformed.method_used != method:
            self.logger.warning(f"Requested {method}, used {transformed.method_used}")
        self.save_csv(self._to_table(transformed.matrix), "transformed_counts.csv")

        # Depth correlation before/after normalization, as a sanity check
        corr_sf_depth = float(np.corrcoef(engine_sf.to_numpy(), library_sizes.to_numpy())[0, 1])

        return {
            "backend": backend.name,
            "transform_requested": method,
            "transform_used": transformed.method_used,
            "blind": transformed.blind,
            "size_factor_range": [float(engine_sf.min()), float(engine_sf.max())],
            "size_factor_max_relative_diff": max_diff,
            "size_factor_library_size_correlation": corr_sf_depth,
            "n_genes": self.dataset.n_genes,
            "n_samples": self.dataset.n_samples
        }

    def validate_outputs(self) -> bool:
        """Validate normalization outputs."""
        for filename in ["size_factors.csv", "normalized_counts.csv", "transformed_counts.csv"]:
            if not (self.output_dir / filename).exists():
                self.logger.error(f"Missing output file: {filename}")
                return False

        size_table = pd.read_csv(self.output_dir / "size_factors.csv")
        if (size_table["size_factor"] <= 0).any() or size_table["size_factor"].isna().any():
            self.logger.error("Size factors must be positive")
            return False

        transformed = pd.read_csv(self.output_dir / "transformed_counts.csv", index_col=0)
        if not np.isfinite(transformed.to_numpy(dtype=float)).all():
            self.logger.error("Transformed matrix contains non-finite values")
            return False

        return True
