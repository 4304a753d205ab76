"""Synthetic parathyroid-style dataset for demos and tests."""

import json
from pathlib import Path
from typing import Dict

import numpy as np
import pandas as pd

TREATMENTS = ["Control", "DPN", "OHT"]
TIMES = ["24h", "48h"]


def simulate_counts(
    n_genes: int = 1000,
    n_patients: int = 4,
    seed: int = 42,
    dispersion: float = 0.1,
    de_fraction: float = 0.05
) -> Dict[str, pd.DataFrame]:
    """Negative-binomial counts for a treatment x time x patient design.

    The first `de_fraction` of genes is 4x up under DPN, the next block 4x
    down; a smaller block responds to OHT and another to time.
    """
    rng = np.random.default_rng(seed)

    rows = []
    for patient in range(1, n_patients + 1):
        for treatment in TREATMENTS:
            for time in TIMES:
                rows.append({
                    "sample_id": f"P{patient}_{treatment}_{time}",
                    "patient": f"P{patient}",
                    "treatment": treatment,
                    "time": time,
                })
    metadata = pd.DataFrame(rows)
    n_samples = len(metadata)

    gene_ids = [f"ENSG{i:011d}" for i in range(1, n_genes + 1)]

    # Baseline expression and per-sample sequencing depth
    base_mean = rng.lognormal(mean=5.0, sigma=1.5, size=n_genes)
    depth = rng.uniform(0.6, 1.6, size=n_samples)

    fold = np.ones((n_genes, n_samples))
    n_de = max(1, int(n_genes * de_fraction))
    is_dpn = (metadata["treatment"] == "DPN").to_numpy()
    is_oht = (metadata["treatment"] == "OHT").to_numpy()
    is_late = (metadata["time"] == "48h").to_numpy()

    fold[:n_de, is_dpn] *= 4.0
    fold[n_de:2 * n_de, is_dpn] *= 0.25
    fold[2 * n_de:2 * n_de + n_de // 2, is_oht] *= 3.0
    fold[3 * n_de:4 * n_de, is_late] *= 2.0

    mu = base_mean[:, None] * depth[None, :] * fold
    size = 1.0 / dispersion
    counts = rng.negative_binomial(size, size / (size + mu))

    count_df = pd.DataFrame(counts, index=gene_ids, columns=metadata["sample_id"])
    count_df.index.name = "gene_id"
    count_df.columns.name = None
    return {"counts": count_df, "metadata": metadata}


def create_sample_data(
    output_dir: Path,
    n_genes: int = 1000,
    n_patients: int = 4,
    seed: int = 42
) -> Dict[str, Path]:
    """Write count_matrix.csv, metadata.csv and config.json to output_dir."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    simulated = simulate_counts(n_genes=n_genes, n_patients=n_patients, seed=seed)

    counts_path = output_dir / "count_matrix.csv"
    metadata_path = output_dir / "metadata.csv"
    config_path = output_dir / "config.json"

    simulated["counts"].reset_index().to_csv(counts_path, index=False)
    simulated["metadata"].to_csv(metadata_path, index=False)

    config = {
        "condition_column": "treatment",
        "design_factors": ["time", "treatment"],
        "contrast": ["DPN", "Control"],
        "padj_cutoff": 0.05,
        "log2fc_cutoff": 1.0,
        "random_seed": seed
    }
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)

    n_samples = len(simulated["metadata"])
    print(f"Sample data created in {output_dir}")
    print(f"  - count_matrix.csv: {n_genes} genes x {n_samples} samples")
    print(f"  - metadata.csv: {n_samples} samples (treatment x time x patient)")
    print(f"  - config.json: analysis configuration")

    return {"counts": counts_path, "metadata": metadata_path, "config": config_path}
