"""
Agent 3: Exploratory Analysis

Sample-level structure of the transformed expression matrix.

- PCA on the most variable genes, centred but not scaled (the DESeq2
  plotPCA convention)
- Euclidean sample-to-sample distances
- Hierarchical clustering of samples

Input:
- transformed_counts.csv: From Agent 2
- metadata.csv: From Agent 1

Output:
- pca_coordinates.csv: sample_id, PC1..PCk, metadata columns
- pca_variance.csv: component, variance_ratio
- sample_distances.csv: Square distance matrix
- sample_linkage.csv: scipy linkage matrix
- sample_clusters.csv: sample_id, cluster, leaf_order, condition
- top_variable_genes.csv: Row-centred expression of the most variable genes
- meta_agent3_exploration.json: Execution metadata
"""

from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, leaves_list, linkage
from scipy.spatial.distance import pdist, squareform
from sklearn.decomposition import PCA
from sklearn.metrics import adjusted_rand_score

from ..utils.base_agent import BaseAgent
from ..utils.normalization import top_variable_genes


class ExplorationAgent(BaseAgent):
    """Agent for PCA and sample clustering."""

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        default_config = {
            "ntop_pca": 500,
            "n_pca_components": 2,
            "random_seed": 42,
            "n_clusters": None,
            "cluster_method": "complete",
            "distance_metric": "euclidean",
            "top_variable_heatmap": 20,
            "condition_column": "treatment",
            "sample_column": "sample_id",
        }

        merged_config = {**default_config, **(config or {})}
        super().__init__("agent3_exploration", input_dir, output_dir, merged_config)

        self.transformed: Optional[pd.DataFrame] = None
        self.metadata: Optional[pd.DataFrame] = None

    def validate_inputs(self) -> bool:
        """Load transformed matrix and metadata."""
        self.transformed = self.load_csv("transformed_counts.csv", index_col=0)
        metadata = self.load_csv("metadata.csv")

        sample_col = self.config["sample_column"]
        if sample_col not in metadata.columns:
            sample_col = metadata.columns[0]
        self.metadata = metadata.set_index(sample_col)
        self.metadata.index = self.metadata.index.astype(str)
        self.transformed.columns = self.transformed.columns.astype(str)

        missing = set(self.transformed.columns) - set(self.metadata.index)
        if missing:
            self.logger.error(f"Samples missing from metadata: {sorted(missing)}")
            return False
        self.metadata = self.metadata.loc[self.transformed.columns]

        if self.transformed.shape[1] < 3:
            self.logger.error("Exploratory analysis needs at least 3 samples")
            return False

        if self.config["condition_column"] not in self.metadata.columns:
            self.logger.error(f"Condition column '{self.config['condition_column']}' not in metadata")
            return False

        return True

    def _run_pca(self) -> Dict[str, Any]:
        """PCA of samples on the top variable genes."""
        ntop = min(self.config["ntop_pca"], len(self.transformed))
        top = top_variable_genes(self.transformed, ntop)
        data = top.T  # samples x genes

        n_components = min(data.shape)
        pca = PCA(n_components=n_components, random_state=self.config["random_seed"])
        coords = pca.fit_transform(data.to_numpy())

        n_keep = min(self.config["n_pca_components"], n_components)
        pc_names = [f"PC{i + 1}" for i in range(n_keep)]
        coordinates = pd.DataFrame(coords[:, :n_keep], index=data.index, columns=pc_names)
        coordinates.index.name = "sample_id"
        coordinates = coordinates.join(self.metadata)
        self.save_csv(coordinates.reset_index(), "pca_coordinates.csv")

        variance = pd.DataFrame({
            "component": [f"PC{i + 1}" for i in range(n_components)],
            "variance_ratio": pca.explained_variance_ratio_
        })
        self.save_csv(variance, "pca_variance.csv")

        ratios = [float(r) * 100 for r in pca.explained_variance_ratio_[:2]]
        pc1 = ratios[0]
        pc2 = ratios[1] if len(ratios) > 1 else None
        if pc2 is None:
            self.logger.warning(f"Only one principal component from top {ntop} genes")
        self.logger.info(f"PCA on top {ntop} genes: PC1 {pc1:.1f}%"
                         + (f", PC2 {pc2:.1f}%" if pc2 is not None else ""))
        return {"ntop_genes": ntop, "n_components": n_keep, "pc1_variance": pc1, "pc2_variance": pc2}

    def _run_clustering(self) -> Dict[str, Any]:
        """Sample distances and hierarchical clustering."""
        data = self.transformed.T  # samples x genes
        condensed = pdist(data.to_numpy(), metric=self.config["distance_metric"])

        distances = pd.DataFrame(squareform(condensed), index=data.index, columns=data.index)
        distances.index.name = "sample_id"
        self.save_csv(distances.reset_index(), "sample_distances.csv")

        method = self.config["cluster_method"]
        Z = linkage(condensed, method=method)
        linkage_df = pd.DataFrame(Z, columns=["left", "right", "distance", "size"])
        self.save_csv(linkage_df, "sample_linkage.csv")

        condition = self.metadata[self.config["condition_column"]].astype(str)
        n_clusters = self.config["n_clusters"] or condition.nunique()
        n_clusters = int(min(n_clusters, len(data)))
        labels = fcluster(Z, t=n_clusters, criterion="maxclust")

        order = leaves_list(Z)
        leaf_position = np.empty(len(order), dtype=int)
        leaf_position[order] = np.arange(len(order))

        clusters = pd.DataFrame({
            "sample_id": data.index,
            "cluster": labels,
            "leaf_order": leaf_position,
            "condition": condition.to_numpy()
        })
        self.save_csv(clusters, "sample_clusters.csv")

        ari = float(adjusted_rand_score(condition.to_numpy(), labels))
        crosstab = pd.crosstab(clusters["cluster"], clusters["condition"])
        self.logger.info(f"Clusters ({method}, k={n_clusters}) vs condition:\n{crosstab.to_string()}")
        self.logger.info(f"Adjusted Rand index vs condition: {ari:.3f}")

        return {
            "cluster_method": method,
            "n_clusters": n_clusters,
            "adjusted_rand_index": ari,
            "max_sample_distance": float(distances.to_numpy().max())
        }

    def _save_top_variable(self) -> int:
        n = min(self.config["top_variable_heatmap"], len(self.transformed))
        top = top_variable_genes(self.transformed, n)
        centred = top.sub(top.mean(axis=1), axis=0)
        centred.index.name = "gene_id"
        self.save_csv(centred.reset_index(), "top_variable_genes.csv")
        return n

    def run(self) -> Dict[str, Any]:
        """Run PCA and clustering."""
        pca_stats = self._run_pca()
        cluster_stats = self._run_clustering()
        n_top = self._save_top_variable()

        return {
            **pca_stats,
            **cluster_stats,
            "top_variable_genes": n_top,
            "n_samples": self.transformed.shape[1]
        }

    def validate_outputs(self) -> bool:
        """Validate exploration outputs."""
        required_files = [
            "pca_coordinates.csv",
            "pca_variance.csv",
            "sample_distances.csv",
            "sample_linkage.csv",
            "sample_clusters.csv",
            "top_variable_genes.csv"
        ]
        for filename in required_files:
            if not (self.output_dir / filename).exists():
                self.logger.error(f"Missing output file: {filename}")
                return False

        distances = pd.read_csv(self.output_dir / "sample_distances.csv", index_col=0).to_numpy()
        if not np.allclose(distances, distances.T) or not np.allclose(np.diag(distances), 0):
            self.logger.error("Sample distance matrix is not symmetric with zero diagonal")
            return False

        return True
