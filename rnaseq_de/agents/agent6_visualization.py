"""
Agent 6: Visualization

Generates the figures of the analysis.

Input (all optional, missing ones skip a figure):
- size_factors.csv: From Agent 2
- normalized_counts.csv, metadata.csv: From Agents 1-2
- pca_coordinates.csv, pca_variance.csv: From Agent 3
- sample_distances.csv, sample_linkage.csv, top_variable_genes.csv: From Agent 3
- deg_all_results.csv, deg_significant.csv, dispersions.csv: From Agent 4
- deg_annotated.csv: From Agent 5

Output:
- figures/size_factors.png
- figures/pca_plot.png
- figures/sample_distance_heatmap.png
- figures/sample_dendrogram.png
- figures/top_variable_heatmap.png
- figures/ma_plot.png
- figures/volcano_plot.png
- figures/dispersion_plot.png
- figures/top_gene_counts.png
- meta_agent6_visualization.json
"""

import numpy as np
import pandas as pd
from pathlib import Path
from typing import Any, Dict, List, Optional

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import seaborn as sns
from scipy.cluster.hierarchy import dendrogram

from ..utils.base_agent import BaseAgent


class VisualizationAgent(BaseAgent):
    """Agent for generating analysis figures."""

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        default_config = {
            "figure_format": ["png"],
            "dpi": 150,
            "style": "whitegrid",
            "color_palette": "RdBu_r",
            "figsize": {
                "size_factors": (7, 6),
                "pca": (9, 7),
                "distance": (9, 8),
                "dendrogram": (10, 5),
                "heatmap": (10, 8),
                "ma": (9, 7),
                "volcano": (9, 7),
                "dispersion": (9, 7),
                "counts": (7, 6)
            },
            "condition_column": "treatment",
            "pca_style_column": "time",
            "padj_cutoff": 0.05,
            "log2fc_cutoff": 1.0,
            "label_top_genes": 10
        }

        merged_config = {**default_config, **(config or {})}
        super().__init__("agent6_visualization", input_dir, output_dir, merged_config)

        # Create figures subdirectory
        self.figures_dir = self.output_dir / "figures"
        self.figures_dir.mkdir(exist_ok=True)

        sns.set_style(self.config["style"])
        plt.rcParams['font.size'] = 11
        plt.rcParams['axes.labelsize'] = 12
        plt.rcParams['axes.titlesize'] = 14

    def validate_inputs(self) -> bool:
        """Validate input files."""
        self.size_factors = self.load_csv("size_factors.csv", required=False)
        self.norm_counts = self.load_csv("normalized_counts.csv", required=False)
        self.metadata = self.load_csv("metadata.csv", required=False)
        self.pca_coords = self.load_csv("pca_coordinates.csv", required=False)
        self.pca_variance = self.load_csv("pca_variance.csv", required=False)
        self.distances = self.load_csv("sample_distances.csv", required=False, index_col=0)
        self.linkage = self.load_csv("sample_linkage.csv", required=False)
        self.top_variable = self.load_csv("top_variable_genes.csv", required=False, index_col=0)
        self.deg_all = self.load_csv("deg_all_results.csv", required=False)
        self.deg_sig = self.load_csv("deg_significant.csv", required=False)
        self.dispersions = self.load_csv("dispersions.csv", required=False)
        self.annotated = self.load_csv("deg_annotated.csv", required=False)

        inputs = [self.size_factors, self.pca_coords, self.distances, self.deg_all]
        if all(df is None for df in inputs):
            self.logger.error("No analysis results found")
            return False

        return True

    def _save_figure(self, fig: plt.Figure, name: str) -> List[str]:
        """Save figure in multiple formats."""
        saved_files = []
        for fmt in self.config["figure_format"]:
            filepath = self.figures_dir / f"{name}.{fmt}"
            fig.savefig(filepath, dpi=self.config["dpi"], bbox_inches='tight',
                        facecolor='white', edgecolor='none')
            saved_files.append(str(filepath))
            self.logger.info(f"Saved {filepath.name}")
        plt.close(fig)
        return saved_files

    def _gene_labels(self) -> Dict[str, str]:
        """gene_id -> symbol from the annotation table, when present."""
        if self.annotated is None or 'symbol' not in self.annotated.columns:
            return {}
        return dict(zip(self.annotated['gene_id'].astype(str), self.annotated['symbol'].astype(str)))

    def _plot_size_factors(self) -> Optional[List[str]]:
        """Size factors against library size."""
        if self.size_factors is None:
            self.logger.warning("Skipping size factor plot - no size factors")
            return None

        self.logger.info("Generating size factor plot...")
        df = self.size_factors
        fig, ax = plt.subplots(figsize=self.config["figsize"]["size_factors"])
        ax.scatter(df['library_size'] / 1e6, df['size_factor'], s=60, alpha=0.8, color='#3498DB')
        for _, row in df.iterrows():
            ax.annotate(str(row['sample_id']), (row['library_size'] / 1e6, row['size_factor']),
                        fontsize=7, ha='left', va='bottom')

        ax.set_xlabel('Library size (millions of reads)')
        ax.set_ylabel('Size factor')
        ax.set_title('Size Factors vs Library Size')
        return self._save_figure(fig, "size_factors")

    def _plot_pca(self) -> Optional[List[str]]:
        """PCA of the transformed counts, coloured by condition."""
        if self.pca_coords is None:
            self.logger.warning("Skipping PCA - no PCA coordinates")
            return None
        if 'PC2' not in self.pca_coords.columns:
            self.logger.warning("Skipping PCA - fewer than two components")
            return None

        self.logger.info("Generating PCA plot...")
        df = self.pca_coords
        condition_col = self.config["condition_column"]
        style_col = self.config["pca_style_column"]

        fig, ax = plt.subplots(figsize=self.config["figsize"]["pca"])
        sns.scatterplot(
            data=df, x='PC1', y='PC2',
            hue=condition_col if condition_col in df.columns else None,
            style=style_col if style_col in df.columns else None,
            s=120, ax=ax
        )

        if self.pca_variance is not None and len(self.pca_variance) >= 2:
            ratios = self.pca_variance['variance_ratio'].to_numpy() * 100
            ax.set_xlabel(f'PC1 ({ratios[0]:.1f}% variance)')
            ax.set_ylabel(f'PC2 ({ratios[1]:.1f}% variance)')
        ax.set_title('PCA: Sample Distribution')
        ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left')
        return self._save_figure(fig, "pca_plot")

    def _plot_distance_heatmap(self) -> Optional[List[str]]:
        """Clustered heatmap of sample-to-sample distances."""
        if self.distances is None:
            self.logger.warning("Skipping distance heatmap - no sample distances")
            return None

        self.logger.info("Generating sample distance heatmap...")
        kwargs: Dict[str, Any] = {}
        if self.linkage is not None:
            Z = self.linkage[['left', 'right', 'distance', 'size']].to_numpy(dtype=float)
            kwargs = {"row_linkage": Z, "col_linkage": Z}

        grid = sns.clustermap(
            self.distances, cmap='Blues_r',
            figsize=self.config["figsize"]["distance"],
            xticklabels=True, yticklabels=True,
            cbar_kws={'label': 'Euclidean distance'},
            **kwargs
        )
        grid.figure.suptitle('Sample-to-Sample Distances', y=1.02)
        return self._save_figure(grid.figure, "sample_distance_heatmap")

    def _plot_dendrogram(self) -> Optional[List[str]]:
        """Hierarchical clustering tree of the samples."""
        if self.linkage is None or self.distances is None:
            self.logger.warning("Skipping dendrogram - missing linkage")
            return None

        self.logger.info("Generating dendrogram...")
        Z = self.linkage[['left', 'right', 'distance', 'size']].to_numpy(dtype=float)

        fig, ax = plt.subplots(figsize=self.config["figsize"]["dendrogram"])
        dendrogram(Z, labels=self.distances.index.astype(str).tolist(), leaf_rotation=90, ax=ax)
        ax.set_ylabel('Distance')
        ax.set_title('Hierarchical Clustering of Samples')
        return self._save_figure(fig, "sample_dendrogram")

    def _plot_top_variable_heatmap(self) -> Optional[List[str]]:
        """Heatmap of the most variable genes (centred)."""
        if self.top_variable is None or len(self.top_variable) == 0:
            self.logger.warning("Skipping top variable heatmap - no data")
            return None

        self.logger.info("Generating top variable genes heatmap...")
        data = self.top_variable.copy()
        labels = self._gene_labels()
        data.index = [labels.get(str(g), str(g)) for g in data.index]

        fig, ax = plt.subplots(figsize=self.config["figsize"]["heatmap"])
        sns.heatmap(data, cmap=self.config["color_palette"], center=0, ax=ax,
                    xticklabels=True, yticklabels=True if len(data) <= 50 else False,
                    cbar_kws={'label': 'Centred expression'})
        ax.set_title(f'Top {len(data)} Variable Genes')
        ax.set_xlabel('Samples')
        ax.set_ylabel('Genes')
        plt.tight_layout()
        return self._save_figure(fig, "top_variable_heatmap")

    def _significance(self, df: pd.DataFrame) -> pd.Series:
        padj_cutoff = self.config["padj_cutoff"]
        log2fc_cutoff = self.config["log2fc_cutoff"]

        significance = pd.Series('Not Significant', index=df.index)
        sig = df['padj'] < padj_cutoff
        significance[sig & (df['log2FC'] > log2fc_cutoff)] = 'Up'
        significance[sig & (df['log2FC'] < -log2fc_cutoff)] = 'Down'
        return significance

    def _plot_ma(self) -> Optional[List[str]]:
        """Mean of normalized counts against log2 fold change."""
        if self.deg_all is None:
            self.logger.warning("Skipping MA plot - no DEG results")
            return None

        self.logger.info("Generating MA plot...")
        df = self.deg_all.dropna(subset=['log2FC']).copy()
        df = df[df['baseMean'] > 0]
        df['significance'] = self._significance(df)

        colors = {'Not Significant': 'lightgray', 'Up': '#E74C3C', 'Down': '#3498DB'}
        fig, ax = plt.subplots(figsize=self.config["figsize"]["ma"])
        for sig, color in colors.items():
            subset = df[df['significance'] == sig]
            ax.scatter(subset['baseMean'], subset['log2FC'], c=color, alpha=0.6, s=12, label=sig)

        ax.set_xscale('log')
        ax.axhline(y=0, color='black', linewidth=0.8)
        ax.set_xlabel('Mean of normalized counts')
        ax.set_ylabel('log2 Fold Change')
        ax.set_title('MA Plot')
        ax.legend(loc='upper right')
        return self._save_figure(fig, "ma_plot")

    def _plot_volcano(self) -> Optional[List[str]]:
        """Generate volcano plot."""
        if self.deg_all is None:
            self.logger.warning("Skipping volcano plot - no DEG results")
            return None

        self.logger.info("Generating volcano plot...")

        fig, ax = plt.subplots(figsize=self.config["figsize"]["volcano"])

        df = self.deg_all.dropna(subset=['padj']).copy()
        df['neg_log10_padj'] = -np.log10(df['padj'].clip(lower=1e-300))
        df['significance'] = self._significance(df)

        colors = {'Not Significant': 'lightgray', 'Up': '#E74C3C', 'Down': '#3498DB'}

        for sig, color in colors.items():
            subset = df[df['significance'] == sig]
            ax.scatter(subset['log2FC'], subset['neg_log10_padj'],
                       c=color, alpha=0.6, s=20, label=sig)

        padj_cutoff = self.config["padj_cutoff"]
        log2fc_cutoff = self.config["log2fc_cutoff"]
        ax.axhline(y=-np.log10(padj_cutoff), color='gray', linestyle='--', alpha=0.5)
        ax.axvline(x=log2fc_cutoff, color='gray', linestyle='--', alpha=0.5)
        ax.axvline(x=-log2fc_cutoff, color='gray', linestyle='--', alpha=0.5)

        # Label top genes
        if self.deg_sig is not None and len(self.deg_sig) > 0:
            labels = self._gene_labels()
            top_genes = self.deg_sig.head(self.config["label_top_genes"])
            for _, row in top_genes.iterrows():
                gene_row = df[df['gene_id'] == row['gene_id']]
                if len(gene_row) > 0:
                    x = gene_row['log2FC'].values[0]
                    y = gene_row['neg_log10_padj'].values[0]
                    label = labels.get(str(row['gene_id']), str(row['gene_id']))
                    ax.annotate(label, (x, y), fontsize=8, ha='center', va='bottom')

        ax.set_xlabel('log2 Fold Change')
        ax.set_ylabel('-log10 Adjusted P-value')
        ax.set_title('Volcano Plot: Differential Expression')
        ax.legend(loc='upper right')

        n_up = (df['significance'] == 'Up').sum()
        n_down = (df['significance'] == 'Down').sum()
        ax.text(0.02, 0.98, f'Up: {n_up}\nDown: {n_down}',
                transform=ax.transAxes, verticalalignment='top',
                fontsize=10, bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

        return self._save_figure(fig, "volcano_plot")

    def _plot_dispersions(self) -> Optional[List[str]]:
        """Gene-wise, fitted and final dispersion estimates."""
        if self.dispersions is None:
            self.logger.warning("Skipping dispersion plot - no dispersion estimates")
            return None

        self.logger.info("Generating dispersion plot...")
        df = self.dispersions[self.dispersions['baseMean'] > 0].sort_values('baseMean')

        fig, ax = plt.subplots(figsize=self.config["figsize"]["dispersion"])
        ax.scatter(df['baseMean'], df['genewise'], s=6, c='black', alpha=0.4, label='gene-wise estimate')
        ax.scatter(df['baseMean'], df['final'], s=6, c='#3498DB', alpha=0.6, label='final estimate')
        ax.plot(df['baseMean'], df['fitted'], color='#E74C3C', linewidth=2, label='fitted trend')

        ax.set_xscale('log')
        ax.set_yscale('log')
        ax.set_xlabel('Mean of normalized counts')
        ax.set_ylabel('Dispersion')
        ax.set_title('Dispersion Estimates')
        ax.legend(loc='upper right')
        return self._save_figure(fig, "dispersion_plot")

    def _plot_top_gene_counts(self) -> Optional[List[str]]:
        """Normalized counts of the most significant gene per condition."""
        if self.deg_all is None or self.norm_counts is None or self.metadata is None:
            self.logger.warning("Skipping counts plot - missing data")
            return None

        tested = self.deg_all.dropna(subset=['padj'])
        if len(tested) == 0:
            self.logger.warning("Skipping counts plot - no tested genes")
            return None

        top_gene = str(tested.sort_values('padj').iloc[0]['gene_id'])
        gene_col = self.norm_counts.columns[0]
        counts = self.norm_counts.set_index(gene_col)
        counts.index = counts.index.astype(str)
        if top_gene not in counts.index:
            self.logger.warning(f"Skipping counts plot - {top_gene} not in normalized counts")
            return None

        self.logger.info(f"Generating counts plot for {top_gene}...")
        sample_col = self.metadata.columns[0]
        df = self.metadata.copy()
        df[sample_col] = df[sample_col].astype(str)
        df['count'] = df[sample_col].map(counts.loc[top_gene]) + 0.5

        condition_col = self.config["condition_column"]
        style_col = self.config["pca_style_column"]
        fig, ax = plt.subplots(figsize=self.config["figsize"]["counts"])
        sns.stripplot(
            data=df, x=condition_col, y='count',
            hue=style_col if style_col in df.columns else None,
            size=8, jitter=0.1, ax=ax
        )
        ax.set_yscale('log')
        label = self._gene_labels().get(top_gene, top_gene)
        ax.set_ylabel('Normalized count + 0.5')
        ax.set_title(f'{label}')
        return self._save_figure(fig, "top_gene_counts")

    def run(self) -> Dict[str, Any]:
        """Generate all visualizations."""
        generated_figures = []
        failed_figures = []

        figure_functions = [
            ("size_factors", self._plot_size_factors),
            ("pca_plot", self._plot_pca),
            ("sample_distance_heatmap", self._plot_distance_heatmap),
            ("sample_dendrogram", self._plot_dendrogram),
            ("top_variable_heatmap", self._plot_top_variable_heatmap),
            ("ma_plot", self._plot_ma),
            ("volcano_plot", self._plot_volcano),
            ("dispersion_plot", self._plot_dispersions),
            ("top_gene_counts", self._plot_top_gene_counts)
        ]

        for name, func in figure_functions:
            try:
                result = func()
                if result:
                    generated_figures.extend(result)
                else:
                    failed_figures.append(name)
            except Exception as e:
                self.logger.error(f"Error generating {name}: {e}")
                failed_figures.append(name)
                plt.close('all')

        self.logger.info(f"Visualization Complete:")
        self.logger.info(f"  Generated: {len(generated_figures)} files")
        self.logger.info(f"  Failed/Skipped: {len(failed_figures)}")

        return {
            "figures_generated": generated_figures,
            "failed_figures": failed_figures,
            "total_generated": len(generated_figures)
        }

    def validate_outputs(self) -> bool:
        """Validate visualization outputs."""
        if not self.figures_dir.exists():
            self.logger.error("Figures directory not created")
            return False

        png_files = list(self.figures_dir.glob("*.png"))
        if len(png_files) == 0:
            self.logger.warning("No PNG figures generated")
            # Still valid if input data was limited

        return True
