"""
Agent 7: HTML Report Generation

Builds a single self-contained HTML report (figures embedded as base64)
from the outputs of the previous agents.

Sections:
1. Study Overview
2. Normalization
3. Exploratory Analysis (PCA, sample distances, clustering)
4. Differential Expression
5. Top Annotated Genes
6. Methods

Input:
- Everything in the accumulated directory (all optional)

Output:
- report.html
- report_summary.json
- meta_agent7_report.json
"""

import base64
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from ..utils.base_agent import BaseAgent


FIGURE_CAPTIONS = {
    "size_factors": "Median-of-ratios size factors against library size",
    "pca_plot": "PCA of the transformed counts (top variable genes)",
    "sample_distance_heatmap": "Euclidean sample-to-sample distances, hierarchically clustered",
    "sample_dendrogram": "Hierarchical clustering of samples",
    "top_variable_heatmap": "Most variable genes, centred per gene",
    "ma_plot": "MA plot",
    "volcano_plot": "Volcano plot",
    "dispersion_plot": "Dispersion estimates",
    "top_gene_counts": "Normalized counts of the most significant gene",
}


class ReportAgent(BaseAgent):
    """Agent for generating the HTML report."""

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        default_config = {
            "report_title": "RNA-seq Differential Expression Report",
            "author": "rnaseq-de pipeline",
            "max_table_rows": 50,
            "embed_figures": True,
            "contrast": ["DPN", "Control"],
            "condition_column": "treatment",
            "design_factors": ["time", "treatment"],
            "padj_cutoff": 0.05,
            "log2fc_cutoff": 1.0,
        }

        merged_config = {**default_config, **(config or {})}
        super().__init__("agent7_report", input_dir, output_dir, merged_config)

    def validate_inputs(self) -> bool:
        """Validate that required data files exist."""
        return True  # Allow report generation with partial data

    def _load_all_data(self) -> Dict[str, Any]:
        """Load all available data from previous agents."""
        data: Dict[str, Any] = {}

        csv_files = [
            "size_factors.csv",
            "pca_variance.csv",
            "sample_clusters.csv",
            "deg_significant.csv",
            "deg_annotated.csv"
        ]
        json_files = [
            "deg_summary.json",
            "meta_agent1_data.json",
            "meta_agent2_normalization.json",
            "meta_agent3_exploration.json",
            "meta_agent4_deg.json",
            "meta_agent5_annotation.json",
            "meta_agent6_visualization.json"
        ]

        for filename in csv_files:
            filepath = self.input_dir / filename
            if filepath.exists():
                try:
                    data[filename.replace(".csv", "")] = pd.read_csv(filepath)
                    self.logger.info(f"Loaded {filename}")
                except Exception as e:
                    self.logger.warning(f"Error loading {filename}: {e}")

        for filename in json_files:
            filepath = self.input_dir / filename
            if filepath.exists():
                try:
                    with open(filepath, 'r', encoding='utf-8') as f:
                        data[filename.replace(".json", "")] = json.load(f)
                    self.logger.info(f"Loaded {filename}")
                except Exception as e:
                    self.logger.warning(f"Error loading {filename}: {e}")

        data['figures'] = {}
        figures_dir = self.input_dir / "figures"
        if figures_dir.exists():
            for img_path in sorted(figures_dir.glob("*.png")):
                if self.config["embed_figures"]:
                    with open(img_path, 'rb') as f:
                        img_data = base64.b64encode(f.read()).decode('utf-8')
                    data['figures'][img_path.stem] = f"data:image/png;base64,{img_data}"
                else:
                    data['figures'][img_path.stem] = str(img_path)
                self.logger.info(f"Loaded figure: {img_path.name}")

        return data

    def _table_html(self, df: Optional[pd.DataFrame]) -> str:
        if df is None or len(df) == 0:
            return '<p class="no-data">No data available</p>'
        return df.head(self.config["max_table_rows"]).to_html(
            index=False, classes="data-table", border=0,
            float_format=lambda x: f"{x:.4g}", na_rep="NA"
        )

    def _figure_html(self, data: Dict, name: str) -> str:
        src = data['figures'].get(name)
        if not src:
            return ''
        caption = FIGURE_CAPTIONS.get(name, name)
        return f'''
        <figure class="figure-panel">
            <img src="{src}" alt="{caption}">
            <figcaption>{caption}</figcaption>
        </figure>'''

    def _generate_overview_html(self, data: Dict) -> str:
        meta_data = data.get('meta_agent1_data', {})
        meta_deg = data.get('meta_agent4_deg', {})
        contrast = self.config["contrast"]

        rows = [
            ("Source", meta_data.get('source', 'NA')),
            ("Samples", meta_data.get('n_samples', 'NA')),
            ("Genes (raw / after filter)",
             f"{meta_data.get('n_genes_raw', 'NA')} / {meta_data.get('n_genes_filtered', 'NA')}"),
            ("Design", "~ " + " + ".join(self.config["design_factors"])),
            ("Contrast", f"{self.config['condition_column']}: {contrast[0]} vs {contrast[1]}"),
            ("DE method", meta_deg.get('method_used', 'NA')),
            ("LFC shrinkage", meta_deg.get('shrinkage_applied', 'NA')),
        ]
        body = "".join(f"<tr><th>{k}</th><td>{v}</td></tr>" for k, v in rows)
        return f'''
        <section id="overview">
            <h2>1. Study Overview</h2>
            <table class="summary-table">{body}</table>
        </section>'''

    def _generate_normalization_html(self, data: Dict) -> str:
        meta = data.get('meta_agent2_normalization', {})
        note = ''
        if meta:
            note = (
                f"<p>Transformation: <b>{meta.get('transform_used', 'NA')}</b> "
                f"(requested {meta.get('transform_requested', 'NA')}, blind={meta.get('blind', 'NA')}). "
                f"Max relative difference between engine and manual size factors: "
                f"{meta.get('size_factor_max_relative_diff', float('nan')):.2e}.</p>"
            )
        return f'''
        <section id="normalization">
            <h2>2. Normalization</h2>
            {note}
            {self._figure_html(data, "size_factors")}
            {self._table_html(data.get('size_factors'))}
        </section>'''

    def _generate_exploration_html(self, data: Dict) -> str:
        meta = data.get('meta_agent3_exploration', {})
        note = ''
        if 'adjusted_rand_index' in meta:
            note = (
                f"<p>Hierarchical clustering ({meta.get('cluster_method')}, k={meta.get('n_clusters')}) "
                f"agrees with {self.config['condition_column']} with adjusted Rand index "
                f"{meta['adjusted_rand_index']:.3f}.</p>"
            )
        return f'''
        <section id="exploration">
            <h2>3. Exploratory Analysis</h2>
            {self._figure_html(data, "pca_plot")}
            <h3>PCA explained variance</h3>
            {self._table_html(data.get('pca_variance'))}
            {self._figure_html(data, "sample_distance_heatmap")}
            {self._figure_html(data, "sample_dendrogram")}
            {note}
            <h3>Sample clusters</h3>
            {self._table_html(data.get('sample_clusters'))}
            {self._figure_html(data, "top_variable_heatmap")}
        </section>'''

    def _generate_deg_html(self, data: Dict) -> str:
        summary = data.get('deg_summary', {})
        summary_html = ''
        if summary:
            summary_html = f'''
            <div class="stat-cards">
                <div class="stat-card"><span class="value">{summary.get('nonzero_genes', 'NA')}</span>genes with nonzero counts</div>
                <div class="stat-card up"><span class="value">{summary.get('up', 'NA')}</span>up (padj &lt; {summary.get('alpha')})</div>
                <div class="stat-card down"><span class="value">{summary.get('down', 'NA')}</span>down (padj &lt; {summary.get('alpha')})</div>
                <div class="stat-card"><span class="value">{summary.get('low_counts', 'NA')}</span>low counts (NA padj)</div>
            </div>'''

        return f'''
        <section id="deg">
            <h2>4. Differential Expression</h2>
            {summary_html}
            {self._figure_html(data, "ma_plot")}
            {self._figure_html(data, "volcano_plot")}
            {self._figure_html(data, "dispersion_plot")}
            <h3>Significant genes (padj &lt; {self.config['padj_cutoff']}, |log2FC| &gt; {self.config['log2fc_cutoff']})</h3>
            {self._table_html(data.get('deg_significant'))}
        </section>'''

    def _generate_annotation_html(self, data: Dict) -> str:
        return f'''
        <section id="annotation">
            <h2>5. Top Annotated Genes</h2>
            {self._table_html(data.get('deg_annotated'))}
            {self._figure_html(data, "top_gene_counts")}
        </section>'''

    def _generate_methods_html(self, data: Dict) -> str:
        meta_norm = data.get('meta_agent2_normalization', {})
        return f'''
        <section id="methods">
            <h2>6. Methods</h2>
            <ul>
                <li>Normalization: DESeq2 median-of-ratios size factors ({meta_norm.get('backend', 'NA')})</li>
                <li>Transformation: {meta_norm.get('transform_used', 'NA')} for PCA and clustering</li>
                <li>Model: negative binomial GLM, design ~ {" + ".join(self.config["design_factors"])}, Wald test</li>
                <li>Multiple testing: Benjamini-Hochberg, independent filtering</li>
                <li>Annotation: MyGene.info</li>
            </ul>
        </section>'''

    def _generate_css(self) -> str:
        return '''
    <style>
        body { font-family: Helvetica, Arial, sans-serif; margin: 0 auto; max-width: 1100px; padding: 24px; color: #222; }
        h1 { border-bottom: 3px solid #003d82; padding-bottom: 8px; }
        h2 { color: #003d82; margin-top: 40px; }
        .meta { color: #757575; }
        .summary-table th { text-align: left; padding-right: 24px; }
        .data-table { border-collapse: collapse; font-size: 13px; margin: 12px 0; }
        .data-table th, .data-table td { border-bottom: 1px solid #e0e0e0; padding: 4px 10px; text-align: right; }
        .figure-panel { text-align: center; margin: 20px 0; }
        .figure-panel img { max-width: 100%; }
        figcaption { color: #616161; font-size: 13px; }
        .stat-cards { display: flex; gap: 16px; }
        .stat-card { flex: 1; background: #fafafa; border-radius: 8px; padding: 12px; text-align: center; }
        .stat-card .value { display: block; font-size: 28px; font-weight: 600; }
        .stat-card.up .value { color: #c62828; }
        .stat-card.down .value { color: #1565c0; }
        .no-data { color: #9e9e9e; font-style: italic; }
    </style>'''

    def _generate_html(self, data: Dict) -> str:
        return f'''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{self.config["report_title"]}</title>
    {self._generate_css()}
</head>
<body>
    <h1>{self.config["report_title"]}</h1>
    <p class="meta">{self.config["author"]} &middot; {datetime.now().strftime("%Y-%m-%d %H:%M")}</p>
    {self._generate_overview_html(data)}
    {self._generate_normalization_html(data)}
    {self._generate_exploration_html(data)}
    {self._generate_deg_html(data)}
    {self._generate_annotation_html(data)}
    {self._generate_methods_html(data)}
</body>
</html>
'''

    def run(self) -> Dict[str, Any]:
        """Generate the HTML report."""
        data = self._load_all_data()

        html_content = self._generate_html(data)

        report_path = self.output_dir / "report.html"
        with open(report_path, 'w', encoding='utf-8') as f:
            f.write(html_content)
        self.logger.info(f"Report generated: {report_path}")

        annotated = data.get('deg_annotated')
        summary = {
            "title": self.config["report_title"],
            "contrast": self.config["contrast"],
            "deg_summary": data.get('deg_summary', {}),
            "n_significant": len(data['deg_significant']) if 'deg_significant' in data else None,
            "top_genes": annotated['symbol'].head(10).tolist() if annotated is not None else [],
            "figures": sorted(data['figures'].keys())
        }
        self.save_json(summary, "report_summary.json")

        return {
            "report_path": str(report_path),
            "data_sources_loaded": [k for k in data.keys() if k != 'figures'],
            "figures_embedded": len(data['figures'])
        }

    def validate_outputs(self) -> bool:
        """Validate report outputs."""
        report_path = self.output_dir / "report.html"
        if not report_path.exists():
            self.logger.error("Report HTML not generated")
            return False

        if report_path.stat().st_size < 1000:
            self.logger.error("Report HTML seems too small")
            return False

        return True
