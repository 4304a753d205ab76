"""
Agent 4: Differential Expression Gene (DEG) Analysis

Negative-binomial GLM + Wald test through the DESeq2 engine
(PyDESeq2 by default, Bioconductor DESeq2 via rpy2 with backend="r"),
followed by log-fold-change shrinkage.

Input:
- count_matrix.csv: Filtered raw counts (genes x samples)
- metadata.csv: Sample metadata with the design factors
- config: design_factors, condition_column, contrast [numerator, denominator]

Output:
- deg_all_results.csv: Full results sorted by padj (NA padj last)
- deg_significant.csv: padj < cutoff and |log2FC| > cutoff, with direction
- dispersions.csv: Gene-wise, fitted and final dispersion estimates
- deg_summary.json: DESeq2-style summary of the results table
- meta_agent4_deg.json: Execution metadata
"""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from ..deseq import get_backend
from ..utils.base_agent import BaseAgent
from ..utils.normalization import median_of_ratios, normalize_counts


class DEGAgent(BaseAgent):
    """Agent for DESeq2-based differential expression analysis."""

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        default_config = {
            "backend": "pydeseq2",
            "contrast": ["DPN", "Control"],  # [numerator, denominator]
            "condition_column": "treatment",
            "design_factors": ["time", "treatment"],
            "padj_cutoff": 0.05,
            "log2fc_cutoff": 1.0,
            "use_lfc_shrinkage": True,
            "use_ttest_fallback": True,  # Welch t-test if DESeq2 fails
        }

        merged_config = {**default_config, **(config or {})}
        super().__init__("agent4_deg", input_dir, output_dir, merged_config)

        self.dataset = None

    def validate_inputs(self) -> bool:
        """Validate count matrix, metadata and contrast."""
        self.dataset = self.load_count_dataset()

        condition_col = self.config["condition_column"]
        if condition_col not in self.dataset.metadata.columns:
            self.logger.error(f"Condition column '{condition_col}' not in metadata")
            return False

        if condition_col not in self.config["design_factors"]:
            self.logger.error(f"Condition column '{condition_col}' is not a design factor")
            return False

        conditions = self.dataset.levels(condition_col)
        contrast = self.config["contrast"]
        if not all(c in conditions for c in contrast):
            self.logger.error(f"Contrast {contrast} not all in conditions {conditions}")
            return False

        self.logger.info(f"Count matrix: {self.dataset.n_genes} genes, {self.dataset.n_samples} samples")
        self.logger.info(f"Conditions: {conditions}")
        return True

    def _run_deseq2(self) -> Tuple[pd.DataFrame, Optional[pd.DataFrame], Dict[str, Any]]:
        """Run DESeq2 through the configured backend."""
        backend = get_backend(self.config["backend"], self.config)
        contrast = self.config["contrast"]

        self.logger.info(f"Extracting results for contrast: {contrast[0]} vs {contrast[1]}")
        result = backend.differential_expression(
            self.dataset,
            design_factors=self.config["design_factors"],
            contrast_factor=self.config["condition_column"],
            numerator=contrast[0],
            denominator=contrast[1],
            shrink=self.config["use_lfc_shrinkage"],
            alpha=self.config["padj_cutoff"]
        )
        self.logger.info(f"Model coefficients: {result.coefficient_names}")
        if result.shrinkage_applied:
            self.logger.info(f"LFC shrinkage applied ({result.shrinkage_coefficient})")

        info = {
            "method_used": result.method,
            "shrinkage_applied": result.shrinkage_applied,
            "shrinkage_coefficient": result.shrinkage_coefficient,
            "coefficients": result.coefficient_names
        }
        return result.results, result.dispersions, info

    def _run_ttest(self) -> Tuple[pd.DataFrame, Optional[pd.DataFrame], Dict[str, Any]]:
        """Welch t-test on log2 normalized counts (fallback when DESeq2 fails)."""
        from scipy import stats
        from statsmodels.stats.multitest import multipletests

        self.logger.warning("Using t-test DEG analysis (DESeq2 unavailable)")

        condition_col = self.config["condition_column"]
        contrast = self.config["contrast"]
        condition = self.dataset.metadata[condition_col].astype(str)
        group1 = condition.index[condition == contrast[0]].tolist()
        group2 = condition.index[condition == contrast[1]].tolist()

        self.logger.info(f"Group 1 ({contrast[0]}): {len(group1)} samples")
        self.logger.info(f"Group 2 ({contrast[1]}): {len(group2)} samples")
        if len(group1) < 2 or len(group2) < 2:
            raise ValueError("t-test needs at least 2 samples per group")

        normalized = normalize_counts(self.dataset.counts, median_of_ratios(self.dataset.counts))
        log_norm = np.log2(normalized + 1)

        mean1 = normalized[group1].mean(axis=1) + 1
        mean2 = normalized[group2].mean(axis=1) + 1
        log2fc = np.log2(mean1 / mean2)

        t_stat, pvalues = stats.ttest_ind(
            log_norm[group1].to_numpy(), log_norm[group2].to_numpy(),
            axis=1, equal_var=False
        )
        pvalues = np.where(np.isnan(pvalues), 1.0, pvalues)
        _, padj, _, _ = multipletests(pvalues, method='fdr_bh')

        results_df = pd.DataFrame({
            'gene_id': self.dataset.counts.index,
            'baseMean': normalized.mean(axis=1).to_numpy(),
            'log2FC': log2fc.to_numpy(),
            'lfcSE': np.nan,
            'stat': t_stat,
            'pvalue': pvalues,
            'padj': padj
        })
        return results_df, None, {"method_used": "welch_ttest_fallback", "shrinkage_applied": False}

    @staticmethod
    def summarize(results_df: pd.DataFrame, alpha: float) -> Dict[str, Any]:
        """Counts in the style of DESeq2's summary(res)."""
        nonzero = results_df[results_df['baseMean'] > 0]
        significant = nonzero[nonzero['padj'] < alpha]
        return {
            "alpha": alpha,
            "tested": int(results_df['padj'].notna().sum()),
            "na_padj": int(results_df['padj'].isna().sum()),
            "nonzero_genes": int(len(nonzero)),
            "up": int((significant['log2FC'] > 0).sum()),
            "down": int((significant['log2FC'] < 0).sum()),
            "outliers": int(nonzero['pvalue'].isna().sum()),
            "low_counts": int((nonzero['padj'].isna() & nonzero['pvalue'].notna()).sum()),
        }

    def run(self) -> Dict[str, Any]:
        """Execute DEG analysis."""
        try:
            results_df, dispersions, info = self._run_deseq2()
        except Exception as e:
            self.logger.warning(f"DESeq2 failed: {e}")
            if not self.config["use_ttest_fallback"]:
                raise
            results_df, dispersions, info = self._run_ttest()

        na_count = int(results_df['padj'].isna().sum())
        self.logger.info(f"NA padj values: {na_count}")

        results_df = results_df.sort_values('padj', na_position='last').reset_index(drop=True)
        self.save_csv(results_df, "deg_all_results.csv")

        padj_cutoff = self.config["padj_cutoff"]
        log2fc_cutoff = self.config["log2fc_cutoff"]

        tested = results_df.dropna(subset=['padj'])
        significant = tested[
            (tested['padj'] < padj_cutoff) &
            (np.abs(tested['log2FC']) > log2fc_cutoff)
        ].copy()
        significant['direction'] = np.where(significant['log2FC'] > 0, 'up', 'down')
        significant = significant.sort_values('padj')

        self.save_csv(
            significant[['gene_id', 'baseMean', 'log2FC', 'lfcSE', 'pvalue', 'padj', 'direction']],
            "deg_significant.csv"
        )

        if dispersions is not None:
            self.save_csv(dispersions, "dispersions.csv")

        summary = self.summarize(results_df, padj_cutoff)
        self.save_json(summary, "deg_summary.json")

        up_count = int((significant['direction'] == 'up').sum())
        down_count = int((significant['direction'] == 'down').sum())

        self.logger.info(f"DEG Analysis Complete:")
        self.logger.info(f"  Total genes analyzed: {len(results_df)}")
        self.logger.info(f"  padj < {padj_cutoff}: up {summary['up']}, down {summary['down']}")
        self.logger.info(f"  Significant DEGs (|log2FC| > {log2fc_cutoff}): {len(significant)}")
        self.logger.info(f"  Upregulated: {up_count}")
        self.logger.info(f"  Downregulated: {down_count}")
        self.logger.info("Top genes:\n" + results_df.head(10).to_string(index=False))

        return {
            **info,
            "total_genes": len(results_df),
            "na_padj": na_count,
            "deg_count": len(significant),
            "up_count": up_count,
            "down_count": down_count,
            "padj_cutoff": padj_cutoff,
            "log2fc_cutoff": log2fc_cutoff,
            "summary": summary
        }

    def validate_outputs(self) -> bool:
        """Validate DEG outputs."""
        required_files = [
            "deg_all_results.csv",
            "deg_significant.csv",
            "deg_summary.json"
        ]

        for filename in required_files:
            filepath = self.output_dir / filename
            if not filepath.exists():
                self.logger.error(f"Missing output file: {filename}")
                return False

        sig_df = pd.read_csv(self.output_dir / "deg_significant.csv")

        if len(sig_df) == 0:
            self.logger.warning("No significant DEGs found (this may be expected)")

        if sig_df['padj'].isna().any():
            self.logger.error("NA values found in padj column")
            return False

        return True
