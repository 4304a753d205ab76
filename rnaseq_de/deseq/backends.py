"""
DESeq2 engine adapters.

Two interchangeable backends expose the same calls:
- PyDESeq2Backend: pure Python (pydeseq2), the default
- RDESeq2Backend: Bioconductor DESeq2 through rpy2 (needs R)

All statistics (size factors, dispersions, Wald test, shrinkage,
BH correction) come from the engine; this module only prepares inputs and
converts outputs to the pipeline's table layouts.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..dataset.container import CountDataset
from ..utils.normalization import log2_transform, normalize_counts

logger = logging.getLogger(__name__)

# rpy2 imports
try:
    import rpy2.robjects as ro
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.conversion import localconverter
    from rpy2.robjects.packages import importr
    HAS_RPY2 = True
except ImportError:
    HAS_RPY2 = False

TRANSFORMS = ("vst", "rlog", "log2")
RESULT_COLUMNS = ["gene_id", "baseMean", "log2FC", "lfcSE", "stat", "pvalue", "padj"]


@dataclass
class TransformResult:
    """Transformed expression matrix (genes x samples)."""
    matrix: pd.DataFrame
    method_requested: str
    method_used: str
    blind: bool = True


@dataclass
class DEResult:
    """Differential expression output of a backend."""
    results: pd.DataFrame
    normalized_counts: pd.DataFrame
    size_factors: pd.Series
    dispersions: pd.DataFrame
    coefficient_names: List[str] = field(default_factory=list)
    shrinkage_applied: bool = False
    shrinkage_coefficient: Optional[str] = None
    method: str = "DESeq2"


def _standardize_results(results_df: pd.DataFrame) -> pd.DataFrame:
    """Engine result table -> gene_id, baseMean, log2FC, lfcSE, stat, pvalue, padj."""
    df = results_df.rename(columns={"log2FoldChange": "log2FC"}).copy()

    # Shrunken results may come without a Wald statistic
    if "stat" not in df.columns:
        df["stat"] = df["log2FC"] / df["lfcSE"].replace(0, np.nan)

    df.insert(0, "gene_id", df.index.astype(str))
    df = df.reset_index(drop=True)
    extra = [c for c in df.columns if c not in RESULT_COLUMNS]
    return df[RESULT_COLUMNS + extra]


def find_coefficient(coefficients: Sequence[str], factor: str, numerator: str) -> Optional[str]:
    """Model coefficient for `numerator` vs the reference level of `factor`.

    Handles both "treatment_DPN_vs_Control" and "treatment[T.DPN]" styles.
    """
    for name in coefficients:
        if name == f"{factor}[T.{numerator}]" or name.startswith(f"{factor}_{numerator}_vs_"):
            return name
    for name in coefficients:
        if factor in name and numerator in name:
            return name
    return None


class DESeqBackend(ABC):
    """Common interface of the DESeq2 engines."""

    name: str = "base"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    @abstractmethod
    def size_factors(self, dataset: CountDataset,
                     design_factors: Optional[Sequence[str]] = None) -> pd.Series:
        """Median-of-ratios size factor per sample."""

    def normalized_counts(self, dataset: CountDataset,
                          design_factors: Optional[Sequence[str]] = None) -> pd.DataFrame:
        return normalize_counts(dataset.counts, self.size_factors(dataset, design_factors))

    @abstractmethod
    def transform(self, dataset: CountDataset, method: str = "vst",
                  blind: bool = True, design_factors: Optional[Sequence[str]] = None) -> TransformResult:
        """Variance-stabilized (or log2) expression matrix."""

    @abstractmethod
    def differential_expression(
        self,
        dataset: CountDataset,
        design_factors: Sequence[str],
        contrast_factor: str,
        numerator: str,
        denominator: str,
        shrink: bool = True,
        alpha: float = 0.05
    ) -> DEResult:
        """Fit the negative-binomial GLM and test `numerator` vs `denominator`."""

    def _log2_transform(self, dataset: CountDataset, method: str, blind: bool,
                        design_factors: Optional[Sequence[str]] = None) -> TransformResult:
        matrix = log2_transform(self.normalized_counts(dataset, design_factors))
        return TransformResult(matrix, method_requested=method, method_used="log2", blind=blind)

    @staticmethod
    def _check_transform(method: str) -> None:
        if method not in TRANSFORMS:
            raise ValueError(f"Unknown transform '{method}'. Choose from {TRANSFORMS}")

    @staticmethod
    def _prepare(dataset: CountDataset, design_factors: Sequence[str],
                 contrast_factor: str, numerator: str, denominator: str) -> CountDataset:
        if contrast_factor not in design_factors:
            raise ValueError(
                f"Contrast factor '{contrast_factor}' is not in the design {list(design_factors)}"
            )
        levels = dataset.levels(contrast_factor)
        for level in (numerator, denominator):
            if level not in levels:
                raise ValueError(f"Level '{level}' not found in '{contrast_factor}' (levels: {levels})")
        return dataset.relevel(contrast_factor, denominator)


class PyDESeq2Backend(DESeqBackend):
    """DESeq2 via the pydeseq2 package."""

    name = "pydeseq2"

    def _inference(self):
        from pydeseq2.default_inference import DefaultInference

        return DefaultInference(n_cpus=self.config.get("n_cpus", 1))

    def _dataset(self, dataset: CountDataset, design_factors: Sequence[str]):
        from pydeseq2.dds import DeseqDataSet

        if design_factors:
            metadata = dataset.design_metadata(design_factors)
            design = "~" + " + ".join(design_factors)
        else:
            metadata = pd.DataFrame({"intercept": ["all"] * dataset.n_samples},
                                    index=dataset.metadata.index)
            design = "~1"

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=UserWarning)
            return DeseqDataSet(
                counts=dataset.counts.T,
                metadata=metadata,
                design=design,
                refit_cooks=True,
                inference=self._inference(),
                quiet=True
            )

    @staticmethod
    def _size_factors_of(dds) -> np.ndarray:
        # Stored in obs or obsm depending on the pydeseq2 release
        if "size_factors" in dds.obs.columns:
            return np.asarray(dds.obs["size_factors"])
        return np.asarray(dds.obsm["size_factors"])

    @staticmethod
    def _gene_values_of(dds, key: str) -> np.ndarray:
        # Per-gene fit values live in var on pydeseq2 0.5, varm on older releases
        if key in dds.var.columns:
            return np.asarray(dds.var[key])
        return np.asarray(dds.varm[key])

    def size_factors(self, dataset: CountDataset,
                     design_factors: Optional[Sequence[str]] = None) -> pd.Series:
        dds = self._dataset(dataset, list(design_factors or []))
        dds.fit_size_factors()
        return pd.Series(self._size_factors_of(dds), index=dataset.samples, name="size_factor")

    def transform(self, dataset: CountDataset, method: str = "vst",
                  blind: bool = True, design_factors: Optional[Sequence[str]] = None) -> TransformResult:
        self._check_transform(method)
        if method == "log2":
            return self._log2_transform(dataset, method, blind, design_factors)

        if method == "rlog":
            logger.warning("pydeseq2 has no rlog; using its variance stabilizing transformation")

        factors = list(design_factors or [])
        dds = self._dataset(dataset, factors)
        # blind: dispersion trend fitted on an intercept-only design
        dds.vst(use_design=bool(factors) and not blind)
        matrix = pd.DataFrame(
            np.asarray(dds.layers["vst_counts"]).T,
            index=dataset.counts.index,
            columns=dataset.samples
        )
        return TransformResult(matrix, method_requested=method, method_used="vst", blind=blind)

    def differential_expression(
        self,
        dataset: CountDataset,
        design_factors: Sequence[str],
        contrast_factor: str,
        numerator: str,
        denominator: str,
        shrink: bool = True,
        alpha: float = 0.05
    ) -> DEResult:
        from pydeseq2.ds import DeseqStats

        dataset = self._prepare(dataset, design_factors, contrast_factor, numerator, denominator)
        logger.info(f"Fitting DESeq2 model: ~ {' + '.join(design_factors)} ({dataset})")

        dds = self._dataset(dataset, design_factors)
        dds.deseq2()

        stats = DeseqStats(
            dds,
            contrast=[contrast_factor, numerator, denominator],
            alpha=alpha,
            inference=self._inference(),
            quiet=True
        )
        stats.summary()
        mle_lfc = stats.results_df["log2FoldChange"].copy()

        coefficients = [str(c) for c in dds.varm["LFC"].columns]
        shrinkage_applied = False
        coef = None
        if shrink:
            coef = find_coefficient(coefficients, contrast_factor, numerator)
            if coef is None:
                logger.warning(f"No coefficient matches {contrast_factor}={numerator} in {coefficients}; "
                               "using unshrunk LFC")
            else:
                try:
                    logger.info(f"Shrinking LFC for coefficient {coef}")
                    stats.lfc_shrink(coeff=coef)
                    shrinkage_applied = True
                except Exception as e:
                    logger.warning(f"LFC shrinkage failed: {e}. Using unshrunk LFC.")

        results = _standardize_results(stats.results_df)
        if shrinkage_applied:
            results["log2FC_mle"] = mle_lfc.reindex(results["gene_id"]).to_numpy()

        genes = dataset.counts.index
        normalized = pd.DataFrame(
            np.asarray(dds.layers["normed_counts"]).T, index=genes, columns=dataset.samples
        )
        dispersions = pd.DataFrame({
            "gene_id": genes,
            "baseMean": results.set_index("gene_id")["baseMean"].reindex(genes).to_numpy(),
            "genewise": self._gene_values_of(dds, "genewise_dispersions"),
            "fitted": self._gene_values_of(dds, "fitted_dispersions"),
            "final": self._gene_values_of(dds, "dispersions"),
        })

        return DEResult(
            results=results,
            normalized_counts=normalized,
            size_factors=pd.Series(self._size_factors_of(dds), index=dataset.samples, name="size_factor"),
            dispersions=dispersions,
            coefficient_names=coefficients,
            shrinkage_applied=shrinkage_applied,
            shrinkage_coefficient=coef if shrinkage_applied else None,
            method="PyDESeq2"
        )


class RDESeq2Backend(DESeqBackend):
    """Bioconductor DESeq2 via rpy2."""

    name = "r"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if not HAS_RPY2:
            raise ImportError("rpy2 not installed. Install with: pip install rpy2")
        super().__init__(config)
        logger.info("Initializing R environment...")
        importr("DESeq2")

    @staticmethod
    def _to_r(df: pd.DataFrame):
        with localconverter(ro.default_converter + pandas2ri.converter):
            return ro.conversion.py2rpy(df)

    @staticmethod
    def _to_py(r_obj) -> pd.DataFrame:
        with localconverter(ro.default_converter + pandas2ri.converter):
            return ro.conversion.rpy2py(r_obj)

    def _build_dds(self, dataset: CountDataset, design_factors: Sequence[str]) -> None:
        """Create `dds` in the R global environment."""
        if design_factors:
            coldata = dataset.design_metadata(design_factors).astype(str)
            design = "~ " + " + ".join(design_factors)
        else:
            coldata = pd.DataFrame({"intercept": ["all"] * dataset.n_samples},
                                   index=dataset.metadata.index)
            design = "~ 1"

        ro.globalenv["counts_df"] = self._to_r(dataset.counts)
        ro.globalenv["coldata_df"] = self._to_r(coldata)
        ro.r(f"""
            counts_mat <- as.matrix(counts_df)
            storage.mode(counts_mat) <- "integer"
            dds <- DESeq2::DESeqDataSetFromMatrix(
                countData = counts_mat, colData = coldata_df, design = {design}
            )
        """)
        for factor in design_factors:
            levels = dataset.levels(factor)
            ro.globalenv["factor_levels"] = ro.StrVector(levels)
            ro.r(f'dds${factor} <- factor(dds${factor}, levels = factor_levels)')

    def size_factors(self, dataset: CountDataset,
                     design_factors: Optional[Sequence[str]] = None) -> pd.Series:
        self._build_dds(dataset, list(design_factors or []))
        values = ro.r("BiocGenerics::sizeFactors(DESeq2::estimateSizeFactors(dds))")
        return pd.Series(list(values), index=dataset.samples, name="size_factor")

    def transform(self, dataset: CountDataset, method: str = "vst",
                  blind: bool = True, design_factors: Optional[Sequence[str]] = None) -> TransformResult:
        self._check_transform(method)
        if method == "log2":
            return self._log2_transform(dataset, method, blind, design_factors)

        self._build_dds(dataset, list(design_factors or []))
        blind_r = "TRUE" if blind else "FALSE"
        if method == "rlog":
            ro.r(f"transformed <- DESeq2::rlog(dds, blind = {blind_r})")
        else:
            ro.r(f"transformed <- DESeq2::varianceStabilizingTransformation(dds, blind = {blind_r})")

        matrix = self._to_py(ro.r("as.data.frame(SummarizedExperiment::assay(transformed))"))
        matrix.index = dataset.counts.index
        matrix.columns = dataset.samples
        return TransformResult(matrix, method_requested=method, method_used=method, blind=blind)

    def differential_expression(
        self,
        dataset: CountDataset,
        design_factors: Sequence[str],
        contrast_factor: str,
        numerator: str,
        denominator: str,
        shrink: bool = True,
        alpha: float = 0.05
    ) -> DEResult:
        dataset = self._prepare(dataset, design_factors, contrast_factor, numerator, denominator)
        self._build_dds(dataset, design_factors)

        logger.info("Running DESeq2 (this may take a while)...")
        ro.r("dds <- DESeq2::DESeq(dds)")

        ro.globalenv["contrast_vec"] = ro.StrVector([contrast_factor, numerator, denominator])
        ro.r(f"res <- DESeq2::results(dds, contrast = contrast_vec, alpha = {alpha})")
        mle = self._to_py(ro.r("as.data.frame(res)"))

        coefficients = [str(c) for c in ro.r("DESeq2::resultsNames(dds)")]
        shrinkage_applied = False
        coef = None
        results_r = mle
        if shrink:
            coef = find_coefficient(coefficients, contrast_factor, numerator)
            if coef is None:
                logger.warning(f"Could not find matching coefficient in {coefficients}, using unshrunk LFC")
            else:
                try:
                    logger.info(f"Applying apeglm LFC shrinkage ({coef})...")
                    ro.r('if (!requireNamespace("apeglm", quietly = TRUE)) stop("apeglm not installed")')
                    ro.globalenv["shrink_coef"] = coef
                    ro.r("res_shrunk <- DESeq2::lfcShrink(dds, coef = shrink_coef, type = 'apeglm', res = res)")
                    results_r = self._to_py(ro.r("as.data.frame(res_shrunk)"))
                    shrinkage_applied = True
                except Exception as e:
                    logger.warning(f"apeglm shrinkage failed: {e}. Using unshrunk LFC.")

        results_r.index = dataset.counts.index
        results = _standardize_results(results_r)
        if shrinkage_applied:
            results["log2FC_mle"] = mle["log2FoldChange"].to_numpy()
            # apeglm drops the Wald statistic; keep the unshrunk test statistic
            results["stat"] = mle["stat"].to_numpy()

        normalized = self._to_py(ro.r("as.data.frame(DESeq2::counts(dds, normalized = TRUE))"))
        normalized.index = dataset.counts.index
        normalized.columns = dataset.samples

        disp = self._to_py(ro.r("""
            data.frame(
                baseMean = S4Vectors::mcols(dds)$baseMean,
                genewise = S4Vectors::mcols(dds)$dispGeneEst,
                fitted = S4Vectors::mcols(dds)$dispFit,
                final = DESeq2::dispersions(dds)
            )
        """))
        disp.insert(0, "gene_id", dataset.counts.index.to_numpy())

        size_factors = pd.Series(
            list(ro.r("BiocGenerics::sizeFactors(dds)")), index=dataset.samples, name="size_factor"
        )

        return DEResult(
            results=results,
            normalized_counts=normalized,
            size_factors=size_factors,
            dispersions=disp.reset_index(drop=True),
            coefficient_names=coefficients,
            shrinkage_applied=shrinkage_applied,
            shrinkage_coefficient=coef if shrinkage_applied else None,
            method="DESeq2 (R)"
        )


BACKENDS = {
    "pydeseq2": PyDESeq2Backend,
    "r": RDESeq2Backend,
}


def get_backend(name: str = "pydeseq2", config: Optional[Dict[str, Any]] = None) -> DESeqBackend:
    """Instantiate a DESeq2 backend by name."""
    if name not in BACKENDS:
        raise ValueError(f"Unknown backend '{name}'. Available: {sorted(BACKENDS)}")
    return BACKENDS[name](config)
