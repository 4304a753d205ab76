"""
CountDataset: a count matrix paired with per-sample metadata.

Counts are stored genes x samples (the layout of count_matrix.csv and of
DESeq2), metadata is indexed by sample id and always follows the count
column order.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class CountDataset:
    """Raw integer counts (genes x samples) plus sample metadata."""
    counts: pd.DataFrame
    metadata: pd.DataFrame

    def __post_init__(self):
        self.counts = self._check_counts(self.counts)
        self.metadata = self._align_metadata(self.metadata)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_counts(counts: pd.DataFrame) -> pd.DataFrame:
        if counts.empty:
            raise ValueError("Count matrix is empty")
        if counts.index.has_duplicates:
            dupes = counts.index[counts.index.duplicated()].unique().tolist()[:5]
            raise ValueError(f"Duplicate gene ids in count matrix: {dupes}")
        if counts.columns.has_duplicates:
            dupes = counts.columns[counts.columns.duplicated()].unique().tolist()[:5]
            raise ValueError(f"Duplicate sample ids in count matrix: {dupes}")

        values = counts.apply(pd.to_numeric, errors="coerce")
        if values.isna().any().any():
            raise ValueError("Count matrix contains missing or non-numeric values")

        arr = values.to_numpy(dtype=float)
        if not np.isfinite(arr).all():
            raise ValueError("Count matrix contains non-finite values")
        if (arr < 0).any():
            raise ValueError("Count matrix contains negative values")
        if not np.equal(np.round(arr), arr).all():
            raise ValueError("Count matrix contains non-integer values (expected raw counts)")

        checked = values.astype(np.int64)
        checked.index = checked.index.astype(str)
        checked.columns = checked.columns.astype(str)
        checked.index.name = "gene_id"
        return checked

    def _align_metadata(self, metadata: pd.DataFrame) -> pd.DataFrame:
        metadata = metadata.copy()
        metadata.index = metadata.index.astype(str)
        if metadata.index.has_duplicates:
            dupes = metadata.index[metadata.index.duplicated()].unique().tolist()[:5]
            raise ValueError(f"Duplicate sample ids in metadata: {dupes}")

        samples = list(self.counts.columns)
        missing = [s for s in samples if s not in metadata.index]
        if missing:
            raise ValueError(f"Samples missing from metadata: {missing}")

        extra = [s for s in metadata.index if s not in set(samples)]
        if extra:
            logger.warning(f"Dropping {len(extra)} metadata rows without counts: {extra[:5]}")

        aligned = metadata.loc[samples]
        aligned.index.name = "sample_id"
        return aligned

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]

    @property
    def samples(self) -> List[str]:
        return list(self.counts.columns)

    def library_sizes(self) -> pd.Series:
        """Total counts per sample."""
        sizes = self.counts.sum(axis=0)
        sizes.name = "library_size"
        return sizes

    def levels(self, factor: str) -> List[str]:
        """Levels of a metadata factor, categorical order first."""
        if factor not in self.metadata.columns:
            raise ValueError(f"Factor '{factor}' not in metadata columns {list(self.metadata.columns)}")
        column = self.metadata[factor]
        if isinstance(column.dtype, pd.CategoricalDtype):
            present = set(column.astype(str))
            return [str(c) for c in column.cat.categories if str(c) in present]
        return sorted(column.astype(str).unique().tolist())

    # ------------------------------------------------------------------
    # Derived datasets
    # ------------------------------------------------------------------

    def filter_low_counts(self, min_count: int = 10, min_samples: int = 1) -> "CountDataset":
        """Keep genes with total >= min_count detected in >= min_samples samples."""
        total = self.counts.sum(axis=1)
        detected = (self.counts > 0).sum(axis=1)
        keep = (total >= min_count) & (detected >= min_samples)
        logger.info(
            f"Low-count filter (total>={min_count}, detected in>={min_samples}): "
            f"{int(keep.sum())}/{self.n_genes} genes kept"
        )
        if not keep.any():
            raise ValueError("No genes left after low-count filtering")
        return CountDataset(self.counts.loc[keep], self.metadata)

    def subset_samples(self, samples: Sequence[str]) -> "CountDataset":
        samples = [str(s) for s in samples]
        unknown = [s for s in samples if s not in self.counts.columns]
        if unknown:
            raise ValueError(f"Unknown samples: {unknown}")
        return CountDataset(self.counts[samples], self.metadata.loc[samples])

    def relevel(self, factor: str, reference: str) -> "CountDataset":
        """Make `reference` the first level of a metadata factor."""
        levels = self.levels(factor)
        if reference not in levels:
            raise ValueError(f"Level '{reference}' not found in '{factor}' (levels: {levels})")
        ordered = [reference] + [lvl for lvl in levels if lvl != reference]
        metadata = self.metadata.copy()
        metadata[factor] = pd.Categorical(metadata[factor].astype(str), categories=ordered)
        return CountDataset(self.counts, metadata)

    def design_metadata(self, factors: Sequence[str]) -> pd.DataFrame:
        """Metadata restricted to design factors, each with >= 2 levels."""
        missing = [f for f in factors if f not in self.metadata.columns]
        if missing:
            raise ValueError(f"Design factors not in metadata: {missing}")

        design = pd.DataFrame(index=self.metadata.index)
        for factor in factors:
            column = self.metadata[factor]
            if not isinstance(column.dtype, pd.CategoricalDtype):
                column = pd.Categorical(column.astype(str), categories=self.levels(factor))
            design[factor] = column
            if len(self.levels(factor)) < 2:
                raise ValueError(f"Design factor '{factor}' has a single level")
        return design

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_anndata(self):
        """AnnData (samples x genes) as expected by PyDESeq2."""
        import anndata as ad

        return ad.AnnData(
            X=self.counts.T.to_numpy(),
            obs=self.metadata.copy(),
            var=pd.DataFrame(index=self.counts.index.copy())
        )

    @classmethod
    def from_anndata(cls, adata) -> "CountDataset":
        X = adata.X
        if hasattr(X, "toarray"):
            X = X.toarray()
        counts = pd.DataFrame(
            np.asarray(X).T,
            index=[str(g) for g in adata.var_names],
            columns=[str(s) for s in adata.obs_names]
        )
        return cls(counts, adata.obs.copy())

    @classmethod
    def from_frames(
        cls,
        count_table: pd.DataFrame,
        metadata_table: pd.DataFrame,
        sample_column: Optional[str] = None
    ) -> "CountDataset":
        """Build from count_matrix.csv / metadata.csv layouts.

        The first count column is the gene id; the sample column (or the first
        metadata column) holds sample ids.
        """
        counts = count_table.set_index(count_table.columns[0])
        if sample_column is None or sample_column not in metadata_table.columns:
            sample_column = metadata_table.columns[0]
        metadata = metadata_table.set_index(sample_column)
        return cls(counts, metadata)

    @classmethod
    def from_csv(
        cls,
        counts_path: Path,
        metadata_path: Path,
        sample_column: Optional[str] = None,
        sep: Optional[str] = ",",
        metadata_sep: Optional[str] = ","
    ) -> "CountDataset":
        """Read count and metadata tables; a None separator is sniffed."""
        count_table = pd.read_csv(counts_path, sep=sep, engine="python" if sep is None else "c")
        metadata_table = pd.read_csv(
            metadata_path, sep=metadata_sep, engine="python" if metadata_sep is None else "c"
        )
        return cls.from_frames(count_table, metadata_table, sample_column)

    def to_csv(self, counts_path: Path, metadata_path: Path) -> Dict[str, Path]:
        counts = self.counts.reset_index()
        counts.to_csv(counts_path, index=False)
        metadata = self.metadata.reset_index()
        metadata.to_csv(metadata_path, index=False)
        return {"counts": Path(counts_path), "metadata": Path(metadata_path)}

    def __repr__(self):
        factors = ", ".join(self.metadata.columns)
        return f"CountDataset({self.n_genes} genes x {self.n_samples} samples; metadata: {factors})"
