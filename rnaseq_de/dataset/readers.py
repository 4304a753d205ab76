"""
Dataset readers.

Supported inputs:
- .h5ad: AnnData (samples x genes, obs = sample metadata)
- .rds: serialized SummarizedExperiment / DESeqDataSet (needs rpy2 + R)
- .csv / .tsv / .txt (optionally gzipped): genes x samples count table,
  with a companion metadata table
"""

import logging
from pathlib import Path
from typing import Optional

from .container import CountDataset

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

TABLE_SUFFIXES = {".csv": ",", ".tsv": "\t", ".txt": None}


def _base_suffix(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes]
    if suffixes and suffixes[-1] == ".gz":
        suffixes = suffixes[:-1]
    return suffixes[-1] if suffixes else ""


def read_h5ad(path: Path) -> CountDataset:
    import anndata as ad

    adata = ad.read_h5ad(path)
    logger.info(f"Loaded AnnData: {adata.n_obs} samples x {adata.n_vars} genes")
    return CountDataset.from_anndata(adata)


def read_rds(path: Path) -> CountDataset:
    """Read a SummarizedExperiment saved with saveRDS()."""
    if not HAS_RPY2:
        raise ImportError("rpy2 not installed. Install with: pip install rpy2")

    importr("SummarizedExperiment")
    read_rds_fn = ro.r["readRDS"]
    ro.globalenv["se"] = read_rds_fn(str(path))

    counts_r = ro.r("as.data.frame(as.matrix(SummarizedExperiment::assay(se)))")
    coldata_r = ro.r("as.data.frame(SummarizedExperiment::colData(se))")

    with localconverter(ro.default_converter + pandas2ri.converter):
        counts = ro.conversion.rpy2py(counts_r)
        coldata = ro.conversion.rpy2py(coldata_r)

    logger.info(f"Loaded SummarizedExperiment: {counts.shape[0]} genes x {counts.shape[1]} samples")
    return CountDataset(counts, coldata)


def read_count_table(
    path: Path,
    metadata_path: Optional[Path] = None,
    sample_column: Optional[str] = None
) -> CountDataset:
    """Read a count table plus its metadata table."""
    sep = TABLE_SUFFIXES.get(_base_suffix(path))

    if metadata_path is None:
        metadata_path = path.parent / "metadata.csv"
    metadata_path = Path(metadata_path)
    if not metadata_path.exists():
        raise FileNotFoundError(f"Metadata table not found: {metadata_path}")

    dataset = CountDataset.from_csv(
        path,
        metadata_path,
        sample_column=sample_column,
        sep=sep,
        metadata_sep=TABLE_SUFFIXES.get(_base_suffix(metadata_path))
    )
    logger.info(f"Loaded count table: {dataset}")
    return dataset


def load_dataset(
    path: Path,
    metadata_path: Optional[Path] = None,
    sample_column: Optional[str] = None
) -> CountDataset:
    """Load a dataset file into a CountDataset, dispatching on its suffix."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")

    suffix = _base_suffix(path)
    if suffix == ".h5ad":
        return read_h5ad(path)
    if suffix == ".rds":
        return read_rds(path)
    if suffix in TABLE_SUFFIXES:
        return read_count_table(path, metadata_path, sample_column)

    raise ValueError(
        f"Unsupported dataset format '{suffix}' for {path.name}. "
        f"Expected .h5ad, .rds or one of {sorted(TABLE_SUFFIXES)}"
    )
