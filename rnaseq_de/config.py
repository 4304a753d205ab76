"""Configuration settings for the RNA-seq DE pipeline."""
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

# ═══════════════════════════════════════════════════════════════
# Logging Configuration
# ═══════════════════════════════════════════════════════════════

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(name: str = "rnaseq_de") -> logging.Logger:
    """
    Configure and return a console logger.

    Args:
        name: Logger name (usually module name)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    logger.addHandler(console_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        logger.addHandler(file_handler)

    return logger


# ═══════════════════════════════════════════════════════════════
# Paths
# ═══════════════════════════════════════════════════════════════

CACHE_DIR = Path(os.getenv("RNASEQ_DE_CACHE_DIR", Path.home() / ".rnaseq_de_cache"))

# No public default: the prepared dataset URL is site-specific
DATASET_URL = os.getenv("RNASEQ_DE_DATASET_URL")

# ═══════════════════════════════════════════════════════════════
# Analysis defaults
# ═══════════════════════════════════════════════════════════════

DEFAULT_CONFIG: Dict[str, Any] = {
    # Data
    "dataset_url": DATASET_URL,
    "cache_dir": str(CACHE_DIR),
    "dataset_filename": None,
    "counts_filename": "count_matrix.csv",
    "metadata_filename": "metadata.csv",
    "sample_column": "sample_id",
    "condition_column": "treatment",
    "design_factors": ["time", "treatment"],
    "contrast": ["DPN", "Control"],  # [numerator, denominator]
    "min_count_filter": 10,
    "min_samples_filter": 1,

    # Engine
    "backend": "pydeseq2",  # or "r" (rpy2 + DESeq2)
    "transform": "vst",     # "vst", "rlog" or "log2"
    "blind_transform": True,
    "n_cpus": 1,
    "random_seed": 42,

    # Exploration
    "ntop_pca": 500,
    "n_pca_components": 2,
    "n_clusters": None,  # None -> number of condition levels
    "cluster_method": "complete",
    "top_variable_heatmap": 20,

    # Differential expression
    "padj_cutoff": 0.05,
    "log2fc_cutoff": 1.0,
    "use_lfc_shrinkage": True,
    "use_ttest_fallback": True,

    # Annotation
    "annotate_top_n": 20,
    "species": "human",
    "annotation_batch_size": 1000,

    # Figures
    "figure_format": ["png"],
    "dpi": 150,
}


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Merge defaults, a JSON config file and explicit overrides.

    Later sources win. Keys not present in DEFAULT_CONFIG are kept so that
    individual agents can read their own extras.
    """
    config = dict(DEFAULT_CONFIG)

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            file_config = json.load(f)
        if not isinstance(file_config, dict):
            raise ValueError(f"Config file must contain a JSON object: {path}")
        config.update(file_config)

    if overrides:
        config.update({k: v for k, v in overrides.items() if v is not None})

    return config
