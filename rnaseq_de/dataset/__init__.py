"""Dataset handling: cached download, readers, count container."""

from .container import CountDataset
from .download import fetch_dataset, filename_from_url
from .readers import load_dataset
from .sample_data import create_sample_data, simulate_counts

__all__ = [
    "CountDataset",
    "fetch_dataset",
    "filename_from_url",
    "load_dataset",
    "create_sample_data",
    "simulate_counts",
]
