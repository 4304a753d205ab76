"""Utility modules for the RNA-seq DE pipeline."""

from .base_agent import BaseAgent, AgentResult
from .normalization import (
    median_of_ratios,
    normalize_counts,
    log2_transform,
    top_variable_genes
)

__all__ = [
    "BaseAgent",
    "AgentResult",
    "median_of_ratios",
    "normalize_counts",
    "log2_transform",
    "top_variable_genes"
]
