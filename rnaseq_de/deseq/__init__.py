"""DESeq2 engine adapters (PyDESeq2, or R DESeq2 through rpy2)."""

from .backends import (
    DESeqBackend,
    PyDESeq2Backend,
    RDESeq2Backend,
    DEResult,
    TransformResult,
    find_coefficient,
    get_backend,
    BACKENDS,
    TRANSFORMS,
    HAS_RPY2,
)

__all__ = [
    "DESeqBackend",
    "PyDESeq2Backend",
    "RDESeq2Backend",
    "DEResult",
    "TransformResult",
    "find_coefficient",
    "get_backend",
    "BACKENDS",
    "TRANSFORMS",
    "HAS_RPY2",
]
