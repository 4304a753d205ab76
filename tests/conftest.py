"""
RNA-seq DE Pipeline - Test Configuration and Fixtures
"""
import shutil
import sys
import pytest
import pandas as pd
from pathlib import Path
from unittest.mock import patch

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rnaseq_de.dataset import CountDataset, create_sample_data, simulate_counts  # noqa: E402
from rnaseq_de.deseq import HAS_RPY2  # noqa: E402


requires_r = pytest.mark.skipif(
    not (HAS_RPY2 and shutil.which("R")),
    reason="R / rpy2 not installed"
)


@pytest.fixture(scope="session")
def project_root():
    """Return project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def simulated():
    """Small simulated treatment x time x patient dataset (12 samples)."""
    return simulate_counts(n_genes=300, n_patients=2, seed=7)


@pytest.fixture
def count_dataset(simulated):
    """CountDataset built from the simulated tables."""
    return CountDataset(simulated["counts"], simulated["metadata"].set_index("sample_id"))


@pytest.fixture
def tiny_counts():
    """Hand-made 4 genes x 3 samples matrix."""
    return pd.DataFrame(
        {"S1": [10, 0, 5, 100], "S2": [20, 3, 10, 200], "S3": [40, 1, 20, 400]},
        index=["g1", "g2", "g3", "g4"]
    )


@pytest.fixture
def tiny_metadata():
    return pd.DataFrame(
        {"condition": ["A", "B", "B"], "batch": ["x", "x", "y"]},
        index=["S1", "S2", "S3"]
    )


@pytest.fixture
def sample_input_dir(tmp_path):
    """Input directory with count_matrix.csv, metadata.csv and config.json."""
    input_dir = tmp_path / "input"
    create_sample_data(input_dir, n_genes=300, n_patients=2, seed=7)
    return input_dir


@pytest.fixture
def sample_config():
    """Config matching the simulated design."""
    return {
        "condition_column": "treatment",
        "design_factors": ["time", "treatment"],
        "contrast": ["DPN", "Control"],
        "padj_cutoff": 0.05,
        "log2fc_cutoff": 1.0,
        "annotate_top_n": 10,
        "ntop_pca": 200,
        "dpi": 50
    }


def fake_querymany(ids, scopes=None, fields=None, species=None, verbose=False):
    """Stand-in for MyGeneInfo.querymany: every ID resolves to SYM<last 4 digits>."""
    return [
        {"query": q, "_id": q, "symbol": f"SYM{str(q)[-4:]}", "name": f"gene {q}", "entrezgene": 1000 + i}
        for i, q in enumerate(ids)
    ]


@pytest.fixture
def mock_mygene():
    """Patch the MyGene.info client used by the annotation agent."""
    with patch("rnaseq_de.agents.agent5_annotation.mygene.MyGeneInfo") as cls:
        cls.return_value.querymany.side_effect = fake_querymany
        yield cls
