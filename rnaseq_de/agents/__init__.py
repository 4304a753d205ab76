"""
RNA-seq DE Pipeline Agents

Each agent handles a specific step of the analysis:
- Agent 1: Data loading (cached download, count container, low-count filter)
- Agent 2: Normalization (size factors, VST / rlog)
- Agent 3: Exploratory analysis (PCA, sample distances, clustering)
- Agent 4: Differential expression (DESeq2, LFC shrinkage)
- Agent 5: Gene annotation (MyGene.info)
- Agent 6: Visualization
- Agent 7: Report generation
"""

from .agent1_data import DataAgent
from .agent2_normalization import NormalizationAgent
from .agent3_exploration import ExplorationAgent
from .agent4_deg import DEGAgent
from .agent5_annotation import AnnotationAgent
from .agent6_visualization import VisualizationAgent
from .agent7_report import ReportAgent

__all__ = [
    "DataAgent",
    "NormalizationAgent",
    "ExplorationAgent",
    "DEGAgent",
    "AnnotationAgent",
    "VisualizationAgent",
    "ReportAgent"
]
