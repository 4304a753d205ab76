"""
Bulk RNA-seq Differential Expression Pipeline

A step-by-step DESeq2 walkthrough split into 7 agents:
1. Data (cached download, count container)
2. Normalization (size factors, VST/rlog)
3. Exploration (PCA, sample clustering)
4. DEG Analysis (DESeq2 Wald test, LFC shrinkage)
5. Annotation (MyGene.info lookup)
6. Visualization
7. Report Generation

Each agent has clear input/output files and can be run independently.
"""

__version__ = "1.0.0"
__author__ = "BioInsight AI"
