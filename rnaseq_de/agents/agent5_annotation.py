"""
Agent 5: Gene Annotation

Annotates the top differentially expressed genes with symbols, names and
Entrez IDs from MyGene.info.

Supports:
- Ensembl IDs (ENSG00000141510, versioned IDs are stripped)
- Entrez Gene IDs (7157)
- Gene Symbols (TP53)

Input:
- deg_all_results.csv: From Agent 4

Output:
- deg_annotated.csv: Top genes with symbol, name, entrezgene
- meta_agent5_annotation.json: Execution metadata
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import mygene
import pandas as pd

from ..utils.base_agent import BaseAgent


SCOPES = {
    "ensembl": "ensembl.gene",
    "entrez": "entrezgene",
    "symbol": "symbol",
}


def detect_id_type(gene_ids: List[str]) -> str:
    """Guess the identifier namespace from the first 100 IDs."""
    sample_ids = [str(g) for g in gene_ids[:100]]
    if not sample_ids:
        return "symbol"

    ensembl_count = sum(1 for g in sample_ids if g.startswith('ENS'))
    numeric_count = sum(1 for g in sample_ids if g.isdigit())
    symbol_count = len(sample_ids) - ensembl_count - numeric_count

    if symbol_count > len(sample_ids) * 0.5:
        return "symbol"
    return "ensembl" if ensembl_count > numeric_count else "entrez"


def strip_version(gene_id: str) -> str:
    """ENSG00000141510.16 -> ENSG00000141510"""
    gene_id = str(gene_id)
    if gene_id.startswith('ENS'):
        return gene_id.split('.')[0]
    return gene_id


class AnnotationAgent(BaseAgent):
    """Agent for MyGene.info annotation of top genes."""

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        default_config = {
            "annotate_top_n": 20,
            "species": "human",
            "annotation_batch_size": 1000,
            "annotation_fields": ["symbol", "name", "entrezgene"],
        }

        merged_config = {**default_config, **(config or {})}
        super().__init__("agent5_annotation", input_dir, output_dir, merged_config)

        self.results: Optional[pd.DataFrame] = None

    def validate_inputs(self) -> bool:
        """Load DE results."""
        self.results = self.load_csv("deg_all_results.csv")

        required_cols = ['gene_id', 'log2FC', 'padj']
        missing = [c for c in required_cols if c not in self.results.columns]
        if missing:
            self.logger.error(f"Missing columns in deg_all_results.csv: {missing}")
            return False
        return True

    def _query_mygene(self, gene_ids: List[str], id_type: str) -> Dict[str, Dict[str, Any]]:
        """Query MyGene.info in batches; returns query -> hit."""
        mg = mygene.MyGeneInfo()
        fields = ",".join(self.config["annotation_fields"])
        batch_size = self.config["annotation_batch_size"]
        scope = SCOPES[id_type]

        self.logger.info(f"Querying MyGene.info for {len(gene_ids)} IDs (scope={scope})...")

        hits: Dict[str, Dict[str, Any]] = {}
        for i in range(0, len(gene_ids), batch_size):
            batch = gene_ids[i:i + batch_size]
            response = mg.querymany(
                batch,
                scopes=scope,
                fields=fields,
                species=self.config["species"],
                verbose=False
            )
            for r in response:
                # First hit wins for duplicated queries
                if r.get('notfound') or r['query'] in hits:
                    continue
                hits[str(r['query'])] = r
        return hits

    def run(self) -> Dict[str, Any]:
        """Annotate the top genes by padj."""
        top_n = self.config["annotate_top_n"]
        top = (
            self.results.dropna(subset=['padj'])
            .sort_values('padj')
            .head(top_n)
            .copy()
        )
        top['gene_id'] = top['gene_id'].astype(str)
        top['query_id'] = top['gene_id'].map(strip_version)

        id_type = detect_id_type(top['query_id'].tolist())
        self.logger.info(f"Gene ID format detected: {id_type}")

        lookup_failed = False
        hits: Dict[str, Dict[str, Any]] = {}
        if len(top) > 0:
            try:
                hits = self._query_mygene(sorted(set(top['query_id'])), id_type)
            except Exception as e:
                lookup_failed = True
                self.logger.warning(f"MyGene.info lookup failed: {e}. Using gene IDs as symbols.")

        def field(query_id: str, name: str, default=None):
            return hits.get(query_id, {}).get(name, default)

        top['symbol'] = [field(q, 'symbol', q) for q in top['query_id']]
        top['name'] = [field(q, 'name') for q in top['query_id']]
        top['entrezgene'] = [field(q, 'entrezgene') for q in top['query_id']]

        columns = ['gene_id', 'symbol', 'name', 'entrezgene', 'baseMean', 'log2FC', 'lfcSE', 'pvalue', 'padj']
        annotated = top[[c for c in columns if c in top.columns]]
        self.save_csv(annotated, "deg_annotated.csv")

        n_annotated = sum(1 for q in top['query_id'] if q in hits)
        self.logger.info(f"Annotated {n_annotated}/{len(top)} genes")
        if len(annotated) > 0:
            display = annotated[['gene_id', 'symbol', 'log2FC', 'padj']]
            self.logger.info("Top annotated genes:\n" + display.to_string(index=False))

        return {
            "id_type": id_type,
            "n_requested": len(top),
            "n_annotated": n_annotated,
            "lookup_failed": lookup_failed,
            "top_symbols": annotated['symbol'].head(10).tolist()
        }

    def validate_outputs(self) -> bool:
        """Validate annotation output."""
        filepath = self.output_dir / "deg_annotated.csv"
        if not filepath.exists():
            self.logger.error("Missing output file: deg_annotated.csv")
            return False

        annotated = pd.read_csv(filepath)
        if annotated['symbol'].isna().any():
            self.logger.error("Annotated table has missing symbols")
            return False
        return True
