"""
Command line interface.

    rnaseq-de download --url URL [--cache-dir DIR] [--force]
    rnaseq-de sample-data --output DIR [--genes N] [--patients N]
    rnaseq-de run --input DIR --output DIR [--config FILE] [--agent NAME]
"""

import argparse
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import CACHE_DIR, DATASET_URL, DEFAULT_CONFIG, load_config, setup_logging
from .dataset import create_sample_data, fetch_dataset
from .deseq import BACKENDS, TRANSFORMS
from .orchestrator import DEPipeline

logger = setup_logging("rnaseq_de.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rnaseq-de",
        description="Bulk RNA-seq differential expression pipeline (DESeq2)"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    download = subparsers.add_parser("download", help="Fetch the dataset into the local cache")
    download.add_argument("--url", default=DATASET_URL, help="Dataset URL (default: $RNASEQ_DE_DATASET_URL)")
    download.add_argument("--cache-dir", default=str(CACHE_DIR), help="Cache directory")
    download.add_argument("--filename", help="Cache file name (default: from URL)")
    download.add_argument("--force", action="store_true", help="Re-download even if cached")

    sample = subparsers.add_parser("sample-data", help="Write a simulated dataset")
    sample.add_argument("--output", "-o", required=True, help="Output directory")
    sample.add_argument("--genes", type=int, default=1000, help="Number of genes")
    sample.add_argument("--patients", type=int, default=4, help="Number of patients")
    sample.add_argument("--seed", type=int, default=DEFAULT_CONFIG["random_seed"], help="Random seed")

    run = subparsers.add_parser("run", help="Run the analysis pipeline")
    run.add_argument("--input", "-i", required=True, help="Input directory")
    run.add_argument("--output", "-o", required=True, help="Output directory")
    run.add_argument("--config", "-c", help="JSON config file (default: <input>/config.json if present)")
    run.add_argument("--url", help="Dataset URL, used when the input has no count_matrix.csv")
    run.add_argument("--dataset", help="Local dataset file (.h5ad, .rds, .csv, .tsv)")
    run.add_argument("--backend", choices=sorted(BACKENDS), help="DESeq2 engine")
    run.add_argument("--transform", choices=list(TRANSFORMS), help="Transformation for exploration")
    group = run.add_mutually_exclusive_group()
    group.add_argument("--agent", choices=DEPipeline.AGENT_ORDER, help="Run specific agent only")
    group.add_argument("--from-agent", choices=DEPipeline.AGENT_ORDER, help="Resume from specific agent")
    group.add_argument("--stop-after", choices=DEPipeline.AGENT_ORDER, help="Stop after specific agent")

    return parser


def _cmd_download(args: argparse.Namespace) -> int:
    if not args.url:
        print("Error: no dataset URL (use --url or set RNASEQ_DE_DATASET_URL)")
        return 1
    path = fetch_dataset(args.url, Path(args.cache_dir), filename=args.filename, force=args.force)
    print(f"Dataset available at {path}")
    return 0


def _cmd_sample_data(args: argparse.Namespace) -> int:
    create_sample_data(Path(args.output), n_genes=args.genes, n_patients=args.patients, seed=args.seed)
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    input_dir = Path(args.input)
    config_path = Path(args.config) if args.config else input_dir / "config.json"
    config = load_config(
        config_path if (args.config or config_path.exists()) else None,
        overrides={
            "dataset_url": args.url,
            "dataset_path": args.dataset,
            "backend": args.backend,
            "transform": args.transform,
        }
    )

    pipeline = DEPipeline(input_dir=input_dir, output_dir=Path(args.output), config=config)

    if args.agent:
        pipeline.run_agent(args.agent)
        state = pipeline.execution_state
    elif args.from_agent:
        state = pipeline.run_from(args.from_agent)
    else:
        state = pipeline.run(stop_after=args.stop_after)

    if state["failed_agents"]:
        print(f"Pipeline failed at {state['failed_agents'][0]} (see {pipeline.run_dir})")
        return 1

    print(f"Results: {pipeline.run_dir}")
    return 0


COMMANDS = {
    "download": _cmd_download,
    "sample-data": _cmd_sample_data,
    "run": _cmd_run,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return COMMANDS[args.command](args)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}")
        return 1
