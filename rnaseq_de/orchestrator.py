"""
RNA-seq DE Pipeline Orchestrator

Coordinates the execution of the differential-expression walkthrough.

Usage:
    from rnaseq_de.orchestrator import DEPipeline

    pipeline = DEPipeline(
        input_dir="./data",
        output_dir="./results",
        config={"contrast": ["DPN", "Control"]}
    )

    # Run full pipeline
    results = pipeline.run()

    # Or run specific agents
    pipeline.run_agent("agent1_data")
    pipeline.run_from("agent4_deg")  # Resume from agent 4

Pipeline:
    Data -> Normalization -> Exploration -> DEG -> Annotation -> Visualization -> Report
"""

import json
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from .agents import (
    DataAgent,
    NormalizationAgent,
    ExplorationAgent,
    DEGAgent,
    AnnotationAgent,
    VisualizationAgent,
    ReportAgent,
)
from .utils.base_agent import AgentResult


class DEPipeline:
    """Orchestrator for the RNA-seq DE pipeline."""

    AGENT_ORDER = [
        "agent1_data",
        "agent2_normalization",
        "agent3_exploration",
        "agent4_deg",
        "agent5_annotation",
        "agent6_visualization",
        "agent7_report"
    ]

    AGENT_CLASSES = {
        "agent1_data": DataAgent,
        "agent2_normalization": NormalizationAgent,
        "agent3_exploration": ExplorationAgent,
        "agent4_deg": DEGAgent,
        "agent5_annotation": AnnotationAgent,
        "agent6_visualization": VisualizationAgent,
        "agent7_report": ReportAgent
    }

    # Define which outputs each agent needs from previous agents
    AGENT_DEPENDENCIES = {
        "agent1_data": [],  # Uses input dir, dataset_path or dataset_url
        "agent2_normalization": ["count_matrix.csv", "metadata.csv"],
        "agent3_exploration": ["transformed_counts.csv", "metadata.csv"],
        "agent4_deg": ["count_matrix.csv", "metadata.csv"],
        "agent5_annotation": ["deg_all_results.csv"],
        "agent6_visualization": [
            "size_factors.csv", "pca_coordinates.csv", "sample_distances.csv",
            "deg_all_results.csv"
        ],
        "agent7_report": ["*"]  # All outputs
    }

    def __init__(
        self,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        self.input_dir = Path(input_dir)
        self.output_dir = Path(output_dir)
        self.config = config or {}

        # Create output directory with timestamp
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.run_dir = self.output_dir / f"run_{timestamp}"
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.accumulated_dir = self.run_dir / "accumulated"

        self.logger = self._setup_logging()

        # Track execution state
        self.execution_state = {
            "run_id": timestamp,
            "start_time": None,
            "end_time": None,
            "completed_agents": [],
            "failed_agents": [],
            "agent_results": {}
        }

    def _setup_logging(self) -> logging.Logger:
        """Setup pipeline-level logging."""
        logger = logging.getLogger("rnaseq_de.pipeline")
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

        # File handler
        log_file = self.run_dir / "pipeline.log"
        fh = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        fh.setLevel(logging.DEBUG)

        # Console handler
        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        fh.setFormatter(formatter)
        ch.setFormatter(formatter)

        logger.addHandler(fh)
        logger.addHandler(ch)

        return logger

    def _get_agent_input_dir(self, agent_name: str) -> Path:
        """Determine input directory for an agent."""
        # First agent uses input
        if agent_name == "agent1_data":
            return self.input_dir

        # For subsequent agents, use accumulated outputs
        return self.accumulated_dir

    def _accumulate_outputs(self, agent_name: str) -> None:
        """Copy agent outputs to accumulated directory for next agents."""
        self.accumulated_dir.mkdir(exist_ok=True)

        agent_output_dir = self.run_dir / agent_name
        if not agent_output_dir.exists():
            return

        # Later outputs replace earlier ones (filtered counts replace raw input)
        for pattern in ["*.csv", "*.json"]:
            for f in agent_output_dir.glob(pattern):
                shutil.copy2(f, self.accumulated_dir / f.name)

        figures_dir = agent_output_dir / "figures"
        if figures_dir.exists():
            dest_figures = self.accumulated_dir / "figures"
            if dest_figures.exists():
                shutil.rmtree(dest_figures)
            shutil.copytree(figures_dir, dest_figures)

    def _copy_initial_inputs(self) -> None:
        """Copy initial input files to accumulated directory."""
        self.accumulated_dir.mkdir(exist_ok=True)

        if not self.input_dir.exists():
            return

        for pattern in ["*.csv", "*.json"]:
            for f in self.input_dir.glob(pattern):
                shutil.copy2(f, self.accumulated_dir / f.name)

    def check_dependencies(self, agent_name: str) -> List[str]:
        """Return the input files an agent needs that are not present yet."""
        if agent_name not in self.AGENT_CLASSES:
            raise ValueError(f"Unknown agent: {agent_name}")

        input_dir = self._get_agent_input_dir(agent_name)
        return [
            filename for filename in self.AGENT_DEPENDENCIES[agent_name]
            if filename != "*" and not (input_dir / filename).exists()
        ]

    def run_agent(self, agent_name: str, config_override: Optional[Dict] = None) -> Dict[str, Any]:
        """Run a single agent."""
        if agent_name not in self.AGENT_CLASSES:
            raise ValueError(f"Unknown agent: {agent_name}")

        self.logger.info(f"{'='*60}")
        self.logger.info(f"Running {agent_name}")
        self.logger.info(f"{'='*60}")

        if agent_name != "agent1_data" and not self.accumulated_dir.exists():
            self._copy_initial_inputs()

        missing = self.check_dependencies(agent_name)
        if missing:
            self.logger.warning(f"{agent_name} inputs not found: {missing}")

        # Merge configs
        agent_config = {**self.config, **(config_override or {})}

        input_dir = self._get_agent_input_dir(agent_name)
        output_dir = self.run_dir / agent_name

        AgentClass = self.AGENT_CLASSES[agent_name]
        agent = AgentClass(
            input_dir=input_dir,
            output_dir=output_dir,
            config=agent_config
        )

        try:
            results = agent.execute()
            self.execution_state["completed_agents"].append(agent_name)
            self.execution_state["agent_results"][agent_name] = results

            # Accumulate outputs for next agents
            self._accumulate_outputs(agent_name)

            return results

        except Exception as e:
            self.logger.error(f"Agent {agent_name} failed: {e}")
            self.execution_state["failed_agents"].append(agent_name)
            raise

    def _run_agents(self, agents_to_run: List[str]) -> None:
        for agent_name in agents_to_run:
            try:
                self.run_agent(agent_name)
            except Exception as e:
                self.logger.error(f"Pipeline stopped at {agent_name}: {e}")
                break

    def run(self, stop_after: Optional[str] = None) -> Dict[str, Any]:
        """Run the full pipeline or until a specific agent."""
        if stop_after and stop_after not in self.AGENT_ORDER:
            raise ValueError(f"Unknown agent: {stop_after}")

        self.execution_state["start_time"] = datetime.now().isoformat()

        self.logger.info("Starting RNA-seq DE Pipeline")
        self.logger.info(f"Run directory: {self.run_dir}")

        self._copy_initial_inputs()

        if stop_after:
            stop_idx = self.AGENT_ORDER.index(stop_after) + 1
            agents_to_run = self.AGENT_ORDER[:stop_idx]
        else:
            agents_to_run = self.AGENT_ORDER

        self.logger.info(f"Agents to run: {agents_to_run}")
        self._run_agents(agents_to_run)

        self.execution_state["end_time"] = datetime.now().isoformat()
        self._save_execution_state()

        self.logger.info(f"{'='*60}")
        self.logger.info("Pipeline Complete")
        self.logger.info(f"Completed: {len(self.execution_state['completed_agents'])} agents")
        self.logger.info(f"Failed: {len(self.execution_state['failed_agents'])} agents")
        self.logger.info(f"Results: {self.run_dir}")
        self.logger.info(f"{'='*60}")

        return self.execution_state

    def run_from(self, agent_name: str) -> Dict[str, Any]:
        """Resume pipeline from a specific agent."""
        if agent_name not in self.AGENT_ORDER:
            raise ValueError(f"Unknown agent: {agent_name}")

        start_idx = self.AGENT_ORDER.index(agent_name)
        agents_to_run = self.AGENT_ORDER[start_idx:]

        self.logger.info(f"Resuming from {agent_name}")
        if not self.accumulated_dir.exists():
            self._copy_initial_inputs()

        self._run_agents(agents_to_run)

        self.execution_state["end_time"] = datetime.now().isoformat()
        self._save_execution_state()
        return self.execution_state

    def get_results(self) -> Dict[str, AgentResult]:
        """Collect AgentResult objects from the meta files of this run."""
        results = {}
        for agent_name in self.AGENT_ORDER:
            meta_file = self.run_dir / agent_name / f"meta_{agent_name}.json"
            if meta_file.exists():
                results[agent_name] = AgentResult.from_meta_file(meta_file)
        return results

    def _save_execution_state(self) -> None:
        """Save execution state to JSON."""
        state_file = self.run_dir / "pipeline_summary.json"
        with open(state_file, 'w', encoding='utf-8') as f:
            json.dump(self.execution_state, f, indent=2, default=str)
