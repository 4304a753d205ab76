"""
Step framework for the DE pipeline.

Every analysis step (data, normalization, exploration, DEG, annotation,
figures, report) subclasses BaseAgent. A step reads the CSV/JSON tables left
in its input directory by earlier steps, writes its own tables to its output
directory, and leaves two traces behind: log_<agent>.txt and
meta_<agent>.json with the step's result summary.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import pandas as pd


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class BaseAgent(ABC):
    """One pipeline step.

    Subclasses implement validate_inputs, run and validate_outputs; callers
    only use execute(), which chains them and writes meta_<agent>.json
    whether the step succeeded or not.
    """

    def __init__(
        self,
        agent_name: str,
        input_dir: Path,
        output_dir: Path,
        config: Optional[Dict[str, Any]] = None
    ):
        self.agent_name = agent_name
        self.input_dir = Path(input_dir)
        self.output_dir = Path(output_dir)
        self.config = config or {}

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger = self._setup_logging()

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.success: bool = False
        self.errors: List[str] = []
        self.written_files: List[str] = []

    def _setup_logging(self) -> logging.Logger:
        """DEBUG and above to log_<agent>.txt, INFO and above to the console."""
        logger = logging.getLogger(f"rnaseq_de.{self.agent_name}")
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        # Re-running a step in the same process must not stack handlers
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

        formatter = logging.Formatter(LOG_FORMAT)

        file_handler = logging.FileHandler(
            self.output_dir / f"log_{self.agent_name}.txt", mode='w', encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)

        console = logging.StreamHandler()
        console.setLevel(logging.INFO)
        console.setFormatter(formatter)

        logger.addHandler(file_handler)
        logger.addHandler(console)
        return logger

    # ------------------------------------------------------------------
    # Table I/O

    def load_csv(self, filename: str, required: bool = True, **kwargs) -> Optional[pd.DataFrame]:
        """Read a table left by an earlier step; None when optional and absent."""
        filepath = self.input_dir / filename

        if not filepath.exists():
            if required:
                raise FileNotFoundError(f"Required input file not found: {filepath}")
            self.logger.warning(f"{filename} not in {self.input_dir}, continuing without it")
            return None

        df = pd.read_csv(filepath, **kwargs)
        self.logger.info(f"Read {filename}: {df.shape[0]} x {df.shape[1]}")
        return df

    def save_csv(self, df: pd.DataFrame, filename: str, index: bool = False) -> Path:
        filepath = self.output_dir / filename
        df.to_csv(filepath, index=index)
        self.written_files.append(filename)
        self.logger.info(f"Wrote {filename}: {len(df)} rows")
        return filepath

    def load_count_dataset(self):
        """count_matrix.csv + metadata.csv as a CountDataset."""
        from ..dataset.container import CountDataset

        count_table = self.load_csv("count_matrix.csv")
        metadata_table = self.load_csv("metadata.csv")
        dataset = CountDataset.from_frames(
            count_table, metadata_table, self.config.get("sample_column", "sample_id")
        )

        # CSV loses level order; restore the contrast reference level
        condition_col = self.config.get("condition_column")
        contrast = self.config.get("contrast")
        if condition_col in dataset.metadata.columns and contrast:
            dataset = dataset.relevel(condition_col, contrast[1])
        return dataset

    def load_json(self, filename: str, required: bool = True) -> Optional[Dict]:
        filepath = self.input_dir / filename

        if not filepath.exists():
            if required:
                raise FileNotFoundError(f"Required input file not found: {filepath}")
            return None

        with open(filepath, 'r', encoding='utf-8') as f:
            return json.load(f)

    def save_json(self, data: Dict, filename: str) -> Path:
        filepath = self.output_dir / filename
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        if not filename.startswith("meta_"):
            self.written_files.append(filename)
        self.logger.info(f"Wrote {filename}")
        return filepath

    # ------------------------------------------------------------------
    # Lifecycle

    def generate_metadata(self, **results) -> Dict[str, Any]:
        """Contents of meta_<agent>.json: run bookkeeping plus the step's results."""
        elapsed = None
        if self.start_time and self.end_time:
            elapsed = (self.end_time - self.start_time).total_seconds()

        return {
            "agent_name": self.agent_name,
            "timestamp": datetime.now().isoformat(),
            "execution_time_seconds": elapsed,
            "success": self.success,
            "errors": self.errors,
            "input_dir": str(self.input_dir),
            "output_files": list(self.written_files),
            "config_used": self.config,
            **results
        }

    @abstractmethod
    def validate_inputs(self) -> bool:
        """Load the step's inputs; False stops the step before run()."""

    @abstractmethod
    def run(self) -> Dict[str, Any]:
        """Do the analysis, write output tables and return a summary dict."""

    @abstractmethod
    def validate_outputs(self) -> bool:
        """Check the written tables; False marks the step failed."""

    def execute(self) -> Dict[str, Any]:
        """validate_inputs -> run -> validate_outputs, recorded in meta_<agent>.json.

        Any exception is logged, stored in the metadata and re-raised.
        """
        self.start_time = datetime.now()
        self.logger.info(f"[{self.agent_name}] {self.input_dir} -> {self.output_dir}")

        results: Dict[str, Any] = {}
        try:
            if not self.validate_inputs():
                raise ValueError("Input validation failed")
            self.logger.debug("Inputs OK")

            results = self.run()

            if not self.validate_outputs():
                raise ValueError("Output validation failed")
            self.logger.debug("Outputs OK")

            self.success = True
            self.logger.info(f"[{self.agent_name}] done")

        except Exception as e:
            self.success = False
            self.errors.append(str(e))
            self.logger.error(f"[{self.agent_name}] failed: {e}")
            raise

        finally:
            self.end_time = datetime.now()
            metadata = self.generate_metadata(**results if self.success else {})
            self.save_json(metadata, f"meta_{self.agent_name}.json")

        return results


class AgentResult:
    """Outcome of one step, as read back from its meta_<agent>.json."""

    def __init__(
        self,
        agent_name: str,
        success: bool,
        output_dir: Path,
        metadata: Dict[str, Any],
        errors: Optional[list] = None
    ):
        self.agent_name = agent_name
        self.success = success
        self.output_dir = output_dir
        self.metadata = metadata
        self.errors = errors or []

    @classmethod
    def from_meta_file(cls, meta_file: Path) -> "AgentResult":
        meta_file = Path(meta_file)
        with open(meta_file, 'r', encoding='utf-8') as f:
            metadata = json.load(f)
        return cls(
            agent_name=metadata.get("agent_name", meta_file.stem.replace("meta_", "")),
            success=bool(metadata.get("success")),
            output_dir=meta_file.parent,
            metadata=metadata,
            errors=metadata.get("errors")
        )

    def __repr__(self):
        status = "SUCCESS" if self.success else "FAILED"
        return f"AgentResult({self.agent_name}: {status})"
