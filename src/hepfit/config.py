"""
Configuration & Path Management
===============================
This module serves as the central registry for file paths, remote data
locations and the run configuration of the analyses.

Why is this file needed?
------------------------
1. Abstraction: It prevents hardcoded paths and data URLs scattered
   throughout the analyses.
2. Overrides: Every analysis parameter can be changed from the environment
   (HEPFIT_* variables) or from a JSON file without touching code.

Exports:
    OUTPUT_PATH (str): Default directory for plots and result files.
    DEFAULT_TREE_NAME (str): Name of the NanoAOD event tree.
    DIMUON_DATA_FILES (list[str]): Remote CMS open-data files.
    AnalysisConfig: Run configuration of an analysis.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def get_resource_path(relative_path: str) -> str:
    """
    Get absolute path to resource, works for dev and for frozen builds.
    """
    if hasattr(sys, '_MEIPASS'):
        base_path: str = getattr(sys, '_MEIPASS')
        return os.path.join(base_path, relative_path)

    # config.py is in src/hepfit/
    current_file_path: Path = Path(__file__)
    project_root: Path = current_file_path.parent.parent.parent
    return os.path.join(str(project_root), relative_path)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Global Constants
OUTPUT_PATH: str = os.environ.get("HEPFIT_OUTPUT_DIR", get_resource_path("output"))

DEFAULT_TREE_NAME: str = "Events"

# CMS open data, Run2012B and Run2012C DoubleMuParked skims (reduced NanoAOD)
DIMUON_DATA_FILES: List[str] = [
    "root://eospublic.cern.ch//eos/root-eos/cms_opendata_2012_nanoaod/Run2012B_DoubleMuParked.root",
    "root://eospublic.cern.ch//eos/root-eos/cms_opendata_2012_nanoaod/Run2012C_DoubleMuParked.root",
]

# Entries per chunk read from a ROOT file
DEFAULT_STEP_SIZE: int = 500_000

# Log every batch kernel dispatch (see hepfit.models.kernels)
DISPATCH_DEBUG: bool = _env_flag("HEPFIT_DEBUG_DISPATCH")


@dataclass
class AnalysisConfig:
    """
    Run configuration shared by the analyses and the command line.

    Attributes:
        tree_name: Name of the event tree in the input files.
        files: Input files (local paths, root:// or https:// URLs).
        num_threads: Dataframe thread pool size (0 disables implicit MT).
        num_cpu: Number of parallel workers for likelihood evaluation.
        batch_mode: Use the vectorized compute kernels for PDF evaluation.
        print_level: Fit verbosity (-1 silent ... 3 every call).
        n_events: Number of events to generate for toy studies.
        seed: Seed of the random generator used for toy generation.
        output_dir: Directory receiving plots and result files.
    """
    tree_name: str = DEFAULT_TREE_NAME
    files: List[str] = field(default_factory=lambda: list(DIMUON_DATA_FILES))
    num_threads: int = 0
    num_cpu: int = 1
    batch_mode: bool = True
    print_level: int = -1
    n_events: int = 100_000
    seed: int = 1234
    output_dir: str = OUTPUT_PATH

    def __post_init__(self) -> None:
        if self.num_threads < 0:
            raise ValueError(f"num_threads must be >= 0, got {self.num_threads}.")
        if self.num_cpu < 1:
            raise ValueError(f"num_cpu must be >= 1, got {self.num_cpu}.")
        if self.n_events < 1:
            raise ValueError(f"n_events must be >= 1, got {self.n_events}.")
        if self.print_level not in (-1, 0, 1, 2, 3):
            raise ValueError(f"print_level must be in -1..3, got {self.print_level}.")
        if not self.files:
            raise ValueError("At least one input file is required.")

    @classmethod
    def from_env(cls, **overrides: Any) -> AnalysisConfig:
        """
        Build a configuration from HEPFIT_* environment variables.

        Explicit keyword overrides take precedence over the environment.
        """
        values: Dict[str, Any] = {}
        env = os.environ

        if "HEPFIT_TREE_NAME" in env:
            values["tree_name"] = env["HEPFIT_TREE_NAME"]
        if "HEPFIT_DATA_FILES" in env:
            values["files"] = [f.strip() for f in env["HEPFIT_DATA_FILES"].split(",") if f.strip()]
        if "HEPFIT_NUM_THREADS" in env:
            values["num_threads"] = int(env["HEPFIT_NUM_THREADS"])
        if "HEPFIT_NUM_CPU" in env:
            values["num_cpu"] = int(env["HEPFIT_NUM_CPU"])
        if "HEPFIT_BATCH_MODE" in env:
            values["batch_mode"] = _env_flag("HEPFIT_BATCH_MODE", True)
        if "HEPFIT_PRINT_LEVEL" in env:
            values["print_level"] = int(env["HEPFIT_PRINT_LEVEL"])
        if "HEPFIT_EVENTS" in env:
            values["n_events"] = int(env["HEPFIT_EVENTS"])
        if "HEPFIT_SEED" in env:
            values["seed"] = int(env["HEPFIT_SEED"])

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_json(cls, path: str | os.PathLike[str], **overrides: Any) -> AnalysisConfig:
        """
        Load a configuration from a JSON file.

        Raises:
            ValueError: If the file contains keys that are not configuration fields.
        """
        logger.info(f"Loading analysis configuration from: {path}")
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def ensure_output_dir(self) -> Path:
        """Create the output directory if needed and return it."""
        out = Path(self.output_dir)
        out.mkdir(parents=True, exist_ok=True)
        return out


def resolve_output_path(filename: str, config: Optional[AnalysisConfig] = None) -> str:
    """Absolute path of an output artefact inside the configured output directory."""
    out_dir = config.ensure_output_dir() if config else Path(OUTPUT_PATH)
    if config is None:
        out_dir.mkdir(parents=True, exist_ok=True)
    return str(out_dir / filename)
