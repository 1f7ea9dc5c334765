"""
Batch Mode Benchmark
====================
Times the same fit with batch mode off and on, and with several CPU counts.

Every configuration fits the same generated dataset, starting from the same
parameter values. Results are collected as records that can be summarized,
plotted and written to JSON.
"""
from __future__ import annotations

import json
import logging
import os
import statistics
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence

import numpy as np
import matplotlib.pyplot as plt

from hepfit import __version__
from hepfit.fitting import FitOptions, fit
from hepfit.models.kernels import cpu_info
from hepfit.models.variables import ParameterSnapshot

if TYPE_CHECKING:
    from matplotlib.axes import Axes

    from hepfit.models.pdf import Pdf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BenchmarkConfig:
    """
    Attributes:
        n_events: Size of the generated dataset.
        repeats: Fits per configuration.
        num_cpus: CPU counts to compare.
        batch_modes: Batch mode settings to compare.
        seed: Seed of the generator of the dataset.
    """
    n_events: int = 100_000
    repeats: int = 3
    num_cpus: Sequence[int] = (1, 2, 4)
    batch_modes: Sequence[bool] = (False, True)
    seed: int = 1234

    def __post_init__(self) -> None:
        if self.n_events < 1:
            raise ValueError(f"n_events must be positive, got {self.n_events}.")
        if self.repeats < 1:
            raise ValueError(f"repeats must be positive, got {self.repeats}.")
        if not self.num_cpus or any(n < 1 for n in self.num_cpus):
            raise ValueError(f"num_cpus must be a non-empty list of positive integers, got {self.num_cpus}.")
        if not self.batch_modes:
            raise ValueError("At least one batch mode setting is required.")


@dataclass
class BenchmarkRecord:
    batch_mode: bool
    num_cpu: int
    n_events: int
    repeat: int
    wall_time: float
    cpu_time: float
    ncalls: int
    min_nll: float
    status: int
    values: Dict[str, float] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"batch {'on' if self.batch_mode else 'off'}, {self.num_cpu} cpu"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def run_benchmark(model_factory: Callable[[], Pdf], config: Optional[BenchmarkConfig] = None) -> list[BenchmarkRecord]:
    """
    Fit a generated dataset in every configuration.

    Args:
        model_factory: Builds the model; its parameter values generate the
            dataset and are the starting point of every fit.
        config: Benchmark settings.

    Returns:
        One record per fit.
    """
    config = config or BenchmarkConfig()
    pdf = model_factory()
    rng = np.random.default_rng(config.seed)
    data = pdf.generate(config.n_events, rng=rng)
    start = ParameterSnapshot(pdf.parameters())
    logger.info(f"Benchmarking fits of '{pdf.name}' to {data.num_entries()} events")

    records: list[BenchmarkRecord] = []
    for batch_mode in config.batch_modes:
        for num_cpu in config.num_cpus:
            for repeat in range(config.repeats):
                start.restore()
                result = fit(pdf, data, FitOptions(batch_mode=batch_mode, num_cpu=num_cpu, print_level=-1))
                record = BenchmarkRecord(
                    batch_mode=batch_mode,
                    num_cpu=num_cpu,
                    n_events=data.num_entries(),
                    repeat=repeat,
                    wall_time=result.wall_time,
                    cpu_time=result.cpu_time,
                    ncalls=result.ncalls,
                    min_nll=result.min_nll,
                    status=result.status,
                    values=dict(zip(result.parameter_names, result.values.tolist())),
                )
                records.append(record)
                logger.info(f"{record.label}, repeat {repeat}: {record.wall_time:.3f} s, {record.ncalls} calls")
    return records


def _medians(records: Sequence[BenchmarkRecord]) -> Dict[tuple[bool, int], float]:
    groups: Dict[tuple[bool, int], list[float]] = {}
    for record in records:
        groups.setdefault((record.batch_mode, record.num_cpu), []).append(record.wall_time)
    return {key: statistics.median(times) for key, times in groups.items()}


def summarize(records: Sequence[BenchmarkRecord]) -> str:
    """
    Table of median wall times per configuration.

    Speed-ups are relative to scalar evaluation on one CPU when it was
    measured, otherwise to the first configuration.
    """
    if not records:
        return "No benchmark records."
    medians = _medians(records)
    reference = medians.get((False, 1), next(iter(medians.values())))

    lines = [
        f"{'batch mode':>10}  {'num_cpu':>7}  {'median wall [s]':>15}  {'speed-up':>8}",
        f"{'-' * 10}  {'-' * 7}  {'-' * 15}  {'-' * 8}",
    ]
    for (batch_mode, num_cpu), median in medians.items():
        speedup = reference / median if median > 0 else float("nan")
        lines.append(f"{'on' if batch_mode else 'off':>10}  {num_cpu:>7}  {median:15.4f}  {speedup:8.2f}")
    return "\n".join(lines)


def plot_benchmark(records: Sequence[BenchmarkRecord], ax: Optional[Axes] = None) -> Axes:
    """Bar chart of the median wall time per configuration."""
    if ax is None:
        plt.rcParams["figure.constrained_layout.use"] = True
        _, ax = plt.subplots(figsize=(7, 5))

    medians = _medians(records)
    labels = [f"batch {'on' if b else 'off'}\n{n} cpu" for b, n in medians]
    colors = ["tab:green" if b else "tab:red" for b, _ in medians]
    ax.bar(range(len(medians)), list(medians.values()), color=colors)
    ax.set_xticks(range(len(medians)), labels)
    ax.set_ylabel("Median fit time (s)")
    ax.set_title("Likelihood fit time")
    ax.grid(visible=True, which='major', axis='y', linestyle='-', color='gray', lw=0.5)
    return ax


def write_json(records: Sequence[BenchmarkRecord], path: str | os.PathLike[str], metadata: Optional[Dict[str, Any]] = None) -> str:
    """Write the records, package version and CPU information to a JSON file."""
    document = {
        "version": __version__,
        "cpu_info": cpu_info(),
        "metadata": metadata or {},
        "records": [r.to_dict() for r in records],
    }
    path = os.fspath(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(json.dumps(document, indent=2, sort_keys=True))
    logger.info(f"Benchmark records written to: {path}")
    return path
