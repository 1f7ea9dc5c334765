"""
Batch Mode Comparison
=====================
Fit the same composite model with batch mode off and on, and with several
CPU counts, and report the timings together with the kernel target.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import matplotlib.pyplot as plt

from hepfit.analyses.fit_demo import make_composite_model
from hepfit.benchmark import BenchmarkConfig, BenchmarkRecord, plot_benchmark, run_benchmark, summarize, write_json
from hepfit.config import AnalysisConfig, resolve_output_path
from hepfit.models.kernels import cpu_info, dispatch_counts, reset_dispatch_counts

logger = logging.getLogger(__name__)


@dataclass
class BatchModeResult:
    records: list[BenchmarkRecord]
    summary: str
    json_path: Optional[str] = None
    plot_path: Optional[str] = None


def print_cpu_info() -> None:
    for key, value in cpu_info().items():
        print(f"{key:>16}: {value}")


def run(
    config: AnalysisConfig,
    num_cpus: Optional[Sequence[int]] = None,
    repeats: int = 1,
    save: bool = True,
) -> BatchModeResult:
    """
    Run the comparison.

    Args:
        config: Number of events, seed and output directory; `num_cpu` is
            added to the compared CPU counts.
        num_cpus: CPU counts to compare (default 1 and `config.num_cpu`).
        repeats: Fits per configuration.
        save: Write the JSON records and the timing plot.
    """
    print_cpu_info()
    cpus = sorted(set(num_cpus or (1, config.num_cpu)))
    bench_config = BenchmarkConfig(
        n_events=config.n_events,
        repeats=repeats,
        num_cpus=tuple(cpus),
        batch_modes=(False, True),
        seed=config.seed,
    )

    reset_dispatch_counts()
    records = run_benchmark(make_composite_model, bench_config)
    summary = summarize(records)
    print(summary)
    print(f"Kernel dispatches: {dispatch_counts()}")

    result = BatchModeResult(records=records, summary=summary)
    if save:
        result.json_path = write_json(records, resolve_output_path("batch_mode.json", config),
                                      metadata={"model": "gaussian + exponential"})
        ax = plot_benchmark(records)
        result.plot_path = resolve_output_path("batch_mode.png", config)
        ax.figure.savefig(result.plot_path, dpi=150)
        plt.close(ax.figure)
    return result
