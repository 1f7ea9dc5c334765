"""
Command Line Interface
======================
Runs the scripted analyses.

Usage:
    $ hepfit dimuon --threads 4
    $ hepfit fit-demo --events 20000 --num-cpu 2
    $ hepfit batch-mode --events 100000 --num-cpu 1 2 4
    $ hepfit cpu-info
"""
from __future__ import annotations

import argparse
import logging
import sys

from hepfit import __version__
from hepfit.config import AnalysisConfig
from hepfit.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace) -> AnalysisConfig:
    overrides = {
        "num_threads": getattr(args, "threads", None),
        "num_cpu": getattr(args, "num_cpu", None),
        "n_events": getattr(args, "events", None),
        "seed": getattr(args, "seed", None),
        "print_level": getattr(args, "print_level", None),
        "output_dir": args.output_dir,
        "files": getattr(args, "files", None) or None,
    }
    if getattr(args, "no_batch", False):
        overrides["batch_mode"] = False
    if args.config:
        return AnalysisConfig.from_json(args.config, **overrides)
    return AnalysisConfig.from_env(**overrides)


def _cmd_dimuon(args: argparse.Namespace) -> int:
    from hepfit.analyses import dimuon

    result = dimuon.run(_load_config(args))
    if result.plot_path:
        print(result.plot_path)
    return 0


def _cmd_fit_demo(args: argparse.Namespace) -> int:
    from hepfit.analyses import fit_demo

    demo = fit_demo.run(_load_config(args))
    for path in demo.plots.values():
        print(path)
    return 0 if all(r.is_valid for r in demo.results.values()) else 1


def _cmd_batch_mode(args: argparse.Namespace) -> int:
    from hepfit.analyses import batch_mode

    config = _load_config(args)
    result = batch_mode.run(config, num_cpus=args.num_cpus, repeats=args.repeats)
    if result.json_path:
        print(result.json_path)
    return 0


def _cmd_cpu_info(args: argparse.Namespace) -> int:
    from hepfit.analyses.batch_mode import print_cpu_info

    print_cpu_info()
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="Analysis configuration JSON")
    p.add_argument("--output-dir", dest="output_dir", default=None, help="Directory for plots and result files")


def _add_fit_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--events", type=int, default=None, help="Number of generated events")
    p.add_argument("--seed", type=int, default=None, help="Seed of the toy generator")
    p.add_argument("--print-level", dest="print_level", type=int, default=None, choices=(-1, 0, 1, 2, 3),
                   help="Fit verbosity")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hepfit", description="Columnar event analysis and likelihood fits")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument("--log-file", dest="log_file", default=None, help="Also write the log to this file")
    sp = p.add_subparsers(dest="cmd", required=True)

    pd = sp.add_parser("dimuon", help="Dimuon invariant mass spectrum from CMS open data")
    _add_common(pd)
    pd.add_argument("--threads", type=int, default=None, help="Dataframe threads (0 disables implicit MT)")
    pd.add_argument("--files", nargs="+", default=None, help="Input ROOT files or URLs")
    pd.set_defaults(func=_cmd_dimuon)

    pf = sp.add_parser("fit-demo", help="Generate-and-fit demonstrations")
    _add_common(pf)
    _add_fit_options(pf)
    pf.add_argument("--num-cpu", dest="num_cpu", type=int, default=None, help="Parallel likelihood workers")
    pf.add_argument("--no-batch", dest="no_batch", action="store_true", help="Evaluate the PDFs event by event")
    pf.set_defaults(func=_cmd_fit_demo)

    pb = sp.add_parser("batch-mode", help="Compare fit times with batch mode off and on")
    _add_common(pb)
    _add_fit_options(pb)
    pb.add_argument("--num-cpu", dest="num_cpus", type=int, nargs="+", default=None, help="CPU counts to compare")
    pb.add_argument("--repeats", type=int, default=1, help="Fits per configuration")
    pb.set_defaults(func=_cmd_batch_mode)

    pc = sp.add_parser("cpu-info", help="Print the compute kernel target")
    _add_common(pc)
    pc.set_defaults(func=_cmd_cpu_info)
    return p


def main(argv: list[str] | None = None) -> int:
    ns = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if ns.verbose else logging.INFO, log_file=ns.log_file)
    try:
        return int(ns.func(ns))
    except (OSError, RuntimeError, ValueError, KeyError) as e:
        logger.exception(f"{ns.cmd} failed: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
