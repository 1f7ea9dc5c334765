"""
Results Input/Output (HDF5)
Saves and loads datasets, histograms and fit results to .h5 files.

Every object is stored in its own group, so several objects can share a file.
"""
import json
import logging
from typing import Any, Dict, Optional, Sequence

import h5py
import numpy as np

from hepfit import __version__
from hepfit.data import Dataset
from hepfit.fitting.result import FitResult
from hepfit.histogram import Binning, Histogram1D
from hepfit.models.variables import RealVar

# Get module logger
logger = logging.getLogger(__name__)


def _attr(value: Any) -> Any:
    """Convert an HDF5 attribute to a native Python value."""
    if isinstance(value, bytes):
        return value.decode('utf-8')
    if hasattr(value, 'item'):
        return value.item()
    return value


class ResultsIO:

    @staticmethod
    def _open_group(f: h5py.File, key: str, kind: str) -> h5py.Group:
        f.attrs["version"] = __version__
        if key in f:
            logger.debug(f"Replacing existing group '{key}'")
            del f[key]
        grp = f.create_group(key)
        grp.attrs["kind"] = kind
        return grp

    @staticmethod
    def _read_group(f: h5py.File, key: str, kind: str, filepath: str) -> h5py.Group:
        if key not in f or _attr(f[key].attrs.get("kind", "")) != kind:
            msg = f"File '{filepath}' has no {kind} stored under '{key}'."
            logger.error(msg)
            raise ValueError(msg)
        return f[key]

    @staticmethod
    def _check_file(filepath: str) -> None:
        if not h5py.is_hdf5(filepath):
            msg = f"File '{filepath}' is not a valid HDF5 file."
            logger.error(msg)
            raise ValueError(msg)

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------
    @staticmethod
    def save_dataset(data: Dataset, filepath: str, key: str = "dataset") -> None:
        logger.info(f"Saving dataset '{data.name}' to: {filepath} [{key}]")
        try:
            with h5py.File(filepath, "a") as f:
                grp = ResultsIO._open_group(f, key, "dataset")
                grp.attrs["name"] = data.name
                observables = [
                    {"name": o.name, "lo": o.lo, "hi": o.hi, "unit": o.unit, "title": o.title}
                    for o in data.observables
                ]
                grp.attrs["observables_json"] = json.dumps(observables)

                grp_cols = grp.create_group("columns")
                for name in data.names:
                    grp_cols.create_dataset(name, data=data[name], compression="gzip")
                if data.is_weighted:
                    grp.create_dataset("weights", data=data.weights, compression="gzip")
            logger.debug(f"Saved {data.num_entries()} entries.")
        except Exception as e:
            logger.exception(f"Failed to save dataset: {e}")
            raise

    @staticmethod
    def load_dataset(filepath: str, key: str = "dataset", observables: Optional[Sequence[RealVar]] = None) -> Dataset:
        """
        Load a dataset.

        Args:
            filepath: HDF5 file.
            key: Group the dataset was stored under.
            observables: Existing observables to attach (matched by name). New
                variables are created from the stored ranges otherwise.
        """
        logger.info(f"Loading dataset from: {filepath} [{key}]")
        ResultsIO._check_file(filepath)
        try:
            with h5py.File(filepath, "r") as f:
                grp = ResultsIO._read_group(f, key, "dataset", filepath)
                stored = json.loads(_attr(grp.attrs["observables_json"]))
                known = {o.name: o for o in observables or []}
                variables = [
                    known.get(o["name"]) or RealVar(o["name"], o["lo"], o["lo"], o["hi"], unit=o["unit"], title=o["title"])
                    for o in stored
                ]
                columns = {name: grp["columns"][name][()] for name in grp["columns"]}
                weights = grp["weights"][()] if "weights" in grp else None
                name = _attr(grp.attrs.get("name", "data"))
            return Dataset(variables, columns, weights=weights, name=name)
        except Exception as e:
            logger.exception(f"Failed to load dataset: {e}")
            raise

    # ------------------------------------------------------------------
    # Histograms
    # ------------------------------------------------------------------
    @staticmethod
    def save_histogram(hist: Histogram1D, filepath: str, key: Optional[str] = None) -> None:
        key = key or hist.name or "histogram"
        logger.info(f"Saving histogram '{hist.name}' to: {filepath} [{key}]")
        try:
            with h5py.File(filepath, "a") as f:
                grp = ResultsIO._open_group(f, key, "histogram")
                grp.attrs["name"] = hist.name
                grp.attrs["title"] = hist.title
                grp.attrs["nbins"] = hist.binning.nbins
                grp.attrs["lo"] = hist.binning.lo
                grp.attrs["hi"] = hist.binning.hi
                grp.attrs["log_spaced"] = hist.binning.log_spaced
                if hist.binning.explicit_edges is not None:
                    grp.create_dataset("edges", data=np.asarray(hist.binning.explicit_edges))

                grp.create_dataset("counts", data=hist.counts, compression="gzip")
                grp.create_dataset("sumw2", data=hist.sumw2, compression="gzip")
                grp.attrs["underflow"] = hist.underflow
                grp.attrs["overflow"] = hist.overflow
                grp.attrs["entries"] = hist.entries
                grp.attrs["sum_wx"] = hist._sum_wx
                grp.attrs["sum_wx2"] = hist._sum_wx2
        except Exception as e:
            logger.exception(f"Failed to save histogram: {e}")
            raise

    @staticmethod
    def load_histogram(filepath: str, key: str = "histogram") -> Histogram1D:
        logger.info(f"Loading histogram from: {filepath} [{key}]")
        ResultsIO._check_file(filepath)
        try:
            with h5py.File(filepath, "r") as f:
                grp = ResultsIO._read_group(f, key, "histogram", filepath)
                if "edges" in grp:
                    binning = Binning.from_edges(grp["edges"][()])
                else:
                    binning = Binning(
                        int(_attr(grp.attrs["nbins"])),
                        float(_attr(grp.attrs["lo"])),
                        float(_attr(grp.attrs["hi"])),
                        log_spaced=bool(_attr(grp.attrs["log_spaced"])),
                    )
                hist = Histogram1D(binning, name=_attr(grp.attrs["name"]), title=_attr(grp.attrs["title"]))
                hist.counts = grp["counts"][()]
                hist.sumw2 = grp["sumw2"][()]
                hist.underflow = float(_attr(grp.attrs["underflow"]))
                hist.overflow = float(_attr(grp.attrs["overflow"]))
                hist.entries = int(_attr(grp.attrs["entries"]))
                hist._sum_wx = float(_attr(grp.attrs["sum_wx"]))
                hist._sum_wx2 = float(_attr(grp.attrs["sum_wx2"]))
            return hist
        except Exception as e:
            logger.exception(f"Failed to load histogram: {e}")
            raise

    # ------------------------------------------------------------------
    # Fit results
    # ------------------------------------------------------------------
    @staticmethod
    def save_fit_result(result: FitResult, filepath: str, key: str = "fit_result") -> None:
        logger.info(f"Saving fit result to: {filepath} [{key}]")
        values = result.to_dict()
        try:
            with h5py.File(filepath, "a") as f:
                grp = ResultsIO._open_group(f, key, "fit_result")
                for name in ("initial_values", "values", "errors", "covariance"):
                    grp.create_dataset(name, data=values.pop(name))
                # Scalars as attributes, the rest as JSON
                for name in ("min_nll", "edm", "status", "cov_quality", "ncalls", "eval_errors", "wall_time", "cpu_time"):
                    grp.attrs[name] = values.pop(name)
                grp.attrs["metadata_json"] = json.dumps(values)
        except Exception as e:
            logger.exception(f"Failed to save fit result: {e}")
            raise

    @staticmethod
    def load_fit_result(filepath: str, key: str = "fit_result") -> FitResult:
        logger.info(f"Loading fit result from: {filepath} [{key}]")
        ResultsIO._check_file(filepath)
        try:
            with h5py.File(filepath, "r") as f:
                grp = ResultsIO._read_group(f, key, "fit_result", filepath)
                kwargs: Dict[str, Any] = json.loads(_attr(grp.attrs["metadata_json"]))
                for name in ("initial_values", "values", "errors", "covariance"):
                    kwargs[name] = grp[name][()]
                for name in ("min_nll", "edm", "wall_time", "cpu_time"):
                    kwargs[name] = float(_attr(grp.attrs[name]))
                for name in ("status", "cov_quality", "ncalls", "eval_errors"):
                    kwargs[name] = int(_attr(grp.attrs[name]))
            return FitResult(**kwargs)
        except Exception as e:
            logger.exception(f"Failed to load fit result: {e}")
            raise

    @staticmethod
    def file_version(filepath: str) -> str:
        """Package version that wrote the file."""
        ResultsIO._check_file(filepath)
        with h5py.File(filepath, "r") as f:
            return str(_attr(f.attrs.get("version", "unknown")))
