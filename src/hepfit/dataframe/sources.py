from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

import numpy as np
import uproot

from hepfit.config import DEFAULT_STEP_SIZE
from hepfit.utils import as_column

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

ENTRY_COLUMN = "rdfentry_"
# Remote files over root:// are read through fsspec-xrootd
REMOTE_HINT = "Reading root:// URLs needs the XRootD filesystem, install hepfit[xrootd]."


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous range of entries processed as one unit of work.

    Attributes:
        index: Position of the chunk in the processing order.
        start: First entry (inclusive) within `location`.
        stop: Last entry (exclusive) within `location`.
        first_entry: Global index of `start` across all inputs.
        location: File the chunk belongs to, None for in-memory sources.
    """
    index: int
    start: int
    stop: int
    first_entry: int
    location: Optional[str] = None

    @property
    def size(self) -> int:
        return self.stop - self.start


def _split(start: int, stop: int, step: int) -> list[tuple[int, int]]:
    step = max(int(step), 1)
    return [(lo, min(lo + step, stop)) for lo in range(start, stop, step)]


class DataSource(ABC):
    """
    Abstract base class for dataframe inputs.
    """

    @property
    @abstractmethod
    def columns(self) -> list[str]:
        """Column names provided by the source."""
        pass

    @property
    @abstractmethod
    def n_entries(self) -> int:
        """Total number of entries."""
        pass

    @abstractmethod
    def chunks(self, n_slots: int = 1) -> list[Chunk]:
        """
        Split the input into chunks.

        Args:
            n_slots: Number of parallel workers that will process the chunks.

        Returns:
            Chunks in processing order.
        """
        pass

    @abstractmethod
    def _read_columns(self, chunk: Chunk, columns: Sequence[str]) -> Dict[str, Any]:
        pass

    def has_column(self, name: str) -> bool:
        return name == ENTRY_COLUMN or name in self.columns

    def read(self, chunk: Chunk, columns: Sequence[str]) -> Dict[str, Any]:
        """
        Read the requested columns for one chunk.

        The implicit entry-number column is generated on the fly.
        """
        wanted = [c for c in columns if c != ENTRY_COLUMN]
        data = self._read_columns(chunk, wanted) if wanted else {}
        if ENTRY_COLUMN in columns:
            data[ENTRY_COLUMN] = entry_numbers(chunk)
        return data


class ArraySource(DataSource):
    """
    In-memory columns, numpy or awkward arrays of equal length.
    """
    def __init__(self, columns: Dict[str, Any], step_size: int = DEFAULT_STEP_SIZE) -> None:
        self._columns = {name: as_column(values) for name, values in columns.items()}
        lengths = {name: len(values) for name, values in self._columns.items()}
        if len(set(lengths.values())) > 1:
            raise ValueError(f"Columns have different lengths: {lengths}")
        self._n = next(iter(lengths.values()), 0)
        self.step_size = step_size

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(columns={self.columns}, n_entries={self._n})"

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def n_entries(self) -> int:
        return self._n

    def chunks(self, n_slots: int = 1) -> list[Chunk]:
        step = self.step_size
        if n_slots > 1:
            step = min(step, math.ceil(self._n / n_slots)) if self._n else step
        ranges = _split(0, self._n, step) or [(0, 0)]
        return [Chunk(index=i, start=a, stop=b, first_entry=a) for i, (a, b) in enumerate(ranges)]

    def _read_columns(self, chunk: Chunk, columns: Sequence[str]) -> Dict[str, Any]:
        return {name: self._columns[name][chunk.start:chunk.stop] for name in columns}


class RangeSource(ArraySource):
    """
    An empty source with `n` entries, only the entry-number column exists.
    """
    def __init__(self, n_entries: int, step_size: int = DEFAULT_STEP_SIZE) -> None:
        if n_entries < 0:
            raise ValueError(f"Number of entries must be non-negative, got {n_entries}.")
        super().__init__({}, step_size=step_size)
        self._n = int(n_entries)


class RootSource(DataSource):
    """
    A TTree spread over one or more ROOT files, read with uproot.

    Files may be local paths or remote URLs (root://, https://).
    """
    def __init__(self, tree_name: str, files: str | Sequence[str], step_size: int = DEFAULT_STEP_SIZE) -> None:
        self.tree_name = tree_name
        self.files: list[str] = [files] if isinstance(files, str) else list(files)
        if not self.files:
            raise ValueError("At least one input file is required.")
        self.step_size = step_size

        self._entries: list[int] = []
        self._columns: list[str] = []
        for path in self.files:
            n, branches = self._inspect(path)
            self._entries.append(n)
            if not self._columns:
                self._columns = branches
        logger.info(f"Opened tree '{tree_name}' with {self.n_entries} entries in {len(self.files)} file(s).")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(tree='{self.tree_name}', files={self.files})"

    def _inspect(self, path: str) -> tuple[int, list[str]]:
        logger.debug(f"Inspecting {path}")
        try:
            with uproot.open(path) as f:
                tree = f[self.tree_name]
                return int(tree.num_entries), list(tree.keys())
        except KeyError as e:
            raise KeyError(f"Tree '{self.tree_name}' not found in '{path}'.") from e
        except OSError as e:
            logger.error(f"Cannot open '{path}': {e}")
            raise RuntimeError(f"Cannot open input file '{path}': {e}") from e
        except ImportError as e:
            raise RuntimeError(f"Cannot open input file '{path}': {e}. {REMOTE_HINT}") from e

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def n_entries(self) -> int:
        return int(sum(self._entries))

    def chunks(self, n_slots: int = 1) -> list[Chunk]:
        step = self.step_size
        if n_slots > 1 and self.n_entries:
            # Enough chunks to keep every worker busy
            step = min(step, math.ceil(self.n_entries / n_slots))

        out: list[Chunk] = []
        offset = 0
        for path, n in zip(self.files, self._entries):
            for a, b in _split(0, n, step):
                out.append(Chunk(index=len(out), start=a, stop=b, first_entry=offset + a, location=path))
            offset += n
        return out

    def _read_columns(self, chunk: Chunk, columns: Sequence[str]) -> Dict[str, Any]:
        try:
            with uproot.open(chunk.location) as f:
                arrays = f[self.tree_name].arrays(
                    list(columns),
                    entry_start=chunk.start,
                    entry_stop=chunk.stop,
                    library="ak",
                )
        except OSError as e:
            logger.error(f"Failed to read entries [{chunk.start}, {chunk.stop}) of '{chunk.location}': {e}")
            raise RuntimeError(f"Cannot read '{chunk.location}': {e}") from e
        except ImportError as e:
            raise RuntimeError(f"Cannot read '{chunk.location}': {e}. {REMOTE_HINT}") from e
        return {name: as_column(arrays[name]) for name in columns}


def entry_numbers(chunk: Chunk) -> npt.NDArray[np.int64]:
    """Global entry numbers of a chunk."""
    return np.arange(chunk.first_entry, chunk.first_entry + chunk.size, dtype=np.int64)
