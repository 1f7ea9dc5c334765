from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Generic, Optional, Sequence, TypeVar

import uproot

from hepfit.config import DEFAULT_STEP_SIZE
from hepfit.dataframe.actions import (
    Action,
    AsNumpyAction,
    CountAction,
    CutFlowReport,
    Histo1DAction,
    MaxAction,
    MeanAction,
    MinAction,
    ReportAction,
    SumAction,
    TakeAction,
)
from hepfit.dataframe.graph import DefineNode, FilterNode, LoopManager, Node
from hepfit.dataframe.sources import ENTRY_COLUMN, ArraySource, DataSource, RangeSource, RootSource
from hepfit.histogram import Binning, Histogram1D

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LazyResult(Generic[T]):
    """
    Handle to the result of a booked action.

    Accessing the value runs the event loop once for all actions booked on
    the same dataframe graph that are still pending.
    """
    def __init__(self, loop: LoopManager, action: Action) -> None:
        self._loop = loop
        self._action = action

    def __repr__(self) -> str:
        state = "ready" if self.is_ready else "pending"
        return f"{self.__class__.__name__}({self._action.__class__.__name__}, {state})"

    @property
    def is_ready(self) -> bool:
        return self._action.done

    def get_value(self) -> T:
        if not self._action.done:
            self._loop.run()
        return self._action.result

    @property
    def value(self) -> T:
        return self.get_value()


class DataFrame:
    """
    Lazy, optionally multi-threaded columnar data processing.

    Transformations (`filter`, `define`) return new dataframes sharing the
    same computation graph; actions (`count`, `histo1d`, ...) return
    `LazyResult` handles that are all filled in one event loop.

    Example:
        df = DataFrame.from_root("Events", files)
        df_2mu = df.filter("nMuon == 2", "Events with exactly two muons")
        h = df_2mu.histo1d(Binning.uniform(100, 0, 100), "Muon_pt")
        h.value.plot()
    """
    def __init__(self, source: DataSource, _loop: Optional[LoopManager] = None, _node: Optional[Node] = None) -> None:
        self._loop = _loop or LoopManager(source)
        self._node = _node or self._loop.root

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source={self._loop.source!r}, node={self._node!r})"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_root(cls, tree_name: str, files: str | Sequence[str], step_size: int = DEFAULT_STEP_SIZE) -> DataFrame:
        """Dataframe over a tree in one or more ROOT files (local or remote)."""
        return cls(RootSource(tree_name, files, step_size=step_size))

    @classmethod
    def from_arrays(cls, columns: Dict[str, Any], step_size: int = DEFAULT_STEP_SIZE) -> DataFrame:
        """Dataframe over in-memory numpy/awkward columns."""
        return cls(ArraySource(columns, step_size=step_size))

    @classmethod
    def from_range(cls, n_entries: int, step_size: int = DEFAULT_STEP_SIZE) -> DataFrame:
        """Dataframe with `n_entries` empty entries, to be filled with `define`."""
        return cls(RangeSource(n_entries, step_size=step_size))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def source(self) -> DataSource:
        return self._loop.source

    def defined_columns(self) -> list[str]:
        """Columns created with `define` along this chain."""
        return [n.defines for n in self._node.chain() if n.defines]

    def columns(self) -> list[str]:
        """Every column available at this node."""
        return [*self.source.columns, *self.defined_columns()]

    def has_column(self, name: str) -> bool:
        return self.source.has_column(name) or name in self.defined_columns()

    def describe(self) -> str:
        lines = [
            f"Dataframe over {self.source!r}",
            f"  entries in source : {self.source.n_entries}",
            f"  source columns    : {len(self.source.columns)}",
        ]
        for node in self._node.chain()[1:]:
            lines.append(f"  {node!r}")
        return "\n".join(lines)

    def _check_columns(self, columns: Sequence[str]) -> None:
        for name in columns:
            if not self.has_column(name):
                raise KeyError(f"Unknown column '{name}'.")

    def _derive(self, node: Node) -> DataFrame:
        self._check_columns(node.inputs)
        return DataFrame(self.source, _loop=self._loop, _node=node)

    # ------------------------------------------------------------------
    # Transformations
    # ------------------------------------------------------------------
    def filter(
        self,
        predicate: str | Callable[..., Any],
        name: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> DataFrame:
        """
        Keep the entries for which the predicate is true.

        Args:
            predicate: Expression string or callable returning one boolean per entry.
            name: Name shown in the cut-flow report.
            columns: Input columns of a callable predicate.
        """
        return self._derive(FilterNode(self._node, predicate, name=name, columns=columns))

    def define(
        self,
        name: str,
        expression: str | Callable[..., Any],
        columns: Optional[Sequence[str]] = None,
    ) -> DataFrame:
        """
        Add a derived column.

        Args:
            name: New column name.
            expression: Expression string or callable computing the column.
            columns: Input columns of a callable.

        Raises:
            ValueError: If a column with this name already exists.
        """
        if self.has_column(name):
            raise ValueError(f"Column '{name}' already exists.")
        return self._derive(DefineNode(self._node, name, expression, columns=columns))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def _book(self, action: Action) -> LazyResult[Any]:
        self._check_columns(action.columns)
        self._loop.book(action)
        return LazyResult(self._loop, action)

    def count(self) -> LazyResult[int]:
        return self._book(CountAction(self._node))

    def sum(self, column: str) -> LazyResult[float]:
        return self._book(SumAction(self._node, [column]))

    def mean(self, column: str) -> LazyResult[float]:
        return self._book(MeanAction(self._node, [column]))

    def min(self, column: str) -> LazyResult[float]:
        return self._book(MinAction(self._node, [column]))

    def max(self, column: str) -> LazyResult[float]:
        return self._book(MaxAction(self._node, [column]))

    def histo1d(
        self,
        binning: Binning | tuple[int, float, float],
        column: str,
        weight: Optional[str] = None,
        name: str = "",
        title: str = "",
    ) -> LazyResult[Histogram1D]:
        """
        Book a one-dimensional histogram of a column.

        Args:
            binning: A `Binning` or a `(nbins, lo, hi)` tuple.
            column: Column to fill, collections fill every element.
            weight: Optional weight column.
            name: Histogram name.
            title: Histogram title.
        """
        if not isinstance(binning, Binning):
            binning = Binning.uniform(*binning)
        return self._book(Histo1DAction(self._node, binning, column, weight=weight, name=name, title=title))

    def take(self, column: str) -> LazyResult[Any]:
        return self._book(TakeAction(self._node, [column]))

    def as_numpy(self, columns: Optional[Sequence[str]] = None) -> LazyResult[Dict[str, Any]]:
        """Book the extraction of columns (all non-implicit columns by default)."""
        if columns is None:
            columns = [c for c in self.columns() if c != ENTRY_COLUMN]
        return self._book(AsNumpyAction(self._node, columns))

    def report(self) -> LazyResult[CutFlowReport]:
        """Book the cut-flow report of the named filters along this chain."""
        return self._book(ReportAction(self._node))

    def snapshot(
        self,
        tree_name: str,
        filename: str | os.PathLike[str],
        columns: Optional[Sequence[str]] = None,
    ) -> DataFrame:
        """
        Write columns of the selected entries to a new ROOT file (runs immediately).

        Returns:
            A dataframe reading the written file.
        """
        data = self.as_numpy(columns).get_value()
        filename = os.fspath(filename)
        logger.info(f"Writing {len(data)} column(s) to tree '{tree_name}' in {filename}")
        try:
            with uproot.recreate(filename) as f:
                f[tree_name] = data
        except OSError as e:
            logger.exception(f"Failed to write snapshot: {e}")
            raise
        return DataFrame.from_root(tree_name, [filename])

