from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional, Sequence

import numpy as np

from hepfit.histogram import Binning, Histogram1D
from hepfit.utils import concatenate, flatten

if TYPE_CHECKING:
    from hepfit.dataframe.graph import FilterNode, Node, View


class Action(ABC):
    """
    A result computed in the event loop.

    Each chunk produces a partial result, partials are merged in chunk order.
    """
    def __init__(self, node: Node, columns: Sequence[str] = ()) -> None:
        self.node = node
        self.columns: tuple[str, ...] = tuple(columns)
        self.done: bool = False
        self.result: Any = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(columns={list(self.columns)}, done={self.done})"

    @abstractmethod
    def process(self, view: View, stats: Dict[int, list[int]]) -> Any:
        """Partial result for one chunk."""
        pass

    @abstractmethod
    def merge(self, partials: list[Any]) -> Any:
        """Combine the partial results of all chunks."""
        pass

    def finalize(self, partials: list[Any]) -> None:
        self.result = self.merge(partials)
        self.done = True


class CountAction(Action):
    def process(self, view: View, stats: Dict[int, list[int]]) -> int:
        return view.n

    def merge(self, partials: list[int]) -> int:
        return int(sum(partials))


class SumAction(Action):
    def process(self, view: View, stats: Dict[int, list[int]]) -> float:
        return float(np.sum(flatten(view.columns[self.columns[0]])))

    def merge(self, partials: list[float]) -> float:
        return float(sum(partials))


class MeanAction(Action):
    def process(self, view: View, stats: Dict[int, list[int]]) -> tuple[float, int]:
        values = flatten(view.columns[self.columns[0]])
        return float(np.sum(values)), int(values.size)

    def merge(self, partials: list[tuple[float, int]]) -> float:
        total = sum(p[0] for p in partials)
        count = sum(p[1] for p in partials)
        return total / count if count else float("nan")


class MinAction(Action):
    def process(self, view: View, stats: Dict[int, list[int]]) -> Optional[float]:
        values = flatten(view.columns[self.columns[0]])
        return float(values.min()) if values.size else None

    def merge(self, partials: list[Optional[float]]) -> float:
        values = [p for p in partials if p is not None]
        return min(values) if values else float("nan")


class MaxAction(Action):
    def process(self, view: View, stats: Dict[int, list[int]]) -> Optional[float]:
        values = flatten(view.columns[self.columns[0]])
        return float(values.max()) if values.size else None

    def merge(self, partials: list[Optional[float]]) -> float:
        values = [p for p in partials if p is not None]
        return max(values) if values else float("nan")


class Histo1DAction(Action):
    def __init__(
        self,
        node: Node,
        binning: Binning,
        column: str,
        weight: Optional[str] = None,
        name: str = "",
        title: str = "",
    ) -> None:
        super().__init__(node, [column] if weight is None else [column, weight])
        self.binning = binning
        self.column = column
        self.weight = weight
        self.name = name or column
        self.title = title

    def _empty(self) -> Histogram1D:
        return Histogram1D(self.binning, name=self.name, title=self.title)

    def process(self, view: View, stats: Dict[int, list[int]]) -> Histogram1D:
        hist = self._empty()
        weights = view.columns[self.weight] if self.weight else None
        hist.fill(view.columns[self.column], weights)
        return hist

    def merge(self, partials: list[Histogram1D]) -> Histogram1D:
        hist = self._empty()
        for partial in partials:
            hist += partial
        return hist


class TakeAction(Action):
    def process(self, view: View, stats: Dict[int, list[int]]) -> Any:
        return view.columns[self.columns[0]]

    def merge(self, partials: list[Any]) -> Any:
        return concatenate(partials)


class AsNumpyAction(Action):
    def process(self, view: View, stats: Dict[int, list[int]]) -> Dict[str, Any]:
        return {c: view.columns[c] for c in self.columns}

    def merge(self, partials: list[Dict[str, Any]]) -> Dict[str, Any]:
        return {c: concatenate([p[c] for p in partials]) for c in self.columns}


@dataclass(frozen=True)
class CutInfo:
    """Bookkeeping of one named filter."""
    name: str
    all: int
    passed: int
    cumulative_base: int

    @property
    def efficiency(self) -> float:
        return 100.0 * self.passed / self.all if self.all else 0.0

    @property
    def cumulative_efficiency(self) -> float:
        return 100.0 * self.passed / self.cumulative_base if self.cumulative_base else 0.0

    def __str__(self) -> str:
        return (f"{self.name:<30}: pass={self.passed:<12} all={self.all:<12} "
                f"-- eff={self.efficiency:.2f} % cumulative eff={self.cumulative_efficiency:.2f} %")


class CutFlowReport:
    """
    Cut-flow of the named filters along a dataframe chain.
    """
    def __init__(self, cuts: list[CutInfo]) -> None:
        self.cuts = cuts

    def __iter__(self) -> Iterator[CutInfo]:
        return iter(self.cuts)

    def __len__(self) -> int:
        return len(self.cuts)

    def __getitem__(self, name: str) -> CutInfo:
        for cut in self.cuts:
            if cut.name == name:
                return cut
        raise KeyError(f"No filter named '{name}' in report.")

    def __str__(self) -> str:
        return "\n".join(str(cut) for cut in self.cuts)

    def print(self) -> None:
        print(str(self))


class ReportAction(Action):
    def _named_filters(self) -> list[FilterNode]:
        from hepfit.dataframe.graph import FilterNode

        return [n for n in self.node.chain() if isinstance(n, FilterNode) and n.name]

    def process(self, view: View, stats: Dict[int, list[int]]) -> Dict[int, tuple[int, int]]:
        return {n.id: tuple(stats.get(n.id, (0, 0))) for n in self._named_filters()}  # type: ignore[misc]

    def merge(self, partials: list[Dict[int, tuple[int, int]]]) -> CutFlowReport:
        cuts: list[CutInfo] = []
        first_all: Optional[int] = None
        for node in self._named_filters():
            n_all = sum(p[node.id][0] for p in partials)
            n_pass = sum(p[node.id][1] for p in partials)
            if first_all is None:
                first_all = n_all
            cuts.append(CutInfo(name=node.name or "", all=n_all, passed=n_pass, cumulative_base=first_all))
        return CutFlowReport(cuts)
