"""
Computation Graph
=================
Nodes of a lazy dataframe and the loop manager that executes them.

Why is this file needed?
------------------------
Transformations (filters, definitions) only record what to do. The loop
manager collects every booked action and runs them all in a single pass over
the input, reading only the columns the booked chains actually need.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence

import numpy as np

from hepfit.dataframe.executor import get_thread_pool_size, map_chunks
from hepfit.dataframe.expressions import Expression, compile_expression, to_mask
from hepfit.utils import Stopwatch, as_column, is_awkward, is_jagged

if TYPE_CHECKING:
    from hepfit.dataframe.actions import Action
    from hepfit.dataframe.sources import Chunk, DataSource

logger = logging.getLogger(__name__)

_ids = itertools.count()


@dataclass
class View:
    """Columns of one chunk as seen by a node (after upstream filters)."""
    columns: Dict[str, Any]
    n: int


class Node:
    """
    Base class of the graph nodes.
    """
    def __init__(self, parent: Optional[Node]) -> None:
        self.id = next(_ids)
        self.parent = parent

    def chain(self) -> list[Node]:
        """Nodes from the root down to (and including) this node."""
        nodes: list[Node] = []
        node: Optional[Node] = self
        while node is not None:
            nodes.append(node)
            node = node.parent
        return nodes[::-1]

    @property
    def inputs(self) -> tuple[str, ...]:
        """Columns read by this node."""
        return ()

    @property
    def defines(self) -> Optional[str]:
        """Column created by this node."""
        return None

    def apply(self, view: View, stats: Dict[int, list[int]]) -> View:
        return view


class RootNode(Node):
    def __init__(self) -> None:
        super().__init__(parent=None)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id})"


class _CallableNode(Node):
    """A node driven either by an expression string or a Python callable."""

    def __init__(
        self,
        parent: Node,
        expression: str | Callable[..., Any],
        columns: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(parent)
        self.expression: Optional[Expression] = None
        self.function: Optional[Callable[..., Any]] = None

        if isinstance(expression, str):
            if columns is not None:
                raise ValueError("Explicit columns are only accepted together with a callable.")
            self.expression = compile_expression(expression)
            self._inputs = self.expression.columns
        elif callable(expression):
            if columns is None:
                raise ValueError("A callable requires the list of its input columns.")
            self.function = expression
            self._inputs = tuple(columns)
        else:
            raise ValueError(f"Expected an expression string or a callable, got {type(expression).__name__}.")

    @property
    def inputs(self) -> tuple[str, ...]:
        return self._inputs

    @property
    def description(self) -> str:
        if self.expression is not None:
            return self.expression.source
        return getattr(self.function, "__name__", repr(self.function))

    def evaluate(self, view: View) -> Any:
        if self.expression is not None:
            value = self.expression.evaluate(view.columns)
        else:
            value = self.function(*(view.columns[c] for c in self._inputs))  # type: ignore[misc]

        if not is_awkward(value) and np.ndim(value) == 0:
            return np.full(view.n, value)
        value = as_column(value)
        if len(value) != view.n:
            raise ValueError(f"'{self.description}' returned {len(value)} values for {view.n} entries.")
        return value


class FilterNode(_CallableNode):
    def __init__(
        self,
        parent: Node,
        expression: str | Callable[..., Any],
        name: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(parent, expression, columns)
        self.name = name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id}, name={self.name!r}, expression={self.description!r})"

    def apply(self, view: View, stats: Dict[int, list[int]]) -> View:
        mask = self.evaluate(view)
        if is_jagged(mask):
            raise ValueError(f"Filter '{self.description}' must return one boolean per entry.")
        mask = to_mask(mask, view.n)

        passed = int(mask.sum())
        counter = stats.setdefault(self.id, [0, 0])
        counter[0] += view.n
        counter[1] += passed

        return View(columns={k: v[mask] for k, v in view.columns.items()}, n=passed)


class DefineNode(_CallableNode):
    def __init__(
        self,
        parent: Node,
        name: str,
        expression: str | Callable[..., Any],
        columns: Optional[Sequence[str]] = None,
    ) -> None:
        if not name.isidentifier():
            raise ValueError(f"Invalid column name: {name!r}")
        super().__init__(parent, expression, columns)
        self.name = name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id}, name={self.name!r}, expression={self.description!r})"

    @property
    def defines(self) -> Optional[str]:
        return self.name

    def apply(self, view: View, stats: Dict[int, list[int]]) -> View:
        columns = dict(view.columns)
        columns[self.name] = self.evaluate(view)
        return View(columns=columns, n=view.n)


def source_columns_for(chain: Sequence[Node], extra: Sequence[str] = ()) -> set[str]:
    """Columns that a chain (plus an action reading `extra`) needs from the source."""
    needed: set[str] = set()
    defined: set[str] = set()
    for node in chain:
        needed.update(c for c in node.inputs if c not in defined)
        if node.defines:
            defined.add(node.defines)
    needed.update(c for c in extra if c not in defined)
    return needed


class LoopManager:
    """
    Owns the data source and the booked actions of one dataframe graph.
    """
    def __init__(self, source: DataSource) -> None:
        self.source = source
        self.root = RootNode()
        self.actions: list[Action] = []
        self.n_runs: int = 0

    def book(self, action: Action) -> None:
        self.actions.append(action)

    def pending(self) -> list[Action]:
        return [a for a in self.actions if not a.done]

    def _view(self, node: Node, base: View, cache: Dict[int, View], stats: Dict[int, list[int]]) -> View:
        if node.id in cache:
            return cache[node.id]
        if node.parent is None:
            view = base
        else:
            view = node.apply(self._view(node.parent, base, cache, stats), stats)
        cache[node.id] = view
        return view

    def run(self) -> None:
        """Run one event loop filling every pending action."""
        actions = self.pending()
        if not actions:
            return

        needed: set[str] = set()
        for action in actions:
            needed |= source_columns_for(action.node.chain(), action.columns)

        n_threads = get_thread_pool_size()
        chunks = self.source.chunks(max(n_threads, 1))
        logger.info(
            f"Starting event loop over {self.source.n_entries} entries in {len(chunks)} chunk(s) "
            f"for {len(actions)} action(s), reading {sorted(needed)}"
        )

        def process(chunk: Chunk) -> list[Any]:
            data = self.source.read(chunk, sorted(needed))
            base = View(columns=data, n=chunk.size)
            cache: Dict[int, View] = {}
            stats: Dict[int, list[int]] = {}
            partials = []
            for action in actions:
                view = self._view(action.node, base, cache, stats)
                partials.append(action.process(view, stats))
            return partials

        with Stopwatch() as sw:
            results = map_chunks(process, chunks)
            for i, action in enumerate(actions):
                action.finalize([r[i] for r in results])

        self.n_runs += 1
        logger.info(f"Event loop finished in {sw.real_time:.3f} s (cpu {sw.cpu_time:.3f} s).")
