"""
Column Expressions
==================
Compiles the C++-flavoured column expressions used in selections and
definitions (e.g. ``"nMuon == 2 && Muon_charge[0] != Muon_charge[1]"``)
into a validated syntax tree evaluated over whole column chunks.

Supported syntax:
    arithmetic, comparisons (chained comparisons included), ``&&``, ``||``,
    ``!``, ``true``/``false``, ``c ? a : b`` is NOT supported (use
    ``a if c else b``), constant element access on collection columns
    (``Muon_pt[0]``), the math functions and collection reductions listed in
    ``FUNCTIONS``, and ``TMath::Pi()``.

``&&`` and ``||`` short-circuit per entry, so ``nMuon == 2 && Muon_pt[1] > 20``
never reads past the end of a collection. Element access beyond the end of a
collection yields a missing value, which selections treat as false.
"""
from __future__ import annotations

import ast
import functools
import operator
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import awkward as ak
import numpy as np

from hepfit.utils import is_awkward

if TYPE_CHECKING:
    import numpy.typing as npt


def _reducer(ak_func: Callable[..., Any], np_func: Callable[..., Any], empty: float) -> Callable[[Any], Any]:
    def reduce(values: Any) -> Any:
        if is_awkward(values):
            reduced = ak_func(values, axis=-1)
            return ak.to_numpy(ak.fill_none(reduced, empty))
        values = np.asarray(values)
        if values.shape[-1] == 0:
            return np.full(values.shape[:-1], empty)
        return np_func(values, axis=-1)
    return reduce


def _sum(values: Any) -> Any:
    if is_awkward(values):
        return ak.to_numpy(ak.sum(values, axis=-1))
    return np.sum(values, axis=-1)


def _length(values: Any) -> Any:
    if is_awkward(values):
        return ak.to_numpy(ak.num(values, axis=1))
    values = np.asarray(values)
    return np.full(values.shape[0], values.shape[1], dtype=np.int64)


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "sqrt": np.sqrt,
    "exp": np.exp,
    "log": np.log,
    "log10": np.log10,
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
    "sinh": np.sinh,
    "cosh": np.cosh,
    "abs": np.abs,
    "fabs": np.abs,
    "pow": np.power,
    "atan2": np.arctan2,
    "min": np.minimum,
    "max": np.maximum,
    # Collection reductions
    "Sum": _sum,
    "Max": _reducer(ak.max, np.max, np.nan),
    "Min": _reducer(ak.min, np.min, np.nan),
    "Mean": _reducer(ak.mean, np.mean, np.nan),
    "Length": _length,
    "TMath_Pi": lambda: np.pi,
}


_BINARY: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.BitAnd: operator.and_,
    ast.BitOr: operator.or_,
    ast.BitXor: operator.xor,
}

_UNARY: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: np.logical_not,
    ast.Invert: operator.invert,
}

_COMPARE: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_ALLOWED_NODES = (
    ast.Expression, ast.BoolOp, ast.BinOp, ast.UnaryOp, ast.Compare, ast.Call,
    ast.Name, ast.Load, ast.Constant, ast.Subscript, ast.IfExp,
    ast.And, ast.Or, *_BINARY, *_UNARY, *_COMPARE,
)


def to_mask(value: Any, n: int) -> npt.NDArray[np.bool_]:
    """
    One boolean per entry.

    Missing values (elements beyond the end of a collection) count as false.
    """
    if is_awkward(value):
        missing = ak.to_numpy(ak.is_none(value))
        value = np.ma.getdata(ak.to_numpy(value, allow_missing=True)).astype(bool) & ~missing
    return np.broadcast_to(np.asarray(value, dtype=bool), (n,))


def _at(values: Any, index: int) -> Any:
    """Element ``index`` of every event's collection, None where the collection is shorter."""
    if is_awkward(values):
        return ak.firsts(values[:, index:index + 1], axis=1)
    return values[:, index]


def _where(condition: Any, if_true: Any, if_false: Any) -> Any:
    if is_awkward(condition) or is_awkward(if_true) or is_awkward(if_false):
        return ak.where(condition, if_true, if_false)
    return np.where(condition, if_true, if_false)


def translate(expression: str) -> str:
    """Rewrite C++ operators and literals into Python syntax."""
    text = expression.replace("&&", " and ").replace("||", " or ")
    text = re.sub(r"!(?!=)", " not ", text)
    text = re.sub(r"\btrue\b", "True", text)
    text = re.sub(r"\bfalse\b", "False", text)
    text = text.replace("::", "_")
    return text.strip()


class _Evaluator(ast.NodeVisitor):
    """
    Evaluates a validated expression tree element-wise over a chunk of columns.

    ``&&`` and ``||`` short-circuit per entry: the right operand is only
    evaluated on the entries the left operand leaves undecided.
    """
    def __init__(self, columns: Dict[str, Any], n: Optional[int]) -> None:
        self.columns = columns
        self.n = n

    def generic_visit(self, node: ast.AST) -> Any:
        raise ValueError(f"Unsupported syntax '{type(node).__name__}' in expression.")

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        return self.columns[node.id]

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        return _BINARY[type(node.op)](self.visit(node.left), self.visit(node.right))

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return _UNARY[type(node.op)](self.visit(node.operand))

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        result = None
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            value = _COMPARE[type(op)](left, right)
            result = value if result is None else np.logical_and(result, value)
            left = right
        return result

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return _at(self.visit(node.value), node.slice.value)  # type: ignore[attr-defined]

    def visit_Call(self, node: ast.Call) -> Any:
        return FUNCTIONS[node.func.id](*(self.visit(arg) for arg in node.args))  # type: ignore[attr-defined]

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return _where(self.visit(node.test), self.visit(node.body), self.visit(node.orelse))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        is_and = isinstance(node.op, ast.And)
        if self.n is None:
            values = [self.visit(v) for v in node.values]
            return functools.reduce(np.logical_and if is_and else np.logical_or, values)

        result = np.array(to_mask(self.visit(node.values[0]), self.n))
        for operand in node.values[1:]:
            # Still true for &&, still false for ||
            pending = result.copy() if is_and else ~result
            n_pending = int(pending.sum())
            if not n_pending:
                break
            subset = _Evaluator({k: v[pending] for k, v in self.columns.items()}, n_pending)
            result[pending] = to_mask(subset.visit(operand), n_pending)
        return result


def _validate(tree: ast.AST, source: str) -> None:
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise ValueError(f"Unsupported syntax '{type(node).__name__}' in expression: {source!r}")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                name = getattr(node.func, "id", ast.dump(node.func))
                raise ValueError(f"Unknown function '{name}' in expression: {source!r}")
            if node.keywords:
                raise ValueError(f"Keyword arguments are not supported in expression: {source!r}")
        if isinstance(node, ast.Subscript):
            index = node.slice
            if not (isinstance(index, ast.Constant) and isinstance(index.value, int)):
                raise ValueError(f"Only constant integer indices are supported in expression: {source!r}")
            if not isinstance(node.value, ast.Name):
                raise ValueError(f"Indexing is only supported on columns in expression: {source!r}")


@dataclass(frozen=True)
class Expression:
    """
    A parsed column expression.

    Attributes:
        source: The expression as written by the user.
        columns: Column names the expression reads.
        tree: Validated syntax tree.
    """
    source: str
    columns: tuple[str, ...]
    tree: ast.Expression

    def evaluate(self, columns: Dict[str, Any]) -> Any:
        """Evaluate the expression over a chunk of columns."""
        namespace = {name: columns[name] for name in self.columns}
        n = len(next(iter(namespace.values()))) if namespace else None
        return _Evaluator(namespace, n).visit(self.tree)


@functools.lru_cache(maxsize=512)
def compile_expression(source: str) -> Expression:
    """
    Parse and validate a column expression.

    Raises:
        ValueError: If the expression is empty, malformed or uses unsupported syntax.
    """
    if not source or not source.strip():
        raise ValueError("Empty expression.")

    try:
        tree = ast.parse(translate(source), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Cannot parse expression {source!r}: {e.msg}") from e

    _validate(tree, source)

    columns: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id not in FUNCTIONS and node.id not in columns:
            columns.append(node.id)
    return Expression(source=source, columns=tuple(columns), tree=tree)
