from hepfit.dataframe.actions import CutFlowReport, CutInfo
from hepfit.dataframe.executor import (
    disable_implicit_mt,
    enable_implicit_mt,
    get_thread_pool_size,
    is_implicit_mt_enabled,
)
from hepfit.dataframe.expressions import Expression, compile_expression
from hepfit.dataframe.frame import DataFrame, LazyResult
from hepfit.dataframe.sources import ArraySource, DataSource, RangeSource, RootSource

__all__ = [
    "ArraySource",
    "CutFlowReport",
    "CutInfo",
    "DataFrame",
    "DataSource",
    "Expression",
    "LazyResult",
    "RangeSource",
    "RootSource",
    "compile_expression",
    "disable_implicit_mt",
    "enable_implicit_mt",
    "get_thread_pool_size",
    "is_implicit_mt_enabled",
]
