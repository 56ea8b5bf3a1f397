"""存储层：表格存储、条目来源、去重、结果写入与汇总"""

from .aggregator import Aggregator, AggregateStats, SourceSheet
from .base import ColumnLayout, TabularStore
from .dedup import DedupEngine, normalize_key
from .excel_store import ExcelTableStore
from .memory_store import MemoryTableStore
from .sink import ResultSink
from .work_source import (
    BOTTOM_TO_TOP,
    STREAMING,
    TOP_TO_BOTTOM,
    MergedWorkSource,
    OrderedWorkSource,
    StreamingWorkSource,
    WorkSource,
    build_work_source,
)

__all__ = [
    "Aggregator",
    "AggregateStats",
    "SourceSheet",
    "ColumnLayout",
    "TabularStore",
    "DedupEngine",
    "normalize_key",
    "ExcelTableStore",
    "MemoryTableStore",
    "ResultSink",
    "WorkSource",
    "OrderedWorkSource",
    "StreamingWorkSource",
    "MergedWorkSource",
    "build_work_source",
    "TOP_TO_BOTTOM",
    "BOTTOM_TO_TOP",
    "STREAMING",
]
