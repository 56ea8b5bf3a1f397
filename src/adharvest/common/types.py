"""核心数据类型定义

采集流水线在各组件之间传递的数据结构：
- WorkItem: 一条待处理的表格行
- ExtractionResult: 单次（或多次合并后）的字段提取结果
- BatchWriteRequest: 写回表格的请求
- RunStats: 一次运行内的统计状态（由 Orchestrator 持有）
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping


# ============================================================================
# 字段名
# ============================================================================

STORE_LINK = "store_link"
APP_NAME = "app_name"
TAGLINE = "tagline"
ADVERTISER = "advertiser"

ALL_FIELDS: tuple[str, ...] = (STORE_LINK, APP_NAME, TAGLINE, ADVERTISER)


# ============================================================================
# 哨兵值与结果分类
# ============================================================================


class Sentinel(str, Enum):
    """“没有可用数据”的保留值，与空字符串区分开"""

    NOT_FOUND = "NOT_FOUND"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"

    def __str__(self) -> str:
        return self.value


_SENTINEL_VALUES = frozenset(s.value for s in Sentinel)


def is_sentinel(value: object) -> bool:
    """判断值是否为哨兵（兼容从表格读回的字符串形式）"""
    if isinstance(value, Sentinel):
        return True
    if isinstance(value, str):
        return value.strip() in _SENTINEL_VALUES
    return False


def has_value(value: object) -> bool:
    """非空且非哨兵"""
    if value is None:
        return False
    if is_sentinel(value):
        return False
    return bool(str(value).strip())


class Outcome(str, Enum):
    """单个条目的最终处理结果"""

    RESOLVED = "resolved"  # 所有必填字段均已提取
    PARTIAL = "partial"  # 部分字段提取成功
    NOT_FOUND = "not_found"  # 页面正常但什么都没找到
    BLOCKED = "blocked"  # 命中限流/验证码
    ERROR = "error"  # 超时或其他硬错误
    CRASHED = "crashed"  # 浏览器会话崩溃


# ============================================================================
# 工作条目
# ============================================================================


@dataclass(frozen=True)
class RowKey:
    """表格行引用（sheet 名 + 1 起始行号）"""

    sheet: str
    row: int

    def __str__(self) -> str:
        return f"{self.sheet}!{self.row}"


@dataclass(frozen=True)
class WorkItem:
    """一条待访问的广告详情页

    出队后不可变，由 Work Source 创建、Retry Controller 消费。
    """

    source_url: str
    row_key: RowKey
    fields_needed: frozenset[str] = frozenset()
    existing_values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields_needed", frozenset(self.fields_needed))
        object.__setattr__(
            self, "existing_values", MappingProxyType(dict(self.existing_values))
        )

    @property
    def advertiser(self) -> str:
        return self.existing_values.get(ADVERTISER, "")


# ============================================================================
# 提取结果
# ============================================================================


@dataclass
class ExtractionResult:
    """字段提取结果

    values 中每个字段要么是提取到的字符串，要么是 Sentinel。
    confidence 标记该值是否来自高置信度策略。
    """

    values: dict[str, str | Sentinel] = field(default_factory=dict)
    confidence: dict[str, bool] = field(default_factory=dict)
    strategies: dict[str, str] = field(default_factory=dict)
    attempts: int = 0
    outcome: Outcome | None = None

    @classmethod
    def empty(
        cls, fields: Iterable[str], sentinel: Sentinel = Sentinel.NOT_FOUND
    ) -> "ExtractionResult":
        """所有字段均为同一哨兵值的结果"""
        names = list(fields)
        return cls(
            values={name: sentinel for name in names},
            confidence={name: False for name in names},
        )

    def get(self, field_name: str) -> str | Sentinel:
        return self.values.get(field_name, Sentinel.NOT_FOUND)

    def is_found(self, field_name: str) -> bool:
        return has_value(self.values.get(field_name))

    def found_fields(self) -> set[str]:
        return {name for name in self.values if self.is_found(name)}

    def resolves(self, required: Iterable[str]) -> bool:
        """每个必填字段都至少有一个非哨兵值"""
        return all(self.is_found(name) for name in required)

    def set(self, field_name: str, value: str | Sentinel, confident: bool, strategy: str) -> None:
        self.values[field_name] = value
        self.confidence[field_name] = confident
        self.strategies[field_name] = strategy

    def merge(self, later: "ExtractionResult") -> "ExtractionResult":
        """合并后一次尝试的结果（哨兵保护）

        - 后一次的非哨兵值覆盖之前的哨兵
        - 哨兵永远不会覆盖已提取到的值
        - 后一次的高置信度值可替换之前的低置信度值
        - 两者都是哨兵时取后一次
        """
        merged = ExtractionResult(
            values=dict(self.values),
            confidence=dict(self.confidence),
            strategies=dict(self.strategies),
            attempts=max(self.attempts, later.attempts),
            outcome=later.outcome or self.outcome,
        )
        for name, new_value in later.values.items():
            new_confident = later.confidence.get(name, False)
            new_strategy = later.strategies.get(name, "")
            if name not in merged.values:
                merged.set(name, new_value, new_confident, new_strategy)
                continue

            old_found = merged.is_found(name)
            new_found = has_value(new_value)
            if new_found and not old_found:
                merged.set(name, new_value, new_confident, new_strategy)
            elif new_found and old_found:
                if new_confident and not merged.confidence.get(name, False):
                    merged.set(name, new_value, new_confident, new_strategy)
            elif not new_found and not old_found:
                merged.set(name, new_value, False, new_strategy)
        return merged


# ============================================================================
# 写入请求
# ============================================================================


@dataclass(frozen=True)
class CellUpdate:
    """单元格更新（1 起始行号，0 起始列号）"""

    row: int
    column: int
    value: str


@dataclass
class BatchWriteRequest:
    """一行的字段写入请求"""

    row_key: RowKey
    field_values: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.field_values


# ============================================================================
# 运行统计
# ============================================================================


@dataclass
class RunStats:
    """一次运行的显式状态

    由 Orchestrator 持有，并传入 SessionManager / ResultSink 调用中更新，
    不使用模块级全局变量。
    """

    outcomes: dict[str, int] = field(default_factory=lambda: {o.value: 0 for o in Outcome})
    rotations: dict[str, int] = field(default_factory=dict)
    blocks_per_proxy: dict[str, int] = field(default_factory=dict)
    written_rows: list[str] = field(default_factory=list)
    failed_rows: list[str] = field(default_factory=list)
    requeued: int = 0
    sessions_started: int = 0
    batches: int = 0
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def record_outcome(self, outcome: Outcome) -> None:
        self.outcomes[outcome.value] = self.outcomes.get(outcome.value, 0) + 1

    def record_rotation(self, reason: str) -> None:
        self.rotations[reason] = self.rotations.get(reason, 0) + 1

    def record_block(self, proxy: str | None) -> None:
        key = proxy or "DIRECT"
        self.blocks_per_proxy[key] = self.blocks_per_proxy.get(key, 0) + 1

    @property
    def total_blocks(self) -> int:
        return sum(self.blocks_per_proxy.values())

    @property
    def processed(self) -> int:
        return sum(self.outcomes.values())
