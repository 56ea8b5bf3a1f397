"""Work Source

从表格中产出待处理条目。三种遍历方式：
- top_to_bottom / bottom_to_top: 首次调用时扫描整张表，之后按顺序分页
- streaming: 每次调用只读取下一段行
多个来源可以通过 MergedWorkSource 串联，并按源 URL 去重。
"""

from __future__ import annotations

import abc
import asyncio
from typing import Any, Awaitable, Callable, Iterable, Sequence

from ..common.config import config
from ..common.exceptions import StorageError, WorkSourceError, classify_store_error
from ..common.logger import get_logger
from ..common.types import ADVERTISER, RowKey, WorkItem
from ..common.utils.delay import backoff_delay
from .base import ColumnLayout, TabularStore
from .dedup import DedupEngine

logger = get_logger(__name__)

TOP_TO_BOTTOM = "top_to_bottom"
BOTTOM_TO_TOP = "bottom_to_top"
STREAMING = "streaming"
DIRECTIONS = (TOP_TO_BOTTOM, BOTTOM_TO_TOP, STREAMING)

Batch = tuple[list[WorkItem], Any, bool]


class WorkSource(abc.ABC):
    """单个工作表的条目来源

    Args:
        store: 表格存储
        sheet: 工作表名
        layout: 列布局
        fields: 需要填充的输出字段
        required_fields: 全部为空时该行才需要处理
        batch_size: 每次 next_batch 返回的最大条目数
    """

    def __init__(
        self,
        store: TabularStore,
        sheet: str,
        layout: ColumnLayout | None = None,
        fields: Iterable[str] | None = None,
        required_fields: Iterable[str] | None = None,
        batch_size: int | None = None,
        read_chunk_size: int | None = None,
        max_read_retries: int | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.store = store
        self.sheet = sheet
        self.layout = layout or ColumnLayout(header_rows=config.store.header_rows)
        wanted = list(fields or config.crawl.fields)
        self.fields = [name for name in wanted if name in self.layout.outputs]
        required = [name for name in (required_fields or config.crawl.required_fields) if name in self.layout.outputs]
        self.required_fields = required or self.fields
        self.batch_size = batch_size or config.crawl.concurrency
        self.read_chunk_size = read_chunk_size or config.store.read_chunk_size
        self.max_read_retries = max_read_retries or config.store.max_read_retries
        self.sleep = sleep or asyncio.sleep

    def needs_work(self, row: Sequence[str]) -> bool:
        """有源 URL 且所有必填输出列为空"""
        if not self.layout.url_of(row):
            return False
        return all(not self.layout.cell(row, self.layout.outputs[name]) for name in self.required_fields)

    def to_item(self, row_number: int, row: Sequence[str]) -> WorkItem:
        existing = self.layout.values_of(row)
        needed = {name for name in self.fields if not existing.get(name)}
        if ADVERTISER in self.layout.outputs and not existing.get(ADVERTISER):
            needed.add(ADVERTISER)
        return WorkItem(
            source_url=self.layout.url_of(row),
            row_key=RowKey(self.sheet, row_number),
            fields_needed=frozenset(needed),
            existing_values={k: v for k, v in existing.items() if v},
        )

    async def _read(self, start: int, end: int) -> list[list[str]]:
        return await self._with_retries(lambda: self.store.read_rows(self.sheet, start, end), f"{start}-{end}")

    async def _row_count(self) -> int:
        return await self._with_retries(lambda: self.store.row_count(self.sheet), "row_count")

    async def _with_retries(self, call: Callable[[], Awaitable[Any]], what: str) -> Any:
        last: StorageError | None = None
        for attempt in range(1, self.max_read_retries + 1):
            try:
                return await call()
            except Exception as exc:  # noqa: BLE001
                last = classify_store_error(exc)
                logger.warning(f"[WorkSource] 读取 {self.sheet} {what} 失败 ({attempt}/{self.max_read_retries}): {exc}")
                if attempt < self.max_read_retries:
                    await self.sleep(backoff_delay(1.0, 2.0, attempt))
        raise WorkSourceError(self.sheet, str(last))

    async def scan(self, start: int | None = None) -> list[WorkItem]:
        """分段读取整张表，返回所有需要处理的条目（自上而下）"""
        first = start or self.layout.header_rows + 1
        total = await self._row_count()
        items: list[WorkItem] = []
        row_number = first
        while row_number <= total:
            end = min(row_number + self.read_chunk_size - 1, total)
            rows = await self._read(row_number, end)
            for offset, row in enumerate(rows):
                if self.needs_work(row):
                    items.append(self.to_item(row_number + offset, row))
            row_number = end + 1
        return items

    @abc.abstractmethod
    async def next_batch(self, cursor: Any = None) -> Batch:
        """返回 (条目, 下一个游标, 是否已耗尽)"""


class OrderedWorkSource(WorkSource):
    """首次调用扫描整表，之后按方向分页"""

    def __init__(self, *args, direction: str = TOP_TO_BOTTOM, **kwargs):
        super().__init__(*args, **kwargs)
        if direction not in (TOP_TO_BOTTOM, BOTTOM_TO_TOP):
            raise ValueError(f"Unsupported direction: {direction}")
        self.direction = direction
        self._items: list[WorkItem] | None = None

    async def next_batch(self, cursor: Any = None) -> Batch:
        if self._items is None:
            items = await self.scan()
            if self.direction == BOTTOM_TO_TOP:
                items.reverse()
            self._items = items
            logger.info(f"[WorkSource] {self.sheet} 共 {len(items)} 行待处理 ({self.direction})")

        position = cursor or 0
        batch = self._items[position : position + self.batch_size]
        next_position = position + len(batch)
        return batch, next_position, next_position >= len(self._items)


class StreamingWorkSource(WorkSource):
    """每次调用读取下一段行，适合超大表"""

    async def next_batch(self, cursor: Any = None) -> Batch:
        row_number = cursor or self.layout.header_rows + 1
        total = await self._row_count()
        if row_number > total:
            return [], row_number, True

        end = min(row_number + self.read_chunk_size - 1, total)
        rows = await self._read(row_number, end)
        items = [
            self.to_item(row_number + offset, row)
            for offset, row in enumerate(rows)
            if self.needs_work(row)
        ]
        next_row = end + 1
        return items, next_row, next_row > total


class MergedWorkSource:
    """按顺序串联多个来源，并按源 URL 去重"""

    def __init__(self, sources: Sequence[WorkSource], dedup: DedupEngine | None = None):
        self.sources = list(sources)
        self.dedup = dedup or DedupEngine()
        self.skipped = 0

    async def next_batch(self, cursor: Any = None) -> Batch:
        index, inner = cursor if cursor is not None else (0, None)
        while index < len(self.sources):
            items, next_inner, exhausted = await self.sources[index].next_batch(inner)
            accepted = []
            for item in items:
                if self.dedup.accept(item.source_url):
                    accepted.append(item)
                else:
                    self.skipped += 1
                    logger.debug(f"[WorkSource] 重复 URL 已跳过: {item.row_key}")
            if exhausted:
                index, inner = index + 1, None
            else:
                inner = next_inner
            if accepted or not exhausted:
                return accepted, (index, inner), index >= len(self.sources)
        return [], (index, None), True


def build_work_source(
    store: TabularStore,
    sheet: str,
    direction: str | None = None,
    **kwargs,
) -> WorkSource:
    """按遍历方式创建 Work Source"""
    direction = direction or config.crawl.direction
    if direction == STREAMING:
        return StreamingWorkSource(store, sheet, **kwargs)
    if direction in (TOP_TO_BOTTOM, BOTTOM_TO_TOP):
        return OrderedWorkSource(store, sheet, direction=direction, **kwargs)
    raise ValueError(f"Unsupported direction: {direction}. Expected one of {DIRECTIONS}")
