"""Result Sink

把提取结果转换为单元格更新，并分块写回表格。
- 哨兵值永远不会覆盖已有的真实值（除非 force）
- 限流 / 配额 / 5xx / 超时按指数退避重试
- 重试耗尽或不可重试的错误：记录该块的行号并继续下一块
同一请求写两次得到相同的表格状态（按单元格赋值）。
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, Sequence

from ..common.config import config
from ..common.exceptions import FatalStoreError, TransientStoreError, classify_store_error
from ..common.logger import get_logger
from ..common.types import (
    BatchWriteRequest,
    CellUpdate,
    ExtractionResult,
    RunStats,
    WorkItem,
    has_value,
    is_sentinel,
)
from .base import ColumnLayout, TabularStore

logger = get_logger(__name__)


def chunked(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), max(size, 1)):
        yield items[start : start + size]


class ResultSink:
    """结果写入器

    Args:
        store: 表格存储
        layout: 列布局
        chunk_size: 每次 batch_update 包含的行数
        max_retries: 可重试错误的最大重试次数
        base_delay: 退避基数（秒），第 n 次重试等待 base_delay * 2^n
        force: 允许哨兵覆盖已有值
    """

    def __init__(
        self,
        store: TabularStore,
        layout: ColumnLayout | None = None,
        chunk_size: int | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        force: bool = False,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.store = store
        self.layout = layout or ColumnLayout(header_rows=config.store.header_rows)
        self.chunk_size = chunk_size or config.store.write_batch_size
        self.max_retries = max_retries if max_retries is not None else config.store.max_write_retries
        self.base_delay = base_delay if base_delay is not None else config.store.write_retry_base_delay
        self.force = force
        self.sleep = sleep or asyncio.sleep

    def build_request(self, item: WorkItem, result: ExtractionResult) -> BatchWriteRequest:
        """按哨兵保护规则生成写入请求

        - 已有值为空：写入
        - 已有值是哨兵、新值是真实值：写入
        - 已有真实值：只有 force 时才覆盖
        """
        request = BatchWriteRequest(row_key=item.row_key)
        for name, value in result.values.items():
            if name not in self.layout.outputs:
                continue
            new_value = str(value)
            existing = item.existing_values.get(name, "")
            if not existing or self.force:
                request.field_values[name] = new_value
            elif is_sentinel(existing) and has_value(value):
                request.field_values[name] = new_value
        return request

    def to_updates(self, request: BatchWriteRequest) -> list[CellUpdate]:
        return [
            CellUpdate(row=request.row_key.row, column=self.layout.outputs[name], value=value)
            for name, value in request.field_values.items()
        ]

    async def write(self, requests: Sequence[BatchWriteRequest], stats: RunStats | None = None) -> list[str]:
        """分块写入，返回写入失败的行引用"""
        pending = [r for r in requests if not r.is_empty()]
        failed: list[str] = []
        by_sheet: dict[str, list[BatchWriteRequest]] = {}
        for request in pending:
            by_sheet.setdefault(request.row_key.sheet, []).append(request)

        for sheet, sheet_requests in by_sheet.items():
            for chunk in chunked(sheet_requests, self.chunk_size):
                keys = [str(r.row_key) for r in chunk]
                updates = [u for r in chunk for u in self.to_updates(r)]
                try:
                    await self._with_retries(lambda: self.store.batch_update(sheet, updates), keys)
                except FatalStoreError as exc:
                    failed.extend(keys)
                    logger.error(f"[Sink] 写入失败，需人工处理的行: {', '.join(keys)} ({exc})")
                    if stats is not None:
                        stats.failed_rows.extend(keys)
                    continue
                logger.info(f"[Sink] 已写入 {len(chunk)} 行 ({len(updates)} 个单元格) -> {sheet}")
                if stats is not None:
                    stats.written_rows.extend(keys)
        return failed

    async def append(self, sheet: str, rows: Sequence[Sequence[str]], stats: RunStats | None = None) -> int:
        """分块追加新行，返回成功追加的行数"""
        appended = 0
        for index, chunk in enumerate(chunked(list(rows), self.chunk_size)):
            label = f"{sheet}+chunk{index}"
            try:
                await self._with_retries(lambda: self.store.append_rows(sheet, chunk), [label])
            except FatalStoreError as exc:
                logger.error(f"[Sink] 追加 {len(chunk)} 行到 {sheet} 失败: {exc}")
                if stats is not None:
                    stats.failed_rows.append(label)
                continue
            appended += len(chunk)
            logger.info(f"[Sink] 已追加 {len(chunk)} 行 -> {sheet}")
        return appended

    async def _with_retries(self, call: Callable[[], Awaitable[None]], keys: list[str]) -> None:
        for attempt in range(self.max_retries + 1):
            try:
                await call()
                return
            except Exception as exc:  # noqa: BLE001
                error = classify_store_error(exc)
                if not isinstance(error, TransientStoreError):
                    raise FatalStoreError(str(error), keys) from exc
                if attempt >= self.max_retries:
                    raise FatalStoreError(f"重试 {self.max_retries} 次后仍失败: {error}", keys) from exc
                delay = self.base_delay * (2**attempt)
                logger.warning(
                    f"[Sink] 存储暂时不可用 ({attempt + 1}/{self.max_retries})，{delay:.1f}s 后重试: {error}"
                )
                await self.sleep(delay)
