"""多来源汇总

把多个来源工作簿中尚未处理的行去重后追加到主表，供采集流水线消费。
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

from ..common.config import config
from ..common.exceptions import (
    ConfigError,
    ConfigFileNotFoundError,
    FatalStoreError,
    StorageError,
    WorkSourceError,
    classify_store_error,
)
from ..common.logger import get_logger
from ..common.types import ADVERTISER, STORE_LINK, Sentinel
from ..common.utils.delay import backoff_delay
from ..extraction.normalizer import collapse_whitespace, strip_invisible
from .base import ColumnLayout, TabularStore
from .dedup import DedupEngine
from .sink import ResultSink

logger = get_logger(__name__)

_STORE_HOST_MARKERS = ("play.google.com", "itunes.apple.com", "apps.apple.com", "http")
_SKIP_MARKERS = frozenset({"ERROR", "BLOCKED", "SKIP"})
_PENDING_MARKERS = frozenset({"NOT_FOUND", "NOT FOUND", ""})


def clean_cell(value: str) -> str:
    return collapse_whitespace(strip_invisible(value or ""))


def needs_processing(store_link: str | None) -> bool:
    """商店链接单元格是否表示“还需要采集”"""
    if not store_link:
        return True
    marker = store_link.strip().upper()
    if marker in _SKIP_MARKERS:
        return False
    if marker in _PENDING_MARKERS:
        return True
    lowered = store_link.lower()
    return not any(host in lowered for host in _STORE_HOST_MARKERS)


@dataclass
class SourceSheet:
    """一个来源：存储 + 需要读取的工作表"""

    name: str
    store: TabularStore
    tabs: list[str] = field(default_factory=list)


@dataclass
class AggregateStats:
    total_valid: int = 0
    total_new: int = 0
    by_source: dict[str, dict[str, int]] = field(default_factory=dict)
    appended: int = 0

    @property
    def duplicates(self) -> int:
        return self.total_valid - self.total_new


class Aggregator:
    """来源汇总器

    Args:
        master: 主表所在存储
        master_sheet: 主表工作表名
        layout: 主表与来源表共用的列布局
        max_read_retries: 单次读取的最大尝试次数；主表读取失败时终止汇总
    """

    def __init__(
        self,
        master: TabularStore,
        master_sheet: str | None = None,
        layout: ColumnLayout | None = None,
        sink: ResultSink | None = None,
        read_chunk_size: int | None = None,
        max_read_retries: int | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.master = master
        self.master_sheet = master_sheet or config.store.master_sheet
        self.layout = layout or ColumnLayout(header_rows=config.store.header_rows)
        self.sink = sink or ResultSink(master, self.layout)
        self.read_chunk_size = read_chunk_size or config.store.read_chunk_size
        self.max_read_retries = max_read_retries or config.store.max_read_retries
        self.sleep = sleep or asyncio.sleep

    def is_valid_row(self, row: Sequence[str]) -> bool:
        """广告主与 URL 都存在且不是 ERROR"""
        url = self.layout.url_of(row)
        if not url or url.upper() == Sentinel.ERROR.value:
            return False
        if ADVERTISER in self.layout.outputs:
            advertiser = self.layout.cell(row, self.layout.outputs[ADVERTISER])
            if not advertiser or advertiser.upper() == Sentinel.ERROR.value:
                return False
        return True

    def row_needs_processing(self, row: Sequence[str]) -> bool:
        if STORE_LINK not in self.layout.outputs:
            return True
        return needs_processing(self.layout.cell(row, self.layout.outputs[STORE_LINK]))

    def to_master_row(self, row: Sequence[str]) -> list[str]:
        """复制 URL 与已有值；未采集的商店链接留空"""
        values = [""] * self.layout.width
        values[self.layout.url] = clean_cell(self.layout.url_of(row))
        for name, column in self.layout.outputs.items():
            value = clean_cell(self.layout.cell(row, column))
            if name == STORE_LINK and needs_processing(value):
                value = ""
            values[column] = value
        return values

    async def _with_retries(self, call: Callable[[], Awaitable[Any]], sheet: str, what: str) -> Any:
        last: StorageError | None = None
        for attempt in range(1, self.max_read_retries + 1):
            try:
                return await call()
            except Exception as exc:  # noqa: BLE001
                last = classify_store_error(exc)
                logger.warning(f"[Aggregator] 读取 {sheet} {what} 失败 ({attempt}/{self.max_read_retries}): {exc}")
                if isinstance(last, FatalStoreError):
                    break
                if attempt < self.max_read_retries:
                    await self.sleep(backoff_delay(1.0, 2.0, attempt))
        raise WorkSourceError(sheet, str(last))

    async def _read_all(self, store: TabularStore, sheet: str) -> list[list[str]]:
        """整表读取；任何分段读取失败都抛出 WorkSourceError，不返回部分结果"""
        total = await self._with_retries(lambda: store.row_count(sheet), sheet, "row_count")
        rows: list[list[str]] = []
        start = self.layout.header_rows + 1
        while start <= total:
            end = min(start + self.read_chunk_size - 1, total)
            rows.extend(
                await self._with_retries(lambda: store.read_rows(sheet, start, end), sheet, f"{start}-{end}")
            )
            start = end + 1
        return rows

    async def existing_keys(self) -> DedupEngine:
        created = await self.master.ensure_sheet(self.master_sheet, self.layout.header())
        engine = DedupEngine()
        if created:
            logger.info(f"[Aggregator] 主表 {self.master_sheet} 不存在，已创建")
            return engine
        rows = await self._read_all(self.master, self.master_sheet)
        engine.preload(self.layout.url_of(row) for row in rows)
        logger.info(f"[Aggregator] 主表已有 {len(engine)} 个 URL")
        return engine

    async def run(self, sources: Sequence[SourceSheet]) -> AggregateStats:
        """
        Raises:
            WorkSourceError: 主表读取在重试后仍然失败（不会带着不完整的去重集合继续）
        """
        stats = AggregateStats()
        dedup = await self.existing_keys()
        new_rows: list[list[str]] = []

        for source in sources:
            counts = stats.by_source.setdefault(source.name, {"valid": 0, "new": 0})
            for tab in source.tabs:
                try:
                    rows = await self._read_all(source.store, tab)
                except StorageError as exc:
                    logger.error(f"[Aggregator] 无法读取 {source.name}/{tab}: {exc}")
                    continue
                valid = [r for r in rows if self.is_valid_row(r) and self.row_needs_processing(r)]
                counts["valid"] += len(valid)
                for row in valid:
                    if dedup.accept(self.layout.url_of(row)):
                        new_rows.append(self.to_master_row(row))
                        counts["new"] += 1
                logger.info(f"[Aggregator] {source.name}/{tab}: {len(valid)} 有效行")
            stats.total_valid += counts["valid"]
            stats.total_new += counts["new"]

        if new_rows:
            stats.appended = await self.sink.append(self.master_sheet, new_rows)
        return stats


def load_source_specs(path: str | Path) -> list[dict]:
    """读取来源配置 JSON: ``{"sheets": [{"name", "path", "tabs"}]}``"""
    spec_path = Path(path)
    if not spec_path.exists():
        raise ConfigFileNotFoundError(str(spec_path))
    try:
        data = json.loads(spec_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ConfigError(f"来源配置不是合法 JSON: {exc}") from exc
    sheets = data.get("sheets") if isinstance(data, dict) else None
    if not sheets:
        raise ConfigError(f"来源配置中没有 sheets: {spec_path}")
    for entry in sheets:
        if not isinstance(entry, dict) or not entry.get("path"):
            raise ConfigError(f"来源配置缺少 path: {entry}")
        entry.setdefault("name", Path(entry["path"]).stem)
        entry.setdefault("tabs", [config.store.sheet])
    return sheets
