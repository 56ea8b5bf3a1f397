"""Local workbook store backed by openpyxl.

openpyxl is synchronous; every operation runs in a worker thread and is
serialised by a lock. The workbook is saved after each write.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Sequence

import openpyxl
from openpyxl.utils import get_column_letter

from ..common.exceptions import FatalStoreError, WorkSourceError
from ..common.logger import get_logger
from ..common.types import CellUpdate
from .base import TabularStore

logger = get_logger(__name__)


def _text(value) -> str:
    if value is None:
        return ""
    return str(value)


class ExcelTableStore(TabularStore):
    """Workbook on disk; sheet names map to worksheet titles."""

    def __init__(self, path: str | Path, create: bool = True):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        if self.path.exists():
            try:
                self._workbook = openpyxl.load_workbook(self.path)
            except Exception as exc:  # noqa: BLE001
                raise WorkSourceError(str(self.path), f"无法打开工作簿: {exc}") from exc
        elif create:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._workbook = openpyxl.Workbook()
            # 新建工作簿自带的空白表
            self._workbook.remove(self._workbook.active)
        else:
            raise WorkSourceError(str(self.path), "工作簿不存在")

    def _worksheet(self, sheet: str):
        if sheet not in self._workbook.sheetnames:
            raise FatalStoreError(f"Sheet not found: {sheet}")
        return self._workbook[sheet]

    def _save(self) -> None:
        self._workbook.save(self.path)

    async def _run(self, func, *args):
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    async def row_count(self, sheet: str) -> int:
        def _count() -> int:
            ws = self._worksheet(sheet)
            # 空表的 max_row 仍为 1
            if ws.max_row == 1 and all(c.value is None for c in ws[1]):
                return 0
            return ws.max_row

        return await self._run(_count)

    async def read_rows(self, sheet: str, start: int, end: int) -> list[list[str]]:
        def _read() -> list[list[str]]:
            ws = self._worksheet(sheet)
            last = min(end, ws.max_row)
            if start > last:
                return []
            width = ws.max_column
            return [
                [_text(v) for v in row]
                for row in ws.iter_rows(min_row=max(start, 1), max_row=last, max_col=width, values_only=True)
            ]

        return await self._run(_read)

    async def batch_update(self, sheet: str, updates: Sequence[CellUpdate]) -> None:
        def _update() -> None:
            ws = self._worksheet(sheet)
            for update in updates:
                cell = ws.cell(row=update.row, column=update.column + 1)
                cell.value = update.value
                # 原样写入，不解释为公式
                cell.data_type = "s"
            self._save()

        await self._run(_update)

    async def append_rows(self, sheet: str, rows: Sequence[Sequence[str]]) -> None:
        def _append() -> None:
            ws = self._worksheet(sheet)
            for row in rows:
                ws.append([_text(v) for v in row])
            self._save()

        await self._run(_append)

    async def ensure_sheet(self, sheet: str, header: Sequence[str] | None = None) -> bool:
        def _ensure() -> bool:
            if sheet in self._workbook.sheetnames:
                return False
            ws = self._workbook.create_sheet(title=sheet)
            if header:
                ws.append(list(header))
                for col in range(1, len(header) + 1):
                    ws.column_dimensions[get_column_letter(col)].width = 24
            self._save()
            logger.info(f"[ExcelStore] 已创建工作表 {sheet}")
            return True

        return await self._run(_ensure)
