"""In-memory tabular store."""

from __future__ import annotations

import asyncio
from typing import Mapping, Sequence

from ..common.exceptions import FatalStoreError
from ..common.types import CellUpdate
from .base import TabularStore


class MemoryTableStore(TabularStore):
    """Sheets kept as lists of string rows; used by tests and dry runs."""

    def __init__(self, sheets: Mapping[str, Sequence[Sequence[str]]] | None = None):
        self.sheets: dict[str, list[list[str]]] = {
            name: [[("" if v is None else str(v)) for v in row] for row in rows]
            for name, rows in (sheets or {}).items()
        }
        self._lock = asyncio.Lock()

    def _sheet(self, sheet: str) -> list[list[str]]:
        try:
            return self.sheets[sheet]
        except KeyError:
            raise FatalStoreError(f"Sheet not found: {sheet}") from None

    async def row_count(self, sheet: str) -> int:
        return len(self._sheet(sheet))

    async def read_rows(self, sheet: str, start: int, end: int) -> list[list[str]]:
        rows = self._sheet(sheet)
        start = max(start, 1)
        selected = rows[start - 1 : end]
        width = max((len(r) for r in selected), default=0)
        return [list(r) + [""] * (width - len(r)) for r in selected]

    async def batch_update(self, sheet: str, updates: Sequence[CellUpdate]) -> None:
        async with self._lock:
            rows = self._sheet(sheet)
            for update in updates:
                while len(rows) < update.row:
                    rows.append([])
                row = rows[update.row - 1]
                while len(row) <= update.column:
                    row.append("")
                row[update.column] = update.value

    async def append_rows(self, sheet: str, rows: Sequence[Sequence[str]]) -> None:
        async with self._lock:
            target = self._sheet(sheet)
            target.extend([("" if v is None else str(v)) for v in row] for row in rows)

    async def ensure_sheet(self, sheet: str, header: Sequence[str] | None = None) -> bool:
        async with self._lock:
            if sheet in self.sheets:
                return False
            self.sheets[sheet] = [list(header)] if header else []
            return True

    def cell(self, sheet: str, row: int, column: int) -> str:
        rows = self.sheets.get(sheet, [])
        if row - 1 >= len(rows):
            return ""
        values = rows[row - 1]
        return values[column] if column < len(values) else ""
