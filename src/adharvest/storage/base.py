"""Tabular store abstractions."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Sequence

from ..common.types import ADVERTISER, APP_NAME, STORE_LINK, TAGLINE, CellUpdate


class TabularStore(abc.ABC):
    """Row-oriented store with per-cell updates.

    Rows are 1-based, columns 0-based. Values are written raw (no formula
    or type interpretation).
    """

    @abc.abstractmethod
    async def row_count(self, sheet: str) -> int:
        """Number of rows in ``sheet`` including header rows."""

    @abc.abstractmethod
    async def read_rows(self, sheet: str, start: int, end: int) -> list[list[str]]:
        """Rows ``start..end`` inclusive; missing cells are ``""``."""

    @abc.abstractmethod
    async def batch_update(self, sheet: str, updates: Sequence[CellUpdate]) -> None:
        """Set each cell to its value."""

    @abc.abstractmethod
    async def append_rows(self, sheet: str, rows: Sequence[Sequence[str]]) -> None:
        """Insert rows after the last row of ``sheet``."""

    @abc.abstractmethod
    async def ensure_sheet(self, sheet: str, header: Sequence[str] | None = None) -> bool:
        """Create ``sheet`` (with ``header``) if missing; return True when created."""

    async def close(self) -> None:
        """Release resources (default: no-op)."""
        return None


def column_letter(index: int) -> str:
    """0-based column index -> ``A``, ``B``, ..., ``AA``."""
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def column_index(letter: str) -> int:
    """``A`` -> 0, ``AA`` -> 26."""
    value = 0
    for char in letter.strip().upper():
        value = value * 26 + (ord(char) - ord("A") + 1)
    return value - 1


@dataclass
class ColumnLayout:
    """Where each field lives in a sheet row."""

    url: int = 1
    outputs: dict[str, int] = field(
        default_factory=lambda: {ADVERTISER: 0, STORE_LINK: 2, APP_NAME: 3, TAGLINE: 5}
    )
    header_rows: int = 1

    @property
    def width(self) -> int:
        return max([self.url, *self.outputs.values()]) + 1

    def cell(self, row: Sequence[str], column: int) -> str:
        if column < len(row):
            value = row[column]
            return "" if value is None else str(value).strip()
        return ""

    def url_of(self, row: Sequence[str]) -> str:
        return self.cell(row, self.url)

    def values_of(self, row: Sequence[str]) -> dict[str, str]:
        return {name: self.cell(row, column) for name, column in self.outputs.items()}

    def header(self) -> list[str]:
        names = [""] * self.width
        names[self.url] = "url"
        for name, column in self.outputs.items():
            names[column] = name
        return names

    @classmethod
    def from_letters(cls, url: str, header_rows: int = 1, **outputs: str) -> "ColumnLayout":
        """``ColumnLayout.from_letters("B", store_link="C", app_name="D")``"""
        return cls(
            url=column_index(url),
            outputs={name: column_index(letter) for name, letter in outputs.items()},
            header_rows=header_rows,
        )
