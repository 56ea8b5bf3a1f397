"""pytest 全局配置和 fixtures

提供测试所需的基础设施和假对象：页面快照、假浏览器会话、内存表格。
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock

import pytest

# 添加项目路径
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from adharvest.common.types import RowKey, WorkItem  # noqa: E402
from adharvest.extraction.document import FrameSnapshot, PageSnapshot  # noqa: E402
from adharvest.storage.base import ColumnLayout  # noqa: E402
from adharvest.storage.memory_store import MemoryTableStore  # noqa: E402

HEADER = ["advertiser", "url", "store_link", "app_name", "", "tagline"]


# ============================================================================
# 页面快照
# ============================================================================


def make_page(
    body: str = "",
    url: str = "https://adstransparency.example/creative/1",
    status: int | None = 200,
    title: str = "",
    frames: list[FrameSnapshot] | None = None,
) -> PageSnapshot:
    html = f"<html><head><title>{title}</title></head><body>{body}</body></html>"
    return PageSnapshot(url=url, status=status, title=title, html=html, frames=list(frames or []))


@pytest.fixture
def page_factory() -> Callable[..., PageSnapshot]:
    """构造页面快照"""
    return make_page


@pytest.fixture
def ad_frame() -> Callable[..., FrameSnapshot]:
    """构造广告素材 iframe 快照"""

    def _frame(body: str, width: float = 320, height: float = 250, url: str = "https://tpc.googlesyndication.com/x"):
        return FrameSnapshot(url=url, html=f"<html><body>{body}</body></html>", width=width, height=height)

    return _frame


# ============================================================================
# 假浏览器会话
# ============================================================================


class FakeSession:
    """按 URL 返回预设结果的会话

    responses[url] 可以是 PageSnapshot、异常，或它们的列表（按调用次序取，最后一个重复使用）。
    """

    _counter = 0

    def __init__(self, responses: dict | None = None, proxy: str | None = None, default: PageSnapshot | None = None):
        FakeSession._counter += 1
        self.id = f"fake{FakeSession._counter}"
        self.proxy = proxy
        self.fingerprint = None
        self.responses = dict(responses or {})
        self.default = default
        self.items_handled = 0
        self.pages_loaded = 0
        self.healthy = True
        self.closed = False
        self.calls: list[str] = []
        self.health_check = AsyncMock(return_value=True)

    async def render(self, url: str, settle_seconds: float = 0.0) -> PageSnapshot:
        self.pages_loaded += 1
        self.calls.append(url)
        response = self.responses.get(url, self.default)
        if isinstance(response, list):
            index = min(self.calls.count(url) - 1, len(response) - 1)
            response = response[index]
        if isinstance(response, BaseException):
            raise response
        if response is None:
            return make_page(url=url)
        return response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session_cls():
    return FakeSession


@pytest.fixture
def no_sleep():
    """立即返回的 sleep，记录每次等待时长"""
    return AsyncMock(return_value=None)


# ============================================================================
# 表格
# ============================================================================


def make_row(
    url: str = "",
    advertiser: str = "",
    store_link: str = "",
    app_name: str = "",
    tagline: str = "",
) -> list[str]:
    return [advertiser, url, store_link, app_name, "", tagline]


@pytest.fixture
def row_factory():
    return make_row


@pytest.fixture
def layout() -> ColumnLayout:
    return ColumnLayout()


@pytest.fixture
def memory_store_factory():
    """以表头 + 数据行构造内存表格"""

    def _factory(rows_by_sheet: dict[str, list[list[str]]]) -> MemoryTableStore:
        return MemoryTableStore({name: [list(HEADER), *rows] for name, rows in rows_by_sheet.items()})

    return _factory


@pytest.fixture
def work_item_factory():
    def _item(
        url: str = "https://adstransparency.example/creative/1",
        row: int = 2,
        sheet: str = "Sheet1",
        fields=("store_link", "app_name"),
        existing: dict | None = None,
    ) -> WorkItem:
        return WorkItem(
            source_url=url,
            row_key=RowKey(sheet, row),
            fields_needed=frozenset(fields),
            existing_values=existing or {},
        )

    return _item
