"""渲染后页面的快照模型

浏览器会话在页面稳定后把主文档与每个 iframe 的 HTML 抓取下来，
提取策略只面对这些快照（用 lxml 解析），与 Playwright 解耦，便于离线测试。
跨域或已销毁的 frame 记为 html=None，即“无数据”。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterator
from urllib.parse import urlparse

import lxml.html
from lxml import etree

# 广告素材通常渲染在这些域名下的 iframe 中
AD_SERVING_HOSTS = (
    "googlesyndication.com",
    "doubleclick.net",
    "2mdn.net",
    "googleadservices.com",
)

# 小于该尺寸的 frame 视为不可见（跟踪像素等）
MIN_FRAME_SIZE = 50


@dataclass
class FrameSnapshot:
    """单个 frame 的快照"""

    url: str = ""
    html: str | None = None  # None 表示不可读
    width: float = 0
    height: float = 0
    is_main: bool = False

    @property
    def readable(self) -> bool:
        return bool(self.html)

    @property
    def degenerate(self) -> bool:
        return self.width < MIN_FRAME_SIZE or self.height < MIN_FRAME_SIZE

    @property
    def host(self) -> str:
        try:
            return urlparse(self.url).netloc.lower()
        except ValueError:
            return ""

    @property
    def is_ad_serving(self) -> bool:
        host = self.host
        return any(h in host for h in AD_SERVING_HOSTS)

    @cached_property
    def tree(self) -> etree._Element | None:
        """解析后的 DOM 树；无法解析时返回 None"""
        if not self.html:
            return None
        try:
            return lxml.html.fromstring(self.html)
        except (etree.LxmlError, ValueError):
            return None

    def xpath(self, expression: str) -> list:
        root = self.tree
        if root is None:
            return []
        try:
            return root.xpath(expression)
        except etree.LxmlError:
            return []


@dataclass
class PageSnapshot:
    """整页快照：主文档 + 所有 frame"""

    url: str
    status: int | None = None
    title: str = ""
    html: str = ""
    frames: list[FrameSnapshot] = field(default_factory=list)

    @cached_property
    def main(self) -> FrameSnapshot:
        for frame in self.frames:
            if frame.is_main:
                return frame
        return FrameSnapshot(url=self.url, html=self.html, width=10_000, height=10_000, is_main=True)

    def readable_frames(self) -> Iterator[FrameSnapshot]:
        """主文档之外所有可读的 frame"""
        for frame in self.frames:
            if not frame.is_main and frame.readable:
                yield frame

    def content_frames(self) -> list[FrameSnapshot]:
        """可读且非退化的 frame，广告域名优先，主文档最后"""
        frames = [f for f in self.readable_frames() if not f.degenerate]
        frames.sort(key=lambda f: 0 if f.is_ad_serving else 1)
        return [*frames, self.main]

    def all_html(self) -> str:
        """主文档与所有可读 frame 的 HTML 拼接"""
        parts = [self.html or ""]
        parts.extend(frame.html or "" for frame in self.readable_frames())
        return "\n".join(parts)


# ============================================================================
# XPath 辅助
# ============================================================================


def attr_contains(attr: str, token: str, ignore_case: bool = False) -> str:
    """生成 ``contains(@attr, token)`` 谓词"""
    if ignore_case:
        upper = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
        lower = upper.lower()
        return f"contains(translate(@{attr}, '{upper}', '{lower}'), '{token.lower()}')"
    return f"contains(@{attr}, '{token}')"


def element_text(element) -> str:
    """元素的全部文本（innerText 的近似）"""
    if element is None:
        return ""
    if isinstance(element, str):
        return element
    return element.text_content() or ""
