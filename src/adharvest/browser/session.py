"""浏览器会话

一个会话 = 一个代理 + 一个指纹 + 一个 BrowserContext。
会话负责加载页面、等待动态内容稳定并抓取页面快照，提取逻辑不在这里。
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Optional

from loguru import logger
from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..common.exceptions import PageTimeoutError, SessionCrashError
from ..extraction.document import FrameSnapshot, PageSnapshot
from .fingerprint import Fingerprint, should_block

# 这些错误信息说明浏览器或上下文已经不可用
CRASH_MARKERS = (
    "target closed",
    "has been closed",
    "browser has disconnected",
    "browser closed",
    "connection closed",
    "crashed",
)

_FRAME_SIZE_JS = """() => {
    const body = document.body;
    if (!body) return [0, 0];
    const rect = body.getBoundingClientRect();
    return [rect.width, rect.height];
}"""


def is_crash_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in CRASH_MARKERS)


class BrowserSession:
    """
    单个浏览器会话。

    由 SessionManager 创建与销毁；items_handled 由 SessionManager 按条目计数，
    pages_loaded 统计包括重试在内的页面加载次数；healthy 只在会话内部
    或由 SessionManager 修改。
    """

    def __init__(
        self,
        engine,
        fingerprint: Fingerprint,
        proxy: Optional[str] = None,
        page_timeout_ms: int = 60000,
        block_resources: bool = True,
    ):
        self.id = uuid.uuid4().hex[:8]
        self.engine = engine
        self.fingerprint = fingerprint
        self.proxy = proxy
        self.page_timeout_ms = page_timeout_ms
        self.block_resources = block_resources
        self.items_handled = 0
        self.pages_loaded = 0
        self.created_at = time.monotonic()
        self.healthy = True
        self.context: Optional[BrowserContext] = None

    def __repr__(self) -> str:
        return f"<BrowserSession {self.id} proxy={self.proxy or 'DIRECT'} items={self.items_handled} pages={self.pages_loaded}>"

    async def start(self) -> "BrowserSession":
        self.context = await self.engine.new_context(self.fingerprint, self.proxy)
        if self.block_resources:
            await self.context.route("**/*", self._route)
        logger.info(
            f"[Session {self.id}] 已创建 proxy={self.proxy or 'DIRECT'} "
            f"viewport={self.fingerprint.viewport['width']}x{self.fingerprint.viewport['height']}"
        )
        return self

    @staticmethod
    async def _route(route: Route) -> None:
        request = route.request
        if should_block(request.resource_type, request.url):
            await route.abort()
        else:
            await route.continue_()

    async def render(self, url: str, settle_seconds: float = 0.0) -> PageSnapshot:
        """
        加载页面并抓取快照

        Raises:
            PageTimeoutError: 页面未在超时时间内加载
            SessionCrashError: 浏览器或上下文已不可用
        """
        if self.context is None:
            raise SessionCrashError(self.id, "会话尚未启动")

        self.pages_loaded += 1
        page: Optional[Page] = None
        try:
            page = await self.context.new_page()
            page.set_default_timeout(self.page_timeout_ms)
            response = await page.goto(url, wait_until="domcontentloaded", timeout=self.page_timeout_ms)
            if settle_seconds > 0:
                await asyncio.sleep(settle_seconds)
            return await self._snapshot(page, url, response.status if response else None)
        except PlaywrightTimeoutError as exc:
            raise PageTimeoutError(url, self.page_timeout_ms) from exc
        except PlaywrightError as exc:
            if is_crash_error(exc) or not self.engine.is_connected:
                self.healthy = False
                raise SessionCrashError(self.id, str(exc)) from exc
            raise PageTimeoutError(url) from exc
        finally:
            if page is not None:
                try:
                    await page.close()
                except PlaywrightError as exc:
                    logger.debug(f"[Session {self.id}] 关闭页面失败: {exc}")

    async def _snapshot(self, page: Page, url: str, status: Optional[int]) -> PageSnapshot:
        html = await page.content()
        title = await page.title()
        frames: list[FrameSnapshot] = []
        for frame in page.frames:
            is_main = frame == page.main_frame
            try:
                frame_html = html if is_main else await frame.content()
                width, height = await frame.evaluate(_FRAME_SIZE_JS)
            except PlaywrightError as exc:
                # 跨域或已销毁的 frame：无数据
                logger.debug(f"[Session {self.id}] frame 不可读 {frame.url[:60]}: {exc}")
                frames.append(FrameSnapshot(url=frame.url, html=html if is_main else None, is_main=is_main))
                continue
            frames.append(
                FrameSnapshot(url=frame.url, html=frame_html, width=width, height=height, is_main=is_main)
            )
        return PageSnapshot(url=url, status=status, title=title, html=html, frames=frames)

    async def health_check(self, timeout_ms: int = 5000) -> bool:
        """打开空白页并执行一段脚本，失败即视为不健康"""
        if self.context is None or not self.engine.is_connected:
            self.healthy = False
            return False
        page: Optional[Page] = None
        try:
            page = await self.context.new_page()
            await page.goto("about:blank", timeout=timeout_ms)
            self.healthy = await page.evaluate("() => 1 + 1") == 2
        except PlaywrightError as exc:
            logger.warning(f"[Session {self.id}] 健康检查失败: {exc}")
            self.healthy = False
        finally:
            if page is not None:
                try:
                    await page.close()
                except PlaywrightError as exc:
                    logger.debug(f"[Session {self.id}] 关闭页面失败: {exc}")
        return self.healthy

    async def close(self) -> None:
        if self.context is None:
            return
        try:
            await self.context.close()
        except PlaywrightError as exc:
            logger.debug(f"[Session {self.id}] 关闭上下文失败: {exc}")
        finally:
            self.context = None
