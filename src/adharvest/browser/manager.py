"""Session Manager

持有当前浏览器会话，决定何时轮换（单会话条目上限、被拦截、健康检查失败、崩溃），
并在轮换时随机选择代理、抽取与上一会话不同的指纹。
拦截后的冷却由 Orchestrator 在获取新会话之前施加。
"""

from __future__ import annotations

import random
from typing import Awaitable, Callable, Optional, Sequence

from loguru import logger

from ..common.config import config
from ..common.exceptions import SessionUnavailableError
from ..common.types import Outcome, RunStats
from .engine import BrowserEngine
from .fingerprint import Fingerprint, FingerprintPool
from .session import BrowserSession

# 轮换原因
ROTATE_CEILING = "ceiling"
ROTATE_BLOCKED = "blocked"
ROTATE_UNHEALTHY = "unhealthy"
ROTATE_CRASHED = "crashed"

SessionFactory = Callable[[Fingerprint, Optional[str]], Awaitable[BrowserSession]]


class SessionManager:
    """
    浏览器会话管理器

    Args:
        engine: 浏览器引擎（未提供 session_factory 时使用）
        proxies: 代理列表，为空表示直连
        items_per_session: 单个会话的条目上限
        fingerprints: 指纹池
        session_factory: 创建并启动会话的协程工厂，测试中可替换
        launch_attempts: 创建会话失败时的尝试次数
    """

    def __init__(
        self,
        engine: Optional[BrowserEngine] = None,
        proxies: Optional[Sequence[str]] = None,
        items_per_session: Optional[int] = None,
        fingerprints: Optional[FingerprintPool] = None,
        session_factory: Optional[SessionFactory] = None,
        launch_attempts: Optional[int] = None,
        health_check_timeout_ms: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.engine = engine
        self.proxies = list(proxies if proxies is not None else config.proxy.proxies)
        self.items_per_session = items_per_session or config.session.items_per_session
        self.fingerprints = fingerprints or FingerprintPool()
        self.session_factory = session_factory or self._default_factory
        self.launch_attempts = launch_attempts or (config.browser.launch_retries + 1)
        self.health_check_timeout_ms = (
            health_check_timeout_ms or config.session.health_check_timeout_ms
        )
        self._rng = rng or random.Random()
        self.current: Optional[BrowserSession] = None
        self._last_fingerprint: Optional[Fingerprint] = None

    async def _default_factory(self, fingerprint: Fingerprint, proxy: Optional[str]) -> BrowserSession:
        if self.engine is None:
            self.engine = BrowserEngine()
        session = BrowserSession(
            self.engine,
            fingerprint,
            proxy,
            page_timeout_ms=config.browser.timeout_ms,
            block_resources=config.browser.block_resources,
        )
        return await session.start()

    def pick_proxy(self) -> Optional[str]:
        if not self.proxies:
            return None
        return self._rng.choice(self.proxies)

    async def acquire(self, stats: RunStats) -> BrowserSession:
        """返回当前可用会话；需要时创建新会话"""
        if self.current is not None:
            if not self.needs_rotation(self.current):
                return self.current
            reason = ROTATE_CEILING if self.current.healthy else ROTATE_UNHEALTHY
            await self.rotate(self.current, reason, stats)

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.launch_attempts + 1):
            fingerprint = self.fingerprints.draw(previous=self._last_fingerprint)
            proxy = self.pick_proxy()
            try:
                session = await self.session_factory(fingerprint, proxy)
            except SessionUnavailableError as exc:
                last_error = exc
                logger.warning(f"[SessionManager] 会话创建失败 ({attempt}/{self.launch_attempts}): {exc}")
                continue
            self.current = session
            self._last_fingerprint = fingerprint
            stats.sessions_started += 1
            return session

        raise SessionUnavailableError(self.launch_attempts, f"无法创建浏览器会话: {last_error}")

    def needs_rotation(self, session: BrowserSession) -> bool:
        return not session.healthy or session.items_handled >= self.items_per_session

    def remaining(self, session: BrowserSession) -> int:
        """会话在达到上限前还能处理的条目数"""
        return max(self.items_per_session - session.items_handled, 0)

    def assign(self, session: BrowserSession, count: int) -> None:
        """把一批条目计入会话额度；同一条目的重试不重复计数"""
        session.items_handled += count

    def release(self, session: BrowserSession, outcome: Outcome) -> None:
        """条目处理结束后回报结果；崩溃的会话被标记为不健康"""
        if outcome is Outcome.CRASHED:
            session.healthy = False

    async def rotate(self, session: BrowserSession, reason: str, stats: RunStats) -> None:
        """关闭会话并记录轮换原因；下一次 acquire 会创建新会话"""
        stats.record_rotation(reason)
        if reason == ROTATE_BLOCKED:
            stats.record_block(session.proxy)
        logger.info(
            f"[SessionManager] 轮换会话 {session.id} 原因={reason} "
            f"条目={session.items_handled} 页面={session.pages_loaded} proxy={session.proxy or 'DIRECT'}"
        )
        await session.close()
        if self.current is session:
            self.current = None

    async def health_check(self, session: BrowserSession) -> bool:
        healthy = await session.health_check(self.health_check_timeout_ms)
        if not healthy:
            logger.warning(f"[SessionManager] 会话 {session.id} 健康检查未通过")
        return healthy

    async def close(self) -> None:
        if self.current is not None:
            await self.current.close()
            self.current = None
        if self.engine is not None:
            await self.engine.close()
