"""Retry Controller

对单个条目在同一会话内重复“加载 -> 拦截检测 -> 提取 -> 合并”，直到：
- Success: 所有必填字段都有值
- Blocked: 命中拦截，立即返回，交给 Orchestrator 轮换会话
- Exhausted: 尝试次数用尽，返回已经找到的部分
浏览器崩溃（SessionCrashError）不在这里处理，直接向上抛出。
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable

from ..browser.block_detector import BlockDetector
from ..common.config import config
from ..common.exceptions import BlockedError, PageTimeoutError
from ..common.logger import get_logger
from ..common.types import ExtractionResult, Outcome, Sentinel, WorkItem
from ..common.utils.delay import backoff_delay, uniform_between
from ..extraction.extractor import FieldExtractor

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetryController:
    """单条目重试控制器

    Args:
        extractor: 字段提取器
        detector: 拦截检测器
        required_fields: 判定“已解析”所需的字段（按运行配置）
        max_attempts: 每个条目的最大尝试次数
        sleep: 可注入的等待函数，测试中替换为立即返回
    """

    def __init__(
        self,
        extractor: FieldExtractor | None = None,
        detector: BlockDetector | None = None,
        required_fields: Iterable[str] | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        multiplier: float | None = None,
        jitter: float | None = None,
        settle_min: float | None = None,
        settle_max: float | None = None,
        sleep: Sleep | None = None,
    ):
        retry = config.retry
        self.extractor = extractor or FieldExtractor()
        self.detector = detector or BlockDetector()
        self.required_fields = frozenset(required_fields or config.crawl.required_fields)
        self.max_attempts = max_attempts or retry.max_attempts
        self.base_delay = base_delay if base_delay is not None else retry.base_delay
        self.multiplier = multiplier if multiplier is not None else retry.multiplier
        self.jitter = jitter if jitter is not None else retry.jitter
        self.settle_min = settle_min if settle_min is not None else retry.settle_min
        self.settle_max = settle_max if settle_max is not None else retry.settle_max
        self.sleep = sleep or asyncio.sleep

    def settle_seconds(self, attempt: int) -> float:
        """页面稳定等待时间，随尝试次数增长"""
        return uniform_between(self.settle_min, self.settle_max) * (self.multiplier ** (attempt - 1))

    def required_for(self, item: WorkItem) -> frozenset[str]:
        fields = self.fields_for(item)
        required = self.required_fields & fields
        return required or fields

    def fields_for(self, item: WorkItem) -> frozenset[str]:
        return item.fields_needed or self.extractor.fields

    async def resolve(self, item: WorkItem, session, max_attempts: int | None = None) -> ExtractionResult:
        """处理一个条目

        Returns:
            合并后的提取结果，outcome 为 RESOLVED / PARTIAL / NOT_FOUND / BLOCKED / ERROR

        Raises:
            SessionCrashError: 浏览器会话崩溃
        """
        attempts = max_attempts or self.max_attempts
        fields = self.fields_for(item)
        required = self.required_for(item)
        blacklist = [item.advertiser] if item.advertiser else []

        merged = ExtractionResult.empty(fields)
        hard_failures = 0

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                logger.info(f"[Retry] {item.row_key} 第 {attempt}/{attempts} 次尝试")

            try:
                page = await session.render(item.source_url, settle_seconds=self.settle_seconds(attempt))
            except PageTimeoutError as exc:
                hard_failures += 1
                merged.attempts = attempt
                logger.warning(f"[Retry] {item.row_key} 加载失败: {exc}")
                await self._backoff(attempt, attempts)
                continue

            try:
                self.detector.check(item.source_url, page.status, page.html)
            except BlockedError as exc:
                logger.warning(f"[Retry] {item.row_key} {exc}")
                blocked = ExtractionResult.empty(fields, Sentinel.BLOCKED)
                blocked.attempts = attempt
                result = merged.merge(blocked)
                result.outcome = Outcome.BLOCKED
                return result

            extracted = self.extractor.extract(page, blacklist=blacklist, fields=fields)
            extracted.attempts = attempt
            merged = merged.merge(extracted)

            if merged.resolves(required):
                merged.outcome = Outcome.RESOLVED
                return merged

            await self._backoff(attempt, attempts)

        if hard_failures == attempts:
            merged = merged.merge(ExtractionResult.empty(fields, Sentinel.ERROR))
            merged.outcome = Outcome.ERROR
        elif merged.found_fields():
            merged.outcome = Outcome.PARTIAL
        else:
            merged.outcome = Outcome.NOT_FOUND
        merged.attempts = attempts
        return merged

    async def _backoff(self, attempt: int, attempts: int) -> None:
        if attempt >= attempts:
            return
        delay = backoff_delay(self.base_delay, self.multiplier, attempt, self.jitter)
        await self.sleep(delay)
