"""采集编排器

Work Source -> 批内并发的 Retry Controller（共享一个会话）-> Result Sink。

- 每批条目数不超过并发上限，也不超过当前会话剩余的条目额度
- 批内任务错峰启动；批间延迟由自适应速率控制器决定
- 命中拦截：轮换会话 + 随机冷却 + 降速；被拦截的条目在额度内换新会话重试，
  超过上限的写入 BLOCKED（已有真实值不会被覆盖）
- 会话崩溃：条目重新入队一次，第二次崩溃写入 ERROR
- 运行时间预算只在批与批之间检查
去重与拦截/冷却状态只在本协程中、批次结束后修改。
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..browser.manager import ROTATE_BLOCKED, ROTATE_CRASHED, ROTATE_UNHEALTHY, SessionManager
from ..common.config import config
from ..common.exceptions import SessionCrashError
from ..common.logger import get_logger
from ..common.types import ExtractionResult, Outcome, RunStats, Sentinel, WorkItem
from ..common.utils.delay import uniform_between
from ..storage.sink import ResultSink
from .pacing import AdaptiveRateController
from .retry import RetryController

logger = get_logger(__name__)

STATUS_COMPLETED = "completed"
STATUS_BUDGET = "budget_exhausted"


@dataclass
class _Task:
    item: WorkItem
    blocks: int = 0
    crashes: int = 0


@dataclass
class RunSummary:
    """一次运行的汇总"""

    status: str
    stats: RunStats
    started_at: str
    finished_at: str = ""
    duration_seconds: float = 0.0
    pacing_level: int = 0
    skipped_duplicates: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        stats = self.stats
        return {
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": round(self.duration_seconds, 1),
            "processed": stats.processed,
            "outcomes": dict(stats.outcomes),
            "written_rows": len(stats.written_rows),
            "failed_rows": list(stats.failed_rows),
            "requeued": stats.requeued,
            "rotations": dict(stats.rotations),
            "blocks_per_proxy": dict(stats.blocks_per_proxy),
            "sessions_started": stats.sessions_started,
            "batches": stats.batches,
            "pacing_level": self.pacing_level,
            "skipped_duplicates": self.skipped_duplicates,
            **self.extra,
        }


class Orchestrator:
    """采集编排器

    Args:
        work_source: 条目来源（任意遍历方式或合并来源）
        sessions: 会话管理器
        retry: 单条目重试控制器（携带策略链）
        sink: 结果写入器
        pacing: 批间速率控制器
        clock / sleep: 可注入的时钟与等待函数
    """

    def __init__(
        self,
        work_source,
        sessions: SessionManager,
        retry: RetryController,
        sink: ResultSink,
        pacing: AdaptiveRateController | None = None,
        concurrency: int | None = None,
        max_runtime_seconds: float | None = None,
        max_block_requeues: int | None = None,
        cooldown: tuple[float, float] | None = None,
        stagger: tuple[float, float] | None = None,
        summary_path: str | Path | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        crawl = config.crawl
        self.work_source = work_source
        self.sessions = sessions
        self.retry = retry
        self.sink = sink
        self.pacing = pacing or AdaptiveRateController()
        self.concurrency = max(1, concurrency or crawl.concurrency)
        if max_runtime_seconds is None:
            max_runtime_seconds = crawl.max_runtime_minutes * 60
        self.max_runtime_seconds = max_runtime_seconds
        self.max_block_requeues = (
            max_block_requeues if max_block_requeues is not None else config.retry.max_block_requeues
        )
        self.cooldown = cooldown or (config.session.cooldown_min, config.session.cooldown_max)
        self.stagger = stagger or (crawl.stagger_min, crawl.stagger_max)
        self.summary_path = Path(summary_path) if summary_path else None
        self.clock = clock or time.monotonic
        self.sleep = sleep or asyncio.sleep

    async def run(self) -> RunSummary:
        """
        运行到工作耗尽或预算用完

        Raises:
            WorkSourceError: 无法加载待处理条目
            SessionUnavailableError: 无法启动浏览器会话
        """
        stats = RunStats()
        started = self.clock()
        summary = RunSummary(status=STATUS_COMPLETED, stats=stats, started_at=datetime.now().isoformat())
        queue: deque[_Task] = deque()
        cursor: Any = None
        exhausted = False

        logger.info(
            f"[Orchestrator] 开始运行: concurrency={self.concurrency} "
            f"budget={self.max_runtime_seconds / 60:.0f}min"
        )
        try:
            while True:
                if self._budget_exhausted(started):
                    summary.status = STATUS_BUDGET
                    logger.warning(f"[Orchestrator] 运行时间预算已用完，剩余 {len(queue)} 个已入队条目留待下次")
                    break

                while len(queue) < self.concurrency and not exhausted:
                    items, cursor, exhausted = await self.work_source.next_batch(cursor)
                    queue.extend(_Task(item) for item in items)

                if not queue:
                    break

                session = await self.sessions.acquire(stats)
                capacity = max(1, min(self.concurrency, self.sessions.remaining(session)))
                batch = [queue.popleft() for _ in range(min(capacity, len(queue)))]
                self.sessions.assign(session, len(batch))
                await self._run_batch(batch, session, queue, stats)

                if queue or not exhausted:
                    await self.sleep(self.pacing.get_delay())
        finally:
            summary.finished_at = datetime.now().isoformat()
            summary.duration_seconds = self.clock() - started
            summary.pacing_level = self.pacing.current_level
            summary.skipped_duplicates = getattr(self.work_source, "skipped", 0)
            if self.summary_path is not None:
                _write_summary(self.summary_path, summary.to_dict())
            await self.sessions.close()

        logger.info(
            f"[Orchestrator] 运行结束: status={summary.status} processed={stats.processed} "
            f"written={len(stats.written_rows)} failed={len(stats.failed_rows)}"
        )
        return summary

    def _budget_exhausted(self, started: float) -> bool:
        if not self.max_runtime_seconds or self.max_runtime_seconds <= 0:
            return False
        return self.clock() - started >= self.max_runtime_seconds

    async def _run_one(self, task: _Task, session, index: int):
        if index:
            await self.sleep(uniform_between(*self.stagger) * index)
        try:
            return task, await self.retry.resolve(task.item, session), None
        except SessionCrashError as exc:
            return task, None, exc
        except Exception as exc:  # noqa: BLE001
            # 单条目的意外错误不能中断整次运行
            logger.error(f"[Orchestrator] {task.item.row_key} 处理异常: {exc}")
            result = ExtractionResult.empty(self.retry.fields_for(task.item), Sentinel.ERROR)
            result.outcome = Outcome.ERROR
            return task, result, None

    async def _run_batch(self, batch: list[_Task], session, queue: deque[_Task], stats: RunStats) -> None:
        logger.info(f"[Orchestrator] 批次 {stats.batches + 1}: {len(batch)} 个条目 (会话 {session.id})")
        results = await asyncio.gather(*(self._run_one(task, session, i) for i, task in enumerate(batch)))

        requests = []
        blocked = crashed = False
        hard_errors = 0
        for task, result, crash in results:
            if crash is not None:
                crashed = True
                self.sessions.release(session, Outcome.CRASHED)
                if task.crashes == 0:
                    task.crashes += 1
                    stats.requeued += 1
                    queue.appendleft(task)
                    logger.warning(f"[Orchestrator] {task.item.row_key} 会话崩溃，重新入队")
                    continue
                result = ExtractionResult.empty(self.retry.fields_for(task.item), Sentinel.ERROR)
                result.outcome = Outcome.CRASHED
                logger.error(f"[Orchestrator] {task.item.row_key} 再次崩溃，写入 ERROR")

            elif result.outcome is Outcome.BLOCKED:
                blocked = True
                if task.blocks < self.max_block_requeues:
                    task.blocks += 1
                    stats.requeued += 1
                    queue.appendleft(task)
                    continue
                logger.warning(f"[Orchestrator] {task.item.row_key} 多次被拦截，写入 BLOCKED")

            if result.outcome is Outcome.ERROR:
                hard_errors += 1
            stats.record_outcome(result.outcome)
            self.sessions.release(session, result.outcome)
            requests.append(self.sink.build_request(task.item, result))

        await self.sink.write(requests, stats)
        stats.batches += 1

        if blocked:
            self.pacing.apply_penalty()
            await self.sessions.rotate(session, ROTATE_BLOCKED, stats)
            cooldown = uniform_between(*self.cooldown)
            logger.warning(f"[Orchestrator] 命中拦截，冷却 {cooldown:.1f}s 后更换会话")
            await self.sleep(cooldown)
        elif crashed:
            await self.sessions.rotate(session, ROTATE_CRASHED, stats)
        else:
            self.pacing.record_success()
            if hard_errors == len(batch) and not await self.sessions.health_check(session):
                await self.sessions.rotate(session, ROTATE_UNHEALTHY, stats)


def _write_summary(path: Path, summary: dict) -> None:
    """将执行摘要写入 JSON 文件。"""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(summary, handle, ensure_ascii=False, indent=2)
