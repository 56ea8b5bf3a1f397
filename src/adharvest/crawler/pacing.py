"""自适应速率控制器

批间延迟 = 随机基础延迟 × 退避倍率 × 连续成功折扣。
遭遇拦截时提升降速等级；连续无拦截的批次逐步恢复速度并缩短延迟。
"""

from __future__ import annotations

from ..common.config import config
from ..common.logger import get_logger
from ..common.utils.delay import uniform_between

logger = get_logger(__name__)

# 连续成功折扣：每批减少 8%，最低降到 50%
SUCCESS_STEP = 0.08
SUCCESS_FLOOR = 0.5


class AdaptiveRateController:
    """自适应速率控制器

    使用指数退避算法：multiplier = backoff_factor ^ level
    """

    def __init__(
        self,
        delay_min: float | None = None,
        delay_max: float | None = None,
        backoff_factor: float | None = None,
        max_level: int | None = None,
        credit_recovery_batches: int | None = None,
        initial_level: int = 0,
    ):
        """初始化

        Args:
            delay_min: 批间延迟下限（秒），默认从配置读取
            delay_max: 批间延迟上限（秒），默认从配置读取
            backoff_factor: 退避因子，默认从配置读取
            max_level: 最大降速等级，默认从配置读取
            credit_recovery_batches: 连续成功多少批后恢复一级，默认从配置读取
            initial_level: 初始降速等级
        """
        crawl = config.crawl
        self.delay_min = delay_min if delay_min is not None else crawl.batch_delay_min
        self.delay_max = delay_max if delay_max is not None else crawl.batch_delay_max
        self.backoff_factor = backoff_factor or crawl.backoff_factor
        self.max_level = max_level if max_level is not None else crawl.max_backoff_level
        self.credit_recovery_batches = credit_recovery_batches or crawl.credit_recovery_batches

        self.current_level = min(initial_level, self.max_level)
        self.consecutive_success_count = 0
        self.success_streak = 0

    def get_delay_multiplier(self) -> float:
        """降速等级带来的延迟倍率"""
        return self.backoff_factor**self.current_level

    def get_success_discount(self) -> float:
        """连续成功带来的折扣"""
        return max(SUCCESS_FLOOR, 1.0 - SUCCESS_STEP * self.success_streak)

    def get_delay(self) -> float:
        """获取下一次批间延迟（秒）"""
        base = uniform_between(self.delay_min, self.delay_max)
        return base * self.get_delay_multiplier() * self.get_success_discount()

    def apply_penalty(self) -> None:
        """应用惩罚（遭遇拦截时调用）

        提升一个降速等级，重置连续成功计数
        """
        if self.current_level < self.max_level:
            self.current_level += 1
            logger.warning(
                f"[速率控制] 触发惩罚，降速等级提升至 {self.current_level}/{self.max_level} "
                f"(倍率 {self.get_delay_multiplier():.2f})"
            )
        else:
            logger.warning(f"[速率控制] 已达最大降速等级 {self.max_level}")

        self.consecutive_success_count = 0
        self.success_streak = 0

    def record_success(self) -> None:
        """记录一个无拦截的批次

        累积成功计数，达到阈值后尝试恢复
        """
        self.consecutive_success_count += 1
        self.success_streak += 1

        if self.consecutive_success_count >= self.credit_recovery_batches:
            self._try_credit_recovery()

    def _try_credit_recovery(self) -> None:
        if self.current_level > 0:
            self.current_level -= 1
            logger.info(f"[速率控制] 信用恢复，降速等级降至 {self.current_level}/{self.max_level}")

        self.consecutive_success_count = 0

    @property
    def is_slowed(self) -> bool:
        """是否处于降速状态"""
        return self.current_level > 0
