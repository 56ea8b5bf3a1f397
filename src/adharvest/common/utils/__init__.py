"""通用工具模块"""

from .delay import backoff_delay, get_random_delay, uniform_between

__all__ = [
    "backoff_delay",
    "get_random_delay",
    "uniform_between",
]
