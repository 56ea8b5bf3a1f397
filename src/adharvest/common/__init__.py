"""Common模块 - 公共工具和基础设施

该模块提供：
- 全局配置管理
- 核心数据类型
- 日志系统
- 异常类
"""

from .config import config, Config
from .logger import get_logger, console
from .exceptions import (
    HarvestError,
    BrowserError,
    PageTimeoutError,
    SessionCrashError,
    SessionUnavailableError,
    BlockedError,
    StorageError,
    TransientStoreError,
    FatalStoreError,
    WorkSourceError,
    ConfigError,
)

__all__ = [
    # 配置
    "config",
    "Config",
    # 日志
    "get_logger",
    "console",
    # 异常
    "HarvestError",
    "BrowserError",
    "PageTimeoutError",
    "SessionCrashError",
    "SessionUnavailableError",
    "BlockedError",
    "StorageError",
    "TransientStoreError",
    "FatalStoreError",
    "WorkSourceError",
    "ConfigError",
]
