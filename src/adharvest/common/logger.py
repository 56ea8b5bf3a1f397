"""统一日志系统

所有 ``adharvest.*`` 日志器共用包级日志器上的 Rich 处理器；
浏览器层使用 loguru（见 ``adharvest.browser.engine``），文件日志同时接管两者，
这样失败行的行号和会话轮换记录都落在同一个文件里。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from loguru import logger as browser_logger
from rich.console import Console
from rich.logging import RichHandler


# 全局控制台实例
console = Console()

PACKAGE_LOGGER = "adharvest"

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
BROWSER_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"

# 日志级别映射
LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_log_level() -> int:
    """从环境变量获取日志级别"""
    level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    return LOG_LEVEL_MAP.get(level_str, logging.INFO)


def _configure(logger: logging.Logger) -> logging.Logger:
    # 避免重复配置
    if logger.handlers:
        return logger

    log_level = get_log_level()
    logger.setLevel(log_level)

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=os.getenv("LOG_SHOW_LOCALS", "false").lower() == "true",
        markup=False,
    )
    rich_handler.setLevel(log_level)
    rich_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger.addHandler(rich_handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """获取统一配置的日志器

    包内的日志器不挂自己的处理器，向上传播到 ``adharvest``；
    包外名称（如 ``__main__``）单独配置。

    Example:
        >>> from adharvest.common.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("[Orchestrator] 开始运行")
    """
    package_logger = _configure(logging.getLogger(PACKAGE_LOGGER))
    if name == PACKAGE_LOGGER:
        return package_logger
    if name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return _configure(logging.getLogger(name))


def setup_file_logging(log_file: str | Path, level: int = logging.DEBUG) -> int:
    """把整条流水线的日志追加写入文件

    标准日志挂在包级日志器上，loguru 另加一个写同一文件的 sink。

    Returns:
        loguru sink id，可用 ``loguru.logger.remove`` 取消
    """
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    package_logger = get_logger(PACKAGE_LOGGER)
    package_logger.addHandler(file_handler)
    # 文件需要 DEBUG 时，包级日志器本身不能把记录挡掉
    package_logger.setLevel(min(package_logger.level, level))

    return browser_logger.add(
        str(path),
        level=logging.getLevelName(level),
        format=BROWSER_FILE_FORMAT,
        encoding="utf-8",
    )
