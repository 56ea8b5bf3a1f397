"""自定义异常类

定义项目中使用的所有自定义异常，用于更精细的错误处理。
单个条目的失败在条目级别被吸收，只有存储层耗尽重试才会终止整次运行。
"""

from __future__ import annotations


class HarvestError(Exception):
    """采集流水线基础异常类

    所有自定义异常的基类。
    """
    pass


class BrowserError(HarvestError):
    """浏览器相关错误的基类"""
    pass


class PageTimeoutError(BrowserError):
    """页面加载超时

    当页面无法在超时时间内加载完成时抛出，可重试。
    """
    def __init__(self, url: str, timeout_ms: int | None = None):
        message = f"页面加载超时: {url}"
        if timeout_ms is not None:
            message += f" ({timeout_ms}ms)"
        super().__init__(message)
        self.url = url
        self.timeout_ms = timeout_ms


class SessionCrashError(BrowserError):
    """浏览器会话崩溃

    浏览器进程退出或上下文被关闭时抛出，会话将被丢弃、条目重新入队一次。
    """
    def __init__(self, session_id: str, reason: str = "浏览器进程已断开"):
        super().__init__(f"会话 {session_id} 崩溃: {reason}")
        self.session_id = session_id
        self.reason = reason


class SessionUnavailableError(BrowserError):
    """无法启动可用的浏览器会话"""
    def __init__(self, attempts: int, message: str = "浏览器会话启动失败"):
        super().__init__(f"{message}（已尝试 {attempts} 次）")
        self.attempts = attempts


class BlockedError(HarvestError):
    """检测到限流或人机验证页面"""
    def __init__(self, url: str, status: int | None = None):
        super().__init__(f"页面被拦截: {url} (status={status})")
        self.url = url
        self.status = status


class StorageError(HarvestError):
    """存储相关错误的基类"""
    pass


class TransientStoreError(StorageError):
    """存储暂时不可用（限流、5xx、超时），可退避重试"""
    def __init__(self, message: str = "存储暂时不可用", status: int | None = None):
        super().__init__(message)
        self.status = status


class FatalStoreError(StorageError):
    """存储写入在重试后仍然失败

    携带受影响的行引用，供人工跟进。
    """
    def __init__(self, message: str, row_keys: list[str] | None = None):
        super().__init__(message)
        self.row_keys = list(row_keys or [])


class WorkSourceError(StorageError):
    """无法从存储加载待处理条目"""
    def __init__(self, sheet: str, reason: str = "读取失败"):
        super().__init__(f"无法加载工作表 {sheet}: {reason}")
        self.sheet = sheet
        self.reason = reason


class ConfigError(HarvestError):
    """配置相关错误"""
    pass


class ConfigFileNotFoundError(ConfigError):
    """配置文件未找到"""
    def __init__(self, path: str):
        super().__init__(f"配置文件未找到: {path}")
        self.path = path


_TRANSIENT_MARKERS = (
    "429",
    "quota",
    "rate limit",
    "ratelimit",
    "rate_limit",
    "rate-limit",
    "500",
    "502",
    "503",
    "unavailable",
    "timeout",
    "timed out",
)


def classify_store_error(exc: BaseException) -> StorageError:
    """将任意存储客户端异常归类为 TransientStoreError 或 FatalStoreError"""
    if isinstance(exc, StorageError):
        return exc

    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if isinstance(status, int) and (status == 429 or status >= 500):
        return TransientStoreError(str(exc), status=status)

    message = str(exc).lower()
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return TransientStoreError(str(exc))
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return TransientStoreError(str(exc) or exc.__class__.__name__)
    return FatalStoreError(str(exc) or exc.__class__.__name__)
