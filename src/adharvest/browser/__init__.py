"""浏览器层：引擎、会话、会话管理与拦截检测"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .block_detector import BlockDetector
from .fingerprint import Fingerprint, FingerprintPool, should_block

if TYPE_CHECKING:
    from .engine import BrowserEngine as BrowserEngine
    from .manager import SessionManager as SessionManager
    from .session import BrowserSession as BrowserSession

__all__ = [
    "BlockDetector",
    "Fingerprint",
    "FingerprintPool",
    "should_block",
    "BrowserEngine",
    "BrowserSession",
    "SessionManager",
]


def __getattr__(name: str) -> Any:
    """Lazy exports so that importing the package does not pull in Playwright."""
    if name == "BrowserEngine":
        from .engine import BrowserEngine

        return BrowserEngine
    if name == "BrowserSession":
        from .session import BrowserSession

        return BrowserSession
    if name == "SessionManager":
        from .manager import SessionManager

        return SessionManager
    raise AttributeError(f"module 'adharvest.browser' has no attribute '{name}'")
