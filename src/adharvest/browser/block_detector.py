"""拦截检测（Block Detector）

判断一次页面加载是否命中了限流或人机验证页面。
每次页面加载后、任何提取之前执行一次。
"""

from __future__ import annotations

from typing import Iterable

from loguru import logger

from ..common.exceptions import BlockedError


BLOCK_STATUS_CODES = frozenset({429})

BLOCK_KEYWORDS = (
    "unusual traffic",
    "too many requests",
    "captcha",
    "g-recaptcha",
    "verify you are human",
)


class BlockDetector:
    """根据 HTTP 状态码与页面内容判断是否被拦截"""

    def __init__(self, keywords: Iterable[str] = BLOCK_KEYWORDS, status_codes: Iterable[int] = BLOCK_STATUS_CODES):
        self.keywords = tuple(keyword.lower() for keyword in keywords)
        self.status_codes = frozenset(status_codes)

    def is_blocked(self, status: int | None, body_text: str | None) -> bool:
        if status is not None and status in self.status_codes:
            logger.debug(f"[BlockDetector] 命中状态码 {status}")
            return True
        matched = self.matched_keyword(body_text)
        if matched:
            logger.debug(f"[BlockDetector] 命中关键词 '{matched}'")
            return True
        return False

    def matched_keyword(self, body_text: str | None) -> str | None:
        if not body_text:
            return None
        lowered = body_text.lower()
        for keyword in self.keywords:
            if keyword in lowered:
                return keyword
        return None

    def check(self, url: str, status: int | None, body_text: str | None) -> None:
        """
        Raises:
            BlockedError: 页面命中拦截
        """
        if self.is_blocked(status, body_text):
            raise BlockedError(url, status)
