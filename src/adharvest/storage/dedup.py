"""Dedup/Merge Engine

按规范化后的键去重。接受过的键集合在一次运行内只增不减。
"""

from __future__ import annotations

from typing import Iterable

from ..common.logger import get_logger
from ..extraction.normalizer import collapse_whitespace, strip_invisible

logger = get_logger(__name__)


def normalize_key(value: str | None) -> str:
    """去除不可见字符、压缩空白、去首尾空白并转小写"""
    if not value:
        return ""
    return collapse_whitespace(strip_invisible(str(value))).lower()


class DedupEngine:
    """去重引擎

    Example:
        >>> engine = DedupEngine(["https://a.example/x"])
        >>> engine.accept(" HTTPS://A.example/x ")
        False
    """

    def __init__(self, existing: Iterable[str] = ()):
        self._keys: set[str] = set()
        self.preload(existing)

    def preload(self, values: Iterable[str]) -> int:
        """从已有数据中载入键，返回新增数量"""
        before = len(self._keys)
        for value in values:
            key = normalize_key(value)
            if key:
                self._keys.add(key)
        added = len(self._keys) - before
        if added:
            logger.debug(f"[Dedup] 预载入 {added} 个已有键")
        return added

    def seen(self, candidate: str | None) -> bool:
        return normalize_key(candidate) in self._keys

    def accept(self, candidate: str | None) -> bool:
        """键为空或已存在时拒绝，否则记录并接受"""
        key = normalize_key(candidate)
        if not key or key in self._keys:
            return False
        self._keys.add(key)
        return True

    def __len__(self) -> int:
        return len(self._keys)
