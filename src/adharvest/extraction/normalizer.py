"""文本规范化

将从页面中抓取的原始文本清洗为可以写入表格的值，或者判定为 NOT_FOUND。
广告渲染层经常把样式声明、分隔标记和按钮文案混入名称节点，
所有策略的候选值都必须经过这里。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import parse_qs, unquote, urlparse

from ..common.types import Sentinel

# 零宽字符、BOM、方向隔离符与软连字符
INVISIBLE_RE = re.compile("[\u200b-\u200d\ufeff\u2066-\u2069\u00ad]")

# 只剥离已知的 CSS 属性声明，避免误伤 "Foo: Bar" 这类正常文本
CSS_PROPERTIES = (
    "background",
    "background-color",
    "border",
    "color",
    "display",
    "font",
    "font-family",
    "font-size",
    "font-style",
    "font-weight",
    "height",
    "left",
    "letter-spacing",
    "line-height",
    "margin",
    "max-height",
    "max-width",
    "min-height",
    "min-width",
    "opacity",
    "overflow",
    "padding",
    "position",
    "text-align",
    "text-decoration",
    "top",
    "visibility",
    "white-space",
    "width",
    "z-index",
)
_CSS_DECL_RE = re.compile(
    r"(?<![\w-])(?:%s)\s*:\s*[^;]+;?" % "|".join(re.escape(p) for p in sorted(CSS_PROPERTIES, key=len, reverse=True))
)
# 形如 "prop: 12" 或包含花括号的残留样式
_CSS_SHAPED_RE = re.compile(r"[A-Za-z][\w-]*\s*:\s*-?\d|[{}]")
_PIXEL_RE = re.compile(r"\b\d+(?:\.\d+)?px\b")
_WHITESPACE_RE = re.compile(r"\s+")
_ONLY_DIGITS_PUNCT_RE = re.compile(r"^[\d\W_]+$")

SEPARATOR = "!@~!@~"

DEFAULT_BLACKLIST = (
    "ad details",
    "google ads",
    "sponsored",
    "advertisement",
    "transparency center",
    "about this ad",
)

_BUTTON_BASE = ("install", "open", "download", "play", "get", "ad details", "google play", "app store")
BUTTON_WORDS = frozenset(_BUTTON_BASE) | frozenset(f"{word} now" for word in _BUTTON_BASE)

SENTENCE_SPLIT_RE = re.compile(r"[.!?،。！？]")

PLAY_STORE_DETAILS = "https://play.google.com/store/apps/details?id="
_TRACKER_HOSTS = ("googleadservices.com",)
_TRACKER_PATHS = ("/pagead/aclk",)
_TRACKER_PARAMS = ("adurl", "dest", "url")


@dataclass(frozen=True)
class TextProfile:
    """长度窗口"""

    name: str
    min_length: int
    max_length: int


LABEL = TextProfile("label", 2, 80)
TAGLINE = TextProfile("tagline", 3, 200)


def strip_invisible(text: str) -> str:
    return INVISIBLE_RE.sub("", text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


class Normalizer:
    """候选文本清洗器

    Args:
        blacklist: 额外的黑名单短语（子串匹配，大小写不敏感），
            通常包含当前广告主名称
        label: 名称的长度窗口
        tagline: 副标题的长度窗口
    """

    def __init__(
        self,
        blacklist: Iterable[str] = (),
        label: TextProfile = LABEL,
        tagline: TextProfile = TAGLINE,
    ):
        self.blacklist = tuple(
            phrase.lower().strip() for phrase in (*DEFAULT_BLACKLIST, *blacklist) if phrase and phrase.strip()
        )
        self.profiles = {"label": label, "tagline": tagline}

    def with_blacklist(self, extra: Iterable[str]) -> "Normalizer":
        """返回追加了黑名单短语的新实例"""
        return Normalizer(
            blacklist=[*self.blacklist, *extra],
            label=self.profiles["label"],
            tagline=self.profiles["tagline"],
        )

    def clean(self, raw: str | None, profile: str = "label") -> str | Sentinel:
        """清洗候选文本

        Returns:
            清洗后的文本；不可用时返回 Sentinel.NOT_FOUND（从不返回空字符串）
        """
        if raw is None:
            return Sentinel.NOT_FOUND
        window = self.profiles[profile]

        text = strip_invisible(str(raw))
        text = _CSS_DECL_RE.sub(" ", text)
        text = text.split(SEPARATOR)[0]
        if "|" in text:
            text = text.split("|")[0]
        if _CSS_SHAPED_RE.search(text):
            return Sentinel.NOT_FOUND
        text = _PIXEL_RE.sub(" ", text)
        text = collapse_whitespace(text)

        if not window.min_length <= len(text) <= window.max_length:
            return Sentinel.NOT_FOUND

        lowered = text.lower()
        if any(phrase in lowered for phrase in self.blacklist):
            return Sentinel.NOT_FOUND
        if lowered in BUTTON_WORDS:
            return Sentinel.NOT_FOUND
        if _ONLY_DIGITS_PUNCT_RE.match(text):
            return Sentinel.NOT_FOUND
        return text

    def clean_label(self, raw: str | None) -> str | Sentinel:
        return self.clean(raw, "label")

    def clean_tagline(self, raw: str | None) -> str | Sentinel:
        return self.clean(raw, "tagline")

    def label_from_tagline(self, tagline: str, max_length: int = 50) -> str | Sentinel:
        """取副标题的第一句作为名称"""
        first = collapse_whitespace(SENTENCE_SPLIT_RE.split(tagline, maxsplit=1)[0])
        if len(first) <= 2 or len(first) > max_length:
            return Sentinel.NOT_FOUND
        return self.clean_label(first)


# ============================================================================
# 商店链接
# ============================================================================


def build_play_store_url(package: str) -> str:
    return f"{PLAY_STORE_DETAILS}{package}"


def validate_store_link(url: str | None) -> bool:
    """Play 商店链接需带 id=，App Store 链接需包含 /app/"""
    if not url:
        return False
    if "play.google.com" in url:
        return "id=" in url
    if "apps.apple.com" in url or "itunes.apple.com" in url:
        return "/app/" in url
    return False


def unwrap_click_tracker(href: str) -> str:
    """从点击跟踪链接中取出真实落地页

    非跟踪链接原样返回；跟踪链接缺少目标参数时也原样返回。
    """
    if not href:
        return href
    try:
        parsed = urlparse(href)
    except ValueError:
        return href
    host = parsed.netloc.lower()
    is_tracker = any(h in host for h in _TRACKER_HOSTS) or any(
        parsed.path.startswith(p) for p in _TRACKER_PATHS
    )
    if not is_tracker:
        return href
    params = parse_qs(parsed.query)
    for key in _TRACKER_PARAMS:
        values = params.get(key)
        if values and values[0]:
            return unquote(values[0])
    return href


def normalize_store_link(href: str | None) -> str | None:
    """解包跟踪链接并校验，返回可用的商店链接或 None"""
    if not href:
        return None
    url = unwrap_click_tracker(href.strip())
    return url if validate_store_link(url) else None
