"""字段提取策略

每个策略声明自己能产出的字段，并对同一份页面快照给出候选值。
Field Extractor 按顺序调用策略，已经解析出的字段不会被后续策略覆盖。
新增兜底规则只需要实现一个 ``Strategy`` 子类并插入链中。
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import unquote

from ..common.types import ADVERTISER, APP_NAME, STORE_LINK, TAGLINE, Sentinel, has_value
from .document import FrameSnapshot, PageSnapshot, attr_contains, element_text
from .normalizer import Normalizer, build_play_store_url, normalize_store_link


@dataclass(frozen=True)
class Candidate:
    """某个策略给出的字段候选值"""

    value: str | Sentinel
    strategy: str
    confident: bool = False


@dataclass
class ExtractionContext:
    """策略的统一输入"""

    page: PageSnapshot
    normalizer: Normalizer
    found: dict[str, Candidate] = field(default_factory=dict)

    def value_of(self, field_name: str) -> str | None:
        candidate = self.found.get(field_name)
        if candidate is None or not has_value(candidate.value):
            return None
        return str(candidate.value)


class Strategy(ABC):
    """提取策略基类"""

    name: str = "strategy"
    fields: frozenset[str] = frozenset()

    @abstractmethod
    def apply(self, ctx: ExtractionContext) -> dict[str, Candidate]:
        """返回本策略找到的字段；找不到时返回空字典"""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


def _class_token(token: str) -> str:
    return f"contains(concat(' ', normalize-space(@class), ' '), ' {token} ')"


def _first_text(elements: Iterable, prefer_child: str | None = None) -> Iterable[str]:
    for element in elements:
        if prefer_child is not None and not isinstance(element, str):
            children = element.xpath(f".//{prefer_child}")
            if children:
                yield element_text(children[0])
                continue
        yield element_text(element)


# ============================================================================
# 1. 结构化数据（meta[data-asoch-meta]）
# ============================================================================

_FAST_PACKAGE_RE = re.compile(r"id%3D([a-zA-Z0-9._]+)|[?&]id=([a-zA-Z0-9._]+)")
_ADURL_RE = re.compile(r"[?&]adurl=([^&\s]+)", re.IGNORECASE)
_PLAY_ID_RE = re.compile(r"[?&]id=([a-zA-Z0-9._]+)")


def package_from_carrier(payload: str) -> str | None:
    """从广告元数据载体中解析出包名"""
    if not payload:
        return None

    match = _FAST_PACKAGE_RE.search(payload)
    if match:
        package = match.group(1) or match.group(2)
        if package and len(package) > 3:
            return package

    try:
        parsed = json.loads(payload)
    except (ValueError, TypeError):
        return None
    if not isinstance(parsed, list) or not parsed or not isinstance(parsed[0], list):
        return None

    for entry in parsed[0]:
        if not (isinstance(entry, list) and len(entry) > 1 and entry[0] == "ad0"):
            continue
        url_string = entry[1]
        if not isinstance(url_string, str) or not url_string:
            return None
        adurl = _ADURL_RE.search(url_string)
        if adurl:
            decoded = unquote(adurl.group(1))
            if "play.google.com/store/apps/details" in decoded:
                pkg = _PLAY_ID_RE.search(decoded)
                if pkg:
                    return pkg.group(1)
        pkg = _FAST_PACKAGE_RE.search(url_string)
        if pkg:
            return pkg.group(1) or pkg.group(2)
        return None
    return None


class StructuredDataStrategy(Strategy):
    """读取每个 frame 中第一个广告元数据载体"""

    name = "structured_data"
    fields = frozenset({STORE_LINK})

    def apply(self, ctx: ExtractionContext) -> dict[str, Candidate]:
        for frame in ctx.page.content_frames():
            payloads = frame.xpath("//meta[@data-asoch-meta]/@data-asoch-meta")
            if not payloads:
                continue
            package = package_from_carrier(str(payloads[0]))
            if package:
                return {STORE_LINK: Candidate(build_play_store_url(package), self.name, True)}
        return {}


# ============================================================================
# 2. 锚点（名称链接 / 安装按钮）
# ============================================================================

NAME_ANCHOR_XPATHS = (
    f"//a[{attr_contains('data-asoch-targets', 'ochAppName')}]",
    f"//a[{attr_contains('data-asoch-targets', 'appname', ignore_case=True)}]",
    f"//a[{attr_contains('data-asoch-targets', 'rrappname', ignore_case=True)}]",
    f"//a[{attr_contains('class', 'short-app-name')}]",
    f"//*[{_class_token('short-app-name')}]//a",
)

INSTALL_ANCHOR_XPATHS = (
    f"//a[{attr_contains('data-asoch-targets', 'ochButton')}]",
    f"//a[{attr_contains('data-asoch-targets', 'install', ignore_case=True)}]",
    f"//a[{attr_contains('aria-label', 'install', ignore_case=True)}]",
    f"//a[{attr_contains('href', 'play.google.com')}]",
    f"//a[{attr_contains('href', 'apps.apple.com')}]",
)


class AnchorStrategy(Strategy):
    """名称锚点与安装按钮

    同时带有名称与商店链接的锚点直接胜出并结束扫描（高置信度）；
    否则保留最先看到的名称和链接（低置信度）。
    """

    name = "anchor"
    fields = frozenset({STORE_LINK, APP_NAME})

    def apply(self, ctx: ExtractionContext) -> dict[str, Candidate]:
        label: str | None = None
        link: str | None = None

        for frame in ctx.page.content_frames():
            for xpath in NAME_ANCHOR_XPATHS:
                for anchor in frame.xpath(xpath):
                    anchor_link = normalize_store_link(anchor.get("href"))
                    cleaned = ctx.normalizer.clean_label(element_text(anchor))
                    anchor_label = cleaned if has_value(cleaned) else None
                    if anchor_label and anchor_link:
                        return {
                            STORE_LINK: Candidate(anchor_link, self.name, True),
                            APP_NAME: Candidate(anchor_label, self.name, True),
                        }
                    label = label or anchor_label
                    link = link or anchor_link

            if link is None:
                link = self._install_link(frame)

        found: dict[str, Candidate] = {}
        if link:
            found[STORE_LINK] = Candidate(link, self.name)
        if label:
            found[APP_NAME] = Candidate(label, self.name)
        return found

    @staticmethod
    def _install_link(frame: FrameSnapshot) -> str | None:
        for xpath in INSTALL_ANCHOR_XPATHS:
            for anchor in frame.xpath(xpath):
                link = normalize_store_link(anchor.get("href"))
                if link:
                    return link
        return None


# ============================================================================
# 3. 标题/名称容器
# ============================================================================

NAME_CONTAINER_XPATHS = (
    f"//div[{_class_token('KDwhZb-Gxk8ed-r4nke')}]",
    f"//div[{attr_contains('class', 'KDwhZb-Gxk8ed-r4nke')}]",
    f"//div[{attr_contains('class', 'KDwhZb')} and {attr_contains('class', 'Gxk8ed')}]",
    f"//div[{_class_token('cS4Vcb-kb9wTc')}]",
    f"//div[{attr_contains('class', 'cS4Vcb-kb9wTc')}]",
    f"//div[{attr_contains('class', 'cS4Vcb-pGL6qe-c0XB9d')}]",
    f"//*[{attr_contains('data-asoch-targets', 'AppName')}]",
    f"//*[{attr_contains('data-asoch-targets', 'appName')}]",
    f"//*[{attr_contains('data-asoch-targets', 'app_name')}]",
    f"//*[{attr_contains('class', 'app-name')}]",
    f"//*[{attr_contains('class', 'appName')}]",
    f"//*[{attr_contains('class', 'title')} and {attr_contains('class', 'app')}]",
    "//div[@role='heading']",
    "//span[@role='heading']",
)

HEADING_FALLBACK_XPATHS = (
    f"//div[{attr_contains('class', 'KDwhZb')}]//span",
    "//*[@role='heading']",
    f"//div[{attr_contains('class', 'app-name')}]",
    f"//*[{_class_token('app-title')}]",
    "//h1",
    "//h2",
    "//h3",
)


def label_from_title(title: str) -> str | None:
    """页面标题兜底：取 ' - ' 与 '|' 之前的部分"""
    if not title or "google ads" in title.lower():
        return None
    head = title.split(" - ")[0].split("|")[0].strip()
    return head or None


class HeadingStrategy(Strategy):
    """名称容器与标题元素，页面 <title> 兜底"""

    name = "heading"
    fields = frozenset({APP_NAME})

    def apply(self, ctx: ExtractionContext) -> dict[str, Candidate]:
        frames = ctx.page.content_frames()
        for xpaths, prefer_child in ((NAME_CONTAINER_XPATHS, "span"), (HEADING_FALLBACK_XPATHS, None)):
            for frame in frames:
                for xpath in xpaths:
                    for text in _first_text(frame.xpath(xpath), prefer_child):
                        label = ctx.normalizer.clean_label(text)
                        if has_value(label) and len(label) > 2:
                            return {APP_NAME: Candidate(label, self.name)}

        title = label_from_title(ctx.page.title)
        if title:
            label = ctx.normalizer.clean_label(title)
            if has_value(label):
                return {APP_NAME: Candidate(label, f"{self.name}:title")}
        return {}


# ============================================================================
# 4. 原始内容扫描
# ============================================================================

_STORE_URL_RE = re.compile(
    r"https?://(?:play\.google\.com/store/apps/details\?(?:[^\s\"'<>]*?&(?:amp;)?)?id=[a-zA-Z][a-zA-Z0-9_.]+"
    r"|apps\.apple\.com/[^\s\"'<>]*?/app/[^\s\"'<>]+)"
)
_ID_PARAM_RE = re.compile(r"(?:[?&;]id=|id%3D)([a-zA-Z][a-zA-Z0-9_.]+)")
PACKAGE_RE = re.compile(r"\b(com\.[a-zA-Z][a-zA-Z0-9_]*\.[a-zA-Z0-9_.]+)\b")
PACKAGE_DENYLIST = ("com.google.android", "com.android.", "schema.org", "w3.org")


def find_packages(text: str) -> list[str]:
    """按出现顺序返回候选包名（已过滤、com.* 优先）"""
    seen: dict[str, None] = {}
    for match in _ID_PARAM_RE.finditer(text):
        pkg = match.group(1).rstrip(".")
        if "." in pkg:
            seen.setdefault(pkg, None)
    for match in PACKAGE_RE.finditer(text):
        seen.setdefault(match.group(1).rstrip("."), None)

    valid = [
        pkg
        for pkg in seen
        if 5 <= len(pkg) <= 100
        and not any(pkg.startswith(prefix) for prefix in PACKAGE_DENYLIST)
        and len(pkg.split(".")) >= 2
    ]
    return [p for p in valid if p.startswith("com.")] + [p for p in valid if not p.startswith("com.")]


class RawContentStrategy(Strategy):
    """在所有可读 HTML 中正则扫描商店链接或包名"""

    name = "raw_content"
    fields = frozenset({STORE_LINK})

    def apply(self, ctx: ExtractionContext) -> dict[str, Candidate]:
        text = ctx.page.all_html()
        for match in _STORE_URL_RE.finditer(text):
            link = normalize_store_link(match.group(0).replace("&amp;", "&"))
            if link:
                return {STORE_LINK: Candidate(link, self.name)}

        packages = find_packages(text)
        if packages:
            return {STORE_LINK: Candidate(build_play_store_url(packages[0]), self.name)}
        return {}


# ============================================================================
# 副标题链
# ============================================================================

DESCRIPTION_ANCHOR_XPATHS = (
    f"//*[{_class_token('cS4Vcb-vnv8ic')}]",
    f"//*[{attr_contains('class', 'cS4Vcb')} and {attr_contains('class', 'vnv8ic')}]",
    f"//*[{attr_contains('class', 'vnv8ic')}]",
    f"//*[{attr_contains('data-asoch-targets', 'Headline')}]",
    f"//*[{attr_contains('data-asoch-targets', 'Description')}]",
)

DESCRIPTION_TEXT_XPATHS = (
    f"//*[{_class_token('description')}]",
    f"//div[{attr_contains('class', 'description')}]",
    f"//*[{attr_contains('class', 'subtitle')}]",
    f"//*[{attr_contains('class', 'tagline')}]",
)


class _TaglineStrategy(Strategy):
    fields = frozenset({TAGLINE})
    xpaths: tuple[str, ...] = ()

    def apply(self, ctx: ExtractionContext) -> dict[str, Candidate]:
        label = ctx.value_of(APP_NAME)
        for frame in ctx.page.content_frames():
            for xpath in self.xpaths:
                for element in frame.xpath(xpath):
                    tagline = ctx.normalizer.clean_tagline(element_text(element))
                    if has_value(tagline) and tagline != label:
                        return {TAGLINE: Candidate(tagline, self.name)}
        return {}


class DescriptionAnchorStrategy(_TaglineStrategy):
    """广告素材中的标题/描述槽位"""

    name = "description_anchor"
    xpaths = DESCRIPTION_ANCHOR_XPATHS


class DescriptionTextStrategy(_TaglineStrategy):
    """description / subtitle / tagline 类名的元素"""

    name = "description_text"
    xpaths = DESCRIPTION_TEXT_XPATHS


# ============================================================================
# 广告主
# ============================================================================

ADVERTISER_XPATHS = (
    f"//*[{_class_token('advertiser-name')}]",
    f"//*[{_class_token('advertiser-name-container')}]",
    "//h1",
    f"//*[{_class_token('creative-details-page-header-text')}]",
    f"//*[{_class_token('ad-details-heading')}]",
)
HEADER_BLACKLIST = ("ad details", "google ads", "transparency center", "about this ad")


class AdvertiserStrategy(Strategy):
    """从主文档页头读取广告主名称"""

    name = "advertiser_header"
    fields = frozenset({ADVERTISER})

    def apply(self, ctx: ExtractionContext) -> dict[str, Candidate]:
        main = ctx.page.main
        for xpath in ADVERTISER_XPATHS:
            elements = main.xpath(xpath)
            if not elements:
                continue
            text = " ".join(element_text(elements[0]).split())
            lowered = text.lower()
            if len(text) < 2 or any(phrase in lowered for phrase in HEADER_BLACKLIST):
                continue
            return {ADVERTISER: Candidate(text, self.name, True)}
        return {}


def default_label_chain() -> list[Strategy]:
    return [StructuredDataStrategy(), AnchorStrategy(), HeadingStrategy(), RawContentStrategy()]


def default_tagline_chain() -> list[Strategy]:
    return [DescriptionAnchorStrategy(), DescriptionTextStrategy()]
