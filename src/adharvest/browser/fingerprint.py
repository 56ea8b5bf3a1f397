"""浏览器指纹池与资源拦截策略"""

from __future__ import annotations

import random
from dataclasses import dataclass, field


USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

VIEWPORTS = (
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1280, "height": 720},
    {"width": 1600, "height": 900},
    {"width": 1920, "height": 1200},
    {"width": 1680, "height": 1050},
)

ACCEPT_LANGUAGES = (
    "en-US,en;q=0.9",
    "en-US,en;q=0.9,zh-CN;q=0.8",
    "en-US,en;q=0.9,fr;q=0.8",
    "en-GB,en;q=0.9",
    "en-US,en;q=0.9,es;q=0.8",
)


@dataclass(frozen=True)
class Fingerprint:
    """一个会话使用的浏览器指纹"""

    user_agent: str
    viewport: dict = field(hash=False, compare=True)
    accept_language: str = "en-US,en;q=0.9"

    @property
    def key(self) -> tuple:
        return (self.user_agent, self.viewport["width"], self.viewport["height"], self.accept_language)

    @property
    def platform(self) -> str:
        if "Windows" in self.user_agent:
            return "Win32"
        if "Macintosh" in self.user_agent:
            return "MacIntel"
        return "Linux x86_64"

    def context_options(self) -> dict:
        """传给 ``browser.new_context`` 的参数"""
        return {
            "user_agent": self.user_agent,
            "viewport": dict(self.viewport),
            "extra_http_headers": {"accept-language": self.accept_language},
        }

    def init_script(self) -> str:
        """页面脚本执行前注入，覆盖常见的自动化特征"""
        width = self.viewport["width"]
        height = self.viewport["height"]
        return f"""
Object.defineProperty(navigator, 'webdriver', {{ get: () => undefined }});
Object.defineProperty(navigator, 'plugins', {{ get: () => [1, 2, 3, 4, 5], configurable: true }});
Object.defineProperty(navigator, 'languages', {{ get: () => ['en-US', 'en'], configurable: true }});
Object.defineProperty(navigator, 'platform', {{ get: () => '{self.platform}', configurable: true }});
Object.defineProperty(navigator, 'hardwareConcurrency', {{ get: () => 4 + Math.floor(Math.random() * 4), configurable: true }});
Object.defineProperty(navigator, 'deviceMemory', {{ get: () => [4, 8, 16][Math.floor(Math.random() * 3)], configurable: true }});
Object.defineProperty(screen, 'width', {{ get: () => {width}, configurable: true }});
Object.defineProperty(screen, 'height', {{ get: () => {height}, configurable: true }});
Object.defineProperty(screen, 'availWidth', {{ get: () => {width}, configurable: true }});
Object.defineProperty(screen, 'availHeight', {{ get: () => {height - 40}, configurable: true }});
"""


class FingerprintPool:
    """指纹池

    每次抽取都避开上一次会话使用的指纹（池中只有一个指纹时除外）。
    """

    def __init__(
        self,
        user_agents=USER_AGENTS,
        viewports=VIEWPORTS,
        accept_languages=ACCEPT_LANGUAGES,
        rng: random.Random | None = None,
    ):
        self.fingerprints = [
            Fingerprint(ua, dict(vp), lang)
            for ua in user_agents
            for vp in viewports
            for lang in accept_languages
        ]
        if not self.fingerprints:
            raise ValueError("指纹池为空")
        self._rng = rng or random.Random()

    def draw(self, previous: Fingerprint | None = None) -> Fingerprint:
        candidates = self.fingerprints
        if previous is not None and len(candidates) > 1:
            candidates = [fp for fp in candidates if fp.key != previous.key]
        return self._rng.choice(candidates)


# ============================================================================
# 资源拦截
# ============================================================================

BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "media"})
# 文档、脚本与 XHR 永远放行，广告素材依赖它们渲染
PROTECTED_RESOURCE_TYPES = frozenset({"document", "script", "xhr", "fetch"})
BLOCKED_URL_PATTERNS = (
    "google-analytics",
    "analytics",
    "facebook.com",
    "bing.com",
    "/logs",
    "/collect",
)


def should_block(resource_type: str, url: str) -> bool:
    if resource_type in PROTECTED_RESOURCE_TYPES:
        return False
    if resource_type in BLOCKED_RESOURCE_TYPES:
        return True
    lowered = (url or "").lower()
    return any(pattern in lowered for pattern in BLOCKED_URL_PATTERNS)
