"""Field Extractor

按顺序执行策略链，为请求的每个字段取第一个有效候选值。
"""

from __future__ import annotations

from typing import Iterable, Sequence

from ..common.config import config
from ..common.logger import get_logger
from ..common.types import (
    ADVERTISER,
    APP_NAME,
    STORE_LINK,
    TAGLINE,
    ExtractionResult,
    Sentinel,
    has_value,
)
from .document import FrameSnapshot, PageSnapshot
from .normalizer import LABEL, TAGLINE as TAGLINE_PROFILE, Normalizer, TextProfile
from .strategies import (
    AdvertiserStrategy,
    Candidate,
    ExtractionContext,
    Strategy,
    default_label_chain,
    default_tagline_chain,
)

logger = get_logger(__name__)


class FieldExtractor:
    """字段提取器

    Args:
        label_chain: 商店链接与名称的策略链（有序）
        tagline_chain: 副标题的策略链（有序）
        normalizer: 文本清洗器，默认按配置构建
        fields: 默认提取的字段集合
    """

    def __init__(
        self,
        label_chain: Sequence[Strategy] | None = None,
        tagline_chain: Sequence[Strategy] | None = None,
        normalizer: Normalizer | None = None,
        fields: Iterable[str] | None = None,
        advertiser_strategy: Strategy | None = None,
    ):
        extraction = config.extraction
        self.label_chain = list(label_chain if label_chain is not None else default_label_chain())
        self.tagline_chain = list(tagline_chain if tagline_chain is not None else default_tagline_chain())
        self.advertiser_strategy = advertiser_strategy or AdvertiserStrategy()
        self.normalizer = normalizer or Normalizer(
            blacklist=extraction.extra_blacklist,
            label=TextProfile(LABEL.name, extraction.label_min_length, extraction.label_max_length),
            tagline=TextProfile(
                TAGLINE_PROFILE.name, extraction.tagline_min_length, extraction.tagline_max_length
            ),
        )
        self.fields = frozenset(fields or config.crawl.fields)
        self.derived_label_max_length = extraction.derived_label_max_length

    def extract(
        self,
        document: PageSnapshot,
        frames: Sequence[FrameSnapshot] | None = None,
        blacklist: Iterable[str] = (),
        fields: Iterable[str] | None = None,
    ) -> ExtractionResult:
        """从页面快照中提取字段

        Args:
            document: 页面快照
            frames: 覆盖快照中的 frame 列表（可选）
            blacklist: 不能作为名称的短语，通常是广告主名称
            fields: 本次需要的字段，默认使用构造时的字段集合

        Returns:
            每个请求字段要么有值，要么为 NOT_FOUND
        """
        wanted = frozenset(fields) if fields is not None else self.fields
        if frames is not None:
            document = PageSnapshot(
                url=document.url,
                status=document.status,
                title=document.title,
                html=document.html,
                frames=list(frames),
            )

        ctx = ExtractionContext(page=document, normalizer=self.normalizer.with_blacklist(blacklist))

        advertiser = self._apply(self.advertiser_strategy, ctx)
        if ADVERTISER in advertiser:
            ctx.found[ADVERTISER] = advertiser[ADVERTISER]
            ctx.normalizer = ctx.normalizer.with_blacklist([str(advertiser[ADVERTISER].value)])

        label_fields = wanted & {STORE_LINK, APP_NAME}
        self._run_chain(self.label_chain, ctx, label_fields)

        if TAGLINE in wanted or (APP_NAME in wanted and ctx.value_of(APP_NAME) is None):
            self._run_chain(self.tagline_chain, ctx, {TAGLINE})
            tagline = ctx.value_of(TAGLINE)
            if APP_NAME in wanted and ctx.value_of(APP_NAME) is None and tagline:
                derived = ctx.normalizer.label_from_tagline(tagline, self.derived_label_max_length)
                if has_value(derived):
                    ctx.found[APP_NAME] = Candidate(derived, "tagline_sentence")

        result = ExtractionResult.empty(wanted)
        for name in wanted:
            candidate = ctx.found.get(name)
            if candidate is not None and has_value(candidate.value):
                result.set(name, candidate.value, candidate.confident, candidate.strategy)
            else:
                result.set(name, Sentinel.NOT_FOUND, False, "")

        logger.debug(
            f"[Extractor] {document.url} -> "
            + ", ".join(f"{k}={result.get(k)}({result.strategies.get(k) or '-'})" for k in sorted(wanted))
        )
        return result

    def _run_chain(self, chain: Sequence[Strategy], ctx: ExtractionContext, wanted: set | frozenset) -> None:
        for strategy in chain:
            unresolved = {name for name in wanted if ctx.value_of(name) is None}
            if not unresolved:
                return
            if not strategy.fields & unresolved:
                continue
            for name, candidate in self._apply(strategy, ctx).items():
                if name in unresolved and has_value(candidate.value):
                    ctx.found[name] = candidate

    @staticmethod
    def _apply(strategy: Strategy, ctx: ExtractionContext) -> dict[str, Candidate]:
        try:
            return strategy.apply(ctx)
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"[Extractor] 策略 {strategy.name} 无数据: {exc}")
            return {}
