"""字段提取模块

页面快照 -> 策略链 -> 规范化后的字段值。
"""

from .document import FrameSnapshot, PageSnapshot
from .extractor import FieldExtractor
from .normalizer import Normalizer, build_play_store_url, validate_store_link
from .strategies import (
    AnchorStrategy,
    Candidate,
    DescriptionAnchorStrategy,
    DescriptionTextStrategy,
    ExtractionContext,
    HeadingStrategy,
    RawContentStrategy,
    Strategy,
    StructuredDataStrategy,
)

__all__ = [
    "FrameSnapshot",
    "PageSnapshot",
    "FieldExtractor",
    "Normalizer",
    "build_play_store_url",
    "validate_store_link",
    "Strategy",
    "Candidate",
    "ExtractionContext",
    "StructuredDataStrategy",
    "AnchorStrategy",
    "HeadingStrategy",
    "RawContentStrategy",
    "DescriptionAnchorStrategy",
    "DescriptionTextStrategy",
]
