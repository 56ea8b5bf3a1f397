"""adharvest - 广告详情页字段采集流水线"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .crawler.orchestrator import Orchestrator as Orchestrator
    from .extraction.extractor import FieldExtractor as FieldExtractor
    from .storage.aggregator import Aggregator as Aggregator

__all__ = [
    "__version__",
    "Orchestrator",
    "FieldExtractor",
    "Aggregator",
]


def __getattr__(name: str) -> Any:
    """Lazy exports to avoid importing heavy runtime dependencies at package import time."""
    if name == "Orchestrator":
        from .crawler.orchestrator import Orchestrator

        return Orchestrator
    if name == "FieldExtractor":
        from .extraction.extractor import FieldExtractor

        return FieldExtractor
    if name == "Aggregator":
        from .storage.aggregator import Aggregator

        return Aggregator
    raise AttributeError(f"module 'adharvest' has no attribute '{name}'")
