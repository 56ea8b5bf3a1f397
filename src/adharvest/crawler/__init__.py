"""采集层：单条目重试、速率控制与批处理编排"""

from .orchestrator import Orchestrator, RunSummary
from .pacing import AdaptiveRateController
from .retry import RetryController

__all__ = [
    "Orchestrator",
    "RunSummary",
    "AdaptiveRateController",
    "RetryController",
]
