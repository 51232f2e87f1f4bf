"""Parser contract shared by every plan format."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..cancellation import CancellationToken
from ..models import ExecutionPlan


class PlanParser(ABC):
    """Turns one engine's raw plan text into a canonical ``ExecutionPlan``.

    Subclasses must:
    - assign sequential depth-first node ids
    - map operator names through a fixed table, defaulting to ``COMPUTE``
    - set node warnings for conditions visible in the source plan
    - set each node's cost percentage using the engine's cost model
    """

    engine_type: str = ""

    @abstractmethod
    def can_parse(self, raw_plan: str) -> bool:
        """Cheap content sniff. Must not raise."""
        pass

    @abstractmethod
    def parse(
        self,
        raw_plan: str,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionPlan:
        """Parse ``raw_plan``.

        Raises:
            ParseFailure: Text is malformed or has no root operator.
            CancellationRequested: ``cancel`` was already set.
        """
        pass


def percent_of(part: float, total: float) -> float:
    """``part`` as a percentage of ``total``, clamped to [0, 100]."""
    if total <= 0:
        return 0.0
    pct = part / total * 100.0
    if pct != pct:  # NaN
        return 0.0
    return max(0.0, min(100.0, pct))


def to_float(value: Any, default: float = 0.0) -> float:
    """Lenient float conversion for plan attributes."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
