"""QueryTorque Plan pipeline.

Phases:
1. Normalize:  raw plan text → canonical plan (parser picked by content)
2. Analyze:    bottlenecks, index suggestions, derived metrics
3. Layout:     renderer-ready flow data

Independent plans can be processed concurrently with ``run_batch``; every
worker builds its own plan instance.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Optional, Sequence

from .analyzers.plan_comparator import PlanComparator, PlanComparisonResult
from .analyzers.query_analyzer import QueryAnalyzer
from .cancellation import CancellationToken
from .config import get_settings
from .errors import PlanError
from .models import ExecutionPlan
from .parsers.normalizer import PlanNormalizer
from .visualization.flow import FlowBuilder, FlowData

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Analyzed plan plus its flow data."""
    plan: ExecutionPlan
    flow: FlowData


@dataclass
class BatchItem:
    """Outcome for one input of ``run_batch``."""
    index: int
    result: Optional[PipelineResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class PlanPipeline:
    """Normalize → analyze → layout."""

    def __init__(
        self,
        normalizer: Optional[PlanNormalizer] = None,
        analyzer: Optional[QueryAnalyzer] = None,
        flow_builder: Optional[FlowBuilder] = None,
        comparator: Optional[PlanComparator] = None,
    ):
        self.normalizer = normalizer or PlanNormalizer()
        self.analyzer = analyzer or QueryAnalyzer()
        self.flow_builder = flow_builder or FlowBuilder()
        self.comparator = comparator or PlanComparator()

    def analyze(self, raw_plan: str, cancel: Optional[CancellationToken] = None) -> ExecutionPlan:
        plan = self.normalizer.normalize(raw_plan, cancel)
        return self.analyzer.analyze(plan, cancel)

    def run(self, raw_plan: str, cancel: Optional[CancellationToken] = None) -> PipelineResult:
        plan = self.analyze(raw_plan, cancel)
        return PipelineResult(plan=plan, flow=self.flow_builder.build(plan))

    def compare(
        self,
        raw_before: str,
        raw_after: str,
        cancel: Optional[CancellationToken] = None,
    ) -> PlanComparisonResult:
        before = self.analyze(raw_before, cancel)
        after = self.analyze(raw_after, cancel)
        return self.comparator.compare(before, after)

    def run_batch(
        self,
        raw_plans: Sequence[str],
        max_workers: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> list[BatchItem]:
        """Run every plan on a thread pool.

        Input errors are reported per item. Results keep input order.
        """
        if not raw_plans:
            return []
        workers = max_workers or get_settings().batch_max_workers
        items = [BatchItem(index=i) for i in range(len(raw_plans))]

        with ThreadPoolExecutor(max_workers=workers) as pool:
            tasks = {
                pool.submit(self.run, raw, cancel): i
                for i, raw in enumerate(raw_plans)
            }
            for task in as_completed(tasks):
                i = tasks[task]
                try:
                    items[i].result = task.result()
                except PlanError as e:
                    logger.warning("Plan %d failed: %s", i, e)
                    items[i].error = str(e)

        return items
