"""Runs the analysis passes over a normalized plan."""

from __future__ import annotations

import logging
from typing import Optional

from ..cancellation import CancellationToken, check_cancelled
from ..models import SCAN_TYPES, ExecutionPlan, Severity
from .bottleneck_detector import BottleneckDetector
from .cost_analyzer import CostAnalyzer
from .index_advisor import IndexAdvisor

logger = logging.getLogger(__name__)


class QueryAnalyzer:
    """Attaches bottlenecks, index suggestions and derived metrics to a plan.

    Passes run sequentially on the same instance: the detector's findings
    mark node warnings, so the plan must not be shared with another thread
    while ``analyze`` runs.
    """

    def __init__(
        self,
        cost_analyzer: Optional[CostAnalyzer] = None,
        bottleneck_detector: Optional[BottleneckDetector] = None,
        index_advisor: Optional[IndexAdvisor] = None,
    ):
        self.cost_analyzer = cost_analyzer or CostAnalyzer()
        self.bottleneck_detector = bottleneck_detector or BottleneckDetector()
        self.index_advisor = index_advisor or IndexAdvisor()

    def analyze(
        self,
        plan: ExecutionPlan,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionPlan:
        check_cancelled(cancel, "analyze")

        plan.bottlenecks = self.bottleneck_detector.detect(plan)
        plan.index_suggestions = self.index_advisor.suggest(plan)
        self._mark_warning_nodes(plan)
        self._compute_metrics(plan)

        logger.debug(
            "Plan %s: %d bottlenecks, %d index suggestions",
            plan.id, len(plan.bottlenecks), len(plan.index_suggestions),
        )
        return plan

    @staticmethod
    def _mark_warning_nodes(plan: ExecutionPlan) -> None:
        for bottleneck in plan.bottlenecks:
            if bottleneck.severity >= Severity.HIGH and bottleneck.related_node is not None:
                bottleneck.related_node.set_warning(bottleneck.title)

    @staticmethod
    def _compute_metrics(plan: ExecutionPlan) -> None:
        nodes = list(plan.all_nodes)
        plan.metrics.total_operators = len(nodes)
        plan.metrics.parallel_operators = sum(1 for n in nodes if n.is_parallel)
        plan.metrics.repeated_operators = sum(1 for n in nodes if n.cost.executions > 1)
        # Rows touched by scans, as a stand-in for page reads
        plan.metrics.logical_reads = int(
            sum(n.cost.max_rows for n in nodes if n.node_type in SCAN_TYPES)
        )
