"""Plan Comparator - before/after diff of two analyzed plans.

Compares cost, row volume, operator mix and bottlenecks, then reduces the
findings to a single verdict.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models import LARGE_SCAN_TYPES, SEEK_TYPES, ExecutionPlan, NodeType, Severity

logger = logging.getLogger(__name__)

SIGNIFICANT_REDUCTION_PCT = 50.0
REDUCTION_PCT = 10.0


class ComparisonVerdict(str, Enum):
    """Overall outcome of a plan comparison."""
    SIGNIFICANT_IMPROVEMENT = "significant_improvement"
    IMPROVED = "improved"
    SLIGHTLY_IMPROVED = "slightly_improved"
    NO_CHANGE = "no_change"
    REGRESSED = "regressed"


@dataclass
class PlanComparisonResult:
    """Result of comparing two plans."""
    before: ExecutionPlan
    after: ExecutionPlan
    cost_reduction: float = 0.0
    row_reduction: float = 0.0
    operator_count_change: int = 0
    bottleneck_reduction: int = 0
    improvements: list[str] = field(default_factory=list)
    regressions: list[str] = field(default_factory=list)
    verdict: ComparisonVerdict = ComparisonVerdict.NO_CHANGE

    def to_dict(self) -> dict[str, Any]:
        return {
            "before_plan_id": self.before.id,
            "after_plan_id": self.after.id,
            "cost_reduction": round(self.cost_reduction, 2),
            "row_reduction": round(self.row_reduction, 2),
            "operator_count_change": self.operator_count_change,
            "bottleneck_reduction": self.bottleneck_reduction,
            "improvements": list(self.improvements),
            "regressions": list(self.regressions),
            "verdict": self.verdict.value,
        }


def _percent_reduction(before: float, after: float) -> float:
    if before <= 0:
        return 0.0
    return (before - after) / before * 100.0


def _observed_rows(plan: ExecutionPlan) -> float:
    return sum(n.cost.observed_rows for n in plan.all_nodes)


class PlanComparator:
    """Compares two analyzed plans. Neither plan is modified."""

    def compare(self, before: ExecutionPlan, after: ExecutionPlan) -> PlanComparisonResult:
        result = PlanComparisonResult(
            before=before,
            after=after,
            cost_reduction=_percent_reduction(before.metrics.total_cost, after.metrics.total_cost),
            row_reduction=_percent_reduction(_observed_rows(before), _observed_rows(after)),
            operator_count_change=after.total_nodes - before.total_nodes,
            bottleneck_reduction=len(before.bottlenecks) - len(after.bottlenecks),
        )

        self._compare_operators(before, after, result)
        self._compare_costs(before, after, result)
        self._compare_bottlenecks(before, after, result)
        result.verdict = self._verdict(result)

        logger.debug(
            "Compared %s -> %s: %.1f%% cost reduction, verdict %s",
            before.id, after.id, result.cost_reduction, result.verdict.value,
        )
        return result

    @staticmethod
    def _compare_operators(before: ExecutionPlan, after: ExecutionPlan,
                           result: PlanComparisonResult) -> None:
        before_types = Counter(n.node_type for n in before.all_nodes)
        after_types = Counter(n.node_type for n in after.all_nodes)

        before_scans = sum(before_types[t] for t in LARGE_SCAN_TYPES)
        after_scans = sum(after_types[t] for t in LARGE_SCAN_TYPES)
        before_seeks = sum(before_types[t] for t in SEEK_TYPES)
        after_seeks = sum(after_types[t] for t in SEEK_TYPES)

        if after_scans < before_scans:
            result.improvements.append(f"Table scans reduced from {before_scans} to {after_scans}")
        if after_seeks > before_seeks:
            result.improvements.append(f"Index seeks increased from {before_seeks} to {after_seeks}")
        if after_scans > before_scans:
            result.regressions.append(f"Table scans increased from {before_scans} to {after_scans}")

        before_lookups = before_types[NodeType.KEY_LOOKUP]
        after_lookups = after_types[NodeType.KEY_LOOKUP]
        if after_lookups < before_lookups:
            result.improvements.append(
                f"Key lookups eliminated ({before_lookups} -> {after_lookups})"
            )

    @staticmethod
    def _compare_costs(before: ExecutionPlan, after: ExecutionPlan,
                       result: PlanComparisonResult) -> None:
        reduction = result.cost_reduction
        if reduction > SIGNIFICANT_REDUCTION_PCT:
            result.improvements.append(f"Total cost reduced by {reduction:.1f}% (major)")
        elif reduction > REDUCTION_PCT:
            result.improvements.append(f"Total cost reduced by {reduction:.1f}%")
        elif reduction < -REDUCTION_PCT:
            result.regressions.append(f"Total cost increased by {abs(reduction):.1f}%")

        before_ms = before.metrics.elapsed_time_ms
        after_ms = after.metrics.elapsed_time_ms
        if before_ms > 0 and after_ms > 0 and after_ms < before_ms:
            result.improvements.append(f"Execution time {before_ms / after_ms:.1f}x faster")

    @staticmethod
    def _compare_bottlenecks(before: ExecutionPlan, after: ExecutionPlan,
                             result: PlanComparisonResult) -> None:
        after_severe_titles = {b.title for b in after.bottlenecks if b.severity >= Severity.HIGH}
        resolved = sum(
            1 for b in before.bottlenecks
            if b.severity >= Severity.HIGH and b.title not in after_severe_titles
        )
        if resolved:
            result.improvements.append(f"{resolved} critical bottleneck(s) resolved")

        before_titles = {b.title for b in before.bottlenecks}
        introduced = sum(
            1 for b in after.bottlenecks
            if b.severity >= Severity.HIGH and b.title not in before_titles
        )
        if introduced:
            result.regressions.append(f"{introduced} new bottleneck(s) introduced")

    @staticmethod
    def _verdict(result: PlanComparisonResult) -> ComparisonVerdict:
        if result.cost_reduction >= SIGNIFICANT_REDUCTION_PCT and not result.regressions:
            return ComparisonVerdict.SIGNIFICANT_IMPROVEMENT
        if result.cost_reduction >= REDUCTION_PCT:
            return ComparisonVerdict.IMPROVED
        if result.cost_reduction <= -REDUCTION_PCT:
            return ComparisonVerdict.REGRESSED
        if len(result.improvements) > len(result.regressions):
            return ComparisonVerdict.SLIGHTLY_IMPROVED
        return ComparisonVerdict.NO_CHANGE
