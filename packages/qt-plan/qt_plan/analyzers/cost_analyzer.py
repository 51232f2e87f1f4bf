"""Read-only cost queries over a canonical plan."""

from __future__ import annotations

from typing import Optional

from ..config import get_settings
from ..models import SCAN_TYPES, ExecutionPlan, PlanNode

# CPU (or IO) must exceed the other by this factor to count as "heavy"
DOMINANCE_FACTOR = 2.0


class CostAnalyzer:
    """Cost lookups. Never mutates the plan."""

    def find_expensive_operations(
        self,
        plan: ExecutionPlan,
        threshold_percent: Optional[float] = None,
    ) -> list[PlanNode]:
        """Nodes at or above ``threshold_percent`` of plan cost, most expensive first."""
        if threshold_percent is None:
            threshold_percent = get_settings().expensive_threshold_pct
        matches = [n for n in plan.all_nodes if n.cost.cost_percentage >= threshold_percent]
        return sorted(matches, key=lambda n: n.cost.cost_percentage, reverse=True)

    def find_most_expensive_node(self, plan: ExecutionPlan) -> PlanNode:
        # max() keeps the first of equal values, i.e. traversal order
        return max(plan.all_nodes, key=lambda n: n.cost.cost_percentage)

    def find_high_cpu_operations(self, plan: ExecutionPlan) -> list[PlanNode]:
        matches = [
            n for n in plan.all_nodes
            if n.cost.cpu_cost > 0 and n.cost.cpu_cost > n.cost.io_cost * DOMINANCE_FACTOR
        ]
        return sorted(matches, key=lambda n: n.cost.cpu_cost, reverse=True)

    def find_high_io_operations(self, plan: ExecutionPlan) -> list[PlanNode]:
        matches = [
            n for n in plan.all_nodes
            if n.cost.io_cost > 0 and n.cost.io_cost > n.cost.cpu_cost * DOMINANCE_FACTOR
        ]
        return sorted(matches, key=lambda n: n.cost.io_cost, reverse=True)

    def compute_total_scan_cost_percentage(self, plan: ExecutionPlan) -> float:
        return sum(n.cost.cost_percentage for n in plan.all_nodes if n.node_type in SCAN_TYPES)
