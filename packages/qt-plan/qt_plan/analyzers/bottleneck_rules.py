"""Bottleneck rules.

Each rule looks at one node at a time and yields zero or more
``BottleneckInfo`` entries. Rules are independent of each other and of the
order they run in.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, Optional

from ..models import (
    HASH_JOIN_TYPES,
    LARGE_SCAN_TYPES,
    BottleneckInfo,
    NodeType,
    PlanNode,
    Severity,
)


class BottleneckRule(ABC):
    """Base class for bottleneck rules."""

    rule_id: str = ""
    name: str = ""
    description: str = ""

    @abstractmethod
    def check(self, node: PlanNode) -> Iterator[BottleneckInfo]:
        """Yield bottlenecks found on ``node``."""
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.rule_id}>"


def _table_name(node: PlanNode) -> str:
    return node.table.table_name if node.table else "unknown table"


def _by_breakpoints(value: float, breakpoints: tuple, default: Severity) -> Severity:
    """First severity whose threshold ``value`` reaches; thresholds descending."""
    for threshold, severity in breakpoints:
        if value >= threshold:
            return severity
    return default


# =============================================================================
# Rules
# =============================================================================

class LargeScanRule(BottleneckRule):
    rule_id = "PLAN-BN-001"
    name = "Large table scan"
    description = "Full scan of a table reading at least 1,000 rows"

    min_rows = 1_000
    breakpoints = (
        (100_000, Severity.CRITICAL),
        (10_000, Severity.HIGH),
        (5_000, Severity.MEDIUM),
    )

    def check(self, node: PlanNode) -> Iterator[BottleneckInfo]:
        if node.node_type not in LARGE_SCAN_TYPES:
            return
        rows = node.cost.max_rows
        if rows < self.min_rows:
            return

        table = _table_name(node)
        yield BottleneckInfo(
            title=f"Table Scan on {table}",
            description=(
                f"Full table scan reading {rows:,.0f} rows from {table}. "
                "This forces the database to read every row in the table."
            ),
            severity=_by_breakpoints(rows, self.breakpoints, Severity.LOW),
            recommendation=(
                f"Add an index on {table} covering the filter columns "
                "to allow an Index Seek instead of a Table Scan."
            ),
            impact_percentage=node.cost.cost_percentage,
            related_node=node,
        )


class KeyLookupRule(BottleneckRule):
    rule_id = "PLAN-BN-002"
    name = "Key lookup"
    description = "Per-row lookups back into the clustered index"

    breakpoints = (
        (10_000, Severity.HIGH),
        (1_000, Severity.MEDIUM),
    )

    def check(self, node: PlanNode) -> Iterator[BottleneckInfo]:
        if node.node_type != NodeType.KEY_LOOKUP:
            return
        rows = node.cost.max_rows

        yield BottleneckInfo(
            title=f"Key Lookup on {_table_name(node)}",
            description=(
                f"Key Lookup performing {rows:,.0f} lookups into the clustered index. "
                "Each lookup requires an additional I/O operation."
            ),
            severity=_by_breakpoints(rows, self.breakpoints, Severity.LOW),
            recommendation=(
                "Add the required columns as INCLUDE columns in the non-clustered index "
                "to create a covering index and eliminate the Key Lookup."
            ),
            impact_percentage=node.cost.cost_percentage,
            related_node=node,
        )


class RowEstimateSkewRule(BottleneckRule):
    rule_id = "PLAN-BN-003"
    name = "Inaccurate row estimate"
    description = "Actual rows differ from the estimate by more than 10x"

    skew = 10.0
    severe_skew = 100.0

    def check(self, node: PlanNode) -> Iterator[BottleneckInfo]:
        cost = node.cost
        if cost.estimated_rows <= 0 or cost.actual_rows <= 0:
            return
        ratio = cost.row_estimate_ratio
        if 1.0 / self.skew <= ratio <= self.skew:
            return

        severe = ratio > self.severe_skew or ratio < 1.0 / self.severe_skew
        yield BottleneckInfo(
            title=f"Inaccurate Row Estimate on {node.label}",
            description=(
                f"Estimated {cost.estimated_rows:,.0f} rows but actual was {cost.actual_rows:,.0f} "
                f"(ratio: {ratio:.1f}x). This can cause the optimizer to choose a suboptimal plan."
            ),
            severity=Severity.HIGH if severe else Severity.MEDIUM,
            recommendation=(
                "Update statistics on the involved tables using UPDATE STATISTICS or ANALYZE. "
                "Consider adding multi-column statistics if filtering on multiple columns."
            ),
            impact_percentage=cost.cost_percentage,
            related_node=node,
        )


class ExpensiveSortRule(BottleneckRule):
    rule_id = "PLAN-BN-004"
    name = "Expensive sort"
    description = "Sort over at least 10,000 rows"

    min_rows = 10_000
    breakpoints = (
        (1_000_000, Severity.CRITICAL),
        (100_000, Severity.HIGH),
    )

    def check(self, node: PlanNode) -> Iterator[BottleneckInfo]:
        if node.node_type != NodeType.SORT:
            return
        rows = node.cost.max_rows
        if rows < self.min_rows:
            return

        yield BottleneckInfo(
            title=f"Expensive Sort ({rows:,.0f} rows)",
            description=(
                f"Sort operation processing {rows:,.0f} rows. "
                "Large sorts consume significant memory and may spill to disk (TempDb)."
            ),
            severity=_by_breakpoints(rows, self.breakpoints, Severity.MEDIUM),
            recommendation=(
                "Consider adding an index that provides the data in the required sort order, "
                "or reduce the data set before sorting using more selective filters."
            ),
            impact_percentage=node.cost.cost_percentage,
            related_node=node,
        )


class ExpensiveHashJoinRule(BottleneckRule):
    rule_id = "PLAN-BN-005"
    name = "Expensive hash join"
    description = "Hash join or hash build taking at least 30% of plan cost"

    min_cost_pct = 30.0

    def check(self, node: PlanNode) -> Iterator[BottleneckInfo]:
        if node.node_type not in HASH_JOIN_TYPES:
            return
        pct = node.cost.cost_percentage
        if pct < self.min_cost_pct:
            return

        yield BottleneckInfo(
            title=f"Expensive Hash Join ({pct:.1f}% of total cost)",
            description=(
                f"Hash Join consuming {pct:.1f}% of total query cost. "
                "Hash Joins build an in-memory hash table which can be expensive for large data sets."
            ),
            severity=Severity.HIGH,
            recommendation=(
                "Ensure join columns are indexed. If the data sets are large, "
                "consider rewriting the query to reduce the number of rows before the join."
            ),
            impact_percentage=pct,
            related_node=node,
        )


class DominantOperationRule(BottleneckRule):
    rule_id = "PLAN-BN-006"
    name = "Dominant operation"
    description = "Single operator taking at least half of plan cost"

    min_cost_pct = 50.0
    high_cost_pct = 70.0

    # Reported by the more specific rules above
    covered_types = LARGE_SCAN_TYPES | HASH_JOIN_TYPES | {NodeType.KEY_LOOKUP, NodeType.SORT}

    def check(self, node: PlanNode) -> Iterator[BottleneckInfo]:
        pct = node.cost.cost_percentage
        if pct < self.min_cost_pct or node.node_type in self.covered_types:
            return

        yield BottleneckInfo(
            title=f"Dominant Operation: {node.label} ({pct:.1f}%)",
            description=(
                f"{node.label} consumes {pct:.1f}% of the total query cost, "
                "making it the dominant operation in this plan."
            ),
            severity=Severity.HIGH if pct >= self.high_cost_pct else Severity.MEDIUM,
            recommendation=(
                "Investigate whether this operation can be optimized through indexing, "
                "query rewriting, or reducing the input data set."
            ),
            impact_percentage=pct,
            related_node=node,
        )


# =============================================================================
# Registry
# =============================================================================

ALL_RULE_CLASSES = [
    LargeScanRule,
    KeyLookupRule,
    RowEstimateSkewRule,
    ExpensiveSortRule,
    ExpensiveHashJoinRule,
    DominantOperationRule,
]


def get_bottleneck_rules() -> list[BottleneckRule]:
    """Fresh instances of every registered rule."""
    return [cls() for cls in ALL_RULE_CLASSES]


def get_rule_by_id(rule_id: str) -> Optional[BottleneckRule]:
    for cls in ALL_RULE_CLASSES:
        if cls.rule_id == rule_id:
            return cls()
    return None
