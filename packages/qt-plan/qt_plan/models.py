"""Canonical execution plan model.

Both supported engines are parsed into the same tree of ``PlanNode`` objects.
Analysis passes attach ``BottleneckInfo`` and ``IndexSuggestion`` results to
the owning ``ExecutionPlan``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Iterator, Optional


# =============================================================================
# Operator taxonomy
# =============================================================================

class NodeType(str, Enum):
    """Shared operator kinds both engines map onto."""
    TABLE_SCAN = "table scan"
    CLUSTERED_INDEX_SCAN = "clustered index scan"
    INDEX_SCAN = "index scan"
    INDEX_SEEK = "index seek"
    CLUSTERED_INDEX_SEEK = "clustered index seek"
    KEY_LOOKUP = "key lookup"
    NESTED_LOOP_JOIN = "nested loops"
    HASH_JOIN = "hash join"
    MERGE_JOIN = "merge join"
    STREAM_AGGREGATE = "stream aggregate"
    HASH_AGGREGATE = "hash aggregate"
    SORT = "sort"
    FILTER = "filter"
    TOP = "top"
    DISTINCT = "distinct"
    COMPUTE = "compute"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    # PostgreSQL-only kinds
    SEQ_SCAN = "seq scan"
    BITMAP_HEAP_SCAN = "bitmap heap scan"
    BITMAP_INDEX_SCAN = "bitmap index scan"
    CTE_SCAN = "cte scan"
    HASH = "hash"
    RESULT = "result"
    APPEND = "append"
    LIMIT = "limit"
    MATERIALIZE = "materialize"
    UNIQUE = "unique"
    SET_OP = "setop"
    WINDOW_AGGREGATE = "window aggregate"
    SUBQUERY_SCAN = "subquery scan"


# Full reads of a table (flagged by the large-scan rule and the index advisor)
LARGE_SCAN_TYPES = frozenset({
    NodeType.TABLE_SCAN,
    NodeType.SEQ_SCAN,
    NodeType.CLUSTERED_INDEX_SCAN,
})

# All scan kinds counted in scan cost and logical read estimates
SCAN_TYPES = LARGE_SCAN_TYPES | {NodeType.INDEX_SCAN}

SEEK_TYPES = frozenset({NodeType.INDEX_SEEK, NodeType.CLUSTERED_INDEX_SEEK})

HASH_JOIN_TYPES = frozenset({NodeType.HASH_JOIN, NodeType.HASH})


class Severity(IntEnum):
    """Ordered severity: LOW < MEDIUM < HIGH < CRITICAL."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.lower()


# =============================================================================
# Value objects
# =============================================================================

@dataclass
class OperationCost:
    """Per-node cost record."""
    cpu_cost: float = 0.0
    io_cost: float = 0.0
    total_cost: float = 0.0
    subtree_cost: float = 0.0
    estimated_rows: float = 0.0
    actual_rows: float = 0.0
    executions: int = 1
    cost_percentage: float = 0.0

    @property
    def row_estimate_ratio(self) -> float:
        """Actual / estimated rows, 0 when there is no estimate."""
        if self.estimated_rows <= 0:
            return 0.0
        return self.actual_rows / self.estimated_rows

    @property
    def max_rows(self) -> float:
        """Larger of the estimated and actual row counts."""
        return max(self.estimated_rows, self.actual_rows)

    @property
    def observed_rows(self) -> float:
        """Actual rows when the plan was executed, otherwise the estimate."""
        return self.actual_rows if self.actual_rows > 0 else self.estimated_rows

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu_cost": self.cpu_cost,
            "io_cost": self.io_cost,
            "total_cost": self.total_cost,
            "subtree_cost": self.subtree_cost,
            "estimated_rows": self.estimated_rows,
            "actual_rows": self.actual_rows,
            "executions": self.executions,
            "cost_percentage": round(self.cost_percentage, 2),
        }


@dataclass
class TableReference:
    """A table read or written by an operator."""
    table_name: str = ""
    schema: str = "dbo"
    alias: str = ""
    estimated_row_count: int = 0

    @property
    def full_name(self) -> str:
        if not self.schema:
            return self.table_name
        return f"{self.schema}.{self.table_name}"

    def __str__(self) -> str:
        if self.alias:
            return f"{self.full_name} AS {self.alias}"
        return self.full_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema,
            "table_name": self.table_name,
            "alias": self.alias,
            "estimated_row_count": self.estimated_row_count,
        }


@dataclass
class IndexReference:
    """An index used by an operator."""
    index_name: str = ""
    table_name: str = ""
    columns: list[str] = field(default_factory=list)
    included_columns: list[str] = field(default_factory=list)
    is_clustered: bool = False
    is_unique: bool = False

    def __str__(self) -> str:
        return f"{self.index_name} ON {self.table_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "index_name": self.index_name,
            "table_name": self.table_name,
            "columns": list(self.columns),
            "included_columns": list(self.included_columns),
            "is_clustered": self.is_clustered,
            "is_unique": self.is_unique,
        }


# =============================================================================
# Plan tree
# =============================================================================

class NodeWalk:
    """Pre-order walk over a subtree.

    Each ``iter()`` starts a new walk from the root, so the same object can be
    iterated any number of times. Uses an explicit stack, so tree depth is not
    bounded by the interpreter's recursion limit.
    """

    def __init__(self, root: PlanNode):
        self._root = root

    def __iter__(self) -> Iterator[PlanNode]:
        stack = [self._root]
        while stack:
            node = stack.pop()
            yield node
            # Reversed so the first child is visited first
            stack.extend(reversed(node.children))


@dataclass
class PlanNode:
    """One operator in the plan tree. Owns its children."""
    id: int = 0
    label: str = ""
    physical_operator: str = ""
    logical_operator: str = ""
    node_type: NodeType = NodeType.COMPUTE
    cost: OperationCost = field(default_factory=OperationCost)
    table: Optional[TableReference] = None
    index: Optional[IndexReference] = None
    predicate: str = ""
    output_columns: str = ""
    depth: int = 0
    is_warning: bool = False
    warning_message: str = ""
    properties: dict[str, str] = field(default_factory=dict)
    children: list[PlanNode] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def is_parallel(self) -> bool:
        """Flagged parallel by the engine (showplan ``Parallel`` or PG ``Parallel Aware``)."""
        return (
            self.properties.get("Parallel") in ("1", "true")
            or self.properties.get("Parallel Aware") == "true"
        )

    def add_child(self, child: PlanNode) -> PlanNode:
        """Attach a child and fix up depths of its whole subtree."""
        self.children.append(child)
        offset = self.depth + 1 - child.depth
        if offset:
            for node in child.descendants_and_self():
                node.depth += offset
        return child

    def descendants_and_self(self) -> NodeWalk:
        """Restartable pre-order sequence of this node and all descendants."""
        return NodeWalk(self)

    def total_node_count(self) -> int:
        return sum(1 for _ in self.descendants_and_self())

    def output_column_list(self) -> list[str]:
        """Split the comma-delimited output columns."""
        return [c.strip() for c in self.output_columns.split(",") if c.strip()]

    def set_warning(self, message: str) -> None:
        self.is_warning = True
        if not self.warning_message:
            self.warning_message = message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "physical_operator": self.physical_operator,
            "logical_operator": self.logical_operator,
            "node_type": self.node_type.value,
            "cost": self.cost.to_dict(),
            "table": self.table.to_dict() if self.table else None,
            "index": self.index.to_dict() if self.index else None,
            "predicate": self.predicate,
            "output_columns": self.output_columns,
            "depth": self.depth,
            "is_warning": self.is_warning,
            "warning_message": self.warning_message,
            "properties": dict(self.properties),
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class QueryMetrics:
    """Statement-level runtime and cost figures."""
    elapsed_time_ms: float = 0.0
    cpu_time_ms: float = 0.0
    planning_time_ms: float = 0.0
    logical_reads: int = 0
    physical_reads: int = 0
    rows_affected: int = 0
    total_cost: float = 0.0
    total_operators: int = 0
    parallel_operators: int = 0
    repeated_operators: int = 0
    memory_grant_mb: float = 0.0
    degree_of_parallelism: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "elapsed_time_ms": self.elapsed_time_ms,
            "cpu_time_ms": self.cpu_time_ms,
            "planning_time_ms": self.planning_time_ms,
            "logical_reads": self.logical_reads,
            "physical_reads": self.physical_reads,
            "rows_affected": self.rows_affected,
            "total_cost": self.total_cost,
            "total_operators": self.total_operators,
            "parallel_operators": self.parallel_operators,
            "repeated_operators": self.repeated_operators,
            "memory_grant_mb": self.memory_grant_mb,
            "degree_of_parallelism": self.degree_of_parallelism,
        }


# =============================================================================
# Analysis results
# =============================================================================

@dataclass
class BottleneckInfo:
    """A ranked performance issue, optionally pointing at its node.

    ``related_node`` is a plain reference into the plan that produced it and
    takes no part in equality or repr.
    """
    title: str
    description: str
    severity: Severity
    recommendation: str
    impact_percentage: float = 0.0
    related_node: Optional[PlanNode] = field(default=None, repr=False, compare=False)

    @property
    def related_node_id(self) -> Optional[int]:
        return self.related_node.id if self.related_node is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "severity": self.severity.label,
            "recommendation": self.recommendation,
            "impact_percentage": round(self.impact_percentage, 2),
            "related_node_id": self.related_node_id,
        }


@dataclass
class IndexSuggestion:
    """A proposed nonclustered index."""
    table_name: str
    key_columns: list[str] = field(default_factory=list)
    include_columns: list[str] = field(default_factory=list)
    schema: str = "dbo"
    reason: str = ""
    estimated_improvement: float = 0.0
    impact: Severity = Severity.LOW

    @property
    def index_name(self) -> str:
        return f"IX_{self.table_name}_{'_'.join(self.key_columns)}"

    @property
    def create_index_statement(self) -> str:
        keys = ", ".join(self.key_columns)
        stmt = (
            f"CREATE NONCLUSTERED INDEX [{self.index_name}]\n"
            f"ON [{self.schema}.{self.table_name}] ({keys})"
        )
        if self.include_columns:
            includes = ", ".join(f"[{c}]" for c in self.include_columns)
            stmt += f"\nINCLUDE ({includes})"
        return stmt + ";"

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_name": self.table_name,
            "schema": self.schema,
            "index_name": self.index_name,
            "key_columns": list(self.key_columns),
            "include_columns": list(self.include_columns),
            "reason": self.reason,
            "estimated_improvement": self.estimated_improvement,
            "impact": self.impact.label,
            "create_index_statement": self.create_index_statement,
        }


# =============================================================================
# Execution plan
# =============================================================================

def _short_id() -> str:
    return uuid.uuid4().hex[:8]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ExecutionPlan:
    """A parsed plan plus the results attached by analysis."""
    root_node: PlanNode = field(default_factory=PlanNode)
    query_text: str = ""
    database_engine: str = ""
    metrics: QueryMetrics = field(default_factory=QueryMetrics)
    bottlenecks: list[BottleneckInfo] = field(default_factory=list)
    index_suggestions: list[IndexSuggestion] = field(default_factory=list)
    raw_plan: str = field(default="", repr=False)
    id: str = field(default_factory=_short_id)
    created_at: datetime = field(default_factory=_utc_now)

    @property
    def all_nodes(self) -> NodeWalk:
        """Every node, root first, in pre-order."""
        return self.root_node.descendants_and_self()

    @property
    def total_nodes(self) -> int:
        return self.root_node.total_node_count()

    @property
    def most_expensive_operation_cost(self) -> float:
        return max(node.cost.cost_percentage for node in self.all_nodes)

    def find_node(self, node_id: int) -> Optional[PlanNode]:
        for node in self.all_nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "query_text": self.query_text,
            "database_engine": self.database_engine,
            "created_at": self.created_at.isoformat(),
            "metrics": self.metrics.to_dict(),
            "root_node": self.root_node.to_dict(),
            "bottlenecks": [b.to_dict() for b in self.bottlenecks],
            "index_suggestions": [s.to_dict() for s in self.index_suggestions],
        }
