"""PostgreSQL ``EXPLAIN (FORMAT JSON)`` parser.

Accepts the array PostgreSQL prints (``[{"Plan": {...}, ...}]``) or a single
top-level object. Works for both ``EXPLAIN`` and ``EXPLAIN ANALYZE`` output;
actual-row fields are simply zero without ANALYZE.

Cost model: ``Total Cost`` is cumulative over the subtree, so a node's own
cost is its total minus the totals of its direct children.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Iterator, Optional

from ..cancellation import CancellationToken, check_cancelled
from ..errors import ParseFailure
from ..models import (
    ExecutionPlan,
    IndexReference,
    NodeType,
    OperationCost,
    PlanNode,
    QueryMetrics,
    TableReference,
)
from .base import PlanParser, percent_of, to_float

logger = logging.getLogger(__name__)

NODE_TYPE_MAP: dict[str, NodeType] = {
    "Seq Scan": NodeType.SEQ_SCAN,
    "Index Scan": NodeType.INDEX_SCAN,
    "Index Only Scan": NodeType.INDEX_SEEK,
    "Bitmap Heap Scan": NodeType.BITMAP_HEAP_SCAN,
    "Bitmap Index Scan": NodeType.BITMAP_INDEX_SCAN,
    "CTE Scan": NodeType.CTE_SCAN,
    "Nested Loop": NodeType.NESTED_LOOP_JOIN,
    "Hash Join": NodeType.HASH_JOIN,
    "Merge Join": NodeType.MERGE_JOIN,
    "Hash": NodeType.HASH,
    "Aggregate": NodeType.HASH_AGGREGATE,
    "GroupAggregate": NodeType.STREAM_AGGREGATE,
    "Sort": NodeType.SORT,
    "Incremental Sort": NodeType.SORT,
    "Limit": NodeType.LIMIT,
    "Result": NodeType.RESULT,
    "Append": NodeType.APPEND,
    "Materialize": NodeType.MATERIALIZE,
    "Unique": NodeType.UNIQUE,
    "SetOp": NodeType.SET_OP,
    "WindowAgg": NodeType.WINDOW_AGGREGATE,
    "Subquery Scan": NodeType.SUBQUERY_SCAN,
}

# Most specific first
PREDICATE_FIELDS = (
    "Filter",
    "Index Cond",
    "Recheck Cond",
    "Join Filter",
    "Hash Cond",
    "Merge Cond",
)

# Copied into node properties when present
_PROPERTY_FIELDS = (
    "Parent Relationship",
    "Join Type",
    "Strategy",
    "Scan Direction",
    "Startup Cost",
    "Actual Startup Time",
    "Actual Total Time",
    "Sort Method",
    "Sort Space Type",
    "Workers Planned",
    "Workers Launched",
    "Shared Hit Blocks",
    "Shared Read Blocks",
)

# Rows removed by a filter beyond this multiple of rows returned is a warning
FILTER_WASTE_RATIO = 10


def _is_plan_document(data: Any) -> bool:
    if isinstance(data, list):
        if not data:
            return False
        data = data[0]
    return isinstance(data, dict) and ("Plan" in data or "plan" in data)


class PostgresPlanParser(PlanParser):
    """Parser for PostgreSQL JSON EXPLAIN output."""

    engine_type = "PostgreSQL"

    def __init__(self, default_schema: str = "public"):
        self.default_schema = default_schema

    def can_parse(self, raw_plan: str) -> bool:
        if not raw_plan:
            return False
        text = raw_plan.strip()
        if not (text.startswith("[") or text.startswith("{")):
            return False
        try:
            return _is_plan_document(json.loads(text))
        except json.JSONDecodeError:
            return False

    def parse(
        self,
        raw_plan: str,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionPlan:
        check_cancelled(cancel, "parse")

        try:
            data = json.loads(raw_plan.strip())
        except json.JSONDecodeError as e:
            raise ParseFailure(f"Malformed EXPLAIN JSON: {e}") from e

        if not _is_plan_document(data):
            raise ParseFailure("EXPLAIN JSON has no Plan object")

        top = data[0] if isinstance(data, list) else data
        plan_obj = top.get("Plan") or top.get("plan")
        if not isinstance(plan_obj, dict) or not plan_obj.get("Node Type"):
            raise ParseFailure("EXPLAIN JSON Plan has no Node Type")

        ids = itertools.count()
        root = self._parse_node(plan_obj, depth=0, ids=ids)

        metrics = QueryMetrics(
            planning_time_ms=to_float(top.get("Planning Time")),
            elapsed_time_ms=to_float(top.get("Execution Time")),
            total_cost=root.cost.subtree_cost,
        )
        self._apply_own_cost_percentages(root, metrics.total_cost)

        nodes = list(root.descendants_and_self())
        metrics.total_operators = len(nodes)
        metrics.parallel_operators = sum(1 for n in nodes if n.is_parallel)
        workers = max((int(to_float(n.properties.get("Workers Planned"))) for n in nodes), default=0)
        metrics.degree_of_parallelism = 1 + workers

        logger.debug(
            "Parsed EXPLAIN JSON: %d nodes, total cost %.2f",
            metrics.total_operators, metrics.total_cost,
        )

        return ExecutionPlan(
            root_node=root,
            query_text=str(top.get("Query Text", "")),
            database_engine=self.engine_type,
            metrics=metrics,
            raw_plan=raw_plan,
        )

    def _parse_node(self, obj: dict[str, Any], depth: int, ids: Iterator[int]) -> PlanNode:
        node_type_name = obj.get("Node Type") or "Unknown"
        total = to_float(obj.get("Total Cost"))
        loops = int(to_float(obj.get("Actual Loops"), 1))

        node = PlanNode(
            id=next(ids),
            label=node_type_name,
            physical_operator=node_type_name,
            logical_operator=node_type_name,
            node_type=NODE_TYPE_MAP.get(node_type_name, NodeType.COMPUTE),
            cost=OperationCost(
                total_cost=total,
                subtree_cost=total,
                estimated_rows=to_float(obj.get("Plan Rows")),
                actual_rows=to_float(obj.get("Actual Rows")),
                executions=max(1, loops),
            ),
            depth=depth,
        )

        relation = obj.get("Relation Name")
        if relation:
            node.table = TableReference(
                table_name=relation,
                schema=obj.get("Schema") or self.default_schema,
                alias=obj.get("Alias", ""),
            )

        index_name = obj.get("Index Name")
        if index_name:
            node.index = IndexReference(
                index_name=index_name,
                table_name=relation or "",
            )

        for key in PREDICATE_FIELDS:
            if obj.get(key):
                node.predicate = str(obj[key])
                break

        output = obj.get("Output")
        if isinstance(output, list):
            node.output_columns = ", ".join(str(c) for c in output)

        for key in _PROPERTY_FIELDS:
            if key in obj:
                node.properties[key] = str(obj[key])
        if obj.get("Parallel Aware"):
            node.properties["Parallel Aware"] = "true"
        if isinstance(obj.get("Sort Key"), list):
            node.properties["Sort Key"] = ", ".join(obj["Sort Key"])
        if isinstance(obj.get("Group Key"), list):
            node.properties["Group Key"] = ", ".join(obj["Group Key"])

        self._read_warnings(obj, node)

        for child in obj.get("Plans") or []:
            if isinstance(child, dict):
                node.children.append(self._parse_node(child, depth + 1, ids))

        return node

    def _read_warnings(self, obj: dict[str, Any], node: PlanNode) -> None:
        removed = to_float(obj.get("Rows Removed by Filter"))
        actual = node.cost.actual_rows
        if removed > 0 and actual > 0 and removed > actual * FILTER_WASTE_RATIO:
            node.set_warning(f"Filter removed {removed:,.0f} rows, only {actual:,.0f} returned")

        if obj.get("Sort Space Type") == "Disk":
            node.set_warning("Sort spilled to disk")
        if to_float(obj.get("Temp Written Blocks")) > 0:
            node.set_warning("Spill to temporary storage detected")

    def _apply_own_cost_percentages(self, root: PlanNode, total_cost: float) -> None:
        for node in root.descendants_and_self():
            children_cost = sum(c.cost.subtree_cost for c in node.children)
            own_cost = max(0.0, node.cost.subtree_cost - children_cost)
            node.cost.cost_percentage = percent_of(own_cost, total_cost)
