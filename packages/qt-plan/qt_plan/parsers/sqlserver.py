"""SQL Server showplan XML parser.

Handles both estimated (``SET SHOWPLAN_XML ON``) and actual
(``SET STATISTICS XML ON``) plans. Actual row counts come from the
per-thread runtime counters when present.

Cost model: every RelOp reports its own CPU and IO estimate, so a node's
cost percentage is ``(EstimateCPU + EstimateIO) / StatementSubTreeCost``.
"""

from __future__ import annotations

import itertools
import logging
import xml.etree.ElementTree as ET
from typing import Iterator, Optional

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

SHOWPLAN_URI = "http://schemas.microsoft.com/sqlserver/2004/07/showplan"
SHOWPLAN_NS = {"sp": SHOWPLAN_URI}

# Substring sniffed by can_parse (scheme-less so http/https both match)
_SHOWPLAN_MARKER = "schemas.microsoft.com/sqlserver/2004/07/showplan"

_RELOP = f"{{{SHOWPLAN_URI}}}RelOp"

PHYSICAL_OP_MAP: dict[str, NodeType] = {
    "Table Scan": NodeType.TABLE_SCAN,
    "Clustered Index Scan": NodeType.CLUSTERED_INDEX_SCAN,
    "Index Scan": NodeType.INDEX_SCAN,
    "Index Seek": NodeType.INDEX_SEEK,
    "Clustered Index Seek": NodeType.CLUSTERED_INDEX_SEEK,
    "Key Lookup": NodeType.KEY_LOOKUP,
    "RID Lookup": NodeType.KEY_LOOKUP,
    "Nested Loops": NodeType.NESTED_LOOP_JOIN,
    "Hash Match": NodeType.HASH_JOIN,
    "Merge Join": NodeType.MERGE_JOIN,
    "Stream Aggregate": NodeType.STREAM_AGGREGATE,
    "Hash Aggregate": NodeType.HASH_AGGREGATE,
    "Sort": NodeType.SORT,
    "Filter": NodeType.FILTER,
    "Top": NodeType.TOP,
    "Distinct Sort": NodeType.DISTINCT,
    "Compute Scalar": NodeType.COMPUTE,
    "Insert": NodeType.INSERT,
    "Update": NodeType.UPDATE,
    "Delete": NodeType.DELETE,
    "Clustered Index Insert": NodeType.INSERT,
    "Clustered Index Update": NodeType.UPDATE,
    "Clustered Index Delete": NodeType.DELETE,
}

# Predicate sources, most specific first
_PREDICATE_SOURCES = (
    ("Predicate", "SeekPredicates", "SeekPredicateNew"),
    ("Residual",),
    ("ProbeResidual", "HashKeysProbe"),
)

_SCAN_TYPE_OPS = {"EQ": "=", "GT": ">", "GE": ">=", "LT": "<", "LE": "<=", "NE": "<>"}

_WARNING_MESSAGES = {
    "NoJoinPredicate": "No join predicate",
    "SpillToTempDb": "Spill to TempDb detected",
}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _strip_brackets(name: Optional[str]) -> str:
    return (name or "").replace("[", "").replace("]", "")


def _own_elements(relop: ET.Element) -> Iterator[ET.Element]:
    """Descendants of ``relop`` in document order, not entering nested RelOps."""
    stack = list(reversed(list(relop)))
    while stack:
        el = stack.pop()
        if el.tag == _RELOP:
            continue
        yield el
        stack.extend(reversed(list(el)))


def _child_relops(relop: ET.Element) -> list[ET.Element]:
    """RelOps whose nearest RelOp ancestor is ``relop``."""
    found = []
    stack = list(reversed(list(relop)))
    while stack:
        el = stack.pop()
        if el.tag == _RELOP:
            found.append(el)
            continue
        stack.extend(reversed(list(el)))
    return found


def _first_own(relop: ET.Element, *names: str) -> Optional[ET.Element]:
    for el in _own_elements(relop):
        if _local(el.tag) in names:
            return el
    return None


def _estimated_executions(relop: ET.Element) -> float:
    """EstimateExecutions when present, else 1 + rebinds + rewinds."""
    explicit = to_float(relop.get("EstimateExecutions"))
    if explicit > 0:
        return explicit
    rebinds = to_float(relop.get("EstimateRebinds"))
    rewinds = to_float(relop.get("EstimateRewinds"))
    return 1.0 + max(0.0, rebinds) + max(0.0, rewinds)


def _column_name(colref: ET.Element) -> str:
    column = _strip_brackets(colref.get("Column"))
    table = _strip_brackets(colref.get("Table"))
    return f"{table}.{column}" if table else column


class SqlServerPlanParser(PlanParser):
    """Parser for SQL Server showplan XML."""

    engine_type = "SQL Server"

    def __init__(self, default_schema: str = "dbo"):
        self.default_schema = default_schema

    def can_parse(self, raw_plan: str) -> bool:
        if not raw_plan:
            return False
        text = raw_plan.strip()
        return text.startswith("<") and _SHOWPLAN_MARKER in text

    def parse(
        self,
        raw_plan: str,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionPlan:
        check_cancelled(cancel, "parse")

        try:
            doc = ET.fromstring(raw_plan.strip())
        except ET.ParseError as e:
            raise ParseFailure(f"Malformed showplan XML: {e}") from e

        stmt = self._find_statement(doc)
        scope = stmt if stmt is not None else doc
        root_relop = scope.find(".//sp:RelOp", SHOWPLAN_NS)
        if root_relop is None:
            raise ParseFailure("Showplan XML contains no RelOp operator")

        metrics = QueryMetrics()
        query_text = ""
        if stmt is not None:
            query_text = stmt.get("StatementText", "")
            metrics.total_cost = to_float(stmt.get("StatementSubTreeCost"))
            metrics.rows_affected = int(to_float(stmt.get("StatementEstRows")))

        ids = itertools.count()
        root = self._parse_relop(root_relop, depth=0, ids=ids)

        if metrics.total_cost <= 0:
            metrics.total_cost = root.cost.subtree_cost

        for node in root.descendants_and_self():
            node.cost.cost_percentage = percent_of(node.cost.total_cost, metrics.total_cost)

        self._read_statement_metrics(scope, metrics)
        self._flag_missing_indexes(scope, root)

        nodes = list(root.descendants_and_self())
        metrics.total_operators = len(nodes)
        metrics.parallel_operators = sum(1 for n in nodes if n.is_parallel)

        logger.debug(
            "Parsed showplan: %d operators, total cost %.4f",
            metrics.total_operators, metrics.total_cost,
        )

        return ExecutionPlan(
            root_node=root,
            query_text=query_text,
            database_engine=self.engine_type,
            metrics=metrics,
            raw_plan=raw_plan,
        )

    # -------------------------------------------------------------------------
    # Statement level
    # -------------------------------------------------------------------------

    def _find_statement(self, doc: ET.Element) -> Optional[ET.Element]:
        """First StmtSimple that carries a plan, else the first StmtSimple."""
        statements = doc.findall(".//sp:StmtSimple", SHOWPLAN_NS)
        for stmt in statements:
            if stmt.find(".//sp:RelOp", SHOWPLAN_NS) is not None:
                return stmt
        return statements[0] if statements else None

    def _read_statement_metrics(self, scope: ET.Element, metrics: QueryMetrics) -> None:
        query_plan = scope.find(".//sp:QueryPlan", SHOWPLAN_NS)
        if query_plan is None:
            return

        dop = int(to_float(query_plan.get("DegreeOfParallelism"), 1))
        metrics.degree_of_parallelism = max(1, dop)

        grant = query_plan.find("sp:MemoryGrantInfo", SHOWPLAN_NS)
        if grant is not None:
            # Reported in KB
            metrics.memory_grant_mb = to_float(grant.get("GrantedMemory")) / 1024.0

        stats = query_plan.find("sp:QueryTimeStats", SHOWPLAN_NS)
        if stats is not None:
            metrics.elapsed_time_ms = to_float(stats.get("ElapsedTime"))
            metrics.cpu_time_ms = to_float(stats.get("CpuTime"))

    def _flag_missing_indexes(self, scope: ET.Element, root: PlanNode) -> None:
        group = scope.find(".//sp:MissingIndexes/sp:MissingIndexGroup", SHOWPLAN_NS)
        if group is None:
            return
        root.set_warning("Missing index detected")
        impact = group.get("Impact")
        if impact:
            root.properties["MissingIndexImpact"] = impact

    # -------------------------------------------------------------------------
    # Operators
    # -------------------------------------------------------------------------

    def _parse_relop(self, relop: ET.Element, depth: int, ids: Iterator[int]) -> PlanNode:
        physical_op = relop.get("PhysicalOp") or "Unknown"
        logical_op = relop.get("LogicalOp") or "Unknown"

        node = PlanNode(
            id=next(ids),
            label=physical_op,
            physical_operator=physical_op,
            logical_operator=logical_op,
            node_type=PHYSICAL_OP_MAP.get(physical_op, NodeType.COMPUTE),
            cost=self._read_cost(relop),
            depth=depth,
        )

        for attr in ("NodeId", "Parallel", "EstimatedExecutionMode", "AvgRowSize",
                     "EstimateRebinds", "EstimateRewinds"):
            value = relop.get(attr)
            if value is not None:
                node.properties[attr] = value

        self._read_runtime_properties(relop, node)
        self._read_object(relop, node)
        node.predicate = self._read_predicate(relop)
        node.output_columns = self._read_output_list(relop)
        self._read_warnings(relop, node)

        for child in _child_relops(relop):
            node.children.append(self._parse_relop(child, depth + 1, ids))

        return node

    def _read_cost(self, relop: ET.Element) -> OperationCost:
        cpu = to_float(relop.get("EstimateCPU"))
        io = to_float(relop.get("EstimateIO"))

        actual_rows = to_float(relop.get("ActualRows"))
        actual_execs = 0
        runtime = relop.find("sp:RunTimeInformation", SHOWPLAN_NS)
        if runtime is not None:
            counters = runtime.findall("sp:RunTimeCountersPerThread", SHOWPLAN_NS)
            if counters:
                actual_rows = sum(to_float(c.get("ActualRows")) for c in counters)
                actual_execs = int(sum(to_float(c.get("ActualExecutions")) for c in counters))

        estimated_execs = _estimated_executions(relop)
        executions = actual_execs or int(estimated_execs)

        # EstimateRows is per execution; actual rows are summed over all of them
        return OperationCost(
            cpu_cost=cpu,
            io_cost=io,
            total_cost=cpu + io,
            subtree_cost=to_float(relop.get("EstimatedTotalSubtreeCost")),
            estimated_rows=to_float(relop.get("EstimateRows")) * estimated_execs,
            actual_rows=actual_rows,
            executions=max(1, executions),
        )

    def _read_runtime_properties(self, relop: ET.Element, node: PlanNode) -> None:
        runtime = relop.find("sp:RunTimeInformation", SHOWPLAN_NS)
        if runtime is None:
            return
        counters = runtime.findall("sp:RunTimeCountersPerThread", SHOWPLAN_NS)
        elapsed = [to_float(c.get("ActualElapsedms")) for c in counters if c.get("ActualElapsedms")]
        if elapsed:
            node.properties["ActualElapsedms"] = f"{max(elapsed):g}"
        reads = [to_float(c.get("ActualLogicalReads")) for c in counters if c.get("ActualLogicalReads")]
        if reads:
            node.properties["ActualLogicalReads"] = f"{sum(reads):g}"

    def _read_object(self, relop: ET.Element, node: PlanNode) -> None:
        obj = _first_own(relop, "Object")
        if obj is None:
            return

        table_name = _strip_brackets(obj.get("Table"))
        if table_name:
            node.table = TableReference(
                table_name=table_name,
                schema=_strip_brackets(obj.get("Schema")) or self.default_schema,
                alias=_strip_brackets(obj.get("Alias")),
            )

        index_name = _strip_brackets(obj.get("Index"))
        if index_name:
            index_kind = obj.get("IndexKind", "")
            node.index = IndexReference(
                index_name=index_name,
                table_name=table_name,
                columns=self._seek_columns(relop),
                is_clustered=index_kind == "Clustered" or "Clustered" in node.physical_operator,
            )

    def _seek_columns(self, relop: ET.Element) -> list[str]:
        """Bare column names used as seek keys, in key order."""
        seek = _first_own(relop, "SeekPredicates")
        if seek is None:
            return []
        columns: list[str] = []
        for range_columns in seek.iter(f"{{{SHOWPLAN_URI}}}RangeColumns"):
            for colref in range_columns.findall("sp:ColumnReference", SHOWPLAN_NS):
                name = _strip_brackets(colref.get("Column"))
                if name and name not in columns:
                    columns.append(name)
        return columns

    def _read_predicate(self, relop: ET.Element) -> str:
        for names in _PREDICATE_SOURCES:
            el = _first_own(relop, *names)
            if el is None:
                continue
            if _local(el.tag) in ("SeekPredicates", "SeekPredicateNew"):
                text = self._seek_predicate_text(el)
            else:
                text = self._scalar_string(el)
            if text:
                return text

        # Fall back to any scalar expression the operator carries
        for el in _own_elements(relop):
            if _local(el.tag) == "ScalarOperator" and el.get("ScalarString"):
                return el.get("ScalarString", "")
        return ""

    def _scalar_string(self, el: ET.Element) -> str:
        scalar = el.find(".//sp:ScalarOperator", SHOWPLAN_NS)
        if scalar is None:
            return ""
        return scalar.get("ScalarString", "")

    def _seek_predicate_text(self, seek: ET.Element) -> str:
        """Render seek keys as ``Table.Column = expr`` terms joined by AND."""
        terms = []
        for keys in seek.iter(f"{{{SHOWPLAN_URI}}}SeekKeys"):
            for bound in keys:
                op = _SCAN_TYPE_OPS.get(bound.get("ScanType", "EQ"), "=")
                columns = bound.findall("sp:RangeColumns/sp:ColumnReference", SHOWPLAN_NS)
                exprs = bound.findall("sp:RangeExpressions/sp:ScalarOperator", SHOWPLAN_NS)
                for colref, expr in zip(columns, exprs):
                    terms.append(f"{_column_name(colref)} {op} {expr.get('ScalarString', '?')}")
        if terms:
            return " AND ".join(terms)
        return self._scalar_string(seek)

    def _read_output_list(self, relop: ET.Element) -> str:
        output = relop.find("sp:OutputList", SHOWPLAN_NS)
        if output is None:
            return ""
        return ", ".join(
            _column_name(c) for c in output.findall("sp:ColumnReference", SHOWPLAN_NS)
        )

    def _read_warnings(self, relop: ET.Element, node: PlanNode) -> None:
        messages = []
        warnings = relop.find("sp:Warnings", SHOWPLAN_NS)
        if warnings is not None:
            if warnings.get("NoJoinPredicate") in ("1", "true"):
                messages.append(_WARNING_MESSAGES["NoJoinPredicate"])
            for child in warnings:
                name = _local(child.tag)
                msg = _WARNING_MESSAGES.get(name, f"Plan warning: {name}")
                if msg not in messages:
                    messages.append(msg)
            if not messages:
                messages.append("Plan warning")

        if _first_own(relop, "MissingIndexGroup") is not None:
            messages.append("Missing index detected")

        if messages:
            node.set_warning("; ".join(messages))
