"""Plan normalizer: picks a parser and harmonizes its output.

After parsing, every plan goes through the same three passes:
1. Labels:       empty labels get the raw operator name; PostgreSQL kinds
                 are relabelled with the shared vocabulary ("Seq Scan" ->
                 "Table Scan", "Limit" -> "Top", ...)
2. Percentages:  recomputed from node cost / plan cost when the parser left
                 them all at zero
3. Ids:          renumbered 0..n-1 in pre-order
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..cancellation import CancellationToken, check_cancelled
from ..config import get_settings
from ..errors import UnsupportedFormat
from ..models import ExecutionPlan, NodeType
from .base import PlanParser, percent_of
from .postgres import PostgresPlanParser
from .sqlserver import SqlServerPlanParser

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = (
    "SQL Server XML (SET STATISTICS XML ON)",
    "PostgreSQL JSON (EXPLAIN (ANALYZE, FORMAT JSON))",
)

NORMALIZED_LABELS: dict[NodeType, str] = {
    NodeType.SEQ_SCAN: "Table Scan",
    NodeType.BITMAP_HEAP_SCAN: "Bitmap Heap Scan",
    NodeType.BITMAP_INDEX_SCAN: "Bitmap Index Scan",
    NodeType.CTE_SCAN: "CTE Scan",
    NodeType.HASH: "Hash",
    NodeType.RESULT: "Result",
    NodeType.APPEND: "Append",
    NodeType.LIMIT: "Top",
    NodeType.MATERIALIZE: "Materialize",
    NodeType.UNIQUE: "Distinct",
    NodeType.WINDOW_AGGREGATE: "Window Aggregate",
    NodeType.SUBQUERY_SCAN: "Subquery Scan",
}

# Percentages summing below this are treated as "never set"
_UNSET_PERCENT_SUM = 1.0


def default_parsers() -> list[PlanParser]:
    settings = get_settings()
    return [
        SqlServerPlanParser(default_schema=settings.default_schema_sqlserver),
        PostgresPlanParser(default_schema=settings.default_schema_postgres),
    ]


class PlanNormalizer:
    """Entry point for turning raw plan text into a canonical plan."""

    def __init__(self, parsers: Optional[Sequence[PlanParser]] = None):
        self.parsers = list(parsers) if parsers is not None else default_parsers()

    def select_parser(self, raw_plan: str) -> Optional[PlanParser]:
        """First parser whose sniff test accepts ``raw_plan``."""
        for parser in self.parsers:
            if parser.can_parse(raw_plan):
                return parser
        return None

    def normalize(
        self,
        raw_plan: str,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionPlan:
        """Parse and harmonize ``raw_plan``.

        Raises:
            UnsupportedFormat: No parser recognizes the text.
            ParseFailure: The selected parser could not parse it.
            CancellationRequested: ``cancel`` was already set.
        """
        check_cancelled(cancel, "normalize")

        parser = self.select_parser(raw_plan)
        if parser is None:
            raise UnsupportedFormat(
                "Unsupported plan format. Supported formats: "
                + ", ".join(SUPPORTED_FORMATS)
            )

        logger.debug("Using %s parser", parser.engine_type)
        plan = parser.parse(raw_plan, cancel)

        self.normalize_labels(plan)
        self.normalize_cost_percentages(plan)
        self.renumber_nodes(plan)
        return plan

    @staticmethod
    def normalize_labels(plan: ExecutionPlan) -> None:
        for node in plan.all_nodes:
            if not node.label:
                node.label = node.physical_operator
            label = NORMALIZED_LABELS.get(node.node_type)
            if label:
                node.label = label

    @staticmethod
    def normalize_cost_percentages(plan: ExecutionPlan) -> None:
        nodes = list(plan.all_nodes)

        total_cost = plan.metrics.total_cost
        if total_cost <= 0:
            total_cost = sum(n.cost.total_cost for n in nodes)
            plan.metrics.total_cost = total_cost
        if total_cost <= 0:
            return

        if sum(n.cost.cost_percentage for n in nodes) < _UNSET_PERCENT_SUM:
            for node in nodes:
                node.cost.cost_percentage = percent_of(node.cost.total_cost, total_cost)

    @staticmethod
    def renumber_nodes(plan: ExecutionPlan) -> None:
        for new_id, node in enumerate(plan.all_nodes):
            node.id = new_id
