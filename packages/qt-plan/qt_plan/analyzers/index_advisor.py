"""Index advisor.

Two rules produce candidate indexes:
- Scans:   a full scan on a known table gets an index keyed on the columns
           its predicate filters on (or its first output columns)
- Lookups: a key lookup gets the columns it fetches added as INCLUDE
           columns on the index the matching seek used

Candidates are then deduplicated per (table, key columns), keeping the one
with the highest estimated improvement.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterator, Optional, Sequence

from ..models import (
    LARGE_SCAN_TYPES,
    SEEK_TYPES,
    ExecutionPlan,
    IndexSuggestion,
    NodeType,
    PlanNode,
    Severity,
)

MIN_SCAN_ROWS = 100
MAX_INCLUDE_COLUMNS = 5
FALLBACK_KEY_COLUMNS = 2
LOOKUP_IMPROVEMENT = 40.0

SQL_KEYWORDS = frozenset({
    "LIKE", "IN", "NOT", "IS", "BETWEEN", "EXISTS", "ANY", "ALL",
    "ASC", "DESC", "SELECT", "FROM", "WHERE", "JOIN", "ON",
})

_CONNECTIVES = re.compile(r"\b(?:AND|OR)\b", re.IGNORECASE)
_OPERAND_SPLIT = re.compile(r"[=<>!,\s]+")
_FUNCTION_CALL = re.compile(r"\b[A-Za-z_][\w$#]*\s*\(")
_PG_CAST = re.compile(r"::[A-Za-z_]\w*(?:\s+varying)?(?:\[\])?")
_IDENTIFIER = re.compile(r"^[A-Za-z_][\w$#]*$")
_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


# =============================================================================
# Column extraction
# =============================================================================

def is_literal(value: str) -> bool:
    return (
        bool(_NUMBER.match(value))
        or value.startswith("'")
        or value.startswith("N'")
        or value.upper() == "NULL"
    )


def is_keyword(value: str) -> bool:
    return value.upper() in SQL_KEYWORDS


def _dedupe(columns: Sequence[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping first spelling and order."""
    seen: set[str] = set()
    unique = []
    for col in columns:
        if col.lower() not in seen:
            seen.add(col.lower())
            unique.append(col)
    return unique


def _column_from_operand(operand: str) -> Optional[str]:
    clean = operand.strip().strip("[]()").strip()
    if not clean or is_literal(clean):
        return None
    column = clean.split(".")[-1].strip("[]")
    if not _IDENTIFIER.match(column) or is_literal(column) or is_keyword(column):
        return None
    return column


def extract_filter_columns(predicate: str) -> list[str]:
    """Column names a predicate filters on, one per boolean term.

    Function names are never columns; a qualified operand wins over a bare one.

    >>> extract_filter_columns("[db].[dbo].[Orders].[Status] = N'open' AND [Orders].[Total] > (100)")
    ['Status', 'Total']
    >>> extract_filter_columns("isnull([Shop].[dbo].[Orders].[Status],N'')=N'open'")
    ['Status']
    """
    if not predicate or not predicate.strip():
        return []

    columns = []
    for term in _CONNECTIVES.split(_PG_CAST.sub("", predicate)):
        term = _FUNCTION_CALL.sub("(", term)
        term = term.replace("(", " ").replace(")", " ")
        operands = [op for op in _OPERAND_SPLIT.split(term) if op]
        qualified = [op for op in operands if "." in op]
        for operand in qualified + operands:
            column = _column_from_operand(operand)
            if column:
                columns.append(column)
                break
    return _dedupe(columns)


def extract_output_columns(output_columns: str, max_columns: int = 10) -> list[str]:
    """Bare column names from a comma-delimited output list."""
    if not output_columns or not output_columns.strip():
        return []

    columns = []
    for raw in output_columns.split(","):
        name = raw.strip().strip("[]")
        if "." in name:
            name = name.split(".")[-1].strip("[]")
        if name and not is_literal(name) and not is_keyword(name):
            columns.append(name)
    return _dedupe(columns)[:max_columns]


def estimate_improvement(row_count: float, key_column_count: int) -> float:
    """Expected gain (percent) from turning a scan into a seek."""
    if row_count <= 100:
        return 20.0
    if row_count <= 1_000:
        return 50.0 + key_column_count * 5
    if row_count <= 10_000:
        return 80.0 + key_column_count * 2
    return 95.0 + min(key_column_count, 4)


def impact_for(improvement: float) -> Severity:
    if improvement >= 90:
        return Severity.CRITICAL
    if improvement >= 50:
        return Severity.HIGH
    if improvement >= 20:
        return Severity.MEDIUM
    return Severity.LOW


# =============================================================================
# Rules
# =============================================================================

class IndexRule(ABC):
    """Produces index candidates for one node."""

    rule_id: str = ""
    name: str = ""

    @abstractmethod
    def suggest(self, node: PlanNode, plan: ExecutionPlan) -> Iterator[IndexSuggestion]:
        pass


class ScanIndexRule(IndexRule):
    rule_id = "PLAN-IX-001"
    name = "Index for scanned table"

    def suggest(self, node: PlanNode, plan: ExecutionPlan) -> Iterator[IndexSuggestion]:
        if node.node_type not in LARGE_SCAN_TYPES or node.table is None:
            return
        rows = node.cost.max_rows
        if rows < MIN_SCAN_ROWS:
            return

        key_columns = extract_filter_columns(node.predicate)
        if not key_columns:
            key_columns = extract_output_columns(node.output_columns, FALLBACK_KEY_COLUMNS)
        if not key_columns:
            return

        keys_lower = {k.lower() for k in key_columns}
        include_columns = [
            c for c in extract_output_columns(node.output_columns)
            if c.lower() not in keys_lower
        ]
        improvement = estimate_improvement(rows, len(key_columns))
        table = node.table.table_name

        yield IndexSuggestion(
            table_name=table,
            schema=node.table.schema,
            key_columns=key_columns,
            include_columns=include_columns[:MAX_INCLUDE_COLUMNS],
            reason=(
                f"Table Scan on {table} reading {rows:,.0f} rows. "
                f"An index on ({', '.join(key_columns)}) would allow an Index Seek."
            ),
            estimated_improvement=improvement,
            impact=impact_for(improvement),
        )


class LookupIncludeRule(IndexRule):
    rule_id = "PLAN-IX-002"
    name = "Covering index for key lookup"

    def suggest(self, node: PlanNode, plan: ExecutionPlan) -> Iterator[IndexSuggestion]:
        if node.node_type != NodeType.KEY_LOOKUP or node.table is None:
            return
        table = node.table.table_name

        seek = self._find_seek(plan, table)
        existing = list(seek.index.columns) if seek is not None and seek.index else []
        existing_lower = {c.lower() for c in existing}
        missing = [
            c for c in extract_output_columns(node.output_columns)
            if c.lower() not in existing_lower
        ]
        if not missing:
            return

        index_name = seek.index.index_name if seek is not None and seek.index else ""
        index_name = index_name or "the existing index"

        yield IndexSuggestion(
            table_name=table,
            schema=node.table.schema,
            key_columns=existing or ["Id"],
            include_columns=missing[:MAX_INCLUDE_COLUMNS],
            reason=(
                f"Key Lookup on {table} for {len(missing)} columns "
                f"not covered by {index_name}. Adding INCLUDE columns eliminates the lookup."
            ),
            estimated_improvement=LOOKUP_IMPROVEMENT,
            impact=Severity.MEDIUM,
        )

    @staticmethod
    def _find_seek(plan: ExecutionPlan, table: str) -> Optional[PlanNode]:
        for node in plan.all_nodes:
            if node.node_type in SEEK_TYPES and node.table and node.table.table_name == table:
                return node
        return None


def get_index_rules() -> list[IndexRule]:
    return [ScanIndexRule(), LookupIncludeRule()]


# =============================================================================
# Advisor
# =============================================================================

class IndexAdvisor:
    """Collects index candidates from every rule and deduplicates them."""

    def __init__(self, rules: Optional[Sequence[IndexRule]] = None):
        self.rules = list(rules) if rules is not None else get_index_rules()

    def suggest(self, plan: ExecutionPlan) -> list[IndexSuggestion]:
        candidates: list[IndexSuggestion] = []
        for node in plan.all_nodes:
            for rule in self.rules:
                candidates.extend(rule.suggest(node, plan))
        return self.deduplicate(candidates)

    @staticmethod
    def deduplicate(suggestions: Sequence[IndexSuggestion]) -> list[IndexSuggestion]:
        """Best suggestion per (table, key column set), highest improvement first."""
        seen: set[tuple[str, frozenset[str]]] = set()
        unique = []
        for suggestion in sorted(suggestions, key=lambda s: s.estimated_improvement, reverse=True):
            key = (
                suggestion.table_name.lower(),
                frozenset(c.lower() for c in suggestion.key_columns),
            )
            if key not in seen:
                seen.add(key)
                unique.append(suggestion)
        return unique
