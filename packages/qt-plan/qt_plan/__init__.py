"""QueryTorque Plan - execution plan analysis.

Pipeline:
1. Normalize:  SQL Server showplan XML / PostgreSQL EXPLAIN JSON → canonical plan tree
2. Analyze:    cost queries, ranked bottlenecks, index suggestions
3. Compare:    before/after verdict for two plans of the same query
4. Layout:     layered graph coordinates for renderers

Usage:
    from qt_plan import PlanPipeline
    result = PlanPipeline().run(open("plan.sqlplan").read())
    for b in result.plan.bottlenecks:
        print(b.severity.name, b.title)

    # Or step by step:
    from qt_plan import PlanNormalizer, QueryAnalyzer
    plan = PlanNormalizer().normalize(raw_plan)
    QueryAnalyzer().analyze(plan)
"""

from .analyzers import (
    BottleneckDetector,
    ComparisonVerdict,
    CostAnalyzer,
    IndexAdvisor,
    PlanComparator,
    PlanComparisonResult,
    QueryAnalyzer,
)
from .cancellation import CancellationToken
from .errors import CancellationRequested, ParseFailure, PlanError, UnsupportedFormat
from .models import (
    BottleneckInfo,
    ExecutionPlan,
    IndexReference,
    IndexSuggestion,
    NodeType,
    OperationCost,
    PlanNode,
    QueryMetrics,
    Severity,
    TableReference,
)
from .parsers import PlanNormalizer, PostgresPlanParser, SqlServerPlanParser
from .pipeline import PlanPipeline, PipelineResult
from .visualization import FlowBuilder, FlowLayout

__version__ = "0.1.0"

__all__ = [
    # Models
    "BottleneckInfo",
    "ExecutionPlan",
    "IndexReference",
    "IndexSuggestion",
    "NodeType",
    "OperationCost",
    "PlanNode",
    "QueryMetrics",
    "Severity",
    "TableReference",
    # Parsing
    "PlanNormalizer",
    "PostgresPlanParser",
    "SqlServerPlanParser",
    # Analysis
    "BottleneckDetector",
    "ComparisonVerdict",
    "CostAnalyzer",
    "IndexAdvisor",
    "PlanComparator",
    "PlanComparisonResult",
    "QueryAnalyzer",
    # Layout
    "FlowBuilder",
    "FlowLayout",
    # Pipeline
    "PlanPipeline",
    "PipelineResult",
    # Errors
    "CancellationToken",
    "CancellationRequested",
    "ParseFailure",
    "PlanError",
    "UnsupportedFormat",
]
