"""Analysis passes over canonical plans."""

from .bottleneck_detector import BottleneckDetector
from .bottleneck_rules import BottleneckRule, get_bottleneck_rules, get_rule_by_id
from .cost_analyzer import CostAnalyzer
from .index_advisor import IndexAdvisor, IndexRule, get_index_rules
from .plan_comparator import ComparisonVerdict, PlanComparator, PlanComparisonResult
from .query_analyzer import QueryAnalyzer

__all__ = [
    "BottleneckDetector",
    "BottleneckRule",
    "get_bottleneck_rules",
    "get_rule_by_id",
    "CostAnalyzer",
    "IndexAdvisor",
    "IndexRule",
    "get_index_rules",
    "ComparisonVerdict",
    "PlanComparator",
    "PlanComparisonResult",
    "QueryAnalyzer",
]
