"""Plan parsers and the normalizer that selects between them."""

from .base import PlanParser
from .normalizer import PlanNormalizer, SUPPORTED_FORMATS
from .postgres import PostgresPlanParser
from .sqlserver import SqlServerPlanParser

__all__ = [
    "PlanParser",
    "PlanNormalizer",
    "PostgresPlanParser",
    "SqlServerPlanParser",
    "SUPPORTED_FORMATS",
]
